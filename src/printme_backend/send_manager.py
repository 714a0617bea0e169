"""
Send job orchestration and lifecycle management.

This module owns the lifecycle of a send job:
- Request validation per delivery method and postal send mode
- Job creation in PENDING state and best-effort attachment resolution
- Dispatch to the postal or email adapter and recording of the result
- Pull-based status refresh against the postal provider

The SendJobManager receives every collaborator (store, blob storage, postal
and email adapters) through its constructor, so tests can hand it fakes.

Job status is an open string: after creation it is PENDING, after dispatch
whatever the adapter reported (or FAILED / PENDING as fallbacks), and later
whatever a webhook or refresh reports. No value is treated as final here.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Tuple

from .blob_storage import BlobStorage
from .database import SendStore
from .email_service import EmailService
from .errors import AdapterError, BadRequestError, NotFoundError, StorageError, ValidationError
from .models import (
    CreatedSendJob,
    DocumentRecord,
    EmailAttachment,
    PostalMode,
    PostalSendPayload,
    ProviderResult,
    SendJobCreateRequest,
    SendJobDetail,
    SendMethod,
    SendStatus,
)
from .postgrid import PostGridClient

logger = logging.getLogger(__name__)

DEFAULT_EMAIL_SUBJECT = "Check Delivery"
DEFAULT_EMAIL_MESSAGE = "Attached documents."


class SendJobManager:
    """
    Central coordinator for send jobs.

    Attributes:
        store: Persistence for jobs, attachments and documents
        blob_storage: Source of document bytes for email attachments
        postal_client: PostGrid adapter
        email_service: Email adapter
        postal_mode: Configured postal send mode (pdf, raw or auto)
    """

    def __init__(
        self,
        store: SendStore,
        blob_storage: BlobStorage,
        postal_client: PostGridClient,
        email_service: EmailService,
        postal_mode: PostalMode = PostalMode.AUTO,
        default_subject: str = DEFAULT_EMAIL_SUBJECT,
        default_message: str = DEFAULT_EMAIL_MESSAGE,
    ) -> None:
        self.store = store
        self.blob_storage = blob_storage
        self.postal_client = postal_client
        self.email_service = email_service
        self.postal_mode = postal_mode
        self.default_subject = default_subject
        self.default_message = default_message

    def list_send_jobs(self) -> List[SendJobDetail]:
        """Get all send jobs, newest first, with attachments loaded."""
        return self.store.list_send_jobs()

    def get_send_job(self, job_id: str) -> SendJobDetail:
        """
        Raises:
            NotFoundError: If no job has this id
        """
        job = self.store.get_send_job(job_id)
        if job is None:
            raise NotFoundError("not_found", f"Send job {job_id} not found")
        return job

    def _validate(self, request: SendJobCreateRequest) -> SendMethod:
        if not request.method:
            raise ValidationError("method_required", "method is required")
        try:
            method = SendMethod(request.method)
        except ValueError:
            raise ValidationError("unsupported_method", f"Unsupported method: {request.method}") from None

        if method is SendMethod.POSTAL:
            if self.postal_mode is PostalMode.PDF and not request.check_document_id:
                raise ValidationError("check_document_required", "checkDocumentId required in pdf mode")
            if self.postal_mode is PostalMode.RAW and request.check_data is None:
                raise ValidationError("check_data_required", "checkData required in raw mode")
            if self.postal_mode is PostalMode.AUTO and not request.check_document_id and request.check_data is None:
                raise ValidationError(
                    "check_document_or_data_required",
                    "need checkDocumentId or checkData in auto mode",
                )
        else:
            email = request.recipient.get("email") if request.recipient else None
            if not isinstance(email, str) or not email.strip():
                raise ValidationError("recipient_email_required", "recipient.email required for EMAIL method")

        return method

    def _attach_documents(self, job_id: str, refs: List[str]) -> Tuple[List[str], List[str]]:
        """
        Link every resolvable document to the job.

        Returns:
            (attached ids, skipped ids) in request order
        """
        attached: List[str] = []
        skipped: List[str] = []
        for document_id in refs:
            if self.store.get_document(document_id) is None:
                logger.warning(f"Skipping unknown attachment document {document_id} for send job {job_id}")
                skipped.append(document_id)
                continue
            self.store.add_attachment(job_id, document_id)
            attached.append(document_id)
        return attached, skipped

    def create_send_job(self, request: SendJobCreateRequest) -> CreatedSendJob:
        """
        Validate, record and dispatch a new send job.

        This method:
        1. Validates the method and its per-method requirements
        2. Resolves the check document, if one was referenced
        3. Creates the job in PENDING state
        4. Links attachment documents, skipping unknown ids
        5. Dispatches to the email or postal adapter and records the result

        Provider failures do not fail the call; they are captured into the
        job's provider response and the job is marked FAILED.

        Returns:
            The hydrated job plus the attachment ids that were skipped

        Raises:
            ValidationError: If required fields are missing or the check document does not exist
        """
        method = self._validate(request)

        check_document: Optional[DocumentRecord] = None
        if request.check_document_id:
            check_document = self.store.get_document(request.check_document_id)
            if check_document is None:
                raise ValidationError(
                    "invalid_checkDocumentId",
                    f"Check document {request.check_document_id} not found",
                )

        job_id = self.store.create_send_job(
            method=method,
            status=SendStatus.PENDING.value,
            check_document_id=check_document.id if check_document else None,
            recipient=request.recipient,
        )
        logger.info(f"Created {method.value} send job {job_id}")

        attachment_ids, skipped = self._attach_documents(job_id, request.attachment_refs())

        if method is SendMethod.EMAIL:
            job = self._dispatch_email(job_id, request, check_document, attachment_ids)
        else:
            job = self._dispatch_postal(job_id, request, check_document, attachment_ids)

        return CreatedSendJob(**job.model_dump(), skipped_attachment_ids=skipped)

    def _load_email_attachments(self, document_ids: List[str]) -> List[EmailAttachment]:
        attachments: List[EmailAttachment] = []
        for document_id in document_ids:
            document = self.store.get_document(document_id)
            if document is None:
                continue
            try:
                content = self.blob_storage.get(document.blob_name)
            except StorageError as exc:
                logger.error(f"Attachment download failed for document {document_id}: {exc.detail}")
                continue
            attachments.append(
                EmailAttachment(filename=document.filename, content_type=document.mime_type, content=content)
            )
        return attachments

    def _dispatch_email(
        self,
        job_id: str,
        request: SendJobCreateRequest,
        check_document: Optional[DocumentRecord],
        attachment_ids: List[str],
    ) -> SendJobDetail:
        document_ids = ([check_document.id] if check_document else []) + attachment_ids
        options = request.email_options
        subject = (options.subject if options else None) or self.default_subject
        message = (options.message if options else None) or self.default_message

        try:
            result = self.email_service.send(
                subject=subject,
                body=message,
                recipients=[request.recipient["email"]],
                attachments=self._load_email_attachments(document_ids),
            )
        except AdapterError as exc:
            logger.warning(f"Email dispatch failed for send job {job_id}: {exc.detail}")
            result = ProviderResult(error=exc.detail)

        status = result.status or (SendStatus.FAILED.value if result.error else SendStatus.SUBMITTED.value)
        return self._record_result(job_id, result, status)

    def _dispatch_postal(
        self,
        job_id: str,
        request: SendJobCreateRequest,
        check_document: Optional[DocumentRecord],
        attachment_ids: List[str],
    ) -> SendJobDetail:
        payload = PostalSendPayload(
            job_id=job_id,
            recipient=request.recipient,
            check_data=request.check_data,
            attachment_document_ids=attachment_ids,
            document_ids=([check_document.id] if check_document else []) + attachment_ids,
        )

        try:
            result = self.postal_client.send(payload, self.postal_mode)
        except AdapterError as exc:
            logger.warning(f"Postal dispatch failed for send job {job_id}: {exc.detail}")
            result = ProviderResult(error=exc.detail)

        status = result.status or (SendStatus.FAILED.value if result.error else SendStatus.PENDING.value)
        return self._record_result(job_id, result, status)

    def _record_result(self, job_id: str, result: ProviderResult, status: str) -> SendJobDetail:
        job = self.store.update_send_job(
            job_id,
            status=status,
            provider_id=result.provider_id,
            provider_response=result.to_response(),
        )
        if job is None:
            raise NotFoundError("not_found", f"Send job {job_id} disappeared during dispatch")
        return job

    def refresh_send_job(self, job_id: str) -> SendJobDetail:
        """
        Re-query the postal provider for a job's status and persist it.

        A provider failure is stored as an error-shaped provider response and
        the job keeps its current status.

        Raises:
            NotFoundError: If no job has this id
            BadRequestError: If the job was never accepted by the postal provider
        """
        job = self.get_send_job(job_id)
        if not job.provider_id:
            raise BadRequestError("no_provider_id", f"Send job {job_id} has no provider id")
        if job.method is not SendMethod.POSTAL:
            raise BadRequestError("refresh_not_supported", "Status refresh is only available for postal jobs")

        try:
            result = self.postal_client.get_status(job.provider_id)
        except AdapterError as exc:
            logger.warning(f"Status refresh failed for send job {job_id}: {exc.detail}")
            result = ProviderResult(provider_id=job.provider_id, error=exc.detail)

        updated = self.store.update_send_job(
            job_id,
            status=result.status or job.status,
            provider_response=result.to_response(),
        )
        if updated is None:
            raise NotFoundError("not_found", f"Send job {job_id} not found")
        return updated
