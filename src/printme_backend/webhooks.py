"""
Reconciliation of asynchronous provider callbacks.

PostGrid calls back with a JSON body naming the provider's job id and a new
status. The reconciler authenticates the callback (HMAC-SHA256 over the raw
body, hex encoded, when a shared secret is configured), finds the send job
carrying that provider id, and overwrites its status and provider response.

Re-delivery of the same callback is harmless: reconciliation is a plain
overwrite. Without a secret every callback is accepted, which is only
appropriate for local development.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
from typing import Any, Mapping, Optional

from .database import SendStore
from .errors import BadRequestError, NotFoundError, UnauthorizedError
from .models import SendStatus, WebhookAck

logger = logging.getLogger(__name__)

SIGNATURE_HEADERS = ("postgrid-signature", "x-postgrid-signature")
PROVIDER_ID_FIELDS = ("id", "jobId", "providerId")
STATUS_FIELDS = ("status", "state")


def compute_signature(secret: str, body: bytes) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def verify_signature(secret: str, body: bytes, signature: Optional[str]) -> None:
    """
    Raises:
        UnauthorizedError: ``missing_signature`` or ``invalid_signature``
    """
    if not signature:
        raise UnauthorizedError("missing_signature", "Webhook signature header is missing")
    if not hmac.compare_digest(compute_signature(secret, body).encode(), signature.encode()):
        raise UnauthorizedError("invalid_signature", "Webhook signature does not match")


def _first_present(payload: Mapping[str, Any], fields) -> Optional[Any]:
    for name in fields:
        value = payload.get(name)
        if value:
            return value
    return None


class WebhookReconciler:
    def __init__(self, store: SendStore, secret: Optional[str] = None) -> None:
        self.store = store
        self.secret = secret or None

    def handle(self, raw_body: bytes, headers: Mapping[str, str]) -> WebhookAck:
        """
        Apply one provider callback to its send job.

        Args:
            raw_body: The request body exactly as received
            headers: Request headers (any casing)

        Returns:
            Acknowledgement naming the updated job and its new status

        Raises:
            UnauthorizedError: Signature missing or wrong while a secret is configured
            BadRequestError: Body is not JSON or carries no provider id
            NotFoundError: No send job has the provider id
        """
        if self.secret:
            lowered = {key.lower(): value for key, value in headers.items()}
            signature = next((lowered[name] for name in SIGNATURE_HEADERS if lowered.get(name)), None)
            try:
                verify_signature(self.secret, raw_body, signature)
            except UnauthorizedError as exc:
                logger.warning(f"Rejected provider webhook: {exc.code}")
                raise

        try:
            payload = json.loads(raw_body.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise BadRequestError("invalid_json", "Webhook body is not valid JSON") from exc

        provider_id = _first_present(payload, PROVIDER_ID_FIELDS) if isinstance(payload, dict) else None
        if provider_id is None:
            raise BadRequestError("missing_provider_id", "Webhook body carries no provider id")
        provider_id = str(provider_id)

        job = self.store.find_send_job_by_provider_id(provider_id)
        if job is None:
            raise NotFoundError("job_not_found", f"No send job for provider id {provider_id}")

        status = _first_present(payload, STATUS_FIELDS) or job.status or SendStatus.UNKNOWN.value
        updated = self.store.update_send_job(job.id, status=str(status), provider_response=payload)
        if updated is None:
            raise NotFoundError("job_not_found", f"No send job for provider id {provider_id}")

        logger.info(f"Webhook set send job {job.id} ({provider_id}) to {updated.status}")
        return WebhookAck(send_job_id=updated.id, status=updated.status)
