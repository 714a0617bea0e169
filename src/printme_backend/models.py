from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class SendMethod(str, Enum):
    POSTAL = "POSTAL"
    EMAIL = "EMAIL"

    @classmethod
    def _missing_(cls, value: object) -> Optional["SendMethod"]:
        if not isinstance(value, str):
            return None
        normalized = value.strip().upper()
        # Older clients name the postal channel after the provider.
        if normalized == "POSTGRID":
            return cls.POSTAL
        for member in cls:
            if member.value == normalized:
                return member
        return None


class PostalMode(str, Enum):
    PDF = "pdf"
    RAW = "raw"
    AUTO = "auto"


class SendStatus(str, Enum):
    """Conventional status values. Job status itself is an open string."""

    PENDING = "PENDING"
    QUEUED = "QUEUED"
    SUBMITTED = "SUBMITTED"
    FAILED = "FAILED"
    DELIVERED = "DELIVERED"
    UNKNOWN = "UNKNOWN"


class ProviderResult(BaseModel):
    """Outcome of one delivery provider interaction.

    A populated ``error`` marks the failure variant; everything else is the
    success variant. The serialized form is what gets stored as the job's
    latest provider response.
    """

    provider_id: Optional[str] = None
    status: Optional[str] = None
    simulated: bool = False
    mode: Optional[PostalMode] = None
    raw: Optional[Any] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_response(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class PostalSendPayload(BaseModel):
    job_id: str
    recipient: Optional[Dict[str, Any]] = None
    check_data: Optional[Dict[str, Any]] = None
    attachment_document_ids: List[str] = Field(default_factory=list)
    document_ids: List[str] = Field(default_factory=list)


class EmailAttachment(BaseModel):
    filename: str
    content_type: str
    content: bytes


class UserIdentity(BaseModel):
    subject_id: str
    email: Optional[str] = None
    name: Optional[str] = None


class UserRecord(BaseModel):
    id: str
    subject_id: str
    email: str
    name: Optional[str] = None
    role: str = "USER"
    created_at: datetime
    updated_at: datetime


class DocumentRecord(BaseModel):
    id: str
    filename: str
    mime_type: str
    size_bytes: int
    storage_url: str
    blob_name: str
    is_check: bool = False
    uploaded_by: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class SendJobAttachment(BaseModel):
    id: str
    send_job_id: str
    document_id: str
    created_at: datetime
    document: Optional[DocumentRecord] = None


class SendJobDetail(BaseModel):
    id: str
    method: SendMethod
    status: str
    check_document_id: Optional[str] = None
    check_document: Optional[DocumentRecord] = None
    recipient: Optional[Dict[str, Any]] = None
    provider_id: Optional[str] = None
    provider_response: Optional[Any] = None
    attachments: List[SendJobAttachment] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime


class CreatedSendJob(SendJobDetail):
    skipped_attachment_ids: List[str] = Field(default_factory=list)


class EmailOptions(BaseModel):
    subject: Optional[str] = None
    message: Optional[str] = None


class SendJobCreateRequest(BaseModel):
    """Body of ``POST /api/send``. Accepts both camelCase and snake_case keys."""

    model_config = ConfigDict(populate_by_name=True)

    method: Optional[str] = None
    recipient: Optional[Dict[str, Any]] = None
    check_document_id: Optional[str] = Field(default=None, alias="checkDocumentId")
    check_data: Optional[Dict[str, Any]] = Field(default=None, alias="checkData")
    document_ids: Optional[List[str]] = Field(default=None, alias="documentIds")
    attachment_document_ids: Optional[List[str]] = Field(default=None, alias="attachmentDocumentIds")
    email_options: Optional[EmailOptions] = Field(default=None, alias="emailOptions")

    def attachment_refs(self) -> List[str]:
        """Requested attachment ids minus the check document, de-duplicated in order."""
        refs = self.document_ids if self.document_ids is not None else (self.attachment_document_ids or [])
        seen: List[str] = []
        for ref in refs:
            if ref and ref != self.check_document_id and ref not in seen:
                seen.append(ref)
        return seen


class WebhookAck(BaseModel):
    ok: bool = True
    send_job_id: str
    status: str


class ProfileResponse(BaseModel):
    user: Optional[UserRecord] = None
    auth_configured: bool = True
