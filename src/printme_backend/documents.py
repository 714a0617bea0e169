"""
Document intake: PDF upload validation, blob storage and metadata records.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from .blob_storage import BlobStorage
from .database import SendStore
from .errors import NotFoundError, StorageError, ValidationError
from .models import DocumentRecord
from .utils import PDF_MIME_TYPE, is_pdf_upload, make_blob_name

logger = logging.getLogger(__name__)


class DocumentService:
    def __init__(self, store: SendStore, blob_storage: BlobStorage, max_upload_bytes: int) -> None:
        self.store = store
        self.blob_storage = blob_storage
        self.max_upload_bytes = max_upload_bytes

    def upload(
        self,
        content: bytes,
        filename: str,
        content_type: Optional[str],
        is_check: bool = False,
        uploaded_by: Optional[str] = None,
    ) -> DocumentRecord:
        """
        Validate a PDF upload, store its bytes and record its metadata.

        Raises:
            ValidationError: If the upload is not a PDF
            StorageError: If the blob write fails
        """
        if not is_pdf_upload(content_type, content):
            raise ValidationError("only_pdf_accepted", "only PDF files are accepted")

        stored = self.blob_storage.put(content, make_blob_name(filename), content_type or PDF_MIME_TYPE)
        return self.store.create_document({
            "filename": filename,
            "mime_type": content_type or PDF_MIME_TYPE,
            "size_bytes": len(content),
            "storage_url": stored.url,
            "blob_name": stored.blob_name,
            "is_check": is_check,
            "uploaded_by": uploaded_by,
        })

    def list_documents(self) -> List[DocumentRecord]:
        return self.store.list_documents()

    def get_document(self, document_id: str) -> DocumentRecord:
        document = self.store.get_document(document_id)
        if document is None:
            raise NotFoundError("not_found", f"Document {document_id} not found")
        return document

    def read_content(self, document_id: str) -> tuple[DocumentRecord, bytes]:
        document = self.get_document(document_id)
        if not document.blob_name:
            raise NotFoundError("no_blob", f"Document {document_id} has no stored content")
        try:
            return document, self.blob_storage.get(document.blob_name)
        except StorageError:
            logger.exception(f"Could not read content for document {document_id}")
            raise
