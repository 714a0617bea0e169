from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, File, Form, Header, HTTPException, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from starlette.concurrency import run_in_threadpool

from .auth import TokenVerifier, authenticate
from .blob_storage import BlobStorage
from .configuration import get_settings
from .database import SendStore
from .documents import DocumentService
from .email_service import EmailService
from .errors import SendServiceError
from .models import (
    CreatedSendJob,
    DocumentRecord,
    ProfileResponse,
    SendJobCreateRequest,
    SendJobDetail,
    UserIdentity,
    WebhookAck,
)
from .postgrid import PostGridClient
from .send_manager import SendJobManager
from .webhooks import WebhookReconciler

settings = get_settings()
logging.basicConfig(level=settings.log_level.upper(), format="%(asctime)s %(levelname)s %(name)s: %(message)s")

app = FastAPI(title="PrintMe Send API", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

store = SendStore(Path(settings.database.path))
blob_storage = BlobStorage.from_settings(settings.storage)
document_service = DocumentService(store, blob_storage, settings.storage.max_upload_bytes)
send_manager = SendJobManager(
    store=store,
    blob_storage=blob_storage,
    postal_client=PostGridClient.from_settings(settings.postgrid),
    email_service=EmailService.from_settings(settings.email),
    postal_mode=settings.postgrid.mode,
    default_subject=settings.email.default_subject,
    default_message=settings.email.default_message,
)
webhook_reconciler = WebhookReconciler(store, secret=settings.postgrid.webhook_secret)
token_verifier = TokenVerifier.from_settings(settings.auth)


def get_store() -> SendStore:
    return store


def get_document_service() -> DocumentService:
    return document_service


def get_send_manager() -> SendJobManager:
    return send_manager


def get_webhook_reconciler() -> WebhookReconciler:
    return webhook_reconciler


def get_token_verifier() -> TokenVerifier:
    return token_verifier


def get_current_user(
    authorization: Optional[str] = Header(None),
    verifier: TokenVerifier = Depends(get_token_verifier),
) -> Optional[UserIdentity]:
    return authenticate(verifier, authorization)


@app.exception_handler(SendServiceError)
async def send_service_error_handler(request: Request, exc: SendServiceError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": exc.code, "detail": exc.detail})


@app.get("/healthz")
def healthcheck(send_store: SendStore = Depends(get_store)) -> Dict[str, Any]:
    return {"status": "ok", "db": send_store.ping()}


@app.get("/api/me", response_model=ProfileResponse)
def get_profile(
    user: Optional[UserIdentity] = Depends(get_current_user),
    send_store: SendStore = Depends(get_store),
) -> ProfileResponse:
    if user is None:
        return ProfileResponse(user=None, auth_configured=False)
    return ProfileResponse(user=send_store.upsert_user(user.subject_id, user.email, user.name))


@app.post("/api/documents", response_model=DocumentRecord, status_code=201)
async def upload_document(
    file: Optional[UploadFile] = File(None),
    is_check: str = Form("false", alias="isCheck"),
    user: Optional[UserIdentity] = Depends(get_current_user),
    documents: DocumentService = Depends(get_document_service),
) -> DocumentRecord:
    if file is None:
        raise HTTPException(status_code=400, detail='file is required (multipart form-data, field name "file")')

    content = await file.read(documents.max_upload_bytes + 1)
    await file.close()
    if len(content) > documents.max_upload_bytes:
        raise HTTPException(status_code=413, detail=f"File exceeds {documents.max_upload_bytes} bytes")

    return await run_in_threadpool(
        documents.upload,
        content,
        file.filename or "document.pdf",
        file.content_type,
        is_check.strip().lower() in {"true", "1"},
        user.subject_id if user else None,
    )


@app.get("/api/documents", response_model=List[DocumentRecord])
def list_documents(
    user: Optional[UserIdentity] = Depends(get_current_user),
    documents: DocumentService = Depends(get_document_service),
) -> List[DocumentRecord]:
    return documents.list_documents()


@app.get("/api/documents/{document_id}", response_model=DocumentRecord)
def get_document(
    document_id: str,
    user: Optional[UserIdentity] = Depends(get_current_user),
    documents: DocumentService = Depends(get_document_service),
) -> DocumentRecord:
    return documents.get_document(document_id)


@app.get("/api/documents/{document_id}/content")
def document_content(
    document_id: str,
    user: Optional[UserIdentity] = Depends(get_current_user),
    documents: DocumentService = Depends(get_document_service),
) -> Response:
    document, content = documents.read_content(document_id)
    return Response(content=content, media_type=document.mime_type or "application/pdf")


@app.get("/api/send", response_model=List[SendJobDetail])
def list_send_jobs(
    user: Optional[UserIdentity] = Depends(get_current_user),
    manager: SendJobManager = Depends(get_send_manager),
) -> List[SendJobDetail]:
    return manager.list_send_jobs()


@app.post("/api/send", response_model=CreatedSendJob, status_code=201)
def create_send_job(
    request: SendJobCreateRequest,
    user: Optional[UserIdentity] = Depends(get_current_user),
    manager: SendJobManager = Depends(get_send_manager),
) -> CreatedSendJob:
    return manager.create_send_job(request)


@app.get("/api/send/{job_id}", response_model=SendJobDetail)
def get_send_job(
    job_id: str,
    user: Optional[UserIdentity] = Depends(get_current_user),
    manager: SendJobManager = Depends(get_send_manager),
) -> SendJobDetail:
    return manager.get_send_job(job_id)


@app.post("/api/send/{job_id}/refresh", response_model=SendJobDetail)
def refresh_send_job(
    job_id: str,
    user: Optional[UserIdentity] = Depends(get_current_user),
    manager: SendJobManager = Depends(get_send_manager),
) -> SendJobDetail:
    return manager.refresh_send_job(job_id)


@app.post("/api/webhook/postgrid", response_model=WebhookAck)
async def postgrid_webhook(
    request: Request,
    reconciler: WebhookReconciler = Depends(get_webhook_reconciler),
) -> WebhookAck:
    raw_body = await request.body()
    return await run_in_threadpool(reconciler.handle, raw_body, request.headers)
