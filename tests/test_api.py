"""
Tests for PrintMe Send Backend API endpoints.

Tests cover:
- Health check and profile
- Document upload, listing and content
- Send job creation, retrieval and refresh
- Provider webhooks, with and without a signing secret
- CORS
"""

import json
from io import BytesIO

import pytest

from printme_backend.main import app, get_store, get_webhook_reconciler
from printme_backend.webhooks import WebhookReconciler, compute_signature


@pytest.fixture
def uploaded_document(client, sample_pdf):
    response = client.post(
        "/api/documents",
        files={"file": ("check.pdf", BytesIO(sample_pdf), "application/pdf")},
        data={"isCheck": "true"},
    )
    assert response.status_code == 201
    return response.json()


@pytest.fixture
def postal_job(client):
    response = client.post(
        "/api/send",
        json={"method": "POSTAL", "checkData": {"amount": 100}, "recipient": {"name": "Alice"}},
    )
    assert response.status_code == 201
    return response.json()


class TestHealthCheck:
    """Tests for the /healthz endpoint."""

    def test_health_check_returns_ok(self, client):
        """Health check should report the service and database as up."""
        response = client.get("/healthz")
        assert response.status_code == 200
        assert response.json() == {"status": "ok", "db": True}


class TestProfile:
    def test_profile_without_auth_configured(self, client):
        """With no identity provider configured, callers are anonymous."""
        response = client.get("/api/me")
        assert response.status_code == 200
        assert response.json() == {"user": None, "auth_configured": False}


class TestDocuments:
    """Tests for the /api/documents endpoints."""

    def test_upload_pdf(self, uploaded_document, sample_pdf):
        assert uploaded_document["filename"] == "check.pdf"
        assert uploaded_document["mime_type"] == "application/pdf"
        assert uploaded_document["size_bytes"] == len(sample_pdf)
        assert uploaded_document["is_check"] is True
        assert uploaded_document["blob_name"].endswith("-check.pdf")
        assert uploaded_document["storage_url"].startswith("file://")

    def test_upload_requires_file(self, client):
        response = client.post("/api/documents", data={"isCheck": "false"})
        assert response.status_code == 400

    def test_upload_rejects_non_pdf(self, client):
        """A text file must be rejected even if it claims to be a PDF."""
        response = client.post(
            "/api/documents",
            files={"file": ("test.pdf", BytesIO(b"not a pdf"), "application/pdf")},
        )
        assert response.status_code == 400
        assert response.json()["error"] == "only_pdf_accepted"

    def test_upload_rejects_wrong_mime_type(self, client, sample_pdf):
        response = client.post(
            "/api/documents",
            files={"file": ("test.pdf", BytesIO(sample_pdf), "text/plain")},
        )
        assert response.status_code == 400

    def test_get_and_stream_document(self, client, uploaded_document, sample_pdf):
        doc_id = uploaded_document["id"]

        meta = client.get(f"/api/documents/{doc_id}")
        assert meta.status_code == 200
        assert meta.json()["id"] == doc_id

        content = client.get(f"/api/documents/{doc_id}/content")
        assert content.status_code == 200
        assert content.headers["content-type"] == "application/pdf"
        assert content.content == sample_pdf

    def test_list_documents_includes_upload(self, client, uploaded_document):
        response = client.get("/api/documents")
        assert response.status_code == 200
        assert uploaded_document["id"] in [doc["id"] for doc in response.json()]

    def test_get_nonexistent_document(self, client):
        response = client.get("/api/documents/nonexistent")
        assert response.status_code == 404
        assert response.json()["error"] == "not_found"


class TestSendJobs:
    """Tests for the /api/send endpoints."""

    def test_list_send_jobs(self, client):
        response = client.get("/api/send")
        assert response.status_code == 200
        assert isinstance(response.json(), list)

    def test_get_nonexistent_job(self, client):
        response = client.get("/api/send/nonexistent-job-id")
        assert response.status_code == 404
        assert response.json()["error"] == "not_found"

    def test_create_requires_method(self, client):
        response = client.post("/api/send", json={"recipient": {"email": "a@example.com"}})
        assert response.status_code == 400
        assert response.json()["error"] == "method_required"

    def test_create_email_requires_recipient_email(self, client):
        response = client.post("/api/send", json={"method": "EMAIL", "recipient": {"name": "Bob"}})
        assert response.status_code == 400
        assert response.json()["error"] == "recipient_email_required"

    def test_create_email_rejects_non_string_address(self, client):
        """A non-string recipient email is a validation error, not a server error."""
        before = len(client.get("/api/send").json())
        response = client.post("/api/send", json={"method": "EMAIL", "recipient": {"email": 123}})
        assert response.status_code == 400
        assert response.json()["error"] == "recipient_email_required"
        assert len(client.get("/api/send").json()) == before

    def test_create_postal_with_empty_check_data(self, client):
        """An empty checkData object counts as supplied."""
        response = client.post("/api/send", json={"method": "POSTAL", "checkData": {}})
        assert response.status_code == 201
        assert response.json()["status"] == "QUEUED"

    def test_create_with_unknown_check_document(self, client):
        response = client.post("/api/send", json={"method": "POSTAL", "checkDocumentId": "missing"})
        assert response.status_code == 400
        assert response.json()["error"] == "invalid_checkDocumentId"

    def test_create_postal_auto_with_check_data(self, postal_job):
        """Simulated postal send in auto mode with only check data goes out as raw."""
        assert postal_job["method"] == "POSTAL"
        assert postal_job["status"] == "QUEUED"
        assert postal_job["provider_id"].startswith("postgrid_")
        assert postal_job["provider_response"]["simulated"] is True
        assert postal_job["provider_response"]["mode"] == "raw"
        assert postal_job["skipped_attachment_ids"] == []

    def test_create_postal_with_documents(self, client, uploaded_document):
        response = client.post(
            "/api/send",
            json={
                "method": "POSTAL",
                "checkDocumentId": uploaded_document["id"],
                "documentIds": [uploaded_document["id"], "does-not-exist"],
                "recipient": {"name": "Alice", "address": {"line1": "1 St"}},
            },
        )
        assert response.status_code == 201
        job = response.json()
        assert job["check_document"]["id"] == uploaded_document["id"]
        # The check document is never listed twice and the unknown id is skipped.
        assert job["attachments"] == []
        assert job["skipped_attachment_ids"] == ["does-not-exist"]
        assert job["provider_response"]["mode"] == "pdf"

    def test_create_email_job(self, client, uploaded_document):
        response = client.post(
            "/api/send",
            json={
                "method": "EMAIL",
                "checkDocumentId": uploaded_document["id"],
                "recipient": {"email": "test@example.com"},
                "emailOptions": {"subject": "Test Email", "message": "Hello world"},
            },
        )
        assert response.status_code == 201
        job = response.json()
        assert job["status"] == "QUEUED"
        assert job["provider_id"] is None
        assert job["recipient"] == {"email": "test@example.com"}
        assert job["provider_response"]["raw"]["subject"] == "Test Email"
        assert job["provider_response"]["raw"]["attachments"] == ["check.pdf"]

    def test_get_created_job(self, client, postal_job):
        response = client.get(f"/api/send/{postal_job['id']}")
        assert response.status_code == 200
        assert response.json()["provider_id"] == postal_job["provider_id"]

    def test_refresh_simulated_job(self, client, postal_job):
        """Simulation mode always reports DELIVERED, so refresh is idempotent."""
        first = client.post(f"/api/send/{postal_job['id']}/refresh")
        second = client.post(f"/api/send/{postal_job['id']}/refresh")
        assert first.status_code == 200
        assert first.json()["status"] == "DELIVERED"
        assert second.json()["status"] == "DELIVERED"

    def test_refresh_without_provider_id(self, client):
        created = client.post("/api/send", json={"method": "EMAIL", "recipient": {"email": "x@example.com"}})
        response = client.post(f"/api/send/{created.json()['id']}/refresh")
        assert response.status_code == 400
        assert response.json()["error"] == "no_provider_id"

    def test_refresh_nonexistent_job(self, client):
        response = client.post("/api/send/nonexistent/refresh")
        assert response.status_code == 404


class TestWebhook:
    """Tests for the /api/webhook/postgrid endpoint."""

    def test_webhook_updates_job_status(self, client, postal_job):
        body = json.dumps({"id": postal_job["provider_id"], "status": "DELIVERED"})
        response = client.post("/api/webhook/postgrid", content=body, headers={"Content-Type": "application/json"})
        assert response.status_code == 200
        assert response.json() == {"ok": True, "send_job_id": postal_job["id"], "status": "DELIVERED"}

        job = client.get(f"/api/send/{postal_job['id']}").json()
        assert job["status"] == "DELIVERED"
        assert job["provider_response"] == {"id": postal_job["provider_id"], "status": "DELIVERED"}

    def test_webhook_invalid_json(self, client):
        response = client.post("/api/webhook/postgrid", content=b"{not json")
        assert response.status_code == 400
        assert response.json()["error"] == "invalid_json"

    def test_webhook_missing_provider_id(self, client):
        response = client.post("/api/webhook/postgrid", json={"status": "DELIVERED"})
        assert response.status_code == 400
        assert response.json()["error"] == "missing_provider_id"

    def test_webhook_unknown_job(self, client):
        response = client.post("/api/webhook/postgrid", json={"id": "postgrid_unknown", "status": "DELIVERED"})
        assert response.status_code == 404
        assert response.json()["error"] == "job_not_found"


class TestSignedWebhook:
    """Webhook behaviour once a shared secret is configured."""

    SECRET = "whsec_test"

    @pytest.fixture(autouse=True)
    def signed_reconciler(self):
        app.dependency_overrides[get_webhook_reconciler] = lambda: WebhookReconciler(get_store(), secret=self.SECRET)
        yield
        app.dependency_overrides.pop(get_webhook_reconciler, None)

    def test_missing_signature_rejected(self, client, postal_job):
        response = client.post("/api/webhook/postgrid", json={"id": postal_job["provider_id"]})
        assert response.status_code == 401
        assert response.json()["error"] == "missing_signature"

    def test_tampered_body_rejected(self, client, postal_job):
        body = json.dumps({"id": postal_job["provider_id"], "status": "DELIVERED"}).encode()
        signature = compute_signature(self.SECRET, body)
        tampered = body.replace(b"DELIVERED", b"RETURNED")

        response = client.post("/api/webhook/postgrid", content=tampered, headers={"postgrid-signature": signature})
        assert response.status_code == 401
        assert response.json()["error"] == "invalid_signature"

    def test_correct_signature_accepted(self, client, postal_job):
        body = json.dumps({"id": postal_job["provider_id"], "status": "DELIVERED"}).encode()
        signature = compute_signature(self.SECRET, body)

        response = client.post("/api/webhook/postgrid", content=body, headers={"x-postgrid-signature": signature})
        assert response.status_code == 200
        assert response.json()["status"] == "DELIVERED"


class TestCORS:
    """Tests for CORS configuration."""

    def test_cors_headers_present(self, client):
        response = client.options(
            "/healthz",
            headers={
                "Origin": "http://localhost:3000",
                "Access-Control-Request-Method": "GET",
            },
        )
        assert response.status_code in [200, 400]
