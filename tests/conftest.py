"""
Pytest configuration and fixtures for PrintMe Send Backend tests.
"""

import os
import shutil
import tempfile
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

# Set test environment variables before importing the app. Provider
# credentials are cleared so every adapter runs in simulation mode.
for _name in (
    "POSTGRID_API_KEY",
    "POSTGRID_API_URL",
    "POSTGRID_API_SUPPORTS_RAW",
    "POSTGRID_WEBHOOK_SECRET",
    "SES_SENDER_ADDRESS",
    "S3_BUCKET_NAME",
    "AUTH_ISSUER",
    "AUTH_AUDIENCE",
    "PRINTME_CONFIG",
):
    os.environ.pop(_name, None)

os.environ["POSTGRID_SEND_MODE"] = "auto"
_DATA_DIR = Path(tempfile.mkdtemp(prefix="printme_test_data_"))
os.environ["DATABASE_PATH"] = str(_DATA_DIR / "printme.db")
os.environ["LOCAL_BLOB_DIR"] = str(_DATA_DIR / "uploads")

from printme_backend.blob_storage import BlobStorage
from printme_backend.database import SendStore
from printme_backend.email_service import EmailService
from printme_backend.main import app
from printme_backend.models import PostalMode
from printme_backend.postgrid import PostGridClient
from printme_backend.send_manager import SendJobManager
from printme_backend.utils import make_blob_name

# Minimal PDF that is technically valid
PDF_CONTENT = b"""%PDF-1.4
1 0 obj
<< /Type /Catalog /Pages 2 0 R >>
endobj
2 0 obj
<< /Type /Pages /Kids [3 0 R] /Count 1 >>
endobj
3 0 obj
<< /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] >>
endobj
xref
0 4
0000000000 65535 f
0000000009 00000 n
0000000058 00000 n
0000000115 00000 n
trailer
<< /Size 4 /Root 1 0 R >>
startxref
196
%%EOF"""


@pytest.fixture(scope="session", autouse=True)
def test_dirs():
    """Remove the app's temporary data directory after the session."""
    data_dir = str(_DATA_DIR)
    yield {"data": data_dir}
    shutil.rmtree(data_dir, ignore_errors=True)


@pytest.fixture
def client():
    """Create a test client for the FastAPI app."""
    return TestClient(app)


@pytest.fixture
def sample_pdf():
    return PDF_CONTENT


@pytest.fixture
def store(tmp_path):
    return SendStore(tmp_path / "jobs.db")


@pytest.fixture
def blob_storage(tmp_path):
    return BlobStorage(local_dir=tmp_path / "blobs")


@pytest.fixture
def make_document(store, blob_storage):
    """Store a PDF blob and its metadata row, returning the document record."""

    def _make(filename="check.pdf", content=PDF_CONTENT, is_check=False):
        stored = blob_storage.put(content, make_blob_name(filename))
        return store.create_document({
            "filename": filename,
            "mime_type": "application/pdf",
            "size_bytes": len(content),
            "storage_url": stored.url,
            "blob_name": stored.blob_name,
            "is_check": is_check,
        })

    return _make


@pytest.fixture
def make_manager(store, blob_storage):
    """Build a SendJobManager over the test store; adapters default to simulation mode."""

    def _make(postal_mode=PostalMode.AUTO, postal_client=None, email_service=None):
        return SendJobManager(
            store=store,
            blob_storage=blob_storage,
            postal_client=postal_client or PostGridClient(),
            email_service=email_service or EmailService(),
            postal_mode=postal_mode,
        )

    return _make
