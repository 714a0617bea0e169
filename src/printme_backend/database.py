"""
SQLite persistence for users, documents, send jobs and their attachments.

Individual writes are atomic; multi-step sequences (create, attach, dispatch,
update) are not wrapped in one transaction, so concurrent writers to the same
job resolve last-writer-wins.
"""

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional
from uuid import uuid4

from .errors import PersistenceError
from .models import DocumentRecord, SendJobAttachment, SendJobDetail, SendMethod, UserRecord


# Default database path
DEFAULT_DB_PATH = Path("data/printme.db")

# Sentinel distinguishing "leave provider_response alone" from "store null"
_UNSET: Any = object()


def _ensure_db_dir(db_path: Path) -> None:
    """Ensure the database directory exists."""
    db_path.parent.mkdir(parents=True, exist_ok=True)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _serialize_datetime(dt: Optional[datetime]) -> Optional[str]:
    """Serialize datetime to ISO format string."""
    return dt.isoformat() if dt else None


def _deserialize_datetime(s: Optional[str]) -> Optional[datetime]:
    """Deserialize ISO format string to datetime."""
    if not s:
        return None
    return datetime.fromisoformat(s)


def _dump_json(value: Any) -> Optional[str]:
    return json.dumps(value) if value is not None else None


def _load_json(raw: Optional[str]) -> Any:
    return json.loads(raw) if raw else None


class SendStore:
    """
    SQLite store for the send service.

    Thread-safe: every call opens its own connection and SQLite serialises
    writers in WAL mode.
    """

    def __init__(self, db_path: Path = DEFAULT_DB_PATH):
        self.db_path = Path(db_path)
        _ensure_db_dir(self.db_path)
        self._init_db()

    @contextmanager
    def _get_connection(self):
        """Get a database connection with proper settings."""
        try:
            conn = sqlite3.connect(str(self.db_path), timeout=30.0)
        except sqlite3.Error as exc:
            raise PersistenceError(detail=f"Could not open database: {exc}") from exc
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA foreign_keys=ON")
            yield conn
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            raise PersistenceError(detail=str(exc)) from exc
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self._get_connection() as conn:
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS users (
                    id TEXT PRIMARY KEY,
                    subject_id TEXT UNIQUE NOT NULL,
                    email TEXT NOT NULL,
                    name TEXT,
                    role TEXT NOT NULL DEFAULT 'USER',
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS documents (
                    id TEXT PRIMARY KEY,
                    filename TEXT NOT NULL,
                    mime_type TEXT NOT NULL,
                    size_bytes INTEGER NOT NULL,
                    storage_url TEXT NOT NULL,
                    blob_name TEXT NOT NULL,
                    is_check INTEGER NOT NULL DEFAULT 0,
                    uploaded_by TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS send_jobs (
                    id TEXT PRIMARY KEY,
                    method TEXT NOT NULL,
                    status TEXT NOT NULL,
                    check_document_id TEXT REFERENCES documents(id),
                    recipient_json TEXT,
                    provider_id TEXT,
                    provider_response_json TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS send_job_attachments (
                    id TEXT PRIMARY KEY,
                    send_job_id TEXT NOT NULL REFERENCES send_jobs(id) ON DELETE CASCADE,
                    document_id TEXT NOT NULL REFERENCES documents(id),
                    created_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_documents_created_at ON documents(created_at DESC);
                CREATE INDEX IF NOT EXISTS idx_send_jobs_created_at ON send_jobs(created_at DESC);
                CREATE UNIQUE INDEX IF NOT EXISTS idx_send_jobs_provider_id_unique
                    ON send_jobs(provider_id) WHERE provider_id IS NOT NULL;
                CREATE INDEX IF NOT EXISTS idx_attachments_send_job ON send_job_attachments(send_job_id);
                CREATE INDEX IF NOT EXISTS idx_attachments_document ON send_job_attachments(document_id);
            """)

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        try:
            with self._get_connection() as conn:
                conn.execute("SELECT 1").fetchone()
            return True
        except PersistenceError:
            return False

    # -- users -------------------------------------------------------------

    def upsert_user(self, subject_id: str, email: Optional[str], name: Optional[str]) -> UserRecord:
        """
        Create the user for an identity subject, or refresh its email and name.

        Missing claims keep the stored values; a brand new user without an
        email claim gets a placeholder address derived from the subject.
        """
        now = _serialize_datetime(_now())
        with self._get_connection() as conn:
            row = conn.execute("SELECT * FROM users WHERE subject_id = ?", (subject_id,)).fetchone()
            if row is None:
                conn.execute(
                    "INSERT INTO users (id, subject_id, email, name, role, created_at, updated_at) "
                    "VALUES (?, ?, ?, ?, 'USER', ?, ?)",
                    (uuid4().hex, subject_id, email or f"{subject_id}@example", name, now, now),
                )
            elif row["email"] != email or row["name"] != name:
                conn.execute(
                    "UPDATE users SET email = ?, name = ?, updated_at = ? WHERE id = ?",
                    (email or row["email"], name or row["name"], now, row["id"]),
                )
            row = conn.execute("SELECT * FROM users WHERE subject_id = ?", (subject_id,)).fetchone()
            return UserRecord(
                id=row["id"],
                subject_id=row["subject_id"],
                email=row["email"],
                name=row["name"],
                role=row["role"],
                created_at=_deserialize_datetime(row["created_at"]),
                updated_at=_deserialize_datetime(row["updated_at"]),
            )

    # -- documents ---------------------------------------------------------

    def create_document(self, metadata: Dict[str, Any]) -> DocumentRecord:
        """
        Insert a document metadata row.

        Args:
            metadata: filename, mime_type, size_bytes, storage_url, blob_name,
                and optionally is_check and uploaded_by

        Returns:
            The stored document record
        """
        now = _now()
        record = DocumentRecord(
            id=uuid4().hex,
            filename=metadata.get("filename") or "file",
            mime_type=metadata.get("mime_type") or "application/pdf",
            size_bytes=metadata.get("size_bytes") or 0,
            storage_url=metadata["storage_url"],
            blob_name=metadata["blob_name"],
            is_check=bool(metadata.get("is_check")),
            uploaded_by=metadata.get("uploaded_by"),
            created_at=now,
            updated_at=now,
        )
        with self._get_connection() as conn:
            conn.execute("""
                INSERT INTO documents (
                    id, filename, mime_type, size_bytes, storage_url, blob_name,
                    is_check, uploaded_by, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                record.id,
                record.filename,
                record.mime_type,
                record.size_bytes,
                record.storage_url,
                record.blob_name,
                int(record.is_check),
                record.uploaded_by,
                _serialize_datetime(record.created_at),
                _serialize_datetime(record.updated_at),
            ))
        return record

    def get_document(self, document_id: str) -> Optional[DocumentRecord]:
        with self._get_connection() as conn:
            row = conn.execute("SELECT * FROM documents WHERE id = ?", (document_id,)).fetchone()
            return self._row_to_document(row) if row else None

    def list_documents(self) -> List[DocumentRecord]:
        """List all documents ordered by creation time (newest first)."""
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT * FROM documents ORDER BY created_at DESC, rowid DESC"
            ).fetchall()
            return [self._row_to_document(row) for row in rows]

    # -- send jobs ---------------------------------------------------------

    def create_send_job(
        self,
        method: SendMethod,
        status: str,
        check_document_id: Optional[str] = None,
        recipient: Optional[Dict[str, Any]] = None,
    ) -> str:
        """
        Insert a send job with no provider id and no provider response.

        Returns:
            The new job id
        """
        job_id = uuid4().hex
        now = _serialize_datetime(_now())
        with self._get_connection() as conn:
            conn.execute("""
                INSERT INTO send_jobs (
                    id, method, status, check_document_id, recipient_json,
                    provider_id, provider_response_json, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, NULL, NULL, ?, ?)
            """, (
                job_id,
                method.value,
                status,
                check_document_id,
                _dump_json(recipient),
                now,
                now,
            ))
        return job_id

    def add_attachment(self, send_job_id: str, document_id: str) -> str:
        attachment_id = uuid4().hex
        with self._get_connection() as conn:
            conn.execute(
                "INSERT INTO send_job_attachments (id, send_job_id, document_id, created_at) VALUES (?, ?, ?, ?)",
                (attachment_id, send_job_id, document_id, _serialize_datetime(_now())),
            )
        return attachment_id

    def get_send_job(self, job_id: str) -> Optional[SendJobDetail]:
        """
        Retrieve a send job with its check document and attachments loaded.

        Returns:
            The hydrated job or None if not found
        """
        with self._get_connection() as conn:
            row = conn.execute("SELECT * FROM send_jobs WHERE id = ?", (job_id,)).fetchone()
            return self._hydrate(conn, row) if row else None

    def find_send_job_by_provider_id(self, provider_id: str) -> Optional[SendJobDetail]:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM send_jobs WHERE provider_id = ?",
                (provider_id,),
            ).fetchone()
            return self._hydrate(conn, row) if row else None

    def list_send_jobs(self) -> List[SendJobDetail]:
        """List all send jobs ordered by creation time (newest first)."""
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT * FROM send_jobs ORDER BY created_at DESC, rowid DESC"
            ).fetchall()
            return [self._hydrate(conn, row) for row in rows]

    def update_send_job(
        self,
        job_id: str,
        status: Optional[str] = None,
        provider_id: Optional[str] = None,
        provider_response: Any = _UNSET,
    ) -> Optional[SendJobDetail]:
        """
        Update the mutable fields of a send job and refresh updated_at.

        ``method``, recipient and the check document have no update path.
        A provider id is only written while the stored one is still NULL,
        and no two jobs may carry the same provider id.

        Args:
            job_id: The job to update
            status: New status, if any
            provider_id: Provider correlation id, if the provider assigned one
            provider_response: Latest raw provider response; overwrites the previous one

        Returns:
            The hydrated job after the update, or None if it does not exist

        Raises:
            PersistenceError: ``duplicate_provider_id`` if another job already has the provider id
        """
        updates = ["updated_at = ?"]
        values: List[Any] = [_serialize_datetime(_now())]

        if status is not None:
            updates.append("status = ?")
            values.append(status)

        if provider_id is not None:
            updates.append("provider_id = COALESCE(provider_id, ?)")
            values.append(provider_id)

        if provider_response is not _UNSET:
            updates.append("provider_response_json = ?")
            values.append(_dump_json(provider_response))

        values.append(job_id)

        with self._get_connection() as conn:
            try:
                cursor = conn.execute(
                    f"UPDATE send_jobs SET {', '.join(updates)} WHERE id = ?",
                    values,
                )
            except sqlite3.IntegrityError as exc:
                raise PersistenceError(
                    "duplicate_provider_id",
                    f"Provider id {provider_id} already belongs to another send job",
                ) from exc
            if cursor.rowcount == 0:
                return None
            row = conn.execute("SELECT * FROM send_jobs WHERE id = ?", (job_id,)).fetchone()
            return self._hydrate(conn, row)

    # -- row mapping -------------------------------------------------------

    def _hydrate(self, conn: sqlite3.Connection, row: sqlite3.Row) -> SendJobDetail:
        check_document = None
        if row["check_document_id"]:
            doc_row = conn.execute(
                "SELECT * FROM documents WHERE id = ?", (row["check_document_id"],)
            ).fetchone()
            check_document = self._row_to_document(doc_row) if doc_row else None

        attachment_rows = conn.execute("""
            SELECT a.id AS attachment_id, a.send_job_id, a.document_id,
                   a.created_at AS attached_at, d.*
            FROM send_job_attachments a
            JOIN documents d ON d.id = a.document_id
            WHERE a.send_job_id = ?
            ORDER BY a.rowid
        """, (row["id"],)).fetchall()

        attachments = [
            SendJobAttachment(
                id=att["attachment_id"],
                send_job_id=att["send_job_id"],
                document_id=att["document_id"],
                created_at=_deserialize_datetime(att["attached_at"]),
                document=self._row_to_document(att),
            )
            for att in attachment_rows
        ]

        return SendJobDetail(
            id=row["id"],
            method=SendMethod(row["method"]),
            status=row["status"],
            check_document_id=row["check_document_id"],
            check_document=check_document,
            recipient=_load_json(row["recipient_json"]),
            provider_id=row["provider_id"],
            provider_response=_load_json(row["provider_response_json"]),
            attachments=attachments,
            created_at=_deserialize_datetime(row["created_at"]),
            updated_at=_deserialize_datetime(row["updated_at"]),
        )

    def _row_to_document(self, row: sqlite3.Row) -> DocumentRecord:
        """Convert a documents row (or a join row carrying its columns) to a record."""
        return DocumentRecord(
            id=row["id"],
            filename=row["filename"],
            mime_type=row["mime_type"],
            size_bytes=row["size_bytes"],
            storage_url=row["storage_url"],
            blob_name=row["blob_name"],
            is_check=bool(row["is_check"]),
            uploaded_by=row["uploaded_by"],
            created_at=_deserialize_datetime(row["created_at"]),
            updated_at=_deserialize_datetime(row["updated_at"]),
        )
