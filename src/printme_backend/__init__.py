"""
PrintMe Send Backend - document intake and outbound delivery tracking

This package provides a FastAPI-based web service that accepts uploaded PDF
documents and delivers them as "send jobs", either by postal mail through
the PostGrid API or by email through Amazon SES. It enables:

- PDF uploads stored in blob storage with metadata in SQLite
- Send job creation with per-method validation
- Dispatch to the postal (pdf/raw/auto payload modes) or email provider
- Asynchronous status updates through signed provider webhooks
- Manual status refresh against the postal provider

Without provider credentials every adapter runs in simulation mode, so the
full flow can be exercised locally.

Key Components:
    - main: FastAPI application and HTTP endpoint definitions
    - send_manager: Send job validation, dispatch and status refresh
    - webhooks: Provider callback authentication and reconciliation
    - postgrid / email_service: Delivery provider adapters
    - database: SQLite persistence for users, documents and send jobs
    - blob_storage: S3 (or local directory) storage for document bytes
    - documents: PDF upload validation and document records
    - auth: Bearer token verification against the identity provider
    - configuration: Settings from defaults, YAML and environment

Usage:
    Run the API server with:
        uvicorn printme_backend.main:app --reload --host 0.0.0.0 --port 3000

    Or use the development script:
        uv run uvicorn printme_backend.main:app --reload
"""
