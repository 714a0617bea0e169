"""
PostGrid postal delivery adapter.

Submits letter/check jobs to the PostGrid API and queries their status.
Without an API key and URL the client runs in simulation mode: it never
touches the network and answers with plausible synthesized results, which
keeps the whole send flow usable in local development and tests.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional
from urllib.parse import quote
from uuid import uuid4

import requests

from .configuration import PostGridSettings
from .errors import AdapterError
from .models import PostalMode, PostalSendPayload, ProviderResult, SendStatus

logger = logging.getLogger(__name__)

PROVIDER_ID_PREFIX = "postgrid_"


def _synthetic_provider_id() -> str:
    return f"{PROVIDER_ID_PREFIX}{uuid4().hex}"


def _error_message(exc: requests.RequestException, fallback: str) -> str:
    """Prefer the provider's own ``message`` field over the transport error text."""
    response = getattr(exc, "response", None)
    if response is not None:
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict) and body.get("message"):
            return str(body["message"])
    return str(exc) or fallback


class PostGridClient:
    """
    Thin PostGrid API client.

    Attributes:
        api_key: Bearer token for the API; simulation mode when missing
        api_url: Base URL, e.g. https://api.postgrid.com; simulation mode when missing
        supports_raw: Whether the account accepts raw check data instead of PDFs
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        api_url: Optional[str] = None,
        supports_raw: bool = False,
        timeout: float = 20.0,
        status_timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.api_key = api_key
        self.api_url = api_url.rstrip("/") if api_url else None
        self.supports_raw = supports_raw
        self.timeout = timeout
        self.status_timeout = status_timeout
        self._session = session

    @classmethod
    def from_settings(cls, settings: PostGridSettings) -> "PostGridClient":
        return cls(
            api_key=settings.api_key,
            api_url=settings.api_url,
            supports_raw=settings.supports_raw,
            timeout=settings.timeout_seconds,
            status_timeout=settings.status_timeout_seconds,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key and self.api_url)

    @property
    def session(self) -> requests.Session:
        if self._session is None:
            self._session = requests.Session()
        return self._session

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"}

    def resolve_mode(self, mode: PostalMode, payload: PostalSendPayload) -> PostalMode:
        """
        Resolve ``auto`` to a concrete payload mode for this call.

        ``auto`` becomes ``raw`` when the account supports raw data, and also
        when there are no documents to send as files; otherwise ``pdf``.
        """
        if mode is not PostalMode.AUTO:
            return mode
        if self.supports_raw or not payload.document_ids:
            return PostalMode.RAW
        return PostalMode.PDF

    def send(self, payload: PostalSendPayload, mode: PostalMode = PostalMode.PDF) -> ProviderResult:
        """
        Submit a send job to PostGrid.

        Args:
            payload: Job id, recipient, check data and document ids
            mode: pdf, raw or auto

        Returns:
            ProviderResult with the provider id, status and raw response

        Raises:
            AdapterError: If the provider is unreachable, times out or rejects the request
        """
        effective_mode = self.resolve_mode(mode, payload)

        if not self.is_configured:
            provider_id = _synthetic_provider_id()
            logger.info(f"PostGrid not configured; simulating {effective_mode.value} send for job {payload.job_id} as {provider_id}")
            return ProviderResult(
                provider_id=provider_id,
                status=SendStatus.QUEUED.value,
                simulated=True,
                mode=effective_mode,
                raw={"jobId": payload.job_id},
            )

        if effective_mode is PostalMode.RAW:
            url = f"{self.api_url}/raw/send"
            body: Dict[str, Any] = {
                "recipient": payload.recipient,
                "checkData": payload.check_data,
                "attachments": payload.attachment_document_ids or payload.document_ids,
                "metadata": {"jobId": payload.job_id, "mode": effective_mode.value},
            }
        else:
            url = f"{self.api_url}/send"
            body = {
                "recipient": payload.recipient,
                "files": payload.document_ids,
                "metadata": {"jobId": payload.job_id, "mode": effective_mode.value},
            }

        try:
            response = self.session.post(url, json=body, headers=self._headers(), timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except requests.RequestException as exc:
            message = _error_message(exc, "postgrid_error")
            logger.error(f"PostGrid send failed for job {payload.job_id}: {message}")
            raise AdapterError(detail=message) from exc
        except ValueError as exc:
            raise AdapterError(detail="postgrid_invalid_response") from exc

        data = data if isinstance(data, dict) else {}
        return ProviderResult(
            provider_id=str(data.get("id") or data.get("jobId") or _synthetic_provider_id()),
            status=data.get("status") or SendStatus.SUBMITTED.value,
            mode=effective_mode,
            raw=data,
        )

    def get_status(self, provider_id: str) -> ProviderResult:
        """
        Query the current delivery status of a submitted job.

        Raises:
            AdapterError: If the provider is unreachable, times out or rejects the request
        """
        if not self.is_configured:
            return ProviderResult(provider_id=provider_id, status=SendStatus.DELIVERED.value, simulated=True)

        url = f"{self.api_url}/status/{quote(provider_id, safe='')}"
        try:
            response = self.session.get(url, headers=self._headers(), timeout=self.status_timeout)
            response.raise_for_status()
            data = response.json()
        except requests.RequestException as exc:
            message = _error_message(exc, "postgrid_status_error")
            logger.error(f"PostGrid status query failed for {provider_id}: {message}")
            raise AdapterError(detail=message) from exc
        except ValueError as exc:
            raise AdapterError(detail="postgrid_invalid_response") from exc

        data = data if isinstance(data, dict) else {}
        return ProviderResult(
            provider_id=provider_id,
            status=data.get("status") or SendStatus.UNKNOWN.value,
            raw=data,
        )
