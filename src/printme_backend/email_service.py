"""
Email delivery adapter backed by Amazon SES.

Messages are sent as raw MIME so PDF attachments travel with them. Without
a configured sender address the service runs in simulation mode and only
reports what it would have sent.
"""

from __future__ import annotations

import logging
from email.mime.application import MIMEApplication
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import List, Optional, Sequence

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .configuration import EmailSettings
from .errors import AdapterError
from .models import EmailAttachment, ProviderResult, SendStatus

logger = logging.getLogger(__name__)


class EmailService:
    """Sends delivery emails through SES."""

    def __init__(self, sender: Optional[str] = None, region: Optional[str] = None, client=None) -> None:
        self.sender = sender or None
        self.region = region
        self._client = client

    @classmethod
    def from_settings(cls, settings: EmailSettings) -> "EmailService":
        return cls(sender=settings.sender_address, region=settings.region)

    @property
    def is_configured(self) -> bool:
        return self.sender is not None

    def _get_client(self):
        if self._client is None:
            self._client = boto3.client("ses", region_name=self.region) if self.region else boto3.client("ses")
        return self._client

    def _build_message(
        self,
        subject: str,
        body: str,
        recipients: Sequence[str],
        attachments: Sequence[EmailAttachment],
    ) -> MIMEMultipart:
        msg = MIMEMultipart("mixed")
        msg["Subject"] = subject
        msg["From"] = self.sender
        msg["To"] = ", ".join(recipients)
        msg.attach(MIMEText(body, "plain"))

        for attachment in attachments:
            subtype = attachment.content_type.partition("/")[2]
            part = MIMEApplication(attachment.content, _subtype=subtype or "octet-stream")
            part.add_header("Content-Disposition", "attachment", filename=attachment.filename)
            msg.attach(part)
        return msg

    def send(
        self,
        subject: str,
        body: str,
        recipients: List[str],
        attachments: Optional[List[EmailAttachment]] = None,
    ) -> ProviderResult:
        """
        Send one email and wait for SES to accept it.

        Args:
            subject: Subject line
            body: Plain-text body
            recipients: Destination addresses
            attachments: Files to attach, already resolved to bytes

        Returns:
            ProviderResult whose provider_id is the SES message id

        Raises:
            AdapterError: If SES rejects the message or cannot be reached
        """
        attachments = attachments or []

        if not self.is_configured:
            logger.info(f"Email sender not configured; simulating send to {', '.join(recipients)}")
            return ProviderResult(
                status=SendStatus.QUEUED.value,
                simulated=True,
                raw={
                    "to": list(recipients),
                    "subject": subject,
                    "attachments": [attachment.filename for attachment in attachments],
                },
            )

        msg = self._build_message(subject, body, recipients, attachments)
        try:
            response = self._get_client().send_raw_email(
                Source=self.sender,
                Destinations=list(recipients),
                RawMessage={"Data": msg.as_string()},
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to send email '{subject}': {e}")
            raise AdapterError(detail=str(e)) from e

        message_id = response.get("MessageId")
        logger.info(f"Email sent to {', '.join(recipients)} as {message_id}")
        return ProviderResult(
            provider_id=message_id,
            status=SendStatus.SUBMITTED.value,
            raw={"messageId": message_id, "to": list(recipients), "subject": subject},
        )
