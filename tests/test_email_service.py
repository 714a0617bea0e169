"""
Tests for the SES email adapter.
"""

from email import message_from_string
from unittest.mock import Mock

import pytest
from botocore.exceptions import ClientError

from printme_backend.email_service import EmailService
from printme_backend.errors import AdapterError
from printme_backend.models import EmailAttachment


@pytest.fixture
def attachment(sample_pdf):
    return EmailAttachment(filename="check.pdf", content_type="application/pdf", content=sample_pdf)


class TestSimulatedEmail:
    """Behaviour without a configured sender."""

    def test_not_configured_without_sender(self):
        assert not EmailService().is_configured
        assert not EmailService(sender="").is_configured

    def test_simulated_send(self, attachment):
        result = EmailService().send("Check Delivery", "Attached documents.", ["a@example.com"], [attachment])

        assert result.status == "QUEUED"
        assert result.simulated is True
        assert result.provider_id is None
        assert result.raw == {"to": ["a@example.com"], "subject": "Check Delivery", "attachments": ["check.pdf"]}


class TestSESEmail:
    """Sending through a mocked SES client."""

    def test_send_raw_email(self, attachment, sample_pdf):
        ses = Mock()
        ses.send_raw_email.return_value = {"MessageId": "msg-0001"}
        service = EmailService(sender="noreply@example.com", client=ses)

        result = service.send("Your check", "See attached", ["a@example.com", "b@example.com"], [attachment])

        kwargs = ses.send_raw_email.call_args.kwargs
        assert kwargs["Source"] == "noreply@example.com"
        assert kwargs["Destinations"] == ["a@example.com", "b@example.com"]

        message = message_from_string(kwargs["RawMessage"]["Data"])
        assert message["Subject"] == "Your check"
        assert message["To"] == "a@example.com, b@example.com"
        parts = [part for part in message.walk() if part.get_filename()]
        assert [part.get_filename() for part in parts] == ["check.pdf"]
        assert parts[0].get_content_type() == "application/pdf"
        assert parts[0].get_payload(decode=True) == sample_pdf

        assert result.provider_id == "msg-0001"
        assert result.status == "SUBMITTED"
        assert result.simulated is False

    def test_send_without_attachments(self):
        ses = Mock()
        ses.send_raw_email.return_value = {"MessageId": "msg-0002"}

        EmailService(sender="noreply@example.com", client=ses).send("Hi", "Body", ["a@example.com"])

        message = message_from_string(ses.send_raw_email.call_args.kwargs["RawMessage"]["Data"])
        assert [part.get_filename() for part in message.walk() if part.get_filename()] == []

    def test_rejection_raises_adapter_error(self):
        ses = Mock()
        ses.send_raw_email.side_effect = ClientError(
            {"Error": {"Code": "MessageRejected", "Message": "Email address is not verified."}},
            "SendRawEmail",
        )

        with pytest.raises(AdapterError) as exc_info:
            EmailService(sender="noreply@example.com", client=ses).send("Hi", "Body", ["a@example.com"])
        assert "MessageRejected" in exc_info.value.detail
