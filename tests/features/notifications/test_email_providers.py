from unittest.mock import MagicMock, patch

import pytest
from botocore.exceptions import ClientError

from app.features.notifications.schemas.notification import (
    EmailContent,
    SendGridProviderConfig,
    SESProviderConfig,
    SMTPProviderConfig,
)
from app.features.notifications.services.email_providers import (
    EmailProviderError,
    SendGridProvider,
    SESProvider,
    SMTPProvider,
)

CONTENT = EmailContent(subject="Scan complete", html="<p>done</p>", text="done")


class TestSendGridProvider:
    def _provider(self, client):
        config = SendGridProviderConfig(api_key="SG.key", from_email="noreply@example.com", from_name="A11y")
        return SendGridProvider(config, client=client)

    def test_returns_message_id(self):
        client = MagicMock()
        client.send.return_value = MagicMock(status_code=202, headers={"X-Message-Id": "sg-123"})

        assert self._provider(client).send("owner@example.com", CONTENT) == "sg-123"

    def test_non_2xx_raises(self):
        client = MagicMock()
        client.send.return_value = MagicMock(status_code=400, body="bad request", headers={})

        with pytest.raises(EmailProviderError) as exc_info:
            self._provider(client).send("owner@example.com", CONTENT)

        assert exc_info.value.provider == "SENDGRID"

    def test_client_exception_raises(self):
        client = MagicMock()
        client.send.side_effect = RuntimeError("HTTP Error 503")

        with pytest.raises(EmailProviderError):
            self._provider(client).send("owner@example.com", CONTENT)


class TestSESProvider:
    def _provider(self, client):
        return SESProvider(SESProviderConfig(region="us-east-1", from_email="noreply@example.com"), client=client)

    def test_sends_html_and_text(self):
        client = MagicMock()
        client.send_email.return_value = {"MessageId": "ses-1"}

        assert self._provider(client).send("owner@example.com", CONTENT) == "ses-1"
        kwargs = client.send_email.call_args.kwargs
        assert kwargs["Destination"] == {"ToAddresses": ["owner@example.com"]}
        assert kwargs["Message"]["Body"]["Text"]["Data"] == "done"

    def test_client_error_raises(self):
        client = MagicMock()
        client.send_email.side_effect = ClientError(
            {"Error": {"Code": "Throttling", "Message": "Rate exceeded"}}, "SendEmail"
        )

        with pytest.raises(EmailProviderError) as exc_info:
            self._provider(client).send("owner@example.com", CONTENT)

        assert exc_info.value.provider == "SES"


class TestSMTPProvider:
    def _provider(self, **overrides):
        values = dict(host="localhost", port=1025, from_email="noreply@example.com")
        values.update(overrides)
        return SMTPProvider(SMTPProviderConfig(**values))

    def test_plain_smtp_without_credentials(self):
        with patch("app.features.notifications.services.email_providers.smtplib.SMTP") as smtp:
            server = smtp.return_value.__enter__.return_value

            message_id = self._provider().send("owner@example.com", CONTENT)

        assert message_id.endswith("@example.com>")
        server.login.assert_not_called()
        server.starttls.assert_not_called()
        assert server.sendmail.call_args[0][:2] == ("noreply@example.com", "owner@example.com")

    def test_tls_with_credentials(self):
        with patch("app.features.notifications.services.email_providers.smtplib.SMTP") as smtp:
            server = smtp.return_value.__enter__.return_value

            self._provider(port=587, encryption="tls", username="user", password="secret").send(
                "owner@example.com", CONTENT
            )

        server.starttls.assert_called_once()
        server.login.assert_called_once_with("user", "secret")

    def test_connection_failure_raises(self):
        with patch(
            "app.features.notifications.services.email_providers.smtplib.SMTP",
            side_effect=ConnectionRefusedError("refused"),
        ):
            with pytest.raises(EmailProviderError) as exc_info:
                self._provider().send("owner@example.com", CONTENT)

        assert exc_info.value.provider == "SMTP"
