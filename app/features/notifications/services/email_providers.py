"""
Email delivery providers.

Each provider sends exactly one message and raises EmailProviderError on any
failure. Choosing a provider, and never substituting another one, is the
router's job.
"""
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr, make_msgid
from typing import Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Email, Mail, To

from app.features.notifications.schemas.notification import (
    EmailContent,
    SendGridProviderConfig,
    SESProviderConfig,
    SMTPProviderConfig,
)
from app.platform.exceptions import ProviderError
from app.platform.logger import get_logger

logger = get_logger(__name__)


class EmailProviderError(ProviderError):
    def __init__(self, provider: str, message: str, cause: Optional[BaseException] = None):
        super().__init__(f"{provider}: {message}", cause=cause)
        self.provider = provider


class EmailProvider:
    name = "UNKNOWN"

    def send(self, to: str, content: EmailContent) -> str:
        """Send one message and return the provider's message id."""
        raise NotImplementedError


class SendGridProvider(EmailProvider):
    name = "SENDGRID"

    def __init__(self, config: SendGridProviderConfig, client: Optional[SendGridAPIClient] = None):
        self.config = config
        self.client = client or SendGridAPIClient(config.api_key)

    def send(self, to: str, content: EmailContent) -> str:
        message = Mail(
            from_email=Email(self.config.from_email, self.config.from_name),
            to_emails=To(to),
            subject=content.subject,
            plain_text_content=content.text,
            html_content=content.html,
        )

        try:
            response = self.client.send(message)
        except Exception as e:
            # python-http-client raises HTTPError subclasses per status code
            raise EmailProviderError(self.name, f"send failed: {e}", cause=e) from e

        if not 200 <= response.status_code < 300:
            logger.warning(f"SendGrid rejected message to {to}: {response.status_code} {response.body}")
            raise EmailProviderError(self.name, f"unexpected status code {response.status_code}")

        headers = response.headers or {}
        return headers.get("X-Message-Id") or headers.get("x-message-id") or "sendgrid-accepted"


class SESProvider(EmailProvider):
    name = "SES"

    def __init__(self, config: SESProviderConfig, client=None):
        self.config = config
        self.client = client or boto3.client("ses", region_name=config.region)

    def send(self, to: str, content: EmailContent) -> str:
        source = formataddr((self.config.from_name, self.config.from_email)) if self.config.from_name \
            else self.config.from_email
        try:
            response = self.client.send_email(
                Source=source,
                Destination={"ToAddresses": [to]},
                Message={
                    "Subject": {"Data": content.subject, "Charset": "UTF-8"},
                    "Body": {
                        "Html": {"Data": content.html, "Charset": "UTF-8"},
                        "Text": {"Data": content.text, "Charset": "UTF-8"},
                    },
                },
            )
        except (BotoCoreError, ClientError) as e:
            raise EmailProviderError(self.name, f"send failed: {e}", cause=e) from e
        return response["MessageId"]


class SMTPProvider(EmailProvider):
    name = "SMTP"

    def __init__(self, config: SMTPProviderConfig, timeout: int = 30):
        self.config = config
        self.timeout = timeout

    def _build_message(self, to: str, content: EmailContent) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = content.subject
        msg["From"] = formataddr((self.config.from_name, self.config.from_email)) if self.config.from_name \
            else self.config.from_email
        msg["To"] = to
        msg["Message-ID"] = make_msgid(domain=self.config.from_email.split("@")[-1])
        msg.attach(MIMEText(content.text, "plain"))
        msg.attach(MIMEText(content.html, "html"))
        return msg

    def send(self, to: str, content: EmailContent) -> str:
        msg = self._build_message(to, content)
        encryption = str(self.config.encryption).upper()

        try:
            if encryption == "SSL" or self.config.port == 465:
                context = ssl.create_default_context()
                with smtplib.SMTP_SSL(self.config.host, self.config.port, context=context, timeout=self.timeout) as server:
                    self._deliver(server, to, msg)
            else:
                with smtplib.SMTP(self.config.host, self.config.port, timeout=self.timeout) as server:
                    server.ehlo()
                    if encryption in ["TLS", "TRUE"]:
                        server.starttls()
                        server.ehlo()
                    self._deliver(server, to, msg)
        except (smtplib.SMTPException, OSError) as e:
            raise EmailProviderError(self.name, f"send failed: {e}", cause=e) from e

        return msg["Message-ID"]

    def _deliver(self, server: smtplib.SMTP, to: str, msg: MIMEMultipart) -> None:
        # Local catchers like Mailpit take no credentials
        if self.config.username and self.config.password:
            server.login(self.config.username, self.config.password)
        server.sendmail(self.config.from_email, to, msg.as_string())
