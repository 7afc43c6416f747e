"""
Notification Schemas

Queue payloads, routing configuration and results for scan completion emails.
"""
import enum
from typing import Dict, List, Optional, Union

from pydantic import BaseModel, Field, field_validator


class NotificationKind(str, enum.Enum):
    SCAN_COMPLETE = "scan_complete"
    SCAN_FAILED = "scan_failed"
    BATCH_COMPLETE = "batch_complete"
    AI_SCAN_COMPLETE = "ai_scan_complete"


class NotificationJob(BaseModel):
    """Payload of one notification job on the ``notifications.email`` queue."""
    subject_id: str = Field(..., min_length=1)
    recipient_address: str
    kind: NotificationKind

    @field_validator("recipient_address")
    @classmethod
    def validate_recipient_address(cls, v: str) -> str:
        # Local catchers like mailpit.local must pass, so no domain rules here
        v = v.strip()
        local, _, domain = v.rpartition("@")
        if not local or not domain or any(c.isspace() for c in v):
            raise ValueError("recipient_address must look like local@domain")
        return v


class NotificationResult(BaseModel):
    sent: bool
    email_nullified: bool
    message_id: Optional[str] = None
    provider: Optional[str] = None
    skipped_reason: Optional[str] = None


class EmailContent(BaseModel):
    subject: str
    html: str
    text: str


class EmailSendResult(BaseModel):
    message_id: str
    provider: str


# ============================================================================
# Provider routing
# ============================================================================

class ProviderId(str, enum.Enum):
    SENDGRID = "SENDGRID"
    SES = "SES"
    SMTP = "SMTP"


# Providers are checked in this order when matching patterns
PROVIDER_ORDER: List[ProviderId] = [ProviderId.SENDGRID, ProviderId.SES, ProviderId.SMTP]


class SendGridProviderConfig(BaseModel):
    api_key: str
    from_email: str
    from_name: Optional[str] = None
    patterns: List[str] = Field(default_factory=list)


class SESProviderConfig(BaseModel):
    region: str
    from_email: str
    from_name: Optional[str] = None
    patterns: List[str] = Field(default_factory=list)


class SMTPProviderConfig(BaseModel):
    host: str
    port: int
    username: Optional[str] = None
    password: Optional[str] = None
    encryption: str = "none"  # none, tls or ssl
    from_email: str
    from_name: Optional[str] = None
    patterns: List[str] = Field(default_factory=list)


ProviderConfig = Union[SendGridProviderConfig, SESProviderConfig, SMTPProviderConfig]


class EmailRoutingConfig(BaseModel):
    """
    Static routing table.

    ``providers`` holds only the configured providers; pattern order inside a
    provider is the order the patterns are tried in.
    """
    default_provider: ProviderId
    providers: Dict[ProviderId, ProviderConfig] = Field(default_factory=dict)
