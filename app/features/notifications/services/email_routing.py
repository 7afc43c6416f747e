"""
Email routing configuration.

Built once at worker start from settings and passed to the EmailRouter.
Patterns are comma separated globs per provider, for example::

    EMAIL_DEFAULT_PROVIDER=SES
    EMAIL_SENDGRID_PATTERNS=*@gmail.com,*@*.edu
    EMAIL_SMTP_PATTERNS=*@mailpit.local
"""
from typing import List, Optional

from app.features.notifications.schemas.notification import (
    PROVIDER_ORDER,
    EmailRoutingConfig,
    ProviderId,
    SendGridProviderConfig,
    SESProviderConfig,
    SMTPProviderConfig,
)
from app.platform.config import Settings
from app.platform.exceptions import PipelineError
from app.platform.logger import get_logger

logger = get_logger(__name__)


class RoutingConfigurationError(PipelineError):
    """Routing cannot work with this configuration. Fatal, never retried."""

    code = "ROUTING_CONFIGURATION_ERROR"


def parse_patterns(raw: Optional[str]) -> List[str]:
    if not raw or not raw.strip():
        return []
    return [p.strip() for p in raw.split(",") if p.strip()]


def validate_routing_config(config: EmailRoutingConfig) -> None:
    if config.default_provider not in config.providers:
        raise RoutingConfigurationError(
            f"Default email provider {config.default_provider.value} is not configured"
        )


def load_email_routing_config(settings: Settings) -> EmailRoutingConfig:
    """
    SendGrid needs an API key, every provider needs a from address. A
    provider missing either is left out of the table, and a default
    provider left out that way is a configuration error.
    """
    providers = {}
    from_email = settings.MAIL_FROM_ADDRESS

    if from_email and settings.SENDGRID_API_KEY:
        providers[ProviderId.SENDGRID] = SendGridProviderConfig(
            api_key=settings.SENDGRID_API_KEY,
            from_email=from_email,
            from_name=settings.MAIL_FROM_NAME,
            patterns=parse_patterns(settings.EMAIL_SENDGRID_PATTERNS),
        )

    if from_email:
        providers[ProviderId.SES] = SESProviderConfig(
            region=settings.AWS_SES_REGION,
            from_email=from_email,
            from_name=settings.MAIL_FROM_NAME,
            patterns=parse_patterns(settings.EMAIL_SES_PATTERNS),
        )
        providers[ProviderId.SMTP] = SMTPProviderConfig(
            host=settings.MAIL_HOST,
            port=settings.MAIL_PORT,
            username=settings.MAIL_USERNAME,
            password=settings.MAIL_PASSWORD,
            encryption=settings.MAIL_ENCRYPTION,
            from_email=from_email,
            from_name=settings.MAIL_FROM_NAME,
            patterns=parse_patterns(settings.EMAIL_SMTP_PATTERNS),
        )

    config = EmailRoutingConfig(default_provider=ProviderId(settings.EMAIL_DEFAULT_PROVIDER), providers=providers)
    validate_routing_config(config)
    log_routing_config(config)
    return config


def log_routing_config(config: EmailRoutingConfig) -> None:
    logger.info(f"Email routing default provider: {config.default_provider.value}")
    for provider_id in PROVIDER_ORDER:
        provider = config.providers.get(provider_id)
        if provider is None:
            continue
        patterns = ", ".join(provider.patterns) if provider.patterns else "(none)"
        logger.info(f"Email routing {provider_id.value} patterns: {patterns}")
