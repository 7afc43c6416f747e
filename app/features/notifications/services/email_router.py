"""
Email Router

Picks the delivery provider for a recipient by matching glob patterns, then
sends through that provider only. A provider failure is raised to the
caller as is; no other provider is ever tried in its place.

Supported patterns (case-insensitive):
    user@example.com      exact address
    *@example.com         any user at a domain
    *@*.example.com       any subdomain, nested ones included
    *+test@example.com    any user ending in a suffix
"""
from fnmatch import fnmatchcase
from typing import Dict, Optional

from app.features.notifications.schemas.notification import (
    PROVIDER_ORDER,
    EmailContent,
    EmailRoutingConfig,
    EmailSendResult,
    ProviderId,
    SendGridProviderConfig,
    SESProviderConfig,
    SMTPProviderConfig,
)
from app.features.notifications.services.email_providers import (
    EmailProvider,
    SendGridProvider,
    SESProvider,
    SMTPProvider,
)
from app.features.notifications.services.email_routing import RoutingConfigurationError
from app.platform.logger import get_logger

logger = get_logger(__name__)


def pattern_matches(address: str, pattern: str) -> bool:
    return fnmatchcase(address.strip().lower(), pattern.strip().lower())


def build_provider(config) -> EmailProvider:
    if isinstance(config, SendGridProviderConfig):
        return SendGridProvider(config)
    if isinstance(config, SESProviderConfig):
        return SESProvider(config)
    if isinstance(config, SMTPProviderConfig):
        return SMTPProvider(config)
    raise RoutingConfigurationError(f"Unsupported provider configuration: {type(config).__name__}")


class EmailRouter:
    def __init__(self, config: EmailRoutingConfig, providers: Optional[Dict[ProviderId, EmailProvider]] = None):
        """
        ``providers`` maps provider ids to ready provider instances; when
        omitted they are built from ``config``.
        """
        self.config = config
        if providers is None:
            providers = {provider_id: build_provider(cfg) for provider_id, cfg in config.providers.items()}
        self.providers = providers
        logger.info(
            f"EmailRouter: {len(self.providers)} provider(s) initialized, "
            f"default: {config.default_provider.value}"
        )

    def route(self, address: str) -> ProviderId:
        for provider_id in PROVIDER_ORDER:
            provider_config = self.config.providers.get(provider_id)
            if provider_config is None or provider_id not in self.providers:
                continue
            for pattern in provider_config.patterns:
                if pattern_matches(address, pattern):
                    logger.info(f"EmailRouter: matched pattern {pattern!r} -> {provider_id.value}")
                    return provider_id

        default = self.config.default_provider
        if default not in self.providers:
            raise RoutingConfigurationError(f"Default email provider {default.value} is not configured")
        return default

    def send(self, address: str, content: EmailContent) -> EmailSendResult:
        provider_id = self.route(address)
        message_id = self.providers[provider_id].send(address, content)
        return EmailSendResult(message_id=message_id, provider=provider_id.value)
