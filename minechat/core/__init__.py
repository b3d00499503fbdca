"""Core module - configuration and utilities."""

from minechat.core.config import settings
from minechat.core.exceptions import (
    AppException,
    AuthorizationDenied,
    AuthorizationExpired,
    ChannelNotConnected,
    ConfigurationError,
    DuplicateEvent,
    ProviderAPIError,
    ProviderUnavailable,
    RateLimited,
    TenantNotFound,
    TokenInvalid,
    WebhookVerificationFailure,
)

__all__ = [
    "settings",
    "AppException",
    "AuthorizationDenied",
    "AuthorizationExpired",
    "ChannelNotConnected",
    "ConfigurationError",
    "DuplicateEvent",
    "ProviderAPIError",
    "ProviderUnavailable",
    "RateLimited",
    "TenantNotFound",
    "TokenInvalid",
    "WebhookVerificationFailure",
]
