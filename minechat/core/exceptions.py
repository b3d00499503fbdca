"""Custom exceptions for the application."""

from typing import Any


class AppException(Exception):
    """Base exception for application errors."""

    status_code: int = 400

    def __init__(
        self,
        message: str,
        code: str = "INTERNAL_ERROR",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}


class ConfigurationError(AppException):
    """Raised when there's a configuration problem."""

    status_code = 500

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message, code="CONFIGURATION_ERROR", details=details)


class AuthenticationRequired(AppException):
    """Raised when a request carries no caller identity."""

    status_code = 401

    def __init__(self) -> None:
        super().__init__("Authentication required", code="AUTHENTICATION_REQUIRED")


class TenantNotFound(AppException):
    """Raised when a tenant is not found."""

    status_code = 404

    def __init__(self, tenant_id: str) -> None:
        super().__init__(
            f"Tenant not found: {tenant_id}",
            code="TENANT_NOT_FOUND",
            details={"tenant_id": tenant_id},
        )


class ConversationNotFound(AppException):
    """Raised when a conversation does not exist or belongs to another tenant."""

    status_code = 404

    def __init__(self, conversation_id: str) -> None:
        super().__init__(
            "Conversation not found",
            code="CONVERSATION_NOT_FOUND",
            details={"conversation_id": conversation_id},
        )


class AdminRoleRequired(AppException):
    """Raised when a non-admin calls an admin-only operation."""

    status_code = 403

    def __init__(self, user_id: str) -> None:
        super().__init__(
            "Admin access required",
            code="ADMIN_ROLE_REQUIRED",
            details={"user_id": user_id},
        )


# ==================== Channel authorization ====================


class AuthorizationDenied(AppException):
    """Raised when the tenant declined consent on the provider dialog."""

    def __init__(self, reason: str = "access_denied") -> None:
        super().__init__(
            "Authorization was denied on the provider",
            code="AUTHORIZATION_DENIED",
            details={"reason": reason},
        )


class AuthorizationExpired(AppException):
    """Raised when the authorization code or state is stale or unknown."""

    def __init__(self, reason: str = "expired") -> None:
        super().__init__(
            "Authorization expired, please start again",
            code="AUTHORIZATION_EXPIRED",
            details={"reason": reason},
        )


class InvalidConnectionState(AppException):
    """Raised when an operation is not allowed in the current connection state."""

    status_code = 409

    def __init__(self, operation: str, current: str) -> None:
        super().__init__(
            f"Cannot {operation} while connection is {current}",
            code="INVALID_CONNECTION_STATE",
            details={"operation": operation, "status": current},
        )


class PageNotFound(AppException):
    """Raised when the selected page is not among the authorized pages."""

    status_code = 404

    def __init__(self, page_id: str) -> None:
        super().__init__(
            f"Selected page not found: {page_id}",
            code="PAGE_NOT_FOUND",
            details={"page_id": page_id},
        )


# ==================== Provider errors ====================


class ProviderError(AppException):
    """Base class for failures talking to the messaging provider."""

    status_code = 502


class ProviderUnavailable(ProviderError):
    """Transient provider failure; safe to retry from the UI."""

    status_code = 503

    def __init__(self, message: str = "Messaging provider unavailable", details: dict[str, Any] | None = None) -> None:
        super().__init__(message, code="PROVIDER_UNAVAILABLE", details=details)


class TokenInvalid(ProviderError):
    """The provider rejected the stored credential; reconnect required."""

    status_code = 409

    def __init__(self, tenant_id: str | None = None, details: dict[str, Any] | None = None) -> None:
        super().__init__(
            "Channel credential rejected, reconnect required",
            code="TOKEN_INVALID",
            details={**(details or {}), "tenant_id": tenant_id},
        )


class RateLimited(ProviderError):
    """The provider throttled the request."""

    status_code = 429

    def __init__(self, details: dict[str, Any] | None = None) -> None:
        super().__init__("Messaging provider rate limit reached", code="RATE_LIMITED", details=details)


class ProviderAPIError(ProviderError):
    """Any other error returned by the provider API."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message, code="PROVIDER_API_ERROR", details=details)


class ChannelNotConnected(AppException):
    """Raised when sending for a tenant without a connected page."""

    status_code = 409

    def __init__(self, tenant_id: str) -> None:
        super().__init__(
            "No connected channel, reconnect required",
            code="CHANNEL_NOT_CONNECTED",
            details={"tenant_id": tenant_id},
        )


# ==================== Webhook ingestion ====================


class WebhookVerificationFailure(AppException):
    """Raised when a webhook challenge or signature does not verify."""

    status_code = 403

    def __init__(self, reason: str) -> None:
        super().__init__(
            "Webhook verification failed",
            code="WEBHOOK_VERIFICATION_FAILED",
            details={"reason": reason},
        )


class MalformedPayload(AppException):
    """Raised when a webhook request is structurally invalid."""

    def __init__(self, reason: str) -> None:
        super().__init__(
            f"Malformed webhook payload: {reason}",
            code="MALFORMED_PAYLOAD",
            details={"reason": reason},
        )


class DuplicateEvent(AppException):
    """A webhook event was already ingested; ignored by callers."""

    status_code = 200

    def __init__(self, dedup_key: str) -> None:
        super().__init__(
            "Duplicate webhook event",
            code="DUPLICATE_EVENT",
            details={"dedup_key": dedup_key},
        )


class LLMError(AppException):
    """Raised when LLM provider fails."""

    status_code = 502

    def __init__(self, message: str, provider: str | None = None) -> None:
        super().__init__(
            message,
            code="LLM_ERROR",
            details={"provider": provider} if provider else {},
        )
