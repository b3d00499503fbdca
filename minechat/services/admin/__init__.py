"""Admin services."""

from minechat.services.admin.impersonation import (
    ImpersonationService,
    get_impersonation_service,
    reset_impersonation_service,
)

__all__ = ["ImpersonationService", "get_impersonation_service", "reset_impersonation_service"]
