"""Admin "view as tenant" overlay and identity resolution."""

from uuid import uuid4

import structlog

from minechat.core.config import settings
from minechat.core.exceptions import AdminRoleRequired, AuthenticationRequired, TenantNotFound
from minechat.models import (
    AdminImpersonationSession,
    AdminLogEntry,
    Identity,
    Tenant,
    TenantRole,
    ViewStatus,
)
from minechat.storage.base import StorageBackend

logger = structlog.get_logger()


class ImpersonationService:
    """Explicit side table of admin id -> viewed tenant.

    The tenant's own data and sessions are never touched; only identity
    resolution for the admin's requests changes.
    """

    def __init__(self, storage: StorageBackend, ttl_seconds: int | None = None) -> None:
        self.storage = storage
        self.ttl_seconds = ttl_seconds or settings.impersonation_ttl_seconds

    async def start_viewing(self, admin_id: str, target_tenant_id: str) -> Identity:
        """Start viewing the dashboard as another tenant.

        Raises:
            AdminRoleRequired: Caller is not an admin
            TenantNotFound: Target tenant does not exist
        """
        admin = await self.require_admin(admin_id)
        target = await self.storage.get_tenant(target_tenant_id)
        if target is None:
            raise TenantNotFound(target_tenant_id)

        session = AdminImpersonationSession.open(admin.id, target.id, self.ttl_seconds)
        await self.storage.save_impersonation(session)
        await self._log(admin.id, "start_viewing", target.id, {"expires_at": session.expires_at.isoformat()})

        logger.info("Admin started viewing as tenant", admin_id=admin.id, target_tenant_id=target.id)
        return await self.resolve_identity(admin.id)

    async def stop_viewing(self, admin_id: str) -> Identity:
        """Stop viewing. Idempotent; always returns the admin's own identity."""
        session = await self.storage.get_impersonation(admin_id)
        if await self.storage.delete_impersonation(admin_id) and session:
            await self._log(admin_id, "stop_viewing", session.target_tenant_id)
            logger.info("Admin stopped viewing as tenant", admin_id=admin_id)

        return await self._own_identity(admin_id)

    async def resolve_identity(self, caller_id: str) -> Identity:
        """Identity for a request, honouring an active impersonation session."""
        own = await self._own_identity(caller_id)

        session = await self.storage.get_impersonation(caller_id)
        if session is None:
            return own
        if session.is_expired:
            await self.storage.delete_impersonation(caller_id)
            logger.info("Impersonation session expired", admin_id=caller_id)
            return own
        if own.role == TenantRole.USER:
            # Role revoked since the session started
            await self.storage.delete_impersonation(caller_id)
            return own

        target = await self.storage.get_tenant(session.target_tenant_id)
        if target is None:
            await self.storage.delete_impersonation(caller_id)
            return own

        identity = await self._identity_for(target)
        identity.original_user = own
        return identity

    async def view_status(self, admin_id: str) -> ViewStatus:
        session = await self.storage.get_impersonation(admin_id)
        if session is None or session.is_expired:
            return ViewStatus()

        business = await self.storage.get_business_info(session.target_tenant_id)
        target = await self.storage.get_tenant(session.target_tenant_id)
        return ViewStatus(
            is_viewing=True,
            target_tenant_id=session.target_tenant_id,
            business_name=(business.company_name if business else None) or (target.name if target else None),
            started_at=session.started_at,
            expires_at=session.expires_at,
        )

    # ==================== Helpers ====================

    async def require_admin(self, admin_id: str) -> Tenant:
        tenant = await self.storage.get_tenant(admin_id)
        if tenant is None or not tenant.is_admin:
            logger.warning("Non-admin attempted admin operation", user_id=admin_id)
            raise AdminRoleRequired(admin_id)
        return tenant

    async def _own_identity(self, caller_id: str) -> Identity:
        tenant = await self.storage.get_tenant(caller_id)
        if tenant is None:
            raise AuthenticationRequired()
        return await self._identity_for(tenant)

    async def _identity_for(self, tenant: Tenant) -> Identity:
        """Build identity attributes, synthesizing names from the business profile."""
        business = await self.storage.get_business_info(tenant.id)
        display = (business.company_name if business else None) or tenant.name
        first_name = tenant.first_name
        last_name = tenant.last_name
        if not first_name:
            first_name, _, rest = display.partition(" ")
            last_name = last_name or rest or None

        return Identity(
            tenant_id=tenant.id,
            name=display,
            first_name=first_name,
            last_name=last_name,
            email=tenant.email or (business.email if business else None),
            role=tenant.role,
        )

    async def _log(self, admin_id: str, action: str, target_tenant_id: str | None, details: dict | None = None) -> None:
        await self.storage.add_admin_log(
            AdminLogEntry(
                id=str(uuid4()),
                admin_id=admin_id,
                action=action,
                target_tenant_id=target_tenant_id,
                details=details or {},
            )
        )


# Factory function for creating the service with storage
_impersonation_instance: ImpersonationService | None = None


def get_impersonation_service(storage: StorageBackend | None = None) -> ImpersonationService:
    """Get or create the impersonation service.

    Args:
        storage: Storage backend (required on first call)

    Returns:
        ImpersonationService instance
    """
    global _impersonation_instance

    if _impersonation_instance is None:
        if storage is None:
            raise ValueError("Storage backend required for first initialization")
        _impersonation_instance = ImpersonationService(storage=storage)

    return _impersonation_instance


def reset_impersonation_service() -> None:
    """Reset the impersonation service singleton (for testing)."""
    global _impersonation_instance
    _impersonation_instance = None
