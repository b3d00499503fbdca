"""Identity and admin impersonation models."""

from datetime import datetime, timedelta
from typing import Any

from pydantic import BaseModel, Field

from minechat.core.timeutils import utcnow
from minechat.models.tenant import TenantRole


class AdminImpersonationSession(BaseModel):
    """Side-table row: admin id -> tenant being viewed."""

    admin_id: str
    target_tenant_id: str
    started_at: datetime = Field(default_factory=utcnow)
    expires_at: datetime

    @classmethod
    def open(cls, admin_id: str, target_tenant_id: str, ttl_seconds: int) -> "AdminImpersonationSession":
        now = utcnow()
        return cls(
            admin_id=admin_id,
            target_tenant_id=target_tenant_id,
            started_at=now,
            expires_at=now + timedelta(seconds=ttl_seconds),
        )

    @property
    def is_expired(self) -> bool:
        return utcnow() >= self.expires_at


class Identity(BaseModel):
    """Resolved caller identity handed to tenant-scoped endpoints."""

    tenant_id: str
    name: str
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    role: TenantRole = TenantRole.USER

    # Set when an admin is viewing as this tenant
    original_user: "Identity | None" = None

    @property
    def is_impersonated(self) -> bool:
        return self.original_user is not None


class ViewStatus(BaseModel):
    """Current impersonation state for an admin."""

    is_viewing: bool = False
    target_tenant_id: str | None = None
    business_name: str | None = None
    started_at: datetime | None = None
    expires_at: datetime | None = None


class AdminLogEntry(BaseModel):
    """Audit trail entry for admin actions."""

    id: str
    admin_id: str
    action: str
    target_tenant_id: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)
