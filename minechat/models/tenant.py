"""Tenant models and the tenant-owned assistant configuration."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from minechat.core.timeutils import utcnow


class TenantRole(str, Enum):
    """Role of the account owning a tenant."""

    USER = "user"
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"


class Tenant(BaseModel):
    """Tenant (business account) model."""

    id: str = Field(..., description="Unique tenant identifier")
    name: str = Field(..., description="Tenant display name")
    email: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    role: TenantRole = TenantRole.USER

    # Timestamps
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_admin(self) -> bool:
        return self.role in (TenantRole.ADMIN, TenantRole.SUPER_ADMIN)


class ResponseLength(str, Enum):
    """Generation-strength hint for replies."""

    SHORT = "short"
    NORMAL = "normal"
    LONG = "long"

    @property
    def max_tokens(self) -> int:
        return {"short": 100, "normal": 250, "long": 500}[self.value]


DEFAULT_ASSISTANT_NAME = "AI Assistant"


class AIAssistantProfile(BaseModel):
    """Persona and guidelines the tenant configured for its assistant."""

    tenant_id: str
    name: str = DEFAULT_ASSISTANT_NAME
    intro_message: str | None = None
    description: str | None = None
    guidelines: str | None = None
    response_length: ResponseLength = ResponseLength.NORMAL

    updated_at: datetime = Field(default_factory=utcnow)

    @classmethod
    def default(cls, tenant_id: str) -> "AIAssistantProfile":
        """Persona used when the tenant never saved a profile."""
        return cls(tenant_id=tenant_id)


class BusinessInfo(BaseModel):
    """Business reference data owned by the business-info collaborator."""

    tenant_id: str
    company_name: str | None = None
    email: str | None = None
    phone_number: str | None = None
    address: str | None = None
    company_story: str | None = None
    # "### Question\n\nAnswer" blocks
    faqs: str | None = None
    payment_details: str | None = None
    discounts: str | None = None
    policy: str | None = None
    additional_notes: str | None = None
    thank_you_message: str | None = None


class Product(BaseModel):
    """A product or service the assistant may talk about."""

    id: str
    tenant_id: str
    name: str | None = None
    description: str | None = None
    price: str | None = None
    discounts: str | None = None
    payment_details: str | None = None
    policy: str | None = None
    faqs: str | None = None
    image_urls: list[str] = Field(default_factory=list)
