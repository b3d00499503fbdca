"""Admin endpoints: view-as-tenant and tenant seeding."""

from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from minechat.api.dependencies import CallerIdDep, ImpersonationDep, StorageDep
from minechat.core.exceptions import TenantNotFound
from minechat.models import (
    AdminLogEntry,
    BusinessInfo,
    Identity,
    Product,
    Tenant,
    TenantRole,
    ViewStatus,
)

logger = structlog.get_logger()


async def require_admin(caller_id: CallerIdDep, impersonation: ImpersonationDep) -> Tenant:
    """Admin check against the caller's own account, never the viewed tenant."""
    return await impersonation.require_admin(caller_id)


router = APIRouter(prefix="/admin", tags=["Admin"], dependencies=[Depends(require_admin)])


# ==================== Pydantic Schemas ====================


class TenantCreate(BaseModel):
    """Schema for creating a tenant."""

    id: str
    name: str
    email: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    role: TenantRole = TenantRole.USER


class BusinessUpdate(BaseModel):
    """Schema for the business reference data the assistant answers from."""

    company_name: str | None = None
    email: str | None = None
    phone_number: str | None = None
    address: str | None = None
    company_story: str | None = None
    faqs: str | None = None
    payment_details: str | None = None
    discounts: str | None = None
    policy: str | None = None
    additional_notes: str | None = None
    thank_you_message: str | None = None


class ProductCreate(BaseModel):
    """Schema for creating a product."""

    id: str
    name: str | None = None
    description: str | None = None
    price: str | None = None
    discounts: str | None = None
    payment_details: str | None = None
    policy: str | None = None
    faqs: str | None = None
    image_urls: list[str] = []


# ==================== View-as-tenant Endpoints ====================


@router.post("/view/stop", response_model=Identity)
async def stop_viewing(caller_id: CallerIdDep, impersonation: ImpersonationDep) -> Identity:
    """Return to the admin's own identity. Safe without an active session."""
    return await impersonation.stop_viewing(caller_id)


@router.get("/view/status", response_model=ViewStatus)
async def view_status(caller_id: CallerIdDep, impersonation: ImpersonationDep) -> ViewStatus:
    return await impersonation.view_status(caller_id)


@router.post("/view/{tenant_id}", response_model=Identity)
async def start_viewing(
    tenant_id: str,
    caller_id: CallerIdDep,
    impersonation: ImpersonationDep,
) -> Identity:
    """View the dashboard as another tenant."""
    return await impersonation.start_viewing(caller_id, tenant_id)


@router.get("/logs", response_model=list[AdminLogEntry])
async def list_admin_logs(storage: StorageDep, admin_id: str | None = None, limit: int = 50) -> list[AdminLogEntry]:
    return await storage.list_admin_logs(admin_id=admin_id, limit=limit)


# ==================== Tenant Endpoints ====================


@router.post("/tenants", response_model=Tenant, status_code=status.HTTP_201_CREATED)
async def create_tenant(data: TenantCreate, storage: StorageDep) -> Tenant:
    """Create a new tenant."""
    existing = await storage.get_tenant(data.id)
    if existing:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Tenant already exists: {data.id}",
        )

    tenant = Tenant(**data.model_dump())
    await storage.save_tenant(tenant)

    logger.info("Created tenant", tenant_id=tenant.id)

    return tenant


@router.get("/tenants", response_model=list[Tenant])
async def list_tenants(storage: StorageDep) -> list[Tenant]:
    """List all tenants."""
    return await storage.list_tenants()


@router.put("/tenants/{tenant_id}/business", response_model=BusinessInfo)
async def update_business_info(
    tenant_id: str,
    data: BusinessUpdate,
    storage: StorageDep,
) -> BusinessInfo:
    """Replace a tenant's business information."""
    if not await storage.get_tenant(tenant_id):
        raise TenantNotFound(tenant_id)

    info = BusinessInfo(tenant_id=tenant_id, **data.model_dump())
    await storage.save_business_info(info)

    logger.info("Updated business info", tenant_id=tenant_id)

    return info


@router.post("/tenants/{tenant_id}/products", response_model=Product, status_code=status.HTTP_201_CREATED)
async def add_product(
    tenant_id: str,
    data: ProductCreate,
    storage: StorageDep,
) -> Product:
    """Add or replace a product in a tenant's catalog."""
    if not await storage.get_tenant(tenant_id):
        raise TenantNotFound(tenant_id)

    product = Product(tenant_id=tenant_id, **data.model_dump())
    await storage.save_product(product)

    logger.info("Saved product", tenant_id=tenant_id, product_id=product.id)

    return product


@router.get("/tenants/{tenant_id}/products", response_model=list[Product])
async def list_products(tenant_id: str, storage: StorageDep) -> list[Product]:
    if not await storage.get_tenant(tenant_id):
        raise TenantNotFound(tenant_id)
    return await storage.list_products(tenant_id)


@router.get("/tenants/{tenant_id}")
async def get_tenant(tenant_id: str, storage: StorageDep) -> dict[str, Any]:
    """Tenant with its business info and channel state."""
    tenant = await storage.get_tenant(tenant_id)
    if not tenant:
        raise TenantNotFound(tenant_id)

    business = await storage.get_business_info(tenant_id)
    connection = await storage.get_connection(tenant_id)
    return {
        "tenant": tenant.model_dump(mode="json"),
        "business": business.model_dump(mode="json") if business else None,
        "channel_status": connection.status.value if connection else "disconnected",
        "page_name": connection.page_name if connection else None,
    }
