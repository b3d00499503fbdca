"""AI assistant profile endpoints."""

import structlog
from fastapi import APIRouter
from pydantic import BaseModel

from minechat.api.dependencies import IdentityDep, StorageDep
from minechat.core.timeutils import utcnow
from minechat.models import AIAssistantProfile, ResponseLength

logger = structlog.get_logger()

router = APIRouter(prefix="/assistant", tags=["Assistant"])


class AssistantUpdate(BaseModel):
    """Schema for updating the assistant persona."""

    name: str | None = None
    intro_message: str | None = None
    description: str | None = None
    guidelines: str | None = None
    response_length: ResponseLength | None = None


@router.get("", response_model=AIAssistantProfile)
async def get_assistant(identity: IdentityDep, storage: StorageDep) -> AIAssistantProfile:
    """Saved persona, or the default one."""
    profile = await storage.get_assistant_profile(identity.tenant_id)
    return profile or AIAssistantProfile.default(identity.tenant_id)


@router.put("", response_model=AIAssistantProfile)
async def update_assistant(
    data: AssistantUpdate,
    identity: IdentityDep,
    storage: StorageDep,
) -> AIAssistantProfile:
    """Update the persona. Omitted fields keep their current value."""
    profile = await storage.get_assistant_profile(identity.tenant_id)
    profile = profile or AIAssistantProfile.default(identity.tenant_id)

    updated = profile.model_copy(update={**data.model_dump(exclude_unset=True), "updated_at": utcnow()})
    if not updated.name:
        updated.name = AIAssistantProfile.default(identity.tenant_id).name

    await storage.save_assistant_profile(updated)
    logger.info("Updated assistant profile", tenant_id=identity.tenant_id)
    return updated


@router.post("/reset", response_model=AIAssistantProfile)
async def reset_assistant(identity: IdentityDep, storage: StorageDep) -> AIAssistantProfile:
    """Drop the saved persona and return the default."""
    await storage.delete_assistant_profile(identity.tenant_id)
    logger.info("Reset assistant profile", tenant_id=identity.tenant_id)
    return AIAssistantProfile.default(identity.tenant_id)
