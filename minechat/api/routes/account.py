"""Caller identity endpoint."""

from fastapi import APIRouter

from minechat.api.dependencies import IdentityDep
from minechat.models import Identity

router = APIRouter(tags=["Account"])


@router.get("/me", response_model=Identity)
async def me(identity: IdentityDep) -> Identity:
    """Resolved identity; ``original_user`` is set while an admin views as a tenant."""
    return identity
