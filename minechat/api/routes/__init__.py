"""API routes."""

from minechat.api.routes.account import router as account_router
from minechat.api.routes.admin import router as admin_router
from minechat.api.routes.assistant import router as assistant_router
from minechat.api.routes.channels import router as channels_router
from minechat.api.routes.conversations import router as conversations_router
from minechat.api.routes.health import router as health_router
from minechat.api.routes.webhooks import router as webhooks_router

__all__ = [
    "account_router",
    "admin_router",
    "assistant_router",
    "channels_router",
    "conversations_router",
    "health_router",
    "webhooks_router",
]
