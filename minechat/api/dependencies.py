"""FastAPI dependencies for dependency injection."""

from typing import Annotated

from fastapi import Depends, Header

from minechat.core.config import settings
from minechat.core.exceptions import AuthenticationRequired
from minechat.models import Identity
from minechat.services.admin.impersonation import (
    ImpersonationService,
    get_impersonation_service,
    reset_impersonation_service,
)
from minechat.services.assistant.pipeline import (
    AIResponsePipeline,
    get_response_pipeline,
    reset_response_pipeline,
)
from minechat.services.channels.messenger import reset_messenger_adapter
from minechat.services.connections.manager import (
    ChannelConnectionManager,
    get_connection_manager,
    reset_connection_manager,
)
from minechat.services.conversation.read_model import (
    ConversationReadModel,
    get_read_model,
    reset_read_model,
)
from minechat.services.llm.provider import reset_llm_provider
from minechat.services.secrets.store import reset_secret_store
from minechat.services.webhooks.gateway import (
    WebhookGateway,
    get_webhook_gateway,
    reset_webhook_gateway,
)
from minechat.storage.base import StorageBackend
from minechat.storage.memory import InMemoryStorage


# Storage singleton
_storage: StorageBackend | None = None


def get_storage() -> StorageBackend:
    """Get the storage backend singleton.

    Uses in-memory storage for development, Firestore for production
    or when a Firestore emulator is configured.
    """
    global _storage
    if _storage is None:
        use_firestore = settings.is_production or bool(settings.firestore_emulator_host)
        if use_firestore and settings.gcp_project_id:
            from minechat.storage.firestore import FirestoreStorage
            _storage = FirestoreStorage(project_id=settings.gcp_project_id)
        else:
            _storage = InMemoryStorage()
    return _storage


def reset_dependencies() -> None:
    """Reset all service singletons (for testing)."""
    reset_webhook_gateway()
    reset_response_pipeline()
    reset_connection_manager()
    reset_read_model()
    reset_impersonation_service()
    reset_secret_store()
    reset_messenger_adapter()
    reset_llm_provider()


# Type aliases for cleaner dependency injection
StorageDep = Annotated[StorageBackend, Depends(get_storage)]


def get_connections(storage: StorageDep) -> ChannelConnectionManager:
    """Get the connection manager with storage dependency."""
    return get_connection_manager(storage)


def get_conversations(storage: StorageDep) -> ConversationReadModel:
    """Get the conversation read model with storage dependency."""
    return get_read_model(storage)


def get_pipeline(storage: StorageDep) -> AIResponsePipeline:
    """Get the AI response pipeline with storage dependency."""
    return get_response_pipeline(storage)


def get_gateway(storage: StorageDep) -> WebhookGateway:
    """Get the webhook gateway with storage dependency."""
    return get_webhook_gateway(storage)


def get_impersonation(storage: StorageDep) -> ImpersonationService:
    """Get the impersonation service with storage dependency."""
    return get_impersonation_service(storage)


ConnectionsDep = Annotated[ChannelConnectionManager, Depends(get_connections)]
ConversationsDep = Annotated[ConversationReadModel, Depends(get_conversations)]
PipelineDep = Annotated[AIResponsePipeline, Depends(get_pipeline)]
GatewayDep = Annotated[WebhookGateway, Depends(get_gateway)]
ImpersonationDep = Annotated[ImpersonationService, Depends(get_impersonation)]


async def get_caller_id(x_user_id: Annotated[str | None, Header()] = None) -> str:
    """Authenticated user id, set by the upstream auth proxy."""
    if not x_user_id:
        raise AuthenticationRequired()
    return x_user_id


CallerIdDep = Annotated[str, Depends(get_caller_id)]


async def get_identity(caller_id: CallerIdDep, impersonation: ImpersonationDep) -> Identity:
    """Resolve the identity tenant-scoped endpoints act as.

    An admin with an active viewing session acts as the viewed tenant.
    """
    return await impersonation.resolve_identity(caller_id)


IdentityDep = Annotated[Identity, Depends(get_identity)]
