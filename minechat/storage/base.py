"""Abstract base class for storage backends."""

from abc import ABC, abstractmethod
from typing import Any

from minechat.models import (
    AdminImpersonationSession,
    AdminLogEntry,
    AIAssistantProfile,
    BusinessInfo,
    ChannelConnection,
    Conversation,
    ConversationKey,
    Message,
    PendingAuthorization,
    Product,
    Tenant,
)


class StorageBackend(ABC):
    """Abstract storage backend interface.

    Compound operations (``apply_inbound``, ``append_outbound``,
    ``replace_connection``, ``reset_unread``, ``claim_event_key``) are atomic
    in every implementation; services never read-modify-write these records
    themselves.
    """

    # ==================== Tenant Operations ====================

    @abstractmethod
    async def get_tenant(self, tenant_id: str) -> Tenant | None:
        """Get a tenant by ID."""
        ...

    @abstractmethod
    async def save_tenant(self, tenant: Tenant) -> Tenant:
        """Save or update a tenant."""
        ...

    @abstractmethod
    async def list_tenants(self) -> list[Tenant]:
        """List all tenants."""
        ...

    # ==================== Assistant / Business Data ====================

    @abstractmethod
    async def get_assistant_profile(self, tenant_id: str) -> AIAssistantProfile | None:
        """Get the tenant's saved assistant profile."""
        ...

    @abstractmethod
    async def save_assistant_profile(self, profile: AIAssistantProfile) -> AIAssistantProfile:
        """Save the tenant's assistant profile."""
        ...

    @abstractmethod
    async def delete_assistant_profile(self, tenant_id: str) -> bool:
        """Remove the saved profile so the default persona applies."""
        ...

    @abstractmethod
    async def get_business_info(self, tenant_id: str) -> BusinessInfo | None:
        """Get business reference data for a tenant."""
        ...

    @abstractmethod
    async def save_business_info(self, info: BusinessInfo) -> BusinessInfo:
        """Save business reference data."""
        ...

    @abstractmethod
    async def list_products(self, tenant_id: str) -> list[Product]:
        """List a tenant's products."""
        ...

    @abstractmethod
    async def save_product(self, product: Product) -> Product:
        """Save or update a product."""
        ...

    # ==================== Channel Connection Operations ====================

    @abstractmethod
    async def get_connection(self, tenant_id: str) -> ChannelConnection | None:
        """Get the tenant's channel connection record."""
        ...

    @abstractmethod
    async def replace_connection(self, connection: ChannelConnection) -> ChannelConnection:
        """Replace the tenant's connection record in a single write."""
        ...

    @abstractmethod
    async def find_connection_by_page(self, page_id: str) -> ChannelConnection | None:
        """Find the connected record bound to an external page."""
        ...

    @abstractmethod
    async def save_pending_authorization(self, pending: PendingAuthorization) -> PendingAuthorization:
        """Store (overwrite) the tenant's in-flight OAuth handshake."""
        ...

    @abstractmethod
    async def get_pending_authorization(self, tenant_id: str) -> PendingAuthorization | None:
        """Get the tenant's in-flight OAuth handshake."""
        ...

    @abstractmethod
    async def delete_pending_authorization(self, tenant_id: str) -> bool:
        """Drop the tenant's in-flight OAuth handshake."""
        ...

    # ==================== Conversation Operations ====================

    @abstractmethod
    async def get_conversation(self, conversation_id: str) -> Conversation | None:
        """Get a conversation by ID."""
        ...

    @abstractmethod
    async def list_conversations(
        self,
        tenant_id: str,
        include_archived: bool = False,
        limit: int = 100,
    ) -> list[Conversation]:
        """List conversations for a tenant, most recent activity first."""
        ...

    @abstractmethod
    async def update_conversation(
        self,
        conversation_id: str,
        changes: dict[str, Any],
    ) -> Conversation | None:
        """Apply field changes (mode, archived) to a conversation."""
        ...

    @abstractmethod
    async def apply_inbound(self, key: ConversationKey, message: Message) -> Conversation:
        """Create the conversation if absent, append the message, unread += 1."""
        ...

    @abstractmethod
    async def append_outbound(self, conversation_id: str, message: Message) -> Message:
        """Append an outbound message without touching the unread count."""
        ...

    @abstractmethod
    async def reset_unread(
        self,
        tenant_id: str,
        conversation_ids: list[str] | None = None,
    ) -> int:
        """Zero unread counts (all of the tenant's when ids is None). Returns how many changed."""
        ...

    @abstractmethod
    async def unread_total(self, tenant_id: str) -> int:
        """Sum of unread counts over all the tenant's conversations, archived included."""
        ...

    # ==================== Message Operations ====================

    @abstractmethod
    async def get_message(self, message_id: str) -> Message | None:
        """Get a message by ID."""
        ...

    @abstractmethod
    async def get_messages(
        self,
        conversation_id: str,
        limit: int = 50,
        before_id: str | None = None,
    ) -> list[Message]:
        """Get messages for a conversation in chronological order."""
        ...

    # ==================== Secret Operations ====================

    @abstractmethod
    async def put_secret(self, ref: str, ciphertext: str) -> None:
        """Store an encrypted credential under an opaque reference."""
        ...

    @abstractmethod
    async def get_secret(self, ref: str) -> str | None:
        """Get the encrypted credential for a reference."""
        ...

    @abstractmethod
    async def delete_secret(self, ref: str) -> bool:
        """Delete the encrypted credential for a reference."""
        ...

    # ==================== Webhook Dedup ====================

    @abstractmethod
    async def claim_event_key(self, key: str, ttl_seconds: int) -> bool:
        """Record a dedup key. False if it was already recorded and unexpired."""
        ...

    # ==================== Admin Operations ====================

    @abstractmethod
    async def save_impersonation(self, session: AdminImpersonationSession) -> AdminImpersonationSession:
        """Upsert the admin's impersonation row."""
        ...

    @abstractmethod
    async def get_impersonation(self, admin_id: str) -> AdminImpersonationSession | None:
        """Get the admin's impersonation row."""
        ...

    @abstractmethod
    async def delete_impersonation(self, admin_id: str) -> bool:
        """Delete the admin's impersonation row."""
        ...

    @abstractmethod
    async def add_admin_log(self, entry: AdminLogEntry) -> AdminLogEntry:
        """Append an admin audit entry."""
        ...

    @abstractmethod
    async def list_admin_logs(self, admin_id: str | None = None, limit: int = 50) -> list[AdminLogEntry]:
        """List admin audit entries, newest first."""
        ...

    # ==================== Health Check ====================

    @abstractmethod
    async def health_check(self) -> bool:
        """Check if storage is healthy."""
        ...
