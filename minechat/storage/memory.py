"""In-memory storage backend for development and testing."""

import asyncio
from datetime import datetime, timedelta
from typing import Any, TypeVar

from pydantic import BaseModel

from minechat.core.timeutils import utcnow
from minechat.models import (
    AdminImpersonationSession,
    AdminLogEntry,
    AIAssistantProfile,
    BusinessInfo,
    ChannelConnection,
    ConnectionStatus,
    Conversation,
    ConversationKey,
    Message,
    PendingAuthorization,
    Product,
    Tenant,
    TenantRole,
)
from minechat.storage.base import StorageBackend

M = TypeVar("M", bound=BaseModel)


def _copy(model: M) -> M:
    return model.model_copy(deep=True)


class InMemoryStorage(StorageBackend):
    """In-memory storage implementation for development.

    Records are copied on the way in and out so callers never share state
    with the store; compound operations run under a single lock.
    """

    def __init__(self) -> None:
        self._tenants: dict[str, Tenant] = {}
        self._profiles: dict[str, AIAssistantProfile] = {}
        self._business: dict[str, BusinessInfo] = {}
        self._products: dict[str, Product] = {}
        self._connections: dict[str, ChannelConnection] = {}
        self._pending: dict[str, PendingAuthorization] = {}
        self._conversations: dict[str, Conversation] = {}
        self._messages: dict[str, Message] = {}
        # conversation id -> message ids in append order
        self._threads: dict[str, list[str]] = {}
        self._secrets: dict[str, str] = {}
        self._event_keys: dict[str, datetime] = {}
        self._impersonations: dict[str, AdminImpersonationSession] = {}
        self._admin_logs: list[AdminLogEntry] = []
        self._lock = asyncio.Lock()

    # ==================== Tenant Operations ====================

    async def get_tenant(self, tenant_id: str) -> Tenant | None:
        tenant = self._tenants.get(tenant_id)
        return _copy(tenant) if tenant else None

    async def save_tenant(self, tenant: Tenant) -> Tenant:
        tenant.updated_at = utcnow()
        self._tenants[tenant.id] = _copy(tenant)
        return tenant

    async def list_tenants(self) -> list[Tenant]:
        tenants = [_copy(t) for t in self._tenants.values()]
        tenants.sort(key=lambda t: t.created_at)
        return tenants

    # ==================== Assistant / Business Data ====================

    async def get_assistant_profile(self, tenant_id: str) -> AIAssistantProfile | None:
        profile = self._profiles.get(tenant_id)
        return _copy(profile) if profile else None

    async def save_assistant_profile(self, profile: AIAssistantProfile) -> AIAssistantProfile:
        profile.updated_at = utcnow()
        self._profiles[profile.tenant_id] = _copy(profile)
        return profile

    async def delete_assistant_profile(self, tenant_id: str) -> bool:
        return self._profiles.pop(tenant_id, None) is not None

    async def get_business_info(self, tenant_id: str) -> BusinessInfo | None:
        info = self._business.get(tenant_id)
        return _copy(info) if info else None

    async def save_business_info(self, info: BusinessInfo) -> BusinessInfo:
        self._business[info.tenant_id] = _copy(info)
        return info

    async def list_products(self, tenant_id: str) -> list[Product]:
        return [_copy(p) for p in self._products.values() if p.tenant_id == tenant_id]

    async def save_product(self, product: Product) -> Product:
        self._products[product.id] = _copy(product)
        return product

    # ==================== Channel Connection Operations ====================

    async def get_connection(self, tenant_id: str) -> ChannelConnection | None:
        connection = self._connections.get(tenant_id)
        return _copy(connection) if connection else None

    async def replace_connection(self, connection: ChannelConnection) -> ChannelConnection:
        async with self._lock:
            connection.updated_at = utcnow()
            self._connections[connection.tenant_id] = _copy(connection)
            return connection

    async def find_connection_by_page(self, page_id: str) -> ChannelConnection | None:
        for connection in self._connections.values():
            if connection.page_id == page_id and connection.status == ConnectionStatus.CONNECTED:
                return _copy(connection)
        return None

    async def save_pending_authorization(self, pending: PendingAuthorization) -> PendingAuthorization:
        self._pending[pending.tenant_id] = _copy(pending)
        return pending

    async def get_pending_authorization(self, tenant_id: str) -> PendingAuthorization | None:
        pending = self._pending.get(tenant_id)
        return _copy(pending) if pending else None

    async def delete_pending_authorization(self, tenant_id: str) -> bool:
        return self._pending.pop(tenant_id, None) is not None

    # ==================== Conversation Operations ====================

    async def get_conversation(self, conversation_id: str) -> Conversation | None:
        conversation = self._conversations.get(conversation_id)
        return _copy(conversation) if conversation else None

    async def list_conversations(
        self,
        tenant_id: str,
        include_archived: bool = False,
        limit: int = 100,
    ) -> list[Conversation]:
        convs = [
            _copy(c)
            for c in self._conversations.values()
            if c.tenant_id == tenant_id and (include_archived or not c.archived)
        ]
        convs.sort(key=lambda c: c.last_message_at or c.created_at, reverse=True)
        return convs[:limit]

    async def update_conversation(
        self,
        conversation_id: str,
        changes: dict[str, Any],
    ) -> Conversation | None:
        async with self._lock:
            conversation = self._conversations.get(conversation_id)
            if conversation is None:
                return None
            updated = conversation.model_copy(update={**changes, "updated_at": utcnow()})
            self._conversations[conversation_id] = updated
            return _copy(updated)

    async def apply_inbound(self, key: ConversationKey, message: Message) -> Conversation:
        async with self._lock:
            conversation = self._conversations.get(key.document_id)
            if conversation is None:
                conversation = Conversation.from_key(key)
                self._conversations[conversation.id] = conversation
                self._threads[conversation.id] = []

            message.conversation_id = conversation.id
            self._store_message(conversation, message)
            conversation.unread_count += 1
            conversation.archived = False
            if key.customer_name and not conversation.customer_name:
                conversation.customer_name = key.customer_name
            return _copy(conversation)

    async def append_outbound(self, conversation_id: str, message: Message) -> Message:
        async with self._lock:
            conversation = self._conversations.get(conversation_id)
            if conversation is None:
                raise KeyError(conversation_id)
            message.conversation_id = conversation_id
            self._store_message(conversation, message)
            return message

    def _store_message(self, conversation: Conversation, message: Message) -> None:
        self._messages[message.id] = _copy(message)
        self._threads[conversation.id].append(message.id)
        conversation.message_count += 1
        conversation.last_message_at = message.created_at
        conversation.last_message_preview = message.preview()
        conversation.updated_at = utcnow()

    async def reset_unread(
        self,
        tenant_id: str,
        conversation_ids: list[str] | None = None,
    ) -> int:
        async with self._lock:
            changed = 0
            for conversation in self._conversations.values():
                if conversation.tenant_id != tenant_id:
                    continue
                if conversation_ids is not None and conversation.id not in conversation_ids:
                    continue
                if conversation.unread_count:
                    conversation.unread_count = 0
                    changed += 1
            return changed

    async def unread_total(self, tenant_id: str) -> int:
        return sum(
            c.unread_count
            for c in self._conversations.values()
            if c.tenant_id == tenant_id
        )

    # ==================== Message Operations ====================

    async def get_message(self, message_id: str) -> Message | None:
        message = self._messages.get(message_id)
        return _copy(message) if message else None

    async def get_messages(
        self,
        conversation_id: str,
        limit: int = 50,
        before_id: str | None = None,
    ) -> list[Message]:
        ids = list(self._threads.get(conversation_id, []))

        if before_id and before_id in ids:
            ids = ids[: ids.index(before_id)]

        return [_copy(self._messages[i]) for i in ids[-limit:]]

    # ==================== Secret Operations ====================

    async def put_secret(self, ref: str, ciphertext: str) -> None:
        self._secrets[ref] = ciphertext

    async def get_secret(self, ref: str) -> str | None:
        return self._secrets.get(ref)

    async def delete_secret(self, ref: str) -> bool:
        return self._secrets.pop(ref, None) is not None

    # ==================== Webhook Dedup ====================

    async def claim_event_key(self, key: str, ttl_seconds: int) -> bool:
        async with self._lock:
            now = utcnow()
            expired = [k for k, expiry in self._event_keys.items() if expiry <= now]
            for expired_key in expired:
                del self._event_keys[expired_key]
            if key in self._event_keys:
                return False
            self._event_keys[key] = now + timedelta(seconds=ttl_seconds)
            return True

    # ==================== Admin Operations ====================

    async def save_impersonation(self, session: AdminImpersonationSession) -> AdminImpersonationSession:
        self._impersonations[session.admin_id] = _copy(session)
        return session

    async def get_impersonation(self, admin_id: str) -> AdminImpersonationSession | None:
        session = self._impersonations.get(admin_id)
        return _copy(session) if session else None

    async def delete_impersonation(self, admin_id: str) -> bool:
        return self._impersonations.pop(admin_id, None) is not None

    async def add_admin_log(self, entry: AdminLogEntry) -> AdminLogEntry:
        self._admin_logs.append(_copy(entry))
        return entry

    async def list_admin_logs(self, admin_id: str | None = None, limit: int = 50) -> list[AdminLogEntry]:
        logs = [e for e in self._admin_logs if admin_id is None or e.admin_id == admin_id]
        return [_copy(e) for e in reversed(logs[-limit:])]

    # ==================== Health Check ====================

    async def health_check(self) -> bool:
        return True

    # ==================== Development Helpers ====================

    async def seed_demo_tenant(self) -> Tenant:
        """Create a demo tenant and an admin account for local development."""
        await self.save_tenant(
            Tenant(id="admin", name="MineChat Admin", email="admin@minechat.local", role=TenantRole.ADMIN)
        )
        await self.save_business_info(
            BusinessInfo(
                tenant_id="demo",
                company_name="Demo Company",
                email="hello@demo.example",
                phone_number="+1 555 0100",
                company_story="We sell handmade coffee mugs.",
            )
        )
        return await self.save_tenant(
            Tenant(id="demo", name="Demo Company", email="owner@demo.example", first_name="Demo")
        )
