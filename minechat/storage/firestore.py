"""Firestore storage backend for production."""

import os
from datetime import datetime, timedelta
from typing import Any

import structlog
from google.api_core.exceptions import AlreadyExists
from google.cloud import firestore
from pydantic import TypeAdapter

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
)
from minechat.storage.base import StorageBackend

logger = structlog.get_logger()

_datetime_adapter = TypeAdapter(datetime)


def _json_time(value: datetime) -> str:
    """Serialize a datetime the same way model_dump(mode="json") does."""
    return _datetime_adapter.dump_python(value, mode="json")


class FirestoreStorage(StorageBackend):
    """Firestore storage implementation for production.

    Collection structure:
    - tenants/{tenant_id}
    - assistant_profiles/{tenant_id}
    - business_info/{tenant_id}
    - products/{product_id}
    - channel_connections/{tenant_id}
    - pending_authorizations/{tenant_id}
    - conversations/{conversation_id}
    - messages/{message_id}
    - channel_secrets/{credential_ref}
    - webhook_events/{dedup_key}
    - impersonation_sessions/{admin_id}
    - admin_logs/{entry_id}
    """

    def __init__(self, project_id: str | None = None) -> None:
        self._project_id = project_id
        self._db: firestore.AsyncClient | None = None
        self._initialized = False

    async def _ensure_initialized(self) -> None:
        """Lazy initialization of Firestore client."""
        if self._initialized:
            return

        try:
            # Check if using emulator
            if os.environ.get("FIRESTORE_EMULATOR_HOST"):
                logger.info("Using Firestore emulator")

            self._db = firestore.AsyncClient(project=self._project_id)
            self._initialized = True
            logger.info("Firestore client initialized", project=self._project_id)
        except Exception as e:
            logger.error("Failed to initialize Firestore", error=str(e))
            raise

    async def _get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        await self._ensure_initialized()
        doc = await self._db.collection(collection).document(doc_id).get()
        return doc.to_dict() if doc.exists else None

    async def _set(self, collection: str, doc_id: str, model: Any) -> None:
        await self._ensure_initialized()
        await self._db.collection(collection).document(doc_id).set(model.model_dump(mode="json"))

    async def _delete(self, collection: str, doc_id: str) -> bool:
        await self._ensure_initialized()
        ref = self._db.collection(collection).document(doc_id)
        existed = (await ref.get()).exists
        await ref.delete()
        return existed

    # ==================== Tenant Operations ====================

    async def get_tenant(self, tenant_id: str) -> Tenant | None:
        data = await self._get("tenants", tenant_id)
        return Tenant(**data) if data else None

    async def save_tenant(self, tenant: Tenant) -> Tenant:
        tenant.updated_at = utcnow()
        await self._set("tenants", tenant.id, tenant)
        return tenant

    async def list_tenants(self) -> list[Tenant]:
        await self._ensure_initialized()
        docs = await self._db.collection("tenants").order_by("created_at").get()
        return [Tenant(**doc.to_dict()) for doc in docs]

    # ==================== Assistant / Business Data ====================

    async def get_assistant_profile(self, tenant_id: str) -> AIAssistantProfile | None:
        data = await self._get("assistant_profiles", tenant_id)
        return AIAssistantProfile(**data) if data else None

    async def save_assistant_profile(self, profile: AIAssistantProfile) -> AIAssistantProfile:
        profile.updated_at = utcnow()
        await self._set("assistant_profiles", profile.tenant_id, profile)
        return profile

    async def delete_assistant_profile(self, tenant_id: str) -> bool:
        return await self._delete("assistant_profiles", tenant_id)

    async def get_business_info(self, tenant_id: str) -> BusinessInfo | None:
        data = await self._get("business_info", tenant_id)
        return BusinessInfo(**data) if data else None

    async def save_business_info(self, info: BusinessInfo) -> BusinessInfo:
        await self._set("business_info", info.tenant_id, info)
        return info

    async def list_products(self, tenant_id: str) -> list[Product]:
        await self._ensure_initialized()
        docs = await self._db.collection("products").where("tenant_id", "==", tenant_id).get()
        return [Product(**doc.to_dict()) for doc in docs]

    async def save_product(self, product: Product) -> Product:
        await self._set("products", product.id, product)
        return product

    # ==================== Channel Connection Operations ====================

    async def get_connection(self, tenant_id: str) -> ChannelConnection | None:
        data = await self._get("channel_connections", tenant_id)
        return ChannelConnection(**data) if data else None

    async def replace_connection(self, connection: ChannelConnection) -> ChannelConnection:
        # A single document set() is atomic: the old binding is gone the
        # moment the new one is visible.
        connection.updated_at = utcnow()
        await self._set("channel_connections", connection.tenant_id, connection)
        return connection

    async def find_connection_by_page(self, page_id: str) -> ChannelConnection | None:
        await self._ensure_initialized()
        query = (
            self._db.collection("channel_connections")
            .where("page_id", "==", page_id)
            .where("status", "==", ConnectionStatus.CONNECTED.value)
            .limit(1)
        )
        docs = await query.get()
        for doc in docs:
            return ChannelConnection(**doc.to_dict())
        return None

    async def save_pending_authorization(self, pending: PendingAuthorization) -> PendingAuthorization:
        await self._set("pending_authorizations", pending.tenant_id, pending)
        return pending

    async def get_pending_authorization(self, tenant_id: str) -> PendingAuthorization | None:
        data = await self._get("pending_authorizations", tenant_id)
        return PendingAuthorization(**data) if data else None

    async def delete_pending_authorization(self, tenant_id: str) -> bool:
        return await self._delete("pending_authorizations", tenant_id)

    # ==================== Conversation Operations ====================

    async def get_conversation(self, conversation_id: str) -> Conversation | None:
        data = await self._get("conversations", conversation_id)
        return Conversation(**data) if data else None

    async def list_conversations(
        self,
        tenant_id: str,
        include_archived: bool = False,
        limit: int = 100,
    ) -> list[Conversation]:
        await self._ensure_initialized()

        query = self._db.collection("conversations").where("tenant_id", "==", tenant_id)
        if not include_archived:
            query = query.where("archived", "==", False)

        query = query.order_by("last_message_at", direction=firestore.Query.DESCENDING).limit(limit)
        docs = await query.get()

        return [Conversation(**doc.to_dict()) for doc in docs]

    async def update_conversation(
        self,
        conversation_id: str,
        changes: dict[str, Any],
    ) -> Conversation | None:
        await self._ensure_initialized()
        ref = self._db.collection("conversations").document(conversation_id)
        if not (await ref.get()).exists:
            return None

        payload = {
            k: (v.value if hasattr(v, "value") else v) for k, v in changes.items()
        }
        payload["updated_at"] = _json_time(utcnow())
        await ref.update(payload)
        return await self.get_conversation(conversation_id)

    async def apply_inbound(self, key: ConversationKey, message: Message) -> Conversation:
        await self._ensure_initialized()
        conv_ref = self._db.collection("conversations").document(key.document_id)
        msg_ref = self._db.collection("messages").document(message.id)

        @firestore.async_transactional
        async def _apply(transaction: firestore.AsyncTransaction) -> Conversation:
            snapshot = await conv_ref.get(transaction=transaction)
            if snapshot.exists:
                conversation = Conversation(**snapshot.to_dict())
            else:
                conversation = Conversation.from_key(key)

            message.conversation_id = conversation.id
            conversation.unread_count += 1
            conversation.message_count += 1
            conversation.archived = False
            conversation.last_message_at = message.created_at
            conversation.last_message_preview = message.preview()
            conversation.updated_at = utcnow()
            if key.customer_name and not conversation.customer_name:
                conversation.customer_name = key.customer_name

            transaction.set(msg_ref, message.model_dump(mode="json"))
            transaction.set(conv_ref, conversation.model_dump(mode="json"))
            return conversation

        return await _apply(self._db.transaction())

    async def append_outbound(self, conversation_id: str, message: Message) -> Message:
        await self._ensure_initialized()
        conv_ref = self._db.collection("conversations").document(conversation_id)
        msg_ref = self._db.collection("messages").document(message.id)
        message.conversation_id = conversation_id

        @firestore.async_transactional
        async def _append(transaction: firestore.AsyncTransaction) -> Message:
            snapshot = await conv_ref.get(transaction=transaction)
            if not snapshot.exists:
                raise KeyError(conversation_id)
            transaction.set(msg_ref, message.model_dump(mode="json"))
            transaction.update(
                conv_ref,
                {
                    "message_count": firestore.Increment(1),
                    "last_message_at": _json_time(message.created_at),
                    "last_message_preview": message.preview(),
                    "updated_at": _json_time(utcnow()),
                },
            )
            return message

        return await _append(self._db.transaction())

    async def reset_unread(
        self,
        tenant_id: str,
        conversation_ids: list[str] | None = None,
    ) -> int:
        await self._ensure_initialized()
        conversations = self._db.collection("conversations")

        if conversation_ids is None:
            docs = await (
                conversations.where("tenant_id", "==", tenant_id).where("unread_count", ">", 0).get()
            )
            refs = [doc.reference for doc in docs]
        else:
            refs = []
            for conversation_id in conversation_ids:
                doc = await conversations.document(conversation_id).get()
                data = doc.to_dict() if doc.exists else None
                if data and data.get("tenant_id") == tenant_id and data.get("unread_count", 0) > 0:
                    refs.append(doc.reference)

        if not refs:
            return 0

        batch = self._db.batch()
        for ref in refs:
            batch.update(ref, {"unread_count": 0})
        await batch.commit()
        return len(refs)

    async def unread_total(self, tenant_id: str) -> int:
        await self._ensure_initialized()
        docs = await self._db.collection("conversations").where("tenant_id", "==", tenant_id).get()
        return sum(doc.to_dict().get("unread_count", 0) for doc in docs)

    # ==================== Message Operations ====================

    async def get_message(self, message_id: str) -> Message | None:
        data = await self._get("messages", message_id)
        return Message(**data) if data else None

    async def get_messages(
        self,
        conversation_id: str,
        limit: int = 50,
        before_id: str | None = None,
    ) -> list[Message]:
        await self._ensure_initialized()

        query = (
            self._db.collection("messages")
            .where("conversation_id", "==", conversation_id)
            .order_by("created_at", direction=firestore.Query.DESCENDING)
        )

        if before_id:
            cursor = await self._db.collection("messages").document(before_id).get()
            if cursor.exists:
                query = query.start_after(cursor)

        docs = await query.limit(limit).get()
        messages = [Message(**doc.to_dict()) for doc in docs]
        # Reverse to get chronological order
        return list(reversed(messages))

    # ==================== Secret Operations ====================

    async def put_secret(self, ref: str, ciphertext: str) -> None:
        await self._ensure_initialized()
        await self._db.collection("channel_secrets").document(ref).set(
            {"ciphertext": ciphertext, "created_at": utcnow()}
        )

    async def get_secret(self, ref: str) -> str | None:
        data = await self._get("channel_secrets", ref)
        return data.get("ciphertext") if data else None

    async def delete_secret(self, ref: str) -> bool:
        return await self._delete("channel_secrets", ref)

    # ==================== Webhook Dedup ====================

    async def claim_event_key(self, key: str, ttl_seconds: int) -> bool:
        """Claim a dedup key in ``webhook_events``.

        Expired documents are deleted by a Firestore TTL policy on
        ``expires_at``; until the policy sweeps them, an expired document
        is reclaimed in a transaction. Enable it once per project:
        ``gcloud firestore fields ttls update expires_at --collection-group=webhook_events --enable-ttl``
        """
        await self._ensure_initialized()
        ref = self._db.collection("webhook_events").document(key)
        now = utcnow()
        record = {"key": key, "created_at": now, "expires_at": now + timedelta(seconds=ttl_seconds)}

        try:
            await ref.create(record)
            return True
        except AlreadyExists:
            pass

        @firestore.async_transactional
        async def _reclaim(transaction: firestore.AsyncTransaction) -> bool:
            snapshot = await ref.get(transaction=transaction)
            expires_at = snapshot.get("expires_at") if snapshot.exists else None
            if expires_at is not None and expires_at > now:
                return False
            transaction.set(ref, record)
            return True

        return await _reclaim(self._db.transaction())

    # ==================== Admin Operations ====================

    async def save_impersonation(self, session: AdminImpersonationSession) -> AdminImpersonationSession:
        await self._set("impersonation_sessions", session.admin_id, session)
        return session

    async def get_impersonation(self, admin_id: str) -> AdminImpersonationSession | None:
        data = await self._get("impersonation_sessions", admin_id)
        return AdminImpersonationSession(**data) if data else None

    async def delete_impersonation(self, admin_id: str) -> bool:
        return await self._delete("impersonation_sessions", admin_id)

    async def add_admin_log(self, entry: AdminLogEntry) -> AdminLogEntry:
        await self._set("admin_logs", entry.id, entry)
        return entry

    async def list_admin_logs(self, admin_id: str | None = None, limit: int = 50) -> list[AdminLogEntry]:
        await self._ensure_initialized()
        query = self._db.collection("admin_logs")
        if admin_id:
            query = query.where("admin_id", "==", admin_id)
        query = query.order_by("created_at", direction=firestore.Query.DESCENDING).limit(limit)
        docs = await query.get()
        return [AdminLogEntry(**doc.to_dict()) for doc in docs]

    # ==================== Health Check ====================

    async def health_check(self) -> bool:
        try:
            await self._ensure_initialized()
            # Simple health check - try to access a collection
            await self._db.collection("_health").document("check").get()
            return True
        except Exception as e:
            logger.error("Firestore health check failed", error=str(e))
            return False
