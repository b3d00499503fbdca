"""Data models for the application."""

from minechat.models.admin import AdminImpersonationSession, AdminLogEntry, Identity, ViewStatus
from minechat.models.channel import (
    AuthorizationResult,
    AuthorizationStart,
    ChannelConnection,
    ChannelType,
    ConnectionStatus,
    PageCandidate,
    PendingAuthorization,
)
from minechat.models.conversation import Conversation, ConversationKey, ConversationMode
from minechat.models.message import (
    Attachment,
    AttachmentType,
    DeliveryStatus,
    InboundEvent,
    Message,
    MessageDirection,
    OutgoingMessage,
    SendResult,
)
from minechat.models.tenant import (
    AIAssistantProfile,
    BusinessInfo,
    Product,
    ResponseLength,
    Tenant,
    TenantRole,
)

__all__ = [
    # Tenant
    "Tenant",
    "TenantRole",
    "AIAssistantProfile",
    "ResponseLength",
    "BusinessInfo",
    "Product",
    # Channel
    "ChannelType",
    "ChannelConnection",
    "ConnectionStatus",
    "PageCandidate",
    "PendingAuthorization",
    "AuthorizationStart",
    "AuthorizationResult",
    # Conversation
    "Conversation",
    "ConversationKey",
    "ConversationMode",
    # Message
    "Message",
    "MessageDirection",
    "DeliveryStatus",
    "Attachment",
    "AttachmentType",
    "InboundEvent",
    "OutgoingMessage",
    "SendResult",
    # Admin
    "AdminImpersonationSession",
    "AdminLogEntry",
    "Identity",
    "ViewStatus",
]
