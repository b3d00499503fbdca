"""Channel connection models (the token store records)."""

from datetime import datetime, timedelta
from enum import Enum

from pydantic import BaseModel, Field

from minechat.core.timeutils import utcnow


class ChannelType(str, Enum):
    """Supported messaging providers."""

    MESSENGER = "messenger"


class ConnectionStatus(str, Enum):
    """Authorization lifecycle of a tenant's channel."""

    DISCONNECTED = "disconnected"
    AUTHORIZATION_PENDING = "authorization_pending"
    PAGE_SELECTION_PENDING = "page_selection_pending"
    CONNECTED = "connected"
    TOKEN_INVALID = "token_invalid"


class ChannelConnection(BaseModel):
    """One record per (tenant, provider).

    ``credential_ref`` is an opaque handle into the secret store; the raw
    page token never lives on this model.
    """

    tenant_id: str
    provider: ChannelType = ChannelType.MESSENGER
    status: ConnectionStatus = ConnectionStatus.DISCONNECTED

    page_id: str | None = None
    page_name: str | None = None
    page_picture_url: str | None = None
    credential_ref: str | None = None

    # Bumped on every page bind; send() uses it to detect rotation.
    version: int = 0

    connected_at: datetime | None = None
    updated_at: datetime = Field(default_factory=utcnow)
    last_error: str | None = None

    @property
    def is_connected(self) -> bool:
        return self.status == ConnectionStatus.CONNECTED


class PageCandidate(BaseModel):
    """A page the tenant controls, offered for selection."""

    id: str
    name: str
    picture_url: str | None = None
    credential_ref: str


class PendingAuthorization(BaseModel):
    """In-flight OAuth handshake for a tenant."""

    tenant_id: str
    state: str
    pages: list[PageCandidate] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)

    def is_expired(self, ttl_seconds: int) -> bool:
        return utcnow() - self.created_at > timedelta(seconds=ttl_seconds)

    def find_page(self, page_id: str) -> PageCandidate | None:
        return next((p for p in self.pages if p.id == page_id), None)


class AuthorizationStart(BaseModel):
    """Redirect target returned by start_authorization."""

    auth_url: str
    state: str
    status: ConnectionStatus = ConnectionStatus.AUTHORIZATION_PENDING


class AuthorizationResult(BaseModel):
    """Outcome of the OAuth callback: page selection required or connected."""

    status: ConnectionStatus
    pages: list[PageCandidate] = Field(default_factory=list)
    connection: ChannelConnection | None = None
