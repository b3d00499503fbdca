"""Channel connection endpoints (Messenger page authorization)."""

from datetime import datetime

from fastapi import APIRouter
from pydantic import BaseModel

from minechat.api.dependencies import ConnectionsDep, IdentityDep
from minechat.models import (
    AuthorizationStart,
    ChannelConnection,
    ChannelType,
    ConnectionStatus,
    PageCandidate,
)

router = APIRouter(prefix="/channels/messenger", tags=["Channels"])


# ==================== Pydantic Schemas ====================


class PageResponse(BaseModel):
    """Page offered for selection. Credentials never leave the server."""

    id: str
    name: str
    picture_url: str | None = None

    @classmethod
    def from_candidate(cls, page: PageCandidate) -> "PageResponse":
        return cls(id=page.id, name=page.name, picture_url=page.picture_url)


class ConnectionResponse(BaseModel):
    """Connection state as shown on the integrations page."""

    provider: ChannelType
    status: ConnectionStatus
    page_id: str | None = None
    page_name: str | None = None
    page_picture_url: str | None = None
    connected_at: datetime | None = None
    last_error: str | None = None

    @classmethod
    def from_connection(cls, connection: ChannelConnection) -> "ConnectionResponse":
        return cls(
            provider=connection.provider,
            status=connection.status,
            page_id=connection.page_id,
            page_name=connection.page_name,
            page_picture_url=connection.page_picture_url,
            connected_at=connection.connected_at,
            last_error=connection.last_error,
        )


class CallbackResponse(BaseModel):
    """Either pages to choose from or the resulting connection."""

    status: ConnectionStatus
    pages: list[PageResponse] = []
    connection: ConnectionResponse | None = None


class PageSelection(BaseModel):
    """Schema for selecting a page."""

    page_id: str


# ==================== Connection Endpoints ====================


@router.get("", response_model=ConnectionResponse)
async def get_connection(identity: IdentityDep, connections: ConnectionsDep) -> ConnectionResponse:
    """Current connection state."""
    connection = await connections.get_connection(identity.tenant_id)
    return ConnectionResponse.from_connection(connection)


@router.post("/authorize", response_model=AuthorizationStart)
async def authorize(identity: IdentityDep, connections: ConnectionsDep) -> AuthorizationStart:
    """Start the OAuth flow; the dashboard redirects the browser to ``auth_url``."""
    return await connections.start_authorization(identity.tenant_id)


@router.get("/callback", response_model=CallbackResponse)
async def authorization_callback(
    identity: IdentityDep,
    connections: ConnectionsDep,
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
) -> CallbackResponse:
    """Complete the OAuth flow with the code relayed by the dashboard."""
    result = await connections.complete_authorization(identity.tenant_id, code, state=state, error=error)
    return CallbackResponse(
        status=result.status,
        pages=[PageResponse.from_candidate(p) for p in result.pages],
        connection=ConnectionResponse.from_connection(result.connection) if result.connection else None,
    )


@router.get("/pages", response_model=list[PageResponse])
async def list_pages(identity: IdentityDep, connections: ConnectionsDep) -> list[PageResponse]:
    """Pages awaiting selection."""
    pages = await connections.list_pending_pages(identity.tenant_id)
    return [PageResponse.from_candidate(p) for p in pages]


@router.post("/pages", response_model=ConnectionResponse)
async def select_page(
    data: PageSelection,
    identity: IdentityDep,
    connections: ConnectionsDep,
) -> ConnectionResponse:
    """Bind the chosen page."""
    connection = await connections.select_page(identity.tenant_id, data.page_id)
    return ConnectionResponse.from_connection(connection)


@router.post("/disconnect", response_model=ConnectionResponse)
@router.delete("", response_model=ConnectionResponse)
async def disconnect(identity: IdentityDep, connections: ConnectionsDep) -> ConnectionResponse:
    """Disconnect the channel. Safe to call repeatedly."""
    connection = await connections.disconnect(identity.tenant_id)
    return ConnectionResponse.from_connection(connection)
