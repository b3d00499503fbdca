"""Pytest configuration and fixtures."""

import hashlib
import hmac
import json
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
import pytest_asyncio
from cryptography.fernet import Fernet
from httpx import AsyncClient, ASGITransport

from minechat.api import dependencies
from minechat.api.main import create_app
from minechat.models import BusinessInfo, Tenant, TenantRole
from minechat.services.admin.impersonation import ImpersonationService
from minechat.services.assistant.context import AssistantContextBuilder
from minechat.services.assistant.pipeline import AIResponsePipeline, ReplyGenerator
from minechat.services.channels.messenger import MessengerAdapter
from minechat.services.connections.manager import ChannelConnectionManager
from minechat.services.conversation.read_model import ConversationReadModel
from minechat.services.llm.provider import LLMProvider, LLMResponse
from minechat.services.secrets.store import SecretStore
from minechat.services.webhooks.gateway import WebhookGateway
from minechat.storage.memory import InMemoryStorage

APP_ID = "test-app-id"
APP_SECRET = "test-app-secret"


def graph_error(code: int, status_code: int = 400, message: str = "Graph error", subcode: int | None = None) -> httpx.Response:
    """Graph API error response."""
    error: dict[str, Any] = {"message": message, "type": "OAuthException", "code": code, "fbtrace_id": "trace"}
    if subcode is not None:
        error["error_subcode"] = subcode
    return httpx.Response(status_code, json={"error": error})


class FakeGraph:
    """Minimal Graph API served through httpx.MockTransport."""

    def __init__(self) -> None:
        self.pages: list[dict[str, Any]] = [
            {"id": "page-1", "name": "Page One", "access_token": "page-token-1"},
            {"id": "page-2", "name": "Page Two", "access_token": "page-token-2"},
        ]
        self.profiles: dict[str, dict[str, Any]] = {}
        # Responses returned (in order) for the next sends; None lets a send through
        self.send_failures: list[httpx.Response | None] = []
        self.exchange_failure: httpx.Response | None = None
        self.sent: list[dict[str, Any]] = []
        self.subscribed: list[str] = []
        self._next_mid = 0

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        params = request.url.params

        if path.endswith("/oauth/access_token"):
            if "code" in params:
                if self.exchange_failure is not None:
                    return self.exchange_failure
                return httpx.Response(200, json={"access_token": "short-user-token"})
            return httpx.Response(200, json={"access_token": "long-user-token"})

        if path.endswith("/me/accounts"):
            return httpx.Response(200, json={"data": self.pages})

        if path.endswith("/subscribed_apps"):
            self.subscribed.append(path.split("/")[-2])
            return httpx.Response(200, json={"success": True})

        if path.endswith("/me/messages"):
            failure = self.send_failures.pop(0) if self.send_failures else None
            if failure is not None:
                return failure
            body = json.loads(request.content)
            self.sent.append({"access_token": params.get("access_token"), **body})
            self._next_mid += 1
            return httpx.Response(
                200,
                json={"recipient_id": body["recipient"]["id"], "message_id": f"m_out_{self._next_mid}"},
            )

        psid = path.rsplit("/", 1)[-1]
        if psid in self.profiles:
            return httpx.Response(200, json=self.profiles[psid])
        return graph_error(100, message="Unsupported get request")


def messenger_payload(
    page_id: str,
    sender_id: str,
    mid: str,
    text: str = "Hello",
    timestamp: int = 1_700_000_000_000,
) -> dict[str, Any]:
    """Messenger ``page`` webhook with a single customer message."""
    return {
        "object": "page",
        "entry": [
            {
                "id": page_id,
                "time": timestamp,
                "messaging": [
                    {
                        "sender": {"id": sender_id},
                        "recipient": {"id": page_id},
                        "timestamp": timestamp,
                        "message": {"mid": mid, "text": text},
                    }
                ],
            }
        ],
    }


def sign(body: bytes, secret: str = APP_SECRET) -> str:
    """X-Hub-Signature-256 header value for a body."""
    return "sha256=" + hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


async def connect_page(connections: ChannelConnectionManager, tenant_id: str, page_id: str = "page-1"):
    """Run the full authorization flow and bind a page."""
    start = await connections.start_authorization(tenant_id)
    await connections.complete_authorization(tenant_id, "auth-code", state=start.state)
    return await connections.select_page(tenant_id, page_id)


@pytest.fixture
def storage():
    """Create in-memory storage for tests."""
    return InMemoryStorage()


@pytest.fixture
def graph():
    return FakeGraph()


@pytest_asyncio.fixture
async def adapter(graph):
    """Messenger adapter talking to the fake Graph API."""
    client = httpx.AsyncClient(transport=httpx.MockTransport(graph.handler))
    adapter = MessengerAdapter(
        app_id=APP_ID,
        app_secret=APP_SECRET,
        http_client=client,
        attachment_interval=0,
    )
    yield adapter
    await adapter.close()


@pytest.fixture
def secret_store(storage):
    return SecretStore(storage, key=Fernet.generate_key())


@pytest.fixture
def connections(storage, secret_store, adapter):
    return ChannelConnectionManager(storage, secret_store=secret_store, adapter=adapter)


@pytest.fixture
def read_model(storage):
    return ConversationReadModel(storage)


@pytest.fixture
def gateway(storage, read_model, connections, adapter):
    return WebhookGateway(storage, read_model=read_model, connections=connections, adapter=adapter)


@pytest.fixture
def llm():
    """LLM double that answers every prompt with a fixed reply."""
    provider = MagicMock(spec=LLMProvider)
    provider.is_configured = True
    provider.complete = AsyncMock(return_value=LLMResponse(content="Thanks for reaching out!", model="test-model"))
    return provider


@pytest.fixture
def pipeline(storage, read_model, connections, llm):
    return AIResponsePipeline(
        storage,
        read_model=read_model,
        connections=connections,
        context_builder=AssistantContextBuilder(storage),
        generator=ReplyGenerator(llm_provider=llm, history_limit=10),
        max_attempts=3,
        backoff_min=0,
        backoff_max=0,
    )


@pytest.fixture
def impersonation(storage):
    return ImpersonationService(storage)


@pytest_asyncio.fixture
async def demo_tenant(storage):
    """Create a demo tenant for tests."""
    tenant = Tenant(id="test-tenant", name="Test Company", email="owner@test.example")
    await storage.save_tenant(tenant)
    await storage.save_business_info(
        BusinessInfo(tenant_id=tenant.id, company_name="Test Company", phone_number="+1 555 0100")
    )
    return tenant


@pytest_asyncio.fixture
async def admin_user(storage):
    """Create an admin account."""
    admin = Tenant(id="admin-1", name="Ada Admin", first_name="Ada", last_name="Admin", role=TenantRole.ADMIN)
    await storage.save_tenant(admin)
    return admin


@pytest_asyncio.fixture
async def connected_tenant(demo_tenant, connections):
    """Demo tenant with page-1 connected."""
    await connect_page(connections, demo_tenant.id, "page-1")
    return demo_tenant


@pytest.fixture
def app(storage, connections, read_model, gateway, pipeline, impersonation):
    """Create test application wired to the test doubles."""
    app = create_app()
    app.dependency_overrides[dependencies.get_storage] = lambda: storage
    app.dependency_overrides[dependencies.get_connections] = lambda: connections
    app.dependency_overrides[dependencies.get_conversations] = lambda: read_model
    app.dependency_overrides[dependencies.get_gateway] = lambda: gateway
    app.dependency_overrides[dependencies.get_pipeline] = lambda: pipeline
    app.dependency_overrides[dependencies.get_impersonation] = lambda: impersonation
    yield app
    app.dependency_overrides.clear()
    dependencies.reset_dependencies()


@pytest_asyncio.fixture
async def client(app):
    """Create test client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
