"""Tests for the Messenger channel adapter."""

import httpx
import pytest

from conftest import APP_SECRET, graph_error, sign
from minechat.core.exceptions import (
    ProviderAPIError,
    ProviderUnavailable,
    RateLimited,
    TokenInvalid,
)
from minechat.models import Attachment, AttachmentType, OutgoingMessage
from minechat.services.channels.messenger import MessengerAdapter, raise_for_graph_error


@pytest.mark.parametrize(
    "response, expected",
    [
        (graph_error(190, status_code=401), TokenInvalid),
        (graph_error(4), RateLimited),
        (graph_error(613), RateLimited),
        (httpx.Response(429, json={}), RateLimited),
        (httpx.Response(503, text="upstream down"), ProviderUnavailable),
        (graph_error(100), ProviderAPIError),
    ],
)
def test_graph_error_mapping(response, expected):
    with pytest.raises(expected):
        raise_for_graph_error(response)


def test_graph_error_details():
    with pytest.raises(TokenInvalid) as exc_info:
        raise_for_graph_error(graph_error(190, subcode=463))

    details = exc_info.value.details
    assert details["code"] == 190
    assert details["subcode"] == 463
    assert details["fbtrace_id"] == "trace"


def test_success_is_not_an_error():
    raise_for_graph_error(httpx.Response(200, json={"ok": True}))


@pytest.mark.asyncio
async def test_validate_webhook(adapter):
    body = b'{"object":"page"}'

    assert adapter.validate_webhook(body, sign(body, APP_SECRET)) is True
    assert adapter.validate_webhook(body, sign(body, "other")) is False
    assert adapter.validate_webhook(body, sign(body)[len("sha256="):]) is False
    assert adapter.validate_webhook(body, None) is False


@pytest.mark.asyncio
async def test_authorization_url(adapter):
    url = adapter.build_authorization_url("state-123", "https://app.example/callback")

    assert url.startswith("https://www.facebook.com/v18.0/dialog/oauth?")
    assert "client_id=test-app-id" in url
    assert "state=state-123" in url
    assert "redirect_uri=https%3A%2F%2Fapp.example%2Fcallback" in url


@pytest.mark.asyncio
async def test_exchange_code_returns_long_lived_token(adapter):
    token = await adapter.exchange_code("code", "https://app.example/callback")
    assert token == "long-user-token"


@pytest.mark.asyncio
async def test_list_pages_skips_pages_without_token(adapter, graph):
    graph.pages = [
        {"id": "1", "name": "Good", "access_token": "t1", "picture": {"data": {"url": "https://cdn.example/1.png"}}},
        {"id": "2", "name": "No token"},
    ]

    pages = await adapter.list_pages("user-token")

    assert pages == [
        {"id": "1", "name": "Good", "access_token": "t1", "picture_url": "https://cdn.example/1.png"}
    ]


@pytest.mark.asyncio
async def test_send_text_then_attachments(adapter, graph):
    message = OutgoingMessage(
        recipient_id="cust_1",
        content="Here you go",
        attachments=[
            Attachment(type=AttachmentType.IMAGE, url="https://cdn.example/a.jpg"),
            Attachment(type=AttachmentType.IMAGE, url="https://cdn.example/b.jpg"),
        ],
    )

    result = await adapter.send_message("page-token", message)

    assert result.message_ids == ["m_out_1", "m_out_2", "m_out_3"]
    assert graph.sent[0]["message"] == {"text": "Here you go"}
    assert graph.sent[1]["message"]["attachment"]["payload"]["url"] == "https://cdn.example/a.jpg"
    assert graph.sent[2]["message"]["attachment"]["payload"]["url"] == "https://cdn.example/b.jpg"
    assert all(s["access_token"] == "page-token" for s in graph.sent)


@pytest.mark.asyncio
async def test_send_resumes_from_start_part(adapter, graph):
    message = OutgoingMessage(
        recipient_id="cust_1",
        content="Here you go",
        attachments=[Attachment(type=AttachmentType.IMAGE, url="https://cdn.example/a.jpg")],
        start_part=1,
    )

    result = await adapter.send_message("page-token", message)

    assert result.message_ids == ["m_out_1"]
    assert len(graph.sent) == 1
    assert "attachment" in graph.sent[0]["message"]


@pytest.mark.asyncio
async def test_failed_part_reports_progress(adapter, graph):
    graph.send_failures.extend([None, graph_error(613)])
    message = OutgoingMessage(
        recipient_id="cust_1",
        content="Here you go",
        attachments=[Attachment(type=AttachmentType.IMAGE, url="https://cdn.example/a.jpg")],
    )

    with pytest.raises(RateLimited) as exc_info:
        await adapter.send_message("page-token", message)

    assert exc_info.value.details["parts_sent"] == 1
    assert exc_info.value.details["message_ids"] == ["m_out_1"]
    assert message.part_count == 2


@pytest.mark.asyncio
async def test_send_text_helper(adapter, graph):
    await adapter.send_text("page-token", "cust_1", "Hi")
    assert graph.sent[0]["message"] == {"text": "Hi"}


@pytest.mark.asyncio
async def test_get_user_profile(adapter, graph):
    graph.profiles["cust_1"] = {"name": "Jane", "profile_pic": "https://cdn.example/j.png"}

    assert await adapter.get_user_profile("cust_1", "page-token") == {
        "name": "Jane",
        "picture_url": "https://cdn.example/j.png",
    }
    assert await adapter.get_user_profile("unknown", "page-token") is None


@pytest.mark.asyncio
async def test_transport_error_is_unavailable():
    def unreachable(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    adapter = MessengerAdapter(
        app_id="id",
        app_secret="secret",
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(unreachable)),
    )
    try:
        with pytest.raises(ProviderUnavailable):
            await adapter.send_text("page-token", "cust_1", "Hi")
    finally:
        await adapter.close()
