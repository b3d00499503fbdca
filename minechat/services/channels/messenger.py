"""Facebook Messenger channel adapter (Graph API over httpx)."""

import asyncio
import hashlib
import hmac
from datetime import datetime, timezone
from typing import Any
from urllib.parse import urlencode

import httpx
import structlog

from minechat.core.config import settings
from minechat.core.exceptions import (
    AuthorizationExpired,
    ProviderAPIError,
    ProviderError,
    ProviderUnavailable,
    RateLimited,
    TokenInvalid,
)
from minechat.models import (
    Attachment,
    AttachmentType,
    ChannelType,
    InboundEvent,
    OutgoingMessage,
    SendResult,
)
from minechat.services.channels.base import ChannelAdapter

logger = structlog.get_logger()

# Graph API error codes
TOKEN_ERROR_CODES = {190}
THROTTLING_ERROR_CODES = {4, 17, 32, 613}
# Subcodes of code 100 for an authorization code that is expired or already used
EXPIRED_CODE_SUBCODES = {36007, 36009}


def raise_for_graph_error(response: httpx.Response) -> None:
    """Map a failed Graph API response onto the provider error taxonomy."""
    if response.is_success:
        return

    try:
        error = response.json().get("error", {})
    except ValueError:
        error = {}

    code = error.get("code")
    details = {
        "status": response.status_code,
        "code": code,
        "subcode": error.get("error_subcode"),
        "type": error.get("type"),
        "fbtrace_id": error.get("fbtrace_id"),
    }
    message = error.get("message") or f"Graph API returned {response.status_code}"

    if code in TOKEN_ERROR_CODES:
        raise TokenInvalid(details=details)
    if code in THROTTLING_ERROR_CODES or response.status_code == 429:
        raise RateLimited(details=details)
    if response.status_code >= 500:
        raise ProviderUnavailable(message, details=details)
    raise ProviderAPIError(message, details=details)


class MessengerAdapter(ChannelAdapter):
    """Facebook Messenger channel adapter.

    Handles:
    - The page-management OAuth dialog and code exchange
    - Page listing and webhook subscription
    - Webhook parsing and X-Hub-Signature-256 validation
    - Sending text and attachments via the Send API
    """

    def __init__(
        self,
        app_id: str | None = None,
        app_secret: str | None = None,
        http_client: httpx.AsyncClient | None = None,
        attachment_interval: float | None = None,
    ) -> None:
        self.app_id = app_id if app_id is not None else settings.facebook_app_id
        self.app_secret = app_secret if app_secret is not None else settings.facebook_app_secret
        self.graph_base = f"{settings.facebook_graph_url.rstrip('/')}/{settings.facebook_graph_version}"
        self.attachment_interval = (
            attachment_interval if attachment_interval is not None else settings.image_send_interval_seconds
        )

        self._client = http_client or httpx.AsyncClient(timeout=settings.messenger_request_timeout)

        if not self.app_id or not self.app_secret:
            logger.warning("Facebook app credentials not configured")

    @property
    def channel_name(self) -> str:
        return ChannelType.MESSENGER.value

    @property
    def is_configured(self) -> bool:
        return bool(self.app_id and self.app_secret)

    async def close(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        url = f"{self.graph_base}/{path.lstrip('/')}"
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.TransportError as e:
            logger.warning("Graph API unreachable", path=path, error=str(e))
            raise ProviderUnavailable(details={"path": path, "error": str(e)}) from e

        raise_for_graph_error(response)
        return response.json()

    # ==================== OAuth ====================

    def build_authorization_url(self, state: str, redirect_uri: str) -> str:
        """Build the page-management consent dialog URL."""
        query = urlencode(
            {
                "client_id": self.app_id,
                "redirect_uri": redirect_uri,
                "scope": settings.facebook_oauth_scopes,
                "response_type": "code",
                "state": state,
            }
        )
        dialog_base = settings.facebook_dialog_url.rstrip("/")
        return f"{dialog_base}/{settings.facebook_dialog_version}/dialog/oauth?{query}"

    async def exchange_code(self, code: str, redirect_uri: str) -> str:
        """Exchange an authorization code for a long-lived user token."""
        try:
            short_lived = await self._request(
                "GET",
                "oauth/access_token",
                params={
                    "client_id": self.app_id,
                    "client_secret": self.app_secret,
                    "redirect_uri": redirect_uri,
                    "code": code,
                },
            )
        except ProviderAPIError as e:
            if e.details.get("code") == 100 and e.details.get("subcode") in EXPIRED_CODE_SUBCODES:
                raise AuthorizationExpired(reason="code_expired") from e
            raise

        long_lived = await self._request(
            "GET",
            "oauth/access_token",
            params={
                "grant_type": "fb_exchange_token",
                "client_id": self.app_id,
                "client_secret": self.app_secret,
                "fb_exchange_token": short_lived["access_token"],
            },
        )
        return long_lived["access_token"]

    async def list_pages(self, user_token: str) -> list[dict[str, Any]]:
        """List the pages the user manages, with their page tokens."""
        data = await self._request(
            "GET",
            "me/accounts",
            params={"access_token": user_token, "fields": "id,name,access_token,picture"},
        )
        pages = []
        for page in data.get("data", []):
            if not page.get("id") or not page.get("access_token"):
                continue
            pages.append(
                {
                    "id": str(page["id"]),
                    "name": page.get("name") or str(page["id"]),
                    "access_token": page["access_token"],
                    "picture_url": (page.get("picture") or {}).get("data", {}).get("url"),
                }
            )
        return pages

    async def subscribe_page(self, page_id: str, page_token: str) -> bool:
        """Subscribe the app to the page's ``messages`` webhook field."""
        data = await self._request(
            "POST",
            f"{page_id}/subscribed_apps",
            data={"subscribed_fields": "messages", "access_token": page_token},
        )
        return bool(data.get("success"))

    async def get_user_profile(self, psid: str, page_token: str) -> dict[str, Any] | None:
        """Look up a customer's display name and picture. None on any provider error."""
        try:
            data = await self._request(
                "GET",
                psid,
                params={"fields": "name,profile_pic", "access_token": page_token},
            )
        except ProviderError as e:
            logger.info("Profile lookup failed", psid=psid, error=e.code)
            return None
        return {"name": data.get("name"), "picture_url": data.get("profile_pic")}

    # ==================== Webhooks ====================

    def validate_webhook(self, request_data: bytes, signature: str | None) -> bool:
        """Validate the X-Hub-Signature-256 header (``sha256=<hex>``)."""
        if not signature or not signature.startswith("sha256="):
            return False

        expected = hmac.new(
            self.app_secret.encode(),
            request_data,
            hashlib.sha256,
        ).hexdigest()
        return hmac.compare_digest(f"sha256={expected}", signature)

    def parse_webhook(self, payload: dict[str, Any]) -> list[InboundEvent]:
        """Parse a ``page`` object webhook into customer message events."""
        events: list[InboundEvent] = []

        for entry in payload.get("entry") or []:
            if not isinstance(entry, dict):
                continue
            for item in entry.get("messaging") or []:
                event = self._parse_messaging_item(entry, item)
                if event is not None:
                    events.append(event)

        return events

    def _parse_messaging_item(self, entry: dict[str, Any], item: Any) -> InboundEvent | None:
        if not isinstance(item, dict):
            return None

        message = item.get("message")
        if not isinstance(message, dict):
            # delivery / read receipts, postbacks
            return None
        if message.get("is_echo"):
            return None

        mid = message.get("mid")
        sender_id = (item.get("sender") or {}).get("id")
        page_id = (item.get("recipient") or {}).get("id") or entry.get("id")
        if not mid or not sender_id or not page_id:
            logger.debug("Skipping messaging item without ids", keys=list(item.keys()))
            return None

        text = message.get("text") or ""
        attachments = self._parse_attachments(message.get("attachments"))
        if not text and not attachments:
            return None

        timestamp = item.get("timestamp")
        return InboundEvent(
            page_id=str(page_id),
            sender_id=str(sender_id),
            external_id=str(mid),
            content=text,
            attachments=attachments,
            timestamp=(
                datetime.fromtimestamp(timestamp / 1000, tz=timezone.utc)
                if isinstance(timestamp, (int, float))
                else None
            ),
            raw=item,
        )

    def _parse_attachments(self, raw: Any) -> list[Attachment]:
        attachments = []
        for attachment in raw or []:
            if not isinstance(attachment, dict):
                continue
            url = (attachment.get("payload") or {}).get("url")
            if not url:
                continue
            try:
                kind = AttachmentType(attachment.get("type"))
            except ValueError:
                kind = AttachmentType.FILE
            attachments.append(Attachment(type=kind, url=url))
        return attachments

    # ==================== Send API ====================

    async def send_message(self, access_token: str, message: OutgoingMessage) -> SendResult:
        """Send text first, then each attachment as its own message.

        Parts before ``message.start_part`` are skipped. When a part fails,
        the raised ProviderError carries ``parts_sent`` (absolute index of
        the failed part) and the ``message_ids`` delivered by this call, so
        a retry can resume without repeating delivered parts.
        """
        result = SendResult(recipient_id=message.recipient_id)

        bodies: list[dict[str, Any]] = []
        if message.content:
            bodies.append({"text": message.content})
        for attachment in message.attachments:
            bodies.append(
                {
                    "attachment": {
                        "type": attachment.type.value,
                        "payload": {"url": attachment.url, "is_reusable": True},
                    }
                }
            )

        for index in range(message.start_part, len(bodies)):
            if index > message.start_part:
                await asyncio.sleep(self.attachment_interval)
            try:
                data = await self._send(access_token, message.recipient_id, bodies[index])
            except ProviderError as e:
                e.details["parts_sent"] = index
                e.details["message_ids"] = list(result.message_ids)
                raise
            result.message_ids.append(data.get("message_id", ""))

        logger.info(
            "Messenger message sent",
            recipient_id=message.recipient_id,
            parts=len(result.message_ids),
        )
        return result

    async def _send(self, access_token: str, recipient_id: str, body: dict[str, Any]) -> dict[str, Any]:
        return await self._request(
            "POST",
            "me/messages",
            params={"access_token": access_token},
            json={
                "recipient": {"id": recipient_id},
                "messaging_type": "RESPONSE",
                "message": body,
            },
        )


# Singleton instance
_messenger_adapter: MessengerAdapter | None = None


def get_messenger_adapter() -> MessengerAdapter:
    """Get or create Messenger adapter instance."""
    global _messenger_adapter
    if _messenger_adapter is None:
        _messenger_adapter = MessengerAdapter()
    return _messenger_adapter


def reset_messenger_adapter() -> None:
    """Reset Messenger adapter (for testing)."""
    global _messenger_adapter
    _messenger_adapter = None
