"""Abstract base class for channel adapters."""

from abc import ABC, abstractmethod
from typing import Any

from minechat.models import InboundEvent, OutgoingMessage, SendResult


class ChannelAdapter(ABC):
    """Abstract base class for messaging provider adapters.

    Adapters speak the provider's wire format and never touch storage; the
    connection manager resolves credentials and hands the raw token in.
    """

    @property
    @abstractmethod
    def channel_name(self) -> str:
        """Get the channel name identifier."""
        ...

    @abstractmethod
    def parse_webhook(self, payload: dict[str, Any]) -> list[InboundEvent]:
        """Extract customer message events from a webhook payload.

        Args:
            payload: Decoded webhook body from the provider

        Returns:
            Normalized events; receipts, echoes and postbacks are skipped
        """
        ...

    @abstractmethod
    async def send_message(self, access_token: str, message: OutgoingMessage) -> SendResult:
        """Send a message through the channel.

        Args:
            access_token: Page credential revealed by the secret store
            message: OutgoingMessage to send

        Returns:
            SendResult with the provider message ids
        """
        ...

    @abstractmethod
    def validate_webhook(self, request_data: bytes, signature: str | None) -> bool:
        """Validate webhook signature for security.

        Args:
            request_data: Raw request body
            signature: Signature header value

        Returns:
            True if valid, False otherwise
        """
        ...

    async def send_text(self, access_token: str, recipient_id: str, text: str) -> SendResult:
        """Convenience method to send a simple text message."""
        message = OutgoingMessage(
            content=text,
            recipient_id=recipient_id,
        )
        return await self.send_message(access_token, message)
