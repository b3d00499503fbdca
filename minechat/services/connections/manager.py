"""Channel connection manager - authorization lifecycle and send capability."""

import secrets

import structlog

from minechat.core.config import settings
from minechat.core.exceptions import (
    AuthorizationDenied,
    AuthorizationExpired,
    ChannelNotConnected,
    InvalidConnectionState,
    PageNotFound,
    ProviderError,
    ProviderUnavailable,
    TokenInvalid,
)
from minechat.core.locks import KeyedLock
from minechat.core.timeutils import utcnow
from minechat.models import (
    Attachment,
    AuthorizationResult,
    AuthorizationStart,
    ChannelConnection,
    ConnectionStatus,
    OutgoingMessage,
    PageCandidate,
    PendingAuthorization,
    SendResult,
)
from minechat.services.channels.messenger import MessengerAdapter, get_messenger_adapter
from minechat.services.secrets.store import SecretStore, get_secret_store
from minechat.storage.base import StorageBackend

logger = structlog.get_logger()


class ChannelConnectionManager:
    """Owns a tenant's channel connection and the credential behind it.

    State machine::

        disconnected -> authorization_pending -> page_selection_pending -> connected
        connected -> disconnected                       (explicit disconnect)
        connected -> token_invalid -> disconnected      (credential rejected on use)

    Every write to a tenant's connection record happens under that tenant's
    lock and is a single ``replace_connection`` call.
    """

    def __init__(
        self,
        storage: StorageBackend,
        secret_store: SecretStore | None = None,
        adapter: MessengerAdapter | None = None,
    ) -> None:
        self.storage = storage
        self.secrets = secret_store or get_secret_store(storage)
        self.adapter = adapter or get_messenger_adapter()
        self._tenant_locks = KeyedLock()

    # ==================== Queries ====================

    async def get_connection(self, tenant_id: str) -> ChannelConnection:
        """Current connection record, or a synthesized disconnected one."""
        connection = await self.storage.get_connection(tenant_id)
        return connection or ChannelConnection(tenant_id=tenant_id)

    async def list_pending_pages(self, tenant_id: str) -> list[PageCandidate]:
        """Pages offered by the tenant's in-flight authorization."""
        pending = await self.storage.get_pending_authorization(tenant_id)
        if pending is None or pending.is_expired(settings.oauth_state_ttl_seconds):
            return []
        return pending.pages

    async def find_tenant_by_page(self, page_id: str) -> str | None:
        """Route an external page id to the tenant connected to it."""
        connection = await self.storage.find_connection_by_page(page_id)
        return connection.tenant_id if connection else None

    # ==================== Authorization ====================

    async def start_authorization(self, tenant_id: str) -> AuthorizationStart:
        """Begin the OAuth handshake.

        A fresh call overwrites any stale pending flow. A live connection
        stays bound until a new page is selected.

        Raises:
            ProviderUnavailable: If the Facebook app is not configured
        """
        if not self.adapter.is_configured:
            raise ProviderUnavailable("Facebook app is not configured")

        state = secrets.token_urlsafe(24)
        auth_url = self.adapter.build_authorization_url(state, settings.oauth_redirect_uri)

        async with self._tenant_locks.hold(tenant_id):
            await self._discard_pending(tenant_id)
            await self.storage.save_pending_authorization(
                PendingAuthorization(tenant_id=tenant_id, state=state)
            )

            connection = await self.get_connection(tenant_id)
            if not connection.is_connected:
                connection.status = ConnectionStatus.AUTHORIZATION_PENDING
                connection.last_error = None
                await self.storage.replace_connection(connection)

        logger.info("Authorization started", tenant_id=tenant_id)
        return AuthorizationStart(auth_url=auth_url, state=state)

    async def complete_authorization(
        self,
        tenant_id: str,
        code: str | None,
        state: str | None = None,
        error: str | None = None,
    ) -> AuthorizationResult:
        """Handle the provider callback.

        Args:
            tenant_id: Tenant completing the flow
            code: Authorization code from the provider
            state: CSRF state echoed back by the provider
            error: Provider error (e.g. ``access_denied``)

        Returns:
            Page selection result, or a connected result when a single page
            is auto-selected

        Raises:
            AuthorizationDenied: The tenant declined consent
            AuthorizationExpired: Unknown, mismatched or stale state or code
        """
        pending = await self.storage.get_pending_authorization(tenant_id)

        if error:
            logger.info("Authorization denied", tenant_id=tenant_id, reason=error)
            await self._abandon_authorization(tenant_id)
            raise AuthorizationDenied(reason=error)

        if pending is None:
            raise AuthorizationExpired(reason="no_pending_authorization")
        if state is not None and not secrets.compare_digest(state, pending.state):
            raise AuthorizationExpired(reason="state_mismatch")
        if pending.is_expired(settings.oauth_state_ttl_seconds):
            await self._abandon_authorization(tenant_id)
            raise AuthorizationExpired(reason="expired")
        if not code:
            raise AuthorizationExpired(reason="missing_code")

        user_token = await self.adapter.exchange_code(code, settings.oauth_redirect_uri)
        raw_pages = await self.adapter.list_pages(user_token)

        candidates = []
        for page in raw_pages:
            ref = await self.secrets.put(page["access_token"])
            candidates.append(
                PageCandidate(
                    id=page["id"],
                    name=page["name"],
                    picture_url=page.get("picture_url"),
                    credential_ref=ref,
                )
            )

        async with self._tenant_locks.hold(tenant_id):
            # A newer start_authorization may have replaced this flow meanwhile
            current = await self.storage.get_pending_authorization(tenant_id)
            if current is None or current.state != pending.state:
                for candidate in candidates:
                    await self.secrets.revoke(candidate.credential_ref)
                logger.info("Authorization superseded by a newer flow", tenant_id=tenant_id)
                raise AuthorizationExpired(reason="superseded")

            await self._discard_pending(tenant_id)
            current.pages = candidates
            await self.storage.save_pending_authorization(current)

            connection = await self.get_connection(tenant_id)
            if not connection.is_connected:
                connection.status = ConnectionStatus.PAGE_SELECTION_PENDING
                await self.storage.replace_connection(connection)

        logger.info("Authorization completed", tenant_id=tenant_id, pages=len(candidates))

        if len(candidates) == 1 and settings.auto_select_single_page:
            connection = await self.select_page(tenant_id, candidates[0].id)
            return AuthorizationResult(status=connection.status, connection=connection)

        return AuthorizationResult(status=ConnectionStatus.PAGE_SELECTION_PENDING, pages=candidates)

    async def select_page(self, tenant_id: str, page_id: str) -> ChannelConnection:
        """Bind one of the authorized pages and mark the channel connected.

        The previous binding, if any, is replaced in one write; its
        credential is revoked only after the new record is visible.

        Raises:
            InvalidConnectionState: No authorization in progress
            AuthorizationExpired: The pending authorization expired
            PageNotFound: The page was not offered by the provider
        """
        async with self._tenant_locks.hold(tenant_id):
            pending = await self.storage.get_pending_authorization(tenant_id)
            current = await self.get_connection(tenant_id)

            if pending is None or not pending.pages:
                raise InvalidConnectionState("select a page", current.status.value)
            if pending.is_expired(settings.oauth_state_ttl_seconds):
                raise AuthorizationExpired(reason="expired")

            page = pending.find_page(page_id)
            if page is None:
                raise PageNotFound(page_id)

            await self._subscribe(tenant_id, page)

            connection = ChannelConnection(
                tenant_id=tenant_id,
                provider=current.provider,
                status=ConnectionStatus.CONNECTED,
                page_id=page.id,
                page_name=page.name,
                page_picture_url=page.picture_url,
                credential_ref=page.credential_ref,
                version=current.version + 1,
                connected_at=utcnow(),
            )
            await self.storage.replace_connection(connection)

            if current.credential_ref and current.credential_ref != page.credential_ref:
                await self.secrets.revoke(current.credential_ref)
            for other in pending.pages:
                if other.credential_ref != page.credential_ref:
                    await self.secrets.revoke(other.credential_ref)
            await self.storage.delete_pending_authorization(tenant_id)

        logger.info(
            "Connected page",
            tenant_id=tenant_id,
            page_id=page.id,
            previous_page_id=current.page_id,
            version=connection.version,
        )
        return connection

    async def disconnect(self, tenant_id: str) -> ChannelConnection:
        """Tear down the connection. Disconnecting twice is a no-op."""
        async with self._tenant_locks.hold(tenant_id):
            current = await self.get_connection(tenant_id)
            had_pending = await self._discard_pending(tenant_id)

            if current.status == ConnectionStatus.DISCONNECTED and not current.credential_ref:
                if had_pending:
                    logger.info("Abandoned pending authorization", tenant_id=tenant_id)
                return current

            connection = ChannelConnection(
                tenant_id=tenant_id,
                provider=current.provider,
                status=ConnectionStatus.DISCONNECTED,
                version=current.version,
            )
            await self.storage.replace_connection(connection)
            await self.secrets.revoke(current.credential_ref)

        logger.info("Disconnected channel", tenant_id=tenant_id, page_id=current.page_id)
        return connection

    # ==================== Send ====================

    async def send(
        self,
        tenant_id: str,
        customer_external_id: str,
        content: str,
        attachments: list[Attachment] | None = None,
        start_part: int = 0,
    ) -> SendResult:
        """Send a message to a customer on the tenant's connected page.

        ``start_part`` resumes a partly delivered message after a retry.

        Raises:
            ChannelNotConnected: No usable connection
            TokenInvalid: Credential rejected; the channel is disconnected
            RateLimited: Provider throttled the request
            ProviderAPIError: Any other provider error
        """
        connection, token = await self._credential_snapshot(tenant_id)
        message = OutgoingMessage(
            recipient_id=customer_external_id,
            content=content,
            attachments=attachments or [],
            start_part=start_part,
        )

        try:
            return await self.adapter.send_message(token, message)
        except TokenInvalid as e:
            await self._invalidate(tenant_id, connection.version, e.message)
            raise TokenInvalid(tenant_id=tenant_id, details=e.details) from e

    async def lookup_customer(self, tenant_id: str, customer_external_id: str) -> dict | None:
        """Fetch a customer's display name and picture with the page credential."""
        try:
            _, token = await self._credential_snapshot(tenant_id)
        except ChannelNotConnected:
            return None
        return await self.adapter.get_user_profile(customer_external_id, token)

    async def _credential_snapshot(self, tenant_id: str) -> tuple[ChannelConnection, str]:
        async with self._tenant_locks.hold(tenant_id):
            connection = await self.storage.get_connection(tenant_id)
            if connection is None or not connection.is_connected or not connection.credential_ref:
                raise ChannelNotConnected(tenant_id)

            token = await self.secrets.reveal(connection.credential_ref)
            if token is None:
                raise ChannelNotConnected(tenant_id)
            return connection, token

    async def _invalidate(self, tenant_id: str, version: int, reason: str) -> None:
        """connected -> token_invalid -> disconnected, unless the binding has moved on."""
        async with self._tenant_locks.hold(tenant_id):
            current = await self.storage.get_connection(tenant_id)
            if current is None or current.version != version or not current.is_connected:
                logger.info("Skipping invalidation of replaced connection", tenant_id=tenant_id)
                return

            current.status = ConnectionStatus.TOKEN_INVALID
            current.last_error = reason
            await self.storage.replace_connection(current)
            logger.warning("Channel credential rejected", tenant_id=tenant_id, page_id=current.page_id)

            disconnected = ChannelConnection(
                tenant_id=tenant_id,
                provider=current.provider,
                status=ConnectionStatus.DISCONNECTED,
                version=current.version,
                last_error=reason,
            )
            await self.storage.replace_connection(disconnected)
            await self.secrets.revoke(current.credential_ref)

    # ==================== Helpers ====================

    async def _subscribe(self, tenant_id: str, page: PageCandidate) -> None:
        token = await self.secrets.reveal(page.credential_ref)
        if token is None:
            raise AuthorizationExpired(reason="page_credential_missing")
        try:
            subscribed = await self.adapter.subscribe_page(page.id, token)
        except ProviderError as e:
            # The binding is still useful for outbound sends.
            logger.error("Webhook subscription failed", tenant_id=tenant_id, page_id=page.id, error=e.code)
            return
        logger.info("Webhook subscription result", tenant_id=tenant_id, page_id=page.id, success=subscribed)

    async def _discard_pending(self, tenant_id: str) -> bool:
        """Drop a pending flow and revoke the page credentials it holds."""
        pending = await self.storage.get_pending_authorization(tenant_id)
        if pending is None:
            return False
        for page in pending.pages:
            await self.secrets.revoke(page.credential_ref)
        await self.storage.delete_pending_authorization(tenant_id)
        return True

    async def _abandon_authorization(self, tenant_id: str) -> None:
        async with self._tenant_locks.hold(tenant_id):
            await self._discard_pending(tenant_id)
            connection = await self.get_connection(tenant_id)
            if connection.status in (
                ConnectionStatus.AUTHORIZATION_PENDING,
                ConnectionStatus.PAGE_SELECTION_PENDING,
            ):
                connection.status = ConnectionStatus.DISCONNECTED
                await self.storage.replace_connection(connection)


# Factory function for creating the manager with storage
_manager_instance: ChannelConnectionManager | None = None


def get_connection_manager(storage: StorageBackend | None = None) -> ChannelConnectionManager:
    """Get or create the channel connection manager.

    Args:
        storage: Storage backend (required on first call)

    Returns:
        ChannelConnectionManager instance
    """
    global _manager_instance

    if _manager_instance is None:
        if storage is None:
            raise ValueError("Storage backend required for first initialization")
        _manager_instance = ChannelConnectionManager(storage=storage)

    return _manager_instance


def reset_connection_manager() -> None:
    """Reset the connection manager singleton (for testing)."""
    global _manager_instance
    _manager_instance = None
