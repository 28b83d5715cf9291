"""
Session Controller

Drives one session through its connection lifecycle:

    initializing --open--> open --close(401)--> removed from registry
          ^                  |
          |             close(other)
          |                  v
          +---- backoff --- closed (retryable)

On open the controller relays a credential notice to the account's own chat.
Inbound chat messages are parsed and handed to the command router.
"""

import asyncio
import logging
from datetime import datetime, timezone
from enum import Enum
from functools import partial
from typing import TYPE_CHECKING, Any, Dict, Optional

from ..channels.messaging import (
    CONNECTION_UPDATE,
    CREDS_UPDATE,
    LOGGED_OUT_STATUS,
    MESSAGES_UPSERT,
    ClientHandle,
    InboundMessage,
    MessagingClient,
    OutboundMessage,
    disconnect_status,
)
from .commands import CommandContext, CommandRouter
from .credentials import CREDENTIALS_MIMETYPE, CredentialStore
from .errors import CredentialsUnavailable, InitializationFailure, RelayError, SendFailed
from .retry import RetryPolicy
from .session import ConnectionState, Session

if TYPE_CHECKING:
    from .registry import SessionRegistry

logger = logging.getLogger(__name__)

DEFAULT_DOMAIN = "s.whatsapp.net"


class DisconnectKind(str, Enum):
    """How a connection close is treated"""
    TRANSIENT = "transient"    # reconnect with backoff
    TERMINAL = "terminal"      # logged out, session removed


def classify_disconnect(status_code: Optional[int]) -> DisconnectKind:
    if status_code == LOGGED_OUT_STATUS:
        return DisconnectKind.TERMINAL
    return DisconnectKind.TRANSIENT


class SessionController:
    """Lifecycle owner for a single session"""

    def __init__(
        self,
        session_id: str,
        client: MessagingClient,
        store: CredentialStore,
        registry: "SessionRegistry",
        router: CommandRouter,
        retry_policy: Optional[RetryPolicy] = None,
        open_timeout: float = 30.0,
        send_timeout: float = 30.0,
        domain: str = DEFAULT_DOMAIN,
    ):
        self.client = client
        self.store = store
        self.registry = registry
        self.router = router
        self.retry_policy = retry_policy or RetryPolicy()
        self.open_timeout = open_timeout
        self.send_timeout = send_timeout
        self.domain = domain

        self.session = Session(
            session_id=session_id,
            credentials_path=store.credentials_path(session_id)
        )

        self._generation = 0
        self._initializing: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None
        self._opened = asyncio.Event()
        self._closing = False

    @property
    def session_id(self) -> str:
        return self.session.session_id

    @property
    def reconnect_task(self) -> Optional[asyncio.Task]:
        return self._reconnect_task

    def address_for(self, number: str) -> str:
        """Chat address for a bare phone number"""
        return f"{number}@{self.domain}"

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def initialize(self) -> ClientHandle:
        """
        Open the messaging client for this session.

        Returns the live handle if one exists and joins an initialization that
        is already in flight, so repeated calls never open a second handle.

        A fresh start resets the reconnect budget.

        Raises:
            InitializationFailure: The client failed or timed out.
        """
        return await self._ensure_open(reset_attempts=True)

    async def _ensure_open(self, reset_attempts: bool) -> ClientHandle:
        handle = self.session.handle
        if handle is not None and not handle.closed and self.session.state != ConnectionState.CLOSED:
            return handle

        if self._initializing is None or self._initializing.done():
            if reset_attempts:
                self.session.reconnect_attempts = 0
            self._closing = False
            self._initializing = asyncio.ensure_future(self._open())

        return await asyncio.shield(self._initializing)

    async def _open(self) -> ClientHandle:
        sid = self.session_id
        self.session.state = ConnectionState.INITIALIZING
        self._opened.clear()

        previous = self.session.handle
        self.session.handle = None
        if previous is not None and not previous.closed:
            await self._close_handle(previous)

        self._generation += 1
        generation = self._generation
        handlers = {
            CONNECTION_UPDATE: partial(self._guarded, generation, self.handle_connection_update),
            MESSAGES_UPSERT: partial(self._guarded, generation, self.on_message),
            CREDS_UPDATE: partial(self._guarded, generation, self.handle_credentials_update),
        }

        try:
            auth_dir = self.store.ensure_session_dir(sid)
            handle = await asyncio.wait_for(
                self.client.open(sid, str(auth_dir), handlers),
                timeout=self.open_timeout
            )
        except asyncio.TimeoutError as e:
            self.session.state = ConnectionState.CLOSED
            logger.error(f"Initialization of {sid} timed out after {self.open_timeout}s")
            raise InitializationFailure(
                f"Timed out opening session '{sid}' after {self.open_timeout}s"
            ) from e
        except Exception as e:
            self.session.state = ConnectionState.CLOSED
            logger.error(f"Initialization error for {sid}: {e}")
            raise InitializationFailure(f"Failed to open session '{sid}': {e}") from e

        self.session.handle = handle
        if handle.user_id:
            self.session.own_address = handle.user_id

        logger.info(f"Session {sid} initialized, waiting for connection")
        return handle

    async def _guarded(self, generation: int, handler, data: Any) -> None:
        """Drop events from handles replaced by a reconnect"""
        if generation != self._generation:
            logger.debug(f"Ignoring event from stale handle of {self.session_id}")
            return
        await handler(data)

    async def wait_until_open(self, timeout: float) -> None:
        """
        Wait for the connection to reach ``open``.

        Raises:
            InitializationFailure: Not open within ``timeout`` seconds.
        """
        if self.session.state == ConnectionState.OPEN:
            return
        try:
            await asyncio.wait_for(self._opened.wait(), timeout=timeout)
        except asyncio.TimeoutError as e:
            raise InitializationFailure(
                f"Session '{self.session_id}' did not connect within {timeout}s"
            ) from e

    async def close(self) -> None:
        """Cancel pending reconnects and close the handle."""
        self._closing = True

        if self._reconnect_task and not self._reconnect_task.done():
            self._reconnect_task.cancel()
        self._reconnect_task = None

        handle = self.session.handle
        self.session.handle = None
        self.session.state = ConnectionState.CLOSED
        self._opened.clear()

        if handle is not None:
            await self._close_handle(handle)

    async def _close_handle(self, handle: ClientHandle) -> None:
        try:
            await self.client.close(handle)
        except Exception as e:
            logger.warning(f"Error closing handle for {self.session_id}: {e}")

    # =========================================================================
    # CONNECTION EVENTS
    # =========================================================================

    async def handle_connection_update(self, update: Dict[str, Any]) -> None:
        """Apply a connection.update event"""
        qr = update.get("qr")
        if qr:
            self.session.last_qr = qr
            logger.info(f"QR for {self.session_id}: {qr}")

        connection = update.get("connection")
        if connection == "open":
            await self._on_open(update)
        elif connection == "close":
            await self._on_close(update)

    async def _on_open(self, update: Dict[str, Any]) -> None:
        session = self.session
        session.state = ConnectionState.OPEN
        session.ever_opened = True
        session.connected_at = datetime.now(timezone.utc)
        session.reconnect_attempts = 0

        user_id = (update.get("user") or {}).get("id")
        if user_id:
            session.own_address = user_id
        elif session.handle is not None and session.handle.user_id:
            session.own_address = session.handle.user_id

        self._opened.set()
        logger.info(f"Connected for {self.session_id}")

        await self.relay_own_credentials()

    async def _on_close(self, update: Dict[str, Any]) -> None:
        status = disconnect_status(update)
        kind = classify_disconnect(status)

        self.session.state = ConnectionState.CLOSED
        self._opened.clear()

        if kind == DisconnectKind.TERMINAL:
            logger.warning(f"Session {self.session_id} logged out (status {status}); removing")
            self.registry.remove(self.session_id)
            await self.close()
            return

        logger.info(f"Connection closed for {self.session_id} (status {status}), reconnecting")
        self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        if self._closing:
            return
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return

        attempt = self.session.reconnect_attempts + 1
        if self.retry_policy.exhausted(attempt):
            logger.error(
                f"Giving up on {self.session_id} after {self.session.reconnect_attempts} reconnect attempts"
            )
            return

        self.session.reconnect_attempts = attempt
        delay = self.retry_policy.delay_for(attempt)
        logger.info(f"Reconnecting {self.session_id} in {delay:.2f}s (attempt {attempt})")
        self._reconnect_task = asyncio.create_task(self._reconnect(delay))

    async def _reconnect(self, delay: float) -> None:
        await asyncio.sleep(delay)

        if self._closing or self.session_id not in self.registry:
            return

        try:
            await self._ensure_open(reset_attempts=False)
        except InitializationFailure as e:
            logger.warning(f"Reconnect of {self.session_id} failed: {e}")
            self._reconnect_task = None
            self._schedule_reconnect()

    async def handle_credentials_update(self, creds: Dict[str, Any]) -> None:
        """Persist a creds.update event"""
        if not creds:
            return
        self.store.save(self.session_id, creds)

    # =========================================================================
    # CREDENTIAL RELAY
    # =========================================================================

    async def relay_own_credentials(self) -> None:
        """Send a credential notice to the account's own chat (best-effort)"""
        own = self.session.own_address
        if not own:
            logger.debug(f"No own address for {self.session_id}; skipping credential notice")
            return

        try:
            blob = await self.store.load(self.session_id)
            await self.send_text(own, blob.self_notice(self.session.is_connected, self.router.prefix))
        except RelayError as e:
            logger.error(f"Error sending credentials for {self.session_id}: {e}")

    async def pair_with(self, target: str) -> None:
        """
        Send a credential summary and the raw credential file to ``target``.

        Raises:
            CredentialsUnavailable: The session never connected, or no
                readable credential blob exists. Nothing is sent.
            SendFailed: The client rejected or timed out a send.
        """
        if not self.session.ever_opened:
            raise CredentialsUnavailable(
                f"Session '{self.session_id}' has not connected yet"
            )

        blob = await self.store.load(self.session_id)

        await self._send(target, OutboundMessage.text_message(blob.summary()))
        await self._send(target, OutboundMessage.document_message(
            blob.raw, blob.filename, CREDENTIALS_MIMETYPE
        ))
        logger.info(f"Credentials for {self.session_id} sent to {target}")

    # =========================================================================
    # MESSAGES
    # =========================================================================

    async def on_message(self, event: Dict[str, Any]) -> None:
        """Handle a messages.upsert batch"""
        inbound = InboundMessage.from_upsert(event)
        if inbound is None:
            return

        logger.info(f"Message from {inbound.sender}: {inbound.text[:50]}")

        command = self.router.parse(inbound.text)
        if command is None:
            return

        await self.router.dispatch(CommandContext(
            controller=self,
            sender=inbound.sender,
            command=command
        ))

    async def send_text(self, target: str, text: str) -> Dict[str, Any]:
        return await self._send(target, OutboundMessage.text_message(text))

    async def _send(self, target: str, message: OutboundMessage) -> Dict[str, Any]:
        handle = self.session.handle
        if handle is None or handle.closed:
            raise SendFailed(f"Session '{self.session_id}' has no live connection")

        try:
            return await asyncio.wait_for(
                self.client.send(handle, target, message),
                timeout=self.send_timeout
            )
        except asyncio.TimeoutError as e:
            raise SendFailed(f"Send to {target} timed out after {self.send_timeout}s") from e
        except Exception as e:
            raise SendFailed(f"Send to {target} failed: {e}") from e
