"""
Messaging Bridge Client

Connects to the Node.js bridge process that hosts the messaging-protocol
library. One bridge serves many sessions; each session gets its own event
stream.

Architecture:
    SessionController <-> BridgeMessagingClient <-> Bridge (Node.js) <-> Messaging network

Bridge API:
    GET    /status                          bridge health
    POST   /sessions                        {"sessionId", "authDir"} -> {"user": {"id"}}
    POST   /sessions/{id}/messages          {"to", "text"} or
                                            {"to", "document", "fileName", "mimetype"}
    DELETE /sessions/{id}                   close the connection
    WS     /sessions/{id}/events            {"event": <name>, "data": {...}}
"""

import asyncio
import json
import logging
from typing import Any, Dict, Optional

import aiohttp

from .messaging import (
    CONNECTION_UPDATE,
    ClientHandle,
    EventHandler,
    MessagingClient,
    OutboundMessage,
)

logger = logging.getLogger(__name__)


class BridgeMessagingClient(MessagingClient):
    """
    MessagingClient backed by the bridge's HTTP API and WebSocket events.

    Example:
        async with BridgeMessagingClient() as client:
            handle = await client.open("default", "./auth_info_default")
            handle.on("connection.update", print)
            await client.send(handle, "15551234567@s.whatsapp.net",
                              OutboundMessage.text_message("Hello!"))
    """

    def __init__(
        self,
        http_url: str = "http://localhost:3100",
        ws_url: str = "ws://localhost:3100",
    ):
        self.http_url = http_url.rstrip("/")
        self.ws_url = ws_url.rstrip("/")
        self._http_session: Optional[aiohttp.ClientSession] = None
        self._listeners: Dict[str, asyncio.Task] = {}

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.disconnect()

    async def connect(self):
        """Open the HTTP session and check the bridge is running."""
        self._http_session = aiohttp.ClientSession()

        try:
            status = await self.get_status()
            logger.info(f"Bridge status: {status}")
        except Exception as e:
            await self._http_session.close()
            self._http_session = None
            raise ConnectionError(
                f"Cannot connect to messaging bridge at {self.http_url}. "
                f"Make sure the bridge is running."
            ) from e

    async def disconnect(self):
        """Stop all event listeners and close the HTTP session."""
        for task in self._listeners.values():
            task.cancel()
        self._listeners.clear()

        if self._http_session:
            await self._http_session.close()
            self._http_session = None

        logger.info("Disconnected from messaging bridge")

    def _session(self) -> aiohttp.ClientSession:
        if self._http_session is None:
            self._http_session = aiohttp.ClientSession()
        return self._http_session

    # =========================================================================
    # HTTP API
    # =========================================================================

    async def get_status(self) -> Dict[str, Any]:
        """Get bridge status."""
        async with self._session().get(f"{self.http_url}/status") as resp:
            resp.raise_for_status()
            return await resp.json()

    async def open(
        self,
        session_id: str,
        auth_dir: str,
        handlers: Optional[Dict[str, EventHandler]] = None
    ) -> ClientHandle:
        """Ask the bridge to open a session and subscribe to its events."""
        payload = {"sessionId": session_id, "authDir": auth_dir}

        async with self._session().post(f"{self.http_url}/sessions", json=payload) as resp:
            resp.raise_for_status()
            data = await resp.json()

        handle = ClientHandle(session_id, user_id=(data.get("user") or {}).get("id"))
        handle.register(handlers)

        ws = await self._session().ws_connect(f"{self.ws_url}/sessions/{session_id}/events")
        previous = self._listeners.pop(session_id, None)
        if previous:
            previous.cancel()
        self._listeners[session_id] = asyncio.create_task(self._listen(handle, ws))

        logger.info(f"Bridge opened session {session_id}")
        return handle

    async def send(self, handle: ClientHandle, target: str, message: OutboundMessage) -> Dict[str, Any]:
        """
        Send a text or document message.

        Returns:
            Response with messageId and timestamp
        """
        async with self._session().post(
            f"{self.http_url}/sessions/{handle.session_id}/messages",
            json=message.to_bridge(target)
        ) as resp:
            resp.raise_for_status()
            return await resp.json()

    async def close(self, handle: ClientHandle) -> None:
        """Close the session's connection on the bridge."""
        handle.closed = True

        # Called from inside the listener (e.g. on logout): the loop exits on
        # handle.closed, so cancelling it here would abort the DELETE below
        task = self._listeners.pop(handle.session_id, None)
        if task and task is not asyncio.current_task():
            task.cancel()

        if self._http_session is None:
            return

        async with self._http_session.delete(f"{self.http_url}/sessions/{handle.session_id}") as resp:
            if resp.status != 404:
                resp.raise_for_status()

        logger.info(f"Bridge closed session {handle.session_id}")

    # =========================================================================
    # WEBSOCKET EVENTS
    # =========================================================================

    async def _listen(self, handle: ClientHandle, ws) -> None:
        """Forward bridge events to the handle until the stream ends."""
        try:
            while not handle.closed:
                msg = await ws.receive()

                if msg.type == aiohttp.WSMsgType.TEXT:
                    try:
                        data = json.loads(msg.data)
                    except ValueError:
                        logger.warning(f"Ignoring malformed bridge event for {handle.session_id}")
                        continue

                    event = data.get("event")
                    if event:
                        await handle.emit(event, data.get("data") or {})

                elif msg.type in (aiohttp.WSMsgType.CLOSE, aiohttp.WSMsgType.CLOSED, aiohttp.WSMsgType.ERROR):
                    logger.warning(f"Event stream closed for {handle.session_id}")
                    break

        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Error in event listener for {handle.session_id}: {e}")
        finally:
            await ws.close()

        # Stream lost while the handle is still live: report a retryable close
        if not handle.closed:
            await handle.emit(CONNECTION_UPDATE, {"connection": "close", "lastDisconnect": None})
