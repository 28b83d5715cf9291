"""
Messaging Client Interface

The protocol library (handshake, encryption, multi-device linking) is an
opaque collaborator. The relay only needs:

- ``open(session_id, auth_dir) -> ClientHandle``
- ``send(handle, target, message)``
- ``close(handle)``
- events emitted on the handle:
    connection.update  {"connection": "open"|"close"|"connecting",
                        "lastDisconnect": {"error": {"output": {"statusCode": int}}},
                        "qr": str}
    messages.upsert    {"type": "notify"|"append", "messages": [...]}
    creds.update       full credential document

Event names and payload shapes follow the upstream library so the bridge can
forward them unchanged.
"""

import asyncio
import base64
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

logger = logging.getLogger(__name__)

CONNECTION_UPDATE = "connection.update"
MESSAGES_UPSERT = "messages.upsert"
CREDS_UPDATE = "creds.update"

# Upstream DisconnectReason.loggedOut
LOGGED_OUT_STATUS = 401

EventHandler = Callable[[Any], Union[None, Awaitable[None]]]


@dataclass
class OutboundMessage:
    """A text message or a document attachment"""
    text: Optional[str] = None
    document: Optional[bytes] = None
    file_name: Optional[str] = None
    mimetype: Optional[str] = None

    @classmethod
    def text_message(cls, text: str) -> "OutboundMessage":
        return cls(text=text)

    @classmethod
    def document_message(cls, data: bytes, file_name: str, mimetype: str) -> "OutboundMessage":
        return cls(document=data, file_name=file_name, mimetype=mimetype)

    @property
    def is_document(self) -> bool:
        return self.document is not None

    def to_bridge(self, target: str) -> Dict[str, Any]:
        """Bridge wire format (documents are base64 encoded)"""
        if self.is_document:
            return {
                "to": target,
                "document": base64.b64encode(self.document).decode("ascii"),
                "fileName": self.file_name,
                "mimetype": self.mimetype,
            }
        return {"to": target, "text": self.text or ""}


@dataclass
class InboundMessage:
    """First message of a notify batch, reduced to what commands need"""
    id: str
    sender: str
    text: str
    from_me: bool = False

    @classmethod
    def from_upsert(cls, event: Dict[str, Any]) -> Optional["InboundMessage"]:
        """
        Extract the first message of a ``notify`` batch.

        Returns None for non-notify batches, empty batches and messages
        without content.
        """
        if not event or event.get("type") != "notify":
            return None

        messages = event.get("messages") or []
        if not messages:
            return None

        first = messages[0] or {}
        content = first.get("message")
        if not content:
            return None

        key = first.get("key") or {}
        return cls(
            id=key.get("id", ""),
            sender=key.get("remoteJid", ""),
            text=extract_text(content),
            from_me=bool(key.get("fromMe", False)),
        )


def extract_text(content: Dict[str, Any]) -> str:
    """First non-empty of plain text, extended text, image caption"""
    candidates = [
        content.get("conversation"),
        (content.get("extendedTextMessage") or {}).get("text"),
        (content.get("imageMessage") or {}).get("caption"),
    ]
    for candidate in candidates:
        if candidate:
            return candidate
    return ""


def disconnect_status(update: Dict[str, Any]) -> Optional[int]:
    """Status code of ``lastDisconnect.error.output.statusCode``, if any"""
    error = (update.get("lastDisconnect") or {}).get("error") or {}
    status = (error.get("output") or {}).get("statusCode")
    try:
        return int(status) if status is not None else None
    except (TypeError, ValueError):
        return None


class ClientHandle:
    """
    One live connection of the messaging client for a session.

    Owned exclusively by the session controller that opened it.
    """

    def __init__(self, session_id: str, user_id: Optional[str] = None):
        self.session_id = session_id
        self.user_id = user_id
        self.closed = False
        self._handlers: Dict[str, List[EventHandler]] = {}

    def register(self, handlers: Optional[Dict[str, EventHandler]]) -> None:
        for event, handler in (handlers or {}).items():
            self.on(event, handler)

    def on(self, event: str, handler: EventHandler) -> None:
        """Register an event handler"""
        self._handlers.setdefault(event, []).append(handler)

    async def emit(self, event: str, data: Any) -> None:
        """Dispatch an event to its handlers; handler errors are logged"""
        for handler in list(self._handlers.get(event, [])):
            try:
                result = handler(data)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.exception(f"Error in {event} handler for {self.session_id}: {e}")


class MessagingClient(ABC):
    """Abstract messaging-protocol client"""

    @abstractmethod
    async def open(
        self,
        session_id: str,
        auth_dir: str,
        handlers: Optional[Dict[str, EventHandler]] = None
    ) -> ClientHandle:
        """
        Open (or resume) an authenticated connection for a session.

        ``handlers`` are registered on the handle before any event is
        delivered.
        """

    @abstractmethod
    async def send(self, handle: ClientHandle, target: str, message: OutboundMessage) -> Dict[str, Any]:
        """Send a message to a chat address"""

    @abstractmethod
    async def close(self, handle: ClientHandle) -> None:
        """Close a connection and release its resources"""
