"""
Shared fixtures: an in-memory messaging client and session wiring.
"""

import asyncio
import json
from functools import partial
from typing import Any, Dict, List, Optional, Tuple

import pytest

from session_relay.channels.messaging import (
    CONNECTION_UPDATE,
    ClientHandle,
    MessagingClient,
    OutboundMessage,
)
from session_relay.core.commands import CommandRouter
from session_relay.core.controller import SessionController
from session_relay.core.credentials import CredentialStore
from session_relay.core.registry import SessionRegistry
from session_relay.core.retry import RetryPolicy

OWN_ADDRESS = "10000@s.whatsapp.net"

SAMPLE_CREDS = {
    "me": {"id": "123@s"},
    "platform": "web",
    "account": {"accountExpiry": 1700000000},
}


class FakeMessagingClient(MessagingClient):
    """Records opens, sends and closes instead of talking to a network"""

    def __init__(self, user_id: Optional[str] = OWN_ADDRESS):
        self.user_id = user_id
        self.opened: List[ClientHandle] = []
        self.sent: List[Tuple[str, str, OutboundMessage]] = []
        self.closed: List[ClientHandle] = []
        self.open_error: Optional[Exception] = None
        self.send_error: Optional[Exception] = None
        self.open_delay = 0.0
        self.send_delay = 0.0

    async def open(self, session_id, auth_dir, handlers=None):
        if self.open_delay:
            await asyncio.sleep(self.open_delay)
        if self.open_error:
            raise self.open_error
        handle = ClientHandle(session_id, user_id=self.user_id)
        handle.register(handlers)
        self.opened.append(handle)
        return handle

    async def send(self, handle, target, message):
        if self.send_delay:
            await asyncio.sleep(self.send_delay)
        if self.send_error:
            raise self.send_error
        self.sent.append((handle.session_id, target, message))
        return {"success": True, "messageId": f"msg{len(self.sent)}"}

    async def close(self, handle):
        handle.closed = True
        self.closed.append(handle)

    def texts_to(self, target: str) -> List[str]:
        return [m.text for _, t, m in self.sent if t == target and not m.is_document]


def open_update(**extra) -> Dict[str, Any]:
    return {"connection": "open", **extra}


def close_update(status: Optional[int]) -> Dict[str, Any]:
    return {
        "connection": "close",
        "lastDisconnect": {"error": {"output": {"statusCode": status}}},
    }


def write_creds(store: CredentialStore, session_id: str, creds: Optional[Dict] = None) -> None:
    directory = store.ensure_session_dir(session_id)
    (directory / "creds.json").write_text(json.dumps(creds or SAMPLE_CREDS))


async def emit_open(controller: SessionController, **extra) -> None:
    await controller.session.handle.emit(CONNECTION_UPDATE, open_update(**extra))


async def settle_reconnects(controller: SessionController) -> None:
    """Wait until no reconnect is pending"""
    while controller.reconnect_task is not None and not controller.reconnect_task.done():
        await controller.reconnect_task


@pytest.fixture
def fake_client():
    return FakeMessagingClient()


@pytest.fixture
def store(tmp_path):
    return CredentialStore(tmp_path, read_attempts=2, retry_delay=0)


@pytest.fixture
def registry():
    return SessionRegistry()


@pytest.fixture
def router():
    return CommandRouter(prefix="!")


@pytest.fixture
def retry_policy():
    return RetryPolicy(max_attempts=3, base_delay=0, jitter=0)


@pytest.fixture
def factory(fake_client, store, registry, router, retry_policy):
    return partial(
        _make_controller,
        client=fake_client,
        store=store,
        registry=registry,
        router=router,
        retry_policy=retry_policy,
    )


def _make_controller(session_id, client, store, registry, router, retry_policy):
    return SessionController(
        session_id,
        client=client,
        store=store,
        registry=registry,
        router=router,
        retry_policy=retry_policy,
        open_timeout=1.0,
        send_timeout=1.0,
    )
