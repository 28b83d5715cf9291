"""
Relay Host Server (Daemon Mode)

Wires the bridge client, credential store, session registry and control API
together and serves until interrupted. Live sessions are not restored after a
restart; their credential directories are reused when the same session id is
started again.
"""

import asyncio
import logging
from functools import partial
from typing import Optional

from .channels.bridge import BridgeMessagingClient
from .channels.control_api import ControlAPI
from .channels.messaging import MessagingClient
from .config import RelayConfig, load_config
from .core.commands import CommandRouter
from .core.controller import SessionController
from .core.credentials import CredentialStore
from .core.registry import SessionRegistry

logger = logging.getLogger(__name__)


def build_controller(
    session_id: str,
    client: MessagingClient,
    store: CredentialStore,
    registry: SessionRegistry,
    router: CommandRouter,
    config: RelayConfig,
) -> SessionController:
    """Controller factory bound into the registry by ``build_app``"""
    return SessionController(
        session_id,
        client=client,
        store=store,
        registry=registry,
        router=router,
        retry_policy=config.reconnect,
        open_timeout=config.timeouts.open,
        send_timeout=config.timeouts.send,
        domain=config.sessions.domain,
    )


def build_app(config: RelayConfig, client: MessagingClient) -> ControlAPI:
    """Assemble the control API over a messaging client"""
    store = CredentialStore(
        config.auth_root,
        read_attempts=config.timeouts.credential_read_attempts
    )
    registry = SessionRegistry()
    router = CommandRouter(prefix=config.sessions.command_prefix)

    factory = partial(
        build_controller,
        client=client,
        store=store,
        registry=registry,
        router=router,
        config=config,
    )

    return ControlAPI(
        registry,
        factory,
        default_session_id=config.sessions.default_session_id,
        pair_wait_timeout=config.timeouts.pair_wait,
        host=config.server.host,
        port=config.server.port,
        log_level=config.logging.level.lower(),
    )


async def run_daemon(config: Optional[RelayConfig] = None, debug: bool = False):
    """
    Run the relay until interrupted.

    Command-line arguments are applied to ``config`` by the caller.
    """
    if config is None:
        config = load_config()

    if debug:
        logging.getLogger().setLevel(logging.DEBUG)

    config.auth_root.mkdir(parents=True, exist_ok=True)

    client = BridgeMessagingClient(
        http_url=config.bridge.http_url,
        ws_url=config.bridge.ws_url
    )
    await client.connect()

    api = build_app(config, client)

    print("=" * 60)
    print("  Session Relay")
    print("=" * 60)
    print(f"   Web Interface: http://localhost:{config.server.port}")
    print(f"   Bridge:        {config.bridge.http_url}")
    print(f"   Auth root:     {config.auth_root}")
    print(f"   Press Ctrl+C to stop")
    print("=" * 60)

    try:
        await api.start()
    except (KeyboardInterrupt, asyncio.CancelledError):
        print("\n\n  Shutting down gracefully...")
    finally:
        await api.stop()
        await client.disconnect()
