"""
Session Relay Channels

- MessagingClient: abstract messaging-protocol client
- BridgeMessagingClient: client backed by the Node.js bridge process
- control_api.ControlAPI: HTTP control surface (imported directly)
"""

from .messaging import (
    ClientHandle,
    InboundMessage,
    MessagingClient,
    OutboundMessage,
    CONNECTION_UPDATE,
    MESSAGES_UPSERT,
    CREDS_UPDATE,
    LOGGED_OUT_STATUS,
)
from .bridge import BridgeMessagingClient

__all__ = [
    "ClientHandle",
    "InboundMessage",
    "MessagingClient",
    "OutboundMessage",
    "BridgeMessagingClient",
    "CONNECTION_UPDATE",
    "MESSAGES_UPSERT",
    "CREDS_UPDATE",
    "LOGGED_OUT_STATUS",
]
