"""
Session Model

A session is one authenticated account connection, keyed by a caller-chosen
identifier. Its state only changes in response to connection events.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional


class ConnectionState(str, Enum):
    """Connection lifecycle of a session"""
    INITIALIZING = "initializing"
    OPEN = "open"
    CLOSED = "closed"


@dataclass
class Session:
    """Represents one messaging account session"""
    session_id: str
    credentials_path: Path
    state: ConnectionState = ConnectionState.INITIALIZING
    handle: Optional[Any] = None
    own_address: Optional[str] = None
    last_qr: Optional[str] = None
    reconnect_attempts: int = 0
    ever_opened: bool = False
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    connected_at: Optional[datetime] = None

    @property
    def is_connected(self) -> bool:
        return self.state == ConnectionState.OPEN

    def to_dict(self) -> Dict[str, Any]:
        """Listing entry for the control API"""
        return {
            "sessionId": self.session_id,
            "connectionState": self.state.value,
            "isConnected": self.is_connected,
        }
