"""
Session Relay Configuration Schema

Defines the configuration structure of the relay service.
All configuration can be specified via relay.yaml or CLI flags.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

from ..core.retry import RetryPolicy


@dataclass
class ServerConfig:
    """HTTP control API listener"""
    host: str = "0.0.0.0"
    port: int = 3000


@dataclass
class SessionsConfig:
    """Session defaults and chat conventions"""
    auth_root: str = "."
    default_session_id: str = "default"
    domain: str = "s.whatsapp.net"
    command_prefix: str = "!"


@dataclass
class BridgeConfig:
    """Connection to the messaging bridge process"""
    http_url: str = "http://localhost:3100"
    ws_url: str = "ws://localhost:3100"


@dataclass
class TimeoutsConfig:
    """Timeouts in seconds"""
    open: float = 30.0           # opening a client handle
    send: float = 30.0           # each outbound send
    pair_wait: float = 120.0     # waiting for "open" before a one-shot pairing
    credential_read_attempts: int = 3


@dataclass
class LoggingConfig:
    level: str = "INFO"


@dataclass
class RelayConfig:
    """
    Central configuration for the session relay.

    Example relay.yaml:
    ```yaml
    server:
      host: "0.0.0.0"
      port: 3000

    sessions:
      auth_root: "./sessions"
      default_session_id: "default"

    bridge:
      http_url: "${BRIDGE_URL:-http://localhost:3100}"

    reconnect:
      max_attempts: 10
      base_delay: 1.0
    ```
    """
    server: ServerConfig = field(default_factory=ServerConfig)
    sessions: SessionsConfig = field(default_factory=SessionsConfig)
    bridge: BridgeConfig = field(default_factory=BridgeConfig)
    timeouts: TimeoutsConfig = field(default_factory=TimeoutsConfig)
    reconnect: RetryPolicy = field(default_factory=RetryPolicy)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    # Directory that relative paths resolve against
    working_dir: Optional[Path] = None

    @property
    def auth_root(self) -> Path:
        root = Path(self.sessions.auth_root)
        if not root.is_absolute() and self.working_dir:
            root = Path(self.working_dir) / root
        return root

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RelayConfig":
        """Create configuration from dictionary (parsed YAML)"""
        server = data.get("server") or {}
        sessions = data.get("sessions") or {}
        bridge = data.get("bridge") or {}
        timeouts = data.get("timeouts") or {}
        log = data.get("logging") or {}

        working_dir = data.get("working_dir")

        return cls(
            server=ServerConfig(
                host=server.get("host", "0.0.0.0"),
                port=int(server.get("port", 3000)),
            ),
            sessions=SessionsConfig(
                auth_root=str(sessions.get("auth_root", ".")),
                default_session_id=sessions.get("default_session_id", "default"),
                domain=sessions.get("domain", "s.whatsapp.net"),
                command_prefix=sessions.get("command_prefix", "!"),
            ),
            bridge=BridgeConfig(
                http_url=bridge.get("http_url", "http://localhost:3100"),
                ws_url=bridge.get("ws_url", "ws://localhost:3100"),
            ),
            timeouts=TimeoutsConfig(
                open=float(timeouts.get("open", 30.0)),
                send=float(timeouts.get("send", 30.0)),
                pair_wait=float(timeouts.get("pair_wait", 120.0)),
                credential_read_attempts=int(timeouts.get("credential_read_attempts", 3)),
            ),
            reconnect=RetryPolicy.from_dict(data.get("reconnect") or {}),
            logging=LoggingConfig(level=str(log.get("level", "INFO")).upper()),
            working_dir=Path(working_dir) if working_dir else None,
        )
