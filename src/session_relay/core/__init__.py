"""
Session Relay Core

Session lifecycle, credential relay and chat command routing.
"""

from .errors import (
    RelayError,
    InitializationFailure,
    SessionNotFound,
    SessionAlreadyExists,
    CredentialsUnavailable,
    SendFailed,
    InvalidSessionId,
)
from .credentials import CredentialBlob, CredentialStore
from .retry import RetryPolicy
from .session import ConnectionState, Session
from .registry import SessionRegistry
from .commands import ChatCommand, Command, CommandContext, CommandRouter, parse_command
from .controller import DisconnectKind, SessionController, classify_disconnect

__all__ = [
    # Errors
    "RelayError",
    "InitializationFailure",
    "SessionNotFound",
    "SessionAlreadyExists",
    "CredentialsUnavailable",
    "SendFailed",
    "InvalidSessionId",
    # Credentials
    "CredentialBlob",
    "CredentialStore",
    # Sessions
    "RetryPolicy",
    "ConnectionState",
    "Session",
    "SessionRegistry",
    "SessionController",
    "DisconnectKind",
    "classify_disconnect",
    # Commands
    "ChatCommand",
    "Command",
    "CommandContext",
    "CommandRouter",
    "parse_command",
]
