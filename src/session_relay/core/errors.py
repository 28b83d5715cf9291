"""
Relay Errors

Exception taxonomy shared by the registry, the session controller and the
control API. Disconnects are not exceptions; see ``controller.classify_disconnect``.
"""


class RelayError(Exception):
    """Base class for all session relay errors"""


class InitializationFailure(RelayError):
    """The messaging client could not be constructed or authenticated"""


class SessionNotFound(RelayError):
    """No session is registered under the requested identifier"""

    def __init__(self, session_id: str):
        super().__init__(f"Session not found: {session_id}")
        self.session_id = session_id


class SessionAlreadyExists(RelayError):
    """A session is already registered under the requested identifier"""

    def __init__(self, session_id: str):
        super().__init__(f"Session already exists: {session_id}")
        self.session_id = session_id


class CredentialsUnavailable(RelayError):
    """No readable credential blob exists for the session yet"""


class SendFailed(RelayError):
    """The messaging client rejected or timed out an outbound send"""


class InvalidSessionId(RelayError):
    """The session identifier cannot name a credential directory"""

    def __init__(self, session_id: str):
        super().__init__(f"Invalid session id: {session_id!r}")
        self.session_id = session_id
