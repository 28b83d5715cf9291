"""
Credential Store

Reads and writes the persisted credential blob of each session.

Directory Structure:
<auth_root>/
└── auth_info_[session_id]/
    └── creds.json            # Credential document owned by the messaging client

The blob is opaque: only ``me.id``, ``platform`` and ``account.accountExpiry``
are read, for display. Writes go through a temporary file and ``os.replace``
so a reader never sees a half-written document; a read that still fails to
parse is retried a few times before giving up.
"""

import asyncio
import json
import logging
import os
import re
import tempfile
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Union

from .errors import CredentialsUnavailable, InvalidSessionId

logger = logging.getLogger(__name__)

CREDENTIALS_FILENAME = "creds.json"
CREDENTIALS_MIMETYPE = "application/json"

SESSION_ID_PATTERN = re.compile(r"[A-Za-z0-9_.-]{1,128}")


@dataclass
class CredentialBlob:
    """Immutable snapshot of a session's credential document"""
    session_id: str
    raw: bytes
    data: Dict[str, Any] = field(default_factory=dict)

    @property
    def me_id(self) -> Optional[str]:
        return (self.data.get("me") or {}).get("id")

    @property
    def platform(self) -> Optional[str]:
        return self.data.get("platform")

    @property
    def account_expiry(self) -> Optional[int]:
        return (self.data.get("account") or {}).get("accountExpiry")

    @property
    def filename(self) -> str:
        return f"creds-{self.session_id}.json"

    def expiry_date(self) -> str:
        """Expiry as a UTC date string, or 'Unknown' when absent or malformed"""
        expiry = self.account_expiry
        if expiry is None:
            return "Unknown"
        try:
            return datetime.fromtimestamp(int(expiry), tz=timezone.utc).strftime("%Y-%m-%d")
        except (TypeError, ValueError, OverflowError, OSError):
            return "Unknown"

    def summary(self) -> str:
        """Human-readable message sent ahead of the credential file"""
        return (
            "🔐 *SESSION CREDENTIALS*\n\n"
            f"Session ID: {self.session_id}\n"
            f"Phone: {self.me_id or 'N/A'}\n"
            f"Platform: {self.platform or 'Web'}\n"
            f"Expires: {self.expiry_date()}\n\n"
            "_Keep these credentials secure!_"
        )

    def self_notice(self, connected: bool, command_prefix: str = "!") -> str:
        """Notice relayed to the account's own chat when the connection opens"""
        return (
            "🤖 *BOT CREDENTIALS*\n\n"
            f"Session ID: {self.session_id}\n"
            f"Connected: {str(connected).lower()}\n"
            f"Phone: {self.me_id or 'N/A'}\n"
            f"Platform: {self.platform or 'Web'}\n\n"
            f"Use {command_prefix}pair <number> to share credentials"
        )


class CredentialStore:
    """Per-session credential directories under a common root"""

    def __init__(
        self,
        auth_root: Union[str, Path] = ".",
        read_attempts: int = 3,
        retry_delay: float = 0.05
    ):
        self.auth_root = Path(auth_root)
        self.read_attempts = max(1, read_attempts)
        self.retry_delay = retry_delay

    def session_dir(self, session_id: str) -> Path:
        """
        Directory of a session's credentials.

        Raises:
            InvalidSessionId: The id has characters outside ``[A-Za-z0-9_.-]``,
                contains ``..``, or would resolve outside the auth root.
        """
        if not SESSION_ID_PATTERN.fullmatch(session_id or "") or ".." in session_id:
            raise InvalidSessionId(session_id)

        path = self.auth_root / f"auth_info_{session_id}"
        root = self.auth_root.resolve()
        if path.resolve().parent != root:
            raise InvalidSessionId(session_id)
        return path

    def credentials_path(self, session_id: str) -> Path:
        return self.session_dir(session_id) / CREDENTIALS_FILENAME

    def ensure_session_dir(self, session_id: str) -> Path:
        """Create the session directory (owner-only) if missing"""
        path = self.session_dir(session_id)
        path.mkdir(parents=True, exist_ok=True)
        os.chmod(path, 0o700)
        return path

    def exists(self, session_id: str) -> bool:
        return self.credentials_path(session_id).exists()

    def save(self, session_id: str, creds: Dict[str, Any]) -> Path:
        """Atomically replace the credential document"""
        directory = self.ensure_session_dir(session_id)
        target = directory / CREDENTIALS_FILENAME

        fd, tmp_name = tempfile.mkstemp(prefix=".creds-", suffix=".tmp", dir=directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(creds, f)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, target)
        except BaseException:
            if os.path.exists(tmp_name):
                os.remove(tmp_name)
            raise

        logger.debug(f"Saved credentials for {session_id} to {target}")
        return target

    async def load(self, session_id: str) -> CredentialBlob:
        """
        Read the credential document back as a snapshot.

        Raises:
            CredentialsUnavailable: No document exists, or it never parsed
                within ``read_attempts`` tries.
        """
        path = self.credentials_path(session_id)
        last_error: Optional[Exception] = None

        for attempt in range(1, self.read_attempts + 1):
            if not path.exists():
                raise CredentialsUnavailable(
                    f"No credentials stored for session '{session_id}' yet"
                )
            try:
                raw = path.read_bytes()
                data = json.loads(raw.decode("utf-8"))
                if not isinstance(data, dict):
                    raise ValueError("credential document is not a JSON object")
                return CredentialBlob(session_id=session_id, raw=raw, data=data)
            except (ValueError, UnicodeDecodeError) as e:
                last_error = e
                logger.warning(
                    f"Credential read for {session_id} failed (attempt {attempt}/{self.read_attempts}): {e}"
                )
                if attempt < self.read_attempts:
                    await asyncio.sleep(self.retry_delay)

        raise CredentialsUnavailable(
            f"Credentials for session '{session_id}' could not be read: {last_error}"
        )
