"""
Test Credential Store

Tests for credential persistence, tolerant reads and display summaries.
"""

import json

import pytest

from session_relay.core.credentials import CredentialBlob, CredentialStore
from session_relay.core.errors import CredentialsUnavailable, InvalidSessionId

from conftest import SAMPLE_CREDS


class TestCredentialBlob:
    """Tests for the display fields of a credential snapshot"""

    def test_summary_contains_display_fields(self):
        """Summary shows phone, platform and the expiry date"""
        blob = CredentialBlob(session_id="a", raw=b"{}", data=SAMPLE_CREDS)

        summary = blob.summary()

        assert "123@s" in summary
        assert "web" in summary
        assert "2023-11-14" in summary
        assert "Session ID: a" in summary

    def test_missing_fields_use_placeholders(self):
        """Absent fields fall back to N/A, Web and Unknown"""
        blob = CredentialBlob(session_id="a", raw=b"{}", data={})

        summary = blob.summary()

        assert "Phone: N/A" in summary
        assert "Platform: Web" in summary
        assert "Expires: Unknown" in summary

    def test_malformed_expiry(self):
        """A non-numeric expiry is reported as Unknown"""
        blob = CredentialBlob(session_id="a", raw=b"{}", data={"account": {"accountExpiry": "soon"}})
        assert blob.expiry_date() == "Unknown"

    def test_self_notice(self):
        """Self notice advertises the pair command"""
        blob = CredentialBlob(session_id="bot", raw=b"{}", data=SAMPLE_CREDS)

        notice = blob.self_notice(connected=True, command_prefix="!")

        assert "Connected: true" in notice
        assert "!pair <number>" in notice

    def test_filename(self):
        blob = CredentialBlob(session_id="bot", raw=b"{}")
        assert blob.filename == "creds-bot.json"


class TestCredentialStore:
    """Tests for reading and writing credential documents"""

    def setup_method(self):
        self.session_id = "alpha"

    def test_paths(self, tmp_path):
        store = CredentialStore(tmp_path)

        assert store.session_dir("alpha") == tmp_path / "auth_info_alpha"
        assert store.credentials_path("alpha") == tmp_path / "auth_info_alpha" / "creds.json"

    @pytest.mark.asyncio
    async def test_save_then_load(self, store):
        """A saved document reads back as a snapshot with the exact bytes"""
        store.save(self.session_id, SAMPLE_CREDS)

        blob = await store.load(self.session_id)

        assert blob.me_id == "123@s"
        assert blob.platform == "web"
        assert blob.account_expiry == 1700000000
        assert json.loads(blob.raw) == SAMPLE_CREDS

    def test_save_leaves_no_temp_files(self, store):
        """Atomic write leaves only creds.json behind"""
        store.save(self.session_id, SAMPLE_CREDS)
        store.save(self.session_id, {**SAMPLE_CREDS, "platform": "android"})

        files = sorted(p.name for p in store.session_dir(self.session_id).iterdir())

        assert files == ["creds.json"]
        assert json.loads(store.credentials_path(self.session_id).read_text())["platform"] == "android"

    @pytest.mark.asyncio
    async def test_load_missing(self, store):
        """No document yet means credentials are unavailable"""
        with pytest.raises(CredentialsUnavailable):
            await store.load(self.session_id)

    @pytest.mark.asyncio
    async def test_load_partial_document(self, store):
        """A truncated document is retried, then reported unavailable"""
        directory = store.ensure_session_dir(self.session_id)
        (directory / "creds.json").write_text('{"me": {"id": ')

        with pytest.raises(CredentialsUnavailable) as exc_info:
            await store.load(self.session_id)

        assert "could not be read" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_load_non_object(self, store):
        """A JSON array is not a credential document"""
        directory = store.ensure_session_dir(self.session_id)
        (directory / "creds.json").write_text("[1, 2]")

        with pytest.raises(CredentialsUnavailable):
            await store.load(self.session_id)

    def test_exists(self, store):
        assert store.exists(self.session_id) is False
        store.save(self.session_id, SAMPLE_CREDS)
        assert store.exists(self.session_id) is True

    @pytest.mark.parametrize("session_id", [
        "x/../../victim",
        "../victim",
        "a/b",
        "a\\b",
        "..",
        "",
        "name with spaces",
        "trailing\n",
        "x" * 200,
    ])
    def test_rejects_unsafe_session_ids(self, tmp_path, session_id):
        """Ids that could escape the auth root never reach the filesystem"""
        root = tmp_path / "auth"
        root.mkdir()
        victim = tmp_path / "victim"
        victim.mkdir()
        victim.chmod(0o755)
        before = sorted(p.name for p in tmp_path.iterdir())
        store = CredentialStore(root)

        with pytest.raises(InvalidSessionId):
            store.ensure_session_dir(session_id)

        assert sorted(p.name for p in tmp_path.iterdir()) == before
        assert list(root.iterdir()) == []
        assert victim.stat().st_mode & 0o777 == 0o755

    def test_accepts_plain_ids(self, tmp_path):
        store = CredentialStore(tmp_path)

        for session_id in ("default", "447700900123", "bot_1.main-2"):
            assert store.ensure_session_dir(session_id).parent == tmp_path
