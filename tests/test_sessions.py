"""Tests for the session store and token encryption."""

import pytest

from conftest import OWNER
from likes_archive.db.models import SessionModel, UserModel
from likes_archive.db.session import get_session_context
from likes_archive.domain.models import OAuthToken
from likes_archive.services.encryption import (
    EncryptionError,
    decrypt_token,
    encrypt_token,
    generate_master_key,
)
from likes_archive.services.sessions import InvalidCredentialError, SessionNotFoundError


class TestEncryption:
    """Tests for token encryption."""

    def test_encrypted_token_is_not_plaintext(self) -> None:
        """Test tokens are unreadable at rest and decrypt back."""
        encrypted = encrypt_token("secret-access-token")

        assert "secret-access-token" not in encrypted
        assert decrypt_token(encrypted) == "secret-access-token"

    def test_empty_token_is_rejected(self) -> None:
        """Test empty input raises EncryptionError."""
        with pytest.raises(EncryptionError):
            encrypt_token("")

    def test_corrupted_token_is_rejected(self) -> None:
        """Test undecryptable input raises EncryptionError."""
        with pytest.raises(EncryptionError):
            decrypt_token("not-a-fernet-token")

    def test_generated_keys_are_unique(self) -> None:
        """Test new master keys are random."""
        assert generate_master_key() != generate_master_key()


class TestSessionStore:
    """Tests for SessionStore."""

    def test_register_creates_user_and_session(
        self, session_store, session_factory, token
    ) -> None:
        """Test login stores the user and an encrypted token."""
        session_id = session_store.register_session(OWNER, token)

        with get_session_context(session_factory) as db:
            assert db.get(UserModel, OWNER.id).username == OWNER.username
            record = db.get(SessionModel, session_id)
            assert token.access_token not in record.encrypted_token

        assert session_store.get_user_id(session_id) == OWNER.id
        assert session_store.load(session_id) == token

    def test_save_replaces_token(self, session_store, owner_session) -> None:
        """Test a rotated token replaces the stored one."""
        rotated = OAuthToken(access_token="access-2", refresh_token="refresh-2", expires_at=1)

        session_store.save(owner_session, rotated)

        assert session_store.load(owner_session) == rotated

    def test_save_without_token_is_rejected(self, session_store, owner_session, token) -> None:
        """Test a missing token is an invalid credential and leaves the old one."""
        with pytest.raises(InvalidCredentialError):
            session_store.save(owner_session, None)

        assert session_store.load(owner_session) == token

    def test_unknown_session(self, session_store) -> None:
        """Test loading an unknown session raises SessionNotFoundError."""
        with pytest.raises(SessionNotFoundError):
            session_store.load("missing")

    def test_unreadable_token_is_invalid(self, session_store, session_factory, owner_session) -> None:
        """Test a stored token that cannot be decrypted is an invalid credential."""
        with get_session_context(session_factory) as db:
            db.get(SessionModel, owner_session).encrypted_token = "garbage"

        with pytest.raises(InvalidCredentialError):
            session_store.load(owner_session)
