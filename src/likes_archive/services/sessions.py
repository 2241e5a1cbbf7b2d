"""Session and credential store.

Holds the OAuth token issued at login so background jobs can act on the
user's behalf, and persists tokens the data source rotates mid-job.
"""

import json
import secrets

from pydantic import ValidationError
from sqlalchemy.orm import Session, sessionmaker

from likes_archive.db.models import SessionModel
from likes_archive.db.session import get_session_context
from likes_archive.domain.models import Author, OAuthToken
from likes_archive.logging import get_logger
from likes_archive.services.encryption import EncryptionError, decrypt_token, encrypt_token
from likes_archive.services.importer import upsert_user

logger = get_logger(__name__)


class SessionNotFoundError(Exception):
    """Raised when a session is not found."""

    pass


class InvalidCredentialError(Exception):
    """Raised when a session no longer holds a usable OAuth token."""

    pass


class SessionStore:
    """Database-backed store of encrypted session credentials."""

    def __init__(self, session_factory: sessionmaker[Session] | None = None) -> None:
        self.session_factory = session_factory

    def _get(self, db: Session, session_id: str) -> SessionModel:
        record = db.get(SessionModel, session_id)
        if record is None:
            raise SessionNotFoundError(f"No session found with id '{session_id}'")
        return record

    def load(self, session_id: str) -> OAuthToken:
        """Load the OAuth token of a session.

        Raises:
            SessionNotFoundError: If the session does not exist.
            InvalidCredentialError: If the stored token cannot be read.
        """
        with get_session_context(self.session_factory) as db:
            record = self._get(db, session_id)
            encrypted = record.encrypted_token

        try:
            return OAuthToken.model_validate(json.loads(decrypt_token(encrypted)))
        except (EncryptionError, ValueError, ValidationError) as e:
            raise InvalidCredentialError(
                f"Session {session_id} does not hold a valid OAuth token"
            ) from e

    def save(self, session_id: str, token: OAuthToken | None) -> None:
        """Replace the OAuth token of a session.

        Raises:
            SessionNotFoundError: If the session does not exist.
            InvalidCredentialError: If the token is missing.
        """
        logger.debug("session_token_update", session_id=session_id)

        if token is None:
            raise InvalidCredentialError(f"Session {session_id} no longer has a valid OAuth token")

        with get_session_context(self.session_factory) as db:
            record = self._get(db, session_id)
            record.encrypted_token = encrypt_token(token.model_dump_json())

    def get_user_id(self, session_id: str) -> str:
        """Get the id of the user a session belongs to."""
        with get_session_context(self.session_factory) as db:
            return self._get(db, session_id).user_id

    def register_session(
        self,
        user: Author,
        token: OAuthToken,
        session_id: str | None = None,
    ) -> str:
        """Record a completed login.

        Creates the user if needed and stores the token under a new session.

        Returns:
            The session id.
        """
        session_id = session_id or secrets.token_urlsafe(32)

        with get_session_context(self.session_factory) as db:
            upsert_user(db, user)
            db.add(
                SessionModel(
                    id=session_id,
                    user_id=user.id,
                    encrypted_token=encrypt_token(token.model_dump_json()),
                )
            )

        logger.info("session_registered", user_id=user.id, username=user.username)
        return session_id
