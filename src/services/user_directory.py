"""Contact lookup for block owners."""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from src.models import User, utcnow
from src.utils.database import session_scope
from src.utils.errors import RepositoryError, ValidationError

logger = logging.getLogger(__name__)


@dataclass
class Contact:
    """Where to send a block owner's reminder."""

    email: str
    name: Optional[str] = None


class UserDirectory:
    """Resolves owner identities to contact details."""

    def __init__(self, session_factory=None):
        self.session_factory = session_factory

    def find_contact_by_owner_id(self, owner_id: str) -> Optional[Contact]:
        """Return the owner's contact, or None if unknown or missing an email.

        Raises:
            RepositoryError: The primary store failed
        """
        try:
            with session_scope(self.session_factory) as session:
                user = session.query(User).filter(User.external_id == owner_id).first()
                if user is None or not user.email:
                    return None
                return Contact(email=user.email, name=user.name)
        except SQLAlchemyError as e:
            raise RepositoryError(str(e)) from e

    def sync_user(self, external_id: str, email: str, name: Optional[str] = None) -> User:
        """Create or refresh a user record when the auth layer reports a sign-in."""
        if not external_id or not email:
            raise ValidationError("external_id and email are required")
        email = email.strip().lower()
        name = name.strip() if name else None

        try:
            with session_scope(self.session_factory) as session:
                user = session.query(User).filter(User.external_id == external_id).first()
                if user is None:
                    user = User(external_id=external_id, email=email, name=name)
                    session.add(user)
                    logger.info(f"Created user {external_id}")
                else:
                    user.email = email
                    if name:
                        user.name = name
                    user.updated_at = utcnow()
                session.flush()
                session.refresh(user)
                session.expunge(user)
                return user
        except SQLAlchemyError as e:
            logger.error(f"Error syncing user {external_id}: {e}")
            raise RepositoryError(str(e)) from e
