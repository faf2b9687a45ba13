# backend/app/models/user.py
import secrets
import uuid

from sqlalchemy import Column, Integer, String, Boolean, DateTime

from backend.app.core.clock import utcnow
from backend.app.db.base import Base


def _new_id() -> str:
    return str(uuid.uuid4())


def _random_hex() -> str:
    return secrets.token_hex(32)


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=_new_id)
    email = Column(String(255), unique=True, index=True, nullable=False)

    # Opaque user handle given to authenticators, distinct from the email
    webauthn_user_id = Column(String(64), unique=True, nullable=False, default=_random_hex)

    # Salt for client-side key derivation. The server hands it out but never
    # regenerates it; a master password change re-encrypts items client-side.
    key_derivation_salt = Column(String(64), nullable=False, default=_random_hex)

    # Coarse "something changed" counter. Incremented in SQL, never a timestamp.
    vault_version = Column(Integer, nullable=False, default=1)
    last_sync_at = Column(DateTime(timezone=True), nullable=True)

    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
