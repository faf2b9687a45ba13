# backend/app/models/credential.py
"""
ORM model for WebAuthn public-key credentials.

Security: only the public key is stored. The private key never leaves the
authenticator. `counter` is the only clone-detection signal and may only
move forward (see services.authentication).
"""
import uuid

from sqlalchemy import Column, String, Text, ForeignKey, DateTime, Boolean, BigInteger

from backend.app.core.clock import utcnow
from backend.app.db.base import Base


class Credential(Base):
    __tablename__ = "webauthn_credentials"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)

    # base64url credential id. Unique across ALL users, not per user.
    credential_id = Column(Text, unique=True, nullable=False)

    # base64url COSE public key
    public_key = Column(Text, nullable=False)

    counter = Column(BigInteger, nullable=False, default=0)

    device_name = Column(String(255), nullable=True)
    aaguid = Column(String(36), nullable=True)

    last_used_at = Column(DateTime(timezone=True), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
