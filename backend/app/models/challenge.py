# backend/app/models/challenge.py
"""
ORM model for pending WebAuthn challenges.

One row per (user, purpose). Issuing a new challenge replaces the old one;
the first verify attempt deletes the row whatever the outcome.
"""
import uuid

from sqlalchemy import Column, String, ForeignKey, DateTime, UniqueConstraint

from backend.app.core.clock import utcnow
from backend.app.db.base import Base

PURPOSE_REGISTRATION = "registration"
PURPOSE_LOGIN = "login"


class ChallengeSession(Base):
    __tablename__ = "challenge_sessions"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    purpose = Column(String(16), nullable=False)

    # base64url challenge exactly as sent to the client
    challenge = Column(String(128), nullable=False)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    expires_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "purpose", name="uq_challenge_user_purpose"),
    )
