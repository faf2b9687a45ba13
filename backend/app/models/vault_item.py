# backend/app/models/vault_item.py
import uuid

from sqlalchemy import Column, Integer, String, Text, ForeignKey, DateTime, Index, CheckConstraint

from backend.app.core.clock import utcnow
from backend.app.db.base import Base

ITEM_TYPES = ("credential", "note", "totp", "attachment")


class VaultItem(Base):
    __tablename__ = "vault_items"

    # Clients may mint ids offline, so the id is a string supplied by the
    # first writer (UUID when the server generates it).
    id = Column(String(64), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    # --- METADATA (visible to the server) ---
    item_type = Column(String(16), nullable=False)
    version = Column(Integer, nullable=False, default=1)

    # --- SECRET DATA (server is blind) ---
    # encrypted_data / iv / auth_tag are one AES-GCM unit and are always
    # written together.
    encrypted_data = Column(Text, nullable=False)
    iv = Column(String(64), nullable=False)
    auth_tag = Column(String(64), nullable=False)

    # Optional encrypted search metadata, equally opaque
    encrypted_metadata = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    # Tombstone. Rows are never hard-deleted so offline clients see the delete.
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_vault_items_user_updated", "user_id", "updated_at"),
        CheckConstraint(
            "item_type IN (" + ", ".join(f"'{t}'" for t in ITEM_TYPES) + ")",
            name="ck_vault_items_item_type",
        ),
    )
