# backend/app/db/base.py
"""
Declarative base for the ORM models.

Tables: users, webauthn_credentials, vault_items, challenge_sessions.
The engine, session factory and request dependency are re-exported from
db.session so endpoints only need to import from here.
"""
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


from backend.app.db.session import (  # noqa: E402
    engine,
    AsyncSessionLocal,
    get_db,
)

__all__ = ["Base", "engine", "AsyncSessionLocal", "get_db"]
