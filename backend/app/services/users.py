# backend/app/services/users.py
import logging
from typing import Optional

from email_validator import EmailNotValidError, validate_email
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.errors import InvalidInput, NotFound
from backend.app.models.user import User

logger = logging.getLogger(__name__)


def normalize_email(email: Optional[str]) -> str:
    """Validate an email address and return its canonical (lower-case) form."""
    if not email or not isinstance(email, str):
        raise InvalidInput("Email is required")
    try:
        result = validate_email(email.strip(), check_deliverability=False)
    except EmailNotValidError:
        raise InvalidInput("Email is malformed")
    return result.normalized.lower()


async def get_user(db: AsyncSession, user_id: str) -> User:
    user = await db.get(User, user_id, populate_existing=True)
    if user is None or not user.is_active:
        raise NotFound("User not found")
    return user


async def get_user_by_email(db: AsyncSession, email: str) -> User:
    result = await db.execute(select(User).where(User.email == email))
    user = result.scalars().first()
    if user is None or not user.is_active:
        raise NotFound("User not found")
    return user


async def get_or_create_user(db: AsyncSession, email: str) -> User:
    """
    Idempotent lookup-or-create by email.

    Two concurrent first registrations for the same address both end up with
    the single row: the loser of the unique-constraint race re-reads it.
    """
    result = await db.execute(select(User).where(User.email == email))
    user = result.scalars().first()
    if user is not None:
        if not user.is_active:
            raise NotFound("User not found")
        return user

    user = User(email=email)
    try:
        async with db.begin_nested():
            db.add(user)
            await db.flush()
    except IntegrityError:
        result = await db.execute(select(User).where(User.email == email))
        user = result.scalars().one()
        return user

    logger.info("Created user %s", user.id)
    return user
