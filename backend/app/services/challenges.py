# backend/app/services/challenges.py
"""
Single-use, TTL-bound WebAuthn challenges.

State per (user, purpose):

    START -> CHALLENGE_ISSUED -> VERIFIED | REJECTED | EXPIRED

`issue_challenge` moves to CHALLENGE_ISSUED (replacing any pending one).
`consume_challenge` is the only way out: it deletes the row atomically and
hands back the challenge, so of several concurrent verify attempts at most
one ever sees it. Whatever the verify outcome, the row is gone; a retry
needs a fresh start call.
"""
import logging
import uuid
from datetime import timedelta

from sqlalchemy import delete
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.clock import as_utc, utcnow
from backend.app.core.config import settings
from backend.app.core.errors import ChallengeExpiredOrMissing
from backend.app.models.challenge import ChallengeSession

logger = logging.getLogger(__name__)


def _insert_for(db: AsyncSession):
    """Dialect-specific INSERT construct, for ON CONFLICT support."""
    if db.get_bind().dialect.name == "postgresql":
        return pg_insert
    return sqlite_insert


async def issue_challenge(
    db: AsyncSession, user_id: str, purpose: str, challenge: str
) -> None:
    """
    Store a new pending challenge, replacing any for the same (user, purpose).

    The replace is a single INSERT .. ON CONFLICT DO UPDATE on the
    (user_id, purpose) key, so two overlapping start calls both succeed and
    the later one wins. Caller commits.
    """
    now = utcnow()
    expires_at = now + timedelta(seconds=settings.CHALLENGE_TTL_SECONDS)

    # Housekeeping: expired challenges of any user
    await db.execute(
        delete(ChallengeSession)
        .where(ChallengeSession.expires_at <= now)
        .execution_options(synchronize_session=False)
    )

    insert = _insert_for(db)
    stmt = insert(ChallengeSession).values(
        id=str(uuid.uuid4()),
        user_id=user_id,
        purpose=purpose,
        challenge=challenge,
        created_at=now,
        expires_at=expires_at,
    )
    await db.execute(
        stmt.on_conflict_do_update(
            index_elements=[ChallengeSession.user_id, ChallengeSession.purpose],
            set_={
                "challenge": stmt.excluded.challenge,
                "created_at": stmt.excluded.created_at,
                "expires_at": stmt.excluded.expires_at,
            },
        )
    )
    logger.info("Issued %s challenge for user %s", purpose, user_id)


async def consume_challenge(db: AsyncSession, user_id: str, purpose: str) -> str:
    """
    Take-and-delete the pending challenge and commit.

    Raises:
        ChallengeExpiredOrMissing: nothing pending, or it had expired
    """
    result = await db.execute(
        delete(ChallengeSession)
        .where(
            ChallengeSession.user_id == user_id,
            ChallengeSession.purpose == purpose,
        )
        .returning(ChallengeSession.challenge, ChallengeSession.expires_at)
        .execution_options(synchronize_session=False)
    )
    row = result.first()
    await db.commit()

    if row is None:
        raise ChallengeExpiredOrMissing()
    if as_utc(row.expires_at) <= utcnow():
        logger.info("Expired %s challenge presented by user %s", purpose, user_id)
        raise ChallengeExpiredOrMissing()

    logger.info("Consumed %s challenge for user %s", purpose, user_id)
    return row.challenge
