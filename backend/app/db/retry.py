# backend/app/db/retry.py
"""
Bounded, retry-once execution of transactional units of work.

A unit of work is an async callable taking the session. It is run under
`asyncio.wait_for`; a timeout or a driver-level OperationalError (lock
timeout, dropped connection) rolls the session back and the unit is run
once more after a jittered pause. A second failure surfaces as
PersistenceUnavailable, which callers may retry.

Only persistence is retried here. WebAuthn verification is never placed
inside a unit of work.
"""
import asyncio
import logging
import random
from typing import Awaitable, Callable, TypeVar

from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.config import settings
from backend.app.core.errors import ExstagiumError, PersistenceUnavailable

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_ATTEMPTS = 2


async def with_retry(
    db: AsyncSession,
    operation: Callable[[AsyncSession], Awaitable[T]],
) -> T:
    for attempt in range(1, MAX_ATTEMPTS + 1):
        try:
            return await asyncio.wait_for(
                operation(db), timeout=settings.DB_OPERATION_TIMEOUT_SECONDS
            )
        except (asyncio.TimeoutError, OperationalError) as exc:
            await db.rollback()
            if attempt == MAX_ATTEMPTS:
                logger.error(
                    "Persistence unavailable after %d attempts (%s)",
                    attempt, type(exc).__name__,
                )
                raise PersistenceUnavailable() from exc
            delay = settings.DB_RETRY_BACKOFF_SECONDS * (1 + random.random())
            logger.warning(
                "Persistence attempt %d failed (%s), retrying in %.2fs",
                attempt, type(exc).__name__, delay,
            )
            await asyncio.sleep(delay)
        except ExstagiumError:
            # Terminal domain outcome: discard whatever the unit had written
            await db.rollback()
            raise
    raise PersistenceUnavailable()


def in_flight_window() -> float:
    """
    Upper bound, in seconds, on how long a write started through with_retry
    can stay uncommitted.

    Writers stamp rows with the time their attempt began, so a row may become
    visible up to this long after its `updated_at`.
    """
    return (
        settings.DB_OPERATION_TIMEOUT_SECONDS * MAX_ATTEMPTS
        + 2 * settings.DB_RETRY_BACKOFF_SECONDS * (MAX_ATTEMPTS - 1)
    )
