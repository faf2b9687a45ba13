# backend/app/services/credentials.py
import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.clock import as_utc
from backend.app.core.errors import NotFound
from backend.app.db.retry import with_retry
from backend.app.models.credential import Credential
from backend.app.schemas.auth import CredentialInfo, CredentialListResponse

logger = logging.getLogger(__name__)


async def list_active(db: AsyncSession, user_id: str) -> List[Credential]:
    result = await db.execute(
        select(Credential)
        .where(Credential.user_id == user_id, Credential.is_active.is_(True))
        .order_by(Credential.created_at)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def get_active_for_user(
    db: AsyncSession, user_id: str, credential_id: str
) -> Optional[Credential]:
    """Look a credential up by its WebAuthn id, only among this user's credentials."""
    result = await db.execute(
        select(Credential)
        .where(
            Credential.credential_id == credential_id,
            Credential.user_id == user_id,
            Credential.is_active.is_(True),
        )
        .execution_options(populate_existing=True)
    )
    return result.scalars().first()


async def advance_counter(
    db: AsyncSession,
    row_id: str,
    expected_counter: int,
    new_counter: int,
    used_at: datetime,
) -> bool:
    """
    Compare-and-swap the signature counter.

    Only succeeds while the stored counter still equals `expected_counter`,
    so two logins that read the same old value cannot both advance it.
    Caller commits.
    """
    result = await db.execute(
        update(Credential)
        .where(
            Credential.id == row_id,
            Credential.counter == expected_counter,
            Credential.is_active.is_(True),
        )
        .values(counter=new_counter, last_used_at=used_at)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def list_credentials(db: AsyncSession, user_id: str) -> CredentialListResponse:
    """Registered authenticators for the device-manager view. No key material."""
    async def _unit(s: AsyncSession) -> CredentialListResponse:
        creds = await list_active(s, user_id)
        return CredentialListResponse(
            credentials=[
                CredentialInfo(
                    id=c.id,
                    device_name=c.device_name,
                    aaguid=c.aaguid,
                    counter=c.counter,
                    created_at=as_utc(c.created_at),
                    last_used_at=as_utc(c.last_used_at),
                )
                for c in creds
            ]
        )

    return await with_retry(db, _unit)


async def deactivate_credential(db: AsyncSession, user_id: str, row_id: str) -> None:
    async def _unit(s: AsyncSession) -> None:
        result = await s.execute(
            update(Credential)
            .where(
                Credential.id == row_id,
                Credential.user_id == user_id,
                Credential.is_active.is_(True),
            )
            .values(is_active=False)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise NotFound("Credential not found")
        await s.commit()

    await with_retry(db, _unit)
    logger.info("Deactivated credential %s for user %s", row_id, user_id)
