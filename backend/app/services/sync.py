# backend/app/services/sync.py
"""
Versioned delta sync over opaque ciphertext.

The server never looks inside encrypted_data / iv / auth_tag /
encrypted_metadata; it only routes, counts and versions them.

Versioning rules:
- VaultItem.version starts at 1 and grows by exactly 1 per successful
  mutation (update, revive, soft delete). The increment is done in SQL
  (`version = version + 1`) inside the UPDATE itself, so concurrent
  writers to one item never observe the same pre-write version.
- User.vault_version is a plain counter bumped in the same transaction as
  the batch it accompanies. It is never derived from the wall clock.
- Conflicts are last-writer-wins per item unless the client sends
  `baseVersion`, in which case a stale update is refused with
  VersionConflict instead of overwriting.

Locking: a batch save bumps the user row first, a batch delete locks it
first. Writers of one user's vault therefore queue on that row and never
take item locks in opposite orders.
"""
import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, List, Optional, Tuple

from pydantic import ValidationError
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.clock import as_utc, utcnow
from backend.app.core.errors import (
    PARTIAL_BATCH_FAILURE,
    InvalidInput,
    NotFound,
    VersionConflict,
)
from backend.app.db.retry import in_flight_window, with_retry
from backend.app.models.user import User
from backend.app.models.vault_item import VaultItem
from backend.app.schemas.sync import (
    DeltaItem,
    DeltaSyncResponse,
    ModifiedItem,
    SyncStatusResponse,
)
from backend.app.schemas.vault import (
    DeleteItemsResponse,
    ItemError,
    ItemsResponse,
    Manifest,
    ManifestEntry,
    ManifestResponse,
    SavedItem,
    SaveItemsResponse,
    VaultItemIn,
    VaultItemOut,
)
from backend.app.services.users import get_user

logger = logging.getLogger(__name__)


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────

async def _bump_vault_version(db: AsyncSession, user_id: str, now: datetime) -> None:
    result = await db.execute(
        update(User)
        .where(User.id == user_id, User.is_active.is_(True))
        .values(vault_version=User.vault_version + 1, last_sync_at=now, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise NotFound("User not found")


async def _lock_user(db: AsyncSession, user_id: str) -> None:
    result = await db.execute(
        select(User.id).where(User.id == user_id, User.is_active.is_(True)).with_for_update()
    )
    if result.first() is None:
        raise NotFound("User not found")


def _live(user_id: str):
    return (VaultItem.user_id == user_id) & VaultItem.deleted_at.is_(None)


def _entry_id(raw: Any) -> Optional[str]:
    if isinstance(raw, dict) and raw.get("id") is not None:
        return str(raw.get("id"))
    return None


def _dedupe(ids: List[Any]) -> List[str]:
    seen, out = set(), []
    for item_id in ids:
        if not isinstance(item_id, str) or not item_id or item_id in seen:
            continue
        seen.add(item_id)
        out.append(item_id)
    return out


def _to_out(item: VaultItem) -> VaultItemOut:
    return VaultItemOut(
        id=item.id,
        encrypted_data=item.encrypted_data,
        iv=item.iv,
        auth_tag=item.auth_tag,
        type=item.item_type,
        version=item.version,
        encrypted_metadata=item.encrypted_metadata,
        updated_at=as_utc(item.updated_at),
    )


def _to_delta(item: VaultItem) -> DeltaItem:
    return DeltaItem(
        id=item.id,
        encrypted_data=item.encrypted_data,
        iv=item.iv,
        auth_tag=item.auth_tag,
        type=item.item_type,
        version=item.version,
        encrypted_metadata=item.encrypted_metadata,
        created_at=as_utc(item.created_at),
        updated_at=as_utc(item.updated_at),
        deleted_at=as_utc(item.deleted_at),
    )


async def _upsert(db: AsyncSession, user_id: str, entry: VaultItemIn, now: datetime) -> SavedItem:
    """
    Write one validated entry. Caller provides the savepoint.

    - id owned by the caller        -> in-place update, version + 1
                                       (a tombstoned item is revived)
    - id unknown                    -> created under that id, version 1
    - id owned by someone else      -> created under a fresh id, version 1
    - no id                         -> created under a fresh id, version 1
    """
    new_id = entry.id

    if entry.id is not None:
        stmt = update(VaultItem).where(VaultItem.id == entry.id, VaultItem.user_id == user_id)
        if entry.base_version is not None:
            stmt = stmt.where(VaultItem.version == entry.base_version)

        # Ciphertext triple is replaced as one unit
        row = (
            await db.execute(
                stmt.values(
                    encrypted_data=entry.encrypted_data,
                    iv=entry.iv,
                    auth_tag=entry.auth_tag,
                    item_type=entry.type,
                    encrypted_metadata=entry.encrypted_metadata,
                    version=VaultItem.version + 1,
                    updated_at=now,
                    deleted_at=None,
                )
                .returning(VaultItem.id, VaultItem.version)
                .execution_options(synchronize_session=False)
            )
        ).first()
        if row is not None:
            return SavedItem(id=row.id, version=row.version, created=False, updated_at=now)

        owner = await db.scalar(select(VaultItem.user_id).where(VaultItem.id == entry.id))
        if owner == user_id:
            # Exists and is ours, so only the base version can have excluded it
            raise VersionConflict()
        if owner is not None:
            new_id = None

    item = VaultItem(
        id=new_id or str(uuid.uuid4()),
        user_id=user_id,
        item_type=entry.type,
        version=1,
        encrypted_data=entry.encrypted_data,
        iv=entry.iv,
        auth_tag=entry.auth_tag,
        encrypted_metadata=entry.encrypted_metadata,
        created_at=now,
        updated_at=now,
    )
    db.add(item)
    await db.flush()
    return SavedItem(id=item.id, version=1, created=True, updated_at=now)


# ─────────────────────────────────────────────────────────────────────────────
# Operations
# ─────────────────────────────────────────────────────────────────────────────

async def get_manifest(db: AsyncSession, user_id: str) -> ManifestResponse:
    """Metadata of every live item; no ciphertext."""
    async def _unit(s: AsyncSession) -> ManifestResponse:
        user = await get_user(s, user_id)
        result = await s.execute(
            select(
                VaultItem.id,
                VaultItem.item_type,
                VaultItem.version,
                VaultItem.created_at,
                VaultItem.updated_at,
            )
            .where(_live(user_id))
            .order_by(VaultItem.updated_at.desc())
        )
        entries = [
            ManifestEntry(
                id=row.id,
                type=row.item_type,
                version=row.version,
                created_at=as_utc(row.created_at),
                updated_at=as_utc(row.updated_at),
            )
            for row in result
        ]
        return ManifestResponse(
            manifest=Manifest(
                items=entries,
                vault_version=user.vault_version,
                last_sync_at=as_utc(user.last_sync_at),
                total_items=len(entries),
            )
        )

    return await with_retry(db, _unit)


async def get_items(db: AsyncSession, user_id: str, ids: List[str]) -> ItemsResponse:
    """
    Full records for the requested ids.

    Ids that are unknown, tombstoned or owned by someone else are left out
    without comment; the response never distinguishes those cases.
    """
    wanted = _dedupe(ids)
    if not wanted:
        return ItemsResponse(items=[])

    async def _unit(s: AsyncSession) -> ItemsResponse:
        result = await s.execute(
            select(VaultItem)
            .where(_live(user_id), VaultItem.id.in_(wanted))
            .execution_options(populate_existing=True)
        )
        found = {item.id: item for item in result.scalars().all()}
        return ItemsResponse(items=[_to_out(found[i]) for i in wanted if i in found])

    return await with_retry(db, _unit)


async def save_items(db: AsyncSession, user_id: str, batch: Any) -> SaveItemsResponse:
    if not isinstance(batch, list):
        raise InvalidInput("Items array is required")

    async def _unit(s: AsyncSession) -> Tuple[List[SavedItem], List[ItemError]]:
        now = utcnow()
        # First statement of the batch: takes the user's write lock
        await _bump_vault_version(s, user_id, now)

        saved: List[SavedItem] = []
        errors: List[ItemError] = []
        for raw in batch:
            try:
                entry = VaultItemIn.model_validate(raw)
            except ValidationError:
                errors.append(
                    ItemError(id=_entry_id(raw), kind=InvalidInput.kind, error="Missing required fields")
                )
                continue

            try:
                async with s.begin_nested():
                    saved.append(await _upsert(s, user_id, entry, now))
            except VersionConflict as exc:
                errors.append(ItemError(id=entry.id, kind=exc.kind, error=exc.message))
            except IntegrityError:
                # Lost a create race on a client-chosen id
                errors.append(
                    ItemError(id=entry.id, kind=VersionConflict.kind, error="Failed to save item")
                )

        await s.commit()
        return saved, errors

    saved, errors = await with_retry(db, _unit)
    logger.info(
        "Batch save for user %s: %d saved, %d rejected", user_id, len(saved), len(errors)
    )

    return SaveItemsResponse(
        success=True,
        saved_items=saved,
        errors=errors or None,
        total_saved=len(saved),
        total_errors=len(errors),
        error=PARTIAL_BATCH_FAILURE if saved and errors else None,
    )


async def delete_items(db: AsyncSession, user_id: str, ids: Any) -> DeleteItemsResponse:
    """
    Soft-delete owned, live items.

    Only ids that were actually owned and live are reported back; an id
    belonging to another user looks exactly like an id that does not exist.
    """
    if not isinstance(ids, list):
        raise InvalidInput("itemIds array is required")
    wanted = _dedupe(ids)
    if not wanted:
        return DeleteItemsResponse(success=True, deleted_count=0, deleted_ids=[])

    async def _unit(s: AsyncSession) -> List[str]:
        now = utcnow()
        await _lock_user(s, user_id)
        result = await s.execute(
            update(VaultItem)
            .where(_live(user_id), VaultItem.id.in_(wanted))
            .values(deleted_at=now, updated_at=now, version=VaultItem.version + 1)
            .returning(VaultItem.id)
            .execution_options(synchronize_session=False)
        )
        deleted = {row.id for row in result}
        if deleted:
            await _bump_vault_version(s, user_id, now)
        await s.commit()
        return [i for i in wanted if i in deleted]

    deleted_ids = await with_retry(db, _unit)
    logger.info("Batch delete for user %s: %d deleted", user_id, len(deleted_ids))
    return DeleteItemsResponse(
        success=True, deleted_count=len(deleted_ids), deleted_ids=deleted_ids
    )


async def get_sync_status(
    db: AsyncSession, user_id: str, last_sync_version: Optional[int] = None
) -> SyncStatusResponse:
    """
    Cheap "anything changed?" probe.

    modifiedItems lists items (tombstones included) whose version is greater
    than `last_sync_version`, newest first. Without a last_sync_version the
    client has never synced and always needs to.
    """
    async def _unit(s: AsyncSession) -> SyncStatusResponse:
        user = await get_user(s, user_id)
        total = await s.scalar(
            select(func.count()).select_from(VaultItem).where(_live(user_id))
        )

        modified: List[ModifiedItem] = []
        if last_sync_version is not None:
            result = await s.execute(
                select(VaultItem.id, VaultItem.version, VaultItem.updated_at, VaultItem.deleted_at)
                .where(VaultItem.user_id == user_id, VaultItem.version > last_sync_version)
                .order_by(VaultItem.updated_at.desc())
            )
            modified = [
                ModifiedItem(
                    id=row.id,
                    version=row.version,
                    updated_at=as_utc(row.updated_at),
                    deleted=row.deleted_at is not None,
                )
                for row in result
            ]

        return SyncStatusResponse(
            current_version=user.vault_version,
            last_sync_at=as_utc(user.last_sync_at),
            total_items=total or 0,
            modified_items=modified,
            has_changes=bool(modified),
            needs_sync=last_sync_version is None or bool(modified),
        )

    return await with_retry(db, _unit)


async def delta_sync(db: AsyncSession, user_id: str, since: Optional[datetime]) -> DeltaSyncResponse:
    """
    Every item (tombstones included) changed after `since`, oldest first.

    `syncTimestamp` is the server clock before the query, moved back by the
    in-flight window: a save or delete that began earlier but had not yet
    committed is invisible to this query, yet its rows carry an `updated_at`
    from that earlier start. Chained deltas may therefore deliver an item
    twice (same version), never zero times. Clients must send it back as the
    next `since` instead of their own clock, so skew between devices cannot
    open a gap either.
    """
    if since is None:
        raise InvalidInput("since parameter required")
    since_utc = as_utc(since)

    async def _unit(s: AsyncSession) -> DeltaSyncResponse:
        sync_timestamp = utcnow() - timedelta(seconds=in_flight_window())
        user = await get_user(s, user_id)
        result = await s.execute(
            select(VaultItem)
            .where(VaultItem.user_id == user_id, VaultItem.updated_at > since_utc)
            .order_by(VaultItem.updated_at.asc(), VaultItem.id.asc())
            .execution_options(populate_existing=True)
        )
        items = [_to_delta(item) for item in result.scalars().all()]
        return DeltaSyncResponse(
            items=items,
            sync_timestamp=sync_timestamp,
            vault_version=user.vault_version,
            total_items=len(items),
        )

    return await with_retry(db, _unit)
