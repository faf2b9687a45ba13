"""Tests for the versioned vault sync engine."""

from __future__ import annotations

import asyncio
import uuid
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from backend.app.core.clock import utcnow
from backend.app.core.errors import PARTIAL_BATCH_FAILURE, InvalidInput, NotFound
from backend.app.db.retry import in_flight_window
from backend.app.models.user import User
from backend.app.models.vault_item import VaultItem
from backend.app.schemas.vault import VaultItemIn
from backend.app.services import sync

EPOCH = datetime(2000, 1, 1, tzinfo=timezone.utc)


def item(item_id=None, data="ct", **extra) -> dict:
    entry = {"encryptedData": data, "iv": "iv-1", "authTag": "tag-1", "type": "credential"}
    if item_id is not None:
        entry["id"] = item_id
    entry.update(extra)
    return entry


@pytest.fixture
def make_user(session_factory):
    async def _make(email: str = "v@x.com") -> str:
        async with session_factory() as db:
            user = User(email=email)
            db.add(user)
            await db.commit()
            return user.id

    return _make


async def _vault_version(session_factory, user_id) -> int:
    async with session_factory() as db:
        return await db.scalar(select(User.vault_version).where(User.id == user_id))


async def _row(session_factory, item_id) -> VaultItem:
    async with session_factory() as db:
        return await db.get(VaultItem, item_id)


class TestSaveItems:
    """Batch upsert."""

    @pytest.mark.asyncio
    async def test_create_then_update_bumps_versions(self, session_factory, make_user) -> None:
        user_id = await make_user()
        item_id = str(uuid.uuid4())

        async with session_factory() as db:
            created = await sync.save_items(db, user_id, [item(item_id, data="c1")])
        assert created.total_saved == 1
        assert created.saved_items[0].id == item_id
        assert created.saved_items[0].version == 1
        assert created.saved_items[0].created is True

        async with session_factory() as db:
            updated = await sync.save_items(db, user_id, [item(item_id, data="c2")])
        assert updated.saved_items[0].version == 2
        assert updated.saved_items[0].created is False

        async with session_factory() as db:
            fetched = await sync.get_items(db, user_id, [item_id])
        assert fetched.items[0].encrypted_data == "c2"
        assert fetched.items[0].version == 2

    @pytest.mark.asyncio
    async def test_item_without_id_gets_server_id(self, session_factory, make_user) -> None:
        user_id = await make_user()

        async with session_factory() as db:
            result = await sync.save_items(db, user_id, [item()])

        saved = result.saved_items[0]
        assert uuid.UUID(saved.id)
        assert saved.version == 1

    @pytest.mark.asyncio
    async def test_partial_batch_failure(self, session_factory, make_user) -> None:
        user_id = await make_user()
        bad = {"id": "bad-1", "iv": "iv", "authTag": "tag", "type": "note"}  # no encryptedData

        async with session_factory() as db:
            result = await sync.save_items(db, user_id, [item("good-1"), bad])

        assert result.success is True
        assert result.total_saved == 1
        assert result.total_errors == 1
        assert result.error == PARTIAL_BATCH_FAILURE
        assert result.errors[0].id == "bad-1"
        assert result.errors[0].kind == "InvalidInput"
        assert await _row(session_factory, "good-1") is not None
        assert await _row(session_factory, "bad-1") is None

    @pytest.mark.asyncio
    async def test_all_valid_batch_reports_no_error(self, session_factory, make_user) -> None:
        user_id = await make_user()

        async with session_factory() as db:
            result = await sync.save_items(db, user_id, [item("a"), item("b")])

        assert result.total_errors == 0
        assert result.errors is None
        assert result.error is None

    @pytest.mark.asyncio
    async def test_unknown_type_is_rejected(self, session_factory, make_user) -> None:
        user_id = await make_user()

        async with session_factory() as db:
            result = await sync.save_items(db, user_id, [item("x", type="password")])

        assert result.total_saved == 0
        assert result.errors[0].kind == "InvalidInput"

    @pytest.mark.asyncio
    async def test_non_list_batch(self, session_factory, make_user) -> None:
        user_id = await make_user()

        async with session_factory() as db:
            with pytest.raises(InvalidInput):
                await sync.save_items(db, user_id, {"id": "x"})

    @pytest.mark.asyncio
    async def test_each_save_increments_by_exactly_one(self, session_factory, make_user) -> None:
        user_id = await make_user()

        for expected in range(1, 5):
            async with session_factory() as db:
                result = await sync.save_items(db, user_id, [item("same", data=f"c{expected}")])
            assert result.saved_items[0].version == expected

    @pytest.mark.asyncio
    async def test_concurrent_updates_both_count(self, session_factory, make_user) -> None:
        """Two simultaneous saves of one item end at old + 2, never old + 1."""
        user_id = await make_user()
        async with session_factory() as db:
            await sync.save_items(db, user_id, [item("hot")])

        async def save(data):
            async with session_factory() as db:
                return await sync.save_items(db, user_id, [item("hot", data=data)])

        results = await asyncio.gather(save("left"), save("right"))

        versions = sorted(r.saved_items[0].version for r in results)
        assert versions == [2, 3]
        assert (await _row(session_factory, "hot")).version == 3

    @pytest.mark.asyncio
    async def test_foreign_id_creates_a_new_item(self, session_factory, make_user) -> None:
        alice = await make_user("a@x.com")
        bob = await make_user("b@x.com")
        async with session_factory() as db:
            await sync.save_items(db, alice, [item("shared-id", data="alice")])

        async with session_factory() as db:
            result = await sync.save_items(db, bob, [item("shared-id", data="bob")])

        saved = result.saved_items[0]
        assert saved.id != "shared-id"
        assert saved.created is True
        original = await _row(session_factory, "shared-id")
        assert original.user_id == alice
        assert original.encrypted_data == "alice"
        assert original.version == 1

    @pytest.mark.asyncio
    async def test_stale_base_version_is_a_conflict(self, session_factory, make_user) -> None:
        user_id = await make_user()
        async with session_factory() as db:
            await sync.save_items(db, user_id, [item("doc", data="v1")])
        async with session_factory() as db:
            await sync.save_items(db, user_id, [item("doc", data="v2", baseVersion=1)])

        async with session_factory() as db:
            result = await sync.save_items(
                db, user_id, [item("doc", data="stale", baseVersion=1), item("other")]
            )

        assert result.total_saved == 1
        assert result.errors[0].id == "doc"
        assert result.errors[0].kind == "VersionConflict"
        assert result.error == PARTIAL_BATCH_FAILURE
        row = await _row(session_factory, "doc")
        assert row.encrypted_data == "v2"
        assert row.version == 2

    @pytest.mark.asyncio
    async def test_saving_a_deleted_item_revives_it(self, session_factory, make_user) -> None:
        user_id = await make_user()
        async with session_factory() as db:
            await sync.save_items(db, user_id, [item("phoenix")])
        async with session_factory() as db:
            await sync.delete_items(db, user_id, ["phoenix"])

        async with session_factory() as db:
            result = await sync.save_items(db, user_id, [item("phoenix", data="again")])

        assert result.saved_items[0].version == 3
        row = await _row(session_factory, "phoenix")
        assert row.deleted_at is None

    @pytest.mark.asyncio
    async def test_unknown_user(self, session_factory) -> None:
        async with session_factory() as db:
            with pytest.raises(NotFound):
                await sync.save_items(db, "ghost", [item("x")])


class TestVaultVersion:
    """The per-user vault_version counter."""

    @pytest.mark.asyncio
    async def test_save_bumps_by_one_per_batch(self, session_factory, make_user) -> None:
        user_id = await make_user()
        assert await _vault_version(session_factory, user_id) == 1

        async with session_factory() as db:
            await sync.save_items(db, user_id, [item("a"), item("b"), item("c")])

        assert await _vault_version(session_factory, user_id) == 2

    @pytest.mark.asyncio
    async def test_delete_bumps_only_when_something_was_deleted(self, session_factory, make_user) -> None:
        user_id = await make_user()
        async with session_factory() as db:
            await sync.save_items(db, user_id, [item("a")])
        assert await _vault_version(session_factory, user_id) == 2

        async with session_factory() as db:
            await sync.delete_items(db, user_id, ["missing"])
        assert await _vault_version(session_factory, user_id) == 2

        async with session_factory() as db:
            await sync.delete_items(db, user_id, ["a"])
        assert await _vault_version(session_factory, user_id) == 3

    @pytest.mark.asyncio
    async def test_concurrent_batches_each_bump(self, session_factory, make_user) -> None:
        user_id = await make_user()

        async def save(item_id):
            async with session_factory() as db:
                await sync.save_items(db, user_id, [item(item_id)])

        await asyncio.gather(save("one"), save("two"), save("three"))

        assert await _vault_version(session_factory, user_id) == 4


class TestDeleteItems:
    """Soft delete."""

    @pytest.mark.asyncio
    async def test_soft_delete_leaves_tombstone(self, session_factory, make_user) -> None:
        user_id = await make_user()
        async with session_factory() as db:
            await sync.save_items(db, user_id, [item("a"), item("b")])

        async with session_factory() as db:
            result = await sync.delete_items(db, user_id, ["b", "a", "a"])

        assert result.deleted_count == 2
        assert result.deleted_ids == ["b", "a"]
        row = await _row(session_factory, "a")
        assert row.deleted_at is not None
        assert row.version == 2

        async with session_factory() as db:
            manifest = await sync.get_manifest(db, user_id)
        assert manifest.manifest.total_items == 0

    @pytest.mark.asyncio
    async def test_deleting_twice_counts_once(self, session_factory, make_user) -> None:
        user_id = await make_user()
        async with session_factory() as db:
            await sync.save_items(db, user_id, [item("a")])
        async with session_factory() as db:
            await sync.delete_items(db, user_id, ["a"])

        async with session_factory() as db:
            result = await sync.delete_items(db, user_id, ["a"])

        assert result.deleted_count == 0
        assert (await _row(session_factory, "a")).version == 2

    @pytest.mark.asyncio
    async def test_cannot_delete_another_users_item(self, session_factory, make_user) -> None:
        alice = await make_user("a@x.com")
        bob = await make_user("b@x.com")
        async with session_factory() as db:
            await sync.save_items(db, alice, [item("mine")])

        async with session_factory() as db:
            result = await sync.delete_items(db, bob, ["mine"])

        assert result.deleted_count == 0
        assert result.deleted_ids == []
        assert (await _row(session_factory, "mine")).deleted_at is None

    @pytest.mark.asyncio
    async def test_empty_and_invalid_input(self, session_factory, make_user) -> None:
        user_id = await make_user()

        async with session_factory() as db:
            result = await sync.delete_items(db, user_id, [])
        assert result.deleted_count == 0

        async with session_factory() as db:
            with pytest.raises(InvalidInput):
                await sync.delete_items(db, user_id, "a")


class TestReads:
    """Manifest and item fetch."""

    @pytest.mark.asyncio
    async def test_manifest_has_no_ciphertext(self, session_factory, make_user) -> None:
        user_id = await make_user()
        async with session_factory() as db:
            await sync.save_items(db, user_id, [item("a"), item("b", type="note")])

        async with session_factory() as db:
            result = await sync.get_manifest(db, user_id)

        manifest = result.manifest
        assert manifest.total_items == 2
        assert manifest.vault_version == 2
        assert manifest.last_sync_at is not None
        assert {e.id: e.type for e in manifest.items} == {"a": "credential", "b": "note"}
        dumped = result.model_dump(by_alias=True)["manifest"]["items"][0]
        assert "encryptedData" not in dumped

    @pytest.mark.asyncio
    async def test_get_items_skips_foreign_and_unknown_ids(self, session_factory, make_user) -> None:
        alice = await make_user("a@x.com")
        bob = await make_user("b@x.com")
        async with session_factory() as db:
            await sync.save_items(db, alice, [item("a1"), item("a2")])
        async with session_factory() as db:
            await sync.save_items(db, bob, [item("b1")])

        async with session_factory() as db:
            result = await sync.get_items(db, alice, ["a2", "b1", "nope", "a1"])

        assert [i.id for i in result.items] == ["a2", "a1"]

    @pytest.mark.asyncio
    async def test_get_items_skips_tombstones(self, session_factory, make_user) -> None:
        user_id = await make_user()
        async with session_factory() as db:
            await sync.save_items(db, user_id, [item("a"), item("b")])
        async with session_factory() as db:
            await sync.delete_items(db, user_id, ["a"])

        async with session_factory() as db:
            result = await sync.get_items(db, user_id, ["a", "b"])

        assert [i.id for i in result.items] == ["b"]


class TestSyncStatus:
    """The cheap change probe."""

    @pytest.mark.asyncio
    async def test_never_synced_client_needs_sync(self, session_factory, make_user) -> None:
        user_id = await make_user()

        async with session_factory() as db:
            status = await sync.get_sync_status(db, user_id)

        assert status.current_version == 1
        assert status.needs_sync is True
        assert status.has_changes is False
        assert status.modified_items == []

    @pytest.mark.asyncio
    async def test_lists_items_above_version(self, session_factory, make_user) -> None:
        user_id = await make_user()
        async with session_factory() as db:
            await sync.save_items(db, user_id, [item("a"), item("b")])
        async with session_factory() as db:
            await sync.save_items(db, user_id, [item("a", data="new")])
        async with session_factory() as db:
            await sync.delete_items(db, user_id, ["b"])

        async with session_factory() as db:
            status = await sync.get_sync_status(db, user_id, last_sync_version=1)

        assert status.current_version == 4
        assert status.total_items == 1
        assert status.has_changes is True
        assert {m.id: m.deleted for m in status.modified_items} == {"a": False, "b": True}

        async with session_factory() as db:
            status = await sync.get_sync_status(db, user_id, last_sync_version=2)
        assert status.needs_sync is False


class TestDeltaSync:
    """Timestamp-based delta, tombstones included."""

    @pytest.mark.asyncio
    async def test_since_is_required(self, session_factory, make_user) -> None:
        user_id = await make_user()

        async with session_factory() as db:
            with pytest.raises(InvalidInput):
                await sync.delta_sync(db, user_id, None)

    @pytest.mark.asyncio
    async def test_chained_deltas_see_every_change_once(self, session_factory, make_user, monkeypatch) -> None:
        """With no writer in flight, each change shows up in exactly one delta."""
        monkeypatch.setattr(sync, "in_flight_window", lambda: 0.0)
        user_id = await make_user()
        async with session_factory() as db:
            await sync.save_items(db, user_id, [item("a"), item("b")])

        async with session_factory() as db:
            first = await sync.delta_sync(db, user_id, EPOCH)
        assert {i.id for i in first.items} == {"a", "b"}

        async with session_factory() as db:
            await sync.save_items(db, user_id, [item("c")])
        async with session_factory() as db:
            await sync.delete_items(db, user_id, ["a"])

        async with session_factory() as db:
            second = await sync.delta_sync(db, user_id, first.sync_timestamp)

        by_id = {i.id: i for i in second.items}
        assert set(by_id) == {"a", "c"}
        assert by_id["a"].deleted_at is not None
        assert by_id["a"].version == 2
        assert by_id["c"].deleted_at is None
        assert second.vault_version == 4
        assert second.total_items == 2

        async with session_factory() as db:
            third = await sync.delta_sync(db, user_id, second.sync_timestamp)
        assert third.items == []

    @pytest.mark.asyncio
    async def test_write_committing_during_a_delta_reaches_the_next_one(self, session_factory, make_user) -> None:
        """A batch that started before a delta but committed after it is not skipped."""
        user_id = await make_user()
        async with session_factory() as db:
            first = await sync.delta_sync(db, user_id, EPOCH)

        async with session_factory() as writer:
            now = utcnow()
            await sync._bump_vault_version(writer, user_id, now)
            saved = await sync._upsert(writer, user_id, VaultItemIn.model_validate(item("late")), now)

            async with session_factory() as db:
                second = await sync.delta_sync(db, user_id, first.sync_timestamp)
            assert "late" not in {i.id for i in second.items}

            await writer.commit()

        async with session_factory() as db:
            third = await sync.delta_sync(db, user_id, second.sync_timestamp)

        delivered = {i.id: i.version for i in third.items}
        assert delivered.get(saved.id) == 1

    @pytest.mark.asyncio
    async def test_sync_timestamp_lags_the_clock_by_the_write_window(self, session_factory, make_user) -> None:
        user_id = await make_user()
        before = utcnow()

        async with session_factory() as db:
            result = await sync.delta_sync(db, user_id, EPOCH)

        assert result.sync_timestamp <= before - timedelta(seconds=in_flight_window()) + timedelta(seconds=1)
        assert result.sync_timestamp < before

    @pytest.mark.asyncio
    async def test_delta_is_scoped_to_caller(self, session_factory, make_user) -> None:
        alice = await make_user("a@x.com")
        bob = await make_user("b@x.com")
        async with session_factory() as db:
            await sync.save_items(db, bob, [item("bob-only")])

        async with session_factory() as db:
            result = await sync.delta_sync(db, alice, EPOCH)

        assert result.items == []
