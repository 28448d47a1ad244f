"""
Unit tests for the filesystem backup store.
"""

from datetime import datetime, timedelta, timezone

import pytest

from deployment_manager.errors import BackupNotFound, BadRequest, Forbidden
from deployment_manager.protocols import OOB_ROOT_FOLDER, PRECONDITION_NOT_MET
from deployment_manager.storage import FileBackupStore
from deployment_manager.storage.file_backup_store import (
    filename_timestamp,
    parse_backup_filename,
)


def iso(days_ago, now=None):
    now = now or datetime.now(timezone.utc)
    return (now - timedelta(days=days_ago)).isoformat()


@pytest.fixture
def store(tmp_path):
    return FileBackupStore(tmp_path / "backups", retention_period_in_days=14)


@pytest.fixture
def make_backup(ids):
    def make(backup_guid, started_at, trigger="on_demand", **extra):
        data = {
            "operation": "backup",
            "backup_guid": backup_guid,
            "service_id": ids.service_id,
            "plan_id": ids.plan_id,
            "instance_guid": ids.instance_id,
            "space_guid": ids.space_guid,
            "trigger": trigger,
            "state": "succeeded",
            "started_at": started_at,
        }
        data.update(extra)
        return data

    return make


@pytest.fixture
def key(ids):
    return {
        "space_guid": ids.space_guid,
        "service_id": ids.service_id,
        "instance_guid": ids.instance_id,
    }


class TestFilenames:
    def test_filename_timestamp(self):
        assert filename_timestamp("2024-03-01T10:20:30.123456+00:00") == "2024-03-01T10-20-30Z"
        assert filename_timestamp("2024-03-01T10:20:30Z") == "2024-03-01T10-20-30Z"

    def test_parse_tenant_filename(self):
        info = parse_backup_filename("space", "svc.inst.guid.2024-03-01T10-20-30Z.json")
        assert info["service_id"] == "svc"
        assert info["instance_guid"] == "inst"
        assert info["backup_guid"] == "guid"
        assert info["started_at"] == datetime(2024, 3, 1, 10, 20, 30, tzinfo=timezone.utc)

    def test_parse_oob_filename(self):
        info = parse_backup_filename(OOB_ROOT_FOLDER, "ccdb.guid.2024-03-01T10-20-30Z.json")
        assert info["deployment_name"] == "ccdb"
        assert info["root_folder"] == OOB_ROOT_FOLDER

    @pytest.mark.parametrize(
        "filename",
        ["notes.txt", "a.b.json", "svc.inst.guid.yesterday.json", "a.b.c.d.e.json"],
    )
    def test_parse_rejects_unexpected_names(self, filename):
        assert parse_backup_filename("space", filename) is None


class TestBackupFiles:
    """Test cases for backup metadata files."""

    @pytest.mark.asyncio
    async def test_put_and_get_latest(self, store, make_backup, key):
        await store.put_file(make_backup("old", iso(3)))
        await store.put_file(make_backup("new", iso(1)))

        latest = await store.get_backup_file(key)
        by_guid = await store.get_backup_file(dict(key, backup_guid="old"))

        assert latest["backup_guid"] == "new"
        assert by_guid["backup_guid"] == "old"

    @pytest.mark.asyncio
    async def test_list_is_newest_first(self, store, make_backup, key):
        for guid, days in (("a", 5), ("b", 1), ("c", 3)):
            await store.put_file(make_backup(guid, iso(days)))

        files = await store.list_backup_files(key)

        assert [f["backup_guid"] for f in files] == ["b", "c", "a"]

    @pytest.mark.asyncio
    async def test_list_unknown_instance(self, store, key):
        assert await store.list_backup_files(key) == []

    @pytest.mark.asyncio
    async def test_get_missing(self, store, key):
        with pytest.raises(BackupNotFound):
            await store.get_backup_file(key)

    @pytest.mark.asyncio
    async def test_requires_scope(self, store):
        with pytest.raises(BadRequest):
            await store.get_backup_file({"instance_guid": "x"})

    @pytest.mark.asyncio
    async def test_patch(self, store, make_backup, key):
        await store.put_file(make_backup("a", iso(1), state="processing"))

        patched = await store.patch_backup_file(
            dict(key, backup_guid="a"), {"state": "succeeded", "logs": ["ok"]}
        )

        assert patched["state"] == "succeeded"
        stored = await store.get_backup_file(dict(key, backup_guid="a"))
        assert stored["logs"] == ["ok"]
        assert not list(store.root.rglob("*.tmp"))

    @pytest.mark.asyncio
    async def test_oob_backup(self, store):
        data = {
            "operation": "backup",
            "backup_guid": "g1",
            "deployment_name": "ccdb",
            "trigger": "scheduled",
            "started_at": iso(1),
        }
        await store.put_file(data)

        stored = await store.get_backup_file({"deployment_name": "ccdb"})

        assert stored["backup_guid"] == "g1"
        assert (store.root / OOB_ROOT_FOLDER / "backup").is_dir()


class TestDeleteBackupFile:
    """Test cases for deletion rules."""

    @pytest.mark.asyncio
    async def test_delete_on_demand(self, store, make_backup, key):
        await store.put_file(make_backup("a", iso(1)))

        assert await store.delete_backup_file(dict(key, backup_guid="a")) is None
        assert await store.list_backup_files(key) == []

    @pytest.mark.asyncio
    async def test_scheduled_inside_retention_is_protected(self, store, make_backup, key):
        await store.put_file(make_backup("a", iso(1), trigger="scheduled"))

        with pytest.raises(Forbidden):
            await store.delete_backup_file(dict(key, backup_guid="a"))

        assert len(await store.list_backup_files(key)) == 1

    @pytest.mark.asyncio
    async def test_scheduled_inside_retention_with_force(self, store, make_backup, key):
        await store.put_file(make_backup("a", iso(1), trigger="scheduled"))

        await store.delete_backup_file(dict(key, backup_guid="a", force=True))

        assert await store.list_backup_files(key) == []

    @pytest.mark.asyncio
    async def test_scheduled_outside_retention(self, store, make_backup, key):
        await store.put_file(make_backup("a", iso(20), trigger="scheduled"))

        await store.delete_backup_file(dict(key, backup_guid="a"))

        assert await store.list_backup_files(key) == []

    @pytest.mark.asyncio
    async def test_precondition_not_met(self, store, make_backup, key):
        await store.put_file(make_backup("a", iso(20)))
        seen = []

        async def precondition(data):
            seen.append(data["backup_guid"])
            return False

        status = await store.delete_backup_file(dict(key, backup_guid="a"), precondition)

        assert status == PRECONDITION_NOT_MET
        assert seen == ["a"]
        assert len(await store.list_backup_files(key)) == 1

    @pytest.mark.asyncio
    async def test_delete_missing(self, store, key):
        with pytest.raises(BackupNotFound):
            await store.delete_backup_file(dict(key, backup_guid="nope"))


class TestListBackupFilenames:
    """Test cases for the retention listing."""

    @pytest.mark.asyncio
    async def test_cutoff_is_inclusive(self, store, make_backup):
        cutoff = datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc)
        await store.put_file(make_backup("at", cutoff.isoformat()))
        await store.put_file(make_backup("before", (cutoff - timedelta(seconds=1)).isoformat()))
        await store.put_file(make_backup("after", (cutoff + timedelta(seconds=1)).isoformat()))

        entries = await store.list_backup_filenames(cutoff)

        assert sorted(e["backup_guid"] for e in entries) == ["at", "before"]

    @pytest.mark.asyncio
    async def test_entries_carry_trigger_and_scope(self, store, make_backup, ids):
        await store.put_file(make_backup("a", iso(30), trigger="scheduled"))

        (entry,) = await store.list_backup_filenames(datetime.now(timezone.utc))

        assert entry["trigger"] == "scheduled"
        assert entry["space_guid"] == ids.space_guid
        assert entry["root_folder"] == ids.space_guid
        assert entry["instance_guid"] == ids.instance_id

    @pytest.mark.asyncio
    async def test_newer_than(self, store, make_backup):
        now = datetime.now(timezone.utc)
        await store.put_file(make_backup("old", iso(30, now)))
        await store.put_file(make_backup("mid", iso(10, now)))

        entries = await store.list_backup_filenames(now, newer_than=now - timedelta(days=20))

        assert [e["backup_guid"] for e in entries] == ["mid"]

    @pytest.mark.asyncio
    async def test_oob_only_when_asked(self, store):
        await store.put_file(
            {
                "operation": "backup",
                "backup_guid": "g1",
                "deployment_name": "ccdb",
                "trigger": "scheduled",
                "started_at": iso(30),
            }
        )
        now = datetime.now(timezone.utc)

        assert await store.list_backup_filenames(now) == []
        (entry,) = await store.list_backup_filenames(now, include_oob=True)
        assert entry["deployment_name"] == "ccdb"

    @pytest.mark.asyncio
    async def test_empty_root(self, store):
        assert await store.list_backup_filenames(datetime.now(timezone.utc)) == []


class TestRestoreFiles:
    @pytest.fixture
    def restore(self, ids):
        return {
            "operation": "restore",
            "backup_guid": "a",
            "service_id": ids.service_id,
            "instance_guid": ids.instance_id,
            "space_guid": ids.space_guid,
            "state": "processing",
            "started_at": iso(0),
        }

    @pytest.mark.asyncio
    async def test_restore_lifecycle(self, store, restore, key):
        await store.put_file(restore)

        assert (await store.get_restore_file(key))["state"] == "processing"
        await store.patch_restore_file(key, {"state": "succeeded"})
        assert (await store.get_restore_file(key))["state"] == "succeeded"
        await store.delete_restore_file(key)

        with pytest.raises(BackupNotFound):
            await store.get_restore_file(key)

    @pytest.mark.asyncio
    async def test_delete_missing_restore(self, store, key):
        with pytest.raises(BackupNotFound):
            await store.delete_restore_file(key)
