import json
from datetime import datetime, timezone

import pytest

from src.domain.entities.cache_record import CacheRecord
from src.domain.exceptions import CacheSchemaError
from src.domain.value_objects.sync_config import WorkloadSyncConfig
from src.infrastructure.storage.gcs_cache_storage import GCSCacheStorage
from src.infrastructure.storage.local_cache_storage import InMemoryCacheStorage, JsonFileCacheStorage
from src.infrastructure.storage.sync_store import SyncStore

CURSOR = datetime(2024, 1, 17, 12, 0, tzinfo=timezone.utc)


def _record(task_id: str, name: str = "Task") -> dict:
    return {"id": task_id, "name": name, "status": {"status": "open"}}


class FlakyCacheStorage(InMemoryCacheStorage):
    def __init__(self):
        super().__init__()
        self.fail_writes = False

    async def set(self, key: str, value: str) -> None:
        if self.fail_writes:
            raise OSError("upload interrupted")
        await super().set(key, value)


async def _store(storage=None) -> SyncStore:
    store = SyncStore(storage or InMemoryCacheStorage())
    await store.init(WorkloadSyncConfig(token="t", cache_namespace="team-a"))
    return store


class TestSyncStore:
    @pytest.mark.asyncio
    async def test_requires_init(self):
        store = SyncStore(InMemoryCacheStorage())

        with pytest.raises(RuntimeError):
            await store.load_cache()

    @pytest.mark.asyncio
    async def test_empty_cache_loads_as_none(self):
        store = await _store()

        assert await store.load_cache() is None

    @pytest.mark.asyncio
    async def test_save_and_load_round_trip(self):
        storage = InMemoryCacheStorage()
        store = await _store(storage)
        record = CacheRecord(
            raw_tasks=[_record("1"), _record("2")],
            grouped_data=[{"assignee": "Alice", "projects": []}],
            metadata={"last_full_sync": CURSOR.isoformat()},
            cursor=CURSOR,
        )

        await store.save_full(record)
        loaded = await store.load_cache()

        assert loaded.task_count == 2
        assert loaded.cursor == CURSOR
        assert loaded.last_full_sync == CURSOR
        assert loaded.parsed_grouped_data()[0].assignee == "Alice"
        assert storage.keys() == ["team-a:record"]

    @pytest.mark.asyncio
    async def test_version_mismatch_discards_cache(self):
        storage = InMemoryCacheStorage()
        store = await _store(storage)
        old_store = SyncStore(storage, schema_version="0")
        await old_store.init(WorkloadSyncConfig(cache_namespace="team-a"))
        await old_store.save_full(CacheRecord(raw_tasks=[_record("1")], cursor=CURSOR))

        assert await store.load_cache() is None
        assert storage.keys() == []

    @pytest.mark.asyncio
    async def test_corrupt_entry_discards_cache(self):
        storage = InMemoryCacheStorage()
        store = await _store(storage)
        await store.save_full(CacheRecord(raw_tasks=[_record("1")], cursor=CURSOR))
        await storage.set("team-a:record", "{not json")

        assert await store.load_cache() is None

    @pytest.mark.asyncio
    async def test_wrong_shape_discards_cache(self):
        storage = InMemoryCacheStorage()
        store = await _store(storage)
        await storage.set("team-a:record", json.dumps({"version": "1", "raw_tasks": {"id": "1"}}))

        assert await store.load_cache() is None
        assert storage.keys() == []

    @pytest.mark.asyncio
    async def test_failed_write_keeps_previous_record_whole(self):
        storage = FlakyCacheStorage()
        store = await _store(storage)
        await store.save_full(
            CacheRecord(
                raw_tasks=[_record("old")],
                grouped_data=[{"assignee": "OLD", "projects": []}],
                metadata={"m": "old"},
                cursor=CURSOR,
            )
        )
        storage.fail_writes = True

        with pytest.raises(OSError):
            await store.save_full(
                CacheRecord(
                    raw_tasks=[_record("new")],
                    grouped_data=[{"assignee": "NEW", "projects": []}],
                    metadata={"m": "new"},
                    cursor=datetime(2024, 2, 1, tzinfo=timezone.utc),
                )
            )

        loaded = await store.load_cache()
        assert [r["id"] for r in loaded.raw_tasks] == ["old"]
        assert loaded.grouped_data[0]["assignee"] == "OLD"
        assert loaded.metadata == {"m": "old"}
        assert loaded.cursor == CURSOR

    @pytest.mark.asyncio
    async def test_merge_incremental_updates_and_appends(self):
        store = await _store()
        existing = [_record(str(i)) for i in range(5)]
        await store.save_full(
            CacheRecord(
                raw_tasks=existing,
                metadata={"last_full_sync": CURSOR.isoformat()},
                cursor=CURSOR,
            )
        )
        later = datetime(2024, 1, 18, tzinfo=timezone.utc)

        def process(records):
            return [{"assignee": "Unassigned", "projects": []}], {"task_count": len(records)}

        record = await store.merge_incremental(
            [_record("1", name="Renamed"), _record("9"), _record("10")], later, process
        )
        reloaded = await store.load_cache()

        assert record.task_count == 7
        assert reloaded.task_count == 7
        assert reloaded.cursor == later
        assert reloaded.metadata["task_count"] == 7
        assert reloaded.metadata["last_full_sync"] == CURSOR.isoformat()
        assert reloaded.metadata["merge"]["added"] == 2
        assert reloaded.metadata["merge"]["updated"] == 1
        assert store.last_merge.added == 2

    @pytest.mark.asyncio
    async def test_merge_drops_non_object_records_already_cached(self):
        store = await _store()
        await store.save_full(CacheRecord(raw_tasks=[_record("1"), "garbage", None], cursor=CURSOR))

        record = await store.merge_incremental([_record("2"), "junk"], datetime(2024, 1, 18, tzinfo=timezone.utc))

        assert [r["id"] for r in record.raw_tasks] == ["1", "2"]
        reloaded = await store.load_cache()
        assert reloaded.task_count == 2

    @pytest.mark.asyncio
    async def test_merge_without_cache_raises(self):
        store = await _store()

        with pytest.raises(CacheSchemaError):
            await store.merge_incremental([_record("1")], CURSOR)

    @pytest.mark.asyncio
    async def test_failed_processing_writes_nothing(self):
        store = await _store()
        await store.save_full(CacheRecord(raw_tasks=[_record("1")], cursor=CURSOR))

        def process(records):
            raise RuntimeError("pipeline failed")

        with pytest.raises(RuntimeError):
            await store.merge_incremental([_record("2")], datetime.now(timezone.utc), process)

        reloaded = await store.load_cache()
        assert reloaded.task_count == 1
        assert reloaded.cursor == CURSOR

    @pytest.mark.asyncio
    async def test_dispose_resets_namespace(self):
        store = await _store()

        await store.dispose()

        assert not store.is_initialized


class TestJsonFileCacheStorage:
    @pytest.mark.asyncio
    async def test_persists_between_instances(self, tmp_path):
        path = tmp_path / "cache.json"
        await JsonFileCacheStorage(path).set("k", "v")

        storage = JsonFileCacheStorage(path)
        assert await storage.get("k") == "v"
        assert await storage.get("missing") is None
        assert json.loads(path.read_text(encoding="utf-8")) == {"k": "v"}

    @pytest.mark.asyncio
    async def test_corrupt_file_reads_as_empty(self, tmp_path):
        path = tmp_path / "cache.json"
        path.write_text("not json", encoding="utf-8")

        assert await JsonFileCacheStorage(path).get("k") is None

    @pytest.mark.asyncio
    async def test_clear_removes_file(self, tmp_path):
        path = tmp_path / "cache.json"
        storage = JsonFileCacheStorage(path)
        await storage.set("k", "v")

        await storage.clear()

        assert not path.exists()
        assert await storage.get("k") is None


class FakeBlob:
    def __init__(self, store, name):
        self._store = store
        self.name = name

    def exists(self):
        return self.name in self._store

    def download_as_text(self):
        return self._store[self.name]

    def upload_from_string(self, value, content_type=None):
        self._store[self.name] = value

    def delete(self):
        self._store.pop(self.name, None)


class FakeBucket:
    def __init__(self, store):
        self._store = store

    def blob(self, name):
        return FakeBlob(self._store, name)


class FakeGCSClient:
    def __init__(self):
        self.objects = {}

    def bucket(self, name):
        return FakeBucket(self.objects)

    def list_blobs(self, bucket_name, prefix=""):
        return [FakeBlob(self.objects, name) for name in list(self.objects) if name.startswith(prefix)]


class TestGCSCacheStorage:
    @pytest.mark.asyncio
    async def test_one_object_per_key(self):
        client = FakeGCSClient()
        storage = GCSCacheStorage("bucket", prefix="cache", client=client)

        await storage.set("team-a:record", "1")

        assert client.objects == {"cache/team-a:record.json": "1"}
        assert await storage.get("team-a:record") == "1"
        assert await storage.get("team-b:record") is None

    @pytest.mark.asyncio
    async def test_clear_deletes_prefixed_objects_only(self):
        client = FakeGCSClient()
        client.objects["other/keep.json"] = "x"
        storage = GCSCacheStorage("bucket", prefix="cache", client=client)
        await storage.set("a", "1")
        await storage.set("b", "2")

        await storage.clear()

        assert client.objects == {"other/keep.json": "x"}
