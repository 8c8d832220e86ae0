"""
Storage adapter tests: file, SQL (in-memory SQLite) and KV REST (mock transport)

Run:
    pytest tests/test_storage.py -v --tb=short
"""

import json
import threading

import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import models  # noqa: F401  registers the snapshot table
from config import Config
from database import Base
from errors import CorruptSnapshotError, StaleSnapshotError, StorageUnavailableError
from storage import (
    ABSENT, FileStorage, KVRestStorage, MemoryStorage, SQLStorage, create_storage_adapter, printer_key,
)


@pytest.fixture()
def sql_storage():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield SQLStorage(sessionmaker(autocommit=False, autoflush=False, bind=engine))
    engine.dispose()


@pytest.fixture()
def kv_store():
    return {}


@pytest.fixture()
def kv_storage(kv_store):
    def handler(request: httpx.Request) -> httpx.Response:
        command, _, key = request.url.path.lstrip("/").partition("/")
        if command == "get":
            return httpx.Response(200, json={"result": kv_store.get(key)})
        if command == "set":
            kv_store[key] = request.content.decode()
            return httpx.Response(200, json={"result": "OK"})
        if command == "del":
            return httpx.Response(200, json={"result": 1 if kv_store.pop(key, None) else 0})
        if command == "ping":
            return httpx.Response(200, json={"result": "PONG"})
        return httpx.Response(400, json={"error": "unknown command"})

    client = httpx.Client(base_url="https://kv.test", transport=httpx.MockTransport(handler))
    return KVRestStorage(client=client)


@pytest.fixture(params=["memory", "file", "sql", "kv"])
def adapter(request, tmp_path):
    if request.param == "memory":
        return MemoryStorage()
    if request.param == "file":
        return FileStorage(str(tmp_path / "state"))
    return request.getfixturevalue(f"{request.param}_storage")


# ---------------------------------------------------------------------------
# Contract shared by every adapter
# ---------------------------------------------------------------------------

class TestStorageContract:

    def test_missing_key(self, adapter):
        assert adapter.load(printer_key("nope")) is None

    def test_save_load_clear(self, adapter):
        key = printer_key("p1")
        adapter.save(key, {"id": "p1", "version": 1})
        assert adapter.load(key) == {"id": "p1", "version": 1}
        adapter.clear(key)
        assert adapter.load(key) is None

    def test_compare_and_swap(self, adapter):
        key = printer_key("p1")
        adapter.save(key, {"id": "p1", "version": 1})
        adapter.save(key, {"id": "p1", "version": 2}, expected_version=1)
        with pytest.raises(StaleSnapshotError):
            adapter.save(key, {"id": "p1", "version": 2}, expected_version=1)
        assert adapter.load(key)["version"] == 2

    def test_conditional_write_to_missing_key_is_stale(self, adapter):
        with pytest.raises(StaleSnapshotError):
            adapter.save(printer_key("ghost"), {"version": 1}, expected_version=0)

    def test_create_if_absent(self, adapter):
        adapter.save("fleet", {"owner": "first", "version": 1}, expected_version=ABSENT)
        with pytest.raises(StaleSnapshotError):
            adapter.save("fleet", {"owner": "second", "version": 1}, expected_version=ABSENT)
        assert adapter.load("fleet")["owner"] == "first"

    def test_health_check(self, adapter):
        assert adapter.health_check() is True


# ---------------------------------------------------------------------------
# Adapter specifics
# ---------------------------------------------------------------------------

class TestFileStorage:

    def test_key_maps_to_safe_filename(self, tmp_path):
        storage = FileStorage(str(tmp_path))
        storage.save(printer_key("p1"), {"version": 1})
        assert (tmp_path / "printer_p1.json").exists()

    def test_invalid_json_is_corrupt(self, tmp_path):
        (tmp_path / "fleet.json").write_text("{not json", encoding="utf-8")
        with pytest.raises(CorruptSnapshotError):
            FileStorage(str(tmp_path)).load("fleet")

    def test_instances_on_one_directory_share_the_lock(self, tmp_path, monkeypatch):
        """Adapters are built per request; racing writers must still conflict"""
        key = printer_key("p1")
        FileStorage(str(tmp_path)).save(key, {"version": 1})

        # both writers read version 1 before either writes, unless the lock serializes them
        barrier = threading.Barrier(2, timeout=0.5)
        original_load = FileStorage.load

        def slow_load(self, k):
            snapshot = original_load(self, k)
            try:
                barrier.wait()
            except threading.BrokenBarrierError:
                pass
            return snapshot

        monkeypatch.setattr(FileStorage, "load", slow_load)
        results = {}

        def writer(name):
            try:
                FileStorage(str(tmp_path)).save(key, {"writer": name, "version": 2}, expected_version=1)
                results[name] = "ok"
            except StaleSnapshotError:
                results[name] = "stale"

        threads = [threading.Thread(target=writer, args=(name,)) for name in ("a", "b")]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(results.values()) == ["ok", "stale"]
        winner = next(name for name, outcome in results.items() if outcome == "ok")
        assert original_load(FileStorage(str(tmp_path)), key)["writer"] == winner

    def test_lock_file_sits_beside_snapshot(self, tmp_path):
        FileStorage(str(tmp_path)).save(printer_key("p1"), {"version": 1})
        assert (tmp_path / "printer_p1.json.lock").exists()


class TestKVRestStorage:

    def test_keys_are_prefixed(self, kv_storage, kv_store):
        kv_storage.save("fleet", {"version": 1})
        assert json.loads(kv_store["virtual-printer:fleet"]) == {"version": 1}

    def test_unreadable_value_is_corrupt(self, kv_storage, kv_store):
        kv_store["virtual-printer:fleet"] = "{broken"
        with pytest.raises(CorruptSnapshotError):
            kv_storage.load("fleet")

    def test_transport_failure_is_unavailable(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = httpx.Client(base_url="https://kv.test", transport=httpx.MockTransport(handler))
        storage = KVRestStorage(client=client)
        with pytest.raises(StorageUnavailableError):
            storage.load("fleet")
        assert storage.health_check() is False

    def test_missing_credentials(self):
        with pytest.raises(StorageUnavailableError):
            KVRestStorage(url="", token="")


class TestAdapterFactory:

    def test_memory(self):
        class MemoryConfig(Config):
            STORAGE_TYPE = "memory"

        assert create_storage_adapter(MemoryConfig).kind() == "memory"

    def test_file(self, tmp_path):
        class FileConfig(Config):
            STORAGE_TYPE = "file"
            STATE_DIR = str(tmp_path)

        storage = create_storage_adapter(FileConfig)
        assert storage.kind() == "file"
        assert storage.state_dir == str(tmp_path)

    def test_unknown_type_is_an_error(self):
        class BogusConfig(Config):
            STORAGE_TYPE = "floppy"

        with pytest.raises(StorageUnavailableError):
            create_storage_adapter(BogusConfig)
