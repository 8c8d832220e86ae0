"""
Snapshot storage adapters

Every adapter stores plain JSON documents under string keys:
    printer:<id>     one snapshot per printer instance
    fleet            locations and instance membership
    user-settings    routing preferences

Saves take an optional expected version for compare-and-swap, or ABSENT to
create a key only if nobody else has. The SQL adapter enforces it with the
database; the file adapter holds a process-wide lock plus an flock on a
sibling .lock file; the KV adapter compares on read before writing.
"""

import fcntl
import json
import logging
import os
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime
from typing import Dict, Optional

import httpx
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from config import Config
from errors import CorruptSnapshotError, StaleSnapshotError, StorageUnavailableError

logger = logging.getLogger(__name__)

FLEET_KEY = "fleet"
USER_SETTINGS_KEY = "user-settings"

# expected_version for create-if-absent writes
ABSENT = -1


def printer_key(printer_id: str) -> str:
    return f"printer:{printer_id}"


def _check_version(key: str, current: Optional[Dict], expected_version: Optional[int]):
    if expected_version is None:
        return
    actual = current.get("version") if current is not None else None
    if expected_version == ABSENT:
        if current is not None:
            raise StaleSnapshotError(key, "absent", actual)
        return
    if actual != expected_version:
        raise StaleSnapshotError(key, expected_version, actual)


class StorageAdapter(ABC):
    """Key/value contract used by the simulator"""

    @abstractmethod
    def load(self, key: str) -> Optional[Dict]:
        """Return the stored document or None when the key is absent"""

    @abstractmethod
    def save(self, key: str, data: Dict, expected_version: Optional[int] = None) -> None:
        """
        Store a document

        Args:
            key: Storage key
            data: JSON-compatible document, carrying its own "version"
            expected_version: Version the stored document must still have,
                None for an unconditional write, ABSENT to create only

        Raises:
            StaleSnapshotError: stored version differs from expected_version
        """

    @abstractmethod
    def clear(self, key: str) -> None:
        pass

    @abstractmethod
    def health_check(self) -> bool:
        pass

    @abstractmethod
    def kind(self) -> str:
        pass

# ==================== Memory ====================

class MemoryStorage(StorageAdapter):
    """Dict-backed storage for tests and embedded use"""

    def __init__(self):
        self._data: Dict[str, str] = {}
        self._lock = threading.Lock()

    def load(self, key):
        raw = self._data.get(key)
        return json.loads(raw) if raw is not None else None

    def save(self, key, data, expected_version=None):
        with self._lock:
            _check_version(key, self.load(key), expected_version)
            self._data[key] = json.dumps(data, default=str)

    def clear(self, key):
        with self._lock:
            self._data.pop(key, None)

    def health_check(self):
        return True

    def kind(self):
        return "memory"

# ==================== File ====================

# Shared by every FileStorage in the process; adapters are built per request
_path_locks: Dict[str, threading.Lock] = {}
_path_locks_guard = threading.Lock()


def _path_lock(path: str) -> threading.Lock:
    with _path_locks_guard:
        return _path_locks.setdefault(os.path.abspath(path), threading.Lock())


class FileStorage(StorageAdapter):
    """One JSON file per key under a state directory"""

    def __init__(self, state_dir: str = None):
        self.state_dir = state_dir or Config.STATE_DIR

    @contextmanager
    def _locked(self, path: str):
        """Hold the key across threads (path lock) and processes (flock)"""
        with _path_lock(path):
            try:
                os.makedirs(self.state_dir, exist_ok=True)
                lock_file = open(f"{path}.lock", "a")
            except OSError as e:
                raise StorageUnavailableError(f"Cannot lock {path}: {e}")
            with lock_file:
                fcntl.flock(lock_file, fcntl.LOCK_EX)
                try:
                    yield
                finally:
                    fcntl.flock(lock_file, fcntl.LOCK_UN)

    def _path(self, key: str) -> str:
        safe = key.replace(":", "_").replace("/", "_")
        return os.path.join(self.state_dir, f"{safe}.json")

    def load(self, key):
        path = self._path(key)
        if not os.path.exists(path):
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except json.JSONDecodeError as e:
            raise CorruptSnapshotError(key, f"invalid JSON: {e}")
        except OSError as e:
            raise StorageUnavailableError(f"Cannot read {path}: {e}")

    def save(self, key, data, expected_version=None):
        path = self._path(key)
        with self._locked(path):
            _check_version(key, self.load(key), expected_version)
            try:
                tmp_path = f"{path}.tmp"
                with open(tmp_path, "w", encoding="utf-8") as f:
                    json.dump(data, f, indent=2, default=str)
                os.replace(tmp_path, path)
            except OSError as e:
                raise StorageUnavailableError(f"Cannot write {path}: {e}")

    def clear(self, key):
        path = self._path(key)
        with self._locked(path):
            try:
                os.remove(path)
            except FileNotFoundError:
                pass
            except OSError as e:
                raise StorageUnavailableError(f"Cannot remove {path}: {e}")

    def health_check(self):
        try:
            os.makedirs(self.state_dir, exist_ok=True)
            return os.access(self.state_dir, os.W_OK)
        except OSError as e:
            logger.error(f"❌ State directory unavailable: {e}")
            return False

    def kind(self):
        return "file"

# ==================== Key-Value REST ====================

class KVRestStorage(StorageAdapter):
    """
    Managed key-value cache reached over its REST API
    (Upstash / Vercel KV protocol: /get, /set, /del, /ping with a bearer token)
    """

    def __init__(self, url: str = None, token: str = None, client: httpx.Client = None,
                 prefix: str = "virtual-printer:"):
        url = url or Config.KV_REST_API_URL
        token = token or Config.KV_REST_API_TOKEN
        if client is None:
            if not url or not token:
                raise StorageUnavailableError("KV_REST_API_URL and KV_REST_API_TOKEN must be set")
            client = httpx.Client(
                base_url=url.rstrip("/"),
                headers={"Authorization": f"Bearer {token}"},
                timeout=Config.KV_TIMEOUT,
            )
        self.client = client
        self.prefix = prefix

    def _command(self, method: str, path: str, **kwargs):
        try:
            response = self.client.request(method, path, **kwargs)
            response.raise_for_status()
            return response.json().get("result")
        except httpx.HTTPError as e:
            raise StorageUnavailableError(f"KV request {path} failed: {e}")
        except ValueError as e:
            raise StorageUnavailableError(f"KV response for {path} is not JSON: {e}")

    def load(self, key):
        raw = self._command("GET", f"/get/{self.prefix}{key}")
        if raw is None:
            return None
        if isinstance(raw, dict):
            return raw
        try:
            return json.loads(raw)
        except (TypeError, json.JSONDecodeError) as e:
            raise CorruptSnapshotError(key, f"invalid JSON: {e}")

    def save(self, key, data, expected_version=None):
        _check_version(key, self.load(key), expected_version)
        self._command("POST", f"/set/{self.prefix}{key}", content=json.dumps(data, default=str))

    def clear(self, key):
        self._command("POST", f"/del/{self.prefix}{key}")

    def health_check(self):
        try:
            return self._command("GET", "/ping") == "PONG"
        except StorageUnavailableError as e:
            logger.error(f"❌ KV health check failed: {e}")
            return False

    def kind(self):
        return "kv"

# ==================== SQL ====================

class SQLStorage(StorageAdapter):
    """Snapshots in the printer_snapshots table, compare-and-swap via conditional UPDATE"""

    def __init__(self, session_factory=None):
        if session_factory is None:
            from database import SessionLocal
            session_factory = SessionLocal
        self.session_factory = session_factory

    def load(self, key):
        from models import SnapshotRecord

        db = self.session_factory()
        try:
            record = db.get(SnapshotRecord, key)
            if record is None:
                return None
            if not isinstance(record.state, dict):
                raise CorruptSnapshotError(key, "stored state is not an object")
            return record.state
        except SQLAlchemyError as e:
            raise StorageUnavailableError(f"Database read failed for {key}: {e}")
        finally:
            db.close()

    def save(self, key, data, expected_version=None):
        from models import SnapshotRecord

        version = data.get("version", 0)
        db = self.session_factory()
        try:
            if expected_version == ABSENT:
                # primary key collision surfaces as IntegrityError below
                db.add(SnapshotRecord(key=key, state=data, version=version))
                db.commit()
                return

            if expected_version is None:
                record = db.get(SnapshotRecord, key)
                if record is None:
                    db.add(SnapshotRecord(key=key, state=data, version=version))
                else:
                    record.state = data
                    record.version = version
                    record.updated_at = datetime.utcnow()
                db.commit()
                return

            updated = db.query(SnapshotRecord).filter(
                SnapshotRecord.key == key,
                SnapshotRecord.version == expected_version,
            ).update({
                "state": data,
                "version": version,
                "updated_at": datetime.utcnow(),
            }, synchronize_session=False)
            if updated == 0:
                db.rollback()
                current = db.get(SnapshotRecord, key)
                raise StaleSnapshotError(key, expected_version, current.version if current else None)
            db.commit()
        except IntegrityError:
            db.rollback()
            raise StaleSnapshotError(key, "absent" if expected_version == ABSENT else expected_version,
                                     "concurrent insert")
        except SQLAlchemyError as e:
            db.rollback()
            raise StorageUnavailableError(f"Database write failed for {key}: {e}")
        finally:
            db.close()

    def clear(self, key):
        from models import SnapshotRecord

        db = self.session_factory()
        try:
            db.query(SnapshotRecord).filter(SnapshotRecord.key == key).delete()
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise StorageUnavailableError(f"Database delete failed for {key}: {e}")
        finally:
            db.close()

    def health_check(self):
        from sqlalchemy import text

        db = self.session_factory()
        try:
            db.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as e:
            logger.error(f"❌ Database health check failed: {e}")
            return False
        finally:
            db.close()

    def kind(self):
        return "sql"


def create_storage_adapter(config=Config) -> StorageAdapter:
    """Build the adapter named by config.STORAGE_TYPE; never falls back silently"""
    storage_type = (config.STORAGE_TYPE or "").lower()
    if storage_type == "file":
        return FileStorage(config.STATE_DIR)
    if storage_type in ("kv", "redis"):
        return KVRestStorage(config.KV_REST_API_URL, config.KV_REST_API_TOKEN)
    if storage_type in ("sql", "database", "postgres"):
        return SQLStorage()
    if storage_type == "memory":
        return MemoryStorage()
    raise StorageUnavailableError(f"Unknown storage type: {config.STORAGE_TYPE}")
