"""
Key-value storage for upload tracks.

A flat string-keyed substrate persists JSON-serialized tracks under a fixed
key prefix, enabling resumable uploads across sessions.
"""

import json
import logging
import os
import sqlite3
import tempfile
import time
from abc import ABC, abstractmethod
from typing import Any, Optional

from resumable_multipart.models import Track

logger = logging.getLogger(__name__)

DEFAULT_KEY_PREFIX = "resumable-multipart:track:"


class KeyValueStore(ABC):
    """Abstract interface for the persistent key-value substrate."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        """
        Retrieve the value stored under a key.

        Args:
            key: Storage key

        Returns:
            Stored value if found, None otherwise
        """
        pass

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        """
        Store a value under a key, overwriting any previous value.

        Args:
            key: Storage key
            value: Value to store
        """
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        """
        Remove the value stored under a key. Missing keys are ignored.

        Args:
            key: Storage key
        """
        pass

    @abstractmethod
    def keys(self) -> list[str]:
        """Return every key currently stored."""
        pass


class MemoryKeyValueStore(KeyValueStore):
    """Process-local storage backed by a dict."""

    def __init__(self):
        self._data: dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._data)


class FileKeyValueStore(KeyValueStore):
    """Entries kept in one JSON object on disk.

    Every write replaces the file atomically, so a crash mid-write leaves the
    previous content intact. An unreadable file reads as empty.
    """

    def __init__(self, storage_path: str = ".resumable_multipart.json"):
        """
        Initialize file-based storage.

        Args:
            storage_path: JSON file holding the entries; created on first write
        """
        self.storage_path = os.path.abspath(storage_path)
        if not os.path.exists(self.storage_path):
            self._write({})

    def _read(self) -> dict[str, str]:
        try:
            with open(self.storage_path, encoding="utf-8") as f:
                data = try_parse_json(f.read(), default={})
        except OSError as e:
            logger.warning(f"Cannot read {self.storage_path}: {e}")
            return {}
        if not isinstance(data, dict):
            return {}
        return {k: v for k, v in data.items() if isinstance(v, str)}

    def _write(self, data: dict[str, str]) -> None:
        directory = os.path.dirname(self.storage_path)
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".kv-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f)
            os.replace(tmp_path, self.storage_path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def get(self, key: str) -> Optional[str]:
        return self._read().get(key)

    def set(self, key: str, value: str) -> None:
        self._write({**self._read(), key: value})

    def delete(self, key: str) -> None:
        data = self._read()
        if data.pop(key, None) is not None:
            self._write(data)

    def keys(self) -> list[str]:
        return list(self._read())


class SQLiteKeyValueStore(KeyValueStore):
    """SQLite-based storage; survives restarts and is shared between processes."""

    def __init__(self, db_path: str = "resumable_multipart.db"):
        """Initialize SQLite storage.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path
        self._init_db()

    def _init_db(self) -> None:
        """Initialize database schema."""
        conn = sqlite3.connect(self.db_path)
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS kv (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL
            )
            """
        )
        conn.commit()
        conn.close()

    def get(self, key: str) -> Optional[str]:
        conn = sqlite3.connect(self.db_path)
        row = conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
        conn.close()
        return row[0] if row else None

    def set(self, key: str, value: str) -> None:
        conn = sqlite3.connect(self.db_path)
        conn.execute(
            """
            INSERT INTO kv (key, value) VALUES (?, ?)
            ON CONFLICT(key) DO UPDATE SET value = excluded.value
            """,
            (key, value),
        )
        conn.commit()
        conn.close()

    def delete(self, key: str) -> None:
        conn = sqlite3.connect(self.db_path)
        conn.execute("DELETE FROM kv WHERE key = ?", (key,))
        conn.commit()
        conn.close()

    def keys(self) -> list[str]:
        conn = sqlite3.connect(self.db_path)
        rows = conn.execute("SELECT key FROM kv").fetchall()
        conn.close()
        return [row[0] for row in rows]


def try_parse_json(text: Optional[str], default: Any = None) -> Any:
    """Parse JSON text, returning ``default`` for empty or invalid input."""
    if not text:
        return default
    try:
        return json.loads(text)
    except (ValueError, RecursionError):
        return default


class TrackStore:
    """Maps fingerprints to upload tracks on top of a key-value substrate.

    Writes are last-writer-wins; there is at most one track per fingerprint.
    """

    def __init__(self, substrate: KeyValueStore, prefix: str = DEFAULT_KEY_PREFIX):
        self.substrate = substrate
        self.prefix = prefix

    def _key(self, fingerprint: str) -> str:
        return f"{self.prefix}{fingerprint}"

    def get(self, fingerprint: str) -> Optional[Track]:
        """Return the stored track, or None if absent or malformed."""
        data = try_parse_json(self.substrate.get(self._key(fingerprint)))
        if not isinstance(data, dict):
            return None
        try:
            return Track.from_dict(data)
        except (KeyError, TypeError, ValueError, OverflowError) as e:
            logger.warning(f"Ignoring malformed track {fingerprint}: {e}")
            return None

    def put(self, track: Track, fingerprint: str) -> None:
        """Store a track, overwriting any previous one for the fingerprint."""
        self.substrate.set(self._key(fingerprint), json.dumps(track.to_dict()))

    def delete(self, fingerprint: str) -> None:
        self.substrate.delete(self._key(fingerprint))

    def _is_expired(self, key: str, now: float, max_age: float) -> bool:
        data = try_parse_json(self.substrate.get(key))
        if not isinstance(data, dict):
            return False
        last_time = data.get("last_time")
        if isinstance(last_time, bool) or not isinstance(last_time, (int, float)):
            return False
        return 0 < last_time and now - last_time > max_age

    def sweep_expired(self, max_age: float) -> int:
        """Delete tracks whose last update is older than ``max_age`` seconds.

        Entries that cannot be parsed, or carry no valid timestamp, are kept.
        A failure on one entry is logged and the sweep moves on.

        Returns:
            Number of deleted tracks
        """
        now = time.time()
        try:
            keys = [key for key in self.substrate.keys() if key.startswith(self.prefix)]
        except Exception as e:
            logger.warning(f"Track sweep aborted: {e}")
            return 0

        removed = 0
        for key in keys:
            try:
                if self._is_expired(key, now, max_age):
                    self.substrate.delete(key)
                    removed += 1
            except Exception as e:
                logger.warning(f"Skipping track {key} during sweep: {e}")

        if removed:
            logger.info(f"Swept {removed} expired track(s)")
        return removed
