"""
Subscriber store with pluggable backends.

Every backend exposes the same list-membership contract. Backend errors
never escape the public methods: they are logged and the call becomes a
no-op, so a broken store cannot abort a fan-out or a command.
"""
import logging
import sqlite3
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Dict, Generator, Iterable, List, Optional, Set

import redis

from .config import AppConfig, StoreBackend
from .models import ATTENDANCE_LIST, KNOWN_LISTS

logger = logging.getLogger(__name__)


class SubscriberStore(ABC):
    """Named subscription lists of Telegram user ids"""

    def __init__(self, lists: Iterable[str] = KNOWN_LISTS):
        self.lists = tuple(lists)

    # Backend primitives, allowed to raise
    @abstractmethod
    def _add(self, list_name: str, user_id: int) -> None:
        pass

    @abstractmethod
    def _remove(self, list_name: str, user_id: int) -> None:
        pass

    @abstractmethod
    def _contains(self, list_name: str, user_id: int) -> bool:
        pass

    @abstractmethod
    def _members(self, list_name: str) -> List[int]:
        pass

    def add(self, list_name: str, user_id: int) -> None:
        """Add a subscriber, no error on duplicate"""
        try:
            self._add(list_name, user_id)
        except Exception as e:
            logger.error(f"Store add failed ({list_name}, {user_id}): {e}")

    def remove(self, list_name: str, user_id: int) -> None:
        """Remove a subscriber, no error if absent"""
        try:
            self._remove(list_name, user_id)
        except Exception as e:
            logger.error(f"Store remove failed ({list_name}, {user_id}): {e}")

    def contains(self, list_name: str, user_id: int) -> bool:
        try:
            return self._contains(list_name, user_id)
        except Exception as e:
            logger.error(f"Store lookup failed ({list_name}, {user_id}): {e}")
            return False

    def list_all(self, list_name: str) -> List[int]:
        """All subscriber ids of a list, order not significant"""
        try:
            return self._members(list_name)
        except Exception as e:
            logger.error(f"Store list failed ({list_name}): {e}")
            return []

    def remove_from_all_lists(self, user_id: int) -> None:
        """Remove a subscriber from every known list"""
        for list_name in self.lists:
            self.remove(list_name, user_id)

    def memberships(self, user_id: int) -> Set[str]:
        """Names of the lists the user belongs to"""
        return {name for name in self.lists if self.contains(name, user_id)}

    def get_stats(self) -> Dict[str, int]:
        return {name: len(self.list_all(name)) for name in self.lists}


class MemorySubscriberStore(SubscriberStore):
    """In-memory store"""

    def __init__(self, lists: Iterable[str] = KNOWN_LISTS):
        super().__init__(lists)
        self._sets: Dict[str, Set[int]] = {}
        self._lock = threading.Lock()

    def _add(self, list_name: str, user_id: int) -> None:
        with self._lock:
            self._sets.setdefault(list_name, set()).add(int(user_id))

    def _remove(self, list_name: str, user_id: int) -> None:
        with self._lock:
            self._sets.get(list_name, set()).discard(int(user_id))

    def _contains(self, list_name: str, user_id: int) -> bool:
        with self._lock:
            return int(user_id) in self._sets.get(list_name, set())

    def _members(self, list_name: str) -> List[int]:
        with self._lock:
            return list(self._sets.get(list_name, set()))


class SQLiteSubscriberStore(SubscriberStore):
    """SQLite store, one row per (list, user)"""

    def __init__(self, db_path: Path, lists: Iterable[str] = KNOWN_LISTS):
        super().__init__(lists)
        self.db_path = db_path
        self._init_db()

    @contextmanager
    def _get_conn(self) -> Generator[sqlite3.Connection, None, None]:
        """Get database connection context manager"""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Initialize database tables"""
        with self._get_conn() as conn:
            conn.execute("PRAGMA journal_mode = WAL")
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS subscribers (
                    list_name TEXT NOT NULL,
                    user_id INTEGER NOT NULL,
                    created_at TEXT NOT NULL,
                    PRIMARY KEY (list_name, user_id)
                );

                CREATE INDEX IF NOT EXISTS idx_subscribers_user_id
                    ON subscribers(user_id);
            """)

            self._migrate_legacy_users(conn)

    def _migrate_legacy_users(self, conn: sqlite3.Connection) -> None:
        """Migration: move the old users(user_id, blocked) table into the attendance list"""
        cursor = conn.execute("PRAGMA table_info(users)")
        columns = [row[1] for row in cursor.fetchall()]
        if "user_id" not in columns or "blocked" not in columns:
            return

        now = datetime.now().isoformat()
        cursor = conn.execute(
            "INSERT OR IGNORE INTO subscribers (list_name, user_id, created_at) "
            "SELECT ?, user_id, ? FROM users WHERE blocked = 0",
            (ATTENDANCE_LIST, now)
        )
        conn.execute("ALTER TABLE users RENAME TO users_legacy")
        logger.info(f"📦 Migrated {cursor.rowcount} legacy users into '{ATTENDANCE_LIST}'")

    def _add(self, list_name: str, user_id: int) -> None:
        now = datetime.now().isoformat()
        with self._get_conn() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO subscribers (list_name, user_id, created_at) VALUES (?, ?, ?)",
                (list_name, user_id, now)
            )

    def _remove(self, list_name: str, user_id: int) -> None:
        with self._get_conn() as conn:
            conn.execute(
                "DELETE FROM subscribers WHERE list_name = ? AND user_id = ?",
                (list_name, user_id)
            )

    def _contains(self, list_name: str, user_id: int) -> bool:
        with self._get_conn() as conn:
            row = conn.execute(
                "SELECT 1 FROM subscribers WHERE list_name = ? AND user_id = ?",
                (list_name, user_id)
            ).fetchone()
        return row is not None

    def _members(self, list_name: str) -> List[int]:
        with self._get_conn() as conn:
            rows = conn.execute(
                "SELECT user_id FROM subscribers WHERE list_name = ?", (list_name,)
            ).fetchall()
        return [row["user_id"] for row in rows]


class RedisSubscriberStore(SubscriberStore):
    """Redis store, one set per list"""

    KEY_PREFIX = "subs:"

    def __init__(self, url: str, lists: Iterable[str] = KNOWN_LISTS, client=None):
        super().__init__(lists)
        if client is not None:
            self._client = client
            return
        self._client = redis.Redis.from_url(url, decode_responses=True)
        logger.info("Using Redis subscriber store")

    def _key(self, list_name: str) -> str:
        return f"{self.KEY_PREFIX}{list_name}"

    def _add(self, list_name: str, user_id: int) -> None:
        self._client.sadd(self._key(list_name), str(user_id))

    def _remove(self, list_name: str, user_id: int) -> None:
        self._client.srem(self._key(list_name), str(user_id))

    def _contains(self, list_name: str, user_id: int) -> bool:
        return bool(self._client.sismember(self._key(list_name), str(user_id)))

    def _members(self, list_name: str) -> List[int]:
        return [int(member) for member in self._client.smembers(self._key(list_name))]


def create_store(config: AppConfig, db_path: Optional[Path] = None) -> SubscriberStore:
    """Factory function to create the subscriber store based on config"""
    if config.store_backend == StoreBackend.REDIS:
        return RedisSubscriberStore(config.redis_url)
    if config.store_backend == StoreBackend.MEMORY:
        logger.warning("⚠️ Using in-memory subscriber store, subscriptions are lost on exit")
        return MemorySubscriberStore()
    if db_path is None:
        raise ValueError("SQLite store requires a database path")
    return SQLiteSubscriberStore(db_path)
