import logging
import sqlite3
import threading
from datetime import datetime, timezone
from typing import Dict, Optional, Tuple

from .errors import StorePersistenceError

logger = logging.getLogger("ValueStore")

DEFAULT_DB_PATH = "mtp_values.db"


def utc_timestamp(moment: datetime = None) -> str:
    """ISO-8601 UTC timestamp with fixed precision, so text order is time order."""
    moment = moment or datetime.now(timezone.utc)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat(timespec='microseconds')


class ValueStore:
    """
    Durable key -> (value, updated_utc) override table backed by SQLite.

    One row per canonical key, upsert only, last write wins by timestamp.
    Safe to call from any thread.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        self._db_path = db_path
        self._lock = threading.Lock()
        try:
            self._conn = sqlite3.connect(db_path, check_same_thread=False)
            with self._conn:
                self._conn.execute(
                    "CREATE TABLE IF NOT EXISTS values_store("
                    "  node_id TEXT PRIMARY KEY,"
                    "  value TEXT,"
                    "  updated_utc TEXT"
                    ")"
                )
        except sqlite3.Error as e:
            raise StorePersistenceError(f"Cannot open value store {db_path}: {e}") from e
        logger.info(f"Value store opened at {db_path}")

    @property
    def path(self) -> str:
        return self._db_path

    def upsert(self, key: str, value, updated_at: datetime = None) -> None:
        """
        Insert or replace the override for key. A row with a newer timestamp
        than this write is kept.

        Raises:
            StorePersistenceError: on any database error.
        """
        text = "" if value is None else str(value)
        stamp = utc_timestamp(updated_at)
        try:
            with self._lock, self._conn:
                self._conn.execute(
                    "INSERT INTO values_store(node_id, value, updated_utc) VALUES(?, ?, ?) "
                    "ON CONFLICT(node_id) DO UPDATE SET value=excluded.value, "
                    "updated_utc=excluded.updated_utc "
                    "WHERE excluded.updated_utc >= values_store.updated_utc",
                    (key, text, stamp),
                )
        except sqlite3.Error as e:
            raise StorePersistenceError(f"Failed to store value for {key}: {e}") from e
        logger.debug(f"Stored override {key} = {text!r}")

    def try_get(self, key: str) -> Tuple[bool, Optional[str]]:
        """Return (found, value text) for key."""
        try:
            with self._lock:
                row = self._conn.execute(
                    "SELECT value FROM values_store WHERE node_id = ?", (key,)
                ).fetchone()
        except sqlite3.Error as e:
            raise StorePersistenceError(f"Failed to read value for {key}: {e}") from e
        if row is None:
            return False, None
        return True, row[0]

    def all(self) -> Dict[str, Dict[str, str]]:
        """Every stored override with its timestamp."""
        try:
            with self._lock:
                rows = self._conn.execute(
                    "SELECT node_id, value, updated_utc FROM values_store ORDER BY node_id"
                ).fetchall()
        except sqlite3.Error as e:
            raise StorePersistenceError(f"Failed to list stored values: {e}") from e
        return {key: {'value': value, 'updated_utc': stamp} for key, value, stamp in rows}

    def close(self) -> None:
        with self._lock:
            self._conn.close()
        logger.info("Value store closed")
