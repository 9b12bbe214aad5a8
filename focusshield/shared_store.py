from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timezone
import json
import logging
import os
from pathlib import Path
import sqlite3
from typing import Any, Iterator

from .errors import PersistenceFailure

logger = logging.getLogger(__name__)


def to_utc_text(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.%f")


def from_utc_text(text: str) -> datetime:
    value = datetime.fromisoformat(text)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


class StoreTransaction:
    """Key-value view bound to one open ``BEGIN IMMEDIATE`` transaction."""

    def __init__(self, conn: sqlite3.Connection, store: SharedStore) -> None:
        self._conn = conn
        self._store = store

    def get(self, key: str, default: Any = None) -> Any:
        row = self._conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
        if row is None:
            return default
        return self._store._decode(key, row["value"], default)

    def set(self, key: str, value: Any) -> None:
        self._conn.execute(
            "INSERT OR REPLACE INTO kv (key, value, updated_at) VALUES (?, ?, ?)",
            (key, json.dumps(value, ensure_ascii=False, sort_keys=True), to_utc_text(datetime.now(timezone.utc))),
        )

    def delete(self, key: str) -> None:
        self._conn.execute("DELETE FROM kv WHERE key = ?", (key,))

    def pop(self, key: str, default: Any = None) -> Any:
        value = self.get(key, default)
        self.delete(key)
        return value

    def keys(self, prefix: str = "") -> list[str]:
        rows = self._conn.execute(
            "SELECT key FROM kv WHERE substr(key, 1, ?) = ? ORDER BY key ASC",
            (len(prefix), prefix),
        ).fetchall()
        return [str(row["key"]) for row in rows]

    def clear(self) -> None:
        self._conn.execute("DELETE FROM kv")


class SharedStore:
    """Durable key-value store shared by the foreground app and the background monitor.

    Values are JSON documents. Every write goes through :meth:`transaction`, which
    holds SQLite's reserved lock for the whole read-modify-write, so a writer in
    another process waits instead of overwriting.
    """

    def __init__(self, db_path: Path, journal_mode: str | None = None, timeout: float = 10.0) -> None:
        self.db_path = Path(db_path)
        raw_mode = (journal_mode or os.getenv("FOCUSSHIELD_JOURNAL_MODE") or "MEMORY").strip()
        self.journal_mode = raw_mode.upper() if raw_mode else "MEMORY"
        self.timeout = timeout
        self.decode_failures: list[str] = []
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise PersistenceFailure(f"cannot create data directory {self.db_path.parent}: {exc}") from exc
        self.init_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=self.timeout, isolation_level=None)
        conn.row_factory = sqlite3.Row
        self._apply_journal_mode(conn)
        conn.execute("PRAGMA synchronous=NORMAL")
        return conn

    def _apply_journal_mode(self, conn: sqlite3.Connection) -> None:
        try:
            conn.execute(f"PRAGMA journal_mode={self.journal_mode}")
        except sqlite3.OperationalError:
            conn.execute("PRAGMA journal_mode=MEMORY")

    def init_schema(self) -> None:
        with self.transaction() as tx:
            tx._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS kv (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )

    @contextmanager
    def transaction(self) -> Iterator[StoreTransaction]:
        try:
            conn = self._connect()
        except sqlite3.Error as exc:
            raise PersistenceFailure(f"cannot open shared store {self.db_path}: {exc}") from exc

        try:
            try:
                conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as exc:
                raise PersistenceFailure(f"cannot lock shared store {self.db_path}: {exc}") from exc

            try:
                yield StoreTransaction(conn, self)
                conn.execute("COMMIT")
            except sqlite3.Error as exc:
                self._rollback(conn)
                raise PersistenceFailure(f"shared store write failed: {exc}") from exc
            except BaseException:
                self._rollback(conn)
                raise
        finally:
            conn.close()

    def get(self, key: str, default: Any = None) -> Any:
        try:
            conn = self._connect()
            try:
                row = conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
            finally:
                conn.close()
        except sqlite3.Error as exc:
            raise PersistenceFailure(f"shared store read failed for {key}: {exc}") from exc
        if row is None:
            return default
        return self._decode(key, row["value"], default)

    def set(self, key: str, value: Any) -> None:
        with self.transaction() as tx:
            tx.set(key, value)

    def delete(self, key: str) -> None:
        with self.transaction() as tx:
            tx.delete(key)

    def keys(self, prefix: str = "") -> list[str]:
        with self.transaction() as tx:
            return tx.keys(prefix)

    def clear(self) -> None:
        with self.transaction() as tx:
            tx.clear()

    def _decode(self, key: str, raw: str, default: Any) -> Any:
        try:
            return json.loads(raw)
        except (TypeError, ValueError) as exc:
            self.decode_failures.append(key)
            logger.warning("corrupted value for %s treated as default: %s", key, exc)
            return default

    @staticmethod
    def _rollback(conn: sqlite3.Connection) -> None:
        try:
            conn.execute("ROLLBACK")
        except sqlite3.Error as exc:
            logger.warning("rollback failed: %s", exc)
