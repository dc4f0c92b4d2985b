from __future__ import annotations

import logging
import sqlite3
import threading
from pathlib import Path

from geotally.errors import StoreError
from geotally.models import CountryCount

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS analytics (
    iso_code TEXT PRIMARY KEY,
    count INTEGER NOT NULL
)
"""
# column name -> position in the primary key (0 = not part of it)
_COLUMNS = {"iso_code": 1, "count": 0}


class CountryStore:
    """Durable per-country request counters backed by SQLite.

    Writes go through one connection guarded by a lock and are committed
    before increment() returns. Snapshots use a second connection; in WAL
    mode readers see the last committed state without waiting for writers.
    """

    def __init__(self, path: Path, writer: sqlite3.Connection, reader: sqlite3.Connection) -> None:
        self.path = path
        self._write_lock = threading.Lock()
        self._read_lock = threading.Lock()
        self._writer: sqlite3.Connection | None = writer
        self._reader: sqlite3.Connection | None = reader

    @classmethod
    def open(cls, path: str | Path) -> CountryStore:
        """Open or create the store at ``path``. Raises StoreError on failure."""
        p = Path(path)
        writer = reader = None
        try:
            p.parent.mkdir(parents=True, exist_ok=True)
            writer = _connect(p)
            writer.execute("PRAGMA journal_mode=WAL")
            writer.execute("PRAGMA synchronous=FULL")
            with writer:
                writer.execute(_SCHEMA)
            columns = {row[1]: row[5] for row in writer.execute("PRAGMA table_info(analytics)")}
            if columns != _COLUMNS:
                raise StoreError(
                    f"incompatible analytics table in {p}: expected iso_code as primary key "
                    f"and count, found {columns}"
                )
            reader = _connect(p)
        except (OSError, sqlite3.Error) as exc:
            _close_quietly(writer, reader)
            raise StoreError(f"cannot open analytics store {p}: {exc}") from exc
        except StoreError:
            _close_quietly(writer, reader)
            raise
        logger.info("Opened analytics store at %s", p)
        return cls(p, writer, reader)

    def increment(self, country_code: str) -> None:
        """Add one to ``country_code``'s counter, creating it at zero first."""
        with self._write_lock:
            if self._writer is None:
                raise StoreError("analytics store is closed")
            try:
                with self._writer:
                    self._writer.execute(
                        "INSERT INTO analytics (iso_code, count) VALUES (?, 1) "
                        "ON CONFLICT(iso_code) DO UPDATE SET count = count + 1",
                        (country_code,),
                    )
            except sqlite3.Error as exc:
                raise StoreError(f"cannot increment {country_code}: {exc}") from exc

    def snapshot(self) -> list[CountryCount]:
        """Return every counter as committed at a single point in time."""
        with self._read_lock:
            if self._reader is None:
                raise StoreError("analytics store is closed")
            try:
                rows = self._reader.execute(
                    "SELECT iso_code, count FROM analytics ORDER BY iso_code"
                ).fetchall()
            except sqlite3.Error as exc:
                raise StoreError(f"cannot read analytics: {exc}") from exc
        return [CountryCount(code, count) for code, count in rows]

    def close(self) -> None:
        with self._write_lock, self._read_lock:
            if self._writer is None:
                return
            _close_quietly(self._writer, self._reader)
            self._writer = self._reader = None
        logger.info("Closed analytics store at %s", self.path)


def _connect(path: Path) -> sqlite3.Connection:
    # Shared across worker threads; the store's locks serialize access.
    return sqlite3.connect(str(path), timeout=10.0, check_same_thread=False)


def _close_quietly(*conns: sqlite3.Connection | None) -> None:
    for conn in conns:
        if conn is None:
            continue
        try:
            conn.close()
        except sqlite3.Error:
            logger.exception("Failed to close analytics store connection")
