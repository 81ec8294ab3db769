from __future__ import annotations

import sqlite3
from pathlib import Path
from threading import Lock

from transcriber.catalog import CATALOG_VERSION

SCHEMA_VERSION = 1


class Database:
    def __init__(self, path: Path) -> None:
        self.path = path
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = Lock()
        self._conn = sqlite3.connect(str(path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._initialize()

    @property
    def conn(self) -> sqlite3.Connection:
        return self._conn

    @property
    def lock(self) -> Lock:
        return self._lock

    def _initialize(self) -> None:
        with self._lock:
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA synchronous=NORMAL")

            self._conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS model_cache (
                  key TEXT PRIMARY KEY,
                  identifier TEXT NOT NULL,
                  path TEXT NOT NULL,
                  checksum TEXT NOT NULL,
                  size INTEGER NOT NULL,
                  source TEXT,
                  custom INTEGER NOT NULL DEFAULT 0,
                  verified_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_model_cache_identifier
                ON model_cache(identifier);

                CREATE TABLE IF NOT EXISTS meta (
                  name TEXT PRIMARY KEY,
                  value TEXT NOT NULL
                );
                """
            )
            self._conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")
            self._conn.execute(
                "INSERT OR REPLACE INTO meta(name, value) VALUES ('catalog_version', ?)",
                (str(CATALOG_VERSION),),
            )
            self._conn.commit()

    def close(self) -> None:
        with self._lock:
            self._conn.close()
