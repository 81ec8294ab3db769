from __future__ import annotations

import sqlite3
from datetime import datetime, timezone
from pathlib import Path

from transcriber.db.database import Database
from transcriber.types import CacheEntry


def _row_to_entry(row: sqlite3.Row) -> CacheEntry:
    verified_at = datetime.fromisoformat(str(row["verified_at"]))
    if verified_at.tzinfo is None:
        verified_at = verified_at.replace(tzinfo=timezone.utc)
    return CacheEntry(
        key=str(row["key"]),
        identifier=str(row["identifier"]),
        path=Path(str(row["path"])),
        checksum=str(row["checksum"]),
        size=int(row["size"]),
        verified_at=verified_at,
        source=row["source"],
        custom=bool(row["custom"]),
    )


class CacheIndexRepository:
    def __init__(self, db: Database) -> None:
        self.db = db

    def get(self, key: str) -> CacheEntry | None:
        row = self.db.conn.execute(
            "SELECT * FROM model_cache WHERE key = ? LIMIT 1",
            (key,),
        ).fetchone()
        return _row_to_entry(row) if row is not None else None

    def find_custom(self, identifier: str) -> CacheEntry | None:
        row = self.db.conn.execute(
            """
            SELECT * FROM model_cache
            WHERE custom = 1 AND lower(identifier) = lower(?)
            ORDER BY verified_at DESC
            LIMIT 1
            """,
            (identifier,),
        ).fetchone()
        return _row_to_entry(row) if row is not None else None

    def upsert(self, entry: CacheEntry) -> None:
        with self.db.lock:
            self.db.conn.execute(
                """
                INSERT INTO model_cache(key, identifier, path, checksum, size, source, custom, verified_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    identifier = excluded.identifier,
                    path = excluded.path,
                    checksum = excluded.checksum,
                    size = excluded.size,
                    source = excluded.source,
                    custom = excluded.custom,
                    verified_at = excluded.verified_at
                """,
                (
                    entry.key,
                    entry.identifier,
                    str(entry.path),
                    entry.checksum,
                    entry.size,
                    entry.source,
                    1 if entry.custom else 0,
                    entry.verified_at.astimezone(timezone.utc).isoformat(),
                ),
            )
            self.db.conn.commit()

    def touch(self, key: str, verified_at: datetime | None = None) -> None:
        stamp = (verified_at or datetime.now(timezone.utc)).astimezone(timezone.utc).isoformat()
        with self.db.lock:
            self.db.conn.execute(
                "UPDATE model_cache SET verified_at = ? WHERE key = ?",
                (stamp, key),
            )
            self.db.conn.commit()

    def delete(self, key: str) -> None:
        with self.db.lock:
            self.db.conn.execute("DELETE FROM model_cache WHERE key = ?", (key,))
            self.db.conn.commit()

    def list_entries(self, *, custom: bool | None = None) -> list[CacheEntry]:
        query = "SELECT * FROM model_cache"
        params: list[object] = []
        if custom is not None:
            query += " WHERE custom = ?"
            params.append(1 if custom else 0)
        query += " ORDER BY identifier ASC"
        rows = self.db.conn.execute(query, tuple(params)).fetchall()
        return [_row_to_entry(row) for row in rows]
