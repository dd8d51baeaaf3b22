from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
import sqlite3
import time


@dataclass
class CacheResult:
    value: str | None
    hit: bool


class SummaryCache:
    """Key/value cache for summaries, keyed by a hash of the summarized content."""

    def __init__(self, enabled: bool, backend: str, base_dir: Path, ttl_seconds: int):
        self.enabled = enabled
        self.backend = backend
        self.ttl_seconds = ttl_seconds
        self._conn: sqlite3.Connection | None = None

        if not enabled:
            return

        if backend == "sqlite":
            cache_path = (base_dir / "summary_cache.sqlite").resolve()
            cache_path.parent.mkdir(parents=True, exist_ok=True)
            # Summary calls run on worker threads.
            self._conn = sqlite3.connect(cache_path, check_same_thread=False)
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS summary_cache (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    created_at REAL NOT NULL
                );
                """
            )
            self._conn.commit()
        else:
            self.enabled = False

    def _expired(self, created_at: float) -> bool:
        return self.ttl_seconds > 0 and (time.time() - created_at) > self.ttl_seconds

    def get(self, key: str) -> CacheResult:
        if not self.enabled or not self._conn:
            return CacheResult(value=None, hit=False)

        row = self._conn.execute("SELECT value, created_at FROM summary_cache WHERE key = ?", (key,)).fetchone()
        if not row:
            return CacheResult(value=None, hit=False)

        value, created_at = row
        if self._expired(float(created_at)):
            self.delete(key)
            return CacheResult(value=None, hit=False)

        return CacheResult(value=str(value), hit=True)

    def set(self, key: str, value: str) -> None:
        if not self.enabled or not self._conn:
            return
        self._conn.execute(
            "INSERT OR REPLACE INTO summary_cache (key, value, created_at) VALUES (?, ?, ?)",
            (key, value, time.time()),
        )
        self._conn.commit()

    def delete(self, key: str) -> None:
        if not self.enabled or not self._conn:
            return
        self._conn.execute("DELETE FROM summary_cache WHERE key = ?", (key,))
        self._conn.commit()

    def close(self) -> None:
        if self._conn:
            self._conn.close()
            self._conn = None
