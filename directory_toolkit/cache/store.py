"""
SQLite-based caching layer for collected inventory.
Avoids re-fetching service principals, mailboxes and AD accounts on
repeated runs within the TTL window.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import time
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger("directory_toolkit.cache")


class RunCache:
    """
    Persistent cache backed by SQLite.
    Features:
      - TTL-based expiration
      - Run log of every invocation
      - Connection-per-call, safe to use from async collectors
      - Stores raw JSON for any collector output
    """

    def __init__(self, cache_dir: str | Path, ttl_hours: int = 24):
        self.cache_dir = Path(cache_dir)
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        self.db_path = self.cache_dir / "run_cache.db"
        self.ttl_seconds = ttl_hours * 3600
        self._init_db()

    def _init_db(self):
        """Initialize the cache database schema."""
        with sqlite3.connect(str(self.db_path)) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS cache_entries (
                    key TEXT PRIMARY KEY,
                    data TEXT NOT NULL,
                    timestamp REAL NOT NULL,
                    run_id TEXT NOT NULL,
                    item_count INTEGER DEFAULT 0
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS run_log (
                    run_id TEXT PRIMARY KEY,
                    command TEXT NOT NULL,
                    started_at REAL NOT NULL,
                    completed_at REAL,
                    status TEXT DEFAULT 'running'
                )
            """)
            conn.commit()

    def get(self, key: str) -> Optional[Any]:
        """
        Retrieve cached data if it exists and hasn't expired.
        Returns None if not found or expired.
        """
        with sqlite3.connect(str(self.db_path)) as conn:
            row = conn.execute(
                "SELECT data, timestamp FROM cache_entries WHERE key = ?",
                (key,),
            ).fetchone()

        if row is None:
            return None

        data_json, timestamp = row
        if time.time() - timestamp > self.ttl_seconds:
            logger.debug(f"Cache expired for key: {key}")
            return None

        logger.debug(f"Cache hit for key: {key}")
        return json.loads(data_json)

    def put(self, key: str, data: Any, run_id: str):
        """Store data in cache with current timestamp."""
        data_json = json.dumps(data, default=str)
        item_count = len(data) if isinstance(data, (list, dict)) else 1

        with sqlite3.connect(str(self.db_path)) as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO cache_entries (key, data, timestamp, run_id, item_count)
                VALUES (?, ?, ?, ?, ?)
                """,
                (key, data_json, time.time(), run_id, item_count),
            )
            conn.commit()
        logger.debug(f"Cached {item_count} items for key: {key}")

    def start_run(self, run_id: str, command: str):
        """Record the start of a run."""
        with sqlite3.connect(str(self.db_path)) as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO run_log (run_id, command, started_at, status)
                VALUES (?, ?, ?, 'running')
                """,
                (run_id, command, time.time()),
            )
            conn.commit()

    def complete_run(self, run_id: str, status: str = "completed"):
        """Record run completion."""
        with sqlite3.connect(str(self.db_path)) as conn:
            conn.execute(
                "UPDATE run_log SET completed_at = ?, status = ? WHERE run_id = ?",
                (time.time(), status, run_id),
            )
            conn.commit()

    def get_run(self, run_id: str) -> Optional[dict]:
        with sqlite3.connect(str(self.db_path)) as conn:
            row = conn.execute(
                "SELECT run_id, command, started_at, completed_at, status "
                "FROM run_log WHERE run_id = ?",
                (run_id,),
            ).fetchone()
        if row is None:
            return None
        return {
            "run_id": row[0],
            "command": row[1],
            "started_at": row[2],
            "completed_at": row[3],
            "status": row[4],
        }

    def clear_expired(self) -> int:
        """Remove all expired cache entries."""
        cutoff = time.time() - self.ttl_seconds
        with sqlite3.connect(str(self.db_path)) as conn:
            deleted = conn.execute(
                "DELETE FROM cache_entries WHERE timestamp < ?",
                (cutoff,),
            ).rowcount
            conn.commit()
        if deleted:
            logger.info(f"Cleared {deleted} expired cache entries.")
        return deleted
