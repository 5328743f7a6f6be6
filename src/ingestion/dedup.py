"""
Two-level dedup cache: an in-process set for the hot path backed by an optional
durable store so restarts do not re-ingest posts seen within the TTL.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import List, Optional, Set, Tuple

from src.ingestion.store import SQLiteDedupStore

LOGGER = logging.getLogger(__name__)

TTL_DAYS = 7


def identity_key(source_type: str, source_id: str) -> str:
    return f"{source_type}:{source_id}"


class PersistentDedup:
    def __init__(self, store: Optional[SQLiteDedupStore] = None, ttl_days: int = TTL_DAYS) -> None:
        self.store = store
        self.ttl = timedelta(days=ttl_days)
        self._memory: Set[str] = set()
        self._pending: List[Tuple[str, str]] = []

    @property
    def memory_cache_size(self) -> int:
        return len(self._memory)

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def has_seen(self, source_type: str, source_id: str) -> bool:
        key = identity_key(source_type, source_id)
        if key in self._memory:
            return True
        if self.store is None:
            return False
        try:
            found = self.store.exists(source_type, source_id)
        except Exception:  # noqa: BLE001
            LOGGER.warning("Dedup lookup failed for %s; treating as unseen", key, exc_info=True)
            return False
        if found:
            self._memory.add(key)
        return found

    def mark_seen(self, source_type: str, source_id: str) -> None:
        key = identity_key(source_type, source_id)
        self._memory.add(key)
        if self.store is not None:
            self._pending.append((source_type, source_id))

    def flush(self) -> int:
        """Write buffered keys in one batch; a failed batch is kept for the next flush."""
        if self.store is None or not self._pending:
            return 0
        batch = self._pending
        self._pending = []
        try:
            inserted = self.store.batch_insert_ignore_conflict(batch)
        except Exception:  # noqa: BLE001
            LOGGER.exception("Failed to flush %d dedup keys; will retry next cycle", len(batch))
            self._pending = batch + self._pending
            return 0
        LOGGER.debug("Flushed %d dedup keys (%d new)", len(batch), inserted)
        return inserted

    def cleanup(self) -> int:
        if self.store is None:
            return 0
        try:
            removed = self.store.delete_older_than(self.ttl)
        except Exception:  # noqa: BLE001
            LOGGER.exception("Dedup cleanup failed")
            return 0
        LOGGER.info("Removed %d dedup entries older than %d days", removed, self.ttl.days)
        return removed
