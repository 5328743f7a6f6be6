"""
SQLite-backed persistence for saved reports and for the durable half of the
dedup cache. Both stores share one connection per file guarded by a lock so the
orchestrator can call them from worker threads.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Iterable, Optional, Tuple

from src.ingestion.models import Report

LOGGER = logging.getLogger(__name__)


def _to_iso(value: datetime | None) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def _from_iso(value: Optional[str]) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _connect(db_path: Path | str) -> sqlite3.Connection:
    if str(db_path) != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    return sqlite3.connect(str(db_path), check_same_thread=False)


class SQLiteReportStore:
    """Report table keyed by a generated id, unique per (source_type, source_id)."""

    def __init__(self, db_path: Path | str) -> None:
        self.db_path = db_path
        self.conn = _connect(db_path)
        self.conn.execute(
            """
            CREATE TABLE IF NOT EXISTS reports (
                id TEXT PRIMARY KEY,
                source_type TEXT NOT NULL,
                source_id TEXT NOT NULL,
                activity_type TEXT NOT NULL,
                description TEXT NOT NULL,
                city TEXT,
                state TEXT,
                latitude REAL,
                longitude REAL,
                author_handle TEXT,
                author_display_name TEXT,
                reported_at TEXT,
                created_at TEXT NOT NULL,
                status TEXT NOT NULL,
                metadata TEXT,
                UNIQUE (source_type, source_id)
            )
            """
        )
        self.conn.commit()
        self.lock = threading.Lock()

    def find_by_source_id(self, source_type: str, source_id: str) -> Optional[Report]:
        with self.lock:
            cursor = self.conn.execute(
                """
                SELECT id, source_type, source_id, activity_type, description, city, state,
                       latitude, longitude, author_handle, author_display_name, reported_at,
                       created_at, status, metadata
                FROM reports WHERE source_type = ? AND source_id = ?
                """,
                (source_type, source_id),
            )
            row = cursor.fetchone()
        if not row:
            return None
        metadata: dict[str, Any] = {}
        if row[14]:
            try:
                metadata = json.loads(row[14])
            except json.JSONDecodeError:
                metadata = {}
        return Report(
            id=row[0],
            source_type=row[1],
            source_id=row[2],
            activity_type=row[3],
            description=row[4],
            city=row[5],
            state=row[6],
            latitude=row[7],
            longitude=row[8],
            author_handle=row[9],
            author_display_name=row[10],
            reported_at=_from_iso(row[11]),
            created_at=_from_iso(row[12]) or datetime.now(timezone.utc),
            status=row[13],
            metadata=metadata,
        )

    def create(
        self,
        *,
        source_type: str,
        source_id: str,
        activity_type: str,
        description: str,
        city: Optional[str] = None,
        state: Optional[str] = None,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
        author_handle: str = "",
        author_display_name: Optional[str] = None,
        reported_at: datetime | None = None,
        status: str = "unverified",
        metadata: Optional[dict[str, Any]] = None,
    ) -> Report:
        report = Report(
            id=str(uuid.uuid4()),
            source_type=source_type,
            source_id=source_id,
            activity_type=activity_type,
            description=description,
            city=city,
            state=state,
            latitude=latitude,
            longitude=longitude,
            author_handle=author_handle,
            author_display_name=author_display_name,
            reported_at=reported_at,
            created_at=datetime.now(timezone.utc),
            status=status,
            metadata=dict(metadata or {}),
        )
        with self.lock:
            self.conn.execute(
                """
                INSERT INTO reports (
                    id, source_type, source_id, activity_type, description, city, state,
                    latitude, longitude, author_handle, author_display_name, reported_at,
                    created_at, status, metadata
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    report.id,
                    report.source_type,
                    report.source_id,
                    report.activity_type,
                    report.description,
                    report.city,
                    report.state,
                    report.latitude,
                    report.longitude,
                    report.author_handle,
                    report.author_display_name,
                    _to_iso(report.reported_at),
                    _to_iso(report.created_at),
                    report.status,
                    json.dumps(report.metadata) if report.metadata else None,
                ),
            )
            self.conn.commit()
        return report

    def count(self) -> int:
        with self.lock:
            row = self.conn.execute("SELECT COUNT(*) FROM reports").fetchone()
        return int(row[0]) if row else 0


class SQLiteDedupStore:
    """Durable identity keys with a first-seen timestamp for TTL eviction."""

    def __init__(self, db_path: Path | str) -> None:
        self.db_path = db_path
        self.conn = _connect(db_path)
        self.conn.execute(
            """
            CREATE TABLE IF NOT EXISTS ingestion_cache (
                source_type TEXT NOT NULL,
                source_id TEXT NOT NULL,
                first_seen_at TEXT NOT NULL,
                PRIMARY KEY (source_type, source_id)
            )
            """
        )
        self.conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_ingestion_cache_first_seen ON ingestion_cache (first_seen_at)"
        )
        self.conn.commit()
        self.lock = threading.Lock()

    def exists(self, source_type: str, source_id: str) -> bool:
        with self.lock:
            cursor = self.conn.execute(
                "SELECT 1 FROM ingestion_cache WHERE source_type = ? AND source_id = ?",
                (source_type, source_id),
            )
            return cursor.fetchone() is not None

    def batch_insert_ignore_conflict(
        self,
        keys: Iterable[Tuple[str, str]],
        first_seen_at: datetime | None = None,
    ) -> int:
        seen_at = _to_iso(first_seen_at or datetime.now(timezone.utc))
        rows = [(source_type, source_id, seen_at) for source_type, source_id in keys]
        if not rows:
            return 0
        with self.lock:
            before = self.conn.total_changes
            self.conn.executemany(
                """
                INSERT OR IGNORE INTO ingestion_cache (source_type, source_id, first_seen_at)
                VALUES (?, ?, ?)
                """,
                rows,
            )
            self.conn.commit()
            return self.conn.total_changes - before

    def delete_older_than(self, ttl: timedelta) -> int:
        cutoff = _to_iso(datetime.now(timezone.utc) - ttl)
        with self.lock:
            cursor = self.conn.execute(
                "DELETE FROM ingestion_cache WHERE first_seen_at < ?",
                (cutoff,),
            )
            self.conn.commit()
            return cursor.rowcount
