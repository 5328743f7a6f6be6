import asyncio
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

import pytest

from src.ingestion.dedup import PersistentDedup
from src.ingestion.geocoding import NominatimGeocoder
from src.ingestion.models import NormalizedPost
from src.ingestion.orchestrator import IngestionOrchestrator, classify_post
from src.ingestion.source_health import SourceHealthTracker
from src.ingestion.store import SQLiteDedupStore, SQLiteReportStore

DALLAS_TEXT = "I just saw ICE checkpoint at Main St and 5th Ave in Dallas, TX, happening right now"


def make_post(
    source_id: str,
    text: str,
    source_type: str = "bluesky",
    category: str = "social",
    author: str = "witness.bsky.social",
) -> NormalizedPost:
    return NormalizedPost(
        source_type=source_type,
        source_id=source_id,
        text=text,
        author_handle=author,
        author_display_name=None,
        created_at=datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc),
        url=f"https://example.com/{source_id}",
        category=category,
    )


class FakeSource:
    def __init__(self, name: str, posts: Optional[List[NormalizedPost]] = None, error: Optional[Exception] = None):
        self.name = name
        self.posts = posts or []
        self.error = error
        self.calls = 0

    def fetch(self) -> List[NormalizedPost]:
        self.calls += 1
        if self.error:
            raise self.error
        return list(self.posts)


@pytest.fixture
def offline(monkeypatch: pytest.MonkeyPatch) -> None:
    def fail(*args, **kwargs):
        raise AssertionError("unexpected network call")

    monkeypatch.setattr("src.ingestion.geocoding.requests.get", fail)


def make_orchestrator(tmp_path: Path, sources, health: Optional[SourceHealthTracker] = None) -> IngestionOrchestrator:
    return IngestionOrchestrator(
        sources=sources,
        geocoder=NominatimGeocoder(cache_path=tmp_path / "geocache.sqlite", min_interval=0),
        dedup=PersistentDedup(SQLiteDedupStore(tmp_path / "cache.sqlite")),
        report_store=SQLiteReportStore(tmp_path / "reports.sqlite"),
        health=health,
    )


def test_sighting_is_saved_once_across_cycles(tmp_path: Path, offline) -> None:
    source = FakeSource("bluesky", [make_post("at://post/1", DALLAS_TEXT)])
    orchestrator = make_orchestrator(tmp_path, [source])

    first = asyncio.run(orchestrator.run_cycle())
    second = asyncio.run(orchestrator.run_cycle())

    assert first is not None and second is not None
    assert (first.found, first.saved, first.filtered) == (1, 1, 0)
    assert first.saved_by_source == {"bluesky": 1}
    assert (second.found, second.dedup_skipped, second.saved) == (1, 1, 0)

    report = orchestrator.report_store.find_by_source_id("bluesky", "at://post/1")
    assert report is not None
    assert (report.city, report.state) == ("Dallas", "TX")
    assert (report.latitude, report.longitude) == (32.7767, -96.7970)
    assert report.activity_type == "checkpoint"
    assert report.metadata["filter_confidence"] == "high"
    assert report.metadata["location_confidence"] == "high"
    assert report.metadata["geocode_source"] == "known_city"
    assert "needs_review" not in report.metadata
    assert orchestrator.report_store.count() == 1


def test_restart_does_not_reingest_seen_posts(tmp_path: Path, offline) -> None:
    posts = [make_post("at://post/1", DALLAS_TEXT)]
    asyncio.run(make_orchestrator(tmp_path, [FakeSource("bluesky", posts)]).run_cycle())

    restarted = make_orchestrator(tmp_path, [FakeSource("bluesky", posts)])
    metrics = asyncio.run(restarted.run_cycle())

    assert metrics is not None
    assert metrics.dedup_skipped == 1
    assert restarted.report_store.count() == 1


def test_failing_source_does_not_block_others(tmp_path: Path, offline) -> None:
    broken = FakeSource("mastodon", error=RuntimeError("instance down"))
    healthy = FakeSource("bluesky", [make_post("at://post/1", DALLAS_TEXT)])
    orchestrator = make_orchestrator(tmp_path, [broken, healthy])

    metrics = asyncio.run(orchestrator.run_cycle())

    assert metrics is not None
    assert metrics.failed_sources == ["mastodon"]
    assert metrics.saved == 1
    assert orchestrator.health.metrics("mastodon").consecutive_failures == 1
    assert orchestrator.health.metrics("bluesky").total_successes == 1
    assert metrics.health == "mastodon:WARN(1) bluesky:OK"


def test_source_in_backoff_is_not_polled(tmp_path: Path, offline) -> None:
    health = SourceHealthTracker()
    for _ in range(5):
        health.record_failure("reddit")
    source = FakeSource("reddit", [make_post("reddit:t3_a", DALLAS_TEXT, source_type="reddit")])
    orchestrator = make_orchestrator(tmp_path, [source], health=health)

    metrics = asyncio.run(orchestrator.run_cycle())

    assert source.calls == 0
    assert metrics is not None
    assert metrics.skipped_sources == ["reddit"]
    assert metrics.found == 0


def test_commentary_is_filtered(tmp_path: Path, offline) -> None:
    post = make_post("at://post/2", "Trump administration ICE policies are destroying families in Houston, TX")
    orchestrator = make_orchestrator(tmp_path, [FakeSource("bluesky", [post])])

    metrics = asyncio.run(orchestrator.run_cycle())

    assert metrics is not None
    assert (metrics.filtered, metrics.saved) == (1, 0)


def test_weak_signal_is_saved_for_review(tmp_path: Path, offline) -> None:
    post = make_post("at://post/3", "ICE van parked outside Walmart in Houston, TX")
    orchestrator = make_orchestrator(tmp_path, [FakeSource("bluesky", [post])])

    metrics = asyncio.run(orchestrator.run_cycle())

    assert metrics is not None
    assert (metrics.saved, metrics.needs_review) == (1, 1)
    report = orchestrator.report_store.find_by_source_id("bluesky", "at://post/3")
    assert report.metadata["needs_review"] is True
    assert report.metadata["filter_confidence"] == "low"


def test_news_article_uses_news_rules(tmp_path: Path, offline) -> None:
    post = make_post(
        "guid-1",
        "ICE agents arrest 12 in Houston raid\n\nAgents detained workers at a warehouse.",
        source_type="google_news",
        category="news",
        author="Local Paper",
    )
    orchestrator = make_orchestrator(tmp_path, [FakeSource("google_news", [post])])

    metrics = asyncio.run(orchestrator.run_cycle())

    assert metrics is not None
    assert metrics.saved == 1
    report = orchestrator.report_store.find_by_source_id("google_news", "guid-1")
    assert (report.city, report.state) == ("Houston", "TX")
    assert report.metadata["source_tier"] == "unknown"
    assert report.activity_type == "raid"


def test_relevant_post_without_location_is_not_saved(tmp_path: Path, offline) -> None:
    post = make_post("at://post/4", "I just saw ICE agents right now")
    orchestrator = make_orchestrator(tmp_path, [FakeSource("bluesky", [post])])

    metrics = asyncio.run(orchestrator.run_cycle())

    assert metrics is not None
    assert (metrics.filtered, metrics.saved) == (0, 0)
    assert orchestrator.report_store.count() == 0


def test_blocked_news_source_is_filtered() -> None:
    post = make_post("guid-2", "ICE raid in Houston\n\nAgents arrest dozens", "google_news", "news", "Infowars")

    decision = classify_post(post)

    assert decision.accepted is False
    assert decision.reason == "Blocked source: Infowars"


def test_overlapping_cycle_is_refused(tmp_path: Path, offline) -> None:
    source = FakeSource("bluesky", [make_post("at://post/1", DALLAS_TEXT)])
    orchestrator = make_orchestrator(tmp_path, [source])
    orchestrator._cycle_in_progress = True

    assert asyncio.run(orchestrator.run_cycle()) is None
    assert source.calls == 0


def test_run_forever_polls_and_cleans_up_until_stopped(tmp_path: Path, offline) -> None:
    cleanups: List[int] = []

    class CountingDedup(PersistentDedup):
        def cleanup(self) -> int:
            cleanups.append(1)
            return 0

    source = FakeSource("bluesky", [])
    orchestrator = IngestionOrchestrator(
        sources=[source],
        geocoder=None,
        dedup=CountingDedup(),
        poll_interval_seconds=0.01,
        cleanup_interval_seconds=0,
    )

    async def scenario() -> None:
        stop = asyncio.Event()
        task = asyncio.create_task(orchestrator.run_forever(stop))
        for _ in range(200):
            if source.calls >= 2:
                break
            await asyncio.sleep(0.01)
        stop.set()
        await asyncio.wait_for(task, timeout=2)

    asyncio.run(scenario())

    assert source.calls >= 2
    assert cleanups


def test_save_failure_is_counted_and_later_posts_still_saved(tmp_path: Path, offline) -> None:
    class FlakyReportStore(SQLiteReportStore):
        def create(self, **fields):
            if fields["source_id"] == "at://post/bad":
                raise sqlite3.OperationalError("database is locked")
            return super().create(**fields)

    posts = [make_post("at://post/bad", DALLAS_TEXT), make_post("at://post/good", DALLAS_TEXT)]
    orchestrator = make_orchestrator(tmp_path, [FakeSource("bluesky", posts)])
    orchestrator.report_store = FlakyReportStore(tmp_path / "flaky.sqlite")

    metrics = asyncio.run(orchestrator.run_cycle())

    assert metrics is not None
    assert (metrics.saved, metrics.errors) == (1, 1)
    assert orchestrator.report_store.find_by_source_id("bluesky", "at://post/bad") is None
    assert orchestrator.report_store.find_by_source_id("bluesky", "at://post/good") is not None


def test_sources_are_fetched_concurrently(tmp_path: Path, offline) -> None:
    barrier = threading.Barrier(2, timeout=5)

    class RendezvousSource(FakeSource):
        def fetch(self) -> List[NormalizedPost]:
            barrier.wait()
            return super().fetch()

    sources = [RendezvousSource("bluesky"), RendezvousSource("mastodon")]
    orchestrator = make_orchestrator(tmp_path, sources)

    metrics = asyncio.run(orchestrator.run_cycle())

    assert metrics is not None
    assert metrics.failed_sources == []
    assert [source.calls for source in sources] == [1, 1]
