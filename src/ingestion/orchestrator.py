"""
Polling loop that pulls posts from every enabled source, filters them and saves
the ones that describe a located sighting.

Sources are fetched concurrently in worker threads; everything after the fetch
runs one post at a time so the geocoder's rate gate and the dedup cache are never
touched concurrently.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from dotenv import load_dotenv

from src.ingestion.activity import detect_activity_type
from src.ingestion.config import IngestionConfig, load_config
from src.ingestion.dedup import PersistentDedup
from src.ingestion.geocoding import NominatimGeocoder
from src.ingestion.location import extract_location, normalize_state
from src.ingestion.models import GeocodingResult, NormalizedPost, Report
from src.ingestion.relevance import classify_news, classify_social
from src.ingestion.source_health import SourceHealthTracker
from src.ingestion.sources import BaseSource, build_default_sources
from src.ingestion.store import SQLiteDedupStore, SQLiteReportStore

LOGGER = logging.getLogger(__name__)

SOURCE_ABBREVIATIONS = {
    "bluesky": "B",
    "mastodon": "M",
    "reddit": "R",
    "google_news": "N",
}


@dataclass
class CycleMetrics:
    found: int = 0
    dedup_skipped: int = 0
    filtered: int = 0
    saved: int = 0
    needs_review: int = 0
    errors: int = 0
    skipped_sources: List[str] = field(default_factory=list)
    failed_sources: List[str] = field(default_factory=list)
    saved_by_source: Dict[str, int] = field(default_factory=dict)
    health: str = ""
    duration_seconds: float = 0.0

    def summary_line(self, source_names: Sequence[str]) -> str:
        breakdown = " ".join(
            f"{SOURCE_ABBREVIATIONS.get(name, name)}:{self.saved_by_source.get(name, 0)}" for name in source_names
        )
        review = f" ({self.needs_review} needs_review)" if self.needs_review else ""
        return (
            f"Sources: {breakdown or 'none'} | Pipeline: {self.found} found → {self.dedup_skipped} dedup "
            f"→ {self.filtered} filtered → {self.saved} saved{review} | Health: {self.health}"
        )


@dataclass
class Decision:
    accepted: bool
    reason: str
    needs_review: bool = False
    metadata: Dict[str, Any] = field(default_factory=dict)


def split_news_text(text: str) -> Tuple[str, str]:
    title, _, description = text.partition("\n\n")
    return title, description


def classify_post(post: NormalizedPost) -> Decision:
    """Route a post to the news or social rules and decide whether to keep it."""
    if post.category == "news":
        title, description = split_news_text(post.text)
        news = classify_news(title, description, post.author_handle)
        return Decision(
            accepted=news.is_relevant,
            reason=news.reason,
            metadata={"source_tier": news.source_tier},
        )

    social = classify_social(post.text)
    needs_review = social.confidence == "low" and social.score >= 2
    metadata: Dict[str, Any] = {
        "relevance_score": social.score,
        "filter_confidence": social.confidence,
    }
    if needs_review:
        metadata["needs_review"] = True
    return Decision(
        accepted=social.is_relevant or needs_review,
        reason=social.reason,
        needs_review=needs_review,
        metadata=metadata,
    )


class IngestionOrchestrator:
    def __init__(
        self,
        sources: Sequence[BaseSource],
        geocoder: Optional[NominatimGeocoder],
        dedup: PersistentDedup,
        report_store: Optional[SQLiteReportStore] = None,
        health: Optional[SourceHealthTracker] = None,
        poll_interval_seconds: float = 60.0,
        cleanup_interval_seconds: float = 24 * 60 * 60.0,
    ) -> None:
        self.sources = list(sources)
        self.geocoder = geocoder
        self.dedup = dedup
        self.report_store = report_store
        self.health = health or SourceHealthTracker()
        self.poll_interval_seconds = poll_interval_seconds
        self.cleanup_interval_seconds = cleanup_interval_seconds
        self._cycle_in_progress = False

    async def run_cycle(self) -> Optional[CycleMetrics]:
        """Run one poll; returns None when a previous cycle is still running."""
        if self._cycle_in_progress:
            LOGGER.warning("Previous ingestion cycle still running; skipping this tick.")
            return None
        self._cycle_in_progress = True
        try:
            return await self._run_cycle()
        finally:
            self._cycle_in_progress = False

    async def _run_cycle(self) -> CycleMetrics:
        started = time.monotonic()
        metrics = CycleMetrics(saved_by_source={source.name: 0 for source in self.sources})

        active: List[BaseSource] = []
        for source in self.sources:
            if self.health.should_skip(source.name):
                LOGGER.info("[%s] Skipped (backoff after repeated failures)", source.name)
                metrics.skipped_sources.append(source.name)
            else:
                active.append(source)

        results = await asyncio.gather(
            *(self._poll_source(source) for source in active),
            return_exceptions=True,
        )

        posts: List[NormalizedPost] = []
        for source, result in zip(active, results):
            if isinstance(result, BaseException):
                self.health.record_failure(source.name)
                metrics.failed_sources.append(source.name)
                LOGGER.error(
                    "[%s] Search error: %s",
                    source.name,
                    result,
                    exc_info=(type(result), result, result.__traceback__),
                )
                continue
            source_posts, latency_ms = result
            self.health.record_success(source.name, latency_ms)
            LOGGER.info("[%s] Found %d posts in %.0f ms", source.name, len(source_posts), latency_ms)
            posts.extend(source_posts)

        metrics.found = len(posts)
        for post in posts:
            try:
                await self.process_post(post, metrics)
            except Exception:  # noqa: BLE001
                metrics.errors += 1
                LOGGER.exception("Failed to process post %s", post.identity_key)

        await asyncio.to_thread(self.dedup.flush)
        metrics.health = self.health.summary()
        metrics.duration_seconds = time.monotonic() - started
        LOGGER.info("[Metrics] %s", metrics.summary_line([source.name for source in self.sources]))
        return metrics

    async def _poll_source(self, source: BaseSource) -> Tuple[List[NormalizedPost], float]:
        LOGGER.info("[%s] Starting search...", source.name)
        started = time.monotonic()
        posts = await asyncio.to_thread(source.fetch)
        return posts, (time.monotonic() - started) * 1000

    async def process_post(self, post: NormalizedPost, metrics: CycleMetrics) -> Optional[Report]:
        if await asyncio.to_thread(self.dedup.has_seen, post.source_type, post.source_id):
            metrics.dedup_skipped += 1
            return None
        self.dedup.mark_seen(post.source_type, post.source_id)

        decision = classify_post(post)
        if not decision.accepted:
            metrics.filtered += 1
            LOGGER.info("[Skip] [%s] Filtered: %r - %s", post.source_type, post.text[:60], decision.reason)
            return None
        if decision.needs_review:
            metrics.needs_review += 1

        location = extract_location(post.text)
        activity_type = detect_activity_type(post.text)
        city = location.city if location else None
        state = location.state if location else None
        latitude: Optional[float] = None
        longitude: Optional[float] = None

        geocoded = await self._geocode(post, city, state)
        if geocoded:
            latitude = geocoded.latitude
            longitude = geocoded.longitude
            city = geocoded.city or city
            state = normalize_state(geocoded.state) if geocoded.state else state

        if latitude is None and city is None:
            LOGGER.debug("[%s] Dropping %s: no usable location", post.source_type, post.source_id)
            return None

        metadata = dict(decision.metadata)
        metadata["url"] = post.url
        metadata["category"] = post.category
        if location:
            metadata["location_confidence"] = location.confidence
            metadata["location_match"] = location.raw_match
        if geocoded:
            metadata["geocode_source"] = geocoded.source

        try:
            report = await asyncio.to_thread(
                self._persist, post, activity_type, city, state, latitude, longitude, metadata
            )
        except Exception:  # noqa: BLE001
            metrics.errors += 1
            LOGGER.exception("Error saving %s report %s", post.source_type, post.source_id)
            return None
        LOGGER.info(
            "[%s] [%s] %s%s%s",
            post.source_type.upper(),
            activity_type.upper(),
            ", ".join(part for part in (city, state) if part) or "Unknown location",
            f" ({latitude:.4f}, {longitude:.4f})" if latitude is not None and longitude is not None else "",
            " [SAVED]" if report else "",
        )
        if report:
            metrics.saved += 1
            metrics.saved_by_source[post.source_type] = metrics.saved_by_source.get(post.source_type, 0) + 1
        return report

    async def _geocode(
        self,
        post: NormalizedPost,
        city: Optional[str],
        state: Optional[str],
    ) -> Optional[GeocodingResult]:
        if self.geocoder is None or not city:
            return None
        try:
            if state:
                return await asyncio.to_thread(self.geocoder.geocode_city_state, city, state)
            return await asyncio.to_thread(self.geocoder.geocode_city, city)
        except Exception:  # noqa: BLE001
            LOGGER.exception("Geocoding failed for %s post %s (%s)", post.source_type, post.source_id, city)
            return None

    def _persist(
        self,
        post: NormalizedPost,
        activity_type: str,
        city: Optional[str],
        state: Optional[str],
        latitude: Optional[float],
        longitude: Optional[float],
        metadata: Dict[str, Any],
    ) -> Optional[Report]:
        if self.report_store is None:
            return None
        if self.report_store.find_by_source_id(post.source_type, post.source_id):
            LOGGER.debug("[%s] Report for %s already stored", post.source_type, post.source_id)
            return None
        return self.report_store.create(
            source_type=post.source_type,
            source_id=post.source_id,
            activity_type=activity_type,
            description=post.text,
            city=city,
            state=state,
            latitude=latitude,
            longitude=longitude,
            author_handle=post.author_handle,
            author_display_name=post.author_display_name,
            reported_at=post.created_at,
            metadata=metadata,
        )

    async def run_forever(self, stop_event: Optional[asyncio.Event] = None) -> None:
        """Poll on a fixed interval until ``stop_event`` is set."""
        stop_event = stop_event or asyncio.Event()
        next_cleanup_at = time.monotonic() + self.cleanup_interval_seconds
        LOGGER.info("Polling every %.0f seconds", self.poll_interval_seconds)
        while not stop_event.is_set():
            started = time.monotonic()
            try:
                await self.run_cycle()
            except Exception:  # noqa: BLE001
                LOGGER.exception("Ingestion cycle failed.")
            if time.monotonic() >= next_cleanup_at:
                cleaned = await asyncio.to_thread(self.dedup.cleanup)
                if cleaned:
                    LOGGER.info("[Dedup] Cleaned up %d expired cache entries", cleaned)
                next_cleanup_at = time.monotonic() + self.cleanup_interval_seconds
            delay = max(0.0, self.poll_interval_seconds - (time.monotonic() - started))
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass


def build_orchestrator(config: IngestionConfig) -> IngestionOrchestrator:
    dedup_store = SQLiteDedupStore(config.dedup_db_path) if config.enable_db else None
    report_store = SQLiteReportStore(config.reports_db_path) if config.enable_db else None
    if report_store is None:
        LOGGER.warning("Database disabled; accepted reports will be logged but not saved.")
    geocoder = NominatimGeocoder(
        cache_path=config.geocache_path,
        user_agent=config.nominatim_user_agent,
    )
    return IngestionOrchestrator(
        sources=build_default_sources(config),
        geocoder=geocoder,
        dedup=PersistentDedup(dedup_store),
        report_store=report_store,
        poll_interval_seconds=config.poll_interval_seconds,
        cleanup_interval_seconds=config.cleanup_interval_hours * 60 * 60,
    )


def main(argv: Sequence[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Poll social and news sources for ICE activity reports.")
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single polling cycle and exit.",
    )
    parser.add_argument(
        "--poll-interval",
        type=float,
        default=None,
        help="Seconds between polling cycles (default: POLL_INTERVAL_SECONDS or 60).",
    )
    parser.add_argument(
        "--data-dir",
        type=Path,
        default=None,
        help="Directory for the SQLite report, dedup and geocode databases (default: DATA_DIR).",
    )
    parser.add_argument(
        "--disable-db",
        action="store_true",
        help="Log accepted reports without persisting them.",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        help="Python logging level (default: INFO).",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stdout,
        force=True,
    )

    dotenv_loaded = load_dotenv(dotenv_path=Path(__file__).resolve().parents[2] / ".env")
    if dotenv_loaded:
        LOGGER.debug("Loaded environment variables from .env file.")

    try:
        config = load_config()
    except ValueError as exc:
        raise SystemExit(f"Invalid configuration: {exc}") from exc
    if args.poll_interval is not None:
        if args.poll_interval <= 0:
            raise SystemExit("Invalid configuration: --poll-interval must be positive")
        config.poll_interval_seconds = args.poll_interval
    if args.data_dir is not None:
        config.data_dir = args.data_dir
    if args.disable_db:
        config.enable_db = False
    LOGGER.info("Starting ingestion with config: %s", _redacted(config))

    orchestrator = build_orchestrator(config)
    try:
        if args.once:
            asyncio.run(orchestrator.run_cycle())
        else:
            asyncio.run(orchestrator.run_forever())
    except KeyboardInterrupt:
        LOGGER.info("Interrupted; shutting down.")
    except Exception:  # noqa: BLE001
        LOGGER.exception("Ingestion run failed.")
        return 1
    return 0


def _redacted(config: IngestionConfig) -> Dict[str, Any]:
    values = dict(vars(config))
    if values.get("bluesky_password"):
        values["bluesky_password"] = "***"
    return values
