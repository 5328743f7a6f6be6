from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

LOGGER = logging.getLogger(__name__)

FAILURE_THRESHOLD = 5
BASE_BACKOFF_SECONDS = 60.0
MAX_BACKOFF_SECONDS = 30 * 60.0


@dataclass
class SourceMetrics:
    last_success: Optional[float] = None
    last_failure: Optional[float] = None
    consecutive_failures: int = 0
    total_successes: int = 0
    total_failures: int = 0
    last_response_time_ms: Optional[float] = None


def backoff_seconds(consecutive_failures: int) -> float:
    """Skip window once a source has crossed the failure threshold."""
    if consecutive_failures < FAILURE_THRESHOLD:
        return 0.0
    exponent = consecutive_failures - FAILURE_THRESHOLD
    # Past this exponent the window is pinned to the cap anyway.
    if exponent >= 16:
        return MAX_BACKOFF_SECONDS
    return min(BASE_BACKOFF_SECONDS * (2 ** exponent), MAX_BACKOFF_SECONDS)


class SourceHealthTracker:
    """
    In-process success/failure bookkeeping per source name. A source with five or
    more consecutive failures is skipped for a doubling window starting at one
    minute and capped at thirty; a single success clears the streak.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._sources: Dict[str, SourceMetrics] = {}

    def _get(self, source: str) -> SourceMetrics:
        metrics = self._sources.get(source)
        if metrics is None:
            metrics = SourceMetrics()
            self._sources[source] = metrics
        return metrics

    def record_success(self, source: str, latency_ms: float) -> None:
        metrics = self._get(source)
        if metrics.consecutive_failures:
            LOGGER.info("%s recovered after %d consecutive failures", source, metrics.consecutive_failures)
        metrics.last_success = self._clock()
        metrics.consecutive_failures = 0
        metrics.total_successes += 1
        metrics.last_response_time_ms = latency_ms

    def record_failure(self, source: str) -> None:
        metrics = self._get(source)
        metrics.last_failure = self._clock()
        metrics.consecutive_failures += 1
        metrics.total_failures += 1
        if metrics.consecutive_failures == FAILURE_THRESHOLD:
            LOGGER.warning(
                "%s reached %d consecutive failures; backing off",
                source,
                metrics.consecutive_failures,
            )

    def should_skip(self, source: str) -> bool:
        metrics = self._sources.get(source)
        if metrics is None or metrics.consecutive_failures < FAILURE_THRESHOLD:
            return False
        if metrics.last_failure is None:
            return False
        window = backoff_seconds(metrics.consecutive_failures)
        return self._clock() - metrics.last_failure < window

    def metrics(self, source: str) -> Optional[SourceMetrics]:
        return self._sources.get(source)

    def summary(self) -> str:
        if not self._sources:
            return "no data"
        parts = []
        for name, metrics in self._sources.items():
            failures = metrics.consecutive_failures
            if failures == 0:
                parts.append(f"{name}:OK")
            elif failures < FAILURE_THRESHOLD:
                parts.append(f"{name}:WARN({failures})")
            else:
                parts.append(f"{name}:BACKOFF({failures})")
        return " ".join(parts)
