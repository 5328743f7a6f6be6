"""
Environment-driven settings for the ingestion worker. ``main`` loads ``.env``
first, then command-line flags override individual values.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Mapping, Optional

from src.ingestion.geocoding import DEFAULT_USER_AGENT
from src.ingestion.sources import MASTODON_INSTANCES

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


@dataclass
class IngestionConfig:
    poll_interval_seconds: float = 60.0
    cleanup_interval_hours: float = 24.0
    enable_db: bool = True
    data_dir: Path = Path("datasets/ingestion")
    enable_bluesky: bool = True
    enable_mastodon: bool = True
    enable_reddit: bool = True
    enable_google_news: bool = True
    bluesky_identifier: Optional[str] = None
    bluesky_password: Optional[str] = None
    nominatim_user_agent: str = DEFAULT_USER_AGENT
    mastodon_instances: List[str] = field(default_factory=lambda: list(MASTODON_INSTANCES))

    @property
    def reports_db_path(self) -> Path:
        return self.data_dir / "reports.sqlite"

    @property
    def dedup_db_path(self) -> Path:
        return self.data_dir / "ingestion_cache.sqlite"

    @property
    def geocache_path(self) -> Path:
        return self.data_dir / "geocache.sqlite"

    def validate(self) -> None:
        if self.poll_interval_seconds <= 0:
            raise ValueError("POLL_INTERVAL_SECONDS must be positive")
        if self.cleanup_interval_hours <= 0:
            raise ValueError("CLEANUP_INTERVAL_HOURS must be positive")
        if self.enable_bluesky and not (self.bluesky_identifier and self.bluesky_password):
            raise ValueError(
                "Bluesky is enabled but BLUESKY_IDENTIFIER/BLUESKY_PASSWORD are not set "
                "(set ENABLE_BLUESKY=false to run without it)"
            )
        if self.enable_mastodon and not self.mastodon_instances:
            raise ValueError("Mastodon is enabled but MASTODON_INSTANCES is empty")


def _env_bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ValueError(f"{name} must be a boolean, got {raw!r}")


def _env_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}") from exc


def load_config(env: Mapping[str, str] | None = None) -> IngestionConfig:
    """Build and validate settings from ``os.environ`` (or a supplied mapping)."""
    env = os.environ if env is None else env
    instances_raw = env.get("MASTODON_INSTANCES")
    instances = (
        [item.strip() for item in instances_raw.split(",") if item.strip()]
        if instances_raw
        else list(MASTODON_INSTANCES)
    )
    config = IngestionConfig(
        poll_interval_seconds=_env_float(env, "POLL_INTERVAL_SECONDS", 60.0),
        cleanup_interval_hours=_env_float(env, "CLEANUP_INTERVAL_HOURS", 24.0),
        enable_db=_env_bool(env, "ENABLE_DB", True),
        data_dir=Path(env.get("DATA_DIR") or "datasets/ingestion"),
        enable_bluesky=_env_bool(env, "ENABLE_BLUESKY", True),
        enable_mastodon=_env_bool(env, "ENABLE_MASTODON", True),
        enable_reddit=_env_bool(env, "ENABLE_REDDIT", True),
        enable_google_news=_env_bool(env, "ENABLE_GOOGLE_NEWS", True),
        bluesky_identifier=env.get("BLUESKY_IDENTIFIER") or None,
        bluesky_password=env.get("BLUESKY_PASSWORD") or None,
        nominatim_user_agent=env.get("NOMINATIM_USER_AGENT") or DEFAULT_USER_AGENT,
        mastodon_instances=instances,
    )
    config.validate()
    return config
