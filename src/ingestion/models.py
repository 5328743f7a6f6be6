"""
Shared record types passed between the ingestion stages.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, List, Optional


@dataclass(frozen=True)
class NormalizedPost:
    source_type: str
    source_id: str
    text: str
    author_handle: str
    author_display_name: Optional[str]
    created_at: datetime | None
    url: str
    category: str = "social"

    @property
    def identity_key(self) -> str:
        return f"{self.source_type}:{self.source_id}"


@dataclass
class ExtractedLocation:
    city: Optional[str]
    state: Optional[str]
    confidence: str
    raw_match: str


@dataclass
class GeocodingResult:
    latitude: float
    longitude: float
    city: Optional[str]
    state: Optional[str]
    display_name: str
    source: str = "nominatim"


@dataclass
class RelevanceResult:
    is_relevant: bool
    score: int
    confidence: str
    sighting_indicators: List[str] = field(default_factory=list)
    commentary_indicators: List[str] = field(default_factory=list)
    reason: str = ""


@dataclass
class NewsRelevanceResult:
    is_relevant: bool
    has_agency: bool
    has_action: bool
    source_tier: str
    reason: str


@dataclass
class Report:
    id: str
    source_type: str
    source_id: str
    activity_type: str
    description: str
    city: Optional[str]
    state: Optional[str]
    latitude: Optional[float]
    longitude: Optional[float]
    author_handle: str
    author_display_name: Optional[str]
    reported_at: datetime | None
    created_at: datetime
    status: str = "unverified"
    metadata: dict[str, Any] = field(default_factory=dict)
