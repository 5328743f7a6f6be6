"""
News outlet reliability tiers. Trusted outlets get a relaxed relevance bar and
blocked outlets are never ingested.
"""

from __future__ import annotations

TRUSTED_SOURCES = frozenset(
    {
        # Wire services
        "associated press",
        "ap news",
        "reuters",
        # National
        "npr",
        "pbs",
        "abc news",
        "cbs news",
        "nbc news",
        # Spanish-language
        "univision",
        "telemundo",
        "noticias telemundo",
        # Regional / investigative
        "propublica",
        "the texas tribune",
        "la times",
        "los angeles times",
        "miami herald",
        "houston chronicle",
        "arizona republic",
        "san antonio express-news",
        "el paso times",
    }
)

BLOCKED_SOURCES = frozenset(
    {
        "infowars",
        "natural news",
        "the gateway pundit",
        "breitbart",
        "daily stormer",
        "oann",
        "newsmax",
    }
)


def _matches(name: str, candidates: frozenset[str]) -> bool:
    return any(name in candidate or candidate in name for candidate in candidates)


def classify_source(source_name: str | None) -> str:
    """Return ``trusted``, ``blocked`` or ``unknown`` for an outlet name."""
    name = (source_name or "").strip().lower()
    if not name:
        return "unknown"
    if _matches(name, BLOCKED_SOURCES):
        return "blocked"
    if _matches(name, TRUSTED_SOURCES):
        return "trusted"
    return "unknown"
