"""Keyword-based activity labels attached to each saved report."""

from __future__ import annotations

import re
from typing import Pattern, Sequence, Tuple

# Checked in order; the first label whose pattern matches wins.
ACTIVITY_PATTERNS: Sequence[Tuple[str, Pattern[str]]] = (
    ("raid", re.compile(r"\b(raid|redada|raided|raiding|workplace\s+enforcement)\b", re.IGNORECASE)),
    (
        "checkpoint",
        re.compile(
            r"\b(checkpoint|checkpoints|retén|reten|document\s+check|stopping\s+vehicles)\b",
            re.IGNORECASE,
        ),
    ),
    (
        "arrest",
        re.compile(
            r"\b(arrest|arrested|detained|custody|taken\s+into|apprehended|detenido)\b",
            re.IGNORECASE,
        ),
    ),
    (
        "surveillance",
        re.compile(
            r"\b(surveillance|watching|monitoring|unmarked|observing|plainclothes|vigilancia)\b",
            re.IGNORECASE,
        ),
    ),
)


def detect_activity_type(text: str) -> str:
    if not text:
        return "other"
    for label, pattern in ACTIVITY_PATTERNS:
        if pattern.search(text):
            return label
    return "other"
