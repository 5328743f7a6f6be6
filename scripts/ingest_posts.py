#!/usr/bin/env python3
"""
Long-running worker that polls Bluesky, Mastodon, Reddit and Google News for ICE
activity reports.

Usage:
    python3 scripts/ingest_posts.py --data-dir datasets/ingestion
    python3 scripts/ingest_posts.py --once --log-level DEBUG
"""

from __future__ import annotations

import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from src.ingestion.orchestrator import main


if __name__ == "__main__":
    raise SystemExit(main())
