"""
Source adapters that search third-party services and normalize what they find
into :class:`NormalizedPost` records. Each adapter is synchronous; the
orchestrator runs them in worker threads.

Individual query failures are logged and skipped. An adapter raises only when
every query it attempted failed, so the orchestrator can count the whole source
as down.
"""

from __future__ import annotations

import logging
import re
import time
from datetime import datetime, timedelta, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Callable, Dict, List, Optional, Sequence
from urllib.parse import urlparse

import feedparser
import requests
from bs4 import BeautifulSoup

from src.ingestion.models import NormalizedPost

LOGGER = logging.getLogger(__name__)

USER_AGENT = "ICE-Activity-Map/1.0"

BLUESKY_KEYWORDS = [
    "ICE raid",
    "immigration raid",
    "border patrol",
    "ICE checkpoint",
    "immigration checkpoint",
    "ICE agents",
    "immigration enforcement",
    "deportation raid",
    "redada",
    "la migra",
    "operativo migratorio",
    "retén migración",
    "agentes de inmigración",
]

MASTODON_INSTANCES = [
    "mastodon.social",
    "mstdn.social",
    "mas.to",
    "mastodon.online",
    "techhub.social",
]

MASTODON_KEYWORDS = [
    "ICE raid",
    "ICE checkpoint",
    "ICE arrest",
    "immigration enforcement",
    "ICE agents",
    "immigration raid",
    "deportation raid",
]

REDDIT_SUBREDDITS = [
    "immigration",
    "LosAngeles",
    "sanfrancisco",
    "chicago",
    "nyc",
    "houston",
    "Miami",
    "phoenix",
    "denver",
    "seattle",
    "sandiego",
    "news",
]

REDDIT_KEYWORDS = [
    "ICE raid",
    "ICE checkpoint",
    "immigration enforcement",
    "ICE agents",
    "deportation",
]
REDDIT_SUBREDDIT_KEYWORDS = ["ICE raid", "ICE checkpoint"]

GOOGLE_NEWS_KEYWORDS = [
    "ICE raid",
    "ICE arrests",
    "ICE detention",
    "ICE operation",
    "ICE enforcement",
    "ICE agents",
    "ICE sweep",
    "ICE apprehension",
    "immigration raid",
    "immigration enforcement",
    "immigration sweep",
    "deportation raid",
    "workplace raid immigration",
    "CBP checkpoint",
    "border patrol checkpoint",
    "immigration checkpoint",
    "ICE California",
    "ICE Texas",
    "ICE Florida",
    "ICE New York",
    "ICE Chicago",
]

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def _parse_iso(raw: str | None) -> datetime | None:
    if not raw:
        return None
    try:
        parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        LOGGER.debug("Unable to parse timestamp %s", raw, exc_info=True)
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _parse_rfc822(raw: str | None) -> datetime | None:
    if not raw:
        return None
    try:
        parsed = parsedate_to_datetime(raw)
    except (TypeError, ValueError):
        LOGGER.debug("Unable to parse RSS date %s", raw, exc_info=True)
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def clean_html_fragment(value: str | None) -> str:
    """HTML to plain text for status bodies and feed descriptions."""
    if not value:
        return ""
    soup = BeautifulSoup(value, "html.parser")
    for tag in soup(["script", "style", "noscript"]):
        tag.decompose()
    text = soup.get_text(" ", strip=True)
    return re.sub(r"\s+", " ", text).strip()


def newest_first(posts: List[NormalizedPost]) -> List[NormalizedPost]:
    return sorted(posts, key=lambda post: post.created_at or _EPOCH, reverse=True)


def _session_expired(response: requests.Response) -> bool:
    if response.status_code == 401:
        return True
    if response.status_code != 400:
        return False
    try:
        payload = response.json()
    except ValueError:
        return False
    return isinstance(payload, dict) and payload.get("error") in {"ExpiredToken", "InvalidToken"}


class BaseSource:
    """Common interface for upstream services."""

    name: str
    timeout: float = 15

    def fetch(self) -> List[NormalizedPost]:
        raise NotImplementedError

    def _collect(self, queries: Sequence[Any], run_query: Callable[[Any], List[NormalizedPost]]) -> List[NormalizedPost]:
        """Run every query, dedupe by source id and sort newest first."""
        posts: Dict[str, NormalizedPost] = {}
        failures = 0
        for query in queries:
            try:
                results = run_query(query)
            except Exception:  # noqa: BLE001
                failures += 1
                LOGGER.warning("%s query %r failed", self.name, query, exc_info=True)
                continue
            for post in results:
                posts.setdefault(post.source_id, post)
        if queries and failures == len(queries):
            raise RuntimeError(f"all {failures} {self.name} queries failed")
        LOGGER.debug("%s returned %d unique posts from %d queries", self.name, len(posts), len(queries))
        return newest_first(list(posts.values()))


class BlueskySource(BaseSource):
    """Authenticated searchPosts queries against the Bluesky AppView."""

    service_url = "https://bsky.social/xrpc"

    def __init__(
        self,
        identifier: str,
        password: str,
        keywords: Sequence[str] | None = None,
        limit: int = 25,
        timeout: float = 15,
        max_retries: int = 5,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.name = "bluesky"
        self.identifier = identifier
        self.password = password
        self.keywords = list(keywords or BLUESKY_KEYWORDS)
        self.limit = limit
        self.timeout = timeout
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._sleep = sleep
        self._access_jwt: Optional[str] = None

    def fetch(self) -> List[NormalizedPost]:
        self._ensure_session()
        return self._collect(self.keywords, self._search)

    def _ensure_session(self) -> None:
        if self._access_jwt:
            return
        LOGGER.info("Logging in to Bluesky as %s", self.identifier)
        response = requests.post(
            f"{self.service_url}/com.atproto.server.createSession",
            json={"identifier": self.identifier, "password": self.password},
            timeout=self.timeout,
        )
        response.raise_for_status()
        self._access_jwt = response.json()["accessJwt"]

    def _with_retry(self, request: Callable[[], requests.Response]) -> requests.Response:
        attempt = 0
        while True:
            try:
                response = request()
            except requests.RequestException:
                if attempt >= self.max_retries:
                    raise
                delay = min(self.base_delay * (2 ** attempt), self.max_delay)
            else:
                retryable = response.status_code == 429 or response.status_code >= 500
                if not retryable or attempt >= self.max_retries:
                    response.raise_for_status()
                    return response
                delay = min(self.base_delay * (2 ** attempt), self.max_delay)
                if response.status_code == 429:
                    delay = min(delay * 2, self.max_delay)
                LOGGER.warning(
                    "Bluesky returned HTTP %s; retrying in %.1fs (attempt %d/%d)",
                    response.status_code,
                    delay,
                    attempt + 1,
                    self.max_retries,
                )
            attempt += 1
            self._sleep(delay)

    def _search(self, keyword: str) -> List[NormalizedPost]:
        def send() -> requests.Response:
            return requests.get(
                f"{self.service_url}/app.bsky.feed.searchPosts",
                params={"q": keyword, "limit": self.limit, "sort": "latest"},
                headers={"Authorization": f"Bearer {self._access_jwt}", "User-Agent": USER_AGENT},
                timeout=self.timeout,
            )

        def request() -> requests.Response:
            response = send()
            if _session_expired(response):
                LOGGER.info("Bluesky session expired; logging in again")
                self._access_jwt = None
                self._ensure_session()
                response = send()
            return response

        response = self._with_retry(request)
        return [self.normalize(item) for item in response.json().get("posts", [])]

    @staticmethod
    def normalize(item: dict[str, Any]) -> NormalizedPost:
        author = item.get("author") or {}
        record = item.get("record") or {}
        handle = author.get("handle", "")
        uri = item.get("uri", "")
        return NormalizedPost(
            source_type="bluesky",
            source_id=uri,
            text=record.get("text", ""),
            author_handle=handle,
            author_display_name=author.get("displayName") or handle,
            created_at=_parse_iso(record.get("createdAt") or item.get("indexedAt")),
            url=f"https://bsky.app/profile/{handle}/post/{uri.rsplit('/', 1)[-1]}",
            category="social",
        )


class MastodonSource(BaseSource):
    """Public status search across a handful of large instances."""

    def __init__(
        self,
        instances: Sequence[str] | None = None,
        keywords: Sequence[str] | None = None,
        limit: int = 20,
        timeout: float = 15,
    ) -> None:
        self.name = "mastodon"
        self.instances = list(instances or MASTODON_INSTANCES)
        self.keywords = list(keywords or MASTODON_KEYWORDS)
        self.limit = limit
        self.timeout = timeout

    def fetch(self) -> List[NormalizedPost]:
        queries = [(instance, keyword) for instance in self.instances for keyword in self.keywords]
        return self._collect(queries, self._search)

    def _search(self, query: tuple[str, str]) -> List[NormalizedPost]:
        instance, keyword = query
        response = requests.get(
            f"https://{instance}/api/v2/search",
            params={"q": keyword, "type": "statuses", "limit": self.limit},
            headers={"Accept": "application/json", "User-Agent": USER_AGENT},
            timeout=self.timeout,
        )
        response.raise_for_status()
        return [self.normalize(status) for status in response.json().get("statuses", [])]

    @staticmethod
    def normalize(status: dict[str, Any]) -> NormalizedPost:
        account = status.get("account") or {}
        instance = urlparse(account.get("url") or "").hostname or "unknown"
        acct = account.get("acct", "")
        return NormalizedPost(
            source_type="mastodon",
            source_id=status.get("uri") or str(status.get("id", "")),
            text=clean_html_fragment(status.get("content")),
            author_handle=acct if "@" in acct else f"{acct}@{instance}",
            author_display_name=account.get("display_name") or account.get("username"),
            created_at=_parse_iso(status.get("created_at")),
            url=status.get("url") or status.get("uri") or "",
            category="social",
        )


class RedditSource(BaseSource):
    """Global and per-subreddit search through the public JSON listing endpoints."""

    def __init__(
        self,
        subreddits: Sequence[str] | None = None,
        keywords: Sequence[str] | None = None,
        subreddit_keywords: Sequence[str] | None = None,
        timeout: float = 15,
    ) -> None:
        self.name = "reddit"
        self.subreddits = list(subreddits or REDDIT_SUBREDDITS)
        self.keywords = list(keywords or REDDIT_KEYWORDS)
        self.subreddit_keywords = list(subreddit_keywords or REDDIT_SUBREDDIT_KEYWORDS)
        self.timeout = timeout

    def fetch(self) -> List[NormalizedPost]:
        queries: List[tuple[Optional[str], str]] = [(None, keyword) for keyword in self.keywords]
        queries.extend(
            (subreddit, keyword) for subreddit in self.subreddits for keyword in self.subreddit_keywords
        )
        return self._collect(queries, self._search)

    def _search(self, query: tuple[Optional[str], str]) -> List[NormalizedPost]:
        subreddit, keyword = query
        if subreddit:
            url = f"https://www.reddit.com/r/{subreddit}/search.json"
            params = {"q": keyword, "restrict_sr": 1, "sort": "new", "limit": 25, "t": "week"}
        else:
            url = "https://www.reddit.com/search.json"
            params = {"q": keyword, "sort": "new", "limit": 50, "t": "week"}
        response = requests.get(
            url,
            params=params,
            headers={"Accept": "application/json", "User-Agent": f"{USER_AGENT} (Educational project)"},
            timeout=self.timeout,
        )
        if response.status_code == 429:
            LOGGER.warning("Reddit rate limited %s", f"r/{subreddit}" if subreddit else "global search")
        response.raise_for_status()
        children = (response.json().get("data") or {}).get("children", [])
        return [self.normalize(child["data"]) for child in children if child.get("kind") == "t3"]

    @staticmethod
    def normalize(item: dict[str, Any]) -> NormalizedPost:
        title = item.get("title", "")
        selftext = item.get("selftext") or ""
        created = item.get("created_utc")
        return NormalizedPost(
            source_type="reddit",
            source_id=f"reddit:{item.get('name', '')}",
            text=f"{title}\n\n{selftext}" if selftext else title,
            author_handle=f"u/{item.get('author', '')}",
            author_display_name=item.get("author"),
            created_at=datetime.fromtimestamp(created, tz=timezone.utc) if created else None,
            url=f"https://reddit.com{item.get('permalink', '')}",
            category="social",
        )


class GoogleNewsSource(BaseSource):
    """Google News RSS search, restricted to recent articles."""

    endpoint = "https://news.google.com/rss/search"

    def __init__(
        self,
        keywords: Sequence[str] | None = None,
        max_age_hours: int = 72,
        timeout: float = 15,
    ) -> None:
        self.name = "google_news"
        self.keywords = list(keywords or GOOGLE_NEWS_KEYWORDS)
        self.max_age = timedelta(hours=max_age_hours)
        self.timeout = timeout

    def fetch(self) -> List[NormalizedPost]:
        return self._collect(self.keywords, self._search)

    def _search(self, keyword: str) -> List[NormalizedPost]:
        response = requests.get(
            self.endpoint,
            params={"q": keyword, "hl": "en-US", "gl": "US", "ceid": "US:en"},
            headers={"User-Agent": USER_AGENT},
            timeout=self.timeout,
        )
        response.raise_for_status()
        parsed = feedparser.parse(response.content)
        if parsed.bozo:
            LOGGER.warning("RSS parse issue for %r: %s", keyword, parsed.bozo_exception)
        cutoff = datetime.now(timezone.utc) - self.max_age
        posts = []
        for entry in parsed.entries:
            published = _parse_rfc822(getattr(entry, "published", None))
            if published is None or published < cutoff:
                continue
            posts.append(self.normalize(entry, published))
        return posts

    @staticmethod
    def split_title(title: str) -> tuple[str, Optional[str]]:
        """Google News titles read "Headline - Outlet"."""
        parts = title.split(" - ")
        if len(parts) > 1:
            return " - ".join(parts[:-1]).strip(), parts[-1].strip()
        return title, None

    @classmethod
    def normalize(cls, entry: Any, published: datetime | None) -> NormalizedPost:
        raw_title = getattr(entry, "title", "")
        title, outlet = cls.split_title(raw_title)
        source = getattr(entry, "source", None)
        source_name = (source.get("title") if source else None) or outlet or "Unknown"
        description = clean_html_fragment(getattr(entry, "summary", ""))
        link = getattr(entry, "link", "")
        return NormalizedPost(
            source_type="google_news",
            source_id=getattr(entry, "id", None) or link,
            text=f"{title}\n\n{description}" if description else title,
            author_handle=source_name,
            author_display_name=source_name,
            created_at=published,
            url=link,
            category="news",
        )


def build_default_sources(config: Any) -> List[BaseSource]:
    """Instantiate the adapters enabled in an ``IngestionConfig``."""
    sources: List[BaseSource] = []
    if config.enable_bluesky:
        sources.append(BlueskySource(config.bluesky_identifier, config.bluesky_password))
    if config.enable_mastodon:
        sources.append(MastodonSource(instances=config.mastodon_instances))
    if config.enable_reddit:
        sources.append(RedditSource())
    if config.enable_google_news:
        sources.append(GoogleNewsSource())
    LOGGER.info("Enabled sources: %s", ", ".join(source.name for source in sources) or "none")
    return sources
