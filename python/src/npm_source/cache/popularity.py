"""
Popular Packages Cache

Builds a "most popular packages" digest from a handful of seed searches and
keeps it for a fixed time-to-live. The digest lives in a single slot owned
by a PopularityCache instance; recomputation is serialized by a lock.
"""

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone

from ..config import Settings, pkg_logger
from ..packages.models import NO_DESCRIPTION, SearchHit
from ..packages.npm_client import NPMClient

SEED_PAGE_SIZE = 10


def heuristic_rank(hit: SearchHit) -> float:
    """
    Default popularity proxy: short names, a description and keywords score higher.

    This is a heuristic only. Pass a different ranking function to
    PopularityCache to replace it.
    """
    score = 0.0
    if len(hit.name) < 15:
        score += 1
    if hit.description:
        score += 1
    score += len(hit.keywords) / 10
    return score


@dataclass
class PopularityCacheEntry:
    """Cached digest text and the clock reading it was built at."""
    digest: str
    created: float

    def is_fresh(self, now: float, ttl: float) -> bool:
        return now - self.created < ttl


class PopularityCache:
    """Single-slot, time-bounded cache for the popular packages digest."""

    def __init__(
        self,
        client: NPMClient,
        settings: Settings | None = None,
        rank: Callable[[SearchHit], float] = heuristic_rank,
        clock: Callable[[], float] = time.monotonic
    ):
        settings = settings or Settings()
        self.client = client
        self.ttl = settings.cache_ttl
        self.seed_terms = list(settings.seed_terms)
        self.seed_count = settings.seed_count
        self.limit = settings.popular_limit
        self.rank = rank
        self.clock = clock
        self._entry: PopularityCacheEntry | None = None
        self._lock = asyncio.Lock()

    @property
    def entry(self) -> PopularityCacheEntry | None:
        return self._entry

    def invalidate(self) -> None:
        self._entry = None

    async def get_digest(self) -> str:
        """Return the cached digest, recomputing it when absent or stale."""
        entry = self._entry
        if entry is not None and entry.is_fresh(self.clock(), self.ttl):
            return entry.digest

        async with self._lock:
            # Another caller may have refreshed the slot while we waited
            entry = self._entry
            if entry is not None and entry.is_fresh(self.clock(), self.ttl):
                return entry.digest

            hits = await self._collect_hits()
            ranked = sorted(hits, key=self.rank, reverse=True)[:self.limit]
            digest = format_digest(ranked, datetime.now(timezone.utc))
            self._entry = PopularityCacheEntry(digest=digest, created=self.clock())
            pkg_logger.info(f"Popular packages digest rebuilt with {len(ranked)} packages")
            return digest

    async def _collect_hits(self) -> list[SearchHit]:
        seen = set()
        hits = []
        for term in self.seed_terms[:self.seed_count]:
            try:
                result = await self.client.search(term, SEED_PAGE_SIZE, 0)
            except Exception as e:
                pkg_logger.warning(f"Failed to search for {term}: {e}")
                continue

            for hit in result.hits:
                if hit.name not in seen:
                    seen.add(hit.name)
                    hits.append(hit)
        return hits


def format_date(value: str | None) -> str:
    if not value:
        return "Unknown"
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).date().isoformat()
    except ValueError:
        return value


def format_digest(hits: list[SearchHit], updated: datetime) -> str:
    """Render ranked hits as a markdown digest."""
    lines = ["# Most Popular NPM Packages", "", f"Updated: {updated.isoformat()}", ""]

    for index, hit in enumerate(hits, start=1):
        lines.append(f"## {index}. {hit.name}")
        lines.append(f"**Version:** {hit.version}")
        lines.append(f"**Description:** {hit.description or NO_DESCRIPTION}")
        if hit.keywords:
            lines.append(f"**Keywords:** {', '.join(hit.keywords[:5])}")
        if hit.author:
            lines.append(f"**Author:** {hit.author}")
        if hit.npm_url:
            lines.append(f"**NPM:** {hit.npm_url}")
        if hit.homepage:
            lines.append(f"**Homepage:** {hit.homepage}")
        if hit.repository:
            lines.append(f"**Repository:** {hit.repository}")
        lines.append(f"**Last Updated:** {format_date(hit.date)}")
        lines.append("")

    return "\n".join(lines) + "\n"
