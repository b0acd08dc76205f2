"""
NPM Client for Package Source Retrieval

This module provides npm registry client functionality: resolving package
metadata for a name and version, and keyword search against the index.
"""

import asyncio
import re
from typing import Any
from urllib.parse import quote

import httpx

from ..config import Settings, pkg_logger
from ..errors import (
    InvalidParamsError,
    InvalidResponseError,
    NetworkError,
    NotFoundError,
    RequestTimeoutError,
)
from .models import PackageDescriptor, SearchHit, SearchResult, SearchScore

# Fixed weighting sent with every search request
SEARCH_WEIGHTS = {
    "quality": 0.65,
    "popularity": 0.98,
    "maintenance": 0.5
}


class NPMClient:
    """Client for npm registry operations."""

    def __init__(self, settings: Settings | None = None, transport: httpx.AsyncBaseTransport | None = None):
        settings = settings or Settings()
        self.registry_url = settings.registry_url
        self.search_url = f"{settings.registry_url}/-/v1/search"
        self.metadata_timeout = settings.metadata_timeout
        self.search_timeout = settings.search_timeout
        self.max_search_size = settings.max_search_size
        self.transport = transport

    async def fetch_metadata(self, package_name: str, version: str | None = None) -> PackageDescriptor:
        """Resolve metadata for a package version, or the latest one."""
        if not package_name or not isinstance(package_name, str):
            raise InvalidParamsError("packageName is required and must be a string")

        url = f"{self.registry_url}/{quote(package_name, safe='')}/{quote(version or 'latest', safe='')}"
        data = await self._get_json(url, None, self.metadata_timeout, what=f"{package_name}@{version or 'latest'}")
        descriptor = self._parse_descriptor(data)
        pkg_logger.debug(f"Resolved {descriptor.name}@{descriptor.version} -> {descriptor.tarball}")
        return descriptor

    async def search(self, query: str, size: int = 20, from_: int = 0) -> SearchResult:
        """Search the registry by keyword, name or description."""
        if not query or not isinstance(query, str) or not query.strip():
            raise InvalidParamsError("query is required and must be a non-empty string")
        if size > self.max_search_size:
            raise InvalidParamsError(f"size cannot exceed {self.max_search_size}")
        if size < 1:
            raise InvalidParamsError("size must be at least 1")
        if from_ < 0:
            raise InvalidParamsError("from must not be negative")

        query = query.strip()
        params = {
            "text": query,
            "size": size,
            "from": from_,
            **SEARCH_WEIGHTS
        }
        data = await self._get_json(self.search_url, params, self.search_timeout, what=f"search '{query}'")

        objects = data.get("objects")
        if not isinstance(objects, list):
            raise InvalidResponseError("Invalid search response: missing objects list")

        try:
            hits = [self._parse_hit(item) for item in objects if isinstance(item, dict)]
        except (AttributeError, TypeError, ValueError) as e:
            raise InvalidResponseError(f"Invalid search response: malformed package entry ({e})") from e
        total = data.get("total")
        return SearchResult(
            hits=hits,
            total=total if isinstance(total, int) else len(hits),
            query=query,
            size=size,
            from_=from_
        )

    async def _get_json(self, url: str, params: dict[str, Any] | None, timeout: float, what: str) -> dict[str, Any]:
        """Issue a single GET and decode its JSON object body. No retries."""
        try:
            async with httpx.AsyncClient(timeout=timeout, transport=self.transport, follow_redirects=True) as client:
                response = await asyncio.wait_for(client.get(url, params=params), timeout)
        except (httpx.TimeoutException, asyncio.TimeoutError) as e:
            raise RequestTimeoutError(f"Request timeout after {timeout:g}s: {what}") from e
        except httpx.HTTPError as e:
            raise NetworkError(f"HTTP request failed: {e}") from e

        if response.status_code == 404:
            raise NotFoundError(f"Package not found: {what}")
        if response.is_error:
            raise NetworkError(f"HTTP {response.status_code}: request failed for {what}")

        try:
            data = response.json()
        except ValueError as e:
            raise InvalidResponseError(f"Invalid JSON response: {e}") from e

        if not isinstance(data, dict):
            raise InvalidResponseError(f"Invalid JSON response: expected an object for {what}")
        return data

    def _parse_descriptor(self, data: dict[str, Any]) -> PackageDescriptor:
        dist = data.get("dist")
        if not isinstance(dist, dict) or not dist.get("tarball"):
            raise InvalidResponseError("Invalid package info: missing tarball URL")
        if not dist.get("shasum"):
            raise InvalidResponseError("Invalid package info: missing tarball checksum")

        return PackageDescriptor(
            name=data.get("name", ""),
            version=data.get("version", ""),
            tarball=dist["tarball"],
            shasum=dist["shasum"],
            description=data.get("description") or None,
            main=data.get("main") or None,
            types=data.get("types") or data.get("typings") or None,
            keywords=tuple(self._extract_keywords(data.get("keywords"))),
            author=self._extract_author(data.get("author")),
            license=self._extract_license(data.get("license")),
            homepage=data.get("homepage") or None,
            repository=self._extract_repository(data.get("repository")),
            dependencies=frozenset(self._dependency_names(data.get("dependencies"))),
            dev_dependencies=frozenset(self._dependency_names(data.get("devDependencies")))
        )

    def _parse_hit(self, item: dict[str, Any]) -> SearchHit:
        package_data = item.get("package", {})
        links = package_data.get("links", {}) or {}
        score_data = item.get("score", {}) or {}
        detail = score_data.get("detail", {}) or {}

        return SearchHit(
            name=package_data.get("name", ""),
            version=package_data.get("version", ""),
            description=package_data.get("description") or None,
            keywords=self._extract_keywords(package_data.get("keywords")),
            author=self._extract_author(package_data.get("author")),
            date=package_data.get("date"),
            npm_url=links.get("npm"),
            homepage=links.get("homepage"),
            repository=links.get("repository"),
            score=SearchScore(
                final=float(score_data.get("final", 0.0)),
                quality=float(detail.get("quality", 0.0)),
                popularity=float(detail.get("popularity", 0.0)),
                maintenance=float(detail.get("maintenance", 0.0))
            )
        )

    def _extract_author(self, author_data: Any) -> str | None:
        """Extract author name from various author data formats."""
        if isinstance(author_data, str):
            return author_data or None
        elif isinstance(author_data, dict):
            return author_data.get("name")
        return None

    def _extract_repository(self, repo_data: Any) -> str | None:
        """Extract repository URL from various repository data formats."""
        if isinstance(repo_data, str):
            return repo_data or None
        elif isinstance(repo_data, dict):
            url = repo_data.get("url")
            if url and isinstance(url, str):
                return url
        return None

    def _extract_license(self, license_data: Any) -> str | None:
        # Legacy packages publish {"type": "MIT", "url": ...}
        if isinstance(license_data, dict):
            return license_data.get("type")
        return license_data or None

    def _extract_keywords(self, keywords: Any) -> list[str]:
        if isinstance(keywords, str):
            return [k.strip() for k in re.split(r"[,\s]+", keywords) if k.strip()]
        if isinstance(keywords, list):
            return [str(k) for k in keywords]
        return []

    def _dependency_names(self, dependencies: Any) -> list[str]:
        if isinstance(dependencies, dict):
            return list(dependencies.keys())
        return []
