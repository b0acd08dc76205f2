"""
npm Package Source Manager

This module provides the caller-facing operations: fetching package code,
listing package files, reading package metadata, searching the registry and
serving the popular packages digest. It validates arguments before any I/O
and reports every downstream failure as a single OperationFailedError.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import httpx
from pydantic import BaseModel, Field, ValidationError, field_validator

from .cache.popularity import PopularityCache
from .config import Settings, pkg_logger
from .errors import InvalidParamsError, OperationFailedError
from .extraction.fetcher import ArchiveFetcher
from .extraction.selector import CodeSelector
from .extraction.walker import TreeWalker
from .packages.models import (
    CodeFile,
    PackageCode,
    PackageFileListing,
    PackageInfoRecord,
    SearchResult,
)
from .packages.npm_client import NPMClient

T = TypeVar("T")


class PackageRequest(BaseModel):
    """Arguments identifying one package version."""

    package_name: str = Field(description="npm package name, e.g. lodash or @babel/core")
    version: str | None = Field(default=None, description="Version or dist-tag; latest when omitted")

    @field_validator("package_name")
    @classmethod
    def validate_package_name(cls, v):
        if not v.strip():
            raise ValueError("packageName is required and must be a non-empty string")
        return v.strip()

    @field_validator("version")
    @classmethod
    def blank_version_means_latest(cls, v):
        if v is None or not v.strip():
            return None
        return v.strip()


class PackageCodeRequest(PackageRequest):
    """Arguments for fetching package code."""

    file_path: str | None = Field(default=None, description="Single file to return, relative to the package root")


class SearchRequest(BaseModel):
    """Arguments for a registry search."""

    query: str = Field(description="Keywords, package name or description text")
    size: int = Field(default=20, description="Number of results to return")
    from_: int = Field(default=0, description="Starting offset for pagination")

    @field_validator("query")
    @classmethod
    def validate_query(cls, v):
        if not v.strip():
            raise ValueError("query is required and must be a non-empty string")
        return v.strip()

    @field_validator("size")
    @classmethod
    def validate_size(cls, v):
        if v > 250:
            raise ValueError("size cannot exceed 250")
        if v < 1:
            raise ValueError("size must be at least 1")
        return v

    @field_validator("from_")
    @classmethod
    def validate_from(cls, v):
        if v < 0:
            raise ValueError("from must not be negative")
        return v


def _validate(model: type[BaseModel], **kwargs: Any) -> Any:
    try:
        return model(**kwargs)
    except ValidationError as e:
        messages = "; ".join(str(error["msg"]).removeprefix("Value error, ") for error in e.errors())
        raise InvalidParamsError(messages) from e


class PackageSourceManager:
    """Manager for package retrieval, inspection and search."""

    def __init__(
        self,
        settings: Settings | None = None,
        client: NPMClient | None = None,
        fetcher: ArchiveFetcher | None = None,
        selector: CodeSelector | None = None,
        cache: PopularityCache | None = None,
        transport: httpx.AsyncBaseTransport | None = None
    ):
        self.settings = settings or Settings()
        self.client = client or NPMClient(self.settings, transport=transport)
        self.fetcher = fetcher or ArchiveFetcher(self.settings, transport=transport)
        self.walker = TreeWalker(self.settings.skip_dirs)
        self.selector = selector or CodeSelector(self.settings, walker=self.walker)
        self.cache = cache or PopularityCache(self.client, self.settings)

    async def get_package_code(
        self,
        package_name: str,
        version: str | None = None,
        file_path: str | None = None
    ) -> PackageCode | CodeFile:
        """Fetch one file, or up to max_files code files, from a package."""
        request = _validate(PackageCodeRequest, package_name=package_name, version=version, file_path=file_path)
        # Rejects names that cannot map to a sandbox directory
        self.fetcher.sandbox_path(request.package_name)

        async def operation():
            descriptor = await self.client.fetch_metadata(request.package_name, request.version)
            async with self.fetcher.lease(request.package_name):
                extraction = await self.fetcher.fetch_and_extract(descriptor.tarball, request.package_name)
                if request.file_path:
                    return await self.selector.read_one(extraction.root, request.file_path)
                selection = await self.selector.collect(extraction.root, descriptor)
            return PackageCode(descriptor=descriptor, selection=selection)

        return await self._run("fetch package code", operation)

    async def list_package_files(self, package_name: str, version: str | None = None) -> PackageFileListing:
        """List every file in a package, sorted by relative path."""
        request = _validate(PackageRequest, package_name=package_name, version=version)
        self.fetcher.sandbox_path(request.package_name)

        async def operation():
            descriptor = await self.client.fetch_metadata(request.package_name, request.version)
            async with self.fetcher.lease(request.package_name):
                extraction = await self.fetcher.fetch_and_extract(descriptor.tarball, request.package_name)
                paths = await asyncio.to_thread(self.walker.list_all_files, extraction.root)
            files = [path.relative_to(extraction.root).as_posix() for path in paths]
            return PackageFileListing(name=request.package_name, version=descriptor.version, files=files)

        return await self._run("list package files", operation)

    async def get_package_info(self, package_name: str, version: str | None = None) -> PackageInfoRecord:
        """Get normalized package metadata."""
        request = _validate(PackageRequest, package_name=package_name, version=version)

        async def operation():
            descriptor = await self.client.fetch_metadata(request.package_name, request.version)
            return PackageInfoRecord.from_descriptor(descriptor)

        return await self._run("get package info", operation)

    async def search_packages(self, query: str, size: int = 20, from_: int = 0) -> SearchResult:
        """Search the registry."""
        request = _validate(SearchRequest, query=query, size=size, from_=from_)

        async def operation():
            return await self.client.search(request.query, request.size, request.from_)

        return await self._run("search packages", operation)

    async def get_popular_packages(self) -> str:
        """Get the popular packages digest."""
        return await self._run("fetch popular packages", self.cache.get_digest)

    def close(self) -> None:
        """Remove all package sandboxes."""
        self.fetcher.cleanup()

    async def _run(self, action: str, operation: Callable[[], Awaitable[T]]) -> T:
        try:
            return await operation()
        except InvalidParamsError:
            raise
        except Exception as e:
            pkg_logger.error(f"Failed to {action}: {e}")
            raise OperationFailedError(f"Failed to {action}: {e}") from e


# Global package manager instance
_package_manager: PackageSourceManager | None = None


def get_package_manager() -> PackageSourceManager:
    """Get the global package source manager instance."""
    global _package_manager
    if _package_manager is None:
        _package_manager = PackageSourceManager(Settings.from_env())
    return _package_manager
