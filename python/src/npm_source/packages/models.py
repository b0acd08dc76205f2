"""
npm Package Models

This module defines the data models produced by the registry client, the
extraction pipeline and the package manager.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

NOT_SPECIFIED = "Not specified"
NO_DESCRIPTION = "No description available"


@dataclass(frozen=True)
class PackageDescriptor:
    """Resolved metadata for one package version."""
    name: str
    version: str
    tarball: str
    shasum: str
    description: str | None = None
    main: str | None = None
    types: str | None = None
    keywords: tuple[str, ...] = ()
    author: str | None = None
    license: str | None = None
    homepage: str | None = None
    repository: str | None = None
    dependencies: frozenset[str] = frozenset()
    dev_dependencies: frozenset[str] = frozenset()


@dataclass
class SearchScore:
    """Composite registry score for a search hit."""
    final: float = 0.0
    quality: float = 0.0
    popularity: float = 0.0
    maintenance: float = 0.0


@dataclass
class SearchHit:
    """One package returned by a registry search."""
    name: str
    version: str
    description: str | None = None
    keywords: list[str] = field(default_factory=list)
    author: str | None = None
    date: str | None = None
    npm_url: str | None = None
    homepage: str | None = None
    repository: str | None = None
    score: SearchScore = field(default_factory=SearchScore)


@dataclass
class SearchResult:
    """Result from a registry search, with the pagination echo."""
    hits: list[SearchHit]
    total: int
    query: str
    size: int
    from_: int


@dataclass(frozen=True)
class ExtractionResult:
    """Sandbox root holding one package's unpacked contents."""
    package_name: str
    root: Path


@dataclass(frozen=True)
class CodeFile:
    """A text file from an extracted package."""
    path: str  # relative to the sandbox root, POSIX separators
    content: str

    @property
    def size(self) -> int:
        return len(self.content.encode("utf-8"))


@dataclass
class CodeSelection:
    """Capped set of code files plus the true candidate count."""
    files: list[CodeFile]
    total_candidates: int

    @property
    def remaining(self) -> int:
        return max(self.total_candidates - len(self.files), 0)


@dataclass
class PackageCode:
    """Code files collected from one package version."""
    descriptor: PackageDescriptor
    selection: CodeSelection


@dataclass
class PackageFileListing:
    """Sorted relative file list for one package version."""
    name: str
    version: str
    files: list[str]

    @property
    def total(self) -> int:
        return len(self.files)


@dataclass
class PackageInfoRecord:
    """Normalized package metadata with explicit placeholders."""
    name: str
    version: str
    description: str
    main: str
    types: str
    keywords: list[str]
    author: str
    license: str
    homepage: str
    repository: str
    tarball: str
    shasum: str
    dependencies: int
    dev_dependencies: int

    @classmethod
    def from_descriptor(cls, descriptor: PackageDescriptor) -> "PackageInfoRecord":
        return cls(
            name=descriptor.name,
            version=descriptor.version,
            description=descriptor.description or NO_DESCRIPTION,
            main=descriptor.main or NOT_SPECIFIED,
            types=descriptor.types or NOT_SPECIFIED,
            keywords=list(descriptor.keywords),
            author=descriptor.author or NOT_SPECIFIED,
            license=descriptor.license or NOT_SPECIFIED,
            homepage=descriptor.homepage or NOT_SPECIFIED,
            repository=descriptor.repository or NOT_SPECIFIED,
            tarball=descriptor.tarball,
            shasum=descriptor.shasum,
            dependencies=len(descriptor.dependencies),
            dev_dependencies=len(descriptor.dev_dependencies)
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version,
            "description": self.description,
            "main": self.main,
            "types": self.types,
            "keywords": self.keywords,
            "author": self.author,
            "license": self.license,
            "homepage": self.homepage,
            "repository": self.repository,
            "tarball": self.tarball,
            "shasum": self.shasum,
            "dependencies": self.dependencies,
            "devDependencies": self.dev_dependencies
        }
