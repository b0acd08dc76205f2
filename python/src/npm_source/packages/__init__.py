"""
npm Package Module

Registry access and the data models shared by the extraction pipeline.

This module supports:
- Package metadata resolution by name and version
- Keyword search against the registry index

Components:
- npm_client: npm registry client
- models: package, search and extraction data models
"""

from .models import (
    CodeFile,
    CodeSelection,
    ExtractionResult,
    PackageCode,
    PackageDescriptor,
    PackageFileListing,
    PackageInfoRecord,
    SearchHit,
    SearchResult,
    SearchScore,
)
from .npm_client import NPMClient

__all__ = [
    "CodeFile",
    "CodeSelection",
    "ExtractionResult",
    "NPMClient",
    "PackageCode",
    "PackageDescriptor",
    "PackageFileListing",
    "PackageInfoRecord",
    "SearchHit",
    "SearchResult",
    "SearchScore"
]
