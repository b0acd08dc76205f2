"""
Package Extraction Module

Download, unpack and inspect package archives.

Components:
- fetcher: streams an archive into a per-package sandbox
- walker: iterative traversal of an extracted tree
- selector: code file selection and single-file reads
"""

from .fetcher import ArchiveFetcher, sanitize_package_name
from .selector import CodeSelector
from .walker import SkipReason, TreeWalker, WalkEntry

__all__ = [
    "ArchiveFetcher",
    "CodeSelector",
    "SkipReason",
    "TreeWalker",
    "WalkEntry",
    "sanitize_package_name"
]
