"""
Tree Walker

Iterative depth-first traversal of an extracted package. Every entry reached
is reported either as a result or as a skip with its reason; unreadable
entries never abort the walk.
"""

import os
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from ..config import Settings, pkg_logger


class SkipReason(Enum):
    """Why an entry was not descended into or returned."""
    HIDDEN = "hidden"
    SKIP_LIST = "skip-list"
    UNREADABLE = "unreadable"


@dataclass(frozen=True)
class WalkEntry:
    """One entry reached by the walker."""
    path: Path
    is_dir: bool
    skip: SkipReason | None = None

    @property
    def skipped(self) -> bool:
        return self.skip is not None


class TreeWalker:
    """Walks extracted package trees, pruning hidden and skip-listed directories."""

    def __init__(self, skip_dirs: Iterable[str] | None = None):
        self.skip_dirs = frozenset(skip_dirs if skip_dirs is not None else Settings().skip_dirs)

    def skip_reason(self, dir_name: str) -> SkipReason | None:
        if dir_name.startswith("."):
            return SkipReason.HIDDEN
        if dir_name in self.skip_dirs:
            return SkipReason.SKIP_LIST
        return None

    def walk(self, root: Path) -> Iterator[WalkEntry]:
        """
        Yield every file and every pruned or unreadable entry under root.

        Children are visited in name order and a subdirectory is entered as
        soon as it is met, so its files come before later siblings.
        """
        root = Path(root)
        try:
            stack = [iter(self._scan(root))]
        except OSError as e:
            pkg_logger.debug(f"Skipping unreadable directory: {root} ({e})")
            yield WalkEntry(root, True, SkipReason.UNREADABLE)
            return

        while stack:
            child = next(stack[-1], None)
            if child is None:
                stack.pop()
                continue

            path = Path(child.path)
            try:
                is_dir = child.is_dir(follow_symlinks=False)
                is_file = child.is_file(follow_symlinks=False)
            except OSError as e:
                pkg_logger.debug(f"Skipping inaccessible item: {path} ({e})")
                yield WalkEntry(path, False, SkipReason.UNREADABLE)
                continue

            if is_dir:
                reason = self.skip_reason(child.name)
                if reason is not None:
                    yield WalkEntry(path, True, reason)
                    continue
                try:
                    stack.append(iter(self._scan(path)))
                except OSError as e:
                    pkg_logger.debug(f"Skipping unreadable directory: {path} ({e})")
                    yield WalkEntry(path, True, SkipReason.UNREADABLE)
            elif is_file:
                yield WalkEntry(path, False)

    def _scan(self, directory: Path) -> list[os.DirEntry]:
        with os.scandir(directory) as it:
            return sorted(it, key=lambda e: e.name)

    def list_all_files(self, root: Path) -> list[Path]:
        """Absolute paths of all reachable files, sorted by path relative to root."""
        root = Path(root)
        files = [entry.path for entry in self.walk(root) if not entry.skipped and not entry.is_dir]
        return sorted(files, key=lambda p: p.relative_to(root).as_posix())

    def list_code_candidates(self, root: Path) -> list[tuple[Path, bool]]:
        """Reachable files as (path, False) and pruned directories as (path, True), in walk order."""
        candidates = []
        for entry in self.walk(root):
            if entry.skip is SkipReason.UNREADABLE:
                continue
            candidates.append((entry.path, entry.is_dir and entry.skipped))
        return candidates
