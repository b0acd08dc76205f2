"""
Code Selector

Picks code files out of an extracted package tree and reads them as text.
"""

import asyncio
from pathlib import Path

import aiofiles
import aiofiles.os

from ..config import Settings, pkg_logger
from ..errors import InvalidParamsError, NotAFileError, NotFoundError, ReadError
from ..packages.models import CodeFile, CodeSelection, PackageDescriptor
from .walker import TreeWalker


class CodeSelector:
    """Selects and reads code files under a capped result size."""

    def __init__(self, settings: Settings | None = None, walker: TreeWalker | None = None):
        settings = settings or Settings()
        self.extensions = frozenset(settings.code_extensions)
        self.max_files = settings.max_files
        self.walker = walker or TreeWalker(settings.skip_dirs)

    def is_code_file(self, path: Path) -> bool:
        return path.suffix.lower() in self.extensions

    async def collect(self, root: Path, descriptor: PackageDescriptor | None = None) -> CodeSelection:
        """
        Read every code file under root and keep the first max_files of them.

        Files that cannot be read as UTF-8 text are left out of both the
        result and the total. The total counts every readable candidate so the
        caller can report how many more files exist.
        """
        root = Path(root)
        candidates = await asyncio.to_thread(self.walker.list_code_candidates, root)

        files: list[CodeFile] = []
        total = 0
        for path, is_skipped_dir in candidates:
            if is_skipped_dir or not self.is_code_file(path):
                continue
            try:
                content = await self._read_text(path)
            except (OSError, UnicodeDecodeError) as e:
                pkg_logger.debug(f"Skipping unreadable file: {path} ({e})")
                continue

            total += 1
            if len(files) < self.max_files:
                files.append(CodeFile(path=path.relative_to(root).as_posix(), content=content))

        label = f"{descriptor.name}@{descriptor.version}" if descriptor else str(root)
        pkg_logger.debug(f"Selected {len(files)} of {total} code files from {label}")
        return CodeSelection(files=files, total_candidates=total)

    async def read_one(self, root: Path, relative_path: str) -> CodeFile:
        """Read a single file addressed relative to root."""
        root = Path(root).resolve()
        target = (root / relative_path.lstrip("/")).resolve()
        if target != root and root not in target.parents:
            raise InvalidParamsError(f"File path escapes package root: {relative_path}")

        if not await aiofiles.os.path.exists(target):
            raise NotFoundError(f"File not found: {relative_path}")
        if not await aiofiles.os.path.isfile(target):
            raise NotAFileError(f"Path is not a file: {relative_path}")

        try:
            content = await self._read_text(target)
        except (OSError, UnicodeDecodeError) as e:
            raise ReadError(f"Failed to read file {relative_path}: {e}") from e

        return CodeFile(path=target.relative_to(root).as_posix(), content=content)

    async def _read_text(self, path: Path) -> str:
        async with aiofiles.open(path, "r", encoding="utf-8", newline="") as f:
            return await f.read()
