"""
Archive Fetcher

Streams a package tarball from the registry, decompresses it and unpacks it
into a per-package sandbox directory, stripping the archive's wrapper
directory. Download, decompression and unpacking run concurrently and are
connected by a bounded queue, so a slow unpack throttles the download.
"""

import asyncio
import re
import shutil
import tarfile
import zlib
from contextlib import asynccontextmanager
from pathlib import Path, PurePosixPath

import httpx

from ..config import Settings, pkg_logger
from ..errors import (
    DecompressError,
    DownloadError,
    ExtractError,
    FilesystemError,
    InvalidParamsError,
    RequestTimeoutError,
)
from ..packages.models import ExtractionResult

# Decompressed chunks buffered between the download and the unpack thread
QUEUE_DEPTH = 16

_END = object()
_ABORT = object()


class _PipelineAborted(Exception):
    """Raised inside the unpack thread when the download side gives up."""


class _QueueReader:
    """Blocking file-like view over an asyncio.Queue, read from a worker thread."""

    def __init__(self, queue: asyncio.Queue, loop: asyncio.AbstractEventLoop):
        self._queue = queue
        self._loop = loop
        self._buffer = bytearray()
        self._eof = False

    def read(self, size: int = -1) -> bytes:
        while not self._eof and (size < 0 or len(self._buffer) < size):
            item = asyncio.run_coroutine_threadsafe(self._queue.get(), self._loop).result()
            if item is _END:
                self._eof = True
            elif item is _ABORT:
                raise _PipelineAborted()
            else:
                self._buffer.extend(item)

        if size < 0 or size >= len(self._buffer):
            data = bytes(self._buffer)
            self._buffer.clear()
        else:
            data = bytes(self._buffer[:size])
            del self._buffer[:size]
        return data


def sanitize_package_name(package_name: str) -> str:
    """Map a package name onto a single safe directory name."""
    sanitized = re.sub(r"[^A-Za-z0-9._-]", "_", package_name or "")
    if sanitized.strip(".") == "":
        raise InvalidParamsError(f"Invalid package name: {package_name!r}")
    return sanitized


class ArchiveFetcher:
    """Downloads package archives and unpacks them into sandboxes."""

    def __init__(self, settings: Settings | None = None, transport: httpx.AsyncBaseTransport | None = None):
        settings = settings or Settings()
        self.sandbox_dir = Path(settings.sandbox_dir).absolute()
        self.timeout = settings.archive_timeout
        self.transport = transport
        self._locks: dict[str, asyncio.Lock] = {}
        # Requests holding or waiting for each lock; the entry goes when this drops to zero
        self._holders: dict[str, int] = {}

    def sandbox_path(self, package_name: str) -> Path:
        return self.sandbox_dir / sanitize_package_name(package_name)

    @asynccontextmanager
    async def lease(self, package_name: str):
        """
        Hold exclusive use of a package's sandbox.

        A request that extracts a package and then reads from its sandbox keeps
        the lease for the whole sequence, so a concurrent request for the same
        name can neither delete nor overwrite the tree it is reading.
        """
        key = sanitize_package_name(package_name)
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._holders[key] = self._holders.get(key, 0) + 1
        try:
            async with lock:
                yield self.sandbox_dir / key
        finally:
            self._holders[key] -= 1
            if self._holders[key] == 0:
                del self._holders[key]
                del self._locks[key]

    async def fetch_and_extract(self, archive_url: str, package_name: str) -> ExtractionResult:
        """
        Download archive_url and unpack it into the package's sandbox.

        Steps run strictly in order: remove any previous sandbox, create it,
        open the download, then decompress and unpack as bytes arrive.

        Raises:
            DownloadError: non-2xx status or transport failure
            DecompressError: malformed or truncated gzip stream
            ExtractError: malformed tar data or an entry escaping the sandbox
            RequestTimeoutError: the whole operation exceeded its deadline
        """
        sandbox = self.sandbox_path(package_name)
        await asyncio.to_thread(self._reset_sandbox, sandbox)

        try:
            await asyncio.wait_for(self._stream_into(archive_url, sandbox), self.timeout)
        except asyncio.TimeoutError as e:
            raise RequestTimeoutError(f"Download timeout after {self.timeout:g}s: {archive_url}") from e

        pkg_logger.info(f"Extracted {package_name} into {sandbox}")
        return ExtractionResult(package_name=package_name, root=sandbox)

    def cleanup(self) -> None:
        """Remove every sandbox under the sandbox directory."""
        if not self.sandbox_dir.exists():
            return
        try:
            shutil.rmtree(self.sandbox_dir)
        except OSError as e:
            pkg_logger.error(f"Failed to cleanup sandbox directory: {e}")

    def _reset_sandbox(self, sandbox: Path) -> None:
        try:
            if sandbox.exists():
                shutil.rmtree(sandbox)
            sandbox.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise FilesystemError(f"Failed to prepare sandbox {sandbox}: {e}") from e

    async def _stream_into(self, archive_url: str, sandbox: Path) -> None:
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue = asyncio.Queue(maxsize=QUEUE_DEPTH)
        reader = _QueueReader(queue, loop)
        extraction = asyncio.ensure_future(asyncio.to_thread(self._unpack, reader, sandbox))

        try:
            await self._download(archive_url, queue, extraction)
            await asyncio.shield(extraction)
        finally:
            if not extraction.done():
                self._abort(queue)
                # The unpack thread must exit before the loop can shut down
                await asyncio.wait({extraction})
            if extraction.done() and not extraction.cancelled() and extraction.exception() is not None:
                # Retrieved here too when a download error is the one raised
                pkg_logger.debug(f"Unpack into {sandbox} failed: {extraction.exception()}")

    async def _download(self, archive_url: str, queue: asyncio.Queue, extraction: asyncio.Future) -> None:
        decompressor = zlib.decompressobj(16 + zlib.MAX_WBITS)

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport, follow_redirects=True) as client:
                async with client.stream("GET", archive_url) as response:
                    if not response.is_success:
                        raise DownloadError(f"HTTP {response.status_code}: Failed to download tarball")

                    async for chunk in response.aiter_bytes():
                        try:
                            data = decompressor.decompress(chunk)
                        except zlib.error as e:
                            raise DecompressError(f"Decompression failed: {e}") from e
                        if data and not await self._feed(queue, data, extraction):
                            return
                        if decompressor.eof:
                            break
        except httpx.TimeoutException as e:
            raise RequestTimeoutError(f"Download timeout: {e}") from e
        except httpx.HTTPError as e:
            raise DownloadError(f"Download failed: {e}") from e

        if not decompressor.eof:
            raise DecompressError("Decompression failed: unexpected end of compressed stream")

        tail = decompressor.flush()
        if tail and not await self._feed(queue, tail, extraction):
            return
        await self._feed(queue, _END, extraction)

    async def _feed(self, queue: asyncio.Queue, item, extraction: asyncio.Future) -> bool:
        """Queue item for the unpack thread. False once the thread has finished."""
        if extraction.done():
            return False

        put = asyncio.ensure_future(queue.put(item))
        try:
            done, _ = await asyncio.wait({put, extraction}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            if not put.done():
                put.cancel()
        return put in done

    def _abort(self, queue: asyncio.Queue) -> None:
        while not queue.empty():
            queue.get_nowait()
        queue.put_nowait(_ABORT)

    def _unpack(self, reader: _QueueReader, sandbox: Path) -> None:
        root = sandbox.resolve()
        try:
            with tarfile.open(fileobj=reader, mode="r|") as archive:
                for member in archive:
                    self._extract_member(archive, member, root)
        except _PipelineAborted:
            pkg_logger.debug(f"Extraction into {sandbox} aborted")
        except (tarfile.TarError, EOFError) as e:
            raise ExtractError(f"Extraction failed: {e}") from e
        except OSError as e:
            raise FilesystemError(f"Failed to write into {sandbox}: {e}") from e

    def _extract_member(self, archive: tarfile.TarFile, member: tarfile.TarInfo, root: Path) -> None:
        parts = PurePosixPath(member.name).parts
        if len(parts) <= 1:
            # The wrapper directory itself (conventionally "package/")
            return

        target = root.joinpath(*parts[1:]).resolve()
        if target != root and root not in target.parents:
            raise ExtractError(f"Extraction failed: entry escapes sandbox: {member.name}")

        if member.isdir():
            target.mkdir(parents=True, exist_ok=True)
        elif member.isfile():
            target.parent.mkdir(parents=True, exist_ok=True)
            source = archive.extractfile(member)
            with source, open(target, "wb") as out:
                shutil.copyfileobj(source, out)
        else:
            pkg_logger.debug(f"Skipping non-regular archive entry: {member.name}")
