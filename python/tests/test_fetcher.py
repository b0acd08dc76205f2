from __future__ import annotations

import asyncio
import gc
import gzip
import io
import tarfile
import zlib

import httpx
import pytest
from conftest import REGISTRY, make_tarball

from npm_source.errors import (
    DecompressError,
    DownloadError,
    ExtractError,
    InvalidParamsError,
    RequestTimeoutError,
)
from npm_source.extraction.fetcher import ArchiveFetcher, sanitize_package_name

TARBALL_PATH = "/pkg/-/pkg-1.0.0.tgz"
TARBALL_URL = f"{REGISTRY}{TARBALL_PATH}"


def _files_under(root):
    return sorted(p.relative_to(root).as_posix() for p in root.rglob("*") if p.is_file())


def test_strips_exactly_one_leading_segment(settings, registry):
    registry.add_bytes(
        TARBALL_PATH,
        make_tarball({"package/a.js": b"a", "package/b.md": b"b", "package/.x": b"x"}),
    )
    fetcher = ArchiveFetcher(settings, transport=registry.transport)

    result = asyncio.run(fetcher.fetch_and_extract(TARBALL_URL, "pkg"))

    assert result.root == settings.sandbox_dir.absolute() / "pkg"
    assert _files_under(result.root) == [".x", "a.js", "b.md"]
    assert not (result.root / "package").exists()


def test_nested_directories_keep_their_structure(settings, registry):
    registry.add_bytes(
        TARBALL_PATH,
        make_tarball({
            "package/": None,
            "package/lib/": None,
            "package/lib/util/index.js": b"module.exports = 1;\n",
            "package/package.json": b"{}",
        }),
    )
    fetcher = ArchiveFetcher(settings, transport=registry.transport)

    result = asyncio.run(fetcher.fetch_and_extract(TARBALL_URL, "pkg"))

    assert _files_under(result.root) == ["lib/util/index.js", "package.json"]
    assert (result.root / "lib/util/index.js").read_text() == "module.exports = 1;\n"


def test_second_extraction_leaves_no_residue(settings, registry):
    fetcher = ArchiveFetcher(settings, transport=registry.transport)

    registry.add_bytes(TARBALL_PATH, make_tarball({"package/old.js": b"old", "package/keep.js": b"v1"}))
    asyncio.run(fetcher.fetch_and_extract(TARBALL_URL, "pkg"))

    registry.add_bytes(TARBALL_PATH, make_tarball({"package/new.js": b"new", "package/keep.js": b"v2"}))
    result = asyncio.run(fetcher.fetch_and_extract(TARBALL_URL, "pkg"))

    assert _files_under(result.root) == ["keep.js", "new.js"]
    assert (result.root / "keep.js").read_text() == "v2"


def test_large_archive_streams_through_bounded_queue(settings, registry):
    entries = {f"package/src/file{i:03d}.js": (b"x" * 4096) for i in range(200)}
    body = make_tarball(entries)

    async def chunked(request):
        async def stream():
            for start in range(0, len(body), 1000):
                yield body[start:start + 1000]
        return httpx.Response(200, content=stream())

    registry.add_handler(TARBALL_PATH, chunked)
    fetcher = ArchiveFetcher(settings, transport=registry.transport)

    result = asyncio.run(fetcher.fetch_and_extract(TARBALL_URL, "pkg"))

    assert len(_files_under(result.root / "src")) == 200


def test_scoped_name_is_sanitized_into_one_directory(settings, registry):
    registry.add_bytes(TARBALL_PATH, make_tarball({"package/index.js": b"1"}))
    fetcher = ArchiveFetcher(settings, transport=registry.transport)

    result = asyncio.run(fetcher.fetch_and_extract(TARBALL_URL, "@babel/core"))

    assert result.root.parent == settings.sandbox_dir.absolute()
    assert result.root.name == "_babel_core"


@pytest.mark.parametrize("name", ["", ".", ".."])
def test_unmappable_names_are_rejected(name):
    with pytest.raises(InvalidParamsError):
        sanitize_package_name(name)


def test_separators_are_replaced():
    assert sanitize_package_name("@types/node") == "_types_node"
    assert sanitize_package_name("..\\evil") == ".._evil"


def test_non_success_status_is_download_error(settings, registry):
    registry.add_bytes(TARBALL_PATH, b"gone", status=410)
    fetcher = ArchiveFetcher(settings, transport=registry.transport)

    with pytest.raises(DownloadError, match="HTTP 410"):
        asyncio.run(fetcher.fetch_and_extract(TARBALL_URL, "pkg"))


def test_transport_failure_is_download_error(settings, registry):
    async def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    registry.add_handler(TARBALL_PATH, refuse)
    fetcher = ArchiveFetcher(settings, transport=registry.transport)

    with pytest.raises(DownloadError, match="Download failed"):
        asyncio.run(fetcher.fetch_and_extract(TARBALL_URL, "pkg"))


def test_malformed_gzip_is_decompress_error(settings, registry):
    registry.add_bytes(TARBALL_PATH, b"this is not gzip at all")
    fetcher = ArchiveFetcher(settings, transport=registry.transport)

    with pytest.raises(DecompressError):
        asyncio.run(fetcher.fetch_and_extract(TARBALL_URL, "pkg"))


def test_truncated_gzip_is_decompress_error(settings, registry):
    body = make_tarball({"package/a.js": b"a" * 50000})
    registry.add_bytes(TARBALL_PATH, body[: len(body) // 2])
    fetcher = ArchiveFetcher(settings, transport=registry.transport)

    with pytest.raises(DecompressError, match="unexpected end"):
        asyncio.run(fetcher.fetch_and_extract(TARBALL_URL, "pkg"))


def test_gzip_of_garbage_is_extract_error(settings, registry):
    registry.add_bytes(TARBALL_PATH, gzip.compress(b"definitely not a tar archive" * 40))
    fetcher = ArchiveFetcher(settings, transport=registry.transport)

    with pytest.raises(ExtractError):
        asyncio.run(fetcher.fetch_and_extract(TARBALL_URL, "pkg"))


def test_entry_escaping_sandbox_is_rejected(settings, registry):
    raw = io.BytesIO()
    with tarfile.open(fileobj=raw, mode="w") as tar:
        info = tarfile.TarInfo("package/../../evil.js")
        info.size = 4
        tar.addfile(info, io.BytesIO(b"evil"))
    registry.add_bytes(TARBALL_PATH, gzip.compress(raw.getvalue()))
    fetcher = ArchiveFetcher(settings, transport=registry.transport)

    with pytest.raises(ExtractError, match="escapes sandbox"):
        asyncio.run(fetcher.fetch_and_extract(TARBALL_URL, "pkg"))
    assert not (settings.sandbox_dir / "evil.js").exists()


def test_symlink_entries_are_not_written(settings, registry):
    raw = io.BytesIO()
    with tarfile.open(fileobj=raw, mode="w") as tar:
        link = tarfile.TarInfo("package/passwd")
        link.type = tarfile.SYMTYPE
        link.linkname = "/etc/passwd"
        tar.addfile(link)
        info = tarfile.TarInfo("package/index.js")
        info.size = 1
        tar.addfile(info, io.BytesIO(b"1"))
    registry.add_bytes(TARBALL_PATH, gzip.compress(raw.getvalue()))
    fetcher = ArchiveFetcher(settings, transport=registry.transport)

    result = asyncio.run(fetcher.fetch_and_extract(TARBALL_URL, "pkg"))

    assert not (result.root / "passwd").exists()
    assert (result.root / "index.js").exists()


def test_overall_deadline_aborts_transfer(settings, registry):
    body = make_tarball({"package/a.js": b"a"})

    async def stall(request):
        async def stream():
            yield body[:20]
            await asyncio.sleep(5)
            yield body[20:]
        return httpx.Response(200, content=stream())

    registry.add_handler(TARBALL_PATH, stall)
    fetcher = ArchiveFetcher(settings.model_copy(update={"archive_timeout": 0.2}), transport=registry.transport)

    with pytest.raises(RequestTimeoutError, match="Download timeout"):
        asyncio.run(fetcher.fetch_and_extract(TARBALL_URL, "pkg"))


def test_lease_serializes_same_name(settings):
    fetcher = ArchiveFetcher(settings)
    order = []

    async def hold(tag):
        async with fetcher.lease("pkg") as sandbox:
            order.append(f"{tag}-start")
            await asyncio.sleep(0.01)
            order.append(f"{tag}-end")
            return sandbox

    async def main():
        return await asyncio.gather(hold("a"), hold("b"))

    first, second = asyncio.run(main())

    assert order == ["a-start", "a-end", "b-start", "b-end"]
    assert first == second == settings.sandbox_dir.absolute() / "pkg"


def test_cleanup_removes_all_sandboxes(settings, registry):
    registry.add_bytes(TARBALL_PATH, make_tarball({"package/a.js": b"a"}))
    fetcher = ArchiveFetcher(settings, transport=registry.transport)
    asyncio.run(fetcher.fetch_and_extract(TARBALL_URL, "pkg"))

    fetcher.cleanup()

    assert not settings.sandbox_dir.exists()


def test_released_leases_are_forgotten(settings):
    fetcher = ArchiveFetcher(settings)

    async def hold(name):
        async with fetcher.lease(name):
            await asyncio.sleep(0.01)

    async def main():
        await asyncio.gather(hold("a"), hold("a"), hold("b"))
        assert fetcher._locks == {}
        async with fetcher.lease("c"):
            assert list(fetcher._locks) == ["c"]

    asyncio.run(main())

    assert fetcher._locks == {}
    assert fetcher._holders == {}


def test_unpack_failure_is_retrieved_when_download_fails_afterwards(settings, registry):
    raw = io.BytesIO()
    with tarfile.open(fileobj=raw, mode="w") as tar:
        info = tarfile.TarInfo("package/../../evil.js")
        info.size = 4
        tar.addfile(info, io.BytesIO(b"evil"))
    compressor = zlib.compressobj(wbits=16 + zlib.MAX_WBITS)
    head = compressor.compress(raw.getvalue()) + compressor.flush(zlib.Z_SYNC_FLUSH)

    async def corrupt_tail(request):
        async def stream():
            yield head
            # Lets the unpack thread reject the entry before the bad bytes arrive
            await asyncio.sleep(0.2)
            yield b"\xff" * 64
        return httpx.Response(200, content=stream())

    registry.add_handler(TARBALL_PATH, corrupt_tail)
    fetcher = ArchiveFetcher(settings, transport=registry.transport)
    reported = []

    async def main():
        asyncio.get_running_loop().set_exception_handler(lambda loop, context: reported.append(context))
        with pytest.raises(DecompressError):
            await fetcher.fetch_and_extract(TARBALL_URL, "pkg")
        gc.collect()
        await asyncio.sleep(0)

    asyncio.run(main())

    assert not any("never retrieved" in context.get("message", "") for context in reported)
