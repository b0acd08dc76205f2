from __future__ import annotations

import gzip
import io
import json
import tarfile
from pathlib import Path

import httpx
import pytest

from npm_source.config import Settings

REGISTRY = "https://registry.test"


def make_tarball(entries: dict[str, bytes | None]) -> bytes:
    """Build a gzip-compressed tar; a None value makes a directory entry."""
    raw = io.BytesIO()
    with tarfile.open(fileobj=raw, mode="w") as tar:
        for name, data in entries.items():
            info = tarfile.TarInfo(name)
            if data is None:
                info.type = tarfile.DIRTYPE
                info.mode = 0o755
                tar.addfile(info)
            else:
                info.size = len(data)
                info.mode = 0o644
                tar.addfile(info, io.BytesIO(data))
    return gzip.compress(raw.getvalue())


def package_metadata(name: str, version: str, **extra) -> dict:
    data = {
        "name": name,
        "version": version,
        "dist": {
            "tarball": f"{REGISTRY}/{name}/-/{name.split('/')[-1]}-{version}.tgz",
            "shasum": f"sha-{name}-{version}",
        },
    }
    data.update(extra)
    return data


def search_payload(names: list[str], total: int | None = None) -> dict:
    return {
        "objects": [
            {
                "package": {
                    "name": name,
                    "version": "1.0.0",
                    "description": f"{name} description",
                    "keywords": ["a", "b"],
                    "date": "2024-05-01T10:00:00.000Z",
                    "links": {"npm": f"https://www.npmjs.com/package/{name}"},
                },
                "score": {"final": 0.5, "detail": {"quality": 0.4, "popularity": 0.6, "maintenance": 0.7}},
            }
            for name in names
        ],
        "total": len(names) if total is None else total,
    }


class FakeRegistry:
    """Routes requests to canned responses and records every request."""

    def __init__(self):
        self.routes: dict[str, object] = {}
        self.requests: list[httpx.Request] = []

    def add_json(self, path: str, payload, status: int = 200) -> None:
        self.routes[path] = (status, json.dumps(payload).encode())

    def add_bytes(self, path: str, content: bytes, status: int = 200) -> None:
        self.routes[path] = (status, content)

    def add_handler(self, path: str, handler) -> None:
        self.routes[path] = handler

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get(request.url.path)
        if route is None:
            return httpx.Response(404, json={"error": "Not found"})
        if callable(route):
            return await route(request)
        status, content = route
        return httpx.Response(status, content=content)

    def count(self, path: str) -> int:
        return sum(1 for r in self.requests if r.url.path == path)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


@pytest.fixture
def registry() -> FakeRegistry:
    return FakeRegistry()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(registry_url=REGISTRY, sandbox_dir=tmp_path / "sandboxes")
