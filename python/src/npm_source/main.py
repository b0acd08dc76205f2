"""
npm-source Service

A small FastAPI service exposing package code retrieval, file listing,
metadata inspection, registry search and the popular packages digest.
"""

import os
from contextlib import asynccontextmanager
from dataclasses import asdict

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.responses import PlainTextResponse

from . import __version__
from .config import Settings, configure_logging, pkg_logger
from .errors import InvalidParamsError, NotAFileError, NotFoundError, PackageSourceError
from .manager import PackageSourceManager
from .packages.models import CodeFile
from .reports import (
    render_code_file,
    render_file_listing,
    render_package_code,
    render_package_info,
    render_search_results,
)


def _to_http_error(error: PackageSourceError) -> HTTPException:
    """Map a manager failure onto an HTTP status."""
    if isinstance(error, InvalidParamsError):
        return HTTPException(status_code=400, detail=str(error))
    if isinstance(error.__cause__, NotFoundError | NotAFileError):
        return HTTPException(status_code=404, detail=str(error))
    return HTTPException(status_code=502, detail=str(error))


def _manager(request: Request) -> PackageSourceManager:
    manager = getattr(request.app.state, "manager", None)
    if manager is None:
        raise HTTPException(status_code=503, detail="Package manager not initialized")
    return manager


def _code_file_dict(code_file: CodeFile) -> dict:
    return {"path": code_file.path, "size": code_file.size, "content": code_file.content}


def create_app(manager: PackageSourceManager | None = None) -> FastAPI:
    """Create the service app, optionally around an existing manager."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager."""
        # Startup
        if manager is None:
            settings = Settings.from_env()
            configure_logging(settings.log_level)
            app.state.manager = PackageSourceManager(settings)
        else:
            app.state.manager = manager
        pkg_logger.info(f"npm-source started, sandboxes in {app.state.manager.fetcher.sandbox_dir}")

        yield

        # Shutdown
        app.state.manager.close()
        pkg_logger.info("npm-source shutdown complete")

    app = FastAPI(
        title="npm-source",
        description="Fetch, list and inspect the source of published npm packages",
        version=__version__,
        lifespan=lifespan
    )

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy", "version": __version__}

    @app.get("/packages/{package_name:path}/code")
    async def get_package_code(
        request: Request,
        package_name: str,
        version: str | None = None,
        file_path: str | None = None,
        format: str = "json"
    ):
        """Get one file or the capped set of code files from a package."""
        try:
            result = await _manager(request).get_package_code(package_name, version, file_path)
        except PackageSourceError as e:
            raise _to_http_error(e) from e

        if isinstance(result, CodeFile):
            if format == "text":
                return PlainTextResponse(render_code_file(result))
            return _code_file_dict(result)

        if format == "text":
            return PlainTextResponse(render_package_code(result))
        return {
            "name": result.descriptor.name,
            "version": result.descriptor.version,
            "description": result.descriptor.description,
            "files": [_code_file_dict(f) for f in result.selection.files],
            "total_files": result.selection.total_candidates,
            "remaining_files": result.selection.remaining
        }

    @app.get("/packages/{package_name:path}/files")
    async def list_package_files(request: Request, package_name: str, version: str | None = None, format: str = "json"):
        """List all files in a package."""
        try:
            listing = await _manager(request).list_package_files(package_name, version)
        except PackageSourceError as e:
            raise _to_http_error(e) from e

        if format == "text":
            return PlainTextResponse(render_file_listing(listing))
        return {"name": listing.name, "version": listing.version, "files": listing.files, "total": listing.total}

    @app.get("/packages/{package_name:path}/info")
    async def get_package_info(request: Request, package_name: str, version: str | None = None, format: str = "json"):
        """Get package metadata."""
        try:
            record = await _manager(request).get_package_info(package_name, version)
        except PackageSourceError as e:
            raise _to_http_error(e) from e

        if format == "text":
            return PlainTextResponse(render_package_info(record))
        return record.to_dict()

    @app.get("/search")
    async def search_packages(
        request: Request,
        query: str = "",
        size: int = 20,
        from_: int = Query(default=0, alias="from"),
        format: str = "json"
    ):
        """Search the registry."""
        try:
            result = await _manager(request).search_packages(query, size, from_)
        except PackageSourceError as e:
            raise _to_http_error(e) from e

        if format == "text":
            return PlainTextResponse(render_search_results(result))
        return {
            "query": result.query,
            "total": result.total,
            "size": result.size,
            "from": result.from_,
            "hits": [asdict(hit) for hit in result.hits]
        }

    @app.get("/popular", response_class=PlainTextResponse)
    async def popular_packages(request: Request):
        """Get the popular packages digest."""
        try:
            return await _manager(request).get_popular_packages()
        except PackageSourceError as e:
            raise _to_http_error(e) from e

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    # Get configuration from environment
    host = os.getenv("NPM_SOURCE_HOST", "127.0.0.1")
    port = int(os.getenv("NPM_SOURCE_PORT", "8060"))

    pkg_logger.info(f"Starting npm-source on {host}:{port}")

    uvicorn.run(
        app,
        host=host,
        port=port,
        log_level="info"
    )
