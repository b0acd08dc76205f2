"""
npm-source Configuration

Settings model and logging setup shared by every npm-source component.
"""

import logging
import os
from pathlib import Path

import structlog
from pydantic import BaseModel, Field, field_validator

DEFAULT_REGISTRY_URL = "https://registry.npmjs.org"

DEFAULT_SEED_TERMS = [
    "react", "lodash", "express", "typescript", "webpack",
    "eslint", "babel", "prettier", "jest", "axios"
]

# Configure simple structured logging for npm-source
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

# Create npm-source logger
pkg_logger = structlog.get_logger("npm_source")


def configure_logging(level: str = "INFO") -> None:
    """Apply a log level to both the stdlib root logger and structlog output."""
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO
    logging.getLogger().setLevel(numeric_level)
    structlog.configure(wrapper_class=structlog.make_filtering_bound_logger(numeric_level))


class Settings(BaseModel):
    """Configuration for registry access, extraction and caching."""

    registry_url: str = Field(default=DEFAULT_REGISTRY_URL, description="Base URL of the npm registry")
    sandbox_dir: Path = Field(
        default_factory=lambda: Path(os.getenv("TMPDIR", "/tmp")) / "npm-source",
        description="Parent directory for per-package sandboxes"
    )
    metadata_timeout: float = Field(default=10.0, description="Metadata request timeout in seconds")
    search_timeout: float = Field(default=15.0, description="Search request timeout in seconds")
    archive_timeout: float = Field(default=30.0, description="Overall archive fetch timeout in seconds")
    max_files: int = Field(default=20, description="Maximum code files returned per package")
    max_search_size: int = Field(default=250, description="Largest page size accepted by search")
    code_extensions: list[str] = Field(
        default_factory=lambda: [".js", ".ts", ".jsx", ".tsx", ".mjs", ".cjs", ".json"],
        description="File extensions treated as code"
    )
    skip_dirs: list[str] = Field(
        default_factory=lambda: [".git", ".svn", ".hg", "node_modules", ".DS_Store", "__pycache__"],
        description="Directory names never descended into"
    )
    cache_ttl: float = Field(default=24 * 60 * 60, description="Popular packages digest TTL in seconds")
    seed_terms: list[str] = Field(default_factory=lambda: list(DEFAULT_SEED_TERMS))
    seed_count: int = Field(default=5, description="How many seed terms are searched per recompute")
    popular_limit: int = Field(default=50, description="Packages kept in the popular digest")
    log_level: str = Field(default="INFO")

    @field_validator("registry_url")
    @classmethod
    def strip_trailing_slash(cls, v):
        return v.rstrip("/")

    @field_validator("metadata_timeout", "search_timeout", "archive_timeout", "cache_ttl")
    @classmethod
    def validate_positive(cls, v):
        if v <= 0:
            raise ValueError("timeouts and TTL must be positive")
        return v

    @field_validator("max_files", "seed_count", "popular_limit")
    @classmethod
    def validate_count(cls, v):
        if v < 1:
            raise ValueError("counts must be at least 1")
        return v

    @field_validator("code_extensions")
    @classmethod
    def normalize_extensions(cls, v):
        return [ext.lower() if ext.startswith(".") else f".{ext.lower()}" for ext in v]

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from NPM_SOURCE_* environment variables."""
        env_map = {
            "registry_url": "NPM_SOURCE_REGISTRY_URL",
            "sandbox_dir": "NPM_SOURCE_SANDBOX_DIR",
            "metadata_timeout": "NPM_SOURCE_METADATA_TIMEOUT",
            "search_timeout": "NPM_SOURCE_SEARCH_TIMEOUT",
            "archive_timeout": "NPM_SOURCE_ARCHIVE_TIMEOUT",
            "max_files": "NPM_SOURCE_MAX_FILES",
            "cache_ttl": "NPM_SOURCE_CACHE_TTL",
            "seed_count": "NPM_SOURCE_SEED_COUNT",
            "log_level": "NPM_SOURCE_LOG_LEVEL",
        }
        values = {}
        for field_name, env_name in env_map.items():
            value = os.getenv(env_name)
            if value:
                values[field_name] = value
        return cls(**values)
