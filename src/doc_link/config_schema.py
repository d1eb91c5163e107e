"""Configuration file schema for doc_link.

Defines Pydantic models for the YAML config structure: the mirror output
directory, global pattern lists, the repository list and logging.

Usage:
    from doc_link.config_schema import DocLinkConfig, build_config

    raw = load_hierarchical_config()
    schema = build_config(raw)
"""

from __future__ import annotations

import logging
from typing import Literal

from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

CONFIG_VERSION = 1

DEFAULT_GLOBAL_EXCLUDE: tuple[str, ...] = (
    # Version control
    ".git/",
    ".svn/",
    ".hg/",
    # Dependencies
    "node_modules/",
    "bower_components/",
    "vendor/",
    ".pnpm-store/",
    # Virtual environments
    ".venv/",
    "venv/",
    # Build output
    "dist/",
    "build/",
    "out/",
    "target/",
    "_build/",
    # Framework caches
    ".next/",
    ".nuxt/",
    ".svelte-kit/",
    ".docusaurus/",
    # Python
    "__pycache__/",
    "*.pyc",
    "*.pyo",
    ".mypy_cache/",
    ".pytest_cache/",
    ".ruff_cache/",
    ".tox/",
    "*.egg-info/",
    # Editors
    ".idea/",
    ".vscode/",
    "*.swp",
    "*.swo",
    "*~",
    # OS
    ".DS_Store",
    "Thumbs.db",
    # Coverage
    "coverage/",
    "htmlcov/",
    ".nyc_output/",
    # Misc caches
    ".cache/",
    ".gradle/",
    ".terraform/",
)

DEFAULT_GLOBAL_INCLUDE: tuple[str, ...] = (
    "*.md",
    "*.mdx",
    "*.markdown",
    "*.txt",
    "*.rst",
    "*.adoc",
    "*.org",
    "README",
    "LICENSE",
    "LICENCE",
    "CHANGELOG",
    "CONTRIBUTING",
    "AUTHORS",
    "COPYING",
    "TODO",
)


# ---------------------------------------------------------------------------
# Section models
# ---------------------------------------------------------------------------


class RepoEntryConfig(BaseModel):
    """One repository entry.

    Attributes:
        path: Repository root (``~`` and ``$VARS`` are expanded later).
        name: Mirror subdirectory name; defaults to the path's basename.
        exclude: Extra gitignore-style excludes appended to the global list.
        include: Extra include globs appended to the global list.
    """

    path: str = Field(description="Repository root path")
    name: str | None = Field(
        default=None, description="Mirror subdirectory name"
    )
    exclude: list[str] = Field(
        default_factory=list, description="Extra exclude patterns"
    )
    include: list[str] = Field(
        default_factory=list, description="Extra include patterns"
    )

    model_config = {"frozen": True}

    @field_validator("path")
    @classmethod
    def _path_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Repo path cannot be empty")
        return value


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        file: Optional log file path.
        format: ``text`` or ``json``.
    """

    level: str = Field(default="INFO", description="Log level")
    file: str | None = Field(default=None, description="Log file path")
    format: Literal["text", "json"] = Field(
        default="text", description="Log line format"
    )

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Top-level config
# ---------------------------------------------------------------------------


class DocLinkConfig(BaseModel):
    """Top-level configuration file.

    ``output_dir`` may be left unset here and supplied by the
    ``DOC_LINK_OUTPUT_DIR`` environment variable or a CLI override.
    """

    version: int = Field(default=CONFIG_VERSION, description="Schema version")
    output_dir: str | None = Field(
        default=None, description="Mirror root directory"
    )
    debounce_seconds: float = Field(
        default=0.5,
        ge=0.0,
        le=30.0,
        description="Quiet period before a batch is applied (0-30s)",
    )
    rescan_interval: Literal["never", "auto"] | float = Field(
        default="auto",
        description="Periodic full rescan: never, auto or seconds",
    )
    global_exclude: list[str] = Field(
        default_factory=lambda: list(DEFAULT_GLOBAL_EXCLUDE)
    )
    global_include: list[str] = Field(
        default_factory=lambda: list(DEFAULT_GLOBAL_INCLUDE)
    )
    repos: list[RepoEntryConfig] = Field(default_factory=list)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"frozen": True}

    @field_validator(
        "repos", "global_exclude", "global_include", mode="before"
    )
    @classmethod
    def _null_lists(cls, value, info):
        # A bare ``repos:`` key parses as None.
        if value is not None:
            return value
        if info.field_name == "global_exclude":
            return list(DEFAULT_GLOBAL_EXCLUDE)
        return []

    @field_validator("version")
    @classmethod
    def _supported_version(cls, value: int) -> int:
        if value != CONFIG_VERSION:
            raise ValueError(
                f"Unsupported config version {value} "
                f"(expected {CONFIG_VERSION})"
            )
        return value

    @field_validator("rescan_interval")
    @classmethod
    def _positive_interval(cls, value):
        if not isinstance(value, str) and value <= 0:
            raise ValueError(
                "rescan_interval must be 'never', 'auto' or a positive "
                "number of seconds"
            )
        return value

    @field_validator("global_include")
    @classmethod
    def _default_includes(cls, value: list[str]) -> list[str]:
        if not value:
            logger.debug("Empty global_include, using defaults")
            return list(DEFAULT_GLOBAL_INCLUDE)
        return value


# ---------------------------------------------------------------------------
# Factory function
# ---------------------------------------------------------------------------


def build_config(raw_data: dict) -> DocLinkConfig:
    """Construct a ``DocLinkConfig`` from the raw dict returned by
    ``load_hierarchical_config()``.

    Handles missing sections gracefully -- anything absent gets defaults.

    Args:
        raw_data: Merged configuration dictionary.

    Returns:
        Validated ``DocLinkConfig`` instance.

    Raises:
        pydantic.ValidationError: If a value has the wrong shape.
    """
    if not raw_data:
        return DocLinkConfig()

    return DocLinkConfig(**raw_data)
