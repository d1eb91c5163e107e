"""Runtime configuration for the mirror engine.

Resolves the raw config file (see ``config_loader`` / ``config_schema``)
into a ``Config``: an absolute output directory plus one compiled
``RepoSpec`` per usable repository.

Precedence (highest to lowest):
    CLI args > Environment variables > .env file > YAML config > Built-in defaults

Environment variables:
    DOC_LINK_CONFIG: Explicit config file path (optional)
    DOC_LINK_OUTPUT_DIR: Mirror root directory (optional)
    DOC_LINK_DEBOUNCE_SECONDS: Debounce quiet period, 0-30 (optional)
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from .config_loader import discover_config_files, load_hierarchical_config
from .config_schema import DocLinkConfig, build_config
from .mirror.matcher import PatternError
from .mirror.models import RepoSpec
from .validators import validate_repo_name

logger = logging.getLogger(__name__)


@dataclass
class Config:
    output_dir: Path
    repos: list[RepoSpec] = field(default_factory=list)
    debounce_seconds: float = 0.5
    rescan_interval: str | float = "auto"
    log_level: str = "INFO"
    log_file: str | None = None
    log_format: str = "text"
    config_path: Path | None = None


def expand_path(raw: str) -> Path:
    """Expand ``~`` and ``$VARS`` and make *raw* absolute.

    Existing paths are fully resolved (symlinks included); missing paths are
    only made absolute against the current directory.
    """
    path = Path(os.path.expandvars(os.path.expanduser(raw)))
    if path.exists():
        return path.resolve()
    if path.is_absolute():
        return path
    return Path.cwd() / path


def _is_within(path: Path, parent: Path) -> bool:
    return path == parent or path.is_relative_to(parent)


def build_repo_specs(schema: DocLinkConfig, output_dir: Path) -> list[RepoSpec]:
    """Compile the repository list of *schema* into ``RepoSpec`` objects.

    Repos whose path does not exist and repos with malformed patterns are
    skipped with a log message.  Name collisions get ``-2``, ``-3``
    suffixes.

    Raises:
        ValueError: If a repo name is invalid or the output directory lies
            inside a repository (or a repository inside it).
    """
    seen: dict[str, int] = {}
    specs: list[RepoSpec] = []

    for entry in schema.repos:
        path = expand_path(entry.path)

        base_name = entry.name or path.name
        valid, reason = validate_repo_name(base_name)
        if not valid:
            raise ValueError(f"{reason} (repo {entry.path})")

        seen[base_name] = seen.get(base_name, 0) + 1
        name = base_name
        if seen[base_name] > 1:
            name = f"{base_name}-{seen[base_name]}"
            while name in seen:
                seen[base_name] += 1
                name = f"{base_name}-{seen[base_name]}"
            seen[name] = 1
            logger.warning(
                "Repo name collision for '%s', using '%s'", base_name, name
            )

        if not path.is_dir():
            logger.warning("Repo path does not exist, skipping: %s", path)
            continue

        if _is_within(output_dir, path):
            raise ValueError(
                f"output_dir '{output_dir}' is inside repo '{path}'. "
                "This would create an infinite loop."
            )
        if _is_within(path, output_dir):
            raise ValueError(
                f"Repo '{path}' is inside output_dir '{output_dir}'."
            )

        try:
            spec = RepoSpec.build(
                name,
                path,
                exclude=[*schema.global_exclude, *entry.exclude],
                include=[*schema.global_include, *entry.include],
            )
        except PatternError as exc:
            logger.error("[%s] %s -- skipping repo", name, exc)
            continue
        specs.append(spec)

    return specs


def _resolve_debounce(override: float | None, fallback: float) -> float:
    if override is not None:
        value = override
        source = "--debounce"
    else:
        raw = os.getenv("DOC_LINK_DEBOUNCE_SECONDS")
        if raw is None:
            return fallback
        source = "DOC_LINK_DEBOUNCE_SECONDS"
        try:
            value = float(raw)
        except ValueError:
            raise ValueError(
                f"Invalid {source} '{raw}': must be a number between 0 and 30"
            ) from None

    if not (0.0 <= value <= 30.0):
        raise ValueError(
            f"Invalid {source} '{value}': must be a number between 0 and 30"
        )
    return value


def load_config(
    config_path: Path | None = None,
    output_dir: str | None = None,
    debounce_seconds: float | None = None,
    raw: dict | None = None,
) -> Config:
    """Load configuration with unified precedence.

    The caller is responsible for calling ``load_dotenv()`` before this
    function so that .env values are available via ``os.getenv()``.

    Args:
        config_path: Explicit config file; otherwise files are discovered.
        output_dir: Override mirror directory (takes precedence over env
            var and YAML).
        debounce_seconds: Override debounce quiet period.
        raw: Pre-loaded raw config dict (skips file loading).

    Returns:
        Resolved Config instance.

    Raises:
        ValueError: If the configuration is invalid or ``output_dir`` is
            not set anywhere.
        OSError: If an explicit config file cannot be read.
    """
    if config_path is not None:
        config_path = Path(config_path).expanduser().resolve()
    elif raw is None:
        discovered = discover_config_files()
        config_path = discovered[0] if discovered else None

    if raw is None:
        raw = load_hierarchical_config(config_path)
    schema = build_config(raw)

    output_raw = output_dir or os.getenv("DOC_LINK_OUTPUT_DIR") or schema.output_dir
    if not output_raw:
        raise ValueError(
            "Output directory not found. Set DOC_LINK_OUTPUT_DIR environment "
            "variable, pass --output-dir, or add 'output_dir' to config.yml."
        )
    resolved_output = expand_path(output_raw)

    config = Config(
        output_dir=resolved_output,
        repos=build_repo_specs(schema, resolved_output),
        debounce_seconds=_resolve_debounce(
            debounce_seconds, schema.debounce_seconds
        ),
        rescan_interval=schema.rescan_interval,
        log_level=schema.logging.level.upper(),
        log_file=schema.logging.file,
        log_format=schema.logging.format,
        config_path=config_path,
    )

    if not config.repos:
        logger.warning("No usable repos configured")
    return config
