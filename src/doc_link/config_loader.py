"""
Configuration file loader for doc_link.

Provides convention-based config file discovery, YAML !include support,
env var interpolation, and hierarchical merge with "project wins" semantics.

Usage:
    from doc_link.config_loader import load_hierarchical_config

    raw = load_hierarchical_config()
"""

import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "DOC_LINK_CONFIG"
PROJECT_CONFIG_DIR = ".doc_link"

# ---------------------------------------------------------------------------
# 1. Env var interpolation
# ---------------------------------------------------------------------------

# Matches ${VAR} and ${VAR:-default}
_ENV_VAR_PATTERN = re.compile(r"\$\{([^}:]+?)(?::-(.*?))?\}")


def interpolate_env_vars(value: str) -> str:
    """Replace ``${VAR}`` and ``${VAR:-default}`` patterns with env values.

    * ``${VAR}`` is replaced with ``os.environ.get(VAR, "")``.
    * ``${VAR:-default}`` uses *default* when VAR is unset or empty.
    * Literal ``${`` with no closing ``}`` is left untouched.
    """

    def _replace(match: re.Match) -> str:
        env_val = os.environ.get(match.group(1))
        if env_val:
            return env_val
        return match.group(2) or ""

    return _ENV_VAR_PATTERN.sub(_replace, value)


def _interpolate_recursive(obj: Any) -> Any:
    if isinstance(obj, str):
        return interpolate_env_vars(obj)
    if isinstance(obj, dict):
        return {k: _interpolate_recursive(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_interpolate_recursive(item) for item in obj]
    return obj


# ---------------------------------------------------------------------------
# 2. YAML !include support
# ---------------------------------------------------------------------------


class ConfigLoader(yaml.SafeLoader):
    """YAML SafeLoader subclass with ``!include`` support.

    A shared pattern list can live in its own file::

        global_exclude: !include excludes.yml
    """


def _include_constructor(
    loader: ConfigLoader, node: yaml.ScalarNode
) -> Any:
    """Handle ``!include path/to/file.yml`` relative to the including file."""
    target = Path(loader.construct_scalar(node)).expanduser()
    if not target.is_absolute():
        target = Path(loader.name).resolve().parent / target
    target = target.resolve()

    include_stack: list[Path] = getattr(loader, "_include_stack", [])
    if target in include_stack:
        chain = " -> ".join(str(p) for p in [*include_stack, target])
        raise ValueError(f"Circular include detected: {chain}")

    if not target.exists():
        raise FileNotFoundError(
            f"Include file not found: {target} "
            f"(referenced from {Path(loader.name).resolve()})"
        )

    return load_yaml_file(target, _include_stack=[*include_stack, target])


ConfigLoader.add_constructor("!include", _include_constructor)


def load_yaml_file(
    path: Path,
    *,
    _include_stack: list[Path] | None = None,
) -> Any:
    """Load one YAML file, resolving ``!include`` directives."""
    path = Path(path).resolve()
    if _include_stack is None:
        _include_stack = [path]

    with open(path, "r", encoding="utf-8") as fh:
        loader = ConfigLoader(fh)
        loader._include_stack = _include_stack  # type: ignore[attr-defined]
        try:
            return loader.get_single_data()
        finally:
            loader.dispose()


# ---------------------------------------------------------------------------
# 3. Convention-based file discovery
# ---------------------------------------------------------------------------


def discover_config_files() -> list[Path]:
    """Return existing config file paths in precedence order (highest first).

    Search order:
        1. ``DOC_LINK_CONFIG`` env var (explicit single path)
        2. ``.doc_link/config.yml`` in CWD (project-level)
        3. ``.doc_link/config.yaml`` in CWD (alternate extension)
        4. ``~/.config/doc_link/config.yml`` (XDG global)

    Only paths that exist on disk are returned.
    """
    candidates: list[Path] = []

    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        candidates.append(Path(env_path).expanduser().resolve())

    cwd = Path.cwd()
    candidates.append(cwd / PROJECT_CONFIG_DIR / "config.yml")
    candidates.append(cwd / PROJECT_CONFIG_DIR / "config.yaml")

    candidates.append(global_config_path())

    return [p for p in candidates if p.exists()]


def global_config_path() -> Path:
    return Path.home() / ".config" / "doc_link" / "config.yml"


# ---------------------------------------------------------------------------
# 3a. Config bootstrapping
# ---------------------------------------------------------------------------

_STARTER_CONFIG = """\
# doc-link configuration
#
# Mirrors documentation files from your repositories into one directory of
# symlinks. Edit, save, and run `doc-link check` to validate.
#
# Environment variables:
#   DOC_LINK_CONFIG, DOC_LINK_OUTPUT_DIR, DOC_LINK_DEBOUNCE_SECONDS

version: 1

# Where the mirror is built; each repo gets a subdirectory.
output_dir: {output_dir}

# Quiet period (seconds) before live changes are applied (0-30).
debounce_seconds: 0.5

# Periodic full rescan: never, auto, or a number of seconds.
rescan_interval: auto

# Repo patterns are appended to the built-in global_exclude and
# global_include lists; set those keys here to replace the defaults.
repos: []
#  - path: ~/code/my-project
#    name: my-project
#    exclude:
#      - "docs/generated/"
#    include:
#      - "*.tex"

logging:
  level: INFO
  file: null
  format: text
"""


def starter_config(output_dir: str = "~/doc-link") -> str:
    """Return the starter config text with *output_dir* filled in."""
    return _STARTER_CONFIG.format(output_dir=output_dir)


def resolve_config_path() -> Path:
    """Return the single config file path that should be used.

    The highest-precedence existing file, or the global default path
    ``~/.config/doc_link/config.yml`` when none exists.  Does NOT create
    the file -- use ``ensure_config()`` for that.
    """
    existing = discover_config_files()
    if existing:
        return existing[0]
    return global_config_path()


def ensure_config(
    target: Path | None = None, output_dir: str = "~/doc-link"
) -> tuple[Path, bool]:
    """Ensure a config file exists, writing a starter file if needed.

    Args:
        target: Explicit path to create.  If ``None``, uses
            ``resolve_config_path()``.
        output_dir: Mirror directory written into the starter file.

    Returns:
        ``(path, created)`` -- *created* is ``False`` when a config file
        already existed and was left untouched.
    """
    if target is None:
        existing = discover_config_files()
        if existing:
            logger.debug("Config file already exists: %s", existing[0])
            return existing[0], False
        target = resolve_config_path()
    elif target.exists():
        return target, False

    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(starter_config(output_dir), encoding="utf-8")
    logger.info("Created starter config: %s", target)
    return target, True


# ---------------------------------------------------------------------------
# 4. Hierarchical merge
# ---------------------------------------------------------------------------


def _read_config_dict(path: Path) -> dict[str, Any]:
    logger.debug("Loading config: %s", path)
    try:
        data = load_yaml_file(path)
    except Exception:
        logger.exception("Failed to load config file %s", path)
        raise

    if data is None:
        return {}
    if not isinstance(data, dict):
        logger.warning(
            "Config file %s has non-dict root (%s) -- skipping",
            path,
            type(data).__name__,
        )
        return {}
    return data


def load_hierarchical_config(
    config_path: Path | None = None,
) -> dict[str, Any]:
    """Load and merge config files into one raw dict.

    With an explicit *config_path* only that file is read.  Otherwise all
    discovered files are merged from lowest precedence to highest; each
    file's top-level keys **replace** (not deep-merge) earlier ones.

    Env var interpolation is applied to all string values after merging.
    Returns an empty dict when no config files exist.
    """
    if config_path is not None:
        paths = [Path(config_path).expanduser()]
    else:
        paths = discover_config_files()

    if not paths:
        logger.debug("No config files found")
        return {}

    merged: dict[str, Any] = {}
    for path in reversed(paths):
        merged.update(_read_config_dict(path))

    return _interpolate_recursive(merged)  # type: ignore[no-any-return]
