"""Pattern matcher deciding which repository paths belong in the mirror.

Resolution for a relative path:

1. **Exclude check** -- gitignore semantics.  If the path, or any directory
   above it, is excluded the path is never mirrored.  Excluded directories
   are never descended into.
2. **Include check** -- glob semantics, matched against the file itself.  A
   pattern without ``/`` matches the file name at any depth, a pattern
   containing ``/`` is anchored to the repository root and ``**/`` spans
   zero or more directories.  A directory name never makes the files inside
   it match (``TODO`` selects a file called TODO, not ``src/TODO/impl.py``).
3. **No match** -- the path is not mirrored.

Exclusion always wins: a ``README.md`` inside ``node_modules/`` stays out of
the mirror even though ``*.md`` is included.

Patterns are compiled once per repository and the matcher never touches the
filesystem, so a single instance is safe to share between threads.
"""

from __future__ import annotations

import fnmatch
import re
from collections.abc import Iterable, Iterator
from pathlib import PurePosixPath

from pathspec import GitIgnoreSpec


class PatternError(ValueError):
    """Raised when an exclude or include pattern cannot be compiled."""


def normalize_rel_path(rel_path: str) -> str:
    """Normalise a repository-relative path for matching.

    Backslashes become forward slashes, a leading ``./`` is stripped and the
    repository root itself (``"."``) becomes the empty string.
    """
    normalized = rel_path.replace("\\", "/")
    while normalized.startswith("./"):
        normalized = normalized[2:]
    normalized = normalized.strip("/")
    if normalized == ".":
        return ""
    return normalized


def _compile_excludes(patterns: list[str]) -> GitIgnoreSpec:
    try:
        return GitIgnoreSpec.from_lines(patterns)
    except (ValueError, TypeError) as exc:
        raise PatternError(f"Invalid exclude pattern: {exc}") from exc


def _expand_globstar(pattern: str) -> Iterator[str]:
    """Yield *pattern* with every ``**/`` segment both kept and dropped."""
    head, sep, tail = pattern.partition("**/")
    if not sep:
        yield pattern
        return
    for rest in _expand_globstar(tail):
        yield head + sep + rest
        yield head + rest


def _join(globs: list[str]) -> re.Pattern | None:
    if not globs:
        return None
    return re.compile("|".join(fnmatch.translate(g) for g in globs))


class _IncludeGlobs:
    """Include globs matched against a whole file path."""

    def __init__(self, patterns: list[str]) -> None:
        name_globs: list[str] = []
        path_globs: list[str] = []
        for pattern in patterns:
            if not isinstance(pattern, str):
                raise PatternError(f"Invalid include pattern: {pattern!r}")
            if "/" not in pattern:
                name_globs.append(pattern)
            else:
                path_globs.extend(_expand_globstar(pattern.lstrip("/")))
        try:
            self._names = _join(name_globs)
            self._paths = _join(path_globs)
        except re.error as exc:
            raise PatternError(f"Invalid include pattern: {exc}") from exc

    def match_file(self, rel_path: str) -> bool:
        if self._names is not None:
            if self._names.match(PurePosixPath(rel_path).name):
                return True
        if self._paths is not None:
            return self._paths.match(rel_path) is not None
        return False


class Matcher:
    """Compiled exclude/include pattern sets for one repository.

    Args:
        exclude: gitignore-style patterns.  Trailing ``/`` restricts a
            pattern to directories, ``!`` re-includes a path excluded by an
            earlier pattern.
        include: glob patterns selecting documentation files.

    Raises:
        PatternError: If any pattern is malformed.
    """

    def __init__(
        self, exclude: Iterable[str], include: Iterable[str]
    ) -> None:
        self.exclude_patterns: tuple[str, ...] = tuple(exclude)
        self.include_patterns: tuple[str, ...] = tuple(include)
        self._exclude = _compile_excludes(list(self.exclude_patterns))
        self._include = _IncludeGlobs(list(self.include_patterns))

    def __repr__(self) -> str:
        return (
            f"Matcher(exclude={list(self.exclude_patterns)!r}, "
            f"include={list(self.include_patterns)!r})"
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def should_mirror(self, rel_path: str) -> bool:
        """Return ``True`` if the file at *rel_path* belongs in the mirror."""
        normalized = normalize_rel_path(rel_path)
        if not normalized:
            return False

        if self.is_within_excluded_dir(normalized):
            return False

        if self._exclude.match_file(normalized):
            return False

        return self._include.match_file(normalized)

    def should_descend(self, rel_dir: str) -> bool:
        """Return ``False`` if the directory *rel_dir* is excluded."""
        normalized = normalize_rel_path(rel_dir)
        if not normalized:
            return True
        return not self.is_excluded_dir(normalized)

    def is_excluded_dir(self, rel_dir: str) -> bool:
        # Directory queries carry a trailing slash so that dir-only
        # patterns (``build/``) apply to them and not to plain files.
        return self._exclude.match_file(rel_dir + "/")

    def is_within_excluded_dir(self, rel_path: str) -> bool:
        """Return ``True`` if any directory above *rel_path* is excluded."""
        normalized = normalize_rel_path(rel_path)
        for parent in PurePosixPath(normalized).parents:
            parent_str = str(parent)
            if parent_str != "." and self.is_excluded_dir(parent_str):
                return True
        return False
