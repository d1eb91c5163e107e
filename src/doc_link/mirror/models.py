"""Data contracts for the mirror reconciliation engine.

- ``RepoSpec``: one watched repository with its compiled patterns.
- ``ChangeKind`` / ``PendingChange``: a coalesced filesystem change.
- ``LinkOutcome``: result of ensuring one mirror link.
- ``PathError``: a per-path failure recorded without aborting the run.
- ``ScanResult``: summary of a full reconciliation scan.
- ``BatchResult``: summary of one flushed watcher batch.
- ``WatchMode``: whether a repository is watched live or scan-only.

Result models are frozen (immutable).  ``RepoSpec`` is replaced wholesale
when configuration changes and is never mutated in place.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from pydantic import BaseModel

from .matcher import Matcher


@dataclass(frozen=True)
class RepoSpec:
    """One watched repository.

    Attributes:
        name: Mirror subdirectory name, unique across all repositories.
        source_root: Absolute path of the repository.
        exclude_patterns: Raw gitignore-style exclude patterns.
        include_patterns: Raw glob include patterns.
        matcher: Patterns compiled once at construction.
    """

    name: str
    source_root: Path
    exclude_patterns: tuple[str, ...]
    include_patterns: tuple[str, ...]
    matcher: Matcher = field(compare=False, repr=False)

    @classmethod
    def build(
        cls,
        name: str,
        source_root: Path,
        exclude: list[str] | tuple[str, ...] = (),
        include: list[str] | tuple[str, ...] = (),
    ) -> RepoSpec:
        """Compile *exclude* / *include* and construct a ``RepoSpec``.

        Raises:
            PatternError: If a pattern is malformed.
        """
        exclude_t = tuple(exclude)
        include_t = tuple(include)
        return cls(
            name=name,
            source_root=Path(source_root),
            exclude_patterns=exclude_t,
            include_patterns=include_t,
            matcher=Matcher(exclude_t, include_t),
        )

    def should_mirror(self, rel_path: str) -> bool:
        return self.matcher.should_mirror(rel_path)

    def should_descend(self, rel_dir: str) -> bool:
        return self.matcher.should_descend(rel_dir)


class ChangeKind(str, Enum):
    """Kinds of filesystem change held in the debounce buffer."""

    CREATED = "created"
    MODIFIED = "modified"
    REMOVED = "removed"
    RENAMED_FROM = "renamed_from"
    RENAMED_TO = "renamed_to"

    @property
    def is_removal(self) -> bool:
        return self in (ChangeKind.REMOVED, ChangeKind.RENAMED_FROM)


class PendingChange(BaseModel):
    """A single change waiting in a repository's debounce buffer.

    Attributes:
        rel_path: Forward-slash path relative to the repository root.
        kind: What happened to the path.
        is_dir: True if the path is (or was) a directory.
    """

    rel_path: str
    kind: ChangeKind
    is_dir: bool = False

    model_config = {"frozen": True}


class LinkOutcome(str, Enum):
    """Result of ``Linker.ensure_link``."""

    CREATED = "created"
    REPLACED = "replaced"
    UNCHANGED = "unchanged"
    SOURCE_MISSING = "source_missing"


class WatchMode(str, Enum):
    """How a repository is being kept in sync."""

    LIVE = "live"
    SCAN_ONLY = "scan_only"


class PathError(BaseModel):
    """A failure for one relative path.

    Attributes:
        rel_path: Path relative to the repository root.
        error: Human-readable error message.
    """

    rel_path: str
    error: str

    model_config = {"frozen": True}


class ScanResult(BaseModel):
    """Summary of a full reconciliation scan of one repository.

    Attributes:
        repo: Repository (mirror) name.
        created: Links created or repointed.
        unchanged: Links that were already correct.
        skipped: Paths blocked by a real file or directory in the mirror.
        pruned: Stale links removed.
        errors: Per-path failures.
        duration_seconds: Wall-clock duration of the scan.
    """

    repo: str
    created: int = 0
    unchanged: int = 0
    skipped: int = 0
    pruned: int = 0
    errors: list[PathError] = []
    duration_seconds: float = 0.0

    model_config = {"frozen": True}

    @property
    def error_count(self) -> int:
        return len(self.errors)

    @property
    def mirrored(self) -> int:
        """Number of links present for matched files after the scan."""
        return self.created + self.unchanged

    @classmethod
    def merge(cls, results: list[ScanResult], repo: str = "*") -> ScanResult:
        """Aggregate several results into one (counts summed)."""
        return cls(
            repo=repo,
            created=sum(r.created for r in results),
            unchanged=sum(r.unchanged for r in results),
            skipped=sum(r.skipped for r in results),
            pruned=sum(r.pruned for r in results),
            errors=[e for r in results for e in r.errors],
            duration_seconds=sum(r.duration_seconds for r in results),
        )


class BatchResult(BaseModel):
    """Summary of one flushed watcher batch.

    Attributes:
        repo: Repository (mirror) name.
        size: Number of coalesced paths in the batch.
        linked: Links created or repointed.
        removed: Links removed.
        skipped: Paths blocked by a real file or directory in the mirror.
        errors: Per-path failures.
    """

    repo: str
    size: int = 0
    linked: int = 0
    removed: int = 0
    skipped: int = 0
    errors: list[PathError] = []

    model_config = {"frozen": True}

    @property
    def changed(self) -> bool:
        return bool(self.linked or self.removed)
