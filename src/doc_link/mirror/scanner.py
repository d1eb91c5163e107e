"""Full-tree reconciliation scans.

A full scan walks a repository top-down, skips excluded directories before
listing them, links every matching file and finally prunes stale links.  It
is safe to run at any time and always converges the mirror to exactly the
set of currently matching files, whatever state the mirror was left in.

Error handling is per-path: a single failure is recorded in the result and
the scan carries on.
"""

from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from .linker import Linker, LinkerError, PathOccupiedError
from .models import LinkOutcome, PathError, RepoSpec, ScanResult

if TYPE_CHECKING:
    from doc_link.config import Config

logger = logging.getLogger(__name__)


@dataclass
class _Tally:
    created: int = 0
    unchanged: int = 0
    skipped: int = 0
    pruned: int = 0
    errors: list[PathError] = field(default_factory=list)

    def to_result(self, repo: str, duration: float) -> ScanResult:
        return ScanResult(
            repo=repo,
            created=self.created,
            unchanged=self.unchanged,
            skipped=self.skipped,
            pruned=self.pruned,
            errors=self.errors,
            duration_seconds=duration,
        )


def _rel(root: Path, path: str) -> str:
    return Path(path).relative_to(root).as_posix()


def _link_tree(
    repo: RepoSpec, linker: Linker, start: Path, tally: _Tally
) -> None:
    """Walk *start* (inside the repo) and link every matching file."""
    root = repo.source_root

    def _on_walk_error(exc: OSError) -> None:
        filename = exc.filename or str(start)
        try:
            rel = _rel(root, filename)
        except ValueError:
            rel = str(filename)
        logger.error("[%s] Cannot read %s: %s", repo.name, filename, exc)
        tally.errors.append(PathError(rel_path=rel, error=str(exc)))

    for dirpath, dirnames, filenames in os.walk(
        start, topdown=True, onerror=_on_walk_error, followlinks=False
    ):
        rel_dir = _rel(root, dirpath)
        rel_dir = "" if rel_dir == "." else rel_dir

        # Prune in place so excluded subtrees are never listed.
        kept = []
        for name in sorted(dirnames):
            child = f"{rel_dir}/{name}" if rel_dir else name
            if os.path.islink(os.path.join(dirpath, name)):
                continue
            if repo.should_descend(child):
                kept.append(name)
        dirnames[:] = kept

        for name in sorted(filenames):
            rel_path = f"{rel_dir}/{name}" if rel_dir else name
            if os.path.islink(os.path.join(dirpath, name)):
                continue
            if not repo.should_mirror(rel_path):
                continue
            _link_one(repo, linker, rel_path, tally)


def _link_one(
    repo: RepoSpec, linker: Linker, rel_path: str, tally: _Tally
) -> None:
    try:
        outcome = linker.ensure_link(rel_path)
    except PathOccupiedError as exc:
        logger.warning("[%s] Skipping %s: %s", repo.name, rel_path, exc)
        tally.skipped += 1
        return
    except (LinkerError, OSError) as exc:
        logger.error(
            "[%s] Failed to link %s: %s", repo.name, rel_path, exc
        )
        tally.errors.append(PathError(rel_path=rel_path, error=str(exc)))
        return

    if outcome in (LinkOutcome.CREATED, LinkOutcome.REPLACED):
        tally.created += 1
    elif outcome == LinkOutcome.UNCHANGED:
        tally.unchanged += 1


def full_scan(repo: RepoSpec, output_dir: Path) -> ScanResult:
    """Reconcile the mirror of *repo* against its source tree.

    Args:
        repo: The repository to scan.
        output_dir: Root of the mirror tree.

    Returns:
        A ``ScanResult`` with created/unchanged/skipped/pruned counts and
        per-path errors.  A missing source root yields an empty result and
        leaves the mirror untouched.
    """
    started = time.monotonic()
    tally = _Tally()

    if not repo.source_root.is_dir():
        logger.warning(
            "[%s] Repo path does not exist, skipping: %s",
            repo.name,
            repo.source_root,
        )
        return tally.to_result(repo.name, time.monotonic() - started)

    linker = Linker(output_dir, repo)
    _link_tree(repo, linker, repo.source_root, tally)

    try:
        tally.pruned = linker.prune_stale()
    except OSError as exc:
        logger.error(
            "[%s] Failed to prune stale links: %s", repo.name, exc
        )
        tally.errors.append(PathError(rel_path="", error=str(exc)))

    result = tally.to_result(repo.name, time.monotonic() - started)
    logger.info(
        "Scan complete for %s: %d created, %d existed, %d skipped, "
        "%d pruned, %d errors in %.2fs",
        repo.name,
        result.created,
        result.unchanged,
        result.skipped,
        result.pruned,
        result.error_count,
        result.duration_seconds,
    )
    return result


def scan_subtree(repo: RepoSpec, linker: Linker, rel_dir: str) -> ScanResult:
    """Link every matching file below one source directory.

    Used for directories that appear while watching (created or renamed
    into place).  Does not prune; removals arrive as their own events.
    """
    started = time.monotonic()
    tally = _Tally()
    start = repo.source_root / rel_dir
    if (
        start.is_dir()
        and not start.is_symlink()
        and repo.should_descend(rel_dir)
        and not repo.matcher.is_within_excluded_dir(rel_dir)
    ):
        _link_tree(repo, linker, start, tally)
    return tally.to_result(repo.name, time.monotonic() - started)


def scan_all(config: Config) -> list[ScanResult]:
    """Run ``full_scan`` over every configured repository."""
    return [full_scan(repo, config.output_dir) for repo in config.repos]
