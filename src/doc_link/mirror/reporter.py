"""Scan report formatting functions.

Provides human-readable and machine-readable output for one-shot scans:

- ``format_scan_report`` -- per-repo summary plus totals.
- ``format_repo_listing`` -- configured repos and their patterns.
- ``report_to_json`` -- structured dict for ``doc-link scan --json``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from .models import ScanResult

if TYPE_CHECKING:
    from .models import RepoSpec

# ------------------------------------------------------------------
# Human-readable report
# ------------------------------------------------------------------


def format_scan_report(results: list[ScanResult]) -> str:
    """Format the results of a scan as human-readable text.

    One line per repository, a totals line when more than one repository
    was scanned, and an ``Errors:`` section only when errors occurred.

    Args:
        results: One ``ScanResult`` per repository.

    Returns:
        Multi-line formatted string.
    """
    if not results:
        return "No repos configured."

    lines: list[str] = []
    width = max(len(r.repo) for r in results)

    for r in results:
        lines.append(
            f"{r.repo:<{width}}  {r.created} created, {r.unchanged} existed, "
            f"{r.pruned} pruned, {r.skipped} skipped, "
            f"{r.error_count} errors ({r.duration_seconds:.2f}s)"
        )

    if len(results) > 1:
        total = ScanResult.merge(results)
        lines.append("")
        lines.append(
            f"Total: {total.mirrored} files mirrored across "
            f"{len(results)} repos, {total.created} created, "
            f"{total.pruned} pruned, {total.error_count} errors"
        )

    errored = [r for r in results if r.errors]
    if errored:
        lines.append("")
        lines.append("Errors:")
        for r in errored:
            for err in r.errors:
                path = err.rel_path or "."
                lines.append(f"  [{r.repo}] {path}: {err.error}")

    return "\n".join(lines)


def format_repo_listing(repos: list[RepoSpec]) -> str:
    """Describe configured repositories for ``doc-link check``."""
    if not repos:
        return "No repos configured."

    lines: list[str] = []
    for repo in repos:
        lines.append(f"{repo.name}: {repo.source_root}")
        lines.append(f"  include: {', '.join(repo.include_patterns)}")
        lines.append(f"  exclude: {len(repo.exclude_patterns)} patterns")
    return "\n".join(lines)


# ------------------------------------------------------------------
# JSON output
# ------------------------------------------------------------------


def report_to_json(results: list[ScanResult]) -> dict:
    """Convert scan results to a structured dict for JSON serialisation.

    Args:
        results: One ``ScanResult`` per repository.

    Returns:
        Dict with totals and per-repo counts and errors.
    """
    total = ScanResult.merge(results)
    return {
        "counts": {
            "repos": len(results),
            "created": total.created,
            "unchanged": total.unchanged,
            "pruned": total.pruned,
            "skipped": total.skipped,
            "errors": total.error_count,
        },
        "repos": [
            {
                "repo": r.repo,
                "created": r.created,
                "unchanged": r.unchanged,
                "pruned": r.pruned,
                "skipped": r.skipped,
                "duration_seconds": round(r.duration_seconds, 3),
                "errors": [e.model_dump() for e in r.errors],
            }
            for r in results
        ],
    }
