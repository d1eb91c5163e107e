"""Symlink mirror reconciliation engine.

Keeps ``<output_dir>/<repo_name>/<rel_path>`` symlinks in sync with the
documentation files of one or more source repositories.

Architecture
------------
The mirror tree on disk is the only record of what has been linked.  A full
scan converges it to exactly the set of currently matching files, whatever
state it was left in; live watching applies debounced incremental updates
between scans.

Modules:

- ``models``   -- ``RepoSpec``, ``PendingChange``, ``ScanResult``,
  ``BatchResult`` and friends: core data contracts.
- ``matcher``  -- ``Matcher``: compiled exclude/include pattern sets.
- ``linker``   -- ``Linker``: mirror-side symlink lifecycle.
- ``scanner``  -- ``full_scan``: full-tree reconciliation.
- ``watcher``  -- ``Debouncer``, ``RepoWatcher``, ``apply_batch``: live
  watching with quiet-period debouncing.
- ``engine``   -- ``MirrorEngine``: start/reload/rescan/stop lifecycle.
- ``reporter`` -- Human-readable and JSON scan summaries.

Usage example
-------------
::

    from pathlib import Path
    from doc_link.mirror import RepoSpec, full_scan, format_scan_report

    repo = RepoSpec.build(
        "project",
        Path("~/code/project").expanduser(),
        exclude=["node_modules/"],
        include=["*.md"],
    )
    result = full_scan(repo, Path("~/doc-link").expanduser())
    print(format_scan_report([result]))
"""

from .engine import MirrorEngine
from .linker import Linker, LinkerError, NotALinkError, PathOccupiedError
from .matcher import Matcher, PatternError
from .models import (
    BatchResult,
    ChangeKind,
    LinkOutcome,
    PendingChange,
    RepoSpec,
    ScanResult,
    WatchMode,
)
from .reporter import format_scan_report, report_to_json
from .scanner import full_scan, scan_all
from .watcher import Debouncer, RepoWatcher, WatchLimitError, apply_batch

__all__ = [
    "BatchResult",
    "ChangeKind",
    "Debouncer",
    "LinkOutcome",
    "Linker",
    "LinkerError",
    "Matcher",
    "MirrorEngine",
    "NotALinkError",
    "PathOccupiedError",
    "PatternError",
    "PendingChange",
    "RepoSpec",
    "RepoWatcher",
    "ScanResult",
    "WatchLimitError",
    "WatchMode",
    "apply_batch",
    "format_scan_report",
    "full_scan",
    "report_to_json",
    "scan_all",
]
