"""Live filesystem watching with quiet-period debouncing.

Each repository gets a ``RepoWatcher``:

1. A ``WatchBackend`` delivers change notifications for descendant paths
   (``WatchdogBackend`` wraps the native OS mechanism via ``watchdog``).
2. Every notification is recorded in a ``Debouncer`` keyed by relative
   path -- later events for the same path overwrite earlier ones -- and
   pushes the flush deadline out by the configured delay.
3. Once no event has arrived for a full delay, one background worker drains
   the whole batch and hands it to ``apply_batch``, which reconciles each
   path through the ``Linker``.

The worker thread is the only code that flushes, so draining the pending map
and applying a batch never overlap for a repository.  Events that arrive
mid-flush land in the next batch.

The OS notification channel can drop events silently (for example when the
watch limit is exhausted); full scans are the reconciling backstop.
"""

from __future__ import annotations

import errno
import logging
import os
import sys
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable
from enum import Enum
from pathlib import Path

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .linker import Linker, LinkerError, NotALinkError, PathOccupiedError
from .matcher import normalize_rel_path
from .models import (
    BatchResult,
    ChangeKind,
    LinkOutcome,
    PathError,
    PendingChange,
    RepoSpec,
)
from .scanner import scan_subtree

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[PendingChange], None]

_LIMIT_ERRNOS = {errno.ENOSPC, errno.EMFILE, errno.ENFILE}


class WatchError(Exception):
    """Starting or running a filesystem watch failed."""


class WatchLimitError(WatchError):
    """The platform's notification limits are exhausted."""

    @staticmethod
    def guidance() -> str:
        if sys.platform.startswith("linux"):
            return (
                "inotify watch limit reached. Run:\n"
                "  echo fs.inotify.max_user_watches=524288 | "
                "sudo tee -a /etc/sysctl.conf\n"
                "  sudo sysctl -p"
            )
        return (
            "File watch limit reached. Raise the open file limit "
            "(e.g. 'ulimit -n 10240') and restart doc-link."
        )


# ---------------------------------------------------------------------------
# Debounce state machine
# ---------------------------------------------------------------------------


class DebounceState(str, Enum):
    IDLE = "idle"
    ACCUMULATING = "accumulating"


class Debouncer:
    """Coalescing buffer with a quiet-period deadline.

    ``Idle -> Accumulating`` on the first ``record``; every further
    ``record`` re-arms the deadline to ``now + delay``.  ``drain`` returns
    the batch and goes back to ``Idle``.

    Not synchronised; ``RepoWatcher`` guards it with its condition.

    Args:
        delay: Quiet period in seconds.
        clock: Monotonic time source, injectable for tests.
    """

    def __init__(
        self, delay: float, clock: Callable[[], float] = time.monotonic
    ) -> None:
        if delay < 0:
            raise ValueError(f"Debounce delay must be >= 0, got {delay}")
        self.delay = delay
        self._clock = clock
        self._pending: dict[str, PendingChange] = {}
        self._deadline: float | None = None
        self.state = DebounceState.IDLE

    def __len__(self) -> int:
        return len(self._pending)

    @property
    def deadline(self) -> float | None:
        return self._deadline

    @property
    def pending(self) -> dict[str, PendingChange]:
        return dict(self._pending)

    def record(self, change: PendingChange, now: float | None = None) -> None:
        """Record *change*, replacing any earlier change for the same path."""
        now = self._clock() if now is None else now
        self._pending[change.rel_path] = change
        self._deadline = now + self.delay
        self.state = DebounceState.ACCUMULATING

    def is_due(self, now: float | None = None) -> bool:
        if self.state is DebounceState.IDLE or self._deadline is None:
            return False
        now = self._clock() if now is None else now
        return now >= self._deadline

    def remaining(self, now: float | None = None) -> float | None:
        """Seconds until the deadline, ``None`` when idle."""
        if self._deadline is None:
            return None
        now = self._clock() if now is None else now
        return max(0.0, self._deadline - now)

    def drain(self) -> dict[str, PendingChange]:
        batch = self._pending
        self._pending = {}
        self._deadline = None
        self.state = DebounceState.IDLE
        return batch


# ---------------------------------------------------------------------------
# Notification backends
# ---------------------------------------------------------------------------


class WatchBackend(ABC):
    """Deliver change notifications for every path below a root."""

    @abstractmethod
    def start(self, root: Path, callback: ChangeCallback) -> None:
        """Begin watching *root*; call *callback* for each change.

        Raises:
            WatchLimitError: OS notification limits are exhausted.
            WatchError: The watch could not be established.
        """

    @abstractmethod
    def stop(self) -> None:
        """Stop delivering notifications and release OS resources."""

    @abstractmethod
    def is_alive(self) -> bool:
        """Return ``False`` once the backend can no longer deliver events."""


class _ChangeHandler(FileSystemEventHandler):
    """Translate watchdog events into ``PendingChange`` records."""

    def __init__(self, root: Path, callback: ChangeCallback) -> None:
        super().__init__()
        self._root = os.path.abspath(root)
        self._callback = callback

    def _emit(self, raw_path, kind: ChangeKind, is_dir: bool) -> None:
        path = os.fsdecode(raw_path)
        try:
            rel = os.path.relpath(path, self._root)
        except ValueError:
            return
        rel = normalize_rel_path(rel)
        if not rel or rel.startswith("../") or rel == "..":
            return
        self._callback(PendingChange(rel_path=rel, kind=kind, is_dir=is_dir))

    def on_created(self, event: FileSystemEvent) -> None:
        self._emit(event.src_path, ChangeKind.CREATED, event.is_directory)

    def on_modified(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        self._emit(event.src_path, ChangeKind.MODIFIED, False)

    def on_deleted(self, event: FileSystemEvent) -> None:
        self._emit(event.src_path, ChangeKind.REMOVED, event.is_directory)

    def on_moved(self, event: FileSystemEvent) -> None:
        self._emit(event.src_path, ChangeKind.RENAMED_FROM, event.is_directory)
        self._emit(event.dest_path, ChangeKind.RENAMED_TO, event.is_directory)


class WatchdogBackend(WatchBackend):
    """Native OS notifications (inotify, FSEvents, ReadDirectoryChangesW)."""

    def __init__(self, join_timeout: float = 10.0) -> None:
        self._observer: Observer | None = None
        self._join_timeout = join_timeout

    def start(self, root: Path, callback: ChangeCallback) -> None:
        observer = Observer()
        try:
            observer.schedule(
                _ChangeHandler(root, callback), str(root), recursive=True
            )
            observer.start()
        except OSError as exc:
            if exc.errno in _LIMIT_ERRNOS:
                raise WatchLimitError(
                    f"Cannot watch {root}: {exc}"
                ) from exc
            raise WatchError(f"Cannot watch {root}: {exc}") from exc
        self._observer = observer

    def stop(self) -> None:
        observer, self._observer = self._observer, None
        if observer is None:
            return
        observer.stop()
        if observer.is_alive():
            observer.join(timeout=self._join_timeout)

    def is_alive(self) -> bool:
        return self._observer is not None and self._observer.is_alive()


# ---------------------------------------------------------------------------
# Batch application
# ---------------------------------------------------------------------------


def _ordered(batch: Iterable[PendingChange]) -> list[PendingChange]:
    # Removals first so a re-created path is linked after its teardown.
    return sorted(batch, key=lambda c: (not c.kind.is_removal, c.rel_path))


def apply_batch(
    repo: RepoSpec, linker: Linker, batch: Iterable[PendingChange]
) -> BatchResult:
    """Reconcile the mirror for every path in a flushed batch.

    Args:
        repo: Repository the batch belongs to.
        linker: Linker for the repository's mirror subtree.
        batch: Coalesced changes, at most one per relative path.

    Returns:
        A ``BatchResult``.  Per-path failures are recorded and never stop
        the rest of the batch.
    """
    changes = _ordered(batch)
    linked = removed = skipped = 0
    errors: list[PathError] = []

    def _unlink(rel: str) -> None:
        nonlocal removed, skipped
        try:
            if linker.remove_link(rel):
                removed += 1
        except NotALinkError as exc:
            logger.warning("[%s] Skipping %s: %s", repo.name, rel, exc)
            skipped += 1

    def _link(rel: str) -> None:
        nonlocal linked, skipped
        try:
            outcome = linker.ensure_link(rel)
        except PathOccupiedError as exc:
            logger.warning("[%s] Skipping %s: %s", repo.name, rel, exc)
            skipped += 1
            return
        if outcome in (LinkOutcome.CREATED, LinkOutcome.REPLACED):
            linked += 1

    for change in changes:
        rel = change.rel_path
        source = repo.source_root / rel
        try:
            if change.kind.is_removal:
                if change.is_dir:
                    removed += linker.remove_tree(rel)
                else:
                    _unlink(rel)
                continue

            if source.is_dir() and not source.is_symlink():
                sub = scan_subtree(repo, linker, rel)
                linked += sub.created
                skipped += sub.skipped
                errors.extend(sub.errors)
            elif change.is_dir:
                removed += linker.remove_tree(rel)
            elif (
                repo.should_mirror(rel)
                and source.is_file()
                and not source.is_symlink()
            ):
                _link(rel)
            else:
                _unlink(rel)
        except (LinkerError, OSError) as exc:
            logger.error(
                "[%s] Error applying %s for %s: %s",
                repo.name,
                change.kind.value,
                rel,
                exc,
            )
            errors.append(PathError(rel_path=rel, error=str(exc)))

    result = BatchResult(
        repo=repo.name,
        size=len(changes),
        linked=linked,
        removed=removed,
        skipped=skipped,
        errors=errors,
    )
    level = logging.INFO if result.changed or errors else logging.DEBUG
    logger.log(
        level,
        "Batch flushed for %s: %d events, %d linked, %d removed, "
        "%d skipped, %d errors",
        repo.name,
        result.size,
        result.linked,
        result.removed,
        result.skipped,
        len(result.errors),
    )
    return result


# ---------------------------------------------------------------------------
# Per-repository watcher
# ---------------------------------------------------------------------------


class RepoWatcher:
    """Watch one repository and keep its mirror in sync incrementally.

    Args:
        repo: The repository to watch.
        linker: Linker bound to the repository's mirror subtree.
        delay: Debounce quiet period in seconds.
        backend: Notification backend; ``WatchdogBackend`` by default.
        clock: Monotonic time source for the debouncer.
        on_flush: Optional hook called with every ``BatchResult``.
    """

    def __init__(
        self,
        repo: RepoSpec,
        linker: Linker,
        delay: float,
        backend: WatchBackend | None = None,
        clock: Callable[[], float] = time.monotonic,
        on_flush: Callable[[BatchResult], None] | None = None,
    ) -> None:
        self.repo = repo
        self.linker = linker
        self.backend = backend or WatchdogBackend()
        self.on_flush = on_flush
        self._clock = clock
        self._debouncer = Debouncer(delay, clock)
        self._cond = threading.Condition()
        self._stopping = False
        self._worker: threading.Thread | None = None

    @property
    def delay(self) -> float:
        return self._debouncer.delay

    @property
    def state(self) -> DebounceState:
        with self._cond:
            return self._debouncer.state

    def start(self) -> None:
        """Start the flush worker and the notification backend.

        Raises:
            WatchError: The backend failed to start; the worker is stopped
                again before the error propagates.
        """
        self._worker = threading.Thread(
            target=self._run,
            name=f"doc-link-watch-{self.repo.name}",
            daemon=True,
        )
        self._worker.start()
        try:
            self.backend.start(self.repo.source_root, self.record)
        except BaseException:
            self._shutdown_worker()
            raise
        logger.debug(
            "Started watcher for %s (%s)", self.repo.name, self.repo.source_root
        )

    def record(self, change: PendingChange) -> None:
        """Queue *change* for the next batch and re-arm the quiet period."""
        with self._cond:
            self._debouncer.record(change)
            self._cond.notify()

    def stop(self, timeout: float | None = None) -> None:
        """Stop watching; pending changes are flushed before returning."""
        try:
            self.backend.stop()
        except Exception as exc:
            logger.warning(
                "Error stopping watch backend for %s: %s", self.repo.name, exc
            )
        self._shutdown_worker(timeout)
        logger.debug("Stopped watcher for %s", self.repo.name)

    def is_alive(self) -> bool:
        worker_alive = self._worker is not None and self._worker.is_alive()
        return worker_alive and self.backend.is_alive()

    def _shutdown_worker(self, timeout: float | None = None) -> None:
        with self._cond:
            self._stopping = True
            self._cond.notify_all()
        if self._worker is not None and self._worker is not threading.current_thread():
            self._worker.join(timeout)

    def _next_batch(self) -> tuple[dict[str, PendingChange], bool]:
        """Block until a batch is due or the watcher stops."""
        with self._cond:
            while True:
                if self._stopping:
                    return self._debouncer.drain(), True
                if self._debouncer.is_due():
                    return self._debouncer.drain(), False
                remaining = self._debouncer.remaining()
                if remaining is None:
                    self._cond.wait()
                else:
                    self._cond.wait(remaining)

    def _run(self) -> None:
        while True:
            batch, final = self._next_batch()
            if batch:
                self._flush(batch)
            if final:
                return

    def _flush(self, batch: dict[str, PendingChange]) -> None:
        try:
            result = apply_batch(self.repo, self.linker, batch.values())
        except Exception:
            logger.exception("Batch flush failed for %s", self.repo.name)
            return
        if self.on_flush is not None:
            try:
                self.on_flush(result)
            except Exception:
                logger.exception(
                    "Flush hook failed for %s", self.repo.name
                )
