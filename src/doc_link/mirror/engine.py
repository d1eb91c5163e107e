"""Mirror engine orchestrating scans, watchers and reconfiguration.

The ``MirrorEngine`` owns the per-repository state (spec, watcher, mode).
It:

1. Runs an initial ``full_scan`` for every repository.
2. Starts one ``RepoWatcher`` per repository; a repository whose watch
   cannot be established degrades to scan-only.
3. Applies configuration reloads as a set difference by repository name.
4. Runs periodic rescans and watcher health checks from its control loop.
5. Stops and joins every watcher on shutdown, leaving the mirror intact.

Every public mutation takes the engine's control lock, so two reloads (or a
reload and a rescan) can never interleave on the same repository.  Signal
handlers and the config file watcher only raise flags; the control loop
applies them.
"""

from __future__ import annotations

import logging
import signal
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

import yaml
from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .linker import Linker
from .models import RepoSpec, ScanResult, WatchMode
from .scanner import full_scan
from .watcher import (
    RepoWatcher,
    WatchBackend,
    WatchdogBackend,
    WatchError,
    WatchLimitError,
)

if TYPE_CHECKING:
    from doc_link.config import Config

logger = logging.getLogger(__name__)

AUTO_RESCAN_FLOOR = 60.0
AUTO_RESCAN_FACTOR = 1000


@dataclass
class RepoState:
    """Engine-side state for one configured repository."""

    spec: RepoSpec
    watcher: RepoWatcher | None = None
    mode: WatchMode = WatchMode.SCAN_ONLY
    last_scan: ScanResult | None = None


# ---------------------------------------------------------------------------
# Config file watcher
# ---------------------------------------------------------------------------


class _ConfigChangeHandler(FileSystemEventHandler):
    def __init__(self, filename: str, changed: threading.Event) -> None:
        super().__init__()
        self._filename = filename
        self._changed = changed

    def _check(self, raw_path) -> None:
        if Path(str(raw_path)).name == self._filename:
            self._changed.set()

    def on_created(self, event: FileSystemEvent) -> None:
        self._check(event.src_path)

    def on_modified(self, event: FileSystemEvent) -> None:
        self._check(event.src_path)

    def on_moved(self, event: FileSystemEvent) -> None:
        self._check(event.dest_path)


class ConfigFileWatcher:
    """Flag changes to the configuration file.

    Watches the file's parent directory (non-recursively) so editors that
    save by deleting and re-creating the file are still noticed.
    """

    def __init__(self, config_path: Path) -> None:
        self.config_path = Path(config_path)
        self._changed = threading.Event()
        self._observer: Observer | None = None

    def start(self) -> None:
        observer = Observer()
        observer.schedule(
            _ConfigChangeHandler(self.config_path.name, self._changed),
            str(self.config_path.parent),
            recursive=False,
        )
        observer.start()
        self._observer = observer

    def stop(self) -> None:
        observer, self._observer = self._observer, None
        if observer is not None:
            observer.stop()
            observer.join(timeout=5.0)

    def has_changed(self) -> bool:
        """Return ``True`` once per burst of changes (the flag is cleared)."""
        if self._changed.is_set():
            self._changed.clear()
            return True
        return False


def _load_config_file(config_path: Path | None) -> Config:
    # Import here to avoid circular imports (config imports mirror models)
    from doc_link.config import load_config

    return load_config(config_path=config_path)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class MirrorEngine:
    """Keep the mirror in sync for every configured repository.

    Args:
        config: Resolved runtime configuration.
        backend_factory: Builds one ``WatchBackend`` per repository watcher.
        config_loader: Re-reads configuration for reloads; defaults to
            loading ``config.config_path``.
    """

    def __init__(
        self,
        config: Config,
        backend_factory: Callable[[], WatchBackend] = WatchdogBackend,
        config_loader: Callable[[], Config] | None = None,
    ) -> None:
        self.config = config
        self._backend_factory = backend_factory
        self._config_loader = config_loader or (
            lambda: _load_config_file(self.config.config_path)
        )
        self._repos: dict[str, RepoState] = {}
        self._lock = threading.RLock()
        self._stop_requested = threading.Event()
        self._reload_requested = threading.Event()
        self._config_watcher: ConfigFileWatcher | None = None
        self._last_scan_at = time.monotonic()
        self._last_scan_duration = 0.0
        self.running = False

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def repos(self) -> dict[str, RepoState]:
        with self._lock:
            return dict(self._repos)

    def mode(self, name: str) -> WatchMode:
        with self._lock:
            return self._repos[name].mode

    def rescan_interval(self) -> float | None:
        """Seconds between periodic rescans, ``None`` when disabled."""
        value = self.config.rescan_interval
        if value == "never":
            return None
        if value == "auto":
            return max(
                AUTO_RESCAN_FLOOR,
                self._last_scan_duration * AUTO_RESCAN_FACTOR,
            )
        return float(value)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> list[ScanResult]:
        """Scan every repository, then start its watcher.

        Returns:
            One ``ScanResult`` per repository.
        """
        with self._lock:
            logger.info(
                "Starting doc-link engine: %d repos -> %s",
                len(self.config.repos),
                self.config.output_dir,
            )
            self.config.output_dir.mkdir(parents=True, exist_ok=True)
            started = time.monotonic()
            results = [self._add_repo(spec) for spec in self.config.repos]
            self._record_scan(started)
            self.running = True

            live = sum(
                1 for s in self._repos.values() if s.mode is WatchMode.LIVE
            )
            logger.info(
                "Watching %d of %d repos, %d files mirrored",
                live,
                len(self._repos),
                sum(r.mirrored for r in results),
            )
            return results

    def stop(self) -> None:
        """Stop and join every watcher.  The mirror is left as it is."""
        with self._lock:
            logger.info("Stopping doc-link engine")
            for state in self._repos.values():
                self._stop_watcher(state)
            if self._config_watcher is not None:
                self._config_watcher.stop()
                self._config_watcher = None
            self.running = False
            logger.info("Engine stopped")

    def reload(self, new_config: Config) -> None:
        """Apply a new configuration by set difference on repository names.

        * Removed repos: watcher stopped, mirror subtree torn down.
        * Added repos: scanned, then watched.
        * Changed repos (source root or patterns): watcher stopped, scanned
          under the new spec, watcher restarted.
        * A changed debounce delay restarts every watcher the same way.
        * A changed output directory tears down the old mirror and builds
          the new one from scratch.
        """
        with self._lock:
            old_config = self.config

            if new_config.output_dir != old_config.output_dir:
                logger.info(
                    "Output directory changed: %s -> %s",
                    old_config.output_dir,
                    new_config.output_dir,
                )
                for name in list(self._repos):
                    self._remove_repo(name, old_config.output_dir)
                self.config = new_config
                new_config.output_dir.mkdir(parents=True, exist_ok=True)
                for spec in new_config.repos:
                    self._add_repo(spec)
                return

            new_specs = {spec.name: spec for spec in new_config.repos}
            removed = [n for n in self._repos if n not in new_specs]
            added = [n for n in new_specs if n not in self._repos]
            debounce_changed = (
                new_config.debounce_seconds != old_config.debounce_seconds
            )
            changed = [
                n
                for n, spec in new_specs.items()
                if n in self._repos
                and (debounce_changed or self._repos[n].spec != spec)
            ]

            self.config = new_config

            for name in removed:
                self._remove_repo(name, old_config.output_dir)

            for name in changed:
                state = self._repos[name]
                self._stop_watcher(state)
                state.spec = new_specs[name]
                state.last_scan = full_scan(state.spec, new_config.output_dir)
                self._start_watcher(state)

            for name in added:
                self._add_repo(new_specs[name])

            # Unchanged scan-only repos get another chance at live watching.
            for name, state in self._repos.items():
                if name in changed or name in added:
                    continue
                if state.mode is WatchMode.SCAN_ONLY:
                    self._start_watcher(state)

            logger.info(
                "Config reloaded: %d added, %d removed, %d changed",
                len(added),
                len(removed),
                len(changed),
            )

    def rescan(self, name: str | None = None) -> list[ScanResult]:
        """Run a full scan of one repository (or all of them).

        A live watcher is stopped for the duration of the scan and then
        restarted, so scan and watcher flushes never run concurrently.

        Raises:
            KeyError: *name* is not a configured repository.
        """
        with self._lock:
            if name is not None:
                if name not in self._repos:
                    raise KeyError(f"Unknown repo: {name}")
                targets = [self._repos[name]]
            else:
                targets = list(self._repos.values())

            started = time.monotonic()
            results = []
            for state in targets:
                was_live = state.watcher is not None
                self._stop_watcher(state)
                state.last_scan = full_scan(state.spec, self.config.output_dir)
                results.append(state.last_scan)
                if was_live:
                    self._start_watcher(state)

            if name is None:
                self._record_scan(started)
            return results

    def check_watchers(self) -> list[str]:
        """Demote repositories whose watcher died to scan-only.

        Returns:
            Names of the repositories that were demoted.
        """
        failed: list[str] = []
        with self._lock:
            for name, state in self._repos.items():
                if state.watcher is None or state.watcher.is_alive():
                    continue
                logger.error(
                    "[%s] Watcher stopped unexpectedly; falling back to "
                    "periodic rescans",
                    name,
                )
                self._stop_watcher(state)
                failed.append(name)
        return failed

    # ------------------------------------------------------------------
    # Control loop
    # ------------------------------------------------------------------

    def request_stop(self) -> None:
        self._stop_requested.set()

    def request_reload(self) -> None:
        self._reload_requested.set()

    def reload_from_source(self) -> bool:
        """Re-read configuration and apply it.

        A configuration that fails to load or validate is logged and the
        current configuration stays in effect.
        """
        try:
            new_config = self._config_loader()
        except (ValueError, OSError, yaml.YAMLError) as exc:
            logger.error(
                "Config reload failed, keeping current config: %s", exc
            )
            return False
        self.reload(new_config)
        return True

    def tick(self, now: float | None = None) -> None:
        """Run one iteration of the control loop.

        Each step is isolated: a failed step is logged and the others
        still run.
        """
        now = time.monotonic() if now is None else now

        if self._reload_requested.is_set():
            self._reload_requested.clear()
            logger.info("Reload requested")
            self._run_step("Reload", self.reload_from_source)

        if (
            self._config_watcher is not None
            and self._config_watcher.has_changed()
        ):
            logger.info("Config file changed, reloading")
            self._run_step("Reload", self.reload_from_source)

        interval = self.rescan_interval()
        if interval is not None and now - self._last_scan_at >= interval:
            logger.info("Periodic rescan")
            self._run_step("Periodic rescan", self.rescan)

        self._run_step("Watcher health check", self.check_watchers)

    def run_forever(self, tick_seconds: float = 1.0) -> None:
        """Start the engine and block until SIGINT or SIGTERM.

        SIGHUP and edits to the config file trigger a reload.
        """
        previous = self._install_signal_handlers()
        try:
            self.start()
            self._start_config_watcher()
            while not self._stop_requested.wait(tick_seconds):
                self.tick()
        finally:
            self.stop()
            self._restore_signal_handlers(previous)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _run_step(label: str, step: Callable[[], object]) -> None:
        try:
            step()
        except Exception:
            logger.exception("%s failed; will retry on the next tick", label)

    def _record_scan(self, started: float) -> None:
        self._last_scan_at = time.monotonic()
        self._last_scan_duration = self._last_scan_at - started

    def _add_repo(self, spec: RepoSpec) -> ScanResult:
        result = full_scan(spec, self.config.output_dir)
        state = RepoState(spec=spec, last_scan=result)
        self._repos[spec.name] = state
        self._start_watcher(state)
        return result

    def _remove_repo(self, name: str, output_dir: Path) -> None:
        state = self._repos.pop(name)
        self._stop_watcher(state)
        removed = Linker(output_dir, state.spec).remove_tree()
        logger.info("Removed repo %s (%d links)", name, removed)

    def _start_watcher(self, state: RepoState) -> None:
        spec = state.spec
        if not spec.source_root.is_dir():
            logger.warning(
                "[%s] Repo path does not exist, not watching: %s",
                spec.name,
                spec.source_root,
            )
            state.mode = WatchMode.SCAN_ONLY
            return

        try:
            watcher = RepoWatcher(
                spec,
                Linker(self.config.output_dir, spec),
                self.config.debounce_seconds,
                backend=self._backend_factory(),
            )
            watcher.start()
        except WatchLimitError as exc:
            logger.error(
                "[%s] %s; running scan-only.\n%s",
                spec.name,
                exc,
                exc.guidance(),
            )
            state.mode = WatchMode.SCAN_ONLY
            return
        except WatchError as exc:
            logger.error("[%s] %s; running scan-only", spec.name, exc)
            state.mode = WatchMode.SCAN_ONLY
            return
        except Exception:
            logger.exception(
                "[%s] Failed to start watcher; running scan-only", spec.name
            )
            state.mode = WatchMode.SCAN_ONLY
            return

        state.watcher = watcher
        state.mode = WatchMode.LIVE

    @staticmethod
    def _stop_watcher(state: RepoState) -> None:
        watcher, state.watcher = state.watcher, None
        state.mode = WatchMode.SCAN_ONLY
        if watcher is not None:
            watcher.stop()

    def _start_config_watcher(self) -> None:
        path = self.config.config_path
        if path is None:
            return
        watcher = ConfigFileWatcher(path)
        try:
            watcher.start()
        except OSError as exc:
            logger.warning("Failed to watch config file %s: %s", path, exc)
            return
        self._config_watcher = watcher
        logger.debug("Watching config file %s", path)

    def _install_signal_handlers(self) -> dict[int, object]:
        if threading.current_thread() is not threading.main_thread():
            return {}

        def _on_stop(signum, _frame) -> None:
            logger.info("Received %s, shutting down", signal.Signals(signum).name)
            self.request_stop()

        def _on_reload(_signum, _frame) -> None:
            logger.info("Received SIGHUP, reloading config")
            self.request_reload()

        handlers = {signal.SIGINT: _on_stop, signal.SIGTERM: _on_stop}
        if hasattr(signal, "SIGHUP"):
            handlers[signal.SIGHUP] = _on_reload

        previous = {}
        for signum, handler in handlers.items():
            previous[signum] = signal.signal(signum, handler)
        return previous

    @staticmethod
    def _restore_signal_handlers(previous: dict[int, object]) -> None:
        for signum, handler in previous.items():
            signal.signal(signum, handler)
