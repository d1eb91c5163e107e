"""Mirror-side symlink lifecycle for one repository.

The ``Linker`` owns ``<output_dir>/<repo_name>/`` and is the only code that
creates or removes entries there.  Its rules:

* Every entry it creates is a symlink to ``<source_root>/<rel_path>``.
* Anything that is not a symlink is never removed or overwritten: a real
  file in the way raises ``PathOccupiedError``, an attempt to remove one
  raises ``NotALinkError``.
* Directories are created only to hold links and removed once empty.
* Nothing is ever written into the source repository.

There is no in-memory index of links; the mirror tree on disk is the only
record, so ``prune_stale`` can heal any drift (missed events, pattern
changes, restarts) by walking it.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterator
from pathlib import Path, PurePosixPath

from .matcher import normalize_rel_path
from .models import LinkOutcome, RepoSpec

logger = logging.getLogger(__name__)

_TMP_SUFFIX = ".doclink-tmp"


class LinkerError(Exception):
    """Base class for mirror link failures."""

    def __init__(self, message: str, path: Path | None = None) -> None:
        super().__init__(message)
        self.path = path


class PathOccupiedError(LinkerError):
    """A real file or directory occupies the location of a link."""


class NotALinkError(LinkerError):
    """Refused to remove a mirror entry that is not an owned symlink."""


class Linker:
    """Create, verify, replace and remove links for one repository.

    Args:
        output_dir: Root of the mirror tree shared by all repositories.
        repo: The repository whose subtree this linker manages.
    """

    def __init__(self, output_dir: Path, repo: RepoSpec) -> None:
        self.output_dir = Path(output_dir)
        self.repo = repo
        self.mirror_root = self.output_dir / repo.name

    def __repr__(self) -> str:
        return f"Linker(repo={self.repo.name!r}, mirror_root={str(self.mirror_root)!r})"

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    def _check_rel(self, rel_path: str) -> str:
        rel = normalize_rel_path(rel_path)
        if not rel:
            raise LinkerError(f"Empty relative path for {self.repo.name}")
        parts = PurePosixPath(rel).parts
        if rel.startswith("/") or ".." in parts:
            raise LinkerError(
                f"Path escapes repository {self.repo.name}: {rel_path}"
            )
        return rel

    def source_path(self, rel_path: str) -> Path:
        return self.repo.source_root / normalize_rel_path(rel_path)

    def mirror_path(self, rel_path: str) -> Path:
        return self.mirror_root / normalize_rel_path(rel_path)

    def _linked_parent(self, target: Path) -> Path | None:
        """Return the first mirror directory above *target* that is a symlink."""
        current = self.output_dir
        for part in target.parent.relative_to(self.output_dir).parts:
            current = current / part
            if current.is_symlink():
                return current
        return None

    # ------------------------------------------------------------------
    # Single-link operations
    # ------------------------------------------------------------------

    def ensure_link(self, rel_path: str) -> LinkOutcome:
        """Make ``mirror/<rel_path>`` a symlink to ``source/<rel_path>``.

        Idempotent: an existing correct link is left alone, a link pointing
        anywhere else is replaced atomically.

        Returns:
            The ``LinkOutcome``.  ``SOURCE_MISSING`` when the source file
            vanished before the link could be made.

        Raises:
            PathOccupiedError: A non-symlink occupies the link location or
                one of its parent directories.
            LinkerError: *rel_path* escapes the repository.
            OSError: Any other filesystem failure.
        """
        rel = self._check_rel(rel_path)
        source = self.source_path(rel)
        target = self.mirror_path(rel)

        if not source.is_file():
            logger.debug(
                "[%s] Source vanished, not linking: %s", self.repo.name, rel
            )
            return LinkOutcome.SOURCE_MISSING

        self._make_parents(target)

        if target.is_symlink():
            if self._points_to(target, source):
                return LinkOutcome.UNCHANGED
            self._replace_link(target, source)
            logger.debug(
                "[%s] Replaced link: %s -> %s", self.repo.name, target, source
            )
            return LinkOutcome.REPLACED

        if os.path.lexists(target):
            raise PathOccupiedError(
                f"Real file exists at {target}, not linking {rel}",
                path=target,
            )

        os.symlink(source, target)
        logger.debug(
            "[%s] Created link: %s -> %s", self.repo.name, target, source
        )
        return LinkOutcome.CREATED

    def remove_link(self, rel_path: str) -> bool:
        """Remove the link at ``mirror/<rel_path>`` and any emptied parents.

        Returns:
            ``True`` if a link was removed, ``False`` if nothing was there.

        Raises:
            NotALinkError: The entry is a real file or directory, or sits
                below a linked directory.
        """
        rel = self._check_rel(rel_path)
        target = self.mirror_path(rel)

        linked_parent = self._linked_parent(target)
        if linked_parent is not None:
            raise NotALinkError(
                f"Refusing to remove {target}: parent {linked_parent} is a symlink",
                path=target,
            )

        if not target.is_symlink():
            if os.path.lexists(target):
                raise NotALinkError(
                    f"Refusing to remove {target}: not a symlink",
                    path=target,
                )
            return False

        target.unlink()
        logger.debug("[%s] Removed link: %s", self.repo.name, target)
        self._prune_empty_parents(target.parent)
        return True

    # ------------------------------------------------------------------
    # Tree operations
    # ------------------------------------------------------------------

    def iter_links(self, rel_dir: str = "") -> Iterator[str]:
        """Yield the relative paths of all links under *rel_dir*.

        Links to directories are reported but never descended into.
        """
        root = self.mirror_path(rel_dir) if rel_dir else self.mirror_root
        if root.is_symlink():
            yield root.relative_to(self.mirror_root).as_posix()
            return
        if not root.is_dir():
            return

        for dirpath, dirnames, filenames in os.walk(root):
            for name in dirnames + filenames:
                path = Path(dirpath) / name
                if path.is_symlink():
                    yield path.relative_to(self.mirror_root).as_posix()

    def prune_stale(self) -> int:
        """Remove every link that no longer matches a mirrored source file.

        A link is stale when its relative path no longer satisfies the
        repository's patterns, its source file is gone, or it resolves to
        anything other than ``source/<rel_path>`` (including paths outside
        the source root).  Afterwards every empty directory below the mirror
        root is removed, including ones a user created by hand; the mirror
        root itself is kept.

        Returns:
            Number of links removed.
        """
        if self.mirror_root.is_symlink() or not self.mirror_root.is_dir():
            return 0

        stale = [rel for rel in self.iter_links() if self._is_stale(rel)]

        pruned = 0
        for rel in stale:
            try:
                if self.remove_link(rel):
                    pruned += 1
            except (LinkerError, OSError) as exc:
                logger.error(
                    "[%s] Failed to prune stale link %s: %s",
                    self.repo.name,
                    rel,
                    exc,
                )

        self._remove_empty_dirs(self.mirror_root)
        return pruned

    def remove_tree(self, rel_dir: str = "") -> int:
        """Remove every link under *rel_dir* (the whole mirror by default).

        Directories left empty are removed, including *rel_dir* itself and,
        for a full teardown, the repository's mirror root.  Real files and
        the directories holding them are left in place.

        Returns:
            Number of links removed.
        """
        rel = normalize_rel_path(rel_dir)
        if rel:
            rel = self._check_rel(rel)
            root = self.mirror_path(rel)
            if self._linked_parent(root) is not None:
                return 0
        else:
            root = self.mirror_root

        if root.is_symlink():
            return 1 if rel and self.remove_link(rel) else 0
        if not root.is_dir():
            return 0

        removed = 0
        for link_rel in list(self.iter_links(rel)):
            path = self.mirror_root / link_rel
            try:
                path.unlink()
                removed += 1
                logger.debug("[%s] Removed link: %s", self.repo.name, path)
            except FileNotFoundError:
                continue
            except OSError as exc:
                logger.error(
                    "[%s] Failed to remove link %s: %s",
                    self.repo.name,
                    path,
                    exc,
                )

        self._remove_empty_dirs(root)
        try:
            root.rmdir()
        except OSError:
            return removed
        if rel:
            self._prune_empty_parents(root.parent)
        return removed

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _is_stale(self, rel: str) -> bool:
        if not self.repo.should_mirror(rel):
            return True

        expected = self.source_path(rel)
        if not expected.is_file():
            return True

        link = self.mirror_path(rel)
        resolved = os.path.realpath(link)
        if not os.path.exists(resolved):
            return True

        root = os.path.realpath(self.repo.source_root)
        if os.path.commonpath([root, resolved]) != root:
            return True

        return resolved != os.path.realpath(expected)

    @staticmethod
    def _points_to(link: Path, source: Path) -> bool:
        try:
            raw = os.readlink(link)
        except OSError:
            return False
        if raw == str(source):
            return True
        resolved = os.path.realpath(link)
        return os.path.exists(resolved) and resolved == os.path.realpath(
            source
        )

    def _make_parents(self, target: Path) -> None:
        """Create the mirror directories above *target*, one level at a time.

        Each level is checked so that a real file, or a symlink placed by
        someone else, never has links written through or over it.
        """
        self.output_dir.mkdir(parents=True, exist_ok=True)
        current = self.output_dir
        for part in target.parent.relative_to(self.output_dir).parts:
            current = current / part
            if current.is_symlink() or (
                current.exists() and not current.is_dir()
            ):
                raise PathOccupiedError(
                    f"{current} is not a directory, cannot link {target}",
                    path=current,
                )
            current.mkdir(exist_ok=True)

    @staticmethod
    def _replace_link(target: Path, source: Path) -> None:
        tmp = target.with_name(f".{target.name}{_TMP_SUFFIX}")
        if tmp.is_symlink():
            tmp.unlink()
        os.symlink(source, tmp)
        try:
            os.replace(tmp, target)
        except OSError:
            tmp.unlink(missing_ok=True)
            raise

    def _prune_empty_parents(self, start: Path) -> None:
        """Remove empty directories from *start* up to the mirror root."""
        current = start
        while current != self.mirror_root and current.is_relative_to(
            self.mirror_root
        ):
            try:
                current.rmdir()
            except OSError:
                break
            current = current.parent

    @staticmethod
    def _remove_empty_dirs(root: Path) -> None:
        """Remove empty directories below *root*, bottom-up (not *root*)."""
        for dirpath, _dirnames, _filenames in os.walk(root, topdown=False):
            path = Path(dirpath)
            if path == root or path.is_symlink():
                continue
            try:
                path.rmdir()
            except OSError:
                continue
