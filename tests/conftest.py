"""Shared pytest fixtures for doc-link tests."""

from pathlib import Path

import pytest
from dotenv import load_dotenv

from doc_link.config import Config
from doc_link.mirror.models import ChangeKind, PendingChange, RepoSpec
from doc_link.mirror.watcher import WatchBackend, WatchLimitError

load_dotenv()


def write_file(root: Path, rel_path: str, content: str = "x") -> Path:
    """Create *rel_path* under *root* (parents included) and return it."""
    path = root / rel_path
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return path


def mirrored_paths(mirror_root: Path) -> set[str]:
    """Relative paths of every symlink under *mirror_root*."""
    if not mirror_root.exists():
        return set()
    return {
        p.relative_to(mirror_root).as_posix()
        for p in mirror_root.rglob("*")
        if p.is_symlink()
    }


class FakeBackend(WatchBackend):
    """In-memory watch backend; tests push events with ``emit``."""

    def __init__(self, fail: Exception | None = None) -> None:
        self.fail = fail
        self.root: Path | None = None
        self.callback = None
        self.alive = False
        self.starts = 0
        self.stops = 0

    def start(self, root, callback):
        if self.fail is not None:
            raise self.fail
        self.root = root
        self.callback = callback
        self.alive = True
        self.starts += 1

    def stop(self):
        self.alive = False
        self.stops += 1

    def is_alive(self):
        return self.alive

    def emit(self, rel_path: str, kind: ChangeKind, is_dir: bool = False):
        self.callback(
            PendingChange(rel_path=rel_path, kind=kind, is_dir=is_dir)
        )


@pytest.fixture
def source_root(tmp_path):
    """An empty source repository directory."""
    root = tmp_path / "p"
    root.mkdir()
    return root


@pytest.fixture
def output_dir(tmp_path):
    """Mirror root (not created up front)."""
    return tmp_path / "mirror"


@pytest.fixture
def repo(source_root):
    """The canonical repo: include ``*.md``, exclude ``node_modules/``."""
    return RepoSpec.build(
        "p", source_root, exclude=["node_modules/"], include=["*.md"]
    )


@pytest.fixture
def make_config(output_dir):
    """Factory for a runtime Config over the given repos."""

    def _make(repos, **kwargs):
        return Config(output_dir=output_dir, repos=list(repos), **kwargs)

    return _make


@pytest.fixture
def backends():
    """Collects every FakeBackend handed out by ``backend_factory``."""
    return []


@pytest.fixture
def backend_factory(backends):
    def _factory():
        backend = FakeBackend()
        backends.append(backend)
        return backend

    return _factory


@pytest.fixture
def limit_backend_factory():
    def _factory():
        return FakeBackend(fail=WatchLimitError("Cannot watch: [Errno 28]"))

    return _factory
