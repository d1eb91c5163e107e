"""doc-link: a live mirror of repository documentation as symlinks."""

__version__ = "0.1.0"
