"""Tests for doc_link.config -- resolving the config file into a runtime Config."""

import logging
from pathlib import Path

import pytest

from doc_link.config import Config, build_repo_specs, expand_path, load_config
from doc_link.config_schema import DEFAULT_GLOBAL_EXCLUDE, build_config
from doc_link.mirror.matcher import PatternError


@pytest.fixture(autouse=True)
def clean_env(tmp_path, monkeypatch):
    """No DOC_LINK_* variables leak in from the developer's shell or .env."""
    for var in (
        "DOC_LINK_CONFIG",
        "DOC_LINK_OUTPUT_DIR",
        "DOC_LINK_DEBOUNCE_SECONDS",
    ):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def code_dir(tmp_path):
    """Two existing repositories under tmp_path/code."""
    for name in ("alpha", "beta"):
        (tmp_path / "code" / name).mkdir(parents=True)
    return tmp_path / "code"


# ---------------------------------------------------------------------------
# Path expansion
# ---------------------------------------------------------------------------


class TestExpandPath:
    def test_tilde(self, tmp_path):
        assert expand_path("~/docs") == tmp_path / "home" / "docs"

    def test_env_var(self, tmp_path, monkeypatch):
        monkeypatch.setenv("CODE_ROOT", str(tmp_path / "code"))
        assert expand_path("$CODE_ROOT/x") == tmp_path / "code" / "x"

    def test_relative_against_cwd(self, tmp_path):
        assert expand_path("mirror") == tmp_path / "mirror"

    def test_existing_path_resolved(self, tmp_path):
        (tmp_path / "real").mkdir()
        (tmp_path / "alias").symlink_to(tmp_path / "real")
        assert expand_path(str(tmp_path / "alias")) == (tmp_path / "real").resolve()


# ---------------------------------------------------------------------------
# load_config
# ---------------------------------------------------------------------------


class TestLoadConfig:
    """Tests for load_config() precedence and validation."""

    def test_minimal(self, tmp_path, code_dir):
        config = load_config(
            raw={
                "output_dir": str(tmp_path / "mirror"),
                "repos": [{"path": str(code_dir / "alpha")}],
            }
        )

        assert isinstance(config, Config)
        assert config.output_dir == tmp_path / "mirror"
        assert [r.name for r in config.repos] == ["alpha"]
        assert config.repos[0].source_root == (code_dir / "alpha").resolve()
        assert config.debounce_seconds == 0.5
        assert config.rescan_interval == "auto"
        assert config.log_level == "INFO"

    def test_missing_output_dir_raises(self):
        with pytest.raises(ValueError, match="Output directory not found"):
            load_config(raw={"repos": []})

    def test_env_output_dir_beats_yaml(self, tmp_path, monkeypatch):
        monkeypatch.setenv("DOC_LINK_OUTPUT_DIR", str(tmp_path / "from-env"))
        config = load_config(raw={"output_dir": str(tmp_path / "from-yaml")})
        assert config.output_dir == tmp_path / "from-env"

    def test_argument_beats_env(self, tmp_path, monkeypatch):
        monkeypatch.setenv("DOC_LINK_OUTPUT_DIR", str(tmp_path / "from-env"))
        config = load_config(
            output_dir=str(tmp_path / "from-arg"),
            raw={"output_dir": str(tmp_path / "from-yaml")},
        )
        assert config.output_dir == tmp_path / "from-arg"

    def test_debounce_env_override(self, tmp_path, monkeypatch):
        monkeypatch.setenv("DOC_LINK_DEBOUNCE_SECONDS", "2.5")
        config = load_config(raw={"output_dir": str(tmp_path / "m")})
        assert config.debounce_seconds == 2.5

    @pytest.mark.parametrize("value", ["soon", "31", "-1"])
    def test_invalid_debounce_env(self, tmp_path, monkeypatch, value):
        monkeypatch.setenv("DOC_LINK_DEBOUNCE_SECONDS", value)
        with pytest.raises(ValueError, match="DOC_LINK_DEBOUNCE_SECONDS"):
            load_config(raw={"output_dir": str(tmp_path / "m")})

    def test_debounce_argument_wins(self, tmp_path, monkeypatch):
        monkeypatch.setenv("DOC_LINK_DEBOUNCE_SECONDS", "2.5")
        config = load_config(
            debounce_seconds=0.1, raw={"output_dir": str(tmp_path / "m")}
        )
        assert config.debounce_seconds == 0.1

    def test_logging_section(self, tmp_path):
        config = load_config(
            raw={
                "output_dir": str(tmp_path / "m"),
                "logging": {"level": "debug", "file": "/tmp/x.log", "format": "json"},
            }
        )
        assert config.log_level == "DEBUG"
        assert config.log_file == "/tmp/x.log"
        assert config.log_format == "json"

    def test_no_repos_warns(self, tmp_path, caplog):
        with caplog.at_level(logging.WARNING):
            config = load_config(raw={"output_dir": str(tmp_path / "m")})
        assert config.repos == []
        assert "No usable repos" in caplog.text

    def test_reads_explicit_file(self, tmp_path, code_dir):
        cfg = tmp_path / "doc-link.yml"
        cfg.write_text(
            f"output_dir: {tmp_path / 'mirror'}\n"
            "rescan_interval: never\n"
            "repos:\n"
            f"  - path: {code_dir / 'beta'}\n"
            "    name: bee\n"
        )

        config = load_config(cfg)
        assert config.config_path == cfg.resolve()
        assert config.rescan_interval == "never"
        assert [r.name for r in config.repos] == ["bee"]

    def test_discovers_project_file(self, tmp_path):
        proj = tmp_path / ".doc_link" / "config.yml"
        proj.parent.mkdir()
        proj.write_text(f"output_dir: {tmp_path / 'mirror'}\n")

        config = load_config()
        assert config.config_path == proj
        assert config.output_dir == tmp_path / "mirror"

    def test_invalid_yaml_shape_raises_value_error(self, tmp_path):
        # pydantic.ValidationError subclasses ValueError
        with pytest.raises(ValueError):
            load_config(raw={"output_dir": str(tmp_path), "debounce_seconds": 99})


# ---------------------------------------------------------------------------
# Repository list
# ---------------------------------------------------------------------------


class TestBuildRepoSpecs:
    """Tests for build_repo_specs()."""

    def _build(self, tmp_path, repos, **extra):
        schema = build_config({"repos": repos, **extra})
        return build_repo_specs(schema, tmp_path / "mirror")

    def test_name_defaults_to_basename(self, tmp_path, code_dir):
        specs = self._build(tmp_path, [{"path": str(code_dir / "alpha")}])
        assert specs[0].name == "alpha"

    def test_name_collision_gets_suffix(self, tmp_path, code_dir, caplog):
        other = tmp_path / "elsewhere" / "alpha"
        other.mkdir(parents=True)
        with caplog.at_level(logging.WARNING):
            specs = self._build(
                tmp_path,
                [{"path": str(code_dir / "alpha")}, {"path": str(other)}],
            )
        assert [s.name for s in specs] == ["alpha", "alpha-2"]
        assert "collision" in caplog.text

    def test_explicit_name_collision_also_suffixed(self, tmp_path, code_dir):
        specs = self._build(
            tmp_path,
            [
                {"path": str(code_dir / "alpha"), "name": "docs"},
                {"path": str(code_dir / "beta"), "name": "docs"},
            ],
        )
        assert [s.name for s in specs] == ["docs", "docs-2"]

    def test_missing_repo_skipped(self, tmp_path, code_dir, caplog):
        with caplog.at_level(logging.WARNING):
            specs = self._build(
                tmp_path,
                [{"path": str(tmp_path / "gone")}, {"path": str(code_dir / "beta")}],
            )
        assert [s.name for s in specs] == ["beta"]
        assert "does not exist" in caplog.text

    def test_output_dir_inside_repo_rejected(self, tmp_path, code_dir):
        schema = build_config({"repos": [{"path": str(code_dir / "alpha")}]})
        with pytest.raises(ValueError, match="infinite loop"):
            build_repo_specs(schema, code_dir / "alpha" / "mirror")

    def test_repo_inside_output_dir_rejected(self, tmp_path):
        inner = tmp_path / "mirror" / "nested"
        inner.mkdir(parents=True)
        with pytest.raises(ValueError, match="inside output_dir"):
            self._build(tmp_path, [{"path": str(inner)}])

    def test_invalid_name_rejected(self, tmp_path, code_dir):
        with pytest.raises(ValueError, match="path separators"):
            self._build(
                tmp_path, [{"path": str(code_dir / "alpha"), "name": "a/b"}]
            )

    def test_unusual_basenames_accepted(self, tmp_path):
        names = ["café-notes", "docs+site", "notes (old)"]
        for name in names:
            (tmp_path / "code" / name).mkdir(parents=True)

        config = load_config(
            raw={
                "output_dir": str(tmp_path / "mirror"),
                "repos": [{"path": str(tmp_path / "code" / n)} for n in names],
            }
        )
        assert [r.name for r in config.repos] == names

    def test_patterns_merged_with_globals(self, tmp_path, code_dir):
        specs = self._build(
            tmp_path,
            [{"path": str(code_dir / "alpha"), "exclude": ["gen/"], "include": ["*.tex"]}],
        )
        matcher = specs[0].matcher
        assert matcher.exclude_patterns == (*DEFAULT_GLOBAL_EXCLUDE, "gen/")
        assert "*.tex" in matcher.include_patterns
        assert "*.md" in matcher.include_patterns

    def test_bad_patterns_skip_repo(self, tmp_path, code_dir, monkeypatch, caplog):
        from doc_link.mirror.models import RepoSpec

        real_build = RepoSpec.build

        def _build(name, root, exclude=(), include=()):
            if name == "alpha":
                raise PatternError("Invalid exclude pattern: '['")
            return real_build(name, root, exclude=exclude, include=include)

        monkeypatch.setattr(RepoSpec, "build", staticmethod(_build))
        with caplog.at_level(logging.ERROR):
            specs = self._build(
                tmp_path,
                [{"path": str(code_dir / "alpha")}, {"path": str(code_dir / "beta")}],
            )
        assert [s.name for s in specs] == ["beta"]
        assert "skipping repo" in caplog.text

    def test_relative_repo_path_uses_cwd(self, tmp_path, code_dir):
        specs = self._build(tmp_path, [{"path": "code/beta"}])
        assert specs[0].source_root == Path(tmp_path / "code" / "beta").resolve()
