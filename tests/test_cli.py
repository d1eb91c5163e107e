"""Tests for the doc-link command-line interface."""

import json
from unittest.mock import patch

import pytest

from doc_link import __version__
from doc_link.cli import build_parser, main, run

from .conftest import mirrored_paths, write_file


@pytest.fixture(autouse=True)
def cli_env(tmp_path, monkeypatch):
    """Isolated HOME/CWD, no DOC_LINK_* vars, logging setup mocked out."""
    for var in ("DOC_LINK_CONFIG", "DOC_LINK_OUTPUT_DIR", "DOC_LINK_DEBOUNCE_SECONDS"):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    monkeypatch.chdir(tmp_path)
    with patch("doc_link.cli.setup_logging"):
        yield


@pytest.fixture
def config_file(tmp_path):
    write_file(tmp_path / "code" / "alpha", "README.md")
    write_file(tmp_path / "code" / "alpha", "node_modules/x/README.md")
    cfg = tmp_path / "doc-link.yml"
    cfg.write_text(
        f"output_dir: {tmp_path / 'mirror'}\n"
        "repos:\n"
        f"  - path: {tmp_path / 'code' / 'alpha'}\n"
    )
    return cfg


class TestParser:
    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_version(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            build_parser().parse_args(["--version"])
        assert exc_info.value.code == 0
        assert __version__ in capsys.readouterr().out


class TestScan:
    def test_scan_mirrors_and_reports(self, config_file, tmp_path, capsys):
        assert main(["--config", str(config_file), "scan"]) == 0

        assert mirrored_paths(tmp_path / "mirror" / "alpha") == {"README.md"}
        assert "1 created" in capsys.readouterr().out

    def test_scan_json(self, config_file, capsys):
        assert main(["--config", str(config_file), "scan", "--json"]) == 0

        data = json.loads(capsys.readouterr().out)
        assert data["counts"]["created"] == 1
        assert data["repos"][0]["repo"] == "alpha"

    def test_scan_errors_exit_nonzero(self, config_file):
        from doc_link.mirror.models import PathError, ScanResult

        failed = ScanResult(repo="alpha", errors=[PathError(rel_path="a.md", error="boom")])
        with patch("doc_link.cli.scan_all", return_value=[failed]):
            assert main(["--config", str(config_file), "scan"]) == 1


class TestCheck:
    def test_lists_repos(self, config_file, tmp_path, capsys):
        assert main(["--config", str(config_file), "check"]) == 0

        out = capsys.readouterr().out
        assert f"Output: {tmp_path / 'mirror'}" in out
        assert "alpha:" in out
        assert not (tmp_path / "mirror").exists()

    def test_configuration_error(self, tmp_path, capsys):
        cfg = tmp_path / "bad.yml"
        cfg.write_text("repos: []\n")

        assert main(["--config", str(cfg), "check"]) == 1
        assert "Configuration error: Output directory not found" in capsys.readouterr().err

    def test_unreadable_config(self, tmp_path, capsys):
        assert main(["--config", str(tmp_path / "missing.yml"), "check"]) == 1
        assert "Cannot read configuration" in capsys.readouterr().err

    def test_malformed_yaml(self, tmp_path, capsys):
        cfg = tmp_path / "broken.yml"
        cfg.write_text("output_dir: [unclosed\n")

        assert main(["--config", str(cfg), "check"]) == 1
        assert "Cannot read configuration" in capsys.readouterr().err


class TestInit:
    def test_creates_starter(self, tmp_path, capsys):
        target = tmp_path / "new.yml"
        assert main(["--config", str(target), "init", "--output-dir", "/srv/mirror"]) == 0

        assert "output_dir: /srv/mirror" in target.read_text()
        assert f"Created {target}" in capsys.readouterr().out

    def test_existing_left_alone(self, config_file, capsys):
        before = config_file.read_text()
        assert main(["--config", str(config_file), "init"]) == 0

        assert config_file.read_text() == before
        assert "already exists" in capsys.readouterr().out


class TestRun:
    def test_runs_engine(self, config_file):
        with patch("doc_link.cli.MirrorEngine") as mock_engine:
            assert main(["--config", str(config_file), "run"]) == 0

        config = mock_engine.call_args[0][0]
        assert [r.name for r in config.repos] == ["alpha"]
        mock_engine.return_value.run_forever.assert_called_once()

    def test_keyboard_interrupt_exits_130(self):
        with patch("doc_link.cli.main", side_effect=KeyboardInterrupt):
            with pytest.raises(SystemExit) as exc_info:
                run()
        assert exc_info.value.code == 130
