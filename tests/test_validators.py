"""Tests for validators.py -- repository name validation."""

import pytest

from doc_link.validators import format_validation_error, validate_repo_name


class TestValidateRepoName:
    """Tests for validate_repo_name()."""

    @pytest.mark.parametrize(
        "name", ["alpha", "my-project", "docs_2", ".dotfiles", "Project X", "v1.2"]
    )
    def test_valid(self, name):
        assert validate_repo_name(name) == (True, "")

    @pytest.mark.parametrize("name", ["", "   "])
    def test_empty(self, name):
        valid, reason = validate_repo_name(name)
        assert not valid
        assert reason == "Repo name cannot be empty"

    @pytest.mark.parametrize("name", [".", ".."])
    def test_dot_names(self, name):
        valid, reason = validate_repo_name(name)
        assert not valid
        assert f"cannot be '{name}'" in reason

    @pytest.mark.parametrize("name", ["a/b", "a\\b"])
    def test_separators(self, name):
        valid, reason = validate_repo_name(name)
        assert not valid
        assert "path separators" in reason

    @pytest.mark.parametrize(
        "name", ["café-notes", "docs+site", "notes (old)", "-leading", "semi;colon"]
    )
    def test_any_other_characters_allowed(self, name):
        assert validate_repo_name(name) == (True, "")

    def test_nul_byte(self):
        valid, reason = validate_repo_name("a\0b")
        assert not valid
        assert "NUL" in reason


def test_format_validation_error():
    assert format_validation_error("Repo name", "is bad") == "Repo name is bad"
