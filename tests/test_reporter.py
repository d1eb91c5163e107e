"""Tests for scan report formatting functions.

Covers:
- format_scan_report for one repo, several repos and errors
- format_repo_listing output
- report_to_json structure and totals
- Empty input produces a concise message
"""

from __future__ import annotations

import json

from doc_link.mirror.models import PathError, RepoSpec, ScanResult
from doc_link.mirror.reporter import (
    format_repo_listing,
    format_scan_report,
    report_to_json,
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _result(repo="alpha", errors=(), **counts) -> ScanResult:
    return ScanResult(repo=repo, errors=list(errors), **counts)


# ---------------------------------------------------------------------------
# format_scan_report
# ---------------------------------------------------------------------------


class TestFormatScanReport:
    def test_empty(self):
        assert format_scan_report([]) == "No repos configured."

    def test_single_repo_has_no_totals(self):
        text = format_scan_report(
            [_result(created=3, unchanged=2, duration_seconds=0.25)]
        )
        assert "alpha" in text
        assert "3 created, 2 existed" in text
        assert "(0.25s)" in text
        assert "Total" not in text
        assert "Errors" not in text

    def test_totals_across_repos(self):
        text = format_scan_report(
            [
                _result("alpha", created=1, unchanged=4),
                _result("beta", created=2, pruned=1),
            ]
        )
        assert "Total: 7 files mirrored across 2 repos, 3 created, 1 pruned, 0 errors" in text

    def test_errors_section(self):
        text = format_scan_report(
            [
                _result(
                    errors=[
                        PathError(rel_path="docs/a.md", error="Permission denied"),
                        PathError(rel_path="", error="mirror root unwritable"),
                    ]
                )
            ]
        )
        assert "Errors:" in text
        assert "[alpha] docs/a.md: Permission denied" in text
        assert "[alpha] .: mirror root unwritable" in text

    def test_names_aligned(self):
        lines = format_scan_report(
            [_result("a"), _result("longer-name")]
        ).splitlines()
        assert lines[0].index("0 created") == lines[1].index("0 created")


# ---------------------------------------------------------------------------
# format_repo_listing
# ---------------------------------------------------------------------------


class TestFormatRepoListing:
    def test_empty(self):
        assert format_repo_listing([]) == "No repos configured."

    def test_lists_patterns(self, tmp_path):
        spec = RepoSpec.build(
            "alpha", tmp_path, exclude=["node_modules/", ".git/"], include=["*.md", "*.rst"]
        )
        text = format_repo_listing([spec])
        assert f"alpha: {tmp_path}" in text
        assert "include: *.md, *.rst" in text
        assert "exclude: 2 patterns" in text


# ---------------------------------------------------------------------------
# report_to_json
# ---------------------------------------------------------------------------


class TestReportToJson:
    def test_structure(self):
        data = report_to_json(
            [
                _result("alpha", created=2, duration_seconds=0.12345),
                _result(
                    "beta",
                    unchanged=1,
                    skipped=1,
                    errors=[PathError(rel_path="x.md", error="boom")],
                ),
            ]
        )

        assert data["counts"] == {
            "repos": 2,
            "created": 2,
            "unchanged": 1,
            "pruned": 0,
            "skipped": 1,
            "errors": 1,
        }
        assert [r["repo"] for r in data["repos"]] == ["alpha", "beta"]
        assert data["repos"][0]["duration_seconds"] == 0.123
        assert data["repos"][1]["errors"] == [{"rel_path": "x.md", "error": "boom"}]

    def test_serialisable(self):
        json.dumps(report_to_json([_result()]))

    def test_empty(self):
        assert report_to_json([])["counts"]["repos"] == 0
