"""Tests for monorelease.history."""

from __future__ import annotations

import subprocess
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from monorelease.config import ReleaseConfig, parse_config
from monorelease.errors import ConfigurationError
from monorelease.history import CommitLog, find_last_tag, parse_log

RS, FS = "\x1e", "\x1f"


class TestFindLastTag:
    @patch("monorelease.history.git")
    def test_returns_newest_tag(self, mock_git: MagicMock) -> None:
        mock_git.return_value = "pkg-a/v1.10.0\npkg-a/v1.9.0"

        assert find_last_tag("pkg-a", ReleaseConfig(), Path("/ws")) == "pkg-a/v1.10.0"
        mock_git.assert_called_once_with(
            "tag",
            "--list",
            "pkg-a/v*",
            "--sort=-v:refname",
            cwd=Path("/ws"),
            check=False,
        )

    @patch("monorelease.history.git")
    def test_ignores_tags_of_other_packages(self, mock_git: MagicMock) -> None:
        mock_git.return_value = "pkg-vendor-v2.0.0\npkg-v1.0.0"
        config = parse_config({"tag_format": "{name}-v{version}"})
        assert find_last_tag("pkg", config, Path("/ws")) == "pkg-v1.0.0"

    @patch("monorelease.history.git")
    def test_returns_none_when_untagged(self, mock_git: MagicMock) -> None:
        mock_git.return_value = ""
        assert find_last_tag("pkg-a", ReleaseConfig(), Path("/ws")) is None


class TestParseLog:
    def test_parses_records(self) -> None:
        output = (
            f"{RS}aaaaaaa111{FS}feat(api): add retries\n\nLonger body{FS}\n"
            "packages/a/src/x.py\npackages/b/y.py\n"
            f"{RS}bbbbbbb222{FS}fix: typo{FS}\npackages/a/README.md"
        )
        commits = parse_log(output)

        assert [c.hash for c in commits] == ["aaaaaaa111", "bbbbbbb222"]
        assert commits[0].message == "feat(api): add retries\n\nLonger body"
        assert commits[0].paths == ["packages/a/src/x.py", "packages/b/y.py"]
        assert commits[1].paths == ["packages/a/README.md"]

    def test_record_without_files(self) -> None:
        # `git` output is stripped, which can eat the final separator
        commits = parse_log(f"{RS}ccccccc333{FS}chore: empty")
        assert commits[0].message == "chore: empty"
        assert commits[0].paths == []

    def test_empty_output(self) -> None:
        assert parse_log("") == []


class TestCommitLog:
    @patch("monorelease.history.git")
    def test_range_since_marker(self, mock_git: MagicMock) -> None:
        mock_git.return_value = ""
        CommitLog(Path("/ws")).since("pkg-a/v1.0.0")
        args = mock_git.call_args.args
        assert args[0] == "log"
        assert "--no-merges" in args
        assert args[-1] == "pkg-a/v1.0.0..HEAD"

    @patch("monorelease.history.git")
    def test_whole_history_without_marker(self, mock_git: MagicMock) -> None:
        mock_git.return_value = ""
        CommitLog(Path("/ws")).since(None)
        assert mock_git.call_args.args[-1] == "HEAD"

    @patch("monorelease.history.git")
    def test_cached_per_marker(self, mock_git: MagicMock) -> None:
        mock_git.return_value = f"{RS}ddddddd444{FS}fix: x{FS}\npackages/a/x.py"
        log = CommitLog(Path("/ws"))

        first = log.since("pkg-a/v1.0.0")
        second = log.since("pkg-a/v1.0.0")
        log.since("pkg-b/v2.0.0")

        assert first is second
        assert mock_git.call_count == 2

    @patch("monorelease.history.git")
    def test_git_failure_is_a_configuration_error(self, mock_git: MagicMock) -> None:
        mock_git.side_effect = subprocess.CalledProcessError(
            128, ["git", "log"], stderr="fatal: not a git repository\n"
        )
        with pytest.raises(ConfigurationError, match="not a git repository"):
            CommitLog(Path("/ws")).since(None)
