"""Tests for monorelease.commits."""

from __future__ import annotations

from collections.abc import Callable

import pytest

from monorelease.commits import (
    attribute,
    calculate_bump,
    classify_package,
    filter_skip_release_commits,
    parse_commit,
    touches,
)
from monorelease.config import CommitsConfig
from monorelease.models import (
    ClassifiedCommit,
    Commit,
    CommitKind,
    Package,
    VersionBump,
)

Classified = Callable[..., ClassifiedCommit]
MakePackage = Callable[..., Package]


def _commit(message: str, *paths: str, sha: str = "abc1234def") -> Commit:
    return Commit(hash=sha, message=message, paths=list(paths))


class TestParseCommit:
    @pytest.fixture
    def config(self) -> CommitsConfig:
        return CommitsConfig()

    def test_feature(self, config: CommitsConfig) -> None:
        c = parse_commit(_commit("feat: add retries"), config)
        assert c.kind == CommitKind.FEATURE
        assert c.type == "feat"
        assert c.scope is None
        assert c.description == "add retries"

    def test_fix_with_scope(self, config: CommitsConfig) -> None:
        c = parse_commit(_commit("fix(parser): handle empty input"), config)
        assert c.kind == CommitKind.FIX
        assert c.scope == "parser"

    def test_perf_counts_as_fix(self, config: CommitsConfig) -> None:
        assert parse_commit(_commit("perf: faster"), config).kind == CommitKind.FIX

    def test_bang_is_breaking(self, config: CommitsConfig) -> None:
        c = parse_commit(_commit("refactor(api)!: drop v1"), config)
        assert c.kind == CommitKind.BREAKING
        assert c.description == "drop v1"

    @pytest.mark.parametrize(
        "footer", ["BREAKING CHANGE: gone", "BREAKING-CHANGE: gone"]
    )
    def test_footer_is_breaking(self, config: CommitsConfig, footer: str) -> None:
        c = parse_commit(_commit(f"fix: rename option\n\nDetails.\n\n{footer}"), config)
        assert c.kind == CommitKind.BREAKING

    def test_other_type(self, config: CommitsConfig) -> None:
        c = parse_commit(_commit("docs: update readme"), config)
        assert c.kind == CommitKind.OTHER
        assert c.is_conventional

    def test_unparsable_is_other(self, config: CommitsConfig) -> None:
        c = parse_commit(_commit("Merge stuff\n\nBREAKING CHANGE: not checked"), config)
        assert c.kind == CommitKind.OTHER
        assert not c.is_conventional
        assert c.description == "Merge stuff"

    def test_empty_message(self, config: CommitsConfig) -> None:
        assert parse_commit(_commit(""), config).kind == CommitKind.OTHER

    def test_custom_types(self) -> None:
        config = CommitsConfig(types_feature=["feat", "feature"], types_fix=["fix"])
        assert parse_commit(_commit("feature: x"), config).kind == CommitKind.FEATURE
        assert parse_commit(_commit("perf: x"), config).kind == CommitKind.OTHER

    def test_custom_breaking_pattern(self) -> None:
        config = CommitsConfig(breaking_pattern=r"^INCOMPATIBLE:")
        message = "fix: x\n\nINCOMPATIBLE: config keys renamed"
        assert parse_commit(_commit(message), config).kind == CommitKind.BREAKING


class TestAttribution:
    def test_touches_prefix_not_substring(self) -> None:
        commit = _commit("fix: x", "packages/a-extra/x.py")
        assert not touches(commit, "packages/a")
        assert touches(commit, "packages/a-extra")

    def test_root_package_owns_everything(self) -> None:
        assert touches(_commit("fix: x", "docs/index.md"), ".")

    def test_commit_attributed_to_several_packages(self, package: MakePackage) -> None:
        commit = _commit("feat: shared", "packages/a/x.py", "packages/b/y.py")
        assert attribute([commit], package("a")) == [commit]
        assert attribute([commit], package("b")) == [commit]
        assert attribute([commit], package("c")) == []


def test_filter_skip_release_is_case_insensitive() -> None:
    keep = _commit("fix: x")
    drop = _commit("fix: y\n\n[Skip Release]")
    assert filter_skip_release_commits([keep, drop], ["[skip release]"]) == [keep]


class TestCalculateBump:
    def test_fix_and_feature_is_minor(self, classified: Classified) -> None:
        commits = [classified(CommitKind.FIX), classified(CommitKind.FEATURE)]
        assert calculate_bump(commits) == VersionBump.MINOR

    def test_breaking_wins(self, classified: Classified) -> None:
        commits = [classified(CommitKind.FIX), classified(CommitKind.BREAKING)]
        assert calculate_bump(commits) == VersionBump.MAJOR

    def test_only_other_is_none(self, classified: Classified) -> None:
        assert calculate_bump([classified(CommitKind.OTHER)]) == VersionBump.NONE

    def test_empty_is_none(self) -> None:
        assert calculate_bump([]) == VersionBump.NONE


class TestClassifyPackage:
    def test_filters_attributes_and_classifies(self, package: MakePackage) -> None:
        commits = [
            _commit("feat: new", "packages/a/x.py", sha="1111111aaa"),
            _commit("fix: other pkg", "packages/b/x.py", sha="2222222bbb"),
            _commit("fix: skip me [skip release]", "packages/a/x.py", sha="3333333ccc"),
        ]
        result = classify_package(package("a"), commits, CommitsConfig())
        assert [c.commit.hash for c in result] == ["1111111aaa"]

    def test_excludes_recorded_hashes(self, package: MakePackage) -> None:
        changelog = (
            "# Changelog\n\n## 1.1.0 (2026-01-01)\n\n### Features\n\n"
            "- new (1111111)\n\n<!-- monorelease: 1111111 2222222 -->\n"
        )
        commits = [
            _commit("feat: new", "packages/a/x.py", sha="1111111aaa"),
            _commit("docs: tweak", "packages/a/README.md", sha="2222222bbb"),
            _commit("fix: later", "packages/a/x.py", sha="3333333ccc"),
        ]
        pkg = package("a", "1.1.0", changelog=changelog)
        result = classify_package(pkg, commits, CommitsConfig())
        assert [c.commit.hash for c in result] == ["3333333ccc"]

    def test_excludes_handwritten_entries(self, package: MakePackage) -> None:
        changelog = "# Changelog\n\n## 1.1.0\n\n- **cli:** add --json flag\n"
        commits = [
            _commit("feat(cli): add --json flag", "packages/a/x.py", sha="1111111aaa"),
            _commit("feat(cli): add --yaml flag", "packages/a/x.py", sha="2222222bbb"),
        ]
        pkg = package("a", "1.1.0", changelog=changelog)
        result = classify_package(pkg, commits, CommitsConfig())
        assert [c.commit.hash for c in result] == ["2222222bbb"]

    def test_sections_ahead_of_the_manifest_do_not_count(
        self, package: MakePackage
    ) -> None:
        changelog = (
            "# Changelog\n\n## 1.2.0 (2026-02-01)\n\n"
            "<!-- monorelease: 1111111 -->\n\n"
            "## 1.1.0 (2026-01-01)\n\n<!-- monorelease: 2222222 -->\n"
        )
        commits = [
            _commit("feat: pending", "packages/a/x.py", sha="1111111aaa"),
            _commit("fix: released", "packages/a/x.py", sha="2222222bbb"),
        ]
        pkg = package("a", "1.1.0", changelog=changelog)
        result = classify_package(pkg, commits, CommitsConfig())
        assert [c.commit.hash for c in result] == ["1111111aaa"]
