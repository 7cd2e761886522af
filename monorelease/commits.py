"""Conventional commit parsing and attribution.

Commit subjects are matched against ``<type>[(scope)][!]: <description>``.
A breaking change is flagged either by ``!`` before the colon or by a
``BREAKING CHANGE:`` footer line in the body. Anything that does not match
the grammar is classified as ``other``; parsing never raises.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence

from .changelog import (
    entry_text,
    handwritten_entries,
    recorded_hashes,
    released_text,
)
from .config import CommitsConfig
from .models import ClassifiedCommit, Commit, CommitKind, Package, VersionBump

_SUBJECT_RE = re.compile(
    r"^(?P<type>[A-Za-z][\w-]*)"
    r"(?:\((?P<scope>[^()\r\n]*)\))?"
    r"(?P<bang>!)?"
    r":\s+(?P<description>\S.*)$"
)

_KIND_TO_BUMP = {
    CommitKind.BREAKING: VersionBump.MAJOR,
    CommitKind.FEATURE: VersionBump.MINOR,
    CommitKind.FIX: VersionBump.PATCH,
    CommitKind.OTHER: VersionBump.NONE,
}


def parse_commit(commit: Commit, config: CommitsConfig) -> ClassifiedCommit:
    """Classify a single commit.

    Args:
        commit: Commit to classify.
        config: Type mappings and breaking-change footer pattern.

    Returns:
        The classified commit. Unparsable subjects yield kind ``other`` with
        the whole subject line as description.
    """
    subject, _, body = commit.message.strip().partition("\n")
    subject = subject.strip()
    match = _SUBJECT_RE.match(subject)
    if not match:
        return ClassifiedCommit(
            commit=commit, kind=CommitKind.OTHER, description=subject
        )

    commit_type = match.group("type").lower()
    scope = (match.group("scope") or "").strip() or None
    breaking = bool(match.group("bang")) or _has_breaking_footer(body, config)

    if breaking:
        kind = CommitKind.BREAKING
    elif commit_type in config.types_feature:
        kind = CommitKind.FEATURE
    elif commit_type in config.types_fix:
        kind = CommitKind.FIX
    else:
        kind = CommitKind.OTHER

    return ClassifiedCommit(
        commit=commit,
        kind=kind,
        type=commit_type,
        scope=scope,
        description=match.group("description").strip(),
    )


def _has_breaking_footer(body: str, config: CommitsConfig) -> bool:
    return bool(re.search(config.breaking_pattern, body, re.MULTILINE))


def parse_commits(
    commits: Iterable[Commit], config: CommitsConfig
) -> list[ClassifiedCommit]:
    return [parse_commit(c, config) for c in commits]


def filter_skip_release_commits(
    commits: Sequence[Commit], patterns: Sequence[str]
) -> list[Commit]:
    """Drop commits whose message contains a skip marker (case-insensitive)."""
    if not patterns:
        return list(commits)
    lowered = [p.lower() for p in patterns]
    return [c for c in commits if not any(p in c.message.lower() for p in lowered)]


def touches(commit: Commit, path: str) -> bool:
    """Whether a commit changed any file inside package directory ``path``.

    A package at the workspace root (``"."``) owns every path.
    """
    if path in ("", "."):
        return bool(commit.paths)
    prefix = path.rstrip("/") + "/"
    return any(p == path or p.startswith(prefix) for p in commit.paths)


def attribute(commits: Iterable[Commit], package: Package) -> list[Commit]:
    """Select the commits that touched ``package``."""
    return [c for c in commits if touches(c, package.path)]


def classify_package(
    package: Package, commits: Sequence[Commit], config: CommitsConfig
) -> list[ClassifiedCommit]:
    """Classify the commits relevant to one package's next release.

    Commits are attributed by path, skip-marked commits are dropped, and
    commits already reflected in the package changelog are excluded: either
    their short hash is recorded there, or their entry text matches a bullet
    written by hand (one without a hash reference). Re-running after a
    changelog was written therefore yields no duplicate entries. Sections
    for versions newer than the manifest are not released yet and do not
    count.
    """
    attributed = filter_skip_release_commits(
        attribute(commits, package), config.skip_release_patterns
    )
    classified = parse_commits(attributed, config)
    if not package.changelog:
        return classified

    released = released_text(package.changelog, package.version)
    seen = recorded_hashes(released)
    by_hand = handwritten_entries(released)
    return [
        c
        for c in classified
        if c.commit.short_hash not in seen and entry_text(c) not in by_hand
    ]


def calculate_bump(commits: Iterable[ClassifiedCommit]) -> VersionBump:
    """Highest bump level implied by the commits (NONE if empty)."""
    return max((_KIND_TO_BUMP[c.kind] for c in commits), default=VersionBump.NONE)
