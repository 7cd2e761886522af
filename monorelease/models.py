"""Data models for monorelease.

These Pydantic models represent the core data structures that flow through
the release pipeline: the workspace read from disk, the commits attributed
to each package, the planned releases, and the per-package publish status.
"""

from __future__ import annotations

import datetime as dt
from enum import Enum, IntEnum
from pathlib import Path

from pydantic import BaseModel, Field


class DependencyEdge(BaseModel):
    """An internal dependency: ``source`` requires ``target``.

    Attributes:
        source: Name of the dependent package.
        target: Name of the workspace package it depends on.
        requirement: The PEP 508 string exactly as written in the manifest,
                     e.g. ``"pkg-b>=1.0,<2"``.
    """

    source: str
    target: str
    requirement: str


class Package(BaseModel):
    """Metadata for a single package in the workspace.

    Attributes:
        name: Canonical (PEP 503) package name.
        version: Current version string from pyproject.toml.
        path: Relative path from workspace root to the package directory.
        dependencies: Internal dependency edges, one per requirement string.
        external: Requirement strings naming packages outside the workspace.
        independent: If True the package is not bumped just because a
                     dependency moved.
        last_tag: Most recent release tag for this package, if any. Commits
                  after this tag are candidates for the next release.
        changelog: Current changelog content ("" if the file is missing).
    """

    name: str
    version: str
    path: str
    dependencies: list[DependencyEdge] = Field(default_factory=list)
    external: list[str] = Field(default_factory=list)
    independent: bool = False
    last_tag: str | None = None
    changelog: str = ""

    @property
    def deps(self) -> list[str]:
        """Names of internal dependencies, without duplicates."""
        return list(dict.fromkeys(edge.target for edge in self.dependencies))

    def requirements_on(self, target: str) -> list[str]:
        """All requirement strings this package declares on ``target``."""
        return [e.requirement for e in self.dependencies if e.target == target]


class Workspace(BaseModel):
    """All packages of one workspace, keyed by name."""

    root: Path
    packages: dict[str, Package]

    def __getitem__(self, name: str) -> Package:
        return self.packages[name]

    def __contains__(self, name: object) -> bool:
        return name in self.packages

    @property
    def names(self) -> list[str]:
        return sorted(self.packages)

    def package_dir(self, name: str) -> Path:
        return self.root / self.packages[name].path


class Commit(BaseModel):
    """A commit read from history.

    Attributes:
        hash: Full commit hash.
        message: Full commit message (subject and body).
        paths: Workspace-relative paths touched by the commit.
    """

    hash: str
    message: str
    paths: list[str] = Field(default_factory=list)

    @property
    def short_hash(self) -> str:
        return self.hash[:7]


class CommitKind(str, Enum):
    BREAKING = "breaking"
    FEATURE = "feature"
    FIX = "fix"
    OTHER = "other"


class ClassifiedCommit(BaseModel):
    """A commit together with its parsed conventional-commit fields.

    Attributes:
        commit: The underlying commit.
        kind: Classification used for bumping and changelog grouping.
        type: Conventional type (``feat``, ``fix``...), None if unparsable.
        scope: Optional scope from ``type(scope): ...``.
        description: Subject text after the colon, or the whole first line
                     for unparsable messages.
    """

    commit: Commit
    kind: CommitKind
    type: str | None = None
    scope: str | None = None
    description: str

    @property
    def is_conventional(self) -> bool:
        return self.type is not None


class VersionBump(IntEnum):
    """Semantic version bump level, ordered so that ``max()`` picks the winner."""

    NONE = 0
    PATCH = 1
    MINOR = 2
    MAJOR = 3

    def __str__(self) -> str:
        return self.name.lower()


class PackageRelease(BaseModel):
    """A planned version change for one package.

    Attributes:
        name: Package name.
        old: Version currently in the manifest.
        new: Version to publish.
        bump: Bump level that produced ``new``.
        commits: Commits attributed to this release.
        requirement_updates: Original requirement string → rewritten string,
                             for requirements that no longer cover the
                             dependency's new version.
        reason: Why the package is released: "commits", "dependency",
                "fixed-group" or "resume".
    """

    name: str
    old: str
    new: str
    bump: VersionBump
    commits: list[ClassifiedCommit] = Field(default_factory=list)
    requirement_updates: dict[str, str] = Field(default_factory=dict)
    reason: str = "commits"


class ChangelogSection(BaseModel):
    """One rendered changelog section.

    Attributes:
        package: Package name.
        version: Version heading of the section.
        date: Release date shown in the heading.
        entries: Ordered (kind, line) pairs. ``other`` entries are kept here
                 for hash bookkeeping but are not rendered.
        hashes: Short hashes of every commit in the section, ``other``
                included. Written to a trailing comment so later runs can
                tell which commits were already released.
        requirements: Rewritten dependency requirements, rendered under
                      "Dependencies".
    """

    package: str
    version: str
    date: dt.date
    entries: list[tuple[CommitKind, str]] = Field(default_factory=list)
    hashes: list[str] = Field(default_factory=list)
    requirements: list[str] = Field(default_factory=list)


class PublishPlan(BaseModel):
    """Waves of releases; every wave only depends on earlier waves."""

    waves: list[list[PackageRelease]] = Field(default_factory=list)

    @property
    def releases(self) -> list[PackageRelease]:
        return [release for wave in self.waves for release in wave]


class PublishState(str, Enum):
    PENDING = "pending"
    REWRITING = "rewriting"
    UPLOADING = "uploading"
    AWAITING_VISIBILITY = "awaiting-visibility"
    PUBLISHED = "published"
    FAILED = "failed"
    SKIPPED = "skipped"


class PackageStatus(BaseModel):
    """Where one package ended up after execution.

    Attributes:
        name: Package name.
        version: Version that was (or would have been) published.
        state: Final state.
        error: Exception class name for failures, e.g. "PublishError".
        reason: Human readable failure or skip reason.
        uploaded: True once the registry accepted the upload, even if the
                  version was never confirmed visible.
    """

    name: str
    version: str
    state: PublishState = PublishState.PENDING
    error: str | None = None
    reason: str | None = None
    uploaded: bool = False
