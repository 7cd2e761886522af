"""Configuration for monorelease.

Settings live in the workspace root ``pyproject.toml``::

    [tool.monorelease]
    requirement_style = "compatible"
    independent = ["pkg-tools"]
    fixed_groups = [["pkg-core", "pkg-core-types"]]

    [tool.monorelease.retry]
    max_attempts = 5

Every key is optional. Unknown keys are rejected so that typos surface
before a release starts instead of being silently ignored.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Literal

from packaging.utils import canonicalize_name
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import ConfigurationError
from .toml import get_tool_table, load_pyproject


class _Section(BaseModel):
    model_config = ConfigDict(extra="forbid")


class CommitsConfig(_Section):
    """How commit messages map to bump levels.

    Attributes:
        types_feature: Conventional types that count as features (MINOR).
        types_fix: Conventional types that count as fixes (PATCH).
        breaking_pattern: Regex matched against body lines to detect a
                          breaking-change footer.
        skip_release_patterns: Markers that exclude a commit entirely.
    """

    types_feature: list[str] = Field(default_factory=lambda: ["feat"])
    types_fix: list[str] = Field(default_factory=lambda: ["fix", "perf"])
    breaking_pattern: str = r"^BREAKING[ -]CHANGE:"
    skip_release_patterns: list[str] = Field(default_factory=lambda: ["[skip release]"])

    @field_validator("breaking_pattern")
    @classmethod
    def _compiles(cls, pattern: str) -> str:
        try:
            re.compile(pattern, re.MULTILINE)
        except re.error as e:
            raise ValueError(f"not a regular expression: {e}") from e
        return pattern


class RetryConfig(_Section):
    """Exponential backoff for uploads."""

    max_attempts: int = Field(default=5, ge=1)
    initial_delay: float = Field(default=2.0, ge=0)
    multiplier: float = Field(default=2.0, ge=1)
    max_delay: float = Field(default=60.0, ge=0)


class VisibilityConfig(_Section):
    """Polling schedule while waiting for the registry index."""

    initial_interval: float = Field(default=2.0, gt=0)
    multiplier: float = Field(default=1.5, ge=1)
    max_interval: float = Field(default=30.0, gt=0)
    max_wait: float = Field(default=600.0, ge=0)


class RegistryConfig(_Section):
    """Where packages are uploaded and queried.

    Attributes:
        index_url: Base URL serving the JSON API (``/pypi/<name>/<version>/json``).
        publish_url: Upload endpoint passed to ``uv publish``; None uses uv's default.
        timeout: HTTP timeout in seconds for visibility queries.
    """

    index_url: str = "https://pypi.org"
    publish_url: str | None = None
    timeout: float = 30.0


class GitConfig(_Section):
    """What to do in git after packages are published."""

    commit: bool = True
    tag: bool = True
    push: bool = False


class HooksConfig(_Section):
    """Shell commands run around publishing.

    ``{name}``, ``{version}`` and ``{path}`` are substituted.
    """

    pre_publish: list[str] = Field(default_factory=list)


class ReleaseConfig(_Section):
    """Top-level ``[tool.monorelease]`` settings.

    Attributes:
        changelog_file: Changelog filename inside each package directory.
        tag_format: Release tag template; must contain ``{name}`` and ``{version}``.
        dist_dir: Directory (relative to the workspace root) holding built
                  artifacts to upload.
        requirement_style: How a requirement that no longer covers a
                           dependency's new version is rewritten.
        dependent_bumps: "when-uncovered" bumps dependents only when their
                         requirement must change; "always" bumps every
                         dependent of a released package.
        independent: Packages exempt from propagated bumps.
        independent_policy: "exempt" honours ``independent``; "follow"
                            treats independent packages like the rest.
        fixed_groups: Groups of packages that always share one bump level.
        strict: Abort on the first failed package instead of continuing.
        concurrency: Maximum parallel uploads within one wave.
    """

    changelog_file: str = "CHANGELOG.md"
    tag_format: str = "{name}/v{version}"
    dist_dir: str = "dist"
    requirement_style: Literal["compatible", "pin", "minimum"] = "compatible"
    dependent_bumps: Literal["when-uncovered", "always"] = "when-uncovered"
    independent: list[str] = Field(default_factory=list)
    independent_policy: Literal["exempt", "follow"] = "exempt"
    fixed_groups: list[list[str]] = Field(default_factory=list)
    strict: bool = True
    concurrency: int = Field(default=4, ge=1)

    commits: CommitsConfig = Field(default_factory=CommitsConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    visibility: VisibilityConfig = Field(default_factory=VisibilityConfig)
    registry: RegistryConfig = Field(default_factory=RegistryConfig)
    git: GitConfig = Field(default_factory=GitConfig)
    hooks: HooksConfig = Field(default_factory=HooksConfig)

    @field_validator("independent")
    @classmethod
    def _canonical_names(cls, names: list[str]) -> list[str]:
        return [canonicalize_name(n) for n in names]

    @field_validator("fixed_groups")
    @classmethod
    def _canonical_groups(cls, groups: list[list[str]]) -> list[list[str]]:
        return [[canonicalize_name(n) for n in group] for group in groups]

    def tag_for(self, name: str, version: str) -> str:
        return self.tag_format.format(name=name, version=version)

    def tag_glob(self, name: str) -> str:
        """Glob matching every release tag of ``name`` (for ``git tag --list``)."""
        return self.tag_format.format(name=name, version="*")

    def version_from_tag(self, name: str, tag: str) -> str | None:
        """Inverse of ``tag_for``: "pkg-a/v1.2.0" → "1.2.0" (None if no match)."""
        template = self.tag_format.format(name=name, version="\0")
        prefix, _, suffix = template.partition("\0")
        if len(tag) <= len(prefix) + len(suffix):
            return None
        if not (tag.startswith(prefix) and tag.endswith(suffix)):
            return None
        return tag[len(prefix) : len(tag) - len(suffix)]


def parse_config(data: dict) -> ReleaseConfig:
    """Validate a raw ``[tool.monorelease]`` table.

    Keys may use dashes or underscores (``tag-format`` or ``tag_format``).

    Raises:
        ConfigurationError: If any key is unknown or any value is invalid.
    """
    try:
        config = ReleaseConfig.model_validate(_normalize_keys(data))
    except ValidationError as e:
        raise ConfigurationError(
            f"Invalid [tool.monorelease] configuration:\n{e}"
        ) from e

    if "{name}" not in config.tag_format or "{version}" not in config.tag_format:
        raise ConfigurationError(
            "tag_format must contain {name} and {version}, "
            f"got {config.tag_format!r}"
        )
    return config


def load_config(root: Path) -> ReleaseConfig:
    """Load ``[tool.monorelease]`` from ``root/pyproject.toml``.

    Missing table means all defaults.

    Raises:
        ConfigurationError: If the root manifest cannot be read or the
            configuration is invalid.
    """
    doc = load_pyproject(root / "pyproject.toml")
    return parse_config(get_tool_table(doc))


def _normalize_keys(data: dict) -> dict:
    normalized = {}
    for key, value in data.items():
        if isinstance(value, dict):
            value = _normalize_keys(value)
        normalized[key.replace("-", "_")] = value
    return normalized
