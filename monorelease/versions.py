"""Version parsing and bumping utilities.

Handles conversion between version strings and semver objects, with
special handling for incomplete version strings (e.g., "1.0" → "1.0.0").
"""

from __future__ import annotations

import re

import semver

from .models import VersionBump

# major[.minor[.patch]] followed by optional -prerelease and +build parts
_VERSION_RE = re.compile(r"^v?(?P<core>\d+(?:\.\d+){0,2})(?P<rest>[-+].*)?$")


def parse_version(version_str: str) -> semver.Version:
    """Parse a version string into a semver.Version object.

    Handles incomplete versions by padding with zeros:
    - "1" → "1.0.0"
    - "1.2" → "1.2.0"
    - "1.2.3-rc.1+build.5" → "1.2.3-rc.1+build.5"

    Raises:
        ValueError: If the string is not a semantic version.
    """
    match = _VERSION_RE.match(version_str.strip())
    if not match:
        raise ValueError(f"{version_str!r} is not a valid semantic version")
    parts = match.group("core").split(".")
    # Pad with zeros to ensure we have 3 parts
    while len(parts) < 3:
        parts.append("0")
    return semver.Version.parse(".".join(parts) + (match.group("rest") or ""))


def is_valid_version(version_str: str) -> bool:
    try:
        parse_version(version_str)
    except ValueError:
        return False
    return True


def bump_version(version_str: str, level: VersionBump) -> str:
    """Apply a bump level and return the new version string.

    Pre-release and build metadata are dropped by any real bump, so
    "1.2.3-rc.1" bumped by PATCH gives "1.2.4".

    Examples:
        bump_version("1.2.3", VersionBump.MINOR) → "1.3.0"
        bump_version("1.2", VersionBump.PATCH) → "1.2.1"
        bump_version("1.2.3", VersionBump.NONE) → "1.2.3"
    """
    v = parse_version(version_str)
    if level == VersionBump.MAJOR:
        return str(v.bump_major())
    if level == VersionBump.MINOR:
        return str(v.bump_minor())
    if level == VersionBump.PATCH:
        return str(semver.Version(v.major, v.minor, v.patch).bump_patch())
    return str(v)


def compare_versions(a: str, b: str) -> int:
    """Return -1, 0 or 1 as ``a`` sorts before, equal to, or after ``b``."""
    return parse_version(a).compare(parse_version(b))


def level_between(old: str, new: str) -> VersionBump:
    """The bump level that separates two versions (NONE if ``new <= old``)."""
    a, b = parse_version(old), parse_version(new)
    if b.compare(a) <= 0:
        return VersionBump.NONE
    if b.major != a.major:
        return VersionBump.MAJOR
    if b.minor != a.minor:
        return VersionBump.MINOR
    return VersionBump.PATCH


def next_breaking(version_str: str) -> str:
    """The first version that is API-incompatible with ``version_str``.

    Follows caret semantics: the leftmost non-zero component is the
    compatibility boundary.

    Examples:
        "2.3.1" → "3.0.0"
        "0.4.2" → "0.5.0"
        "0.0.3" → "0.0.4"
    """
    v = parse_version(version_str)
    if v.major > 0:
        return f"{v.major + 1}.0.0"
    if v.minor > 0:
        return f"0.{v.minor + 1}.0"
    return f"0.0.{v.patch + 1}"


def release_part(version_str: str) -> str:
    """Strip build metadata: "1.2.3-rc.1+b5" → "1.2.3-rc.1"."""
    return str(parse_version(version_str).replace(build=None))
