"""Dependency handling utilities.

Provides functions for parsing PEP 508 dependency strings, checking whether a
requirement still admits a dependency's new version, widening requirements
that do not, and rewriting pyproject.toml files accordingly.
"""

from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path
from typing import Any, cast

import tomlkit
from packaging.requirements import Requirement
from packaging.utils import canonicalize_name
from packaging.version import InvalidVersion, Version

from .toml import load_pyproject
from .versions import next_breaking, release_part


def dep_canonical_name(dep_str: str) -> str:
    """Extract the canonical package name from a PEP 508 dependency string.

    Handles version specifiers, extras, and normalizes the name per PEP 503
    (lowercase, hyphens instead of underscores).

    Examples:
        "requests>=2.0" → "requests"
        "My_Package[extra]~=1.0" → "my-package"
    """
    return canonicalize_name(Requirement(dep_str).name)


def requirement_covers(dep_str: str, version: str) -> bool:
    """Check whether a requirement admits ``version``.

    A bare name ("pkg") or a direct URL reference admits every version.
    Pre-releases are admitted when the specifier range includes them.

    Examples:
        requirement_covers("pkg>=1.0,<2", "1.4.0") → True
        requirement_covers("pkg>=1.0,<2", "2.0.0") → False
    """
    req = Requirement(dep_str)
    if req.url or not req.specifier:
        return True
    try:
        candidate = Version(version)
    except InvalidVersion:
        return False
    return req.specifier.contains(candidate, prereleases=True)


def widen_requirement(dep_str: str, version: str, style: str = "compatible") -> str:
    """Rewrite a requirement so that it admits ``version``.

    Extras (sorted) and environment markers are preserved, the version
    specifier is replaced according to ``style``:

    - "compatible": ``>=version,<next-breaking`` (caret semantics)
    - "pin": ``==version``
    - "minimum": ``>=version``

    Examples:
        widen_requirement("pkg>=1.0,<2", "2.0.0") → "pkg>=2.0.0,<3.0.0"
        widen_requirement("pkg[z,a]~=1.0", "1.5.0", "pin") → "pkg[a,z]==1.5.0"
    """
    req = Requirement(dep_str)
    target = release_part(version)
    if style == "pin":
        spec = f"=={target}"
    elif style == "minimum":
        spec = f">={target}"
    elif style == "compatible":
        spec = f">={target},<{next_breaking(target)}"
    else:
        raise ValueError(f"Unknown requirement style: {style!r}")
    # Sort extras alphabetically for consistent output
    extras = f"[{','.join(sorted(req.extras))}]" if req.extras else ""
    marker = f"; {req.marker}" if req.marker else ""
    return f"{req.name}{extras}{spec}{marker}"


def render_pyproject(
    pyproject_path: Path,
    new_version: str,
    replacements: Mapping[str, str],
) -> str:
    """Return the rewritten pyproject.toml content without writing it.

    This function:
    1. Updates [project].version to new_version
    2. Replaces every dependency string found in ``replacements`` (keyed by
       the exact original string) with its rewritten form

    Dependencies are replaced in all locations:
    - [project].dependencies
    - [project].optional-dependencies.*
    - [dependency-groups].*

    Uses tomlkit to preserve formatting and comments.

    Args:
        pyproject_path: Path to the pyproject.toml file.
        new_version: New version string to set.
        replacements: Original requirement string → replacement string.

    Raises:
        ConfigurationError: If the file cannot be read or parsed.
        KeyError: If the file has no [project] table.
    """
    doc = load_pyproject(pyproject_path)
    # Cast needed because tomlkit types are complex unions
    project = cast(dict[str, Any], doc["project"])
    project["version"] = new_version

    if replacements:
        deps = project.get("dependencies")
        if isinstance(deps, list):
            _replace_in_list(deps, replacements)

        opt_deps = project.get("optional-dependencies")
        if isinstance(opt_deps, dict):
            for group in opt_deps.values():
                if isinstance(group, list):
                    _replace_in_list(group, replacements)

        dep_groups = doc.get("dependency-groups")
        if isinstance(dep_groups, dict):
            for group in dep_groups.values():
                if isinstance(group, list):
                    _replace_in_list(group, replacements)

    return tomlkit.dumps(doc)


def _replace_in_list(deps: list, replacements: Mapping[str, str]) -> None:
    """Replace matching dependency strings in a list, modifying in place."""
    for i, dep_str in enumerate(deps):
        key = str(dep_str)
        if key in replacements:
            deps[i] = replacements[key]
