"""Workspace discovery: read every member manifest into a Workspace model.

Reads [tool.uv.workspace].members from the root pyproject.toml to find
package directories, then extracts name, version and dependencies from each
member's pyproject.toml. Dependencies naming another member become internal
DependencyEdges; everything else is recorded as an external requirement.
"""

from __future__ import annotations

import glob
from collections.abc import Callable
from functools import partial
from pathlib import Path

from packaging.requirements import InvalidRequirement

from .config import ReleaseConfig
from .deps import dep_canonical_name
from .errors import ConfigurationError
from .history import find_last_tag
from .models import DependencyEdge, Package, Workspace
from .shell import step
from .toml import (
    get_all_dependency_strings,
    get_project_name,
    get_project_version,
    get_workspace_member_globs,
    load_pyproject,
)
from .versions import is_valid_version

TagLookup = Callable[[str], "str | None"]


def find_member_dirs(root: Path) -> list[Path]:
    """Expand the workspace member globs into package directories.

    Only directories containing a pyproject.toml are members.

    Raises:
        ConfigurationError: If the root manifest is unusable or no member
            directory exists.
    """
    root_doc = load_pyproject(root / "pyproject.toml")
    member_globs = get_workspace_member_globs(root_doc)

    member_dirs: list[Path] = []
    for pattern in member_globs:
        for match in sorted(glob.glob(str(root / pattern))):
            p = Path(match)
            if (p / "pyproject.toml").exists() and p not in member_dirs:
                member_dirs.append(p)

    if not member_dirs:
        raise ConfigurationError("No packages found matching workspace members")
    return member_dirs


def discover_workspace(
    root: Path,
    config: ReleaseConfig,
    last_tag: TagLookup | None = None,
) -> Workspace:
    """Scan the workspace and build the in-memory model.

    Args:
        root: Workspace root containing the root pyproject.toml.
        config: Release configuration (independent packages, changelog
                filename, tag format).
        last_tag: Looks up the release marker for a package name. Defaults
                  to reading git tags in ``root``.

    Returns:
        The workspace with every member package.

    Raises:
        ConfigurationError: On unparsable manifests, duplicate names, missing
            or invalid versions, unparsable requirements, or configuration
            naming unknown packages.
    """
    step("Discovering workspace packages")

    lookup = last_tag or partial(find_last_tag, config=config, root=root)

    # First pass: collect basic info from each package
    packages: dict[str, Package] = {}
    raw_deps: dict[str, list[str]] = {}

    for d in find_member_dirs(root):
        doc = load_pyproject(d / "pyproject.toml")
        rel_path = d.relative_to(root).as_posix()
        name = get_project_name(doc, d.name)
        if name in packages:
            raise ConfigurationError(
                f"Package name {name!r} is declared by both "
                f"{packages[name].path} and {rel_path}"
            )

        version = get_project_version(doc)
        if version is None:
            raise ConfigurationError(f"{rel_path}: [project].version is not set")
        if not is_valid_version(version):
            raise ConfigurationError(
                f"{rel_path}: version {version!r} is not a semantic version"
            )

        tool = doc.get("tool", {}).get("monorelease", {})
        changelog_path = d / config.changelog_file
        packages[name] = Package(
            name=name,
            version=version,
            path=rel_path,
            independent=bool(tool.get("independent", False)),
            changelog=_read_changelog(changelog_path),
        )
        raw_deps[name] = get_all_dependency_strings(doc)

    _check_configured_names(packages, config)
    for name in config.independent:
        packages[name].independent = True

    # Second pass: split deps into internal edges and external requirements
    for name, deps in raw_deps.items():
        for dep_str in deps:
            try:
                dep_name = dep_canonical_name(dep_str)
            except InvalidRequirement as e:
                raise ConfigurationError(
                    f"{packages[name].path}: invalid requirement {dep_str!r}: {e}"
                ) from e
            if dep_name == name:
                # Self-references are extras of the package itself
                continue
            if dep_name in packages:
                packages[name].dependencies.append(
                    DependencyEdge(source=name, target=dep_name, requirement=dep_str)
                )
            else:
                packages[name].external.append(dep_str)

    for name in sorted(packages):
        packages[name].last_tag = lookup(name)

    # Print discovered packages for user feedback
    for name in sorted(packages):
        info = packages[name]
        deps = f" → [{', '.join(info.deps)}]" if info.deps else ""
        marker = info.last_tag or "<untagged>"
        flag = " (independent)" if info.independent else ""
        print(f"  {name} {info.version} ({info.path}, {marker}){deps}{flag}")

    return Workspace(root=root, packages=packages)


def _read_changelog(path: Path) -> str:
    if not path.exists():
        return ""
    try:
        return path.read_text()
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigurationError(f"Cannot read {path}: {e}") from e


def _check_configured_names(
    packages: dict[str, Package], config: ReleaseConfig
) -> None:
    configured = set(config.independent)
    for group in config.fixed_groups:
        configured.update(group)
    unknown = sorted(configured - set(packages))
    if unknown:
        raise ConfigurationError(
            f"[tool.monorelease] names unknown packages: {', '.join(unknown)}"
        )
