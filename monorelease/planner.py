"""Publish order planning.

Only released packages appear in the plan, but ordering must still respect
dependencies that pass through packages staying at their version: if A
depends on B, B on C, and only A and C are released, C has to be visible
before A is uploaded. The planner therefore layers the released packages
over the transitive dependency relation restricted to them.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping

from packaging.utils import canonicalize_name

from .errors import ConfigurationError
from .graph import DependencyGraph
from .models import PackageRelease, PublishPlan
from .shell import warn


def select_releases(
    releases: Mapping[str, PackageRelease],
    graph: DependencyGraph,
    include: Iterable[str] = (),
    exclude: Iterable[str] = (),
) -> dict[str, PackageRelease]:
    """Apply the ``--package`` / ``--exclude`` filters.

    Selecting a package also selects every released package it depends on,
    directly or transitively. Excluding a package is allowed as long as no
    remaining release depends on it.

    Args:
        releases: All planned releases.
        graph: Workspace dependency graph.
        include: Package names to release; empty means all.
        exclude: Package names to leave out.

    Returns:
        The filtered releases, sorted by name.

    Raises:
        ConfigurationError: If a name is not a workspace package, or an
            excluded package is a dependency of a selected one.
    """
    included = {canonicalize_name(n) for n in include}
    excluded = {canonicalize_name(n) for n in exclude}
    unknown = sorted(n for n in included | excluded if n not in graph)
    if unknown:
        raise ConfigurationError(f"Unknown packages: {', '.join(unknown)}")

    selected = set(releases)
    if included:
        selected = set()
        for name in sorted(included):
            if name not in releases:
                warn(f"{name} has nothing to release")
                continue
            selected.add(name)
            selected |= graph.transitive_dependencies(name) & set(releases)
    selected -= excluded

    for name in sorted(selected):
        blocked = sorted(graph.transitive_dependencies(name) & excluded & set(releases))
        if blocked:
            raise ConfigurationError(
                f"Cannot exclude {', '.join(blocked)}: {name} depends on it "
                "and is being released"
            )

    return {name: releases[name] for name in sorted(selected)}


def plan_publish(
    graph: DependencyGraph, releases: Mapping[str, PackageRelease]
) -> PublishPlan:
    """Order releases into waves.

    Every wave only depends on earlier waves; packages in one wave have no
    dependency path between them and can be uploaded in parallel.

    Example:
        B (no deps) and A (depends on B) both released → [[B], [A]]
    """
    names = set(releases)
    induced = {name: graph.transitive_dependencies(name) & names for name in names}
    waves = DependencyGraph(induced).waves()
    return PublishPlan(waves=[[releases[name] for name in wave] for wave in waves])


def print_plan(plan: PublishPlan) -> None:
    """Print the waves of a plan."""
    if not plan.waves:
        print("  Nothing to release")
        return
    for index, wave in enumerate(plan.waves):
        members = ", ".join(f"{r.name} {r.new}" for r in wave)
        print(f"  wave {index}: {members}")
