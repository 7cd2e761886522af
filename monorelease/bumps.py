"""Version bump calculation and propagation.

Each package starts from the level implied by its own commits. Levels are
then escalated until nothing changes any more:

- a dependent whose requirement no longer admits a dependency's new version
  gets at least PATCH (with ``dependent_bumps = "always"``, every dependent
  of a moving package does),
- members of a fixed group share the highest level in the group.

Levels only ever go up and are bounded by MAJOR, so the loop terminates.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence

from .changelog import section_versions
from .commits import calculate_bump
from .config import ReleaseConfig
from .deps import requirement_covers, widen_requirement
from .errors import ConfigurationError
from .graph import DependencyGraph
from .models import ClassifiedCommit, Package, PackageRelease, VersionBump, Workspace
from .shell import warn
from .versions import bump_version, compare_versions, is_valid_version, level_between


def tagged_version(package: Package, config: ReleaseConfig) -> str | None:
    """Version recorded by the package's last release tag, if parseable."""
    if not package.last_tag:
        return None
    version = config.version_from_tag(package.name, package.last_tag)
    if version is None or not is_valid_version(version):
        return None
    return version


def resume_base(package: Package, config: ReleaseConfig) -> str | None:
    """Last released version of a package an earlier run left unfinished.

    An earlier run rewrote the manifest but never tagged the release when
    either the manifest version is ahead of the last tag, or the package
    was never tagged and the newest changelog section is already written
    for the manifest version. For an untagged package the base is the
    previous changelog section's version, or the manifest version when
    there is none.

    Returns:
        The version to bump from, or None if nothing is left unfinished.
    """
    tagged = tagged_version(package, config)
    if tagged is not None:
        return tagged if compare_versions(package.version, tagged) > 0 else None
    if package.last_tag or not package.changelog:
        return None

    versions = [v for v in section_versions(package.changelog) if is_valid_version(v)]
    if not versions or compare_versions(versions[0], package.version) != 0:
        return None
    earlier = [v for v in versions[1:] if compare_versions(v, package.version) < 0]
    return earlier[0] if earlier else package.version


def is_resuming(package: Package, config: ReleaseConfig) -> bool:
    """Whether an earlier run rewrote the manifest but never tagged the release."""
    return resume_base(package, config) is not None


class _Propagation:
    """Working state of one bump calculation."""

    def __init__(
        self,
        workspace: Workspace,
        graph: DependencyGraph,
        config: ReleaseConfig,
    ) -> None:
        self.workspace = workspace
        self.graph = graph
        self.config = config
        self.levels: dict[str, VersionBump] = {}
        self.bases: dict[str, str] = {}
        self.reasons: dict[str, str] = {}
        self.resuming: set[str] = set()

    def start(self, name: str, commits: Sequence[ClassifiedCommit]) -> None:
        pkg = self.workspace[name]
        level = calculate_bump(commits)
        base = pkg.version
        resumed = resume_base(pkg, self.config)
        if resumed is not None:
            # Bump from the last released version, never below the manifest
            base = resumed
            self.resuming.add(name)
            if level == VersionBump.NONE:
                self.reasons[name] = "resume"
            level = max(level, level_between(base, pkg.version))
        self.bases[name] = base
        self.levels[name] = level
        if level > VersionBump.NONE:
            self.reasons.setdefault(name, "commits")

    def moving(self, name: str) -> bool:
        return self.levels[name] > VersionBump.NONE or name in self.resuming

    def target(self, name: str) -> str:
        current = self.workspace[name].version
        bumped = bump_version(self.bases[name], self.levels[name])
        return bumped if compare_versions(bumped, current) > 0 else current

    def exempt(self, name: str) -> bool:
        return (
            self.workspace[name].independent
            and self.config.independent_policy == "exempt"
        )

    def uncovered(self, name: str, dep: str) -> list[str]:
        """Requirements of ``name`` on ``dep`` that reject dep's target."""
        new = self.target(dep)
        return [
            req
            for req in self.workspace[name].requirements_on(dep)
            if not requirement_covers(req, new)
        ]

    def escalate(self, name: str, level: VersionBump, reason: str) -> bool:
        if self.levels[name] >= level:
            return False
        if self.levels[name] == VersionBump.NONE and name not in self.reasons:
            self.reasons[name] = reason
        self.levels[name] = level
        return True

    def run(self) -> None:
        order = self.graph.topo_order()
        changed = True
        while changed:
            changed = False
            for name in order:
                if self.exempt(name):
                    continue
                for dep in self.graph.dependencies(name):
                    if not self.moving(dep):
                        continue
                    always = self.config.dependent_bumps == "always"
                    if always or self.uncovered(name, dep):
                        changed |= self.escalate(name, VersionBump.PATCH, "dependency")
            for group in self.config.fixed_groups:
                top = max((self.levels[n] for n in group), default=VersionBump.NONE)
                for n in group:
                    changed |= self.escalate(n, top, "fixed-group")

    def requirement_updates(self, name: str) -> dict[str, str]:
        """Widened requirements for ``name``, keyed by the original string.

        Raises:
            ConfigurationError: If an exempt independent package would be
                released with a requirement rejecting a dependency's new
                version.
        """
        updates: dict[str, str] = {}
        for dep in self.graph.dependencies(name):
            if not self.moving(dep):
                continue
            uncovered = self.uncovered(name, dep)
            if not uncovered:
                continue
            if self.exempt(name):
                if self.moving(name):
                    raise ConfigurationError(
                        f"{name} is independent but its requirement "
                        f"{uncovered[0]!r} excludes {dep} {self.target(dep)}; "
                        "widen it by hand or set independent_policy = \"follow\""
                    )
                warn(
                    f"{name} is not released but {uncovered[0]!r} "
                    f"excludes {dep} {self.target(dep)}"
                )
                continue
            style = self.config.requirement_style
            for req in uncovered:
                updates[req] = widen_requirement(req, self.target(dep), style)
        return updates


def calculate_bumps(
    workspace: Workspace,
    graph: DependencyGraph,
    classified: Mapping[str, Sequence[ClassifiedCommit]],
    config: ReleaseConfig,
) -> dict[str, PackageRelease]:
    """Compute the release of every package that has to move.

    Args:
        workspace: The loaded workspace.
        graph: Its dependency graph.
        classified: Package name → commits attributed to it and not yet
                    recorded in its changelog.
        config: Propagation policies and requirement style.

    Returns:
        Package name → planned release, sorted by name. Packages that stay
        at their current version are absent.

    Raises:
        ConfigurationError: If an independent package would be published
            with a requirement that rejects a dependency's new version.
    """
    state = _Propagation(workspace, graph, config)
    for name in workspace.names:
        state.start(name, classified.get(name, []))
    state.run()

    releases: dict[str, PackageRelease] = {}
    for name in workspace.names:
        updates = state.requirement_updates(name)
        if not state.moving(name):
            continue
        releases[name] = PackageRelease(
            name=name,
            old=workspace[name].version,
            new=state.target(name),
            bump=state.levels[name],
            commits=list(classified.get(name, [])),
            requirement_updates=updates,
            reason=state.reasons.get(name, "commits"),
        )
    return releases


def print_releases(releases: Mapping[str, PackageRelease]) -> None:
    """Print one line per planned release."""
    for name, release in releases.items():
        print(
            f"  {name}: {release.old} → {release.new} "
            f"({release.bump}, {release.reason})"
        )
        for old, new in release.requirement_updates.items():
            print(f"      {old}  →  {new}")
