"""Release pipeline: discover → classify → bump → plan → publish → tag.

This module orchestrates a monorelease run:
1. Discover all packages in the workspace and their last release tags
2. Build the dependency graph (cycles abort the run)
3. Classify the commits of each package since its tag
4. Compute version bumps and propagate them to dependents
5. Filter the releases and order them into waves
6. Refuse an unclean worktree, then rewrite manifests and changelogs,
   upload and wait for the index
7. Commit the rewrites, tag published packages, optionally push
8. Print the per-package status table

Everything up to step 5 only reads. Errors there abort before any file or
the registry is touched.
"""

from __future__ import annotations

import datetime as dt
import subprocess
from collections.abc import Iterable, Sequence
from pathlib import Path

from .bumps import calculate_bumps, print_releases
from .changelog import build_section, merge_changelog
from .commits import classify_package
from .config import ReleaseConfig, load_config
from .errors import ChangelogWriteError, ConfigurationError
from .executor import PublishExecutor, diff_text
from .graph import DependencyGraph
from .history import CommitLog
from .models import (
    ClassifiedCommit,
    PackageStatus,
    PublishPlan,
    PublishState,
    Workspace,
)
from .planner import plan_publish, print_plan, select_releases
from .registry import PyPIRegistry, Registry
from .report import ReleaseReport
from .retry import Clock
from .shell import git, step, warn
from .workspace import discover_workspace


def classify_workspace(
    workspace: Workspace, config: ReleaseConfig, log: CommitLog
) -> dict[str, list[ClassifiedCommit]]:
    """Classify every package's unreleased commits."""
    step("Classifying commits")
    classified: dict[str, list[ClassifiedCommit]] = {}
    for name in workspace.names:
        pkg = workspace[name]
        commits = classify_package(pkg, log.since(pkg.last_tag), config.commits)
        classified[name] = commits
        if commits:
            kinds = ", ".join(sorted({c.kind.value for c in commits}))
            print(f"  {name}: {len(commits)} commits ({kinds})")
        else:
            print(f"  {name}: no new commits")
    return classified


def build_plan(
    root: Path,
    config: ReleaseConfig,
    include: Iterable[str] = (),
    exclude: Iterable[str] = (),
) -> tuple[Workspace, DependencyGraph, PublishPlan]:
    """Run every read-only phase and return the publish plan.

    Raises:
        ConfigurationError: On invalid workspace metadata, configuration or
            package filters.
        CyclicDependencyError: If internal dependencies form a cycle.
    """
    workspace = discover_workspace(root, config)

    step("Building dependency graph")
    graph = DependencyGraph.build(workspace)
    print(f"  {len(graph)} packages, {len(graph.edges())} internal dependencies")

    classified = classify_workspace(workspace, config, CommitLog(root))

    step("Calculating version bumps")
    releases = calculate_bumps(workspace, graph, classified, config)
    releases = select_releases(releases, graph, include, exclude)
    if releases:
        print_releases(releases)
    else:
        print("  No package needs a release")

    step("Planning publish order")
    plan = plan_publish(graph, releases)
    print_plan(plan)
    return workspace, graph, plan


def check_worktree(root: Path, *, push: bool) -> None:
    """Refuse to release from a worktree git cannot record cleanly.

    Raises:
        ConfigurationError: If tracked files have uncommitted changes, or
            if HEAD is detached while the release is to be pushed.
    """
    try:
        changed = git("status", "--porcelain", "--untracked-files=no", cwd=root)
    except subprocess.CalledProcessError as e:
        raise ConfigurationError(
            f"Cannot read the git worktree: {(e.stderr or '').strip()}"
        ) from e
    if changed:
        files = ", ".join(line.split(maxsplit=1)[-1] for line in changed.splitlines())
        raise ConfigurationError(
            f"Uncommitted changes in {files}; commit or stash them, "
            "or pass --allow-dirty"
        )
    if push and not git("symbolic-ref", "--quiet", "HEAD", cwd=root, check=False):
        raise ConfigurationError("HEAD is detached; check out a branch to push")


def record_release(
    workspace: Workspace,
    statuses: Sequence[PackageStatus],
    config: ReleaseConfig,
    *,
    tag: bool,
    push: bool,
) -> None:
    """Commit rewritten files, tag published packages and push.

    Git failures are reported as warnings: packages that reached the
    registry stay published, and the status table must still be printed.
    """
    root = workspace.root
    try:
        if config.git.commit:
            _commit_rewrites(workspace, statuses, config)
        if tag:
            _tag_published(workspace, statuses, config)
        if push:
            step("Pushing commits and tags")
            git("push", cwd=root)
            git("push", "--tags", cwd=root)
    except subprocess.CalledProcessError as e:
        command = " ".join(str(a) for a in e.cmd)
        warn(f"{command} failed: {(e.stderr or '').strip()}")


def _commit_rewrites(
    workspace: Workspace, statuses: Sequence[PackageStatus], config: ReleaseConfig
) -> None:
    root = workspace.root
    rewritten = [s for s in statuses if workspace[s.name].version == s.version]
    if not rewritten:
        return

    step("Committing release changes")
    for s in rewritten:
        pkg = workspace[s.name]
        for filename in ("pyproject.toml", config.changelog_file):
            if (workspace.package_dir(s.name) / filename).exists():
                git("add", f"{pkg.path}/{filename}", cwd=root)

    # Nothing staged means an earlier run already committed these files
    staged = git("diff", "--cached", "--name-only", cwd=root, check=False)
    if not staged:
        print("  Nothing to commit")
        return

    summary = "\n".join(f"  {s.name}: {s.version}" for s in rewritten)
    git("commit", "-m", "chore(release): publish packages", "-m", summary, cwd=root)
    print("  Committed")


def _tag_published(
    workspace: Workspace, statuses: Sequence[PackageStatus], config: ReleaseConfig
) -> None:
    root = workspace.root
    published = [s for s in statuses if s.state == PublishState.PUBLISHED]
    if not published:
        return

    step("Creating package tags")
    for s in published:
        tag = config.tag_for(s.name, s.version)
        if git("tag", "--list", tag, cwd=root, check=False):
            print(f"  {tag} (exists)")
            continue
        git("tag", tag, cwd=root)
        print(f"  {tag}")


def run_release(
    root: Path | None = None,
    *,
    execute: bool = False,
    strict: bool | None = None,
    include: Iterable[str] = (),
    exclude: Iterable[str] = (),
    concurrency: int | None = None,
    tag: bool | None = None,
    push: bool | None = None,
    publish: bool = True,
    allow_dirty: bool = False,
    registry: Registry | None = None,
    clock: Clock | None = None,
) -> ReleaseReport:
    """Execute the full release pipeline.

    Args:
        root: Workspace root. Defaults to the current directory.
        execute: Really write files and upload. Without it the run stops
                 after printing the diffs it would apply.
        strict: Override ``[tool.monorelease].strict``.
        include: Release only these packages (and their released
                 dependencies).
        exclude: Leave these packages out.
        concurrency: Override the number of parallel uploads per wave.
        tag: Override ``git.tag``.
        push: Override ``git.push``.
        publish: Upload after rewriting. Without it manifests and
                 changelogs are rewritten and committed but nothing is
                 uploaded or tagged.
        allow_dirty: Release even if tracked files have uncommitted
                     changes.
        registry: Registry to publish to. Defaults to ``PyPIRegistry``.
        clock: Time source for retries and polling.

    Returns:
        The final report; its ``exit_code`` is non-zero if any package
        failed or was skipped.

    Raises:
        ConfigurationError: Before anything is written, on invalid input or
            an unclean worktree.
        CyclicDependencyError: Before anything is written.
    """
    root = root or Path.cwd()
    config = load_config(root)
    workspace, graph, plan = build_plan(root, config, include, exclude)

    if not plan.waves:
        report = ReleaseReport([], dry_run=not execute)
        report.print()
        return report

    push = config.git.push if push is None else push
    if execute and not allow_dirty:
        check_worktree(root, push=push)

    owned = None
    if registry is None:
        registry = owned = PyPIRegistry(config, root)
    executor = PublishExecutor(
        workspace,
        graph,
        registry,
        config,
        clock=clock,
        dry_run=not execute,
        publish=publish,
        strict=strict,
        concurrency=concurrency,
    )
    step("Publishing" if execute else "Dry run: changes that would be applied")
    try:
        statuses = list(executor.execute(plan).values())
    finally:
        if owned is not None:
            owned.close()

    if execute:
        record_release(
            workspace,
            statuses,
            config,
            tag=config.git.tag if tag is None else tag,
            push=push,
        )

    report = ReleaseReport(statuses, dry_run=not execute)
    report.print()
    return report


def update_changelogs(
    root: Path | None = None,
    *,
    write: bool = False,
    include: Iterable[str] = (),
    exclude: Iterable[str] = (),
    today: dt.date | None = None,
) -> dict[str, str]:
    """Preview or write the changelog sections of the next release.

    Manifests are left alone. A written section is for a version newer than
    its manifest, so its commits still count as unreleased, and the next
    ``release`` keeps the section as it is.

    Args:
        root: Workspace root. Defaults to the current directory.
        write: Write the changelogs instead of printing diffs.
        include: Only these packages (and their released dependencies).
        exclude: Leave these packages out.
        today: Date used in section headings.

    Returns:
        Package name → new changelog content, for every changelog that
        changes.

    Raises:
        ConfigurationError: On invalid input.
        CyclicDependencyError: If internal dependencies form a cycle.
        ChangelogWriteError: If a changelog cannot be merged or written.
    """
    root = root or Path.cwd()
    config = load_config(root)
    workspace, _, plan = build_plan(root, config, include, exclude)
    date = today or dt.date.today()

    step("Writing changelogs" if write else "Changelog preview")
    changed: dict[str, str] = {}
    for release in plan.releases:
        old = workspace[release.name].changelog
        new = merge_changelog(old, build_section(release, date))
        if new == old:
            continue
        changed[release.name] = new
        path = workspace.package_dir(release.name) / config.changelog_file
        if not write:
            print(diff_text(old, new, path.relative_to(root)).rstrip("\n"))
            continue
        try:
            path.write_text(new)
        except OSError as e:
            raise ChangelogWriteError(
                release.name, f"cannot write {path}: {e}"
            ) from e
        print(f"  {path.relative_to(root).as_posix()}")

    if not changed:
        print("  No changelog changes")
    return changed


def show_graph(root: Path | None = None) -> list[list[str]]:
    """Print the workspace's topological waves and return them."""
    root = root or Path.cwd()
    config = load_config(root)
    workspace = discover_workspace(root, config)
    graph = DependencyGraph.build(workspace)

    step("Dependency waves")
    waves = graph.waves()
    for index, wave in enumerate(waves):
        print(f"  wave {index}: {', '.join(wave)}")
    return waves
