"""CLI entry point for monorelease."""

from __future__ import annotations

import sys
from pathlib import Path

import click

from monorelease.errors import (
    ChangelogWriteError,
    ConfigurationError,
    CyclicDependencyError,
)
from monorelease.pipeline import run_release, show_graph, update_changelogs

_root_option = click.option(
    "--root",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=".",
    show_default=True,
    help="Workspace root containing the root pyproject.toml.",
)
_package_option = click.option(
    "-p",
    "--package",
    "packages",
    multiple=True,
    help="Release only this package and its released dependencies (repeatable).",
)
_exclude_option = click.option(
    "-x",
    "--exclude",
    "excludes",
    multiple=True,
    help="Leave this package out of the release (repeatable).",
)


@click.group()
@click.version_option(package_name="monorelease")
def cli() -> None:
    """Release interdependent packages of a uv workspace in dependency order."""


@cli.command()
@_root_option
@_package_option
@_exclude_option
def plan(root: Path, packages: tuple[str, ...], excludes: tuple[str, ...]) -> None:
    """Show the bumps, publish waves and file changes of the next release."""
    try:
        report = run_release(root, execute=False, include=packages, exclude=excludes)
    except (ConfigurationError, CyclicDependencyError) as e:
        raise click.ClickException(str(e)) from e
    sys.exit(report.exit_code)


@cli.command()
@_root_option
@_package_option
@_exclude_option
@click.option(
    "--execute",
    is_flag=True,
    help="Write files and upload. Without it nothing is changed.",
)
@click.option(
    "--best-effort",
    is_flag=True,
    help="Keep going after a failure, skipping only its dependents.",
)
@click.option(
    "--concurrency",
    type=click.IntRange(min=1),
    default=None,
    help="Parallel uploads per wave (default from configuration).",
)
@click.option("--no-tag", is_flag=True, help="Do not create release tags.")
@click.option("--push", is_flag=True, help="Push the release commit and tags.")
@click.option(
    "--no-publish",
    is_flag=True,
    help="Rewrite and commit manifests and changelogs without uploading.",
)
@click.option(
    "--allow-dirty",
    is_flag=True,
    help="Release even if tracked files have uncommitted changes.",
)
def release(
    root: Path,
    packages: tuple[str, ...],
    excludes: tuple[str, ...],
    execute: bool,
    best_effort: bool,
    concurrency: int | None,
    no_tag: bool,
    push: bool,
    no_publish: bool,
    allow_dirty: bool,
) -> None:
    """Run the release pipeline (dry run unless --execute)."""
    try:
        report = run_release(
            root,
            execute=execute,
            strict=False if best_effort else None,
            include=packages,
            exclude=excludes,
            concurrency=concurrency,
            tag=False if no_tag else None,
            push=True if push else None,
            publish=not no_publish,
            allow_dirty=allow_dirty,
        )
    except (ConfigurationError, CyclicDependencyError) as e:
        raise click.ClickException(str(e)) from e
    sys.exit(report.exit_code)


@cli.command()
@_root_option
@_package_option
@_exclude_option
@click.option("--write", is_flag=True, help="Write the changelogs instead of diffs.")
def changelog(
    root: Path, packages: tuple[str, ...], excludes: tuple[str, ...], write: bool
) -> None:
    """Preview or write the changelog sections of the next release."""
    try:
        update_changelogs(root, write=write, include=packages, exclude=excludes)
    except (ConfigurationError, CyclicDependencyError, ChangelogWriteError) as e:
        raise click.ClickException(str(e)) from e


@cli.command()
@_root_option
def graph(root: Path) -> None:
    """Print the workspace packages in topological waves."""
    try:
        show_graph(root)
    except (ConfigurationError, CyclicDependencyError) as e:
        raise click.ClickException(str(e)) from e
