"""Publish executor: drive every planned release through its states.

Per package::

    pending → rewriting → uploading → awaiting-visibility → published
                  │           │                │
                  └───────────┴────────────────┴──→ failed
    pending → skipped  (dependency not published, strict abort, cancel)
    pending → rewriting → pending  (dry run, publishing disabled)

Waves run one after another. A package is only started once every package
it depends on is published; within a wave, a bounded thread pool uploads in
parallel. Each worker only touches its own package's files.
"""

from __future__ import annotations

import datetime as dt
import difflib
import re
import subprocess
import threading
from collections.abc import Iterable
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path

from tomlkit.exceptions import TOMLKitError

from .changelog import build_section, merge_changelog
from .config import ReleaseConfig
from .deps import render_pyproject
from .errors import (
    ChangelogWriteError,
    ConfigurationError,
    ManifestWriteError,
    PackageError,
    PublishError,
    RegistryError,
    VisibilityTimeoutError,
)
from .graph import DependencyGraph
from .models import PackageRelease, PackageStatus, PublishPlan, PublishState, Workspace
from .registry import Registry
from .retry import Clock, SystemClock, call_with_retry, wait_until
from .shell import run_shell, step, warn

_SETTLED_BAD = (PublishState.FAILED, PublishState.SKIPPED)
_STRICT_ABORT = "an earlier failure aborted the run (strict mode)"
_HOOK_FIELD_RE = re.compile(r"\{(name|version|path)\}")


class PublishExecutor:
    """Executes a PublishPlan against a registry.

    Args:
        workspace: Workspace the plan was computed for. Package versions are
                   advanced in place once their manifest is rewritten.
        graph: Dependency graph, used to skip dependents of failures.
        registry: Where packages are uploaded and queried.
        config: Retry, visibility, hook and changelog settings.
        clock: Time source for backoff and polling.
        dry_run: Stop after computing the rewrites; print diffs, write
                 nothing and never contact the registry.
        publish: Upload after rewriting. Without it packages are rewritten
                 and left pending, so a later run resumes them.
        strict: Override ``config.strict``.
        concurrency: Override ``config.concurrency``.
        today: Date used in changelog headings.
    """

    def __init__(
        self,
        workspace: Workspace,
        graph: DependencyGraph,
        registry: Registry,
        config: ReleaseConfig,
        *,
        clock: Clock | None = None,
        dry_run: bool = False,
        publish: bool = True,
        strict: bool | None = None,
        concurrency: int | None = None,
        today: dt.date | None = None,
    ) -> None:
        self.workspace = workspace
        self.graph = graph
        self.registry = registry
        self.config = config
        self.clock = clock or SystemClock()
        self.dry_run = dry_run
        self.publish = publish
        self.strict = config.strict if strict is None else strict
        self.concurrency = concurrency or config.concurrency
        self.today = today or dt.date.today()
        self._cancelled = threading.Event()
        self._aborted = threading.Event()
        self._output = threading.Lock()

    def cancel(self) -> None:
        """Stop starting new uploads. Uploads already running finish."""
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def execute(self, plan: PublishPlan) -> dict[str, PackageStatus]:
        """Run the plan wave by wave.

        Returns:
            Package name → final status, in plan order.
        """
        statuses = {
            r.name: PackageStatus(name=r.name, version=r.new) for r in plan.releases
        }
        not_published: set[str] = set()

        for index, wave in enumerate(plan.waves):
            step(f"Wave {index}: {', '.join(r.name for r in wave)}")
            runnable: list[PackageRelease] = []
            for release in wave:
                status = statuses[release.name]
                blocked = sorted(
                    self.graph.transitive_dependencies(release.name) & not_published
                )
                if self._aborted.is_set():
                    self._skip(status, _STRICT_ABORT)
                elif self.cancelled:
                    self._skip(status, "cancelled")
                elif blocked:
                    self._skip(status, f"dependency {', '.join(blocked)} not published")
                else:
                    runnable.append(release)

            self._run_wave(runnable, statuses)

            for release in wave:
                if statuses[release.name].state in _SETTLED_BAD:
                    not_published.add(release.name)
        return statuses

    def _run_wave(
        self, releases: Iterable[PackageRelease], statuses: dict[str, PackageStatus]
    ) -> None:
        releases = list(releases)
        if not releases:
            return
        workers = min(self.concurrency, len(releases))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = [
                pool.submit(self._release_one, r, statuses[r.name]) for r in releases
            ]
            try:
                for future in as_completed(futures):
                    future.result()
            except KeyboardInterrupt:
                self.cancel()
                warn("Interrupted: finishing uploads in progress, starting no new ones")

    def _release_one(self, release: PackageRelease, status: PackageStatus) -> None:
        if self._aborted.is_set():
            self._skip(status, _STRICT_ABORT)
            return
        if self.cancelled:
            self._skip(status, "cancelled")
            return

        try:
            status.state = PublishState.REWRITING
            self._rewrite(release)
            if self.dry_run:
                status.state = PublishState.PENDING
                status.reason = "dry run"
                return
            if not self.publish:
                status.state = PublishState.PENDING
                status.reason = "publishing disabled"
                return

            status.state = PublishState.UPLOADING
            if self._visible(release.name, release.new):
                self._say(f"  {release.name} {release.new} already on the registry")
                status.uploaded = True
                status.state = PublishState.PUBLISHED
                status.reason = "already published"
                return
            self._upload(release, status)
            if status.state == PublishState.SKIPPED:
                return

            status.state = PublishState.AWAITING_VISIBILITY
            self._await_visibility(release)
            status.state = PublishState.PUBLISHED
            self._say(f"  {release.name} {release.new} published")
        except PackageError as e:
            self._fail(status, e)
        except Exception as e:
            self._fail(status, PublishError(release.name, f"unexpected error: {e!r}"))

    def _rewrite(self, release: PackageRelease) -> None:
        """Render the new manifest and changelog, and write them unless dry-run.

        Raises:
            ManifestWriteError: If the manifest cannot be parsed or written.
            ChangelogWriteError: If the changelog cannot be merged or written.
        """
        name = release.name
        pkg = self.workspace[name]
        pkg_dir = self.workspace.package_dir(name)
        manifest = pkg_dir / "pyproject.toml"
        changelog = pkg_dir / self.config.changelog_file

        try:
            old_manifest = manifest.read_text()
            new_manifest = render_pyproject(
                manifest, release.new, release.requirement_updates
            )
        except (
            OSError, UnicodeDecodeError, KeyError, ConfigurationError, TOMLKitError
        ) as e:
            raise ManifestWriteError(name, f"cannot rewrite {manifest}: {e}") from e

        try:
            old_changelog = changelog.read_text() if changelog.exists() else ""
        except (OSError, UnicodeDecodeError) as e:
            raise ChangelogWriteError(name, f"cannot read {changelog}: {e}") from e
        section = build_section(release, self.today)
        new_changelog = merge_changelog(old_changelog, section)

        if self.dry_run:
            root = self.workspace.root
            self._say(
                diff_text(old_manifest, new_manifest, manifest.relative_to(root))
                + diff_text(old_changelog, new_changelog, changelog.relative_to(root))
            )
            return

        try:
            if new_manifest != old_manifest:
                manifest.write_text(new_manifest)
        except OSError as e:
            raise ManifestWriteError(name, f"cannot write {manifest}: {e}") from e
        try:
            if new_changelog != old_changelog:
                changelog.write_text(new_changelog)
        except OSError as e:
            raise ChangelogWriteError(name, f"cannot write {changelog}: {e}") from e

        pkg.version = release.new
        pkg.changelog = new_changelog
        self._say(f"  {name}: rewrote manifest and changelog for {release.new}")

    def _upload(self, release: PackageRelease, status: PackageStatus) -> None:
        """Run pre-publish hooks and upload with retries.

        Raises:
            PublishError: If a hook fails or every upload attempt failed.
        """
        name = release.name
        pkg = self.workspace[name]
        pkg_dir = self.workspace.package_dir(name)

        for hook in self.config.hooks.pre_publish:
            command = render_hook(hook, name=name, version=release.new, path=pkg.path)
            self._say(f"  {name}: $ {command}")
            try:
                run_shell(command, cwd=pkg_dir)
            except subprocess.CalledProcessError as e:
                detail = (e.stderr or "").strip()
                raise PublishError(
                    name, f"pre_publish hook {command!r} failed: {detail}"
                ) from e

        if self._aborted.is_set():
            self._skip(status, _STRICT_ABORT)
            return
        if self.cancelled:
            self._skip(status, "cancelled before upload")
            return

        self._say(f"  {name}: uploading {release.new}")
        try:
            call_with_retry(
                lambda: self.registry.publish(pkg, release.new),
                self.config.retry,
                self.clock,
                label=f"{name} upload",
            )
        except RegistryError as e:
            attempts = self.config.retry.max_attempts
            raise PublishError(
                name, f"upload failed after {attempts} attempts: {e}"
            ) from e
        status.uploaded = True

    def _await_visibility(self, release: PackageRelease) -> None:
        """Block until the registry reports the new version.

        Raises:
            VisibilityTimeoutError: If the version is still invisible after
                ``visibility.max_wait`` seconds.
        """
        self._say(f"  {release.name}: waiting for {release.new} to become visible")
        visible = wait_until(
            lambda: self._visible(release.name, release.new),
            self.config.visibility,
            self.clock,
        )
        if not visible:
            raise VisibilityTimeoutError(
                release.name,
                f"uploaded {release.new} but it was not visible after "
                f"{self.config.visibility.max_wait:g}s; do not publish it again, "
                "wait for the index and re-run",
            )

    def _visible(self, name: str, version: str) -> bool:
        try:
            return self.registry.query_visible(name, version)
        except RegistryError as e:
            self._say(f"    {name}: visibility query failed: {e}")
            return False

    def _fail(self, status: PackageStatus, error: PackageError) -> None:
        if self.strict:
            self._aborted.set()
        status.state = PublishState.FAILED
        status.error = type(error).__name__
        status.reason = str(error)
        self._say(f"  FAILED {error}")

    def _skip(self, status: PackageStatus, reason: str) -> None:
        status.state = PublishState.SKIPPED
        status.reason = reason
        self._say(f"  {status.name}: skipped ({reason})")

    def _say(self, text: str) -> None:
        if not text:
            return
        with self._output:
            print(text.rstrip("\n"))


def render_hook(command: str, **fields: str) -> str:
    """Substitute ``{name}``, ``{version}`` and ``{path}`` in a hook command.

    Other braces, such as shell ``${VAR}`` expansions, are left alone.
    """
    return _HOOK_FIELD_RE.sub(lambda m: fields[m.group(1)], command)


def diff_text(old: str, new: str, path: Path) -> str:
    return "".join(
        difflib.unified_diff(
            old.splitlines(keepends=True),
            new.splitlines(keepends=True),
            fromfile=f"a/{path.as_posix()}",
            tofile=f"b/{path.as_posix()}",
        )
    )
