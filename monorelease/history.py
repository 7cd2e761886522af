"""Reading release markers and commit history from git.

Release markers are per-package tags (``{name}/v{version}`` by default).
Commits are read once per distinct marker and cached, since most packages of
a workspace share the same tag history.
"""

from __future__ import annotations

import subprocess
from pathlib import Path

from .config import ReleaseConfig
from .errors import ConfigurationError
from .models import Commit
from .shell import git
from .versions import is_valid_version

# Record and field separators emitted by `git log --format`
_RS = "\x1e"
_FS = "\x1f"
_LOG_FORMAT = f"--format={_RS}%H{_FS}%B{_FS}"


def find_last_tag(name: str, config: ReleaseConfig, root: Path) -> str | None:
    """Find the most recent release tag for a package.

    Tags are sorted by version (``--sort=-v:refname``), so ``pkg/v1.10.0``
    is newer than ``pkg/v1.9.0``.

    Tags whose version part is not a semantic version are ignored, so with
    ``{name}-v{version}`` package ``pkg`` does not pick up ``pkg-vendor-v1.0.0``.

    Returns:
        The tag name, or None if the package was never tagged.
    """
    tags = git(
        "tag",
        "--list",
        config.tag_glob(name),
        "--sort=-v:refname",
        cwd=root,
        check=False,
    )
    for tag in tags.splitlines():
        version = config.version_from_tag(name, tag)
        if version is not None and is_valid_version(version):
            return tag
    return None


def parse_log(output: str) -> list[Commit]:
    """Parse ``git log`` output produced with ``_LOG_FORMAT --name-only``.

    Each record looks like ``<RS><hash><FS><message><FS>\\n<path>\\n<path>``.
    """
    commits: list[Commit] = []
    for record in output.split(_RS):
        if not record.strip():
            continue
        # Trailing separators may have been stripped along with whitespace
        sha, message, files = (record.split(_FS, 2) + ["", ""])[:3]
        paths = [line.strip() for line in files.splitlines() if line.strip()]
        commits.append(Commit(hash=sha.strip(), message=message.strip(), paths=paths))
    return commits


class CommitLog:
    """Commit history of one repository, cached per starting marker."""

    def __init__(self, root: Path) -> None:
        self.root = root
        self._cache: dict[str | None, list[Commit]] = {}

    def since(self, marker: str | None) -> list[Commit]:
        """Commits reachable from HEAD but not from ``marker``, newest first.

        A None marker means the whole history. Merge commits are skipped,
        their changes are already represented by the merged commits.

        Raises:
            ConfigurationError: If git cannot read the history (not a
                repository, no commits yet, unknown marker).
        """
        if marker not in self._cache:
            rev_range = f"{marker}..HEAD" if marker else "HEAD"
            try:
                output = git(
                    "log",
                    "--no-merges",
                    _LOG_FORMAT,
                    "--name-only",
                    rev_range,
                    cwd=self.root,
                )
            except subprocess.CalledProcessError as e:
                detail = (e.stderr or "").strip()
                raise ConfigurationError(
                    f"Cannot read commit history ({rev_range}): {detail}"
                ) from e
            self._cache[marker] = parse_log(output)
        return self._cache[marker]
