"""Package registry access.

The executor only needs two capabilities: upload a package version and ask
whether a version is visible yet. ``PyPIRegistry`` provides them for any
PyPI-compatible index: uploads go through ``uv publish`` and visibility is
read from the JSON API.
"""

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Protocol

import httpx
from packaging.utils import canonicalize_name
from packaging.version import InvalidVersion, Version

from .config import ReleaseConfig
from .errors import RegistryError
from .models import Package
from .shell import run


class Registry(Protocol):
    """What the executor needs from a registry."""

    def publish(self, package: Package, version: str) -> None:
        """Upload ``package`` at ``version``.

        Raises:
            RegistryError: If this attempt failed. The caller retries.
        """
        ...

    def query_visible(self, name: str, version: str) -> bool:
        """Whether ``name`` ``version`` can be resolved from the index."""
        ...


def artifact_prefix(name: str, version: str) -> str:
    """Filename prefix of a package's wheels and sdists.

    Distribution filenames use underscores, not hyphens, and the normalized
    version: "pkg-a", "1.0.0-rc.1" → "pkg_a-1.0.0rc1".
    """
    try:
        normalized = str(Version(version))
    except InvalidVersion:
        normalized = version
    return f"{canonicalize_name(name).replace('-', '_')}-{normalized}"


def find_artifacts(dist_dir: Path, name: str, version: str) -> list[Path]:
    """Built artifacts for one package version, sorted."""
    if not dist_dir.is_dir():
        return []
    prefix = artifact_prefix(name, version)
    sdists = (f"{prefix}.tar.gz", f"{prefix}.zip")
    return sorted(
        p
        for p in dist_dir.iterdir()
        if p.name.startswith(prefix + "-") or p.name in sdists
    )


class PyPIRegistry:
    """A PyPI-compatible index.

    Args:
        config: Release configuration (registry URLs, dist directory).
        root: Workspace root; ``dist_dir`` is resolved against it.
        client: HTTP client for visibility queries. A new one is created
                when omitted.
    """

    def __init__(
        self,
        config: ReleaseConfig,
        root: Path,
        client: httpx.Client | None = None,
    ) -> None:
        self.config = config
        self.dist_dir = root / config.dist_dir
        self.client = client or httpx.Client(
            timeout=config.registry.timeout, follow_redirects=True
        )

    def publish(self, package: Package, version: str) -> None:
        files = find_artifacts(self.dist_dir, package.name, version)
        if not files:
            raise RegistryError(
                f"No artifacts for {package.name} {version} in {self.dist_dir}"
            )

        args = ["uv", "publish"]
        if self.config.registry.publish_url:
            args += ["--publish-url", self.config.registry.publish_url]
        args += [str(f) for f in files]
        try:
            run(*args)
        except subprocess.CalledProcessError as e:
            raise RegistryError(
                f"uv publish exited with status {e.returncode}", stderr=e.stderr
            ) from e
        except OSError as e:
            raise RegistryError(f"Cannot run uv publish: {e}") from e

    def query_visible(self, name: str, version: str) -> bool:
        base = self.config.registry.index_url.rstrip("/")
        url = f"{base}/pypi/{canonicalize_name(name)}/{version}/json"
        try:
            response = self.client.get(url)
        except httpx.HTTPError as e:
            raise RegistryError(f"GET {url} failed: {e}") from e
        if response.status_code == 404:
            return False
        if response.status_code != 200:
            raise RegistryError(f"GET {url} returned HTTP {response.status_code}")
        return True

    def close(self) -> None:
        self.client.close()
