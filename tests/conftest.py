"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import pytest
import tomlkit

from monorelease.config import ReleaseConfig, parse_config
from monorelease.errors import RegistryError
from monorelease.models import (
    ClassifiedCommit,
    Commit,
    CommitKind,
    DependencyEdge,
    Package,
    Workspace,
)


@pytest.fixture
def tmp_pyproject(tmp_path: Path) -> Path:
    """Create a temporary pyproject.toml file."""
    content = """\
[project]
name = "test-package"
version = "1.0.0"
dependencies = [
    "requests>=2.0",
    "internal-dep>=1.0,<2",
]

[project.optional-dependencies]
dev = ["pytest>=8.0", "another-internal>=0.5"]

[dependency-groups]
test = ["pytest>=8.0", "group-internal>=0.1"]
"""
    pyproject = tmp_path / "pyproject.toml"
    pyproject.write_text(content)
    return pyproject


@pytest.fixture
def sample_toml_doc() -> tomlkit.TOMLDocument:
    """Create a sample TOML document."""
    content = """\
[project]
name = "my-package"
version = "2.0.0"
dependencies = ["click>=8.0", "pydantic>=2.0"]

[project.optional-dependencies]
dev = ["pytest>=8.0"]
docs = ["sphinx>=7.0"]

[dependency-groups]
test = ["hypothesis>=6.0", {include-group = "dev"}]

[tool.uv.workspace]
members = ["packages/*", "libs/*"]

[tool.monorelease]
independent = ["pkg-tools"]
"""
    return tomlkit.parse(content)


@pytest.fixture
def config() -> ReleaseConfig:
    """Default configuration with fast retry and polling schedules."""
    return parse_config(
        {
            "retry": {"max_attempts": 3, "initial_delay": 1.0, "multiplier": 2.0},
            "visibility": {
                "initial_interval": 1.0,
                "multiplier": 2.0,
                "max_interval": 4.0,
                "max_wait": 10.0,
            },
        }
    )


WorkspaceFactory = Callable[..., Path]


@pytest.fixture
def make_workspace(tmp_path: Path) -> WorkspaceFactory:
    """Write a uv workspace to disk and return its root.

    Usage::

        root = make_workspace(
            {"pkg-a": ("1.0.0", ["pkg-b>=1.0,<2"]), "pkg-b": ("1.0.0", [])},
            tool={"independent": ["pkg-a"]},
        )
    """

    def factory(
        packages: dict[str, tuple[str, list[str]]],
        tool: dict | None = None,
        changelogs: dict[str, str] | None = None,
    ) -> Path:
        root = tmp_path / "ws"
        root.mkdir(exist_ok=True)
        doc = tomlkit.document()
        doc["tool"] = {"uv": {"workspace": {"members": ["packages/*"]}}}
        if tool is not None:
            doc["tool"]["monorelease"] = tool
        (root / "pyproject.toml").write_text(tomlkit.dumps(doc))

        for name, (version, deps) in packages.items():
            pkg_dir = root / "packages" / name
            pkg_dir.mkdir(parents=True, exist_ok=True)
            manifest = tomlkit.document()
            project = tomlkit.table()
            project["name"] = name
            project["version"] = version
            project["dependencies"] = deps
            manifest["project"] = project
            (pkg_dir / "pyproject.toml").write_text(tomlkit.dumps(manifest))
            if changelogs and name in changelogs:
                (pkg_dir / "CHANGELOG.md").write_text(changelogs[name])
        return root

    return factory


def make_package(
    name: str, version: str = "1.0.0", requires: dict[str, str] | None = None, **kwargs
) -> Package:
    """In-memory package; ``requires`` maps dependency name → requirement."""
    edges = [
        DependencyEdge(source=name, target=target, requirement=req)
        for target, req in (requires or {}).items()
    ]
    return Package(
        name=name,
        version=version,
        path=f"packages/{name}",
        dependencies=edges,
        **kwargs,
    )


@pytest.fixture
def workspace_of() -> Callable[..., Workspace]:
    """Build an in-memory workspace from packages."""

    def factory(*packages: Package, root: Path = Path("/ws")) -> Workspace:
        return Workspace(root=root, packages={p.name: p for p in packages})

    return factory


@pytest.fixture
def package() -> Callable[..., Package]:
    return make_package


_counter = iter(range(1, 1_000_000))


def make_classified(
    kind: CommitKind, description: str = "change", scope: str | None = None
) -> ClassifiedCommit:
    """A classified commit with a fresh, unique hash."""
    n = next(_counter)
    commit = Commit(hash=f"{n:07x}" + "0" * 33, message=description, paths=[])
    type_ = {
        CommitKind.FEATURE: "feat",
        CommitKind.FIX: "fix",
        CommitKind.BREAKING: "feat",
        CommitKind.OTHER: None,
    }[kind]
    return ClassifiedCommit(
        commit=commit, kind=kind, type=type_, scope=scope, description=description
    )


@pytest.fixture
def classified() -> Callable[..., ClassifiedCommit]:
    return make_classified


class FakeClock:
    """Simulated clock: sleeping advances time instantly."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def monotonic(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


class FakeRegistry:
    """In-memory registry.

    Attributes:
        uploads: (name, version) pairs in upload order.
        queries: (name, version) pairs in query order.
        fail_uploads: name → number of uploads that fail before one succeeds.
        visible_after: name → number of post-upload queries answering False.
        never_visible: names that never become visible.
        already_visible: (name, version) pairs visible before any upload.
    """

    def __init__(self) -> None:
        self.uploads: list[tuple[str, str]] = []
        self.queries: list[tuple[str, str]] = []
        self.fail_uploads: dict[str, int] = {}
        self.visible_after: dict[str, int] = {}
        self.never_visible: set[str] = set()
        self.already_visible: set[tuple[str, str]] = set()
        self._uploaded: set[tuple[str, str]] = set()
        self._pending_polls: dict[str, int] = {}

    def publish(self, package: Package, version: str) -> None:
        remaining = self.fail_uploads.get(package.name, 0)
        if remaining:
            self.fail_uploads[package.name] = remaining - 1
            raise RegistryError(f"503 from upload of {package.name}")
        self.uploads.append((package.name, version))
        self._uploaded.add((package.name, version))
        self._pending_polls[package.name] = self.visible_after.get(package.name, 0)

    def query_visible(self, name: str, version: str) -> bool:
        self.queries.append((name, version))
        if (name, version) in self.already_visible:
            return True
        if (name, version) not in self._uploaded or name in self.never_visible:
            return False
        if self._pending_polls.get(name, 0) > 0:
            self._pending_polls[name] -= 1
            return False
        return True


@pytest.fixture
def registry() -> FakeRegistry:
    return FakeRegistry()
