"""Tests for monorelease.registry."""

from __future__ import annotations

import subprocess
from pathlib import Path
from unittest.mock import MagicMock, patch

import httpx
import pytest

from monorelease.config import ReleaseConfig, parse_config
from monorelease.errors import RegistryError
from monorelease.models import Package
from monorelease.registry import PyPIRegistry, artifact_prefix, find_artifacts


def _client(handler) -> httpx.Client:
    return httpx.Client(transport=httpx.MockTransport(handler))


def _not_found(request: httpx.Request) -> httpx.Response:
    return httpx.Response(404)


PKG = Package(name="pkg-a", version="1.2.0", path="packages/pkg-a")


class TestArtifacts:
    def test_prefix_uses_underscores(self) -> None:
        assert artifact_prefix("pkg-a", "1.2.0") == "pkg_a-1.2.0"

    def test_prefix_normalizes_prerelease(self) -> None:
        assert artifact_prefix("Pkg_A", "1.2.0-rc.1") == "pkg_a-1.2.0rc1"

    def test_finds_wheels_and_sdists(self, tmp_path: Path) -> None:
        for name in (
            "pkg_a-1.2.0-py3-none-any.whl",
            "pkg_a-1.2.0.tar.gz",
            "pkg_a-1.2.01-py3-none-any.whl",
            "pkg_a-1.1.0-py3-none-any.whl",
            "pkg_ab-1.2.0-py3-none-any.whl",
        ):
            (tmp_path / name).write_text("")
        assert [p.name for p in find_artifacts(tmp_path, "pkg-a", "1.2.0")] == [
            "pkg_a-1.2.0-py3-none-any.whl",
            "pkg_a-1.2.0.tar.gz",
        ]

    def test_missing_dist_dir(self, tmp_path: Path) -> None:
        assert find_artifacts(tmp_path / "dist", "pkg-a", "1.2.0") == []


class TestPublish:
    @pytest.fixture
    def dist(self, tmp_path: Path) -> Path:
        dist = tmp_path / "dist"
        dist.mkdir()
        (dist / "pkg_a-1.2.0-py3-none-any.whl").write_text("")
        return dist

    @patch("monorelease.registry.run")
    def test_runs_uv_publish(
        self, mock_run: MagicMock, dist: Path, tmp_path: Path
    ) -> None:
        url = "https://upload.example/legacy/"
        config = parse_config({"registry": {"publish_url": url}})
        registry = PyPIRegistry(config, tmp_path, client=_client(_not_found))

        registry.publish(PKG, "1.2.0")

        mock_run.assert_called_once_with(
            "uv",
            "publish",
            "--publish-url",
            "https://upload.example/legacy/",
            str(dist / "pkg_a-1.2.0-py3-none-any.whl"),
        )

    @patch("monorelease.registry.run")
    def test_failure_becomes_registry_error(
        self, mock_run: MagicMock, dist: Path, tmp_path: Path
    ) -> None:
        mock_run.side_effect = subprocess.CalledProcessError(
            1, ["uv", "publish"], stderr="403 Forbidden"
        )
        registry = PyPIRegistry(ReleaseConfig(), tmp_path, client=_client(_not_found))

        with pytest.raises(RegistryError) as exc_info:
            registry.publish(PKG, "1.2.0")
        assert exc_info.value.stderr == "403 Forbidden"

    @patch("monorelease.registry.run")
    def test_no_artifacts(self, mock_run: MagicMock, tmp_path: Path) -> None:
        registry = PyPIRegistry(ReleaseConfig(), tmp_path, client=_client(_not_found))
        with pytest.raises(RegistryError, match="No artifacts for pkg-a 1.2.0"):
            registry.publish(PKG, "1.2.0")
        mock_run.assert_not_called()


class TestQueryVisible:
    def _registry(self, tmp_path: Path, handler) -> PyPIRegistry:
        config = parse_config({"registry": {"index_url": "https://index.example/"}})
        return PyPIRegistry(config, tmp_path, client=_client(handler))

    def test_visible(self, tmp_path: Path) -> None:
        seen: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(str(request.url))
            return httpx.Response(200, json={"info": {"version": "1.2.0"}})

        assert self._registry(tmp_path, handler).query_visible("Pkg_A", "1.2.0")
        assert seen == ["https://index.example/pypi/pkg-a/1.2.0/json"]

    def test_not_yet_visible(self, tmp_path: Path) -> None:
        registry = self._registry(tmp_path, lambda r: httpx.Response(404))
        assert not registry.query_visible("pkg-a", "1.2.0")

    def test_server_error(self, tmp_path: Path) -> None:
        registry = self._registry(tmp_path, lambda r: httpx.Response(503))
        with pytest.raises(RegistryError, match="HTTP 503"):
            registry.query_visible("pkg-a", "1.2.0")

    def test_network_error(self, tmp_path: Path) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(RegistryError, match="connection refused"):
            self._registry(tmp_path, handler).query_visible("pkg-a", "1.2.0")
