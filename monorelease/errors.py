"""Exception hierarchy for monorelease.

Errors fall into two groups:

- Run-level errors (``ConfigurationError``, ``CyclicDependencyError``) are
  raised while loading and planning, before anything on disk or on the
  registry is touched. They abort the whole run.
- Package-level errors (``PackageError`` subclasses) are raised while
  executing the plan. They are caught by the executor, recorded against a
  single package, and reported at the end of the run.
"""

from __future__ import annotations


class ReleaseError(Exception):
    """Base class for all monorelease errors."""


class ConfigurationError(ReleaseError):
    """Workspace metadata or configuration is invalid or ambiguous."""


class CyclicDependencyError(ReleaseError):
    """Internal dependencies form a cycle.

    Attributes:
        cycle: Package names along the cycle, first name repeated at the end.
    """

    def __init__(self, cycle: list[str]) -> None:
        self.cycle = cycle
        super().__init__(f"Dependency cycle detected: {' -> '.join(cycle)}")


class RegistryError(ReleaseError):
    """A single registry call failed. Retried by the executor."""

    def __init__(self, message: str, *, stderr: str | None = None) -> None:
        self.stderr = stderr
        super().__init__(message)


class PackageError(ReleaseError):
    """A failure scoped to one package during execution."""

    def __init__(self, package: str, message: str) -> None:
        self.package = package
        super().__init__(f"{package}: {message}")


class ManifestWriteError(PackageError):
    """The package manifest could not be parsed, patched or written."""


class ChangelogWriteError(PackageError):
    """The package changelog could not be merged or written."""


class PublishError(PackageError):
    """Upload failed after exhausting all retries."""


class VisibilityTimeoutError(PackageError):
    """Upload succeeded but the registry never reported the version.

    The artifact is on the registry. Publishing it again will be rejected,
    so the operator should wait for the index rather than re-run blindly.
    """
