"""Final per-package status report."""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable

from .models import PackageStatus, PublishState
from .shell import step


class ReleaseReport:
    """Outcome of a run, one status per planned package.

    Attributes:
        statuses: Final statuses in plan order.
        dry_run: Whether the run stopped before uploading.
    """

    def __init__(
        self, statuses: Iterable[PackageStatus], *, dry_run: bool = False
    ) -> None:
        self.statuses = list(statuses)
        self.dry_run = dry_run

    def _names(self, state: PublishState) -> list[str]:
        return [s.name for s in self.statuses if s.state == state]

    @property
    def published(self) -> list[str]:
        return self._names(PublishState.PUBLISHED)

    @property
    def failed(self) -> list[str]:
        return self._names(PublishState.FAILED)

    @property
    def skipped(self) -> list[str]:
        return self._names(PublishState.SKIPPED)

    @property
    def counts(self) -> Counter[PublishState]:
        return Counter(s.state for s in self.statuses)

    @property
    def exit_code(self) -> int:
        """1 if any package failed or was skipped, else 0."""
        return 1 if self.failed or self.skipped else 0

    def render(self) -> str:
        """The status table followed by a one-line summary."""
        if not self.statuses:
            return "Nothing to release."

        rows = [("PACKAGE", "VERSION", "STATE", "DETAIL")]
        for s in self.statuses:
            rows.append((s.name, s.version, s.state.value, _detail(s)))
        widths = [max(len(row[i]) for row in rows) for i in range(3)]

        lines = []
        for row in rows:
            cells = [cell.ljust(width) for cell, width in zip(row, widths)]
            lines.append("  ".join([*cells, row[3]]).rstrip())

        counts = self.counts
        summary = ", ".join(
            f"{counts[state]} {state.value}" for state in PublishState if counts[state]
        )
        if self.dry_run:
            summary += " (dry run, nothing was written or uploaded)"
        return "\n".join([*lines, "", summary])

    def print(self) -> None:
        step("Release summary")
        print(self.render())


def _detail(status: PackageStatus) -> str:
    if status.state == PublishState.FAILED:
        detail = f"{status.error}: {status.reason}"
        if status.uploaded:
            detail += " [uploaded, unconfirmed]"
        return detail
    return status.reason or ""
