"""Changelog rendering and merging.

Each release adds one section to the package changelog::

    ## 2.0.0 (2026-03-01)

    ### Breaking Changes

    - **api:** drop the v1 client (1a2b3c4)

    ### Bug Fixes

    - handle empty responses (5d6e7f8)

    <!-- monorelease: 1a2b3c4 5d6e7f8 9a0b1c2 -->

The trailing comment records every commit that went into the section,
including ``other`` commits that are not rendered, so the next run can tell
which commits were already released.

Sections are inserted right after the title/preamble and above every
existing section. Existing content is never modified.
"""

from __future__ import annotations

import datetime as dt
import re

from .errors import ChangelogWriteError
from .models import ChangelogSection, ClassifiedCommit, CommitKind, PackageRelease
from .versions import compare_versions, is_valid_version

PREAMBLE = (
    "# Changelog\n"
    "\n"
    "All notable changes to this package are documented in this file.\n"
)

_GROUP_TITLES = {
    CommitKind.BREAKING: "Breaking Changes",
    CommitKind.FEATURE: "Features",
    CommitKind.FIX: "Bug Fixes",
}

_HEADING_RE = re.compile(r"^## +\[?(?P<version>[^\s\]]+)\]?.*$", re.MULTILINE)
_RECORD_RE = re.compile(r"^<!-- monorelease: (?P<hashes>[0-9a-f ]*) -->$", re.MULTILINE)
_ENTRY_HASH_RE = re.compile(r"^- .* \((?P<hash>[0-9a-f]{7,40})\)$")


def entry_text(commit: ClassifiedCommit) -> str:
    """Entry text without bullet or hash, e.g. ``**api:** add retries``."""
    scope = f"**{commit.scope}:** " if commit.scope else ""
    return f"{scope}{commit.description}"


def format_entry(commit: ClassifiedCommit) -> str:
    """Format a commit as a changelog bullet: ``- **scope:** text (abc1234)``."""
    return f"- {entry_text(commit)} ({commit.commit.short_hash})"


def build_section(release: PackageRelease, date: dt.date) -> ChangelogSection:
    """Collect the entries of one release, grouped breaking → feature → fix.

    ``other`` commits follow the rendered groups so their hashes are
    recorded too.
    """
    order = [CommitKind.BREAKING, CommitKind.FEATURE, CommitKind.FIX, CommitKind.OTHER]
    entries: list[tuple[CommitKind, str]] = []
    hashes: list[str] = []
    for kind in order:
        for c in release.commits:
            if c.kind == kind:
                entries.append((kind, format_entry(c)))
                hashes.append(c.commit.short_hash)
    return ChangelogSection(
        package=release.name,
        version=release.new,
        date=date,
        entries=entries,
        hashes=list(dict.fromkeys(hashes)),
        requirements=sorted(release.requirement_updates.values()),
    )


def render_section(section: ChangelogSection) -> str:
    """Render a section as Markdown. Pure: same section, same bytes."""
    lines = [f"## {section.version} ({section.date.isoformat()})", ""]

    rendered_any = False
    for kind, title in _GROUP_TITLES.items():
        group = [line for k, line in section.entries if k == kind]
        if not group:
            continue
        lines += [f"### {title}", "", *group, ""]
        rendered_any = True

    if section.requirements:
        lines += ["### Dependencies", ""]
        lines += [f"- Require `{req}`" for req in section.requirements]
        lines.append("")
        rendered_any = True

    if not rendered_any:
        lines += ["No notable changes.", ""]

    if section.hashes:
        lines += [f"<!-- monorelease: {' '.join(section.hashes)} -->", ""]

    return "\n".join(lines)


def split_changelog(text: str) -> tuple[str, str]:
    """Split into (preamble, sections): everything before the first ``## ``."""
    match = _HEADING_RE.search(text)
    if not match:
        return text, ""
    return text[: match.start()], text[match.start() :]


def section_versions(text: str) -> list[str]:
    """Versions (or labels like "Unreleased") of every ``## `` heading, in order."""
    return [m.group("version") for m in _HEADING_RE.finditer(text)]


def released_text(text: str, current: str) -> str:
    """Changelog text without the sections for versions newer than ``current``.

    Such sections were written ahead of the release by ``monorelease
    changelog --write``, so their commits are not released yet.
    """
    matches = list(_HEADING_RE.finditer(text))
    if not matches:
        return text
    kept = [text[: matches[0].start()]]
    ends = [m.start() for m in matches[1:]] + [len(text)]
    for m, end in zip(matches, ends):
        version = m.group("version")
        if is_valid_version(version) and compare_versions(version, current) > 0:
            continue
        kept.append(text[m.start() : end])
    return "".join(kept)


def recorded_hashes(text: str) -> set[str]:
    """Short hashes already released according to a changelog.

    Collected from the trailing record comments and from bullets ending in
    a ``(hash)`` reference.
    """
    hashes: set[str] = set()
    for m in _RECORD_RE.finditer(text):
        hashes.update(h[:7] for h in m.group("hashes").split())
    for line in text.splitlines():
        m = _ENTRY_HASH_RE.match(line)
        if m:
            hashes.add(m.group("hash")[:7])
    return hashes


def handwritten_entries(text: str) -> set[str]:
    """Bullet texts that carry no commit reference (written by hand)."""
    entries: set[str] = set()
    for line in text.splitlines():
        if line.startswith("- ") and not _ENTRY_HASH_RE.match(line):
            entries.add(line[2:].strip())
    return entries


def merge_changelog(existing: str, section: ChangelogSection) -> str:
    """Insert a rendered section into existing changelog content.

    The section goes after the preamble and before the first existing
    ``## `` section ("Unreleased" included). A missing or blank changelog
    gets the standard preamble.

    Merging is idempotent: if a section for the same version is already
    present and every commit of the new section is recorded there, the
    content is returned unchanged.

    Raises:
        ChangelogWriteError: If a section for this version exists but does
            not account for all of the new section's commits.
    """
    rendered = render_section(section)
    if not existing.strip():
        return f"{PREAMBLE}\n{rendered}"
    if rendered in existing:
        return existing

    if section.version in section_versions(existing):
        missing = set(section.hashes) - recorded_hashes(existing)
        if not missing:
            return existing
        raise ChangelogWriteError(
            section.package,
            f"changelog already has a {section.version} section that does not "
            f"include commits {', '.join(sorted(missing))}",
        )

    head, tail = split_changelog(existing)
    if not head:
        return rendered + "\n" + tail
    if not head.endswith("\n"):
        head += "\n"
    if not head.endswith("\n\n"):
        head += "\n"
    return head + rendered + ("\n" + tail if tail else "")
