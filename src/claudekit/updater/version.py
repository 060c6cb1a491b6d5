"""Version marker storage and version comparison."""

from __future__ import annotations

import re
from dataclasses import dataclass
from itertools import zip_longest

from claudekit.logging import get_logger
from claudekit.updater.errors import VersionReadError, VersionWriteError
from claudekit.updater.fs import atomic_write_bytes
from claudekit.updater.models import Installation

log = get_logger("claudekit.updater.version")

# Dotted numeric with optional leading 'v' and optional '-suffix'
_VERSION_RE = re.compile(r"^v?(?P<base>\d+(?:\.\d+)*)(?:-(?P<suffix>[0-9A-Za-z.+-]+))?$")


@dataclass(frozen=True)
class Version:
    """A parsed version string.

    ``base`` is the numeric tuple used for ordering. A non-empty ``suffix``
    marks a pre-release or locally modified build, never a clean release.
    """

    base: tuple[int, ...]
    suffix: str = ""
    raw: str = ""

    @property
    def is_clean(self) -> bool:
        return not self.suffix

    def __str__(self) -> str:
        return self.raw or ".".join(str(p) for p in self.base) + (
            f"-{self.suffix}" if self.suffix else ""
        )


def parse_version(text: str) -> Version:
    """Parse a version string such as ``1.0.0``, ``v2.1`` or ``1.0.0-modified``.

    Raises ValueError if the string is not a dotted numeric version.
    """
    cleaned = text.strip()
    m = _VERSION_RE.match(cleaned)
    if m is None:
        raise ValueError(f"not a version: {text!r}")
    base = tuple(int(p) for p in m.group("base").split("."))
    return Version(base=base, suffix=m.group("suffix") or "", raw=cleaned)


def compare_versions(a: Version, b: Version) -> int:
    """Compare the numeric bases of two versions (-1, 0 or 1).

    Missing trailing components count as zero, so ``1.2 == 1.2.0``.
    Suffixes do not take part in ordering.
    """
    for x, y in zip_longest(a.base, b.base, fillvalue=0):
        if x != y:
            return -1 if x < y else 1
    return 0


def is_update_available(current: Version | None, latest: Version) -> bool:
    """Return True if *latest* should replace *current*.

    An unversioned installation always takes the release. With equal bases,
    a locally modified current build is replaced by the clean release.
    """
    if current is None:
        return True
    order = compare_versions(latest, current)
    if order != 0:
        return order > 0
    return not current.is_clean and latest.is_clean


class VersionStore:
    """Reads and writes the single version marker of an installation."""

    def read(self, installation: Installation) -> Version:
        """Read the installed version.

        Raises VersionReadError when the marker is missing or unparsable.
        """
        path = installation.marker_path
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError as exc:
            raise VersionReadError(installation.marker, "missing", cause=exc) from exc
        except (OSError, UnicodeDecodeError) as exc:
            raise VersionReadError(installation.marker, "unreadable", cause=exc) from exc

        lines = [line.strip() for line in text.splitlines() if line.strip()]
        if len(lines) != 1:
            raise VersionReadError(installation.marker, "invalid")
        try:
            return parse_version(lines[0])
        except ValueError as exc:
            raise VersionReadError(installation.marker, "invalid", cause=exc) from exc

    def read_or_none(self, installation: Installation) -> Version | None:
        """Read the installed version, or None for an unversioned installation."""
        try:
            return self.read(installation)
        except VersionReadError as exc:
            log.warning(
                "version_marker_unreadable",
                path=installation.marker,
                reason=exc.reason,
            )
            return None

    def write(self, installation: Installation, version: str | Version) -> None:
        """Atomically write ``version`` as the marker's single line."""
        text = str(version).strip()
        try:
            atomic_write_bytes(installation.marker_path, f"{text}\n".encode())
        except OSError as exc:
            raise VersionWriteError(installation.marker, text, cause=exc) from exc
        log.info("version_marker_written", path=installation.marker, version=text)
