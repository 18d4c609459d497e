"""
Concrete version comparison.

Orders two concrete SemVer 2.0 version strings. Ranges are not supported;
strings that are not concrete versions (``latest``, ``link:../x``, git URLs)
are reported as invalid so callers can fall back to other tie-breakers.
"""

import re
from dataclasses import dataclass
from typing import Optional, Tuple, Union

SEMVER_PATTERN = re.compile(
    r"^[v=]?\s*"
    r"(?P<major>0|[1-9]\d*)\.(?P<minor>0|[1-9]\d*)\.(?P<patch>0|[1-9]\d*)"
    r"(?:-(?P<prerelease>[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?"
    r"(?:\+(?P<build>[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?$"
)

Identifier = Union[int, str]


@dataclass(frozen=True)
class Version:
    """A parsed concrete version."""

    major: int
    minor: int
    patch: int
    prerelease: Tuple[Identifier, ...] = ()
    build: str = ""

    def _prerelease_key(self) -> Tuple:
        # A release sorts after any of its pre-releases
        if not self.prerelease:
            return (1,)
        parts = []
        for ident in self.prerelease:
            if isinstance(ident, int):
                parts.append((0, ident, ""))
            else:
                parts.append((1, 0, ident))
        return (0, tuple(parts))

    def sort_key(self) -> Tuple:
        return (self.major, self.minor, self.patch, self._prerelease_key())

    def __str__(self) -> str:
        text = f"{self.major}.{self.minor}.{self.patch}"
        if self.prerelease:
            text += "-" + ".".join(str(i) for i in self.prerelease)
        if self.build:
            text += "+" + self.build
        return text


def parse_version(text: Optional[str]) -> Optional[Version]:
    """
    Parse a concrete version string.

    Args:
        text: Version string, optionally prefixed with ``v`` or ``=``

    Returns:
        Version, or None if the string is not a concrete SemVer version
    """
    if not text or not isinstance(text, str):
        return None

    match = SEMVER_PATTERN.match(text.strip())
    if not match:
        return None

    prerelease: Tuple[Identifier, ...] = ()
    if match.group("prerelease"):
        prerelease = tuple(
            int(part) if part.isdigit() else part
            for part in match.group("prerelease").split(".")
        )

    return Version(
        major=int(match.group("major")),
        minor=int(match.group("minor")),
        patch=int(match.group("patch")),
        prerelease=prerelease,
        build=match.group("build") or "",
    )


def is_valid_version(text: Optional[str]) -> bool:
    """Check whether text is a concrete, comparable version."""
    return parse_version(text) is not None


def compare_versions(left: str, right: str) -> int:
    """
    Compare two concrete versions.

    Returns:
        -1 if left < right, 0 if equal (build metadata ignored), 1 if left > right

    Raises:
        ValueError: If either string is not a valid version
    """
    left_version = parse_version(left)
    right_version = parse_version(right)
    if left_version is None:
        raise ValueError(f"Invalid version: {left!r}")
    if right_version is None:
        raise ValueError(f"Invalid version: {right!r}")

    left_key = left_version.sort_key()
    right_key = right_version.sort_key()
    if left_key < right_key:
        return -1
    if left_key > right_key:
        return 1
    return 0


def newer_version(left: str, right: str) -> str:
    """Return the newer of two valid versions, preferring left on ties."""
    return right if compare_versions(left, right) < 0 else left
