# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Release version parsing.

A release version is the git tag it is published under: a leading `v`,
three numeric components and an optional pre-release suffix, e.g. `v1.2.3`
or `v2.0.0-rc.1`. It is parsed once at the CLI boundary. Everything
downstream receives a Version, never a raw string, so a malformed tag is
rejected before a single file is written.
"""

import re
from dataclasses import dataclass
from typing import Optional

from shipwright.release.exceptions import VersionFormatError

VERSION_PATTERN = re.compile(
    r"^v(?P<major>[0-9]+)\.(?P<minor>[0-9]+)\.(?P<patch>[0-9]+)(?:-(?P<prerelease>[A-Za-z0-9.]+))?$"
)


@dataclass(frozen=True)
class Version:
    """An immutable, validated release version."""

    text: str
    major: int
    minor: int
    patch: int
    prerelease: Optional[str] = None

    @classmethod
    def parse(cls, text: str) -> "Version":
        """
        Parse `v<major>.<minor>.<patch>[-tag]`.

        Raises:
            VersionFormatError: For anything else, including a missing `v`.
        """
        match = VERSION_PATTERN.fullmatch(text)
        if match is None:
            raise VersionFormatError(
                f"Invalid version format '{text}'. Must be in format vX.Y.Z[-tag]"
            )
        return cls(
            text=text,
            major=int(match.group("major")),
            minor=int(match.group("minor")),
            patch=int(match.group("patch")),
            prerelease=match.group("prerelease"),
        )

    @property
    def is_prerelease(self) -> bool:
        return self.prerelease is not None

    def __str__(self) -> str:
        return self.text


def is_valid_version(text: str) -> bool:
    return VERSION_PATTERN.fullmatch(text) is not None


def parse_tool_version(text: str) -> tuple[int, int, int]:
    """
    Parse a bare `X.Y.Z[-tag]` tool version (as printed by `gh --version`).

    The pre-release part is ignored for comparison purposes.

    Raises:
        ValueError: If `text` is not a dotted triple.
    """
    match = re.match(r"^([0-9]+)\.([0-9]+)\.([0-9]+)(?:-[A-Za-z0-9.]+)?$", text.strip())
    if match is None:
        raise ValueError(f"Invalid tool version '{text}'. Must be in format X.Y.Z[-tag]")
    return int(match.group(1)), int(match.group(2)), int(match.group(3))
