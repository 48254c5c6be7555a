# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
The build matrix: which operating system / architecture pairs we ship.

Operating systems and architectures are closed enums, and the allowed
pairs are fixed. A PlatformTarget can only be constructed for a pair in
SUPPORTED_MATRIX, so nothing downstream has to re-check "is this a real
platform" or do substring matching on slugs.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Iterable

from shipwright.release.exceptions import UnsupportedPlatformError


class OperatingSystem(str, Enum):
    LINUX = "linux"
    MACOS = "macos"
    WINDOWS = "windows"


class Architecture(str, Enum):
    AMD64 = "amd64"
    ARM64 = "arm64"
    X86 = "386"
    ARM = "arm"
    PPC64LE = "ppc64le"


SUPPORTED_MATRIX: dict[OperatingSystem, tuple[Architecture, ...]] = {
    OperatingSystem.WINDOWS: (Architecture.AMD64, Architecture.ARM64, Architecture.X86),
    OperatingSystem.MACOS: (Architecture.AMD64, Architecture.ARM64, Architecture.X86),
    OperatingSystem.LINUX: (
        Architecture.AMD64,
        Architecture.ARM64,
        Architecture.X86,
        Architecture.ARM,
        Architecture.PPC64LE,
    ),
}


@dataclass(frozen=True)
class PlatformTarget:
    """One (operating system, architecture) build output variant."""

    os: OperatingSystem
    arch: Architecture

    def __post_init__(self) -> None:
        if not isinstance(self.os, OperatingSystem) or not isinstance(self.arch, Architecture):
            raise UnsupportedPlatformError(
                f"Platform must be built from OperatingSystem and Architecture, got {self.os!r}/{self.arch!r}"
            )
        if self.arch not in SUPPORTED_MATRIX[self.os]:
            raise UnsupportedPlatformError(
                f"Unsupported platform: {self.os.value}_{self.arch.value}"
            )

    @classmethod
    def parse(cls, slug: str) -> "PlatformTarget":
        """
        Build a target from its `<os>_<arch>` slug, e.g. `linux_amd64`.

        Raises:
            UnsupportedPlatformError: Unknown OS, unknown arch, or a pair
                outside the supported matrix.
        """
        os_part, sep, arch_part = slug.strip().partition("_")
        if not sep:
            raise UnsupportedPlatformError(f"Invalid platform '{slug}'. Expected <os>_<arch>")
        try:
            os_value = OperatingSystem(os_part)
            arch_value = Architecture(arch_part)
        except ValueError as err:
            raise UnsupportedPlatformError(f"Unsupported platform: {slug}") from err
        return cls(os=os_value, arch=arch_value)

    @property
    def slug(self) -> str:
        return f"{self.os.value}_{self.arch.value}"

    @property
    def is_windows(self) -> bool:
        return self.os is OperatingSystem.WINDOWS

    @property
    def executable_suffix(self) -> str:
        return ".exe" if self.is_windows else ""

    @property
    def archive_suffix(self) -> str:
        return ".zip" if self.is_windows else ".tar.gz"

    def __str__(self) -> str:
        return self.slug


DEFAULT_PLATFORMS: tuple[PlatformTarget, ...] = tuple(
    PlatformTarget(os_value, arch)
    for os_value, arches in SUPPORTED_MATRIX.items()
    for arch in arches
)


def parse_platforms(slugs: Iterable[str]) -> tuple[PlatformTarget, ...]:
    """
    Parse a list of slugs, keeping order.

    Raises:
        UnsupportedPlatformError: On any bad slug, or when the list repeats
            a target (two targets would otherwise share one artifact name).
    """
    targets: list[PlatformTarget] = []
    seen: set[PlatformTarget] = set()
    for slug in slugs:
        target = PlatformTarget.parse(slug)
        if target in seen:
            raise UnsupportedPlatformError(f"Duplicate platform: {target.slug}")
        seen.add(target)
        targets.append(target)
    return tuple(targets)
