# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Tests for the platform build matrix.
"""

import pytest

from shipwright.release.exceptions import UnsupportedPlatformError, ValidationError
from shipwright.release.platforms import (
    DEFAULT_PLATFORMS,
    Architecture,
    OperatingSystem,
    PlatformTarget,
    parse_platforms,
)


def test_default_platforms_cover_the_full_matrix_in_order():
    assert [t.slug for t in DEFAULT_PLATFORMS] == [
        "windows_amd64",
        "windows_arm64",
        "windows_386",
        "macos_amd64",
        "macos_arm64",
        "macos_386",
        "linux_amd64",
        "linux_arm64",
        "linux_386",
        "linux_arm",
        "linux_ppc64le",
    ]


def test_parse_round_trips_slug():
    target = PlatformTarget.parse("linux_arm64")
    assert target.os is OperatingSystem.LINUX
    assert target.arch is Architecture.ARM64
    assert str(target) == "linux_arm64"


def test_windows_suffixes():
    target = PlatformTarget.parse("windows_386")
    assert target.is_windows
    assert target.executable_suffix == ".exe"
    assert target.archive_suffix == ".zip"


def test_non_windows_suffixes():
    target = PlatformTarget.parse("macos_amd64")
    assert not target.is_windows
    assert target.executable_suffix == ""
    assert target.archive_suffix == ".tar.gz"


@pytest.mark.parametrize("slug", ["windows_arm", "macos_ppc64le", "windows_ppc64le", "macos_arm"])
def test_pairs_outside_the_matrix_are_rejected(slug: str):
    with pytest.raises(UnsupportedPlatformError):
        PlatformTarget.parse(slug)


@pytest.mark.parametrize("slug", ["freebsd_amd64", "linux_riscv64", "linuxamd64", "", "linux_"])
def test_unknown_values_are_rejected(slug: str):
    with pytest.raises(ValidationError):
        PlatformTarget.parse(slug)


def test_direct_construction_is_validated():
    with pytest.raises(UnsupportedPlatformError):
        PlatformTarget(OperatingSystem.WINDOWS, Architecture.PPC64LE)


def test_parse_platforms_keeps_order():
    targets = parse_platforms(["linux_amd64", "windows_amd64"])
    assert [t.slug for t in targets] == ["linux_amd64", "windows_amd64"]


def test_parse_platforms_rejects_duplicates():
    with pytest.raises(UnsupportedPlatformError, match="Duplicate"):
        parse_platforms(["linux_amd64", "linux_amd64"])
