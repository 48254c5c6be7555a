# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Tests for checksum manifest generation and verification.
"""

from pathlib import Path

import pytest

from shipwright.release.checksums.integrity import (
    ManifestFormatError,
    append_checksum,
    parse_checksum_text,
    truncate_manifest,
    verify_checksums,
)
from shipwright.utils.filesystem import TEMP_PREFIX
from shipwright.utils.hashing import compute_sha256


def _record(dist_dir: Path, *names: str) -> None:
    truncate_manifest(dist_dir)
    for name in names:
        append_checksum(dist_dir, dist_dir / name)


def test_manifest_uses_two_space_layout(tmp_path: Path):
    (tmp_path / "tool_v1.0.0_linux_amd64").write_bytes(b"\x00\x01")
    _record(tmp_path, "tool_v1.0.0_linux_amd64")

    line = (tmp_path / "checksums.txt").read_text(encoding="utf-8").strip()
    digest, name = line.split("  ")
    assert len(digest) == 64
    assert digest == digest.lower()
    assert name == "tool_v1.0.0_linux_amd64"


def test_append_after_truncate_builds_manifest_in_call_order(tmp_path: Path):
    (tmp_path / "z").write_text("z")
    (tmp_path / "a").write_text("a")
    (tmp_path / "checksums.txt").write_text("stale line\n")

    truncate_manifest(tmp_path)
    append_checksum(tmp_path, tmp_path / "z")
    digest = append_checksum(tmp_path, tmp_path / "a")

    lines = (tmp_path / "checksums.txt").read_text(encoding="utf-8").splitlines()
    assert [line.split("  ")[1] for line in lines] == ["z", "a"]
    assert digest == compute_sha256(tmp_path / "a")


def test_checksum_verification_success(tmp_path: Path):
    (tmp_path / "data.bin").write_bytes(b"\x00\x01\x02")
    _record(tmp_path, "data.bin")

    result = verify_checksums(tmp_path)
    assert result.is_valid
    assert result.checked_count == 1
    assert not result.mismatches
    assert not result.missing_files


def test_checksum_verification_corruption(tmp_path: Path):
    (tmp_path / "data.bin").write_bytes(b"original")
    _record(tmp_path, "data.bin")

    (tmp_path / "data.bin").write_bytes(b"corrupted")

    result = verify_checksums(tmp_path)
    assert not result.is_valid
    assert "data.bin" in result.mismatches


def test_checksum_verification_missing_file(tmp_path: Path):
    (tmp_path / "kept.txt").write_text("kept")
    (tmp_path / "lost.txt").write_text("lost")
    _record(tmp_path, "kept.txt", "lost.txt")

    (tmp_path / "lost.txt").unlink()

    result = verify_checksums(tmp_path)
    assert not result.is_valid
    assert "lost.txt" in result.missing_files


def test_untracked_file_invalidates_directory(tmp_path: Path):
    (tmp_path / "listed").write_text("listed")
    _record(tmp_path, "listed")
    (tmp_path / "extra").write_text("sneaked in")

    result = verify_checksums(tmp_path)
    assert not result.is_valid
    assert result.untracked_files == ["extra"]


def test_missing_manifest_is_reported_not_raised(tmp_path: Path):
    result = verify_checksums(tmp_path)
    assert not result.is_valid
    assert result.errors


def test_parser_accepts_binary_marker():
    digest = "a" * 64
    assert parse_checksum_text(f"{digest} *tool.zip\n") == {"tool.zip": digest}


def test_parser_skips_blank_lines():
    digest = "b" * 64
    assert parse_checksum_text(f"\n{digest}  tool.tar.gz\n\n") == {"tool.tar.gz": digest}


@pytest.mark.parametrize("text", ["not-a-digest  file", "abc", f"{'g' * 64}  file", f"{'a' * 64}  "])
def test_parser_rejects_malformed_lines(text: str):
    with pytest.raises(ManifestFormatError):
        parse_checksum_text(text)


def test_leftover_temp_files_are_not_untracked(tmp_path: Path):
    (tmp_path / "listed").write_text("listed")
    _record(tmp_path, "listed")
    (tmp_path / f"{TEMP_PREFIX}abc.tmp").write_text("partial")

    assert verify_checksums(tmp_path).is_valid
