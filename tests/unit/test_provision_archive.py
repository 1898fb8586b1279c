from __future__ import annotations

import gzip
import os
import stat
from pathlib import Path

import pytest

from services.provision import archive
from services.provision.archive import (
    extract_binary,
    read_gzip_tarball,
    scan_tar,
    unpack_binary,
    write_executable,
)
from services.provision.models import (
    ArchiveKind,
    ArtifactReadError,
    EntryNotFoundError,
    UnpackFailedError,
    WriteFailedError,
)

from tests.unit.provision_test_utils import build_tar_bytes, build_tarball, build_zip


def _header(name: bytes, size_field: bytes) -> bytes:
    block = bytearray(512)
    block[0 : len(name)] = name
    block[124 : 124 + len(size_field)] = size_field
    return bytes(block)


def test_scan_tar_returns_payload_of_named_entry() -> None:
    buffer = build_tar_bytes({"nonodo": b"ABCD"})

    assert scan_tar(buffer, "nonodo") == b"ABCD"


def test_scan_tar_skips_preceding_entries_rounded_to_blocks() -> None:
    buffer = build_tar_bytes({"README.md": b"x" * 700, "LICENSE": b"", "nonodo": b"binary"})

    assert scan_tar(buffer, "nonodo") == b"binary"


def test_scan_tar_reads_hand_built_header() -> None:
    buffer = _header(b"nonodo", b"00000000004\0") + b"ABCD".ljust(512, b"\0") + bytes(1024)

    assert scan_tar(buffer, "nonodo") == b"ABCD"


def test_scan_tar_accepts_space_padded_size_field() -> None:
    buffer = _header(b"nonodo", b"     4 \0") + b"ABCD".ljust(512, b"\0") + bytes(1024)

    assert scan_tar(buffer, "nonodo") == b"ABCD"


def test_scan_tar_raises_when_entry_missing() -> None:
    buffer = build_tar_bytes({"other": b"data"})

    with pytest.raises(EntryNotFoundError) as excinfo:
        scan_tar(buffer, "nonodo")

    assert excinfo.value.entry == "nonodo"


def test_scan_tar_stops_at_end_of_archive_marker() -> None:
    trailing = _header(b"nonodo", b"00000000004\0") + b"ABCD".ljust(512, b"\0")
    buffer = build_tar_bytes({"other": b"data"}) + trailing

    with pytest.raises(EntryNotFoundError):
        scan_tar(buffer, "nonodo")


def test_scan_tar_handles_empty_buffer() -> None:
    with pytest.raises(EntryNotFoundError):
        scan_tar(b"", "nonodo")


def test_scan_tar_rejects_corrupt_size_field() -> None:
    buffer = _header(b"nonodo", b"not-octal\0") + bytes(1024)

    with pytest.raises(UnpackFailedError):
        scan_tar(buffer, "nonodo")


@pytest.mark.parametrize("size_field", [b"-10\0", b"-0000012\0"])
def test_scan_tar_rejects_negative_size_field(size_field: bytes) -> None:
    buffer = _header(b"nonodo", size_field) + bytes(1024)

    with pytest.raises(UnpackFailedError):
        scan_tar(buffer, "nonodo")


def test_scan_tar_rejects_truncated_payload() -> None:
    buffer = _header(b"nonodo", b"00000001000\0") + b"short"

    with pytest.raises(UnpackFailedError):
        scan_tar(buffer, "nonodo")


def test_read_gzip_tarball_rejects_corrupt_stream(tmp_path: Path) -> None:
    broken = tmp_path / "broken.tar.gz"
    broken.write_bytes(b"not gzip at all")

    with pytest.raises(UnpackFailedError):
        read_gzip_tarball(broken)


def test_read_gzip_tarball_reports_missing_file(tmp_path: Path) -> None:
    with pytest.raises(ArtifactReadError):
        read_gzip_tarball(tmp_path / "missing.tar.gz")


def test_read_gzip_tarball_enforces_size_limit(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr(archive.constants, "MAX_ARCHIVE_TOTAL_BYTES", 1024)
    big = tmp_path / "big.tar.gz"
    big.write_bytes(gzip.compress(bytes(4096)))

    with pytest.raises(UnpackFailedError):
        read_gzip_tarball(big)


def test_extract_binary_from_zip_archive(tmp_path: Path) -> None:
    zipped = build_zip(tmp_path / "release.zip", {"nonodo.exe": b"MZ-binary", "README": b"hi"})

    assert extract_binary(zipped, ArchiveKind.ZIP, "nonodo.exe") == b"MZ-binary"


def test_extract_binary_zip_missing_entry(tmp_path: Path) -> None:
    zipped = build_zip(tmp_path / "release.zip", {"README": b"hi"})

    with pytest.raises(EntryNotFoundError):
        extract_binary(zipped, ArchiveKind.ZIP, "nonodo.exe")


def test_extract_binary_zip_corrupt_archive(tmp_path: Path) -> None:
    corrupt = tmp_path / "release.zip"
    corrupt.write_bytes(b"PK\x03\x04 garbage")

    with pytest.raises(UnpackFailedError):
        extract_binary(corrupt, ArchiveKind.ZIP, "nonodo.exe")


def test_extract_binary_zip_rejects_high_compression_ratio(tmp_path: Path) -> None:
    zipped = build_zip(tmp_path / "bomb.zip", {"nonodo.exe": bytes(1024 * 1024)})

    with pytest.raises(UnpackFailedError):
        extract_binary(zipped, ArchiveKind.ZIP, "nonodo.exe")


def test_write_executable_sets_execute_bits(tmp_path: Path) -> None:
    destination = tmp_path / "bin" / "nonodo"

    write_executable(b"payload", destination)

    assert destination.read_bytes() == b"payload"
    if os.name != "nt":
        mode = destination.stat().st_mode
        assert mode & stat.S_IXUSR
        assert mode & stat.S_IXGRP
        assert mode & stat.S_IXOTH
    assert [path.name for path in destination.parent.iterdir()] == ["nonodo"]


def test_write_executable_wraps_filesystem_errors(tmp_path: Path) -> None:
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("file", encoding="utf-8")

    with pytest.raises(WriteFailedError) as excinfo:
        write_executable(b"payload", blocker / "nonodo")

    assert isinstance(excinfo.value.cause, OSError)


def test_unpack_binary_writes_tarball_entry(tmp_path: Path) -> None:
    tarball = build_tarball(tmp_path / "release.tar.gz", {"nonodo": b"ABCD"})
    destination = tmp_path / "nonodo-v1.0.0-linux-amd64"

    unpack_binary(tarball, ArchiveKind.TAR_GZ, "nonodo", destination)

    assert destination.read_bytes() == b"ABCD"
