"""Archive handling helpers for the provisioning service."""

from __future__ import annotations

import gzip
import logging
import os
import stat
import tempfile
import zipfile
import zlib
from pathlib import Path

from services.provision import constants
from services.provision.models import (
    ArchiveKind,
    ArtifactReadError,
    EntryNotFoundError,
    UnpackFailedError,
    WriteFailedError,
)

_LOGGER = logging.getLogger(__name__)

__all__ = [
    "extract_binary",
    "read_gzip_tarball",
    "read_zip_entry",
    "scan_tar",
    "unpack_binary",
    "write_executable",
]

_ZERO_BLOCK = bytes(constants.TAR_BLOCK_SIZE)
_EXECUTE_BITS = stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH


def scan_tar(buffer: bytes, inner_filename: str, *, source: str = "tarball") -> bytes:
    """Return the payload of ``inner_filename`` from an uncompressed tar ``buffer``.

    The scan walks 512-byte header blocks.  Each header stores a NUL-terminated
    name in bytes 0-99 and the entry size as octal ASCII in bytes 124-135; the
    entry data follows, padded to a whole number of blocks.  Two consecutive
    zero blocks mark the end of the archive.
    """

    block = constants.TAR_BLOCK_SIZE
    offset = 0
    length = len(buffer)
    while offset + block <= length:
        header = buffer[offset : offset + block]
        if header == _ZERO_BLOCK:
            following = buffer[offset + block : offset + 2 * block]
            if following == _ZERO_BLOCK or not following:
                _LOGGER.debug("Reached end-of-archive marker at offset %s", offset)
                break
            offset += block
            continue

        name = _parse_name(header[constants.TAR_NAME_FIELD])
        size = _parse_size(header[constants.TAR_SIZE_FIELD], offset)
        data_start = offset + block
        if name == inner_filename:
            data_end = data_start + size
            if data_end > length:
                raise UnpackFailedError(
                    f"Tar entry {name!r} is truncated ({length - data_start} of {size} bytes)"
                )
            _LOGGER.debug("Found tar entry %s (%s bytes) at offset %s", name, size, offset)
            return buffer[data_start:data_end]

        offset = _round_up(data_start + size, block)

    raise EntryNotFoundError(inner_filename, source)


def _parse_name(field: bytes) -> str:
    return field.split(b"\0", 1)[0].decode("utf-8", errors="replace")


def _parse_size(field: bytes, offset: int) -> int:
    text = field.replace(b"\0", b" ").strip().decode("ascii", errors="replace")
    if not text:
        return 0
    try:
        size = int(text, 8)
    except ValueError as exc:
        raise UnpackFailedError(f"Corrupt tar header at offset {offset}: size {text!r}") from exc
    if size < 0:
        raise UnpackFailedError(f"Corrupt tar header at offset {offset}: size {text!r}")
    return size


def _round_up(value: int, block: int) -> int:
    return (value + block - 1) // block * block


def read_gzip_tarball(archive_path: Path) -> bytes:
    """Decompress ``archive_path`` fully into memory within the size limit."""

    limit = constants.MAX_ARCHIVE_TOTAL_BYTES
    try:
        with gzip.open(archive_path, "rb") as source:
            data = source.read(limit + 1)
    except FileNotFoundError as exc:
        raise ArtifactReadError(Path(archive_path), exc) from exc
    except (OSError, EOFError, zlib.error) as exc:
        raise UnpackFailedError(f"Failed to decompress {archive_path}: {exc}") from exc
    if len(data) > limit:
        _LOGGER.error(
            "Tarball %s expanded beyond %s bytes", archive_path, limit
        )
        raise UnpackFailedError("Release archive expanded beyond safe limits")
    return data


def read_zip_entry(archive_path: Path, entry_name: str) -> bytes:
    try:
        with zipfile.ZipFile(archive_path) as archive:
            try:
                member = archive.getinfo(entry_name)
            except KeyError:
                raise EntryNotFoundError(entry_name, str(archive_path)) from None
            _check_zip_member(member)
            return archive.read(member)
    except FileNotFoundError as exc:
        raise ArtifactReadError(Path(archive_path), exc) from exc
    except (OSError, zipfile.BadZipFile, zlib.error) as exc:
        raise UnpackFailedError(
            f"Failed to extract {entry_name} from {archive_path}: {exc}"
        ) from exc


def _check_zip_member(member: zipfile.ZipInfo) -> None:
    name = member.filename
    if member.file_size > constants.MAX_ARCHIVE_FILE_SIZE:
        _LOGGER.error(
            "Archive member %s exceeded file size limit (%s > %s)",
            name,
            member.file_size,
            constants.MAX_ARCHIVE_FILE_SIZE,
        )
        raise UnpackFailedError("Release archive contained an oversized file")
    if member.compress_size == 0 and member.file_size > 0:
        _LOGGER.error("Archive member %s reported zero compression size", name)
        raise UnpackFailedError("Release archive contained a suspiciously compressed file")
    if (
        member.compress_size > 0
        and member.file_size > member.compress_size * constants.MAX_COMPRESSION_RATIO
    ):
        _LOGGER.error(
            "Archive member %s exceeded compression ratio limit (%s > %s)",
            name,
            member.file_size,
            member.compress_size * constants.MAX_COMPRESSION_RATIO,
        )
        raise UnpackFailedError("Release archive exceeded safe compression ratio")


def extract_binary(archive_path: Path, archive_kind: ArchiveKind, inner_filename: str) -> bytes:
    """Return the raw bytes of ``inner_filename`` stored in ``archive_path``."""

    _LOGGER.info("Extracting %s from %s", inner_filename, archive_path)
    if archive_kind is ArchiveKind.TAR_GZ:
        buffer = read_gzip_tarball(archive_path)
        return scan_tar(buffer, inner_filename, source=str(archive_path))
    if archive_kind is ArchiveKind.ZIP:
        return read_zip_entry(archive_path, inner_filename)
    raise UnpackFailedError(f"Unsupported archive kind: {archive_kind}")


def write_executable(payload: bytes, destination: Path) -> Path:
    """Write ``payload`` to ``destination`` and mark it executable."""

    destination = Path(destination)
    temp_name: str | None = None
    try:
        destination.parent.mkdir(parents=True, exist_ok=True)
        fd, temp_name = tempfile.mkstemp(
            prefix=f".{destination.name}.", suffix=".part", dir=destination.parent
        )
        with os.fdopen(fd, "wb") as target:
            target.write(payload)
        mode = os.stat(temp_name).st_mode
        os.chmod(temp_name, mode | stat.S_IRUSR | stat.S_IWUSR | _EXECUTE_BITS)
        os.replace(temp_name, destination)
        temp_name = None
    except OSError as exc:
        raise WriteFailedError(destination, exc) from exc
    finally:
        if temp_name is not None:
            try:
                os.unlink(temp_name)
            except OSError:
                _LOGGER.debug("Unable to remove partial file %s", temp_name, exc_info=True)
    _LOGGER.debug("Wrote %s bytes to %s", len(payload), destination)
    return destination


def unpack_binary(
    archive_path: Path, archive_kind: ArchiveKind, inner_filename: str, destination: Path
) -> Path:
    payload = extract_binary(archive_path, archive_kind, inner_filename)
    return write_executable(payload, destination)
