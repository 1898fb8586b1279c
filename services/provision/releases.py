"""Compose release artifact names and URLs for a version and platform."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from services.provision.constants import (
    HASH_ALGORITHM,
    PRODUCT_NAME,
    RELEASE_BASE_URL,
    TAR_ARCHIVE_EXTENSION,
    WINDOWS_EXECUTABLE_EXTENSION,
    ZIP_ARCHIVE_EXTENSION,
)
from services.provision.models import ArchiveKind, PlatformTriple, ReleaseDescriptor
from services.provision.versioning import is_valid_semver, require_semver

_LOGGER = logging.getLogger(__name__)

__all__ = ["ParsedReleaseName", "describe", "parse_release_name"]

_RELEASE_NAME_PATTERN = re.compile(
    rf"^{re.escape(PRODUCT_NAME)}-v(?P<version>.+)-(?P<os>[a-z0-9]+)-(?P<arch>[a-z0-9_]+)"
    rf"(?P<ext>{re.escape(TAR_ARCHIVE_EXTENSION)}|{re.escape(ZIP_ARCHIVE_EXTENSION)}"
    rf"|{re.escape(WINDOWS_EXECUTABLE_EXTENSION)})?$"
)


def describe(
    version: str,
    platform: PlatformTriple,
    base_url: str = RELEASE_BASE_URL,
    *,
    hash_algorithm: str = HASH_ALGORITHM,
) -> ReleaseDescriptor:
    """Return the :class:`ReleaseDescriptor` for ``version`` on ``platform``."""

    require_semver(version)
    stem = f"{PRODUCT_NAME}-v{version}-{platform.os}-{platform.arch}"
    if platform.is_windows:
        archive_kind = ArchiveKind.ZIP
        archive_name = f"{stem}{ZIP_ARCHIVE_EXTENSION}"
        binary_name = f"{stem}{WINDOWS_EXECUTABLE_EXTENSION}"
    else:
        archive_kind = ArchiveKind.TAR_GZ
        archive_name = f"{stem}{TAR_ARCHIVE_EXTENSION}"
        binary_name = stem
    descriptor = ReleaseDescriptor(
        version=version,
        base_url=base_url,
        archive_name=archive_name,
        binary_name=binary_name,
        archive_kind=archive_kind,
        hash_algorithm=hash_algorithm,
    )
    _LOGGER.debug("Release %s for %s uses archive %s", version, platform.support_key, archive_name)
    return descriptor


@dataclass(frozen=True)
class ParsedReleaseName:
    """Version and platform recovered from an archive or binary name."""

    version: str
    platform: PlatformTriple


def parse_release_name(name: str) -> ParsedReleaseName | None:
    """Invert the naming pattern used by :func:`describe`."""

    match = _RELEASE_NAME_PATTERN.match(name)
    if match is None:
        return None
    version = match.group("version")
    if not is_valid_semver(version):
        return None
    return ParsedReleaseName(
        version=version,
        platform=PlatformTriple(os=match.group("os"), arch=match.group("arch")),
    )
