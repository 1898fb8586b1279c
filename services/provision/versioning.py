"""Helpers for validating and ordering release versions."""

from __future__ import annotations

import re
from functools import cmp_to_key
from typing import Iterable

from packaging.version import InvalidVersion as _UnparseableVersion
from packaging.version import Version

from services.provision.models import InvalidVersionError

__all__ = [
    "compare_versions",
    "is_valid_semver",
    "normalise_tag",
    "require_semver",
    "sort_versions",
]

# Grammar published at https://semver.org (SemVer 2.0.0).
_SEMVER_PATTERN = re.compile(
    r"^(0|[1-9]\d*)\.(0|[1-9]\d*)\.(0|[1-9]\d*)"
    r"(?:-((?:0|[1-9]\d*|\d*[a-zA-Z-][0-9a-zA-Z-]*)"
    r"(?:\.(?:0|[1-9]\d*|\d*[a-zA-Z-][0-9a-zA-Z-]*))*))?"
    r"(?:\+([0-9a-zA-Z-]+(?:\.[0-9a-zA-Z-]+)*))?$"
)


def is_valid_semver(version: str) -> bool:
    return bool(_SEMVER_PATTERN.match(version))


def require_semver(version: str) -> str:
    """Return ``version`` unchanged or raise :class:`InvalidVersionError`."""

    if not isinstance(version, str) or not is_valid_semver(version):
        raise InvalidVersionError(str(version))
    return version


def normalise_tag(tag: str) -> str | None:
    """Return the SemVer part of a release tag such as ``v2.1.1-beta``."""

    candidate = tag.strip()
    if candidate[:1] in {"v", "V"}:
        candidate = candidate[1:]
    if is_valid_semver(candidate):
        return candidate
    return None


def compare_versions(current_version: str, candidate: str) -> int:
    """Compare ``candidate`` against ``current_version``.

    Returns ``1`` when ``candidate`` is newer, ``-1`` when it is older and ``0``
    when the versions are equivalent.  Versions ``packaging`` cannot parse are
    compared token by token.
    """

    if candidate == current_version:
        return 0
    try:
        candidate_version = Version(candidate)
        current_version_parsed = Version(current_version)
    except _UnparseableVersion:
        return _token_compare(current_version, candidate)
    if candidate_version == current_version_parsed:
        return 0
    if candidate_version > current_version_parsed:
        return 1
    return -1


def sort_versions(versions: Iterable[str], *, newest_first: bool = True) -> list[str]:
    ordered = sorted(versions, key=cmp_to_key(lambda a, b: compare_versions(b, a)))
    if newest_first:
        ordered.reverse()
    return ordered


def _token_compare(current_version: str, candidate: str) -> int:
    def tokenize(version: str) -> list[tuple[int, object]]:
        tokens: list[tuple[int, object]] = []
        for raw in version.replace("-", ".").replace("+", ".").split("."):
            if not raw:
                continue
            if raw.isdigit():
                tokens.append((0, int(raw)))
            else:
                tokens.append((1, raw.lower()))
        return tokens

    current_tokens = tokenize(current_version)
    candidate_tokens = tokenize(candidate)
    length = max(len(current_tokens), len(candidate_tokens))
    for index in range(length):
        current_token = current_tokens[index] if index < len(current_tokens) else (0, 0)
        candidate_token = candidate_tokens[index] if index < len(candidate_tokens) else (0, 0)
        if candidate_token != current_token:
            return 1 if candidate_token > current_token else -1
    return 0
