"""Hashing helpers for release archive verification."""

from __future__ import annotations

import hashlib
from pathlib import Path

from services.provision.constants import HASH_ALGORITHM
from services.provision.models import ArtifactReadError, ProvisionError


def hash_file(path: Path, algorithm: str = HASH_ALGORITHM) -> str:
    try:
        digest = hashlib.new(algorithm)
    except ValueError as exc:
        raise ProvisionError(f"Unsupported hash algorithm: {algorithm}") from exc
    try:
        with Path(path).open("rb") as source:
            for chunk in iter(lambda: source.read(65536), b""):
                digest.update(chunk)
    except OSError as exc:
        raise ArtifactReadError(Path(path), exc) from exc
    return digest.hexdigest()


def verify_digest(expected: str, actual: str) -> bool:
    # Published digest files may end with a newline; the comparison is otherwise exact.
    return expected.strip() == actual
