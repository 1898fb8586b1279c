"""Data models and errors used by the provisioning service."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path


class ArchiveKind(str, Enum):
    """Container format wrapping the platform executable."""

    TAR_GZ = "tar.gz"
    ZIP = "zip"


@dataclass(frozen=True)
class PlatformTriple:
    """Operating system and CPU architecture of the host."""

    os: str
    arch: str

    @property
    def support_key(self) -> str:
        return f"{self.os}-{self.arch}"

    @property
    def is_windows(self) -> bool:
        return self.os == "windows"


@dataclass(frozen=True)
class ReleaseDescriptor:
    """Names and locations of one release artifact for one platform."""

    version: str
    base_url: str
    archive_name: str
    binary_name: str
    archive_kind: ArchiveKind
    hash_algorithm: str = "md5"

    @property
    def archive_url(self) -> str:
        return f"{self.base_url.rstrip('/')}/v{self.version}/{self.archive_name}"

    @property
    def digest_name(self) -> str:
        return f"{self.archive_name}.{self.hash_algorithm}"

    @property
    def digest_url(self) -> str:
        return f"{self.archive_url}.{self.hash_algorithm}"


@dataclass
class DownloadTransfer:
    """In-flight state of a single GET, including followed redirects."""

    url: str
    expected_length: int | None = None
    bytes_received: int = 0
    redirects: int = 0

    @property
    def fraction(self) -> float | None:
        if not self.expected_length:
            return None
        return min(1.0, self.bytes_received / self.expected_length)


@dataclass(frozen=True)
class ProvisionResult:
    """Outcome of :meth:`Provisioner.ensure`."""

    path: Path
    hash: str | None
    descriptor: ReleaseDescriptor
    downloaded: bool = False


class ProvisionError(RuntimeError):
    """Raised when a release cannot be provisioned or launched."""


class InvalidVersionError(ProvisionError):
    def __init__(self, version: str) -> None:
        super().__init__(f"Invalid version: {version}")
        self.version = version


class UnsupportedPlatformError(ProvisionError):
    def __init__(self, support_key: str) -> None:
        super().__init__(f"Incompatible platform: {support_key}")
        self.support_key = support_key


class NetworkError(ProvisionError):
    def __init__(self, url: str, cause: BaseException) -> None:
        super().__init__(f"Network error while requesting {url}: {cause}")
        self.url = url
        self.cause = cause


class DownloadFailedError(ProvisionError):
    def __init__(self, url: str, status_code: int | None, status_message: str | None) -> None:
        super().__init__(
            f"Error {status_code} when downloading {url}: {status_message or 'no status'}"
        )
        self.url = url
        self.status_code = status_code
        self.status_message = status_message


class TooManyRedirectsError(ProvisionError):
    def __init__(self, url: str, limit: int) -> None:
        super().__init__(f"Exceeded {limit} redirects while requesting {url}")
        self.url = url
        self.limit = limit


class OperationCancelled(ProvisionError):
    """Raised when the shared cancellation token fires mid-operation."""


class HashMismatchError(ProvisionError):
    def __init__(self, expected: str, actual: str) -> None:
        super().__init__(f"Hash mismatch for nonodo binary. Expected {expected}, got {actual}")
        self.expected = expected
        self.actual = actual


class EntryNotFoundError(ProvisionError):
    def __init__(self, entry: str, archive: str) -> None:
        super().__init__(f"Entry {entry!r} not found in {archive}")
        self.entry = entry
        self.archive = archive


class UnpackFailedError(ProvisionError):
    """Raised when an archive is corrupt or the binary was not materialised."""


class ArtifactReadError(ProvisionError):
    def __init__(self, path: Path, cause: BaseException) -> None:
        super().__init__(f"Failed to read {path}: {cause}")
        self.path = path
        self.cause = cause


class WriteFailedError(ProvisionError):
    def __init__(self, path: Path, cause: BaseException) -> None:
        super().__init__(f"Failed to write {path}: {cause}")
        self.path = path
        self.cause = cause


class LedgerError(ProvisionError):
    """Raised when the persisted version ledger cannot be parsed."""


class NoDefaultVersionError(ProvisionError):
    """Raised when no usable default version is available to run."""
