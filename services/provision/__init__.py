"""Public API for the provisioning package.

Construction from application configuration lives in
:mod:`services.provision.builder`, which depends on :mod:`app.config`.
"""

from __future__ import annotations

from services.provision.archive import extract_binary, scan_tar, unpack_binary, write_executable
from services.provision.cancellation import CancelToken
from services.provision.constants import (
    HASH_ALGORITHM,
    LEDGER_FILENAME,
    MAX_REDIRECTS,
    PINNED_VERSION,
    RELEASE_BASE_URL,
    SUPPORTED_PLATFORMS,
    TAGS_API_URL,
)
from services.provision.hashing import hash_file, verify_digest
from services.provision.launcher import LaunchOutcome, LaunchState, ProcessLauncher, SignalRelay
from services.provision.ledger import (
    FileLedgerStore,
    InMemoryLedgerStore,
    LedgerStore,
    VersionEntry,
    VersionLedger,
    ledger_exists,
    load_ledger,
    save_ledger,
)
from services.provision.models import (
    ArchiveKind,
    ArtifactReadError,
    DownloadFailedError,
    DownloadTransfer,
    EntryNotFoundError,
    HashMismatchError,
    InvalidVersionError,
    LedgerError,
    NetworkError,
    NoDefaultVersionError,
    OperationCancelled,
    PlatformTriple,
    ProvisionError,
    ProvisionResult,
    ReleaseDescriptor,
    TooManyRedirectsError,
    UnpackFailedError,
    UnsupportedPlatformError,
    WriteFailedError,
)
from services.provision.platforms import require_supported, resolve_platform
from services.provision.provisioner import Provisioner
from services.provision.releases import describe, parse_release_name
from services.provision.tags import ReleaseTag, list_release_tags
from services.provision.transport import RetrievingClient

__all__ = [
    "HASH_ALGORITHM",
    "LEDGER_FILENAME",
    "MAX_REDIRECTS",
    "PINNED_VERSION",
    "RELEASE_BASE_URL",
    "SUPPORTED_PLATFORMS",
    "TAGS_API_URL",
    "ArchiveKind",
    "ArtifactReadError",
    "CancelToken",
    "DownloadFailedError",
    "DownloadTransfer",
    "EntryNotFoundError",
    "FileLedgerStore",
    "HashMismatchError",
    "InMemoryLedgerStore",
    "InvalidVersionError",
    "LaunchOutcome",
    "LaunchState",
    "LedgerError",
    "LedgerStore",
    "NetworkError",
    "NoDefaultVersionError",
    "OperationCancelled",
    "PlatformTriple",
    "ProcessLauncher",
    "ProvisionError",
    "ProvisionResult",
    "Provisioner",
    "ReleaseDescriptor",
    "ReleaseTag",
    "RetrievingClient",
    "SignalRelay",
    "TooManyRedirectsError",
    "UnpackFailedError",
    "UnsupportedPlatformError",
    "VersionEntry",
    "VersionLedger",
    "WriteFailedError",
    "describe",
    "extract_binary",
    "hash_file",
    "ledger_exists",
    "list_release_tags",
    "load_ledger",
    "require_supported",
    "resolve_platform",
    "save_ledger",
    "scan_tar",
    "unpack_binary",
    "verify_digest",
    "write_executable",
]
