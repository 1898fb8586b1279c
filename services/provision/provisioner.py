"""Service responsible for making a release binary available locally."""

from __future__ import annotations

import logging
from concurrent.futures import FIRST_EXCEPTION, Future, ThreadPoolExecutor, wait
from pathlib import Path
from typing import Callable

from services.provision.archive import unpack_binary
from services.provision.cancellation import CancelToken
from services.provision.constants import (
    HASH_ALGORITHM,
    RELEASE_BASE_URL,
    SUPPORTED_PLATFORMS,
    TAR_ENTRY_NAME,
    ZIP_ENTRY_NAME,
)
from services.provision.hashing import hash_file, verify_digest
from services.provision.models import (
    ArchiveKind,
    ArtifactReadError,
    HashMismatchError,
    OperationCancelled,
    PlatformTriple,
    ProvisionError,
    ProvisionResult,
    ReleaseDescriptor,
    UnpackFailedError,
    WriteFailedError,
)
from services.provision.platforms import require_supported, resolve_platform
from services.provision.releases import describe
from services.provision.transport import ProgressCallback, RetrievingClient

_LOGGER = logging.getLogger(__name__)

__all__ = ["Provisioner"]


class Provisioner:
    """Coordinate platform checks, download, verification and extraction."""

    def __init__(
        self,
        client: RetrievingClient,
        install_dir: Path,
        *,
        base_url: str = RELEASE_BASE_URL,
        hash_algorithm: str = HASH_ALGORITHM,
        supported_platforms: frozenset[str] = SUPPORTED_PLATFORMS,
        platform_resolver: Callable[[], PlatformTriple] = resolve_platform,
        verify_existing: bool = False,
        on_progress: ProgressCallback | None = None,
    ) -> None:
        self._client = client
        self._install_dir = Path(install_dir)
        self._base_url = base_url
        self._hash_algorithm = hash_algorithm
        self._supported_platforms = supported_platforms
        self._platform_resolver = platform_resolver
        self._verify_existing = verify_existing
        self._on_progress = on_progress

    @property
    def install_dir(self) -> Path:
        return self._install_dir

    def describe(self, version: str) -> ReleaseDescriptor:
        """Return the descriptor of ``version`` for the supported host platform."""

        platform = self._platform_resolver()
        require_supported(platform, self._supported_platforms)
        return describe(
            version, platform, self._base_url, hash_algorithm=self._hash_algorithm
        )

    def binary_path(self, descriptor: ReleaseDescriptor) -> Path:
        return self._install_dir / descriptor.binary_name

    def ensure(
        self,
        version: str,
        cancel_token: CancelToken | None = None,
        *,
        verify_existing: bool | None = None,
    ) -> ProvisionResult:
        """Return the local binary for ``version``, downloading it when absent.

        ``verify_existing`` overrides the constructor setting for this call.
        """

        verify = self._verify_existing if verify_existing is None else verify_existing
        token = cancel_token if cancel_token is not None else CancelToken()
        descriptor = self.describe(version)
        binary_path = self.binary_path(descriptor)

        if binary_path.exists():
            _LOGGER.debug("Nonodo binary found at %s", binary_path)
            verified_hash = self._verify_cached(descriptor) if verify else None
            return ProvisionResult(path=binary_path, hash=verified_hash, descriptor=descriptor)

        _LOGGER.info("Nonodo binary not found: %s", binary_path)
        _LOGGER.info("Downloading nonodo %s...", descriptor.version)
        archive_path = self._install_dir / descriptor.archive_name
        digest_path = self._install_dir / descriptor.digest_name
        try:
            expected_hash = self._download_release(descriptor, archive_path, digest_path, token)
            token.raise_if_cancelled()

            _LOGGER.info("Verifying hash...")
            actual_hash = hash_file(archive_path, descriptor.hash_algorithm)
            if not verify_digest(expected_hash, actual_hash):
                raise HashMismatchError(expected_hash.strip(), actual_hash)
            _LOGGER.info("Hash verified.")
        except ProvisionError:
            _discard(archive_path, digest_path)
            raise

        token.raise_if_cancelled()
        unpack_binary(archive_path, descriptor.archive_kind, _entry_name(descriptor), binary_path)
        if not binary_path.exists():
            raise UnpackFailedError(f"Problem on unpack: {binary_path} was not created")

        _LOGGER.info("Installed nonodo %s to %s", descriptor.version, binary_path)
        return ProvisionResult(
            path=binary_path, hash=actual_hash, descriptor=descriptor, downloaded=True
        )

    def _download_release(
        self,
        descriptor: ReleaseDescriptor,
        archive_path: Path,
        digest_path: Path,
        token: CancelToken,
    ) -> str:
        """Fetch the digest and the archive concurrently; return the digest text."""

        self._install_dir.mkdir(parents=True, exist_ok=True)
        local = token.child()
        with ThreadPoolExecutor(max_workers=2, thread_name_prefix="brunodo-fetch") as pool:
            digest_future = pool.submit(
                self._fetch_to, descriptor.digest_url, digest_path, local, None
            )
            archive_future = pool.submit(
                self._fetch_to, descriptor.archive_url, archive_path, local, self._on_progress
            )
            done, _ = wait([digest_future, archive_future], return_when=FIRST_EXCEPTION)
            failure = _first_failure(done)
            if failure is not None:
                # Abort the sibling transfer before the pool waits for it.
                local.cancel(f"Sibling download failed: {failure}")
                raise failure
            digest_body = digest_future.result()
            archive_future.result()
        _LOGGER.info("Downloaded nonodo archive %s", descriptor.archive_name)
        return digest_body.decode("utf-8", errors="replace")

    def _fetch_to(
        self,
        url: str,
        destination: Path,
        token: CancelToken,
        on_progress: ProgressCallback | None,
    ) -> bytes:
        _LOGGER.info("Downloading: %s", url)
        body = self._client.fetch(url, token, on_progress)
        token.raise_if_cancelled()
        _write_file(body, destination)
        _LOGGER.debug("Stored %s", destination)
        return body

    def _verify_cached(self, descriptor: ReleaseDescriptor) -> str | None:
        archive_path = self._install_dir / descriptor.archive_name
        digest_path = self._install_dir / descriptor.digest_name
        if not archive_path.exists() or not digest_path.exists():
            _LOGGER.warning(
                "Cannot verify cached binary for %s: archive or digest missing",
                descriptor.version,
            )
            return None
        try:
            expected = digest_path.read_text(encoding="utf-8", errors="replace")
        except OSError as exc:
            raise ArtifactReadError(digest_path, exc) from exc
        actual = hash_file(archive_path, descriptor.hash_algorithm)
        if not verify_digest(expected, actual):
            raise HashMismatchError(expected.strip(), actual)
        _LOGGER.debug("Cached archive for %s matches its digest", descriptor.version)
        return actual


def _entry_name(descriptor: ReleaseDescriptor) -> str:
    if descriptor.archive_kind is ArchiveKind.ZIP:
        return ZIP_ENTRY_NAME
    return TAR_ENTRY_NAME


def _first_failure(done: set[Future]) -> BaseException | None:
    failures = [future.exception() for future in done if future.exception() is not None]
    if not failures:
        return None
    # A cancellation caused by the sibling is less informative than the original error.
    failures.sort(key=lambda exc: isinstance(exc, OperationCancelled))
    return failures[0]


def _write_file(body: bytes, destination: Path) -> None:
    try:
        destination.write_bytes(body)
    except OSError as exc:
        raise WriteFailedError(destination, exc) from exc


def _discard(*paths: Path) -> None:
    for path in paths:
        try:
            path.unlink()
        except FileNotFoundError:
            continue
        except OSError:
            _LOGGER.debug("Unable to remove %s", path, exc_info=True)
