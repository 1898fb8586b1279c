"""Helpers for constructing the provisioning collaborators from configuration."""

from __future__ import annotations

import logging

from app.config import AppConfig, InstallPaths, get_app_config, resolve_paths
from app.version import user_agent
from services.provision.ledger import FileLedgerStore
from services.provision.provisioner import Provisioner
from services.provision.transport import Opener, ProgressCallback, RetrievingClient

_LOGGER = logging.getLogger(__name__)


def build_client(
    config: AppConfig | None = None, *, opener: Opener | None = None
) -> RetrievingClient:
    config = config or get_app_config()
    network = config.network
    return RetrievingClient(
        user_agent=user_agent(),
        opener=opener,
        max_redirects=network.max_redirects,
        timeout=network.timeout_seconds,
        chunk_size=network.chunk_size,
    )


def build_provisioner(
    config: AppConfig | None = None,
    paths: InstallPaths | None = None,
    *,
    client: RetrievingClient | None = None,
    on_progress: ProgressCallback | None = None,
) -> Provisioner:
    """Construct a :class:`Provisioner` for the current environment."""

    config = config or get_app_config()
    paths = paths or resolve_paths()
    release = config.release
    _LOGGER.debug(
        "Building provisioner for %s (install_dir=%s, hash=%s)",
        release.base_url,
        paths.install_dir,
        release.hash_algorithm,
    )
    return Provisioner(
        client or build_client(config),
        paths.install_dir,
        base_url=release.base_url,
        hash_algorithm=release.hash_algorithm,
        supported_platforms=release.supported_platforms,
        on_progress=on_progress,
    )


def build_ledger_store(paths: InstallPaths | None = None) -> FileLedgerStore:
    paths = paths or resolve_paths()
    return FileLedgerStore(paths.config_dir)


__all__ = ["build_client", "build_ledger_store", "build_provisioner"]
