from __future__ import annotations

import dataclasses
from pathlib import Path
from typing import Iterator

import pytest

from app import cli
from app.config import AppConfig, InstallPaths
from services.provision.builder import build_client
from services.provision.provisioner import Provisioner

from tests.e2e.release_server import BrunodoRun, ReleaseServer
from tests.unit.provision_test_utils import LINUX_AMD64, fixed_platform


@pytest.fixture
def release_server() -> Iterator[ReleaseServer]:
    server = ReleaseServer().start()
    try:
        yield server
    finally:
        server.stop()


@pytest.fixture
def brunodo_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    home = tmp_path / "brunodo"
    monkeypatch.setenv("BRUNODO_HOME", str(home))
    return home


@pytest.fixture
def context_factory(release_server: ReleaseServer) -> cli.ContextFactory:
    def _factory(config: AppConfig, paths: InstallPaths) -> cli.CommandContext:
        release = dataclasses.replace(config.release, base_url=release_server.base_url)
        config = dataclasses.replace(config, release=release)
        client = build_client(config)
        provisioner = Provisioner(
            client,
            paths.install_dir,
            base_url=release.base_url,
            hash_algorithm=release.hash_algorithm,
            supported_platforms=release.supported_platforms,
            platform_resolver=fixed_platform(LINUX_AMD64),
        )
        return cli.CommandContext(config, paths, client=client, provisioner=provisioner)

    return _factory


@pytest.fixture
def brunodo_run() -> BrunodoRun:
    return BrunodoRun()
