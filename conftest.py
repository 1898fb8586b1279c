"""Pytest configuration applied to the entire test suite."""

from __future__ import annotations

from pathlib import Path
from typing import Iterator

import pytest

from app.config import reset_app_config_cache
from app.version import get_app_version
from shared import logging_config


_ISOLATED_VARIABLES = (
    "BRUNODO_APP_VERSION",
    "BRUNODO_CONFIG_DIR",
    "BRUNODO_LOG_FILE",
    "PACKAGE_NONODO_DIR",
)


@pytest.fixture(autouse=True)
def isolated_brunodo_environment(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> Iterator[None]:
    """Keep every test away from the real ``~/.brunodo`` tree and global logging."""

    for name in _ISOLATED_VARIABLES:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("BRUNODO_HOME", str(tmp_path / "home"))
    monkeypatch.setenv("BRUNODO_LOG_DIR", str(tmp_path / "logs"))
    reset_app_config_cache()
    get_app_version.cache_clear()
    logging_config._reset_for_tests()
    yield
    logging_config._reset_for_tests()
    get_app_version.cache_clear()
    reset_app_config_cache()
