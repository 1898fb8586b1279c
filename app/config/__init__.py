"""Application-wide configuration loaded from JSON resources."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from importlib import resources
from math import isfinite
from pathlib import Path
from typing import Any, Iterable, Mapping

from services.provision.constants import (
    CONFIG_DIR_ENV,
    DOWNLOAD_CHUNK_SIZE,
    HASH_ALGORITHM,
    HOME_ENV,
    INSTALL_DIR_ENV,
    MAX_REDIRECTS,
    PINNED_VERSION,
    RELEASE_BASE_URL,
    REQUEST_TIMEOUT_SECONDS,
    SUPPORTED_PLATFORMS,
    TAGS_API_URL,
)

_CONFIG_RESOURCE = "app.json"
_APP_CONFIG_CACHE: AppConfig | None = None
_DEFAULT_HOME_DIRNAME = ".brunodo"


@dataclass(frozen=True)
class ReleaseConfig:
    """Where releases are published and how they are fetched."""

    base_url: str
    tags_url: str
    pinned_version: str
    hash_algorithm: str
    supported_platforms: frozenset[str]


@dataclass(frozen=True)
class NetworkConfig:
    """Limits applied to every HTTP request."""

    max_redirects: int
    timeout_seconds: float
    chunk_size: int


@dataclass(frozen=True)
class AppConfig:
    """Structured configuration values for the wrapper."""

    release: ReleaseConfig
    network: NetworkConfig


@dataclass(frozen=True)
class InstallPaths:
    """Directories holding downloaded binaries and the version ledger."""

    install_dir: Path
    config_dir: Path

    def ensure_directories(self) -> "InstallPaths":
        self.install_dir.mkdir(parents=True, exist_ok=True)
        self.config_dir.mkdir(parents=True, exist_ok=True)
        return self


def get_app_config() -> AppConfig:
    """Return the cached application configuration."""

    global _APP_CONFIG_CACHE
    if _APP_CONFIG_CACHE is None:
        _APP_CONFIG_CACHE = load_app_config()
    return _APP_CONFIG_CACHE


def reset_app_config_cache() -> None:
    """Reset the cached configuration for subsequent reloads."""

    global _APP_CONFIG_CACHE
    _APP_CONFIG_CACHE = None


def load_app_config(path: str | Path | None = None) -> AppConfig:
    """Load configuration from ``path`` or the bundled JSON resource."""

    data = _read_config_data(path)
    release = _parse_release_section(data.get("release"))
    network = _parse_network_section(data.get("network"))
    return AppConfig(release=release, network=network)


def resolve_paths(environ: Mapping[str, str] | None = None) -> InstallPaths:
    """Return the install and ledger directories for this user.

    ``BRUNODO_HOME`` (default ``~/.brunodo``) holds ``bin/`` and ``config/``.
    ``PACKAGE_NONODO_DIR`` and ``BRUNODO_CONFIG_DIR`` override each directory.
    """

    env = os.environ if environ is None else environ
    home_value = env.get(HOME_ENV)
    home = Path(home_value).expanduser() if home_value else Path.home() / _DEFAULT_HOME_DIRNAME
    install_value = env.get(INSTALL_DIR_ENV)
    config_value = env.get(CONFIG_DIR_ENV)
    install_dir = Path(install_value).expanduser() if install_value else home / "bin"
    config_dir = Path(config_value).expanduser() if config_value else home / "config"
    return InstallPaths(install_dir=install_dir, config_dir=config_dir)


def _read_config_data(path: str | Path | None) -> Mapping[str, Any]:
    if path is not None:
        return _load_json_from_path(Path(path).expanduser())
    return _load_default_config_data()


def _load_json_from_path(path: Path) -> Mapping[str, Any]:
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError:
        return {}
    return _parse_json(raw)


def _load_default_config_data() -> Mapping[str, Any]:
    try:
        resource = resources.files(__package__).joinpath(_CONFIG_RESOURCE)
        raw = resource.read_text(encoding="utf-8")
    except (FileNotFoundError, OSError):
        return {}
    return _parse_json(raw)


def _parse_json(raw: str) -> Mapping[str, Any]:
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return {}
    if isinstance(parsed, Mapping):
        return parsed
    return {}


def _parse_release_section(section: Any) -> ReleaseConfig:
    if not isinstance(section, Mapping):
        section = {}
    return ReleaseConfig(
        base_url=_coerce_text(section.get("base_url"), default=RELEASE_BASE_URL),
        tags_url=_coerce_text(section.get("tags_url"), default=TAGS_API_URL),
        pinned_version=_coerce_text(section.get("pinned_version"), default=PINNED_VERSION),
        hash_algorithm=_coerce_text(section.get("hash_algorithm"), default=HASH_ALGORITHM).lower(),
        supported_platforms=_coerce_platforms(
            section.get("supported_platforms"), default=SUPPORTED_PLATFORMS
        ),
    )


def _parse_network_section(section: Any) -> NetworkConfig:
    if not isinstance(section, Mapping):
        section = {}
    return NetworkConfig(
        max_redirects=_coerce_non_negative_int(section.get("max_redirects"), default=MAX_REDIRECTS),
        timeout_seconds=_coerce_positive_float(
            section.get("timeout_seconds"), default=REQUEST_TIMEOUT_SECONDS
        ),
        chunk_size=_coerce_positive_int(section.get("chunk_size"), default=DOWNLOAD_CHUNK_SIZE),
    )


def _coerce_text(value: Any, *, default: str) -> str:
    if not isinstance(value, str):
        return default
    candidate = value.strip()
    return candidate or default


def _coerce_platforms(value: Any, *, default: frozenset[str]) -> frozenset[str]:
    if not isinstance(value, Iterable) or isinstance(value, (str, bytes, Mapping)):
        return default
    keys = {item.strip().lower() for item in value if isinstance(item, str) and item.strip()}
    return frozenset(keys) or default


def _coerce_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        if isinstance(value, float) and not isfinite(value):
            return None
        return int(value)
    if isinstance(value, str):
        try:
            return int(float(value))
        except ValueError:
            return None
    return None


def _coerce_positive_int(value: Any, *, default: int) -> int:
    candidate = _coerce_int(value)
    if candidate is None or candidate <= 0:
        return default
    return candidate


def _coerce_non_negative_int(value: Any, *, default: int) -> int:
    candidate = _coerce_int(value)
    if candidate is None or candidate < 0:
        return default
    return candidate


def _coerce_positive_float(value: Any, *, default: float) -> float:
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        candidate = float(value)
    elif isinstance(value, str):
        try:
            candidate = float(value.strip())
        except ValueError:
            return default
    else:
        return default
    if not isfinite(candidate) or candidate <= 0:
        return default
    return candidate


__all__ = [
    "AppConfig",
    "InstallPaths",
    "NetworkConfig",
    "ReleaseConfig",
    "get_app_config",
    "load_app_config",
    "reset_app_config_cache",
    "resolve_paths",
]
