"""Version of the brunodo tool itself, used in ``--version`` and the User-Agent."""

from __future__ import annotations

import os
from functools import lru_cache
from importlib import metadata, resources
from typing import Callable

_DISTRIBUTION_NAME = "brunodo"
_VERSION_ENV = "BRUNODO_APP_VERSION"
_DEVELOPMENT_VERSION = "0.0.0-dev"


def _clean(raw: str | None) -> str | None:
    if raw is None:
        return None
    value = raw.strip()
    if value[:1] in ("v", "V"):
        value = value[1:]
    return value or None


def _version_from_env() -> str | None:
    return _clean(os.environ.get(_VERSION_ENV))


def _read_version_file() -> str | None:
    try:
        resource = resources.files(__package__).joinpath("VERSION")
        return _clean(resource.read_text(encoding="utf-8"))
    except (OSError, ModuleNotFoundError):
        # Editable installs can expose "app" as a namespace path that is not a directory.
        return None


def _version_from_metadata() -> str | None:
    try:
        return _clean(metadata.version(_DISTRIBUTION_NAME))
    except metadata.PackageNotFoundError:
        return None


@lru_cache(maxsize=1)
def get_app_version() -> str:
    """Return the first version reported by, in order:

    the ``BRUNODO_APP_VERSION`` variable, the bundled ``VERSION`` resource and
    the metadata of the installed distribution.  A development placeholder is
    returned when none of them answers.
    """

    sources: tuple[Callable[[], str | None], ...] = (
        _version_from_env,
        _read_version_file,
        _version_from_metadata,
    )
    return next(
        (version for version in (source() for source in sources) if version),
        _DEVELOPMENT_VERSION,
    )


def user_agent() -> str:
    """``User-Agent`` header sent with every release request."""

    return f"{_DISTRIBUTION_NAME}/{get_app_version()}"


__all__ = ["get_app_version", "user_agent"]
