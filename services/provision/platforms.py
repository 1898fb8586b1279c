"""Map host OS and CPU identifiers onto release artifact names."""

from __future__ import annotations

import logging
import platform as _platform
from typing import Callable

from services.provision.constants import SUPPORTED_PLATFORMS
from services.provision.models import PlatformTriple, UnsupportedPlatformError

_LOGGER = logging.getLogger(__name__)

__all__ = ["normalise_arch", "normalise_os", "require_supported", "resolve_platform"]

_AMD64_ALIASES = {"x86_64", "amd64", "x64"}
_ARM64_ALIASES = {"aarch64", "arm64"}
_WINDOWS_ALIASES = {"windows", "win32", "cygwin", "msys"}


def normalise_arch(machine: str) -> str:
    arch = machine.strip().lower()
    if arch in _AMD64_ALIASES:
        return "amd64"
    if arch in _ARM64_ALIASES:
        return "arm64"
    return arch


def normalise_os(system: str) -> str:
    name = system.strip().lower()
    if name in _WINDOWS_ALIASES or name.startswith(("cygwin", "msys", "mingw")):
        return "windows"
    return name


def resolve_platform(
    system: Callable[[], str] = _platform.system,
    machine: Callable[[], str] = _platform.machine,
) -> PlatformTriple:
    """Return the :class:`PlatformTriple` for the running host.

    Unknown identifiers are passed through unchanged; :func:`require_supported`
    rejects them before any network activity.
    """

    triple = PlatformTriple(os=normalise_os(system()), arch=normalise_arch(machine()))
    _LOGGER.debug("Resolved host platform %s", triple.support_key)
    return triple


def require_supported(
    triple: PlatformTriple, supported: frozenset[str] = SUPPORTED_PLATFORMS
) -> str:
    key = triple.support_key
    if key not in supported:
        raise UnsupportedPlatformError(key)
    _LOGGER.debug("Platform supported: %s", key)
    return key
