from __future__ import annotations

import pytest

from services.provision.models import PlatformTriple, UnsupportedPlatformError
from services.provision.platforms import (
    normalise_arch,
    normalise_os,
    require_supported,
    resolve_platform,
)


@pytest.mark.parametrize("machine", ["x86_64", "AMD64", "x64"])
def test_normalise_arch_maps_x86_64_spellings_to_amd64(machine: str) -> None:
    assert normalise_arch(machine) == "amd64"


@pytest.mark.parametrize("machine", ["aarch64", "arm64", "ARM64"])
def test_normalise_arch_maps_arm_spellings_to_arm64(machine: str) -> None:
    assert normalise_arch(machine) == "arm64"


def test_normalise_arch_passes_unknown_values_through_lowercased() -> None:
    assert normalise_arch("RISCV64") == "riscv64"


@pytest.mark.parametrize("system", ["Windows", "win32", "CYGWIN_NT-10.0", "MINGW64_NT-10.0"])
def test_normalise_os_maps_windows_identifiers(system: str) -> None:
    assert normalise_os(system) == "windows"


def test_resolve_platform_uses_injected_host_identifiers() -> None:
    triple = resolve_platform(system=lambda: "Darwin", machine=lambda: "arm64")

    assert triple == PlatformTriple(os="darwin", arch="arm64")
    assert triple.support_key == "darwin-arm64"
    assert not triple.is_windows


def test_resolve_platform_linux_aarch64_is_supported() -> None:
    triple = resolve_platform(system=lambda: "Linux", machine=lambda: "aarch64")

    assert require_supported(triple) == "linux-arm64"


def test_require_supported_rejects_unknown_platform() -> None:
    triple = resolve_platform(system=lambda: "FreeBSD", machine=lambda: "amd64")

    with pytest.raises(UnsupportedPlatformError) as excinfo:
        require_supported(triple)

    assert excinfo.value.support_key == "freebsd-amd64"
    assert "Incompatible platform" in str(excinfo.value)


def test_require_supported_honours_custom_platform_set() -> None:
    triple = PlatformTriple(os="linux", arch="amd64")

    with pytest.raises(UnsupportedPlatformError):
        require_supported(triple, frozenset({"darwin-arm64"}))
