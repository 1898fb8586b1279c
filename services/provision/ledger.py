"""Persisted record of installed versions and the active default.

The ledger is a plain handle: load it at the start of a command, mutate it in
memory and save it once the command succeeded.  There is no locking; running
two installs against the same configuration directory at the same time is not
supported.
"""

from __future__ import annotations

import datetime
import json
import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterator, Protocol

from services.provision.constants import LEDGER_FILENAME
from services.provision.models import LedgerError, NoDefaultVersionError, WriteFailedError

_LOGGER = logging.getLogger(__name__)

__all__ = [
    "FileLedgerStore",
    "InMemoryLedgerStore",
    "LedgerStore",
    "VersionEntry",
    "VersionLedger",
    "ledger_exists",
    "ledger_path",
    "load_ledger",
    "save_ledger",
]


@dataclass(frozen=True)
class VersionEntry:
    version: str
    content_hash: str
    installed_at: str

    def to_payload(self) -> dict[str, str]:
        return {"hash": self.content_hash, "createdAt": self.installed_at}


class VersionLedger:
    """Mapping of version to :class:`VersionEntry` plus an optional default."""

    def __init__(
        self,
        entries: dict[str, VersionEntry] | None = None,
        default_version: str | None = None,
    ) -> None:
        self._entries: dict[str, VersionEntry] = dict(entries or {})
        self._default_version: str | None = None
        if default_version:
            self.set_default(default_version)

    @property
    def default_version(self) -> str | None:
        return self._default_version

    @property
    def entries(self) -> dict[str, VersionEntry]:
        return dict(self._entries)

    def __contains__(self, version: object) -> bool:
        return version in self._entries

    def __iter__(self) -> Iterator[VersionEntry]:
        return iter(list(self._entries.values()))

    def __len__(self) -> int:
        return len(self._entries)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, VersionLedger):
            return NotImplemented
        return self._entries == other._entries and self._default_version == other._default_version

    def get(self, version: str) -> VersionEntry | None:
        return self._entries.get(version)

    def add_version(
        self, version: str, content_hash: str, *, installed_at: datetime.datetime | None = None
    ) -> VersionEntry:
        """Record ``version`` and make it the default.

        The most recently installed version always becomes the default, even
        when it is older than the current default.
        """

        timestamp = installed_at or datetime.datetime.now(datetime.timezone.utc)
        entry = VersionEntry(
            version=version,
            content_hash=content_hash,
            installed_at=_format_timestamp(timestamp),
        )
        self._entries[version] = entry
        self._default_version = version
        _LOGGER.debug("Recorded version %s (hash=%s) as default", version, content_hash or "<none>")
        return entry

    def set_default(self, version: str) -> None:
        if version not in self._entries:
            raise LedgerError(f"Version {version} is not installed")
        self._default_version = version

    def resolve_default(self) -> VersionEntry:
        if self._default_version is None:
            raise NoDefaultVersionError("No default version found")
        entry = self._entries.get(self._default_version)
        if entry is None:
            raise NoDefaultVersionError(f"Version {self._default_version} not found")
        return entry

    def to_payload(self) -> dict[str, Any]:
        return {
            "defaultVersion": self._default_version or "",
            "versions": [[entry.version, entry.to_payload()] for entry in self._entries.values()],
        }

    @classmethod
    def from_payload(cls, payload: Any) -> "VersionLedger":
        if not isinstance(payload, dict):
            raise LedgerError("Ledger file must contain a JSON object")
        raw_versions = payload.get("versions") or []
        if not isinstance(raw_versions, list):
            raise LedgerError("Ledger 'versions' must be a list of [version, entry] pairs")
        entries: dict[str, VersionEntry] = {}
        for item in raw_versions:
            if not isinstance(item, (list, tuple)) or len(item) != 2:
                raise LedgerError(f"Malformed ledger entry: {item!r}")
            version, details = item
            if not isinstance(version, str) or not isinstance(details, dict):
                raise LedgerError(f"Malformed ledger entry: {item!r}")
            entries[version] = VersionEntry(
                version=version,
                content_hash=str(details.get("hash") or ""),
                installed_at=str(details.get("createdAt") or ""),
            )
        ledger = cls(entries)
        default = payload.get("defaultVersion")
        if isinstance(default, str) and default:
            if default in entries:
                ledger._default_version = default
            else:
                _LOGGER.warning("Ignoring default version %s missing from the ledger", default)
        return ledger


def _format_timestamp(value: datetime.datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=datetime.timezone.utc)
    value = value.astimezone(datetime.timezone.utc)
    return value.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def ledger_path(config_dir: Path) -> Path:
    return Path(config_dir) / LEDGER_FILENAME


def ledger_exists(config_dir: Path) -> bool:
    return ledger_path(config_dir).is_file()


def load_ledger(config_dir: Path) -> VersionLedger:
    """Return the ledger stored in ``config_dir`` or an empty one."""

    path = ledger_path(config_dir)
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        _LOGGER.debug("No ledger at %s; starting empty", path)
        return VersionLedger()
    except OSError as exc:
        raise LedgerError(f"Failed to read ledger {path}: {exc}") from exc
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise LedgerError(f"Ledger {path} is not valid JSON: {exc}") from exc
    ledger = VersionLedger.from_payload(payload)
    _LOGGER.debug("Loaded %s ledger entries from %s", len(ledger), path)
    return ledger


def save_ledger(ledger: VersionLedger, config_dir: Path) -> Path:
    """Write ``ledger`` to ``config_dir``, replacing the previous file atomically."""

    path = ledger_path(config_dir)
    text = json.dumps(ledger.to_payload())
    temp_name: str | None = None
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, temp_name = tempfile.mkstemp(prefix=f"{LEDGER_FILENAME}.", dir=path.parent)
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(text)
        os.replace(temp_name, path)
        temp_name = None
    except OSError as exc:
        raise WriteFailedError(path, exc) from exc
    finally:
        if temp_name is not None:
            try:
                os.unlink(temp_name)
            except OSError:
                _LOGGER.debug("Unable to remove temporary ledger %s", temp_name, exc_info=True)
    _LOGGER.debug("Saved ledger with %s entries to %s", len(ledger), path)
    return path


class LedgerStore(Protocol):
    """Load/save contract used by the commands."""

    def exists(self) -> bool:
        ...

    def load(self) -> VersionLedger:
        ...

    def save(self, ledger: VersionLedger) -> None:
        ...


class FileLedgerStore:
    def __init__(self, config_dir: Path) -> None:
        self._config_dir = Path(config_dir)

    @property
    def path(self) -> Path:
        return ledger_path(self._config_dir)

    def exists(self) -> bool:
        return ledger_exists(self._config_dir)

    def load(self) -> VersionLedger:
        return load_ledger(self._config_dir)

    def save(self, ledger: VersionLedger) -> None:
        save_ledger(ledger, self._config_dir)


class InMemoryLedgerStore:
    """Store that keeps the serialised payload in memory."""

    def __init__(self, payload: dict[str, Any] | None = None) -> None:
        self.payload = payload
        self.saves = 0

    def exists(self) -> bool:
        return self.payload is not None

    def load(self) -> VersionLedger:
        if self.payload is None:
            return VersionLedger()
        return VersionLedger.from_payload(json.loads(json.dumps(self.payload)))

    def save(self, ledger: VersionLedger) -> None:
        self.payload = ledger.to_payload()
        self.saves += 1
