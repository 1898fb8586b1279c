from __future__ import annotations

import datetime
import json
import logging
from pathlib import Path

import pytest

from services.provision.ledger import (
    FileLedgerStore,
    InMemoryLedgerStore,
    VersionLedger,
    ledger_exists,
    ledger_path,
    load_ledger,
    save_ledger,
)
from services.provision.models import LedgerError, NoDefaultVersionError


def test_add_version_promotes_latest_install_to_default() -> None:
    ledger = VersionLedger()

    ledger.add_version("2.1.1-beta", "aaa")
    ledger.add_version("1.0.0", "bbb")

    assert ledger.default_version == "1.0.0"
    assert [entry.version for entry in ledger] == ["2.1.1-beta", "1.0.0"]


def test_add_version_overwrites_existing_entry() -> None:
    ledger = VersionLedger()
    ledger.add_version("1.0.0", "old")

    ledger.add_version("1.0.0", "new")

    assert len(ledger) == 1
    assert ledger.get("1.0.0").content_hash == "new"


def test_add_version_formats_timestamp_in_utc() -> None:
    ledger = VersionLedger()
    moment = datetime.datetime(2024, 5, 1, 12, 30, 15, 123000, tzinfo=datetime.timezone.utc)

    entry = ledger.add_version("1.0.0", "abc", installed_at=moment)

    assert entry.installed_at == "2024-05-01T12:30:15.123Z"


def test_set_default_requires_installed_version() -> None:
    ledger = VersionLedger()
    ledger.add_version("1.0.0", "abc")
    ledger.add_version("2.0.0", "def")

    ledger.set_default("1.0.0")
    assert ledger.default_version == "1.0.0"

    with pytest.raises(LedgerError):
        ledger.set_default("3.0.0")


def test_resolve_default_raises_when_unset() -> None:
    with pytest.raises(NoDefaultVersionError):
        VersionLedger().resolve_default()


def test_save_then_load_round_trips(tmp_path: Path) -> None:
    ledger = VersionLedger()
    ledger.add_version("2.1.1-beta", "aaa")
    ledger.add_version("1.0.0", "bbb")

    save_ledger(ledger, tmp_path)

    assert ledger_exists(tmp_path)
    assert load_ledger(tmp_path) == ledger


def test_saved_file_uses_pair_list_layout(tmp_path: Path) -> None:
    ledger = VersionLedger()
    moment = datetime.datetime(2024, 1, 2, tzinfo=datetime.timezone.utc)
    ledger.add_version("2.1.1-beta", "aaa", installed_at=moment)

    path = save_ledger(ledger, tmp_path)

    assert path == tmp_path / ".nonodorc.json"
    assert json.loads(path.read_text(encoding="utf-8")) == {
        "defaultVersion": "2.1.1-beta",
        "versions": [["2.1.1-beta", {"hash": "aaa", "createdAt": "2024-01-02T00:00:00.000Z"}]],
    }


def test_load_ledger_missing_file_returns_empty(tmp_path: Path) -> None:
    ledger = load_ledger(tmp_path)

    assert len(ledger) == 0
    assert ledger.default_version is None
    assert not ledger_exists(tmp_path)


def test_load_ledger_rejects_invalid_json(tmp_path: Path) -> None:
    ledger_path(tmp_path).write_text("{not json", encoding="utf-8")

    with pytest.raises(LedgerError):
        load_ledger(tmp_path)


@pytest.mark.parametrize(
    "payload",
    [
        [],
        {"versions": {"1.0.0": {}}},
        {"versions": [["1.0.0"]]},
        {"versions": [[1, {}]]},
    ],
)
def test_load_ledger_rejects_malformed_shapes(tmp_path: Path, payload: object) -> None:
    ledger_path(tmp_path).write_text(json.dumps(payload), encoding="utf-8")

    with pytest.raises(LedgerError):
        load_ledger(tmp_path)


def test_load_ledger_drops_dangling_default(
    tmp_path: Path, caplog: pytest.LogCaptureFixture
) -> None:
    caplog.set_level(logging.WARNING, logger="services.provision.ledger")
    payload = {"defaultVersion": "9.9.9", "versions": [["1.0.0", {"hash": "a", "createdAt": ""}]]}
    ledger_path(tmp_path).write_text(json.dumps(payload), encoding="utf-8")

    ledger = load_ledger(tmp_path)

    assert ledger.default_version is None
    assert "1.0.0" in ledger
    assert "9.9.9" in caplog.text


def test_load_ledger_treats_empty_default_as_unset(tmp_path: Path) -> None:
    payload = {"defaultVersion": "", "versions": []}
    ledger_path(tmp_path).write_text(json.dumps(payload), encoding="utf-8")

    assert load_ledger(tmp_path).default_version is None


def test_save_ledger_replaces_previous_file(tmp_path: Path) -> None:
    first = VersionLedger()
    first.add_version("1.0.0", "a")
    save_ledger(first, tmp_path)
    second = VersionLedger()
    second.add_version("2.0.0", "b")

    save_ledger(second, tmp_path)

    assert load_ledger(tmp_path) == second
    assert sorted(path.name for path in tmp_path.iterdir()) == [".nonodorc.json"]


def test_file_store_creates_missing_config_directory(tmp_path: Path) -> None:
    store = FileLedgerStore(tmp_path / "config")
    ledger = VersionLedger()
    ledger.add_version("1.0.0", "a")

    assert not store.exists()
    store.save(ledger)

    assert store.exists()
    assert store.path.parent == tmp_path / "config"
    assert store.load() == ledger


def test_in_memory_store_isolates_loaded_copies() -> None:
    store = InMemoryLedgerStore()
    ledger = store.load()
    ledger.add_version("1.0.0", "a")

    assert not store.exists()
    store.save(ledger)
    reloaded = store.load()
    reloaded.add_version("2.0.0", "b")

    assert store.saves == 1
    assert store.load().default_version == "1.0.0"
