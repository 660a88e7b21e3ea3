"""Tests for registry discovery and credential lookup."""

from __future__ import annotations

import time
from typing import Any

import pytest

from winpanel.models import DatabaseType
from winpanel.registry import Hive, RegistryError, RegistryPath, RegistryScanner, candidate_paths, flatten_value


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


class _FakeReader:
    """In-memory registry keyed by (hive, path)."""

    def __init__(self, keys: dict[tuple[Hive, str], dict[str, Any]], *, delay: float = 0.0) -> None:
        self._keys = keys
        self._delay = delay
        self.reads: list[tuple[Hive, str]] = []

    def read_values(self, hive: Hive, path: str) -> dict[str, Any]:
        self.reads.append((hive, path))
        if self._delay:
            time.sleep(self._delay)
        try:
            return dict(self._keys[(hive, path)])
        except KeyError:
            raise RegistryError(f"missing {path}") from None

    def list_subkeys(self, hive: Hive, path: str) -> list[str]:
        prefix = path + "\\"
        return sorted(
            {
                key_path[len(prefix):].split("\\", 1)[0]
                for key_hive, key_path in self._keys
                if key_hive == hive and key_path.startswith(prefix)
            }
        )


def test_candidate_paths_search_hkcu_first_and_skip_instance_templates() -> None:
    without_instance = candidate_paths(DatabaseType.MYSQL, None)
    with_instance = candidate_paths(DatabaseType.MYSQL, "MySQL80")

    assert all("{instance}" not in path.path for path in without_instance)
    assert without_instance[0] == RegistryPath(Hive.HKCU, r"SOFTWARE\winpanel\MySQLConnection")
    assert with_instance[0] == RegistryPath(Hive.HKCU, r"SOFTWARE\winpanel\MySQLConnection\MySQL80")
    hives = [path.hive for path in with_instance]
    assert hives.index(Hive.HKLM) == len(with_instance) // 2


def test_flatten_value_handles_registry_types() -> None:
    assert flatten_value(3306) == "3306"
    assert flatten_value(["a", "b"]) == "a;b"
    assert flatten_value(b"\x01\xff") == "01ff"


@pytest.mark.anyio
async def test_discover_registry_paths_returns_empty_when_nothing_matches() -> None:
    scanner = RegistryScanner(_FakeReader({}), is_windows=True)

    assert await scanner.discover_registry_paths(DatabaseType.POSTGRESQL, "pg15") == []


@pytest.mark.anyio
async def test_discover_registry_paths_keeps_readable_keys_in_order() -> None:
    reader = _FakeReader(
        {
            (Hive.HKLM, r"SOFTWARE\MySQL AB"): {"Version": "8.0"},
            (Hive.HKCU, r"SOFTWARE\winpanel\MySQLConnection"): {"Host": "127.0.0.1"},
        }
    )
    scanner = RegistryScanner(reader, is_windows=True)

    found = await scanner.discover_registry_paths(DatabaseType.MYSQL, None)

    assert [path.full_path for path in found] == [
        r"HKCU\SOFTWARE\winpanel\MySQLConnection",
        r"HKLM\SOFTWARE\MySQL AB",
    ]


@pytest.mark.anyio
async def test_read_registry_config_returns_none_when_unreadable() -> None:
    scanner = RegistryScanner(_FakeReader({}), is_windows=True)

    assert await scanner.read_registry_config(Hive.HKLM, r"SOFTWARE\Nope") is None


@pytest.mark.anyio
async def test_fetch_credentials_prefers_first_non_empty_config() -> None:
    reader = _FakeReader(
        {
            (Hive.HKCU, r"SOFTWARE\winpanel\SQLConnection\SQLEXPRESS"): {},
            (Hive.HKLM, r"SOFTWARE\winpanel\SQLConnection"): {"Server": "db01", "Port": 1433},
        }
    )
    scanner = RegistryScanner(reader, is_windows=True)

    result = await scanner.fetch_credentials_from_registry(DatabaseType.MSSQL, "SQLEXPRESS")

    assert result == {
        "success": True,
        "config": {"Server": "db01", "Port": "1433"},
        "source": r"HKLM\SOFTWARE\winpanel\SQLConnection",
    }


@pytest.mark.anyio
async def test_fetch_credentials_not_found_lists_tried_paths() -> None:
    scanner = RegistryScanner(_FakeReader({}), is_windows=True)

    result = await scanner.fetch_credentials_from_registry(DatabaseType.MONGODB, None)

    assert result["success"] is False
    assert result["config"] is None
    assert "enter connection details manually" in result["error"]
    assert result["discoveredPaths"] == []
    assert r"HKCU\SOFTWARE\winpanel\MongoDBConnection" in result["triedPaths"]


@pytest.mark.anyio
async def test_fetch_credentials_fails_off_windows() -> None:
    reader = _FakeReader({})
    scanner = RegistryScanner(reader, is_windows=False)

    result = await scanner.fetch_credentials_from_registry(DatabaseType.MSSQL, None)

    assert result["success"] is False
    assert reader.reads == []


@pytest.mark.anyio
async def test_slow_registry_reads_are_bounded() -> None:
    reader = _FakeReader({(Hive.HKLM, r"SOFTWARE\PostgreSQL"): {"x": 1}}, delay=0.5)
    scanner = RegistryScanner(reader, timeout=0.05, is_windows=True)

    with pytest.raises(RegistryError, match="Timed out"):
        await scanner.read_values(Hive.HKLM, r"SOFTWARE\PostgreSQL")
