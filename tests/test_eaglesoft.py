"""Tests for the Eaglesoft settings client."""

from __future__ import annotations

import base64
from typing import Sequence

import pytest

from winpanel.config import AppConfig
from winpanel.eaglesoft import (
    EaglesoftClient,
    error_hints,
    infer_database_type,
    parse_odbc_connection_string,
)
from winpanel.models import DatabaseType
from winpanel.shell import CommandResult

CONFIG = AppConfig(powershell_32bit="ps32", powershell_64bit="ps64")


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


class _ComRunner:
    """Answers the COM probe per executable and the fetch with a fixed result."""

    def __init__(self, probe: dict[str, str], fetch: CommandResult | None = None) -> None:
        self._probe = probe
        self._fetch = fetch
        self.calls: list[tuple[str, str]] = []

    async def run(self, args: Sequence[str], *, timeout: float) -> CommandResult:
        script = base64.b64decode(args[-1]).decode("utf-16-le")
        self.calls.append((args[0], script))
        if "GetLegacyConnectionString" in script:
            assert self._fetch is not None
            return self._fetch
        return CommandResult(args=tuple(args), returncode=0, stdout=self._probe.get(args[0], ""))


def _fetched(stdout: str, returncode: int = 0) -> CommandResult:
    return CommandResult(args=("ps32",), returncode=returncode, stdout=stdout)


def test_parse_connection_string_maps_known_keys() -> None:
    parsed = parse_odbc_connection_string(
        "DSN=EagleSoft;DBN=Dental;UID=dba;PWD=sql;Port=2638;Encrypt=no;Trusted_Connection=Yes;CommLinks=tcpip"
    )

    assert parsed == {
        "server": "EagleSoft",
        "DSN": "EagleSoft",
        "database": "Dental",
        "DBN": "Dental",
        "username": "dba",
        "password": "sql",
        "port": 2638,
        "encrypt": False,
        "windowsAuth": True,
        "CommLinks": "tcpip",
    }


def test_parse_connection_string_rejects_empty() -> None:
    assert parse_odbc_connection_string("") is None
    assert parse_odbc_connection_string(None) is None


def test_infer_database_type_defaults_to_mssql() -> None:
    assert infer_database_type("MySQL ODBC 8.0 Unicode Driver") is DatabaseType.MYSQL
    assert infer_database_type("PostgreSQL Unicode") is DatabaseType.POSTGRESQL
    assert infer_database_type("SQL Anywhere 17") is DatabaseType.MSSQL
    assert infer_database_type(None) is DatabaseType.MSSQL


def test_error_hints_recognise_com_failures() -> None:
    assert error_hints("Retrieving the COM class factory failed: 0x80040154")[0].startswith(
        "The EaglesoftSettings COM object is not registered"
    )
    assert "Administrator" in error_hints("Access denied")[1]
    assert error_hints("something else") == []
    assert error_hints(None) == []


@pytest.mark.anyio
async def test_is_installed_prefers_32bit_powershell() -> None:
    runner = _ComRunner({"ps32": "SUCCESS\n", "ps64": "SUCCESS\n"})

    result = await EaglesoftClient(CONFIG, runner, is_windows=True).is_installed()

    assert result["installed"] is True
    assert result["powershellPath"] == "ps32"
    assert [call[0] for call in runner.calls] == ["ps32"]


@pytest.mark.anyio
async def test_is_installed_falls_back_to_64bit() -> None:
    runner = _ComRunner({"ps32": "ERROR: Class not registered 0x80040154\n", "ps64": "SUCCESS\n"})

    result = await EaglesoftClient(CONFIG, runner, is_windows=True).is_installed()

    assert result["powershellPath"] == "ps64"


@pytest.mark.anyio
async def test_is_installed_reports_last_error() -> None:
    runner = _ComRunner({"ps32": "ERROR: first\n", "ps64": "ERROR: second\n"})

    result = await EaglesoftClient(CONFIG, runner, is_windows=True).is_installed()

    assert result["installed"] is False
    assert result["error"] == "second"
    assert result["hint"]


@pytest.mark.anyio
async def test_off_windows_never_runs_powershell() -> None:
    runner = _ComRunner({})
    client = EaglesoftClient(CONFIG, runner, is_windows=False)

    assert (await client.is_installed()) == {"installed": False, "error": "Not a Windows system"}
    assert (await client.get_connection_string())["success"] is False
    assert runner.calls == []


@pytest.mark.anyio
async def test_connection_string_passes_primary_flag() -> None:
    runner = _ComRunner({"ps32": "SUCCESS"}, _fetched("DSN=EagleSoft;UID=dba;PWD=sql\r\n"))

    result = await EaglesoftClient(CONFIG, runner, is_windows=True).get_connection_string(primary=False)

    assert result == {
        "success": True,
        "connectionString": "DSN=EagleSoft;UID=dba;PWD=sql",
        "source": "EaglesoftSettings COM Object",
        "databaseType": "Secondary",
    }
    fetch_script = runner.calls[-1][1]
    assert "GetLegacyConnectionString($false)" in fetch_script
    assert "'DentalXChange'" in fetch_script


@pytest.mark.anyio
async def test_connection_string_error_output_carries_hints() -> None:
    runner = _ComRunner({"ps32": "SUCCESS"}, _fetched("ERROR: Connection string is empty\n", returncode=1))

    result = await EaglesoftClient(CONFIG, runner, is_windows=True).get_connection_string()

    assert result["success"] is False
    assert result["error"] == "Connection string is empty"
    assert result["hint"][0] == "Eaglesoft returned an empty connection string."


@pytest.mark.anyio
async def test_blank_output_means_eaglesoft_not_configured() -> None:
    runner = _ComRunner({"ps32": "SUCCESS"}, _fetched("   \n"))

    result = await EaglesoftClient(CONFIG, runner, is_windows=True).get_connection_string()

    assert result["error"] == "Empty connection string returned from Eaglesoft"
    assert "Open the Eaglesoft application" in result["hint"][2]


@pytest.mark.anyio
async def test_create_connection_data_builds_odbc_connection() -> None:
    runner = _ComRunner({"ps32": "SUCCESS"}, _fetched("DSN=EagleSoft;DBN=Dental;UID=dba;PWD=sql"))

    result = await EaglesoftClient(CONFIG, runner, is_windows=True).create_connection_data("Front desk")

    assert result["success"] is True
    data = result["connectionData"]
    assert data["name"] == "Front desk"
    assert data["type"] == "mssql"
    assert data["config"]["useOdbc"] is True
    assert data["config"]["odbcConnectionString"] == "DSN=EagleSoft;DBN=Dental;UID=dba;PWD=sql"
    assert data["config"]["DSN"] == "EagleSoft"
    assert data["config"]["encrypt"] is True
    assert "port" not in data["config"]
    assert result["databaseType"] == "Primary"


@pytest.mark.anyio
async def test_create_connection_data_propagates_failure() -> None:
    runner = _ComRunner({"ps32": "ERROR: nope", "ps64": "ERROR: nope"})

    result = await EaglesoftClient(CONFIG, runner, is_windows=True).create_connection_data()

    assert result["success"] is False
    assert result["error"] == "Eaglesoft COM object not accessible via PowerShell"
