"""Tests for ODBC testing and the 32-bit PowerShell bridge."""

from __future__ import annotations

import base64
from typing import Any, Sequence

import pytest

from winpanel.drivers.odbc import (
    ODBC_INI,
    ODBC_INI_WOW64,
    OdbcAdapter,
    OdbcBridge,
    build_odbc_connection_string,
    mask_connection_string,
)
from winpanel.models import ConnectionConfig
from winpanel.registry import Hive, RegistryError, RegistryScanner
from winpanel.shell import CommandResult


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


def _config(**values: Any) -> ConnectionConfig:
    return ConnectionConfig.model_validate(values)


class _ScriptedRunner:
    def __init__(self, result: CommandResult) -> None:
        self._result = result
        self.scripts: list[str] = []
        self.executables: list[str] = []

    async def run(self, args: Sequence[str], *, timeout: float) -> CommandResult:
        self.executables.append(args[0])
        self.scripts.append(base64.b64decode(args[-1]).decode("utf-16-le"))
        return self._result


class _FakeReader:
    def __init__(self, keys: set[tuple[Hive, str]]) -> None:
        self._keys = keys

    def read_values(self, hive: Hive, path: str) -> dict[str, Any]:
        if (hive, path) not in self._keys:
            raise RegistryError(path)
        return {"Driver": "ProvideX"}

    def list_subkeys(self, hive: Hive, path: str) -> list[str]:
        return []


class _NeverCalledDriver:
    def connect(self, *args: Any, **kwargs: Any) -> Any:
        raise AssertionError("pyodbc should not be used for bridged DSNs")


def _result(stdout: str, returncode: int = 0) -> CommandResult:
    return CommandResult(args=("powershell",), returncode=returncode, stdout=stdout)


def test_connection_string_built_from_dsn_fields() -> None:
    config = _config(DSN="EagleSoft", DBN="Dental", username="dba", password="sql")

    assert build_odbc_connection_string(config) == "DBN=Dental;DSN=EagleSoft;UID=dba;PWD=sql"


def test_mask_connection_string_hides_password() -> None:
    assert mask_connection_string("DSN=x;PWD=secret;UID=a;Password=p2") == "DSN=x;PWD=***;UID=a;Password=***"


@pytest.mark.anyio
async def test_bridge_success_marker_wins_over_exit_code() -> None:
    runner = _ScriptedRunner(_result("SUCCESS\nQUERY_SUCCESS\n", returncode=1))
    bridge = OdbcBridge(runner, powershell="ps32.exe")

    status = await bridge.test(_config(odbcConnectionString="DSN=EagleSoft;UID=dba;PWD=o'brien"))

    assert status.success is True
    assert runner.executables == ["ps32.exe"]
    assert "'DSN=EagleSoft;UID=dba;PWD=o''brien'" in runner.scripts[0]


@pytest.mark.anyio
async def test_bridge_error_lines_become_failure_with_hints() -> None:
    runner = _ScriptedRunner(
        _result(
            "ERROR: [Microsoft][ODBC Driver Manager] Data source name not found (IM002)\n"
            "HINT: DSN not configured in 32-bit ODBC Data Source Administrator\n",
            returncode=1,
        )
    )

    status = await OdbcBridge(runner).test(_config(DSN="EagleSoft"))

    assert status.success is False
    assert status.error and "Data source name not found" in status.error
    assert status.hint == ["DSN not configured in 32-bit ODBC Data Source Administrator"]
    assert status.model_extra and "rawOutput" in status.model_extra


@pytest.mark.anyio
async def test_bridge_error_without_hints_uses_defaults() -> None:
    runner = _ScriptedRunner(_result("ERROR: something odd\n", returncode=0))

    status = await OdbcBridge(runner).test(_config(DSN="EagleSoft"))

    assert status.success is False
    assert status.hint and 'Verify DSN "EagleSoft"' in status.hint[0]


@pytest.mark.anyio
async def test_bridge_unexpected_output() -> None:
    runner = _ScriptedRunner(_result("WARNING: profile skipped\n"))

    status = await OdbcBridge(runner).test(_config(DSN="EagleSoft"))

    assert status.error == "Unexpected response from ODBC test"
    assert status.model_extra and status.model_extra["output"] == "WARNING: profile skipped"


@pytest.mark.anyio
async def test_bridge_reports_missing_powershell() -> None:
    runner = _ScriptedRunner(CommandResult(args=("ps",), returncode=None, error="Failed to start ps: not found"))

    status = await OdbcBridge(runner, powershell="C:\\ps32.exe").test(_config(DSN="EagleSoft"))

    assert status.error == "Failed to start ps: not found"
    assert status.hint and "Expected path: C:\\ps32.exe" in status.hint


@pytest.mark.anyio
async def test_use_odbc_flag_routes_through_bridge_on_64bit() -> None:
    runner = _ScriptedRunner(_result("SUCCESS\n"))
    adapter = OdbcAdapter(bridge=OdbcBridge(runner), driver=_NeverCalledDriver(), process_bits=64)

    status = await adapter.test_connection(_config(useOdbc=True, odbcConnectionString="DSN=EagleSoft"))

    assert status.success is True
    assert status.message == "ODBC connection successful (via 32-bit PowerShell)"


@pytest.mark.anyio
async def test_wow64_only_dsn_is_bridged() -> None:
    registry = RegistryScanner(_FakeReader({(Hive.HKLM, f"{ODBC_INI_WOW64}\\EagleSoft")}), is_windows=True)
    adapter = OdbcAdapter(registry=registry, process_bits=64)

    assert await adapter.dsn_is_32bit_only("EagleSoft") is True
    assert await adapter.needs_bridge(_config(DSN="EagleSoft")) is True


@pytest.mark.anyio
async def test_dsn_registered_natively_is_not_bridged() -> None:
    registry = RegistryScanner(
        _FakeReader({(Hive.HKLM, f"{ODBC_INI_WOW64}\\Both"), (Hive.HKLM, f"{ODBC_INI}\\Both")}),
        is_windows=True,
    )
    adapter = OdbcAdapter(registry=registry, process_bits=64)

    assert await adapter.needs_bridge(_config(DSN="Both")) is False


@pytest.mark.anyio
async def test_32bit_interpreter_uses_pyodbc_directly() -> None:
    class _Cursor:
        def execute(self, query: str) -> _Cursor:
            return self

        def fetchone(self) -> tuple[int]:
            return (1,)

        def close(self) -> None:
            pass

    class _Conn:
        closed = False

        def cursor(self) -> _Cursor:
            return _Cursor()

        def close(self) -> None:
            _Conn.closed = True

    class _Driver:
        def connect(self, connection_string: str, timeout: int = 0) -> _Conn:
            assert connection_string == "DSN=EagleSoft"
            return _Conn()

    adapter = OdbcAdapter(driver=_Driver(), process_bits=32)

    status = await adapter.test_connection(_config(useOdbc=True, odbcConnectionString="DSN=EagleSoft"))

    assert status.success is True
    assert _Conn.closed


@pytest.mark.anyio
async def test_pyodbc_errors_are_classified() -> None:
    class _OdbcError(Exception):
        pass

    class _Driver:
        def connect(self, connection_string: str, timeout: int = 0) -> Any:
            raise _OdbcError("IM002", "[IM002] Data source name not found and no default driver specified")

    adapter = OdbcAdapter(driver=_Driver(), process_bits=32)

    status = await adapter.test_connection(_config(DSN="Missing"))

    assert status.code == "IM002"
    assert status.hint and status.hint[0] == 'DSN "Missing" is not configured in Windows ODBC Data Sources.'


@pytest.mark.anyio
async def test_missing_connection_details_is_config_error() -> None:
    status = await OdbcAdapter(process_bits=32).test_connection(_config())

    assert status.code == "CONFIG"
