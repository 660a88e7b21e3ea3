"""Generic ODBC adapter plus the 32-bit PowerShell bridge for 32-bit-only DSNs."""

from __future__ import annotations

import asyncio
import logging
import struct
from typing import Any

from ..config import POWERSHELL_32BIT
from ..models import ConnectionConfig, ConnectionStatus, ServerInfo, mask_connection_string
from ..registry import Hive, RegistryError, RegistryScanner
from ..shell import CommandRunner, SubprocessRunner, parse_markers, powershell_args, quote_powershell
from .base import DEFAULT_TIMEOUT, BaseAdapter
from .hints import BRIDGE_DEFAULT_HINTS, ODBC_HINTS

LOG = logging.getLogger(__name__)

ODBC_INI = r"SOFTWARE\ODBC\ODBC.INI"
ODBC_INI_WOW64 = r"SOFTWARE\WOW6432Node\ODBC\ODBC.INI"

_BRIDGE_SCRIPT = """
$ErrorActionPreference = "Stop"
try {{
  Add-Type -AssemblyName System.Data
  $connectionString = {connection_string}
  $connection = New-Object System.Data.Odbc.OdbcConnection($connectionString)
  $connection.Open()
  Write-Output "SUCCESS"
  $command = $connection.CreateCommand()
  $command.CommandText = "SELECT 1 AS TestValue"
  $reader = $command.ExecuteReader()
  if ($reader.Read()) {{
    Write-Output "QUERY_SUCCESS"
  }}
  $reader.Close()
  $connection.Close()
  exit 0
}} catch {{
  $errorMessage = $_.Exception.Message
  Write-Output "ERROR: $errorMessage"
  if ($errorMessage -like "*Data source name not found*" -or $errorMessage -like "*IM002*") {{
    Write-Output "HINT: DSN not configured in 32-bit ODBC Data Source Administrator"
  }} elseif ($errorMessage -like "*login failed*" -or $errorMessage -like "*28000*") {{
    Write-Output "HINT: Invalid username or password"
  }} elseif ($errorMessage -like "*unable to connect*" -or $errorMessage -like "*08001*") {{
    Write-Output "HINT: Cannot connect to database server"
  }}
  exit 1
}}
""".strip()


def split_odbc_pairs(connection_string: str) -> list[tuple[str, str]]:
    """``key=value`` pairs of an ODBC connection string, in order."""

    pairs: list[tuple[str, str]] = []
    for part in connection_string.split(";"):
        if "=" not in part:
            continue
        key, value = part.split("=", 1)
        key = key.strip()
        if key:
            pairs.append((key, value.strip()))
    return pairs


def build_odbc_connection_string(config: ConnectionConfig) -> str:
    if config.odbc_connection_string:
        return config.odbc_connection_string
    parts = [
        f"DBN={config.dbn}" if config.dbn else None,
        f"DSN={config.dsn}" if config.dsn else None,
        f"UID={config.login}" if config.login else None,
        f"PWD={config.password}" if config.password else None,
    ]
    return ";".join(part for part in parts if part)


def dsn_name(config: ConnectionConfig) -> str | None:
    if config.dsn:
        return config.dsn
    for key, value in split_odbc_pairs(config.odbc_connection_string or ""):
        if key.lower() == "dsn":
            return value
    return config.server


def _odbc_server_info(config: ConnectionConfig, version: str) -> ServerInfo:
    return ServerInfo(
        version=version,
        current_user=config.login or "N/A",
        current_database=config.dbn or config.database or "N/A",
        server_name=dsn_name(config) or "N/A",
    )


class OdbcBridge:
    """Runs the ODBC test inside 32-bit PowerShell and reads its marker lines."""

    def __init__(
        self,
        runner: CommandRunner | None = None,
        *,
        powershell: str = POWERSHELL_32BIT,
        timeout: float = 30.0,
    ) -> None:
        self._runner = runner or SubprocessRunner()
        self._powershell = powershell
        self._timeout = timeout

    async def test(self, config: ConnectionConfig) -> ConnectionStatus:
        connection_string = build_odbc_connection_string(config)
        if not connection_string:
            return ConnectionStatus.failure("Missing ODBC connection string information", code="CONFIG")
        script = _BRIDGE_SCRIPT.format(connection_string=quote_powershell(connection_string))
        LOG.info("Testing ODBC through 32-bit PowerShell: %s", mask_connection_string(connection_string))
        result = await self._runner.run(powershell_args(self._powershell, script), timeout=self._timeout)
        markers = parse_markers(result.stdout, result.stderr)
        dsn = dsn_name(config) or "N/A"

        if markers.success:
            return ConnectionStatus.ok(
                "ODBC connection successful (via 32-bit PowerShell)",
                _odbc_server_info(config, "ODBC connection (32-bit)"),
            )
        if markers.error is not None:
            hints = list(markers.hints) or [hint.format(dsn=dsn) for hint in BRIDGE_DEFAULT_HINTS]
            extra: dict[str, Any] = {}
            if not result.ok:
                extra["rawOutput"] = "\n".join(markers.lines)
            return ConnectionStatus.failure(markers.error, hint=hints, **extra)
        if result.timed_out:
            return ConnectionStatus.failure(
                f"ODBC test timed out after {self._timeout:g}s",
                code="ETIMEOUT",
                hint=[f'Check that DSN "{dsn}" points at a running database server.'],
            )
        if markers.lines:
            return ConnectionStatus.failure(
                "Unexpected response from ODBC test",
                output="\n".join(markers.lines),
            )
        return ConnectionStatus.failure(
            result.error or "Failed to execute 32-bit PowerShell ODBC test",
            hint=[
                "Ensure 32-bit PowerShell is available on your system.",
                f"Expected path: {self._powershell}",
                "This should be available by default on 64-bit Windows systems.",
            ],
        )


class OdbcAdapter(BaseAdapter):
    """DSN-style connections; 32-bit-only DSNs are routed through the bridge."""

    db_type = None
    vendor = "ODBC"
    driver_module = "pyodbc"
    hint_policy = ODBC_HINTS

    def __init__(
        self,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        driver: Any | None = None,
        bridge: OdbcBridge | None = None,
        registry: RegistryScanner | None = None,
        process_bits: int | None = None,
    ) -> None:
        super().__init__(timeout=timeout, driver=driver)
        self._bridge = bridge or OdbcBridge()
        self._registry = registry
        self._process_bits = process_bits or struct.calcsize("P") * 8

    def validate(self, config: ConnectionConfig) -> ConnectionStatus | None:
        if not build_odbc_connection_string(config):
            return ConnectionStatus.failure(
                "Missing ODBC connection string information for this connection.",
                code="CONFIG",
            )
        return super().validate(config)

    def hint_context(self, config: ConnectionConfig) -> dict[str, object]:
        context = super().hint_context(config)
        context["dsn"] = dsn_name(config) or "N/A"
        context["connection_string"] = mask_connection_string(build_odbc_connection_string(config))
        return context

    async def needs_bridge(self, config: ConnectionConfig) -> bool:
        if self._process_bits == 32:
            return False
        if config.use_odbc:
            return True
        dsn = dsn_name(config)
        if not dsn:
            return False
        return await self.dsn_is_32bit_only(dsn)

    async def dsn_is_32bit_only(self, dsn: str) -> bool:
        """True when the DSN is registered only in the 32-bit registry view."""

        registry = self._registry
        if registry is None or not registry.available:
            return False
        if not await self._key_exists(registry, Hive.HKLM, f"{ODBC_INI_WOW64}\\{dsn}"):
            return False
        native = await self._key_exists(registry, Hive.HKLM, f"{ODBC_INI}\\{dsn}")
        user = await self._key_exists(registry, Hive.HKCU, f"{ODBC_INI}\\{dsn}")
        return not (native or user)

    async def test_connection(self, config: ConnectionConfig) -> ConnectionStatus:
        problem = self.validate(config)
        if problem is not None:
            return problem
        if await self.needs_bridge(config):
            return await self._bridge.test(config)
        return await super().test_connection(config)

    async def _probe(self, driver: Any, config: ConnectionConfig, timeout: float) -> ConnectionStatus:
        connection_string = build_odbc_connection_string(config)
        LOG.info("Testing ODBC connection: %s", mask_connection_string(connection_string))
        await asyncio.to_thread(self._query, driver, connection_string, timeout)
        return ConnectionStatus.ok("ODBC connection successful", _odbc_server_info(config, "ODBC connection"))

    @staticmethod
    def _query(driver: Any, connection_string: str, timeout: float) -> None:
        conn = driver.connect(connection_string, timeout=max(1, int(timeout)))
        try:
            cursor = conn.cursor()
            try:
                cursor.execute("SELECT 1 AS TestValue").fetchone()
            finally:
                cursor.close()
        finally:
            conn.close()

    @staticmethod
    async def _key_exists(registry: RegistryScanner, hive: Hive, path: str) -> bool:
        try:
            await registry.read_values(hive, path)
        except RegistryError:
            return False
        return True


__all__ = [
    "OdbcAdapter",
    "OdbcBridge",
    "build_odbc_connection_string",
    "dsn_name",
    "mask_connection_string",
    "split_odbc_pairs",
]
