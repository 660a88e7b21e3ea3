"""Connection details read from a local Eaglesoft install via its settings COM object."""

from __future__ import annotations

import logging
import sys
from typing import Any

from .config import AppConfig
from .drivers.odbc import split_odbc_pairs
from .models import DatabaseType
from .shell import CommandRunner, SubprocessRunner, parse_markers, powershell_args, quote_powershell

LOG = logging.getLogger(__name__)

PROG_ID = "EaglesoftSettings.EaglesoftSettings"

_PROBE_SCRIPT = f"""
$ErrorActionPreference = "Stop"
try {{
  $null = New-Object -ComObject "{PROG_ID}"
  Write-Output "SUCCESS"
}} catch {{
  Write-Output ("ERROR: " + $_.Exception.Message)
}}
""".strip()

_FETCH_SCRIPT = """
try {{
  $settings = New-Object -ComObject "{prog_id}"
  if ($settings -eq $null) {{
    Write-Output "ERROR: Could not create EaglesoftSettings COM object"
    exit 1
  }}
  $productName = {product}
  $token = {token}
  if (-not [string]::IsNullOrEmpty($productName) -and -not [string]::IsNullOrEmpty($token)) {{
    $isTokenValid = $settings.SetToken($productName, $token)
    if (-not $isTokenValid) {{
      Write-Output "ERROR: SetToken failed for product '$productName'"
      exit 1
    }}
  }}
  $connectionString = $settings.GetLegacyConnectionString({primary})
  if ([string]::IsNullOrEmpty($connectionString)) {{
    Write-Output "ERROR: Connection string is empty"
    exit 1
  }}
  Write-Output $connectionString
  exit 0
}} catch {{
  Write-Output "ERROR: $($_.Exception.Message)"
  exit 1
}}
""".strip()

_TRUTHY = {"yes", "true", "sspi"}

# ODBC keyword -> config keys it populates. DSN/DBN also fill the generic fields.
_STRING_KEYS: dict[str, tuple[str, ...]] = {
    "driver": ("driver",),
    "server": ("server",),
    "data source": ("server",),
    "dsn": ("server", "DSN"),
    "database": ("database",),
    "initial catalog": ("database",),
    "dbn": ("database", "DBN"),
    "uid": ("username",),
    "user id": ("username",),
    "username": ("username",),
    "pwd": ("password",),
    "password": ("password",),
}
_FLAG_KEYS: dict[str, str] = {
    "trusted_connection": "windowsAuth",
    "integrated security": "windowsAuth",
    "encrypt": "encrypt",
    "trustservercertificate": "trustServerCertificate",
}

EMPTY_CONNECTION_HINTS = [
    "Eaglesoft is installed and its COM object is accessible,",
    "but the database connection is not configured in Eaglesoft.",
    "1. Open the Eaglesoft application.",
    "2. Complete the initial setup/configuration wizard.",
    "3. Configure the database connection settings in Eaglesoft.",
    "4. Verify you can open patient records or the main screens.",
    "5. Try again; the connection string should then be available.",
]


def error_hints(message: str | None) -> list[str]:
    """Remediation hints for COM failures."""

    if not message:
        return []
    lowered = message.lower()
    if "could not create eaglesoftsettings com object" in lowered or "0x80040154" in lowered:
        return [
            "The EaglesoftSettings COM object is not registered on this system.",
            "Ensure Eaglesoft software is properly installed on this machine.",
            "You may need to re-install or repair your Eaglesoft installation.",
        ]
    if "access denied" in lowered or "0x80070005" in lowered:
        return [
            "Access denied when trying to read Eaglesoft settings.",
            "Try running the application as Administrator.",
            "Ensure your user account has permissions to access Eaglesoft settings.",
        ]
    if "connection string is empty" in lowered:
        return [
            "Eaglesoft returned an empty connection string.",
            "Ensure the Eaglesoft database is properly configured.",
            "Check the Eaglesoft application settings for database configuration.",
        ]
    if "timeout" in lowered or "timed out" in lowered:
        return [
            "Request timed out while accessing Eaglesoft settings.",
            "The Eaglesoft application may not be responding.",
            "Try restarting the Eaglesoft service or application.",
        ]
    return []


def parse_odbc_connection_string(connection_string: str | None) -> dict[str, Any] | None:
    """Map an ODBC connection string onto connection config keys."""

    if not connection_string or not isinstance(connection_string, str):
        return None
    config: dict[str, Any] = {}
    for key, value in split_odbc_pairs(connection_string):
        lowered = key.lower()
        targets = _STRING_KEYS.get(lowered)
        if targets is not None:
            for target in targets:
                config[target] = value
        elif lowered in _FLAG_KEYS:
            config[_FLAG_KEYS[lowered]] = value.lower() in _TRUTHY
        elif lowered == "port":
            try:
                config["port"] = int(value)
            except ValueError:
                LOG.debug("Ignoring non-numeric port %r", value)
        else:
            config[key] = value
    return config


def infer_database_type(driver: str | None) -> DatabaseType:
    lowered = (driver or "").lower()
    for needle, db_type in (
        ("mysql", DatabaseType.MYSQL),
        ("postgres", DatabaseType.POSTGRESQL),
        ("oracle", DatabaseType.ORACLE),
        ("sqlite", DatabaseType.SQLITE),
    ):
        if needle in lowered:
            return db_type
    return DatabaseType.MSSQL


class EaglesoftClient:
    """Talks to the Eaglesoft settings COM object through PowerShell."""

    def __init__(
        self,
        config: AppConfig,
        runner: CommandRunner | None = None,
        *,
        is_windows: bool | None = None,
    ) -> None:
        self._config = config
        self._runner = runner or SubprocessRunner()
        self._is_windows = sys.platform == "win32" if is_windows is None else is_windows

    @property
    def powershell_candidates(self) -> tuple[str, ...]:
        # Eaglesoft is a 32-bit application, so its COM server is usually 32-bit only.
        return (self._config.powershell_32bit, self._config.powershell_64bit)

    async def detect_working_powershell(self) -> tuple[str | None, str | None]:
        """First PowerShell that can create the COM object, plus the last error seen."""

        last_error: str | None = None
        for executable in self.powershell_candidates:
            result = await self._runner.run(
                powershell_args(executable, _PROBE_SCRIPT),
                timeout=self._config.timeouts.shell,
            )
            markers = parse_markers(result.stdout)
            if markers.success:
                LOG.info("Eaglesoft COM object accessible via %s", executable)
                return executable, None
            last_error = markers.error or result.failure_reason
            LOG.debug("Eaglesoft COM probe failed with %s: %s", executable, last_error)
        return None, last_error

    async def is_installed(self) -> dict[str, Any]:
        if not self._is_windows:
            return {"installed": False, "error": "Not a Windows system"}
        executable, last_error = await self.detect_working_powershell()
        if executable:
            return {
                "installed": True,
                "message": "Eaglesoft is installed and COM object is accessible",
                "powershellPath": executable,
            }
        return {
            "installed": False,
            "error": last_error or "Eaglesoft COM object is not available",
            "message": "Eaglesoft COM object is not available. Tried both 32-bit and 64-bit PowerShell.",
            "hint": [
                "Eaglesoft may be installed but its COM object is not accessible.",
                "Error 0x80040154 (Class not registered) usually means a 32-bit COM server accessed from 64-bit.",
                "Try running the application as Administrator.",
            ],
        }

    async def get_connection_string(self, primary: bool = True) -> dict[str, Any]:
        if not self._is_windows:
            return {
                "success": False,
                "error": "Eaglesoft connection retrieval is only available on Windows",
                "connectionString": None,
            }
        executable, _ = await self.detect_working_powershell()
        if executable is None:
            return {
                "success": False,
                "error": "Eaglesoft COM object not accessible via PowerShell",
                "connectionString": None,
                "hint": [
                    "Eaglesoft may not be installed on this system.",
                    "Try running PowerShell as Administrator.",
                    "Check if Eaglesoft needs to be repaired/reinstalled.",
                ],
            }
        settings = self._config.eaglesoft
        script = _FETCH_SCRIPT.format(
            prog_id=PROG_ID,
            product=quote_powershell(settings.product_name or ""),
            token=quote_powershell(settings.token or ""),
            primary="$true" if primary else "$false",
        )
        result = await self._runner.run(
            powershell_args(executable, script),
            timeout=self._config.timeouts.com_fetch,
        )
        output = result.stdout.strip()
        if output.startswith("ERROR:"):
            message = output[len("ERROR:"):].strip()
            LOG.warning("Eaglesoft connection string retrieval failed: %s", message)
            return {"success": False, "error": message, "connectionString": None, "hint": error_hints(message)}
        if result.timed_out or result.error:
            message = result.failure_reason
            return {"success": False, "error": message, "connectionString": None, "hint": error_hints(message)}
        if result.stderr.strip():
            LOG.warning("PowerShell stderr: %s", result.stderr.strip())
        if not output:
            return {
                "success": False,
                "error": "Empty connection string returned from Eaglesoft",
                "connectionString": None,
                "hint": list(EMPTY_CONNECTION_HINTS),
            }
        return {
            "success": True,
            "connectionString": output,
            "source": "EaglesoftSettings COM Object",
            "databaseType": "Primary" if primary else "Secondary",
        }

    async def get_connection_config(self, primary: bool = True) -> dict[str, Any]:
        result = await self.get_connection_string(primary)
        if not result.get("success"):
            return result
        config = parse_odbc_connection_string(result["connectionString"])
        if not config:
            return {
                "success": False,
                "error": "Failed to parse connection string",
                "connectionString": result["connectionString"],
            }
        return {**result, "config": config}

    async def create_connection_data(
        self,
        name: str = "Eaglesoft Database",
        primary: bool = True,
    ) -> dict[str, Any]:
        """Connection data ready for ``ConnectionStore.add``."""

        result = await self.get_connection_config(primary)
        if not result.get("success"):
            return {"success": False, "error": result.get("error"), "hint": result.get("hint")}
        parsed: dict[str, Any] = result["config"]
        config: dict[str, Any] = {
            "server": parsed.get("server") or "localhost",
            "database": parsed.get("database") or "",
            "port": parsed.get("port"),
            "username": parsed.get("username"),
            "password": parsed.get("password"),
            "windowsAuth": bool(parsed.get("windowsAuth")),
            "encrypt": parsed.get("encrypt") is not False,
            "trustServerCertificate": parsed.get("trustServerCertificate") is True,
            "driver": parsed.get("driver"),
            "DSN": parsed.get("DSN"),
            "DBN": parsed.get("DBN"),
            "useOdbc": True,
            "odbcConnectionString": result["connectionString"],
        }
        return {
            "success": True,
            "connectionData": {
                "name": name,
                "type": infer_database_type(parsed.get("driver")).value,
                "config": {key: value for key, value in config.items() if value is not None},
            },
            "source": result.get("source"),
            "databaseType": result.get("databaseType"),
        }


__all__ = [
    "EaglesoftClient",
    "error_hints",
    "infer_database_type",
    "parse_odbc_connection_string",
]
