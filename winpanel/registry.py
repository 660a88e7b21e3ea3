"""Windows registry scanning used to pre-fill connection details."""

from __future__ import annotations

import asyncio
import logging
import sys
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Protocol

from .models import DatabaseType

LOG = logging.getLogger(__name__)

DEFAULT_VALUE_NAME = "(Default)"


class RegistryError(OSError):
    """Raised when a key cannot be opened or read."""


class Hive(str, Enum):
    """Registry hives searched for connection settings."""

    HKCU = "HKCU"
    HKLM = "HKLM"


SEARCH_HIVES: tuple[Hive, ...] = (Hive.HKCU, Hive.HKLM)

# {instance} is substituted; entries containing it are skipped without an instance name.
VENDOR_SUBKEYS: Mapping[DatabaseType, tuple[str, ...]] = {
    DatabaseType.MSSQL: (
        r"SOFTWARE\winpanel\SQLConnection\{instance}",
        r"SOFTWARE\winpanel\SQLConnection",
        r"SOFTWARE\Microsoft\Microsoft SQL Server\{instance}",
        r"SOFTWARE\Microsoft\MSSQLServer\{instance}",
    ),
    DatabaseType.MYSQL: (
        r"SOFTWARE\winpanel\MySQLConnection\{instance}",
        r"SOFTWARE\winpanel\MySQLConnection",
        r"SOFTWARE\MySQL AB\{instance}",
        r"SOFTWARE\MySQL AB",
        r"SOFTWARE\MySQL",
    ),
    DatabaseType.POSTGRESQL: (
        r"SOFTWARE\winpanel\PostgreSQLConnection\{instance}",
        r"SOFTWARE\winpanel\PostgreSQLConnection",
        r"SOFTWARE\PostgreSQL\{instance}",
        r"SOFTWARE\PostgreSQL\Installations\{instance}",
        r"SOFTWARE\PostgreSQL",
    ),
    DatabaseType.MONGODB: (
        r"SOFTWARE\winpanel\MongoDBConnection\{instance}",
        r"SOFTWARE\winpanel\MongoDBConnection",
        r"SOFTWARE\MongoDB\{instance}",
        r"SOFTWARE\MongoDB",
    ),
}


@dataclass(frozen=True, slots=True)
class RegistryPath:
    """A readable registry key."""

    hive: Hive
    path: str

    @property
    def full_path(self) -> str:
        return f"{self.hive.value}\\{self.path}"


class RegistryReader(Protocol):
    """Blocking registry access; implementations raise RegistryError on failure."""

    def read_values(self, hive: Hive, path: str) -> dict[str, Any]: ...

    def list_subkeys(self, hive: Hive, path: str) -> list[str]: ...


class WinregReader:
    """Registry reader backed by the stdlib ``winreg`` module."""

    def __init__(self) -> None:
        try:
            import winreg
        except ImportError as exc:
            raise RegistryError("The Windows registry is only available on Windows") from exc
        self._winreg = winreg
        self._roots = {
            Hive.HKCU: winreg.HKEY_CURRENT_USER,
            Hive.HKLM: winreg.HKEY_LOCAL_MACHINE,
        }

    def read_values(self, hive: Hive, path: str) -> dict[str, Any]:
        winreg = self._winreg
        values: dict[str, Any] = {}
        try:
            with winreg.OpenKey(self._roots[hive], path) as key:
                count = winreg.QueryInfoKey(key)[1]
                for index in range(count):
                    name, value, _kind = winreg.EnumValue(key, index)
                    values[name or DEFAULT_VALUE_NAME] = value
        except OSError as exc:
            raise RegistryError(f"Cannot read {hive.value}\\{path}: {exc}") from exc
        return values

    def list_subkeys(self, hive: Hive, path: str) -> list[str]:
        winreg = self._winreg
        names: list[str] = []
        try:
            with winreg.OpenKey(self._roots[hive], path) as key:
                count = winreg.QueryInfoKey(key)[0]
                for index in range(count):
                    names.append(winreg.EnumKey(key, index))
        except OSError as exc:
            raise RegistryError(f"Cannot list {hive.value}\\{path}: {exc}") from exc
        return names


def candidate_paths(db_type: DatabaseType, instance_name: str | None) -> list[RegistryPath]:
    """Cross product of hives and vendor subkeys, in search order."""

    instance = (instance_name or "").strip()
    subkeys: list[str] = []
    for template in VENDOR_SUBKEYS.get(db_type, ()):
        if "{instance}" in template:
            if not instance:
                continue
            subkeys.append(template.format(instance=instance))
        else:
            subkeys.append(template)
    return [RegistryPath(hive, subkey) for hive in SEARCH_HIVES for subkey in subkeys]


def flatten_value(value: Any) -> str:
    if isinstance(value, bytes):
        return value.hex()
    if isinstance(value, (list, tuple)):
        return ";".join(str(item) for item in value)
    return str(value)


class RegistryScanner:
    """Async facade over a RegistryReader with per-call timeouts."""

    def __init__(
        self,
        reader: RegistryReader | None = None,
        *,
        timeout: float = 5.0,
        is_windows: bool | None = None,
    ) -> None:
        self._reader = reader
        self._timeout = timeout
        self._is_windows = sys.platform == "win32" if is_windows is None else is_windows

    @property
    def available(self) -> bool:
        return self._is_windows

    async def read_values(self, hive: Hive, path: str) -> dict[str, Any]:
        reader = self._get_reader()
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(reader.read_values, hive, path),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError as exc:
            raise RegistryError(f"Timed out reading {hive.value}\\{path}") from exc

    async def list_subkeys(self, hive: Hive, path: str) -> list[str]:
        reader = self._get_reader()
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(reader.list_subkeys, hive, path),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError as exc:
            raise RegistryError(f"Timed out listing {hive.value}\\{path}") from exc

    async def discover_registry_paths(
        self,
        db_type: DatabaseType,
        instance_name: str | None,
    ) -> list[RegistryPath]:
        """Candidate paths that can actually be read on this machine."""

        found: list[RegistryPath] = []
        for candidate in candidate_paths(db_type, instance_name):
            try:
                await self.read_values(candidate.hive, candidate.path)
            except RegistryError:
                continue
            found.append(candidate)
        return found

    async def read_registry_config(self, hive: Hive, path: str) -> dict[str, str] | None:
        try:
            values = await self.read_values(hive, path)
        except RegistryError as exc:
            LOG.debug("Registry key unreadable: %s", exc)
            return None
        return {name: flatten_value(value) for name, value in values.items()}

    async def fetch_credentials_from_registry(
        self,
        db_type: DatabaseType,
        instance_name: str | None,
    ) -> dict[str, Any]:
        """First non-empty config among the discovered paths, or a not-found result."""

        if not self._is_windows:
            return {"success": False, "error": "Registry access is only available on Windows"}
        LOG.info("Fetching registry credentials", extra={"db_type": db_type.value, "instance": instance_name})
        tried = [path.full_path for path in candidate_paths(db_type, instance_name)]
        discovered = await self.discover_registry_paths(db_type, instance_name)
        if not discovered:
            return {
                "success": False,
                "error": "No configuration found in registry. Please enter connection details manually.",
                "config": None,
                "triedPaths": tried,
                "discoveredPaths": [],
            }
        for registry_path in discovered:
            config = await self.read_registry_config(registry_path.hive, registry_path.path)
            if config:
                LOG.info("Loaded registry configuration from %s", registry_path.full_path)
                return {"success": True, "config": config, "source": registry_path.full_path}
        return {
            "success": False,
            "error": "Registry keys found but no valid configuration. Please enter connection details manually.",
            "config": None,
            "triedPaths": tried,
            "discoveredPaths": [path.full_path for path in discovered],
        }

    def _get_reader(self) -> RegistryReader:
        if self._reader is None:
            self._reader = WinregReader()
        return self._reader


__all__ = [
    "Hive",
    "RegistryError",
    "RegistryPath",
    "RegistryReader",
    "RegistryScanner",
    "WinregReader",
    "candidate_paths",
]
