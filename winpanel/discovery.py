"""Discovery of database servers installed on this machine."""

from __future__ import annotations

import asyncio
import logging
import sys
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable

from .models import DatabaseType, DiscoveredInstance, InstanceSource
from .registry import Hive, RegistryError, RegistryScanner
from .shell import CommandRunner, SubprocessRunner

LOG = logging.getLogger(__name__)

SERVICE_QUERY = ("sc", "query", "type=", "service", "state=", "all")
SQL_BROWSER_QUERY = ("sqlcmd", "-L")

MSSQL_INSTANCE_KEYS = (
    r"SOFTWARE\Microsoft\Microsoft SQL Server\Instance Names\SQL",
    r"SOFTWARE\WOW6432Node\Microsoft\Microsoft SQL Server\Instance Names\SQL",
)
MYSQL_KEYS = (r"SOFTWARE\MySQL AB", r"SOFTWARE\WOW6432Node\MySQL AB")
POSTGRES_KEYS = (r"SOFTWARE\PostgreSQL", r"SOFTWARE\WOW6432Node\PostgreSQL")

VENDOR_LABELS = {
    DatabaseType.MSSQL: "SQL Server",
    DatabaseType.MYSQL: "MySQL",
    DatabaseType.POSTGRESQL: "PostgreSQL",
    DatabaseType.MONGODB: "MongoDB",
}


@dataclass(slots=True)
class VendorDiscovery:
    """Instances found for one database type."""

    db_type: DatabaseType
    success: bool = True
    instances: list[DiscoveredInstance] = field(default_factory=list)
    error: str | None = None

    def add(self, instance: DiscoveredInstance) -> None:
        if any(existing.name == instance.name for existing in self.instances):
            return
        self.instances.append(instance)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "success": self.success,
            "instances": [instance.to_dict() for instance in self.instances],
            "count": len(self.instances),
        }
        if self.error:
            data["error"] = self.error
        return data


def parse_service_names(output: str, needles: Iterable[str]) -> list[str]:
    """Service names from ``sc query`` output containing any needle."""

    lowered = tuple(needle.lower() for needle in needles)
    names: list[str] = []
    for line in output.splitlines():
        line = line.strip()
        if not line.upper().startswith("SERVICE_NAME:"):
            continue
        name = line.split(":", 1)[1].strip()
        if name and any(needle in name.lower() for needle in lowered):
            names.append(name)
    return names


def parse_sql_browser(output: str) -> list[str]:
    servers: list[str] = []
    for line in output.splitlines():
        name = line.strip()
        if not name or name.lower().startswith("servers:"):
            continue
        if name not in servers:
            servers.append(name)
    return servers


class Discovery:
    """Finds database servers through the registry, service list and SQL Browser."""

    def __init__(
        self,
        registry: RegistryScanner | None = None,
        runner: CommandRunner | None = None,
        *,
        timeout: float = 5.0,
        is_windows: bool | None = None,
    ) -> None:
        self._is_windows = sys.platform == "win32" if is_windows is None else is_windows
        self._registry = registry or RegistryScanner(is_windows=self._is_windows)
        self._runner = runner or SubprocessRunner()
        self._timeout = timeout

    async def discover_sql_server(self) -> VendorDiscovery:
        result = self._start(DatabaseType.MSSQL)
        if not result.success:
            return result
        for key in MSSQL_INSTANCE_KEYS:
            try:
                values = await self._registry.read_values(Hive.HKLM, key)
            except RegistryError:
                LOG.debug("Registry path not found: %s", key)
                continue
            for instance in values:
                server = "localhost" if instance == "MSSQLSERVER" else f"localhost\\{instance}"
                result.add(
                    DiscoveredInstance(
                        name=instance,
                        server_name=server,
                        display_name=f"SQL Server ({instance})",
                        type=DatabaseType.MSSQL,
                        source=InstanceSource.REGISTRY,
                    )
                )
        browser = await self._runner.run(SQL_BROWSER_QUERY, timeout=self._timeout)
        if browser.ok:
            for server in parse_sql_browser(browser.stdout):
                if any(existing.server_name == server for existing in result.instances):
                    continue
                result.add(
                    DiscoveredInstance(
                        name=server,
                        server_name=server,
                        display_name=f"SQL Server ({server})",
                        type=DatabaseType.MSSQL,
                        source=InstanceSource.NETWORK,
                    )
                )
        else:
            LOG.debug("SQL Browser discovery not available: %s", browser.failure_reason)
        return result

    async def discover_mysql(self) -> VendorDiscovery:
        return await self._discover_service_vendor(DatabaseType.MYSQL, ("mysql",), 3306, MYSQL_KEYS)

    async def discover_postgresql(self) -> VendorDiscovery:
        return await self._discover_service_vendor(DatabaseType.POSTGRESQL, ("postgresql",), 5432, POSTGRES_KEYS)

    async def discover_mongodb(self) -> VendorDiscovery:
        return await self._discover_service_vendor(DatabaseType.MONGODB, ("mongo",), 27017, ())

    async def discover_all(self) -> dict[str, Any]:
        """Run every vendor's discovery concurrently and merge in a fixed order."""

        probes: list[tuple[DatabaseType, Callable[[], Awaitable[VendorDiscovery]]]] = [
            (DatabaseType.MSSQL, self.discover_sql_server),
            (DatabaseType.MYSQL, self.discover_mysql),
            (DatabaseType.POSTGRESQL, self.discover_postgresql),
            (DatabaseType.MONGODB, self.discover_mongodb),
        ]
        outcomes = await asyncio.gather(*(probe() for _, probe in probes), return_exceptions=True)
        by_type: dict[str, list[dict[str, Any]]] = {}
        errors: dict[str, str] = {}
        instances: list[dict[str, Any]] = []
        for (db_type, _), outcome in zip(probes, outcomes):
            if isinstance(outcome, BaseException):
                LOG.error("Discovery failed", exc_info=outcome, extra={"db_type": db_type.value})
                outcome = VendorDiscovery(db_type, success=False, error=str(outcome) or type(outcome).__name__)
            found = [instance.to_dict() for instance in outcome.instances]
            by_type[db_type.value] = found
            instances.extend(found)
            if outcome.error:
                errors[db_type.value] = outcome.error
        result: dict[str, Any] = {
            "success": True,
            "instances": instances,
            "count": len(instances),
            "byType": by_type,
        }
        if errors:
            result["errors"] = errors
        return result

    def _start(self, db_type: DatabaseType) -> VendorDiscovery:
        if self._is_windows:
            return VendorDiscovery(db_type)
        return VendorDiscovery(
            db_type,
            success=False,
            error=f"{VENDOR_LABELS[db_type]} discovery is only available on Windows",
        )

    async def _discover_service_vendor(
        self,
        db_type: DatabaseType,
        needles: tuple[str, ...],
        port: int,
        registry_keys: tuple[str, ...],
    ) -> VendorDiscovery:
        result = self._start(db_type)
        if not result.success:
            return result
        label = VENDOR_LABELS[db_type]
        services = await self._runner.run(SERVICE_QUERY, timeout=self._timeout)
        if services.ok:
            for name in parse_service_names(services.stdout, needles):
                result.add(
                    DiscoveredInstance(
                        name=name,
                        server_name="localhost",
                        display_name=f"{label} ({name})",
                        type=db_type,
                        source=InstanceSource.SERVICE,
                        port=port,
                    )
                )
        else:
            LOG.debug("%s service discovery not available: %s", label, services.failure_reason)
        for key in registry_keys:
            try:
                subkeys = await self._registry.list_subkeys(Hive.HKLM, key)
            except RegistryError:
                LOG.debug("Registry path not found: %s", key)
                continue
            for name in subkeys:
                result.add(
                    DiscoveredInstance(
                        name=name,
                        server_name="localhost",
                        display_name=f"{label} ({name})",
                        type=db_type,
                        source=InstanceSource.REGISTRY,
                        port=port,
                    )
                )
        return result


__all__ = [
    "Discovery",
    "VendorDiscovery",
    "parse_service_names",
    "parse_sql_browser",
]
