"""Database driver adapters and the table of supported types."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

from ..config import AppConfig
from ..models import DatabaseType
from ..registry import RegistryScanner
from ..shell import CommandRunner
from .base import BaseAdapter, DriverAdapter, DriverNotInstalledError
from .mongodb import MongodbAdapter
from .mssql import MssqlAdapter
from .mysql import MysqlAdapter
from .odbc import OdbcAdapter, OdbcBridge
from .postgres import PostgresAdapter


@dataclass(frozen=True, slots=True)
class TypeInfo:
    """Display metadata for a database type."""

    name: str
    default_port: int | None
    supports_windows_auth: bool = False

    def to_dict(self, *, installed: bool) -> dict[str, Any]:
        return {
            "name": self.name,
            "defaultPort": self.default_port,
            "supportsWindowsAuth": self.supports_windows_auth,
            "installed": installed,
        }


TYPE_INFO: Mapping[DatabaseType, TypeInfo] = {
    DatabaseType.MSSQL: TypeInfo("Microsoft SQL Server", 1433, supports_windows_auth=True),
    DatabaseType.MYSQL: TypeInfo("MySQL", 3306),
    DatabaseType.POSTGRESQL: TypeInfo("PostgreSQL", 5432),
    DatabaseType.MONGODB: TypeInfo("MongoDB", 27017),
    DatabaseType.ORACLE: TypeInfo("Oracle Database", 1521),
    DatabaseType.SQLITE: TypeInfo("SQLite", None),
}


@dataclass(frozen=True, slots=True)
class AdapterSet:
    """Adapters keyed by type plus the ODBC adapter used for DSN connections."""

    by_type: Mapping[DatabaseType, DriverAdapter]
    odbc: DriverAdapter

    def for_type(self, db_type: DatabaseType) -> DriverAdapter | None:
        return self.by_type.get(db_type)

    def supported_types(self) -> dict[str, Any]:
        info: dict[str, Any] = {}
        for db_type, meta in TYPE_INFO.items():
            adapter = self.by_type.get(db_type)
            info[db_type.value] = meta.to_dict(installed=bool(adapter and adapter.installed))
        return {"types": [db_type.value for db_type in DatabaseType], "typeInfo": info}


def build_adapters(
    config: AppConfig,
    *,
    registry: RegistryScanner | None = None,
    runner: CommandRunner | None = None,
) -> AdapterSet:
    timeout = config.timeouts.driver
    bridge = OdbcBridge(runner, powershell=config.powershell_32bit, timeout=config.timeouts.odbc_bridge)
    return AdapterSet(
        by_type={
            DatabaseType.MSSQL: MssqlAdapter(timeout=timeout, odbc_driver=config.mssql_odbc_driver),
            DatabaseType.MYSQL: MysqlAdapter(timeout=timeout),
            DatabaseType.POSTGRESQL: PostgresAdapter(timeout=timeout),
            DatabaseType.MONGODB: MongodbAdapter(timeout=timeout),
        },
        odbc=OdbcAdapter(timeout=timeout, bridge=bridge, registry=registry),
    )


__all__ = [
    "AdapterSet",
    "BaseAdapter",
    "DriverAdapter",
    "DriverNotInstalledError",
    "MongodbAdapter",
    "MssqlAdapter",
    "MysqlAdapter",
    "OdbcAdapter",
    "OdbcBridge",
    "PostgresAdapter",
    "TYPE_INFO",
    "TypeInfo",
    "build_adapters",
]
