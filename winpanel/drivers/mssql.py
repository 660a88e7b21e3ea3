"""Microsoft SQL Server adapter using pyodbc and the SQL Server ODBC driver."""

from __future__ import annotations

import asyncio
from typing import Any

from ..models import ConnectionConfig, ConnectionStatus, DatabaseType, ServerInfo
from .base import DEFAULT_TIMEOUT, BaseAdapter
from .hints import MSSQL_HINTS

DEFAULT_DRIVER = "ODBC Driver 17 for SQL Server"


def odbc_value(value: object) -> str:
    """Brace-quote values that would otherwise break the key=value list."""

    text = str(value)
    if any(char in text for char in ";{}") or text != text.strip():
        return "{" + text.replace("}", "}}") + "}"
    return text


def _yes_no(flag: bool) -> str:
    return "yes" if flag else "no"


def build_mssql_connection_string(config: ConnectionConfig, driver_name: str = DEFAULT_DRIVER) -> str:
    server = config.server or config.host or "localhost"
    # Named instances resolve their port through SQL Browser.
    if config.port:
        address = f"{server},{config.port}"
    elif "\\" in server:
        address = server
    else:
        address = f"{server},1433"
    parts = [
        f"DRIVER={{{driver_name}}}",
        f"SERVER={odbc_value(address)}",
    ]
    if config.database:
        parts.append(f"DATABASE={odbc_value(config.database)}")
    parts.append(f"Encrypt={_yes_no(config.encrypt is not False)}")
    parts.append(f"TrustServerCertificate={_yes_no(config.trust_server_certificate is True)}")
    if config.windows_auth:
        parts.append("Trusted_Connection=yes")
    else:
        if config.login:
            parts.append(f"UID={odbc_value(config.login)}")
        if config.password:
            parts.append(f"PWD={odbc_value(config.password)}")
    return ";".join(parts)


class MssqlAdapter(BaseAdapter):
    """Runs the identity query through pyodbc off the event loop."""

    db_type = DatabaseType.MSSQL
    vendor = "SQL Server"
    driver_module = "pyodbc"
    hint_policy = MSSQL_HINTS

    _IDENTITY_QUERY = "SELECT @@VERSION AS Version, SYSTEM_USER AS CurrentUser, DB_NAME() AS CurrentDatabase"

    def __init__(
        self,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        driver: Any | None = None,
        odbc_driver: str = DEFAULT_DRIVER,
    ) -> None:
        super().__init__(timeout=timeout, driver=driver)
        self._odbc_driver = odbc_driver

    def hint_context(self, config: ConnectionConfig) -> dict[str, object]:
        context = super().hint_context(config)
        context["port"] = config.port or 1433
        context["driver"] = self._odbc_driver
        if config.windows_auth:
            context["user"] = "the current Windows account"
        return context

    async def _probe(self, driver: Any, config: ConnectionConfig, timeout: float) -> ConnectionStatus:
        connection_string = build_mssql_connection_string(config, self._odbc_driver)
        row = await asyncio.to_thread(self._query, driver, connection_string, timeout)
        server = config.server or config.host or "localhost"
        if not row:
            return ConnectionStatus.ok("Connection successful", ServerInfo(server_name=server))
        version, user, database = row
        return ConnectionStatus.ok(
            "Connection successful",
            ServerInfo(
                version=str(version or "Unknown"),
                current_user=str(user or "Unknown"),
                current_database=str(database or "Unknown"),
                server_name=server,
            ),
        )

    def _query(self, driver: Any, connection_string: str, timeout: float) -> tuple[Any, ...] | None:
        conn = driver.connect(connection_string, timeout=max(1, int(timeout)))
        try:
            conn.timeout = max(1, int(timeout))
            cursor = conn.cursor()
            try:
                row = cursor.execute(self._IDENTITY_QUERY).fetchone()
            finally:
                cursor.close()
        finally:
            conn.close()
        return tuple(row) if row is not None else None


__all__ = ["MssqlAdapter", "build_mssql_connection_string", "odbc_value"]
