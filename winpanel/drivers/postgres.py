"""PostgreSQL adapter built on asyncpg."""

from __future__ import annotations

from typing import Any

import asyncpg

from ..models import ConnectionConfig, ConnectionStatus, DatabaseType, ServerInfo
from .base import BaseAdapter
from .hints import POSTGRES_HINTS


class PostgresAdapter(BaseAdapter):
    """Opens one asyncpg connection, reads the server identity, closes it."""

    db_type = DatabaseType.POSTGRESQL
    vendor = "PostgreSQL"
    driver_module = "asyncpg"
    hint_policy = POSTGRES_HINTS

    _IDENTITY_QUERY = "SELECT version() AS version, current_user AS current_user, current_database() AS current_database"

    def load_driver(self) -> Any:
        return asyncpg

    def hint_context(self, config: ConnectionConfig) -> dict[str, object]:
        context = super().hint_context(config)
        context["port"] = config.port or 5432
        context["database"] = config.database or "postgres"
        return context

    async def _probe(self, driver: Any, config: ConnectionConfig, timeout: float) -> ConnectionStatus:
        host = config.host or config.server or "localhost"
        conn = await asyncpg.connect(
            host=host,
            port=config.port or 5432,
            user=config.login,
            password=config.password,
            database=config.database or "postgres",
            timeout=timeout,
        )
        try:
            row = await conn.fetchrow(self._IDENTITY_QUERY)
        finally:
            try:
                await conn.close()
            except Exception:  # pragma: no cover - best effort cleanup
                pass
        if row is None:
            return ConnectionStatus.ok("Connection successful", ServerInfo(server_name=host))
        return ConnectionStatus.ok(
            "Connection successful",
            ServerInfo(
                version=str(row["version"]),
                current_user=str(row["current_user"]),
                current_database=str(row["current_database"]),
                server_name=host,
            ),
        )


__all__ = ["PostgresAdapter"]
