"""MySQL adapter built on aiomysql."""

from __future__ import annotations

from typing import Any

from ..models import ConnectionConfig, ConnectionStatus, DatabaseType, ServerInfo
from .base import BaseAdapter, error_code, error_message
from .hints import MYSQL_ACCESS_DENIED, MYSQL_HINTS

LOCAL_HOSTS = ("127.0.0.1", "localhost")


def hosts_to_try(host: str) -> list[str]:
    """Local servers are tried over TCP first, then by name."""

    if host in LOCAL_HOSTS:
        return list(LOCAL_HOSTS)
    return [host]


def is_access_denied(exc: BaseException) -> bool:
    return MYSQL_ACCESS_DENIED.matches(error_message(exc), error_code(exc))


class MysqlAdapter(BaseAdapter):
    """Tests MySQL logins, retrying local aliases only on access-denied errors."""

    db_type = DatabaseType.MYSQL
    vendor = "MySQL"
    driver_module = "aiomysql"
    hint_policy = MYSQL_HINTS

    _IDENTITY_QUERY = "SELECT VERSION(), USER(), DATABASE()"

    def hint_context(self, config: ConnectionConfig) -> dict[str, object]:
        context = super().hint_context(config)
        context["port"] = config.port or 3306
        context["user"] = (config.login or "root").strip()
        return context

    async def _probe(self, driver: Any, config: ConnectionConfig, timeout: float) -> ConnectionStatus:
        host = (config.host or config.server or "localhost").strip().lower()
        # Trim to avoid hidden whitespace from copy/paste.
        password = (config.password or "").strip()
        options: dict[str, Any] = {
            "port": config.port or 3306,
            "user": (config.login or "root").strip(),
            "password": password,
            "connect_timeout": timeout,
        }
        database = (config.database or "").strip()
        if database:
            options["db"] = database

        candidates = hosts_to_try(host)
        last_error: BaseException | None = None
        for candidate in candidates:
            try:
                conn = await driver.connect(host=candidate, **options)
            except Exception as exc:
                last_error = exc
                if not is_access_denied(exc):
                    break
                continue
            try:
                cursor = await conn.cursor()
                try:
                    await cursor.execute(self._IDENTITY_QUERY)
                    row = await cursor.fetchone()
                finally:
                    await cursor.close()
            finally:
                conn.close()
            version, user, current_db = row if row else ("Unknown", "Unknown", None)
            return ConnectionStatus.ok(
                "Connection successful",
                ServerInfo(
                    version=str(version),
                    current_user=str(user),
                    current_database=str(current_db) if current_db else "Unknown",
                    server_name=candidate,
                ),
            )

        assert last_error is not None
        status = self.describe_failure(last_error, config, triedHosts=candidates)
        if is_access_denied(last_error):
            status.hint = [f"Tried host(s): {', '.join(candidates)}; all failed.", *(status.hint or [])]
        return status


__all__ = ["MysqlAdapter", "hosts_to_try", "is_access_denied"]
