"""MongoDB adapter using pymongo's asyncio client."""

from __future__ import annotations

from typing import Any
from urllib.parse import quote_plus

from ..models import ConnectionConfig, ConnectionStatus, DatabaseType, ServerInfo
from .base import BaseAdapter, DriverNotInstalledError
from .hints import MONGODB_HINTS


def build_mongodb_uri(config: ConnectionConfig) -> str:
    if config.connection_string:
        return config.connection_string
    credentials = ""
    if config.login:
        credentials = f"{quote_plus(config.login)}:{quote_plus(config.password or '')}@"
    host = config.host or config.server or "localhost"
    return f"mongodb://{credentials}{host}:{config.port or 27017}/{config.database or ''}"


class MongodbAdapter(BaseAdapter):
    """Runs ``buildInfo`` against the server selected by the client."""

    db_type = DatabaseType.MONGODB
    vendor = "MongoDB"
    driver_module = "pymongo"
    hint_policy = MONGODB_HINTS

    def hint_context(self, config: ConnectionConfig) -> dict[str, object]:
        context = super().hint_context(config)
        context["port"] = config.port or 27017
        return context

    async def _probe(self, driver: Any, config: ConnectionConfig, timeout: float) -> ConnectionStatus:
        client_class = getattr(driver, "AsyncMongoClient", None)
        if client_class is None:
            raise DriverNotInstalledError("MongoDB driver too old. Please install pymongo>=4.10.")
        client = client_class(build_mongodb_uri(config), serverSelectionTimeoutMS=int(timeout * 1000))
        try:
            info = await client.admin.command("buildInfo")
        finally:
            await client.close()
        return ConnectionStatus.ok(
            "Connection successful",
            ServerInfo(
                version=str(info.get("version") or "Unknown"),
                current_user=config.login or "Unknown",
                current_database=config.database or "Unknown",
                server_name=config.host or config.server or "localhost",
            ),
        )


__all__ = ["MongodbAdapter", "build_mongodb_uri"]
