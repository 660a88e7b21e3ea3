"""Shared models for connection records, statuses and discovery results."""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

PASSWORD_PLACEHOLDER = "***SAVED***"
NOT_TESTED_MESSAGE = "Not tested yet"

# Config fields that may embed the password, mapped to their wire aliases.
SECRET_STRING_FIELDS = {
    "odbc_connection_string": "odbcConnectionString",
    "connection_string": "connectionString",
}

_SECRET_PAIR = re.compile(r"(PWD|PASSWORD)=[^;]*", re.IGNORECASE)
_URI_SECRET = re.compile(r"(://[^:/@]*:)[^@/]*@")


def mask_connection_string(connection_string: str, placeholder: str = "***") -> str:
    """Hide ``PWD=``/``Password=`` values and the password part of ``scheme://user:pass@`` URIs."""

    masked = _SECRET_PAIR.sub(lambda match: f"{match.group(1)}={placeholder}", connection_string)
    return _URI_SECRET.sub(lambda match: f"{match.group(1)}{placeholder}@", masked)


class DatabaseType(str, Enum):
    """Database kinds a saved connection can point at."""

    MSSQL = "mssql"
    MYSQL = "mysql"
    POSTGRESQL = "postgresql"
    MONGODB = "mongodb"
    ORACLE = "oracle"
    SQLITE = "sqlite"


class InstanceSource(str, Enum):
    """Where a discovered instance was found."""

    REGISTRY = "registry"
    SERVICE = "service"
    NETWORK = "network"


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ConnectionConfig(_CamelModel):
    """Type-specific connection settings; unknown keys are kept verbatim."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    server: str | None = None
    host: str | None = None
    port: int | None = None
    database: str | None = None
    username: str | None = None
    password: str | None = None
    windows_auth: bool | None = None
    encrypt: bool | None = None
    trust_server_certificate: bool | None = None
    use_odbc: bool | None = None
    odbc_connection_string: str | None = None
    connection_string: str | None = None
    connection_timeout: int | None = None
    driver: str | None = None
    dsn: str | None = Field(default=None, alias="DSN")
    dbn: str | None = Field(default=None, alias="DBN")

    @property
    def login(self) -> str | None:
        """Username, accepting the legacy ``user`` key."""

        if self.username:
            return self.username
        extra = self.model_extra or {}
        user = extra.get("user")
        return str(user) if user else None

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")

    def masked(self) -> ConnectionConfig:
        """Copy with every secret replaced by the display placeholder."""

        update: dict[str, Any] = {"password": PASSWORD_PLACEHOLDER if self.password else None}
        for name in SECRET_STRING_FIELDS:
            value = getattr(self, name)
            if value:
                update[name] = mask_connection_string(value, PASSWORD_PLACEHOLDER)
        return self.model_copy(update=update)


class ConnectionRecord(_CamelModel):
    """A saved connection as persisted to disk."""

    id: str
    name: str
    type: DatabaseType
    config: ConnectionConfig = Field(default_factory=ConnectionConfig)
    created_at: str
    last_tested: str | None = None

    def to_dict(self, *, masked: bool = False) -> dict[str, Any]:
        data = self.model_dump(by_alias=True, mode="json", exclude={"config"})
        config = self.config.masked() if masked else self.config
        data["config"] = config.to_dict()
        return data


class ServerInfo(_CamelModel):
    """Identity details returned by a successful test query."""

    version: str = "Unknown"
    current_user: str = "Unknown"
    current_database: str = "Unknown"
    server_name: str | None = None


class ConnectionStatus(_CamelModel):
    """Outcome of a connection test.

    ``success`` is ``None`` only for the "not tested" sentinel. Adapters may
    attach extra diagnostic keys (``triedHosts``, ``rawOutput``...).
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    success: bool | None
    message: str | None = None
    server_info: ServerInfo | None = None
    error: str | None = None
    code: str | None = None
    hint: list[str] | None = None
    tested_at: str | None = None

    @classmethod
    def ok(cls, message: str, server_info: ServerInfo) -> ConnectionStatus:
        return cls(success=True, message=message, server_info=server_info)

    @classmethod
    def failure(
        cls,
        error: str,
        *,
        hint: list[str] | None = None,
        code: str | None = None,
        **extra: Any,
    ) -> ConnectionStatus:
        return cls(success=False, error=error, hint=hint or None, code=code, **extra)

    @classmethod
    def not_tested(cls) -> ConnectionStatus:
        return cls(success=None, message=NOT_TESTED_MESSAGE)

    def to_dict(self) -> dict[str, Any]:
        data = self.model_dump(by_alias=True, exclude_none=True, mode="json")
        data["success"] = self.success
        return data


@dataclass(frozen=True, slots=True)
class DiscoveredInstance:
    """A database server found on this machine or the local network."""

    name: str
    server_name: str
    display_name: str
    type: DatabaseType
    source: InstanceSource
    port: int | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "name": self.name,
            "serverName": self.server_name,
            "displayName": self.display_name,
            "type": self.type.value,
            "source": self.source.value,
        }
        if self.port is not None:
            data["port"] = self.port
        return data


__all__ = [
    "ConnectionConfig",
    "ConnectionRecord",
    "ConnectionStatus",
    "DatabaseType",
    "DiscoveredInstance",
    "InstanceSource",
    "NOT_TESTED_MESSAGE",
    "PASSWORD_PLACEHOLDER",
    "SECRET_STRING_FIELDS",
    "ServerInfo",
    "mask_connection_string",
]
