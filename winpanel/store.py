"""Saved database connections: in-memory records written through to a JSON file."""

from __future__ import annotations

import asyncio
import json
import logging
import secrets
import string
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping

from pydantic import ValidationError

from .drivers import AdapterSet
from .eaglesoft import EaglesoftClient
from .errors import ConnectionNotFoundError, InvalidConnectionError
from .models import (
    PASSWORD_PLACEHOLDER,
    SECRET_STRING_FIELDS,
    ConnectionConfig,
    ConnectionRecord,
    ConnectionStatus,
    DatabaseType,
    mask_connection_string,
)

LOG = logging.getLogger(__name__)

_ID_ALPHABET = string.digits + string.ascii_lowercase
_IMMUTABLE_FIELDS = {"id", "createdAt", "created_at"}


def generate_connection_id() -> str:
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(9))
    return f"conn_{int(time.time() * 1000)}_{suffix}"


def _now() -> str:
    return datetime.now(tz=timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class ConnectionStore:
    """Owns connection records; every mutation is persisted before returning.

    Passwords are stored in plaintext so background tests can run. Anything
    handed to the presentation layer goes through ``ConnectionRecord.to_dict(masked=True)``.
    Test statuses live only in memory.
    """

    def __init__(
        self,
        path: Path,
        adapters: AdapterSet,
        *,
        eaglesoft: EaglesoftClient | None = None,
    ) -> None:
        self._path = path
        self._adapters = adapters
        self._eaglesoft = eaglesoft
        self._records: list[ConnectionRecord] | None = None
        self._statuses: dict[str, ConnectionStatus] = {}

    @property
    def path(self) -> Path:
        return self._path

    @property
    def records(self) -> tuple[ConnectionRecord, ...]:
        return tuple(self._loaded())

    def load(self) -> list[ConnectionRecord]:
        """(Re)read records from disk; a missing or unreadable file yields an empty store."""

        self._records = self._read_file()
        return list(self._records)

    def list_connections(self) -> list[dict[str, Any]]:
        return [record.to_dict(masked=True) for record in self._loaded()]

    def get(self, connection_id: str) -> ConnectionRecord:
        for record in self._loaded():
            if record.id == connection_id:
                return record
        raise ConnectionNotFoundError(connection_id)

    def add(self, data: Mapping[str, Any]) -> ConnectionRecord:
        name = str(data.get("name") or "").strip()
        if not name:
            raise InvalidConnectionError("Connection name is required")
        try:
            record = ConnectionRecord(
                id=generate_connection_id(),
                name=name,
                type=DatabaseType(data.get("type")),
                config=data.get("config") or {},
                created_at=_now(),
                last_tested=None,
            )
        except ValueError as exc:
            raise InvalidConnectionError(_describe_invalid(exc, data)) from exc
        self._loaded().append(record)
        self._persist()
        LOG.info("Added connection", extra={"connection_id": record.id, "db_type": record.type.value})
        return record

    def remove(self, connection_id: str) -> None:
        records = self._loaded()
        record = self.get(connection_id)
        records.remove(record)
        self._statuses.pop(connection_id, None)
        self._persist()
        LOG.info("Removed connection", extra={"connection_id": connection_id})

    def update(self, connection_id: str, patch: Mapping[str, Any]) -> ConnectionRecord:
        records = self._loaded()
        current = self.get(connection_id)
        merged = current.model_dump(by_alias=True)
        for key, value in patch.items():
            if key in _IMMUTABLE_FIELDS:
                continue
            merged[key] = value
        config = merged.get("config")
        if isinstance(config, Mapping):
            merged["config"] = _restore_secrets(config, current.config)
        try:
            updated = ConnectionRecord.model_validate(merged)
        except ValidationError as exc:
            raise InvalidConnectionError(_describe_invalid(exc, merged)) from exc
        records[records.index(current)] = updated
        self._persist()
        return updated

    async def test(self, connection_id: str) -> ConnectionStatus:
        """Test one connection; unknown ids yield a failure status, never an exception."""

        try:
            record = self.get(connection_id)
        except ConnectionNotFoundError as exc:
            return ConnectionStatus.failure(str(exc))
        status = await self._test_record(record)
        self._persist()
        return status

    async def test_all(self) -> list[dict[str, Any]]:
        """Test every connection concurrently; results follow the stored order."""

        records = list(self._loaded())
        if not records:
            return []
        statuses = await asyncio.gather(*(self._test_record(record) for record in records))
        self._persist()
        return [
            {
                "connectionId": record.id,
                "name": record.name,
                "type": record.type.value,
                **status.to_dict(),
            }
            for record, status in zip(records, statuses)
        ]

    def get_status(self, connection_id: str) -> ConnectionStatus:
        return self._statuses.get(connection_id) or ConnectionStatus.not_tested()

    def get_all_statuses(self) -> list[dict[str, Any]]:
        return [
            {
                "id": record.id,
                "name": record.name,
                "type": record.type.value,
                "createdAt": record.created_at,
                "lastTested": record.last_tested,
                "status": self.get_status(record.id).to_dict(),
            }
            for record in self._loaded()
        ]

    def supported_types(self) -> dict[str, Any]:
        return self._adapters.supported_types()

    async def add_eaglesoft_connection(
        self,
        name: str = "Eaglesoft Database",
        primary: bool = True,
    ) -> dict[str, Any]:
        """Create a connection from the local Eaglesoft install."""

        if self._eaglesoft is None:
            return {"success": False, "error": "Eaglesoft integration is not configured"}
        installed = await self._eaglesoft.is_installed()
        if not installed.get("installed"):
            return {
                "success": False,
                "error": "Eaglesoft is not installed on this system",
                "hint": [
                    "Install Eaglesoft software on this machine.",
                    "Ensure the Eaglesoft COM object (EaglesoftSettings.EaglesoftSettings) is registered.",
                ],
            }
        result = await self._eaglesoft.create_connection_data(name, primary)
        if not result.get("success"):
            return result
        record = self.add(result["connectionData"])
        return {
            "success": True,
            "connection": record.to_dict(masked=True),
            "source": result.get("source"),
            "databaseType": result.get("databaseType"),
            "message": "Eaglesoft connection added successfully",
        }

    async def _test_record(self, record: ConnectionRecord) -> ConnectionStatus:
        config = record.config
        if uses_odbc(config):
            adapter = self._adapters.odbc
        else:
            adapter = self._adapters.for_type(record.type)
        if adapter is None:
            status = ConnectionStatus.failure(f"Database type '{record.type.value}' is not supported yet")
        else:
            try:
                status = await adapter.test_connection(config)
            except Exception as exc:
                LOG.exception("Connection test crashed", extra={"connection_id": record.id})
                status = ConnectionStatus.failure(str(exc) or "Failed to test connection")
        tested_at = _now()
        status = status.model_copy(update={"tested_at": tested_at})
        current = self._find(record.id)
        if current is None:
            # Removed while the test was running.
            return status
        records = self._loaded()
        records[records.index(current)] = current.model_copy(update={"last_tested": tested_at})
        self._statuses[record.id] = status
        return status

    def _find(self, connection_id: str) -> ConnectionRecord | None:
        for record in self._loaded():
            if record.id == connection_id:
                return record
        return None

    def _loaded(self) -> list[ConnectionRecord]:
        if self._records is None:
            self._records = self._read_file()
        return self._records

    def _read_file(self) -> list[ConnectionRecord]:
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return []
        except (OSError, ValueError):
            LOG.exception("Error loading saved connections", extra={"path": str(self._path)})
            return []
        if not isinstance(raw, list):
            LOG.warning("Ignoring malformed connections file %s", self._path)
            return []
        records: list[ConnectionRecord] = []
        for entry in raw:
            try:
                records.append(ConnectionRecord.model_validate(entry))
            except ValidationError:
                LOG.warning("Skipping invalid saved connection: %r", entry.get("id") if isinstance(entry, dict) else entry)
        return records

    def _persist(self) -> None:
        # Plaintext on disk; an OS credential store would be the upgrade path.
        payload = [record.to_dict() for record in self._loaded()]
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(json.dumps(payload, indent=2), encoding="utf-8")


def uses_odbc(config: ConnectionConfig) -> bool:
    """DSN-style configs name a data source, not a TCP host; they are tested through ODBC."""

    if config.use_odbc and config.odbc_connection_string:
        return True
    return bool(config.dsn or config.dbn) and not (config.host or config.server)


def _restore_secrets(config: Mapping[str, Any], stored: ConnectionConfig) -> dict[str, Any]:
    """Swap masked values echoed back by the UI for the stored secrets."""

    restored = dict(config)
    if restored.get("password") == PASSWORD_PLACEHOLDER:
        restored["password"] = stored.password
    for name, alias in SECRET_STRING_FIELDS.items():
        secret = getattr(stored, name)
        if secret and restored.get(alias) == mask_connection_string(secret, PASSWORD_PLACEHOLDER):
            restored[alias] = secret
    return restored


def _describe_invalid(exc: Exception, data: Mapping[str, Any]) -> str:
    db_type = data.get("type")
    if db_type not in {member.value for member in DatabaseType}:
        return f"Unsupported database type: {db_type!r}"
    return f"Invalid connection data: {exc}"


__all__ = ["ConnectionStore", "generate_connection_id", "uses_odbc"]
