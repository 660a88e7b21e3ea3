"""Named IPC channels and the JSON-lines stdio server that exposes them."""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
import sys
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Mapping, TextIO

from .errors import WinpanelError
from .models import DatabaseType
from .panel import ControlPanel

LOG = logging.getLogger(__name__)

Handler = Callable[..., Any]
ResultListener = Callable[[str, Mapping[str, Any]], None]


@dataclass(frozen=True, slots=True)
class Channel:
    name: str
    handler: Handler
    description: str = ""


class IpcRouter:
    """Dispatches channel calls; every reply is a dict carrying ``success``."""

    def __init__(self) -> None:
        self._channels: dict[str, Channel] = {}
        self._listeners: set[ResultListener] = set()

    def register(self, name: str, handler: Handler, description: str = "") -> None:
        if name in self._channels:
            raise ValueError(f"Channel '{name}' is already registered")
        self._channels[name] = Channel(name, handler, description)

    def register_many(self, channels: Iterable[Channel]) -> None:
        for channel in channels:
            self.register(channel.name, channel.handler, channel.description)

    def channels(self) -> list[Channel]:
        return list(self._channels.values())

    def subscribe(self, listener: ResultListener) -> Callable[[], None]:
        """Observe every reply; returns an unsubscribe handle."""

        self._listeners.add(listener)

        def _unsubscribe() -> None:
            self._listeners.discard(listener)

        return _unsubscribe

    async def invoke(self, name: str, *args: Any) -> dict[str, Any]:
        channel = self._channels.get(name)
        if channel is None:
            return {"success": False, "error": f"Unknown channel: {name}"}
        try:
            result = channel.handler(*args)
            if inspect.isawaitable(result):
                result = await result
        except (WinpanelError, ValueError, LookupError) as exc:
            LOG.warning("Channel %s failed: %s", name, exc)
            reply: dict[str, Any] = {"success": False, "error": str(exc)}
        except Exception as exc:
            LOG.exception("Channel handler crashed", extra={"channel": name})
            reply = {"success": False, "error": str(exc) or type(exc).__name__}
        else:
            reply = _as_reply(result)
        self._notify(name, reply)
        return reply

    def _notify(self, name: str, reply: Mapping[str, Any]) -> None:
        for listener in tuple(self._listeners):
            try:
                listener(name, reply)
            except Exception:
                LOG.exception("IPC listener failed", extra={"channel": name})


def _as_reply(result: Any) -> dict[str, Any]:
    if isinstance(result, dict) and "success" in result:
        return result
    if result is None:
        return {"success": True}
    return {"success": True, "result": result}


def build_router(panel: ControlPanel) -> IpcRouter:
    """Router with the ``db-connections:*`` and ``services:*`` channels."""

    store = panel.store
    services = panel.services

    async def test(connection_id: str) -> dict[str, Any]:
        status = await store.test(connection_id)
        return status.to_dict()

    async def test_all() -> dict[str, Any]:
        return {"success": True, "results": await store.test_all()}

    def add(data: Mapping[str, Any]) -> dict[str, Any]:
        record = store.add(data)
        return {"success": True, "connection": record.to_dict(masked=True)}

    def update(connection_id: str, patch: Mapping[str, Any]) -> dict[str, Any]:
        record = store.update(connection_id, patch)
        return {"success": True, "connection": record.to_dict(masked=True)}

    def remove(connection_id: str) -> dict[str, Any]:
        store.remove(connection_id)
        return {"success": True, "message": "Connection removed"}

    async def registry_paths(db_type: str, instance_name: str | None = None) -> dict[str, Any]:
        paths = await panel.registry.discover_registry_paths(DatabaseType(db_type), instance_name)
        return {
            "success": True,
            "paths": [
                {"hive": path.hive.value, "path": path.path, "fullPath": path.full_path}
                for path in paths
            ],
        }

    async def fetch_credentials(db_type: str, instance_name: str | None = None) -> dict[str, Any]:
        return await panel.registry.fetch_credentials_from_registry(DatabaseType(db_type), instance_name)

    async def eaglesoft_installed() -> dict[str, Any]:
        return {"success": True, **await panel.eaglesoft.is_installed()}

    async def fetch_eaglesoft(primary: bool = True) -> dict[str, Any]:
        return await panel.eaglesoft.get_connection_config(primary)

    async def add_eaglesoft(name: str = "Eaglesoft Database", primary: bool = True) -> dict[str, Any]:
        return await store.add_eaglesoft_connection(name, primary)

    async def list_services() -> dict[str, Any]:
        try:
            found = await services.list_services()
        except WinpanelError as exc:
            return {"success": False, "error": str(exc), "services": []}
        return {"success": True, "services": [service.to_dict() for service in found]}

    async def service_status(name: str) -> dict[str, Any]:
        service = await services.get_service_status(name)
        return {"success": True, "service": service.to_dict()}

    router = IpcRouter()
    router.register_many(
        [
            Channel("db-connections:get-all", lambda: {"success": True, "connections": store.list_connections()}),
            Channel("db-connections:add", add, "Save a new connection"),
            Channel("db-connections:remove", remove),
            Channel("db-connections:update", update),
            Channel("db-connections:test", test, "Test one saved connection"),
            Channel("db-connections:test-all", test_all, "Test every saved connection"),
            Channel(
                "db-connections:get-status",
                lambda connection_id: {"success": True, "status": store.get_status(connection_id).to_dict()},
            ),
            Channel(
                "db-connections:get-statuses",
                lambda: {"success": True, "statuses": store.get_all_statuses()},
            ),
            Channel(
                "db-connections:get-supported-types",
                lambda: {"success": True, **store.supported_types()},
            ),
            Channel("db-connections:discover-all", panel.discovery.discover_all, "Find local database servers"),
            Channel("db-connections:discover-registry-paths", registry_paths),
            Channel("db-connections:fetch-credentials", fetch_credentials),
            Channel("db-connections:eaglesoft-installed", eaglesoft_installed),
            Channel("db-connections:fetch-eaglesoft", fetch_eaglesoft),
            Channel("db-connections:add-eaglesoft", add_eaglesoft),
            Channel("services:get-all", list_services),
            Channel("services:get-status", service_status),
            Channel("services:start", services.start_service),
            Channel("services:stop", services.stop_service),
            Channel("services:restart", services.restart_service),
        ]
    )
    return router


async def serve(
    router: IpcRouter,
    reader: TextIO | None = None,
    writer: TextIO | None = None,
) -> None:
    """Answer one JSON request per input line until EOF.

    Requests run concurrently, so replies may come back out of order; the
    ``id`` field pairs them up.
    """

    reader = reader or sys.stdin
    writer = writer or sys.stdout
    write_lock = asyncio.Lock()
    pending: set[asyncio.Task[None]] = set()

    async def _reply(payload: Mapping[str, Any]) -> None:
        async with write_lock:
            writer.write(json.dumps(payload, default=str) + "\n")
            writer.flush()

    async def _handle(request_id: Any, channel: str, args: list[Any]) -> None:
        result = await router.invoke(channel, *args)
        await _reply({"id": request_id, **result})

    while True:
        line = await asyncio.to_thread(reader.readline)
        if not line:
            break
        if not line.strip():
            continue
        request: Any = None
        try:
            request = json.loads(line)
            channel = request["channel"]
            args = request.get("args") or []
            if not isinstance(args, list):
                args = [args]
        except (ValueError, KeyError, TypeError, AttributeError) as exc:
            LOG.warning("Ignoring malformed request: %s", exc)
            request_id = request.get("id") if isinstance(request, dict) else None
            await _reply({"id": request_id, "success": False, "error": f"Invalid request: {exc}"})
            continue
        task = asyncio.create_task(_handle(request.get("id"), channel, args))
        pending.add(task)
        task.add_done_callback(pending.discard)
    if pending:
        await asyncio.gather(*pending)


__all__ = ["Channel", "IpcRouter", "build_router", "serve"]
