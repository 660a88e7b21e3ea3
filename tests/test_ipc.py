"""Tests for the IPC router, its channels and the stdio server."""

from __future__ import annotations

import io
import json
from pathlib import Path
from typing import Any, Mapping, Sequence

import pytest

from winpanel.config import AppConfig
from winpanel.drivers import AdapterSet
from winpanel.errors import InvalidConnectionError
from winpanel.ipc import IpcRouter, build_router, serve
from winpanel.models import PASSWORD_PLACEHOLDER, ConnectionConfig, ConnectionStatus, DatabaseType, ServerInfo
from winpanel.panel import create_panel
from winpanel.shell import CommandResult


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


class _OkAdapter:
    installed = True

    async def test_connection(self, config: ConnectionConfig) -> ConnectionStatus:
        return ConnectionStatus.ok("Connection successful", ServerInfo(server_name=config.host or "localhost"))


class _NoRunner:
    async def run(self, args: Sequence[str], *, timeout: float) -> CommandResult:
        raise AssertionError("no commands expected off Windows")


@pytest.fixture
def router(tmp_path: Path) -> IpcRouter:
    adapters = AdapterSet(
        by_type={DatabaseType.MYSQL: _OkAdapter(), DatabaseType.POSTGRESQL: _OkAdapter()},
        odbc=_OkAdapter(),
    )
    panel = create_panel(
        AppConfig(data_dir=tmp_path),
        runner=_NoRunner(),
        adapters=adapters,
        is_windows=False,
    )
    return build_router(panel)


MYSQL = {"name": "Local MySQL", "type": "mysql", "config": {"host": "localhost", "username": "root", "password": "pw"}}


@pytest.mark.anyio
async def test_unknown_channel() -> None:
    assert await IpcRouter().invoke("nope") == {"success": False, "error": "Unknown channel: nope"}


@pytest.mark.anyio
async def test_sync_and_async_handlers_are_wrapped() -> None:
    router = IpcRouter()

    async def _later(value: int) -> int:
        return value * 2

    router.register("double", _later)
    router.register("nothing", lambda: None)

    assert await router.invoke("double", 21) == {"success": True, "result": 42}
    assert await router.invoke("nothing") == {"success": True}


def test_duplicate_channels_are_rejected() -> None:
    router = IpcRouter()
    router.register("x", lambda: None)

    with pytest.raises(ValueError):
        router.register("x", lambda: None)


@pytest.mark.anyio
async def test_handler_errors_become_failure_replies() -> None:
    router = IpcRouter()

    def _invalid() -> None:
        raise InvalidConnectionError("Connection name is required")

    def _crash() -> None:
        raise RuntimeError()

    router.register("invalid", _invalid)
    router.register("crash", _crash)

    assert await router.invoke("invalid") == {"success": False, "error": "Connection name is required"}
    assert await router.invoke("crash") == {"success": False, "error": "RuntimeError"}


@pytest.mark.anyio
async def test_listeners_see_replies_until_unsubscribed() -> None:
    router = IpcRouter()
    router.register("ping", lambda: {"success": True, "message": "pong"})
    seen: list[tuple[str, Mapping[str, Any]]] = []

    unsubscribe = router.subscribe(lambda channel, reply: seen.append((channel, reply)))
    await router.invoke("ping")
    unsubscribe()
    await router.invoke("ping")

    assert seen == [("ping", {"success": True, "message": "pong"})]


@pytest.mark.anyio
async def test_connection_lifecycle_over_channels(router: IpcRouter) -> None:
    added = await router.invoke("db-connections:add", MYSQL)
    connection_id = added["connection"]["id"]

    assert added["connection"]["config"]["password"] == PASSWORD_PLACEHOLDER

    listed = await router.invoke("db-connections:get-all")
    assert [item["id"] for item in listed["connections"]] == [connection_id]

    status = await router.invoke("db-connections:get-status", connection_id)
    assert status["status"]["success"] is None

    tested = await router.invoke("db-connections:test", connection_id)
    assert tested["success"] is True
    assert tested["serverInfo"]["serverName"] == "localhost"

    updated = await router.invoke("db-connections:update", connection_id, {"name": "Renamed"})
    assert updated["connection"]["name"] == "Renamed"

    results = await router.invoke("db-connections:test-all")
    assert [item["name"] for item in results["results"]] == ["Renamed"]

    removed = await router.invoke("db-connections:remove", connection_id)
    assert removed == {"success": True, "message": "Connection removed"}
    assert (await router.invoke("db-connections:get-all"))["connections"] == []


@pytest.mark.anyio
async def test_statuses_are_replied_under_statuses(router: IpcRouter) -> None:
    added = await router.invoke("db-connections:add", MYSQL)
    connection_id = added["connection"]["id"]
    await router.invoke("db-connections:test", connection_id)

    reply = await router.invoke("db-connections:get-statuses")

    assert set(reply) == {"success", "statuses"}
    assert [entry["id"] for entry in reply["statuses"]] == [connection_id]
    assert reply["statuses"][0]["status"]["success"] is True
    assert reply["statuses"][0]["lastTested"] is not None


@pytest.mark.anyio
async def test_invalid_input_is_reported(router: IpcRouter) -> None:
    missing_name = await router.invoke("db-connections:add", {"type": "mysql", "config": {}})
    unknown = await router.invoke("db-connections:remove", "conn_missing")
    tested = await router.invoke("db-connections:test", "conn_missing")

    assert missing_name == {"success": False, "error": "Connection name is required"}
    assert unknown == {"success": False, "error": "Connection not found"}
    assert tested["success"] is False
    assert tested["error"] == "Connection not found"


@pytest.mark.anyio
async def test_supported_types_channel(router: IpcRouter) -> None:
    reply = await router.invoke("db-connections:get-supported-types")

    assert reply["success"] is True
    assert "mssql" in reply["types"]
    assert reply["typeInfo"]["mysql"]["installed"] is True
    assert reply["typeInfo"]["oracle"]["installed"] is False


@pytest.mark.anyio
async def test_windows_only_channels_fail_cleanly(router: IpcRouter) -> None:
    services = await router.invoke("services:get-all")
    start = await router.invoke("services:start", "Spooler")
    credentials = await router.invoke("db-connections:fetch-credentials", "mysql")
    eaglesoft = await router.invoke("db-connections:eaglesoft-installed")
    discovered = await router.invoke("db-connections:discover-all")

    assert services == {
        "success": False,
        "error": "Windows services are only available on Windows OS",
        "services": [],
    }
    assert start["success"] is False
    assert credentials["success"] is False
    assert eaglesoft == {"success": True, "installed": False, "error": "Not a Windows system"}
    assert discovered["count"] == 0


@pytest.mark.anyio
async def test_bad_type_argument_is_a_failure_reply(router: IpcRouter) -> None:
    reply = await router.invoke("db-connections:discover-registry-paths", "db2")

    assert reply["success"] is False


@pytest.mark.anyio
async def test_serve_answers_each_line(router: IpcRouter) -> None:
    requests = "\n".join(
        [
            json.dumps({"id": 1, "channel": "db-connections:add", "args": [MYSQL]}),
            "not json",
            "",
            json.dumps({"id": 3, "channel": "db-connections:nope"}),
        ]
    )
    output = io.StringIO()

    await serve(router, io.StringIO(requests + "\n"), output)

    replies = {reply["id"]: reply for reply in map(json.loads, output.getvalue().splitlines())}
    assert replies[1]["success"] is True
    assert replies[1]["connection"]["name"] == "Local MySQL"
    assert replies[None]["success"] is False
    assert replies[None]["error"].startswith("Invalid request")
    assert replies[3] == {"id": 3, "success": False, "error": "Unknown channel: db-connections:nope"}
