"""Textual application entry point for winpanel."""

from __future__ import annotations

import logging
from typing import Any

from textual.app import App, ComposeResult
from textual.containers import Horizontal
from textual.widgets import Footer, Header

from .config import AppConfig, load_config, save_config
from .ipc import IpcRouter, build_router
from .panel import create_panel
from .providers import ConnectionTestProvider, PanelActionsProvider
from .widgets import AddConnectionScreen, ConnectionsTable, DiscoveryPanel, StatusBar

LOG = logging.getLogger(__name__)


def _load_app_config() -> AppConfig:
    """Load configuration with a small wrapper for future overrides."""

    return load_config()


def _create_router(config: AppConfig) -> IpcRouter:
    return build_router(create_panel(config))


class WinpanelApp(App[None]):
    """Connections dashboard; every action goes through the IPC router."""

    TITLE = "winpanel"
    COMMANDS = App.COMMANDS | {ConnectionTestProvider, PanelActionsProvider}
    CSS = """
    Screen {
        layout: vertical;
    }
    #content {
        layout: horizontal;
        height: 1fr;
    }
    """

    BINDINGS = [
        ("ctrl+c", "quit", "Quit"),
        ("a", "add_connection", "Add"),
        ("t", "test_selected", "Test"),
        ("ctrl+t", "test_all", "Test all"),
        ("delete", "remove_selected", "Remove"),
        ("ctrl+d", "discover", "Discover"),
        ("ctrl+p", "command_palette", "Command Palette"),
    ]

    def __init__(self, router: IpcRouter | None = None) -> None:
        super().__init__()
        self._config = _load_app_config()
        self._router = router or _create_router(self._config)
        self._connections: list[dict[str, Any]] = []
        self._statuses: dict[str, dict[str, Any]] = {}
        self._types: list[str] = []
        self._table: ConnectionsTable | None = None
        self._discovery: DiscoveryPanel | None = None
        self._pending_notifications: list[tuple[str, str]] = []

    @property
    def router(self) -> IpcRouter:
        return self._router

    @property
    def connections(self) -> tuple[dict[str, Any], ...]:
        """Connections as last fetched (passwords masked)."""

        return tuple(self._connections)

    def compose(self) -> ComposeResult:
        yield Header(show_clock=True)
        self._table = ConnectionsTable()
        self._discovery = DiscoveryPanel()
        yield Horizontal(self._table, self._discovery, id="content")
        yield StatusBar(self._router)
        yield Footer()

    async def on_mount(self) -> None:
        if self._config.theme in self.available_themes:
            self.theme = self._config.theme
        types = await self._router.invoke("db-connections:get-supported-types")
        self._types = list(types.get("types") or [])
        await self.refresh_connections()
        self._flush_pending_notifications()

    async def refresh_connections(self) -> None:
        listing = await self._router.invoke("db-connections:get-all")
        self._connections = list(listing.get("connections") or [])
        LOG.debug("Loaded %d connections", len(self._connections))
        statuses = await self._router.invoke("db-connections:get-statuses")
        self._statuses = {
            entry["id"]: entry.get("status") or {}
            for entry in statuses.get("statuses") or []
        }
        self._render_table()

    async def test_connection(self, connection_id: str) -> dict[str, Any]:
        result = await self._router.invoke("db-connections:test", connection_id)
        name = self._name_for(connection_id)
        if result.get("success"):
            self._safe_notify(f"{name}: {result.get('message', 'connected')}", severity="information")
        else:
            hints = result.get("hint") or []
            detail = "\n".join(hints[:3])
            self._safe_notify(f"{name}: {result.get('error')}\n{detail}".strip(), severity="error", timeout=10)
        await self.refresh_connections()
        return result

    async def test_all_connections(self) -> dict[str, Any]:
        result = await self._router.invoke("db-connections:test-all")
        results = result.get("results") or []
        passed = sum(1 for entry in results if entry.get("success"))
        self._safe_notify(f"{passed}/{len(results)} connections succeeded", severity="information")
        await self.refresh_connections()
        return result

    async def add_connection(self, data: dict[str, Any]) -> dict[str, Any]:
        result = await self._router.invoke("db-connections:add", data)
        if not result.get("success"):
            self._safe_notify(str(result.get("error")), severity="error")
        await self.refresh_connections()
        return result

    async def remove_connection(self, connection_id: str) -> dict[str, Any]:
        result = await self._router.invoke("db-connections:remove", connection_id)
        await self.refresh_connections()
        return result

    async def discover(self) -> dict[str, Any]:
        result = await self._router.invoke("db-connections:discover-all")
        if self._discovery is not None:
            self._discovery.show(result)
        return result

    async def add_eaglesoft(self) -> dict[str, Any]:
        result = await self._router.invoke("db-connections:add-eaglesoft")
        if result.get("success"):
            self._safe_notify(result.get("message", "Eaglesoft connection added"), severity="information")
        else:
            self._safe_notify(str(result.get("error")), severity="error")
        await self.refresh_connections()
        return result

    async def action_test_selected(self) -> None:
        connection_id = self._selected_id()
        if connection_id:
            await self.test_connection(connection_id)

    async def action_test_all(self) -> None:
        await self.test_all_connections()

    async def action_remove_selected(self) -> None:
        connection_id = self._selected_id()
        if connection_id:
            await self.remove_connection(connection_id)

    async def action_discover(self) -> None:
        await self.discover()

    def action_add_connection(self) -> None:
        async def _on_dismiss(data: dict[str, Any] | None) -> None:
            if data:
                await self.add_connection(data)

        self.push_screen(AddConnectionScreen(self._types), _on_dismiss)

    def toggle_theme(self) -> None:
        """Flip between the light and dark themes and persist the choice."""

        theme = "textual-light" if self.theme == "textual-dark" else "textual-dark"
        self.theme = theme
        self._config = self._config.with_theme(theme)
        save_config(self._config)

    def _selected_id(self) -> str | None:
        if self._table is None:
            return None
        return self._table.selected_id

    def _name_for(self, connection_id: str) -> str:
        for connection in self._connections:
            if connection["id"] == connection_id:
                return connection.get("name", connection_id)
        return connection_id

    def _render_table(self) -> None:
        if self._table is None or not self._table.is_mounted:
            return
        self._table.show(self._connections, self._statuses)

    def _safe_notify(self, message: str, *, severity: str = "information", timeout: float | None = None) -> None:
        if not self.is_running:
            self._pending_notifications.append((message, severity))
            return
        try:
            if timeout is None:
                self.notify(message, severity=severity)
            else:
                self.notify(message, severity=severity, timeout=timeout)
        except Exception:
            LOG.exception("Failed to display notification", extra={"notice": message})

    def _flush_pending_notifications(self) -> None:
        pending = list(self._pending_notifications)
        self._pending_notifications.clear()
        for message, severity in pending:
            self._safe_notify(message, severity=severity)


def main() -> None:
    """Invoke the Textual application."""

    WinpanelApp().run()


__all__ = ["WinpanelApp", "main"]
