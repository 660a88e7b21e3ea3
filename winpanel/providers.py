"""Command palette providers for core app features."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Awaitable, Callable

from textual.command import DiscoveryHit, Hit, Hits, Provider
from textual.types import IgnoreReturnCallbackType

if TYPE_CHECKING:
    from .app import WinpanelApp


def _panel_app(provider: Provider) -> WinpanelApp | None:
    # Imported lazily: app.py imports this module.
    from .app import WinpanelApp

    app = provider.app
    if isinstance(app, WinpanelApp):
        return app
    return None


class ConnectionTestProvider(Provider):
    """Expose a "test" command per saved connection."""

    async def search(self, query: str) -> Hits:
        app = _panel_app(self)
        if app is None:
            return
        matcher = self.matcher(query)
        for connection in app.connections:
            label = f"Test connection: {connection['name']}"
            match = matcher.match(label)
            if match > 0:
                yield Hit(
                    score=match,
                    match_display=matcher.highlight(label),
                    command=self._build_callback(connection["id"]),
                    help=f"Run a {connection['type']} connection test.",
                )

    async def discover(self) -> Hits:
        app = _panel_app(self)
        if app is None:
            return
        for connection in app.connections:
            yield DiscoveryHit(
                display=f"Test connection: {connection['name']}",
                command=self._build_callback(connection["id"]),
                help=f"Run a {connection['type']} connection test.",
            )

    def _build_callback(self, connection_id: str) -> IgnoreReturnCallbackType:
        async def _run() -> None:
            app = _panel_app(self)
            if app is None:
                return
            await app.test_connection(connection_id)

        return _run


class PanelActionsProvider(Provider):
    """Panel-wide actions: test all, discovery, Eaglesoft import, theme."""

    def _actions(self, app: WinpanelApp) -> list[tuple[str, str, Callable[[], Awaitable[Any] | None]]]:
        return [
            ("Test all connections", "Test every saved connection concurrently.", app.test_all_connections),
            ("Discover local databases", "Scan the registry and services for database servers.", app.discover),
            ("Add Eaglesoft connection", "Import the connection configured in Eaglesoft.", app.add_eaglesoft),
            ("Toggle light/dark theme", "Switch theme and remember it.", app.toggle_theme),
        ]

    async def search(self, query: str) -> Hits:
        app = _panel_app(self)
        if app is None:
            return
        matcher = self.matcher(query)
        for label, help_text, action in self._actions(app):
            score = matcher.match(label)
            if score > 0:
                yield Hit(
                    score=score,
                    match_display=matcher.highlight(label),
                    command=self._build_callback(action),
                    help=help_text,
                )

    async def discover(self) -> Hits:
        app = _panel_app(self)
        if app is None:
            return
        for label, help_text, action in self._actions(app):
            yield DiscoveryHit(display=label, command=self._build_callback(action), help=help_text)

    @staticmethod
    def _build_callback(action: Callable[[], Awaitable[Any] | None]) -> IgnoreReturnCallbackType:
        async def _run() -> None:
            result = action()
            if result is not None:
                await result

        return _run


__all__ = ["ConnectionTestProvider", "PanelActionsProvider"]
