"""Status bar echoing the outcome of the latest IPC call."""

from __future__ import annotations

from typing import Any, Callable, Mapping

from textual.widgets import Static

from winpanel.ipc import IpcRouter

_QUIET_CHANNELS = {"db-connections:get-all", "db-connections:get-statuses"}


def describe_reply(channel: str, reply: Mapping[str, Any]) -> str:
    action = channel.split(":", 1)[-1]
    if reply.get("success"):
        message = reply.get("message")
        return f"{action}: {message}" if message else f"{action}: ok"
    error = str(reply.get("error") or "failed").splitlines()[0]
    return f"{action}: {error[:100]}"


class StatusBar(Static):
    """Compact status strip rendered above Textual's footer."""

    DEFAULT_CSS = """
    StatusBar {
        height: 1;
        padding: 0 1;
        background: $surface-darken-3;
        color: $text;
    }
    """

    def __init__(self, router: IpcRouter) -> None:
        super().__init__("Ready", id="status-bar")
        self._router = router
        self._unsubscribe: Callable[[], None] | None = None

    async def on_mount(self) -> None:
        self._unsubscribe = self._router.subscribe(self._handle_reply)

    def on_unmount(self) -> None:
        if self._unsubscribe:
            self._unsubscribe()
            self._unsubscribe = None

    def _handle_reply(self, channel: str, reply: Mapping[str, Any]) -> None:
        if channel in _QUIET_CHANNELS and reply.get("success"):
            return
        self.update(describe_reply(channel, reply))


__all__ = ["StatusBar", "describe_reply"]
