"""Table of saved connections with their last test outcome."""

from __future__ import annotations

from typing import Any, Mapping, Sequence

from textual.widgets import DataTable

COLUMNS = ("Name", "Type", "Server", "Status", "Last tested")


def status_label(status: Mapping[str, Any] | None) -> str:
    if not status or status.get("success") is None:
        return "Not tested"
    if status.get("success"):
        return "Connected"
    error = str(status.get("error") or "Failed").splitlines()[0]
    return f"Failed: {error[:60]}"


def server_label(config: Mapping[str, Any]) -> str:
    if config.get("useOdbc") and config.get("DSN"):
        return f"DSN {config['DSN']}"
    server = config.get("server") or config.get("host") or ""
    port = config.get("port")
    return f"{server}:{port}" if server and port else str(server)


class ConnectionsTable(DataTable):
    """One row per connection; row keys are connection ids."""

    DEFAULT_CSS = """
    ConnectionsTable {
        height: 1fr;
        border: round $primary 30%;
    }
    """

    def __init__(self) -> None:
        super().__init__(id="connections-table", cursor_type="row", zebra_stripes=True)
        self._row_ids: list[str] = []

    def on_mount(self) -> None:
        self._ensure_columns()

    def _ensure_columns(self) -> None:
        if not self.columns:
            self.add_columns(*COLUMNS)

    @property
    def selected_id(self) -> str | None:
        if not self._row_ids:
            return None
        index = min(max(self.cursor_row, 0), len(self._row_ids) - 1)
        return self._row_ids[index]

    def show(
        self,
        connections: Sequence[Mapping[str, Any]],
        statuses: Mapping[str, Mapping[str, Any]],
    ) -> None:
        """Replace every row, keeping the cursor where it was."""

        self._ensure_columns()
        cursor = self.cursor_row
        self.clear()
        self._row_ids = []
        for connection in connections:
            connection_id = connection["id"]
            self._row_ids.append(connection_id)
            self.add_row(
                connection.get("name", ""),
                connection.get("type", ""),
                server_label(connection.get("config") or {}),
                status_label(statuses.get(connection_id)),
                connection.get("lastTested") or "never",
                key=connection_id,
            )
        if self._row_ids:
            self.move_cursor(row=min(cursor, len(self._row_ids) - 1))


__all__ = ["ConnectionsTable", "server_label", "status_label"]
