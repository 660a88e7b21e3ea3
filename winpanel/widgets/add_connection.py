"""Modal form for entering a new connection."""

from __future__ import annotations

from typing import Any, Sequence

from textual import on
from textual.app import ComposeResult
from textual.containers import Horizontal, Vertical
from textual.screen import ModalScreen
from textual.widgets import Button, Checkbox, Input, Label, Select

from winpanel.models import DatabaseType

_TEXT_FIELDS = (
    ("name", "Name", False),
    ("server", "Server / host", False),
    ("port", "Port", False),
    ("database", "Database", False),
    ("username", "Username", False),
    ("password", "Password", True),
)


def form_to_connection(values: dict[str, str], db_type: str, windows_auth: bool) -> dict[str, Any]:
    """Shape raw form values into ``db-connections:add`` data."""

    config: dict[str, Any] = {}
    for key in ("server", "database", "username", "password"):
        value = values.get(key, "").strip()
        if value:
            config[key] = value
    port = values.get("port", "").strip()
    if port.isdigit():
        config["port"] = int(port)
    if windows_auth:
        config["windowsAuth"] = True
        config.pop("username", None)
        config.pop("password", None)
    return {"name": values.get("name", "").strip(), "type": db_type, "config": config}


class AddConnectionScreen(ModalScreen[dict[str, Any] | None]):
    """Dismisses with connection data, or ``None`` when cancelled."""

    DEFAULT_CSS = """
    AddConnectionScreen {
        align: center middle;
    }
    #add-form {
        width: 60;
        height: auto;
        padding: 1 2;
        border: thick $primary;
        background: $surface;
    }
    #add-form Input, #add-form Select {
        margin-bottom: 1;
    }
    #add-error {
        color: $error;
    }
    #add-buttons {
        height: auto;
        align-horizontal: right;
    }
    """

    BINDINGS = [("escape", "cancel", "Cancel")]

    def __init__(self, types: Sequence[str] | None = None) -> None:
        super().__init__()
        self._types = list(types or [db_type.value for db_type in DatabaseType])

    def compose(self) -> ComposeResult:
        with Vertical(id="add-form"):
            yield Label("Add database connection")
            yield Select(
                [(db_type, db_type) for db_type in self._types],
                value=self._types[0],
                allow_blank=False,
                id="field-type",
            )
            for key, label, secret in _TEXT_FIELDS:
                yield Input(placeholder=label, password=secret, id=f"field-{key}")
            yield Checkbox("Windows authentication", id="field-windows-auth")
            yield Label("", id="add-error")
            with Horizontal(id="add-buttons"):
                yield Button("Cancel", id="cancel")
                yield Button("Save", variant="primary", id="save")

    def collect(self) -> dict[str, Any]:
        values = {key: self.query_one(f"#field-{key}", Input).value for key, _, _ in _TEXT_FIELDS}
        db_type = str(self.query_one("#field-type", Select).value)
        windows_auth = self.query_one("#field-windows-auth", Checkbox).value
        return form_to_connection(values, db_type, windows_auth)

    @on(Button.Pressed, "#save")
    def _save(self) -> None:
        data = self.collect()
        if not data["name"]:
            self.query_one("#add-error", Label).update("A name is required.")
            return
        self.dismiss(data)

    @on(Button.Pressed, "#cancel")
    def _cancel(self) -> None:
        self.action_cancel()

    def action_cancel(self) -> None:
        self.dismiss(None)


__all__ = ["AddConnectionScreen", "form_to_connection"]
