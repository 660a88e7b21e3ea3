"""Panel listing database servers found on this machine."""

from __future__ import annotations

from typing import Any, Mapping

from textual.widgets import Static


class DiscoveryPanel(Static):
    DEFAULT_CSS = """
    DiscoveryPanel {
        width: 40;
        min-width: 28;
        height: 1fr;
        padding: 1;
        border-left: solid $surface-darken-1;
        background: $surface-darken-2;
    }
    """

    def __init__(self) -> None:
        super().__init__("Press ctrl+d to discover local databases.", id="discovery-panel")

    def show(self, result: Mapping[str, Any]) -> None:
        if not result.get("success"):
            self.update(f"Discovery failed: {result.get('error', 'unknown error')}")
            return
        lines = [f"Found {result.get('count', 0)} instance(s)", ""]
        for db_type, instances in (result.get("byType") or {}).items():
            if not instances:
                continue
            lines.append(f"[b]{db_type}[/b]")
            for instance in instances:
                port = f":{instance['port']}" if instance.get("port") else ""
                lines.append(f"  {instance['displayName']}  {instance['serverName']}{port} ({instance['source']})")
        for db_type, error in (result.get("errors") or {}).items():
            lines.append(f"[dim]{db_type}: {error}[/dim]")
        self.update("\n".join(lines))


__all__ = ["DiscoveryPanel"]
