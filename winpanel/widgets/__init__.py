"""Widget library for the Textual UI."""

from __future__ import annotations

from .add_connection import AddConnectionScreen
from .connections_table import ConnectionsTable
from .discovery_panel import DiscoveryPanel
from .status_bar import StatusBar

__all__ = ["AddConnectionScreen", "ConnectionsTable", "DiscoveryPanel", "StatusBar"]
