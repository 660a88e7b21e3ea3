"""Wiring of the control panel's backend components."""

from __future__ import annotations

import sys
from dataclasses import dataclass

from .config import AppConfig
from .discovery import Discovery
from .drivers import AdapterSet, build_adapters
from .eaglesoft import EaglesoftClient
from .registry import RegistryReader, RegistryScanner
from .services import ServiceManager
from .shell import CommandRunner, SubprocessRunner
from .store import ConnectionStore


@dataclass(frozen=True, slots=True)
class ControlPanel:
    """Everything the IPC router dispatches to."""

    config: AppConfig
    store: ConnectionStore
    registry: RegistryScanner
    discovery: Discovery
    eaglesoft: EaglesoftClient
    services: ServiceManager
    adapters: AdapterSet


def create_panel(
    config: AppConfig,
    *,
    runner: CommandRunner | None = None,
    registry_reader: RegistryReader | None = None,
    adapters: AdapterSet | None = None,
    is_windows: bool | None = None,
) -> ControlPanel:
    """Build the components from config; the keyword seams exist for tests."""

    windows = sys.platform == "win32" if is_windows is None else is_windows
    runner = runner or SubprocessRunner()
    timeouts = config.timeouts
    registry = RegistryScanner(registry_reader, timeout=timeouts.registry, is_windows=windows)
    adapters = adapters or build_adapters(config, registry=registry, runner=runner)
    eaglesoft = EaglesoftClient(config, runner, is_windows=windows)
    store = ConnectionStore(config.connections_file, adapters, eaglesoft=eaglesoft)
    store.load()
    return ControlPanel(
        config=config,
        store=store,
        registry=registry,
        discovery=Discovery(registry, runner, timeout=timeouts.shell, is_windows=windows),
        eaglesoft=eaglesoft,
        services=ServiceManager(
            runner,
            powershell=config.powershell_64bit,
            timeout=timeouts.services,
            is_windows=windows,
        ),
        adapters=adapters,
    )


__all__ = ["ControlPanel", "create_panel"]
