"""App configuration loading helpers."""

from __future__ import annotations

import os
import sys
from pathlib import Path

import tomllib

from pydantic import BaseModel, Field

CONFIG_FILE = Path.home() / ".config" / "winpanel" / "config.toml"
CONNECTIONS_FILENAME = "db-connections.json"

POWERSHELL_32BIT = r"%SystemRoot%\SysWOW64\WindowsPowerShell\v1.0\powershell.exe"
POWERSHELL_64BIT = "powershell.exe"


class TimeoutSettings(BaseModel):
    """Upper bounds (seconds) applied to every external call."""

    driver: float = 15.0
    registry: float = 5.0
    shell: float = 5.0
    odbc_bridge: float = 30.0
    com_fetch: float = 10.0
    services: float = 30.0


class EaglesoftSettings(BaseModel):
    """Values passed to the Eaglesoft settings COM object."""

    product_name: str | None = "DentalXChange"
    token: str | None = None


class AppConfig(BaseModel):
    """Shape of the application configuration file."""

    theme: str = "textual-dark"
    log_level: str = "INFO"
    data_dir: Path | None = None
    mssql_odbc_driver: str = "ODBC Driver 17 for SQL Server"
    powershell_32bit: str = POWERSHELL_32BIT
    powershell_64bit: str = POWERSHELL_64BIT
    timeouts: TimeoutSettings = Field(default_factory=TimeoutSettings)
    eaglesoft: EaglesoftSettings = Field(default_factory=EaglesoftSettings)

    @property
    def connections_file(self) -> Path:
        """JSON file holding the saved connection records."""

        return (self.data_dir or default_data_dir()) / CONNECTIONS_FILENAME

    def with_theme(self, theme: str) -> AppConfig:
        """Return a copy with the theme updated."""

        return self.model_copy(update={"theme": theme})

    def with_timeouts(self, **updates: float) -> AppConfig:
        """Return a copy with timeout changes applied."""

        timeouts = self.timeouts.model_copy(update=updates)
        return self.model_copy(update={"timeouts": timeouts})


def default_data_dir() -> Path:
    """Per-user application data directory."""

    override = os.environ.get("WINPANEL_DATA_DIR")
    if override:
        return Path(override)
    appdata = os.environ.get("APPDATA")
    if sys.platform == "win32" and appdata:
        return Path(appdata) / "winpanel"
    return Path.home() / ".config" / "winpanel"


def load_config() -> AppConfig:
    """Load configuration from disk; fall back to defaults if missing."""

    try:
        data = _read_config_file()
    except FileNotFoundError:
        return _apply_env(AppConfig())
    except (tomllib.TOMLDecodeError, OSError):
        return _apply_env(AppConfig())
    return _apply_env(AppConfig(**data))


def save_config(config: AppConfig) -> None:
    """Persist configuration to disk."""

    CONFIG_FILE.parent.mkdir(parents=True, exist_ok=True)
    lines: list[str] = [
        f'theme = "{config.theme}"',
        f'log_level = "{config.log_level}"',
        f'mssql_odbc_driver = "{config.mssql_odbc_driver}"',
    ]
    if config.data_dir is not None:
        lines.append(f"data_dir = '{config.data_dir}'")
    if config.powershell_32bit != POWERSHELL_32BIT:
        lines.append(f"powershell_32bit = '{config.powershell_32bit}'")
    if config.powershell_64bit != POWERSHELL_64BIT:
        lines.append(f"powershell_64bit = '{config.powershell_64bit}'")
    lines.append("")
    lines.append("[timeouts]")
    for name, value in config.timeouts.model_dump().items():
        lines.append(f"{name} = {float(value)}")
    if config.eaglesoft.product_name or config.eaglesoft.token:
        lines.append("")
        lines.append("[eaglesoft]")
        if config.eaglesoft.product_name:
            lines.append(f'product_name = "{config.eaglesoft.product_name}"')
        if config.eaglesoft.token:
            lines.append(f'token = "{config.eaglesoft.token}"')
    CONFIG_FILE.write_text("\n".join(lines) + "\n")


def _read_config_file() -> dict[str, object]:
    with CONFIG_FILE.open("rb") as handle:
        raw = tomllib.load(handle)
    data: dict[str, object] = {}
    if not isinstance(raw, dict):
        return data
    for key in ("theme", "log_level", "mssql_odbc_driver", "powershell_32bit", "powershell_64bit"):
        value = raw.get(key)
        if isinstance(value, str):
            data[key] = value
    data_dir = raw.get("data_dir")
    if isinstance(data_dir, str) and data_dir:
        data["data_dir"] = Path(data_dir)
    timeouts = raw.get("timeouts")
    if isinstance(timeouts, dict):
        parsed: dict[str, float] = {}
        for name in TimeoutSettings.model_fields:
            value = timeouts.get(name)
            if isinstance(value, (int, float)) and not isinstance(value, bool) and value > 0:
                parsed[name] = float(value)
        data["timeouts"] = TimeoutSettings(**parsed)
    eaglesoft = raw.get("eaglesoft")
    if isinstance(eaglesoft, dict):
        settings: dict[str, str] = {}
        for name in ("product_name", "token"):
            value = eaglesoft.get(name)
            if isinstance(value, str):
                settings[name] = value
        data["eaglesoft"] = EaglesoftSettings(**settings)
    return data


def _apply_env(config: AppConfig) -> AppConfig:
    """Environment variables win over the file for Eaglesoft credentials."""

    product = os.environ.get("EAGLESOFT_PRODUCT_NAME")
    token = os.environ.get("EAGLESOFT_TOKEN")
    if not product and not token:
        return config
    eaglesoft = config.eaglesoft.model_copy(
        update={
            "product_name": product or config.eaglesoft.product_name,
            "token": token or config.eaglesoft.token,
        }
    )
    return config.model_copy(update={"eaglesoft": eaglesoft})


__all__ = [
    "AppConfig",
    "CONFIG_FILE",
    "EaglesoftSettings",
    "TimeoutSettings",
    "default_data_dir",
    "load_config",
    "save_config",
]
