"""Windows service control through PowerShell."""

from __future__ import annotations

import json
import logging
import re
import sys
from dataclasses import dataclass
from typing import Any

from .config import POWERSHELL_64BIT
from .errors import UnsupportedPlatformError, WinpanelError
from .shell import CommandRunner, SubprocessRunner, powershell_args, quote_powershell

LOG = logging.getLogger(__name__)

_SERVICE_NAME = re.compile(r"^[\w.$@ -]{1,256}$")

_SELECT = (
    "Select-Object Name, DisplayName, "
    "@{Name='Status';Expression={$_.Status.ToString()}}, "
    "@{Name='StartType';Expression={$_.StartType.ToString()}}"
)
_LIST_SCRIPT = f"Get-Service | {_SELECT} | ConvertTo-Json -Depth 2"


def _status_script(name: str) -> str:
    return f"Get-Service -Name {quote_powershell(name)} -ErrorAction Stop | {_SELECT} | ConvertTo-Json"

# Windows PowerShell 5.1 serializes enums as integers when not stringified.
_STATUS_NAMES = {
    1: "Stopped",
    2: "StartPending",
    3: "StopPending",
    4: "Running",
    5: "ContinuePending",
    6: "PausePending",
    7: "Paused",
}
_START_TYPES = {0: "Boot", 1: "System", 2: "Automatic", 3: "Manual", 4: "Disabled"}

_ACTIONS = {
    "start": ("Start-Service", "started"),
    "stop": ("Stop-Service", "stopped"),
    "restart": ("Restart-Service", "restarted"),
}


class ServiceError(WinpanelError):
    """Raised when PowerShell cannot query or control a service."""


@dataclass(frozen=True, slots=True)
class WindowsService:
    name: str
    display_name: str
    status: str = "Unknown"
    start_type: str = "Unknown"

    @property
    def running(self) -> bool:
        return self.status == "Running"

    @classmethod
    def from_powershell(cls, data: dict[str, Any], fallback_name: str = "") -> WindowsService:
        name = data.get("Name") or fallback_name
        return cls(
            name=name,
            display_name=data.get("DisplayName") or name,
            status=_enum_name(data.get("Status"), _STATUS_NAMES),
            start_type=_enum_name(data.get("StartType"), _START_TYPES),
        )

    def to_dict(self) -> dict[str, str]:
        return {
            "name": self.name,
            "displayName": self.display_name,
            "status": self.status,
            "startType": self.start_type,
        }


def _enum_name(value: Any, names: dict[int, str]) -> str:
    if isinstance(value, int):
        return names.get(value, str(value))
    return str(value) if value else "Unknown"


def validate_service_name(name: Any) -> str:
    """Return the stripped name or raise ``ValueError``."""

    if not isinstance(name, str) or not _SERVICE_NAME.match(name.strip()):
        raise ValueError(f"Invalid service name: {name!r}")
    return name.strip()


def parse_service_json(output: str) -> list[dict[str, Any]]:
    """``ConvertTo-Json`` emits an object for one service and an array for many."""

    text = output.strip()
    if not text:
        return []
    data = json.loads(text)
    if isinstance(data, dict):
        return [data]
    return [item for item in data if isinstance(item, dict)]


class ServiceManager:
    """Lists, inspects and controls Windows services."""

    def __init__(
        self,
        runner: CommandRunner | None = None,
        *,
        powershell: str = POWERSHELL_64BIT,
        timeout: float = 30.0,
        is_windows: bool | None = None,
    ) -> None:
        self._runner = runner or SubprocessRunner()
        self._powershell = powershell
        self._timeout = timeout
        self._is_windows = sys.platform == "win32" if is_windows is None else is_windows

    async def list_services(self) -> list[WindowsService]:
        output = await self._run(_LIST_SCRIPT, "Failed to retrieve Windows services")
        return [WindowsService.from_powershell(item) for item in self._parse(output)]

    async def get_service_status(self, name: str) -> WindowsService:
        name = validate_service_name(name)
        output = await self._run(
            _status_script(name),
            "Failed to get service status",
        )
        items = self._parse(output)
        if not items:
            raise ServiceError(f"Service '{name}' was not found")
        return WindowsService.from_powershell(items[0], fallback_name=name)

    async def start_service(self, name: str) -> dict[str, Any]:
        return await self._control("start", name)

    async def stop_service(self, name: str) -> dict[str, Any]:
        return await self._control("stop", name)

    async def restart_service(self, name: str) -> dict[str, Any]:
        return await self._control("restart", name)

    async def _control(self, action: str, name: str) -> dict[str, Any]:
        name = validate_service_name(name)
        cmdlet, past = _ACTIONS[action]
        try:
            await self._run(f"{cmdlet} -Name {quote_powershell(name)} -ErrorAction Stop", f"Failed to {action} service '{name}'")
            service = await self.get_service_status(name)
        except ServiceError as exc:
            LOG.warning("Service %s failed for %s: %s", action, name, exc)
            return {"success": False, "error": str(exc)}
        LOG.info("Service %s %s", name, past)
        return {
            "success": True,
            "message": f"Service '{name}' {past} successfully",
            "service": service.to_dict(),
        }

    async def _run(self, script: str, failure: str) -> str:
        if not self._is_windows:
            raise UnsupportedPlatformError("Windows services are only available on Windows OS")
        result = await self._runner.run(powershell_args(self._powershell, script), timeout=self._timeout)
        if not result.ok:
            raise ServiceError(f"{failure}: {result.failure_reason}")
        return result.stdout

    @staticmethod
    def _parse(output: str) -> list[dict[str, Any]]:
        try:
            return parse_service_json(output)
        except ValueError as exc:
            raise ServiceError(f"Unexpected output from Get-Service: {exc}") from exc


__all__ = [
    "ServiceError",
    "ServiceManager",
    "WindowsService",
    "parse_service_json",
    "validate_service_name",
]
