"""Shared behaviour for database driver adapters."""

from __future__ import annotations

import asyncio
import errno
import importlib
import importlib.util
import logging
import re
from types import ModuleType
from typing import Any, ClassVar, Protocol, runtime_checkable

from ..errors import WinpanelError
from ..models import PASSWORD_PLACEHOLDER, ConnectionConfig, ConnectionStatus, DatabaseType
from .hints import GENERIC_HINTS, HintPolicy

LOG = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 15.0
_SQLSTATE = re.compile(r"^[0-9A-Z]{5}$")


class DriverNotInstalledError(WinpanelError):
    """Raised when the client library for a database type cannot be imported."""


@runtime_checkable
class DriverAdapter(Protocol):
    """Interface implemented by every database adapter."""

    # None for adapters that serve any engine behind a DSN.
    db_type: DatabaseType | None

    @property
    def installed(self) -> bool: ...

    async def test_connection(self, config: ConnectionConfig) -> ConnectionStatus: ...


class BaseAdapter:
    """Bounded, always-closing identity probe with structured failures.

    Subclasses implement ``_probe`` and may override ``validate`` and
    ``hint_context``. ``_probe`` must close whatever it opens.
    """

    db_type: ClassVar[DatabaseType | None]
    vendor: ClassVar[str]
    driver_module: ClassVar[str]
    install_hint: ClassVar[str] = ""
    hint_policy: ClassVar[HintPolicy] = HintPolicy((), generic=GENERIC_HINTS)

    def __init__(self, *, timeout: float = DEFAULT_TIMEOUT, driver: Any | None = None) -> None:
        self._timeout = timeout
        self._driver = driver

    @property
    def installed(self) -> bool:
        if self._driver is not None:
            return True
        return importlib.util.find_spec(self.driver_module) is not None

    def load_driver(self) -> Any:
        if self._driver is None:
            try:
                self._driver = importlib.import_module(self.driver_module)
            except ImportError as exc:
                raise DriverNotInstalledError(
                    f"{self.vendor} driver not installed. Please install the '{self.install_hint or self.driver_module}' package."
                ) from exc
        return self._driver

    def timeout_for(self, config: ConnectionConfig) -> float:
        if config.connection_timeout and config.connection_timeout > 0:
            return config.connection_timeout / 1000
        return self._timeout

    def validate(self, config: ConnectionConfig) -> ConnectionStatus | None:
        """Configuration errors detected before any I/O."""

        if (config.password or "").strip() == PASSWORD_PLACEHOLDER:
            return ConnectionStatus.failure(
                f"Saved password is masked ({PASSWORD_PLACEHOLDER}). "
                "Remove this connection and add it again with the real password.",
                code="PASSWORD_MASKED",
                hint=[
                    "This connection was saved with a masked password placeholder.",
                    "Remove the connection in the app and add it again, then retype the real password and click Test.",
                ],
            )
        return None

    def hint_context(self, config: ConnectionConfig) -> dict[str, object]:
        return {
            "host": config.host or config.server or "localhost",
            "port": config.port or "default",
            "user": config.login or "N/A",
            "database": config.database or "N/A",
            "timeout": f"{self.timeout_for(config):g}",
        }

    async def test_connection(self, config: ConnectionConfig) -> ConnectionStatus:
        problem = self.validate(config)
        if problem is not None:
            return problem
        try:
            driver = self.load_driver()
        except DriverNotInstalledError as exc:
            return ConnectionStatus.failure(
                str(exc),
                code="DRIVER_MISSING",
                hint=[f"pip install {self.install_hint or self.driver_module}"],
            )
        timeout = self.timeout_for(config)
        try:
            return await asyncio.wait_for(self._probe(driver, config, timeout), timeout=timeout)
        except asyncio.TimeoutError:
            message = f"Connection timed out after {timeout:g}s"
            return ConnectionStatus.failure(
                message,
                code="ETIMEOUT",
                hint=self.hint_policy.classify(message, "ETIMEOUT", self.hint_context(config)),
            )
        except DriverNotInstalledError as exc:
            return ConnectionStatus.failure(str(exc), code="DRIVER_MISSING")
        except Exception as exc:
            return self.describe_failure(exc, config)

    def describe_failure(self, exc: BaseException, config: ConnectionConfig, **extra: Any) -> ConnectionStatus:
        message = error_message(exc)
        code = error_code(exc)
        LOG.info("%s connection test failed: %s", self.vendor, message)
        hints = self.hint_policy.classify(message, code, self.hint_context(config))
        return ConnectionStatus.failure(message, code=code, hint=hints, **extra)

    async def _probe(self, driver: ModuleType | Any, config: ConnectionConfig, timeout: float) -> ConnectionStatus:
        raise NotImplementedError


def error_message(exc: BaseException) -> str:
    args = getattr(exc, "args", ())
    # DB-API drivers put (code, message) in args.
    if len(args) >= 2 and isinstance(args[1], str) and isinstance(args[0], (int, str)):
        return args[1]
    text = str(exc).strip()
    return text or type(exc).__name__


def error_code(exc: BaseException) -> str | None:
    for attr in ("sqlstate", "code"):
        value = getattr(exc, attr, None)
        if isinstance(value, (str, int)) and not isinstance(value, bool) and str(value):
            return str(value)
    if isinstance(exc, OSError) and exc.errno:
        return errno.errorcode.get(exc.errno, str(exc.errno))
    args = getattr(exc, "args", ())
    if args:
        head = args[0]
        if isinstance(head, int) and not isinstance(head, bool):
            return str(head)
        if isinstance(head, str) and _SQLSTATE.match(head):
            return head
    return None


__all__ = [
    "BaseAdapter",
    "DEFAULT_TIMEOUT",
    "DriverAdapter",
    "DriverNotInstalledError",
    "error_code",
    "error_message",
]
