"""External command execution with bounded run time and captured output."""

from __future__ import annotations

import asyncio
import base64
import contextlib
import logging
import os
from dataclasses import dataclass, field
from typing import Protocol, Sequence

LOG = logging.getLogger(__name__)

SUCCESS_MARKER = "SUCCESS"
ERROR_PREFIX = "ERROR:"
HINT_PREFIX = "HINT:"

# Grace period for collecting output after a timed-out process is killed.
DRAIN_TIMEOUT = 1.0


@dataclass(frozen=True, slots=True)
class CommandResult:
    """Normalized output of an external command."""

    args: tuple[str, ...]
    returncode: int | None
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out and self.error is None

    @property
    def failure_reason(self) -> str:
        if self.error:
            return self.error
        if self.timed_out:
            return f"Command timed out: {self.args[0]}"
        detail = self.stderr.strip() or self.stdout.strip()
        return detail or f"Command exited with code {self.returncode}"


class CommandRunner(Protocol):
    """Interface implemented by command executors."""

    async def run(self, args: Sequence[str], *, timeout: float) -> CommandResult: ...


class SubprocessRunner:
    """Runs commands with asyncio subprocesses; never raises for command failures."""

    def __init__(self, *, encoding: str = "utf-8") -> None:
        self._encoding = encoding

    async def run(self, args: Sequence[str], *, timeout: float) -> CommandResult:
        if not args:
            raise ValueError("Provide a command to run.")
        argv = (os.path.expandvars(args[0]), *args[1:])
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            LOG.debug("Failed to launch command", extra={"command": argv[0]})
            return CommandResult(args=argv, returncode=None, error=f"Failed to start {argv[0]}: {exc}")
        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            with contextlib.suppress(ProcessLookupError):
                process.kill()
            try:
                stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=DRAIN_TIMEOUT)
            except asyncio.TimeoutError:
                # A grandchild still holds the pipes open.
                stdout, stderr = b"", b""
            return CommandResult(
                args=argv,
                returncode=process.returncode,
                stdout=self._decode(stdout),
                stderr=self._decode(stderr),
                timed_out=True,
            )
        return CommandResult(
            args=argv,
            returncode=process.returncode,
            stdout=self._decode(stdout),
            stderr=self._decode(stderr),
        )

    def _decode(self, data: bytes | None) -> str:
        if not data:
            return ""
        return data.decode(self._encoding, errors="replace").replace("\x00", "")


def encode_powershell(script: str) -> str:
    """Base64 of the UTF-16LE script, as ``-EncodedCommand`` expects."""

    return base64.b64encode(script.encode("utf-16-le")).decode("ascii")


def powershell_args(executable: str, script: str) -> list[str]:
    return [
        executable,
        "-NoProfile",
        "-NonInteractive",
        "-EncodedCommand",
        encode_powershell(script),
    ]


def quote_powershell(value: str) -> str:
    """Single-quoted PowerShell literal; only the quote itself needs doubling."""

    return "'" + value.replace("'", "''") + "'"


@dataclass(frozen=True, slots=True)
class MarkerOutput:
    """SUCCESS / ERROR / HINT lines parsed from a script's output."""

    success: bool
    errors: tuple[str, ...] = ()
    hints: tuple[str, ...] = ()
    lines: tuple[str, ...] = field(default=())

    @property
    def error(self) -> str | None:
        return self.errors[0] if self.errors else None


def parse_markers(*outputs: str) -> MarkerOutput:
    """Parse marker lines; the exit code plays no part in the outcome."""

    lines = tuple(
        line.strip()
        for output in outputs
        for line in (output or "").splitlines()
        if line.strip()
    )
    errors = tuple(line[len(ERROR_PREFIX):].strip() for line in lines if line.startswith(ERROR_PREFIX))
    hints = tuple(line[len(HINT_PREFIX):].strip() for line in lines if line.startswith(HINT_PREFIX))
    return MarkerOutput(
        success=SUCCESS_MARKER in lines,
        errors=errors,
        hints=hints,
        lines=lines,
    )


__all__ = [
    "DRAIN_TIMEOUT",
    "CommandResult",
    "CommandRunner",
    "MarkerOutput",
    "SubprocessRunner",
    "encode_powershell",
    "parse_markers",
    "powershell_args",
    "quote_powershell",
]
