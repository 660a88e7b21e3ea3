"""Tests for the command runner and PowerShell helpers."""

from __future__ import annotations

import base64
import sys
import time

import pytest

from winpanel.shell import (
    DRAIN_TIMEOUT,
    CommandResult,
    SubprocessRunner,
    encode_powershell,
    parse_markers,
    powershell_args,
    quote_powershell,
)


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


def test_encode_powershell_uses_utf16le_base64() -> None:
    encoded = encode_powershell("Write-Output 'hi'")

    assert base64.b64decode(encoded).decode("utf-16-le") == "Write-Output 'hi'"


def test_powershell_args_pass_script_encoded() -> None:
    args = powershell_args("powershell.exe", "exit 0")

    assert args[:4] == ["powershell.exe", "-NoProfile", "-NonInteractive", "-EncodedCommand"]
    assert base64.b64decode(args[4]).decode("utf-16-le") == "exit 0"


def test_quote_powershell_doubles_single_quotes() -> None:
    assert quote_powershell("DSN=O'Brien;PWD=$x") == "'DSN=O''Brien;PWD=$x'"


def test_parse_markers_ignores_exit_code_and_collects_hints() -> None:
    markers = parse_markers(
        "noise\nERROR: Data source name not found\nHINT: DSN not configured in 32-bit ODBC Data Source Administrator\n",
        "",
    )

    assert markers.success is False
    assert markers.error == "Data source name not found"
    assert markers.hints == ("DSN not configured in 32-bit ODBC Data Source Administrator",)
    assert markers.lines[0] == "noise"


def test_parse_markers_detects_success_line() -> None:
    markers = parse_markers("SUCCESS\r\nQUERY_SUCCESS\r\n")

    assert markers.success is True
    assert markers.error is None


def test_failure_reason_prefers_error_then_output() -> None:
    assert CommandResult(args=("x",), returncode=None, error="Failed to start x").failure_reason == "Failed to start x"
    assert CommandResult(args=("x",), returncode=1, stderr="boom\n").failure_reason == "boom"
    assert CommandResult(args=("x",), returncode=2).failure_reason == "Command exited with code 2"
    assert "timed out" in CommandResult(args=("x",), returncode=None, timed_out=True).failure_reason


@pytest.mark.anyio
async def test_runner_captures_output() -> None:
    result = await SubprocessRunner().run([sys.executable, "-c", "print('hello')"], timeout=30)

    assert result.ok
    assert result.stdout.strip() == "hello"


@pytest.mark.anyio
async def test_runner_reports_missing_executable() -> None:
    result = await SubprocessRunner().run(["definitely-not-a-real-command-xyz"], timeout=5)

    assert not result.ok
    assert result.returncode is None
    assert result.error and "Failed to start" in result.error


@pytest.mark.anyio
async def test_runner_kills_on_timeout() -> None:
    result = await SubprocessRunner().run([sys.executable, "-c", "import time; time.sleep(10)"], timeout=0.5)

    assert result.timed_out
    assert not result.ok


@pytest.mark.anyio
async def test_runner_rejects_empty_command() -> None:
    with pytest.raises(ValueError):
        await SubprocessRunner().run([], timeout=1)


@pytest.mark.anyio
async def test_runner_timeout_is_bounded_when_grandchild_keeps_pipes_open() -> None:
    script = (
        "import subprocess, sys, time; "
        "subprocess.Popen([sys.executable, '-c', 'import time; time.sleep(8)']); "
        "time.sleep(8)"
    )
    started = time.monotonic()

    result = await SubprocessRunner().run([sys.executable, "-c", script], timeout=1)

    assert result.timed_out
    assert time.monotonic() - started < 1 + DRAIN_TIMEOUT + 3
