"""
External tool invoker — the single place backends call subprocess.

Every package-manager executable and every embedded helper script
goes through ``run_cmd`` or ``get_cmd_output``. A spawn failure,
timeout, or non-zero exit becomes an ``ExternalToolError``; nothing
is retried.
"""

from __future__ import annotations

import logging
import shlex
import subprocess
from pathlib import Path

from upm.core.errors import ExternalToolError

logger = logging.getLogger(__name__)

# Keep error messages to one readable line-ish block
_STDERR_TAIL = 2000


def _describe(cmd: list[str]) -> str:
    """Human-readable command line, with long script payloads elided."""
    parts = []
    for arg in cmd:
        if "\n" in arg:
            parts.append("<script>")
        else:
            parts.append(shlex.quote(arg))
    return " ".join(parts)


def _execute(
    cmd: list[str],
    cwd: Path | None,
    timeout: int | None,
    capture_stdout: bool,
) -> subprocess.CompletedProcess[str]:
    description = _describe(cmd)
    logger.info("--> %s", description)

    try:
        result = subprocess.run(
            cmd,
            cwd=str(cwd) if cwd else None,
            stdout=subprocess.PIPE if capture_stdout else None,
            stderr=subprocess.PIPE,
            text=True,
            timeout=timeout,
        )
    except FileNotFoundError as e:
        raise ExternalToolError(
            f"{cmd[0]}: command not found", cmd=cmd,
        ) from e
    except subprocess.TimeoutExpired as e:
        raise ExternalToolError(
            f"{description}: timed out after {timeout}s", cmd=cmd,
        ) from e
    except OSError as e:
        raise ExternalToolError(f"{description}: {e}", cmd=cmd) from e

    if result.returncode != 0:
        stderr = (result.stderr or "")[-_STDERR_TAIL:].strip()
        message = f"{description}: exit code {result.returncode}"
        if stderr:
            message += f"\n{stderr}"
        raise ExternalToolError(
            message,
            cmd=cmd,
            returncode=result.returncode,
            stderr=stderr,
        )

    if result.stderr:
        logger.debug("%s stderr: %s", cmd[0], result.stderr.strip())
    return result


def run_cmd(
    cmd: list[str],
    cwd: Path | None = None,
    timeout: int | None = None,
) -> None:
    """Run a command, letting its stdout through to the terminal.

    Raises:
        ExternalToolError: If the command cannot be spawned, times out,
            or exits non-zero.
    """
    _execute(cmd, cwd, timeout, capture_stdout=False)


def get_cmd_output(
    cmd: list[str],
    cwd: Path | None = None,
    timeout: int | None = None,
) -> str:
    """Run a command and return its captured stdout.

    Raises:
        ExternalToolError: If the command cannot be spawned, times out,
            or exits non-zero.
    """
    return _execute(cmd, cwd, timeout, capture_stdout=True).stdout or ""
