"""
Shell command runner — execute a command and capture its output.

This is the one place that spawns processes. Adapters build an argv
and call ``run_command``; the result carries stdout, stderr and the
return code, and ``check()`` converts a failure into ``ToolError``.
"""

from __future__ import annotations

import logging
import subprocess
import time
from dataclasses import dataclass

from autopkgctl.adapters.base import ToolError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 3600


@dataclass
class CommandResult:
    """Captured outcome of one process invocation."""

    args: list[str]
    return_code: int
    stdout: str = ""
    stderr: str = ""
    duration_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.return_code == 0

    @property
    def output(self) -> str:
        """stdout and stderr combined, as the tool printed them."""
        parts = [p for p in (self.stdout.strip(), self.stderr.strip()) if p]
        return "\n".join(parts)

    def check(self, operation: str) -> CommandResult:
        """Raise ToolError if the command failed."""
        if not self.ok:
            detail = self.stderr.strip() or f"exit code {self.return_code}"
            raise ToolError(
                f"{operation} failed: {detail}",
                output=self.output,
                return_code=self.return_code,
            )
        return self


def run_command(
    args: list[str],
    cwd: str | None = None,
    timeout: float | None = DEFAULT_TIMEOUT,
) -> CommandResult:
    """Run ``args`` and capture its output.

    Raises:
        ToolError: If the binary is missing or the timeout elapses.
    """
    logger.debug("Executing: %s", " ".join(args))
    start = time.monotonic()

    try:
        proc = subprocess.run(
            args,
            cwd=cwd,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except FileNotFoundError as e:
        raise ToolError(f"{args[0]} not found: {e}") from e
    except subprocess.TimeoutExpired as e:
        raise ToolError(f"{args[0]} timed out after {timeout}s") from e

    elapsed_ms = int((time.monotonic() - start) * 1000)
    result = CommandResult(
        args=list(args),
        return_code=proc.returncode,
        stdout=proc.stdout or "",
        stderr=proc.stderr or "",
        duration_ms=elapsed_ms,
    )
    logger.debug("%s → exit %d in %dms", args[0], result.return_code, elapsed_ms)
    return result
