"""
Subprocess execution for native service manager commands.

Commands run in a worker thread so the event loop can await many of them
concurrently. Output is captured as text; failures surface as
NativeManagerFailed carrying the argv, exit code and the manager's message.
"""

import asyncio
import logging
import subprocess
from dataclasses import dataclass

from .config import config
from .errors import NativeManagerFailed

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    """Captured result of a finished command."""

    argv: list[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def message(self) -> str:
        """Best available error text from the command."""
        return (self.stderr or self.stdout).strip() or f"exit code {self.returncode}"


class CommandRunner:
    """Runs external commands on behalf of the lifecycle drivers."""

    def __init__(self, timeout: int | None = None):
        self.timeout = timeout or config.command_timeout

    async def run(
        self,
        argv: list[str],
        check: bool = True,
        service: str | None = None,
        timeout: int | None = None,
    ) -> CommandResult:
        """Run a command and capture its output."""
        logger.debug(f"Running: {' '.join(argv)}")
        try:
            proc = await asyncio.to_thread(
                subprocess.run,
                argv,
                capture_output=True,
                text=True,
                timeout=timeout or self.timeout,
            )
        except FileNotFoundError:
            raise NativeManagerFailed(f"command not found: {argv[0]}", service=service, argv=argv)
        except subprocess.TimeoutExpired:
            raise NativeManagerFailed(
                f"'{' '.join(argv)}' timed out after {timeout or self.timeout}s",
                service=service,
                argv=argv,
            )

        result = CommandResult(argv=argv, returncode=proc.returncode, stdout=proc.stdout, stderr=proc.stderr)
        if check and not result.ok:
            logger.debug(f"Command failed ({result.returncode}): {result.message}")
            raise NativeManagerFailed(result.message, service=service, argv=argv, returncode=result.returncode)
        return result

    def attach(self, argv: list[str]) -> int:
        """Run a command attached to the current terminal; returns its exit code."""
        logger.debug(f"Attaching: {' '.join(argv)}")
        try:
            return subprocess.run(argv).returncode
        except FileNotFoundError:
            raise NativeManagerFailed(f"command not found: {argv[0]}", argv=argv)
        except KeyboardInterrupt:
            return 0
