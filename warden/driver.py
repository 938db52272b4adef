"""
Lifecycle driver interface.

One ServiceDriver subclass exists per platform family. Each translates the
lifecycle operations into its native service manager's vocabulary; callers
pick a driver once (see lifecycle.get_driver) and never branch on platform.
Drivers never retry: every failed native call raises NativeManagerFailed.
"""

import logging
from abc import ABC, abstractmethod
from pathlib import Path

from .definitions import log_paths
from .errors import UnsupportedPlatform
from .models import ServiceStatus
from .names import qualify
from .platforms import PlatformCapability
from .runner import CommandRunner

logger = logging.getLogger(__name__)


class ServiceDriver(ABC):
    """Lifecycle operations against a native service manager."""

    artifact_suffix = ""

    def __init__(self, capability: PlatformCapability, runner: CommandRunner):
        self.capability = capability
        self.runner = runner

    def qualified(self, identifier: str) -> str:
        return qualify(identifier, self.capability)

    def artifact_path(self, identifier: str) -> Path:
        """Where this service's definition artifact lives."""
        return self.capability.service_dir / f"{self.qualified(identifier)}{self.artifact_suffix}"

    def is_installed(self, identifier: str) -> bool:
        return self.artifact_path(identifier).exists()

    def log_files(self, identifier: str) -> list[Path]:
        """Log files written for this service under the log directory."""
        return list(log_paths(identifier, self.capability))

    @abstractmethod
    async def reload(self, identifier: str):
        """Make the manager pick up a new or changed definition."""

    @abstractmethod
    async def enable(self, identifier: str):
        """Mark the service to start automatically."""

    @abstractmethod
    async def start(self, identifier: str):
        pass

    @abstractmethod
    async def stop(self, identifier: str):
        pass

    @abstractmethod
    async def restart(self, identifier: str):
        pass

    @abstractmethod
    async def status(self, identifier: str) -> ServiceStatus:
        pass

    @abstractmethod
    async def remove(self, identifier: str):
        """Disable, stop and delete the definition artifact."""

    @abstractmethod
    async def list_services(self) -> list[str]:
        """Identifiers of every service carrying this tool's qualification."""

    def log_command(self, identifier: str, lines: int = 50, follow: bool = False) -> list[str]:
        """Command that shows the service's output in the terminal."""
        argv = ["tail", "-n", str(lines)]
        if follow:
            argv.append("-f")
        return argv + [str(path) for path in self.log_files(identifier)]


class UnsupportedDriver(ServiceDriver):
    """Driver for hosts without a supported service manager."""

    def _fail(self, operation: str, identifier: str | None = None):
        raise UnsupportedPlatform(self.capability.system, operation, service=identifier)

    def is_installed(self, identifier: str) -> bool:
        self._fail("status", identifier)

    async def reload(self, identifier: str):
        self._fail("reload", identifier)

    async def enable(self, identifier: str):
        self._fail("enable", identifier)

    async def start(self, identifier: str):
        self._fail("start", identifier)

    async def stop(self, identifier: str):
        self._fail("stop", identifier)

    async def restart(self, identifier: str):
        self._fail("restart", identifier)

    async def status(self, identifier: str) -> ServiceStatus:
        self._fail("status", identifier)

    async def remove(self, identifier: str):
        self._fail("remove", identifier)

    async def list_services(self) -> list[str]:
        self._fail("list")

    def log_command(self, identifier: str, lines: int = 50, follow: bool = False) -> list[str]:
        self._fail("logs", identifier)
