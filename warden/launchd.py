"""
launchd driver (macOS).

Services are per-user LaunchAgents labelled `warden.<name>`. Stopping boots
the agent out of the GUI domain but leaves its plist in place, so a later
start bootstraps it again.
"""

import logging
import os
import re

from .definitions import delete_artifact
from .driver import ServiceDriver
from .errors import ServiceNotFound
from .models import ServiceState, ServiceStatus
from .names import unqualify

logger = logging.getLogger(__name__)

_STATE_RE = re.compile(r"^\s*state\s*=\s*(.+)$", re.MULTILINE)
_PID_RE = re.compile(r"^\s*pid\s*=\s*(\d+)", re.MULTILINE)
_EXIT_RE = re.compile(r"^\s*last exit code\s*=\s*(-?\d+)", re.MULTILINE)


class LaunchdDriver(ServiceDriver):
    """Lifecycle operations via launchctl."""

    artifact_suffix = ".plist"

    def __init__(self, capability, runner, uid: int | None = None):
        super().__init__(capability, runner)
        self.uid = uid if uid is not None else os.getuid()

    @property
    def domain(self) -> str:
        return f"gui/{self.uid}"

    def target(self, identifier: str) -> str:
        return f"{self.domain}/{self.qualified(identifier)}"

    async def _launchctl(self, *args: str, identifier: str | None = None, check: bool = True):
        return await self.runner.run(["launchctl", *args], check=check, service=identifier)

    async def is_loaded(self, identifier: str) -> bool:
        result = await self._launchctl("print", self.target(identifier), identifier=identifier, check=False)
        return result.ok

    async def _bootstrap(self, identifier: str):
        # A disabled label refuses to bootstrap, and remove leaves it disabled
        await self._launchctl("enable", self.target(identifier), identifier=identifier)
        await self._launchctl(
            "bootstrap", self.domain, str(self.artifact_path(identifier)), identifier=identifier
        )

    async def reload(self, identifier: str):
        if await self.is_loaded(identifier):
            await self._launchctl("bootout", self.target(identifier), identifier=identifier)
        await self._bootstrap(identifier)

    async def enable(self, identifier: str):
        await self._launchctl("enable", self.target(identifier), identifier=identifier)
        logger.info(f"Enabled {self.target(identifier)}")

    async def start(self, identifier: str):
        if not await self.is_loaded(identifier):
            await self._bootstrap(identifier)
        await self._launchctl("kickstart", self.target(identifier), identifier=identifier)
        logger.info(f"Started {self.target(identifier)}")

    async def stop(self, identifier: str):
        if await self.is_loaded(identifier):
            await self._launchctl("bootout", self.target(identifier), identifier=identifier)
        logger.info(f"Stopped {self.target(identifier)}")

    async def restart(self, identifier: str):
        if not await self.is_loaded(identifier):
            await self._bootstrap(identifier)
        # -k kills the running instance before starting it again
        await self._launchctl("kickstart", "-k", self.target(identifier), identifier=identifier)
        logger.info(f"Restarted {self.target(identifier)}")

    async def status(self, identifier: str) -> ServiceStatus:
        artifact = self.artifact_path(identifier)
        status = ServiceStatus(
            identifier=identifier,
            qualified_name=self.qualified(identifier),
            state=ServiceState.UNKNOWN,
            artifact_path=artifact if artifact.exists() else None,
        )

        result = await self._launchctl("print", self.target(identifier), identifier=identifier, check=False)
        if not result.ok:
            status.state = ServiceState.STOPPED if status.artifact_path else ServiceState.UNKNOWN
            return status

        state_match = _STATE_RE.search(result.stdout)
        state = state_match.group(1).strip() if state_match else ""
        status.detail = state or None
        pid_match = _PID_RE.search(result.stdout)
        if pid_match:
            status.pid = int(pid_match.group(1))

        exit_match = _EXIT_RE.search(result.stdout)
        if state == "running":
            status.state = ServiceState.RUNNING
        elif exit_match and exit_match.group(1) != "0":
            status.state = ServiceState.FAILED
        else:
            status.state = ServiceState.ENABLED
        return status

    async def remove(self, identifier: str):
        loaded = await self.is_loaded(identifier)
        if not loaded and not self.is_installed(identifier):
            raise ServiceNotFound(identifier)

        await self._launchctl("disable", self.target(identifier), identifier=identifier)
        if loaded:
            await self._launchctl("bootout", self.target(identifier), identifier=identifier)
        delete_artifact(self.artifact_path(identifier), service=identifier)
        logger.info(f"Removed {self.target(identifier)}")

    async def list_services(self) -> list[str]:
        result = await self._launchctl("list")
        names = []
        for line in result.stdout.splitlines()[1:]:
            parts = line.split()
            if len(parts) < 3:
                continue
            identifier = unqualify(parts[2], self.capability)
            if identifier:
                names.append(identifier)

        # Stopped agents are booted out but keep their plist
        service_dir = self.capability.service_dir
        if service_dir.is_dir():
            for path in sorted(service_dir.glob(f"{self.qualified('')}*.plist")):
                identifier = unqualify(path.stem, self.capability)
                if identifier:
                    names.append(identifier)

        return list(dict.fromkeys(names))
