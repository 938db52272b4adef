"""
Service Control Manager driver (Windows).

Services are registered as `Warden_<name>` by running the generated
PowerShell script, then driven with sc.exe. SCM has no atomic restart, so
restart stops, waits for STOPPED, then starts; either half failing fails
the restart.
"""

import asyncio
import logging
import re

from .definitions import delete_artifact
from .driver import ServiceDriver
from .errors import NativeManagerFailed, ServiceNotFound
from .models import RestartPolicy, ServiceState, ServiceStatus
from .names import unqualify

logger = logging.getLogger(__name__)

# sc.exe exits with the Win32 error code
ERROR_SERVICE_ALREADY_RUNNING = 1056
ERROR_SERVICE_DOES_NOT_EXIST = 1060
ERROR_SERVICE_NOT_ACTIVE = 1062

_STATE_RE = re.compile(r"STATE\s*:\s*\d+\s+(\w+)")
_PID_RE = re.compile(r"PID\s*:\s*(\d+)")
_NAME_RE = re.compile(r"^SERVICE_NAME:\s*(\S+)", re.MULTILINE)

_STATES = {
    "RUNNING": ServiceState.RUNNING,
    "START_PENDING": ServiceState.RUNNING,
    "CONTINUE_PENDING": ServiceState.RUNNING,
    "STOPPED": ServiceState.STOPPED,
    "STOP_PENDING": ServiceState.STOPPED,
    "PAUSED": ServiceState.STOPPED,
    "PAUSE_PENDING": ServiceState.STOPPED,
}


class WindowsDriver(ServiceDriver):
    """Lifecycle operations via sc.exe."""

    artifact_suffix = ".ps1"
    stop_timeout = RestartPolicy().stop_timeout_seconds
    poll_interval = 0.5

    async def _sc(self, *args: str, identifier: str | None = None, check: bool = True):
        return await self.runner.run(["sc.exe", *args], check=check, service=identifier)

    async def reload(self, identifier: str):
        await self.runner.run(
            [
                "powershell",
                "-NoProfile",
                "-ExecutionPolicy",
                "Bypass",
                "-File",
                str(self.artifact_path(identifier)),
            ],
            service=identifier,
        )

    async def enable(self, identifier: str):
        await self._sc("config", self.qualified(identifier), "start=", "auto", identifier=identifier)
        logger.info(f"Enabled {self.qualified(identifier)}")

    async def start(self, identifier: str):
        await self._start(identifier, allow_running=True)
        logger.info(f"Started {self.qualified(identifier)}")

    async def _start(self, identifier: str, allow_running: bool):
        result = await self._sc("start", self.qualified(identifier), identifier=identifier, check=False)
        if result.ok or (allow_running and result.returncode == ERROR_SERVICE_ALREADY_RUNNING):
            return
        raise NativeManagerFailed(
            result.message, service=identifier, argv=result.argv, returncode=result.returncode
        )

    async def stop(self, identifier: str):
        result = await self._sc("stop", self.qualified(identifier), identifier=identifier, check=False)
        if not result.ok and result.returncode != ERROR_SERVICE_NOT_ACTIVE:
            raise NativeManagerFailed(
                result.message, service=identifier, argv=result.argv, returncode=result.returncode
            )
        logger.info(f"Stopped {self.qualified(identifier)}")

    async def wait_stopped(self, identifier: str):
        """Poll until SCM reports STOPPED; sc.exe stop returns at STOP_PENDING."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.stop_timeout
        while True:
            status = await self.status(identifier)
            if status.detail == "STOPPED":
                return
            if loop.time() >= deadline:
                raise NativeManagerFailed(
                    f"timed out after {self.stop_timeout}s waiting for {self.qualified(identifier)} to stop "
                    f"(state {status.detail or status.state.value})",
                    service=identifier,
                )
            await asyncio.sleep(self.poll_interval)

    async def restart(self, identifier: str):
        try:
            await self.stop(identifier)
            await self.wait_stopped(identifier)
        except NativeManagerFailed as e:
            raise NativeManagerFailed(
                f"restart failed while stopping: {e.detail}", service=identifier, argv=e.argv,
                returncode=e.returncode,
            )
        # Already-running here means something else started it in between
        try:
            await self._start(identifier, allow_running=False)
        except NativeManagerFailed as e:
            raise NativeManagerFailed(
                f"restart failed while starting (service is now stopped): {e.detail}",
                service=identifier, argv=e.argv, returncode=e.returncode,
            )
        logger.info(f"Restarted {self.qualified(identifier)}")

    async def status(self, identifier: str) -> ServiceStatus:
        artifact = self.artifact_path(identifier)
        status = ServiceStatus(
            identifier=identifier,
            qualified_name=self.qualified(identifier),
            state=ServiceState.UNKNOWN,
            artifact_path=artifact if artifact.exists() else None,
        )

        result = await self._sc("queryex", self.qualified(identifier), identifier=identifier, check=False)
        if result.returncode == ERROR_SERVICE_DOES_NOT_EXIST:
            # Script written but never registered
            status.state = ServiceState.INSTALLED if status.artifact_path else ServiceState.UNKNOWN
            return status
        if not result.ok:
            raise NativeManagerFailed(
                result.message, service=identifier, argv=result.argv, returncode=result.returncode
            )

        state_match = _STATE_RE.search(result.stdout)
        state = state_match.group(1) if state_match else ""
        status.detail = state or None
        status.state = _STATES.get(state, ServiceState.UNKNOWN)
        pid_match = _PID_RE.search(result.stdout)
        if pid_match and int(pid_match.group(1)) > 0:
            status.pid = int(pid_match.group(1))
        return status

    async def remove(self, identifier: str):
        current = await self.status(identifier)
        if current.state is ServiceState.UNKNOWN:
            raise ServiceNotFound(identifier)

        name = self.qualified(identifier)
        if current.state is not ServiceState.INSTALLED:
            await self._sc("config", name, "start=", "disabled", identifier=identifier)
            await self.stop(identifier)
            await self._sc("delete", name, identifier=identifier)
        delete_artifact(self.artifact_path(identifier), service=identifier)
        logger.info(f"Removed {name}")

    async def list_services(self) -> list[str]:
        result = await self._sc("query", "type=", "service", "state=", "all")
        names = []
        for qualified in _NAME_RE.findall(result.stdout):
            identifier = unqualify(qualified, self.capability)
            if identifier:
                names.append(identifier)

        service_dir = self.capability.service_dir
        if service_dir.is_dir():
            for path in sorted(service_dir.glob(f"{self.qualified('')}*.ps1")):
                identifier = unqualify(path.stem, self.capability)
                if identifier:
                    names.append(identifier)

        return list(dict.fromkeys(names))

    def log_command(self, identifier: str, lines: int = 50, follow: bool = False) -> list[str]:
        log_file = self.log_files(identifier)[0]
        command = f"Get-Content -Path '{log_file}' -Tail {lines}"
        if follow:
            command += " -Wait"
        return ["powershell", "-NoProfile", "-Command", command]
