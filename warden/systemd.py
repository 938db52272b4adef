"""
systemd user-mode driver (Linux).

Units live in ~/.config/systemd/user and are managed with
`systemctl --user`. Linux units carry no name prefix, so warden's units are
recognized by their `Warden Service:` description.
"""

import logging

from .definitions import DESCRIPTION_PREFIX, delete_artifact
from .driver import ServiceDriver
from .errors import ServiceNotFound
from .models import ServiceState, ServiceStatus
from .names import unqualify

logger = logging.getLogger(__name__)

STATUS_PROPERTIES = "LoadState,ActiveState,SubState,UnitFileState,MainPID,ActiveEnterTimestampMonotonic"


def parse_properties(output: str) -> dict[str, str]:
    """Parse `systemctl show` KEY=VALUE output."""
    props = {}
    for line in output.splitlines():
        key, sep, value = line.partition("=")
        if sep:
            props[key.strip()] = value.strip()
    return props


class SystemdDriver(ServiceDriver):
    """Lifecycle operations via systemctl --user."""

    artifact_suffix = ".service"

    def unit(self, identifier: str) -> str:
        return f"{self.qualified(identifier)}.service"

    async def _systemctl(self, *args: str, identifier: str | None = None, check: bool = True):
        return await self.runner.run(["systemctl", "--user", *args], check=check, service=identifier)

    async def reload(self, identifier: str):
        await self._systemctl("daemon-reload", identifier=identifier)

    async def enable(self, identifier: str):
        await self._systemctl("enable", self.unit(identifier), identifier=identifier)
        logger.info(f"Enabled {self.unit(identifier)}")

    async def start(self, identifier: str):
        await self._systemctl("start", self.unit(identifier), identifier=identifier)
        logger.info(f"Started {self.unit(identifier)}")

    async def stop(self, identifier: str):
        await self._systemctl("stop", self.unit(identifier), identifier=identifier)
        logger.info(f"Stopped {self.unit(identifier)}")

    async def restart(self, identifier: str):
        await self._systemctl("restart", self.unit(identifier), identifier=identifier)
        logger.info(f"Restarted {self.unit(identifier)}")

    async def status(self, identifier: str) -> ServiceStatus:
        result = await self._systemctl(
            "show", self.unit(identifier), f"--property={STATUS_PROPERTIES}", "--no-pager",
            identifier=identifier,
        )
        props = parse_properties(result.stdout)
        artifact = self.artifact_path(identifier)
        status = ServiceStatus(
            identifier=identifier,
            qualified_name=self.unit(identifier),
            state=ServiceState.UNKNOWN,
            artifact_path=artifact if artifact.exists() else None,
        )

        pid = props.get("MainPID", "0")
        if pid.isdigit() and int(pid) > 0:
            status.pid = int(pid)

        load = props.get("LoadState", "not-found")
        active = props.get("ActiveState", "inactive")
        sub = props.get("SubState", "")
        status.detail = f"{active}/{sub}" if sub else active

        if load == "not-found" and status.artifact_path is None:
            status.state = ServiceState.UNKNOWN
        elif active in ("active", "reloading"):
            status.state = ServiceState.RUNNING
        elif active == "activating":
            # auto-restart means the process exited and systemd is backing off
            status.state = ServiceState.FAILED if sub == "auto-restart" else ServiceState.RUNNING
        elif active == "failed":
            status.state = ServiceState.FAILED
        elif props.get("UnitFileState") != "enabled":
            status.state = ServiceState.INSTALLED
        elif props.get("ActiveEnterTimestampMonotonic", "0") == "0":
            status.state = ServiceState.ENABLED
        else:
            status.state = ServiceState.STOPPED
        return status

    async def remove(self, identifier: str):
        current = await self.status(identifier)
        if current.state is ServiceState.UNKNOWN:
            raise ServiceNotFound(identifier)

        unit = self.unit(identifier)
        await self._systemctl("disable", unit, identifier=identifier)
        await self._systemctl("stop", unit, identifier=identifier)
        delete_artifact(self.artifact_path(identifier), service=identifier)
        await self._systemctl("daemon-reload", identifier=identifier)
        await self._systemctl("reset-failed", unit, identifier=identifier, check=False)
        logger.info(f"Removed {unit}")

    async def list_services(self) -> list[str]:
        result = await self._systemctl(
            "list-units", "--type=service", "--all", "--no-legend", "--no-pager", "--plain"
        )
        names = []
        for line in result.stdout.splitlines():
            parts = line.split(None, 4)
            if len(parts) < 5 or not parts[0].endswith(".service"):
                continue
            if not parts[4].startswith(DESCRIPTION_PREFIX):
                continue
            identifier = unqualify(parts[0][: -len(".service")], self.capability)
            if identifier:
                names.append(identifier)

        # Units that are installed but not loaded do not show up in list-units
        marker = f"Description={DESCRIPTION_PREFIX}"
        service_dir = self.capability.service_dir
        if service_dir.is_dir():
            for path in sorted(service_dir.glob("*.service")):
                try:
                    content = path.read_text(encoding="utf-8")
                except OSError as e:
                    logger.warning(f"Could not read {path}: {e}")
                    continue
                if marker in content:
                    identifier = unqualify(path.stem, self.capability)
                    if identifier:
                        names.append(identifier)

        return list(dict.fromkeys(names))
