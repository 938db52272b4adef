"""
Service lifecycle workflows.

Selects the driver for the detected platform and implements the multi-step
operations on top of it. Steps for one service run strictly in order:
audit, write definition, reload, enable, start. Any failure ends the
workflow; nothing is retried.
"""

import logging
from dataclasses import dataclass
from pathlib import Path

from .audit import audit
from .definitions import generate, write_artifact
from .driver import ServiceDriver, UnsupportedDriver
from .errors import AuditRejected, ServiceNotFound, WardenError
from .launchd import LaunchdDriver
from .models import (
    AuditReport,
    NativeArtifact,
    ObservabilityFlags,
    ServiceDefinition,
    ServiceState,
    ServiceStatus,
)
from .names import derive_name, validate
from .platforms import PlatformCapability, PlatformFamily
from .runner import CommandRunner
from .runtime import build_entry, parse_env, resolve_entry, runtime_for, validate_host, validate_port
from .systemd import SystemdDriver
from .windows import WindowsDriver

logger = logging.getLogger(__name__)

_DRIVERS = {
    PlatformFamily.LINUX: SystemdDriver,
    PlatformFamily.MACOS: LaunchdDriver,
    PlatformFamily.WINDOWS: WindowsDriver,
}


def get_driver(capability: PlatformCapability, runner: CommandRunner | None = None) -> ServiceDriver:
    """Return the lifecycle driver for the host platform."""
    driver_class = _DRIVERS.get(capability.family, UnsupportedDriver)
    return driver_class(capability, runner or CommandRunner())


@dataclass
class StartResult:
    """What `start` did for one service."""

    definition: ServiceDefinition
    artifact: NativeArtifact
    report: AuditReport
    status: ServiceStatus
    created: bool
    changed: bool


# The native manager has fully taken over services in these states; any
# other state gets the whole reload, enable, start sequence again.
_SETTLED = {ServiceState.ENABLED, ServiceState.STOPPED, ServiceState.RUNNING}


async def install_and_start(definition: ServiceDefinition, driver: ServiceDriver) -> tuple[NativeArtifact, bool, bool]:
    """
    Write the definition and bring the service up.

    What happens is decided by the native manager's view of the service,
    not by whether a definition file exists. A service the manager does not
    know yet, or one left half set up by an earlier failed run, goes
    through reload, enable and start. A settled service whose definition
    changed is reloaded and restarted if it was running; an unchanged one
    is only started.

    Returns (artifact, created, changed).
    """
    identifier = definition.identifier
    artifact = generate(definition, driver.capability)
    current = await driver.status(identifier)
    created = current.state is ServiceState.UNKNOWN

    changed = write_artifact(artifact, service=identifier)

    if current.state not in _SETTLED:
        if not created:
            logger.info(f"Service {identifier} is {current.state.value}, completing setup")
        await driver.reload(identifier)
        await driver.enable(identifier)
        if current.state is ServiceState.FAILED:
            await driver.restart(identifier)
        else:
            await driver.start(identifier)
    elif changed:
        logger.info(f"Definition for {identifier} changed, reloading")
        await driver.reload(identifier)
        await driver.enable(identifier)
        if current.running:
            await driver.restart(identifier)
        else:
            await driver.start(identifier)
    else:
        await driver.start(identifier)

    return artifact, created, changed


async def start_entry(
    entry: str | Path,
    driver: ServiceDriver,
    name: str | None = None,
    port: int = 3000,
    env: list[str] | None = None,
    otel: bool = False,
    prometheus: bool = False,
    build: bool = False,
    otel_endpoint: str | None = None,
    allowed_roots: list[Path] | None = None,
    host: str | None = None,
    https: bool = False,
) -> StartResult:
    """Audit an entry file and run it as a managed service."""
    port = validate_port(port)
    if host is not None:
        host = validate_host(host)
    entry_path = resolve_entry(entry, allowed_roots)
    identifier = validate(name) if name else derive_name(entry_path)
    environment = parse_env(env)

    report = audit(entry_path)
    if not report.passed:
        raise AuditRejected(str(entry_path), report.critical)

    executable = entry_path
    if build:
        executable = await build_entry(entry_path, driver.runner, service=identifier)

    flags = ObservabilityFlags(otel=otel, prometheus=prometheus)
    if otel_endpoint:
        flags = ObservabilityFlags(otel=otel, prometheus=prometheus, otel_endpoint=otel_endpoint)

    definition = ServiceDefinition(
        identifier=identifier,
        executable_path=executable,
        working_directory=entry_path.parent,
        port=port,
        runtime=runtime_for(executable),
        environment=environment,
        observability=flags,
        host=host,
        https=https,
    )

    artifact, created, changed = await install_and_start(definition, driver)
    status = await driver.status(identifier)
    logger.info(f"Service {identifier} started ({status.state.value})")
    return StartResult(
        definition=definition,
        artifact=artifact,
        report=report,
        status=status,
        created=created,
        changed=changed,
    )


async def require_known(driver: ServiceDriver, identifier: str) -> ServiceStatus:
    """Return the service's status, raising ServiceNotFound if unknown."""
    status = await driver.status(identifier)
    if status.state is ServiceState.UNKNOWN:
        raise ServiceNotFound(identifier)
    return status


async def start_service(driver: ServiceDriver, identifier: str):
    """Start a service whose definition is already installed."""
    await require_known(driver, identifier)
    await driver.start(identifier)


async def stop_service(driver: ServiceDriver, identifier: str):
    await require_known(driver, identifier)
    await driver.stop(identifier)


async def restart_service(driver: ServiceDriver, identifier: str):
    await require_known(driver, identifier)
    await driver.restart(identifier)


async def remove_service(driver: ServiceDriver, identifier: str, purge_logs: bool = False):
    """Disable, stop and delete a service; optionally delete its log files."""
    await driver.remove(identifier)
    if purge_logs:
        for path in driver.log_files(identifier):
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                raise WardenError(f"Could not remove log file {path}: {e}", service=identifier)
            logger.info(f"Removed log file {path}")


OPERATIONS = {
    "start": start_service,
    "stop": stop_service,
    "restart": restart_service,
    "remove": remove_service,
}
