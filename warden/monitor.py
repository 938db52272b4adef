"""
Resource metrics for managed services.

Samples CPU, memory and uptime of a service's main process (plus its
children) with psutil. The native manager owns the processes; warden only
reads them, using the pid reported by the driver's status call.
"""

import asyncio
import logging
import time
from dataclasses import asdict, dataclass

import psutil

from .config import config
from .definitions import read_port, read_variable
from .driver import ServiceDriver
from .errors import WardenError
from .models import ServiceState

logger = logging.getLogger(__name__)


@dataclass
class ProcessMetrics:
    """Point-in-time resource usage of one service."""

    pid: int | None = None
    cpu_percent: float = 0.0
    memory_mb: float = 0.0
    memory_percent: float = 0.0
    child_processes: int = 0
    uptime_seconds: float = 0.0

    def to_dict(self) -> dict:
        return asdict(self)


def get_current_metrics(pid: int | None, interval: float = 0.1) -> ProcessMetrics:
    """Get current resource usage for the process tree rooted at pid."""
    metrics = ProcessMetrics()
    if not pid:
        return metrics

    try:
        proc = psutil.Process(pid)
        cpu_percent = proc.cpu_percent(interval=interval)
        memory_mb = proc.memory_info().rss / 1024 / 1024
        memory_percent = proc.memory_percent()

        # Include children
        child_count = 0
        try:
            children = proc.children(recursive=True)
            child_count = len(children)
            for child in children:
                cpu_percent += child.cpu_percent(interval=interval)
                memory_mb += child.memory_info().rss / 1024 / 1024
                memory_percent += child.memory_percent()
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            pass

        metrics.pid = pid
        metrics.cpu_percent = round(cpu_percent, 1)
        metrics.memory_mb = round(memory_mb, 1)
        metrics.memory_percent = round(memory_percent, 1)
        metrics.child_processes = child_count
        metrics.uptime_seconds = round(max(time.time() - proc.create_time(), 0.0), 1)
    except psutil.NoSuchProcess:
        logger.warning(f"Process {pid} no longer exists")
    except psutil.AccessDenied:
        logger.warning(f"Access denied reading process {pid}")

    return metrics


def format_uptime(seconds: float) -> str:
    """Render an uptime as e.g. `3d 4h`, `2h 5m` or `42s`."""
    seconds = int(seconds)
    if seconds <= 0:
        return "-"
    days, rest = divmod(seconds, 86400)
    hours, rest = divmod(rest, 3600)
    minutes, secs = divmod(rest, 60)
    if days:
        return f"{days}d {hours}h"
    if hours:
        return f"{hours}h {minutes}m"
    if minutes:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


# Bind-all addresses are not reachable as such; show the service host instead
_WILDCARD_HOSTS = {"0.0.0.0", "::"}


def service_urls(port: int | None, host: str | None = None, protocol: str = "http") -> dict[str, str | None]:
    """Health and metrics URLs for a service listening on port."""
    if not port:
        return {"health": None, "metrics": None}
    if not host or host in _WILDCARD_HOSTS:
        host = config.get_service_host()
    if ":" in host:
        host = f"[{host}]"
    base = f"{protocol}://{host}:{port}"
    return {"health": f"{base}/healthz", "metrics": f"{base}/metrics"}


async def service_overview(driver: ServiceDriver, identifier: str, interval: float = 0.1) -> dict:
    """Status, resource usage and URLs of one service as a plain dict."""
    status = await driver.status(identifier)
    metrics = await asyncio.to_thread(get_current_metrics, status.pid if status.running else None, interval)
    port = host = None
    protocol = "http"
    if status.artifact_path:
        port = read_port(status.artifact_path)
        host = read_variable(status.artifact_path, "HOST")
        protocol = read_variable(status.artifact_path, "PROTOCOL") or protocol
    return {
        **status.to_dict(),
        "port": port,
        **metrics.to_dict(),
        "pid": status.pid,
        "urls": service_urls(port, host, protocol),
        "error": None,
    }


async def service_overviews(driver: ServiceDriver, identifiers: list[str], interval: float = 0.1) -> list[dict]:
    """
    Overviews of several services.

    A service whose status query fails is reported with state `unknown` and
    the error message instead of failing the whole listing.
    """

    async def one(identifier: str) -> dict:
        try:
            return await service_overview(driver, identifier, interval)
        except WardenError as e:
            logger.warning(f"Could not read status of {identifier}: {e}")
            return {
                "name": identifier,
                "qualified_name": driver.qualified(identifier),
                "state": ServiceState.UNKNOWN.value,
                "artifact_path": None,
                "detail": None,
                "port": None,
                **ProcessMetrics().to_dict(),
                "urls": service_urls(None),
                "error": str(e),
            }

    return list(await asyncio.gather(*(one(identifier) for identifier in identifiers)))
