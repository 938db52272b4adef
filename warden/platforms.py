"""
Platform detection.

Determines the host service-manager family once per process and describes
where warden keeps its configuration, logs, and service definitions.
Detection never fails: unknown systems come back as UNSUPPORTED and the
lifecycle driver reports the problem for the operation actually attempted.
"""

import logging
import os
import platform
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from .config import config

logger = logging.getLogger(__name__)


class PlatformFamily(Enum):
    LINUX = "linux"
    MACOS = "macos"
    WINDOWS = "windows"
    UNSUPPORTED = "unsupported"


@dataclass(frozen=True)
class PlatformCapability:
    """Read-only description of the host service manager."""

    family: PlatformFamily
    system: str
    service_manager: str
    config_dir: Path
    log_dir: Path
    service_dir: Path

    @property
    def supported(self) -> bool:
        return self.family is not PlatformFamily.UNSUPPORTED


_SYSTEMS = {
    "linux": PlatformFamily.LINUX,
    "darwin": PlatformFamily.MACOS,
    "windows": PlatformFamily.WINDOWS,
}


def _home_dir() -> Path:
    if config.home:
        return Path(config.home)
    home = os.environ.get("HOME") or os.environ.get("USERPROFILE")
    if home:
        return Path(home)
    try:
        return Path.home()
    except RuntimeError:
        return Path.cwd()


def detect(system: str | None = None, home: Path | None = None) -> PlatformCapability:
    """Probe the host and return its capability descriptor."""
    if system is None:
        system = platform.system()
    family = _SYSTEMS.get(system.lower(), PlatformFamily.UNSUPPORTED)
    home = Path(home) if home is not None else _home_dir()

    if family is PlatformFamily.LINUX:
        return PlatformCapability(
            family=family,
            system=system,
            service_manager="systemd",
            config_dir=home / ".config" / "warden",
            log_dir=home / ".local" / "share" / "warden" / "logs",
            service_dir=home / ".config" / "systemd" / "user",
        )
    if family is PlatformFamily.MACOS:
        return PlatformCapability(
            family=family,
            system=system,
            service_manager="launchd",
            config_dir=home / ".warden",
            log_dir=home / ".warden" / "logs",
            service_dir=home / "Library" / "LaunchAgents",
        )
    if family is PlatformFamily.WINDOWS:
        return PlatformCapability(
            family=family,
            system=system,
            service_manager="scm",
            config_dir=home / ".warden",
            log_dir=home / ".warden" / "logs",
            service_dir=home / ".warden" / "services",
        )

    return PlatformCapability(
        family=PlatformFamily.UNSUPPORTED,
        system=system or "unknown",
        service_manager="none",
        config_dir=home / ".warden",
        log_dir=home / ".warden" / "logs",
        service_dir=home / ".warden" / "services",
    )


def ensure_directories(capability: PlatformCapability):
    """Create the config, log and service directories if missing."""
    for path in (capability.config_dir, capability.log_dir, capability.service_dir):
        path.mkdir(parents=True, exist_ok=True)
