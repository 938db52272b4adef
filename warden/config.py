"""
Configuration for warden.

Loads settings from environment variables with sensible defaults. A `.env`
file in the working directory is read first. Filesystem locations are not
configured here; they come from the detected platform capability.
"""

import os
import socket
from dataclasses import dataclass

from dotenv import load_dotenv

from .models import DEFAULT_OTEL_ENDPOINT

load_dotenv()


@dataclass
class Config:
    """Warden configuration."""

    # Logging
    log_level: str = os.environ.get("WARDEN_LOG_LEVEL", "INFO")
    log_max_bytes: int = int(os.environ.get("WARDEN_LOG_MAX_BYTES", str(10 * 1024 * 1024)))  # 10MB
    log_backup_count: int = int(os.environ.get("WARDEN_LOG_BACKUP_COUNT", "5"))

    # Services
    default_port: int = int(os.environ.get("WARDEN_DEFAULT_PORT", "3000"))
    command_timeout: int = int(os.environ.get("WARDEN_COMMAND_TIMEOUT", "60"))

    # Runtimes - empty means look up on PATH
    bun_path: str = os.environ.get("WARDEN_BUN_PATH", "")
    python_path: str = os.environ.get("WARDEN_PYTHON_PATH", "")

    # Observability
    otel_endpoint: str = os.environ.get("WARDEN_OTEL_ENDPOINT", DEFAULT_OTEL_ENDPOINT)

    # Service URLs - the host used in health/metrics links (defaults to machine IP)
    service_host: str = os.environ.get("WARDEN_SERVICE_HOST", "")

    # Web API
    web_host: str = os.environ.get("WARDEN_WEB_HOST", "127.0.0.1")
    web_port: int = int(os.environ.get("WARDEN_WEB_PORT", "9900"))

    # Overrides the home directory used for platform paths
    home: str = os.environ.get("WARDEN_HOME", "")

    def get_service_host(self) -> str:
        """Get the host to use in service URLs."""
        if self.service_host:
            return self.service_host
        # Auto-detect local IP
        try:
            s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
            s.connect(("8.8.8.8", 80))
            ip = s.getsockname()[0]
            s.close()
            return ip
        except OSError:
            return "localhost"


config = Config()
