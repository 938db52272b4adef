"""
Data records shared across warden.

A ServiceDefinition is built fresh for each `start` and handed to the
definition generator; the native service manager owns the persisted form.
The other records are short-lived results of audits, status queries and
batch operations.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path


class Severity(Enum):
    CRITICAL = "critical"
    WARNING = "warning"


@dataclass(frozen=True)
class AuditFinding:
    """A single security audit finding."""

    severity: Severity
    message: str


@dataclass
class AuditReport:
    """Findings of one audit run, split by severity."""

    critical: list[AuditFinding] = field(default_factory=list)
    warning: list[AuditFinding] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return not self.critical


@dataclass(frozen=True)
class RestartPolicy:
    """Fixed supervision policy applied to every generated definition."""

    on_failure: bool = True
    backoff_seconds: int = 2
    start_timeout_seconds: int = 30
    stop_timeout_seconds: int = 30


DEFAULT_OTEL_ENDPOINT = "http://localhost:4318/v1/traces"


@dataclass(frozen=True)
class ObservabilityFlags:
    otel: bool = False
    prometheus: bool = False
    otel_endpoint: str = DEFAULT_OTEL_ENDPOINT


@dataclass(frozen=True)
class ServiceDefinition:
    """Everything needed to generate a native service definition."""

    identifier: str
    executable_path: Path
    working_directory: Path
    port: int
    runtime: tuple[str, ...] = ()
    environment: tuple[tuple[str, str], ...] = ()
    restart_policy: RestartPolicy = RestartPolicy()
    observability: ObservabilityFlags = ObservabilityFlags()
    # Address and scheme the service is told to serve on; unset means not injected
    host: str | None = None
    https: bool = False

    @property
    def protocol(self) -> str:
        return "https" if self.https else "http"

    @property
    def program_arguments(self) -> list[str]:
        """Full argv: runtime prefix followed by the entry file."""
        return [*self.runtime, str(self.executable_path)]


@dataclass(frozen=True)
class NativeArtifact:
    """A generated service definition file and where it belongs."""

    path: Path
    content: str


class ServiceState(Enum):
    UNKNOWN = "unknown"
    INSTALLED = "installed"
    ENABLED = "enabled"
    RUNNING = "running"
    STOPPED = "stopped"
    FAILED = "failed"


@dataclass
class ServiceStatus:
    """Service state as reported by the native manager."""

    identifier: str
    qualified_name: str
    state: ServiceState
    pid: int | None = None
    artifact_path: Path | None = None
    detail: str | None = None

    @property
    def running(self) -> bool:
        return self.state is ServiceState.RUNNING

    def to_dict(self) -> dict:
        return {
            "name": self.identifier,
            "qualified_name": self.qualified_name,
            "state": self.state.value,
            "pid": self.pid,
            "artifact_path": str(self.artifact_path) if self.artifact_path else None,
            "detail": self.detail,
        }


class Outcome(Enum):
    SUCCESS = "success"
    FAILURE = "failure"


@dataclass(frozen=True)
class BatchResult:
    """Outcome of one service's operation inside a batch."""

    service: str
    outcome: Outcome
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.outcome is Outcome.SUCCESS
