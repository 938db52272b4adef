"""
Error types raised by warden.

Core modules raise these; the CLI and web API turn them into user-facing
messages. Every error optionally carries the service identifier it concerns.
"""


class WardenError(Exception):
    """Base class for all warden errors."""

    def __init__(self, message: str, service: str | None = None):
        super().__init__(message)
        self.message = message
        self.service = service

    def __str__(self) -> str:
        return self.message


class InvalidName(WardenError):
    """A service identifier failed validation."""

    def __init__(self, raw: str, reason: str):
        super().__init__(f"Invalid service name '{raw}': {reason}", service=None)
        self.raw = raw
        self.reason = reason


class InvalidEntry(WardenError):
    """The entry file or a start option is unusable."""


class AuditRejected(WardenError):
    """The security audit found critical issues in the entry file."""

    def __init__(self, path: str, findings: list):
        lines = "\n".join(f"  - {finding.message}" for finding in findings)
        super().__init__(f"Critical security issues found in {path}:\n{lines}")
        self.path = path
        self.findings = findings


class DefinitionWriteFailed(WardenError):
    """Writing or deleting a definition artifact failed."""

    def __init__(self, path: str, reason: str, service: str | None = None):
        super().__init__(f"Could not write service definition {path}: {reason}", service=service)
        self.path = path


class NativeManagerFailed(WardenError):
    """The native service manager rejected a command."""

    def __init__(
        self,
        detail: str,
        service: str | None = None,
        argv: list[str] | None = None,
        returncode: int | None = None,
    ):
        prefix = f"Service '{service}': " if service else ""
        super().__init__(f"{prefix}{detail}", service=service)
        self.detail = detail
        self.argv = argv or []
        self.returncode = returncode


class UnsupportedPlatform(WardenError):
    """The detected platform has no driver for the requested operation."""

    def __init__(self, platform: str, operation: str, service: str | None = None):
        super().__init__(
            f"Platform '{platform}' is not supported for operation '{operation}'",
            service=service,
        )
        self.platform = platform
        self.operation = operation


class ServiceNotFound(WardenError):
    """The native manager does not know the service."""

    def __init__(self, service: str):
        super().__init__(f"Service '{service}' not found", service=service)
