"""
Native service definition generation.

Turns a ServiceDefinition into the artifact the host service manager
consumes: a systemd user unit on Linux, a launchd plist on macOS, or a
PowerShell SCM registration script on Windows. Generation is pure:
identical definitions always produce byte-identical artifacts.

Environment order is fixed: PORT, NODE_ENV, SERVICE_NAME, HOST and PROTOCOL
when an address was given, user variables, then observability variables.
Duplicate keys resolve last-write-wins and keep the position of their
first occurrence.
"""

import logging
import plistlib
import re
import subprocess
from pathlib import Path

from jinja2 import Environment, StrictUndefined

from .errors import DefinitionWriteFailed, UnsupportedPlatform
from .models import NativeArtifact, ServiceDefinition
from .names import qualify
from .platforms import PlatformCapability, PlatformFamily

logger = logging.getLogger(__name__)

ENV_MARKER = ("NODE_ENV", "production")
DESCRIPTION_PREFIX = "Warden Service:"

_jinja = Environment(
    undefined=StrictUndefined,
    trim_blocks=True,
    lstrip_blocks=True,
    keep_trailing_newline=True,
    autoescape=False,
)

SYSTEMD_TEMPLATE = _jinja.from_string(
    """\
[Unit]
Description={{ description }}
After=network.target

[Service]
Type=simple
Restart={{ restart }}
RestartSec={{ policy.backoff_seconds }}s
TimeoutStartSec={{ policy.start_timeout_seconds }}s
TimeoutStopSec={{ policy.stop_timeout_seconds }}s
WorkingDirectory={{ working_directory }}
ExecStart={{ exec_start }}
{% for line in environment %}
Environment={{ line }}
{% endfor %}
StandardOutput=append:{{ out_log }}
StandardError=append:{{ err_log }}

# Security hardening (user systemd compatible)
PrivateTmp=true
NoNewPrivileges=true
ProtectSystem=strict
ReadWritePaths={{ working_directory }}
UMask=0022

# Resource limits
LimitNOFILE=65536

[Install]
WantedBy=default.target
"""
)

WINDOWS_TEMPLATE = _jinja.from_string(
    """\
# {{ description }}
# Generated by warden - do not edit manually
$ErrorActionPreference = 'Stop'
$name = '{{ qualified }}'
$binaryPath = '{{ binary_path }}'

$existing = Get-Service -Name $name -ErrorAction SilentlyContinue
if ($null -eq $existing) {
    New-Service -Name $name -BinaryPathName $binaryPath -DisplayName '{{ description }}' -StartupType Automatic | Out-Null
} else {
    sc.exe config $name binPath= $binaryPath | Out-Null
}

$environment = @(
{% for line in environment %}
    '{{ line }}'
{% endfor %}
)
Set-ItemProperty -Path "HKLM:\\SYSTEM\\CurrentControlSet\\Services\\$name" -Name Environment -Type MultiString -Value $environment

# Restart on failure after {{ policy.backoff_seconds }}s
sc.exe failure $name reset= 86400 actions= restart/{{ backoff_ms }}/restart/{{ backoff_ms }}/restart/{{ backoff_ms }} | Out-Null
sc.exe failureflag $name 1 | Out-Null
"""
)


def resolve_environment(definition: ServiceDefinition) -> list[tuple[str, str]]:
    """Merge base, user and observability variables in their fixed order."""
    pairs = [
        ("PORT", str(definition.port)),
        ENV_MARKER,
        ("SERVICE_NAME", definition.identifier),
    ]
    if definition.host is not None or definition.https:
        pairs.append(("HOST", definition.host or "localhost"))
        pairs.append(("PROTOCOL", definition.protocol))
    pairs.extend(definition.environment)
    flags = definition.observability
    if flags.otel:
        pairs.append(("OTEL_SERVICE_NAME", definition.identifier))
        pairs.append(("OTEL_EXPORTER_OTLP_TRACES_ENDPOINT", flags.otel_endpoint))
    if flags.prometheus:
        pairs.append(("PROMETHEUS_METRICS_PATH", "/metrics"))
        pairs.append(("PROMETHEUS_METRICS_PORT", str(definition.port)))

    merged: dict[str, str] = {}
    for key, value in pairs:
        if key in merged and merged[key] != value:
            logger.warning(
                f"{definition.identifier}: environment variable {key}={merged[key]!r} "
                f"overridden by {value!r}"
            )
        merged[key] = value
    return list(merged.items())


def _systemd_escape(value: str) -> str:
    return value.replace("%", "%%")


def _systemd_quote(value: str) -> str:
    escaped = _systemd_escape(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def _systemd_arg(value: str) -> str:
    if not value or any(c in value for c in " \t\"'\\;"):
        return _systemd_quote(value)
    return _systemd_escape(value)


def _powershell_literal(value: str) -> str:
    return value.replace("'", "''")


def log_paths(identifier: str, capability: PlatformCapability) -> tuple[Path, Path]:
    """The stdout and stderr files every generated definition writes to."""
    return (
        capability.log_dir / f"{identifier}.out.log",
        capability.log_dir / f"{identifier}.err.log",
    )


def generate_systemd_unit(definition: ServiceDefinition, capability: PlatformCapability) -> NativeArtifact:
    policy = definition.restart_policy
    out_log, err_log = log_paths(definition.identifier, capability)
    content = SYSTEMD_TEMPLATE.render(
        description=f"{DESCRIPTION_PREFIX} {definition.identifier}",
        restart="on-failure" if policy.on_failure else "no",
        policy=policy,
        working_directory=_systemd_escape(str(definition.working_directory)),
        exec_start=" ".join(_systemd_arg(arg) for arg in definition.program_arguments),
        environment=[_systemd_quote(f"{k}={v}") for k, v in resolve_environment(definition)],
        out_log=_systemd_escape(str(out_log)),
        err_log=_systemd_escape(str(err_log)),
    )
    path = capability.service_dir / f"{qualify(definition.identifier, capability)}.service"
    return NativeArtifact(path=path, content=content)


def generate_launchd_plist(definition: ServiceDefinition, capability: PlatformCapability) -> NativeArtifact:
    policy = definition.restart_policy
    label = qualify(definition.identifier, capability)
    out_log, err_log = log_paths(definition.identifier, capability)
    plist = {
        "Label": label,
        "ProgramArguments": definition.program_arguments,
        "WorkingDirectory": str(definition.working_directory),
        "EnvironmentVariables": dict(resolve_environment(definition)),
        "RunAtLoad": True,
        # Restart only when the process exits unsuccessfully
        "KeepAlive": {"SuccessfulExit": False} if policy.on_failure else False,
        "ThrottleInterval": policy.backoff_seconds,
        "ExitTimeOut": policy.stop_timeout_seconds,
        "StandardOutPath": str(out_log),
        "StandardErrorPath": str(err_log),
    }
    content = plistlib.dumps(plist, fmt=plistlib.FMT_XML, sort_keys=False).decode("utf-8")
    return NativeArtifact(path=capability.service_dir / f"{label}.plist", content=content)


def generate_windows_script(definition: ServiceDefinition, capability: PlatformCapability) -> NativeArtifact:
    policy = definition.restart_policy
    qualified = qualify(definition.identifier, capability)
    command = subprocess.list2cmdline(definition.program_arguments)
    out_log, err_log = log_paths(definition.identifier, capability)
    binary_path = (
        f'cmd.exe /c "cd /d "{definition.working_directory}" && {command}'
        f' >> "{out_log}" 2>> "{err_log}""'
    )
    content = WINDOWS_TEMPLATE.render(
        description=_powershell_literal(f"{DESCRIPTION_PREFIX} {definition.identifier}"),
        qualified=qualified,
        binary_path=_powershell_literal(binary_path),
        environment=[_powershell_literal(f"{k}={v}") for k, v in resolve_environment(definition)],
        policy=policy,
        backoff_ms=policy.backoff_seconds * 1000,
    )
    return NativeArtifact(path=capability.service_dir / f"{qualified}.ps1", content=content)


_GENERATORS = {
    PlatformFamily.LINUX: generate_systemd_unit,
    PlatformFamily.MACOS: generate_launchd_plist,
    PlatformFamily.WINDOWS: generate_windows_script,
}


def generate(definition: ServiceDefinition, capability: PlatformCapability) -> NativeArtifact:
    """Produce the native definition artifact for the host platform."""
    generator = _GENERATORS.get(capability.family)
    if generator is None:
        raise UnsupportedPlatform(capability.system, "generate", service=definition.identifier)
    return generator(definition, capability)


def write_artifact(artifact: NativeArtifact, service: str | None = None) -> bool:
    """
    Write an artifact to disk.

    Returns False when an identical file is already in place, True if the
    file was created or changed.
    """
    path = Path(artifact.path)
    try:
        if path.exists() and path.read_text(encoding="utf-8") == artifact.content:
            logger.debug(f"Definition {path} is unchanged")
            return False
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(artifact.content, encoding="utf-8")
    except OSError as e:
        raise DefinitionWriteFailed(str(path), str(e), service=service)
    logger.info(f"Wrote service definition {path}")
    return True


def delete_artifact(path: Path, service: str | None = None) -> bool:
    """Remove an artifact; returns False if there was nothing to remove."""
    path = Path(path)
    try:
        if not path.exists():
            return False
        path.unlink()
    except OSError as e:
        raise DefinitionWriteFailed(str(path), str(e), service=service)
    logger.info(f"Removed service definition {path}")
    return True


def read_variable(path: Path, key: str) -> str | None:
    """Recover an environment variable from an installed artifact, if readable."""
    try:
        content = Path(path).read_text(encoding="utf-8")
    except OSError:
        return None
    patterns = (
        re.compile(rf"""(?:^|["'\s]){re.escape(key)}=([^"'\s]+)""", re.MULTILINE),
        re.compile(rf"<key>{re.escape(key)}</key>\s*<string>([^<]*)</string>"),
    )
    for pattern in patterns:
        match = pattern.search(content)
        if match:
            return match.group(1)
    return None


def read_port(path: Path) -> int | None:
    """Recover the PORT variable from an installed artifact, if readable."""
    value = read_variable(path, "PORT")
    return int(value) if value and value.isdigit() else None
