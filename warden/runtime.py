"""
Entry file handling for `start`.

Checks the entry path, port, host and environment options, picks the runtime
that executes the entry (Bun for JavaScript/TypeScript, Python for .py
files) and builds TypeScript entries ahead of time when asked.
"""

import ipaddress
import logging
import os
import re
import shutil
import sys
from pathlib import Path

from .config import config
from .errors import InvalidEntry
from .runner import CommandRunner

logger = logging.getLogger(__name__)

JS_EXTENSIONS = {".js", ".mjs", ".cjs", ".jsx", ".ts", ".mts", ".tsx"}
BUILD_DIR = ".warden-build"

_ENV_KEY_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_HOSTNAME_RE = re.compile(
    r"^[A-Za-z0-9]([A-Za-z0-9-]{0,61}[A-Za-z0-9])?(\.[A-Za-z0-9]([A-Za-z0-9-]{0,61}[A-Za-z0-9])?)*$"
)


def resolve_entry(entry: str | Path, allowed_roots: list[Path] | None = None) -> Path:
    """Resolve the entry file and make sure it is a file under an allowed root."""
    path = Path(entry).expanduser().resolve()
    if not path.exists():
        raise InvalidEntry(f"File not found: {path}")
    if not path.is_file():
        raise InvalidEntry(f"Not a file: {path}")

    if allowed_roots is None:
        allowed_roots = [Path.cwd(), Path.home()]
    roots = [Path(root).resolve() for root in allowed_roots]
    if not any(path == root or root in path.parents for root in roots):
        raise InvalidEntry(f"Security: file path outside allowed directories: {path}")
    return path


def validate_port(port: int) -> int:
    if not 1 <= port <= 65535:
        raise InvalidEntry(f"Invalid port number: {port}. Must be 1-65535")
    if port < 1024:
        logger.warning(f"Port {port} is privileged (< 1024); use a port >= 1024 for user services")
    return port


def validate_host(host: str) -> str:
    """Accept localhost, an IPv4/IPv6 address or a DNS hostname."""
    try:
        ipaddress.ip_address(host)
        return host
    except ValueError:
        pass
    if len(host) <= 253 and _HOSTNAME_RE.match(host):
        return host
    raise InvalidEntry(f"Security: Invalid host: {host}")


def parse_env(items: list[str] | None) -> tuple[tuple[str, str], ...]:
    """Parse KEY=VALUE options, keeping their order."""
    pairs = []
    for item in items or []:
        key, sep, value = item.partition("=")
        key = key.strip()
        if not sep or not _ENV_KEY_RE.match(key):
            raise InvalidEntry(f"Invalid environment variable '{item}': expected KEY=VALUE")
        if "\n" in value or "\r" in value or "\0" in value:
            raise InvalidEntry(f"Environment variable {key} must not contain newlines")
        pairs.append((key, value))
    return tuple(pairs)


def find_bun() -> str:
    bun = config.bun_path or shutil.which("bun")
    if not bun:
        raise InvalidEntry("Bun runtime not found on PATH; set WARDEN_BUN_PATH")
    return bun


def find_python() -> str:
    return config.python_path or sys.executable


def runtime_for(entry: Path) -> tuple[str, ...]:
    """Return the argv prefix that executes the entry file."""
    suffix = entry.suffix.lower()
    if suffix == ".py":
        return (find_python(),)
    if suffix in JS_EXTENSIONS:
        return (find_bun(), "run")
    if os.access(entry, os.X_OK):
        return ()
    raise InvalidEntry(f"Don't know how to run {entry.name}; use a .js, .ts or .py entry or make it executable")


async def build_entry(entry: Path, runner: CommandRunner, service: str | None = None) -> Path:
    """Bundle a TypeScript entry with `bun build`; returns the built file."""
    if entry.suffix.lower() not in (".ts", ".mts", ".tsx"):
        logger.warning(f"--build only applies to TypeScript entries; running {entry.name} as is")
        return entry

    out_dir = entry.parent / BUILD_DIR
    try:
        out_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise InvalidEntry(f"Cannot create build directory {out_dir}: {e}")

    await runner.run(
        [find_bun(), "build", str(entry), "--outdir", str(out_dir), "--target", "bun", "--minify"],
        service=service,
        timeout=max(runner.timeout, 300),
    )
    output = out_dir / f"{entry.stem}.js"
    if not output.exists():
        raise InvalidEntry(f"Build finished but {output} was not produced")
    logger.info(f"Built {entry} to {output}")
    return output
