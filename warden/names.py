"""
Service identifier validation and platform qualification.

Raw user input becomes a service identifier only through validate(). The
qualified form (with the platform namespace prefix) is built only here.
"""

import re
from pathlib import Path

from .errors import InvalidName
from .platforms import PlatformCapability, PlatformFamily

MAX_NAME_LENGTH = 64

_NAME_PATTERN = re.compile(r"^[A-Za-z0-9._-]+$")

_PREFIXES = {
    PlatformFamily.LINUX: "",
    PlatformFamily.MACOS: "warden.",
    PlatformFamily.WINDOWS: "Warden_",
    PlatformFamily.UNSUPPORTED: "",
}


def validate(raw: str) -> str:
    """Return raw as a service identifier or raise InvalidName."""
    if not isinstance(raw, str) or not raw:
        raise InvalidName(str(raw or ""), "name must not be empty")
    if len(raw) > MAX_NAME_LENGTH:
        raise InvalidName(raw, f"name must be at most {MAX_NAME_LENGTH} characters")
    if "/" in raw or ".." in raw:
        raise InvalidName(raw, "name must not contain '/' or '..'")
    if not _NAME_PATTERN.match(raw):
        raise InvalidName(raw, "only letters, digits, '.', '_' and '-' are allowed")
    return raw


def is_valid(raw: str) -> bool:
    try:
        validate(raw)
    except InvalidName:
        return False
    return True


def qualify(identifier: str, capability: PlatformCapability) -> str:
    """Return the platform-qualified name for a validated identifier."""
    return f"{_PREFIXES[capability.family]}{identifier}"


def unqualify(qualified: str, capability: PlatformCapability) -> str | None:
    """Strip the platform prefix; None if the name is not one of ours."""
    prefix = _PREFIXES[capability.family]
    if prefix and not qualified.startswith(prefix):
        return None
    identifier = qualified[len(prefix):]
    return identifier if is_valid(identifier) else None


def derive_name(entry: Path) -> str:
    """Propose an identifier from an entry file name (e.g. app.ts -> app)."""
    return validate(Path(entry).stem)
