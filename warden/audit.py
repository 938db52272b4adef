"""
Pre-flight security audit of service entry files.

A best-effort static scan of the entry script's source and file mode. Each
rule is evaluated independently and every match is reported. Critical
findings block `start`; warnings are advisory. Patterns cover JavaScript,
TypeScript and Python entry points.
"""

import logging
import re
import stat
from dataclasses import dataclass
from pathlib import Path

from .errors import InvalidEntry
from .models import AuditFinding, AuditReport, Severity

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Rule:
    severity: Severity
    message: str
    patterns: tuple[re.Pattern, ...]

    def first_match_line(self, content: str) -> int | None:
        """Line number of the earliest match across all patterns."""
        offsets = [m.start() for m in (p.search(content) for p in self.patterns) if m]
        if not offsets:
            return None
        return content.count("\n", 0, min(offsets)) + 1


def _rule(severity: Severity, message: str, *patterns: str) -> Rule:
    return Rule(severity, message, tuple(re.compile(p, re.MULTILINE) for p in patterns))


RULES = (
    _rule(
        Severity.CRITICAL,
        "Use of eval() detected",
        r"(?<![\w.$])eval\s*\(",
    ),
    _rule(
        Severity.CRITICAL,
        "Dynamic function construction detected",
        r"(?<![\w.$])(?:new\s+)?Function\s*\(",
        r"(?<![\w.$])exec\s*\(",
        r"(?<![\w.$])compile\s*\(",
        r"types\.FunctionType\s*\(",
    ),
    _rule(
        Severity.CRITICAL,
        "Unsafe shell execution detected",
        r"child_process\.exec(?:Sync)?\s*\(",
        r"require\s*\(\s*[\"'](?:node:)?child_process[\"']\s*\)",
        r"from\s+[\"'](?:node:)?child_process[\"']",
        r"(?<![\w.$])execSync\s*\(",
        r"(?<![\w$])spawn(?:Sync)?\s*\(",
        r"os\.system\s*\(",
        r"os\.popen\s*\(",
        r"shell\s*=\s*True",
    ),
    _rule(
        Severity.CRITICAL,
        "Direct low-level filesystem module import (broad file system access)",
        r"require\s*\(\s*[\"'](?:node:)?fs[\"']\s*\)",
        r"from\s+[\"'](?:node:)?fs[\"']",
        r"^\s*import\s+shutil\b",
        r"^\s*from\s+shutil\s+import\b",
    ),
    _rule(
        Severity.CRITICAL,
        "Potential command injection via environment variable concatenation",
        r"process\.env\.\w+\s*\+\s*[\"'`]",
        r"Bun\.env\.\w+\s*\+\s*[\"'`]",
        r"os\.environ\[[^\]]+\]\s*\+\s*[\"']",
        r"os\.(?:getenv|environ\.get)\([^)]*\)\s*\+\s*[\"']",
    ),
    _rule(
        Severity.WARNING,
        "Network access detected - ensure outbound rules are in place",
        r"(?<![\w.$])fetch\s*\(",
        r"https?\.request\s*\(",
        r"\brequests\.\w+\s*\(",
        r"\bhttpx\.\w+",
        r"urllib\.request",
        r"\bsocket\.\w+\s*\(",
    ),
    _rule(
        Severity.WARNING,
        "File system write access detected - ensure proper sandboxing",
        r"writeFileSync\s*\(",
        r"createWriteStream\s*\(",
        r"Bun\.write\s*\(",
        r"\.write_(?:text|bytes)\s*\(",
        r"(?<![\w.])open\s*\([^)]*[\"'][wax]b?\+?[\"']",
    ),
)


def audit(path: Path) -> AuditReport:
    """Scan an entry file and return its findings."""
    path = Path(path)
    try:
        mode = path.stat().st_mode
        content = path.read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        raise InvalidEntry(f"Cannot read entry file {path}: {e}")

    report = AuditReport()

    if mode & stat.S_IWOTH:
        report.critical.append(AuditFinding(Severity.CRITICAL, "File is world-writable"))

    for rule in RULES:
        line = rule.first_match_line(content)
        if line is None:
            continue
        finding = AuditFinding(rule.severity, f"{rule.message} (line {line})")
        if rule.severity is Severity.CRITICAL:
            report.critical.append(finding)
        else:
            report.warning.append(finding)

    logger.info(
        f"Audited {path}: {len(report.critical)} critical, {len(report.warning)} warnings"
    )
    return report
