"""
Multi-service operations.

Expands a service selector (names, `[a, b]` lists, `all`, `*` wildcards)
into identifiers, asks for confirmation before touching several services,
then runs the operation for every service concurrently. Each service's
outcome is recorded on its own; one failure never stops the others.
"""

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Callable, Optional

from .driver import ServiceDriver
from .errors import InvalidName
from .lifecycle import OPERATIONS
from .models import BatchResult, Outcome
from .names import validate

logger = logging.getLogger(__name__)

ALL = "all"

_BRACKETS_RE = re.compile(r"^\[(.*)\]$", re.DOTALL)
_PATTERN_RE = re.compile(r"^[A-Za-z0-9._*-]+$")


def parse_selector(tokens: list[str] | str) -> list[str]:
    """Split selector tokens into raw names and patterns."""
    if isinstance(tokens, str):
        tokens = [tokens]
    text = " ".join(t.strip() for t in tokens if t and t.strip())
    if not text:
        return []

    match = _BRACKETS_RE.match(text)
    if match:
        text = match.group(1)
    return [part for part in re.split(r"[,\s]+", text) if part]


def is_batch(tokens: list[str]) -> bool:
    """Whether the tokens select more than a single literal service."""
    if len(tokens) != 1:
        return len(tokens) > 1
    token = tokens[0].strip()
    return token == ALL or "[" in token or "*" in token or "," in token


def _wildcard(pattern: str) -> re.Pattern:
    return re.compile("^" + ".*".join(re.escape(part) for part in pattern.split("*")) + "$")


async def expand_selector(tokens: list[str] | str, driver: ServiceDriver) -> list[str]:
    """
    Expand a selector into a duplicate-free, order-preserving identifier list.

    Literal names are validated here, so an invalid one fails the whole
    command before any service is touched. `all` and wildcards are matched
    against the services the native manager currently knows.
    """
    raw = parse_selector(tokens)
    known: Optional[list[str]] = None
    expanded = []

    for item in raw:
        if item == ALL or "*" in item:
            if known is None:
                known = await driver.list_services()
            if item == ALL:
                expanded.extend(known)
            else:
                if not _PATTERN_RE.match(item):
                    raise InvalidName(item, "patterns may only use letters, digits, '.', '_', '-' and '*'")
                pattern = _wildcard(item)
                expanded.extend(name for name in known if pattern.match(name))
        else:
            expanded.append(validate(item))

    return list(dict.fromkeys(expanded))


@dataclass
class BatchSummary:
    """Counts derived from a batch's results."""

    total: int
    succeeded: int
    failed: int

    @property
    def success_percent(self) -> float:
        return (self.succeeded / self.total * 100) if self.total else 0.0

    @property
    def failure_percent(self) -> float:
        return (self.failed / self.total * 100) if self.total else 0.0


def summarize(results: list[BatchResult]) -> BatchSummary:
    succeeded = sum(1 for r in results if r.outcome is Outcome.SUCCESS)
    failed = sum(1 for r in results if r.outcome is Outcome.FAILURE)
    return BatchSummary(total=len(results), succeeded=succeeded, failed=failed)


class BatchOrchestrator:
    """Runs one lifecycle operation across many services."""

    # Operations that ask for confirmation even for a single selected service
    DESTRUCTIVE = {"remove"}

    def __init__(
        self,
        driver: ServiceDriver,
        confirm: Callable[[str, list[str]], bool],
        notify: Callable[[str], None] | None = None,
    ):
        self.driver = driver
        self._confirm = confirm
        self._notify = notify or (lambda message: logger.info(message))

    def needs_confirmation(self, operation: str, services: list[str], force: bool) -> bool:
        if force:
            return False
        threshold = 1 if operation in self.DESTRUCTIVE else 2
        return len(services) >= threshold

    async def run(
        self,
        selector: list[str] | str,
        operation: str,
        force: bool = False,
        **options,
    ) -> list[BatchResult]:
        """
        Expand the selector and run the operation on every selected service.

        Returns one BatchResult per service, or an empty list when nothing
        matched or the user declined the confirmation.
        """
        func = OPERATIONS[operation]
        services = await expand_selector(selector, self.driver)
        if not services:
            self._notify("No services found matching the selection")
            return []

        if self.needs_confirmation(operation, services, force):
            question = f"About to {operation} {len(services)} service(s). Are you sure?"
            if not self._confirm(question, services):
                self._notify(f"{operation.capitalize()} operation cancelled")
                logger.info(f"Batch {operation} cancelled by user")
                return []

        self._notify(f"Running {operation} on {len(services)} service(s)...")
        return list(
            await asyncio.gather(*(self._run_one(func, operation, name, options) for name in services))
        )

    async def _run_one(self, func, operation: str, identifier: str, options: dict) -> BatchResult:
        try:
            await func(self.driver, identifier, **options)
        except Exception as e:
            logger.error(f"Batch {operation} failed for {identifier}: {e}")
            return BatchResult(service=identifier, outcome=Outcome.FAILURE, error=str(e))
        logger.info(f"Batch {operation} succeeded for {identifier}")
        return BatchResult(service=identifier, outcome=Outcome.SUCCESS)
