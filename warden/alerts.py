"""
Resource alerts for managed services.

Alert settings, per-service overrides and the time of the last alert per
service live in one AlertState, loaded from `<configDir>/alerts.json` and
saved after every change. Alerts are POSTed as JSON to a webhook with
httpx; a cooldown keeps a misbehaving service from flooding it.
"""

import json
import logging
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import httpx
from pydantic import BaseModel, Field, ValidationError

from .errors import WardenError
from .monitor import ProcessMetrics

logger = logging.getLogger(__name__)

ALERTS_FILE = "alerts.json"


class Thresholds(BaseModel):
    cpu: float = Field(80.0, ge=0, description="CPU usage percent")
    memory: float = Field(85.0, ge=0, le=100, description="Memory usage percent of system RAM")


class ThresholdOverride(BaseModel):
    cpu: Optional[float] = Field(None, ge=0)
    memory: Optional[float] = Field(None, ge=0, le=100)


class ServiceAlert(BaseModel):
    enabled: bool = True
    thresholds: ThresholdOverride = Field(default_factory=ThresholdOverride)


class AlertState(BaseModel):
    """Everything the alert subsystem remembers between runs."""

    enabled: bool = True
    webhook_url: Optional[str] = None
    thresholds: Thresholds = Field(default_factory=Thresholds)
    cooldown_seconds: int = Field(300, ge=0, description="Seconds between alerts for one service")
    services: dict[str, ServiceAlert] = Field(default_factory=dict)
    last_alerts: dict[str, float] = Field(default_factory=dict)

    @classmethod
    def load(cls, path: Path) -> "AlertState":
        """Read state from disk; defaults when the file is missing or corrupt."""
        path = Path(path)
        if not path.exists():
            return cls()
        try:
            return cls.model_validate_json(path.read_text(encoding="utf-8"))
        except (OSError, ValueError, ValidationError) as e:
            logger.warning(f"Failed to load alert config {path}, using defaults: {e}")
            return cls()

    def save(self, path: Path):
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.model_dump_json(indent=2), encoding="utf-8")
        logger.debug(f"Saved alert config to {path}")

    def thresholds_for(self, identifier: str) -> Thresholds:
        """Global thresholds with any per-service override applied."""
        service = self.services.get(identifier)
        if service is None:
            return self.thresholds
        overrides = service.thresholds.model_dump(exclude_none=True)
        return self.thresholds.model_copy(update=overrides)

    def is_enabled_for(self, identifier: str) -> bool:
        service = self.services.get(identifier)
        return self.enabled and (service is None or service.enabled)


class AlertManager:
    """Mutates and persists an AlertState; evaluates and delivers alerts."""

    def __init__(self, path: Path, transport: httpx.AsyncBaseTransport | None = None):
        self.path = Path(path)
        self.state = AlertState.load(self.path)
        self._transport = transport

    def configure(
        self,
        enabled: bool | None = None,
        webhook_url: str | None = None,
        cpu: float | None = None,
        memory: float | None = None,
        cooldown: int | None = None,
    ) -> AlertState:
        """Update global settings; only the given values change."""
        data = self.state.model_dump()
        changed = []
        for key, value in (("enabled", enabled), ("cooldown_seconds", cooldown)):
            if value is not None:
                data[key] = value
                changed.append(key)
        if webhook_url is not None:
            data["webhook_url"] = webhook_url or None
            changed.append("webhook_url")
        for key, value in (("cpu", cpu), ("memory", memory)):
            if value is not None:
                data["thresholds"][key] = value
                changed.append(key)

        # Validate the merged result before it replaces the current state
        try:
            self.state = AlertState.model_validate(data)
        except ValidationError as e:
            error = e.errors()[0]
            field = ".".join(str(part) for part in error["loc"])
            raise WardenError(f"Invalid alert setting {field}: {error['msg']}")
        self.state.save(self.path)
        logger.info(f"Alert config updated: {', '.join(changed) or 'no changes'}")
        return self.state

    def set_service(self, identifier: str, enabled: bool, cpu: float | None = None, memory: float | None = None):
        """Enable or disable alerts for one service, optionally with its own thresholds."""
        current = self.state.services.get(identifier, ServiceAlert())
        override = current.thresholds.model_copy(
            update={k: v for k, v in {"cpu": cpu, "memory": memory}.items() if v is not None}
        )
        self.state.services[identifier] = ServiceAlert(enabled=enabled, thresholds=override)
        self.state.save(self.path)
        logger.info(f"Alerts {'enabled' if enabled else 'disabled'} for {identifier}")

    def evaluate(self, identifier: str, metrics: ProcessMetrics) -> list[str]:
        """Return a message for every threshold the metrics breach."""
        if not self.state.is_enabled_for(identifier):
            return []
        thresholds = self.state.thresholds_for(identifier)
        breaches = []
        if metrics.cpu_percent > thresholds.cpu:
            breaches.append(f"CPU usage ({metrics.cpu_percent}%) exceeds threshold ({thresholds.cpu}%)")
        if metrics.memory_percent > thresholds.memory:
            breaches.append(
                f"Memory usage ({metrics.memory_percent}%) exceeds threshold ({thresholds.memory}%)"
            )
        return breaches

    def should_send(self, identifier: str, now: float | None = None) -> bool:
        """False while the service is still inside its cooldown window."""
        now = time.time() if now is None else now
        last = self.state.last_alerts.get(identifier)
        return last is None or now - last >= self.state.cooldown_seconds

    def record(self, identifier: str, now: float | None = None):
        self.state.last_alerts[identifier] = time.time() if now is None else now
        self.state.save(self.path)

    async def _post(self, payload: dict) -> tuple[bool, str | None]:
        if not self.state.webhook_url:
            return False, "No webhook URL configured"
        try:
            async with httpx.AsyncClient(transport=self._transport) as client:
                response = await client.post(self.state.webhook_url, json=payload, timeout=10.0)
            if response.is_success:
                return True, None
            error = f"Webhook returned {response.status_code}"
        except httpx.HTTPError as e:
            error = f"Failed to send webhook alert: {e}"
        logger.error(error)
        return False, error

    async def send_alert(self, identifier: str, breaches: list[str]) -> tuple[bool, str | None]:
        """Log the alert and deliver it to the webhook, if one is configured."""
        logger.warning(f"Alert for {identifier}: {'; '.join(breaches)}")
        if not self.state.webhook_url:
            return False, None
        return await self._post(
            {
                "service": identifier,
                "alerts": breaches,
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "severity": "warning",
            }
        )

    async def test_webhook(self) -> tuple[bool, str | None]:
        return await self._post(
            {
                "test": True,
                "message": "Warden alert system test",
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }
        )

    async def check(self, identifier: str, metrics: ProcessMetrics, now: float | None = None) -> list[str]:
        """
        Evaluate one service and alert if needed.

        Returns the breaches that were alerted on; empty when nothing was
        breached or the service is still cooling down.
        """
        breaches = self.evaluate(identifier, metrics)
        if not breaches or not self.should_send(identifier, now):
            return []
        await self.send_alert(identifier, breaches)
        self.record(identifier, now)
        return breaches


def describe(state: AlertState) -> str:
    """Pretty JSON of the state, without alert timestamps."""
    return json.dumps(state.model_dump(exclude={"last_alerts"}), indent=2)
