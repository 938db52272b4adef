"""Tests for alert state, thresholds, cooldown and webhook delivery."""

import json

import httpx
import pytest

from warden.alerts import AlertManager, AlertState
from warden.errors import WardenError
from warden.monitor import ProcessMetrics


def hot(cpu=95.0, memory=10.0):
    return ProcessMetrics(pid=1, cpu_percent=cpu, memory_percent=memory)


class Recorder:
    """httpx transport that records posted JSON bodies."""

    def __init__(self, status_code=200):
        self.requests = []
        self.status_code = status_code

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append((str(request.url), json.loads(request.content)))
        return httpx.Response(self.status_code)


@pytest.fixture
def path(tmp_path):
    return tmp_path / "alerts.json"


class TestState:
    def test_defaults_when_missing(self, path):
        state = AlertState.load(path)

        assert state.enabled
        assert state.thresholds.cpu == 80.0
        assert state.cooldown_seconds == 300

    def test_defaults_when_corrupt(self, path):
        path.write_text("{not json")

        assert AlertState.load(path) == AlertState()

    def test_mutations_are_saved(self, path):
        manager = AlertManager(path)

        manager.configure(webhook_url="https://hooks.example.com/x", cpu=50, cooldown=60)
        manager.set_service("api", enabled=False)

        reloaded = AlertState.load(path)
        assert reloaded.webhook_url == "https://hooks.example.com/x"
        assert reloaded.thresholds.cpu == 50
        assert reloaded.cooldown_seconds == 60
        assert reloaded.services["api"].enabled is False

    def test_invalid_setting_is_rejected(self, path):
        manager = AlertManager(path)

        with pytest.raises(WardenError, match="memory"):
            manager.configure(memory=150)
        assert manager.state.thresholds.memory == 85.0

    def test_empty_webhook_clears_it(self, path):
        manager = AlertManager(path)
        manager.configure(webhook_url="https://hooks.example.com/x")

        manager.configure(webhook_url="")

        assert manager.state.webhook_url is None


class TestEvaluate:
    def test_cpu_breach(self, path):
        breaches = AlertManager(path).evaluate("api", hot())

        assert breaches == ["CPU usage (95.0%) exceeds threshold (80.0%)"]

    def test_memory_breach(self, path):
        breaches = AlertManager(path).evaluate("api", hot(cpu=1.0, memory=90.0))

        assert len(breaches) == 1
        assert breaches[0].startswith("Memory usage")

    def test_per_service_threshold_override(self, path):
        manager = AlertManager(path)
        manager.set_service("api", enabled=True, cpu=99.0)

        assert manager.evaluate("api", hot()) == []
        assert manager.evaluate("web", hot()) != []

    def test_disabled_service(self, path):
        manager = AlertManager(path)
        manager.set_service("api", enabled=False)

        assert manager.evaluate("api", hot()) == []

    def test_globally_disabled(self, path):
        manager = AlertManager(path)
        manager.configure(enabled=False)

        assert manager.evaluate("api", hot()) == []


class TestDelivery:
    @pytest.mark.asyncio
    async def test_check_posts_and_records(self, path):
        recorder = Recorder()
        manager = AlertManager(path, transport=httpx.MockTransport(recorder))
        manager.configure(webhook_url="https://hooks.example.com/x")

        breaches = await manager.check("api", hot(), now=1000.0)

        assert len(breaches) == 1
        url, body = recorder.requests[0]
        assert url == "https://hooks.example.com/x"
        assert body["service"] == "api"
        assert body["alerts"] == breaches
        assert body["severity"] == "warning"
        assert AlertState.load(path).last_alerts["api"] == 1000.0

    @pytest.mark.asyncio
    async def test_cooldown(self, path):
        recorder = Recorder()
        manager = AlertManager(path, transport=httpx.MockTransport(recorder))
        manager.configure(webhook_url="https://hooks.example.com/x", cooldown=300)

        await manager.check("api", hot(), now=1000.0)
        assert await manager.check("api", hot(), now=1100.0) == []
        assert await manager.check("api", hot(), now=1300.0) != []

        assert len(recorder.requests) == 2

    @pytest.mark.asyncio
    async def test_cooldown_survives_reload(self, path):
        manager = AlertManager(path, transport=httpx.MockTransport(Recorder()))
        await manager.check("api", hot(), now=1000.0)

        assert not AlertManager(path).should_send("api", now=1010.0)

    @pytest.mark.asyncio
    async def test_webhook_failure_is_reported(self, path):
        manager = AlertManager(path, transport=httpx.MockTransport(Recorder(status_code=500)))
        manager.configure(webhook_url="https://hooks.example.com/x")

        ok, error = await manager.send_alert("api", ["CPU usage high"])

        assert not ok
        assert error == "Webhook returned 500"

    @pytest.mark.asyncio
    async def test_test_webhook_without_url(self, path):
        ok, error = await AlertManager(path).test_webhook()

        assert not ok
        assert error == "No webhook URL configured"
