"""Tests for process metrics."""

import os
from unittest.mock import patch

import psutil
import pytest

from warden.monitor import format_uptime, get_current_metrics, service_urls


def test_no_pid_gives_zero_metrics():
    metrics = get_current_metrics(None)

    assert metrics.pid is None
    assert metrics.cpu_percent == 0.0
    assert metrics.memory_mb == 0.0


def test_metrics_for_own_process():
    metrics = get_current_metrics(os.getpid(), interval=0.01)

    assert metrics.pid == os.getpid()
    assert metrics.memory_mb > 0
    assert metrics.uptime_seconds >= 0


def test_vanished_process():
    with patch("warden.monitor.psutil.Process", side_effect=psutil.NoSuchProcess(424242)):
        metrics = get_current_metrics(424242)

    assert metrics.pid is None


@pytest.mark.parametrize(
    "seconds, text",
    [(0, "-"), (42, "42s"), (125, "2m 5s"), (7500, "2h 5m"), (3 * 86400 + 4 * 3600, "3d 4h")],
)
def test_format_uptime(seconds, text):
    assert format_uptime(seconds) == text


def test_service_urls():
    assert service_urls(4001) == {
        "health": "http://localhost:4001/healthz",
        "metrics": "http://localhost:4001/metrics",
    }
    assert service_urls(None) == {"health": None, "metrics": None}


def test_service_urls_use_protocol_and_host():
    assert service_urls(8443, "api.example.com", "https") == {
        "health": "https://api.example.com:8443/healthz",
        "metrics": "https://api.example.com:8443/metrics",
    }
    # bind-all addresses fall back to the service host
    assert service_urls(4001, "0.0.0.0")["health"] == "http://localhost:4001/healthz"
    assert service_urls(4001, "::1")["health"] == "http://[::1]:4001/healthz"
