"""Tests for entry file options and runtime selection."""

import sys

import pytest

from warden.config import config
from warden.errors import InvalidEntry
from warden.runtime import parse_env, runtime_for, validate_host, validate_port


def test_parse_env_keeps_order():
    assert parse_env(["B=2", "A=1", "EMPTY=", "URL=http://x?a=b"]) == (
        ("B", "2"),
        ("A", "1"),
        ("EMPTY", ""),
        ("URL", "http://x?a=b"),
    )


@pytest.mark.parametrize("item", ["NOVALUE", "1BAD=x", "BAD-KEY=x", "=x"])
def test_parse_env_rejects_bad_keys(item):
    with pytest.raises(InvalidEntry):
        parse_env([item])


def test_parse_env_rejects_newlines():
    with pytest.raises(InvalidEntry, match="newlines"):
        parse_env(["KEY=a\nExecStart=/bin/sh"])


def test_privileged_port_warns(caplog):
    assert validate_port(80) == 80
    assert "privileged" in caplog.text


def test_runtime_for_typescript(tmp_path, monkeypatch):
    monkeypatch.setattr(config, "bun_path", "/opt/bun")

    assert runtime_for(tmp_path / "app.ts") == ("/opt/bun", "run")


def test_runtime_for_python(tmp_path, monkeypatch):
    monkeypatch.setattr(config, "python_path", "")

    assert runtime_for(tmp_path / "app.py") == (sys.executable,)


def test_runtime_for_missing_bun(tmp_path, monkeypatch):
    monkeypatch.setattr(config, "bun_path", "")
    monkeypatch.setattr("warden.runtime.shutil.which", lambda name: None)

    with pytest.raises(InvalidEntry, match="Bun runtime not found"):
        runtime_for(tmp_path / "app.js")


def test_runtime_for_executable(tmp_path):
    script = tmp_path / "serve"
    script.write_text("#!/bin/sh\n")
    script.chmod(0o755)

    assert runtime_for(script) == ()


def test_runtime_for_unknown(tmp_path):
    data = tmp_path / "notes.txt"
    data.write_text("hi")
    data.chmod(0o644)

    with pytest.raises(InvalidEntry):
        runtime_for(data)


@pytest.mark.parametrize("host", ["localhost", "127.0.0.1", "0.0.0.0", "::1", "api.example.com"])
def test_validate_host_accepts(host):
    assert validate_host(host) == host


@pytest.mark.parametrize("host", ["", "bad host", "a;rm -rf /", "-leading.example", "x" * 254])
def test_validate_host_rejects(host):
    with pytest.raises(InvalidEntry, match="Invalid host"):
        validate_host(host)
