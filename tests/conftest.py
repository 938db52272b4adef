"""Shared fixtures: a scripted command runner and an in-memory systemd."""

import os
from pathlib import Path

import pytest

from warden.config import config
from warden.errors import NativeManagerFailed
from warden.platforms import PlatformCapability, detect, ensure_directories
from warden.runner import CommandResult


class FakeRunner:
    """Stands in for CommandRunner; records argv and answers from a handler."""

    def __init__(self, handler=None):
        self.timeout = 60
        self.calls: list[list[str]] = []
        self.attached: list[list[str]] = []
        self.handler = handler or (lambda argv: CommandResult(argv=argv, returncode=0))

    async def run(self, argv, check=True, service=None, timeout=None):
        self.calls.append(list(argv))
        result = self.handler(list(argv))
        if check and not result.ok:
            raise NativeManagerFailed(result.message, service=service, argv=argv, returncode=result.returncode)
        return result

    def attach(self, argv):
        self.attached.append(list(argv))
        return 0

    def commands(self, prefix_len=3):
        """Calls shortened to their first few arguments, for ordering checks."""
        return [tuple(call[:prefix_len]) for call in self.calls]


class SystemdEmulator:
    """
    Minimal `systemctl --user` that keeps unit state in memory.

    Unit files are read from the capability's service directory, so the
    emulator sees exactly what the definition generator wrote.
    """

    def __init__(self, service_dir: Path):
        self.service_dir = service_dir
        self.units: dict[str, dict] = {}
        self.fail: set[tuple[str, str]] = set()

    def _file(self, unit: str) -> Path:
        return self.service_dir / unit

    def _result(self, argv, returncode=0, stdout="", stderr=""):
        return CommandResult(argv=argv, returncode=returncode, stdout=stdout, stderr=stderr)

    def _unit_state(self, unit: str) -> dict:
        return self.units.setdefault(unit, {"enabled": False, "active": False, "started": False})

    def install(self, names, active=True, port=3000):
        """Put warden units on disk and load them as if they had been started."""
        for name in names:
            self._file(f"{name}.service").write_text(
                f'[Unit]\nDescription=Warden Service: {name}\n\n[Service]\nEnvironment="PORT={port}"\n'
            )
        self(["systemctl", "--user", "daemon-reload"])
        for name in names:
            self.units[f"{name}.service"].update(enabled=True, active=active, started=True)

    def __call__(self, argv):
        assert argv[:2] == ["systemctl", "--user"], argv
        command = argv[2]
        unit = argv[3] if len(argv) > 3 else ""

        if (command, unit) in self.fail:
            return self._result(argv, 1, stderr=f"Job for {unit} failed.")

        if command == "daemon-reload":
            for name in list(self.units):
                if not self._file(name).exists():
                    del self.units[name]
            for path in sorted(self.service_dir.glob("*.service")):
                self._unit_state(path.name)
            return self._result(argv)

        if command == "list-units":
            lines = []
            for name in self.units:
                description = ""
                for line in self._file(name).read_text().splitlines():
                    if line.startswith("Description="):
                        description = line[len("Description="):]
                state = self.units[name]
                active, sub = ("active", "running") if state["active"] else ("inactive", "dead")
                lines.append(f"{name} loaded {active} {sub} {description}")
            return self._result(argv, stdout="\n".join(lines))

        if command == "show":
            if unit not in self.units:
                return self._result(
                    argv,
                    stdout="LoadState=not-found\nActiveState=inactive\nSubState=dead\n"
                    "UnitFileState=\nMainPID=0\nActiveEnterTimestampMonotonic=0\n",
                )
            state = self.units[unit]
            return self._result(
                argv,
                stdout=(
                    "LoadState=loaded\n"
                    f"ActiveState={'active' if state['active'] else 'inactive'}\n"
                    f"SubState={'running' if state['active'] else 'dead'}\n"
                    f"UnitFileState={'enabled' if state['enabled'] else 'disabled'}\n"
                    f"MainPID={os.getpid() if state['active'] else 0}\n"
                    f"ActiveEnterTimestampMonotonic={'1000' if state['started'] else '0'}\n"
                ),
            )

        if unit not in self.units:
            if command == "reset-failed":
                return self._result(argv)
            return self._result(argv, 5, stderr=f"Unit {unit} not loaded.")

        state = self.units[unit]
        if command == "enable":
            state["enabled"] = True
        elif command == "disable":
            state["enabled"] = False
        elif command in ("start", "restart"):
            state["active"] = True
            state["started"] = True
        elif command == "stop":
            state["active"] = False
        elif command != "reset-failed":
            return self._result(argv, 1, stderr=f"Unknown command {command}")
        return self._result(argv)


class LaunchdEmulator:
    """
    Minimal `launchctl` for one GUI domain.

    Tracks which labels are loaded, whether they run, and the disabled
    overrides that survive bootout. Bootstrap reads the plist path it is
    given, so a missing or unwritten plist fails the way launchd does.
    """

    def __init__(self, service_dir: Path):
        self.service_dir = service_dir
        self.loaded: dict[str, dict] = {}
        self.disabled: set[str] = set()
        self.fail: set[tuple[str, str]] = set()

    def _result(self, argv, returncode=0, stdout="", stderr=""):
        return CommandResult(argv=argv, returncode=returncode, stdout=stdout, stderr=stderr)

    def __call__(self, argv):
        assert argv[0] == "launchctl", argv
        command = argv[1]
        target = argv[-1]
        label = Path(target).stem if command == "bootstrap" else target.rsplit("/", 1)[-1]

        if (command, label) in self.fail:
            return self._result(argv, 5, stderr=f"{command} failed: 5: Input/output error")

        if command == "print":
            if label not in self.loaded:
                return self._result(argv, 113, stderr=f'Could not find service "{label}" in domain')
            state = self.loaded[label]
            lines = [f"{target} = {{", f"\tstate = {'running' if state['running'] else 'not running'}"]
            if state["running"]:
                lines.append(f"\tpid = {os.getpid()}")
            lines += ["\tlast exit code = 0", "}"]
            return self._result(argv, stdout="\n".join(lines) + "\n")

        if command == "list":
            lines = ["PID\tStatus\tLabel"]
            lines += [f"{os.getpid() if s['running'] else '-'}\t0\t{name}" for name, s in self.loaded.items()]
            return self._result(argv, stdout="\n".join(lines) + "\n")

        if command == "bootstrap":
            if label in self.disabled:
                return self._result(argv, 5, stderr="Bootstrap failed: 5: Input/output error (service is disabled)")
            if label in self.loaded or not Path(target).exists():
                return self._result(argv, 5, stderr="Bootstrap failed: 5: Input/output error")
            # RunAtLoad
            self.loaded[label] = {"running": True}
            return self._result(argv)

        if command == "enable":
            self.disabled.discard(label)
            return self._result(argv)
        if command == "disable":
            self.disabled.add(label)
            return self._result(argv)

        if label not in self.loaded:
            return self._result(argv, 3, stderr="Boot-out failed: 3: No such process")
        if command == "bootout":
            del self.loaded[label]
        elif command == "kickstart":
            self.loaded[label]["running"] = True
        else:
            return self._result(argv, 1, stderr=f"Unrecognized subcommand: {command}")
        return self._result(argv)


class ScmEmulator:
    """
    Minimal `sc.exe` plus the PowerShell registration step.

    Stopping leaves a service in STOP_PENDING for `stop_delay` further
    queries, the way SCM reports a service still shutting down.
    """

    def __init__(self, service_dir: Path):
        self.service_dir = service_dir
        self.services: dict[str, dict] = {}
        self.fail: set[tuple[str, str]] = set()
        self.stop_delay = 0

    def _result(self, argv, returncode=0, stdout="", stderr=""):
        return CommandResult(argv=argv, returncode=returncode, stdout=stdout, stderr=stderr)

    def _register(self, argv):
        script = Path(argv[-1])
        name = script.stem
        if ("powershell", name) in self.fail or not script.exists():
            return self._result(argv, 1, stderr="New-Service: Access is denied.")
        self.services.setdefault(name, {"state": "STOPPED", "start": "auto", "pending": 0})
        return self._result(argv)

    def _query(self, argv, name):
        service = self.services[name]
        if service["state"] == "STOP_PENDING":
            if service["pending"] > 0:
                service["pending"] -= 1
            else:
                service["state"] = "STOPPED"
        code = {"STOPPED": 1, "STOP_PENDING": 3, "RUNNING": 4}[service["state"]]
        pid = os.getpid() if service["state"] == "RUNNING" else 0
        return self._result(
            argv,
            stdout=(
                f"SERVICE_NAME: {name}\n"
                "        TYPE               : 10  WIN32_OWN_PROCESS\n"
                f"        STATE              : {code}  {service['state']}\n"
                f"        PID                : {pid}\n"
            ),
        )

    def __call__(self, argv):
        if argv[0] == "powershell":
            return self._register(argv)

        assert argv[0] == "sc.exe", argv
        command = argv[1]
        if command == "query":
            lines = [f"SERVICE_NAME: {name}\n" for name in self.services]
            return self._result(argv, stdout="".join(lines))

        name = argv[2]
        if (command, name) in self.fail:
            return self._result(argv, 1, stderr=f"[SC] {command} FAILED 1: Incorrect function.")
        if name not in self.services:
            return self._result(argv, 1060, stderr="[SC] OpenService FAILED 1060: The specified service does not exist")

        service = self.services[name]
        if command == "queryex":
            return self._query(argv, name)
        if command == "config":
            service["start"] = argv[4]
        elif command == "start":
            if service["state"] != "STOPPED":
                return self._result(argv, 1056, stderr="[SC] StartService FAILED 1056: already running")
            service["state"] = "RUNNING"
        elif command == "stop":
            if service["state"] != "RUNNING":
                return self._result(argv, 1062, stderr="[SC] ControlService FAILED 1062: not started")
            if self.stop_delay:
                service["state"] = "STOP_PENDING"
                service["pending"] = self.stop_delay
            else:
                service["state"] = "STOPPED"
        elif command == "delete":
            del self.services[name]
        else:
            return self._result(argv, 1, stderr=f"Unknown command {command}")
        return self._result(argv)


@pytest.fixture(autouse=True)
def fixed_service_host(monkeypatch):
    monkeypatch.setattr(config, "service_host", "localhost")


@pytest.fixture
def linux_capability(tmp_path) -> PlatformCapability:
    capability = detect("Linux", home=tmp_path / "home")
    ensure_directories(capability)
    return capability


@pytest.fixture
def macos_capability(tmp_path) -> PlatformCapability:
    capability = detect("Darwin", home=tmp_path / "home")
    ensure_directories(capability)
    return capability


@pytest.fixture
def windows_capability(tmp_path) -> PlatformCapability:
    capability = detect("Windows", home=tmp_path / "home")
    ensure_directories(capability)
    return capability


@pytest.fixture
def systemd(linux_capability) -> SystemdEmulator:
    return SystemdEmulator(linux_capability.service_dir)


@pytest.fixture
def systemd_runner(systemd) -> FakeRunner:
    return FakeRunner(systemd)


@pytest.fixture
def project(tmp_path, monkeypatch):
    """A project directory as the working directory, with bun available."""
    root = tmp_path / "project"
    root.mkdir()
    monkeypatch.chdir(root)
    monkeypatch.setattr(config, "bun_path", "/usr/local/bin/bun")
    return root


@pytest.fixture
def app_entry(project) -> Path:
    entry = project / "app.ts"
    entry.write_text(
        "const port = Number(Bun.env.PORT ?? 3000);\n"
        "Bun.serve({ port, fetch: () => new Response('ok') });\n"
    )
    entry.chmod(0o644)
    return entry


@pytest.fixture
def launchd(macos_capability) -> LaunchdEmulator:
    return LaunchdEmulator(macos_capability.service_dir)


@pytest.fixture
def scm(windows_capability) -> ScmEmulator:
    return ScmEmulator(windows_capability.service_dir)
