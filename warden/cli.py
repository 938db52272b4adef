"""
Warden command line interface.

Every command detects the platform, builds the matching lifecycle driver
and hands off to the lifecycle or batch modules. Single-service commands
report the typed error directly; name lists, `[a, b]`, `all` and wildcards
go through the batch orchestrator and print a per-service summary.
"""

import asyncio
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

import typer
import uvicorn
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from . import __version__
from .alerts import ALERTS_FILE, AlertManager, describe
from .batch import BatchOrchestrator, is_batch, summarize
from .config import config
from .driver import ServiceDriver
from .errors import ServiceNotFound, WardenError
from .lifecycle import OPERATIONS, get_driver, start_entry
from .models import BatchResult, ServiceState
from .monitor import format_uptime, get_current_metrics, service_overview, service_overviews, service_urls
from .names import validate
from .platforms import PlatformCapability, detect, ensure_directories
from .runner import CommandRunner
from .web import create_app

logger = logging.getLogger(__name__)

app = typer.Typer(
    no_args_is_help=True,
    help="Run scripts as restart-on-failure services under systemd, launchd or the Windows SCM.",
)
alert_app = typer.Typer(no_args_is_help=True, help="Resource alerts and webhook delivery.")
app.add_typer(alert_app, name="alert")

_console = Console()

_PAST = {"start": "started", "stop": "stopped", "restart": "restarted", "remove": "removed"}

# Handlers installed by configure_logging, replaced on every call
_log_handlers: list[logging.Handler] = []

_STATE_STYLES = {
    ServiceState.RUNNING.value: "green",
    ServiceState.STOPPED.value: "yellow",
    ServiceState.FAILED.value: "red",
    ServiceState.ENABLED.value: "cyan",
    ServiceState.INSTALLED.value: "cyan",
    ServiceState.UNKNOWN.value: "dim",
}


def configure_logging(log_file: Path, verbose: bool = False):
    """Log to a rotating file in the config directory and to the console."""
    root = logging.getLogger()
    for handler in _log_handlers:
        root.removeHandler(handler)
        handler.close()
    _log_handlers.clear()

    log_formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    # Rotating file handler
    file_handler = RotatingFileHandler(
        log_file,
        maxBytes=config.log_max_bytes,
        backupCount=config.log_backup_count,
    )
    file_handler.setFormatter(log_formatter)
    file_handler.setLevel(logging.DEBUG if verbose else config.log_level.upper())

    # Console handler
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(log_formatter)
    console_handler.setLevel(logging.INFO if verbose else logging.WARNING)

    root.setLevel(logging.DEBUG)
    for handler in (file_handler, console_handler):
        root.addHandler(handler)
        _log_handlers.append(handler)


def _capability() -> PlatformCapability:
    capability = detect()
    try:
        ensure_directories(capability)
    except OSError as e:
        _error(f"Cannot create warden directories: {e}")
    return capability


def _driver(capability: PlatformCapability | None = None) -> ServiceDriver:
    return get_driver(capability or _capability(), CommandRunner())


def _error(message: str):
    _console.print(f"[red]Error:[/red] {escape(message)}")
    raise typer.Exit(code=1)


def _run(coro):
    """Run a coroutine, turning warden errors into a message and exit code 1."""
    try:
        return asyncio.run(coro)
    except WardenError as e:
        logger.debug(f"Command failed: {e}")
        _error(str(e))


def _confirm(question: str, services: list[str]) -> bool:
    _console.print("Selected services:")
    for name in services:
        _console.print(f"  - {escape(name)}")
    return typer.confirm(question, default=False)


def _print_batch(operation: str, results: list[BatchResult]):
    table = Table(title=f"{operation.capitalize()} results")
    table.add_column("Service", style="bold", no_wrap=True)
    table.add_column("Result")
    table.add_column("Error", style="dim")
    for result in results:
        outcome = "[green]success[/green]" if result.succeeded else "[red]failure[/red]"
        table.add_row(escape(result.service), outcome, escape(result.error or ""))
    _console.print(table)

    summary = summarize(results)
    _console.print(
        f"Total: {summary.total}  "
        f"[green]Succeeded: {summary.succeeded} ({summary.success_percent:.1f}%)[/green]  "
        f"[red]Failed: {summary.failed} ({summary.failure_percent:.1f}%)[/red]"
    )


def _lifecycle_command(operation: str, names: list[str], force: bool, **options):
    """Run operation for one service directly, or for a selection as a batch."""
    driver = _driver()

    if not is_batch(names):
        identifier = _run(_single(driver, operation, names[0], **options))
        _console.print(f"[green]✓[/green] Service '{escape(identifier)}' {_PAST[operation]}")
        return

    orchestrator = BatchOrchestrator(
        driver,
        confirm=_confirm,
        notify=lambda message: _console.print(escape(message)),
    )
    results = _run(orchestrator.run(names, operation, force=force, **options))
    if not results:
        return
    _print_batch(operation, results)
    if any(not r.succeeded for r in results):
        raise typer.Exit(code=1)


async def _single(driver: ServiceDriver, operation: str, raw: str, **options) -> str:
    identifier = validate(raw)
    await OPERATIONS[operation](driver, identifier, **options)
    return identifier


@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show info-level log output"),
):
    """Configure logging for every command."""
    capability = _capability()
    configure_logging(capability.config_dir / "warden.log", verbose)


@app.command()
def version():
    """Show the warden version."""
    _console.print(f"warden {__version__}")


@app.command()
def start(
    entry: Path = typer.Argument(..., help="Entry file (.js, .ts or .py)"),
    name: Optional[str] = typer.Option(None, "--name", "-n", help="Service name (defaults to the file name)"),
    port: int = typer.Option(config.default_port, "--port", "-p", help="Port the service listens on"),
    env: Optional[list[str]] = typer.Option(None, "--env", "-e", help="Environment variable KEY=VALUE"),
    otel: bool = typer.Option(False, "--otel", help="Inject OpenTelemetry variables"),
    prometheus: bool = typer.Option(False, "--prometheus", help="Inject Prometheus metrics variables"),
    build: bool = typer.Option(False, "--build", help="Build TypeScript ahead of time with bun"),
    host: Optional[str] = typer.Option(None, "--host", help="Address the service is told to listen on (HOST)"),
    https: bool = typer.Option(False, "--https", help="Tell the service to serve HTTPS (PROTOCOL=https)"),
):
    """Audit an entry file and run it as a managed service."""
    driver = _driver()
    result = _run(
        start_entry(
            entry,
            driver,
            name=name,
            port=port,
            env=env,
            otel=otel,
            prometheus=prometheus,
            build=build,
            otel_endpoint=config.otel_endpoint,
            host=host,
            https=https,
        )
    )

    for finding in result.report.warning:
        _console.print(f"[yellow]⚠ {escape(finding.message)}[/yellow]")

    definition = result.definition
    identifier = definition.identifier
    if result.created:
        action = "created and started"
    elif result.changed:
        action = "updated and started"
    else:
        action = "started"
    _console.print(f"[green]✓[/green] Service '{escape(identifier)}' {action} ({result.status.state.value})")
    _console.print(f"  Definition: {result.artifact.path}")

    urls = service_urls(definition.port, definition.host, definition.protocol)
    _console.print(f"  Health:  {urls['health']}")
    _console.print(f"  Metrics: {urls['metrics']}")


@app.command()
def stop(
    names: list[str] = typer.Argument(..., help="Service names, [a, b], a wildcard or 'all'"),
    force: bool = typer.Option(False, "--force", "-f", help="Skip the confirmation prompt"),
):
    """Stop one or more services."""
    _lifecycle_command("stop", names, force)


@app.command()
def restart(
    names: list[str] = typer.Argument(..., help="Service names, [a, b], a wildcard or 'all'"),
    force: bool = typer.Option(False, "--force", "-f", help="Skip the confirmation prompt"),
):
    """Restart one or more services."""
    _lifecycle_command("restart", names, force)


def remove(
    names: list[str] = typer.Argument(..., help="Service names, [a, b], a wildcard or 'all'"),
    force: bool = typer.Option(False, "--force", "-f", help="Skip the confirmation prompt"),
    purge_logs: bool = typer.Option(False, "--remove", help="Also delete the service's log files"),
):
    """Stop, disable and delete one or more services."""
    _lifecycle_command("remove", names, force, purge_logs=purge_logs)


app.command("remove")(remove)
app.command("delete", help="Alias for remove.")(remove)


@app.command()
def status(name: Optional[str] = typer.Argument(None, help="Show a single service")):
    """Show the state and resource usage of managed services."""
    driver = _driver()

    async def collect() -> list[dict]:
        if name:
            identifier = validate(name)
            overview = await service_overview(driver, identifier)
            if overview["state"] == ServiceState.UNKNOWN.value:
                raise ServiceNotFound(identifier)
            return [overview]
        return await service_overviews(driver, await driver.list_services())

    overviews = _run(collect())
    if not overviews:
        _console.print("No services found")
        return

    table = Table(title=f"Warden services ({driver.capability.service_manager})")
    table.add_column("Name", style="bold", no_wrap=True)
    table.add_column("State")
    table.add_column("PID", justify="right")
    table.add_column("CPU %", justify="right")
    table.add_column("Memory", justify="right")
    table.add_column("Uptime", justify="right")
    table.add_column("Health", style="dim")

    for o in overviews:
        style = _STATE_STYLES.get(o["state"], "white")
        running = o["state"] == ServiceState.RUNNING.value
        table.add_row(
            escape(o["name"]),
            f"[{style}]{o['state']}[/{style}]",
            str(o["pid"]) if o["pid"] else "-",
            f"{o['cpu_percent']:.1f}" if running else "-",
            f"{o['memory_mb']:.1f} MB" if running else "-",
            format_uptime(o["uptime_seconds"]) if running else "-",
            o["urls"]["health"] or "-",
        )
    _console.print(table)
    for o in overviews:
        if o.get("error"):
            _console.print(f"[yellow]⚠ {escape(o['name'])}: {escape(o['error'])}[/yellow]")


@app.command()
def logs(
    name: str = typer.Argument(..., help="Service name"),
    lines: int = typer.Option(50, "--lines", "-n", help="Number of lines to show"),
    follow: bool = typer.Option(False, "--follow", "-f", help="Keep streaming new output"),
):
    """Show a service's output using the platform's log viewer."""
    driver = _driver()
    try:
        identifier = validate(name)
        argv = driver.log_command(identifier, lines=lines, follow=follow)
        code = driver.runner.attach(argv)
    except WardenError as e:
        _error(str(e))
    if code:
        raise typer.Exit(code=code)


@app.command()
def web(
    host: str = typer.Option(config.web_host, "--host", help="Address to bind"),
    port: int = typer.Option(config.web_port, "--port", help="Port to listen on"),
):
    """Serve the JSON API used by the dashboard."""
    _console.print(f"Serving warden API on http://{host}:{port}")
    uvicorn.run(create_app(_driver()), host=host, port=port, reload=False)


def _alert_manager(capability: PlatformCapability | None = None) -> AlertManager:
    capability = capability or _capability()
    return AlertManager(capability.config_dir / ALERTS_FILE)


@alert_app.command("config")
def alert_config(
    enabled: Optional[bool] = typer.Option(None, "--enable/--disable", help="Turn alerting on or off"),
    webhook: Optional[str] = typer.Option(None, "--webhook", help="Webhook URL ('' to clear)"),
    cpu: Optional[float] = typer.Option(None, "--cpu", help="CPU threshold percent"),
    memory: Optional[float] = typer.Option(None, "--memory", help="Memory threshold percent"),
    cooldown: Optional[int] = typer.Option(None, "--cooldown", help="Seconds between alerts per service"),
):
    """Show or change the alert configuration."""
    manager = _alert_manager()
    if any(v is not None for v in (enabled, webhook, cpu, memory, cooldown)):
        try:
            manager.configure(enabled=enabled, webhook_url=webhook, cpu=cpu, memory=memory, cooldown=cooldown)
        except (WardenError, OSError) as e:
            _error(str(e))
        _console.print("[green]✓[/green] Alert configuration saved")
    _console.print(escape(describe(manager.state)))


@alert_app.command("service")
def alert_service(
    name: str = typer.Argument(..., help="Service name"),
    enabled: bool = typer.Option(True, "--enable/--disable", help="Alert on this service or not"),
    cpu: Optional[float] = typer.Option(None, "--cpu", help="CPU threshold override"),
    memory: Optional[float] = typer.Option(None, "--memory", help="Memory threshold override"),
):
    """Enable or disable alerts for one service."""
    manager = _alert_manager()
    try:
        identifier = validate(name)
        manager.set_service(identifier, enabled, cpu=cpu, memory=memory)
    except (WardenError, OSError) as e:
        _error(str(e))
    _console.print(f"[green]✓[/green] Alerts {'enabled' if enabled else 'disabled'} for '{escape(identifier)}'")


@alert_app.command("test")
def alert_test():
    """Send a test message to the configured webhook."""
    manager = _alert_manager()
    ok, error = asyncio.run(manager.test_webhook())
    if not ok:
        _error(error or "Webhook test failed")
    _console.print("[green]✓[/green] Webhook test succeeded")


@alert_app.command("check")
def alert_check():
    """Check every running service against the alert thresholds once."""
    capability = _capability()
    driver = _driver(capability)
    manager = _alert_manager(capability)

    async def check() -> dict[str, list[str]]:
        fired = {}
        for identifier in await driver.list_services():
            status = await driver.status(identifier)
            if not status.running:
                continue
            metrics = await asyncio.to_thread(get_current_metrics, status.pid)
            breaches = await manager.check(identifier, metrics)
            if breaches:
                fired[identifier] = breaches
        return fired

    fired = _run(check())
    if not fired:
        _console.print("[green]✓[/green] No alerts")
        return
    for identifier, breaches in fired.items():
        _console.print(f"[red]Alert for {escape(identifier)}:[/red]")
        for message in breaches:
            _console.print(f"  - {escape(message)}")


def main():
    """Console script entry point."""
    app()


if __name__ == "__main__":
    main()
