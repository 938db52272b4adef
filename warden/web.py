"""
Warden web API.

A small FastAPI application exposing the managed services to a dashboard:
listing, per-service status with resource usage, and start/stop/restart
controls. It talks to the native service manager through the same driver
the CLI uses; it keeps no state of its own.
"""

import logging
from typing import Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from . import __version__
from .config import config
from .driver import ServiceDriver
from .errors import (
    InvalidName,
    NativeManagerFailed,
    ServiceNotFound,
    UnsupportedPlatform,
    WardenError,
)
from .lifecycle import restart_service, start_service, stop_service
from .monitor import service_overview, service_overviews
from .names import validate

logger = logging.getLogger(__name__)


class ServiceUrls(BaseModel):
    health: Optional[str] = None
    metrics: Optional[str] = None


class ServiceResponse(BaseModel):
    name: str
    qualified_name: str
    state: str
    running: bool = False
    pid: Optional[int] = None
    port: Optional[int] = None
    artifact_path: Optional[str] = None
    detail: Optional[str] = None
    cpu_percent: float = 0.0
    memory_mb: float = 0.0
    memory_percent: float = 0.0
    child_processes: int = 0
    uptime_seconds: float = 0.0
    urls: ServiceUrls = ServiceUrls()
    error: Optional[str] = None


class ActionResponse(BaseModel):
    name: str
    action: str
    state: str


class StatusResponse(BaseModel):
    platform: str
    service_manager: str
    total: int
    running: int
    failed: int
    service_host: str
    services: list[ServiceResponse]


ACTIONS = {
    "start": start_service,
    "stop": stop_service,
    "restart": restart_service,
}


def error_status(error: WardenError) -> int:
    """HTTP status code for a warden error."""
    if isinstance(error, InvalidName):
        return 400
    if isinstance(error, ServiceNotFound):
        return 404
    if isinstance(error, UnsupportedPlatform):
        return 501
    if isinstance(error, NativeManagerFailed):
        return 502
    return 500


def _to_http(error: WardenError) -> HTTPException:
    status_code = error_status(error)
    if status_code >= 500:
        logger.error(f"API request failed: {error}")
    return HTTPException(status_code=status_code, detail=str(error))


def _service_response(overview: dict) -> ServiceResponse:
    return ServiceResponse(**{**overview, "running": overview["state"] == "running"})


def create_app(driver: ServiceDriver) -> FastAPI:
    """Build the API application around a lifecycle driver."""
    app = FastAPI(
        title="Warden",
        description="Native service manager supervision API",
        version=__version__,
    )
    app.state.driver = driver

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    async def _overviews() -> list[ServiceResponse]:
        names = await driver.list_services()
        return [_service_response(o) for o in await service_overviews(driver, names)]

    @app.get("/api/services", response_model=list[ServiceResponse])
    async def list_services():
        """List all managed services."""
        try:
            return await _overviews()
        except WardenError as e:
            raise _to_http(e)

    @app.get("/api/services/{name}", response_model=ServiceResponse)
    async def get_service(name: str):
        """Get a specific service."""
        try:
            identifier = validate(name)
            overview = await service_overview(driver, identifier)
            if overview["state"] == "unknown":
                raise ServiceNotFound(identifier)
        except WardenError as e:
            raise _to_http(e)
        return _service_response(overview)

    @app.post("/api/services/{name}/{action}", response_model=ActionResponse)
    async def control_service(name: str, action: str):
        """Start, stop or restart a service."""
        func = ACTIONS.get(action)
        if func is None:
            raise HTTPException(status_code=404, detail=f"Unknown action '{action}'")
        try:
            identifier = validate(name)
            await func(driver, identifier)
            status = await driver.status(identifier)
        except WardenError as e:
            raise _to_http(e)
        logger.info(f"API {action} {identifier}: {status.state.value}")
        return ActionResponse(name=identifier, action=action, state=status.state.value)

    @app.get("/api/status", response_model=StatusResponse)
    async def get_status():
        """Get overview of all services."""
        try:
            services = await _overviews()
        except WardenError as e:
            raise _to_http(e)
        return StatusResponse(
            platform=driver.capability.family.value,
            service_manager=driver.capability.service_manager,
            total=len(services),
            running=sum(1 for s in services if s.running),
            failed=sum(1 for s in services if s.state == "failed"),
            service_host=config.get_service_host(),
            services=services,
        )

    return app
