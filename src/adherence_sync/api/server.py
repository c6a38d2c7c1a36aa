"""
Integration API - device assignment, alarms and device views over HTTP.

When a SECRET_KEY is configured every route requires it, either in the
x-api-key header or the apiKey query parameter.
"""

import logging
from typing import Optional

import requests
from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from adherence_sync.api.schemas import AlarmRequest, AssignDeviceRequest
from adherence_sync.clients.registry import DeviceRegistryClient
from adherence_sync.clients.tracker import TrackerClient
from adherence_sync.core.config import Settings
from adherence_sync.services.alarms import set_alarms
from adherence_sync.services.assignment import AssignmentOrchestrator
from adherence_sync.services.devices import get_device_details, list_assigned_devices
from adherence_sync.services.results import ServiceResult

logger = logging.getLogger(__name__)


def _respond(result: ServiceResult) -> JSONResponse:
    return JSONResponse(status_code=result.status_code, content=result.body)


def create_app(
    settings: Settings,
    registry: Optional[DeviceRegistryClient] = None,
    tracker: Optional[TrackerClient] = None,
) -> FastAPI:
    registry = registry or DeviceRegistryClient(settings)
    tracker = tracker or TrackerClient(settings)

    def require_api_key(request: Request) -> None:
        if not settings.secret_key:
            return
        supplied = request.headers.get("x-api-key") or request.query_params.get("apiKey")
        if supplied != settings.secret_key:
            raise HTTPException(status_code=401, detail="Unauthorized: Invalid secret key")

    router = APIRouter(prefix="/api", dependencies=[Depends(require_api_key)])

    @router.get("/")
    def welcome():
        """Introduction to the API; doubles as a ping."""
        return {"message": "Welcome to the device registry and tracker integration API. Go to /docs for the documentation"}

    @router.get("/devices")
    def devices():
        """Devices in use in the tracker, with their latest episode."""
        return _respond(list_assigned_devices(registry, tracker))

    @router.get("/devices/details")
    def device_details(imei: str):
        return _respond(get_device_details(registry, imei))

    @router.post("/devices/assign", status_code=201)
    def assign_device(body: AssignDeviceRequest):
        """Assign a device and a patient to an episode for adherence tracking."""
        orchestrator = AssignmentOrchestrator(
            registry,
            tracker,
            time_zone=settings.time_zone,
            close_previous_episode=settings.close_previous_episode,
        )
        result = orchestrator.assign(body.imei, body.patientId, force=body.force)
        return JSONResponse(status_code=result.status_code, content=result.body())

    @router.post("/alarms", status_code=201)
    def alarms(body: AlarmRequest):
        return _respond(set_alarms(
            registry,
            body.imei,
            alarm=body.alarm,
            alarm_status=body.alarmStatus,
            refill_alarm=body.refillAlarm,
            refill_alarm_status=body.refillAlarmStatus,
            days=body.days,
        ))

    app = FastAPI(
        title="Adherence Sync API",
        description="Device registry and tracker integration API",
        version="1.0.0",
    )
    app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_methods=["*"], allow_headers=["*"])

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content={"error": [e.get("msg", "") for e in exc.errors()]})

    @app.exception_handler(requests.RequestException)
    async def upstream_error(request: Request, exc: requests.RequestException):
        logger.error("Upstream request failed: %s", exc)
        return JSONResponse(status_code=500, content={"message": "Internal server error", "errorTrace": str(exc)})

    app.include_router(router)
    return app
