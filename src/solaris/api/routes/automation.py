"""Automation, preferences and forecast endpoints."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from solaris.errors import ForecastUnavailableError

router = APIRouter()
logger = logging.getLogger(__name__)


class PreferencesRequest(BaseModel):
    preferences: str


@router.post("/automation/run")
async def run_automation(request: Request) -> dict:
    """Run the allocation now. Dropped if a run is already in flight."""
    controller = request.app.state.controller
    outcome = await controller.run_automation("manual")
    return outcome.to_dict()


@router.get("/preferences")
async def get_preferences(request: Request) -> dict:
    controller = request.app.state.controller
    return {"preferences": controller.preferences}


@router.put("/preferences")
async def set_preferences(body: PreferencesRequest, request: Request) -> dict:
    """Replace the free-text preferences used by the allocation policy."""
    controller = request.app.state.controller
    controller.set_preferences(body.preferences)

    persisted = False
    config_manager = request.app.state.config_manager
    if config_manager is not None:
        request.app.state.config = config_manager.save_user_config(
            {"policy": {"preferences": controller.preferences}}
        )
        persisted = True
    return {"status": "ok", "preferences": controller.preferences, "persisted": persisted}


@router.post("/forecast/refresh")
async def refresh_forecast(request: Request):
    controller = request.app.state.controller
    try:
        forecast = await controller.forecasts.refresh(controller.telemetry.latest)
    except ForecastUnavailableError as e:
        return JSONResponse({"status": "error", "message": str(e)}, 503)
    return {"status": "ok", "forecast": forecast.to_dict()}
