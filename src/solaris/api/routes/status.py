"""Status endpoint."""

from __future__ import annotations

from fastapi import APIRouter, Request

from solaris.api.routes.relays import relay_listing

router = APIRouter()


@router.get("/status")
async def system_status(request: Request) -> dict:
    """Telemetry, relays, guard and automation state in one document."""
    controller = request.app.state.controller
    telemetry = controller.telemetry.latest
    forecast = controller.forecasts.forecast
    guard = controller.guard
    stats = controller.stats

    return {
        "status": "running",
        "telemetry": telemetry.to_dict() if telemetry else None,
        "relays": relay_listing(controller, request.app.state.config),
        "telemetry_records": {
            "ingested": controller.telemetry.ingested_count,
            "ignored": controller.telemetry.ignored_count,
        },
        "guard": {
            "threshold_pct": guard.threshold,
            "armed": guard.armed,
            "last_level": guard.state.last_level,
            "fire_count": guard.state.fire_count,
        },
        "automation": {
            "running": controller.is_running,
            "deferred": controller.deferred_reason,
            "last_decision": controller.last_decision.to_dict() if controller.last_decision else None,
            "last_outcome": controller.last_outcome.to_dict() if controller.last_outcome else None,
            "stats": {
                "runs": stats.runs,
                "applied": stats.applied,
                "busy": stats.busy,
                "deferred": stats.deferred,
                "failed": stats.failed,
            },
        },
        "forecast": forecast.to_dict() if forecast else None,
        "forecast_error": controller.forecasts.last_error or None,
    }
