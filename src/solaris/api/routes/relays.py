"""Relay listing and manual toggle endpoints."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from solaris.errors import UnknownRelayError

router = APIRouter()
logger = logging.getLogger(__name__)


class ToggleRequest(BaseModel):
    on: bool


def relay_listing(controller, config) -> list[dict]:
    """Every configured relay sorted by id. Unobserved relays report ``on`` as None."""
    entries = {s.relay_id: s.to_dict() for s in controller.relays.snapshot()}
    for relay_id in controller.relays.unobserved_ids():
        entries[relay_id] = {"id": relay_id, "name": config.relay_name(relay_id), "on": None}
    return [entries[relay_id] for relay_id in sorted(entries)]


@router.get("/relays")
async def list_relays(request: Request) -> dict:
    """Logical relay states, sorted by id."""
    return {"relays": relay_listing(request.app.state.controller, request.app.state.config)}


@router.post("/relays/{relay_id}")
async def toggle_relay(relay_id: int, body: ToggleRequest, request: Request):
    """Manually switch one relay. Bypasses the automation guard."""
    controller = request.app.state.controller
    try:
        result = await controller.writer.apply_toggle(relay_id, body.on)
    except UnknownRelayError as e:
        return JSONResponse({"status": "error", "message": str(e)}, 404)

    if not result.success:
        return JSONResponse(
            {"status": "error", "message": str(result.error), **result.to_dict()}, 502,
        )

    state = controller.relays.get(relay_id)
    logger.info("Manual toggle: relay %d -> %s", relay_id, "ON" if body.on else "OFF")
    return {"status": "ok", "relay": state.to_dict() if state else None, **result.to_dict()}


@router.get("/commands")
async def command_history(request: Request, limit: int = 50) -> dict:
    """Recent relay commands, newest first."""
    controller = request.app.state.controller
    history = controller.writer.history[-limit:] if limit > 0 else []
    return {"commands": [c.to_dict() for c in reversed(history)]}
