from __future__ import annotations

import logging
from dataclasses import asdict
from datetime import datetime, timezone

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from src.schemas import HealthCheck, HealthResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["System"])

COMPONENT_NAME = "grades-service"


@router.get("/health")
def health():
    return {"status": "ok"}


@router.get("/actuator/health", response_model=HealthResponse)
def actuator_health(request: Request):
    """Readiness probe: reports OK only when every check passes."""
    state = request.app.state
    checks = {}
    failures = {}

    try:
        state.repository.ping()
        checks["postgres"] = HealthCheck(status="OK")
    except Exception as e:
        logger.warning(f"Health check postgres failed: {e}")
        checks["postgres"] = HealthCheck(status="Unavailable", error=str(e))
        failures["postgres"] = str(e)

    shipper = getattr(state, "shipper", None)
    body = HealthResponse(
        status="Unavailable" if failures else "OK",
        timestamp=datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        component={"name": COMPONENT_NAME},
        checks=checks,
        failures=failures,
        log_shipper=asdict(shipper.stats) if shipper is not None else None,
    )
    return JSONResponse(
        status_code=503 if failures else 200,
        content=body.model_dump(exclude_none=True),
    )
