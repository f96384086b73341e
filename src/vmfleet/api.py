"""HTTP endpoints: destroy, health, and Prometheus metrics.

The destroy endpoint blocks until the instance is decommissioned or the
retry budget is spent. BadRequestError maps to 400, every other failure to 500.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from fastapi import APIRouter, HTTPException, Response
from prometheus_client import CONTENT_TYPE_LATEST

from vmfleet.errors import BadRequestError
from vmfleet.models import CleanupRequest

if TYPE_CHECKING:
    from vmfleet.destroy import DestroyHandler
    from vmfleet.metrics import FleetMetrics

logger = logging.getLogger(__name__)

router = APIRouter()

# These are set during server startup (see server.py)
_handler: DestroyHandler | None = None
_metrics: FleetMetrics | None = None


def configure(handler: DestroyHandler, metrics: FleetMetrics) -> None:
    """Wire the endpoints to the destroy handler and metrics sink."""
    global _handler, _metrics
    _handler = handler
    _metrics = metrics


@router.post("/destroy")
async def destroy(request: CleanupRequest) -> dict:
    if _handler is None:
        raise HTTPException(status_code=503, detail="Destroy handler not configured")

    try:
        outcome = await _handler.handle(request)
    except BadRequestError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error("Destroy failed for stage %s: %s", request.stage_runtime_id, e)
        raise HTTPException(status_code=500, detail=str(e))

    return {
        "instance_id": outcome.instance.id,
        "instance_name": outcome.instance.name,
    }


@router.get("/healthz")
async def healthz() -> dict:
    return {"status": "ok"}


@router.get("/metrics")
async def metrics() -> Response:
    if _metrics is None:
        raise HTTPException(status_code=503, detail="Metrics not configured")
    return Response(content=_metrics.render(), media_type=CONTENT_TYPE_LATEST)
