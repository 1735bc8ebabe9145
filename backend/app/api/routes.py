"""REST API routes."""

import logging
from typing import Any, Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, Field

from core.models.indicator import IndicatorRequest

logger = logging.getLogger(__name__)

router = APIRouter()


# Response models
class ScheduledIndicator(BaseModel):
    """One indicator with a recurring refresh task."""

    fingerprint: str
    indicator_type: str
    symbol: str
    interval: str
    parameters: dict[str, Any]
    data_source: Optional[str] = None


class SchedulerStatus(BaseModel):
    """Scheduler status response."""

    running: bool
    scheduled: list[ScheduledIndicator]


class RefreshRequest(BaseModel):
    """On-demand indicator refresh."""

    indicator_type: str
    symbol: str
    interval: str
    parameters: dict[str, Any] = Field(default_factory=dict)
    data_source: Optional[str] = None
    force: bool = False


class RefreshResponse(BaseModel):
    """Result of an on-demand refresh."""

    fingerprint: str
    success: bool
    data: Optional[dict[str, Any]] = None


def _require(request: Request, name: str):
    service = getattr(request.app.state, name, None)
    if service is None:
        raise HTTPException(status_code=503, detail=f"{name} not running")
    return service


@router.get("/scheduler", response_model=SchedulerStatus)
async def get_scheduler(request: Request):
    """List the indicators currently scheduled for refresh."""
    scheduler = _require(request, "scheduler")
    scheduled = [
        ScheduledIndicator(fingerprint=fp, **req.model_dump())
        for fp, req in sorted(scheduler.scheduled.items())
    ]
    return SchedulerStatus(running=scheduler.is_running, scheduled=scheduled)


@router.post("/indicators/refresh", response_model=RefreshResponse)
async def refresh_indicator(body: RefreshRequest, request: Request):
    """Fetch one indicator now, from cache unless ``force`` is set."""
    fetcher = _require(request, "fetcher")
    indicator = IndicatorRequest(
        indicator_type=body.indicator_type,
        symbol=body.symbol,
        interval=body.interval,
        parameters=body.parameters,
        data_source=body.data_source,
    )
    logger.info(f"On-demand refresh of {indicator.fingerprint} (force={body.force})")
    data = await fetcher.fetch(indicator, force_refresh=body.force)
    if data is None:
        raise HTTPException(
            status_code=502,
            detail=f"Could not fetch {indicator.fingerprint}",
        )
    return RefreshResponse(fingerprint=indicator.fingerprint, success=True, data=data)
