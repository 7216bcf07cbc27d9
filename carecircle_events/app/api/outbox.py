"""Operational endpoints for the outbox relay and the broker.

- GET  /outbox/stats    record counts by status plus scheduled job status
- POST /outbox/cleanup  delete PROCESSED records past a retention age
- GET  /health/broker   broker connectivity
- GET  /metrics         Prometheus exposition of the service registry
"""

from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends, Query, Response, status
from pydantic import BaseModel, Field

from carecircle_events.infra.events.outbox.processor import OutboxProcessor
from carecircle_events.infra.events.outbox.scheduler import get_outbox_relay
from carecircle_events.infra.messaging.broker import check_broker_health
from carecircle_events.infra.metrics import REGISTRY, generate_latest

router = APIRouter(tags=["outbox"])
metrics_router = APIRouter(tags=["metrics"])


class OutboxStatsResponse(BaseModel):
    """Record counts by status."""

    pending: int
    processing: int
    processed: int
    failed: int
    exhausted: int = Field(description="FAILED records that reached the retry cap")
    relay_running: bool
    relay_processing: bool
    jobs: list[dict[str, Any]] = Field(default_factory=list)


class CleanupResponse(BaseModel):
    deleted: int
    older_than_days: int


class BrokerHealthResponse(BaseModel):
    status: str
    state: str
    is_connected: bool
    reason: str | None = None


def get_outbox_processor() -> OutboxProcessor:
    """The running relay's processor, or a fresh one wired from settings."""
    relay = get_outbox_relay()
    if relay is not None:
        return relay.processor
    return OutboxProcessor.from_settings()


OutboxProcessorDep = Annotated[OutboxProcessor, Depends(get_outbox_processor)]


@router.get(
    "/outbox/stats",
    response_model=OutboxStatsResponse,
    summary="Outbox record counts",
)
async def outbox_stats(processor: OutboxProcessorDep) -> OutboxStatsResponse:
    """Counts by status; also refreshes the outbox status gauges."""
    stats = await processor.collect_stats()
    relay = get_outbox_relay()
    return OutboxStatsResponse(
        **stats.to_dict(),
        relay_running=relay is not None and relay.running,
        relay_processing=processor.is_processing,
        jobs=relay.get_job_status() if relay is not None else [],
    )


@router.post(
    "/outbox/cleanup",
    response_model=CleanupResponse,
    summary="Delete processed outbox records",
)
async def outbox_cleanup(
    processor: OutboxProcessorDep,
    older_than_days: int = Query(
        default=7,
        ge=1,
        le=365,
        description="Delete PROCESSED records older than this many days",
    ),
) -> CleanupResponse:
    deleted = await processor.run_cleanup(older_than_days)
    return CleanupResponse(deleted=deleted, older_than_days=older_than_days)


@router.get(
    "/health/broker",
    response_model=BrokerHealthResponse,
    summary="Broker connectivity",
    responses={503: {"model": BrokerHealthResponse}},
)
async def broker_health(response: Response) -> BrokerHealthResponse:
    """200 when the broker is connected, 503 otherwise."""
    health = await check_broker_health()
    if not health["is_connected"]:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    return BrokerHealthResponse(**health)


@metrics_router.get("/metrics", include_in_schema=False)
async def metrics() -> Response:
    return Response(
        content=generate_latest(REGISTRY),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )


__all__ = ["get_outbox_processor", "metrics_router", "router"]
