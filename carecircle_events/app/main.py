"""FastAPI application factory."""

from __future__ import annotations

from fastapi import FastAPI

from carecircle_events.app.api.outbox import metrics_router
from carecircle_events.app.api.outbox import router as outbox_router
from carecircle_events.app.lifespan import lifespan
from carecircle_events.core.settings import get_app_settings
from carecircle_events.infra.messaging.consumers import AnalyticsSink, AuditSink
from carecircle_events.infra.messaging.subscriptions import Consumers


def create_app(consumers: Consumers | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        consumers: Consumers to subscribe at startup. The audit and analytics
            sinks are used when omitted; the WebSocket bridge and notification
            dispatcher need their external collaborators and are only run
            when passed in.

    Returns:
        Configured FastAPI application instance.
    """
    app_settings = get_app_settings()

    app = FastAPI(
        title=app_settings.title,
        version=app_settings.version,
        debug=app_settings.debug,
        lifespan=lifespan,
    )
    app.state.consumers = consumers or Consumers(audit=AuditSink(), analytics=AnalyticsSink())

    app.include_router(outbox_router, prefix=app_settings.api_prefix)
    app.include_router(metrics_router)

    return app
