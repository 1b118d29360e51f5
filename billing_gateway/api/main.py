"""FastAPI application factory"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from starlette.responses import Response

from billing_gateway.config import settings
from billing_gateway.infrastructure.clients.mailer import HttpMailer, Mailer
from billing_gateway.infrastructure.database.session import build_engine, build_session_factory
from billing_gateway.infrastructure.messaging.channel import EventChannel
from billing_gateway.infrastructure.observability.logging import setup_logging
from billing_gateway.services.billing import BillingService
from billing_gateway.services.notifications import OverdueNotificationHandler
from billing_gateway.services.overdue import OverdueDetector

# Setup structured logging
setup_logging(settings.log_level)


def create_app(database_url: str | None = None, mailer: Mailer | None = None) -> FastAPI:
    """Create and configure FastAPI application"""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        engine = build_engine(database_url)
        session_factory = build_session_factory(engine)

        channel = EventChannel()
        handler = OverdueNotificationHandler(session_factory, mailer or HttpMailer())
        channel.subscribe(handler.handle)

        app.state.channel = channel
        app.state.billing = BillingService(session_factory)
        app.state.overdue_detector = OverdueDetector(session_factory, channel)

        await channel.start(settings.notification_workers)
        try:
            yield
        finally:
            await channel.stop()
            engine.dispose()

    app = FastAPI(
        title="Billing Gateway",
        description="Invoices, installments, payments and overdue notifications",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # Health check endpoint
    @app.get("/health")
    def health_check(request: Request):
        channel = getattr(request.app.state, "channel", None)
        return {
            "status": "ok",
            "service": settings.service_name,
            "event_queue_depth": channel.pending if channel else 0,
        }

    # Prometheus metrics endpoint
    @app.get("/metrics")
    def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    return app


app = create_app()
