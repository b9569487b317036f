"""Application entrypoint for the package change analytics service."""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.responses import PlainTextResponse

from package_changes.core.config import settings
from package_changes.core.logging import configure_logging
from package_changes.dependencies import get_event_sink
from package_changes.routers import analysis, analytics
from package_changes.telemetry import collect_prometheus_metrics, configure_metrics, shutdown_metrics


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings.log_level)
    configure_metrics()
    yield
    sink = get_event_sink()
    if hasattr(sink, "close"):
        sink.close()
    shutdown_metrics()


def create_app() -> FastAPI:
    app = FastAPI(
        title="Package Change Analytics",
        description="Detects and classifies package tier upgrades and downgrades across customer deployments.",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.include_router(analysis.router)
    app.include_router(analytics.router)

    @app.get("/healthz", tags=["health"])
    def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    if settings.otel_exporter.lower().strip() == "prometheus":

        @app.get("/metrics", tags=["metrics"])
        def metrics_endpoint() -> PlainTextResponse:
            payload, content_type = collect_prometheus_metrics()
            return PlainTextResponse(payload, media_type=content_type)

    return app


app = create_app()
