"""FastAPI application factory"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from starlette.responses import Response

from utility_signup.api.middleware import RequestIDMiddleware, MetricsMiddleware
from utility_signup.api.v1 import registration
from utility_signup.infrastructure.observability.logging import setup_logging
from utility_signup.services.engine import SignupEngine, build_engine
from utility_signup.config import settings

# Setup structured logging
setup_logging(settings.log_level)


def create_app(engine: Optional[SignupEngine] = None) -> FastAPI:
    """
    Create and configure FastAPI application.

    The engine is built eagerly so endpoints work without the lifespan
    running; the lifespan re-arms monitoring and starts the deal sweep.
    """
    engine = engine or build_engine()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await engine.startup()
        try:
            yield
        finally:
            await engine.shutdown()

    app = FastAPI(
        title="Utility Signup Engine",
        description="Automated utility registration and deal monitoring for tenancies",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.engine = engine

    # Add middleware (order matters: last added = first executed)
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIDMiddleware)

    # Health check endpoint
    @app.get("/health")
    def health_check():
        return {"status": "ok", "service": settings.service_name}

    # Prometheus metrics endpoint
    @app.get("/metrics")
    def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    app.include_router(registration.router, prefix="/v1", tags=["utility"])

    return app
