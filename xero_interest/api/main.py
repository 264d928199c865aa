"""FastAPI application factory"""

from fastapi import FastAPI
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from starlette.responses import Response

from xero_interest.api.middleware import RequestIDMiddleware, MetricsMiddleware
from xero_interest.api.v1 import accrual, configs, ledger
from xero_interest.infrastructure.observability.logging import setup_logging
from xero_interest.config import settings

# Setup structured logging
setup_logging(settings.log_level)


def create_app() -> FastAPI:
    """Create and configure FastAPI application"""
    app = FastAPI(
        title="Xero Interest Accrual",
        description="Overdue invoice interest reconciliation service",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )

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

    # Register API routers
    app.include_router(accrual.router, prefix="/v1", tags=["accrual"])
    app.include_router(ledger.router, prefix="/v1", tags=["ledger"])
    app.include_router(configs.router, prefix="/v1", tags=["configs"])

    return app


app = create_app()
