"""
FastAPI application exposing the payment notification webhook.

Run with ``python -m marketplace_payments.api.main`` or point uvicorn at
``marketplace_payments.api.main:create_app`` with ``--factory``.
"""
import time
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Optional

import structlog
from fastapi import FastAPI, Request, Response, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from marketplace_payments.config import Settings, get_settings
from marketplace_payments.core.reconciliation import ReconciliationEngine
from marketplace_payments.database.connection import (
    build_engine,
    build_session_factory,
    init_db,
)
from marketplace_payments.integrations.gateway_client import GatewayClient, build_gateway_client
from marketplace_payments.integrations.webhook_handler import WebhookHandler
from marketplace_payments.monitoring.logging import setup_logging

from .routes import monitoring_router, payment_router

logger = structlog.get_logger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    gateway_client: Optional[GatewayClient] = None,
) -> FastAPI:
    """
    Assemble the application and its services.

    Args:
        settings: Application settings (read from the environment if omitted)
        session_factory: Optional session factory; an engine is built from settings otherwise
        gateway_client: Optional gateway client; built from settings otherwise

    Returns:
        FastAPI: Configured application
    """
    settings = settings or get_settings()
    setup_logging(settings)

    engine: Optional[AsyncEngine] = None
    if session_factory is None:
        engine = build_engine(settings)
        session_factory = build_session_factory(engine)

    gateway_client = gateway_client or build_gateway_client(settings)
    reconciliation_engine = ReconciliationEngine(session_factory, settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, Any]:
        logger.info(
            "application_startup",
            app_name=settings.app_name,
            env=settings.app_env,
            gateway=settings.payment_gateway.value,
        )
        if engine is not None:
            try:
                await init_db(engine)
                logger.info("database_initialized")
            except Exception as e:
                logger.error("database_initialization_failed", error=str(e))
                raise

        yield

        logger.info("application_shutdown")
        if engine is not None:
            await engine.dispose()
            logger.info("database_connections_closed")

    app = FastAPI(
        title="Marketplace Payments",
        description="Payment gateway checkout and notification reconciliation",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.session_factory = session_factory
    app.state.gateway_client = gateway_client
    app.state.webhook_handler = WebhookHandler(reconciliation_engine)

    @app.middleware("http")
    async def add_request_id_middleware(request: Request, call_next: Any) -> Response:
        """Bind a request id to every log line of the request."""
        request_id = str(uuid.uuid4())
        start_time = time.time()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )
        try:
            response = await call_next(request)
            response.headers["X-Request-ID"] = request_id
            logger.info(
                "request_completed",
                status_code=response.status_code,
                duration_seconds=time.time() - start_time,
            )
            return response
        except Exception as e:
            logger.error(
                "request_failed",
                error=str(e),
                duration_seconds=time.time() - start_time,
            )
            raise
        finally:
            structlog.contextvars.clear_contextvars()

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        # A 500 makes the gateway redeliver the notification later
        logger.error(
            "unhandled_exception",
            error=str(exc),
            error_type=type(exc).__name__,
            path=request.url.path,
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"success": False, "message": "Internal server error"},
        )

    app.include_router(payment_router)
    app.include_router(monitoring_router)
    return app


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "marketplace_payments.api.main:create_app",
        factory=True,
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
    )
