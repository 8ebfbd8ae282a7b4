"""
Payment notification, client configuration and monitoring routes.
"""
from typing import Any, Dict

import structlog
from fastapi import APIRouter, HTTPException, Request, Response, status
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from marketplace_payments.integrations.gateway_client import TokenGateway
from marketplace_payments.integrations.webhook_handler import WebhookHandler

logger = structlog.get_logger(__name__)

payment_router = APIRouter(prefix="/api/payments", tags=["payments"])
monitoring_router = APIRouter(tags=["monitoring"])


@payment_router.post(
    "/webhooks/{gateway}",
    summary="Payment notification endpoint",
    description="Reconcile an asynchronous payment notification",
)
async def payment_notification(gateway: str, request: Request) -> JSONResponse:
    """
    Handle a gateway notification.

    Answers 200 whenever the body could be interpreted, 400 otherwise.
    """
    handler: WebhookHandler = request.app.state.webhook_handler
    body = await request.body()

    logger.info("api_webhook_received", gateway=gateway, body_size=len(body))

    ack = await handler.handle(body)
    return JSONResponse(status_code=ack.status_code, content=ack.body)


@payment_router.get(
    "/gateway/config",
    summary="Public gateway configuration",
    description="Client key and checkout script URL for the browser",
)
async def gateway_config(request: Request) -> Dict[str, Any]:
    gateway = request.app.state.gateway_client
    if not isinstance(gateway, TokenGateway):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Configured gateway has no browser configuration",
        )
    return {
        "success": True,
        "message": "Gateway configuration retrieved",
        "data": gateway.public_config(),
    }


@monitoring_router.get(
    "/health",
    summary="Health check",
    description="Check database connectivity",
)
async def health(request: Request) -> JSONResponse:
    session_factory = request.app.state.session_factory
    try:
        async with session_factory() as session:
            await session.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.error("health_check_error", error=str(e))
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "unhealthy", "database": "unreachable"},
        )
    return JSONResponse(content={"status": "healthy", "database": "ok"})


@monitoring_router.get(
    "/metrics",
    summary="Prometheus metrics",
    description="Expose Prometheus metrics",
    include_in_schema=False,
)
async def prometheus_metrics() -> Response:
    """Expose Prometheus metrics."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
