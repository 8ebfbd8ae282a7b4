"""External integrations: payment gateways and their webhooks."""
from .gateway_client import (
    GatewayClient,
    SignedGateway,
    TokenGateway,
    build_gateway_client,
)
from .webhook_handler import WebhookAck, WebhookHandler

__all__ = [
    "GatewayClient",
    "SignedGateway",
    "TokenGateway",
    "WebhookAck",
    "WebhookHandler",
    "build_gateway_client",
]
