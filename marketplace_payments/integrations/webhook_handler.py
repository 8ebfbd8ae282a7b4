"""
Payment notification webhook handler.

Every notification that parses is acknowledged with 200, including ones
that change nothing, so the gateway stops redelivering. Only bodies that
cannot be interpreted get a 400.
"""
import json
from dataclasses import dataclass, field
from typing import Any, Dict

import structlog

from marketplace_payments.core.exceptions import MalformedNotificationError
from marketplace_payments.core.reconciliation import ReconciliationEngine

logger = structlog.get_logger(__name__)

ACK_MESSAGE = "Notification received"


@dataclass(frozen=True)
class WebhookAck:
    """HTTP status and body to answer the gateway with."""

    status_code: int
    body: Dict[str, Any] = field(default_factory=dict)


class WebhookHandler:
    """Parses notification bodies and hands them to the reconciliation engine."""

    def __init__(self, reconciliation_engine: ReconciliationEngine):
        self.reconciliation_engine = reconciliation_engine
        logger.info("webhook_handler_initialized")

    async def handle(self, raw_body: bytes) -> WebhookAck:
        """
        Process one webhook delivery.

        Args:
            raw_body: Raw request body

        Returns:
            WebhookAck: 200 for applied or ignored notifications, 400 for unparseable ones
        """
        try:
            payload = json.loads(raw_body)
        except (UnicodeDecodeError, ValueError) as e:
            logger.warning("webhook_body_not_json", error=str(e))
            return WebhookAck(400, {"success": False, "message": "Invalid notification payload"})

        try:
            result = await self.reconciliation_engine.reconcile(payload)
        except MalformedNotificationError as e:
            return WebhookAck(400, {"success": False, "message": str(e)})

        logger.info(
            "webhook_acknowledged",
            invoice_number=result.invoice_number,
            outcome=result.outcome.value,
        )
        return WebhookAck(200, {"success": True, "message": ACK_MESSAGE})
