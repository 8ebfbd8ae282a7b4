"""Exception hierarchy for gateway calls, reconciliation and checkout."""
from enum import Enum
from typing import Optional


class GatewayErrorType(Enum):
    """Classification of gateway failures reported back to callers."""

    CONFIGURATION = "configuration"  # Unusable before any call
    SERIALIZATION = "serialization"  # Body could not be rendered
    TRANSPORT = "transport"  # Network/timeout, caller may retry with a new request id
    GATEWAY = "gateway"  # Remote 4xx/5xx
    RESPONSE_FORMAT = "response_format"  # 2xx but unusable body


class PaymentGatewayError(Exception):
    """Base exception for payment gateway errors."""

    error_type: GatewayErrorType = GatewayErrorType.GATEWAY


class ConfigurationError(PaymentGatewayError):
    """Raised when credentials or endpoints are missing or invalid."""

    error_type = GatewayErrorType.CONFIGURATION


class SerializationError(PaymentGatewayError):
    """Raised when a request body cannot be rendered canonically."""

    error_type = GatewayErrorType.SERIALIZATION


class TransportError(PaymentGatewayError):
    """Raised on connection failures and timeouts."""

    error_type = GatewayErrorType.TRANSPORT


class GatewayError(PaymentGatewayError):
    """Raised when the gateway answers with a non-2xx status."""

    error_type = GatewayErrorType.GATEWAY

    def __init__(self, message: str, status_code: int, error_code: Optional[str] = None):
        """
        Initialize gateway error.

        Args:
            message: Response body as returned by the gateway
            status_code: HTTP status code
            error_code: Gateway specific error code, when one was returned
        """
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code


class ResponseFormatError(PaymentGatewayError):
    """Raised when a 2xx response cannot be parsed or lacks the payment URL."""

    error_type = GatewayErrorType.RESPONSE_FORMAT


class ReconciliationError(Exception):
    """Base exception for webhook reconciliation."""

    pass


class MalformedNotificationError(ReconciliationError):
    """Raised when a notification lacks an invoice id or status."""

    pass


class CheckoutError(Exception):
    """Raised when a checkout cannot be started."""

    pass
