"""Core payment logic: canonical bodies, signing, checkout and reconciliation."""
from .activation import FeatureActivationEngine
from .checkout import CartItem, CheckoutResult, CheckoutService
from .exceptions import (
    CheckoutError,
    ConfigurationError,
    GatewayError,
    GatewayErrorType,
    MalformedNotificationError,
    PaymentGatewayError,
    ReconciliationError,
    ResponseFormatError,
    SerializationError,
    TransportError,
)
from .reconciliation import ReconciliationEngine, ReconciliationOutcome, ReconciliationResult
from .schemas import LineItem, PaymentRequest, PaymentResult
from .serializer import canonical_json
from .signing import SignedRequestContext, SigningEngine

__all__ = [
    "CartItem",
    "CheckoutError",
    "CheckoutResult",
    "CheckoutService",
    "ConfigurationError",
    "FeatureActivationEngine",
    "GatewayError",
    "GatewayErrorType",
    "LineItem",
    "MalformedNotificationError",
    "PaymentGatewayError",
    "PaymentRequest",
    "PaymentResult",
    "ReconciliationEngine",
    "ReconciliationError",
    "ReconciliationOutcome",
    "ReconciliationResult",
    "ResponseFormatError",
    "SerializationError",
    "SignedRequestContext",
    "SigningEngine",
    "TransportError",
    "canonical_json",
]
