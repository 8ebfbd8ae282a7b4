"""
Payment gateway clients.

Two interchangeable strategies share one contract:
- TokenGateway: Basic auth with a pre-shared server key
- SignedGateway: every request carries a SHA-256 digest and HMAC signature

``create_payment`` never raises for expected failures. Configuration
problems, transport errors, non-2xx answers and unusable bodies all come
back as a failed ``PaymentResult``. There are no retries here; a caller that
retries gets a fresh request id on its next call.
"""
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Tuple, Type

import httpx
import structlog

from marketplace_payments.config import GatewayKind, Settings
from marketplace_payments.core.exceptions import (
    ConfigurationError,
    GatewayError,
    PaymentGatewayError,
    ResponseFormatError,
    TransportError,
)
from marketplace_payments.core.paths import JsonPath, first_present
from marketplace_payments.core.schemas import PaymentRequest, PaymentResult
from marketplace_payments.core.serializer import canonical_json
from marketplace_payments.core.signing import (
    SigningEngine,
    basic_auth_header,
    format_request_timestamp,
    new_request_id,
)
from marketplace_payments.monitoring import metrics

from .payloads import SignedCheckoutBody, SnapTransactionBody

logger = structlog.get_logger(__name__)

ERROR_CODE_PATHS: Tuple[JsonPath, ...] = (
    ("error", "code"),
    ("status_code",),
)


@dataclass(frozen=True)
class PreparedRequest:
    """An outbound call, ready to send."""

    method: str
    url: str
    headers: Dict[str, str]
    body: bytes
    request_id: Optional[str] = None


class GatewayClient(ABC):
    """
    Base class for payment gateway strategies.

    Subclasses build the request; this class sends it, classifies failures
    and extracts the payment URL from the response.
    """

    name: str = "gateway"
    sandbox_base_url: str = ""
    production_base_url: str = ""
    payment_url_paths: Tuple[JsonPath, ...] = ()

    def __init__(
        self,
        settings: Settings,
        http_client: Optional[httpx.AsyncClient] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        """
        Initialize gateway client.

        Args:
            settings: Application settings holding gateway credentials
            http_client: Optional shared HTTP client (one is opened per call otherwise)
            clock: Optional UTC clock, used for request timestamps
        """
        self.settings = settings
        self.timeout = httpx.Timeout(settings.gateway_timeout_seconds)
        self._http_client = http_client
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._configuration_error: Optional[ConfigurationError] = None

        try:
            self._configure()
        except ConfigurationError as e:
            # Reported on every create_payment call instead of failing here
            self._configuration_error = e
            logger.warning("gateway_not_configured", gateway=self.name, error=str(e))
        else:
            logger.info(
                "gateway_client_initialized",
                gateway=self.name,
                production=settings.gateway_is_production,
            )

    @abstractmethod
    def _configure(self) -> None:
        """Validate settings and derive credentials; raise ConfigurationError."""

    def _resolve_base_url(self) -> str:
        """
        Pick the configured or environment default base URL and validate it.

        Raises:
            ConfigurationError: If the URL cannot be parsed or is not absolute http(s)
        """
        settings = self.settings
        base_url = settings.gateway_base_url or (
            self.production_base_url if settings.gateway_is_production else self.sandbox_base_url
        )
        try:
            url = httpx.URL(base_url)
        except httpx.InvalidURL as e:
            raise ConfigurationError(f"Invalid gateway base URL: {e}") from e
        if url.scheme not in ("http", "https") or not url.host:
            raise ConfigurationError(
                f"Gateway base URL must be an absolute http(s) URL: {base_url!r}"
            )
        return base_url.rstrip("/")

    @abstractmethod
    def _prepare(self, request: PaymentRequest) -> PreparedRequest:
        """Serialize and authenticate one payment request."""

    async def create_payment(self, request: PaymentRequest) -> PaymentResult:
        """
        Create a payment at the gateway.

        Args:
            request: Payment to create

        Returns:
            PaymentResult: Payment URL on success, error message otherwise
        """
        log = logger.bind(gateway=self.name, invoice_number=request.invoice_number)
        start_time = time.perf_counter()

        try:
            if self._configuration_error is not None:
                raise self._configuration_error

            prepared = self._prepare(request)
            log = log.bind(request_id=prepared.request_id)
            log.info("sending_payment_request", url=prepared.url)

            response = await self._send(prepared)
            payment_url = self.extract_payment_url(response)

        except PaymentGatewayError as e:
            log.error(
                "payment_creation_failed",
                error_type=e.error_type.value,
                error=str(e),
            )
            metrics.gateway_requests_total.labels(
                gateway=self.name, outcome=e.error_type.value
            ).inc()
            return PaymentResult.failed(str(e), e.error_type)

        finally:
            metrics.gateway_request_duration_seconds.labels(gateway=self.name).observe(
                time.perf_counter() - start_time
            )

        log.info("payment_url_created", payment_url=payment_url)
        metrics.gateway_requests_total.labels(gateway=self.name, outcome="success").inc()
        return PaymentResult.succeeded(payment_url)

    async def _send(self, prepared: PreparedRequest) -> httpx.Response:
        """
        Send one request.

        Raises:
            ConfigurationError: If the URL cannot be sent at all
            TransportError: On connection failure or timeout
            GatewayError: On a non-2xx answer
        """
        try:
            if self._http_client is not None:
                response = await self._http_client.request(
                    prepared.method,
                    prepared.url,
                    content=prepared.body,
                    headers=prepared.headers,
                    timeout=self.timeout,
                )
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.request(
                        prepared.method,
                        prepared.url,
                        content=prepared.body,
                        headers=prepared.headers,
                    )
        except httpx.InvalidURL as e:
            raise ConfigurationError(f"Invalid gateway URL: {e}") from e
        except httpx.TimeoutException as e:
            raise TransportError(f"Request timeout to {self.name} gateway") from e
        except httpx.RequestError as e:
            raise TransportError(f"HTTP error: {e}") from e

        logger.info(
            "gateway_response_received",
            gateway=self.name,
            status_code=response.status_code,
        )

        if not response.is_success:
            raise GatewayError(
                response.text or f"Gateway returned HTTP {response.status_code}",
                status_code=response.status_code,
                error_code=self._error_code(response),
            )
        return response

    @staticmethod
    def _error_code(response: httpx.Response) -> Optional[str]:
        try:
            return first_present(response.json(), ERROR_CODE_PATHS)
        except ValueError:
            return None

    def extract_payment_url(self, response: httpx.Response) -> str:
        """
        Take the payment URL from the first candidate path present.

        Raises:
            ResponseFormatError: If the body is not JSON or no path holds a URL
        """
        try:
            document: Any = response.json()
        except ValueError as e:
            raise ResponseFormatError(f"Error parsing response from {self.name} gateway") from e

        payment_url = first_present(document, self.payment_url_paths)
        if payment_url is None:
            logger.warning(
                "payment_url_not_found",
                gateway=self.name,
                response_body=response.text,
            )
            raise ResponseFormatError("Payment URL not found in gateway response")
        return payment_url


class SignedGateway(GatewayClient):
    """Checkout gateway authenticated by Digest + HMAC-SHA256 signature headers."""

    name = "signed"
    request_target = "/checkout/v1/payment"
    sandbox_base_url = "https://api-sandbox.doku.com"
    production_base_url = "https://api.doku.com"

    # Different API versions place the URL at different paths
    payment_url_paths: Tuple[JsonPath, ...] = (
        ("response", "payment", "url"),
        ("payment", "url"),
        ("url",),
        ("data", "payment_url"),
    )

    def _configure(self) -> None:
        settings = self.settings
        self.base_url = self._resolve_base_url()
        if not settings.gateway_callback_url.strip():
            raise ConfigurationError("Gateway callback URL is not configured")
        self.signing_engine = SigningEngine(
            client_id=settings.gateway_client_id,
            secret_key=settings.gateway_secret_key,
        )

    def _prepare(self, request: PaymentRequest) -> PreparedRequest:
        body = canonical_json(
            SignedCheckoutBody.from_request(
                request,
                currency=self.settings.payment_currency,
                callback_url=self.settings.gateway_callback_url.strip(),
                payment_due_minutes=self.settings.payment_due_minutes,
            )
        )
        context = self.signing_engine.sign(
            method="POST",
            request_target=self.request_target,
            body=body,
            request_id=new_request_id(),
            request_timestamp=format_request_timestamp(self._clock()),
        )
        headers = dict(context.headers)
        headers["Content-Type"] = "application/json"
        return PreparedRequest(
            method=context.method,
            url=f"{self.base_url}{context.request_target}",
            headers=headers,
            body=context.body,
            request_id=context.request_id,
        )


class TokenGateway(GatewayClient):
    """Hosted-checkout gateway authenticated with a Basic server key."""

    name = "token"
    request_target = "/snap/v1/transactions"
    sandbox_base_url = "https://app.sandbox.midtrans.com"
    production_base_url = "https://app.midtrans.com"
    payment_url_paths: Tuple[JsonPath, ...] = (("redirect_url",),)

    def _configure(self) -> None:
        settings = self.settings
        self.base_url = self._resolve_base_url()
        # Computed once; every request reuses the same credentials
        self.default_headers = {
            "Authorization": basic_auth_header(settings.gateway_secret_key),
            "Accept": "application/json",
            "Content-Type": "application/json",
        }

    def _prepare(self, request: PaymentRequest) -> PreparedRequest:
        body = canonical_json(
            SnapTransactionBody.from_request(
                request, callback_url=self.settings.gateway_callback_url.strip() or None
            )
        )
        return PreparedRequest(
            method="POST",
            url=f"{self.base_url}{self.request_target}",
            headers=dict(self.default_headers),
            body=body,
        )

    def public_config(self) -> Dict[str, Any]:
        """Values the browser needs to open the hosted checkout. Never the server key."""
        production = self.settings.gateway_is_production
        script_host = self.production_base_url if production else self.sandbox_base_url
        return {
            "client_key": self.settings.gateway_client_key,
            "is_production": production,
            "snap_url": f"{script_host}/snap/snap.js",
        }


GATEWAY_CLIENTS: Dict[GatewayKind, Type[GatewayClient]] = {
    GatewayKind.TOKEN: TokenGateway,
    GatewayKind.SIGNED: SignedGateway,
}


def build_gateway_client(
    settings: Settings,
    http_client: Optional[httpx.AsyncClient] = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> GatewayClient:
    """
    Build the gateway client selected by ``settings.payment_gateway``.

    Args:
        settings: Application settings
        http_client: Optional shared HTTP client
        clock: Optional UTC clock

    Returns:
        GatewayClient: Configured strategy
    """
    client_class = GATEWAY_CLIENTS[GatewayKind(settings.payment_gateway)]
    return client_class(settings, http_client=http_client, clock=clock)
