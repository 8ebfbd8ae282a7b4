"""
Request signing for gateways that authenticate each call with Digest + HMAC.

Signature layout:
    Client-Id:{client_id}
    Request-Id:{request_id}
    Request-Timestamp:{timestamp}
    Request-Target:{path}
    Digest:{base64(sha256(body))}

joined by single newlines, signed with HMAC-SHA256 under the secret key.
"""
import base64
import hashlib
import hmac
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Optional, Union

import structlog

from .exceptions import ConfigurationError

logger = structlog.get_logger(__name__)

SIGNATURE_ALGORITHM = "HMACSHA256"
DIGEST_ALGORITHM = "SHA-256"


def new_request_id() -> str:
    """Generate a fresh request id; the gateway uses it for replay detection."""
    return str(uuid.uuid4())


def format_request_timestamp(moment: Optional[datetime] = None) -> str:
    """
    Render a UTC timestamp with millisecond precision.

    Args:
        moment: Timestamp to render (defaults to now). Naive values are taken as UTC.

    Returns:
        str: e.g. ``2024-05-01T08:30:00.123Z``
    """
    moment = moment or datetime.now(timezone.utc)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    moment = moment.astimezone(timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


def compute_digest(body: bytes) -> str:
    """Base64 encoded SHA-256 of the body bytes."""
    return base64.b64encode(hashlib.sha256(body).digest()).decode("ascii")


def build_string_to_sign(
    client_id: str,
    request_id: str,
    timestamp: str,
    request_target: str,
    digest: str,
) -> str:
    return (
        f"Client-Id:{client_id}\n"
        f"Request-Id:{request_id}\n"
        f"Request-Timestamp:{timestamp}\n"
        f"Request-Target:{request_target}\n"
        f"Digest:{digest}"
    )


@dataclass(frozen=True)
class SignedRequestContext:
    """Everything needed to send one signed request. Never persisted."""

    method: str
    client_id: str
    request_id: str
    request_timestamp: str
    request_target: str
    body: bytes
    digest: str
    signature: str

    @property
    def headers(self) -> Dict[str, str]:
        """Transport headers carrying the signature."""
        return {
            "Client-Id": self.client_id,
            "Request-Id": self.request_id,
            "Request-Timestamp": self.request_timestamp,
            "Digest": f"{DIGEST_ALGORITHM}={self.digest}",
            "Signature": f"{SIGNATURE_ALGORITHM}={self.signature}",
        }


class SigningEngine:
    """
    Computes digests and HMAC signatures for outbound gateway requests.

    The engine holds only the immutable credentials, so one instance can sign
    concurrent requests.
    """

    def __init__(self, client_id: str, secret_key: Union[str, bytes]):
        """
        Initialize signing engine.

        Args:
            client_id: Client id issued by the gateway
            secret_key: Shared secret used as the HMAC key

        Raises:
            ConfigurationError: If either credential is empty
        """
        if not client_id or not client_id.strip():
            raise ConfigurationError("Gateway client id is not configured")
        if not secret_key:
            raise ConfigurationError("Gateway secret key is not configured")

        self.client_id = client_id
        self._secret_key = secret_key.encode("utf-8") if isinstance(secret_key, str) else secret_key

    def sign(
        self,
        method: str,
        request_target: str,
        body: bytes,
        request_id: str,
        request_timestamp: str,
    ) -> SignedRequestContext:
        """
        Sign one request.

        Args:
            method: HTTP method
            request_target: Path of the endpoint, e.g. ``/checkout/v1/payment``
            body: Canonical body bytes
            request_id: Unique id of this attempt
            request_timestamp: Timestamp from :func:`format_request_timestamp`

        Returns:
            SignedRequestContext: Signed request metadata and headers

        Raises:
            ConfigurationError: If the request target is empty
        """
        if not request_target or not request_target.strip():
            raise ConfigurationError("Request target path is not configured")
        if not request_id or not request_timestamp:
            raise ConfigurationError("Request id and timestamp are required for signing")

        digest = compute_digest(body)
        string_to_sign = build_string_to_sign(
            client_id=self.client_id,
            request_id=request_id,
            timestamp=request_timestamp,
            request_target=request_target,
            digest=digest,
        )
        signature = base64.b64encode(
            hmac.new(self._secret_key, string_to_sign.encode("utf-8"), hashlib.sha256).digest()
        ).decode("ascii")

        logger.debug(
            "payment_request_signed",
            request_id=request_id,
            request_target=request_target,
            digest=digest,
        )

        return SignedRequestContext(
            method=method.upper(),
            client_id=self.client_id,
            request_id=request_id,
            request_timestamp=request_timestamp,
            request_target=request_target,
            body=body,
            digest=digest,
            signature=signature,
        )


def basic_auth_header(server_key: str) -> str:
    """
    Authorization header value for token gateways.

    The server key is sent as the username with an empty password.
    """
    if not server_key:
        raise ConfigurationError("Gateway server key is not configured")
    token = base64.b64encode(f"{server_key}:".encode("utf-8")).decode("ascii")
    return f"Basic {token}"
