"""
Canonical JSON rendering for gateway request bodies.

The signed gateway hashes the exact body bytes, so the body must be rendered
the same way every time:
- object keys in snake_case
- null members dropped at every depth
- no whitespace between tokens
- members in declaration order (never sorted)
"""
import json
import re
from typing import Any, Mapping, Sequence, Union

from pydantic import BaseModel

from .exceptions import SerializationError

_WORD_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")

Payload = Union[BaseModel, Mapping[str, Any], Sequence[Any]]


def to_snake_case(name: str) -> str:
    """
    Convert a field name to snake_case.

    Examples:
        >>> to_snake_case("InvoiceNumber")
        'invoice_number'
        >>> to_snake_case("callbackURL")
        'callback_url'
    """
    return _WORD_BOUNDARY.sub("_", name).replace("-", "_").lower()


def _normalize(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return _normalize(value.model_dump(mode="json"))
    if isinstance(value, Mapping):
        normalized = {}
        for key, item in value.items():
            if not isinstance(key, str):
                raise SerializationError(f"Object keys must be strings, got {key!r}")
            if item is None:
                continue
            normalized[to_snake_case(key)] = _normalize(item)
        return normalized
    if isinstance(value, (list, tuple)):
        return [_normalize(item) for item in value]
    return value


def canonical_json(payload: Payload) -> bytes:
    """
    Render a request payload as canonical, minified UTF-8 JSON.

    Args:
        payload: Pydantic model, mapping or sequence

    Returns:
        bytes: Body bytes to send and to digest

    Raises:
        SerializationError: If the payload holds a value JSON cannot represent
    """
    try:
        document = _normalize(payload)
        rendered = json.dumps(
            document,
            separators=(",", ":"),
            ensure_ascii=False,
            allow_nan=False,
        )
    except SerializationError:
        raise
    except (TypeError, ValueError) as e:
        raise SerializationError(f"Request body is not serializable: {e}") from e
    return rendered.encode("utf-8")
