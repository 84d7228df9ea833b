"""Response classification by declared content type."""

import json
import logging
from typing import Optional

from .errors import UnsupportedResponseError
from .models import ResponseData, ResponseKind

logger = logging.getLogger(__name__)

# Matched as literal prefixes of the Content-Type header, in order.
CONTENT_TYPE_PREFIXES = [
    ("application/json", ResponseKind.JSON),
    ("text/plain", ResponseKind.TEXT),
    ("text/html", ResponseKind.TEXT),
    ("application/xml", ResponseKind.XML),
    ("text/xml", ResponseKind.XML),
]


def response_kind(content_type: Optional[str]) -> ResponseKind:
    if not content_type:
        raise UnsupportedResponseError("response has no content type")
    for prefix, kind in CONTENT_TYPE_PREFIXES:
        if content_type.startswith(prefix):
            return kind
    raise UnsupportedResponseError(f"unsupported response type {content_type!r}")


def classify_response(content_type: Optional[str], body: str) -> ResponseData:
    """Wrap a response body according to its content type.

    JSON bodies are parsed, text and XML bodies are kept as raw strings. Any
    other (or missing) content type, and JSON that does not parse, yields an
    UNKNOWN response with an empty payload. Never raises.
    """
    try:
        kind = response_kind(content_type)
        if kind == ResponseKind.JSON:
            try:
                return ResponseData(kind=kind, payload=json.loads(body))
            except json.JSONDecodeError as exc:
                raise UnsupportedResponseError(f"invalid JSON body: {exc}") from exc
        # XML is not validated
        return ResponseData(kind=kind, payload=body)
    except UnsupportedResponseError as exc:
        logger.info("%s", exc)
        return ResponseData.unknown()
