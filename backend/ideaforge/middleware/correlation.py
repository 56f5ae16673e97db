"""X-Request-ID propagation.

The id is echoed on every response, bound into every log entry and
returned as ``correlation_id`` alongside error ``debug_id``s, so a user
report can be traced through the API and the job it launched.
"""

import re
import uuid

from asgi_correlation_id import CorrelationIdMiddleware
from asgi_correlation_id.context import correlation_id
from fastapi import FastAPI

REQUEST_ID_HEADER = "X-Request-ID"

# Client-supplied ids end up in log lines; keep them short and unambiguous
_REQUEST_ID_PATTERN = re.compile(r"^[A-Za-z0-9._:-]{1,128}$")


def is_acceptable_request_id(value: str) -> bool:
    return bool(_REQUEST_ID_PATTERN.match(value))


def setup_correlation_middleware(app: FastAPI) -> None:
    """Echo a valid client X-Request-ID, otherwise mint a UUID4."""
    app.add_middleware(
        CorrelationIdMiddleware,
        header_name=REQUEST_ID_HEADER,
        generator=lambda: str(uuid.uuid4()),
        validator=is_acceptable_request_id,
        transformer=lambda value: value,
    )


def get_correlation_id() -> str | None:
    """Get the current request's correlation ID, or None outside a request."""
    try:
        return correlation_id.get()
    except LookupError:
        return None


__all__ = ["REQUEST_ID_HEADER", "get_correlation_id", "setup_correlation_middleware"]
