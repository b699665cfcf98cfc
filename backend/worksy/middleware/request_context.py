"""
Request ID propagation.

An inbound ``X-Request-ID`` is reused when it looks like an identifier,
otherwise a fresh one is minted. The ID is held in a ContextVar for the
JSON log formatter and echoed on the response.
"""

import logging
import re
import time
from contextvars import ContextVar
from uuid import uuid4

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

logger = logging.getLogger(__name__)

_request_id: ContextVar[str] = ContextVar("request_id", default="")
_VALID_ID = re.compile(r"^[A-Za-z0-9._-]{1,64}$")


def get_request_id() -> str:
    return _request_id.get()


def _inbound_id(request: Request) -> str:
    candidate = request.headers.get("X-Request-ID", "")
    return candidate if _VALID_ID.match(candidate) else uuid4().hex


class RequestContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        request_id = _inbound_id(request)
        token = _request_id.set(request_id)
        started = time.perf_counter()
        try:
            response = await call_next(request)
        finally:
            _request_id.reset(token)
        elapsed_ms = round((time.perf_counter() - started) * 1000, 2)

        logger.info(
            "%s %s -> %d in %.0fms",
            request.method, request.url.path, response.status_code, elapsed_ms,
            extra={"duration_ms": elapsed_ms, "request_id": request_id},
        )
        response.headers["X-Request-ID"] = request_id
        return response
