"""
Response hardening for the student and admin surfaces.

Every response gets the static headers below. API responses carry
transcripts, sealed indexes and admin tokens, so they are also marked
``no-store`` to keep them out of browser and proxy caches.
"""

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

STATIC_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
    "Permissions-Policy": "camera=(), microphone=(), geolocation=()",
}

NO_STORE_PREFIX = "/api/"


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers.update(STATIC_HEADERS)
        if request.url.path.startswith(NO_STORE_PREFIX):
            response.headers.setdefault("Cache-Control", "no-store")
        return response
