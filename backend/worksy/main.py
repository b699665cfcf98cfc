import logging
import traceback
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

import worksy.models  # noqa: F401  (register tables on Base.metadata)
from worksy.config import settings
from worksy.database import Base, engine
from worksy.middleware.logging_config import configure_logging
from worksy.services.completion import CompletionClient
from worksy.services.errors import WorksyError
from worksy.services.fingerprint import FingerprintEngine
from worksy.services.policy import DEFAULT_AMBER_POLICY, PolicyGate
from worksy.services.rate_limiter import SlidingWindowRateLimiter
from worksy.services.storage import IndexStorage

configure_logging(settings.log_level, json_lines=settings.log_json)
logger = logging.getLogger("worksy")

from worksy.api.assignments import router as assignments_router  # noqa: E402
from worksy.api.chat import router as chat_router  # noqa: E402
from worksy.api.sessions import router as sessions_router  # noqa: E402
from worksy.api.index import router as index_router  # noqa: E402
from worksy.api.admin import router as admin_router  # noqa: E402
from worksy.api.metrics import router as metrics_router  # noqa: E402


@asynccontextmanager
async def lifespan(app: FastAPI):
    async with engine.begin() as conn:
        if settings.auto_create_tables:
            await conn.run_sync(Base.metadata.create_all)
        await conn.execute(text("SELECT 1"))
    if not settings.server_hmac_secret:
        logger.warning("SERVER_HMAC_SECRET not set: AI Index records will carry no HMAC")
    yield
    await engine.dispose()


app = FastAPI(
    title="Worksy",
    description="AI tutoring sandbox with academic-integrity policy and sealed AI Index records",
    version="0.1.0",
    lifespan=lifespan,
)

# One per process: shared by every request
app.state.policy_gate = PolicyGate(SlidingWindowRateLimiter(), DEFAULT_AMBER_POLICY)
app.state.fingerprint_engine = FingerprintEngine(settings.server_hmac_secret)
app.state.completion_client = CompletionClient()
app.state.index_storage = IndexStorage()

# ── CORS ─────────────────────────────────────────────────────────────────────
origins = [o.strip() for o in settings.allowed_origins.split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "Authorization", "X-Admin-Key", "X-Request-ID"],
)

# ── Security headers middleware ──────────────────────────────────────────────
from worksy.middleware.security_headers import SecurityHeadersMiddleware  # noqa: E402

app.add_middleware(SecurityHeadersMiddleware)

# ── Request context middleware (request ID + timing) ─────────────────────────
from worksy.middleware.request_context import RequestContextMiddleware  # noqa: E402

app.add_middleware(RequestContextMiddleware)

# ── Prometheus metrics middleware ────────────────────────────────────────────
from worksy.middleware.metrics import PrometheusMiddleware  # noqa: E402

app.add_middleware(PrometheusMiddleware)


@app.exception_handler(WorksyError)
async def worksy_error_handler(request: Request, exc: WorksyError):
    body = {"error": exc.detail}
    if exc.session_id:
        body["sessionId"] = exc.session_id
    return JSONResponse(status_code=exc.status_code, content=body)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Return detailed error info in development mode so 500s are debuggable."""
    tb = traceback.format_exc()
    logger.error(
        "Unhandled %s on %s %s: %s\n%s",
        type(exc).__name__, request.method, request.url.path, exc, tb,
    )
    if settings.environment == "development":
        return JSONResponse(
            status_code=500,
            content={"error": "Server error", "detail": f"{type(exc).__name__}: {exc}"},
        )
    return JSONResponse(status_code=500, content={"error": "Server error"})


app.include_router(assignments_router)
app.include_router(chat_router)
app.include_router(sessions_router)
app.include_router(index_router)
app.include_router(admin_router)
app.include_router(metrics_router)


@app.get("/api/ping")
async def ping():
    return {"ok": True}


@app.get("/api/health")
async def health_check():
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as exc:
        logger.warning("Health check: database unreachable (%s)", exc)
        return JSONResponse(status_code=500, content={"ok": False})
    return {"ok": True}
