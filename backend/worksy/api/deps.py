"""
API Dependencies — DB session, shared services, admin guard.

Process-wide singletons (rate limiter, fingerprint engine, completion
client, blob storage) live on ``app.state`` and are injected through the
getters below, so tests swap them with ``app.dependency_overrides``.
"""

import logging
from datetime import datetime
from typing import AsyncGenerator, Callable

from fastapi import Depends, Request
from jose import JWTError
from sqlalchemy.ext.asyncio import AsyncSession

from worksy.auth.jwt import admin_key_matches, decode_admin_token
from worksy.database import async_session
from worksy.services.admin_service import AdminService
from worksy.services.chat_service import ChatService
from worksy.services.completion import CompletionClient
from worksy.services.errors import UnauthorizedError
from worksy.services.fingerprint import FingerprintEngine
from worksy.services.index_builder import IndexBuilder
from worksy.services.policy import PolicyGate
from worksy.services.session_service import SessionService
from worksy.services.storage import IndexStorage
from worksy.timeutil import utcnow

logger = logging.getLogger(__name__)


# ── Database session ─────────────────────────────────────────────────────────

async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield a DB session per request, commit on success, rollback on error."""
    async with async_session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


# ── Process-wide collaborators ───────────────────────────────────────────────

def get_policy_gate(request: Request) -> PolicyGate:
    return request.app.state.policy_gate


def get_fingerprint_engine(request: Request) -> FingerprintEngine:
    return request.app.state.fingerprint_engine


def get_completion_client(request: Request) -> CompletionClient:
    return request.app.state.completion_client


def get_index_storage(request: Request) -> IndexStorage:
    return request.app.state.index_storage


def get_clock() -> Callable[[], datetime]:
    return utcnow


# ── Request-scoped services ──────────────────────────────────────────────────

def get_session_service(
    db: AsyncSession = Depends(get_db),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> SessionService:
    return SessionService(db, clock)


def get_chat_service(
    db: AsyncSession = Depends(get_db),
    gate: PolicyGate = Depends(get_policy_gate),
    completion: CompletionClient = Depends(get_completion_client),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> ChatService:
    return ChatService(db, gate, completion, clock)


def get_index_builder(
    db: AsyncSession = Depends(get_db),
    engine: FingerprintEngine = Depends(get_fingerprint_engine),
    storage: IndexStorage = Depends(get_index_storage),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> IndexBuilder:
    return IndexBuilder(db, engine, storage, clock)


def get_admin_service(
    db: AsyncSession = Depends(get_db),
    builder: IndexBuilder = Depends(get_index_builder),
) -> AdminService:
    return AdminService(db, builder)


# ── Admin guard ──────────────────────────────────────────────────────────────

async def require_admin(request: Request) -> str:
    """
    Accept either ``X-Admin-Key`` or ``Authorization: Bearer <admin jwt>``.

    Every failure is the same 401 so callers learn nothing about which part
    was wrong.
    """
    if admin_key_matches(request.headers.get("X-Admin-Key")):
        return "admin-key"

    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        try:
            claims = decode_admin_token(auth_header[7:])
        except JWTError as e:
            logger.debug("Admin JWT rejected: %s", e)
        else:
            return claims.get("sub", "admin")

    raise UnauthorizedError()
