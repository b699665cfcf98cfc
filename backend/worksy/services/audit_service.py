"""
Audit Service — best-effort, hash-chained lifecycle log.

Records ``consent``, ``policy_shown``, ``index_generated`` and ``submit``
events per session. Each entry hashes its content together with the
previous entry's hash so the trail itself is tamper-evident.

Writes are a side channel: ``record`` never raises. The write runs inside a
savepoint, so a failed audit insert rolls back only itself and the
triggering operation carries on. Callers receive an ``AuditResult`` and are
free to ignore it.
"""

import hashlib
import json
import logging
from dataclasses import dataclass
from uuid import uuid4

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from worksy.models import AuditLog

logger = logging.getLogger(__name__)

# pg_advisory_xact_lock key guarding the head of the audit chain
CHAIN_LOCK_KEY = 0x574B5359


@dataclass
class AuditResult:
    entry: AuditLog | None = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class AuditService:
    def __init__(self, session: AsyncSession):
        self.session = session

    def _calculate_hash(self, content: dict, previous_hash: str | None) -> str:
        """SHA-256 hash of entry contents + previous hash."""
        payload = {
            "content": content,
            "previous_hash": previous_hash or "",
        }
        raw = json.dumps(payload, sort_keys=True, default=str)
        return hashlib.sha256(raw.encode()).hexdigest()

    async def _lock_chain(self) -> None:
        """Serialize head-read-then-insert across transactions (Postgres only).

        The advisory lock is released when the enclosing transaction ends.
        SQLite already serializes writers, so nothing is taken there.
        """
        if self.session.get_bind().dialect.name != "postgresql":
            return
        await self.session.execute(select(func.pg_advisory_xact_lock(CHAIN_LOCK_KEY)))

    async def _get_latest_hash(self) -> str | None:
        result = await self.session.execute(
            select(AuditLog.current_hash).order_by(AuditLog.id.desc()).limit(1)
        )
        return result.scalar()

    async def record(self, session_id: str | None, event_type: str, meta: dict | None = None) -> AuditResult:
        """Write an audit entry. Never raises."""
        try:
            async with self.session.begin_nested():
                await self._lock_chain()
                previous_hash = await self._get_latest_hash()
                entry_meta = meta or {}
                content = {
                    "session_id": session_id,
                    "type": event_type,
                    "meta": entry_meta,
                }
                entry = AuditLog(
                    event_id=str(uuid4()),
                    session_id=session_id,
                    type=event_type,
                    meta=entry_meta,
                    previous_hash=previous_hash,
                    current_hash=self._calculate_hash(content, previous_hash),
                )
                self.session.add(entry)
                await self.session.flush()
            return AuditResult(entry=entry)
        except SQLAlchemyError as exc:
            logger.warning("Audit write failed (%s, session %s): %s", event_type, session_id, exc)
            return AuditResult(error=exc)

    async def verify_chain_integrity(self) -> dict:
        """Walk the full chain and verify each entry's hash."""
        result = await self.session.execute(select(AuditLog).order_by(AuditLog.id.asc()))
        entries = list(result.scalars())

        if not entries:
            return {"valid": True, "entries_checked": 0, "first_invalid": None}

        for i, entry in enumerate(entries):
            expected_prev = entries[i - 1].current_hash if i > 0 else None
            if entry.previous_hash != expected_prev:
                return {
                    "valid": False,
                    "entries_checked": i + 1,
                    "first_invalid": entry.event_id,
                    "reason": "previous_hash mismatch",
                }

            content = {
                "session_id": entry.session_id,
                "type": entry.type,
                "meta": entry.meta,
            }
            if entry.current_hash != self._calculate_hash(content, entry.previous_hash):
                return {
                    "valid": False,
                    "entries_checked": i + 1,
                    "first_invalid": entry.event_id,
                    "reason": "current_hash mismatch (data tampered)",
                }

        return {"valid": True, "entries_checked": len(entries), "first_invalid": None}

    async def get_entries(self, session_id: str, limit: int = 50) -> list[AuditLog]:
        result = await self.session.execute(
            select(AuditLog)
            .where(AuditLog.session_id == session_id)
            .order_by(AuditLog.id.asc())
            .limit(limit)
        )
        return list(result.scalars())

