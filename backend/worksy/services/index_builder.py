"""
Index Builder — assembles, seals and verifies AI Index records.

``generate`` snapshots a session (assignment summary, caps, session summary,
version stamps and the full ordered transcript) into a plain-JSON document,
seals it with the Fingerprint Engine and stores a new immutable AIIndex row.
Earlier rows for the same session are never touched; the session's
``index_id`` moves to the newest one.

``generated_at`` is part of the sealed content. It is fixed when the
document is built and never recomputed, so verification reads the stored
document as-is.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from worksy.middleware.metrics import ai_index_generated_total, ai_index_verifications_total
from worksy.models import AIIndex, Assignment, ChatEvent, TutoringSession
from worksy.services.audit_service import AuditService
from worksy.services.errors import IndexRequiredError, InputValidationError, NotFoundError
from worksy.services.fingerprint import FingerprintEngine
from worksy.services.session_service import SessionService
from worksy.services.storage import IndexStorage
from worksy.timeutil import to_iso, utcnow

logger = logging.getLogger(__name__)


@dataclass
class SealedIndex:
    id: str
    hash: str
    hmac: str | None
    document: dict


@dataclass
class IndexVerification:
    index_id: str
    hash_ok: bool
    hmac_ok: bool
    policy_version: int | None
    config_version: int | None

    @property
    def ok(self) -> bool:
        return self.hash_ok and self.hmac_ok


@dataclass
class UploadResult:
    url: str | None
    path: str


def event_entry(event: ChatEvent) -> dict:
    return {
        "role": event.role,
        "content": event.content,
        "created_at": to_iso(event.created_at),
        "prompt_tokens": event.prompt_tokens,
        "completion_tokens": event.completion_tokens,
        "total_tokens": event.total_tokens,
        "model": event.model,
    }


def build_document(
    tutoring_session: TutoringSession,
    assignment: Assignment,
    events: list[ChatEvent],
    generated_at: datetime,
) -> dict:
    """Canonical index document. Plain JSON types only."""
    return {
        "assignment": {
            "id": tutoring_session.assignment_id,
            "module": assignment.module_code,
            "title": assignment.title,
            "due_at": to_iso(assignment.due_at),
            "mode": assignment.mode,
            "model": assignment.model,
        },
        "student": tutoring_session.student_ref,
        "caps": {
            "prompt_cap": assignment.prompt_cap,
            "input_token_cap": assignment.input_token_cap,
            "output_token_cap": assignment.output_token_cap,
        },
        "session": {
            "id": tutoring_session.id,
            "started_at": to_iso(tutoring_session.started_at),
            "ended_at": to_iso(tutoring_session.ended_at),
            "tab_switches": tutoring_session.tab_switches or 0,
            "notes": tutoring_session.notes or None,
        },
        "policy_version": assignment.policy_version or 1,
        "config_version": assignment.config_version or 1,
        "events": [event_entry(e) for e in events],
        "generated_at": to_iso(generated_at),
    }


class IndexBuilder:
    def __init__(
        self,
        session: AsyncSession,
        engine: FingerprintEngine,
        storage: IndexStorage | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session = session
        self.engine = engine
        self.storage = storage
        self.clock = clock
        self.sessions = SessionService(session, clock)
        self.audit = AuditService(session)

    async def transcript(self, session_id: str) -> list[ChatEvent]:
        result = await self.session.execute(
            select(ChatEvent).where(ChatEvent.session_id == session_id).order_by(ChatEvent.id.asc())
        )
        return list(result.scalars())

    async def generate(self, session_id: str | None) -> SealedIndex:
        tutoring_session = await self.sessions.get_or_404(session_id)
        assignment = await self.session.get(Assignment, tutoring_session.assignment_id)
        if assignment is None:
            raise NotFoundError("Assignment not found")
        events = await self.transcript(tutoring_session.id)

        document = build_document(tutoring_session, assignment, events, self.clock())
        fingerprint = self.engine.seal(document)

        record = AIIndex(
            assignment_id=tutoring_session.assignment_id,
            student_id=tutoring_session.student_ref,
            session_id=tutoring_session.id,
            index_json=document,
            hash=fingerprint.hash,
            hmac=fingerprint.mac,
            policy_version=document["policy_version"],
            config_version=document["config_version"],
        )
        self.session.add(record)
        await self.session.flush()

        tutoring_session.index_id = record.id
        tutoring_session.last_activity_at = self.clock()
        await self.session.flush()

        ai_index_generated_total.inc()
        logger.info(
            "AI Index %s sealed for session %s (%d events, hash %s…)",
            record.id, tutoring_session.id, len(events), fingerprint.hash[:12],
            extra={"session_id": tutoring_session.id, "index_id": record.id},
        )
        await self.audit.record(
            tutoring_session.id, "index_generated", {"index_id": record.id, "hash": fingerprint.hash}
        )
        return SealedIndex(id=record.id, hash=fingerprint.hash, hmac=fingerprint.mac, document=document)

    async def get(self, index_id: str | None) -> AIIndex:
        if not index_id:
            raise InputValidationError("Missing id")
        record = await self.session.get(AIIndex, index_id)
        if record is None:
            raise NotFoundError("Not found")
        return record

    async def latest(self, session_id: str | None) -> AIIndex:
        if not session_id:
            raise InputValidationError("Missing sessionId")
        tutoring_session = await self.sessions.get(session_id)
        if tutoring_session is None or not tutoring_session.index_id:
            raise NotFoundError("No index for this session")
        record = await self.session.get(AIIndex, tutoring_session.index_id)
        if record is None:
            raise NotFoundError("Index not found")
        return record

    def check(self, record: AIIndex) -> IndexVerification:
        """Recompute the fingerprint of a stored record. Read-only."""
        outcome = self.engine.verify(record.index_json, record.hash, record.hmac)
        verification = IndexVerification(
            index_id=record.id,
            hash_ok=outcome.hash_ok,
            hmac_ok=outcome.hmac_ok,
            policy_version=record.policy_version,
            config_version=record.config_version,
        )
        ai_index_verifications_total.labels(result="ok" if verification.ok else "tampered").inc()
        if not verification.ok:
            logger.warning(
                "AI Index %s failed verification (hash_ok=%s, hmac_ok=%s)",
                record.id, verification.hash_ok, verification.hmac_ok,
            )
        return verification

    async def verify(self, index_id: str | None) -> IndexVerification:
        return self.check(await self.get(index_id))

    async def upload(self, session_id: str | None) -> UploadResult:
        """Push the latest sealed document (with its fingerprint) to blob storage."""
        if self.storage is None:
            raise RuntimeError("IndexBuilder.upload requires a storage backend")
        tutoring_session = await self.sessions.get_or_404(session_id)
        if not tutoring_session.index_id:
            raise IndexRequiredError("Generate AI Index first.", session_id=tutoring_session.id)
        record = await self.session.get(AIIndex, tutoring_session.index_id)
        if record is None:
            raise NotFoundError("Index not found")

        content = json.dumps(
            {**record.index_json, "hash": record.hash, "hmac": record.hmac},
            indent=2,
            ensure_ascii=False,
        )
        stamp = self.clock().isoformat().replace(":", "-").replace(".", "-")
        path = f"{tutoring_session.assignment_id}/{tutoring_session.id}/ai-index-{stamp}.json"

        await asyncio.to_thread(self.storage.upload, path, content.encode("utf-8"), "application/json")
        record.storage_path = path
        await self.session.flush()

        url = await asyncio.to_thread(self.storage.signed_url, path)
        logger.info("AI Index %s uploaded to %s", record.id, path)
        return UploadResult(url=url, path=path)
