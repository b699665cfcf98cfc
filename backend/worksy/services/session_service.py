"""
Session State Machine.

    new ──(first chat turn)──▶ active ──(submit, index sealed)──▶ locked

``active → active`` on every chat turn, notes/consent update and tab-switch
event, each bumping ``last_activity_at``. ``locked`` is terminal: chat,
notes and consent against it fail with SessionLockedError. Submitting a
locked session again is a no-op that reports ``already_submitted``.

The lock is a guarded check-then-act. Once the ``submitted`` write is
committed, every mutating path re-reads it before writing.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from worksy.models import Assignment, TutoringSession
from worksy.services.audit_service import AuditService
from worksy.services.errors import IndexRequiredError, InputValidationError, NotFoundError, SessionLockedError
from worksy.timeutil import utcnow

logger = logging.getLogger(__name__)

STATE_NEW = "new"
STATE_ACTIVE = "active"
STATE_LOCKED = "locked"

HIGH_TAB_SWITCHES = 10


def session_state(session: TutoringSession | None) -> str:
    if session is None:
        return STATE_NEW
    return STATE_LOCKED if session.submitted else STATE_ACTIVE


def risk_score(session: TutoringSession) -> float:
    """Derived at read time from tab switches and submission; never stored."""
    if (session.tab_switches or 0) >= HIGH_TAB_SWITCHES:
        return 0.8
    if session.submitted:
        return 0.2
    return 0.0


@dataclass
class SubmitResult:
    session_id: str
    already_submitted: bool = False


class SessionService:
    def __init__(self, session: AsyncSession, clock: Callable[[], datetime] = utcnow):
        self.session = session
        self.clock = clock
        self.audit = AuditService(session)

    # ── Lookup ───────────────────────────────────────────────────────────

    async def get(self, session_id: str | None) -> TutoringSession | None:
        if not session_id:
            return None
        return await self.session.get(TutoringSession, session_id)

    async def get_or_404(self, session_id: str | None) -> TutoringSession:
        if not session_id:
            raise InputValidationError("No sessionId")
        tutoring_session = await self.get(session_id)
        if tutoring_session is None:
            raise NotFoundError("Session not found")
        return tutoring_session

    async def refresh_lock(self, tutoring_session: TutoringSession) -> None:
        """Re-read the submitted flag so a committed lock is never missed."""
        result = await self.session.execute(
            select(TutoringSession.submitted).where(TutoringSession.id == tutoring_session.id)
        )
        submitted = result.scalar()
        if submitted:
            tutoring_session.submitted = True

    async def require_active(self, tutoring_session: TutoringSession) -> None:
        await self.refresh_lock(tutoring_session)
        if tutoring_session.submitted:
            raise SessionLockedError("Session locked", session_id=tutoring_session.id)

    # ── Transitions ──────────────────────────────────────────────────────

    async def create(
        self,
        assignment: Assignment,
        student_ref: str,
        *,
        locale: str | None = None,
        ip: str | None = None,
    ) -> TutoringSession:
        """new → active. Callers have already passed the assignment checks."""
        now = self.clock()
        tutoring_session = TutoringSession(
            assignment_id=assignment.id,
            student_ref=student_ref,
            locale=locale or "en-GB",
            ip=ip,
            started_at=now,
            policy_shown_at=now,
            last_activity_at=now,
            tab_switches=0,
            submitted=False,
        )
        self.session.add(tutoring_session)
        await self.session.flush()
        logger.info("Session %s created for assignment %s", tutoring_session.id, assignment.id)
        await self.audit.record(tutoring_session.id, "policy_shown")
        return tutoring_session

    async def touch(self, tutoring_session: TutoringSession) -> None:
        tutoring_session.last_activity_at = self.clock()
        await self.session.flush()

    async def record_consent(self, session_id: str | None) -> TutoringSession:
        tutoring_session = await self.get_or_404(session_id)
        await self.require_active(tutoring_session)
        now = self.clock()
        tutoring_session.consent_at = now
        tutoring_session.last_activity_at = now
        await self.session.flush()
        await self.audit.record(tutoring_session.id, "consent")
        return tutoring_session

    async def update_notes(self, session_id: str | None, notes: str | None) -> TutoringSession:
        tutoring_session = await self.get_or_404(session_id)
        await self.require_active(tutoring_session)
        tutoring_session.notes = notes
        tutoring_session.last_activity_at = self.clock()
        await self.session.flush()
        return tutoring_session

    async def record_tab_switch(self, session_id: str | None) -> int:
        tutoring_session = await self.get_or_404(session_id)
        await self.require_active(tutoring_session)
        await self.session.execute(
            update(TutoringSession)
            .where(TutoringSession.id == tutoring_session.id)
            .values(
                tab_switches=TutoringSession.tab_switches + 1,
                last_activity_at=self.clock(),
            )
        )
        await self.session.refresh(tutoring_session)
        return tutoring_session.tab_switches

    async def submit(self, session_id: str | None) -> SubmitResult:
        """active → locked, only once an AI Index has been sealed."""
        tutoring_session = await self.get_or_404(session_id)
        await self.refresh_lock(tutoring_session)
        if tutoring_session.submitted:
            return SubmitResult(session_id=tutoring_session.id, already_submitted=True)
        if not tutoring_session.index_id:
            raise IndexRequiredError(session_id=tutoring_session.id)

        now = self.clock()
        tutoring_session.submitted = True
        tutoring_session.submitted_at = now
        tutoring_session.ended_at = tutoring_session.ended_at or now
        await self.session.flush()
        logger.info("Session %s submitted and locked", tutoring_session.id)
        await self.audit.record(tutoring_session.id, "submit", {"index_id": tutoring_session.index_id})
        return SubmitResult(session_id=tutoring_session.id)
