"""
Chat Service — one student turn through the Policy Gate to the model.

Order of effects for a turn:
  assignment checks → session (created if absent) → lock → rate limit →
  prompt cap → user turn written → AMBER interception or model call →
  assistant turn written.

The user turn is committed before the completion call. A failed call leaves
that user turn without a reply; the student can resend. An assistant turn is
only written once the model has answered and the session is still unlocked.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from worksy.config import settings
from worksy.middleware.metrics import chat_turns_total
from worksy.models import Assignment, ChatEvent, TutoringSession, POLICY_MODEL_TAG
from worksy.services.completion import CompletionClient
from worksy.services.errors import (
    InputValidationError,
    NotFoundError,
    PolicyViolation,
    SessionLockedError,
    UpstreamError,
)
from worksy.services.policy import PolicyGate
from worksy.services.session_service import SessionService
from worksy.timeutil import utcnow

logger = logging.getLogger(__name__)


@dataclass
class ChatResult:
    session_id: str
    reply: str
    usage: dict = field(default_factory=dict)
    prompts_used: int = 0
    prompt_cap: int = 0
    intercepted: bool = False


def build_system_prompt(assignment: Assignment) -> str:
    return "\n".join([
        "You are Worksy, an AI study coach for university coursework.",
        f"Mode: {(assignment.mode or '').upper()}.",
        "Coach the student; do NOT produce final submission text. UK spelling; short paragraphs.",
        f"Stay under ~{assignment.output_token_cap} tokens. Encourage sources & integrity.",
        f"Module: {assignment.module_code or 'N/A'} — {assignment.title}.",
    ])


class ChatService:
    def __init__(
        self,
        session: AsyncSession,
        gate: PolicyGate,
        completion: CompletionClient,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session = session
        self.gate = gate
        self.completion = completion
        self.clock = clock
        self.sessions = SessionService(session, clock)

    async def count_user_turns(self, session_id: str) -> int:
        result = await self.session.execute(
            select(func.count())
            .select_from(ChatEvent)
            .where(ChatEvent.session_id == session_id, ChatEvent.role == "user")
        )
        return result.scalar() or 0

    async def _append(
        self,
        session_id: str,
        role: str,
        content: str,
        *,
        model: str | None = None,
        prompt_tokens: int | None = None,
        completion_tokens: int | None = None,
        total_tokens: int | None = None,
    ) -> ChatEvent:
        event = ChatEvent(
            session_id=session_id,
            role=role,
            content=content,
            model=model,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=total_tokens,
            created_at=self.clock(),
        )
        self.session.add(event)
        await self.session.flush()
        return event

    async def _resolve_session(
        self,
        assignment: Assignment,
        session_id: str | None,
        student_ref: str,
        locale: str | None,
        ip: str | None,
    ) -> tuple[TutoringSession, bool]:
        if not session_id:
            created = await self.sessions.create(assignment, student_ref, locale=locale, ip=ip)
            return created, True
        existing = await self.sessions.get(session_id)
        if existing is None:
            raise NotFoundError("Session not found")
        if existing.assignment_id != assignment.id:
            raise InputValidationError("Session does not belong to this assignment", session_id=existing.id)
        return existing, False

    async def post_turn(
        self,
        *,
        assignment_id: str | None,
        student_ref: str | None,
        message: str | None,
        session_id: str | None = None,
        locale: str | None = None,
        ip: str | None = None,
    ) -> ChatResult:
        if not assignment_id or not student_ref or not message:
            raise InputValidationError("Missing fields")

        try:
            assignment = self.gate.check_assignment(
                await self.session.get(Assignment, assignment_id), self.clock()
            )
            tutoring_session, is_new = await self._resolve_session(
                assignment, session_id, student_ref, locale, ip
            )
            sid = tutoring_session.id

            await self.sessions.refresh_lock(tutoring_session)
            self.gate.check_session(tutoring_session)
            self.gate.check_rate(sid, assignment)
            used = await self.count_user_turns(sid)
            self.gate.check_usage(sid, used, assignment)
        except PolicyViolation:
            chat_turns_total.labels(outcome="rejected").inc()
            raise

        await self._append(sid, "user", message)

        if self.gate.intercepts(assignment, message):
            reminder = self.gate.policy.reminder_message()
            await self._append(
                sid, "assistant", reminder,
                model=POLICY_MODEL_TAG, prompt_tokens=0, completion_tokens=0, total_tokens=0,
            )
            await self.sessions.touch(tutoring_session)
            chat_turns_total.labels(outcome="intercepted").inc()
            logger.info("AMBER policy intercepted a request in session %s", sid, extra={"session_id": sid})
            return ChatResult(
                session_id=sid,
                reply=reminder,
                usage={"total_tokens": 0},
                prompts_used=used + 1,
                prompt_cap=assignment.prompt_cap,
                intercepted=True,
            )

        # Keep the user turn even if the model call fails
        await self.session.commit()

        model = assignment.model or settings.llm_model
        try:
            completion = await self.completion.complete(
                model=model,
                system_prompt=build_system_prompt(assignment),
                message=message,
                max_tokens=assignment.output_token_cap,
            )
        except UpstreamError:
            chat_turns_total.labels(outcome="failed").inc()
            raise

        # A submit may have landed while the model was answering
        await self.sessions.refresh_lock(tutoring_session)
        if tutoring_session.submitted:
            chat_turns_total.labels(outcome="rejected").inc()
            raise SessionLockedError(session_id=sid)

        reply = completion.text
        if is_new:
            banner = self.gate.policy.banner()
            await self._append(
                sid, "assistant", banner,
                model=POLICY_MODEL_TAG, prompt_tokens=0, completion_tokens=0, total_tokens=0,
            )
            reply = f"{banner}\n\n{reply}"

        # Stored exactly as the student saw it, banner included on the first turn
        await self._append(
            sid, "assistant", reply,
            model=model,
            prompt_tokens=completion.prompt_tokens,
            completion_tokens=completion.completion_tokens,
            total_tokens=completion.total_tokens,
        )
        await self.sessions.touch(tutoring_session)
        chat_turns_total.labels(outcome="completed").inc()

        return ChatResult(
            session_id=sid,
            reply=reply,
            usage=completion.usage,
            prompts_used=used + 1,
            prompt_cap=assignment.prompt_cap,
        )
