"""Tests for a chat turn through the Policy Gate, transcript and completion client."""

from datetime import timedelta

import pytest
from sqlalchemy import select, func

from worksy.models import ChatEvent, TutoringSession, AuditLog, POLICY_MODEL_TAG
from worksy.services.errors import (
    DeadlineError,
    InputValidationError,
    NotFoundError,
    PromptCapReachedError,
    RateLimitedError,
    RedModeError,
    UpstreamError,
)


async def _transcript(db_session, session_id: str) -> list[ChatEvent]:
    result = await db_session.execute(
        select(ChatEvent).where(ChatEvent.session_id == session_id).order_by(ChatEvent.id)
    )
    return list(result.scalars())


async def _count(db_session, model) -> int:
    return (await db_session.execute(select(func.count()).select_from(model))).scalar()


@pytest.mark.asyncio
class TestFirstTurn:
    async def test_creates_session_with_banner(self, chat_service, make_assignment, db_session, completion, gate):
        assignment = await make_assignment()
        result = await chat_service.post_turn(
            assignment_id=assignment.id, student_ref="s1", message="Help me plan my essay",
        )

        banner = gate.policy.banner()
        assert result.reply == f"{banner}\n\n{completion.text}"
        assert result.prompts_used == 1
        assert result.prompt_cap == 100
        assert result.usage["total_tokens"] == 42

        events = await _transcript(db_session, result.session_id)
        assert [(e.role, e.model) for e in events] == [
            ("user", None),
            ("assistant", POLICY_MODEL_TAG),
            ("assistant", "qwen3:8b"),
        ]
        assert events[1].content == banner
        assert events[2].content == f"{banner}\n\n{completion.text}"
        assert events[1].total_tokens == 0
        assert events[2].total_tokens == 42

        session = await db_session.get(TutoringSession, result.session_id)
        assert session.policy_shown_at is not None
        audit_types = (await db_session.execute(select(AuditLog.type))).scalars().all()
        assert "policy_shown" in audit_types

    async def test_banner_only_once(self, chat_service, make_assignment, db_session, completion):
        assignment = await make_assignment()
        first = await chat_service.post_turn(assignment_id=assignment.id, student_ref="s1", message="Hi")
        second = await chat_service.post_turn(
            assignment_id=assignment.id, student_ref="s1", message="And next?", session_id=first.session_id,
        )
        assert second.reply == completion.text
        assert second.prompts_used == 2
        policy_events = [
            e for e in await _transcript(db_session, first.session_id) if e.model == POLICY_MODEL_TAG
        ]
        assert len(policy_events) == 1
        assert (await _transcript(db_session, first.session_id))[-1].content == completion.text

    async def test_system_prompt_and_token_limit(self, chat_service, make_assignment, completion):
        assignment = await make_assignment(output_token_cap=321, model=None)
        await chat_service.post_turn(assignment_id=assignment.id, student_ref="s1", message="Hi")
        call = completion.calls[0]
        assert call["max_tokens"] == 321
        assert "BIO1001" in call["system_prompt"]
        assert "Mode: AMBER." in call["system_prompt"]
        assert call["model"]  # falls back to the configured default


@pytest.mark.asyncio
class TestRejections:
    @pytest.mark.parametrize("message", ["Help me plan", "write my assignment", "x"])
    async def test_red_mode_writes_nothing(self, chat_service, make_assignment, db_session, completion, message):
        assignment = await make_assignment(mode="red")
        with pytest.raises(RedModeError):
            await chat_service.post_turn(assignment_id=assignment.id, student_ref="s1", message=message)
        assert await _count(db_session, ChatEvent) == 0
        assert await _count(db_session, TutoringSession) == 0
        assert completion.calls == []

    async def test_past_deadline(self, chat_service, make_assignment, clock, db_session):
        assignment = await make_assignment(due_at=clock.now - timedelta(hours=1))
        with pytest.raises(DeadlineError):
            await chat_service.post_turn(assignment_id=assignment.id, student_ref="s1", message="Hi")
        assert await _count(db_session, ChatEvent) == 0

    async def test_missing_fields(self, chat_service):
        with pytest.raises(InputValidationError):
            await chat_service.post_turn(assignment_id="a", student_ref="s1", message="")

    async def test_unknown_assignment(self, chat_service):
        with pytest.raises(InputValidationError):
            await chat_service.post_turn(assignment_id="nope", student_ref="s1", message="Hi")

    async def test_unknown_session(self, chat_service, make_assignment):
        assignment = await make_assignment()
        with pytest.raises(NotFoundError):
            await chat_service.post_turn(
                assignment_id=assignment.id, student_ref="s1", message="Hi", session_id="missing",
            )

    async def test_prompt_cap(self, chat_service, make_assignment, db_session):
        assignment = await make_assignment(prompt_cap=3)
        first = await chat_service.post_turn(assignment_id=assignment.id, student_ref="s1", message="one")
        sid = first.session_id
        await chat_service.post_turn(assignment_id=assignment.id, student_ref="s1", message="two", session_id=sid)
        third = await chat_service.post_turn(
            assignment_id=assignment.id, student_ref="s1", message="three", session_id=sid,
        )
        assert third.prompts_used == 3

        with pytest.raises(PromptCapReachedError) as exc:
            await chat_service.post_turn(assignment_id=assignment.id, student_ref="s1", message="four", session_id=sid)
        assert exc.value.session_id == sid
        users = [e for e in await _transcript(db_session, sid) if e.role == "user"]
        assert len(users) == 3

    async def test_rate_limit_then_recovery(self, chat_service, make_assignment, clock, db_session):
        assignment = await make_assignment(rate_limit_n=3, rate_limit_window_s=10)
        first = await chat_service.post_turn(assignment_id=assignment.id, student_ref="s1", message="1")
        sid = first.session_id
        for text in ("2", "3"):
            clock.advance(1)
            await chat_service.post_turn(assignment_id=assignment.id, student_ref="s1", message=text, session_id=sid)

        clock.advance(1)
        before = len(await _transcript(db_session, sid))
        with pytest.raises(RateLimitedError):
            await chat_service.post_turn(assignment_id=assignment.id, student_ref="s1", message="4", session_id=sid)
        assert len(await _transcript(db_session, sid)) == before

        clock.advance(11)
        result = await chat_service.post_turn(
            assignment_id=assignment.id, student_ref="s1", message="5", session_id=sid,
        )
        assert result.prompts_used == 4


@pytest.mark.asyncio
class TestInterception:
    async def test_amber_red_flag_is_intercepted(self, chat_service, make_assignment, db_session, completion, gate):
        assignment = await make_assignment(mode="amber")
        result = await chat_service.post_turn(
            assignment_id=assignment.id, student_ref="s1", message="Please write my assignment",
        )
        assert result.intercepted is True
        assert result.reply == gate.policy.reminder_message()
        assert result.usage == {"total_tokens": 0}
        assert completion.calls == []

        events = await _transcript(db_session, result.session_id)
        assert [e.role for e in events] == ["user", "assistant"]
        assert events[1].model == POLICY_MODEL_TAG
        assert events[1].total_tokens == 0

    async def test_green_mode_is_not_intercepted(self, chat_service, make_assignment, completion):
        assignment = await make_assignment(mode="green")
        result = await chat_service.post_turn(
            assignment_id=assignment.id, student_ref="s1", message="write my assignment",
        )
        assert result.intercepted is False
        assert len(completion.calls) == 1


@pytest.mark.asyncio
class TestUpstreamFailure:
    async def test_failed_completion_keeps_user_turn(self, chat_service, make_assignment, db_session, completion):
        assignment = await make_assignment()
        first = await chat_service.post_turn(assignment_id=assignment.id, student_ref="s1", message="Hi")
        completion.fail = True
        with pytest.raises(UpstreamError):
            await chat_service.post_turn(
                assignment_id=assignment.id, student_ref="s1", message="Still there?", session_id=first.session_id,
            )
        await db_session.rollback()

        events = await _transcript(db_session, first.session_id)
        assert events[-1].role == "user"
        assert events[-1].content == "Still there?"
