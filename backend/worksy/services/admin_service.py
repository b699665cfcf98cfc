"""
Admin Service — instructor-facing queries over assignments and sessions.

Risk scores are derived on read from tab switches and submission state
(see ``session_service.risk_score``) and never written back.
"""

import csv
import io
from dataclasses import dataclass
from uuid import uuid4

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from worksy.config import settings
from worksy.models import Assignment, ChatEvent, TutoringSession, AIIndex
from worksy.models.assignment import MODES
from worksy.services.audit_service import AuditService
from worksy.services.errors import InputValidationError, NotFoundError
from worksy.services.index_builder import IndexBuilder, event_entry
from worksy.services.session_service import HIGH_TAB_SWITCHES, risk_score
from worksy.timeutil import parse_iso, to_iso

CSV_COLUMNS = [
    "session_id",
    "student_ref",
    "started_at",
    "submitted",
    "submitted_at",
    "tab_switches",
    "risk_score",
]


@dataclass
class SessionFilters:
    assignment_id: str | None = None
    student_ref: str | None = None
    started_from: str | None = None
    started_to: str | None = None
    locked_only: bool = False
    high_tabs: bool = False


def _int(row: dict, key: str, default: int) -> int:
    value = row.get(key)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InputValidationError(f"Invalid {key}: {value!r}")


def _timestamp(value, field_name: str):
    if value is None or value == "":
        return None
    try:
        return parse_iso(str(value))
    except ValueError:
        raise InputValidationError(f"Invalid {field_name}: {value!r}")


def session_row(s: TutoringSession) -> dict:
    return {
        "id": s.id,
        "assignment_id": s.assignment_id,
        "student_ref": s.student_ref,
        "started_at": to_iso(s.started_at),
        "submitted": bool(s.submitted),
        "submitted_at": to_iso(s.submitted_at),
        "tab_switches": s.tab_switches or 0,
        "last_activity_at": to_iso(s.last_activity_at),
        "risk_score": risk_score(s),
        "index_id": s.index_id,
    }


class AdminService:
    def __init__(self, session: AsyncSession, index_builder: IndexBuilder):
        self.session = session
        self.index_builder = index_builder

    # ── Assignments ──────────────────────────────────────────────────────

    async def list_assignments(self) -> list[Assignment]:
        result = await self.session.execute(
            select(Assignment).order_by(Assignment.module_code, Assignment.title)
        )
        return list(result.scalars())

    async def import_assignments(self, rows: list[dict] | None) -> int:
        """Upsert assignments by id. Rows without an id get a fresh one."""
        if not isinstance(rows, list) or not rows:
            raise InputValidationError("rows[] required")

        for row in rows:
            mode = str(row.get("mode") or "amber").lower()
            if mode not in MODES:
                raise InputValidationError(f"Invalid mode: {mode!r}")
            if not row.get("title"):
                raise InputValidationError("title required")

            assignment_id = str(row.get("id") or uuid4())
            assignment = await self.session.get(Assignment, assignment_id)
            if assignment is None:
                assignment = Assignment(id=assignment_id)
                self.session.add(assignment)

            assignment.module_code = row.get("module_code")
            assignment.title = row["title"]
            assignment.mode = mode
            assignment.prompt_cap = _int(row, "prompt_cap", settings.default_prompt_cap)
            assignment.output_token_cap = _int(row, "output_token_cap", settings.default_output_token_cap)
            assignment.input_token_cap = _int(row, "input_token_cap", settings.default_input_token_cap)
            assignment.rate_limit_n = _int(row, "rate_limit_n", settings.default_rate_limit_n)
            assignment.rate_limit_window_s = _int(
                row, "rate_limit_window_s", settings.default_rate_limit_window_s
            )
            assignment.due_at = _timestamp(row.get("due_at"), "due_at")
            assignment.model = row.get("model") or settings.llm_model
            assignment.policy_version = _int(row, "policy_version", assignment.policy_version or 1)
            assignment.config_version = _int(row, "config_version", assignment.config_version or 1)
            if "prompt_templates" in row:
                assignment.prompt_templates = row.get("prompt_templates") or []

        await self.session.flush()
        return len(rows)

    # ── Sessions ─────────────────────────────────────────────────────────

    async def list_sessions(self, filters: SessionFilters) -> list[dict]:
        query = select(TutoringSession).order_by(TutoringSession.started_at.desc())
        if filters.assignment_id:
            query = query.where(TutoringSession.assignment_id == filters.assignment_id)
        if filters.student_ref:
            query = query.where(TutoringSession.student_ref.ilike(f"%{filters.student_ref}%"))
        if filters.locked_only:
            query = query.where(TutoringSession.submitted.is_(True))
        started_from = _timestamp(filters.started_from, "from")
        if started_from is not None:
            query = query.where(TutoringSession.started_at >= started_from)
        started_to = _timestamp(filters.started_to, "to")
        if started_to is not None:
            query = query.where(TutoringSession.started_at <= started_to)

        result = await self.session.execute(query)
        rows = [session_row(s) for s in result.scalars()]
        if filters.high_tabs:
            rows = [r for r in rows if r["tab_switches"] >= HIGH_TAB_SWITCHES]
        return rows

    async def session_events(self, session_id: str) -> dict:
        """Transcript plus fingerprint status of the session's latest index."""
        tutoring_session = await self.session.get(TutoringSession, session_id)
        if tutoring_session is None:
            raise NotFoundError("Session not found")

        events = await self.index_builder.transcript(session_id)
        fingerprint = None
        if tutoring_session.index_id:
            record = await self.session.get(AIIndex, tutoring_session.index_id)
            if record is not None:
                verification = self.index_builder.check(record)
                fingerprint = {
                    "index_id": record.id,
                    "hashOK": verification.hash_ok,
                    "hmacOK": verification.hmac_ok,
                    "hash": record.hash,
                }

        audits = await AuditService(self.session).get_entries(session_id)
        return {
            "session": session_row(tutoring_session),
            "events": [event_entry(e) for e in events],
            "fingerprint": fingerprint,
            "audit": [
                {"type": a.type, "meta": a.meta, "created_at": to_iso(a.created_at)} for a in audits
            ],
        }

    # ── Reporting ────────────────────────────────────────────────────────

    async def export_csv(self, assignment_id: str | None) -> str:
        if not assignment_id:
            raise InputValidationError("assignmentId required")
        result = await self.session.execute(
            select(TutoringSession)
            .where(TutoringSession.assignment_id == assignment_id)
            .order_by(TutoringSession.started_at.asc())
        )

        buf = io.StringIO()
        writer = csv.writer(buf, lineterminator="\n")
        writer.writerow(CSV_COLUMNS)
        for s in result.scalars():
            writer.writerow([
                s.id,
                s.student_ref,
                to_iso(s.started_at),
                "true" if s.submitted else "false",
                to_iso(s.submitted_at) or "",
                s.tab_switches or 0,
                risk_score(s),
            ])
        return buf.getvalue()

    async def usage_metrics(self, assignment_id: str | None) -> dict:
        if not assignment_id:
            raise InputValidationError("assignmentId required")

        session_counts = await self.session.execute(
            select(
                func.count(TutoringSession.id),
                func.count(TutoringSession.id).filter(TutoringSession.submitted.is_(True)),
            ).where(TutoringSession.assignment_id == assignment_id)
        )
        sessions, submitted = session_counts.one()

        usage = await self.session.execute(
            select(
                func.count(ChatEvent.id).filter(ChatEvent.role == "user"),
                func.coalesce(func.sum(ChatEvent.total_tokens), 0),
            )
            .join(TutoringSession, TutoringSession.id == ChatEvent.session_id)
            .where(TutoringSession.assignment_id == assignment_id)
        )
        total_prompts, total_tokens = usage.one()

        return {
            "sessions": sessions or 0,
            "submitted": submitted or 0,
            "totalPrompts": total_prompts or 0,
            "totalTokens": int(total_tokens or 0),
            "estCost": round((int(total_tokens or 0) / 1000) * settings.cost_per_1k_tokens, 6),
        }
