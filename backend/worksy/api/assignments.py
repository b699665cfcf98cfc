"""
Assignment-facing student endpoints: policy fetch, and the development seed.
"""

from datetime import timedelta

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from worksy.api.deps import get_db, get_policy_gate
from worksy.config import settings
from worksy.models import Assignment
from worksy.schemas.schemas import PolicyResponse
from worksy.services.errors import InputValidationError, NotFoundError
from worksy.services.policy import PolicyGate
from worksy.timeutil import utcnow

router = APIRouter(prefix="/api", tags=["assignments"])

_DEMO_TEMPLATES = [
    {
        "label": "Plan my methods section",
        "text": (
            "Help me outline the key steps for the methods section focusing on "
            "PCR and gel electrophoresis."
        ),
    },
]


@router.get("/policy", response_model=PolicyResponse)
async def get_policy(
    assignment_id: str | None = Query(None, alias="assignmentId"),
    gate: PolicyGate = Depends(get_policy_gate),
    db: AsyncSession = Depends(get_db),
):
    """Reminder text, allowed/disallowed lists, caps and module info for an assignment."""
    if not assignment_id:
        raise InputValidationError("Missing assignmentId")
    assignment = await db.get(Assignment, assignment_id)
    if assignment is None:
        raise NotFoundError("Assignment not found")
    return PolicyResponse(**gate.describe(assignment))


@router.post("/assignment/seed")
async def seed_demo_assignment(db: AsyncSession = Depends(get_db)):
    """Create the demo coursework assignment. Development only."""
    if settings.environment != "development":
        raise NotFoundError()
    assignment = Assignment(
        module_code="BIO1001",
        title="Demo Coursework",
        mode="amber",
        prompt_cap=settings.default_prompt_cap,
        output_token_cap=settings.default_output_token_cap,
        input_token_cap=settings.default_input_token_cap,
        rate_limit_n=settings.default_rate_limit_n,
        rate_limit_window_s=settings.default_rate_limit_window_s,
        due_at=utcnow() + timedelta(days=30),
        model=settings.llm_model,
        prompt_templates=_DEMO_TEMPLATES,
    )
    db.add(assignment)
    await db.flush()
    return {"id": assignment.id}
