"""
Policy Gate — mode-based access control and content-policy interception.

Checks run in a fixed order for every chat turn:

  1. assignment exists
  2. mode is not RED (invigilated, AI forbidden)
  3. deadline has not passed
  4. session is not locked
  5. per-session rate limit
  6. prompt cap
  7. AMBER content policy (intercept, don't call the model)

Checks 1-6 raise; check 7 is a decision the chat service acts on.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime

from worksy.models import Assignment, TutoringSession
from worksy.services.errors import (
    DeadlineError,
    InputValidationError,
    PromptCapReachedError,
    RateLimitedError,
    RedModeError,
    SessionLockedError,
)
from worksy.services.rate_limiter import SlidingWindowRateLimiter
from worksy.timeutil import ensure_utc

logger = logging.getLogger(__name__)

_SEPARATORS = re.compile(r"[\W_]+")


def _fold(text: str) -> str:
    return _SEPARATORS.sub(" ", text.casefold()).strip()


@dataclass(frozen=True)
class AmberPolicy:
    """Immutable AMBER policy: what coaching is allowed and what triggers a refusal."""

    allowed: tuple[str, ...]
    not_allowed: tuple[str, ...]
    red_flags: tuple[str, ...]
    reminder: str
    _needles: tuple[str, ...] = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "_needles", tuple(_fold(p) for p in self.red_flags if _fold(p)))

    def is_disallowed(self, text: str | None) -> bool:
        """Substring match, ignoring case and punctuation between words."""
        if not text or not self._needles:
            return False
        folded = _fold(text)
        return any(needle in folded for needle in self._needles)

    def reminder_message(self) -> str:
        return (
            f"Policy (AMBER): {self.reminder}\n"
            f"Allowed: {'; '.join(self.allowed)}\n"
            f"Not allowed: {'; '.join(self.not_allowed)}\n"
            "Try: outline, plan, feedback, concepts."
        )

    def banner(self) -> str:
        return (
            f"📘 Worksy (AMBER): {self.reminder}\n"
            f"Allowed: {'; '.join(self.allowed)}\n"
            f"Not allowed: {'; '.join(self.not_allowed)}"
        )


DEFAULT_AMBER_POLICY = AmberPolicy(
    allowed=(
        "Brainstorming/plan",
        "Outlines",
        "Concept explanations",
        "Reading lists",
        "Feedback on draft",
        "Citation guidance",
    ),
    not_allowed=(
        "Producing final text",
        "Writing assignment verbatim",
        "Helping invigilated exams",
        "Evading originality checks",
    ),
    red_flags=(
        "invigilated",
        "exam",
        "closed book",
        "test paper",
        "final exam",
        "write my assignment",
        "full essay",
        "complete the coursework",
        "write the lab report for me",
    ),
    reminder=(
        "AMBER: Worksy coaches your thinking but will not write final submission text. "
        "All usage is logged."
    ),
)


class PolicyGate:
    def __init__(
        self,
        limiter: SlidingWindowRateLimiter,
        policy: AmberPolicy = DEFAULT_AMBER_POLICY,
    ):
        self.limiter = limiter
        self.policy = policy

    def check_assignment(self, assignment: Assignment | None, now: datetime) -> Assignment:
        """Checks 1-3: existence, mode, deadline."""
        if assignment is None:
            raise InputValidationError("Assignment not found")
        if assignment.mode == "red":
            raise RedModeError()
        due_at = ensure_utc(assignment.due_at)
        if due_at is not None and due_at < now:
            raise DeadlineError()
        return assignment

    def check_session(self, session: TutoringSession) -> None:
        """Check 4: a submitted session never accepts another turn."""
        if session.submitted:
            raise SessionLockedError(session_id=session.id)

    def check_rate(self, session_id: str, assignment: Assignment) -> None:
        """Check 5: must run before anything is written for the turn."""
        limit = assignment.rate_limit_n if assignment.rate_limit_n is not None else 3
        window = assignment.rate_limit_window_s if assignment.rate_limit_window_s is not None else 10
        if not self.limiter.check(session_id, limit, window):
            logger.info("Rate limit hit for session %s (%d per %ss)", session_id, limit, window)
            raise RateLimitedError(session_id=session_id)

    def check_usage(self, session_id: str, prompts_used: int, assignment: Assignment) -> None:
        """Check 6: prior user turns must be below the cap."""
        if prompts_used >= assignment.prompt_cap:
            logger.info("Prompt cap %d reached for session %s", assignment.prompt_cap, session_id)
            raise PromptCapReachedError(session_id=session_id)

    def intercepts(self, assignment: Assignment, message: str) -> bool:
        """Check 7: AMBER requests for final text get a policy reminder instead of a model call."""
        return assignment.mode == "amber" and self.policy.is_disallowed(message)

    def describe(self, assignment: Assignment) -> dict:
        """Policy payload shown to the student before the first turn."""
        return {
            "reminder": self.policy.reminder,
            "allowed": list(self.policy.allowed),
            "notAllowed": list(self.policy.not_allowed),
            "caps": {
                "prompt_cap": assignment.prompt_cap,
                "output_token_cap": assignment.output_token_cap,
                "input_token_cap": assignment.input_token_cap,
            },
            "module": {"code": assignment.module_code, "title": assignment.title},
            "mode": assignment.mode,
            "due_at": assignment.due_at,
            "model": assignment.model,
            "templates": assignment.prompt_templates or [],
        }
