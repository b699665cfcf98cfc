"""
Error taxonomy for the tutoring core.

Every failure a caller can act on is a WorksyError carrying the HTTP status
and the human-readable reason. Content-policy interception and failed
verification are not errors: they come back as normal results.
"""


class WorksyError(Exception):
    status_code = 500
    detail = "Server error"

    def __init__(self, detail: str | None = None, *, session_id: str | None = None):
        super().__init__(detail or self.detail)
        if detail:
            self.detail = detail
        self.session_id = session_id


# ── Input validation ─────────────────────────────────────────────────────────

class InputValidationError(WorksyError):
    status_code = 400
    detail = "Missing fields"


class NotFoundError(WorksyError):
    status_code = 404
    detail = "Not found"


# ── Policy violations ────────────────────────────────────────────────────────

class PolicyViolation(WorksyError):
    status_code = 400
    detail = "Request not permitted by policy"


class RedModeError(PolicyViolation):
    detail = "This task is RED (invigilated). AI not allowed."


class DeadlineError(PolicyViolation):
    detail = "Assignment past deadline and locked."


class SessionLockedError(PolicyViolation):
    detail = "Session locked after submission"


class RateLimitedError(PolicyViolation):
    status_code = 429
    detail = "Too many requests. Please slow down."


class PromptCapReachedError(PolicyViolation):
    detail = "Prompt cap reached"


class IndexRequiredError(PolicyViolation):
    detail = "Generate AI Index before submitting."


# ── Upstream / auth ──────────────────────────────────────────────────────────

class UpstreamError(WorksyError):
    """Completion service or blob store failure. The body stays generic."""

    status_code = 500
    detail = "Server error"


class UnauthorizedError(WorksyError):
    status_code = 401
    detail = "Unauthorized"
