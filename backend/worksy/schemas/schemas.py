"""
Pydantic schemas for API request/response models.

Wire names are camelCase (``sessionId``, ``promptsUsed``) to match the
browser client; Python attributes stay snake_case.
"""

from datetime import datetime

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


def _camel(name: str, camel: str):
    return AliasChoices(camel, name)


class _Request(BaseModel):
    model_config = ConfigDict(extra="ignore")


# ── Student surface ──

class ChatRequest(_Request):
    assignment_id: str | None = Field(None, validation_alias=_camel("assignment_id", "assignmentId"))
    session_id: str | None = Field(None, validation_alias=_camel("session_id", "sessionId"))
    student_ref: str | None = Field(None, validation_alias=_camel("student_ref", "studentRef"))
    message: str | None = None
    locale: str | None = None


class ChatResponse(BaseModel):
    session_id: str = Field(serialization_alias="sessionId")
    reply: str
    usage: dict
    prompts_used: int = Field(serialization_alias="promptsUsed")
    prompt_cap: int = Field(serialization_alias="promptCap")


class SessionRequest(_Request):
    session_id: str | None = Field(None, validation_alias=_camel("session_id", "sessionId"))


class NotesRequest(SessionRequest):
    notes: str | None = None


class OkResponse(BaseModel):
    ok: bool = True


class SubmitResponse(OkResponse):
    already_submitted: bool | None = Field(None, serialization_alias="alreadySubmitted")


class TabSwitchResponse(BaseModel):
    tab_switches: int = Field(serialization_alias="tabSwitches")


class PolicyCaps(BaseModel):
    prompt_cap: int
    output_token_cap: int
    input_token_cap: int


class PolicyModule(BaseModel):
    code: str | None = None
    title: str


class PolicyResponse(BaseModel):
    reminder: str
    allowed: list[str]
    not_allowed: list[str] = Field(validation_alias="notAllowed", serialization_alias="notAllowed")
    caps: PolicyCaps
    module: PolicyModule
    mode: str
    due_at: datetime | None = None
    model: str | None = None
    templates: list = []


# ── AI Index ──

class IndexResponse(BaseModel):
    id: str
    hash: str
    hmac: str | None = None
    index: dict


class UploadResponse(BaseModel):
    url: str | None = None
    path: str


class VerifyResponse(BaseModel):
    ok: bool
    hash_ok: bool = Field(serialization_alias="hashOK")
    hmac_ok: bool = Field(serialization_alias="hmacOK")
    policy_version: int | None = None
    config_version: int | None = None


# ── Admin surface ──

class AdminTokenRequest(_Request):
    admin_key: str | None = Field(None, validation_alias=_camel("admin_key", "adminKey"))


class AdminTokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int


class AssignmentSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    module_code: str | None = None
    title: str
    prompt_cap: int
    output_token_cap: int
    input_token_cap: int
    mode: str
    due_at: datetime | None = None


class AssignmentListResponse(BaseModel):
    assignments: list[AssignmentSummary]


class AssignmentImportRequest(_Request):
    rows: list[dict] | None = None


class AssignmentImportResponse(OkResponse):
    count: int


class SessionListItem(BaseModel):
    id: str
    assignment_id: str
    student_ref: str
    started_at: str | None = None
    submitted: bool
    submitted_at: str | None = None
    tab_switches: int
    last_activity_at: str | None = None
    risk_score: float
    index_id: str | None = None


class SessionListResponse(BaseModel):
    sessions: list[SessionListItem]


class FingerprintStatus(BaseModel):
    index_id: str
    hash_ok: bool = Field(validation_alias="hashOK", serialization_alias="hashOK")
    hmac_ok: bool = Field(validation_alias="hmacOK", serialization_alias="hmacOK")
    hash: str


class SessionEventsResponse(BaseModel):
    session: SessionListItem
    events: list[dict]
    fingerprint: FingerprintStatus | None = None
    audit: list[dict] = []


class UsageMetricsResponse(BaseModel):
    sessions: int
    submitted: int
    total_prompts: int = Field(validation_alias="totalPrompts", serialization_alias="totalPrompts")
    total_tokens: int = Field(validation_alias="totalTokens", serialization_alias="totalTokens")
    est_cost: float = Field(validation_alias="estCost", serialization_alias="estCost")


class IntegrityCheckResponse(BaseModel):
    valid: bool
    entries_checked: int
    first_invalid: str | None = None
    reason: str | None = None
