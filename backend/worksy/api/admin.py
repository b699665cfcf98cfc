"""
Admin API — instructor views over assignments, sessions and usage.

Every route requires the admin key (``X-Admin-Key``) or an admin bearer
token from ``POST /api/admin/token``.
"""

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession

from worksy.api.deps import get_admin_service, get_db, require_admin
from worksy.auth.jwt import admin_key_matches, create_admin_token
from worksy.config import settings
from worksy.schemas.schemas import (
    AdminTokenRequest,
    AdminTokenResponse,
    AssignmentImportRequest,
    AssignmentImportResponse,
    AssignmentListResponse,
    AssignmentSummary,
    IntegrityCheckResponse,
    SessionEventsResponse,
    SessionListItem,
    SessionListResponse,
    UsageMetricsResponse,
)
from worksy.services.admin_service import AdminService, SessionFilters
from worksy.services.audit_service import AuditService
from worksy.services.errors import UnauthorizedError

router = APIRouter(prefix="/api/admin", tags=["admin"])


@router.post("/token", response_model=AdminTokenResponse)
async def issue_token(body: AdminTokenRequest):
    """Exchange the admin key for a short-lived bearer token."""
    if not admin_key_matches(body.admin_key):
        raise UnauthorizedError()
    return AdminTokenResponse(
        access_token=create_admin_token(),
        expires_in=settings.admin_token_expire_minutes * 60,
    )


@router.get("/assignments", response_model=AssignmentListResponse)
async def list_assignments(
    _admin: str = Depends(require_admin),
    service: AdminService = Depends(get_admin_service),
):
    assignments = await service.list_assignments()
    return AssignmentListResponse(
        assignments=[AssignmentSummary.model_validate(a) for a in assignments]
    )


@router.post("/assignments/import", response_model=AssignmentImportResponse)
async def import_assignments(
    body: AssignmentImportRequest,
    _admin: str = Depends(require_admin),
    service: AdminService = Depends(get_admin_service),
):
    """Upsert assignments by id."""
    count = await service.import_assignments(body.rows)
    return AssignmentImportResponse(count=count)


@router.get("/sessions", response_model=SessionListResponse)
async def list_sessions(
    assignment_id: str | None = Query(None, alias="assignmentId"),
    student_ref: str | None = Query(None, alias="studentRef"),
    started_from: str | None = Query(None, alias="from"),
    started_to: str | None = Query(None, alias="to"),
    locked_only: bool = Query(False, alias="lockedOnly"),
    high_tabs: bool = Query(False, alias="highTabs"),
    _admin: str = Depends(require_admin),
    service: AdminService = Depends(get_admin_service),
):
    """Sessions, newest first, with the derived risk score."""
    rows = await service.list_sessions(
        SessionFilters(
            assignment_id=assignment_id,
            student_ref=student_ref,
            started_from=started_from,
            started_to=started_to,
            locked_only=locked_only,
            high_tabs=high_tabs,
        )
    )
    return SessionListResponse(sessions=[SessionListItem(**r) for r in rows])


@router.get("/sessions/{session_id}/events", response_model=SessionEventsResponse)
async def session_events(
    session_id: str,
    _admin: str = Depends(require_admin),
    service: AdminService = Depends(get_admin_service),
):
    """Full transcript plus the fingerprint status of the latest AI Index."""
    return SessionEventsResponse(**await service.session_events(session_id))


@router.get("/export")
async def export_sessions(
    assignment_id: str | None = Query(None, alias="assignmentId"),
    _admin: str = Depends(require_admin),
    service: AdminService = Depends(get_admin_service),
):
    csv_body = await service.export_csv(assignment_id)
    return Response(
        content=csv_body,
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="worksy-sessions.csv"'},
    )


@router.get("/metrics", response_model=UsageMetricsResponse)
async def usage_metrics(
    assignment_id: str | None = Query(None, alias="assignmentId"),
    _admin: str = Depends(require_admin),
    service: AdminService = Depends(get_admin_service),
):
    """Prompt, token and estimated cost totals for an assignment."""
    return UsageMetricsResponse(**await service.usage_metrics(assignment_id))


@router.get("/audit/integrity", response_model=IntegrityCheckResponse)
async def audit_integrity(
    _admin: str = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Verify the hash chain of the audit trail."""
    result = await AuditService(db).verify_chain_integrity()
    return IntegrityCheckResponse(**result)
