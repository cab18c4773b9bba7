"""
Registration routes.

Student: register, choose/defer/request lecturer, start search, submit company.
Lecturer: confirm/decline requests, confirm completion.
Admin: company edits, approval, rejection, status override.
"""
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.ext.asyncio import AsyncSession

from internhub.clock import get_now
from internhub.database import get_db, transaction
from internhub.errors import Forbidden, NotFound, ValidationError, ErrorCode
from internhub.limiter import limiter
from internhub.orm.registration import RegistrationStatus
from internhub.orm.user import User, UserRole
from internhub.rbac import get_current_user, require_admin, require_lecturer, require_staff, require_student
from internhub.services import period_service, registration_service

router = APIRouter(prefix="/api", tags=["Registrations"])


# =============================================================================
# Pydantic Models
# =============================================================================

class CreateRegistrationRequest(BaseModel):
    period_id: int


class ChooseLecturerRequest(BaseModel):
    lecturer_id: int


class CompanyRequest(BaseModel):
    company_name: Optional[str] = Field(None, max_length=255)
    company_address: Optional[str] = Field(None, max_length=500)
    company_supervisor: Optional[str] = Field(None, max_length=200)
    company_supervisor_phone: Optional[str] = Field(None, max_length=50)
    internship_position: Optional[str] = Field(None, max_length=200)


class DecisionRequest(BaseModel):
    note: Optional[str] = Field(None, max_length=2000)


class OverrideStatusRequest(BaseModel):
    status: str
    note: Optional[str] = Field(None, max_length=2000)

    @field_validator("status")
    def validate_status(cls, v):
        valid = [s.value for s in RegistrationStatus]
        if v not in valid:
            raise ValueError(f"Invalid status. Must be one of: {valid}")
        return v


# =============================================================================
# Helper Functions
# =============================================================================

def _can_view(user: User, registration) -> bool:
    return (
        user.role == UserRole.admin.value
        or registration.student_id == user.id
        or registration.assigned_lecturer_id == user.id
        or registration.requested_lecturer_id == user.id
    )


def _ok(registration) -> dict:
    return {"success": True, "registration": registration.to_dict()}


# =============================================================================
# Student routes
# =============================================================================

@router.post("/registrations", status_code=201)
@limiter.limit("30/minute")
async def create_registration(
    request: Request,
    body: CreateRegistrationRequest,
    db: AsyncSession = Depends(get_db),
    now: datetime = Depends(get_now),
    current_user: User = Depends(require_student)
):
    period = await period_service.get_period(db, body.period_id)
    async with transaction(db):
        registration = await registration_service.create_registration(db, current_user, period, now.date())
    return _ok(registration)


@router.get("/registrations/me")
async def my_registration(
    period_id: int = Query(...),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_student)
):
    registration = await registration_service.get_student_registration(db, current_user.id, period_id)
    if registration is None:
        raise NotFound("Registration")
    return _ok(registration)


@router.get("/registrations/{registration_id}")
async def get_registration(
    registration_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    registration = await registration_service.get_registration(db, registration_id)
    if not _can_view(current_user, registration):
        raise Forbidden("Not allowed to view this registration", code=ErrorCode.OWNERSHIP_VIOLATION)
    history = await registration_service.get_status_log(db, registration_id)
    return {**_ok(registration), "history": [entry.to_dict() for entry in history]}


@router.post("/registrations/{registration_id}/lecturer")
@limiter.limit("30/minute")
async def choose_lecturer(
    request: Request,
    registration_id: int,
    body: ChooseLecturerRequest,
    db: AsyncSession = Depends(get_db),
    now: datetime = Depends(get_now),
    current_user: User = Depends(require_student)
):
    async with transaction(db):
        registration = await registration_service.choose_lecturer(
            db, registration_id, body.lecturer_id, now.date(), student_id=current_user.id
        )
    return _ok(registration)


@router.post("/registrations/{registration_id}/defer")
async def defer_to_auto_assign(
    registration_id: int,
    db: AsyncSession = Depends(get_db),
    now: datetime = Depends(get_now),
    current_user: User = Depends(require_student)
):
    async with transaction(db):
        registration = await registration_service.defer_to_auto_assign(
            db, registration_id, now.date(), student_id=current_user.id
        )
    return _ok(registration)


@router.post("/registrations/{registration_id}/request-lecturer")
async def request_lecturer(
    registration_id: int,
    body: ChooseLecturerRequest,
    db: AsyncSession = Depends(get_db),
    now: datetime = Depends(get_now),
    current_user: User = Depends(require_student)
):
    async with transaction(db):
        registration = await registration_service.request_lecturer(
            db, registration_id, body.lecturer_id, now.date(), student_id=current_user.id
        )
    return _ok(registration)


@router.post("/registrations/{registration_id}/start-search")
async def start_search(
    registration_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_student)
):
    async with transaction(db):
        registration = await registration_service.start_search(db, registration_id, student_id=current_user.id)
    return _ok(registration)


@router.post("/registrations/{registration_id}/company")
async def submit_company(
    registration_id: int,
    body: CompanyRequest,
    db: AsyncSession = Depends(get_db),
    now: datetime = Depends(get_now),
    current_user: User = Depends(require_student)
):
    async with transaction(db):
        registration = await registration_service.submit_company(
            db, registration_id, body.model_dump(), now.date(), student_id=current_user.id
        )
    return _ok(registration)


# =============================================================================
# Lecturer routes
# =============================================================================

@router.post("/registrations/{registration_id}/confirm-lecturer")
async def confirm_lecturer(
    registration_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_lecturer)
):
    async with transaction(db):
        registration = await registration_service.confirm_lecturer_request(db, registration_id, current_user)
    return _ok(registration)


@router.post("/registrations/{registration_id}/decline-lecturer")
async def decline_lecturer(
    registration_id: int,
    body: DecisionRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_lecturer)
):
    async with transaction(db):
        registration = await registration_service.decline_lecturer_request(
            db, registration_id, current_user, body.note
        )
    return _ok(registration)


@router.post("/registrations/{registration_id}/complete")
async def confirm_completion(
    registration_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_staff)
):
    async with transaction(db):
        registration = await registration_service.confirm_completion(db, registration_id, current_user)
    return _ok(registration)


# =============================================================================
# Admin routes
# =============================================================================

@router.get("/admin/periods/{period_id}/registrations")
async def list_registrations(
    period_id: int,
    status: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_admin)
):
    if status is not None and status not in {s.value for s in RegistrationStatus}:
        raise ValidationError(f"Unknown registration status: {status}", field="status")
    registrations = await registration_service.list_registrations(db, period_id, status)
    return {
        "success": True,
        "period_id": period_id,
        "registrations": [r.to_dict() for r in registrations],
        "count": len(registrations),
    }


@router.put("/admin/registrations/{registration_id}/company")
async def admin_update_company(
    registration_id: int,
    body: CompanyRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_admin)
):
    async with transaction(db):
        registration = await registration_service.admin_update_company(
            db, registration_id, body.model_dump(exclude_unset=True), current_user.id
        )
    return _ok(registration)


@router.post("/admin/registrations/{registration_id}/pending-approval")
async def mark_pending_approval(
    registration_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_admin)
):
    async with transaction(db):
        registration = await registration_service.mark_pending_approval(db, registration_id, current_user.id)
    return _ok(registration)


@router.post("/admin/registrations/{registration_id}/approve")
async def approve(
    registration_id: int,
    body: DecisionRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_admin)
):
    async with transaction(db):
        registration = await registration_service.admin_approve(db, registration_id, current_user.id, body.note)
    return _ok(registration)


@router.post("/admin/registrations/{registration_id}/reject")
async def reject(
    registration_id: int,
    body: DecisionRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_admin)
):
    async with transaction(db):
        registration = await registration_service.admin_reject(db, registration_id, current_user.id, body.note)
    return _ok(registration)


@router.post("/admin/registrations/{registration_id}/status")
async def override_status(
    registration_id: int,
    body: OverrideStatusRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_admin)
):
    """Forced status change. Capacity and report side effects still apply."""
    async with transaction(db):
        registration = await registration_service.override_status(
            db, registration_id, body.status, current_user.id, body.note
        )
    return _ok(registration)
