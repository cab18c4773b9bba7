"""
Internship period routes: visibility, creation, activation, progress sync
and per-week report statistics.
"""
from datetime import date, datetime
from typing import Optional, List

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from internhub.clock import get_now
from internhub.database import get_db, transaction
from internhub.orm.user import User
from internhub.rbac import get_current_user, require_admin, require_student
from internhub.services import period_service, registration_service, weekly_report_service

router = APIRouter(prefix="/api", tags=["Periods"])


# =============================================================================
# Pydantic Models
# =============================================================================

class CreatePeriodRequest(BaseModel):
    semester: str = Field(..., min_length=1, max_length=50)
    academic_year: str = Field(..., min_length=1, max_length=20)
    registration_start: date
    registration_end: date
    lecturer_selection_end: date
    internship_start: date
    search_deadline: date
    internship_end: date
    target_departments: Optional[List[str]] = None
    target_academic_years: Optional[List[str]] = None
    target_internship_statuses: Optional[List[str]] = None
    allow_retake: bool = False
    require_department_match: bool = True
    lecturer_confirmation_required: bool = False


# =============================================================================
# Routes
# =============================================================================

@router.get("/periods/visible")
async def get_visible_period(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_student)
):
    """The active period, if the student is eligible for it."""
    period = await period_service.get_visible_period(db, current_user)
    return {"success": True, "period": period.to_dict() if period else None}


@router.get("/periods/{period_id}")
async def get_period(
    period_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    period = await period_service.get_period(db, period_id)
    return {"success": True, "period": period.to_dict()}


@router.post("/admin/periods", status_code=201)
async def create_period(
    body: CreatePeriodRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_admin)
):
    async with transaction(db):
        period = await period_service.create_period(db, body.model_dump())
    return {"success": True, "period": period.to_dict()}


@router.post("/admin/periods/{period_id}/activate")
async def activate_period(
    period_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_admin)
):
    """Make this the single active period."""
    async with transaction(db):
        period = await period_service.set_active_period(db, period_id)
    return {"success": True, "period": period.to_dict()}


@router.post("/admin/periods/{period_id}/sync-progress")
async def sync_progress(
    period_id: int,
    db: AsyncSession = Depends(get_db),
    now: datetime = Depends(get_now),
    current_user: User = Depends(require_admin)
):
    """Advance approved/in-progress registrations according to the calendar."""
    async with transaction(db):
        counts = await registration_service.sync_period_progress(db, period_id, now.date(), current_user.id)
    return {"success": True, **counts}


@router.get("/admin/periods/{period_id}/report-stats")
async def report_stats(
    period_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_admin)
):
    await period_service.get_period(db, period_id)
    weeks = await weekly_report_service.week_statistics(db, period_id)
    return {"success": True, "period_id": period_id, "weeks": weeks}
