"""
Lecturer allocation routes: capacity ledger, auto-assignment and manual
assignment.
"""
from typing import Optional, List

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from internhub.config import settings
from internhub.database import get_db, transaction
from internhub.orm.user import User, UserRole
from internhub.rbac import get_current_user, require_admin, require_lecturer
from internhub.services import allocation_service, capacity_ledger, weekly_report_service

router = APIRouter(prefix="/api", tags=["Lecturer Allocation"])


# =============================================================================
# Pydantic Models
# =============================================================================

class AddLecturersRequest(BaseModel):
    lecturer_ids: List[int] = Field(..., min_length=1)
    max_students: int = Field(settings.DEFAULT_MAX_STUDENTS, ge=0)


class UpdateCapacityRequest(BaseModel):
    max_students: int = Field(..., ge=0)


class AssignLecturerRequest(BaseModel):
    lecturer_id: int


# =============================================================================
# Routes
# =============================================================================

@router.get("/periods/{period_id}/available-lecturers")
async def available_lecturers(
    period_id: int,
    department: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    Lecturers with free slots, most free first.

    Students always see the list filtered by their own department.
    """
    if current_user.role == UserRole.student.value:
        department = current_user.department
    lecturers = await allocation_service.list_available_lecturers(db, period_id, department)
    return {"success": True, "period_id": period_id, "lecturers": lecturers}


@router.post("/admin/periods/{period_id}/lecturers", status_code=201)
async def add_lecturers(
    period_id: int,
    body: AddLecturersRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_admin)
):
    async with transaction(db):
        created = await allocation_service.add_lecturers_to_period(
            db, period_id, body.lecturer_ids, body.max_students
        )
    return {"success": True, "allocations": [a.to_dict() for a in created]}


@router.patch("/admin/periods/{period_id}/lecturers/{lecturer_id}")
async def update_capacity(
    period_id: int,
    lecturer_id: int,
    body: UpdateCapacityRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_admin)
):
    async with transaction(db):
        allocation = await allocation_service.update_capacity(db, period_id, lecturer_id, body.max_students)
    return {"success": True, "allocation": allocation.to_dict()}


@router.delete("/admin/periods/{period_id}/lecturers/{lecturer_id}")
async def remove_lecturer(
    period_id: int,
    lecturer_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_admin)
):
    async with transaction(db):
        await allocation_service.remove_allocation(db, period_id, lecturer_id)
    return {"success": True, "period_id": period_id, "lecturer_id": lecturer_id}


@router.post("/admin/periods/{period_id}/auto-assign")
async def auto_assign(
    period_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_admin)
):
    """Assign lecturers to every registered student still without one."""
    async with transaction(db):
        outcome = await allocation_service.auto_assign(db, period_id, current_user.id)
    return {"success": True, **outcome.to_dict()}


@router.post("/admin/periods/{period_id}/recount")
async def recount(
    period_id: int,
    fix: bool = Query(False),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_admin)
):
    """Compare stored assigned_count with the registrations; optionally repair."""
    async with transaction(db):
        drift = await capacity_ledger.recount_allocation(db, period_id, fix=fix)
    return {"success": True, "period_id": period_id, "fixed": fix, "drift": drift}


@router.post("/admin/registrations/{registration_id}/assign")
async def assign_lecturer(
    registration_id: int,
    body: AssignLecturerRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_admin)
):
    async with transaction(db):
        registration = await allocation_service.admin_assign_lecturer(
            db, registration_id, body.lecturer_id, current_user.id
        )
    return {"success": True, "registration": registration.to_dict()}


@router.post("/admin/registrations/{registration_id}/unassign")
async def unassign_lecturer(
    registration_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_admin)
):
    async with transaction(db):
        registration = await allocation_service.admin_unassign_lecturer(db, registration_id, current_user.id)
    return {"success": True, "registration": registration.to_dict()}


@router.get("/lecturers/me/overview")
async def lecturer_overview(
    period_id: int = Query(...),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_lecturer)
):
    overview = await weekly_report_service.lecturer_overview(db, current_user.id, period_id)
    return {"success": True, **overview}
