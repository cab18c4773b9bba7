"""
Retake request routes.
"""
from datetime import datetime
from typing import Optional, Union

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from internhub.clock import get_now
from internhub.config.feature_flags import feature_flags
from internhub.database import get_db, transaction
from internhub.errors import FeatureDisabled, ValidationError
from internhub.orm.retake_request import RetakeStatus
from internhub.orm.user import User
from internhub.rbac import require_admin, require_student
from internhub.services import retake_service

router = APIRouter(prefix="/api", tags=["Retake Requests"])


class RetakeRequestBody(BaseModel):
    reason: str = Field(..., max_length=5000)
    previous_registration_id: Optional[int] = None
    previous_grade: Optional[Union[float, str]] = None


class RetakeDecisionBody(BaseModel):
    admin_note: Optional[str] = Field(None, max_length=2000)


def check_retakes_enabled():
    if not feature_flags.FEATURE_RETAKE_REQUESTS:
        raise FeatureDisabled("Retake requests")


@router.get("/retake-requests/eligibility")
async def retake_eligibility(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_student)
):
    check_retakes_enabled()
    result = await retake_service.can_request_retake(db, current_user.id)
    return {"success": True, **result}


@router.post("/retake-requests", status_code=201)
async def submit_retake_request(
    body: RetakeRequestBody,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_student)
):
    check_retakes_enabled()
    async with transaction(db):
        request = await retake_service.submit_retake_request(
            db, current_user.id, body.reason, body.previous_registration_id, body.previous_grade
        )
    return {"success": True, "retake_request": request.to_dict()}


@router.get("/admin/retake-requests")
async def list_retake_requests(
    status: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_admin)
):
    check_retakes_enabled()
    if status is not None and status not in {s.value for s in RetakeStatus}:
        raise ValidationError(f"Unknown retake status: {status}", field="status")
    requests = await retake_service.list_retake_requests(db, status)
    return {"success": True, "retake_requests": [r.to_dict() for r in requests], "count": len(requests)}


@router.post("/admin/retake-requests/{request_id}/approve")
async def approve_retake_request(
    request_id: int,
    body: RetakeDecisionBody,
    db: AsyncSession = Depends(get_db),
    now: datetime = Depends(get_now),
    current_user: User = Depends(require_admin)
):
    check_retakes_enabled()
    async with transaction(db):
        request = await retake_service.approve_retake_request(
            db, request_id, current_user.id, now, note=body.admin_note
        )
    return {"success": True, "retake_request": request.to_dict()}


@router.post("/admin/retake-requests/{request_id}/reject")
async def reject_retake_request(
    request_id: int,
    body: RetakeDecisionBody,
    db: AsyncSession = Depends(get_db),
    now: datetime = Depends(get_now),
    current_user: User = Depends(require_admin)
):
    check_retakes_enabled()
    async with transaction(db):
        request = await retake_service.reject_retake_request(
            db, request_id, current_user.id, body.admin_note, now
        )
    return {"success": True, "retake_request": request.to_dict()}
