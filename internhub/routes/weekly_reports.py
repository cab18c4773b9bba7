"""
Weekly report routes: listing with progress summary, multipart submission
and lecturer review.
"""
from datetime import datetime
from typing import Optional, Union

from fastapi import APIRouter, Depends, File, Form, Request, UploadFile
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from internhub.clock import get_now
from internhub.config import settings
from internhub.database import get_db, transaction
from internhub.errors import Forbidden, ErrorCode
from internhub.limiter import limiter
from internhub.orm.user import User, UserRole
from internhub.rbac import get_current_user, require_staff, require_student
from internhub.services import registration_service, weekly_report_service
from internhub.services.storage_service import BlobStore, get_blob_store, store_report_file

router = APIRouter(prefix="/api", tags=["Weekly Reports"])


class ReviewRequest(BaseModel):
    decision: str = Field(..., description="approved, rejected or needs_revision")
    grade: Union[float, str] = Field(..., description="0-10, one decimal")
    feedback: Optional[str] = Field(None, max_length=5000)


@router.get("/registrations/{registration_id}/reports")
async def list_reports(
    registration_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """All weeks of a registration plus the progress summary."""
    registration = await registration_service.get_registration(db, registration_id)
    if current_user.role != UserRole.admin.value and current_user.id not in (
        registration.student_id, registration.assigned_lecturer_id
    ):
        raise Forbidden("Not allowed to view these reports", code=ErrorCode.OWNERSHIP_VIOLATION)

    reports = await weekly_report_service.list_reports(db, registration_id)
    summary = weekly_report_service.summarize_reports(reports)
    if summary["average_grade"] is not None:
        summary["average_grade"] = str(summary["average_grade"])
    return {
        "success": True,
        "registration_id": registration_id,
        "reports": [r.to_dict() for r in reports],
        "summary": summary,
    }


@router.post("/reports/{report_id}/submit")
@limiter.limit("30/minute")
async def submit_report(
    request: Request,
    report_id: int,
    report_title: str = Form(...),
    file: Optional[UploadFile] = File(None),
    db: AsyncSession = Depends(get_db),
    blob_store: BlobStore = Depends(get_blob_store),
    now: datetime = Depends(get_now),
    current_user: User = Depends(require_student)
):
    """
    Submit or replace a week's report document.

    The file is optional only when one was uploaded before.
    """
    file_url = None
    if file is not None and file.filename:
        report = await weekly_report_service.get_report(db, report_id)
        registration = await registration_service.get_registration(db, report.registration_id)
        weekly_report_service.check_submittable(report, registration, current_user.id, now.date())
        weekly_report_service.clean_report_title(report_title)
        # one byte past the limit is enough to reject
        data = await file.read(settings.MAX_REPORT_FILE_BYTES + 1)
        file_url = await store_report_file(
            blob_store, registration.id, report.week_number, file.filename, data, now
        )

    async with transaction(db):
        report = await weekly_report_service.submit_report(
            db, report_id, current_user.id, report_title, now, file_url=file_url
        )
    return {"success": True, "report": report.to_dict()}


@router.post("/reports/{report_id}/review")
async def review_report(
    report_id: int,
    body: ReviewRequest,
    db: AsyncSession = Depends(get_db),
    now: datetime = Depends(get_now),
    current_user: User = Depends(require_staff)
):
    async with transaction(db):
        report = await weekly_report_service.review_report(
            db, report_id, current_user, body.grade, body.decision, body.feedback, now
        )
    return {"success": True, "report": report.to_dict()}
