"""
Retake Service

A student whose internship is completed may ask to take it again.
An approved request opens the relaxed eligibility path on periods that
allow retakes (see services.eligibility_service.resolve_relaxed).

Status flow: pending -> approved | rejected. Decisions are conditional
UPDATEs on status = 'pending', so a request is decided exactly once.
"""
import logging
from datetime import datetime
from typing import Optional, Dict, Any, List

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from internhub.errors import (
    DuplicateEntity, Forbidden, NotFound, TransitionNotAllowed, ValidationError, ErrorCode
)
from internhub.orm.registration import Registration, RegistrationStatus
from internhub.orm.retake_request import RetakeRequest, RetakeStatus
from internhub.services.weekly_report_service import parse_grade

logger = logging.getLogger(__name__)


async def _latest_completed_registration(db: AsyncSession, student_id: int) -> Optional[Registration]:
    result = await db.execute(
        select(Registration)
        .where(
            Registration.student_id == student_id,
            Registration.status == RegistrationStatus.completed.value,
        )
        .order_by(Registration.completed_at.desc(), Registration.id.desc())
    )
    return result.scalars().first()


async def _pending_request(db: AsyncSession, student_id: int) -> Optional[RetakeRequest]:
    result = await db.execute(
        select(RetakeRequest).where(
            RetakeRequest.student_id == student_id,
            RetakeRequest.status == RetakeStatus.pending.value,
        )
    )
    return result.scalar_one_or_none()


async def can_request_retake(db: AsyncSession, student_id: int) -> Dict[str, Any]:
    """Whether the student may file a request now, and why not if not."""
    completed = await _latest_completed_registration(db, student_id)
    if completed is None:
        return {
            "can_request": False,
            "reason": "No completed internship on record",
            "previous_registration_id": None,
        }
    pending = await _pending_request(db, student_id)
    if pending is not None:
        return {
            "can_request": False,
            "reason": "A retake request is already pending",
            "previous_registration_id": completed.id,
            "pending_request_id": pending.id,
        }
    return {
        "can_request": True,
        "reason": None,
        "previous_registration_id": completed.id,
    }


async def submit_retake_request(
    db: AsyncSession,
    student_id: int,
    reason: str,
    previous_registration_id: Optional[int] = None,
    previous_grade: Any = None
) -> RetakeRequest:
    """
    File a retake request.

    Raises:
        ValidationError: blank reason, bad grade, previous registration not completed
        Forbidden: previous registration belongs to someone else
        TransitionNotAllowed: no completed internship on record
        DuplicateEntity: a pending request already exists
    """
    if not reason or not reason.strip():
        raise ValidationError("A reason is required", field="reason")
    grade = parse_grade(previous_grade)

    if previous_registration_id is not None:
        previous = await db.get(Registration, previous_registration_id)
        if previous is None:
            raise NotFound("Registration", previous_registration_id)
        if previous.student_id != student_id:
            raise Forbidden(
                "Previous registration belongs to another student",
                code=ErrorCode.OWNERSHIP_VIOLATION
            )
        if previous.status != RegistrationStatus.completed.value:
            raise ValidationError(
                "Previous registration must be completed",
                field="previous_registration_id",
                details={"status": previous.status}
            )
    else:
        previous = await _latest_completed_registration(db, student_id)
        if previous is None:
            raise TransitionNotAllowed(
                "A retake can only be requested after a completed internship",
                action="request_retake",
                allowed_statuses=[RegistrationStatus.completed.value],
            )

    if await _pending_request(db, student_id) is not None:
        raise DuplicateEntity(
            "A retake request is already pending",
            details={"student_id": student_id}
        )

    request = RetakeRequest(
        student_id=student_id,
        previous_registration_id=previous.id,
        reason=reason.strip(),
        previous_grade=grade,
        status=RetakeStatus.pending.value,
    )
    db.add(request)
    try:
        await db.flush()
    except IntegrityError:
        # lost a race against another pending request from the same student
        raise DuplicateEntity(
            "A retake request is already pending",
            details={"student_id": student_id}
        )
    logger.info(f"Retake request {request.id} filed by student {student_id}")
    return request


async def _decide(
    db: AsyncSession,
    request_id: int,
    admin_id: int,
    outcome: RetakeStatus,
    note: Optional[str],
    now: datetime
) -> RetakeRequest:
    request = await db.get(RetakeRequest, request_id)
    if request is None:
        raise NotFound("Retake request", request_id)

    result = await db.execute(
        update(RetakeRequest)
        .where(
            RetakeRequest.id == request_id,
            RetakeRequest.status == RetakeStatus.pending.value,
        )
        .values(
            status=outcome.value,
            admin_note=note,
            reviewed_by=admin_id,
            reviewed_at=now,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await db.refresh(request)
        raise TransitionNotAllowed(
            f"Retake request {request_id} is already {request.status}",
            current_status=request.status,
            action=outcome.value,
            allowed_statuses=[RetakeStatus.pending.value],
        )
    await db.refresh(request)
    logger.info(f"Retake request {request_id} {outcome.value} by admin {admin_id}")
    return request


async def approve_retake_request(
    db: AsyncSession,
    request_id: int,
    admin_id: int,
    now: datetime,
    note: Optional[str] = None
) -> RetakeRequest:
    return await _decide(db, request_id, admin_id, RetakeStatus.approved, note, now)


async def reject_retake_request(
    db: AsyncSession,
    request_id: int,
    admin_id: int,
    note: str,
    now: datetime
) -> RetakeRequest:
    """Reject a pending request. The note is shown to the student and is required."""
    if not note or not note.strip():
        raise ValidationError("A note is required when rejecting a retake request", field="admin_note")
    return await _decide(db, request_id, admin_id, RetakeStatus.rejected, note.strip(), now)


async def has_approved_retake(db: AsyncSession, student_id: int) -> bool:
    result = await db.execute(
        select(RetakeRequest.id)
        .where(
            RetakeRequest.student_id == student_id,
            RetakeRequest.status == RetakeStatus.approved.value,
        )
        .limit(1)
    )
    return result.scalar_one_or_none() is not None


async def list_retake_requests(db: AsyncSession, status: Optional[str] = None) -> List[RetakeRequest]:
    query = select(RetakeRequest).order_by(RetakeRequest.created_at, RetakeRequest.id)
    if status:
        query = query.where(RetakeRequest.status == RetakeStatus(status).value)
    result = await db.execute(query)
    return list(result.scalars().all())
