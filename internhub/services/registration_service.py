"""
Registration Service

Student, lecturer and admin operations on registrations. Each operation
checks its date window and preconditions, then hands the status change
to RegistrationStateMachine, which owns capacity, audit log and side
effects.

Date windows are inclusive and compared at day precision:
- registration:       [registration_start, registration_end]
- lecturer selection: [registration_end, lecturer_selection_end]
- company submission: [internship_start, search_deadline]
"""
import logging
from datetime import date
from typing import Optional, Dict, Any, List

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from internhub.config.feature_flags import feature_flags
from internhub.errors import (
    DuplicateEntity, Forbidden, NotEligible, NotFound, TransitionNotAllowed,
    ValidationError, ErrorCode
)
from internhub.orm.period import Period
from internhub.orm.registration import (
    Registration, RegistrationStatus, RegistrationStatusLog, COMPANY_FIELDS
)
from internhub.orm.user import User, UserRole
from internhub.services.capacity_ledger import get_allocation
from internhub.services.eligibility_service import CRITERION_DEPARTMENT, lecturer_matches_department
from internhub.services.period_service import get_period, is_within, period_eligibility
from internhub.state_machines.registration_state import (
    RegistrationAction, RegistrationStateMachine, PRE_COMPLETION, next_status
)

logger = logging.getLogger(__name__)

A = RegistrationAction
S = RegistrationStatus


# =============================================================================
# Lookups
# =============================================================================

async def get_registration(db: AsyncSession, registration_id: int) -> Registration:
    registration = await db.get(Registration, registration_id)
    if not registration:
        raise NotFound("Registration", registration_id)
    return registration


async def get_user(db: AsyncSession, user_id: int, resource: str = "User") -> User:
    user = await db.get(User, user_id)
    if not user:
        raise NotFound(resource, user_id)
    return user


async def get_student_registration(db: AsyncSession, student_id: int, period_id: int) -> Optional[Registration]:
    result = await db.execute(
        select(Registration).where(
            Registration.student_id == student_id,
            Registration.period_id == period_id,
        )
    )
    return result.scalar_one_or_none()


async def list_registrations(
    db: AsyncSession,
    period_id: int,
    status: Optional[str] = None,
    lecturer_id: Optional[int] = None
) -> List[Registration]:
    query = select(Registration).where(Registration.period_id == period_id)
    if status:
        query = query.where(Registration.status == S(status).value)
    if lecturer_id is not None:
        query = query.where(Registration.assigned_lecturer_id == lecturer_id)
    result = await db.execute(query.order_by(Registration.created_at, Registration.id))
    return list(result.scalars().all())


async def get_status_log(db: AsyncSession, registration_id: int) -> List[RegistrationStatusLog]:
    result = await db.execute(
        select(RegistrationStatusLog)
        .where(RegistrationStatusLog.registration_id == registration_id)
        .order_by(RegistrationStatusLog.created_at, RegistrationStatusLog.id)
    )
    return list(result.scalars().all())


# =============================================================================
# Guards
# =============================================================================

def _require_window(action: str, current: str, today: date, start: date, end: date, label: str) -> None:
    if not is_within(today, start, end):
        logger.warning(f"{action} refused on {today.isoformat()}: outside {label} window")
        raise TransitionNotAllowed(
            f"{action} is only allowed between {start.isoformat()} and {end.isoformat()}",
            current_status=current,
            action=action,
            window={"name": label, "start": start.isoformat(), "end": end.isoformat()},
        )


def _require_selection_window(period: Period, current: str, action: str, today: date) -> None:
    _require_window(action, current, today, period.registration_end, period.lecturer_selection_end, "lecturer_selection")


async def require_assignable_lecturer(db: AsyncSession, period: Period, student: User, lecturer_id: int) -> User:
    """Lecturer must hold an allocation in the period and match the student's department."""
    allocation = await get_allocation(db, period.id, lecturer_id)
    if allocation is None:
        raise NotFound("Lecturer allocation", lecturer_id)
    lecturer = await get_user(db, lecturer_id, "Lecturer")
    if not lecturer_matches_department(period, student.department, lecturer.department):
        raise NotEligible(
            [CRITERION_DEPARTMENT],
            message=f"Lecturer {lecturer_id} supervises department {lecturer.department} only"
        )
    return lecturer


def _require_owner(registration: Registration, student_id: int) -> None:
    if registration.student_id != student_id:
        raise Forbidden("Registration belongs to another student", code=ErrorCode.OWNERSHIP_VIOLATION)


# =============================================================================
# Student operations
# =============================================================================

async def create_registration(db: AsyncSession, student: User, period: Period, today: date) -> Registration:
    """
    Register a student for a period.

    Raises:
        TransitionNotAllowed: period inactive or outside the registration window
        DuplicateEntity: student already registered for the period
        NotEligible: eligibility filter denied
    """
    if not period.is_active:
        raise TransitionNotAllowed(
            f"Period {period.id} is not open",
            action="register",
        )
    _require_window("register", None, today, period.registration_start, period.registration_end, "registration")

    existing = await get_student_registration(db, student.id, period.id)
    if existing is not None:
        raise DuplicateEntity(
            "Student is already registered for this period",
            details={"registration_id": existing.id}
        )

    eligibility = await period_eligibility(db, student, period)
    if not eligibility.eligible:
        logger.warning(f"Student {student.id} not eligible for period {period.id}: {eligibility.unmet}")
        raise NotEligible(eligibility.unmet)

    registration = Registration(
        student_id=student.id,
        period_id=period.id,
        status=S.registered.value,
        prefer_own_lecturer=False,
    )
    db.add(registration)
    try:
        await db.flush()
    except IntegrityError:
        raise DuplicateEntity("Student is already registered for this period")

    db.add(RegistrationStatusLog(
        registration_id=registration.id,
        from_status=None,
        to_status=S.registered.value,
        action="register",
        actor_id=student.id,
        note="relaxed eligibility" if eligibility.relaxed else None,
    ))
    await db.flush()
    logger.info(
        f"Student {student.id} registered for period {period.id} "
        f"(registration {registration.id}, relaxed={eligibility.relaxed})"
    )
    return registration


async def choose_lecturer(
    db: AsyncSession,
    registration_id: int,
    lecturer_id: int,
    today: date,
    student_id: Optional[int] = None
) -> Registration:
    """
    Student picks their own lecturer during the selection window.

    The slot is claimed by a conditional UPDATE; losing the race for the
    last slot raises CapacityExceeded and leaves nothing behind.
    """
    machine = await RegistrationStateMachine.load(db, registration_id)
    registration = machine.registration
    if student_id is not None:
        _require_owner(registration, student_id)
    next_status(registration.status, A.choose_lecturer)

    period = await get_period(db, registration.period_id)
    if period.lecturer_confirmation_required:
        raise TransitionNotAllowed(
            "This period requires the lecturer to confirm; send a lecturer request instead",
            current_status=registration.status,
            action=A.choose_lecturer.value,
        )
    _require_selection_window(period, registration.status, A.choose_lecturer.value, today)

    student = await get_user(db, registration.student_id, "Student")
    await require_assignable_lecturer(db, period, student, lecturer_id)

    return await machine.apply(
        A.choose_lecturer,
        actor_id=student.id,
        values={
            "assigned_lecturer_id": lecturer_id,
            "requested_lecturer_id": lecturer_id,
            "prefer_own_lecturer": True,
        },
    )


async def defer_to_auto_assign(
    db: AsyncSession,
    registration_id: int,
    today: date,
    student_id: Optional[int] = None
) -> Registration:
    """Student leaves lecturer choice to the auto-assignment batch."""
    machine = await RegistrationStateMachine.load(db, registration_id)
    registration = machine.registration
    if student_id is not None:
        _require_owner(registration, student_id)
    next_status(registration.status, A.defer_to_auto_assign)

    period = await get_period(db, registration.period_id)
    _require_selection_window(period, registration.status, A.defer_to_auto_assign.value, today)

    return await machine.apply(
        A.defer_to_auto_assign,
        actor_id=registration.student_id,
        values={"prefer_own_lecturer": False},
    )


async def request_lecturer(
    db: AsyncSession,
    registration_id: int,
    lecturer_id: int,
    today: date,
    student_id: Optional[int] = None
) -> Registration:
    """Ask a lecturer to supervise; used when the period requires confirmation."""
    machine = await RegistrationStateMachine.load(db, registration_id)
    registration = machine.registration
    if student_id is not None:
        _require_owner(registration, student_id)
    next_status(registration.status, A.request_lecturer)

    period = await get_period(db, registration.period_id)
    if not period.lecturer_confirmation_required:
        raise TransitionNotAllowed(
            "This period does not use lecturer confirmation; choose a lecturer directly",
            current_status=registration.status,
            action=A.request_lecturer.value,
        )
    _require_selection_window(period, registration.status, A.request_lecturer.value, today)

    student = await get_user(db, registration.student_id, "Student")
    await require_assignable_lecturer(db, period, student, lecturer_id)

    return await machine.apply(
        A.request_lecturer,
        actor_id=student.id,
        values={"requested_lecturer_id": lecturer_id, "prefer_own_lecturer": True},
    )


async def confirm_lecturer_request(db: AsyncSession, registration_id: int, lecturer: User) -> Registration:
    """Requested lecturer accepts; this is where the slot is claimed."""
    machine = await RegistrationStateMachine.load(db, registration_id)
    if machine.registration.requested_lecturer_id != lecturer.id:
        raise Forbidden("Only the requested lecturer can confirm", code=ErrorCode.OWNERSHIP_VIOLATION)
    return await machine.apply(
        A.confirm_lecturer,
        actor_id=lecturer.id,
        values={"assigned_lecturer_id": lecturer.id},
    )


async def decline_lecturer_request(
    db: AsyncSession,
    registration_id: int,
    lecturer: User,
    note: Optional[str] = None
) -> Registration:
    machine = await RegistrationStateMachine.load(db, registration_id)
    if machine.registration.requested_lecturer_id != lecturer.id:
        raise Forbidden("Only the requested lecturer can decline", code=ErrorCode.OWNERSHIP_VIOLATION)
    return await machine.apply(
        A.decline_lecturer,
        actor_id=lecturer.id,
        values={"requested_lecturer_id": None, "prefer_own_lecturer": False},
        note=note,
    )


async def start_search(db: AsyncSession, registration_id: int, student_id: Optional[int] = None) -> Registration:
    machine = await RegistrationStateMachine.load(db, registration_id)
    if student_id is not None:
        _require_owner(machine.registration, student_id)
    return await machine.apply(A.start_search, actor_id=machine.registration.student_id)


def _clean_company(company: Dict[str, Any]) -> Dict[str, str]:
    return {name: (company.get(name) or "").strip() for name in COMPANY_FIELDS}


async def submit_company(
    db: AsyncSession,
    registration_id: int,
    company: Dict[str, Any],
    today: date,
    student_id: Optional[int] = None
) -> Registration:
    """
    Student records the host company. May be repeated to edit while still
    company_submitted.

    Raises:
        TransitionNotAllowed: no lecturer, wrong status, or outside the search window
        ValidationError: any of the five company fields blank
    """
    machine = await RegistrationStateMachine.load(db, registration_id)
    registration = machine.registration
    if student_id is not None:
        _require_owner(registration, student_id)

    if registration.assigned_lecturer_id is None:
        raise TransitionNotAllowed(
            "A lecturer must be assigned before company information is submitted",
            current_status=registration.status,
            action=A.submit_company.value,
        )
    next_status(registration.status, A.submit_company)

    period = await get_period(db, registration.period_id)
    _require_window(
        A.submit_company.value, registration.status, today,
        period.internship_start, period.search_deadline, "company_search"
    )

    cleaned = _clean_company(company)
    missing = [name for name, value in cleaned.items() if not value]
    if missing:
        raise ValidationError(
            f"Missing company information: {', '.join(missing)}",
            details={"missing_fields": missing}
        )

    return await machine.apply(A.submit_company, actor_id=registration.student_id, values=cleaned)


# =============================================================================
# Admin operations
# =============================================================================

async def admin_update_company(
    db: AsyncSession,
    registration_id: int,
    company: Dict[str, Any],
    admin_id: int
) -> Registration:
    """
    Admin edits company fields on any pre-completion registration.

    A searching registration that now has a company name moves on to
    company_submitted.
    """
    machine = await RegistrationStateMachine.load(db, registration_id)
    registration = machine.registration
    if machine.status not in PRE_COMPLETION:
        raise TransitionNotAllowed(
            f"Company information is frozen once a registration is {registration.status}",
            current_status=registration.status,
            action="update_company",
            allowed_statuses=sorted(s.value for s in PRE_COMPLETION),
        )

    values = {
        name: (company[name] or "").strip() or None
        for name in COMPANY_FIELDS if name in company
    }
    company_name = values.get("company_name", registration.company_name)

    if machine.status == S.searching and company_name:
        return await machine.apply(
            A.submit_company,
            actor_id=admin_id,
            values=values,
            note="company updated by admin",
        )

    for name, value in values.items():
        setattr(registration, name, value)
    await db.flush()
    logger.info(f"Admin {admin_id} updated company information on registration {registration.id}")
    return registration


async def mark_pending_approval(db: AsyncSession, registration_id: int, admin_id: int) -> Registration:
    machine = await RegistrationStateMachine.load(db, registration_id)
    return await machine.apply(A.mark_pending_approval, actor_id=admin_id)


async def admin_approve(
    db: AsyncSession,
    registration_id: int,
    admin_id: int,
    note: Optional[str] = None
) -> Registration:
    """Approve the company placement. First approval materializes the weekly reports."""
    machine = await RegistrationStateMachine.load(db, registration_id)
    if feature_flags.FEATURE_PENDING_APPROVAL_GATE and machine.status != S.pending_approval:
        raise TransitionNotAllowed(
            "Registration must be pending approval before it can be approved",
            current_status=machine.status.value,
            action=A.approve.value,
            allowed_statuses=[S.pending_approval.value],
        )
    values = {"admin_note": note} if note else None
    return await machine.apply(A.approve, actor_id=admin_id, values=values, note=note)


async def admin_reject(
    db: AsyncSession,
    registration_id: int,
    admin_id: int,
    note: Optional[str] = None
) -> Registration:
    """Reject from any pre-completion state. The lecturer slot is released."""
    machine = await RegistrationStateMachine.load(db, registration_id)
    values = {"admin_note": note} if note else None
    return await machine.apply(A.reject, actor_id=admin_id, values=values, note=note)


async def override_status(
    db: AsyncSession,
    registration_id: int,
    status: str,
    admin_id: int,
    note: Optional[str] = None
) -> Registration:
    try:
        target = S(status)
    except ValueError:
        raise ValidationError(
            f"Unknown registration status: {status}",
            field="status",
            details={"allowed": [s.value for s in S]}
        )
    machine = await RegistrationStateMachine.load(db, registration_id)
    logger.warning(
        f"Admin {admin_id} overriding registration {registration_id}: {machine.status.value} -> {target.value}"
    )
    return await machine.force(target, actor_id=admin_id, note=note)


# =============================================================================
# Calendar progression
# =============================================================================

async def advance_by_calendar(
    db: AsyncSession,
    registration_id: int,
    today: date,
    actor_id: Optional[int] = None
) -> Registration:
    """
    approved -> in_progress once the internship has started;
    in_progress -> completed once it has ended.
    """
    machine = await RegistrationStateMachine.load(db, registration_id)
    period = await get_period(db, machine.registration.period_id)

    if machine.status == S.approved and today >= period.internship_start:
        await machine.apply(A.start_internship, actor_id=actor_id, note="internship started")
    if machine.status == S.in_progress and today > period.internship_end:
        await machine.apply(A.complete, actor_id=actor_id, note="internship period ended")
    return machine.registration


async def sync_period_progress(
    db: AsyncSession,
    period_id: int,
    today: date,
    actor_id: Optional[int] = None
) -> Dict[str, int]:
    """Run advance_by_calendar over every approved or in-progress registration of the period."""
    await get_period(db, period_id)
    result = await db.execute(
        select(Registration.id, Registration.status)
        .where(
            Registration.period_id == period_id,
            Registration.status.in_([S.approved.value, S.in_progress.value]),
        )
        .order_by(Registration.id)
    )
    rows = result.all()

    counts = {"checked": len(rows), "started": 0, "completed": 0}
    for registration_id, before in rows:
        registration = await advance_by_calendar(db, registration_id, today, actor_id)
        if registration.status == before:
            continue
        if before == S.approved.value:
            counts["started"] += 1
        if registration.status == S.completed.value:
            counts["completed"] += 1

    logger.info(f"Period {period_id} progress sync on {today.isoformat()}: {counts}")
    return counts


async def confirm_completion(db: AsyncSession, registration_id: int, actor: User) -> Registration:
    """Admin or the assigned lecturer closes an in-progress internship."""
    machine = await RegistrationStateMachine.load(db, registration_id)
    if actor.role != UserRole.admin.value and machine.registration.assigned_lecturer_id != actor.id:
        raise Forbidden(
            "Only an admin or the assigned lecturer can confirm completion",
            code=ErrorCode.OWNERSHIP_VIOLATION
        )
    return await machine.apply(A.complete, actor_id=actor.id)
