"""
Lecturer Allocation Service

Capacity ledger administration, manual assignment and the deterministic
auto-assignment batch.

Auto-assignment:
- Candidates: registered, no lecturer, ordered by (created_at, id)
- Lecturer pool: allocations of the period passing department affinity
- Pick: most slots remaining, ties broken by lowest lecturer id
- Each candidate is claimed and advanced independently; a failure is
  recorded and the batch continues
- Re-running finds no candidates left, so the batch is idempotent
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, List, Dict, Any

from sqlalchemy import select, update, delete
from sqlalchemy.ext.asyncio import AsyncSession

from internhub.config import settings
from internhub.config.feature_flags import feature_flags
from internhub.errors import (
    CapacityExceeded, FeatureDisabled, NotFound, TransitionNotAllowed, ValidationError
)
from internhub.orm.lecturer_allocation import LecturerAllocation
from internhub.orm.registration import Registration, RegistrationStatus
from internhub.orm.user import User, UserRole
from internhub.services.capacity_ledger import get_allocation
from internhub.services.eligibility_service import lecturer_matches_department
from internhub.services.period_service import get_period
from internhub.services.registration_service import get_user, require_assignable_lecturer
from internhub.state_machines.registration_state import RegistrationAction, RegistrationStateMachine

logger = logging.getLogger(__name__)

FAILURE_NO_LECTURER_IN_DEPARTMENT = "no_lecturer_in_department"
FAILURE_NO_CAPACITY = "no_capacity"
FAILURE_CAPACITY_RACE_LOST = "capacity_race_lost"
FAILURE_REGISTRATION_CHANGED = "registration_changed"


# =============================================================================
# Ledger administration
# =============================================================================

async def add_lecturers_to_period(
    db: AsyncSession,
    period_id: int,
    lecturer_ids: List[int],
    max_students: int = settings.DEFAULT_MAX_STUDENTS
) -> List[LecturerAllocation]:
    """
    Create allocations for the given lecturers. Lecturers already in the
    period are skipped, so the call can be repeated safely.
    """
    if max_students < 0:
        raise ValidationError("max_students must not be negative", field="max_students")
    await get_period(db, period_id)

    result = await db.execute(
        select(LecturerAllocation.lecturer_id).where(LecturerAllocation.period_id == period_id)
    )
    existing = set(result.scalars().all())

    created = []
    for lecturer_id in sorted(set(lecturer_ids)):
        if lecturer_id in existing:
            continue
        lecturer = await get_user(db, lecturer_id, "Lecturer")
        if lecturer.role != UserRole.lecturer.value:
            raise ValidationError(
                f"User {lecturer_id} is not a lecturer",
                field="lecturer_ids",
                details={"lecturer_id": lecturer_id, "role": lecturer.role}
            )
        allocation = LecturerAllocation(
            lecturer_id=lecturer_id,
            period_id=period_id,
            max_students=max_students,
            assigned_count=0,
        )
        db.add(allocation)
        created.append(allocation)

    await db.flush()
    logger.info(f"Added {len(created)} lecturer(s) to period {period_id} (max_students={max_students})")
    return created


async def update_capacity(db: AsyncSession, period_id: int, lecturer_id: int, max_students: int) -> LecturerAllocation:
    """Change max_students. Never below the students already assigned."""
    if max_students < 0:
        raise ValidationError("max_students must not be negative", field="max_students")
    allocation = await get_allocation(db, period_id, lecturer_id)
    if allocation is None:
        raise NotFound("Lecturer allocation", lecturer_id)

    result = await db.execute(
        update(LecturerAllocation)
        .where(
            LecturerAllocation.id == allocation.id,
            LecturerAllocation.assigned_count <= max_students,
        )
        .values(max_students=max_students, updated_at=datetime.utcnow())
        .execution_options(synchronize_session=False)
    )
    await db.refresh(allocation)
    if result.rowcount != 1:
        raise ValidationError(
            f"max_students cannot be lower than the {allocation.assigned_count} students already assigned",
            field="max_students",
            details={"assigned_count": allocation.assigned_count}
        )
    logger.info(f"Lecturer {lecturer_id} capacity in period {period_id} set to {max_students}")
    return allocation


async def remove_allocation(db: AsyncSession, period_id: int, lecturer_id: int) -> None:
    """Remove a lecturer from a period. Refused while any student holds a slot."""
    result = await db.execute(
        delete(LecturerAllocation)
        .where(
            LecturerAllocation.period_id == period_id,
            LecturerAllocation.lecturer_id == lecturer_id,
            LecturerAllocation.assigned_count == 0,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 1:
        logger.info(f"Lecturer {lecturer_id} removed from period {period_id}")
        return

    allocation = await get_allocation(db, period_id, lecturer_id)
    if allocation is None:
        raise NotFound("Lecturer allocation", lecturer_id)
    raise TransitionNotAllowed(
        f"Lecturer {lecturer_id} still supervises {allocation.assigned_count} student(s) in this period",
        action="remove_allocation",
    )


async def list_available_lecturers(
    db: AsyncSession,
    period_id: int,
    department: Optional[str] = None
) -> List[Dict[str, Any]]:
    """
    Lecturers with at least one free slot, most free slots first, then by id.

    With a department, lecturers failing department affinity are left out.
    """
    period = await get_period(db, period_id)
    slots_remaining = LecturerAllocation.max_students - LecturerAllocation.assigned_count
    result = await db.execute(
        select(LecturerAllocation, User)
        .join(User, User.id == LecturerAllocation.lecturer_id)
        .where(
            LecturerAllocation.period_id == period_id,
            slots_remaining > 0,
            User.is_active.is_(True),
        )
        .order_by(slots_remaining.desc(), LecturerAllocation.lecturer_id)
        .execution_options(populate_existing=True)
    )

    lecturers = []
    for allocation, lecturer in result.all():
        if department is not None and not lecturer_matches_department(period, department, lecturer.department):
            continue
        lecturers.append({
            "lecturer_id": lecturer.id,
            "full_name": lecturer.full_name,
            "email": lecturer.email,
            "department": lecturer.department,
            "max_students": allocation.max_students,
            "assigned_count": allocation.assigned_count,
            "slots_remaining": allocation.slots_remaining,
        })
    return lecturers


# =============================================================================
# Auto-assignment
# =============================================================================

@dataclass
class AssignmentFailure:
    registration_id: int
    student_id: int
    reason: str


@dataclass
class AutoAssignResult:
    assigned_count: int = 0
    failures: List[AssignmentFailure] = field(default_factory=list)
    assignments: List[Dict[str, int]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "assigned_count": self.assigned_count,
            "failures": [vars(f) for f in self.failures],
            "assignments": list(self.assignments),
        }


async def auto_assign(db: AsyncSession, period_id: int, actor_id: Optional[int] = None) -> AutoAssignResult:
    """
    Assign a lecturer to every unassigned registered student of the period.

    Deterministic for a given database state. Every claim is a conditional
    UPDATE, so a slot taken concurrently is reported as capacity_race_lost
    rather than oversubscribed.
    """
    if not feature_flags.FEATURE_AUTO_ASSIGN:
        raise FeatureDisabled("Auto-assignment")
    period = await get_period(db, period_id)

    candidates = (await db.execute(
        select(Registration)
        .where(
            Registration.period_id == period_id,
            Registration.status == RegistrationStatus.registered.value,
            Registration.assigned_lecturer_id.is_(None),
        )
        .order_by(Registration.created_at, Registration.id)
        .execution_options(populate_existing=True)
    )).scalars().all()

    allocations = (await db.execute(
        select(LecturerAllocation, User.department)
        .join(User, User.id == LecturerAllocation.lecturer_id)
        .where(
            LecturerAllocation.period_id == period_id,
            User.is_active.is_(True),
        )
        .order_by(LecturerAllocation.lecturer_id)
        .execution_options(populate_existing=True)
    )).all()
    slots = {allocation.lecturer_id: allocation.slots_remaining for allocation, _ in allocations}
    lecturer_departments = {allocation.lecturer_id: department for allocation, department in allocations}

    student_ids = {r.student_id for r in candidates}
    students = {}
    if student_ids:
        result = await db.execute(select(User.id, User.department).where(User.id.in_(student_ids)))
        students = {student_id: department for student_id, department in result.all()}

    outcome = AutoAssignResult()
    for registration in candidates:
        student_department = students.get(registration.student_id)
        pool = [
            lecturer_id for lecturer_id in sorted(slots)
            if lecturer_matches_department(period, student_department, lecturer_departments[lecturer_id])
        ]
        if not pool:
            outcome.failures.append(AssignmentFailure(
                registration.id, registration.student_id, FAILURE_NO_LECTURER_IN_DEPARTMENT
            ))
            continue

        open_pool = [lecturer_id for lecturer_id in pool if slots[lecturer_id] > 0]
        if not open_pool:
            outcome.failures.append(AssignmentFailure(
                registration.id, registration.student_id, FAILURE_NO_CAPACITY
            ))
            continue

        chosen = min(open_pool, key=lambda lecturer_id: (-slots[lecturer_id], lecturer_id))
        machine = RegistrationStateMachine(db, registration)
        try:
            await machine.apply(
                RegistrationAction.assign_lecturer,
                actor_id=actor_id,
                values={"assigned_lecturer_id": chosen},
                note="auto-assign",
            )
        except CapacityExceeded:
            allocation = await get_allocation(db, period_id, chosen)
            slots[chosen] = allocation.slots_remaining if allocation else 0
            outcome.failures.append(AssignmentFailure(
                registration.id, registration.student_id, FAILURE_CAPACITY_RACE_LOST
            ))
            continue
        except TransitionNotAllowed:
            outcome.failures.append(AssignmentFailure(
                registration.id, registration.student_id, FAILURE_REGISTRATION_CHANGED
            ))
            continue

        slots[chosen] -= 1
        outcome.assigned_count += 1
        outcome.assignments.append({"registration_id": registration.id, "lecturer_id": chosen})

    for failure in outcome.failures:
        logger.warning(
            f"Auto-assign skipped registration {failure.registration_id} "
            f"(student {failure.student_id}): {failure.reason}"
        )
    logger.info(
        f"Auto-assign period {period_id}: {outcome.assigned_count} assigned, "
        f"{len(outcome.failures)} failed"
    )
    return outcome


# =============================================================================
# Manual assignment
# =============================================================================

async def admin_assign_lecturer(
    db: AsyncSession,
    registration_id: int,
    lecturer_id: int,
    admin_id: int
) -> Registration:
    """
    Assign or reassign a lecturer.

    Reassignment moves the slot from the old lecturer to the new one and
    keeps the current status, so a submitted company stays submitted.
    """
    machine = await RegistrationStateMachine.load(db, registration_id)
    registration = machine.registration
    if registration.assigned_lecturer_id == lecturer_id:
        return registration

    period = await get_period(db, registration.period_id)
    student = await get_user(db, registration.student_id, "Student")
    await require_assignable_lecturer(db, period, student, lecturer_id)

    if registration.assigned_lecturer_id is not None:
        return await machine.apply(
            RegistrationAction.reassign_lecturer,
            actor_id=admin_id,
            values={"assigned_lecturer_id": lecturer_id},
            note=f"reassigned from lecturer {registration.assigned_lecturer_id}",
        )

    return await machine.apply(
        RegistrationAction.assign_lecturer,
        actor_id=admin_id,
        values={"assigned_lecturer_id": lecturer_id},
        note="manual assignment",
    )


async def admin_unassign_lecturer(db: AsyncSession, registration_id: int, admin_id: int) -> Registration:
    """Clear the lecturer before approval; the slot is released and status returns to registered."""
    machine = await RegistrationStateMachine.load(db, registration_id)
    return await machine.apply(
        RegistrationAction.unassign_lecturer,
        actor_id=admin_id,
        values={"assigned_lecturer_id": None, "prefer_own_lecturer": False},
    )
