"""
Capacity ledger primitives.

assigned_count is the only resource shared between concurrent requests.
It is moved exclusively by conditional UPDATE statements, so the guard
and the increment are evaluated by the database as one operation:

    UPDATE lecturer_allocations
       SET assigned_count = assigned_count + 1
     WHERE lecturer_id = :l AND period_id = :p
       AND assigned_count < max_students

Of two racing claims for the last slot exactly one matches a row.
"""
import logging
from datetime import datetime
from typing import Dict, List, Any

from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession

from internhub.orm.lecturer_allocation import LecturerAllocation
from internhub.orm.registration import Registration, RegistrationStatus

logger = logging.getLogger(__name__)

# Statuses in which an assigned lecturer does not consume a slot
NON_HOLDING_STATUSES = frozenset({
    RegistrationStatus.not_started,
    RegistrationStatus.completed,
    RegistrationStatus.rejected,
    RegistrationStatus.assigned_to_project,
})


def holds_slot(status: str, lecturer_id) -> bool:
    return lecturer_id is not None and RegistrationStatus(status) not in NON_HOLDING_STATUSES


async def claim_slot(db: AsyncSession, period_id: int, lecturer_id: int) -> bool:
    """Take one slot. Returns False when the allocation is full or missing."""
    result = await db.execute(
        update(LecturerAllocation)
        .where(
            LecturerAllocation.period_id == period_id,
            LecturerAllocation.lecturer_id == lecturer_id,
            LecturerAllocation.assigned_count < LecturerAllocation.max_students,
        )
        .values(
            assigned_count=LecturerAllocation.assigned_count + 1,
            updated_at=datetime.utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    claimed = result.rowcount == 1
    if not claimed:
        logger.warning(f"Slot claim refused: lecturer {lecturer_id} period {period_id}")
    return claimed


async def release_slot(db: AsyncSession, period_id: int, lecturer_id: int) -> bool:
    """Give one slot back. Never drives the counter below zero."""
    result = await db.execute(
        update(LecturerAllocation)
        .where(
            LecturerAllocation.period_id == period_id,
            LecturerAllocation.lecturer_id == lecturer_id,
            LecturerAllocation.assigned_count > 0,
        )
        .values(
            assigned_count=LecturerAllocation.assigned_count - 1,
            updated_at=datetime.utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    released = result.rowcount == 1
    if not released:
        logger.warning(f"Slot release found nothing to release: lecturer {lecturer_id} period {period_id}")
    return released


async def get_allocation(
    db: AsyncSession,
    period_id: int,
    lecturer_id: int,
    lock: bool = False
):
    query = select(LecturerAllocation).where(
        LecturerAllocation.period_id == period_id,
        LecturerAllocation.lecturer_id == lecturer_id,
    ).execution_options(populate_existing=True)
    if lock:
        query = query.with_for_update()
    result = await db.execute(query)
    return result.scalar_one_or_none()


async def count_holding_registrations(db: AsyncSession, period_id: int) -> Dict[int, int]:
    """Recompute per-lecturer load from the registrations themselves."""
    holding = [s.value for s in RegistrationStatus if s not in NON_HOLDING_STATUSES]
    result = await db.execute(
        select(Registration.assigned_lecturer_id, func.count(Registration.id))
        .where(
            Registration.period_id == period_id,
            Registration.assigned_lecturer_id.is_not(None),
            Registration.status.in_(holding),
        )
        .group_by(Registration.assigned_lecturer_id)
    )
    return {lecturer_id: count for lecturer_id, count in result.all()}


async def recount_allocation(db: AsyncSession, period_id: int, fix: bool = False) -> List[Dict[str, Any]]:
    """
    Compare stored counters with the registrations they summarize.

    Returns one entry per drifting allocation. With fix=True the stored
    counter is overwritten (clamped to max_students so the check
    constraint holds).
    """
    actual = await count_holding_registrations(db, period_id)
    result = await db.execute(
        select(LecturerAllocation)
        .where(LecturerAllocation.period_id == period_id)
        .order_by(LecturerAllocation.lecturer_id)
        .execution_options(populate_existing=True)
    )
    drift = []
    for allocation in result.scalars().all():
        expected = actual.get(allocation.lecturer_id, 0)
        if expected == allocation.assigned_count:
            continue
        drift.append({
            "lecturer_id": allocation.lecturer_id,
            "stored": allocation.assigned_count,
            "actual": expected,
        })
        if fix:
            allocation.assigned_count = min(expected, allocation.max_students)
    if fix and drift:
        await db.flush()
        logger.info(f"Recounted {len(drift)} allocation(s) in period {period_id}")
    return drift
