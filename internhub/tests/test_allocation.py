"""
Capacity ledger, manual assignment and the auto-assignment batch.
"""
from datetime import datetime, timedelta

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from internhub.config.feature_flags import FeatureFlags
from internhub.database import transaction
from internhub.errors import (
    CapacityExceeded, FeatureDisabled, NotEligible, TransitionNotAllowed, ValidationError
)
from internhub.orm.base import Base
from internhub.orm.registration import RegistrationStatus
from internhub.services import allocation_service
from internhub.services.allocation_service import (
    FAILURE_NO_CAPACITY, FAILURE_NO_LECTURER_IN_DEPARTMENT, auto_assign
)
from internhub.services.capacity_ledger import claim_slot, get_allocation, recount_allocation, release_slot
from internhub.services.registration_service import choose_lecturer, get_registration
from internhub.tests.factories import (
    SELECTION_DAY, make_admin, make_allocation, make_lecturer, make_period,
    make_registration, make_student
)


class TestLedgerPrimitives:

    async def test_claim_until_full(self, db):
        period = await make_period(db)
        lecturer = await make_lecturer(db)
        await make_allocation(db, period, lecturer, max_students=2)

        assert await claim_slot(db, period.id, lecturer.id)
        assert await claim_slot(db, period.id, lecturer.id)
        assert not await claim_slot(db, period.id, lecturer.id)

        allocation = await get_allocation(db, period.id, lecturer.id)
        assert allocation.assigned_count == 2
        assert allocation.slots_remaining == 0

    async def test_release_never_goes_negative(self, db):
        period = await make_period(db)
        lecturer = await make_lecturer(db)
        await make_allocation(db, period, lecturer)

        assert not await release_slot(db, period.id, lecturer.id)
        allocation = await get_allocation(db, period.id, lecturer.id)
        assert allocation.assigned_count == 0

    async def test_recount_detects_and_fixes_drift(self, db):
        period = await make_period(db)
        lecturer = await make_lecturer(db)
        await make_allocation(db, period, lecturer, assigned_count=3)
        student = await make_student(db)
        await make_registration(db, student, period, RegistrationStatus.searching, lecturer=lecturer)

        drift = await recount_allocation(db, period.id)
        assert drift == [{"lecturer_id": lecturer.id, "stored": 3, "actual": 1}]
        allocation = await get_allocation(db, period.id, lecturer.id)
        assert allocation.assigned_count == 3

        await recount_allocation(db, period.id, fix=True)
        allocation = await get_allocation(db, period.id, lecturer.id)
        assert allocation.assigned_count == 1
        assert await recount_allocation(db, period.id) == []

    async def test_completed_registration_does_not_hold_a_slot(self, db):
        period = await make_period(db)
        lecturer = await make_lecturer(db)
        await make_allocation(db, period, lecturer, assigned_count=1)
        student = await make_student(db)
        await make_registration(db, student, period, RegistrationStatus.completed, lecturer=lecturer)

        drift = await recount_allocation(db, period.id)
        assert drift == [{"lecturer_id": lecturer.id, "stored": 1, "actual": 0}]


class TestLedgerAdministration:

    async def test_add_lecturers_skips_existing(self, db):
        period = await make_period(db)
        first = await make_lecturer(db)
        second = await make_lecturer(db)

        created = await allocation_service.add_lecturers_to_period(db, period.id, [first.id], max_students=5)
        assert len(created) == 1
        created = await allocation_service.add_lecturers_to_period(db, period.id, [first.id, second.id])
        assert [a.lecturer_id for a in created] == [second.id]

    async def test_add_non_lecturer_refused(self, db):
        period = await make_period(db)
        student = await make_student(db)
        with pytest.raises(ValidationError):
            await allocation_service.add_lecturers_to_period(db, period.id, [student.id])

    async def test_capacity_cannot_drop_below_assigned(self, db):
        period = await make_period(db)
        lecturer = await make_lecturer(db)
        await make_allocation(db, period, lecturer, max_students=5, assigned_count=3)

        with pytest.raises(ValidationError):
            await allocation_service.update_capacity(db, period.id, lecturer.id, 2)

        allocation = await allocation_service.update_capacity(db, period.id, lecturer.id, 3)
        assert allocation.max_students == 3

    async def test_remove_refused_while_supervising(self, db):
        period = await make_period(db)
        lecturer = await make_lecturer(db)
        await make_allocation(db, period, lecturer, assigned_count=1)

        with pytest.raises(TransitionNotAllowed):
            await allocation_service.remove_allocation(db, period.id, lecturer.id)

    async def test_remove_empty_allocation(self, db):
        period = await make_period(db)
        lecturer = await make_lecturer(db)
        await make_allocation(db, period, lecturer)

        await allocation_service.remove_allocation(db, period.id, lecturer.id)
        assert await get_allocation(db, period.id, lecturer.id) is None

    async def test_available_lecturers_ordering(self, db):
        period = await make_period(db)
        busy = await make_lecturer(db)
        free = await make_lecturer(db)
        full = await make_lecturer(db)
        other = await make_lecturer(db, department="EE")
        await make_allocation(db, period, busy, max_students=5, assigned_count=4)
        await make_allocation(db, period, free, max_students=5)
        await make_allocation(db, period, full, max_students=2, assigned_count=2)
        await make_allocation(db, period, other, max_students=9)

        everyone = await allocation_service.list_available_lecturers(db, period.id)
        assert [l["lecturer_id"] for l in everyone] == [other.id, free.id, busy.id]

        cs_only = await allocation_service.list_available_lecturers(db, period.id, department="CS")
        assert [l["lecturer_id"] for l in cs_only] == [free.id, busy.id]


class TestManualAssignment:

    async def test_assign_and_reassign_move_the_slot(self, db):
        period = await make_period(db)
        admin = await make_admin(db)
        first = await make_lecturer(db)
        second = await make_lecturer(db)
        await make_allocation(db, period, first)
        await make_allocation(db, period, second)
        student = await make_student(db)
        registration = await make_registration(db, student, period)

        registration = await allocation_service.admin_assign_lecturer(db, registration.id, first.id, admin.id)
        assert registration.status == "searching"
        assert (await get_allocation(db, period.id, first.id)).assigned_count == 1

        registration = await allocation_service.admin_assign_lecturer(db, registration.id, second.id, admin.id)
        assert registration.assigned_lecturer_id == second.id
        assert (await get_allocation(db, period.id, first.id)).assigned_count == 0
        assert (await get_allocation(db, period.id, second.id)).assigned_count == 1

    async def test_reassign_keeps_submitted_company(self, db):
        period = await make_period(db)
        admin = await make_admin(db)
        first = await make_lecturer(db)
        second = await make_lecturer(db)
        await make_allocation(db, period, first, assigned_count=1)
        await make_allocation(db, period, second)
        student = await make_student(db)
        registration = await make_registration(
            db, student, period, RegistrationStatus.company_submitted, lecturer=first
        )

        registration = await allocation_service.admin_assign_lecturer(db, registration.id, second.id, admin.id)

        assert registration.status == "company_submitted"
        assert registration.assigned_lecturer_id == second.id
        assert (await get_allocation(db, period.id, first.id)).assigned_count == 0
        assert (await get_allocation(db, period.id, second.id)).assigned_count == 1

    async def test_reassign_to_full_lecturer_keeps_old_slot(self, db):
        period = await make_period(db)
        admin = await make_admin(db)
        first = await make_lecturer(db)
        second = await make_lecturer(db)
        await make_allocation(db, period, first, assigned_count=1)
        await make_allocation(db, period, second, max_students=1, assigned_count=1)
        student = await make_student(db)
        registration = await make_registration(
            db, student, period, RegistrationStatus.pending_approval, lecturer=first
        )

        with pytest.raises(CapacityExceeded):
            await allocation_service.admin_assign_lecturer(db, registration.id, second.id, admin.id)

        registration = await get_registration(db, registration.id)
        assert registration.status == "pending_approval"
        assert registration.assigned_lecturer_id == first.id
        assert (await get_allocation(db, period.id, first.id)).assigned_count == 1

    async def test_assign_same_lecturer_is_noop(self, db):
        period = await make_period(db)
        admin = await make_admin(db)
        lecturer = await make_lecturer(db)
        await make_allocation(db, period, lecturer)
        student = await make_student(db)
        registration = await make_registration(db, student, period)

        await allocation_service.admin_assign_lecturer(db, registration.id, lecturer.id, admin.id)
        await allocation_service.admin_assign_lecturer(db, registration.id, lecturer.id, admin.id)

        assert (await get_allocation(db, period.id, lecturer.id)).assigned_count == 1

    async def test_department_mismatch_refused(self, db):
        period = await make_period(db)
        admin = await make_admin(db)
        lecturer = await make_lecturer(db, department="EE")
        await make_allocation(db, period, lecturer)
        student = await make_student(db)
        registration = await make_registration(db, student, period)

        with pytest.raises(NotEligible):
            await allocation_service.admin_assign_lecturer(db, registration.id, lecturer.id, admin.id)


class TestAutoAssign:

    async def test_capacity_limits_assignments(self, db):
        """Three candidates, two lecturers with one slot each."""
        period = await make_period(db)
        first = await make_lecturer(db)
        second = await make_lecturer(db)
        await make_allocation(db, period, first, max_students=1)
        await make_allocation(db, period, second, max_students=1)

        base = datetime(2025, 9, 2, 9, 0)
        registrations = []
        for offset in range(3):
            student = await make_student(db)
            registrations.append(await make_registration(
                db, student, period, created_at=base + timedelta(minutes=offset)
            ))

        result = await auto_assign(db, period.id)

        assert result.assigned_count == 2
        assert [f.reason for f in result.failures] == [FAILURE_NO_CAPACITY]
        assert result.failures[0].registration_id == registrations[2].id
        assert result.assignments == [
            {"registration_id": registrations[0].id, "lecturer_id": first.id},
            {"registration_id": registrations[1].id, "lecturer_id": second.id},
        ]
        for lecturer in (first, second):
            allocation = await get_allocation(db, period.id, lecturer.id)
            assert allocation.assigned_count == allocation.max_students

    async def test_rerun_assigns_nobody_new(self, db):
        period = await make_period(db)
        lecturer = await make_lecturer(db)
        await make_allocation(db, period, lecturer, max_students=5)
        for _ in range(2):
            await make_registration(db, await make_student(db), period)

        first_run = await auto_assign(db, period.id)
        second_run = await auto_assign(db, period.id)

        assert first_run.assigned_count == 2
        assert second_run.assigned_count == 0
        assert second_run.failures == []
        assert (await get_allocation(db, period.id, lecturer.id)).assigned_count == 2

    async def test_prefers_most_free_slots_then_lowest_id(self, db):
        period = await make_period(db)
        low = await make_lecturer(db)
        high = await make_lecturer(db)
        await make_allocation(db, period, low, max_students=2)
        await make_allocation(db, period, high, max_students=3)
        students = [await make_student(db) for _ in range(3)]
        base = datetime(2025, 9, 2, 9, 0)
        for offset, student in enumerate(students):
            await make_registration(db, student, period, created_at=base + timedelta(minutes=offset))

        result = await auto_assign(db, period.id)

        assert [a["lecturer_id"] for a in result.assignments] == [high.id, low.id, high.id]

    async def test_department_affinity(self, db):
        period = await make_period(db)
        lecturer = await make_lecturer(db, department="EE")
        await make_allocation(db, period, lecturer)
        registration = await make_registration(db, await make_student(db, department="CS"), period)

        result = await auto_assign(db, period.id)

        assert result.assigned_count == 0
        assert result.failures[0].registration_id == registration.id
        assert result.failures[0].reason == FAILURE_NO_LECTURER_IN_DEPARTMENT

    async def test_skips_students_with_a_lecturer(self, db):
        period = await make_period(db)
        lecturer = await make_lecturer(db)
        await make_allocation(db, period, lecturer, assigned_count=1)
        await make_registration(db, await make_student(db), period, RegistrationStatus.searching, lecturer=lecturer)

        result = await auto_assign(db, period.id)

        assert result.to_dict() == {"assigned_count": 0, "failures": [], "assignments": []}

    async def test_disabled_flag(self, db, monkeypatch):
        monkeypatch.setattr(FeatureFlags, "FEATURE_AUTO_ASSIGN", False)
        period = await make_period(db)
        with pytest.raises(FeatureDisabled):
            await auto_assign(db, period.id)


class TestLastSlotRace:
    """Two sessions race for one slot against a shared database file."""

    async def test_only_one_claim_wins(self, tmp_path):
        engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'race.db'}", connect_args={"timeout": 5})
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)

        try:
            async with session_maker() as setup:
                period = await make_period(setup)
                lecturer = await make_lecturer(setup)
                await make_allocation(setup, period, lecturer, max_students=1)
                first = await make_registration(setup, await make_student(setup), period)
                second = await make_registration(setup, await make_student(setup), period)
                await setup.commit()

            async with session_maker() as session_a, session_maker() as session_b:
                # both sides see the free slot before either writes
                assert (await get_allocation(session_a, period.id, lecturer.id)).slots_remaining == 1
                assert (await get_allocation(session_b, period.id, lecturer.id)).slots_remaining == 1

                async with transaction(session_a):
                    await choose_lecturer(session_a, first.id, lecturer.id, SELECTION_DAY)

                with pytest.raises(CapacityExceeded):
                    async with transaction(session_b):
                        await choose_lecturer(session_b, second.id, lecturer.id, SELECTION_DAY)

            async with session_maker() as check:
                allocation = await get_allocation(check, period.id, lecturer.id)
                assert allocation.assigned_count == 1
                assert (await get_registration(check, first.id)).status == "searching"
                loser = await get_registration(check, second.id)
                assert loser.status == "registered"
                assert loser.assigned_lecturer_id is None
        finally:
            await engine.dispose()
