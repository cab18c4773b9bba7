"""
Registration lifecycle: transition table, date windows, capacity
bookkeeping, audit log and internship side effects.
"""
from datetime import date
from types import SimpleNamespace

import pytest
from sqlalchemy import select, func

from internhub.config.feature_flags import FeatureFlags
from internhub.errors import (
    CapacityExceeded, DuplicateEntity, Forbidden, NotEligible, NotFound,
    TransitionNotAllowed, ValidationError
)
from internhub.orm.registration import RegistrationStatus
from internhub.orm.weekly_report import WeeklyReport
from internhub.services import registration_service as svc
from internhub.services.allocation_service import admin_unassign_lecturer
from internhub.services.capacity_ledger import get_allocation
from internhub.state_machines.registration_state import (
    PRE_COMPLETION, RegistrationAction, allowed_actions, next_status
)
from internhub.tests.factories import (
    COMPANY, COMPANY_DAY, LECTURER_SELECTION_END, REGISTRATION_END, SELECTION_DAY,
    make_admin, make_allocation, make_lecturer, make_period, make_student
)

S = RegistrationStatus
A = RegistrationAction

REGISTRATION_DAY = date(2025, 9, 3)


async def build_world(db, max_students=20, **period_overrides):
    period = await make_period(db, **period_overrides)
    student = await make_student(db)
    lecturer = await make_lecturer(db)
    admin = await make_admin(db)
    await make_allocation(db, period, lecturer, max_students=max_students)
    return SimpleNamespace(period=period, student=student, lecturer=lecturer, admin=admin)


async def assigned_count(db, world):
    allocation = await get_allocation(db, world.period.id, world.lecturer.id)
    return allocation.assigned_count


async def registered(db, world):
    return await svc.create_registration(db, world.student, world.period, REGISTRATION_DAY)


async def with_company(db, world):
    registration = await registered(db, world)
    await svc.choose_lecturer(db, registration.id, world.lecturer.id, SELECTION_DAY)
    return await svc.submit_company(db, registration.id, COMPANY, COMPANY_DAY)


class TestTransitionTable:

    def test_happy_path_sequence(self):
        assert next_status("registered", A.choose_lecturer) == S.searching
        assert next_status("searching", A.submit_company) == S.company_submitted
        assert next_status("company_submitted", A.approve) == S.approved
        assert next_status("approved", A.start_internship) == S.in_progress
        assert next_status("in_progress", A.complete) == S.completed

    def test_reject_from_every_pre_completion_status(self):
        for status in PRE_COMPLETION:
            assert next_status(status.value, A.reject) == S.rejected

    def test_terminal_statuses_have_no_actions(self):
        assert allowed_actions("completed") == []
        assert allowed_actions("rejected") == []

    def test_illegal_transition_lists_allowed_statuses(self):
        with pytest.raises(TransitionNotAllowed) as exc_info:
            next_status("registered", A.submit_company)
        assert exc_info.value.current_status == "registered"
        assert "searching" in exc_info.value.allowed_statuses

    def test_cannot_approve_without_company(self):
        with pytest.raises(TransitionNotAllowed):
            next_status("searching", A.approve)


class TestCreateRegistration:

    async def test_register_inside_window(self, db):
        world = await build_world(db)
        registration = await registered(db, world)

        assert registration.status == "registered"
        assert registration.assigned_lecturer_id is None
        history = await svc.get_status_log(db, registration.id)
        assert [(h.from_status, h.to_status, h.action) for h in history] == [
            (None, "registered", "register")
        ]

    async def test_window_is_inclusive(self, db):
        world = await build_world(db)
        registration = await svc.create_registration(db, world.student, world.period, REGISTRATION_END)
        assert registration.status == "registered"

    async def test_outside_window_refused(self, db):
        world = await build_world(db)
        with pytest.raises(TransitionNotAllowed) as exc_info:
            await svc.create_registration(db, world.student, world.period, date(2025, 9, 8))
        assert exc_info.value.window["name"] == "registration"

    async def test_inactive_period_refused(self, db):
        world = await build_world(db, is_active=False)
        with pytest.raises(TransitionNotAllowed):
            await registered(db, world)

    async def test_duplicate_refused(self, db):
        world = await build_world(db)
        await registered(db, world)
        with pytest.raises(DuplicateEntity):
            await registered(db, world)

    async def test_ineligible_student_refused(self, db):
        world = await build_world(db, target_departments=["EE"], target_academic_years=["2022"])
        with pytest.raises(NotEligible) as exc_info:
            await registered(db, world)
        assert exc_info.value.unmet == ["department"]


class TestChooseLecturer:

    async def test_choose_claims_slot(self, db):
        world = await build_world(db)
        registration = await registered(db, world)

        registration = await svc.choose_lecturer(db, registration.id, world.lecturer.id, SELECTION_DAY)

        assert registration.status == "searching"
        assert registration.assigned_lecturer_id == world.lecturer.id
        assert registration.prefer_own_lecturer is True
        assert await assigned_count(db, world) == 1

    @pytest.mark.parametrize("day", [REGISTRATION_END, LECTURER_SELECTION_END])
    async def test_selection_window_edges_accepted(self, db, day):
        world = await build_world(db)
        registration = await registered(db, world)
        registration = await svc.choose_lecturer(db, registration.id, world.lecturer.id, day)
        assert registration.status == "searching"

    @pytest.mark.parametrize("day", [date(2025, 9, 6), date(2025, 9, 15)])
    async def test_outside_selection_window_refused(self, db, day):
        world = await build_world(db)
        registration = await registered(db, world)
        with pytest.raises(TransitionNotAllowed) as exc_info:
            await svc.choose_lecturer(db, registration.id, world.lecturer.id, day)
        assert exc_info.value.window["name"] == "lecturer_selection"
        assert await assigned_count(db, world) == 0

    async def test_full_lecturer_refused_without_side_effects(self, db):
        world = await build_world(db, max_students=1)
        allocation = await get_allocation(db, world.period.id, world.lecturer.id)
        allocation.assigned_count = 1
        await db.flush()
        registration = await registered(db, world)

        with pytest.raises(CapacityExceeded):
            await svc.choose_lecturer(db, registration.id, world.lecturer.id, SELECTION_DAY)

        registration = await svc.get_registration(db, registration.id)
        await db.refresh(registration)
        assert registration.status == "registered"
        assert registration.assigned_lecturer_id is None
        assert await assigned_count(db, world) == 1

    async def test_other_department_lecturer_refused(self, db):
        world = await build_world(db)
        outsider = await make_lecturer(db, department="EE")
        await make_allocation(db, world.period, outsider)
        registration = await registered(db, world)

        with pytest.raises(NotEligible):
            await svc.choose_lecturer(db, registration.id, outsider.id, SELECTION_DAY)

    async def test_lecturer_without_allocation_refused(self, db):
        world = await build_world(db)
        stranger = await make_lecturer(db)
        registration = await registered(db, world)

        with pytest.raises(NotFound):
            await svc.choose_lecturer(db, registration.id, stranger.id, SELECTION_DAY)

    async def test_other_student_cannot_choose(self, db):
        world = await build_world(db)
        registration = await registered(db, world)
        with pytest.raises(Forbidden):
            await svc.choose_lecturer(
                db, registration.id, world.lecturer.id, SELECTION_DAY, student_id=world.student.id + 999
            )

    async def test_defer_keeps_registered(self, db):
        world = await build_world(db)
        registration = await registered(db, world)

        registration = await svc.defer_to_auto_assign(db, registration.id, SELECTION_DAY)

        assert registration.status == "registered"
        assert registration.prefer_own_lecturer is False
        assert await assigned_count(db, world) == 0


class TestLecturerConfirmation:

    async def test_request_then_confirm_claims_slot(self, db):
        world = await build_world(db, lecturer_confirmation_required=True)
        registration = await registered(db, world)

        registration = await svc.request_lecturer(db, registration.id, world.lecturer.id, SELECTION_DAY)
        assert registration.status == "waiting_lecturer"
        assert registration.requested_lecturer_id == world.lecturer.id
        assert await assigned_count(db, world) == 0

        registration = await svc.confirm_lecturer_request(db, registration.id, world.lecturer)
        assert registration.status == "lecturer_confirmed"
        assert registration.assigned_lecturer_id == world.lecturer.id
        assert await assigned_count(db, world) == 1

        registration = await svc.start_search(db, registration.id)
        assert registration.status == "searching"

    async def test_decline_returns_to_registered(self, db):
        world = await build_world(db, lecturer_confirmation_required=True)
        registration = await registered(db, world)
        await svc.request_lecturer(db, registration.id, world.lecturer.id, SELECTION_DAY)

        registration = await svc.decline_lecturer_request(db, registration.id, world.lecturer, note="full")

        assert registration.status == "registered"
        assert registration.requested_lecturer_id is None

    async def test_only_requested_lecturer_may_confirm(self, db):
        world = await build_world(db, lecturer_confirmation_required=True)
        other = await make_lecturer(db)
        registration = await registered(db, world)
        await svc.request_lecturer(db, registration.id, world.lecturer.id, SELECTION_DAY)

        with pytest.raises(Forbidden):
            await svc.confirm_lecturer_request(db, registration.id, other)

    async def test_direct_choice_refused_when_confirmation_required(self, db):
        world = await build_world(db, lecturer_confirmation_required=True)
        registration = await registered(db, world)
        with pytest.raises(TransitionNotAllowed):
            await svc.choose_lecturer(db, registration.id, world.lecturer.id, SELECTION_DAY)

    async def test_request_refused_when_confirmation_not_required(self, db):
        world = await build_world(db)
        registration = await registered(db, world)
        with pytest.raises(TransitionNotAllowed):
            await svc.request_lecturer(db, registration.id, world.lecturer.id, SELECTION_DAY)


class TestCompanySubmission:

    async def test_submit_company(self, db):
        world = await build_world(db)
        registration = await with_company(db, world)

        assert registration.status == "company_submitted"
        assert registration.company_name == "Acme Software"
        assert await assigned_count(db, world) == 1

    async def test_requires_lecturer(self, db):
        world = await build_world(db)
        registration = await registered(db, world)
        with pytest.raises(TransitionNotAllowed):
            await svc.submit_company(db, registration.id, COMPANY, COMPANY_DAY)

    async def test_missing_fields_listed(self, db):
        world = await build_world(db)
        registration = await registered(db, world)
        await svc.choose_lecturer(db, registration.id, world.lecturer.id, SELECTION_DAY)

        partial = dict(COMPANY, company_supervisor="  ", internship_position=None)
        with pytest.raises(ValidationError) as exc_info:
            await svc.submit_company(db, registration.id, partial, COMPANY_DAY)
        assert exc_info.value.details["missing_fields"] == ["company_supervisor", "internship_position"]

    async def test_after_search_deadline_refused(self, db):
        world = await build_world(db)
        registration = await registered(db, world)
        await svc.choose_lecturer(db, registration.id, world.lecturer.id, SELECTION_DAY)
        with pytest.raises(TransitionNotAllowed):
            await svc.submit_company(db, registration.id, COMPANY, date(2025, 10, 26))

    async def test_resubmission_edits_company(self, db):
        world = await build_world(db)
        registration = await with_company(db, world)

        registration = await svc.submit_company(
            db, registration.id, dict(COMPANY, company_name="Beta Labs"), COMPANY_DAY
        )
        assert registration.status == "company_submitted"
        assert registration.company_name == "Beta Labs"

    async def test_admin_update_moves_searching_forward(self, db):
        world = await build_world(db)
        registration = await registered(db, world)
        await svc.choose_lecturer(db, registration.id, world.lecturer.id, SELECTION_DAY)

        registration = await svc.admin_update_company(db, registration.id, COMPANY, world.admin.id)

        assert registration.status == "company_submitted"


class TestApproval:

    async def test_approve_materializes_reports_once(self, db):
        world = await build_world(db)
        registration = await with_company(db, world)

        registration = await svc.admin_approve(db, registration.id, world.admin.id)

        assert registration.status == "approved"
        assert registration.reports_materialized_at is not None
        count = await db.execute(
            select(func.count(WeeklyReport.id)).where(WeeklyReport.registration_id == registration.id)
        )
        assert count.scalar_one() == 13

        registration = await svc.advance_by_calendar(db, registration.id, date(2025, 10, 10))
        assert registration.status == "in_progress"
        count = await db.execute(
            select(func.count(WeeklyReport.id)).where(WeeklyReport.registration_id == registration.id)
        )
        assert count.scalar_one() == 13

    async def test_pending_gate(self, db, monkeypatch):
        monkeypatch.setattr(FeatureFlags, "FEATURE_PENDING_APPROVAL_GATE", True)
        world = await build_world(db)
        registration = await with_company(db, world)

        with pytest.raises(TransitionNotAllowed):
            await svc.admin_approve(db, registration.id, world.admin.id)

        await svc.mark_pending_approval(db, registration.id, world.admin.id)
        registration = await svc.admin_approve(db, registration.id, world.admin.id, note="ok")
        assert registration.status == "approved"
        assert registration.admin_note == "ok"

    async def test_reject_releases_slot(self, db):
        world = await build_world(db)
        registration = await with_company(db, world)

        registration = await svc.admin_reject(db, registration.id, world.admin.id, note="no contract")

        assert registration.status == "rejected"
        assert await assigned_count(db, world) == 0
        history = await svc.get_status_log(db, registration.id)
        assert [h.action for h in history] == ["register", "choose_lecturer", "submit_company", "reject"]
        assert history[-1].note == "no contract"

    async def test_rejected_is_terminal(self, db):
        world = await build_world(db)
        registration = await with_company(db, world)
        await svc.admin_reject(db, registration.id, world.admin.id)

        with pytest.raises(TransitionNotAllowed):
            await svc.admin_approve(db, registration.id, world.admin.id)

    async def test_unassign_before_approval(self, db):
        world = await build_world(db)
        registration = await with_company(db, world)

        registration = await admin_unassign_lecturer(db, registration.id, world.admin.id)

        assert registration.status == "registered"
        assert registration.assigned_lecturer_id is None
        assert await assigned_count(db, world) == 0


class TestCalendarProgress:

    async def test_start_and_complete(self, db):
        world = await build_world(db)
        registration = await with_company(db, world)
        await svc.admin_approve(db, registration.id, world.admin.id)

        registration = await svc.advance_by_calendar(db, registration.id, date(2025, 10, 10))
        assert registration.status == "in_progress"
        await db.refresh(world.student)
        assert world.student.internship_status == "in_progress"

        registration = await svc.advance_by_calendar(db, registration.id, date(2026, 1, 3))
        assert registration.status == "completed"
        assert registration.completed_at is not None
        await db.refresh(world.student)
        assert world.student.internship_status == "completed"
        assert await assigned_count(db, world) == 0

    async def test_nothing_happens_before_end(self, db):
        world = await build_world(db)
        registration = await with_company(db, world)
        await svc.admin_approve(db, registration.id, world.admin.id)
        await svc.advance_by_calendar(db, registration.id, date(2025, 10, 10))

        registration = await svc.advance_by_calendar(db, registration.id, date(2026, 1, 2))
        assert registration.status == "in_progress"

    async def test_sync_period_progress_counts(self, db):
        world = await build_world(db)
        registration = await with_company(db, world)
        await svc.admin_approve(db, registration.id, world.admin.id)

        counts = await svc.sync_period_progress(db, world.period.id, date(2026, 1, 3))

        assert counts == {"checked": 1, "started": 1, "completed": 1}

    async def test_lecturer_confirms_completion(self, db):
        world = await build_world(db)
        registration = await with_company(db, world)
        await svc.admin_approve(db, registration.id, world.admin.id)
        await svc.advance_by_calendar(db, registration.id, date(2025, 10, 10))

        other = await make_lecturer(db)
        with pytest.raises(Forbidden):
            await svc.confirm_completion(db, registration.id, other)

        registration = await svc.confirm_completion(db, registration.id, world.lecturer)
        assert registration.status == "completed"


class TestOverride:

    async def test_override_to_registered_clears_lecturer(self, db):
        world = await build_world(db)
        registration = await with_company(db, world)

        registration = await svc.override_status(db, registration.id, "registered", world.admin.id, note="restart")

        assert registration.status == "registered"
        assert registration.assigned_lecturer_id is None
        assert await assigned_count(db, world) == 0
        history = await svc.get_status_log(db, registration.id)
        assert history[-1].forced is True
        assert history[-1].action == "override"

    async def test_override_to_rejected_releases_slot(self, db):
        world = await build_world(db)
        registration = await with_company(db, world)

        await svc.override_status(db, registration.id, "rejected", world.admin.id)

        assert await assigned_count(db, world) == 0

    async def test_unknown_status(self, db):
        world = await build_world(db)
        registration = await registered(db, world)
        with pytest.raises(ValidationError):
            await svc.override_status(db, registration.id, "graduated", world.admin.id)
