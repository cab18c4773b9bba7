"""
Registration State Machine

Server-side enforcement of the registration lifecycle:

    registered -> searching -> company_submitted -> [pending_approval]
               -> approved -> in_progress -> completed

with rejected reachable from every pre-completion state, and the
confirmation side branch

    registered -> waiting_lecturer -> lecturer_confirmed -> searching

The transition table is the single source of truth. Every write goes
through RegistrationStateMachine, which keeps the capacity ledger in step
with the lecturer assignment, writes the audit log and fires the
internship side effects in the same unit of work.
"""
import logging
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from internhub.errors import CapacityExceeded, NotFound, TransitionNotAllowed
from internhub.orm.period import Period
from internhub.orm.registration import Registration, RegistrationStatus, RegistrationStatusLog
from internhub.orm.user import User, InternshipStatus
from internhub.services.capacity_ledger import claim_slot, release_slot, holds_slot
from internhub.services.weekly_report_service import materialize_reports

logger = logging.getLogger(__name__)

S = RegistrationStatus


class RegistrationAction(str, Enum):
    choose_lecturer = "choose_lecturer"
    defer_to_auto_assign = "defer_to_auto_assign"
    request_lecturer = "request_lecturer"
    confirm_lecturer = "confirm_lecturer"
    decline_lecturer = "decline_lecturer"
    start_search = "start_search"
    assign_lecturer = "assign_lecturer"
    unassign_lecturer = "unassign_lecturer"
    reassign_lecturer = "reassign_lecturer"
    submit_company = "submit_company"
    mark_pending_approval = "mark_pending_approval"
    approve = "approve"
    reject = "reject"
    start_internship = "start_internship"
    complete = "complete"
    override = "override"


A = RegistrationAction

PRE_COMPLETION = frozenset({
    S.registered,
    S.searching,
    S.company_submitted,
    S.pending_approval,
    S.waiting_lecturer,
    S.lecturer_confirmed,
    S.approved,
    S.in_progress,
})

INTERNSHIP_ACTIVE = frozenset({S.approved, S.in_progress})

TERMINAL = frozenset({S.completed, S.rejected, S.assigned_to_project})

# (current status, action) -> next status
TRANSITIONS: Dict[Tuple[RegistrationStatus, RegistrationAction], RegistrationStatus] = {
    (S.registered, A.choose_lecturer): S.searching,
    (S.registered, A.defer_to_auto_assign): S.registered,
    (S.registered, A.assign_lecturer): S.searching,

    (S.registered, A.request_lecturer): S.waiting_lecturer,
    (S.waiting_lecturer, A.confirm_lecturer): S.lecturer_confirmed,
    (S.waiting_lecturer, A.decline_lecturer): S.registered,
    (S.lecturer_confirmed, A.start_search): S.searching,

    (S.searching, A.unassign_lecturer): S.registered,
    (S.lecturer_confirmed, A.unassign_lecturer): S.registered,
    (S.company_submitted, A.unassign_lecturer): S.registered,
    (S.pending_approval, A.unassign_lecturer): S.registered,

    (S.searching, A.reassign_lecturer): S.searching,
    (S.lecturer_confirmed, A.reassign_lecturer): S.lecturer_confirmed,
    (S.company_submitted, A.reassign_lecturer): S.company_submitted,
    (S.pending_approval, A.reassign_lecturer): S.pending_approval,

    (S.searching, A.submit_company): S.company_submitted,
    (S.lecturer_confirmed, A.submit_company): S.company_submitted,
    (S.company_submitted, A.submit_company): S.company_submitted,

    (S.company_submitted, A.mark_pending_approval): S.pending_approval,
    (S.company_submitted, A.approve): S.approved,
    (S.pending_approval, A.approve): S.approved,

    (S.approved, A.start_internship): S.in_progress,
    (S.in_progress, A.complete): S.completed,
}
TRANSITIONS.update({(status, A.reject): S.rejected for status in PRE_COMPLETION})


def statuses_allowing(action: RegistrationAction) -> List[str]:
    return sorted(src.value for (src, act) in TRANSITIONS if act == action)


def allowed_actions(current: str) -> List[str]:
    current = RegistrationStatus(current)
    return sorted(act.value for (src, act) in TRANSITIONS if src == current)


def next_status(current: str, action: RegistrationAction) -> RegistrationStatus:
    """Look up the table; raise TransitionNotAllowed for anything else."""
    current = RegistrationStatus(current)
    target = TRANSITIONS.get((current, action))
    if target is None:
        raise TransitionNotAllowed(
            f"Cannot {action.value} a registration in status {current.value}",
            current_status=current.value,
            action=action.value,
            allowed_statuses=statuses_allowing(action),
        )
    return target


class RegistrationStateMachine:
    """
    Applies transitions to one registration.

    The registration row is updated with a conditional UPDATE on the
    status read at load time, so two requests racing on the same
    registration cannot both succeed.
    """

    def __init__(self, db: AsyncSession, registration: Registration):
        self.db = db
        self.registration = registration

    @classmethod
    async def load(cls, db: AsyncSession, registration_id: int) -> "RegistrationStateMachine":
        result = await db.execute(
            select(Registration)
            .where(Registration.id == registration_id)
            .execution_options(populate_existing=True)
        )
        registration = result.scalar_one_or_none()
        if not registration:
            raise NotFound("Registration", registration_id)
        return cls(db, registration)

    @property
    def status(self) -> RegistrationStatus:
        return RegistrationStatus(self.registration.status)

    def can(self, action: RegistrationAction) -> bool:
        return (self.status, action) in TRANSITIONS

    async def apply(
        self,
        action: RegistrationAction,
        actor_id: Optional[int] = None,
        values: Optional[Dict[str, Any]] = None,
        note: Optional[str] = None
    ) -> Registration:
        """
        Transition by table lookup.

        Raises:
            TransitionNotAllowed: action not permitted from the current status
            CapacityExceeded: the transition needs a lecturer slot that is gone
        """
        target = next_status(self.status, action)
        return await self._write(target, action, actor_id, values, note, forced=False)

    async def force(
        self,
        target: RegistrationStatus,
        actor_id: int,
        values: Optional[Dict[str, Any]] = None,
        note: Optional[str] = None
    ) -> Registration:
        """
        Admin status override. Bypasses the table, not the invariants.
        """
        values = dict(values or {})
        if target == S.registered:
            values["assigned_lecturer_id"] = None
        return await self._write(target, A.override, actor_id, values, note, forced=True)

    async def _write(
        self,
        target: RegistrationStatus,
        action: RegistrationAction,
        actor_id: Optional[int],
        values: Optional[Dict[str, Any]],
        note: Optional[str],
        forced: bool
    ) -> Registration:
        registration = self.registration
        source = self.status
        values = dict(values or {})

        old_lecturer = registration.assigned_lecturer_id
        new_lecturer = values.get("assigned_lecturer_id", old_lecturer)
        old_holds = holds_slot(source.value, old_lecturer)
        new_holds = holds_slot(target.value, new_lecturer)
        keeps_slot = old_holds and new_holds and old_lecturer == new_lecturer

        claimed = False
        if new_holds and not keeps_slot:
            if not await claim_slot(self.db, registration.period_id, new_lecturer):
                raise CapacityExceeded(new_lecturer, registration.period_id)
            claimed = True

        now = datetime.utcnow()
        if target == S.completed:
            values.setdefault("completed_at", now)

        result = await self.db.execute(
            update(Registration)
            .where(
                Registration.id == registration.id,
                Registration.status == source.value,
            )
            .values(status=target.value, updated_at=now, **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            if claimed:
                await release_slot(self.db, registration.period_id, new_lecturer)
            raise TransitionNotAllowed(
                f"Registration {registration.id} was modified concurrently; reload and retry",
                current_status=source.value,
                action=action.value,
            )

        if old_holds and not keeps_slot:
            await release_slot(self.db, registration.period_id, old_lecturer)

        await self.db.refresh(registration)

        self.db.add(RegistrationStatusLog(
            registration_id=registration.id,
            from_status=source.value,
            to_status=target.value,
            action=action.value,
            actor_id=actor_id,
            forced=forced,
            note=note,
        ))

        await self._run_side_effects(source, target)
        await self.db.flush()

        logger.info(
            f"Registration {registration.id} transitioned: {source.value} -> {target.value} "
            f"via {action.value} by user {actor_id} (forced={forced})"
        )
        return registration

    async def _run_side_effects(self, source: RegistrationStatus, target: RegistrationStatus) -> None:
        registration = self.registration

        if target in INTERNSHIP_ACTIVE and registration.reports_materialized_at is None:
            period = await self.db.get(Period, registration.period_id)
            await materialize_reports(self.db, registration, period)
            registration.reports_materialized_at = datetime.utcnow()

        profile_status = {
            S.in_progress: InternshipStatus.in_progress,
            S.completed: InternshipStatus.completed,
        }.get(target)
        if profile_status and source != target:
            await self.db.execute(
                update(User)
                .where(User.id == registration.student_id)
                .values(internship_status=profile_status.value)
                .execution_options(synchronize_session=False)
            )
