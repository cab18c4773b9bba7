"""
Weekly Report State Machine

    not_submitted -> submitted | late_submitted
    submitted | late_submitted | resubmitted | late_resubmitted
        -> approved | rejected | needs_revision           (lecturer review)
    needs_revision -> resubmitted | late_resubmitted      (revision may loop)

Replacing the document before the lecturer has reviewed it keeps the
submission family (first submission or resubmission) and re-evaluates
lateness. approved and rejected are final.
"""
from datetime import date
from typing import Dict, FrozenSet

from internhub.errors import TransitionNotAllowed, ValidationError
from internhub.orm.weekly_report import ReportStatus

FIRST_SUBMISSION_FROM: FrozenSet[ReportStatus] = frozenset({
    ReportStatus.not_submitted,
    ReportStatus.submitted,
    ReportStatus.late_submitted,
})

RESUBMISSION_FROM: FrozenSet[ReportStatus] = frozenset({
    ReportStatus.needs_revision,
    ReportStatus.resubmitted,
    ReportStatus.late_resubmitted,
})

SUBMITTABLE: FrozenSet[ReportStatus] = FIRST_SUBMISSION_FROM | RESUBMISSION_FROM

REVIEWABLE: FrozenSet[ReportStatus] = frozenset({
    ReportStatus.submitted,
    ReportStatus.late_submitted,
    ReportStatus.resubmitted,
    ReportStatus.late_resubmitted,
})

REVIEW_DECISIONS: FrozenSet[ReportStatus] = frozenset({
    ReportStatus.approved,
    ReportStatus.rejected,
    ReportStatus.needs_revision,
})

LATE_STATUSES: FrozenSet[ReportStatus] = frozenset({
    ReportStatus.late_submitted,
    ReportStatus.late_resubmitted,
})

# Everything a student has handed in at least once
SUBMITTED_OR_BEYOND: FrozenSet[ReportStatus] = REVIEWABLE | REVIEW_DECISIONS

_ON_TIME: Dict[bool, ReportStatus] = {
    False: ReportStatus.submitted,
    True: ReportStatus.resubmitted,
}
_LATE: Dict[bool, ReportStatus] = {
    False: ReportStatus.late_submitted,
    True: ReportStatus.late_resubmitted,
}


def _sorted_values(statuses) -> list:
    return sorted(s.value for s in statuses)


def submission_status(current: str, submitted_on: date, end_date: date) -> ReportStatus:
    """
    Status a report enters when the student submits on submitted_on.

    Late means strictly after the last day of the week window.
    """
    current = ReportStatus(current)
    if current not in SUBMITTABLE:
        raise TransitionNotAllowed(
            f"Cannot submit a report in status {current.value}",
            current_status=current.value,
            action="submit",
            allowed_statuses=_sorted_values(SUBMITTABLE),
        )
    is_resubmission = current in RESUBMISSION_FROM
    late = submitted_on > end_date
    return (_LATE if late else _ON_TIME)[is_resubmission]


def review_status(current: str, decision: str) -> ReportStatus:
    """Status a report enters after a lecturer decision."""
    try:
        outcome = ReportStatus(decision)
    except ValueError:
        outcome = None
    if outcome not in REVIEW_DECISIONS:
        raise ValidationError(
            f"Review decision must be one of: {', '.join(_sorted_values(REVIEW_DECISIONS))}",
            field="decision"
        )
    current = ReportStatus(current)
    if current not in REVIEWABLE:
        raise TransitionNotAllowed(
            f"Cannot review a report in status {current.value}",
            current_status=current.value,
            action="review",
            allowed_statuses=_sorted_values(REVIEWABLE),
        )
    return outcome
