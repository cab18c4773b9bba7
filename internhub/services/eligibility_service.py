"""
Eligibility Filter

Decides whether a student may see and register for a period, based on
the period's declared target sets. Pure: no I/O, no clock.

Rules:
- A NULL or empty target set imposes no constraint.
- For each non-empty target set the student's attribute must be present
  and a member of the set.
- In relaxed mode (approved retake on a period that allows retakes) only
  the department constraint is evaluated.
"""
from dataclasses import dataclass, field
from typing import Any, Iterable, List, Optional

CRITERION_DEPARTMENT = "department"
CRITERION_ACADEMIC_YEAR = "academic_year"
CRITERION_INTERNSHIP_STATUS = "internship_status"

# (criterion, student attribute, period target attribute)
_CRITERIA = (
    (CRITERION_DEPARTMENT, "department", "target_departments"),
    (CRITERION_ACADEMIC_YEAR, "academic_year", "target_academic_years"),
    (CRITERION_INTERNSHIP_STATUS, "internship_status", "target_internship_statuses"),
)

_RELAXED_CRITERIA = {CRITERION_DEPARTMENT}


@dataclass(frozen=True)
class EligibilityResult:
    eligible: bool
    relaxed: bool
    unmet: List[str] = field(default_factory=list)

    def __bool__(self) -> bool:
        return self.eligible


def _satisfies(value: Optional[str], targets: Optional[Iterable[str]]) -> bool:
    if not targets:
        return True
    return bool(value) and value in set(targets)


def check_eligibility(student: Any, period: Any, relaxed: bool = False) -> EligibilityResult:
    """
    Evaluate every applicable criterion and report the unmet ones.

    student needs department / academic_year / internship_status;
    period needs the three target_* attributes.
    """
    unmet = []
    for criterion, student_attr, target_attr in _CRITERIA:
        if relaxed and criterion not in _RELAXED_CRITERIA:
            continue
        value = getattr(student, student_attr, None)
        targets = getattr(period, target_attr, None)
        if not _satisfies(value, targets):
            unmet.append(criterion)
    return EligibilityResult(eligible=not unmet, relaxed=relaxed, unmet=unmet)


def is_eligible(student: Any, period: Any, relaxed: bool = False) -> bool:
    return check_eligibility(student, period, relaxed).eligible


def resolve_relaxed(has_approved_retake: bool, period: Any) -> bool:
    """Relaxed rules apply only when both gates are open."""
    return bool(has_approved_retake and getattr(period, "allow_retake", False))


def lecturer_matches_department(period: Any, student_department: Optional[str], lecturer_department: Optional[str]) -> bool:
    """
    Department affinity between a student and a prospective lecturer.

    Only enforced when the period asks for it and the lecturer has a
    department on record.
    """
    if not getattr(period, "require_department_match", True):
        return True
    if not lecturer_department:
        return True
    return student_department == lecturer_department
