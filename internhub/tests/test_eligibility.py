"""
Eligibility filter and department affinity.
"""
from types import SimpleNamespace

from internhub.services.eligibility_service import (
    CRITERION_ACADEMIC_YEAR,
    CRITERION_DEPARTMENT,
    CRITERION_INTERNSHIP_STATUS,
    check_eligibility,
    is_eligible,
    lecturer_matches_department,
    resolve_relaxed,
)


def student(department="CS", academic_year="2022", internship_status="not_started"):
    return SimpleNamespace(
        department=department,
        academic_year=academic_year,
        internship_status=internship_status,
    )


def period(departments=None, years=None, statuses=None, allow_retake=False, require_department_match=True):
    return SimpleNamespace(
        target_departments=departments,
        target_academic_years=years,
        target_internship_statuses=statuses,
        allow_retake=allow_retake,
        require_department_match=require_department_match,
    )


class TestCheckEligibility:

    def test_no_targets_admits_everyone(self):
        result = check_eligibility(student(department=None, academic_year=None), period())
        assert result.eligible
        assert result.unmet == []

    def test_empty_target_list_is_no_constraint(self):
        assert is_eligible(student(), period(departments=[], years=[]))

    def test_department_outside_target(self):
        result = check_eligibility(student(department="EE"), period(departments=["CS", "IT"]))
        assert not result.eligible
        assert result.unmet == [CRITERION_DEPARTMENT]

    def test_missing_attribute_fails_non_empty_target(self):
        result = check_eligibility(student(academic_year=None), period(years=["2022"]))
        assert result.unmet == [CRITERION_ACADEMIC_YEAR]

    def test_every_unmet_criterion_is_reported(self):
        result = check_eligibility(
            student(department="EE", academic_year="2019", internship_status="completed"),
            period(departments=["CS"], years=["2022"], statuses=["not_started"]),
        )
        assert result.unmet == [
            CRITERION_DEPARTMENT,
            CRITERION_ACADEMIC_YEAR,
            CRITERION_INTERNSHIP_STATUS,
        ]

    def test_all_targets_met(self):
        result = check_eligibility(
            student(),
            period(departments=["CS"], years=["2022", "2023"], statuses=["not_started"]),
        )
        assert result
        assert not result.relaxed

    def test_relaxed_checks_department_only(self):
        target = period(departments=["CS"], years=["2024"], statuses=["not_started"])
        retaker = student(academic_year="2020", internship_status="completed")

        assert not is_eligible(retaker, target)
        result = check_eligibility(retaker, target, relaxed=True)
        assert result.eligible
        assert result.relaxed

    def test_relaxed_still_enforces_department(self):
        result = check_eligibility(student(department="EE"), period(departments=["CS"]), relaxed=True)
        assert result.unmet == [CRITERION_DEPARTMENT]


class TestResolveRelaxed:

    def test_both_gates_open(self):
        assert resolve_relaxed(True, period(allow_retake=True))

    def test_period_disallows_retake(self):
        assert not resolve_relaxed(True, period(allow_retake=False))

    def test_no_approved_retake(self):
        assert not resolve_relaxed(False, period(allow_retake=True))


class TestLecturerDepartment:

    def test_same_department(self):
        assert lecturer_matches_department(period(), "CS", "CS")

    def test_different_department(self):
        assert not lecturer_matches_department(period(), "CS", "EE")

    def test_lecturer_without_department_matches_anyone(self):
        assert lecturer_matches_department(period(), "CS", None)

    def test_period_without_department_rule(self):
        assert lecturer_matches_department(period(require_department_match=False), "CS", "EE")
