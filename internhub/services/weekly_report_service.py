"""
Weekly Report Service

Materializes the 13 weekly report slots of an internship, accepts student
submissions, records lecturer reviews and summarizes progress.

- Week n covers [internship_start + 7*(n-1), internship_start + 7*(n-1) + 6]
- Grades are Decimal, one decimal place, within [0, 10]
- Completion is advisory: at least 8 of 13 weeks handed in
"""
import logging
from datetime import date, datetime, timedelta
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Optional, Dict, Any, List, Iterable, Tuple

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from internhub.config import settings
from internhub.errors import Forbidden, NotFound, TransitionNotAllowed, ValidationError, ErrorCode
from internhub.orm.period import Period
from internhub.orm.registration import Registration, RegistrationStatus
from internhub.orm.user import User, UserRole
from internhub.orm.weekly_report import WeeklyReport, ReportStatus
from internhub.state_machines.weekly_report_state import (
    submission_status, review_status, REVIEWABLE, LATE_STATUSES, SUBMITTED_OR_BEYOND
)

logger = logging.getLogger(__name__)

QUANTIZER_1DP = Decimal("0.1")


# =============================================================================
# Week windows
# =============================================================================

def build_week_windows(internship_start: date, weeks: int = settings.TOTAL_WEEKS) -> List[Tuple[int, date, date]]:
    """Contiguous, non-overlapping seven-day windows starting at internship_start."""
    windows = []
    for week_number in range(1, weeks + 1):
        start = internship_start + timedelta(days=7 * (week_number - 1))
        windows.append((week_number, start, start + timedelta(days=6)))
    return windows


async def materialize_reports(db: AsyncSession, registration: Registration, period: Period) -> List[WeeklyReport]:
    """
    Ensure the registration has exactly one report per week.

    Idempotent: existing weeks are left alone and only missing weeks are
    inserted, so a second call is a no-op.
    """
    result = await db.execute(
        select(WeeklyReport.week_number).where(WeeklyReport.registration_id == registration.id)
    )
    existing = set(result.scalars().all())

    created = []
    for week_number, start, end in build_week_windows(period.internship_start):
        if week_number in existing:
            continue
        report = WeeklyReport(
            registration_id=registration.id,
            week_number=week_number,
            start_date=start,
            end_date=end,
            status=ReportStatus.not_submitted.value,
        )
        db.add(report)
        created.append(report)

    if created:
        await db.flush()
        logger.info(f"Materialized {len(created)} weekly reports for registration {registration.id}")
    return created


# =============================================================================
# Grades
# =============================================================================

def parse_grade(raw: Any) -> Optional[Decimal]:
    """
    Parse a grade to one decimal place.

    None passes through. Anything non-numeric or outside [GRADE_MIN, GRADE_MAX]
    raises ValidationError.
    """
    if raw is None or raw == "":
        return None
    try:
        grade = Decimal(str(raw))
    except InvalidOperation:
        raise ValidationError(f"Grade must be a number, got {raw!r}", field="grade")
    if not grade.is_finite():
        raise ValidationError("Grade must be a finite number", field="grade")
    if grade < settings.GRADE_MIN or grade > settings.GRADE_MAX:
        raise ValidationError(
            f"Grade must be between {settings.GRADE_MIN} and {settings.GRADE_MAX}",
            field="grade",
            details={"grade": str(raw)}
        )
    return grade.quantize(QUANTIZER_1DP, rounding=ROUND_HALF_UP)


# =============================================================================
# Submission & review
# =============================================================================

async def get_report(db: AsyncSession, report_id: int) -> WeeklyReport:
    result = await db.execute(
        select(WeeklyReport)
        .where(WeeklyReport.id == report_id)
        .execution_options(populate_existing=True)
    )
    report = result.scalar_one_or_none()
    if not report:
        raise NotFound("Weekly report", report_id)
    return report


def check_submittable(
    report: WeeklyReport,
    registration: Optional[Registration],
    student_id: int,
    today: date
) -> ReportStatus:
    """Ownership, week opening and status checks; returns the status a submission would enter."""
    if registration is None or registration.student_id != student_id:
        raise Forbidden(
            "Only the owning student can submit this report",
            code=ErrorCode.OWNERSHIP_VIOLATION
        )
    if today < report.start_date:
        raise TransitionNotAllowed(
            f"Week {report.week_number} opens on {report.start_date.isoformat()}",
            current_status=report.status,
            action="submit",
            window={"start": report.start_date.isoformat(), "end": report.end_date.isoformat()},
        )
    return submission_status(report.status, today, report.end_date)


def clean_report_title(title: Optional[str]) -> str:
    if not title or not title.strip():
        raise ValidationError("Report title is required", field="report_title")
    return title.strip()


async def submit_report(
    db: AsyncSession,
    report_id: int,
    student_id: int,
    title: str,
    now: datetime,
    file_url: Optional[str] = None
) -> WeeklyReport:
    """
    Student submits (or replaces) the document for one week.

    Raises:
        NotFound: report missing
        Forbidden: student does not own the registration
        TransitionNotAllowed: future week, or report already reviewed as final
        ValidationError: missing title, or no file on first submission
    """
    report = await get_report(db, report_id)
    registration = await db.get(Registration, report.registration_id)
    new_status = check_submittable(report, registration, student_id, now.date())

    title = clean_report_title(title)
    if not file_url and not report.report_file_url:
        raise ValidationError("A report file is required", field="file")

    report.status = new_status.value
    report.report_title = title
    if file_url:
        report.report_file_url = file_url
    report.submission_date = now
    await db.flush()

    logger.info(
        f"Report {report.id} (registration {report.registration_id}, week {report.week_number}) "
        f"-> {new_status.value}"
    )
    return report


async def review_report(
    db: AsyncSession,
    report_id: int,
    reviewer: User,
    grade: Any,
    decision: str,
    feedback: Optional[str],
    now: datetime
) -> WeeklyReport:
    """
    Lecturer grades a submitted report.

    The grade is validated before anything is read for update, so an out of
    range grade never leaves a partial change behind.
    """
    parsed_grade = parse_grade(grade)
    if parsed_grade is None:
        raise ValidationError("A grade is required to review a report", field="grade")

    report = await get_report(db, report_id)
    registration = await db.get(Registration, report.registration_id)
    if reviewer.role != UserRole.admin.value and (
        registration is None or registration.assigned_lecturer_id != reviewer.id
    ):
        raise Forbidden(
            "Only the assigned lecturer can review this report",
            code=ErrorCode.OWNERSHIP_VIOLATION
        )

    new_status = review_status(report.status, decision)

    report.status = new_status.value
    report.grade = parsed_grade
    report.lecturer_feedback = feedback
    report.reviewed_date = now
    report.reviewed_by = reviewer.id
    await db.flush()

    logger.info(f"Report {report.id} reviewed by user {reviewer.id}: {new_status.value} grade={parsed_grade}")
    return report


async def list_reports(db: AsyncSession, registration_id: int) -> List[WeeklyReport]:
    result = await db.execute(
        select(WeeklyReport)
        .where(WeeklyReport.registration_id == registration_id)
        .order_by(WeeklyReport.week_number)
    )
    return list(result.scalars().all())


# =============================================================================
# Statistics
# =============================================================================

def _average(grades: List[Decimal]) -> Optional[Decimal]:
    if not grades:
        return None
    return (sum(grades) / Decimal(len(grades))).quantize(QUANTIZER_1DP, rounding=ROUND_HALF_UP)


def summarize_reports(reports: Iterable[WeeklyReport]) -> Dict[str, Any]:
    """Progress summary of one registration's reports."""
    reports = list(reports)
    statuses = [ReportStatus(r.status) for r in reports]
    handed_in = sum(1 for s in statuses if s in SUBMITTED_OR_BEYOND)
    grades = [Decimal(r.grade) for r in reports if r.grade is not None]

    return {
        "total": len(reports),
        "submitted": handed_in,
        "pending_review": sum(1 for s in statuses if s in REVIEWABLE),
        "approved": statuses.count(ReportStatus.approved),
        "needs_revision": statuses.count(ReportStatus.needs_revision),
        "rejected": statuses.count(ReportStatus.rejected),
        "late": sum(1 for s in statuses if s in LATE_STATUSES),
        "not_submitted": statuses.count(ReportStatus.not_submitted),
        "average_grade": _average(grades),
        "meets_completion_threshold": handed_in >= settings.COMPLETION_THRESHOLD_WEEKS,
    }


async def week_statistics(db: AsyncSession, period_id: int) -> List[Dict[str, Any]]:
    """Per-week counts across every registration of the period."""
    result = await db.execute(
        select(WeeklyReport)
        .join(Registration, Registration.id == WeeklyReport.registration_id)
        .where(Registration.period_id == period_id)
        .order_by(WeeklyReport.week_number, WeeklyReport.registration_id)
    )
    by_week: Dict[int, List[WeeklyReport]] = {}
    for report in result.scalars().all():
        by_week.setdefault(report.week_number, []).append(report)

    stats = []
    for week_number in sorted(by_week):
        summary = summarize_reports(by_week[week_number])
        del summary["meets_completion_threshold"]
        total = summary["total"]
        summary["week_number"] = week_number
        summary["completion_rate"] = (
            (Decimal(summary["submitted"] * 100) / Decimal(total)).quantize(QUANTIZER_1DP, rounding=ROUND_HALF_UP)
            if total else Decimal("0.0")
        )
        stats.append(summary)
    return stats


async def lecturer_overview(db: AsyncSession, lecturer_id: int, period_id: int) -> Dict[str, Any]:
    """Dashboard counters for one lecturer in one period."""
    result = await db.execute(
        select(Registration.status, func.count(Registration.id))
        .where(
            Registration.assigned_lecturer_id == lecturer_id,
            Registration.period_id == period_id,
        )
        .group_by(Registration.status)
    )
    by_status = {status: count for status, count in result.all()}
    supervised = sum(
        count for status, count in by_status.items()
        if status not in (RegistrationStatus.rejected.value, RegistrationStatus.assigned_to_project.value)
    )
    with_company = sum(
        by_status.get(s.value, 0) for s in (
            RegistrationStatus.company_submitted,
            RegistrationStatus.pending_approval,
            RegistrationStatus.approved,
            RegistrationStatus.in_progress,
            RegistrationStatus.completed,
        )
    )

    pending = await db.execute(
        select(func.count(WeeklyReport.id))
        .join(Registration, Registration.id == WeeklyReport.registration_id)
        .where(
            Registration.assigned_lecturer_id == lecturer_id,
            Registration.period_id == period_id,
            WeeklyReport.status.in_([s.value for s in REVIEWABLE]),
        )
    )

    return {
        "lecturer_id": lecturer_id,
        "period_id": period_id,
        "supervised_students": supervised,
        "with_company": with_company,
        "searching": by_status.get(RegistrationStatus.searching.value, 0),
        "reports_pending_review": pending.scalar_one(),
    }
