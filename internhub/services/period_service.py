"""
Period Service

Creation, activation and visibility of internship periods.
At most one period is active; activation flips every row in one UPDATE.
"""
import logging
from datetime import date, datetime
from typing import Optional, Dict, Any, List

from sqlalchemy import select, update, case
from sqlalchemy.ext.asyncio import AsyncSession

from internhub.config.feature_flags import feature_flags
from internhub.errors import NotFound, ValidationError
from internhub.orm.period import Period
from internhub.orm.user import User
from internhub.services.eligibility_service import check_eligibility, resolve_relaxed, EligibilityResult
from internhub.services.retake_service import has_approved_retake

logger = logging.getLogger(__name__)

DATE_FIELDS = (
    "registration_start",
    "registration_end",
    "lecturer_selection_end",
    "internship_start",
    "search_deadline",
    "internship_end",
)

# (earlier, later) pairs that must satisfy earlier <= later
_DATE_ORDER = (
    ("registration_start", "registration_end"),
    ("registration_end", "lecturer_selection_end"),
    ("internship_start", "search_deadline"),
    ("search_deadline", "internship_end"),
)

_TARGET_FIELDS = ("target_departments", "target_academic_years", "target_internship_statuses")


def validate_period_dates(values: Dict[str, Any]) -> None:
    missing = [name for name in DATE_FIELDS if values.get(name) is None]
    if missing:
        raise ValidationError(
            f"Missing period dates: {', '.join(missing)}",
            details={"missing_fields": missing}
        )
    for earlier, later in _DATE_ORDER:
        if values[earlier] > values[later]:
            raise ValidationError(
                f"{earlier} must not be after {later}",
                field=later,
                details={earlier: values[earlier].isoformat(), later: values[later].isoformat()}
            )


def _normalize_targets(targets: Optional[List[str]]) -> Optional[List[str]]:
    if not targets:
        return None
    cleaned = sorted({t.strip() for t in targets if t and t.strip()})
    return cleaned or None


async def create_period(db: AsyncSession, values: Dict[str, Any]) -> Period:
    """Create an inactive period after validating its date boundaries."""
    if not (values.get("semester") or "").strip():
        raise ValidationError("Semester is required", field="semester")
    if not (values.get("academic_year") or "").strip():
        raise ValidationError("Academic year is required", field="academic_year")
    validate_period_dates(values)

    period = Period(
        semester=values["semester"].strip(),
        academic_year=values["academic_year"].strip(),
        is_active=False,
        allow_retake=bool(values.get("allow_retake", False)),
        require_department_match=bool(values.get("require_department_match", True)),
        lecturer_confirmation_required=bool(values.get("lecturer_confirmation_required", False)),
        **{name: values[name] for name in DATE_FIELDS},
        **{name: _normalize_targets(values.get(name)) for name in _TARGET_FIELDS},
    )
    db.add(period)
    await db.flush()
    logger.info(f"Created period {period.id}: {period.semester} {period.academic_year}")
    return period


async def get_period(db: AsyncSession, period_id: int) -> Period:
    period = await db.get(Period, period_id)
    if not period:
        raise NotFound("Period", period_id)
    return period


async def get_active_period(db: AsyncSession) -> Optional[Period]:
    result = await db.execute(
        select(Period)
        .where(Period.is_active.is_(True))
        .order_by(Period.id)
        .execution_options(populate_existing=True)
    )
    return result.scalars().first()


async def set_active_period(db: AsyncSession, period_id: int) -> Period:
    """
    Make period_id the single active period.

    One UPDATE over the whole table, so no reader ever sees two active
    periods or a window with none once the transaction commits.
    """
    period = await get_period(db, period_id)
    await db.execute(
        update(Period)
        .values(
            is_active=case((Period.id == period_id, True), else_=False),
            updated_at=datetime.utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    await db.refresh(period)
    logger.info(f"Period {period_id} is now the active period")
    return period


async def period_eligibility(db: AsyncSession, student: User, period: Period) -> EligibilityResult:
    """Eligibility of student for period, relaxed when an approved retake applies."""
    relaxed = False
    if feature_flags.FEATURE_RETAKE_REQUESTS:
        relaxed = resolve_relaxed(await has_approved_retake(db, student.id), period)
    return check_eligibility(student, period, relaxed=relaxed)


async def get_visible_period(db: AsyncSession, student: User) -> Optional[Period]:
    """The active period if the student passes its eligibility filter, else None."""
    period = await get_active_period(db)
    if period is None:
        return None
    result = await period_eligibility(db, student, period)
    if not result.eligible:
        logger.debug(f"Period {period.id} hidden from student {student.id}: unmet {result.unmet}")
        return None
    return period


def is_within(today: date, start: date, end: date) -> bool:
    """Inclusive day-precision window check."""
    return start <= today <= end
