"""
internhub/orm/period.py
Internship period: one academic term's program instance.
"""
from sqlalchemy import (
    Column, String, Boolean, Date, JSON, CheckConstraint, Index
)

from internhub.orm.base import BaseModel


class Period(BaseModel):
    """
    One internship period.

    Date boundaries (all inclusive, day precision):
        registration_start <= registration_end <= lecturer_selection_end
        internship_start <= search_deadline <= internship_end

    Target criteria are JSON lists; NULL or empty means no restriction.
    At most one period is active at a time. The engine flips is_active
    with a single UPDATE (see services.period_service.set_active_period).
    """
    __tablename__ = "internship_periods"

    semester = Column(String(50), nullable=False)
    academic_year = Column(String(20), nullable=False)

    registration_start = Column(Date, nullable=False)
    registration_end = Column(Date, nullable=False)
    lecturer_selection_end = Column(Date, nullable=False)
    internship_start = Column(Date, nullable=False)
    search_deadline = Column(Date, nullable=False)
    internship_end = Column(Date, nullable=False)

    is_active = Column(Boolean, default=False, nullable=False, index=True)

    target_departments = Column(JSON, nullable=True)
    target_academic_years = Column(JSON, nullable=True)
    target_internship_statuses = Column(JSON, nullable=True)

    allow_retake = Column(Boolean, default=False, nullable=False)
    require_department_match = Column(Boolean, default=True, nullable=False)
    lecturer_confirmation_required = Column(Boolean, default=False, nullable=False)

    __table_args__ = (
        CheckConstraint(
            "registration_start <= registration_end",
            name="ck_period_registration_window"
        ),
        CheckConstraint(
            "registration_end <= lecturer_selection_end",
            name="ck_period_selection_after_registration"
        ),
        CheckConstraint(
            "internship_start <= search_deadline AND search_deadline <= internship_end",
            name="ck_period_internship_window"
        ),
        Index("idx_period_term", "academic_year", "semester"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "semester": self.semester,
            "academic_year": self.academic_year,
            "registration_start": self.registration_start.isoformat(),
            "registration_end": self.registration_end.isoformat(),
            "lecturer_selection_end": self.lecturer_selection_end.isoformat(),
            "internship_start": self.internship_start.isoformat(),
            "search_deadline": self.search_deadline.isoformat(),
            "internship_end": self.internship_end.isoformat(),
            "is_active": self.is_active,
            "target_departments": self.target_departments or [],
            "target_academic_years": self.target_academic_years or [],
            "target_internship_statuses": self.target_internship_statuses or [],
            "allow_retake": self.allow_retake,
            "require_department_match": self.require_department_match,
            "lecturer_confirmation_required": self.lecturer_confirmation_required,
        }

    def __repr__(self):
        return f"<Period(id={self.id}, {self.semester} {self.academic_year}, active={self.is_active})>"
