"""
internhub/orm/weekly_report.py
Weekly report records: exactly 13 per internship-active registration.
"""
from enum import Enum

from sqlalchemy import (
    Column, Integer, String, Text, Date, DateTime, Numeric, ForeignKey,
    UniqueConstraint, CheckConstraint, Index
)

from internhub.orm.base import BaseModel


class ReportStatus(str, Enum):
    """Weekly report states. Values are part of the external contract."""
    not_submitted = "not_submitted"
    submitted = "submitted"
    late_submitted = "late_submitted"
    resubmitted = "resubmitted"
    late_resubmitted = "late_resubmitted"
    approved = "approved"
    rejected = "rejected"
    needs_revision = "needs_revision"


class WeeklyReport(BaseModel):
    __tablename__ = "weekly_reports"

    registration_id = Column(
        Integer,
        ForeignKey("student_registrations.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    week_number = Column(Integer, nullable=False)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    status = Column(
        String(30),
        nullable=False,
        default=ReportStatus.not_submitted.value,
        index=True
    )

    # Student side
    submission_date = Column(DateTime, nullable=True)
    report_title = Column(String(255), nullable=True)
    report_file_url = Column(String(1000), nullable=True)

    # Lecturer side
    grade = Column(Numeric(3, 1), nullable=True)
    lecturer_feedback = Column(Text, nullable=True)
    reviewed_date = Column(DateTime, nullable=True)
    reviewed_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    __table_args__ = (
        UniqueConstraint("registration_id", "week_number", name="uq_report_registration_week"),
        CheckConstraint("week_number >= 1 AND week_number <= 13", name="ck_report_week_range"),
        CheckConstraint("start_date <= end_date", name="ck_report_window"),
        CheckConstraint(
            "grade IS NULL OR (grade >= 0 AND grade <= 10)",
            name="ck_report_grade_range"
        ),
        Index("idx_report_registration_week", "registration_id", "week_number"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "registration_id": self.registration_id,
            "week_number": self.week_number,
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
            "status": self.status,
            "submission_date": self.submission_date.isoformat() if self.submission_date else None,
            "report_title": self.report_title,
            "report_file_url": self.report_file_url,
            "grade": str(self.grade) if self.grade is not None else None,
            "lecturer_feedback": self.lecturer_feedback,
            "reviewed_date": self.reviewed_date.isoformat() if self.reviewed_date else None,
        }
