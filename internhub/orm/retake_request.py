"""
internhub/orm/retake_request.py
Retake requests: renewed eligibility after a completed internship.
"""
from enum import Enum

from sqlalchemy import (
    Column, Integer, String, Text, DateTime, Numeric, ForeignKey,
    CheckConstraint, Index, text
)

from internhub.orm.base import BaseModel


class RetakeStatus(str, Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"


class RetakeRequest(BaseModel):
    """
    Status flow: PENDING -> APPROVED | REJECTED (both terminal).

    A student holds at most one pending request; the partial unique
    index backs the service-level check.
    """
    __tablename__ = "retake_requests"

    student_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    previous_registration_id = Column(
        Integer,
        ForeignKey("student_registrations.id", ondelete="SET NULL"),
        nullable=True
    )
    reason = Column(Text, nullable=False)
    previous_grade = Column(Numeric(3, 1), nullable=True)
    status = Column(String(20), nullable=False, default=RetakeStatus.pending.value)

    admin_note = Column(Text, nullable=True)
    reviewed_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    reviewed_at = Column(DateTime, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected')",
            name="ck_retake_status_valid"
        ),
        CheckConstraint(
            "previous_grade IS NULL OR (previous_grade >= 0 AND previous_grade <= 10)",
            name="ck_retake_grade_range"
        ),
        Index(
            "uq_retake_one_pending_per_student",
            "student_id",
            unique=True,
            sqlite_where=text("status = 'pending'"),
            postgresql_where=text("status = 'pending'"),
        ),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "student_id": self.student_id,
            "previous_registration_id": self.previous_registration_id,
            "reason": self.reason,
            "previous_grade": str(self.previous_grade) if self.previous_grade is not None else None,
            "status": self.status,
            "admin_note": self.admin_note,
            "reviewed_by": self.reviewed_by,
            "reviewed_at": self.reviewed_at.isoformat() if self.reviewed_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
