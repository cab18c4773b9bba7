"""
internhub/orm/registration.py
One student's participation in one period, plus its transition log.
"""
from datetime import datetime
from enum import Enum

from sqlalchemy import (
    Column, Integer, String, Boolean, Text, DateTime, ForeignKey,
    UniqueConstraint, CheckConstraint, Index
)

from internhub.orm.base import Base, BaseModel


class RegistrationStatus(str, Enum):
    """Registration lifecycle states. Values are part of the external contract."""
    not_started = "not_started"
    registered = "registered"
    searching = "searching"
    company_submitted = "company_submitted"
    pending_approval = "pending_approval"
    waiting_lecturer = "waiting_lecturer"
    lecturer_confirmed = "lecturer_confirmed"
    approved = "approved"
    in_progress = "in_progress"
    completed = "completed"
    rejected = "rejected"
    assigned_to_project = "assigned_to_project"


COMPANY_FIELDS = (
    "company_name",
    "company_address",
    "company_supervisor",
    "company_supervisor_phone",
    "internship_position",
)


class Registration(BaseModel):
    """
    Registration record.

    Company fields are populated from company_submitted onward.
    Rows are never hard-deleted by the engine.
    """
    __tablename__ = "student_registrations"

    student_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    period_id = Column(
        Integer,
        ForeignKey("internship_periods.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    status = Column(
        String(30),
        nullable=False,
        default=RegistrationStatus.registered.value,
        index=True
    )

    assigned_lecturer_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )
    requested_lecturer_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True
    )
    prefer_own_lecturer = Column(Boolean, default=False, nullable=False)

    company_name = Column(String(255), nullable=True)
    company_address = Column(String(500), nullable=True)
    company_supervisor = Column(String(200), nullable=True)
    company_supervisor_phone = Column(String(50), nullable=True)
    internship_position = Column(String(200), nullable=True)

    admin_note = Column(Text, nullable=True)
    reports_materialized_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    __table_args__ = (
        UniqueConstraint("student_id", "period_id", name="uq_registration_student_period"),
        CheckConstraint(
            "status IN ('not_started', 'registered', 'searching', 'company_submitted', "
            "'pending_approval', 'waiting_lecturer', 'lecturer_confirmed', 'approved', "
            "'in_progress', 'completed', 'rejected', 'assigned_to_project')",
            name="ck_registration_status_valid"
        ),
        Index("idx_registration_period_status", "period_id", "status"),
        Index("idx_registration_lecturer_period", "assigned_lecturer_id", "period_id"),
    )

    def company_info(self) -> dict:
        return {field: getattr(self, field) for field in COMPANY_FIELDS}

    def to_dict(self):
        return {
            "id": self.id,
            "student_id": self.student_id,
            "period_id": self.period_id,
            "status": self.status,
            "assigned_lecturer_id": self.assigned_lecturer_id,
            "requested_lecturer_id": self.requested_lecturer_id,
            "prefer_own_lecturer": self.prefer_own_lecturer,
            **self.company_info(),
            "admin_note": self.admin_note,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }

    def __repr__(self):
        return f"<Registration(id={self.id}, student={self.student_id}, period={self.period_id}, status={self.status})>"


class RegistrationStatusLog(Base):
    """
    Append-only audit trail of registration transitions.
    """
    __tablename__ = "registration_status_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    registration_id = Column(
        Integer,
        ForeignKey("student_registrations.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    from_status = Column(String(30), nullable=True)
    to_status = Column(String(30), nullable=False)
    action = Column(String(40), nullable=False)
    actor_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    forced = Column(Boolean, default=False, nullable=False)
    note = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def to_dict(self):
        return {
            "id": self.id,
            "registration_id": self.registration_id,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "action": self.action,
            "actor_id": self.actor_id,
            "forced": self.forced,
            "note": self.note,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
