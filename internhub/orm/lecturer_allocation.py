"""
internhub/orm/lecturer_allocation.py
Capacity ledger: one row per (lecturer, period).
"""
from sqlalchemy import (
    Column, Integer, ForeignKey, UniqueConstraint, CheckConstraint, Index
)

from internhub.orm.base import BaseModel


class LecturerAllocation(BaseModel):
    """
    A lecturer's declared capacity for a period.

    assigned_count is a stored counter. It only moves through the
    conditional UPDATEs in services.capacity_ledger, never by
    read-modify-write.
    """
    __tablename__ = "lecturer_allocations"

    lecturer_id = Column(
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
    max_students = Column(Integer, nullable=False, default=20)
    assigned_count = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint("lecturer_id", "period_id", name="uq_allocation_lecturer_period"),
        CheckConstraint("max_students >= 0", name="ck_allocation_max_nonnegative"),
        CheckConstraint(
            "assigned_count >= 0 AND assigned_count <= max_students",
            name="ck_allocation_within_capacity"
        ),
        Index("idx_allocation_period", "period_id"),
    )

    @property
    def slots_remaining(self) -> int:
        return self.max_students - self.assigned_count

    def to_dict(self):
        return {
            "id": self.id,
            "lecturer_id": self.lecturer_id,
            "period_id": self.period_id,
            "max_students": self.max_students,
            "assigned_count": self.assigned_count,
            "slots_remaining": self.slots_remaining,
        }
