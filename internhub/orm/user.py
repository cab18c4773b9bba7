"""
internhub/orm/user.py
User profile as supplied by the identity provider.

Students carry the three attributes the eligibility filter reads:
department, academic_year (cohort) and internship_status.
"""
from enum import Enum

from sqlalchemy import Column, String, Boolean, CheckConstraint

from internhub.orm.base import BaseModel


class UserRole(str, Enum):
    """Actor roles"""
    student = "student"
    lecturer = "lecturer"
    admin = "admin"


class InternshipStatus(str, Enum):
    """Prior-internship-status labels kept on the student profile"""
    not_started = "not_started"
    in_progress = "in_progress"
    completed = "completed"


class User(BaseModel):
    __tablename__ = "users"

    email = Column(String(255), nullable=False, unique=True, index=True)
    full_name = Column(String(200), nullable=False)
    role = Column(String(20), nullable=False, default=UserRole.student.value, index=True)

    # Student code / staff code as printed on the university card
    student_code = Column(String(50), nullable=True, unique=True)

    department = Column(String(100), nullable=True, index=True)
    academic_year = Column(String(20), nullable=True)
    internship_status = Column(
        String(30),
        nullable=True,
        default=InternshipStatus.not_started.value
    )

    is_active = Column(Boolean, default=True, nullable=False, index=True)

    __table_args__ = (
        CheckConstraint(
            "role IN ('student', 'lecturer', 'admin')",
            name="ck_user_role_valid"
        ),
    )

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.admin.value

    def to_dict(self):
        return {
            "id": self.id,
            "email": self.email,
            "full_name": self.full_name,
            "role": self.role,
            "student_code": self.student_code,
            "department": self.department,
            "academic_year": self.academic_year,
            "internship_status": self.internship_status,
            "is_active": self.is_active,
        }

    def __repr__(self):
        return f"<User(id={self.id}, email='{self.email}', role={self.role})>"
