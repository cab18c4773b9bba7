"""
ORM package. Importing it registers every model with Base.metadata.
"""
from internhub.orm.base import Base, BaseModel
from internhub.orm.user import User, UserRole, InternshipStatus
from internhub.orm.period import Period
from internhub.orm.lecturer_allocation import LecturerAllocation
from internhub.orm.registration import (
    Registration, RegistrationStatus, RegistrationStatusLog, COMPANY_FIELDS
)
from internhub.orm.weekly_report import WeeklyReport, ReportStatus
from internhub.orm.retake_request import RetakeRequest, RetakeStatus

__all__ = [
    "Base",
    "BaseModel",
    "User",
    "UserRole",
    "InternshipStatus",
    "Period",
    "LecturerAllocation",
    "Registration",
    "RegistrationStatus",
    "RegistrationStatusLog",
    "COMPANY_FIELDS",
    "WeeklyReport",
    "ReportStatus",
    "RetakeRequest",
    "RetakeStatus",
]
