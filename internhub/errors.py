"""
internhub/errors.py
Centralized error taxonomy for the rule engine.

ERROR RESPONSE STRUCTURE:
{
    "success": false,
    "error": "ErrorType",
    "message": "Human-readable description",
    "code": "UNIQUE_ERROR_CODE",
    "details": {} (optional)
}

Every error is local to the operation that raised it. Services raise
before mutating, or inside a transaction the caller rolls back.
"""
import logging
from typing import Optional, Dict, Any, List

from fastapi import Request, status
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class ErrorCode:
    """Unique error codes for machine-readable error handling"""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    MISSING_FIELD = "MISSING_FIELD"

    AUTH_REQUIRED = "AUTH_REQUIRED"
    AUTH_INVALID = "AUTH_INVALID"
    FORBIDDEN = "FORBIDDEN"
    OWNERSHIP_VIOLATION = "OWNERSHIP_VIOLATION"

    NOT_FOUND = "NOT_FOUND"

    STATE_TRANSITION_INVALID = "STATE_TRANSITION_INVALID"
    CAPACITY_EXCEEDED = "CAPACITY_EXCEEDED"
    DUPLICATE_ENTITY = "DUPLICATE_ENTITY"
    NOT_ELIGIBLE = "NOT_ELIGIBLE"
    FEATURE_DISABLED = "FEATURE_DISABLED"

    INTERNAL_ERROR = "INTERNAL_ERROR"


class APIError(Exception):
    """Base API exception with consistent structure"""

    def __init__(
        self,
        status_code: int,
        error: str,
        message: str,
        code: str,
        details: Optional[Dict[str, Any]] = None
    ):
        self.status_code = status_code
        self.error = error
        self.message = message
        self.code = code
        self.details = details
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "success": False,
            "error": self.error,
            "message": self.message,
            "code": self.code
        }
        if self.details:
            result["details"] = self.details
        return result

    def to_response(self) -> JSONResponse:
        """Convert to FastAPI JSONResponse"""
        return JSONResponse(status_code=self.status_code, content=self.to_dict())


class ValidationError(APIError):
    """Malformed or missing required field. No mutation has happened."""
    def __init__(self, message: str, field: Optional[str] = None, details: Optional[Dict] = None):
        details = dict(details or {})
        if field:
            details["field"] = field
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            error="Validation Error",
            message=message,
            code=ErrorCode.VALIDATION_ERROR,
            details=details or None
        )


class UnauthorizedError(APIError):
    def __init__(self, message: str = "Authentication required", code: str = ErrorCode.AUTH_REQUIRED):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            error="Unauthorized",
            message=message,
            code=code
        )


class Forbidden(APIError):
    def __init__(self, message: str, code: str = ErrorCode.FORBIDDEN, details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            error="Forbidden",
            message=message,
            code=code,
            details=details
        )


class NotFound(APIError):
    def __init__(self, resource: str, identifier: Any = None):
        message = f"{resource} not found"
        if identifier is not None:
            message = f"{resource} with id '{identifier}' not found"
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            error="Not Found",
            message=message,
            code=ErrorCode.NOT_FOUND
        )


class TransitionNotAllowed(APIError):
    """
    Action attempted outside its allowed state or date window.
    Recoverable: the caller may retry once conditions are met.
    """
    def __init__(
        self,
        message: str,
        current_status: Optional[str] = None,
        action: Optional[str] = None,
        allowed_statuses: Optional[List[str]] = None,
        window: Optional[Dict[str, str]] = None
    ):
        self.current_status = current_status
        self.action = action
        self.allowed_statuses = allowed_statuses or []
        self.window = window
        details: Dict[str, Any] = {"current_status": current_status}
        if action:
            details["action"] = action
        if allowed_statuses:
            details["allowed_statuses"] = allowed_statuses
        if window:
            details["window"] = window
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            error="Transition Not Allowed",
            message=message,
            code=ErrorCode.STATE_TRANSITION_INVALID,
            details=details
        )


class CapacityExceeded(APIError):
    """Lecturer slot race lost, or the allocation is full."""
    def __init__(self, lecturer_id: int, period_id: int):
        self.lecturer_id = lecturer_id
        self.period_id = period_id
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            error="Capacity Exceeded",
            message=f"Lecturer {lecturer_id} has no remaining slots in period {period_id}",
            code=ErrorCode.CAPACITY_EXCEEDED,
            details={"lecturer_id": lecturer_id, "period_id": period_id}
        )


class DuplicateEntity(APIError):
    def __init__(self, message: str, details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            error="Duplicate Entity",
            message=message,
            code=ErrorCode.DUPLICATE_ENTITY,
            details=details
        )


class NotEligible(APIError):
    """Eligibility filter denied; unmet lists the criterion categories."""
    def __init__(self, unmet: List[str], message: Optional[str] = None):
        self.unmet = list(unmet)
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            error="Not Eligible",
            message=message or f"Eligibility criteria not met: {', '.join(self.unmet)}",
            code=ErrorCode.NOT_ELIGIBLE,
            details={"unmet_criteria": self.unmet}
        )


class FeatureDisabled(APIError):
    def __init__(self, feature: str):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            error="Forbidden",
            message=f"{feature} is disabled",
            code=ErrorCode.FEATURE_DISABLED
        )


async def api_error_handler(request: Request, exc: APIError) -> JSONResponse:
    """Render any APIError with the standard envelope."""
    if exc.status_code >= 500:
        logger.error(f"{exc.code} on {request.url.path}: {exc.message}")
    else:
        logger.warning(f"{exc.code} on {request.url.path}: {exc.message}")
    return exc.to_response()
