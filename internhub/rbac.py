"""
internhub/rbac.py
Role-Based Access Control

Identity is issued elsewhere; this module only verifies bearer tokens
(JWT, "sub" = user id) and gates routes by role.
"""
import logging
from datetime import datetime, timedelta
from typing import List, Optional

from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from sqlalchemy.ext.asyncio import AsyncSession

from internhub.config import settings
from internhub.database import get_db
from internhub.errors import ErrorCode, Forbidden, UnauthorizedError
from internhub.orm.user import User, UserRole

logger = logging.getLogger(__name__)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/token", auto_error=False)


# ================= TOKEN UTILS =================

def create_access_token(user_id: int, role: str, expires_delta: Optional[timedelta] = None) -> str:
    expire = datetime.utcnow() + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode = {
        "sub": str(user_id),
        "role": role,
        "exp": expire,
        "type": "access",
    }
    return jwt.encode(to_encode, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str) -> Optional[dict]:
    """Decode and validate a JWT; None when invalid or expired."""
    try:
        return jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except JWTError:
        return None


# ================= AUTH DEPENDENCIES =================

async def get_current_user(
    token: Optional[str] = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db),
) -> User:
    if not token:
        raise UnauthorizedError()

    payload = decode_token(token)
    if not payload or payload.get("type") != "access":
        raise UnauthorizedError("Invalid or expired token", code=ErrorCode.AUTH_INVALID)

    subject = payload.get("sub")
    if not subject or not str(subject).isdigit():
        raise UnauthorizedError("Invalid or expired token", code=ErrorCode.AUTH_INVALID)

    user = await db.get(User, int(subject))
    if not user or not user.is_active:
        raise UnauthorizedError("Invalid or expired token", code=ErrorCode.AUTH_INVALID)
    return user


def require_role(allowed_roles: List[UserRole]):
    """
    Dependency factory: require one of the given roles.
    Usage: current_user: User = Depends(require_role([UserRole.admin]))
    """
    allowed = {role.value for role in allowed_roles}

    async def checker(current_user: User = Depends(get_current_user)) -> User:
        if current_user.role not in allowed:
            logger.warning(
                f"Access denied: User {current_user.id} with role {current_user.role} "
                f"attempted to access resource requiring {sorted(allowed)}"
            )
            raise Forbidden(
                f"This action requires one of: {sorted(allowed)}",
                details={"current_role": current_user.role}
            )
        return current_user

    return checker


require_admin = require_role([UserRole.admin])
require_student = require_role([UserRole.student])
require_lecturer = require_role([UserRole.lecturer])
require_staff = require_role([UserRole.lecturer, UserRole.admin])
