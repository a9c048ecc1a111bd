from dataclasses import dataclass
from typing import Callable, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.core.security import decode_access_token
from app.database import get_db
from app.models import RoleName

__all__ = ["CurrentUser", "get_current_user", "get_db", "require_roles"]

bearer_scheme = HTTPBearer(auto_error=False)

_BEARER_DEP = Depends(bearer_scheme)


@dataclass(frozen=True)
class CurrentUser:
    username: str
    role: RoleName


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = _BEARER_DEP,
) -> CurrentUser:
    if credentials is None or not credentials.credentials:
        raise _unauthorized("Not authenticated")

    claims = decode_access_token(credentials.credentials)
    if not claims or not claims.get("sub"):
        raise _unauthorized("Invalid credentials")

    try:
        role = RoleName(str(claims.get("role") or "").strip().lower())
    except ValueError:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Unknown role")

    return CurrentUser(username=str(claims["sub"]), role=role)


def require_roles(*roles: RoleName) -> Callable:
    """Admit the given roles; admin always passes and no roles means any user."""

    allowed = frozenset(roles)
    _CURRENT_USER_DEP = Depends(get_current_user)

    def dependency(user: CurrentUser = _CURRENT_USER_DEP) -> CurrentUser:
        if allowed and user.role != RoleName.admin and user.role not in allowed:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient role")
        return user

    return dependency
