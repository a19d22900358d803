from typing import Callable, Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from coinswap.core.errors import Forbidden, Unauthenticated
from coinswap.core.observability import request_id_for
from coinswap.core.security import decode_access_token_subject
from coinswap.database import get_db
from coinswap.models import UserRole
from coinswap.services.directory import CallerIdentity, get_caller_identity

bearer_scheme = HTTPBearer(auto_error=False)

_DB_DEP = Depends(get_db)
_BEARER_DEP = Depends(bearer_scheme)


def _extract_bearer_from_headers(request: Request) -> Optional[str]:
    # Some proxies forward the token under a custom header.
    raw = request.headers.get("authorization") or request.headers.get("x-auth-token")
    if not raw:
        return None
    s = str(raw).strip()
    if not s:
        return None
    if s.lower().startswith("bearer "):
        return s.split(" ", 1)[1].strip()
    return s


def get_current_user(
    request: Request,
    db: Session = _DB_DEP,
    credentials: Optional[HTTPAuthorizationCredentials] = _BEARER_DEP,
) -> CallerIdentity:
    token = credentials.credentials if credentials is not None else None
    if not token:
        token = _extract_bearer_from_headers(request)
    if not token:
        raise Unauthenticated("Not authenticated")

    subject = decode_access_token_subject(token)
    if not subject:
        raise Unauthenticated("Invalid credentials")

    caller = get_caller_identity(db, subject)
    if caller is None:
        raise Unauthenticated("User not found")
    return caller


_CURRENT_USER_DEP = Depends(get_current_user)


def get_request_id(request: Request) -> str:
    return request_id_for(request)


def require_roles(*roles: UserRole) -> Callable:
    def dependency(user: CallerIdentity = _CURRENT_USER_DEP) -> CallerIdentity:
        if roles:
            user_role = getattr(user, "role", None)
            user_role_value = user_role.value if isinstance(user_role, UserRole) else str(user_role or "")

            # Admin has access to everything
            if user_role_value == UserRole.admin.value:
                return user

            allowed = {r.value if isinstance(r, UserRole) else str(r) for r in roles}
            if user_role_value not in allowed:
                raise Forbidden("Insufficient role")
        return user

    return dependency
