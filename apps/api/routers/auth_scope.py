"""Caller identity for mess routes: members, mess owners and platform admins."""

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from config import settings
from services.session_token import decode_session_token


auth_scheme = HTTPBearer(auto_error=False)


@dataclass
class AuthContext:
    """Signed-in user. Owner rights are checked per mess by the services."""

    user_id: str
    email: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.user_id in set(settings.ADMIN_USER_IDS or [])


def ensure_member_scope(session_user_id: str, body_user_id: Optional[str]) -> str:
    """Members act only for themselves; a mismatched ``user_id`` in the body is refused."""
    if body_user_id and body_user_id != session_user_id:
        raise HTTPException(status_code=403, detail="Members can only act on their own mess requests.")
    return session_user_id


async def get_auth_context(
    credentials: HTTPAuthorizationCredentials = Depends(auth_scheme),
) -> AuthContext:
    if not credentials or credentials.scheme.lower() != "bearer":
        raise HTTPException(status_code=401, detail="Sign in to the mess app to continue.")

    try:
        payload = decode_session_token(credentials.credentials)
    except ValueError as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc

    return AuthContext(
        user_id=str(payload["sub"]),
        email=payload.get("email") or None,
    )


async def require_admin(auth: AuthContext = Depends(get_auth_context)) -> AuthContext:
    """Credit plans, trial settings and manual adjustments are admin-only."""
    if not auth.is_admin:
        raise HTTPException(status_code=403, detail="Platform admin access required.")
    return auth
