"""Request session resolution from bearer tokens."""

from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from ..models import Profile, ProfileRole
from ..services.stores import AuthSession
from .database import get_db


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def get_auth_session(
    authorization: Optional[str] = Header(None),
    db: Session = Depends(get_db),
) -> Optional[AuthSession]:
    """Resolve the caller's session, or ``None`` when not signed in."""

    token = _bearer_token(authorization)
    if token is None:
        return None
    profile = db.execute(select(Profile).where(Profile.access_token == token)).scalar_one_or_none()
    if profile is None:
        return None
    return AuthSession(access_token=token, profile_id=profile.profile_id, role=profile.role, email=profile.email)


def require_admin(session: Optional[AuthSession] = Depends(get_auth_session)) -> AuthSession:
    if session is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    if session.role != ProfileRole.ADMIN:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return session
