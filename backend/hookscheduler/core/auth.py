from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt

from hookscheduler.core.config import Settings, get_settings


oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login", auto_error=False)


# Token utilities


def create_access_token(
    owner_id: str,
    settings: Settings,
    expires_delta: timedelta = timedelta(hours=1),
) -> str:
    payload: Dict[str, Any] = {
        "sub": owner_id,
        "type": "access",
        "exp": datetime.now(timezone.utc) + expires_delta,
    }
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_token(token: str, settings: Settings) -> Dict[str, Any]:
    try:
        return jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={
                "error": "invalid_token",
                "message": "Could not validate credentials",
            },
        ) from exc


# Current owner dependency


async def get_current_owner_id(
    token: Optional[str] = Depends(oauth2_scheme),
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
    settings: Settings = Depends(get_settings),
) -> str:
    """Resolve the owner every schedule, log and event is scoped to."""
    if not settings.auth_enabled:
        owner_id = (x_user_id or "").strip()
        return owner_id or settings.default_owner_id

    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={
                "error": "authentication_required",
                "message": "Authentication credentials were not provided.",
            },
        )

    payload = decode_token(token, settings)
    subject = payload.get("sub") or payload.get("userId")
    if subject is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"error": "invalid_token", "message": "Malformed token payload."},
        )
    return str(subject)
