import logging
from dataclasses import dataclass
from typing import Optional

import jwt
from fastapi import Header, HTTPException

from fieldcal.core.config import get_settings

logger = logging.getLogger(__name__)

ALLOWED_ROLES = {"INTERNAL", "CLIENT"}


@dataclass
class CurrentUser:
    id: str
    role: str
    email: Optional[str] = None


def _extract_role(payload: dict) -> Optional[str]:
    # Role must come from server-managed app_metadata; user_metadata is user-editable.
    app_meta = payload.get("app_metadata") or {}
    raw = app_meta.get("role")
    if raw is None:
        return None
    role = str(raw).strip().upper()
    if role not in ALLOWED_ROLES:
        return None
    return role


def decode_token(token: str) -> Optional[dict]:
    settings = get_settings()
    audience = (settings.auth_jwt_audience or "").strip()
    decode_kwargs = {"audience": audience} if audience else {}
    try:
        return jwt.decode(
            token,
            settings.auth_jwt_secret,
            algorithms=["HS256"],
            options={"verify_aud": bool(audience)},
            **decode_kwargs,
        )
    except jwt.InvalidTokenError as exc:
        logger.debug("Token verification failed: %s", exc)
        return None


def get_current_user(
    authorization: Optional[str] = Header(None, alias="Authorization"),
) -> CurrentUser:
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(401, "Missing bearer token")

    settings = get_settings()
    if not settings.auth_jwt_secret:
        raise HTTPException(500, "AUTH_JWT_SECRET is not configured")

    payload = decode_token(authorization.split(" ", 1)[1].strip())
    if payload is None:
        raise HTTPException(401, "Invalid token")

    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(401, "Invalid token")

    role = _extract_role(payload)
    if not role:
        raise HTTPException(403, "Missing role")

    return CurrentUser(id=user_id, role=role, email=payload.get("email"))
