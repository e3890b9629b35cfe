from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt

from ..config import Settings

DEFAULT_TOKEN_LIFETIME = timedelta(hours=12)


def create_access_token(
    settings: Settings,
    user_id: str,
    role: str = "user",
    email: Optional[str] = None,
    expires_in: timedelta = DEFAULT_TOKEN_LIFETIME,
) -> str:
    """Sign a bearer token that ``get_auth_context`` will accept."""
    now = datetime.now(timezone.utc)
    payload = {"sub": user_id, "role": role, "iat": now, "exp": now + expires_in}
    if email:
        payload["email"] = email
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)
