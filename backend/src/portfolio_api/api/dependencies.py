from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import jwt
from fastapi import Depends, Header, HTTPException, Request, status

from ..config import Settings
from ..container import ServiceContainer
from ..services.compliance_service import ComplianceService
from ..services.devpanel_service import DevpanelService
from ..services.privacy_config_service import PrivacyConfigService
from ..services.project_service import ProjectService
from ..services.visitor_service import VisitorService
from .middleware import client_key


@dataclass(frozen=True)
class AuthContext:
    user_id: str
    access_token: str
    email: Optional[str] = None
    role: str = "user"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def _raise_auth_error(message: str, status_code: int = status.HTTP_401_UNAUTHORIZED) -> None:
    raise HTTPException(
        status_code=status_code,
        detail={"code": "unauthorized", "message": message},
    )


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container


def get_settings_dep(container: ServiceContainer = Depends(get_container)) -> Settings:
    return container.settings


def decode_access_token(access_token: str, settings: Settings) -> dict:
    if not settings.jwt_configured:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"code": "configuration_error", "message": "JWT_SECRET is not configured"},
        )
    try:
        payload = jwt.decode(
            access_token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            options={"require": ["sub", "exp"]},
        )
    except jwt.ExpiredSignatureError:
        _raise_auth_error("Access token expired")
    except jwt.InvalidTokenError:
        _raise_auth_error("Invalid access token")
    return payload


async def get_auth_context(
    authorization: Optional[str] = Header(default=None),
    settings: Settings = Depends(get_settings_dep),
) -> AuthContext:
    if not authorization:
        _raise_auth_error("Authorization header missing")

    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        _raise_auth_error("Authorization header must be Bearer token")

    access_token = parts[1].strip()
    if not access_token:
        _raise_auth_error("Access token missing")

    payload = decode_access_token(access_token, settings)
    return AuthContext(
        user_id=str(payload["sub"]),
        access_token=access_token,
        email=payload.get("email"),
        role=str(payload.get("role", "user")),
    )


async def require_admin(auth: AuthContext = Depends(get_auth_context)) -> AuthContext:
    if not auth.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"code": "forbidden", "message": "Admin access required"},
        )
    return auth


def get_project_service(container: ServiceContainer = Depends(get_container)) -> ProjectService:
    return container.projects


def get_visitor_service(container: ServiceContainer = Depends(get_container)) -> VisitorService:
    return container.visitors


def get_compliance_service(container: ServiceContainer = Depends(get_container)) -> ComplianceService:
    return container.compliance


def get_privacy_config_service(container: ServiceContainer = Depends(get_container)) -> PrivacyConfigService:
    return container.privacy_config


def get_devpanel_service(container: ServiceContainer = Depends(get_container)) -> DevpanelService:
    return container.devpanel


def enforce_track_rate_limit(request: Request, container: ServiceContainer = Depends(get_container)) -> None:
    if not container.track_limiter.allow(client_key(request)):
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail={"code": "rate_limited", "message": "Rate limit exceeded"},
        )
