# settings.py
# Environment-driven configuration for the backend service.
# - Reads .env (python-dotenv) once, then the process environment
# - Invalid numeric/bool values fall back to their defaults

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import List, Mapping, Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}
DEFAULT_JWT_SECRET = "change-me"


@dataclass(frozen=True)
class Settings:
    database_url: str = "sqlite:///./portfolio.db"
    jwt_secret: str = DEFAULT_JWT_SECRET
    jwt_algorithm: str = "HS256"
    allowed_origins: List[str] = field(default_factory=lambda: ["*"])
    log_level: str = "INFO"
    log_file: Optional[str] = None

    # Visitor tracking
    tracking_enabled: bool = True
    session_timeout_minutes: int = 30
    realtime_window_minutes: int = 5
    enable_bot_detection: bool = True
    track_rate_limit_per_minute: int = 120
    geolocation_enabled: bool = False
    geolocation_url: str = "http://ip-api.com/json"
    hub_client_buffer: int = 256
    privacy_contact_email: str = "privacy@example.com"

    # Devpanel
    metrics_interval_seconds: int = 30
    metrics_retention_seconds: int = 3600
    start_background_services: bool = False

    @property
    def jwt_configured(self) -> bool:
        secret = (self.jwt_secret or "").strip()
        return bool(secret) and secret != DEFAULT_JWT_SECRET


def _get_bool(env: Mapping[str, str], key: str, default: bool) -> bool:
    raw = env.get(key)
    if raw is None:
        return default
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    logger.warning("Ignoring invalid boolean for %s: %r", key, raw)
    return default


def _get_int(env: Mapping[str, str], key: str, default: int) -> int:
    raw = env.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring invalid integer for %s: %r", key, raw)
        return default


def _get_list(env: Mapping[str, str], key: str, default: List[str]) -> List[str]:
    raw = env.get(key)
    if not raw:
        return list(default)
    return [item.strip() for item in raw.split(",") if item.strip()]


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    """Build settings from a mapping (defaults to ``os.environ``)."""
    if env is None:
        env = os.environ
    defaults = Settings()
    return Settings(
        database_url=env.get("DATABASE_URL", defaults.database_url),
        jwt_secret=env.get("JWT_SECRET", defaults.jwt_secret),
        jwt_algorithm=env.get("JWT_ALGORITHM", defaults.jwt_algorithm),
        allowed_origins=_get_list(env, "ALLOWED_ORIGINS", defaults.allowed_origins),
        log_level=env.get("LOG_LEVEL", defaults.log_level).upper(),
        log_file=env.get("LOG_FILE") or None,
        tracking_enabled=_get_bool(env, "TRACKING_ENABLED", defaults.tracking_enabled),
        session_timeout_minutes=_get_int(env, "SESSION_TIMEOUT_MINUTES", defaults.session_timeout_minutes),
        realtime_window_minutes=_get_int(env, "REALTIME_WINDOW_MINUTES", defaults.realtime_window_minutes),
        enable_bot_detection=_get_bool(env, "ENABLE_BOT_DETECTION", defaults.enable_bot_detection),
        track_rate_limit_per_minute=_get_int(
            env, "TRACK_RATE_LIMIT_PER_MINUTE", defaults.track_rate_limit_per_minute
        ),
        geolocation_enabled=_get_bool(env, "GEOLOCATION_ENABLED", defaults.geolocation_enabled),
        geolocation_url=env.get("GEOLOCATION_URL", defaults.geolocation_url),
        hub_client_buffer=_get_int(env, "HUB_CLIENT_BUFFER", defaults.hub_client_buffer),
        privacy_contact_email=env.get("PRIVACY_CONTACT_EMAIL", defaults.privacy_contact_email),
        metrics_interval_seconds=_get_int(env, "METRICS_INTERVAL_SECONDS", defaults.metrics_interval_seconds),
        metrics_retention_seconds=_get_int(
            env, "METRICS_RETENTION_SECONDS", defaults.metrics_retention_seconds
        ),
        start_background_services=_get_bool(
            env, "START_BACKGROUND_SERVICES", defaults.start_background_services
        ),
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    load_dotenv()
    return load_settings()
