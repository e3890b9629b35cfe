"""Request fingerprinting helpers for visitor tracking.

The session hash is derived from request headers and the current hour so a
visitor can be counted without storing their IP address or setting cookies.
User agents are parsed with the ``user-agents`` package (ua-parser rules).
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Mapping, Optional
from urllib.parse import urlparse

from user_agents import parse as parse_user_agent


@dataclass(frozen=True)
class UserAgentInfo:
    device_type: str
    browser: str
    os: str
    is_bot: bool


def hour_bucket(now: Optional[datetime] = None) -> int:
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return int(now.timestamp()) // 3600


def generate_session_hash(
    user_agent: str,
    accept_language: str,
    accept_encoding: str,
    now: Optional[datetime] = None,
) -> str:
    fingerprint = f"{user_agent}|{accept_language}|{accept_encoding}|{hour_bucket(now)}"
    return hashlib.sha256(fingerprint.encode("utf-8")).hexdigest()


def classify_user_agent(user_agent: Optional[str]) -> UserAgentInfo:
    if not user_agent:
        return UserAgentInfo(device_type="other", browser="Other", os="Other", is_bot=False)

    ua = parse_user_agent(user_agent)
    if ua.is_bot:
        device_type = "other"
    elif ua.is_tablet:
        device_type = "tablet"
    elif ua.is_mobile:
        device_type = "mobile"
    elif ua.is_pc:
        device_type = "desktop"
    else:
        device_type = "other"

    return UserAgentInfo(
        device_type=device_type,
        browser=ua.browser.family or "Other",
        os=ua.os.family or "Other",
        is_bot=ua.is_bot,
    )


def extract_language(accept_language: Optional[str]) -> str:
    if not accept_language:
        return "en"
    first = accept_language.split(",", 1)[0].split(";", 1)[0].strip()
    primary = first.split("-", 1)[0].lower()
    if not primary or primary == "*":
        return "en"
    return primary[:10]


def extract_referrer_domain(referrer: Optional[str]) -> Optional[str]:
    if not referrer:
        return None
    parsed = urlparse(referrer)
    host = parsed.hostname
    if not host:
        return None
    return host.lower()[:255]


def extract_client_ip(headers: Mapping[str, str], remote_addr: Optional[str] = None) -> Optional[str]:
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        candidate = forwarded.split(",", 1)[0].strip()
        if candidate:
            return candidate
    real_ip = headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return remote_addr
