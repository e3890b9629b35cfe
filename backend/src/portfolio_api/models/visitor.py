"""Visitor tracking tables: sessions, page views, realtime presence, events."""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..db.database import Base, utcnow

SESSION_LIFETIME = timedelta(hours=24)


def _new_id() -> str:
    return str(uuid.uuid4())


def _session_expiry() -> datetime:
    return utcnow() + SESSION_LIFETIME


class VisitorSession(Base):
    """Privacy-preserving visitor session. Never stores the IP address."""

    __tablename__ = "visitor_sessions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    session_hash: Mapped[str] = mapped_column(String(64), index=True)
    country_code: Mapped[Optional[str]] = mapped_column(String(2), nullable=True)
    region: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    city: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    timezone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    language: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    device_type: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    browser_family: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    os_family: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    is_bot: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)
    last_seen_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    expires_at: Mapped[datetime] = mapped_column(DateTime, default=_session_expiry, index=True)

    page_views: Mapped[List["PageView"]] = relationship(
        back_populates="session", cascade="all, delete-orphan"
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "session_hash": self.session_hash,
            "country_code": self.country_code,
            "region": self.region,
            "city": self.city,
            "timezone": self.timezone,
            "language": self.language,
            "device_type": self.device_type,
            "browser_family": self.browser_family,
            "os_family": self.os_family,
            "is_bot": self.is_bot,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "last_seen_at": self.last_seen_at.isoformat() if self.last_seen_at else None,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
        }


class PageView(Base):
    __tablename__ = "page_views"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    session_id: Mapped[str] = mapped_column(
        ForeignKey("visitor_sessions.id", ondelete="CASCADE"), index=True
    )
    path: Mapped[str] = mapped_column(String(255))
    referrer_domain: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    duration_seconds: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)

    session: Mapped[VisitorSession] = relationship(back_populates="page_views")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "path": self.path,
            "referrer_domain": self.referrer_domain,
            "duration_seconds": self.duration_seconds,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class VisitorRealtime(Base):
    """Last activity per session hash, used for the live visitor count."""

    __tablename__ = "visitor_realtime"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    session_hash: Mapped[str] = mapped_column(String(64), unique=True)
    last_activity: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)
    current_page: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class VisitorEvent(Base):
    __tablename__ = "visitor_events"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    session_hash: Mapped[str] = mapped_column(String(64), index=True)
    event_type: Mapped[str] = mapped_column(String(50))
    event_data: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "event_type": self.event_type,
            "event_data": self.event_data,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
