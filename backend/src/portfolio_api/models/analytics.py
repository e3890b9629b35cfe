"""Hourly, daily and per-country rollups of visitor activity."""

from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import Optional

from sqlalchemy import JSON, Date, DateTime, Float, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ..db.database import Base, utcnow


def _new_id() -> str:
    return str(uuid.uuid4())


class VisitorMetrics(Base):
    __tablename__ = "visitor_metrics"
    __table_args__ = (UniqueConstraint("metric_date", "hour", name="uq_visitor_metrics_date_hour"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    metric_date: Mapped[date] = mapped_column(Date, index=True)
    hour: Mapped[int] = mapped_column(Integer)
    unique_visitors: Mapped[int] = mapped_column(Integer, default=0)
    page_views: Mapped[int] = mapped_column(Integer, default=0)
    avg_session_duration: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    bounce_rate: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    new_visitors: Mapped[int] = mapped_column(Integer, default=0)
    returning_visitors: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class VisitorDailySummary(Base):
    __tablename__ = "visitor_daily_summary"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    summary_date: Mapped[date] = mapped_column(Date, unique=True)
    unique_visitors: Mapped[int] = mapped_column(Integer, default=0)
    total_sessions: Mapped[int] = mapped_column(Integer, default=0)
    total_page_views: Mapped[int] = mapped_column(Integer, default=0)
    avg_pages_per_session: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    avg_session_duration: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    top_countries: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    top_pages: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    device_breakdown: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    browser_breakdown: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "summary_date": self.summary_date.isoformat(),
            "unique_visitors": self.unique_visitors,
            "total_sessions": self.total_sessions,
            "total_page_views": self.total_page_views,
            "avg_pages_per_session": self.avg_pages_per_session,
            "avg_session_duration": self.avg_session_duration,
            "top_countries": self.top_countries or [],
            "top_pages": self.top_pages or [],
            "device_breakdown": self.device_breakdown or {},
            "browser_breakdown": self.browser_breakdown or {},
        }


class VisitorLocation(Base):
    __tablename__ = "visitor_locations"
    __table_args__ = (UniqueConstraint("date", "country_code", name="uq_visitor_locations_date_country"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    location_date: Mapped[date] = mapped_column("date", Date, index=True)
    country_code: Mapped[str] = mapped_column(String(2))
    visitor_count: Mapped[int] = mapped_column(Integer, default=0)
