from __future__ import annotations

import logging
from collections import Counter
from datetime import date, datetime, time, timedelta
from typing import Dict, Optional

from sqlalchemy import delete, func, select

from ..db.database import Database, utcnow
from ..models import (
    PageView,
    PrivacyConsent,
    VisitorDailySummary,
    VisitorLocation,
    VisitorMetrics,
    VisitorRealtime,
    VisitorSession,
)
from .visitor_service import bounce_rate, session_duration

logger = logging.getLogger(__name__)

REALTIME_ROW_MAX_AGE = timedelta(hours=24)
# Daily summaries outlive hourly metrics by roughly six months.
SUMMARY_EXTRA_RETENTION = timedelta(days=182)


def _day_bounds(day: date):
    start = datetime.combine(day, time.min)
    return start, start + timedelta(days=1)


class VisitorAggregationService:
    """Rolls raw sessions and page views up into hourly/daily/location tables."""

    def __init__(self, database: Database) -> None:
        self.database = database

    def aggregate_hourly_metrics(self, hour_start: Optional[datetime] = None) -> VisitorMetrics:
        if hour_start is None:
            hour_start = utcnow().replace(minute=0, second=0, microsecond=0) - timedelta(hours=1)
        hour_start = hour_start.replace(minute=0, second=0, microsecond=0)
        hour_end = hour_start + timedelta(hours=1)

        with self.database.session_scope() as session:
            sessions = session.scalars(
                select(VisitorSession)
                .where(VisitorSession.created_at >= hour_start)
                .where(VisitorSession.created_at < hour_end)
            ).all()
            page_views = session.scalar(
                select(func.count(PageView.id))
                .where(PageView.created_at >= hour_start)
                .where(PageView.created_at < hour_end)
            ) or 0

            hashes = {row.session_hash for row in sessions}
            returning = set()
            view_counts: Dict[str, int] = {}
            if sessions:
                returning = set(
                    session.scalars(
                        select(VisitorSession.session_hash)
                        .where(VisitorSession.session_hash.in_(hashes))
                        .where(VisitorSession.created_at < hour_start)
                        .distinct()
                    ).all()
                )
                view_counts = dict(
                    session.execute(
                        select(PageView.session_id, func.count(PageView.id))
                        .where(PageView.session_id.in_([row.id for row in sessions]))
                        .group_by(PageView.session_id)
                    ).all()
                )

            durations = [session_duration(row) for row in sessions]

            metric = session.scalars(
                select(VisitorMetrics)
                .where(VisitorMetrics.metric_date == hour_start.date())
                .where(VisitorMetrics.hour == hour_start.hour)
            ).first()
            if metric is None:
                metric = VisitorMetrics(metric_date=hour_start.date(), hour=hour_start.hour)
                session.add(metric)

            metric.unique_visitors = len(hashes)
            metric.page_views = page_views
            metric.avg_session_duration = sum(durations) / len(durations) if durations else None
            metric.bounce_rate = bounce_rate(sessions, view_counts) if sessions else None
            metric.new_visitors = len(hashes - returning)
            metric.returning_visitors = len(returning)

        logger.info(
            "Aggregated hour %s: %d visitors, %d page views",
            hour_start.isoformat(),
            metric.unique_visitors,
            metric.page_views,
        )
        return metric

    def generate_daily_summary(self, day: Optional[date] = None) -> VisitorDailySummary:
        day = day or (utcnow().date() - timedelta(days=1))
        start, end = _day_bounds(day)

        with self.database.session_scope() as session:
            sessions = session.scalars(
                select(VisitorSession)
                .where(VisitorSession.created_at >= start)
                .where(VisitorSession.created_at < end)
            ).all()
            page_rows = session.execute(
                select(PageView.path, func.count(PageView.id).label("views"))
                .where(PageView.created_at >= start)
                .where(PageView.created_at < end)
                .group_by(PageView.path)
                .order_by(func.count(PageView.id).desc(), PageView.path.asc())
            ).all()

            total_page_views = sum(views for _, views in page_rows)
            countries = Counter(row.country_code for row in sessions if row.country_code)
            devices = Counter(row.device_type for row in sessions if row.device_type)
            browsers = Counter(row.browser_family for row in sessions if row.browser_family)
            durations = [session_duration(row) for row in sessions]

            summary = session.scalars(
                select(VisitorDailySummary).where(VisitorDailySummary.summary_date == day)
            ).first()
            if summary is None:
                summary = VisitorDailySummary(summary_date=day)
                session.add(summary)

            summary.unique_visitors = len({row.session_hash for row in sessions})
            summary.total_sessions = len(sessions)
            summary.total_page_views = total_page_views
            summary.avg_pages_per_session = total_page_views / len(sessions) if sessions else None
            summary.avg_session_duration = sum(durations) / len(durations) if durations else None
            summary.top_countries = [
                {"country_code": code, "visitors": count} for code, count in countries.most_common(10)
            ]
            summary.top_pages = [{"path": path, "views": views} for path, views in page_rows[:10]]
            summary.device_breakdown = dict(devices)
            summary.browser_breakdown = dict(browsers)

        logger.info("Generated daily summary for %s", day.isoformat())
        return summary

    def cleanup_expired_sessions(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """Drop stale realtime rows, expired consents and expired sessions without page views."""
        now = now or utcnow()
        with self.database.session_scope() as session:
            viewed = select(PageView.session_id).distinct()
            empty_sessions = session.execute(
                delete(VisitorSession)
                .where(VisitorSession.expires_at < now)
                .where(VisitorSession.id.not_in(viewed))
            ).rowcount
            realtime = session.execute(
                delete(VisitorRealtime).where(VisitorRealtime.created_at < now - REALTIME_ROW_MAX_AGE)
            ).rowcount
            consents = session.execute(
                delete(PrivacyConsent).where(PrivacyConsent.expires_at < now)
            ).rowcount

        counts = {"sessions": empty_sessions, "realtime": realtime, "consents": consents}
        logger.info("Cleanup removed %s", counts)
        return counts

    def update_location_aggregates(self, day: Optional[date] = None) -> int:
        day = day or utcnow().date()
        start, end = _day_bounds(day)
        with self.database.session_scope() as session:
            rows = session.execute(
                select(VisitorSession.country_code, func.count(func.distinct(VisitorSession.session_hash)))
                .where(VisitorSession.created_at >= start)
                .where(VisitorSession.created_at < end)
                .where(VisitorSession.country_code.is_not(None))
                .where(VisitorSession.country_code != "")
                .group_by(VisitorSession.country_code)
            ).all()
            existing = {
                row.country_code: row
                for row in session.scalars(
                    select(VisitorLocation).where(VisitorLocation.location_date == day)
                ).all()
            }
            for country_code, visitors in rows:
                location = existing.get(country_code)
                if location is None:
                    session.add(
                        VisitorLocation(location_date=day, country_code=country_code, visitor_count=visitors)
                    )
                else:
                    location.visitor_count = visitors
        return len(rows)

    def cleanup_old_metrics(self, retention_days: int, now: Optional[datetime] = None) -> Dict[str, int]:
        now = now or utcnow()
        cutoff = (now - timedelta(days=retention_days)).date()
        with self.database.session_scope() as session:
            counts = {
                "hourly": session.execute(
                    delete(VisitorMetrics).where(VisitorMetrics.metric_date < cutoff)
                ).rowcount,
                "daily": session.execute(
                    delete(VisitorDailySummary).where(
                        VisitorDailySummary.summary_date < cutoff - SUMMARY_EXTRA_RETENTION
                    )
                ).rowcount,
                "locations": session.execute(
                    delete(VisitorLocation).where(VisitorLocation.location_date < cutoff)
                ).rowcount,
            }
        logger.info("Removed old metrics older than %s: %s", cutoff.isoformat(), counts)
        return counts
