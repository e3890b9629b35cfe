"""Visitor tracking and analytics.

Page views are attributed to a session hash built from request headers and
the current hour, so no IP address or cookie is stored. Statistics are
computed from the raw session/page view tables; the hourly and daily rollups
live in :mod:`aggregation_service`.
"""

from __future__ import annotations

import logging
from collections import Counter, defaultdict
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from ..config import Settings
from ..db.database import Database, utcnow
from ..models import PageView, VisitorEvent, VisitorRealtime, VisitorSession
from .compliance_service import ComplianceService
from .geolocation import GeoLocation
from .privacy_config_service import PrivacyConfigService
from .realtime_hub import RealtimeHub
from .session_fingerprint import (
    classify_user_agent,
    extract_language,
    extract_referrer_domain,
    generate_session_hash,
)

logger = logging.getLogger(__name__)

PERIODS = {
    "1d": timedelta(days=1),
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
    "1y": timedelta(days=365),
}

COUNTRY_NAMES = {
    "US": "United States",
    "CA": "Canada",
    "MX": "Mexico",
    "BR": "Brazil",
    "AR": "Argentina",
    "GB": "United Kingdom",
    "IE": "Ireland",
    "DE": "Germany",
    "FR": "France",
    "ES": "Spain",
    "IT": "Italy",
    "NL": "Netherlands",
    "BE": "Belgium",
    "AT": "Austria",
    "PL": "Poland",
    "SE": "Sweden",
    "NO": "Norway",
    "DK": "Denmark",
    "FI": "Finland",
    "CH": "Switzerland",
    "PT": "Portugal",
    "IN": "India",
    "CN": "China",
    "JP": "Japan",
    "KR": "South Korea",
    "AU": "Australia",
    "NZ": "New Zealand",
    "ZA": "South Africa",
    "SG": "Singapore",
}

BOUNCE_SECONDS = 10


@dataclass(frozen=True)
class RequestInfo:
    """The parts of an HTTP request tracking is allowed to look at."""

    user_agent: str = ""
    accept_language: str = ""
    accept_encoding: str = ""
    referrer: Optional[str] = None
    dnt: Optional[str] = None
    client_ip: Optional[str] = None
    country_hint: Optional[str] = None

    @property
    def headers(self) -> Dict[str, str]:
        return {"dnt": self.dnt} if self.dnt is not None else {}


@dataclass
class TrackResult:
    tracked: bool
    session_hash: Optional[str] = None
    is_new_session: bool = False
    reason: Optional[str] = None


@dataclass
class MetricsSummary:
    unique_visitors: int = 0
    total_page_views: int = 0
    avg_session_duration: int = 0
    bounce_rate: float = 0.0
    new_visitors: int = 0
    returning_visitors: int = 0


@dataclass
class VisitorStats:
    today: MetricsSummary
    last_7_days: MetricsSummary
    last_30_days: MetricsSummary
    all_time: MetricsSummary
    realtime_count: int
    trend_comparison: Dict[str, str] = field(default_factory=dict)


def calculate_trend_percentage(current: int, previous: int) -> str:
    if previous == 0:
        return "+100%" if current > 0 else "0%"
    change = (current - previous) / previous * 100
    if change >= 0:
        return f"+{change:.1f}%"
    return f"{change:.1f}%"


def period_start(period: str, now: datetime, default: str = "7d") -> datetime:
    return now - PERIODS.get(period, PERIODS[default])


def _duration_seconds(created_at: datetime, last_seen_at: Optional[datetime]) -> float:
    if last_seen_at is None:
        return 0.0
    return max((last_seen_at - created_at).total_seconds(), 0.0)


def session_duration(row: VisitorSession) -> float:
    return _duration_seconds(row.created_at, row.last_seen_at)


def bounce_rate(sessions: Sequence[VisitorSession], view_counts: Dict[str, int]) -> float:
    """Percent of non-bot sessions with at most one page view lasting under ``BOUNCE_SECONDS``."""
    humans = [row for row in sessions if not row.is_bot]
    if not humans:
        return 0.0
    bounced = sum(
        1 for row in humans if view_counts.get(row.id, 0) <= 1 and session_duration(row) < BOUNCE_SECONDS
    )
    return bounced / len(humans) * 100


class VisitorService:
    def __init__(
        self,
        database: Database,
        settings: Settings,
        config_service: PrivacyConfigService,
        compliance: ComplianceService,
        hub: RealtimeHub,
        geo_resolver,
    ) -> None:
        self.database = database
        self.settings = settings
        self.config_service = config_service
        self.compliance = compliance
        self.hub = hub
        self.geo_resolver = geo_resolver

    # ------------------------------------------------------------------
    # Tracking
    # ------------------------------------------------------------------
    def session_hash_for(self, info: RequestInfo, now: Optional[datetime] = None) -> str:
        return generate_session_hash(info.user_agent, info.accept_language, info.accept_encoding, now)

    def locate(self, info: RequestInfo) -> Optional[GeoLocation]:
        location = None
        try:
            location = self.geo_resolver.lookup(info.client_ip)
        except Exception:
            logger.exception("Geolocation resolver failed")
        if location is None and info.country_hint and len(info.country_hint) == 2:
            location = GeoLocation(country_code=info.country_hint.upper())
        return location

    def get_or_create_session(
        self,
        session,
        session_hash: str,
        info: RequestInfo,
        now: datetime,
        consent: Dict[str, bool],
    ) -> Tuple[VisitorSession, bool]:
        existing = session.scalars(
            select(VisitorSession)
            .where(VisitorSession.session_hash == session_hash)
            .where(VisitorSession.expires_at > now)
            .order_by(VisitorSession.created_at.desc())
            .limit(1)
        ).first()
        if existing is not None:
            return existing, False

        ua = classify_user_agent(info.user_agent)
        collect = self.config_service.should_collect
        visitor_session = VisitorSession(
            session_hash=session_hash,
            language=extract_language(info.accept_language),
            device_type=ua.device_type if collect("device") else None,
            browser_family=ua.browser if collect("browser") else None,
            os_family=ua.os if collect("browser") else None,
            is_bot=self.settings.enable_bot_detection and ua.is_bot,
            created_at=now,
            last_seen_at=now,
            expires_at=now + timedelta(minutes=self.settings.session_timeout_minutes),
        )

        if collect("geographic"):
            location = self.locate(info)
            if location is not None:
                visitor_session.country_code = location.country_code
                visitor_session.timezone = location.timezone
                # Region and city only with analytics consent.
                if consent.get("analytics"):
                    visitor_session.region = location.region
                    visitor_session.city = location.city

        session.add(visitor_session)
        session.flush()
        return visitor_session, True

    def track_page_view(
        self,
        info: RequestInfo,
        path: str,
        referrer: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> TrackResult:
        now = now or utcnow()
        if referrer is not None:
            info = replace(info, referrer=referrer)
        config = self.config_service.get_config()
        if not self.settings.tracking_enabled or not config.enable_tracking:
            return TrackResult(tracked=False, reason="tracking_disabled")
        if not self.config_service.should_collect("session"):
            return TrackResult(tracked=False, reason="session_collection_disabled")
        if self.compliance.check_dnt(info.headers):
            return TrackResult(tracked=False, reason="do_not_track")

        session_hash = self.session_hash_for(info, now)
        consent = self.compliance.get_consent_records(session_hash, now=now)
        with self.database.session_scope() as session:
            visitor_session, is_new = self.get_or_create_session(session, session_hash, info, now, consent)
            if config.privacy_mode == "strict" and not consent.get("analytics"):
                return TrackResult(
                    tracked=False, session_hash=session_hash, is_new_session=is_new, reason="consent_required"
                )

            referrer_domain = None
            if self.config_service.should_collect("referrer"):
                referrer_domain = extract_referrer_domain(info.referrer)
            session.add(
                PageView(
                    session_id=visitor_session.id,
                    path=path[:255],
                    referrer_domain=referrer_domain,
                    created_at=now,
                )
            )
            visitor_session.last_seen_at = now

        self._update_realtime(session_hash, path, now)
        self._broadcast_page_view(path, now)
        return TrackResult(tracked=True, session_hash=session_hash, is_new_session=is_new)

    def _update_realtime(self, session_hash: str, path: str, now: datetime) -> None:
        try:
            with self.database.session_scope() as session:
                row = session.scalars(
                    select(VisitorRealtime).where(VisitorRealtime.session_hash == session_hash)
                ).first()
                if row is None:
                    session.add(
                        VisitorRealtime(
                            session_hash=session_hash,
                            current_page=path[:255],
                            last_activity=now,
                            created_at=now,
                        )
                    )
                else:
                    row.current_page = path[:255]
                    row.last_activity = now
        except SQLAlchemyError as exc:
            logger.warning("Failed to update realtime tracking: %s", exc)

    def _broadcast_page_view(self, path: str, now: datetime) -> None:
        try:
            message = {"type": "pageview", "path": path, "realtime": self.get_realtime_count(now)}
            self.hub.broadcast(message)
        except Exception:
            logger.exception("Failed to broadcast page view")

    def track_event(
        self,
        info: RequestInfo,
        event_type: str,
        event_data: Optional[Dict[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> TrackResult:
        now = now or utcnow()
        if not self.settings.tracking_enabled or not self.config_service.should_collect("event"):
            return TrackResult(tracked=False, reason="tracking_disabled")
        if self.compliance.check_dnt(info.headers):
            return TrackResult(tracked=False, reason="do_not_track")

        session_hash = self.session_hash_for(info, now)
        with self.database.session_scope() as session:
            session.add(
                VisitorEvent(
                    session_hash=session_hash,
                    event_type=event_type[:50],
                    event_data=event_data or {},
                    created_at=now,
                )
            )
        return TrackResult(tracked=True, session_hash=session_hash)

    # ------------------------------------------------------------------
    # Consent
    # ------------------------------------------------------------------
    def record_consent(self, session_hash: str, consent_type: str, granted: bool) -> None:
        self.compliance.process_consent_request(session_hash, {consent_type: granted})

    def get_consent_status(self, session_hash: str, now: Optional[datetime] = None) -> Dict[str, bool]:
        return self.compliance.get_consent_records(session_hash, now=now)

    def erase_session_data(self, session_hash: str) -> Dict[str, int]:
        return self.compliance.delete_user_data(session_hash)

    # ------------------------------------------------------------------
    # Realtime
    # ------------------------------------------------------------------
    def _realtime_cutoff(self, now: datetime) -> datetime:
        return now - timedelta(minutes=self.settings.realtime_window_minutes)

    def get_realtime_count(self, now: Optional[datetime] = None) -> int:
        now = now or utcnow()
        with self.database.session_scope() as session:
            return session.scalar(
                select(func.count(VisitorRealtime.id)).where(
                    VisitorRealtime.last_activity > self._realtime_cutoff(now)
                )
            ) or 0

    def get_active_pages(self, now: Optional[datetime] = None, limit: int = 10) -> List[Dict[str, Any]]:
        now = now or utcnow()
        with self.database.session_scope() as session:
            rows = session.execute(
                select(VisitorRealtime.current_page, func.count(VisitorRealtime.id).label("visitors"))
                .where(VisitorRealtime.last_activity > self._realtime_cutoff(now))
                .where(VisitorRealtime.current_page.is_not(None))
                .group_by(VisitorRealtime.current_page)
                .order_by(func.count(VisitorRealtime.id).desc(), VisitorRealtime.current_page.asc())
                .limit(limit)
            ).all()
        return [{"path": path, "visitors": visitors} for path, visitors in rows]

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------
    def _sessions_between(self, session, start: Optional[datetime], end: datetime) -> Sequence[VisitorSession]:
        stmt = select(VisitorSession).where(VisitorSession.created_at <= end)
        if start is not None:
            stmt = stmt.where(VisitorSession.created_at >= start)
        return session.scalars(stmt).all()

    def get_metrics_for_period(self, start: Optional[datetime], end: datetime) -> MetricsSummary:
        with self.database.session_scope() as session:
            sessions = self._sessions_between(session, start, end)

            pv_stmt = select(func.count(PageView.id)).where(PageView.created_at <= end)
            if start is not None:
                pv_stmt = pv_stmt.where(PageView.created_at >= start)
            total_page_views = session.scalar(pv_stmt) or 0

            if not sessions:
                return MetricsSummary(total_page_views=total_page_views)

            ids = [row.id for row in sessions]
            view_counts = dict(
                session.execute(
                    select(PageView.session_id, func.count(PageView.id))
                    .where(PageView.session_id.in_(ids))
                    .group_by(PageView.session_id)
                ).all()
            )

            hashes = {row.session_hash for row in sessions}
            returning_hashes = set()
            if start is not None:
                returning_hashes = set(
                    session.scalars(
                        select(VisitorSession.session_hash)
                        .where(VisitorSession.session_hash.in_(hashes))
                        .where(VisitorSession.created_at < start)
                        .distinct()
                    ).all()
                )

        durations = [session_duration(row) for row in sessions]
        # Visitors are distinct session hashes, so new + returning == unique.
        return MetricsSummary(
            unique_visitors=len(hashes),
            total_page_views=total_page_views,
            avg_session_duration=int(sum(durations) / len(durations)),
            bounce_rate=bounce_rate(sessions, view_counts),
            new_visitors=len(hashes - returning_hashes),
            returning_visitors=len(returning_hashes),
        )

    def get_visitor_count(self, start: datetime, end: datetime) -> int:
        with self.database.session_scope() as session:
            return session.scalar(
                select(func.count(VisitorSession.id))
                .where(VisitorSession.created_at >= start)
                .where(VisitorSession.created_at < end)
            ) or 0

    def calculate_trends(self, now: datetime) -> Dict[str, str]:
        today_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
        yesterday_start = today_start - timedelta(days=1)
        week_start = today_start - timedelta(days=today_start.weekday())
        last_week_start = week_start - timedelta(days=7)
        month_start = today_start.replace(day=1)
        last_month_start = (month_start - timedelta(days=1)).replace(day=1)
        end = now + timedelta(microseconds=1)

        return {
            "today_vs_yesterday": calculate_trend_percentage(
                self.get_visitor_count(today_start, end),
                self.get_visitor_count(yesterday_start, today_start),
            ),
            "this_week_vs_last_week": calculate_trend_percentage(
                self.get_visitor_count(week_start, end),
                self.get_visitor_count(last_week_start, week_start),
            ),
            "this_month_vs_last_month": calculate_trend_percentage(
                self.get_visitor_count(month_start, end),
                self.get_visitor_count(last_month_start, month_start),
            ),
        }

    def get_visitor_stats(self, now: Optional[datetime] = None) -> VisitorStats:
        now = now or utcnow()
        today_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
        return VisitorStats(
            today=self.get_metrics_for_period(today_start, now),
            last_7_days=self.get_metrics_for_period(now - timedelta(days=7), now),
            last_30_days=self.get_metrics_for_period(now - timedelta(days=30), now),
            all_time=self.get_metrics_for_period(None, now),
            realtime_count=self.get_realtime_count(now),
            trend_comparison=self.calculate_trends(now),
        )

    def get_timeline(self, period: str = "7d", now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        now = now or utcnow()
        start = period_start(period, now)
        by_day = period in ("30d", "1y")

        with self.database.session_scope() as session:
            rows = session.execute(
                select(
                    PageView.created_at,
                    VisitorSession.id,
                    VisitorSession.created_at,
                    VisitorSession.last_seen_at,
                )
                .join(VisitorSession, VisitorSession.id == PageView.session_id)
                .where(VisitorSession.created_at >= start)
                .where(VisitorSession.created_at <= now)
            ).all()

        buckets: Dict[datetime, Dict[str, Any]] = defaultdict(lambda: {"sessions": {}, "page_views": 0})
        for viewed_at, session_id, created_at, last_seen_at in rows:
            if by_day:
                key = viewed_at.replace(hour=0, minute=0, second=0, microsecond=0)
            else:
                key = viewed_at.replace(minute=0, second=0, microsecond=0)
            bucket = buckets[key]
            bucket["page_views"] += 1
            bucket["sessions"][session_id] = _duration_seconds(created_at, last_seen_at)

        timeline = []
        for key in sorted(buckets):
            bucket = buckets[key]
            durations = list(bucket["sessions"].values())
            timeline.append(
                {
                    "timestamp": key.isoformat(),
                    "visitors": len(durations),
                    "page_views": bucket["page_views"],
                    "avg_session_time": round(sum(durations) / len(durations), 2) if durations else 0.0,
                }
            )
        return timeline

    def get_location_distribution(self, period: str = "30d", now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        now = now or utcnow()
        start = period_start(period, now, default="30d")
        with self.database.session_scope() as session:
            rows = session.execute(
                select(VisitorSession.country_code, func.count(VisitorSession.id).label("visitors"))
                .where(VisitorSession.created_at >= start)
                .where(VisitorSession.created_at <= now)
                .where(VisitorSession.country_code.is_not(None))
                .where(VisitorSession.country_code != "")
                .group_by(VisitorSession.country_code)
                .order_by(func.count(VisitorSession.id).desc(), VisitorSession.country_code.asc())
                .limit(20)
            ).all()

        total = sum(count for _, count in rows)
        return [
            {
                "country_code": code,
                "country_name": COUNTRY_NAMES.get(code, code),
                "visitor_count": count,
                "percentage": round(count / total * 100, 2) if total else 0.0,
            }
            for code, count in rows
        ]

    def get_device_breakdown(self, period: str = "30d", now: Optional[datetime] = None) -> Dict[str, Dict[str, int]]:
        now = now or utcnow()
        start = period_start(period, now, default="30d")
        with self.database.session_scope() as session:
            rows = session.execute(
                select(VisitorSession.device_type, VisitorSession.browser_family, VisitorSession.os_family)
                .where(VisitorSession.created_at >= start)
                .where(VisitorSession.created_at <= now)
            ).all()

        devices: Counter = Counter()
        browsers: Counter = Counter()
        systems: Counter = Counter()
        for device, browser, os_family in rows:
            if device:
                devices[device] += 1
            if browser:
                browsers[browser] += 1
            if os_family:
                systems[os_family] += 1
        return {
            "devices": dict(devices),
            "browsers": dict(browsers.most_common(10)),
            "os": dict(systems.most_common(10)),
        }
