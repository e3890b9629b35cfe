"""
Tests for visitor statistics, trends and the hourly/daily rollups.

Run with: pytest tests/test_analytics.py -v
"""

from datetime import date, datetime, timedelta

import pytest
from sqlalchemy import func, select

from portfolio_api.models import (
    PageView,
    PrivacyConsent,
    VisitorDailySummary,
    VisitorLocation,
    VisitorMetrics,
    VisitorRealtime,
    VisitorSession,
)
from portfolio_api.services.visitor_service import calculate_trend_percentage, period_start

# A Wednesday, so the current week started on Monday 2024-05-13.
NOW = datetime(2024, 5, 15, 12, 30)


def _session(
    services,
    created_at,
    session_hash=None,
    page_views=1,
    duration=0,
    country=None,
    device="desktop",
    browser="Chrome",
    os_family="Windows",
    path="/",
    is_bot=False,
):
    with services.database.session_scope() as session:
        row = VisitorSession(
            session_hash=session_hash or f"hash-{created_at.isoformat()}-{country}-{device}",
            created_at=created_at,
            last_seen_at=created_at + timedelta(seconds=duration),
            expires_at=created_at + timedelta(minutes=30),
            country_code=country,
            device_type=device,
            browser_family=browser,
            os_family=os_family,
            is_bot=is_bot,
        )
        session.add(row)
        session.flush()
        for index in range(page_views):
            session.add(PageView(session_id=row.id, path=path, created_at=created_at + timedelta(seconds=index)))
        return row.id


def _count(services, model):
    with services.database.session_scope() as session:
        return session.scalar(select(func.count()).select_from(model))


class TestTrendHelpers:
    @pytest.mark.parametrize(
        "current, previous, expected",
        [(10, 0, "+100%"), (0, 0, "0%"), (15, 10, "+50.0%"), (5, 10, "-50.0%"), (10, 10, "+0.0%")],
    )
    def test_trend_percentage(self, current, previous, expected):
        assert calculate_trend_percentage(current, previous) == expected

    def test_period_start_defaults(self):
        assert period_start("30d", NOW) == NOW - timedelta(days=30)
        assert period_start("bogus", NOW) == NOW - timedelta(days=7)


class TestVisitorStats:
    """Metrics computed from raw sessions and page views."""

    def test_metrics_for_period(self, services):
        _session(services, NOW - timedelta(hours=1), page_views=3, duration=120)
        _session(services, NOW - timedelta(hours=2), page_views=1, duration=0)

        summary = services.visitors.get_metrics_for_period(NOW - timedelta(days=1), NOW)

        assert summary.unique_visitors == 2
        assert summary.total_page_views == 4
        assert summary.avg_session_duration == 60
        assert summary.bounce_rate == 50.0
        assert summary.new_visitors == 2
        assert summary.returning_visitors == 0

    def test_returning_visitor(self, services):
        _session(services, NOW - timedelta(days=3), session_hash="repeat")
        _session(services, NOW - timedelta(hours=1), session_hash="repeat")

        summary = services.visitors.get_metrics_for_period(NOW - timedelta(days=1), NOW)
        assert summary.returning_visitors == 1
        assert summary.new_visitors == 0

    def test_empty_period(self, services):
        summary = services.visitors.get_metrics_for_period(NOW - timedelta(days=1), NOW)
        assert summary.unique_visitors == 0
        assert summary.bounce_rate == 0.0

    def test_unique_visitors_are_distinct_hashes(self, services):
        _session(services, NOW - timedelta(hours=3), session_hash="twice")
        _session(services, NOW - timedelta(hours=1), session_hash="twice")
        _session(services, NOW - timedelta(hours=2), session_hash="once")

        summary = services.visitors.get_metrics_for_period(NOW - timedelta(days=1), NOW)

        assert summary.unique_visitors == 2
        assert summary.new_visitors + summary.returning_visitors == summary.unique_visitors

    def test_bots_excluded_from_bounce_rate(self, services):
        _session(services, NOW - timedelta(hours=1), page_views=3, duration=120)
        _session(services, NOW - timedelta(hours=1), session_hash="crawler", is_bot=True)

        summary = services.visitors.get_metrics_for_period(NOW - timedelta(days=1), NOW)
        assert summary.bounce_rate == 0.0

    def test_trends_week_starts_monday(self, services):
        # Monday of this week and Sunday of last week.
        _session(services, datetime(2024, 5, 13, 9, 0))
        _session(services, datetime(2024, 5, 12, 9, 0))
        _session(services, datetime(2024, 5, 11, 9, 0))

        trends = services.visitors.calculate_trends(NOW)

        assert trends["this_week_vs_last_week"] == "-50.0%"
        assert trends["today_vs_yesterday"] == "0%"

    def test_visitor_stats_shape(self, services):
        _session(services, NOW - timedelta(hours=1))
        stats = services.visitors.get_visitor_stats(now=NOW)
        assert stats.today.unique_visitors == 1
        assert stats.all_time.unique_visitors == 1
        assert set(stats.trend_comparison) == {
            "today_vs_yesterday",
            "this_week_vs_last_week",
            "this_month_vs_last_month",
        }

    def test_timeline_hourly(self, services):
        _session(services, NOW - timedelta(hours=1), page_views=2, duration=30)
        _session(services, NOW - timedelta(hours=1, minutes=10), page_views=1, duration=90)
        _session(services, NOW - timedelta(hours=3), page_views=1)

        timeline = services.visitors.get_timeline("1d", now=NOW)

        assert [point["timestamp"] for point in timeline] == [
            "2024-05-15T09:00:00",
            "2024-05-15T11:00:00",
        ]
        assert timeline[1]["visitors"] == 2
        assert timeline[1]["page_views"] == 3
        assert timeline[1]["avg_session_time"] == 60.0

    def test_timeline_daily(self, services):
        _session(services, NOW - timedelta(days=2))
        _session(services, NOW - timedelta(days=2, hours=1))
        timeline = services.visitors.get_timeline("30d", now=NOW)
        assert len(timeline) == 1
        assert timeline[0]["timestamp"] == "2024-05-13T00:00:00"
        assert timeline[0]["visitors"] == 2

    def test_location_distribution(self, services):
        for _ in range(3):
            _session(services, NOW - timedelta(hours=1), session_hash=None, country="DE", device="mobile")
        _session(services, NOW - timedelta(hours=2), country="US")
        _session(services, NOW - timedelta(hours=2), country=None, device="tablet")

        locations = services.visitors.get_location_distribution("30d", now=NOW)

        assert locations[0]["country_code"] == "DE"
        assert locations[0]["country_name"] == "Germany"
        assert locations[0]["visitor_count"] == 3
        assert locations[0]["percentage"] == 75.0
        assert locations[1]["country_code"] == "US"

    def test_device_breakdown(self, services):
        _session(services, NOW - timedelta(hours=1), device="mobile", browser="Safari", os_family="iOS")
        _session(services, NOW - timedelta(hours=2), device="desktop", browser="Chrome", os_family="Windows")
        _session(services, NOW - timedelta(hours=3), device="desktop", browser="Firefox", os_family="Linux")

        breakdown = services.visitors.get_device_breakdown("30d", now=NOW)

        assert breakdown["devices"] == {"mobile": 1, "desktop": 2}
        assert breakdown["browsers"]["Chrome"] == 1
        assert breakdown["os"]["iOS"] == 1


class TestAggregation:
    """Hourly metrics, daily summaries and cleanup."""

    def test_hourly_metrics_upsert(self, services):
        hour = datetime(2024, 5, 15, 10, 0)
        _session(services, hour + timedelta(minutes=5), page_views=2, duration=60)
        _session(services, hour + timedelta(minutes=20), page_views=1)

        metric = services.aggregation.aggregate_hourly_metrics(hour)
        assert metric.unique_visitors == 2
        assert metric.page_views == 3
        assert metric.bounce_rate == 50.0

        _session(services, hour + timedelta(minutes=40))
        metric = services.aggregation.aggregate_hourly_metrics(hour + timedelta(minutes=15))

        assert metric.unique_visitors == 3
        assert _count(services, VisitorMetrics) == 1

    def test_hourly_bounce_rate_matches_stats(self, services):
        hour = datetime(2024, 5, 15, 10, 0)
        _session(services, hour + timedelta(minutes=5), page_views=1)
        _session(services, hour + timedelta(minutes=6), page_views=4, duration=300)
        _session(services, hour + timedelta(minutes=7), session_hash="crawler", is_bot=True)

        metric = services.aggregation.aggregate_hourly_metrics(hour)
        summary = services.visitors.get_metrics_for_period(hour, hour + timedelta(hours=1))

        assert metric.bounce_rate == 50.0
        assert summary.bounce_rate == metric.bounce_rate
        assert summary.unique_visitors == metric.unique_visitors == 3

    def test_daily_summary(self, services):
        day = date(2024, 5, 14)
        _session(services, datetime(2024, 5, 14, 9, 0), page_views=2, country="FR", path="/projects")
        _session(services, datetime(2024, 5, 14, 18, 0), page_views=1, country="FR", device="mobile")
        _session(services, datetime(2024, 5, 15, 1, 0))

        summary = services.aggregation.generate_daily_summary(day)

        assert summary.total_sessions == 2
        assert summary.total_page_views == 3
        assert summary.avg_pages_per_session == 1.5
        assert summary.top_pages[0] == {"path": "/projects", "views": 2}
        assert summary.top_countries == [{"country_code": "FR", "visitors": 2}]
        assert summary.device_breakdown == {"desktop": 1, "mobile": 1}

        services.aggregation.generate_daily_summary(day)
        assert _count(services, VisitorDailySummary) == 1

    def test_location_aggregates(self, services):
        day = date(2024, 5, 14)
        _session(services, datetime(2024, 5, 14, 9, 0), country="DE")
        _session(services, datetime(2024, 5, 14, 10, 0), country="DE", device="mobile")
        _session(services, datetime(2024, 5, 14, 11, 0), country="GB")

        assert services.aggregation.update_location_aggregates(day) == 2
        services.aggregation.update_location_aggregates(day)

        with services.database.session_scope() as session:
            rows = {row.country_code: row.visitor_count for row in session.scalars(select(VisitorLocation))}
        assert rows == {"DE": 2, "GB": 1}

    def test_cleanup_keeps_sessions_with_page_views(self, services):
        now = datetime(2024, 5, 15, 12, 0)
        _session(services, now - timedelta(hours=2), session_hash="viewed", page_views=1)
        _session(services, now - timedelta(hours=2), session_hash="empty", page_views=0)
        with services.database.session_scope() as session:
            session.add(
                VisitorRealtime(
                    session_hash="stale", current_page="/", last_activity=now - timedelta(days=2),
                    created_at=now - timedelta(days=2),
                )
            )
            session.add(
                PrivacyConsent(
                    session_hash="viewed", consent_type="analytics", granted=True,
                    created_at=now - timedelta(days=400), expires_at=now - timedelta(days=35),
                )
            )

        counts = services.aggregation.cleanup_expired_sessions(now=now)

        assert counts == {"sessions": 1, "realtime": 1, "consents": 1}
        with services.database.session_scope() as session:
            remaining = session.scalars(select(VisitorSession.session_hash)).all()
        assert remaining == ["viewed"]

    def test_cleanup_old_metrics(self, services):
        now = datetime(2024, 5, 15, 12, 0)
        with services.database.session_scope() as session:
            session.add(VisitorMetrics(metric_date=date(2023, 1, 1), hour=5))
            session.add(VisitorMetrics(metric_date=date(2024, 5, 14), hour=5))
            session.add(VisitorDailySummary(summary_date=date(2023, 1, 1)))
            session.add(VisitorDailySummary(summary_date=date(2022, 1, 1)))

        counts = services.aggregation.cleanup_old_metrics(365, now=now)

        assert counts["hourly"] == 1
        assert counts["daily"] == 1
        assert _count(services, VisitorMetrics) == 1
        assert _count(services, VisitorDailySummary) == 1
