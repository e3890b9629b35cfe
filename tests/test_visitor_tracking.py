"""
Tests for visitor tracking: page views, events, sessions and the
tracking middleware.

Run with: pytest tests/test_visitor_tracking.py -v
"""

import asyncio
import logging
from datetime import datetime, timedelta
from types import SimpleNamespace
from unittest.mock import MagicMock

from sqlalchemy import func, select
from starlette.requests import Request
from starlette.responses import PlainTextResponse

from portfolio_api.api.middleware import tracking_middleware
from portfolio_api.models import PageView, VisitorEvent, VisitorRealtime, VisitorSession
from portfolio_api.services.geolocation import GeoLocation
from portfolio_api.services.visitor_service import RequestInfo

CHROME = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0 Safari/537.36"
)
NOW = datetime(2024, 5, 1, 10, 15)


def _info(**overrides):
    values = {"user_agent": CHROME, "accept_language": "en-US", "accept_encoding": "gzip"}
    values.update(overrides)
    return RequestInfo(**values)


def _count(container, model):
    with container.database.session_scope() as session:
        return session.scalar(select(func.count()).select_from(model))


def _update_config(container, **changes):
    service = container.privacy_config
    service.update_config(service.get_config().model_copy(update=changes))


class StaticGeoResolver:
    def __init__(self, location):
        self.location = location

    def lookup(self, ip):
        return self.location


class TestTrackPageView:
    """Service level tracking behaviour."""

    def test_first_view_creates_session(self, services):
        result = services.visitors.track_page_view(_info(), "/about", now=NOW)

        assert result.tracked is True
        assert result.is_new_session is True
        assert len(result.session_hash) == 64
        assert _count(services, VisitorSession) == 1
        assert _count(services, PageView) == 1

    def test_same_visitor_reuses_session(self, services):
        first = services.visitors.track_page_view(_info(), "/", now=NOW)
        second = services.visitors.track_page_view(_info(), "/projects", now=NOW + timedelta(minutes=5))

        assert second.is_new_session is False
        assert first.session_hash == second.session_hash
        assert _count(services, VisitorSession) == 1
        assert _count(services, PageView) == 2

    def test_session_records_device_info(self, services):
        services.visitors.track_page_view(_info(accept_language="de-DE,de;q=0.9"), "/", now=NOW)
        with services.database.session_scope() as session:
            row = session.scalars(select(VisitorSession)).one()
            assert row.device_type == "desktop"
            assert row.browser_family == "Chrome"
            assert row.os_family == "Windows"
            assert row.language == "de"
            assert row.is_bot is False

    def test_referrer_domain_only(self, services):
        services.visitors.track_page_view(
            _info(referrer="https://www.google.com/search?q=portfolio"), "/", now=NOW
        )
        with services.database.session_scope() as session:
            view = session.scalars(select(PageView)).one()
            assert view.referrer_domain == "www.google.com"

    def test_explicit_referrer_overrides_header(self, services):
        services.visitors.track_page_view(
            _info(referrer="https://www.google.com/"), "/", referrer="https://news.ycombinator.com/item?id=1", now=NOW
        )
        with services.database.session_scope() as session:
            view = session.scalars(select(PageView)).one()
            assert view.referrer_domain == "news.ycombinator.com"

    def test_do_not_track(self, services):
        result = services.visitors.track_page_view(_info(dnt="1"), "/", now=NOW)
        assert result.tracked is False
        assert result.reason == "do_not_track"
        assert _count(services, VisitorSession) == 0

    def test_tracking_disabled(self, services):
        _update_config(services, enable_tracking=False)
        result = services.visitors.track_page_view(_info(), "/", now=NOW)
        assert result.tracked is False
        assert result.reason == "tracking_disabled"

    def test_strict_mode_requires_consent(self, services):
        _update_config(services, privacy_mode="strict")
        result = services.visitors.track_page_view(_info(), "/", now=NOW)

        assert result.tracked is False
        assert result.reason == "consent_required"
        assert _count(services, PageView) == 0

    def test_strict_mode_with_consent(self, services):
        _update_config(services, privacy_mode="strict")
        session_hash = services.visitors.session_hash_for(_info())
        services.compliance.process_consent_request(session_hash, {"analytics": True})

        result = services.visitors.track_page_view(_info(), "/")

        assert result.tracked is True
        assert _count(services, PageView) == 1

    def test_realtime_presence_updated(self, services):
        services.visitors.track_page_view(_info(), "/", now=NOW)
        services.visitors.track_page_view(_info(), "/contact", now=NOW + timedelta(minutes=1))

        with services.database.session_scope() as session:
            row = session.scalars(select(VisitorRealtime)).one()
            assert row.current_page == "/contact"
        assert services.visitors.get_realtime_count(now=NOW + timedelta(minutes=2)) == 1
        assert services.visitors.get_realtime_count(now=NOW + timedelta(minutes=10)) == 0

    def test_geolocation_country_without_consent(self, settings):
        from portfolio_api.container import build_container

        location = GeoLocation(country_code="DE", region="BE", city="Berlin", timezone="Europe/Berlin")
        container = build_container(settings, geo_resolver=StaticGeoResolver(location))
        try:
            container.visitors.track_page_view(_info(client_ip="203.0.113.5"), "/", now=NOW)
            with container.database.session_scope() as session:
                row = session.scalars(select(VisitorSession)).one()
                assert row.country_code == "DE"
                assert row.timezone == "Europe/Berlin"
                assert row.city is None
        finally:
            container.shutdown()

    def test_country_hint_fallback(self, services):
        services.visitors.track_page_view(_info(country_hint="br"), "/", now=NOW)
        with services.database.session_scope() as session:
            assert session.scalars(select(VisitorSession)).one().country_code == "BR"


class TestTrackEvent:
    def test_event_stored(self, services):
        result = services.visitors.track_event(_info(), "download_resume", {"format": "pdf"}, now=NOW)
        assert result.tracked is True
        with services.database.session_scope() as session:
            event = session.scalars(select(VisitorEvent)).one()
            assert event.event_type == "download_resume"
            assert event.event_data == {"format": "pdf"}

    def test_event_collection_disabled(self, services):
        service = services.privacy_config
        config = service.get_config()
        service.update_config(
            config.model_copy(
                update={"data_collection": config.data_collection.model_copy(update={"collect_event_data": False})}
            )
        )
        result = services.visitors.track_event(_info(), "click")
        assert result.tracked is False
        assert _count(services, VisitorEvent) == 0


class TestTrackingAPI:
    """HTTP endpoints and middleware."""

    def test_track_endpoint(self, client, browser_headers):
        response = client.post("/api/visitors/track", json={"path": "/projects"}, headers=browser_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["tracked"] is True
        assert data["is_new_session"] is True
        assert data["active_visitors"] == 1

    def test_track_requires_path(self, client):
        response = client.post("/api/visitors/track", json={})
        assert response.status_code == 422

    def test_track_honours_dnt_header(self, client, browser_headers):
        response = client.post(
            "/api/visitors/track", json={"path": "/"}, headers={**browser_headers, "DNT": "1"}
        )
        assert response.json()["tracked"] is False
        assert response.json()["reason"] == "do_not_track"

    def test_event_endpoint(self, client, browser_headers, container):
        response = client.post(
            "/api/visitors/event",
            json={"event_type": "contact_click", "event_data": {"section": "footer"}},
            headers=browser_headers,
        )
        assert response.status_code == 200
        assert response.json()["tracked"] is True
        assert _count(container, VisitorEvent) == 1

    def test_middleware_tracks_page_requests(self, client, browser_headers, container):
        client.get("/", headers=browser_headers)
        assert _count(container, PageView) == 1

    def test_middleware_skips_api_and_health(self, client, browser_headers, container):
        client.get("/health", headers=browser_headers)
        client.get("/api/projects", headers=browser_headers)
        assert _count(container, PageView) == 0

    def test_security_headers(self, client):
        response = client.get("/health")
        assert response.headers["X-Frame-Options"] == "DENY"
        assert response.headers["X-Content-Type-Options"] == "nosniff"

    def test_rate_limit(self, app, client, browser_headers, container):
        from portfolio_api.api.middleware import RateLimiter

        container.track_limiter = RateLimiter(2)
        for _ in range(2):
            assert client.post("/api/visitors/track", json={"path": "/"}, headers=browser_headers).status_code == 200
        response = client.post("/api/visitors/track", json={"path": "/"}, headers=browser_headers)
        assert response.status_code == 429
        assert response.json()["detail"]["code"] == "rate_limited"


class TestVisitorPrivacyAPI:
    """Visitor-facing consent and erasure endpoints."""

    def test_consent_sets_cookie(self, client, browser_headers):
        response = client.post(
            "/api/visitors/privacy/consent",
            json={"consents": {"analytics": True, "marketing": False}},
            headers=browser_headers,
        )
        assert response.status_code == 200
        data = response.json()
        assert data["analytics"] is True
        assert data["marketing"] is False
        assert len(data["session_hash"]) == 64
        assert "privacy_consent=granted" in response.headers["set-cookie"]

    def test_consent_requires_decisions(self, client):
        response = client.post("/api/visitors/privacy/consent", json={"consents": {}})
        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "validation_error"

    def test_get_consent(self, client):
        client.post(
            "/api/visitors/privacy/consent",
            json={"session_hash": "abc123", "consents": {"functional": True}},
        )
        response = client.get("/api/visitors/privacy/consent/abc123")
        assert response.status_code == 200
        assert response.json()["functional"] is True
        assert response.json()["analytics"] is False

    def test_erase_data(self, client, browser_headers, container):
        session_hash = client.post(
            "/api/visitors/track", json={"path": "/"}, headers=browser_headers
        ).json()["session_hash"]

        response = client.delete(f"/api/visitors/privacy/data/{session_hash}")

        assert response.status_code == 200
        assert response.json()["success"] is True
        assert response.json()["deleted"]["sessions"] == 1
        assert _count(container, VisitorSession) == 0

    def test_erase_unknown_session(self, client):
        response = client.delete("/api/visitors/privacy/data/unknown")
        assert response.status_code == 404

    def test_privacy_regime(self, client):
        response = client.get("/api/visitors/privacy/regime", params={"country": "DE"})
        assert response.status_code == 200
        assert response.json()["regime"] == "GDPR"
        assert response.json()["requires_consent"] is True


class TestTrackingMiddleware:
    """Page views are recorded after the response has been produced."""

    def _request(self, container, path="/about", method="GET"):
        scope = {
            "type": "http",
            "method": method,
            "path": path,
            "query_string": b"",
            "headers": [(b"user-agent", CHROME.encode())],
            "app": SimpleNamespace(state=SimpleNamespace(container=container)),
        }
        return Request(scope)

    def test_tracking_runs_as_background_task(self):
        container = MagicMock()
        request = self._request(container)

        async def call_next(_request):
            return PlainTextResponse("ok")

        response = asyncio.run(tracking_middleware(request, call_next))

        container.visitors.track_page_view.assert_not_called()
        assert response.background is not None

        asyncio.run(response.background())
        info, path = container.visitors.track_page_view.call_args.args
        assert path == "/about"
        assert info.user_agent == CHROME

    def test_failure_is_logged_not_raised(self, caplog):
        container = MagicMock()
        container.visitors.track_page_view.side_effect = RuntimeError("database locked")
        request = self._request(container)

        async def call_next(_request):
            return PlainTextResponse("ok")

        response = asyncio.run(tracking_middleware(request, call_next))
        with caplog.at_level(logging.ERROR):
            asyncio.run(response.background())

        assert "Visitor tracking failed for /about" in caplog.text

    def test_non_page_requests_get_no_task(self):
        container = MagicMock()

        async def call_next(_request):
            return PlainTextResponse("ok")

        for request in (self._request(container, path="/api/projects"), self._request(container, method="POST")):
            response = asyncio.run(tracking_middleware(request, call_next))
            assert response.background is None
