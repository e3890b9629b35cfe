"""
Tests for GDPR/CCPA compliance: IP anonymization, consent, erasure,
retention and privacy regime detection.

Run with: pytest tests/test_compliance.py -v
"""

from datetime import timedelta

import pytest
from sqlalchemy import func, select

from portfolio_api.db import utcnow
from portfolio_api.errors import InvalidConsentError, SessionNotFoundError
from portfolio_api.models import (
    ConsentAuditLog,
    PageView,
    PrivacyConsent,
    VisitorEvent,
    VisitorRealtime,
    VisitorSession,
)

SESSION_HASH = "a" * 64


def _set_anonymization(services, **changes):
    service = services.privacy_config
    config = service.get_config()
    service.update_config(
        config.model_copy(update={"anonymization": config.anonymization.model_copy(update=changes)})
    )


def _set_retention(services, **changes):
    service = services.privacy_config
    config = service.get_config()
    service.update_config(config.model_copy(update={"retention": config.retention.model_copy(update=changes)}))


def _add_session(services, session_hash=SESSION_HASH, created_at=None, page_views=1):
    created_at = created_at or utcnow()
    with services.database.session_scope() as session:
        row = VisitorSession(
            session_hash=session_hash,
            created_at=created_at,
            last_seen_at=created_at,
            expires_at=created_at + timedelta(minutes=30),
        )
        session.add(row)
        session.flush()
        for index in range(page_views):
            session.add(PageView(session_id=row.id, path=f"/page/{index}", created_at=created_at))
        return row.id


def _count(services, model):
    with services.database.session_scope() as session:
        return session.scalar(select(func.count()).select_from(model))


class TestAnonymizeIP:
    """IP anonymization modes."""

    def test_remove_last_octet_ipv4(self, services):
        assert services.compliance.anonymize_ip("192.168.1.123") == "192.168.1.0"

    def test_remove_last_octet_ipv6(self, services):
        assert services.compliance.anonymize_ip("2001:db8:85a3::8a2e:370:7334") == "2001:db8:85a3::8a2e:0:0"

    def test_remove_last_two_ipv4(self, services):
        _set_anonymization(services, ip_anonymization_mode="remove_last_two")
        assert services.compliance.anonymize_ip("10.20.30.40") == "10.20.0.0"

    def test_remove_last_two_ipv6(self, services):
        _set_anonymization(services, ip_anonymization_mode="remove_last_two")
        assert services.compliance.anonymize_ip("2001:db8:1:2:3:4:5:6") == "2001:db8:1:2::"

    def test_hash_mode(self, services):
        _set_anonymization(services, ip_anonymization_mode="hash")
        first = services.compliance.anonymize_ip("203.0.113.7")
        assert len(first) == 32
        assert first == services.compliance.anonymize_ip("203.0.113.7")
        assert first != services.compliance.anonymize_ip("203.0.113.8")

    def test_disabled_returns_input(self, services):
        _set_anonymization(services, anonymize_ip=False)
        assert services.compliance.anonymize_ip("203.0.113.7") == "203.0.113.7"

    def test_invalid_ip(self, services):
        assert services.compliance.anonymize_ip("not-an-ip") == ""


class TestDoNotTrack:
    def test_dnt_respected(self, services):
        assert services.compliance.check_dnt({"dnt": "1"}) is True
        assert services.compliance.check_dnt({"dnt": "0"}) is False
        assert services.compliance.check_dnt({}) is False

    def test_dnt_ignored_when_disabled(self, services):
        service = services.privacy_config
        config = service.get_config()
        service.update_config(
            config.model_copy(
                update={"data_collection": config.data_collection.model_copy(update={"respect_dnt": False})}
            )
        )
        assert services.compliance.check_dnt({"dnt": "1"}) is False


class TestConsent:
    """Consent storage and lookup."""

    def test_missing_consent_is_denied(self, services):
        assert services.compliance.get_consent_records(SESSION_HASH) == {
            "analytics": False,
            "functional": False,
            "marketing": False,
        }

    def test_consent_recorded_with_audit(self, services):
        stored = services.compliance.process_consent_request(
            SESSION_HASH,
            {"necessary": True, "analytics": True, "marketing": False},
            ip_address="203.0.113.50",
            user_agent="pytest",
        )
        assert {item["consent_type"] for item in stored} == {"analytics", "marketing"}

        status = services.compliance.get_consent_records(SESSION_HASH)
        assert status["analytics"] is True
        assert status["marketing"] is False

        with services.database.session_scope() as session:
            audit = session.scalars(select(ConsentAuditLog)).all()
            assert len(audit) == 1
            assert audit[0].action == "consent_updated"
            assert audit[0].ip_address == "203.0.113.0"

    def test_latest_decision_wins(self, services):
        services.compliance.process_consent_request(SESSION_HASH, {"analytics": True})
        services.compliance.process_consent_request(SESSION_HASH, {"analytics": False})
        assert services.compliance.get_consent_records(SESSION_HASH)["analytics"] is False

    def test_expired_consent_ignored(self, services):
        services.compliance.process_consent_request(SESSION_HASH, {"analytics": True})
        later = utcnow() + timedelta(days=366)
        assert services.compliance.get_consent_records(SESSION_HASH, now=later)["analytics"] is False

    def test_unknown_category_rejected(self, services):
        with pytest.raises(InvalidConsentError):
            services.compliance.process_consent_request(SESSION_HASH, {"telemetry": True})

    def test_empty_session_hash_rejected(self, services):
        with pytest.raises(InvalidConsentError):
            services.compliance.process_consent_request("", {"analytics": True})

    def test_opt_out_denies_everything(self, services):
        services.compliance.process_consent_request(SESSION_HASH, {"analytics": True, "functional": True})
        services.compliance.handle_opt_out(SESSION_HASH)
        assert not any(services.compliance.get_consent_records(SESSION_HASH).values())
        with services.database.session_scope() as session:
            actions = [row.action for row in session.scalars(select(ConsentAuditLog)).all()]
        assert "opt_out" in actions

    def test_processing_basis_consent(self, services):
        assert services.compliance.validate_processing_basis(SESSION_HASH, "analytics") is False
        services.compliance.process_consent_request(SESSION_HASH, {"analytics": True})
        assert services.compliance.validate_processing_basis(SESSION_HASH, "analytics") is True


class TestExportAndErasure:
    """Right to access and right to erasure."""

    def test_export_contains_everything(self, services):
        _add_session(services, page_views=2)
        services.compliance.process_consent_request(SESSION_HASH, {"analytics": True})

        export = services.compliance.export_user_data(SESSION_HASH)
        assert export["session_hash"] == SESSION_HASH
        assert len(export["page_views"]) == 2
        assert export["session_data"]["session_hash"] == SESSION_HASH
        assert export["consent_records"][0]["consent_type"] == "analytics"

    def test_export_unknown_session(self, services):
        with pytest.raises(SessionNotFoundError):
            services.compliance.export_user_data("missing")

    def test_delete_removes_all_rows(self, services):
        _add_session(services, page_views=3)
        services.compliance.process_consent_request(SESSION_HASH, {"analytics": True})
        with services.database.session_scope() as session:
            session.add(VisitorEvent(session_hash=SESSION_HASH, event_type="click", event_data={}))
            session.add(VisitorRealtime(session_hash=SESSION_HASH, current_page="/", last_activity=utcnow()))

        counts = services.compliance.delete_user_data(SESSION_HASH)

        assert counts == {"page_views": 3, "events": 1, "consents": 1, "realtime": 1, "sessions": 1}
        assert _count(services, VisitorSession) == 0
        assert _count(services, PageView) == 0
        assert _count(services, PrivacyConsent) == 0

    def test_delete_leaves_other_sessions(self, services):
        _add_session(services)
        _add_session(services, session_hash="b" * 64)
        services.compliance.delete_user_data(SESSION_HASH)
        assert _count(services, VisitorSession) == 1
        assert _count(services, PageView) == 1

    def test_delete_unknown_session(self, services):
        with pytest.raises(SessionNotFoundError):
            services.compliance.delete_user_data("missing")


class TestRetention:
    def test_old_rows_deleted(self, services):
        now = utcnow()
        _add_session(services, session_hash="old", created_at=now - timedelta(days=400))
        _add_session(services, session_hash="recent", created_at=now - timedelta(days=1))

        result = services.compliance.apply_retention_policy(now=now)

        assert result.skipped is False
        assert result.page_views_deleted == 1
        assert result.sessions_deleted == 1
        assert _count(services, VisitorSession) == 1
        assert _count(services, PageView) == 1

    def test_page_views_expire_before_sessions(self, services):
        now = utcnow()
        _add_session(services, created_at=now - timedelta(days=20))
        _set_retention(services, page_view_data_days=10)

        result = services.compliance.apply_retention_policy(now=now)

        assert result.page_views_deleted == 1
        assert result.sessions_deleted == 0
        assert _count(services, VisitorSession) == 1

    def test_auto_delete_disabled(self, services):
        _add_session(services, created_at=utcnow() - timedelta(days=400))
        _set_retention(services, enable_auto_delete=False)

        result = services.compliance.apply_retention_policy()

        assert result.skipped is True
        assert _count(services, VisitorSession) == 1


class TestPrivacyRegime:
    @pytest.mark.parametrize(
        "country, region, regime",
        [
            ("DE", None, "GDPR"),
            ("fr", None, "GDPR"),
            ("US", "CA", "CCPA"),
            ("US", "NY", "DEFAULT"),
            ("BR", None, "LGPD"),
            ("CA", None, "PIPEDA"),
            ("JP", None, "DEFAULT"),
            (None, None, "DEFAULT"),
        ],
    )
    def test_regime_by_location(self, services, country, region, regime):
        assert services.compliance.detect_privacy_regime(country, region).regime == regime

    def test_gdpr_requires_consent(self, services):
        regime = services.compliance.detect_privacy_regime("IE")
        assert regime.requires_consent is True
        assert regime.allows_opt_out is False
        assert "erasure" in regime.rights

    def test_ccpa_allows_opt_out(self, services):
        regime = services.compliance.detect_privacy_regime("US", "CA")
        assert regime.requires_consent is False
        assert regime.allows_opt_out is True

    def test_disabled_regulation_falls_back(self, services):
        service = services.privacy_config
        config = service.get_config()
        compliance = config.compliance.model_copy(
            update={"gdpr": config.compliance.gdpr.model_copy(update={"enabled": False})}
        )
        service.update_config(config.model_copy(update={"compliance": compliance}))
        assert services.compliance.detect_privacy_regime("DE").regime == "DEFAULT"
