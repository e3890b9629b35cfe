"""GDPR / CCPA / LGPD / PIPEDA handling for visitor data.

Everything here is driven by the privacy config row: which data may be
collected, how IPs are anonymized, how long rows are kept and which legal
basis applies. Multi-table writes (consent batches, erasure, retention) run
in a single transaction.
"""

from __future__ import annotations

import hashlib
import ipaddress
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy import delete, select

from ..api.models.privacy_models import PrivacyRegime, RetentionResult
from ..db.database import Database, utcnow
from ..errors import InvalidConsentError, SessionNotFoundError
from ..models import (
    ConsentAuditLog,
    PageView,
    PrivacyConsent,
    VisitorEvent,
    VisitorRealtime,
    VisitorSession,
)
from .privacy_config_service import PrivacyConfigService

logger = logging.getLogger(__name__)

CONSENT_TYPES = ("analytics", "functional", "marketing")
NECESSARY = "necessary"

EU_COUNTRIES = frozenset(
    {
        "AT", "BE", "BG", "CY", "CZ", "DE", "DK", "EE", "ES", "FI", "FR", "GR", "HR", "HU",
        "IE", "IT", "LT", "LU", "LV", "MT", "NL", "PL", "PT", "RO", "SE", "SI", "SK",
    }
)

_REGIME_RIGHTS = {
    "GDPR": ["access", "rectification", "erasure", "portability", "object"],
    "CCPA": ["access", "deletion", "opt_out", "non_discrimination"],
    "LGPD": ["access", "correction", "erasure", "portability"],
    "PIPEDA": ["access", "correction", "withdraw_consent"],
    "DEFAULT": ["access", "deletion"],
}


class ComplianceService:
    def __init__(self, database: Database, config_service: PrivacyConfigService, contact_email: str) -> None:
        self.database = database
        self.config_service = config_service
        self.contact_email = contact_email

    def check_dnt(self, headers: Mapping[str, str]) -> bool:
        """True when the request sent ``DNT: 1`` and the config respects it."""
        dnt = headers.get("dnt") or headers.get("DNT")
        return dnt == "1" and self.config_service.get_config().data_collection.respect_dnt

    def anonymize_ip(self, ip: str) -> str:
        options = self.config_service.get_config().anonymization
        if not options.anonymize_ip:
            return ip

        candidate = (ip or "").strip()
        try:
            address = ipaddress.ip_address(candidate)
        except ValueError:
            return ""

        mode = options.ip_anonymization_mode
        if mode == "hash":
            return hashlib.sha256(candidate.encode("utf-8")).digest()[:16].hex()

        if mode == "remove_last_octet":
            host_bits = 8 if address.version == 4 else 32
        elif mode == "remove_last_two":
            host_bits = 16 if address.version == 4 else 64
        else:
            return ip

        network = ipaddress.ip_network(f"{address}/{address.max_prefixlen - host_bits}", strict=False)
        return str(network.network_address)

    def process_consent_request(
        self,
        session_hash: str,
        categories: Mapping[str, bool],
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        action: str = "consent_updated",
    ) -> List[Dict[str, Any]]:
        if not session_hash:
            raise InvalidConsentError("session hash required")
        unknown = [name for name in categories if name not in CONSENT_TYPES and name != NECESSARY]
        if unknown:
            raise InvalidConsentError(f"Unknown consent categories: {', '.join(sorted(unknown))}")

        duration = timedelta(days=self.config_service.get_config().consent.consent_duration_days)
        now = utcnow()
        stored: List[Dict[str, Any]] = []
        with self.database.session_scope() as session:
            for category, granted in categories.items():
                # Necessary cookies cannot be refused, so nothing to record.
                if category == NECESSARY:
                    continue
                consent = PrivacyConsent(
                    session_hash=session_hash,
                    consent_type=category,
                    granted=bool(granted),
                    created_at=now,
                    expires_at=now + duration,
                )
                session.add(consent)
                stored.append({"consent_type": category, "granted": bool(granted)})

            session.add(
                ConsentAuditLog(
                    session_hash=session_hash,
                    action=action,
                    details={name: bool(value) for name, value in categories.items()},
                    timestamp=now,
                    ip_address=self.anonymize_ip(ip_address) if ip_address else None,
                    user_agent=user_agent,
                )
            )
        logger.info("Recorded %d consent decisions (%s)", len(stored), action)
        return stored

    def get_consent_records(self, session_hash: str, now: Optional[datetime] = None) -> Dict[str, bool]:
        """Latest unexpired decision per category; missing categories are denied."""
        now = now or utcnow()
        status = {name: False for name in CONSENT_TYPES}
        with self.database.session_scope() as session:
            rows = session.scalars(
                select(PrivacyConsent)
                .where(PrivacyConsent.session_hash == session_hash)
                .where(PrivacyConsent.expires_at > now)
                .order_by(PrivacyConsent.created_at.asc(), PrivacyConsent.id.asc())
            ).all()
            for row in rows:
                if row.consent_type in status:
                    status[row.consent_type] = bool(row.granted)
        return status

    def export_user_data(self, session_hash: str) -> Dict[str, Any]:
        """Everything stored for ``session_hash`` (GDPR Art. 20 portability)."""
        with self.database.session_scope() as session:
            sessions = session.scalars(
                select(VisitorSession)
                .where(VisitorSession.session_hash == session_hash)
                .order_by(VisitorSession.created_at.asc())
            ).all()
            consents = session.scalars(
                select(PrivacyConsent)
                .where(PrivacyConsent.session_hash == session_hash)
                .order_by(PrivacyConsent.created_at.asc())
            ).all()
            if not sessions and not consents:
                raise SessionNotFoundError(f"No data stored for session {session_hash}")

            session_ids = [row.id for row in sessions]
            page_views = []
            if session_ids:
                page_views = session.scalars(
                    select(PageView)
                    .where(PageView.session_id.in_(session_ids))
                    .order_by(PageView.created_at.asc())
                ).all()
            events = session.scalars(
                select(VisitorEvent)
                .where(VisitorEvent.session_hash == session_hash)
                .order_by(VisitorEvent.created_at.asc())
            ).all()

            return {
                "export_date": utcnow().isoformat(),
                "session_hash": session_hash,
                "session_data": sessions[-1].to_dict() if sessions else None,
                "sessions": [row.to_dict() for row in sessions],
                "page_views": [row.to_dict() for row in page_views],
                "events": [row.to_dict() for row in events],
                "consent_records": [row.to_dict() for row in consents],
            }

    def delete_user_data(
        self,
        session_hash: str,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Dict[str, int]:
        """Right to erasure: remove every row tied to ``session_hash``."""
        with self.database.session_scope() as session:
            session_ids = list(
                session.scalars(
                    select(VisitorSession.id).where(VisitorSession.session_hash == session_hash)
                ).all()
            )
            if not session_ids:
                raise SessionNotFoundError(f"Session {session_hash} not found")

            counts = {
                "page_views": session.execute(
                    delete(PageView).where(PageView.session_id.in_(session_ids))
                ).rowcount,
                "events": session.execute(
                    delete(VisitorEvent).where(VisitorEvent.session_hash == session_hash)
                ).rowcount,
                "consents": session.execute(
                    delete(PrivacyConsent).where(PrivacyConsent.session_hash == session_hash)
                ).rowcount,
                "realtime": session.execute(
                    delete(VisitorRealtime).where(VisitorRealtime.session_hash == session_hash)
                ).rowcount,
                "sessions": session.execute(
                    delete(VisitorSession).where(VisitorSession.id.in_(session_ids))
                ).rowcount,
            }
            session.add(
                ConsentAuditLog(
                    session_hash=session_hash,
                    action="data_deleted",
                    details=counts,
                    ip_address=self.anonymize_ip(ip_address) if ip_address else None,
                    user_agent=user_agent,
                )
            )
        logger.info("Erased visitor data: %s", counts)
        return counts

    def get_data_disclosure(self) -> Dict[str, Any]:
        """What we collect and why (CCPA disclosure)."""
        config = self.config_service.get_config()
        collection = config.data_collection
        collected = [
            label
            for label, enabled in (
                ("Browser information", collection.collect_browser_info),
                ("Device information", collection.collect_device_info),
                ("Geographic location (country/region)", collection.collect_geographic_data),
                ("Page views and navigation", collection.collect_session_data),
                ("Referrer information", collection.collect_referrers),
            )
            if enabled
        ]
        return {
            "data_collected": collected,
            "purpose": [
                "Analytics and site improvement",
                "Performance monitoring",
                "User experience optimization",
                "Security and fraud prevention",
            ],
            "data_sharing": {
                "third_parties": [],
                "purpose": "We do not sell or share your data with third parties",
            },
            "retention_period": (
                f"{config.retention.session_data_days} days for session data, "
                f"{config.retention.aggregated_data_days} days for aggregated data"
            ),
            "user_rights": [
                "Right to access your data",
                "Right to delete your data",
                "Right to opt-out of tracking",
                "Right to data portability",
            ],
            "contact_info": self.contact_email,
        }

    def handle_opt_out(self, session_hash: str, ip_address: Optional[str] = None, user_agent: Optional[str] = None):
        return self.process_consent_request(
            session_hash,
            {name: False for name in CONSENT_TYPES},
            ip_address=ip_address,
            user_agent=user_agent,
            action="opt_out",
        )

    def validate_processing_basis(self, session_hash: str, purpose: str, now: Optional[datetime] = None) -> bool:
        """GDPR Art. 6 check for processing ``purpose`` for a session."""
        gdpr = self.config_service.get_config().compliance.gdpr
        if not gdpr.enabled:
            return True

        basis = gdpr.processing_basis
        if basis == "consent":
            return self.get_consent_records(session_hash, now=now).get(purpose, False)
        if basis == "legitimate_interest":
            return purpose in ("analytics", NECESSARY)
        if basis == "contract":
            return True
        return False

    def apply_retention_policy(self, now: Optional[datetime] = None) -> RetentionResult:
        retention = self.config_service.get_config().retention
        if not retention.enable_auto_delete:
            return RetentionResult(skipped=True)

        now = now or utcnow()
        session_cutoff = now - timedelta(days=retention.session_data_days)
        page_view_cutoff = now - timedelta(days=retention.page_view_data_days)
        consent_cutoff = now - timedelta(days=retention.consent_record_days)
        inactive_cutoff = now - timedelta(days=retention.delete_inactive_after)

        with self.database.session_scope() as session:
            page_views_deleted = session.execute(
                delete(PageView).where(PageView.created_at < page_view_cutoff)
            ).rowcount
            sessions_deleted = self._delete_sessions(session, VisitorSession.created_at < session_cutoff)
            consents_deleted = session.execute(
                delete(PrivacyConsent).where(PrivacyConsent.created_at < consent_cutoff)
            ).rowcount
            inactive_deleted = self._delete_sessions(session, VisitorSession.last_seen_at < inactive_cutoff)

        result = RetentionResult(
            page_views_deleted=page_views_deleted,
            sessions_deleted=sessions_deleted,
            consents_deleted=consents_deleted,
            inactive_sessions_deleted=inactive_deleted,
        )
        logger.info("Retention policy applied: %s", result.model_dump())
        return result

    @staticmethod
    def _delete_sessions(session, condition) -> int:
        session_ids = list(session.scalars(select(VisitorSession.id).where(condition)).all())
        if not session_ids:
            return 0
        # Page views reference sessions, so they go first.
        session.execute(delete(PageView).where(PageView.session_id.in_(session_ids)))
        return session.execute(delete(VisitorSession).where(VisitorSession.id.in_(session_ids))).rowcount

    def privacy_policy(self) -> Dict[str, Any]:
        config = self.config_service.get_config()
        return {
            "last_updated": config.updated_at.isoformat() if config.updated_at else None,
            "regulations": {
                "gdpr": config.compliance.gdpr.enabled,
                "ccpa": config.compliance.ccpa.enabled,
                "lgpd": config.compliance.lgpd.enabled,
                "pipeda": config.compliance.pipeda.enabled,
            },
            "data_collection": config.data_collection.model_dump(),
            "retention": config.retention.model_dump(),
            "user_rights": [
                "Right to access",
                "Right to rectification",
                "Right to erasure",
                "Right to data portability",
                "Right to object",
                "Right to opt-out",
            ],
            "contact_info": self.contact_email,
        }

    def detect_privacy_regime(self, country_code: Optional[str], region: Optional[str] = None) -> PrivacyRegime:
        country = (country_code or "").upper()
        region_code = (region or "").upper()
        config = self.config_service.get_config()

        if country in EU_COUNTRIES and config.compliance.gdpr.enabled:
            regime, requires_consent, allows_opt_out = "GDPR", True, False
        elif country == "US" and region_code == "CA" and config.compliance.ccpa.enabled:
            regime, requires_consent, allows_opt_out = "CCPA", False, True
        elif country == "BR" and config.compliance.lgpd.enabled:
            regime, requires_consent, allows_opt_out = "LGPD", True, False
        elif country == "CA" and config.compliance.pipeda.enabled:
            regime, requires_consent, allows_opt_out = "PIPEDA", False, False
        else:
            regime, requires_consent, allows_opt_out = "DEFAULT", False, False

        return PrivacyRegime(
            regime=regime,
            requires_consent=requires_consent,
            allows_opt_out=allows_opt_out,
            retention_days=config.retention.session_data_days,
            rights=list(_REGIME_RIGHTS[regime]),
        )
