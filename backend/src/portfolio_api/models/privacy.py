"""Consent records, consent audit trail and the singleton privacy config row."""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import JSON, Boolean, DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from ..db.database import Base, utcnow

CONSENT_LIFETIME = timedelta(days=365)
PRIVACY_CONFIG_ID = "default"


def _new_id() -> str:
    return str(uuid.uuid4())


def _consent_expiry() -> datetime:
    return utcnow() + CONSENT_LIFETIME


class PrivacyConsent(Base):
    __tablename__ = "privacy_consents"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    session_hash: Mapped[str] = mapped_column(String(64), index=True)
    consent_type: Mapped[str] = mapped_column(String(20))
    granted: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime, default=_consent_expiry)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "session_hash": self.session_hash,
            "consent_type": self.consent_type,
            "granted": self.granted,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
        }


class ConsentAuditLog(Base):
    __tablename__ = "consent_audit_logs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    session_hash: Mapped[str] = mapped_column(String(64), index=True)
    action: Mapped[str] = mapped_column(String(50))
    details: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    ip_address: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


class PrivacyConfigRecord(Base):
    """Single row (id ``default``) holding the active privacy configuration."""

    __tablename__ = "privacy_configs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=PRIVACY_CONFIG_ID)
    enable_tracking: Mapped[bool] = mapped_column(Boolean, default=True)
    privacy_mode: Mapped[str] = mapped_column(String(20), default="balanced")
    data_collection: Mapped[dict] = mapped_column(JSON, default=dict)
    retention: Mapped[dict] = mapped_column(JSON, default=dict)
    compliance: Mapped[dict] = mapped_column(JSON, default=dict)
    anonymization: Mapped[dict] = mapped_column(JSON, default=dict)
    consent: Mapped[dict] = mapped_column(JSON, default=dict)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
