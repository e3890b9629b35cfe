from __future__ import annotations

import json
import logging
import threading
from typing import Any, Dict, Optional, Union

from pydantic import ValidationError

from ..api.models.privacy_models import PrivacyConfig
from ..db.database import Database, utcnow
from ..errors import PrivacyConfigError
from ..models import PRIVACY_CONFIG_ID, PrivacyConfigRecord

logger = logging.getLogger(__name__)

_COLLECTION_FLAGS = {
    "cookies": "collect_cookies",
    "ip": "collect_ip_addresses",
    "user_agent": "collect_user_agents",
    "referrer": "collect_referrers",
    "geographic": "collect_geographic_data",
    "session": "collect_session_data",
    "event": "collect_event_data",
    "device": "collect_device_info",
    "browser": "collect_browser_info",
}

_RETENTION_FIELDS = {
    "session": "session_data_days",
    "page_view": "page_view_data_days",
    "aggregated": "aggregated_data_days",
    "consent": "consent_record_days",
}

DEFAULT_RETENTION_DAYS = 30
REGULATIONS = ("GDPR", "CCPA", "LGPD", "PIPEDA")


class PrivacyConfigService:
    """Caches the singleton privacy config row and answers collection questions."""

    def __init__(self, database: Database) -> None:
        self.database = database
        self._config: Optional[PrivacyConfig] = None
        self._lock = threading.Lock()

    @staticmethod
    def default_config() -> PrivacyConfig:
        return PrivacyConfig(updated_at=utcnow())

    @staticmethod
    def _from_record(record: PrivacyConfigRecord) -> PrivacyConfig:
        return PrivacyConfig.model_validate(
            {
                "enable_tracking": record.enable_tracking,
                "privacy_mode": record.privacy_mode,
                "data_collection": record.data_collection or {},
                "retention": record.retention or {},
                "compliance": record.compliance or {},
                "anonymization": record.anonymization or {},
                "consent": record.consent or {},
                "updated_at": record.updated_at,
                "updated_by": record.updated_by,
            }
        )

    @staticmethod
    def _apply_to_record(record: PrivacyConfigRecord, config: PrivacyConfig) -> None:
        record.enable_tracking = config.enable_tracking
        record.privacy_mode = config.privacy_mode
        record.data_collection = config.data_collection.model_dump()
        record.retention = config.retention.model_dump()
        record.compliance = config.compliance.model_dump()
        record.anonymization = config.anonymization.model_dump()
        record.consent = config.consent.model_dump()
        record.updated_at = config.updated_at or utcnow()
        record.updated_by = config.updated_by

    def load_or_create_default(self) -> PrivacyConfig:
        with self.database.session_scope() as session:
            record = session.get(PrivacyConfigRecord, PRIVACY_CONFIG_ID)
            if record is None:
                config = self.default_config()
                record = PrivacyConfigRecord(id=PRIVACY_CONFIG_ID)
                self._apply_to_record(record, config)
                session.add(record)
                logger.info("Created default privacy configuration")
            else:
                config = self._from_record(record)
        with self._lock:
            self._config = config
        return config

    def get_config(self) -> PrivacyConfig:
        with self._lock:
            config = self._config
        if config is None:
            config = self.load_or_create_default()
        return config

    def update_config(self, config: PrivacyConfig, updated_by: Optional[str] = None) -> PrivacyConfig:
        config = config.model_copy(update={"updated_at": utcnow(), "updated_by": updated_by or config.updated_by})
        with self.database.session_scope() as session:
            record = session.get(PrivacyConfigRecord, PRIVACY_CONFIG_ID)
            if record is None:
                record = PrivacyConfigRecord(id=PRIVACY_CONFIG_ID)
                session.add(record)
            self._apply_to_record(record, config)
        with self._lock:
            self._config = config
        logger.info("Privacy configuration updated by %s", config.updated_by or "unknown")
        return config

    def should_collect(self, data_type: str) -> bool:
        config = self.get_config()
        if not config.enable_tracking:
            return False
        flag = _COLLECTION_FLAGS.get(data_type)
        if flag is None:
            return False
        return bool(getattr(config.data_collection, flag))

    def get_retention_days(self, data_type: str) -> int:
        field = _RETENTION_FIELDS.get(data_type)
        if field is None:
            return DEFAULT_RETENTION_DAYS
        return int(getattr(self.get_config().retention, field))

    def is_compliance_enabled(self, regulation: str) -> bool:
        if regulation.upper() not in REGULATIONS:
            return False
        section = getattr(self.get_config().compliance, regulation.lower())
        return bool(section.enabled)

    def export_config(self) -> str:
        return self.get_config().model_dump_json(indent=2)

    def import_config(self, data: Union[str, bytes, Dict[str, Any]], updated_by: Optional[str] = None) -> PrivacyConfig:
        try:
            if isinstance(data, (str, bytes)):
                payload = json.loads(data)
            else:
                payload = data
            config = PrivacyConfig.model_validate(payload)
        except (ValueError, ValidationError) as exc:
            raise PrivacyConfigError(f"Invalid privacy configuration: {exc}") from exc
        return self.update_config(config, updated_by=updated_by)
