from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field

PrivacyMode = Literal["strict", "balanced", "minimal"]
AnonymizationMode = Literal["remove_last_octet", "remove_last_two", "hash"]
ConsentCategory = Literal["necessary", "analytics", "functional", "marketing"]


class DataCollectionSettings(BaseModel):
    collect_cookies: bool = False
    collect_ip_addresses: bool = False
    collect_user_agents: bool = True
    collect_referrers: bool = True
    collect_geographic_data: bool = True
    collect_session_data: bool = True
    collect_event_data: bool = True
    collect_device_info: bool = True
    collect_browser_info: bool = True
    respect_dnt: bool = True
    anonymous_mode: bool = False


class RetentionSettings(BaseModel):
    enable_auto_delete: bool = True
    session_data_days: int = Field(30, ge=1)
    page_view_data_days: int = Field(90, ge=1)
    aggregated_data_days: int = Field(365, ge=1)
    consent_record_days: int = Field(365, ge=1)
    delete_inactive_after: int = Field(180, ge=1)
    retention_policy: Literal["minimal", "standard", "extended"] = "standard"


class GDPRSettings(BaseModel):
    enabled: bool = True
    require_consent: bool = True
    allow_portability: bool = True
    allow_erasure: bool = True
    processing_basis: Literal["consent", "legitimate_interest", "contract"] = "consent"


class CCPASettings(BaseModel):
    enabled: bool = True
    allow_opt_out: bool = True
    provide_data_disclosure: bool = True
    do_not_sell_data: bool = True


class LGPDSettings(BaseModel):
    enabled: bool = True
    require_consent: bool = True
    allow_portability: bool = True
    allow_erasure: bool = True
    data_processing_basis: str = "consent"


class PIPEDASettings(BaseModel):
    enabled: bool = True
    require_consent: bool = True
    limit_data_collection: bool = True
    provide_access: bool = True


class ComplianceSettings(BaseModel):
    gdpr: GDPRSettings = Field(default_factory=GDPRSettings)
    ccpa: CCPASettings = Field(default_factory=CCPASettings)
    lgpd: LGPDSettings = Field(default_factory=LGPDSettings)
    pipeda: PIPEDASettings = Field(default_factory=PIPEDASettings)


class AnonymizationSettings(BaseModel):
    anonymize_ip: bool = True
    ip_anonymization_mode: AnonymizationMode = "remove_last_octet"
    hash_session_ids: bool = True
    remove_pii: bool = True
    use_fingerprinting: bool = False
    mask_user_agents: bool = False


class ConsentSettings(BaseModel):
    require_explicit_consent: bool = True
    consent_categories: List[ConsentCategory] = Field(
        default_factory=lambda: ["necessary", "analytics", "functional", "marketing"]
    )
    default_consent: Literal["opt-in", "opt-out"] = "opt-in"
    consent_duration_days: int = Field(365, ge=1)
    show_banner: bool = True
    banner_position: Literal["top", "bottom", "center"] = "bottom"
    allow_granular_control: bool = True
    minimum_age: int = Field(16, ge=0)


class PrivacyConfig(BaseModel):
    """Full privacy configuration as stored in the singleton config row."""

    enable_tracking: bool = True
    privacy_mode: PrivacyMode = "balanced"
    data_collection: DataCollectionSettings = Field(default_factory=DataCollectionSettings)
    retention: RetentionSettings = Field(default_factory=RetentionSettings)
    compliance: ComplianceSettings = Field(default_factory=ComplianceSettings)
    anonymization: AnonymizationSettings = Field(default_factory=AnonymizationSettings)
    consent: ConsentSettings = Field(default_factory=ConsentSettings)
    updated_at: Optional[datetime] = None
    updated_by: Optional[str] = None


class ConsentRequest(BaseModel):
    session_hash: str = Field(..., max_length=64)
    categories: Dict[str, bool] = Field(default_factory=dict)


class ConsentStatus(BaseModel):
    session_hash: str
    analytics: bool = False
    functional: bool = False
    marketing: bool = False


class PrivacyRegime(BaseModel):
    regime: str
    requires_consent: bool
    allows_opt_out: bool
    retention_days: int
    rights: List[str] = Field(default_factory=list)


class RetentionResult(BaseModel):
    page_views_deleted: int = 0
    sessions_deleted: int = 0
    consents_deleted: int = 0
    inactive_sessions_deleted: int = 0
    skipped: bool = False
