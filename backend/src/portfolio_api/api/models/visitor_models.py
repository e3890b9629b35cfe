from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class TrackRequest(BaseModel):
    path: str = Field(..., min_length=1, max_length=255)
    referrer: Optional[str] = Field(None, max_length=2048)


class EventRequest(BaseModel):
    event_type: str = Field(..., min_length=1, max_length=50)
    event_data: Dict[str, Any] = Field(default_factory=dict)


class TrackResponse(BaseModel):
    tracked: bool
    session_hash: Optional[str] = None
    is_new_session: bool = False
    reason: Optional[str] = None
    active_visitors: int = 0


class VisitorConsentRequest(BaseModel):
    session_hash: Optional[str] = Field(None, max_length=64)
    consents: Dict[str, bool] = Field(default_factory=dict)


class MetricsSummaryModel(BaseModel):
    unique_visitors: int = 0
    total_page_views: int = 0
    avg_session_duration: int = 0
    bounce_rate: float = 0.0
    new_visitors: int = 0
    returning_visitors: int = 0


class VisitorStatsResponse(BaseModel):
    today: MetricsSummaryModel
    last_7_days: MetricsSummaryModel
    last_30_days: MetricsSummaryModel
    all_time: MetricsSummaryModel
    realtime_count: int
    trend_comparison: Dict[str, str] = Field(default_factory=dict)


class ActivePage(BaseModel):
    path: str
    visitors: int


class RealtimeResponse(BaseModel):
    realtime_count: int
    active_pages: List[ActivePage] = Field(default_factory=list)
    connected_clients: int = 0


class TimelinePoint(BaseModel):
    timestamp: str
    visitors: int
    page_views: int
    avg_session_time: float


class LocationEntry(BaseModel):
    country_code: str
    country_name: str
    visitor_count: int
    percentage: float


class DeviceBreakdown(BaseModel):
    devices: Dict[str, int] = Field(default_factory=dict)
    browsers: Dict[str, int] = Field(default_factory=dict)
    os: Dict[str, int] = Field(default_factory=dict)
