"""Visitor tracking, consent and analytics endpoints."""

from __future__ import annotations

import logging
from dataclasses import asdict
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status

from ..container import ServiceContainer
from ..errors import ServiceError, to_http_exception
from ..services.realtime_hub import RealtimeHub
from ..services.visitor_service import VisitorService
from .dependencies import (
    AuthContext,
    enforce_track_rate_limit,
    get_container,
    get_visitor_service,
    require_admin,
)
from .middleware import request_info
from .models.privacy_models import ConsentStatus, PrivacyRegime
from .models.visitor_models import (
    DeviceBreakdown,
    EventRequest,
    LocationEntry,
    RealtimeResponse,
    TimelinePoint,
    TrackRequest,
    TrackResponse,
    VisitorConsentRequest,
    VisitorStatsResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/visitors", tags=["Visitors"])

CONSENT_COOKIE_MAX_AGE = 86400 * 365


def _raise_validation_error(message: str) -> None:
    raise HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail={"code": "validation_error", "message": message},
    )


def build_realtime(service: VisitorService, hub: RealtimeHub) -> RealtimeResponse:
    return RealtimeResponse(
        realtime_count=service.get_realtime_count(),
        active_pages=service.get_active_pages(),
        connected_clients=hub.client_count(),
    )


@router.post(
    "/track",
    response_model=TrackResponse,
    dependencies=[Depends(enforce_track_rate_limit)],
)
def track_page_view(
    payload: TrackRequest,
    request: Request,
    service: VisitorService = Depends(get_visitor_service),
) -> TrackResponse:
    try:
        result = service.track_page_view(request_info(request), payload.path, referrer=payload.referrer)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc
    return TrackResponse(**asdict(result), active_visitors=service.get_realtime_count())


@router.post(
    "/event",
    response_model=TrackResponse,
    dependencies=[Depends(enforce_track_rate_limit)],
)
def track_event(
    payload: EventRequest,
    request: Request,
    service: VisitorService = Depends(get_visitor_service),
) -> TrackResponse:
    result = service.track_event(request_info(request), payload.event_type, payload.event_data)
    return TrackResponse(**asdict(result))


@router.post("/privacy/consent", response_model=ConsentStatus)
def record_consent(
    payload: VisitorConsentRequest,
    request: Request,
    response: Response,
    service: VisitorService = Depends(get_visitor_service),
) -> ConsentStatus:
    if not payload.consents:
        _raise_validation_error("At least one consent decision is required")

    session_hash = payload.session_hash or service.session_hash_for(request_info(request))
    try:
        service.compliance.process_consent_request(
            session_hash,
            payload.consents,
            ip_address=request_info(request).client_ip,
            user_agent=request.headers.get("user-agent"),
        )
    except ServiceError as exc:
        raise to_http_exception(exc) from exc

    response.set_cookie(
        "privacy_consent",
        "granted" if any(payload.consents.values()) else "denied",
        max_age=CONSENT_COOKIE_MAX_AGE,
        path="/",
        secure=True,
        httponly=True,
        samesite="lax",
    )
    return ConsentStatus(session_hash=session_hash, **service.get_consent_status(session_hash))


@router.get("/privacy/consent/{session_hash}", response_model=ConsentStatus)
def get_consent(session_hash: str, service: VisitorService = Depends(get_visitor_service)) -> ConsentStatus:
    return ConsentStatus(session_hash=session_hash, **service.get_consent_status(session_hash))


@router.delete("/privacy/data/{session_hash}")
def erase_data(session_hash: str, service: VisitorService = Depends(get_visitor_service)) -> Dict[str, Any]:
    try:
        deleted = service.erase_session_data(session_hash)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc
    return {
        "success": True,
        "message": "All data associated with this session has been erased",
        "deleted": deleted,
    }


@router.get("/privacy/regime", response_model=PrivacyRegime)
def privacy_regime(
    request: Request,
    country: Optional[str] = Query(None, min_length=2, max_length=2),
    region: Optional[str] = Query(None, max_length=10),
    service: VisitorService = Depends(get_visitor_service),
) -> PrivacyRegime:
    if country is None:
        # Location is resolved in memory only; nothing is persisted.
        location = service.locate(request_info(request))
        if location is not None:
            country = location.country_code
            region = region or location.region
    return service.compliance.detect_privacy_regime(country, region)


@router.get("/analytics/overview", response_model=VisitorStatsResponse)
def analytics_overview(
    auth: AuthContext = Depends(require_admin),
    service: VisitorService = Depends(get_visitor_service),
) -> VisitorStatsResponse:
    return VisitorStatsResponse.model_validate(asdict(service.get_visitor_stats()))


@router.get("/analytics/realtime", response_model=RealtimeResponse)
def analytics_realtime(
    auth: AuthContext = Depends(require_admin),
    service: VisitorService = Depends(get_visitor_service),
    container: ServiceContainer = Depends(get_container),
) -> RealtimeResponse:
    return build_realtime(service, container.hub)


@router.get("/analytics/timeline", response_model=List[TimelinePoint])
def analytics_timeline(
    period: str = Query("7d", pattern="^(1d|7d|30d|1y)$"),
    auth: AuthContext = Depends(require_admin),
    service: VisitorService = Depends(get_visitor_service),
) -> List[TimelinePoint]:
    return [TimelinePoint(**point) for point in service.get_timeline(period)]


@router.get("/analytics/locations", response_model=List[LocationEntry])
def analytics_locations(
    period: str = Query("30d", pattern="^(1d|7d|30d|1y)$"),
    auth: AuthContext = Depends(require_admin),
    service: VisitorService = Depends(get_visitor_service),
) -> List[LocationEntry]:
    return [LocationEntry(**entry) for entry in service.get_location_distribution(period)]


@router.get("/analytics/devices", response_model=DeviceBreakdown)
def analytics_devices(
    period: str = Query("30d", pattern="^(1d|7d|30d|1y)$"),
    auth: AuthContext = Depends(require_admin),
    service: VisitorService = Depends(get_visitor_service),
) -> DeviceBreakdown:
    return DeviceBreakdown(**service.get_device_breakdown(period))
