# devpanel_routes.py
# Admin-only developer panel: service control, metrics, health, logs,
# visitor analytics, project management and privacy configuration.
# Every endpoint requires an admin bearer token.

from __future__ import annotations

import logging
from dataclasses import asdict
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Body, Depends, Query, Response, status

from ..container import ServiceContainer
from ..errors import ServiceError, to_http_exception
from ..services.devpanel_service import DevpanelService
from ..services.privacy_config_service import PrivacyConfigService
from ..services.project_service import ProjectService
from ..services.visitor_service import VisitorService
from .dependencies import (
    AuthContext,
    get_container,
    get_devpanel_service,
    get_privacy_config_service,
    get_project_service,
    get_visitor_service,
    require_admin,
)
from .models.privacy_models import PrivacyConfig, RetentionResult
from .models.project_models import (
    Project,
    ProjectCreate,
    ProjectFilter,
    ProjectListResponse,
    ProjectUpdate,
)
from .models.visitor_models import (
    DeviceBreakdown,
    LocationEntry,
    RealtimeResponse,
    TimelinePoint,
    VisitorStatsResponse,
)
from .project_routes import list_projects_response
from .visitor_routes import build_realtime

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/devpanel",
    tags=["Devpanel"],
    dependencies=[Depends(require_admin)],
)

PERIOD_PATTERN = "^(1d|7d|30d|1y)$"


def _action_response(action: str, name: str) -> Dict[str, Any]:
    return {"success": True, "message": f"Service {name} {action} successfully"}


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------


@router.get("/system")
def system_stats(devpanel: DevpanelService = Depends(get_devpanel_service)) -> Dict[str, Any]:
    return devpanel.collect_system_stats()


@router.get("/services")
def list_services(devpanel: DevpanelService = Depends(get_devpanel_service)) -> List[Dict[str, Any]]:
    return devpanel.list_services()


@router.get("/services/{name}")
def service_stats(name: str, devpanel: DevpanelService = Depends(get_devpanel_service)) -> Dict[str, Any]:
    try:
        return devpanel.collect_service_stats(name)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.post("/services/{name}/start")
def start_service(
    name: str,
    auth: AuthContext = Depends(require_admin),
    devpanel: DevpanelService = Depends(get_devpanel_service),
) -> Dict[str, Any]:
    try:
        devpanel.manager.start(name)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc
    logger.info("Service %s started by %s", name, auth.user_id)
    return _action_response("started", name)


@router.post("/services/{name}/stop")
def stop_service(
    name: str,
    auth: AuthContext = Depends(require_admin),
    devpanel: DevpanelService = Depends(get_devpanel_service),
) -> Dict[str, Any]:
    try:
        devpanel.manager.stop(name)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc
    logger.info("Service %s stopped by %s", name, auth.user_id)
    return _action_response("stopped", name)


@router.post("/services/{name}/restart")
def restart_service(
    name: str,
    auth: AuthContext = Depends(require_admin),
    devpanel: DevpanelService = Depends(get_devpanel_service),
) -> Dict[str, Any]:
    try:
        devpanel.manager.restart(name)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc
    logger.info("Service %s restarted by %s", name, auth.user_id)
    return _action_response("restarted", name)


# ---------------------------------------------------------------------------
# Metrics, health and logs
# ---------------------------------------------------------------------------


@router.get("/metrics/{name}")
def service_metrics(name: str, devpanel: DevpanelService = Depends(get_devpanel_service)) -> Dict[str, Any]:
    try:
        return devpanel.service_metrics(name)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.get("/metrics/{name}/history")
def service_metrics_history(
    name: str,
    duration: str = Query("1h", pattern="^(1h|6h|24h|7d)$"),
    devpanel: DevpanelService = Depends(get_devpanel_service),
) -> Dict[str, Any]:
    try:
        points = devpanel.service_metrics_history(name, duration)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc
    return {"service": name, "duration": duration, "points": points}


@router.get("/health/{name}")
def service_health(name: str, devpanel: DevpanelService = Depends(get_devpanel_service)) -> Dict[str, Any]:
    try:
        return devpanel.service_health(name)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.get("/logs/{name}")
def service_logs(
    name: str,
    limit: int = Query(100),
    devpanel: DevpanelService = Depends(get_devpanel_service),
) -> Dict[str, Any]:
    try:
        logs = devpanel.service_logs(name, limit)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc
    return {"service": name, "logs": logs}


# ---------------------------------------------------------------------------
# Visitor analytics
# ---------------------------------------------------------------------------


@router.get("/visitors/overview", response_model=VisitorStatsResponse)
def visitors_overview(service: VisitorService = Depends(get_visitor_service)) -> VisitorStatsResponse:
    return VisitorStatsResponse.model_validate(asdict(service.get_visitor_stats()))


@router.get("/visitors/realtime", response_model=RealtimeResponse)
def visitors_realtime(
    service: VisitorService = Depends(get_visitor_service),
    container: ServiceContainer = Depends(get_container),
) -> RealtimeResponse:
    return build_realtime(service, container.hub)


@router.get("/visitors/timeline", response_model=List[TimelinePoint])
def visitors_timeline(
    period: str = Query("7d", pattern=PERIOD_PATTERN),
    service: VisitorService = Depends(get_visitor_service),
) -> List[TimelinePoint]:
    return [TimelinePoint(**point) for point in service.get_timeline(period)]


@router.get("/visitors/locations", response_model=List[LocationEntry])
def visitors_locations(
    period: str = Query("30d", pattern=PERIOD_PATTERN),
    service: VisitorService = Depends(get_visitor_service),
) -> List[LocationEntry]:
    return [LocationEntry(**entry) for entry in service.get_location_distribution(period)]


@router.get("/visitors/devices", response_model=DeviceBreakdown)
def visitors_devices(
    period: str = Query("30d", pattern=PERIOD_PATTERN),
    service: VisitorService = Depends(get_visitor_service),
) -> DeviceBreakdown:
    return DeviceBreakdown(**service.get_device_breakdown(period))


@router.post("/visitors/aggregate")
def run_aggregation(container: ServiceContainer = Depends(get_container)) -> Dict[str, Any]:
    container.run_aggregation()
    return {"success": True, "message": "Visitor aggregation completed"}


# ---------------------------------------------------------------------------
# Projects
# ---------------------------------------------------------------------------


@router.get("/projects", response_model=ProjectListResponse)
def list_projects(
    page: int = Query(1),
    page_size: int = Query(10),
    status_filter: Optional[str] = Query(None, alias="status"),
    owner_id: Optional[UUID] = Query(None),
    tag: Optional[str] = Query(None),
    search: Optional[str] = Query(None, max_length=100),
    created_from: Optional[datetime] = Query(None),
    created_to: Optional[datetime] = Query(None),
    service: ProjectService = Depends(get_project_service),
) -> ProjectListResponse:
    filters = ProjectFilter(
        status=status_filter,
        owner_id=owner_id,
        tag=tag,
        search=search,
        created_from=created_from,
        created_to=created_to,
    )
    return list_projects_response(service, filters, page, page_size)


@router.post("/projects", response_model=Project, status_code=status.HTTP_201_CREATED)
def create_project(
    payload: ProjectCreate,
    auth: AuthContext = Depends(require_admin),
    service: ProjectService = Depends(get_project_service),
) -> Project:
    try:
        return service.create(payload, owner_id=payload.owner_id or auth.user_id)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.get("/projects/{project_id}", response_model=Project)
def get_project(project_id: str, service: ProjectService = Depends(get_project_service)) -> Project:
    try:
        return service.get(project_id)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.put("/projects/{project_id}", response_model=Project)
def update_project(
    project_id: str,
    payload: ProjectUpdate,
    service: ProjectService = Depends(get_project_service),
) -> Project:
    try:
        return service.update(project_id, payload)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.delete("/projects/{project_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_project(project_id: str, service: ProjectService = Depends(get_project_service)) -> Response:
    try:
        service.delete(project_id)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/projects/{project_id}/archive", response_model=Project)
def archive_project(project_id: str, service: ProjectService = Depends(get_project_service)) -> Project:
    try:
        return service.archive(project_id)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.post("/projects/{project_id}/activate", response_model=Project)
def activate_project(project_id: str, service: ProjectService = Depends(get_project_service)) -> Project:
    try:
        return service.activate(project_id)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


# ---------------------------------------------------------------------------
# Privacy configuration
# ---------------------------------------------------------------------------


@router.get("/privacy/config", response_model=PrivacyConfig)
def get_privacy_config(service: PrivacyConfigService = Depends(get_privacy_config_service)) -> PrivacyConfig:
    return service.get_config()


@router.put("/privacy/config", response_model=PrivacyConfig)
def update_privacy_config(
    payload: PrivacyConfig,
    auth: AuthContext = Depends(require_admin),
    service: PrivacyConfigService = Depends(get_privacy_config_service),
) -> PrivacyConfig:
    return service.update_config(payload, updated_by=auth.email or auth.user_id)


@router.get("/privacy/config/export")
def export_privacy_config(service: PrivacyConfigService = Depends(get_privacy_config_service)) -> Response:
    return Response(
        content=service.export_config(),
        media_type="application/json",
        headers={"Content-Disposition": "attachment; filename=privacy-config.json"},
    )


@router.post("/privacy/config/import", response_model=PrivacyConfig)
def import_privacy_config(
    payload: Dict[str, Any] = Body(...),
    auth: AuthContext = Depends(require_admin),
    service: PrivacyConfigService = Depends(get_privacy_config_service),
) -> PrivacyConfig:
    try:
        return service.import_config(payload, updated_by=auth.email or auth.user_id)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.post("/privacy/retention/apply", response_model=RetentionResult)
def apply_retention(container: ServiceContainer = Depends(get_container)) -> RetentionResult:
    return container.compliance.apply_retention_policy()
