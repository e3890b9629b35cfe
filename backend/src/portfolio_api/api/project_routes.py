# project_routes.py
# Public project listing plus admin create/update/delete.
# Service errors map to 400/404 with {"code", "message"} details.

from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status

from ..errors import ServiceError, to_http_exception
from ..services.project_service import ProjectService, normalize_pagination, total_pages
from .dependencies import AuthContext, get_project_service, require_admin
from .models.project_models import (
    Project,
    ProjectCreate,
    ProjectFilter,
    ProjectListResponse,
    ProjectUpdate,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/projects", tags=["Projects"])


def list_projects_response(
    service: ProjectService,
    filters: ProjectFilter,
    page: int,
    page_size: int,
) -> ProjectListResponse:
    page, page_size = normalize_pagination(page, page_size)
    try:
        items, total = service.list(filters, page=page, page_size=page_size)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc
    return ProjectListResponse(
        items=items,
        page=page,
        page_size=page_size,
        total=total,
        total_pages=total_pages(total, page_size),
    )


@router.get("", response_model=ProjectListResponse)
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


@router.get("/featured", response_model=List[Project])
def featured_projects(service: ProjectService = Depends(get_project_service)) -> List[Project]:
    return service.featured()


@router.get("/{project_id}", response_model=Project)
def get_project(project_id: str, service: ProjectService = Depends(get_project_service)) -> Project:
    try:
        return service.get(project_id)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.post("", response_model=Project, status_code=status.HTTP_201_CREATED)
def create_project(
    payload: ProjectCreate,
    auth: AuthContext = Depends(require_admin),
    service: ProjectService = Depends(get_project_service),
) -> Project:
    try:
        return service.create(payload, owner_id=auth.user_id)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.put("/{project_id}", response_model=Project)
def update_project(
    project_id: str,
    payload: ProjectUpdate,
    auth: AuthContext = Depends(require_admin),
    service: ProjectService = Depends(get_project_service),
) -> Project:
    try:
        return service.update(project_id, payload)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.delete("/{project_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_project(
    project_id: str,
    auth: AuthContext = Depends(require_admin),
    service: ProjectService = Depends(get_project_service),
) -> Response:
    try:
        service.delete(project_id)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc
    logger.info("Project %s deleted by %s", project_id, auth.user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
