from __future__ import annotations

import logging
import math
import uuid
from typing import List, Optional, Tuple, Union
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from ..api.models.project_models import Project, ProjectCreate, ProjectFilter, ProjectUpdate
from ..db.database import Database, utcnow
from ..errors import InvalidProjectError, ProjectNotFoundError
from ..models import PROJECT_STATUSES, ProjectTag
from ..models import Project as ProjectRow

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100
FEATURED_LIMIT = 6


def normalize_pagination(page: int, page_size: int) -> Tuple[int, int]:
    if page < 1:
        page = 1
    if page_size < 1 or page_size > MAX_PAGE_SIZE:
        page_size = DEFAULT_PAGE_SIZE
    return page, page_size


def total_pages(total: int, page_size: int) -> int:
    return math.ceil(total / page_size) if page_size else 0


def _parse_id(value: Union[str, UUID], label: str = "project id") -> str:
    try:
        return str(UUID(str(value)))
    except (ValueError, AttributeError, TypeError) as exc:
        raise InvalidProjectError(f"Invalid {label}: {value}") from exc


def _validate_status(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    status = value.strip().lower()
    if status not in PROJECT_STATUSES:
        raise InvalidProjectError(
            f"Invalid status '{value}'. Must be one of: {', '.join(PROJECT_STATUSES)}"
        )
    return status


def _to_model(row: ProjectRow) -> Project:
    return Project.model_validate(row)


class ProjectService:
    """CRUD for portfolio projects with soft delete."""

    def __init__(self, database: Database) -> None:
        self.database = database

    def _load(self, session: Session, project_id: Union[str, UUID]) -> ProjectRow:
        row = session.get(ProjectRow, _parse_id(project_id))
        if row is None or row.deleted_at is not None:
            raise ProjectNotFoundError(f"Project {project_id} not found")
        return row

    def create(self, data: ProjectCreate, owner_id: Optional[Union[str, UUID]] = None) -> Project:
        title = (data.title or "").strip()
        if not title:
            raise InvalidProjectError("Project title is required")
        owner = data.owner_id or owner_id
        if not owner:
            raise InvalidProjectError("Project owner is required")

        row = ProjectRow(
            id=str(uuid.uuid4()),
            owner_id=_parse_id(owner, "owner id"),
            title=title,
            description=data.description,
            status=_validate_status(data.status) or "draft",
            repo_url=data.repo_url,
            live_url=data.live_url,
        )
        row.set_tags(data.tags)
        with self.database.session_scope() as session:
            session.add(row)
            session.flush()
            project = _to_model(row)
        logger.info("Created project %s (%s)", project.id, project.status)
        return project

    def get(self, project_id: Union[str, UUID]) -> Project:
        with self.database.session_scope() as session:
            return _to_model(self._load(session, project_id))

    def get_by_owner(self, owner_id: Union[str, UUID]) -> List[Project]:
        owner = _parse_id(owner_id, "owner id")
        with self.database.session_scope() as session:
            rows = session.scalars(
                select(ProjectRow)
                .where(ProjectRow.owner_id == owner)
                .where(ProjectRow.deleted_at.is_(None))
                .order_by(ProjectRow.created_at.desc())
            ).all()
            return [_to_model(row) for row in rows]

    def update(self, project_id: Union[str, UUID], changes: ProjectUpdate) -> Project:
        update_data = changes.model_dump(exclude_unset=True)
        with self.database.session_scope() as session:
            row = self._load(session, project_id)
            if "title" in update_data:
                title = (update_data.pop("title") or "").strip()
                if not title:
                    raise InvalidProjectError("Project title cannot be empty")
                row.title = title
            if "status" in update_data:
                status = _validate_status(update_data.pop("status"))
                if status:
                    row.status = status
            if "tags" in update_data:
                row.set_tags(update_data.pop("tags") or [])
            for key, value in update_data.items():
                setattr(row, key, value)
            row.updated_at = utcnow()
            session.flush()
            return _to_model(row)

    def _set_status(self, project_id: Union[str, UUID], status: str) -> Project:
        with self.database.session_scope() as session:
            row = self._load(session, project_id)
            row.status = status
            row.updated_at = utcnow()
            session.flush()
            return _to_model(row)

    def archive(self, project_id: Union[str, UUID]) -> Project:
        return self._set_status(project_id, "archived")

    def activate(self, project_id: Union[str, UUID]) -> Project:
        return self._set_status(project_id, "active")

    def delete(self, project_id: Union[str, UUID]) -> None:
        with self.database.session_scope() as session:
            row = self._load(session, project_id)
            now = utcnow()
            row.deleted_at = now
            row.status = "archived"
            row.updated_at = now
        logger.info("Soft deleted project %s", project_id)

    def list(
        self,
        filters: Optional[ProjectFilter] = None,
        page: int = 1,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> Tuple[List[Project], int]:
        filters = filters or ProjectFilter()
        page, page_size = normalize_pagination(page, page_size)

        stmt = select(ProjectRow)
        if not filters.include_deleted:
            stmt = stmt.where(ProjectRow.deleted_at.is_(None))
        if filters.status:
            stmt = stmt.where(ProjectRow.status == _validate_status(filters.status))
        if filters.owner_id:
            stmt = stmt.where(ProjectRow.owner_id == str(filters.owner_id))
        if filters.tag:
            stmt = stmt.where(
                ProjectRow.tag_rows.any(ProjectTag.name == filters.tag.strip().lower())
            )
        if filters.search:
            pattern = f"%{filters.search.strip()}%"
            stmt = stmt.where(
                or_(ProjectRow.title.ilike(pattern), ProjectRow.description.ilike(pattern))
            )
        if filters.created_from:
            stmt = stmt.where(ProjectRow.created_at >= filters.created_from)
        if filters.created_to:
            stmt = stmt.where(ProjectRow.created_at <= filters.created_to)

        with self.database.session_scope() as session:
            total = session.scalar(select(func.count()).select_from(stmt.subquery())) or 0
            rows = session.scalars(
                stmt.order_by(ProjectRow.created_at.desc(), ProjectRow.id.asc())
                .offset((page - 1) * page_size)
                .limit(page_size)
            ).all()
            return [_to_model(row) for row in rows], total

    def featured(self, limit: int = FEATURED_LIMIT) -> List[Project]:
        items, _ = self.list(ProjectFilter(status="active"), page=1, page_size=limit)
        return items
