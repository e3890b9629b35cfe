"""Portfolio project rows and their tags."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import List, Optional

from sqlalchemy import DateTime, ForeignKey, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..db.database import Base, utcnow

PROJECT_STATUSES = ("draft", "active", "archived")


def _new_id() -> str:
    return str(uuid.uuid4())


class Project(Base):
    __tablename__ = "projects"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    owner_id: Mapped[str] = mapped_column(String(36), index=True)
    title: Mapped[str] = mapped_column(String(255))
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(20), default="draft", index=True)
    repo_url: Mapped[Optional[str]] = mapped_column(String(2048), nullable=True)
    live_url: Mapped[Optional[str]] = mapped_column(String(2048), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True, index=True)

    tag_rows: Mapped[List["ProjectTag"]] = relationship(
        back_populates="project",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="ProjectTag.name",
    )

    @property
    def tags(self) -> List[str]:
        return [row.name for row in self.tag_rows]

    def set_tags(self, tags: List[str]) -> None:
        names = {tag.strip().lower() for tag in tags if tag and tag.strip()}
        existing = {row.name: row for row in self.tag_rows}
        self.tag_rows = [existing.get(name) or ProjectTag(name=name) for name in sorted(names)]


class ProjectTag(Base):
    __tablename__ = "project_tags"
    __table_args__ = (UniqueConstraint("project_id", "name", name="uq_project_tags_project_name"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    project_id: Mapped[str] = mapped_column(
        ForeignKey("projects.id", ondelete="CASCADE"), index=True
    )
    name: Mapped[str] = mapped_column(String(50), index=True)

    project: Mapped[Project] = relationship(back_populates="tag_rows")
