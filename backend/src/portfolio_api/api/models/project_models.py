from __future__ import annotations

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class ProjectBase(BaseModel):
    # Blank titles are rejected by the service so they map to validation_error.
    title: str = Field(..., max_length=255)
    description: Optional[str] = Field(None, max_length=5000)
    status: Optional[str] = Field(None, max_length=20)
    repo_url: Optional[str] = Field(None, max_length=2048)
    live_url: Optional[str] = Field(None, max_length=2048)
    tags: List[str] = Field(default_factory=list)


class ProjectCreate(ProjectBase):
    owner_id: Optional[UUID] = None


class ProjectUpdate(BaseModel):
    title: Optional[str] = Field(None, max_length=255)
    description: Optional[str] = Field(None, max_length=5000)
    status: Optional[str] = Field(None, max_length=20)
    repo_url: Optional[str] = Field(None, max_length=2048)
    live_url: Optional[str] = Field(None, max_length=2048)
    tags: Optional[List[str]] = None


class Project(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    owner_id: UUID
    title: str
    description: Optional[str] = None
    status: str
    repo_url: Optional[str] = None
    live_url: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime


class ProjectFilter(BaseModel):
    status: Optional[str] = None
    owner_id: Optional[UUID] = None
    tag: Optional[str] = None
    search: Optional[str] = None
    created_from: Optional[datetime] = None
    created_to: Optional[datetime] = None
    include_deleted: bool = False


class ProjectListResponse(BaseModel):
    items: List[Project]
    page: int
    page_size: int
    total: int
    total_pages: int
