"""Pydantic request / response models for the board API."""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, Field


class MoveRequest(BaseModel):
    task_id: str
    target_status: str
    target_index: Optional[int] = None  # None = end of column


class StatusChangeRequest(BaseModel):
    status: str


class RegisterTaskRequest(BaseModel):
    """Task-created event forwarded by the CRUD service."""

    project_id: str
    title: str
    id: Optional[str] = None
    status: str = "NEW"
    assignee_id: Optional[str] = None
    priority: str = "MEDIUM"
    metadata: dict[str, Any] = Field(default_factory=dict)


class TaskResponse(BaseModel):
    task: dict[str, Any]


class BoardResponse(BaseModel):
    project_id: str
    columns: dict[str, list[dict[str, Any]]]


class MoveResponse(BaseModel):
    """Authoritative state of both columns touched by a move."""

    task: dict[str, Any]
    source_status: str
    destination_status: str
    source_column: list[str]
    destination_column: list[str]
    columns: dict[str, list[dict[str, Any]]]
    renumbered: bool = False


class MoveErrorDetail(BaseModel):
    error_kind: str
    reason: Optional[str] = None
    message: str = ""


class ColumnInfo(BaseModel):
    id: str
    title: str


class ColumnsResponse(BaseModel):
    columns: list[ColumnInfo]
    rank_gap: float
    assignee_may_reorder: bool


class EventsResponse(BaseModel):
    events: list[dict[str, Any]]
