"""Board API endpoints.

This module provides a FastAPI router for reading boards, moving tasks and
receiving task existence events.  It is mounted under ``/api/v1`` by the
``create_app`` factory.
"""

from __future__ import annotations

from typing import Any, NoReturn

from fastapi import APIRouter, Depends, HTTPException, Query
from loguru import logger

from ..constants import API_PREFIX
from ..task_engine.authz import Actor
from ..task_engine.engine import TaskEngine
from ..task_engine.errors import MoveError
from ..task_engine.model import COLUMN_ORDER, COLUMN_TITLES, Task, TaskStatus
from .auth import get_actor
from .models import (
    BoardResponse,
    ColumnInfo,
    ColumnsResponse,
    EventsResponse,
    MoveErrorDetail,
    MoveRequest,
    MoveResponse,
    RegisterTaskRequest,
    StatusChangeRequest,
    TaskResponse,
)

_ERROR_STATUS = {
    "not_found": 404,
    "forbidden": 403,
    "conflict": 409,
}


def _raise_move_error(exc: MoveError) -> NoReturn:
    status_code = _ERROR_STATUS.get(exc.error_kind, 400)
    detail = MoveErrorDetail(**exc.to_detail())
    raise HTTPException(status_code=status_code, detail=detail.model_dump()) from exc


def _columns_payload(columns: dict[TaskStatus, list[Task]]) -> dict[str, list[dict[str, Any]]]:
    return {status.value: [t.to_dict() for t in tasks] for status, tasks in columns.items()}


# ---------------------------------------------------------------------------
# Router factory
# ---------------------------------------------------------------------------

def create_board_router(get_engine: Any) -> APIRouter:
    """Create the board API router.

    Parameters
    ----------
    get_engine:
        A zero-argument callable returning the app's :class:`TaskEngine`.
    """
    router = APIRouter(prefix=API_PREFIX, tags=["board"])

    # ------------------------------------------------------------------
    # Board reads
    # ------------------------------------------------------------------

    @router.get("/projects/{project_id}/board", response_model=BoardResponse)
    async def get_board(project_id: str) -> BoardResponse:
        engine: TaskEngine = get_engine()
        return BoardResponse(project_id=project_id, columns=_columns_payload(engine.get_board(project_id)))

    @router.get("/meta/columns", response_model=ColumnsResponse)
    async def get_columns() -> ColumnsResponse:
        engine: TaskEngine = get_engine()
        return ColumnsResponse(
            columns=[ColumnInfo(id=s.value, title=COLUMN_TITLES[s]) for s in COLUMN_ORDER],
            rank_gap=engine.policy.gap,
            assignee_may_reorder=engine.assignee_may_reorder,
        )

    # ------------------------------------------------------------------
    # Moves
    # ------------------------------------------------------------------

    @router.post("/tasks/move", response_model=MoveResponse)
    async def move_task(body: MoveRequest, actor: Actor = Depends(get_actor)) -> MoveResponse:
        engine: TaskEngine = get_engine()
        try:
            result = engine.move_task(actor, body.task_id, body.target_status, body.target_index)
        except MoveError as exc:
            logger.warning(
                "Move of {} to {}[{}] by {} failed: {} {}",
                body.task_id, body.target_status, body.target_index, actor.id, exc.error_kind, exc.message,
            )
            _raise_move_error(exc)
        return MoveResponse(**result.to_dict())

    @router.patch("/tasks/{task_id}/status", response_model=MoveResponse)
    async def change_status(
        task_id: str,
        body: StatusChangeRequest,
        actor: Actor = Depends(get_actor),
    ) -> MoveResponse:
        engine: TaskEngine = get_engine()
        try:
            result = engine.change_status(actor, task_id, body.status)
        except MoveError as exc:
            logger.warning("Status change of {} to {} by {} failed: {}", task_id, body.status, actor.id, exc.error_kind)
            _raise_move_error(exc)
        return MoveResponse(**result.to_dict())

    # ------------------------------------------------------------------
    # Task existence events
    # ------------------------------------------------------------------

    @router.post("/tasks", response_model=TaskResponse, status_code=201)
    async def register_task(body: RegisterTaskRequest) -> TaskResponse:
        engine: TaskEngine = get_engine()
        try:
            task = engine.register_task(
                body.project_id,
                body.title,
                status=body.status,
                assignee_id=body.assignee_id,
                priority=body.priority,
                task_id=body.id,
                metadata=body.metadata,
            )
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return TaskResponse(task=task.to_dict())

    @router.get("/tasks/{task_id}", response_model=TaskResponse)
    async def get_task(task_id: str) -> TaskResponse:
        engine: TaskEngine = get_engine()
        try:
            task = engine.get_task(task_id)
        except MoveError as exc:
            _raise_move_error(exc)
        return TaskResponse(task=task.to_dict())

    @router.delete("/tasks/{task_id}")
    async def remove_task(task_id: str) -> dict[str, str]:
        engine: TaskEngine = get_engine()
        if not engine.remove_task(task_id):
            raise HTTPException(status_code=404, detail=f"Task {task_id} not found")
        return {"status": "removed"}

    @router.get("/tasks/{task_id}/events", response_model=EventsResponse)
    async def get_task_events(task_id: str, limit: int = Query(100, ge=1, le=1000)) -> EventsResponse:
        engine: TaskEngine = get_engine()
        return EventsResponse(events=engine.get_task_events(task_id, limit=limit))

    return router
