"""HTTP transport between the board controller and the move coordinator."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

import httpx

from ..constants import API_PREFIX
from ..task_engine.model import Task, TaskStatus
from .board import MoveIntent


class MoveRejected(Exception):
    """The server answered, and the answer was no."""

    def __init__(self, error_kind: str, message: str, *, reason: Optional[str] = None, status_code: int = 0) -> None:
        super().__init__(message)
        self.error_kind = error_kind
        self.reason = reason
        self.message = message
        self.status_code = status_code


@dataclass
class MoveReply:
    task: Task
    source_status: TaskStatus
    destination_status: TaskStatus
    source_column: list[str]
    destination_column: list[str]
    columns: dict[TaskStatus, list[Task]]
    renumbered: bool = False


def _parse_columns(raw: Any) -> dict[TaskStatus, list[Task]]:
    columns: dict[TaskStatus, list[Task]] = {}
    for key, tasks in (raw or {}).items():
        status = TaskStatus.parse(key)
        if status is None:
            continue
        columns[status] = [Task.from_dict(t) for t in tasks or []]
    return columns


def _raise_for_error(response: httpx.Response) -> None:
    if response.status_code < 400:
        return
    try:
        body = response.json()
    except ValueError:
        body = {}
    detail = body.get("detail") if isinstance(body, dict) else None
    if isinstance(detail, dict) and detail.get("error_kind"):
        raise MoveRejected(
            str(detail["error_kind"]),
            str(detail.get("message") or ""),
            reason=detail.get("reason"),
            status_code=response.status_code,
        )
    raise MoveRejected(
        "error",
        str(detail or response.reason_phrase or f"HTTP {response.status_code}"),
        status_code=response.status_code,
    )


class MoveClient:
    """Thin wrapper over an :class:`httpx.AsyncClient`.

    Network failures surface as ``httpx`` exceptions; server refusals as
    :class:`MoveRejected`.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        *,
        actor_id: Optional[str] = None,
        actor_role: Optional[str] = None,
    ) -> None:
        self._http = http
        self._headers: dict[str, str] = {}
        if actor_id:
            self._headers["X-Actor-Id"] = actor_id
        if actor_role:
            self._headers["X-Actor-Role"] = actor_role

    async def fetch_board(self, project_id: str) -> dict[TaskStatus, list[Task]]:
        response = await self._http.get(f"{API_PREFIX}/projects/{project_id}/board", headers=self._headers)
        _raise_for_error(response)
        return _parse_columns(response.json().get("columns"))

    async def move(self, intent: MoveIntent) -> MoveReply:
        response = await self._http.post(f"{API_PREFIX}/tasks/move", json=intent.to_payload(), headers=self._headers)
        _raise_for_error(response)
        data = response.json()
        return MoveReply(
            task=Task.from_dict(data["task"]),
            source_status=TaskStatus(data["source_status"]),
            destination_status=TaskStatus(data["destination_status"]),
            source_column=list(data.get("source_column") or []),
            destination_column=list(data.get("destination_column") or []),
            columns=_parse_columns(data.get("columns")),
            renumbered=bool(data.get("renumbered", False)),
        )
