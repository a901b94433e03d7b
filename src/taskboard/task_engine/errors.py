"""Failure taxonomy for board moves.

Every error carries an ``error_kind`` string that survives the trip over
HTTP so the client can pick between removal, rollback and retry.
"""

from __future__ import annotations

from typing import Optional

from .authz import DenialReason


class MoveError(Exception):
    """Base class for all move failures."""

    error_kind = "error"

    def __init__(self, message: str, *, task_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.task_id = task_id

    @property
    def reason(self) -> Optional[str]:
        return None

    def to_detail(self) -> dict[str, Optional[str]]:
        return {"error_kind": self.error_kind, "reason": self.reason, "message": self.message}


class TaskNotFound(MoveError):
    error_kind = "not_found"

    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task {task_id} not found", task_id=task_id)


class MoveForbidden(MoveError):
    error_kind = "forbidden"

    def __init__(self, denial: DenialReason, *, task_id: Optional[str] = None) -> None:
        super().__init__(denial.message, task_id=task_id)
        self.denial = denial

    @property
    def reason(self) -> Optional[str]:
        return self.denial.value


class MoveConflict(MoveError):
    """The store could not serialize the write (lock timeout, stale version)."""

    error_kind = "conflict"
