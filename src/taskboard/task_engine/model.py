"""Task model for the status-partitioned task board.

A task sits in exactly one status column and carries a float ``rank`` that
orders it inside that column.  Ranks are sparse and opaque; ties are broken by
task id so every column has a deterministic order.
"""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Optional

from ..utils import _now_iso


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class TaskStatus(str, Enum):
    """Board column a task lives in.  Declaration order is column order."""

    NEW = "NEW"
    IN_PROGRESS = "IN_PROGRESS"
    BLOCKED = "BLOCKED"
    DONE = "DONE"

    @classmethod
    def parse(cls, value: Any) -> Optional["TaskStatus"]:
        """Return the matching status, or ``None`` for unrecognized values."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value))
        except ValueError:
            return None


class TaskPriority(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


COLUMN_ORDER: tuple[TaskStatus, ...] = tuple(TaskStatus)

COLUMN_TITLES: dict[TaskStatus, str] = {
    TaskStatus.NEW: "New",
    TaskStatus.IN_PROGRESS: "In Progress",
    TaskStatus.BLOCKED: "Blocked",
    TaskStatus.DONE: "Done",
}


# ---------------------------------------------------------------------------
# Helper
# ---------------------------------------------------------------------------

def _generate_id() -> str:
    """Short human-friendly task ID: ``task-<8hex>``."""
    return f"task-{uuid.uuid4().hex[:8]}"


def sort_key(task: "Task") -> tuple[float, str]:
    return (task.rank, task.id)


def empty_columns() -> dict[TaskStatus, list["Task"]]:
    return {status: [] for status in COLUMN_ORDER}


def group_by_status(tasks: list["Task"]) -> dict[TaskStatus, list["Task"]]:
    """Partition *tasks* into every column, each sorted by ``(rank, id)``."""
    columns = empty_columns()
    for task in tasks:
        columns[task.status].append(task)
    for status in columns:
        columns[status].sort(key=sort_key)
    return columns


# ---------------------------------------------------------------------------
# Task dataclass
# ---------------------------------------------------------------------------

@dataclass
class Task:
    """A work item on the board.

    Only ``status`` and ``rank`` matter for ordering.  Everything else
    (title, priority, metadata) is payload carried through unchanged.
    """

    # Identity
    id: str = field(default_factory=_generate_id)
    project_id: str = ""
    title: str = ""

    # Placement
    status: TaskStatus = TaskStatus.NEW
    rank: float = 0.0

    # Payload
    assignee_id: Optional[str] = None
    priority: TaskPriority = TaskPriority.MEDIUM
    metadata: dict[str, Any] = field(default_factory=dict)

    # Bookkeeping
    version: int = 0
    created_at: str = field(default_factory=_now_iso)
    updated_at: str = field(default_factory=_now_iso)
    completed_at: Optional[str] = None

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a plain dict for YAML/JSON persistence."""
        data: dict[str, Any] = {}
        for k, v in asdict(self).items():
            if isinstance(v, Enum):
                data[k] = v.value
            else:
                data[k] = v
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Task":
        """Deserialize from a plain dict, coercing enums gracefully."""
        d = dict(data)

        def _enum(enum_cls: type[Enum], key: str, default: Enum) -> Enum:
            raw = d.pop(key, None)
            if raw is None:
                return default
            if isinstance(raw, enum_cls):
                return raw
            try:
                return enum_cls(str(raw))
            except (ValueError, KeyError):
                return default

        status = _enum(TaskStatus, "status", TaskStatus.NEW)
        priority = _enum(TaskPriority, "priority", TaskPriority.MEDIUM)
        assignee = d.pop("assignee_id", None)

        return cls(
            id=str(d.pop("id", None) or _generate_id()),
            project_id=str(d.pop("project_id", "") or ""),
            title=str(d.pop("title", "") or ""),
            status=status,
            rank=float(d.pop("rank", 0.0) or 0.0),
            assignee_id=str(assignee) if assignee is not None else None,
            priority=priority,
            metadata=dict(d.pop("metadata", {}) or {}),
            version=int(d.pop("version", 0) or 0),
            created_at=str(d.pop("created_at", None) or _now_iso()),
            updated_at=str(d.pop("updated_at", None) or _now_iso()),
            completed_at=d.pop("completed_at", None),
        )

    # ------------------------------------------------------------------
    # Placement helpers
    # ------------------------------------------------------------------

    def touch(self) -> None:
        """Bump ``updated_at`` and the optimistic-concurrency version."""
        self.updated_at = _now_iso()
        self.version += 1

    def place(self, status: TaskStatus, rank: float) -> None:
        """Move to *(status, rank)* in one step with timestamp bookkeeping."""
        if status == TaskStatus.DONE and self.status != TaskStatus.DONE:
            self.completed_at = _now_iso()
        elif status != TaskStatus.DONE:
            self.completed_at = None
        self.status = status
        self.rank = rank
        self.touch()
