"""Client-side board cache and drag gesture translation.

:class:`BoardState` is the owned, disposable copy of one project's board.  It
is hydrated on load, replaced column-by-column on every reconciliation and
never treated as authoritative.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, replace
from typing import Any, Mapping, Optional, Sequence

from ..task_engine.model import COLUMN_ORDER, Task, TaskStatus, empty_columns, sort_key
from ..task_engine.ranking import RankingPolicy


@dataclass(frozen=True)
class MoveIntent:
    """What the user asked for: put *task_id* at *target_index* of a column."""

    task_id: str
    target_status: TaskStatus
    target_index: int

    def to_payload(self) -> dict[str, Any]:
        return {
            "task_id": self.task_id,
            "target_status": self.target_status.value,
            "target_index": self.target_index,
        }


@dataclass(frozen=True)
class DropEvent:
    """Where a dragged card was released.

    ``over_task_id`` is set when the card was dropped on another card,
    ``over_column`` when it was dropped on a column's empty space.  Neither
    set means the drop landed outside the board.
    """

    over_task_id: Optional[str] = None
    over_column: Optional[str] = None


@dataclass(frozen=True)
class BoardSnapshot:
    columns: dict[TaskStatus, list[Task]]


def _coerce_status(value: Any) -> TaskStatus:
    status = TaskStatus.parse(value)
    if status is None:
        raise ValueError(f"Unknown status: {value}")
    return status


class BoardState:
    def __init__(self, project_id: str, columns: Optional[Mapping[Any, Sequence[Task]]] = None) -> None:
        self.project_id = project_id
        self._columns: dict[TaskStatus, list[Task]] = empty_columns()
        if columns:
            self.hydrate(columns)

    # -- reads --------------------------------------------------------------

    @property
    def columns(self) -> dict[TaskStatus, list[Task]]:
        """Status -> ordered tasks, in column order, for the renderer."""
        return {status: list(self._columns[status]) for status in COLUMN_ORDER}

    def column(self, status: Any) -> list[Task]:
        return list(self._columns[_coerce_status(status)])

    def ids(self) -> dict[str, list[str]]:
        return {status.value: [t.id for t in tasks] for status, tasks in self._columns.items()}

    def find(self, task_id: str) -> Optional[tuple[TaskStatus, int, Task]]:
        for status, tasks in self._columns.items():
            for idx, task in enumerate(tasks):
                if task.id == task_id:
                    return status, idx, task
        return None

    # -- whole-board lifecycle ----------------------------------------------

    def hydrate(self, columns: Mapping[Any, Sequence[Task]]) -> None:
        fresh = empty_columns()
        for status, tasks in columns.items():
            fresh[_coerce_status(status)] = sorted(tasks, key=sort_key)
        self._columns = fresh

    def snapshot(self) -> BoardSnapshot:
        return BoardSnapshot(copy.deepcopy(self._columns))

    def restore(self, snapshot: BoardSnapshot) -> None:
        self._columns = copy.deepcopy(snapshot.columns)

    # -- mutations ----------------------------------------------------------

    def replace_columns(self, columns: Mapping[Any, Sequence[Task]]) -> None:
        """Adopt the server's version of the given columns.

        Tasks named in the incoming columns are dropped from every other
        column, so applying the same reply twice is a no-op.
        """
        incoming = {_coerce_status(s): sorted(tasks, key=sort_key) for s, tasks in columns.items()}
        incoming_ids = {t.id for tasks in incoming.values() for t in tasks}
        for status in COLUMN_ORDER:
            if status in incoming:
                self._columns[status] = list(incoming[status])
            else:
                self._columns[status] = [t for t in self._columns[status] if t.id not in incoming_ids]

    def remove_task(self, task_id: str) -> bool:
        found = self.find(task_id)
        if found is None:
            return False
        status, idx, _ = found
        self._columns[status].pop(idx)
        return True

    def apply_local_move(self, intent: MoveIntent, policy: RankingPolicy) -> Task:
        """Speculatively apply *intent* the way the server would."""
        found = self.find(intent.task_id)
        if found is None:
            raise KeyError(intent.task_id)
        source, idx, task = found
        self._columns[source].pop(idx)

        destination = self._columns[intent.target_status]
        rank, renumbered = policy.place_in_column(destination, intent.target_index)
        if renumbered:
            destination[:] = [replace(t, rank=renumbered[t.id]) for t in destination]
        moved = replace(task, status=intent.target_status, rank=rank)
        destination.insert(policy.clamp(intent.target_index, len(destination)), moved)
        return moved


def translate_drop(board: BoardState, task_id: str, drop: DropEvent) -> Optional[MoveIntent]:
    """Turn a drop gesture into a move intent, or ``None`` for a no-op.

    Dropping on a card takes that card's slot; dropping on empty column space
    appends to the column; dropping outside the board does nothing.
    """
    found = board.find(task_id)
    if found is None:
        return None
    current_status, current_index, _ = found

    if drop.over_task_id is not None:
        if drop.over_task_id == task_id:
            return None
        over = board.find(drop.over_task_id)
        if over is None:
            return None
        target_status, target_index, _ = over
    elif drop.over_column is not None:
        target_status = TaskStatus.parse(drop.over_column)
        if target_status is None:
            return None
        target_index = len([t for t in board.column(target_status) if t.id != task_id])
    else:
        return None

    if target_status == current_status and target_index == current_index:
        return None
    return MoveIntent(task_id=task_id, target_status=target_status, target_index=target_index)
