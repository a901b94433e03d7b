"""File-based task store with cross-process locking.

Stores tasks for every project in a single YAML file (``tasks.yaml``) inside
the ``.taskboard/`` state directory.  All reads and writes go through
:meth:`TaskStore.transaction`, which holds an exclusive file lock while the
file is loaded, mutated and written back.
"""

from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Mapping, Optional

import yaml

from ..constants import TASKS_FILE, TASKS_LOCK_FILE
from ..io_utils import FileLock, _atomic_write_yaml
from .errors import MoveConflict, TaskNotFound
from .model import Task, TaskStatus, group_by_status, sort_key


# ---------------------------------------------------------------------------
# Low-level I/O
# ---------------------------------------------------------------------------

class StoreCorrupted(RuntimeError):
    """The tasks file exists but cannot be parsed."""


def _load_raw(path: Path) -> list[dict[str, Any]]:
    """Load the raw task list from *path*, returning ``[]`` if missing."""
    if not path.exists():
        return []
    text = path.read_text(encoding="utf-8")
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise StoreCorrupted(f"{path.name}: {exc}") from exc
    if data is None:
        return []
    if not isinstance(data, dict) or not isinstance(data.get("tasks", []), list):
        raise StoreCorrupted(f"{path.name}: expected a mapping with a 'tasks' list")
    return [t for t in data.get("tasks", []) if isinstance(t, dict)]


def _save_raw(path: Path, tasks: list[dict[str, Any]]) -> None:
    """Atomically write *tasks* to *path* (write-tmp-then-rename)."""
    _atomic_write_yaml(path, {"version": 1, "tasks": tasks})


# ---------------------------------------------------------------------------
# TaskStore
# ---------------------------------------------------------------------------

class TaskStore:
    """File-backed store for :class:`Task` objects.

    The store knows nothing about permissions or rank policy; it only keeps
    rows durable and hands them back grouped and ordered.

    Parameters
    ----------
    state_dir:
        Path to the ``.taskboard/`` directory.
    """

    def __init__(self, state_dir: Path) -> None:
        self._state_dir = state_dir
        self._store_path = state_dir / TASKS_FILE
        self._lock_path = state_dir / TASKS_LOCK_FILE

    # -- internal helpers ---------------------------------------------------

    def _load(self) -> list[Task]:
        return [Task.from_dict(d) for d in _load_raw(self._store_path)]

    def _save(self, tasks: list[Task]) -> None:
        _save_raw(self._store_path, [t.to_dict() for t in tasks])

    # -- public API ---------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator[_TaskTx]:
        """Acquire the lock, load tasks, yield a transaction, and save on exit.

        Nothing is written if the block raises.

        Usage::

            with store.transaction() as tx:
                task = tx.get("task-abc123")
                tx.apply_move(task.id, TaskStatus.DONE, 30.0)
        """
        with FileLock(self._lock_path):
            tx = _TaskTx(self._load())
            yield tx
            if tx.dirty:
                self._save(tx.tasks)

    def read_snapshot(self) -> list[Task]:
        """Return a read-only snapshot (no lock held after return)."""
        with FileLock(self._lock_path):
            return self._load()

    def list_by_project(self, project_id: str) -> dict[TaskStatus, list[Task]]:
        """Every column of *project_id*, each ordered by ``(rank, id)``."""
        return group_by_status([t for t in self.read_snapshot() if t.project_id == project_id])

    def get_task(self, task_id: str) -> Task:
        for t in self.read_snapshot():
            if t.id == task_id:
                return t
        raise TaskNotFound(task_id)

    def add(self, task: Task) -> Task:
        with self.transaction() as tx:
            return tx.add(task)

    def remove(self, task_id: str) -> bool:
        with self.transaction() as tx:
            return tx.remove(task_id)

    def apply_move(
        self,
        task_id: str,
        new_status: TaskStatus,
        new_rank: float,
        *,
        renumbered: Optional[Mapping[str, float]] = None,
        expected_version: Optional[int] = None,
    ) -> Task:
        """Write a task's new placement (and any renumbered neighbours) atomically."""
        with self.transaction() as tx:
            return tx.apply_move(
                task_id,
                new_status,
                new_rank,
                renumbered=renumbered,
                expected_version=expected_version,
            )


class _TaskTx:
    """In-memory transaction over the full task list.

    Mutations are flushed back to disk when the ``transaction``
    context-manager exits.
    """

    def __init__(self, tasks: list[Task]) -> None:
        self.tasks = tasks
        self.dirty = False
        self._index: dict[str, int] = {t.id: i for i, t in enumerate(tasks)}

    # -- lookups ------------------------------------------------------------

    def get(self, task_id: str) -> Optional[Task]:
        idx = self._index.get(task_id)
        return self.tasks[idx] if idx is not None else None

    def column(self, project_id: str, status: TaskStatus, *, exclude: Optional[str] = None) -> list[Task]:
        out = [
            t for t in self.tasks
            if t.project_id == project_id and t.status == status and t.id != exclude
        ]
        out.sort(key=sort_key)
        return out

    def columns(self, project_id: str) -> dict[TaskStatus, list[Task]]:
        return group_by_status([t for t in self.tasks if t.project_id == project_id])

    # -- mutations ----------------------------------------------------------

    def add(self, task: Task) -> Task:
        if task.id in self._index:
            raise ValueError(f"Task {task.id} already exists")
        self._index[task.id] = len(self.tasks)
        self.tasks.append(task)
        self.dirty = True
        return task

    def remove(self, task_id: str) -> bool:
        idx = self._index.pop(task_id, None)
        if idx is None:
            return False
        self.tasks.pop(idx)
        self._index = {t.id: i for i, t in enumerate(self.tasks)}
        self.dirty = True
        return True

    def set_rank(self, task_id: str, rank: float) -> None:
        task = self.get(task_id)
        if task is None:
            raise TaskNotFound(task_id)
        if task.rank != rank:
            task.rank = rank
            task.touch()
            self.dirty = True

    def apply_move(
        self,
        task_id: str,
        new_status: TaskStatus,
        new_rank: float,
        *,
        renumbered: Optional[Mapping[str, float]] = None,
        expected_version: Optional[int] = None,
    ) -> Task:
        task = self.get(task_id)
        if task is None:
            raise TaskNotFound(task_id)
        if expected_version is not None and task.version != expected_version:
            raise MoveConflict(
                f"Task {task_id} changed concurrently (version {task.version}, expected {expected_version})",
                task_id=task_id,
            )
        for other_id, rank in (renumbered or {}).items():
            if other_id != task_id:
                self.set_rank(other_id, rank)
        task.place(new_status, new_rank)
        self.dirty = True
        return task
