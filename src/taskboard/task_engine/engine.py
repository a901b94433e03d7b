"""Move coordinator: the single entry-point for changing a task's placement.

Wraps :class:`TaskStore` with authorization, rank computation and
per-column locking.  Every status or position change (drag moves and plain
status edits alike) goes through :meth:`TaskEngine.move_task` or
:meth:`TaskEngine.change_status`.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Iterator, Optional

from ..config import (
    get_assignee_may_reorder,
    get_moves_config,
    get_ranking_config,
    load_board_config,
)
from ..constants import (
    ARTIFACTS_DIR,
    DEFAULT_LOCK_TIMEOUT,
    DEFAULT_MAX_MOVE_ATTEMPTS,
    EVENTS_FILE,
    STATE_DIR_NAME,
)
from ..io_utils import _append_event, _read_events
from ..utils import _parse_iso
from .authz import Actor, ActorCapabilities, CapabilityProvider, DenialReason, can_move
from .errors import MoveConflict, MoveForbidden, TaskNotFound
from .model import Task, TaskPriority, TaskStatus
from .ranking import RankingPolicy
from .store import TaskStore

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Partition locks
# ---------------------------------------------------------------------------

class PartitionLocks:
    """One lock per ``(project_id, status)`` column.

    Locks for several columns are always taken in sorted status order so two
    opposite cross-column moves cannot deadlock.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[tuple[str, str], threading.Lock] = {}

    def _lock_for(self, key: tuple[str, str]) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    @contextmanager
    def hold(self, project_id: str, statuses: Iterable[TaskStatus], timeout: float) -> Iterator[None]:
        keys = sorted({(project_id, TaskStatus(s).value) for s in statuses})
        acquired: list[threading.Lock] = []
        try:
            for key in keys:
                lock = self._lock_for(key)
                if not lock.acquire(timeout=timeout):
                    raise MoveConflict(f"Timed out waiting for column {key[1]} of project {key[0]}")
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

@dataclass
class MoveResult:
    """Authoritative state of the columns touched by a move."""

    task: Task
    source_status: TaskStatus
    destination_status: TaskStatus
    source_column: list[Task] = field(default_factory=list)
    destination_column: list[Task] = field(default_factory=list)
    renumbered: bool = False

    def columns(self) -> dict[TaskStatus, list[Task]]:
        return {
            self.source_status: list(self.source_column),
            self.destination_status: list(self.destination_column),
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "task": self.task.to_dict(),
            "source_status": self.source_status.value,
            "destination_status": self.destination_status.value,
            "source_column": [t.id for t in self.source_column],
            "destination_column": [t.id for t in self.destination_column],
            "columns": {
                status.value: [t.to_dict() for t in tasks]
                for status, tasks in self.columns().items()
            },
            "renumbered": self.renumbered,
        }


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

class TaskEngine:
    """Apply validated, atomic moves to the board.

    Parameters
    ----------
    state_dir:
        Path to the ``.taskboard/`` directory.
    capabilities:
        Authorization collaborator resolving an actor's capabilities.
    """

    def __init__(
        self,
        state_dir: Path,
        capabilities: CapabilityProvider,
        *,
        policy: Optional[RankingPolicy] = None,
        lock_timeout: float = DEFAULT_LOCK_TIMEOUT,
        max_attempts: int = DEFAULT_MAX_MOVE_ATTEMPTS,
        assignee_may_reorder: bool = False,
    ) -> None:
        self.store = TaskStore(state_dir)
        self.capabilities = capabilities
        self.policy = policy or RankingPolicy()
        self.lock_timeout = lock_timeout
        self.max_attempts = max(1, max_attempts)
        self.assignee_may_reorder = assignee_may_reorder
        self._locks = PartitionLocks()
        self._state_dir = state_dir
        self._events_path = state_dir / ARTIFACTS_DIR / EVENTS_FILE

    @classmethod
    def from_project_dir(cls, project_dir: Path, capabilities: CapabilityProvider) -> "TaskEngine":
        """Build an engine honouring ``.taskboard/config.yaml`` under *project_dir*."""
        config, err = load_board_config(project_dir)
        if err:
            logger.warning("Ignoring unreadable board config: %s", err)
        ranking = get_ranking_config(config)
        moves = get_moves_config(config)
        return cls(
            project_dir / STATE_DIR_NAME,
            capabilities,
            policy=RankingPolicy(gap=ranking["gap"], min_spacing=ranking["min_spacing"]),
            lock_timeout=moves["lock_timeout"],
            max_attempts=moves["max_attempts"],
            assignee_may_reorder=get_assignee_may_reorder(config),
        )

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def _emit_event(self, event_type: str, task_id: str, **details: Any) -> None:
        """Append a board event; failures are logged, never raised."""
        payload: dict[str, Any] = {"type": event_type, "task_id": task_id}
        if details:
            payload["details"] = details
        try:
            _append_event(self._events_path, payload)
        except OSError:
            logger.exception("Failed to append task event %s for %s", event_type, task_id)

    def get_recent_events(self, limit: int = 100, since: Optional[str] = None) -> list[dict[str, Any]]:
        if limit < 1:
            return []
        events = _read_events(self._events_path)
        cutoff = _parse_iso(since)
        if cutoff is not None:
            events = [e for e in events if (_parse_iso(e.get("ts")) or cutoff) > cutoff]
        return events[-limit:]

    def get_task_events(self, task_id: str, limit: int = 100) -> list[dict[str, Any]]:
        events = [e for e in _read_events(self._events_path) if str(e.get("task_id")) == task_id]
        return events[-limit:] if limit > 0 else []

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_task(self, task_id: str) -> Task:
        return self.store.get_task(task_id)

    def get_board(self, project_id: str) -> dict[TaskStatus, list[Task]]:
        return self.store.list_by_project(project_id)

    # ------------------------------------------------------------------
    # Task existence (driven by the CRUD collaborator)
    # ------------------------------------------------------------------

    def register_task(
        self,
        project_id: str,
        title: str,
        *,
        status: Any = TaskStatus.NEW,
        assignee_id: Optional[str] = None,
        priority: Any = TaskPriority.MEDIUM,
        task_id: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> Task:
        """Track a newly created task, placing it at the end of its column."""
        column = TaskStatus.parse(status)
        if column is None:
            raise ValueError(f"Unknown status: {status}")
        task = Task(
            project_id=project_id,
            title=title,
            status=column,
            assignee_id=assignee_id,
            priority=TaskPriority(priority) if priority else TaskPriority.MEDIUM,
            metadata=metadata or {},
        )
        if task_id:
            task.id = task_id

        with self._locks.hold(project_id, [column], self.lock_timeout):
            with self.store.transaction() as tx:
                task.rank, renumbered = self.policy.place_in_column(tx.column(project_id, column), None)
                for other_id, rank in (renumbered or {}).items():
                    tx.set_rank(other_id, rank)
                tx.add(task)

        self._emit_event("task.registered", task.id, status=column.value, rank=task.rank)
        logger.info("Registered task %s in %s/%s at rank %s", task.id, project_id, column.value, task.rank)
        return task

    def remove_task(self, task_id: str) -> bool:
        """Forget a deleted task.  Neighbours keep their ranks."""
        removed = self.store.remove(task_id)
        if removed:
            self._emit_event("task.removed", task_id)
            logger.info("Removed task %s", task_id)
        return removed

    # ------------------------------------------------------------------
    # Moves
    # ------------------------------------------------------------------

    def move_task(
        self,
        actor: Actor,
        task_id: str,
        target_status: Any,
        target_index: Optional[int] = None,
    ) -> MoveResult:
        """Move a task to *target_index* of the *target_status* column.

        *target_index* is resolved against the live order of the destination
        column with the moved task left out, clamped to ``[0, len]``.
        ``None`` appends to the end.

        Raises:
            TaskNotFound: The task does not exist (or vanished mid-move).
            MoveForbidden: The authorizer denied the move.
            MoveConflict: The columns could not be locked, or the task kept
                changing underneath us for ``max_attempts`` tries.
        """
        return self._move(actor, task_id, target_status, target_index, status_only=False)

    def change_status(self, actor: Actor, task_id: str, status: Any) -> MoveResult:
        """Non-drag status edit: the task goes to the end of the new column."""
        return self._move(actor, task_id, status, None, status_only=True)

    def _authorize(
        self,
        actor: Actor,
        capabilities: ActorCapabilities,
        task: Task,
        target_status: Any,
        reorder: bool,
    ) -> TaskStatus:
        decision = can_move(
            actor,
            capabilities,
            task,
            target_status,
            reorder,
            assignee_may_reorder=self.assignee_may_reorder,
        )
        if not decision.allowed:
            reason = decision.reason or DenialReason.NO_PERMISSION
            self._emit_event("task.move_denied", task.id, actor=actor.id, reason=reason.value)
            logger.info("Denied move of %s by %s: %s", task.id, actor.id, reason.value)
            raise MoveForbidden(reason, task_id=task.id)
        status = TaskStatus.parse(target_status)
        if status is None:
            raise MoveForbidden(DenialReason.INVALID_STATUS, task_id=task.id)
        return status

    def _move(
        self,
        actor: Actor,
        task_id: str,
        target_status: Any,
        target_index: Optional[int],
        *,
        status_only: bool,
    ) -> MoveResult:
        task = self.store.get_task(task_id)
        capabilities = self.capabilities.get_actor_capabilities(actor)

        for attempt in range(1, self.max_attempts + 1):
            requested = TaskStatus.parse(target_status)
            reorder = not status_only and requested == task.status
            status = self._authorize(actor, capabilities, task, target_status, reorder)
            project_id = task.project_id

            with self._locks.hold(project_id, [task.status, status], self.lock_timeout):
                with self.store.transaction() as tx:
                    live = tx.get(task_id)
                    if live is None:
                        raise TaskNotFound(task_id)
                    if live.version != task.version:
                        # Changed between the unlocked read and the lock; judge it again.
                        logger.info("Task %s changed during move (attempt %d), re-evaluating", task_id, attempt)
                        task = Task.from_dict(live.to_dict())
                        continue

                    source_status = live.status
                    if status_only and status == source_status:
                        column = tx.column(project_id, status)
                        return MoveResult(live, source_status, status, column, list(column))

                    destination = tx.column(project_id, status, exclude=task_id)
                    rank, renumbered = self.policy.place_in_column(destination, target_index)
                    moved = tx.apply_move(
                        task_id,
                        status,
                        rank,
                        renumbered=renumbered,
                        expected_version=task.version,
                    )
                    result = MoveResult(
                        task=moved,
                        source_status=source_status,
                        destination_status=status,
                        source_column=tx.column(project_id, source_status),
                        destination_column=tx.column(project_id, status),
                        renumbered=renumbered is not None,
                    )

            if result.renumbered:
                self._emit_event("task.renumbered", task_id, status=status.value, count=len(renumbered or {}))
                logger.info("Renumbered column %s/%s (%d tasks)", project_id, status.value, len(renumbered or {}))
            self._emit_event(
                "task.moved",
                task_id,
                actor=actor.id,
                from_status=source_status.value,
                to_status=status.value,
                rank=rank,
            )
            logger.info(
                "Moved task %s %s -> %s at rank %s by %s",
                task_id, source_status.value, status.value, rank, actor.id,
            )
            return result

        raise MoveConflict(f"Task {task_id} kept changing during move", task_id=task_id)
