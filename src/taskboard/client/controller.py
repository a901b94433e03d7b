"""Board controller: optimistic moves with server reconciliation.

Each gesture runs ``IDLE -> DRAGGING -> OPTIMISTIC -> RECONCILING -> IDLE``.
The local board is updated as soon as the card is dropped; the server reply
then either replaces the touched columns or the pre-drag snapshot is put
back.  Only one move is in flight per board.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

import httpx
from loguru import logger

from ..config import get_ranking_config, get_request_timeout
from ..constants import DEFAULT_REQUEST_TIMEOUT
from ..task_engine.model import Task, TaskStatus
from ..task_engine.ranking import RankingPolicy
from .board import BoardSnapshot, BoardState, DropEvent, MoveIntent, translate_drop
from .transport import MoveClient, MoveRejected

SAVE_FAILED_MESSAGE = "could not save, try again"

BoardListener = Callable[[dict[TaskStatus, list[Task]]], None]


class GestureState(str, Enum):
    IDLE = "idle"
    DRAGGING = "dragging"
    OPTIMISTIC = "optimistic"
    RECONCILING = "reconciling"


class MoveOutcome(str, Enum):
    APPLIED = "applied"          # server accepted, columns reconciled
    NOOP = "noop"                # nothing to do (dropped outside / in place)
    ROLLED_BACK = "rolled_back"  # board restored to its pre-drag state
    REMOVED = "removed"          # task no longer exists; dropped locally
    BUSY = "busy"                # another move is still in flight


@dataclass(frozen=True)
class BoardNotice:
    """Message for the user after a failed move."""

    kind: str
    message: str
    reason: Optional[str] = None
    retryable: bool = False


class BoardController:
    def __init__(
        self,
        client: MoveClient,
        project_id: str,
        *,
        policy: Optional[RankingPolicy] = None,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
    ) -> None:
        self.client = client
        self.board = BoardState(project_id)
        self.policy = policy or RankingPolicy()
        self.request_timeout = request_timeout
        self.state = GestureState.IDLE
        self.notice: Optional[BoardNotice] = None
        self._dragging: Optional[str] = None
        self._last_failed: Optional[MoveIntent] = None
        self._listeners: list[BoardListener] = []

    @classmethod
    def from_config(cls, client: MoveClient, project_id: str, config: dict[str, Any]) -> "BoardController":
        """Build a controller using the ranking and timeout settings of a board config."""
        ranking = get_ranking_config(config)
        return cls(
            client,
            project_id,
            policy=RankingPolicy(gap=ranking["gap"], min_spacing=ranking["min_spacing"]),
            request_timeout=get_request_timeout(config),
        )

    # -- rendering collaborator ---------------------------------------------

    @property
    def project_id(self) -> str:
        return self.board.project_id

    @property
    def columns(self) -> dict[TaskStatus, list[Task]]:
        return self.board.columns

    def subscribe(self, listener: BoardListener) -> Callable[[], None]:
        """Call *listener* with the columns after every visible change."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _notify(self) -> None:
        columns = self.board.columns
        for listener in list(self._listeners):
            listener(columns)

    # -- lifecycle ----------------------------------------------------------

    async def load(self) -> None:
        """Hydrate the board from the server."""
        columns = await asyncio.wait_for(self.client.fetch_board(self.project_id), self.request_timeout)
        self.board.hydrate(columns)
        self._notify()

    # -- gestures -----------------------------------------------------------

    @property
    def busy(self) -> bool:
        return self.state in (GestureState.OPTIMISTIC, GestureState.RECONCILING)

    def begin_drag(self, task_id: str) -> bool:
        if self.state != GestureState.IDLE:
            return False
        if self.board.find(task_id) is None:
            return False
        self._dragging = task_id
        self.state = GestureState.DRAGGING
        return True

    def cancel_drag(self) -> None:
        if self.state == GestureState.DRAGGING:
            self._dragging = None
            self.state = GestureState.IDLE

    async def drop(self, event: DropEvent) -> MoveOutcome:
        if self.busy:
            return MoveOutcome.BUSY
        if self.state != GestureState.DRAGGING or self._dragging is None:
            return MoveOutcome.NOOP
        task_id = self._dragging
        self._dragging = None
        intent = translate_drop(self.board, task_id, event)
        if intent is None:
            self.state = GestureState.IDLE
            return MoveOutcome.NOOP
        return await self._run(intent)

    async def retry(self) -> MoveOutcome:
        """Re-send the last move that failed with a retryable notice."""
        if self.busy or self.state == GestureState.DRAGGING:
            return MoveOutcome.BUSY
        if self._last_failed is None or self.notice is None or not self.notice.retryable:
            return MoveOutcome.NOOP
        if self.board.find(self._last_failed.task_id) is None:
            self._last_failed = None
            return MoveOutcome.NOOP
        return await self._run(self._last_failed)

    # -- move pipeline ------------------------------------------------------

    async def _run(self, intent: MoveIntent) -> MoveOutcome:
        snapshot = self.board.snapshot()
        self.notice = None
        self._last_failed = None
        self.board.apply_local_move(intent, self.policy)
        self.state = GestureState.OPTIMISTIC
        self._notify()
        try:
            return await self._commit(intent, snapshot)
        finally:
            self.state = GestureState.IDLE

    async def _commit(self, intent: MoveIntent, snapshot: BoardSnapshot) -> MoveOutcome:
        retried = False
        while True:
            try:
                reply = await asyncio.wait_for(self.client.move(intent), self.request_timeout)
            except MoveRejected as exc:
                if exc.error_kind == "not_found":
                    return self._drop_missing(snapshot, intent)
                if exc.error_kind == "conflict" and not retried:
                    retried = True
                    logger.warning("Move of {} conflicted; retrying against a fresh board", intent.task_id)
                    refreshed = await self._refresh_for_retry(intent)
                    if refreshed is None:
                        return self._drop_missing(snapshot, intent)
                    if refreshed:
                        continue
                    return self._rollback(snapshot, intent, BoardNotice("conflict", SAVE_FAILED_MESSAGE, retryable=True))
                if exc.error_kind == "conflict":
                    notice = BoardNotice("conflict", SAVE_FAILED_MESSAGE, retryable=True)
                else:
                    notice = BoardNotice(exc.error_kind, exc.message, reason=exc.reason)
                return self._rollback(snapshot, intent, notice)
            except (asyncio.TimeoutError, httpx.HTTPError) as exc:
                logger.warning("Move of {} failed in transit: {!r}", intent.task_id, exc)
                return self._rollback(snapshot, intent, BoardNotice("network", SAVE_FAILED_MESSAGE, retryable=True))
            except Exception:
                # Unreadable reply; the server's order is unknown.
                logger.exception("Move of {} got an unusable reply", intent.task_id)
                return self._rollback(snapshot, intent, BoardNotice("error", SAVE_FAILED_MESSAGE, retryable=True))

            self.state = GestureState.RECONCILING
            self.board.replace_columns(reply.columns)
            self._notify()
            return MoveOutcome.APPLIED

    async def _refresh_for_retry(self, intent: MoveIntent) -> Optional[bool]:
        """Reload the board and re-apply *intent*.

        Returns True when ready to retry, False when the board could not be
        fetched, None when the task is gone from the fresh board.
        """
        try:
            fresh = await asyncio.wait_for(self.client.fetch_board(self.project_id), self.request_timeout)
        except (asyncio.TimeoutError, httpx.HTTPError, MoveRejected) as exc:
            logger.warning("Could not refresh board {} for retry: {!r}", self.project_id, exc)
            return False
        self.board.hydrate(fresh)
        if self.board.find(intent.task_id) is None:
            return None
        self.board.apply_local_move(intent, self.policy)
        self.state = GestureState.OPTIMISTIC
        self._notify()
        return True

    def _drop_missing(self, snapshot: BoardSnapshot, intent: MoveIntent) -> MoveOutcome:
        self.board.restore(snapshot)
        self.board.remove_task(intent.task_id)
        logger.info("Task {} vanished; removed from board {}", intent.task_id, self.project_id)
        self._notify()
        return MoveOutcome.REMOVED

    def _rollback(self, snapshot: BoardSnapshot, intent: MoveIntent, notice: BoardNotice) -> MoveOutcome:
        self.board.restore(snapshot)
        self.notice = notice
        if notice.retryable:
            self._last_failed = intent
        logger.info("Rolled back move of {} on board {}: {}", intent.task_id, self.project_id, notice.message)
        self._notify()
        return MoveOutcome.ROLLED_BACK
