"""Transition authorizer: decides whether an actor may move a task.

The decision is a pure function of explicit capability data.  Role names are
resolved into :class:`ActorCapabilities` by the capability provider, so
nothing in here branches on role strings.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Protocol

from .model import Task, TaskStatus


class DenialReason(str, Enum):
    NOT_YOUR_TASK = "not_your_task"
    REORDER_REQUIRES_MANAGER = "reorder_requires_manager"
    INVALID_STATUS = "invalid_status"
    NO_PERMISSION = "no_permission"

    @property
    def message(self) -> str:
        return _DENIAL_MESSAGES[self]


_DENIAL_MESSAGES: dict[DenialReason, str] = {
    DenialReason.NOT_YOUR_TASK: "not your task",
    DenialReason.REORDER_REQUIRES_MANAGER: "only the project manager can reorder this column",
    DenialReason.INVALID_STATUS: "unknown status",
    DenialReason.NO_PERMISSION: "you do not have permission to move tasks",
}


@dataclass(frozen=True)
class Actor:
    id: str
    role: str = ""


@dataclass(frozen=True)
class ActorCapabilities:
    """What an actor may do, as reported by the authorization collaborator."""

    project_management_scope: frozenset[str] = frozenset()
    manages_all_projects: bool = False
    task_ownership: bool = False  # may change status of tasks assigned to them

    def manages(self, project_id: str) -> bool:
        return self.manages_all_projects or project_id in self.project_management_scope


class CapabilityProvider(Protocol):
    """Lookup offered by the external authorization collaborator."""

    def get_actor_capabilities(self, actor: Actor) -> ActorCapabilities: ...


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: Optional[DenialReason] = None

    @classmethod
    def allow(cls) -> "Decision":
        return cls(True)

    @classmethod
    def deny(cls, reason: DenialReason) -> "Decision":
        return cls(False, reason)

    def __bool__(self) -> bool:
        return self.allowed


def can_move(
    actor: Actor,
    capabilities: ActorCapabilities,
    task: Task,
    proposed_status: Any,
    same_column_reorder: bool,
    *,
    assignee_may_reorder: bool = False,
) -> Decision:
    """Decide whether *actor* may move *task* to *proposed_status*.

    Args:
        actor: The authenticated actor.
        capabilities: Capabilities of *actor*.
        task: The task as currently stored.
        proposed_status: Destination column; anything that is not a
            :class:`TaskStatus` (or its value) is rejected.
        same_column_reorder: True when the move keeps the status and only
            changes position.
        assignee_may_reorder: Lets assignees reorder inside a column.

    Returns:
        A :class:`Decision`.
    """
    if TaskStatus.parse(proposed_status) is None:
        return Decision.deny(DenialReason.INVALID_STATUS)

    if capabilities.manages(task.project_id):
        return Decision.allow()

    if not capabilities.task_ownership:
        return Decision.deny(DenialReason.NO_PERMISSION)

    if task.assignee_id is None or task.assignee_id != actor.id:
        return Decision.deny(DenialReason.NOT_YOUR_TASK)

    if same_column_reorder and not assignee_may_reorder:
        return Decision.deny(DenialReason.REORDER_REQUIRES_MANAGER)

    return Decision.allow()
