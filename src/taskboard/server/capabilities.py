"""Role-table capability provider.

The engine only consumes :class:`ActorCapabilities`.  This module is the
reference implementation of the authorization collaborator: it turns a role
and a project-manager mapping into capabilities.  Deployments with their own
permission tables plug in any object with ``get_actor_capabilities``.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from ..task_engine.authz import Actor, ActorCapabilities


class UserRole(str, Enum):
    ADMIN = "ADMIN"                      # manages every project
    PROJECT_MANAGER = "PROJECT_MANAGER"  # manages the projects they lead
    TEAM_MEMBER = "TEAM_MEMBER"          # moves tasks assigned to them
    SALES = "SALES"                      # read-only on tasks
    FINANCE = "FINANCE"                  # read-only on tasks


# Board capabilities per role
ROLE_CAPABILITIES: dict[str, set[str]] = {
    UserRole.ADMIN.value: {"manage_all_projects", "move_own_tasks"},
    UserRole.PROJECT_MANAGER.value: {"manage_led_projects", "move_own_tasks"},
    UserRole.TEAM_MEMBER.value: {"move_own_tasks"},
    UserRole.SALES.value: set(),
    UserRole.FINANCE.value: set(),
}


class RoleCapabilityProvider:
    """Resolve capabilities from :data:`ROLE_CAPABILITIES`.

    Parameters
    ----------
    project_managers:
        Mapping of ``project_id -> actor id`` of the project's manager.
    """

    def __init__(self, project_managers: Optional[dict[str, str]] = None) -> None:
        self._project_managers: dict[str, str] = dict(project_managers or {})

    def set_project_manager(self, project_id: str, actor_id: str) -> None:
        self._project_managers[project_id] = actor_id

    def led_projects(self, actor_id: str) -> frozenset[str]:
        return frozenset(pid for pid, mid in self._project_managers.items() if mid == actor_id)

    def get_actor_capabilities(self, actor: Actor) -> ActorCapabilities:
        perms = ROLE_CAPABILITIES.get(actor.role.upper(), set())
        scope = self.led_projects(actor.id) if "manage_led_projects" in perms else frozenset()
        return ActorCapabilities(
            project_management_scope=scope,
            manages_all_projects="manage_all_projects" in perms,
            task_ownership="move_own_tasks" in perms,
        )
