"""Actor resolution for requests.

Authentication happens upstream; the gateway forwards the authenticated
identity in ``X-Actor-Id`` / ``X-Actor-Role`` headers.
"""

from __future__ import annotations

import os
from typing import Optional

from fastapi import Header, HTTPException

from ..task_engine.authz import Actor


class AuthConfig:
    """Authentication configuration."""

    def __init__(self):
        """Initialize auth config from environment."""
        # Disabled by default for local development
        self.enabled = os.getenv("TASKBOARD_AUTH_ENABLED", "false").lower() == "true"

        # Identity used when auth is disabled and no headers are sent
        self.default_actor = os.getenv("TASKBOARD_DEFAULT_ACTOR", "admin")
        self.default_role = os.getenv("TASKBOARD_DEFAULT_ROLE", "ADMIN")


def resolve_actor(
    actor_id: Optional[str],
    role: Optional[str],
    config: Optional[AuthConfig] = None,
) -> Optional[Actor]:
    """Build the :class:`Actor` for a request.

    Args:
        actor_id: Value of the ``X-Actor-Id`` header.
        role: Value of the ``X-Actor-Role`` header.
        config: Auth settings; read from the environment when omitted.

    Returns:
        The actor, or None when auth is enabled and no identity was forwarded.
    """
    config = config or AuthConfig()
    if actor_id:
        return Actor(id=actor_id, role=(role or "").upper())
    if config.enabled:
        return None
    return Actor(id=config.default_actor, role=config.default_role.upper())


async def get_actor(
    x_actor_id: Optional[str] = Header(None),
    x_actor_role: Optional[str] = Header(None),
) -> Actor:
    """FastAPI dependency returning the authenticated actor or failing with 401."""
    actor = resolve_actor(x_actor_id, x_actor_role)
    if actor is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return actor
