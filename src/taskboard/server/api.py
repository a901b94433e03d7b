"""FastAPI web server for the task board engine."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from ..config import get_project_managers, load_board_config
from ..task_engine.authz import CapabilityProvider
from ..task_engine.engine import TaskEngine
from .capabilities import RoleCapabilityProvider
from .task_api import create_board_router


def create_app(
    project_dir: Optional[Path] = None,
    capabilities: Optional[CapabilityProvider] = None,
    enable_cors: bool = True,
) -> FastAPI:
    """Create and configure FastAPI application.

    Args:
        project_dir: Directory holding the ``.taskboard/`` state directory.
        capabilities: Authorization collaborator.  Defaults to the role table
            with project managers taken from the board config.
        enable_cors: Whether to enable CORS.

    Returns:
        Configured FastAPI app.
    """
    app = FastAPI(
        title="Task Board Engine",
        description="Ordering and status-transition engine for task boards",
        version="1.0.0",
    )

    if enable_cors:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],  # Configure for production
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    root = (project_dir or Path.cwd()).resolve()
    if capabilities is None:
        config, err = load_board_config(root)
        if err:
            logger.warning("Board config unreadable, using defaults: {}", err)
        capabilities = RoleCapabilityProvider(get_project_managers(config))

    app.state.project_dir = root
    app.state.engine = TaskEngine.from_project_dir(root, capabilities)
    logger.info("Task board engine serving state under {}", root)

    def _get_engine() -> TaskEngine:
        return app.state.engine

    @app.get("/")
    async def index():
        return {
            "name": "Task Board Engine",
            "version": "1.0.0",
            "status": "running",
        }

    app.include_router(create_board_router(_get_engine))
    return app
