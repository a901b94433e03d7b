"""Provide the public `taskboard` package exports."""

from __future__ import annotations

from .task_engine.engine import MoveResult, TaskEngine

__all__ = ["MoveResult", "TaskEngine"]
