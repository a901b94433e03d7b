"""Load optional board configuration from `.taskboard/config.yaml`."""

from __future__ import annotations

from pathlib import Path
from typing import Any

from .constants import (
    CONFIG_FILE,
    DEFAULT_LOCK_TIMEOUT,
    DEFAULT_MAX_MOVE_ATTEMPTS,
    DEFAULT_MIN_RANK_SPACING,
    DEFAULT_RANK_GAP,
    DEFAULT_REQUEST_TIMEOUT,
    STATE_DIR_NAME,
)
from .io_utils import _load_data_with_error


def load_board_config(project_dir: Path) -> tuple[dict[str, Any], str | None]:
    """Load the optional board config file.

    Args:
        project_dir: Directory holding the `.taskboard/` state directory.

    Returns:
        A tuple of `(config, error_message)`. If the file is missing, returns `({}, None)`.
    """
    project_dir = project_dir.resolve()
    path = project_dir / STATE_DIR_NAME / CONFIG_FILE
    if not path.exists():
        return {}, None
    data, err = _load_data_with_error(path, {})
    if err:
        return {}, err
    return data, None


def _get_nested(config: dict[str, Any], *keys: str) -> Any:
    cur: Any = config
    for key in keys:
        if not isinstance(cur, dict):
            return None
        cur = cur.get(key)
    return cur


def _positive_number(raw: Any, default: float) -> float:
    if isinstance(raw, bool) or not isinstance(raw, (int, float)):
        return default
    return float(raw) if raw > 0 else default


def get_ranking_config(config: dict[str, Any]) -> dict[str, float]:
    """Extract the rank gap and minimum spacing.

    Args:
        config: Board configuration dictionary.

    Returns:
        A mapping with `gap` and `min_spacing`, falling back to defaults for
        missing or non-positive values, or for a spacing that does not fit
        twice inside the gap.
    """
    gap = _positive_number(_get_nested(config, "ranking", "gap"), DEFAULT_RANK_GAP)
    min_spacing = _positive_number(_get_nested(config, "ranking", "min_spacing"), DEFAULT_MIN_RANK_SPACING)
    if min_spacing >= gap / 2:
        return {"gap": DEFAULT_RANK_GAP, "min_spacing": DEFAULT_MIN_RANK_SPACING}
    return {"gap": gap, "min_spacing": min_spacing}


def get_moves_config(config: dict[str, Any]) -> dict[str, Any]:
    """Extract lock timeout and retry limits for the move coordinator."""
    attempts = _get_nested(config, "moves", "max_attempts")
    if isinstance(attempts, bool) or not isinstance(attempts, int) or attempts < 1:
        attempts = DEFAULT_MAX_MOVE_ATTEMPTS
    return {
        "lock_timeout": _positive_number(_get_nested(config, "moves", "lock_timeout"), DEFAULT_LOCK_TIMEOUT),
        "max_attempts": attempts,
    }


def get_assignee_may_reorder(config: dict[str, Any]) -> bool:
    return _get_nested(config, "authz", "assignee_may_reorder") is True


def get_request_timeout(config: dict[str, Any]) -> float:
    return _positive_number(_get_nested(config, "client", "request_timeout"), DEFAULT_REQUEST_TIMEOUT)


def get_project_managers(config: dict[str, Any]) -> dict[str, str]:
    """Return the `project_id -> manager actor id` mapping, skipping bad entries."""
    raw = config.get("project_managers")
    if not isinstance(raw, dict):
        return {}
    return {str(k): str(v) for k, v in raw.items() if v is not None}
