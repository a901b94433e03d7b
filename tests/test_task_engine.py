"""Tests for the move coordinator (task_engine/engine.py)."""

from __future__ import annotations

import random
import threading
from pathlib import Path
from typing import Callable

import pytest

from taskboard.server.capabilities import RoleCapabilityProvider
from taskboard.task_engine.authz import Actor, ActorCapabilities, DenialReason
from taskboard.task_engine.engine import TaskEngine
from taskboard.task_engine.errors import MoveConflict, MoveForbidden, TaskNotFound
from taskboard.task_engine.model import Task, TaskStatus

PM = Actor("pm", "PROJECT_MANAGER")
ALICE = Actor("alice", "TEAM_MEMBER")
BOB = Actor("bob", "TEAM_MEMBER")
ADMIN = Actor("root", "ADMIN")


class _HookedProvider(RoleCapabilityProvider):
    """Runs *hook* every time capabilities are looked up."""

    def __init__(self) -> None:
        super().__init__({"p1": "pm"})
        self.hook: Callable[[], None] = lambda: None

    def get_actor_capabilities(self, actor: Actor) -> ActorCapabilities:
        self.hook()
        return super().get_actor_capabilities(actor)


@pytest.fixture
def state_dir(tmp_path: Path) -> Path:
    d = tmp_path / ".taskboard"
    d.mkdir()
    return d


@pytest.fixture
def engine(state_dir: Path) -> TaskEngine:
    return TaskEngine(state_dir, RoleCapabilityProvider({"p1": "pm"}))


def _ids(engine: TaskEngine, status: TaskStatus, project_id: str = "p1") -> list[str]:
    return [t.id for t in engine.get_board(project_id)[status]]


def _seed(engine: TaskEngine, status: TaskStatus, *ranks_by_id: tuple[str, float], assignee: str = "alice") -> None:
    with engine.store.transaction() as tx:
        for task_id, rank in ranks_by_id:
            tx.add(Task(id=task_id, project_id="p1", status=status, rank=rank, assignee_id=assignee))


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------

class TestRegister:
    def test_register_appends(self, engine: TaskEngine) -> None:
        a = engine.register_task("p1", "A")
        b = engine.register_task("p1", "B")
        c = engine.register_task("p1", "C", status="DONE")
        assert a.rank == 0.0
        assert b.rank == 10.0
        assert c.rank == 0.0
        assert _ids(engine, TaskStatus.NEW) == [a.id, b.id]
        assert _ids(engine, TaskStatus.DONE) == [c.id]

    def test_register_with_explicit_id(self, engine: TaskEngine) -> None:
        task = engine.register_task("p1", "A", task_id="task-fixed", metadata={"source": "crud"})
        assert engine.get_task("task-fixed").metadata == {"source": "crud"}
        assert task.id == "task-fixed"

    def test_register_unknown_status(self, engine: TaskEngine) -> None:
        with pytest.raises(ValueError, match="Unknown status"):
            engine.register_task("p1", "A", status="ARCHIVED")

    def test_register_duplicate_id(self, engine: TaskEngine) -> None:
        engine.register_task("p1", "A", task_id="t1")
        with pytest.raises(ValueError, match="already exists"):
            engine.register_task("p1", "A again", task_id="t1")

    def test_register_into_tied_column_lands_last(self, engine: TaskEngine) -> None:
        _seed(engine, TaskStatus.NEW, ("a", 100.0), ("b", 100.0))
        task = engine.register_task("p1", "New one")
        assert _ids(engine, TaskStatus.NEW) == ["a", "b", task.id]
        ranks = [t.rank for t in engine.get_board("p1")[TaskStatus.NEW]]
        assert ranks == [0.0, 10.0, 20.0]

    def test_register_into_crowded_column_keeps_ranks_unique(self, engine: TaskEngine) -> None:
        _seed(engine, TaskStatus.NEW, ("a", 10.0), ("b", 10.0 + 1e-12), ("c", 30.0))
        task = engine.register_task("p1", "New one")
        column = engine.get_board("p1")[TaskStatus.NEW]
        assert [t.id for t in column] == ["a", "b", "c", task.id]
        assert len({t.rank for t in column}) == 4

    def test_remove_keeps_neighbour_ranks(self, engine: TaskEngine) -> None:
        _seed(engine, TaskStatus.NEW, ("a", 0.0), ("b", 10.0), ("c", 20.0))
        assert engine.remove_task("b") is True
        assert engine.remove_task("b") is False
        ranks = [t.rank for t in engine.get_board("p1")[TaskStatus.NEW]]
        assert ranks == [0.0, 20.0]


# ---------------------------------------------------------------------------
# Moves
# ---------------------------------------------------------------------------

class TestMoveTask:
    def test_move_to_top_of_column(self, engine: TaskEngine) -> None:
        _seed(engine, TaskStatus.IN_PROGRESS, ("A", 1.0), ("B", 2.0), ("C", 3.0))
        result = engine.move_task(PM, "C", "IN_PROGRESS", 0)
        assert result.task.rank < 1.0
        assert [t.id for t in result.destination_column] == ["C", "A", "B"]
        assert _ids(engine, TaskStatus.IN_PROGRESS) == ["C", "A", "B"]
        assert result.renumbered is False

    def test_cross_column_move_to_end(self, engine: TaskEngine) -> None:
        _seed(engine, TaskStatus.NEW, ("D", 0.0), ("E", 10.0))
        _seed(engine, TaskStatus.DONE, ("X", 5.0), ("Y", 40.0))
        result = engine.move_task(PM, "D", TaskStatus.DONE, 2)

        assert result.source_status == TaskStatus.NEW
        assert result.destination_status == TaskStatus.DONE
        assert [t.id for t in result.source_column] == ["E"]
        assert [t.id for t in result.destination_column] == ["X", "Y", "D"]
        assert result.task.rank > 40.0
        assert result.task.completed_at is not None
        assert _ids(engine, TaskStatus.NEW) == ["E"]

    def test_index_none_appends(self, engine: TaskEngine) -> None:
        _seed(engine, TaskStatus.NEW, ("a", 0.0))
        _seed(engine, TaskStatus.BLOCKED, ("b", 0.0), ("c", 10.0))
        engine.move_task(PM, "a", "BLOCKED")
        assert _ids(engine, TaskStatus.BLOCKED) == ["b", "c", "a"]

    def test_index_is_clamped(self, engine: TaskEngine) -> None:
        _seed(engine, TaskStatus.NEW, ("a", 0.0), ("b", 10.0))
        engine.move_task(PM, "a", "NEW", 50)
        assert _ids(engine, TaskStatus.NEW) == ["b", "a"]

    def test_index_ignores_moved_task(self, engine: TaskEngine) -> None:
        _seed(engine, TaskStatus.NEW, ("a", 0.0), ("b", 10.0), ("c", 20.0))
        engine.move_task(PM, "a", "NEW", 1)
        assert _ids(engine, TaskStatus.NEW) == ["b", "a", "c"]

    def test_move_renumbers_exhausted_column(self, engine: TaskEngine) -> None:
        _seed(engine, TaskStatus.DONE, ("a", 1.00000000001), ("b", 1.00000000002))
        _seed(engine, TaskStatus.NEW, ("t", 0.0))
        result = engine.move_task(PM, "t", "DONE", 1)
        assert result.renumbered is True
        assert [(t.id, t.rank) for t in result.destination_column] == [("a", 0.0), ("t", 5.0), ("b", 10.0)]

    def test_move_bumps_version(self, engine: TaskEngine) -> None:
        _seed(engine, TaskStatus.NEW, ("a", 0.0))
        engine.move_task(PM, "a", "DONE")
        assert engine.get_task("a").version == 1

    def test_missing_task(self, engine: TaskEngine) -> None:
        with pytest.raises(TaskNotFound) as excinfo:
            engine.move_task(PM, "ghost", "DONE", 0)
        assert excinfo.value.error_kind == "not_found"


class TestRankTotality:
    def test_random_moves_keep_ranks_unique(self, engine: TaskEngine) -> None:
        rng = random.Random(7)
        ids = [engine.register_task("p1", f"T{i}").id for i in range(12)]
        statuses = list(TaskStatus)
        for _ in range(150):
            engine.move_task(ADMIN, rng.choice(ids), rng.choice(statuses), rng.randint(0, 12))

        board = engine.get_board("p1")
        assert sum(len(tasks) for tasks in board.values()) == 12
        for tasks in board.values():
            ranks = [t.rank for t in tasks]
            assert len(set(ranks)) == len(ranks)
            assert ranks == sorted(ranks)

    def test_concurrent_moves_into_same_column(self, engine: TaskEngine) -> None:
        ids = [engine.register_task("p1", f"T{i}").id for i in range(8)]
        errors: list[BaseException] = []

        def _worker(task_id: str) -> None:
            try:
                engine.move_task(PM, task_id, "DONE", 0)
            except BaseException as exc:  # pragma: no cover - surfaced below
                errors.append(exc)

        threads = [threading.Thread(target=_worker, args=(tid,)) for tid in ids]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        done = engine.get_board("p1")[TaskStatus.DONE]
        assert len(done) == 8
        assert len({t.rank for t in done}) == 8


class TestAuthorization:
    def test_other_members_task_is_forbidden(self, engine: TaskEngine) -> None:
        _seed(engine, TaskStatus.NEW, ("a", 0.0), assignee="alice")
        with pytest.raises(MoveForbidden) as excinfo:
            engine.move_task(BOB, "a", "DONE")
        assert excinfo.value.reason == DenialReason.NOT_YOUR_TASK.value
        assert excinfo.value.message == "not your task"
        assert engine.get_task("a").status == TaskStatus.NEW

    def test_assignee_may_change_column(self, engine: TaskEngine) -> None:
        _seed(engine, TaskStatus.NEW, ("a", 0.0), assignee="alice")
        engine.move_task(ALICE, "a", "IN_PROGRESS", 0)
        assert engine.get_task("a").status == TaskStatus.IN_PROGRESS

    def test_assignee_reorder_needs_manager(self, engine: TaskEngine) -> None:
        _seed(engine, TaskStatus.NEW, ("a", 0.0), ("b", 10.0), assignee="alice")
        with pytest.raises(MoveForbidden) as excinfo:
            engine.move_task(ALICE, "b", "NEW", 0)
        assert excinfo.value.reason == "reorder_requires_manager"

    def test_assignee_reorder_when_enabled(self, state_dir: Path) -> None:
        engine = TaskEngine(state_dir, RoleCapabilityProvider(), assignee_may_reorder=True)
        _seed(engine, TaskStatus.NEW, ("a", 0.0), ("b", 10.0), assignee="alice")
        engine.move_task(ALICE, "b", "NEW", 0)
        assert _ids(engine, TaskStatus.NEW) == ["b", "a"]

    def test_invalid_status(self, engine: TaskEngine) -> None:
        _seed(engine, TaskStatus.NEW, ("a", 0.0))
        with pytest.raises(MoveForbidden) as excinfo:
            engine.move_task(PM, "a", "ARCHIVED", 0)
        assert excinfo.value.reason == "invalid_status"

    def test_read_only_role(self, engine: TaskEngine) -> None:
        _seed(engine, TaskStatus.NEW, ("a", 0.0), assignee="sam")
        with pytest.raises(MoveForbidden) as excinfo:
            engine.move_task(Actor("sam", "SALES"), "a", "DONE")
        assert excinfo.value.reason == "no_permission"


class TestConflicts:
    def test_lock_timeout_is_conflict(self, state_dir: Path) -> None:
        engine = TaskEngine(state_dir, RoleCapabilityProvider(), lock_timeout=0.05)
        _seed(engine, TaskStatus.NEW, ("a", 0.0))
        with engine._locks.hold("p1", [TaskStatus.DONE], timeout=1):
            with pytest.raises(MoveConflict):
                engine.move_task(ADMIN, "a", "DONE")
        assert engine.get_task("a").status == TaskStatus.NEW

    def test_concurrent_edit_is_reevaluated(self, state_dir: Path) -> None:
        provider = _HookedProvider()
        engine = TaskEngine(state_dir, provider)
        _seed(engine, TaskStatus.NEW, ("a", 0.0), ("b", 10.0))

        def _bump() -> None:
            provider.hook = lambda: None
            engine.store.apply_move("b", TaskStatus.NEW, 20.0)

        provider.hook = _bump
        result = engine.move_task(ADMIN, "b", "DONE")
        assert result.task.status == TaskStatus.DONE
        assert engine.get_task("b").version == 2

    def test_ownership_change_during_move_is_denied(self, state_dir: Path) -> None:
        provider = _HookedProvider()
        engine = TaskEngine(state_dir, provider)
        _seed(engine, TaskStatus.NEW, ("a", 0.0), assignee="alice")

        def _reassign() -> None:
            provider.hook = lambda: None
            with engine.store.transaction() as tx:
                task = tx.get("a")
                task.assignee_id = "bob"
                task.touch()
                tx.dirty = True

        provider.hook = _reassign
        with pytest.raises(MoveForbidden):
            engine.move_task(ALICE, "a", "DONE")
        assert engine.get_task("a").status == TaskStatus.NEW

    def test_attempts_exhausted(self, state_dir: Path) -> None:
        provider = _HookedProvider()
        engine = TaskEngine(state_dir, provider, max_attempts=1)
        _seed(engine, TaskStatus.NEW, ("a", 0.0))
        provider.hook = lambda: engine.store.apply_move("a", TaskStatus.NEW, 5.0)
        with pytest.raises(MoveConflict):
            engine.move_task(ADMIN, "a", "DONE")
        assert engine.get_task("a").status == TaskStatus.NEW

    def test_task_deleted_during_move(self, state_dir: Path) -> None:
        provider = _HookedProvider()
        engine = TaskEngine(state_dir, provider)
        _seed(engine, TaskStatus.NEW, ("a", 0.0))
        provider.hook = lambda: engine.store.remove("a")
        with pytest.raises(TaskNotFound):
            engine.move_task(ADMIN, "a", "DONE")


class TestChangeStatus:
    def test_goes_to_end_of_new_column(self, engine: TaskEngine) -> None:
        _seed(engine, TaskStatus.NEW, ("a", 0.0))
        _seed(engine, TaskStatus.DONE, ("x", 0.0), ("y", 10.0))
        result = engine.change_status(ALICE, "a", "DONE")
        assert [t.id for t in result.destination_column] == ["x", "y", "a"]

    def test_same_status_is_noop(self, engine: TaskEngine) -> None:
        _seed(engine, TaskStatus.NEW, ("a", 0.0), ("b", 10.0))
        result = engine.change_status(ALICE, "a", "NEW")
        assert result.source_status == result.destination_status == TaskStatus.NEW
        assert engine.get_task("a").version == 0

    def test_same_status_not_treated_as_reorder(self, engine: TaskEngine) -> None:
        _seed(engine, TaskStatus.NEW, ("a", 0.0))
        engine.change_status(ALICE, "a", TaskStatus.NEW)

    def test_still_authorized(self, engine: TaskEngine) -> None:
        _seed(engine, TaskStatus.NEW, ("a", 0.0))
        with pytest.raises(MoveForbidden):
            engine.change_status(BOB, "a", "DONE")


class TestEvents:
    def test_move_events_recorded(self, engine: TaskEngine) -> None:
        task = engine.register_task("p1", "A", assignee_id="alice")
        engine.move_task(ALICE, task.id, "DONE")
        types = [e["type"] for e in engine.get_task_events(task.id)]
        assert types == ["task.registered", "task.moved"]

        moved = engine.get_task_events(task.id)[-1]
        assert moved["details"]["from_status"] == "NEW"
        assert moved["details"]["to_status"] == "DONE"
        assert moved["details"]["actor"] == "alice"

    def test_denials_and_renumbers_recorded(self, engine: TaskEngine) -> None:
        _seed(engine, TaskStatus.NEW, ("a", 1.0), ("b", 1.0 + 1e-12), ("c", 5.0))
        with pytest.raises(MoveForbidden):
            engine.move_task(BOB, "c", "NEW", 1)
        engine.move_task(PM, "c", "NEW", 1)
        types = [e["type"] for e in engine.get_task_events("c")]
        assert types == ["task.move_denied", "task.renumbered", "task.moved"]

    def test_recent_events_limit_and_since(self, engine: TaskEngine) -> None:
        for i in range(5):
            engine.register_task("p1", f"T{i}")
        events = engine.get_recent_events(limit=3)
        assert len(events) == 3
        assert engine.get_recent_events(limit=0) == []
        assert engine.get_recent_events(since=events[-1]["ts"]) == []


class TestFromProjectDir:
    def test_reads_config(self, tmp_path: Path) -> None:
        state = tmp_path / ".taskboard"
        state.mkdir()
        (state / "config.yaml").write_text(
            "ranking:\n  gap: 100\nmoves:\n  max_attempts: 5\n  lock_timeout: 2\n"
            "authz:\n  assignee_may_reorder: true\n",
            encoding="utf-8",
        )
        engine = TaskEngine.from_project_dir(tmp_path, RoleCapabilityProvider())
        assert engine.policy.gap == 100.0
        assert engine.max_attempts == 5
        assert engine.lock_timeout == 2.0
        assert engine.assignee_may_reorder is True

        first = engine.register_task("p1", "A")
        second = engine.register_task("p1", "B")
        assert second.rank - first.rank == 100.0

    def test_bad_config_uses_defaults(self, tmp_path: Path) -> None:
        state = tmp_path / ".taskboard"
        state.mkdir()
        (state / "config.yaml").write_text("ranking: [broken", encoding="utf-8")
        engine = TaskEngine.from_project_dir(tmp_path, RoleCapabilityProvider())
        assert engine.policy.gap == 10.0
        assert engine.assignee_may_reorder is False

    def test_tiny_gap_uses_defaults(self, tmp_path: Path) -> None:
        state = tmp_path / ".taskboard"
        state.mkdir()
        (state / "config.yaml").write_text("ranking:\n  gap: 1.0e-10\n", encoding="utf-8")
        engine = TaskEngine.from_project_dir(tmp_path, RoleCapabilityProvider())
        assert engine.policy.gap == 10.0
        assert engine.policy.min_spacing == 1e-9


class TestAuthorizeNarrowing:
    def test_denial_without_reason_is_no_permission(self, engine: TaskEngine, monkeypatch) -> None:
        from taskboard.task_engine import engine as engine_module
        from taskboard.task_engine.authz import Decision

        _seed(engine, TaskStatus.NEW, ("a", 0.0))
        monkeypatch.setattr(engine_module, "can_move", lambda *args, **kwargs: Decision(False))
        with pytest.raises(MoveForbidden) as excinfo:
            engine.move_task(PM, "a", "DONE")
        assert excinfo.value.reason == "no_permission"

    def test_allowed_unknown_status_still_rejected(self, engine: TaskEngine, monkeypatch) -> None:
        from taskboard.task_engine import engine as engine_module
        from taskboard.task_engine.authz import Decision

        _seed(engine, TaskStatus.NEW, ("a", 0.0))
        monkeypatch.setattr(engine_module, "can_move", lambda *args, **kwargs: Decision.allow())
        with pytest.raises(MoveForbidden) as excinfo:
            engine.move_task(PM, "a", "ARCHIVED")
        assert excinfo.value.reason == "invalid_status"
        assert engine.get_task("a").status == TaskStatus.NEW
