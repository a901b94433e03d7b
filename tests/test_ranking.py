"""Tests for gap-based rank placement (task_engine/ranking.py)."""

from __future__ import annotations

import pytest

from taskboard.task_engine.model import Task, TaskStatus
from taskboard.task_engine.ranking import RankingPolicy


@pytest.fixture
def policy() -> RankingPolicy:
    return RankingPolicy()


def _column(*ranks: float) -> list[Task]:
    return [Task(id=f"t{i}", project_id="p1", status=TaskStatus.NEW, rank=r) for i, r in enumerate(ranks)]


class TestPlace:
    def test_empty_column_gets_zero(self, policy: RankingPolicy) -> None:
        placement = policy.place([], 0)
        assert placement.rank == 0.0
        assert placement.renumbered is None

    def test_top_of_column_is_one_gap_below_first(self, policy: RankingPolicy) -> None:
        placement = policy.place([1.0, 2.0], 0)
        assert placement.rank == -9.0
        assert placement.rank < 1.0
        assert placement.renumbered is None

    def test_end_of_column_is_one_gap_above_last(self, policy: RankingPolicy) -> None:
        assert policy.place([0.0, 10.0], 2).rank == 20.0

    def test_none_means_end(self, policy: RankingPolicy) -> None:
        placement = policy.place([0.0, 10.0], None)
        assert placement.index == 2
        assert placement.rank == 20.0

    def test_between_neighbours_is_midpoint(self, policy: RankingPolicy) -> None:
        assert policy.place([0.0, 10.0, 20.0], 1).rank == 5.0

    def test_index_is_clamped(self, policy: RankingPolicy) -> None:
        assert policy.place([0.0, 10.0], 99).index == 2
        assert policy.place([0.0, 10.0], -5).index == 0

    def test_rank_strictly_between_neighbours(self, policy: RankingPolicy) -> None:
        ranks = [0.0, 10.0, 20.0, 30.0]
        for idx in range(len(ranks) + 1):
            rank = policy.place(ranks, idx).rank
            if idx > 0:
                assert rank > ranks[idx - 1]
            if idx < len(ranks):
                assert rank < ranks[idx]


class TestRenumber:
    def test_exhausted_gap_renumbers_column(self, policy: RankingPolicy) -> None:
        placement = policy.place([1.00000000001, 1.00000000002], 1)
        assert placement.renumbered == [0.0, 10.0]
        assert placement.rank == 5.0

    def test_renumber_keeps_relative_order(self, policy: RankingPolicy) -> None:
        rank, renumbered = policy.place_in_column(_column(1.0, 1.0 + 1e-12, 1.0 + 2e-12), 2)
        assert renumbered == {"t0": 0.0, "t1": 10.0, "t2": 20.0}
        assert 10.0 < rank < 20.0

    def test_repeated_midpoints_eventually_renumber(self, policy: RankingPolicy) -> None:
        ranks = [0.0, 10.0]
        renumbered = False
        for _ in range(200):
            placement = policy.place(ranks, 1)
            if placement.renumbered is not None:
                ranks = placement.renumbered
                renumbered = True
            ranks = sorted(ranks[:1] + [placement.rank] + ranks[1:])
            assert all(b > a for a, b in zip(ranks, ranks[1:]))
        assert renumbered

    def test_no_renumber_when_space_remains(self, policy: RankingPolicy) -> None:
        rank, renumbered = policy.place_in_column(_column(0.0, 10.0), 1)
        assert rank == 5.0
        assert renumbered is None


class TestPolicyValidation:
    def test_rejects_non_positive_gap(self) -> None:
        with pytest.raises(ValueError, match="gap"):
            RankingPolicy(gap=0)

    def test_rejects_spacing_too_large(self) -> None:
        with pytest.raises(ValueError, match="min_spacing"):
            RankingPolicy(gap=10.0, min_spacing=6.0)

    def test_end_of_column_with_custom_gap(self) -> None:
        policy = RankingPolicy(gap=100.0)
        assert policy.place([], None).rank == 0.0
        assert policy.place([0.0, 100.0], None).rank == 200.0

    def test_end_of_tied_column_renumbers(self) -> None:
        rank, renumbered = RankingPolicy().place_in_column(_column(100.0, 100.0), None)
        assert renumbered == {"t0": 0.0, "t1": 10.0}
        assert rank == 20.0
