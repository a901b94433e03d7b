"""Gap-based rank assignment for board columns.

New ranks are placed between neighbours (midpoint) or one ``gap`` beyond the
column edges, so a move normally rewrites a single row.  When two neighbours
are too close to split, the whole column is renumbered to ``0, gap, 2*gap``
before the insertion point is recomputed.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

from ..constants import DEFAULT_MIN_RANK_SPACING, DEFAULT_RANK_GAP
from .model import Task


@dataclass(frozen=True)
class Placement:
    """Where an inserted item lands.

    ``renumbered`` is ``None`` unless the column had to be rewritten, in which
    case it holds the new ranks of the existing items in their current order.
    """

    rank: float
    index: int
    renumbered: Optional[list[float]] = None


class RankingPolicy:
    def __init__(self, gap: float = DEFAULT_RANK_GAP, min_spacing: float = DEFAULT_MIN_RANK_SPACING) -> None:
        if gap <= 0:
            raise ValueError("gap must be positive")
        if min_spacing <= 0 or min_spacing >= gap / 2:
            raise ValueError("min_spacing must be positive and smaller than half the gap")
        self.gap = float(gap)
        self.min_spacing = float(min_spacing)

    def clamp(self, index: Optional[int], length: int) -> int:
        if index is None:
            return length
        return max(0, min(int(index), length))

    def renumber(self, count: int) -> list[float]:
        return [i * self.gap for i in range(count)]

    def _candidate(self, ranks: Sequence[float], index: int) -> float:
        n = len(ranks)
        if n == 0:
            return 0.0
        if index == 0:
            return ranks[0] - self.gap
        if index == n:
            return ranks[-1] + self.gap
        return (ranks[index - 1] + ranks[index]) / 2.0

    def _fits(self, ranks: Sequence[float], index: int, candidate: float) -> bool:
        if index > 0:
            lower = ranks[index - 1]
            if not candidate > lower or candidate - lower < self.min_spacing:
                return False
        if index < len(ranks):
            upper = ranks[index]
            if not candidate < upper or upper - candidate < self.min_spacing:
                return False
        return True

    def _well_spaced(self, ranks: Sequence[float]) -> bool:
        return all(b - a >= self.min_spacing for a, b in zip(ranks, ranks[1:]))

    def place(self, ranks: Sequence[float], index: Optional[int]) -> Placement:
        """Compute the rank for an item inserted at *index*.

        Args:
            ranks: Ascending ranks of the destination column, not including
                the item being moved.
            index: Target position; clamped to ``[0, len(ranks)]``.  ``None``
                means the end of the column.

        Returns:
            A :class:`Placement`.
        """
        ranks = list(ranks)
        pos = self.clamp(index, len(ranks))
        candidate = self._candidate(ranks, pos)
        if self._well_spaced(ranks) and self._fits(ranks, pos, candidate):
            return Placement(rank=candidate, index=pos)

        # Precision exhausted: rewrite the column with full gaps and retry.
        fresh = self.renumber(len(ranks))
        return Placement(rank=self._candidate(fresh, pos), index=pos, renumbered=fresh)

    def place_in_column(
        self,
        column: Sequence[Task],
        index: Optional[int],
    ) -> tuple[float, Optional[dict[str, float]]]:
        """Place into an ordered column of tasks.

        Returns:
            ``(rank, renumbered)`` where ``renumbered`` maps task id to new
            rank for every neighbour, or ``None`` when no neighbour moves.
        """
        placement = self.place([t.rank for t in column], index)
        if placement.renumbered is None:
            return placement.rank, None
        return placement.rank, {t.id: r for t, r in zip(column, placement.renumbered)}
