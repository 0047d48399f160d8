# election_ledger/voting/selection_tree.py

from typing import List, Optional, Sequence, Tuple

# Tournament (selection) tree over per-candidate vote counts.
#
# Leaves are padded to the next power of two. Every internal node stores the
# index of the leaf that wins its subtree: the larger count wins, and on a tie
# the left (lower-index) child wins. Padding slots hold no candidate and lose
# against any real leaf, so the lowest candidate index wins every tie.


def _next_pow2(n: int) -> int:
    p = 1
    while p < n:
        p <<= 1
    return p


class SelectionTree:
    def __init__(self, counts: Sequence[int]):
        self.build(counts)

    def build(self, counts: Sequence[int]) -> None:
        for c in counts:
            if isinstance(c, bool) or not isinstance(c, int) or c < 0:
                raise ValueError(f"counts must be non-negative integers, got {c!r}")
        self._counts: List[int] = list(counts)
        self.leaf_count = len(self._counts)
        self._base = _next_pow2(max(self.leaf_count, 1))
        self._nodes: List[Optional[int]] = [None] * (2 * self._base)
        for i in range(self.leaf_count):
            self._nodes[self._base + i] = i
        for pos in range(self._base - 1, 0, -1):
            self._nodes[pos] = self._play(self._nodes[2 * pos], self._nodes[2 * pos + 1])

    def _play(self, left: Optional[int], right: Optional[int]) -> Optional[int]:
        if right is None:
            return left
        if left is None:
            return right
        return left if self._counts[left] >= self._counts[right] else right

    def __len__(self) -> int:
        return self.leaf_count

    def count(self, index: int) -> int:
        return self._counts[index]

    def winner(self) -> int:
        """Index of the candidate with the most votes (lowest index on ties)."""
        if self.leaf_count == 0:
            raise ValueError("selection tree has no candidates")
        return self._nodes[1]

    @property
    def winner_value(self) -> int:
        return self._counts[self.winner()]

    def update(self, index: int, count: int) -> None:
        """Set one candidate's count and replay its path to the root, O(log n)."""
        if isinstance(count, bool) or not isinstance(count, int) or count < 0:
            raise ValueError(f"count must be a non-negative integer, got {count!r}")
        self._set(index, count)

    def increment(self, index: int, by: int = 1) -> None:
        self.update(index, self._counts[index] + by)

    def _set(self, index: int, count: int) -> None:
        if not 0 <= index < self.leaf_count:
            raise IndexError(f"candidate index {index} out of range")
        self._counts[index] = count
        pos = (self._base + index) >> 1
        while pos >= 1:
            self._nodes[pos] = self._play(self._nodes[2 * pos], self._nodes[2 * pos + 1])
            pos >>= 1

    def top_k(self, k: int) -> List[Tuple[int, int]]:
        """The k best (index, count) pairs, best first, without sorting.

        Each round takes the root winner and knocks it out of a copy of
        the tree, so ties keep the lower index first.
        """
        k = max(0, min(k, self.leaf_count))
        scratch = SelectionTree.__new__(SelectionTree)
        scratch._counts = list(self._counts)
        scratch.leaf_count = self.leaf_count
        scratch._base = self._base
        scratch._nodes = list(self._nodes)
        ranked = []
        for _ in range(k):
            index = scratch.winner()
            ranked.append((index, self._counts[index]))
            # -1 is below every real count, so a knocked-out leaf never wins again
            scratch._set(index, -1)
        return ranked

    def ranking(self) -> List[Tuple[int, int]]:
        return self.top_k(self.leaf_count)
