"""
Sequence alignment of ordered feature-point sequences.

Two feature sequences are aligned like strings: a pair of points whose
distance is small enough scores a match, gaps are penalized. Similarity
is turned into a distance with ``1 - similarity / max_similarity``.

Needleman-Wunsch here keeps a zero boundary row and column and floors each
match gain at zero, so it behaves as a global alignment that never pays
for leading or trailing gaps. Smith-Waterman uses affine gaps (opening
and continuation penalties) with the usual floor at zero.

Feature sets live in a plane, but alignment is one-dimensional. When two
sets do not share an ordering, the distance aligns their X-sorted and
Y-sorted projections separately and averages the two similarities. This
is an approximation of a 2-D alignment, not an exact one.
"""

import os
import logging
from dataclasses import dataclass
from typing import Callable, List, Sequence, Tuple

import numpy as np

logger = logging.getLogger(__name__)

# Matching cost defaults, tuned for byte descriptors such as SIFT or ORB
GAP_OPENING = float(os.environ.get("SEQ_GAP_OPENING", "0.3"))
GAP_CONTINUE = float(os.environ.get("SEQ_GAP_CONTINUE", "0.0"))
EQUALITY_THRESHOLD = float(os.environ.get("SEQ_EQUALITY_THRESHOLD", "120"))
EQUALITY_UPPER_THRESHOLD = float(os.environ.get("SEQ_EQUALITY_UPPER_THRESHOLD", "240"))
MATCH_EXACT = float(os.environ.get("SEQ_MATCH_EXACT", "5.0"))
MATCH_APPROX = float(os.environ.get("SEQ_MATCH_APPROX", "2.0"))
MISMATCH = float(os.environ.get("SEQ_MISMATCH", "-0.5"))


@dataclass(frozen=True)
class SequenceMatchingCost:
    """
    Scores for aligning two feature sequences.

    A pair of points at distance ``d`` scores ``match_exact`` when
    ``d <= equality_threshold``, ``mismatch`` when
    ``d > equality_upper_threshold`` and ``match_approx`` in between.
    """

    gap_opening: float = GAP_OPENING
    gap_continue: float = GAP_CONTINUE
    equality_threshold: float = EQUALITY_THRESHOLD
    equality_upper_threshold: float = EQUALITY_UPPER_THRESHOLD
    match_exact: float = MATCH_EXACT
    match_approx: float = MATCH_APPROX
    mismatch: float = MISMATCH

    def get_cost(self, distance: float) -> float:
        if distance > self.equality_upper_threshold:
            return self.mismatch
        if distance <= self.equality_threshold:
            return self.match_exact
        return self.match_approx

    @property
    def max_cost(self) -> float:
        return self.match_exact


DEFAULT_COST = SequenceMatchingCost()


def cost_matrix(seq_a: Sequence, seq_b: Sequence, cost: SequenceMatchingCost) -> np.ndarray:
    """Matching cost of every point pair, shape ``(len(seq_a), len(seq_b))``."""
    costs = np.empty((len(seq_a), len(seq_b)), dtype=np.float64)
    for i, p in enumerate(seq_a):
        for j, q in enumerate(seq_b):
            costs[i, j] = cost.get_cost(p.get_distance(q))
    return costs


def needleman_wunsch_similarity(seq_a: Sequence, seq_b: Sequence,
                                cost: SequenceMatchingCost = DEFAULT_COST) -> float:
    """
    Global alignment score of two sequences, never below zero.

    ``d[i][j] = max(d[i-1][j] - gap, d[i][j-1] - gap, d[i-1][j-1] + max(0, c))``
    with ``d`` zero on the first row and column.
    """
    n = len(seq_a)
    m = len(seq_b)
    if n == 0 or m == 0:
        return 0.0

    gains = np.maximum(cost_matrix(seq_a, seq_b, cost), 0.0)
    gap = cost.gap_opening
    d = np.zeros((n + 1, m + 1), dtype=np.float64)
    for i in range(1, n + 1):
        for j in range(1, m + 1):
            d[i, j] = max(d[i - 1, j] - gap,
                          d[i, j - 1] - gap,
                          d[i - 1, j - 1] + gains[i - 1, j - 1])
    return max(float(d[n, m]), 0.0)


def smith_waterman_similarity(seq_a: Sequence, seq_b: Sequence,
                              cost: SequenceMatchingCost = DEFAULT_COST) -> float:
    """
    Best local alignment score with affine gaps.

    ``E`` and ``F`` track gaps along each sequence and start at ``-inf``;
    ``H[i][j] = max(0, E[i][j], F[i][j], H[i-1][j-1] + c)``. Returns the
    maximum over ``H``.
    """
    n = len(seq_a)
    m = len(seq_b)
    if n == 0 or m == 0:
        return 0.0

    costs = cost_matrix(seq_a, seq_b, cost)
    gap_open = cost.gap_opening
    gap_cont = cost.gap_continue
    h = np.zeros((n + 1, m + 1), dtype=np.float64)
    e = np.full((n + 1, m + 1), -np.inf)
    f = np.full((n + 1, m + 1), -np.inf)
    best = 0.0
    for i in range(1, n + 1):
        for j in range(1, m + 1):
            e[i, j] = max(e[i, j - 1] - gap_cont, h[i, j - 1] - gap_open)
            f[i, j] = max(f[i - 1, j] - gap_cont, h[i - 1, j] - gap_open)
            h[i, j] = max(0.0, e[i, j], f[i, j], h[i - 1, j - 1] + costs[i - 1, j - 1])
            if h[i, j] > best:
                best = float(h[i, j])
    return best


def needleman_wunsch_max_similarity(n: int, m: int, cost: SequenceMatchingCost) -> float:
    if n == 0 and m == 0:
        return cost.max_cost
    return max(n, m) * cost.max_cost


def smith_waterman_max_similarity(n: int, m: int, cost: SequenceMatchingCost) -> float:
    if n == 0 or m == 0:
        return cost.max_cost
    return min(n, m) * cost.max_cost


SimilarityFunction = Callable[[Sequence, Sequence, SequenceMatchingCost], float]
MaxSimilarityFunction = Callable[[int, int, SequenceMatchingCost], float]


def alignment_distance(projections: List[Tuple[Sequence, Sequence]],
                       cost: SequenceMatchingCost,
                       similarity: SimilarityFunction,
                       max_similarity: MaxSimilarityFunction) -> float:
    """
    Turn the mean similarity over one or more projections into a distance.

    Args:
        projections: Pairs of equally-ordered sequences; one pair when both
            sets share an ordering, an X pair and a Y pair otherwise.
        cost: Matching cost.
        similarity: Alignment score function.
        max_similarity: Best achievable score for the sequence lengths.

    Returns:
        Distance in ``[0, 1]``.
    """
    n = len(projections[0][0])
    m = len(projections[0][1])
    total = sum(similarity(a, b, cost) for a, b in projections)
    return 1.0 - total / (len(projections) * max_similarity(n, m, cost))
