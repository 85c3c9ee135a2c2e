"""Exact set and match distributions for rally-scored sports.

Every rally awards a point to one side, so a set is a race to its target
that must be won by two clear points.  Volleyball plays sets to 25 with a
deciding set to 15; table tennis plays every game to 11.  A match is the
convolution of those sets until one side reaches ``sets_to_win``.
"""

from __future__ import annotations

import collections
import dataclasses
import logging
import math
import types
from typing import Dict, Mapping, Sequence, Tuple

import numpy as np

from .combinatorics import log_binomial
from .distributions import OutcomeDistribution

logger = logging.getLogger(__name__)

__all__ = [
    "SET_TAIL",
    "RallyMatch",
    "set_win_probability",
    "set_score_distribution",
    "match_win_probability",
    "rally_match",
]

# Extra-point rounds stop once the undecided mass drops below this.
SET_TAIL = 1e-12
_MAX_EXTRA_ROUNDS = 500

SetScores = Dict[Tuple[int, int], float]


def _log_power(count: int, probability: float) -> float:
    if count == 0:
        return 0.0
    if probability <= 0.0:
        return float("-inf")
    return count * math.log(probability)


def _clip(point: float) -> float:
    return min(1.0, max(0.0, float(point)))


def _check_target(target: int) -> None:
    if target < 1:
        raise ValueError("set target must be positive")


def _target_for(set_targets: Sequence[int], index: int) -> int:
    # The last listed target repeats for any later set.
    return int(set_targets[min(index, len(set_targets) - 1)])


# ---------------------------------------------------------------------------
# Sets
# ---------------------------------------------------------------------------


def set_win_probability(point: float, target: int) -> float:
    """Probability that A wins a set to ``target`` with a two point margin.

    Sums the finishes ``target``-``k`` for ``k <= target - 2`` and the tie at
    ``target - 1`` all, from which A needs two points in a row before B does:
    ``p^2 / (p^2 + q^2)``.
    """

    _check_target(target)
    p = _clip(point)
    q = 1.0 - p
    before_tie = sum(
        math.exp(log_binomial(target - 1 + lost, lost) + _log_power(target, p) + _log_power(lost, q))
        for lost in range(target - 1)
    )
    tie = math.exp(
        log_binomial(2 * target - 2, target - 1)
        + _log_power(target - 1, p)
        + _log_power(target - 1, q)
    )
    return before_tie + tie * p * p / (p * p + q * q)


def set_score_distribution(point: float, target: int, *, tail: float = SET_TAIL) -> SetScores:
    """Final point scores of one set and their probabilities.

    Finishes beyond the target come in pairs: from ``n``-all either side wins
    two in a row, otherwise the tie moves on to ``n + 1``-all.  Rounds stop
    once the undecided mass falls below ``tail``; that remainder is settled in
    the last round at the tie-break odds, so the scores sum to one.
    """

    _check_target(target)
    p = _clip(point)
    q = 1.0 - p
    scores: SetScores = {}
    for lost in range(target - 1):
        combinations = log_binomial(target - 1 + lost, lost)
        scores[(target, lost)] = math.exp(combinations + _log_power(target, p) + _log_power(lost, q))
        scores[(lost, target)] = math.exp(combinations + _log_power(target, q) + _log_power(lost, p))
    tie = math.exp(
        log_binomial(2 * target - 2, target - 1)
        + _log_power(target - 1, p)
        + _log_power(target - 1, q)
    )
    split = 2.0 * p * q
    share_a = p * p / (p * p + q * q)
    level = target - 1
    for extra in range(_MAX_EXTRA_ROUNDS):
        if tie <= 0.0:
            break
        if tie * split < tail or extra == _MAX_EXTRA_ROUNDS - 1:
            scores[(level + 2, level)] = tie * share_a
            scores[(level, level + 2)] = tie * (1.0 - share_a)
            break
        scores[(level + 2, level)] = tie * p * p
        scores[(level, level + 2)] = tie * q * q
        tie *= split
        level += 1
    return {score: value for score, value in scores.items() if value > 0.0}


# ---------------------------------------------------------------------------
# Matches
# ---------------------------------------------------------------------------


def match_win_probability(point: float, sets_to_win: int, set_targets: Sequence[int]) -> float:
    """Match win probability from the set win probabilities alone."""

    if sets_to_win < 1:
        raise ValueError("sets_to_win must be positive")
    if not set_targets:
        raise ValueError("set_targets must not be empty")
    by_target: Dict[int, float] = {}
    states: Dict[Tuple[int, int], float] = {(0, 0): 1.0}
    won = 0.0
    while states:
        following: Dict[Tuple[int, int], float] = collections.defaultdict(float)
        for (sets_a, sets_b), mass in states.items():
            target = _target_for(set_targets, sets_a + sets_b)
            if target not in by_target:
                by_target[target] = set_win_probability(point, target)
            win = by_target[target]
            if sets_a + 1 == sets_to_win:
                won += mass * win
            else:
                following[(sets_a + 1, sets_b)] += mass * win
            if sets_b + 1 < sets_to_win:
                following[(sets_a, sets_b + 1)] += mass * (1.0 - win)
        states = following
    return won


@dataclasses.dataclass(frozen=True, slots=True)
class RallyMatch:
    """Exact match outcome for one point-win probability."""

    point_probability: float
    match_win_probability: float
    expected_total_points: float
    set_win_probabilities: Tuple[float, ...]
    set_scores: Mapping[Tuple[int, int], float]
    first_set: Mapping[Tuple[int, int], float]
    points: OutcomeDistribution

    def __post_init__(self) -> None:
        object.__setattr__(self, "set_scores", types.MappingProxyType(dict(self.set_scores)))
        object.__setattr__(self, "first_set", types.MappingProxyType(dict(self.first_set)))

    @property
    def sets(self) -> OutcomeDistribution:
        """Final set score as an exact grid."""

        return OutcomeDistribution(grid=_score_grid(self.set_scores), exact=True)

    @property
    def first_set_points(self) -> OutcomeDistribution:
        return OutcomeDistribution(grid=_score_grid(self.first_set), exact=True)


def _score_grid(scores: Mapping[Tuple[int, int], float]) -> np.ndarray:
    size = max(max(score) for score in scores) + 1
    grid = np.zeros((size, size), dtype=float)
    for (points_a, points_b), probability in scores.items():
        grid[points_a, points_b] = probability
    return grid


def rally_match(
    point: float,
    *,
    sets_to_win: int = 3,
    set_targets: Sequence[int] = (25, 25, 25, 25, 15),
    tail: float = SET_TAIL,
) -> RallyMatch:
    """Exact set-score and total-points distribution of a rally-scored match.

    ``point`` is A's probability of winning any rally.  ``set_targets[i]`` is
    the target of set ``i + 1``; the last entry applies to every later set.
    The points grid tracks both sides' running totals through the match, so
    point handicaps and totals read the true joint distribution.
    """

    if sets_to_win < 1:
        raise ValueError("sets_to_win must be positive")
    if not set_targets:
        raise ValueError("set_targets must not be empty")
    max_sets = 2 * sets_to_win - 1
    by_set = [
        set_score_distribution(point, _target_for(set_targets, index), tail=tail)
        for index in range(max_sets)
    ]
    size = sum(max(max(score) for score in scores) for scores in by_set) + 1
    points = np.zeros((size, size), dtype=float)
    set_scores: SetScores = collections.defaultdict(float)
    states: Dict[Tuple[int, int], np.ndarray] = {(0, 0): np.zeros((size, size), dtype=float)}
    states[(0, 0)][0, 0] = 1.0
    while states:
        following: Dict[Tuple[int, int], np.ndarray] = {}
        for (sets_a, sets_b), running in states.items():
            scores = by_set[sets_a + sets_b]
            rows, cols = np.nonzero(running)
            if rows.size == 0:
                continue
            span_a = int(rows.max()) + 1
            span_b = int(cols.max()) + 1
            block = running[:span_a, :span_b]
            for (set_a, set_b), probability in scores.items():
                key = (sets_a + (set_a > set_b), sets_b + (set_b > set_a))
                if key[0] == sets_to_win or key[1] == sets_to_win:
                    destination = points
                    set_scores[key] += probability * float(block.sum())
                else:
                    if key not in following:
                        following[key] = np.zeros((size, size), dtype=float)
                    destination = following[key]
                destination[set_a : set_a + span_a, set_b : set_b + span_b] += probability * block
        states = following
    distribution = OutcomeDistribution(grid=points, exact=True)
    scores_a, scores_b = distribution.indices()
    expected_total = float((distribution.grid * (scores_a + scores_b)).sum())
    won = sum(value for (sets_a, _), value in set_scores.items() if sets_a == sets_to_win)
    decided = sum(set_scores.values())
    match_win = won / decided if decided > 0.0 else 0.5
    logger.debug(
        "Rally match point=%.4f sets_to_win=%d: p_a=%.6f points=%.2f",
        point,
        sets_to_win,
        match_win,
        expected_total,
    )
    return RallyMatch(
        point_probability=_clip(point),
        match_win_probability=match_win,
        expected_total_points=expected_total,
        set_win_probabilities=tuple(
            set_win_probability(point, _target_for(set_targets, index)) for index in range(max_sets)
        ),
        set_scores=dict(set_scores),
        first_set=by_set[0],
        points=distribution,
    )
