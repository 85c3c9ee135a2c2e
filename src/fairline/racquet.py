"""Exact point, game, set and match distributions for serve-based sports.

The builders chain closed forms and small dynamic programmes:

* a service game from the server's point-win probability,
* a tiebreak over a bounded point grid with a sudden-death closed form,
* a set over a game grid that branches into the tiebreak at six-all,
* a match as the convolution of every feasible sequence of sets.

The match convolution tracks both players' game counts together, so the
resulting games distribution carries the true correlation between them and
the margin distribution is read from it directly.
"""

from __future__ import annotations

import collections
import dataclasses
import logging
import types
from typing import Dict, Mapping, Tuple

import numpy as np

from .distributions import OutcomeDistribution
from .solvers import bisect

logger = logging.getLogger(__name__)

__all__ = [
    "FIRST_SERVER_OPTIONS",
    "MatchDistribution",
    "game_hold_probability",
    "point_probability_from_hold",
    "tiebreak_probability",
    "set_score_distribution",
    "match_distribution",
]

FIRST_SERVER_OPTIONS = ("a", "b", "random")

SetScores = Dict[Tuple[int, int], float]


# ---------------------------------------------------------------------------
# Points and games
# ---------------------------------------------------------------------------


def game_hold_probability(point_probability: float) -> float:
    """Probability that the server holds, given its point-win probability.

    Sums the paths that finish before deuce and the deuce branch, which the
    server wins with probability ``p^2 / (p^2 + q^2)``.
    """

    p = min(1.0, max(0.0, float(point_probability)))
    q = 1.0 - p
    before_deuce = p**4 * (1.0 + 4.0 * q + 10.0 * q * q)
    reach_deuce = 20.0 * p**3 * q**3
    deuce_win = p * p / (p * p + q * q)
    return before_deuce + reach_deuce * deuce_win


def point_probability_from_hold(hold: float) -> float:
    """Invert :func:`game_hold_probability` by bisection."""

    hold = min(1.0, max(0.0, float(hold)))
    point, _, _ = bisect(
        game_hold_probability, hold, 0.0, 1.0, max_iterations=60, tolerance=1e-12
    )
    return point


def _tiebreak_server_is_first(point_index: int) -> bool:
    # Serve pattern: first server once, then two points each in turn.
    return ((point_index + 1) // 2) % 2 == 0


def tiebreak_probability(
    point_a: float, point_b: float, *, target: int = 7, a_serves_first: bool = True
) -> float:
    """Probability that A wins a first-to-``target`` tiebreak, win by two.

    ``point_a`` is A's point-win probability on its own serve and ``point_b``
    is B's on B's serve.  The grid stops at ``(target - 1, target - 1)``;
    from there each pair of points has one serve each, so the race to a
    two-point lead has the closed form ``pAA / (pAA + pBB)``.
    """

    if target < 1:
        raise ValueError("tiebreak target must be positive")
    limit = target - 1
    reach = np.zeros((target, target), dtype=float)
    reach[0, 0] = 1.0
    a_wins = 0.0
    for played in range(2 * limit):
        a_first = _tiebreak_server_is_first(played)
        a_serving = a_first if a_serves_first else not a_first
        win = point_a if a_serving else 1.0 - point_b
        for i in range(max(0, played - limit), min(played, limit) + 1):
            j = played - i
            mass = reach[i, j]
            if mass == 0.0:
                continue
            if i + 1 == target:
                a_wins += mass * win
            else:
                reach[i + 1, j] += mass * win
            if j + 1 < target:
                reach[i, j + 1] += mass * (1.0 - win)
    both_win_a = point_a * (1.0 - point_b)
    both_win_b = (1.0 - point_a) * point_b
    denominator = both_win_a + both_win_b
    sudden_death = 0.5 if denominator <= 0.0 else both_win_a / denominator
    return a_wins + reach[limit, limit] * sudden_death


# ---------------------------------------------------------------------------
# Sets
# ---------------------------------------------------------------------------


def set_score_distribution(
    hold_a: float,
    hold_b: float,
    *,
    games: int = 6,
    a_serves_first: bool = True,
    tiebreak_target: int = 7,
) -> SetScores:
    """Final set scores ``(games_a, games_b)`` and their probabilities.

    Service alternates every game.  At ``games``-all the set is decided by a
    tiebreak whose first server is whoever would have served the next game.
    """

    reach = np.zeros((games + 1, games + 1), dtype=float)
    reach[0, 0] = 1.0
    scores: SetScores = collections.defaultdict(float)
    for played in range(2 * games):
        a_serving = (played % 2 == 0) == a_serves_first
        win = hold_a if a_serving else 1.0 - hold_b
        for i in range(max(0, played - games), min(played, games) + 1):
            j = played - i
            mass = reach[i, j]
            if mass == 0.0:
                continue
            # A reaches the set target with a two game lead, or 7-5 from 6-5.
            if i + 1 == games and j <= games - 2:
                scores[(games, j)] += mass * win
            elif i == games and j == games - 1:
                scores[(games + 1, j)] += mass * win
            else:
                reach[i + 1, j] += mass * win
            if j + 1 == games and i <= games - 2:
                scores[(i, games)] += mass * (1.0 - win)
            elif j == games and i == games - 1:
                scores[(i, games + 1)] += mass * (1.0 - win)
            else:
                reach[i, j + 1] += mass * (1.0 - win)
    tiebreak_mass = reach[games, games]
    if tiebreak_mass > 0.0:
        point_a = point_probability_from_hold(hold_a)
        point_b = point_probability_from_hold(hold_b)
        a_serves_tiebreak = a_serves_first  # 2 * games games played: even
        won = tiebreak_probability(
            point_a, point_b, target=tiebreak_target, a_serves_first=a_serves_tiebreak
        )
        scores[(games + 1, games)] += tiebreak_mass * won
        scores[(games, games + 1)] += tiebreak_mass * (1.0 - won)
    return dict(scores)


# ---------------------------------------------------------------------------
# Matches
# ---------------------------------------------------------------------------


@dataclasses.dataclass(frozen=True, slots=True)
class MatchDistribution:
    """Exact match outcome from two hold probabilities."""

    match_win_probability: float
    expected_total_games: float
    set_scores: Mapping[Tuple[int, int], float]
    first_set: Mapping[Tuple[int, int], float]
    games: OutcomeDistribution
    tiebreak_probability: float

    def __post_init__(self) -> None:
        object.__setattr__(self, "set_scores", types.MappingProxyType(dict(self.set_scores)))
        object.__setattr__(self, "first_set", types.MappingProxyType(dict(self.first_set)))

    @property
    def margin_distribution(self) -> Dict[int, float]:
        return self.games.margin_distribution()

    @property
    def marginal_a(self) -> np.ndarray:
        return self.games.marginal_a()

    @property
    def marginal_b(self) -> np.ndarray:
        return self.games.marginal_b()


@dataclasses.dataclass(slots=True)
class _Convolution:
    win_a: float
    win_b: float
    grid: np.ndarray
    set_scores: SetScores
    first_set: SetScores
    tiebreak: float

    def mirrored(self) -> "_Convolution":
        return _Convolution(
            win_a=self.win_b,
            win_b=self.win_a,
            grid=self.grid.T.copy(),
            set_scores={(b, a): value for (a, b), value in self.set_scores.items()},
            first_set={(b, a): value for (a, b), value in self.first_set.items()},
            tiebreak=self.tiebreak,
        )


def _convolve_sets(
    hold_a: float,
    hold_b: float,
    sets_to_win: int,
    games: int,
    tiebreak_target: int,
) -> _Convolution:
    """Convolve set outcomes for a match in which A serves the first game."""

    by_first_server = {
        True: set_score_distribution(
            hold_a, hold_b, games=games, a_serves_first=True, tiebreak_target=tiebreak_target
        ),
        False: set_score_distribution(
            hold_a, hold_b, games=games, a_serves_first=False, tiebreak_target=tiebreak_target
        ),
    }
    tiebreak_games = 2 * games + 1
    size = (2 * sets_to_win - 1) * (games + 1) + 1
    grid = np.zeros((size, size), dtype=float)
    set_scores: SetScores = collections.defaultdict(float)
    win_a = 0.0
    win_b = 0.0
    tiebreak = 0.0
    states: Dict[Tuple[int, int, int, int, bool, bool], float] = {(0, 0, 0, 0, True, False): 1.0}
    while states:
        following: Dict[Tuple[int, int, int, int, bool, bool], float] = collections.defaultdict(float)
        for (sets_a, sets_b, games_a, games_b, a_first, had_tiebreak), mass in states.items():
            for (set_a, set_b), probability in by_first_server[a_first].items():
                weight = mass * probability
                if weight == 0.0:
                    continue
                next_sets_a = sets_a + (set_a > set_b)
                next_sets_b = sets_b + (set_b > set_a)
                next_games_a = games_a + set_a
                next_games_b = games_b + set_b
                played = set_a + set_b
                tiebreak_seen = had_tiebreak or played == tiebreak_games
                # An odd number of games (a tiebreak counts as one) hands the serve over.
                next_a_first = a_first if played % 2 == 0 else not a_first
                if next_sets_a == sets_to_win or next_sets_b == sets_to_win:
                    grid[next_games_a, next_games_b] += weight
                    set_scores[(next_sets_a, next_sets_b)] += weight
                    if tiebreak_seen:
                        tiebreak += weight
                    if next_sets_a == sets_to_win:
                        win_a += weight
                    else:
                        win_b += weight
                    continue
                following[
                    (next_sets_a, next_sets_b, next_games_a, next_games_b, next_a_first, tiebreak_seen)
                ] += weight
        states = following
    return _Convolution(
        win_a=win_a,
        win_b=win_b,
        grid=grid,
        set_scores=dict(set_scores),
        first_set=dict(by_first_server[True]),
        tiebreak=tiebreak,
    )


def _average(first: _Convolution, second: _Convolution) -> _Convolution:
    def merge(left: SetScores, right: SetScores) -> SetScores:
        keys = set(left) | set(right)
        return {key: 0.5 * (left.get(key, 0.0) + right.get(key, 0.0)) for key in keys}

    return _Convolution(
        win_a=0.5 * (first.win_a + second.win_a),
        win_b=0.5 * (first.win_b + second.win_b),
        grid=0.5 * (first.grid + second.grid),
        set_scores=merge(first.set_scores, second.set_scores),
        first_set=merge(first.first_set, second.first_set),
        tiebreak=0.5 * (first.tiebreak + second.tiebreak),
    )


def match_distribution(
    hold_a: float,
    hold_b: float,
    *,
    sets_to_win: int = 2,
    games: int = 6,
    tiebreak_target: int = 7,
    first_server: str = "random",
) -> MatchDistribution:
    """Exact match distribution for two hold probabilities.

    ``first_server`` selects who serves the opening game; ``"random"``
    averages both cases, as for a coin toss.  A match with B serving first is
    evaluated as the mirror image of one with the roles swapped, which keeps
    equal-strength matches exactly symmetric.
    """

    if sets_to_win < 1:
        raise ValueError("sets_to_win must be positive")
    if first_server not in FIRST_SERVER_OPTIONS:
        raise ValueError(f"first_server must be one of {FIRST_SERVER_OPTIONS}")
    if first_server == "a":
        result = _convolve_sets(hold_a, hold_b, sets_to_win, games, tiebreak_target)
    elif first_server == "b":
        result = _convolve_sets(hold_b, hold_a, sets_to_win, games, tiebreak_target).mirrored()
    else:
        result = _average(
            _convolve_sets(hold_a, hold_b, sets_to_win, games, tiebreak_target),
            _convolve_sets(hold_b, hold_a, sets_to_win, games, tiebreak_target).mirrored(),
        )
    distribution = OutcomeDistribution(grid=result.grid, exact=True)
    scores_a, scores_b = distribution.indices()
    expected_total = float((distribution.grid * (scores_a + scores_b)).sum())
    decided = result.win_a + result.win_b
    match_win = result.win_a / decided if decided > 0.0 else 0.5
    logger.debug(
        "Match distribution hold=(%.4f, %.4f) sets_to_win=%d: p_a=%.6f games=%.3f",
        hold_a,
        hold_b,
        sets_to_win,
        match_win,
        expected_total,
    )
    return MatchDistribution(
        match_win_probability=match_win,
        expected_total_games=expected_total,
        set_scores=result.set_scores,
        first_set=result.first_set,
        games=distribution,
        tiebreak_probability=result.tiebreak,
    )
