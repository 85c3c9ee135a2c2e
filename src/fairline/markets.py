"""Market queries answered from a frozen :class:`OutcomeDistribution`.

Every function in this module is a pure read.  Single-selection queries
return an :class:`Estimate`, line markets return a :class:`ProbabilityTriple`
with push handling, and both carry the truncation bias of the region they
summed so callers can see how much mass the grid could not represent.
"""

from __future__ import annotations

import dataclasses
import itertools
import math
from typing import TYPE_CHECKING, Callable, Dict, Mapping, Sequence, Tuple

import numpy as np

from .odds import clamp_probability, fair_price

if TYPE_CHECKING:  # pragma: no cover - imported for type checking only
    from .config import FairlineSettings
    from .distributions import OutcomeDistribution

__all__ = [
    "DEFAULT_EPSILON",
    "DEFAULT_SENTINEL",
    "Estimate",
    "ProbabilityTriple",
    "ResultProbabilities",
    "MarketQuote",
    "quote",
    "leg_result",
    "leg_handicap",
    "leg_total",
    "leg_team_total",
    "leg_both_score",
    "leg_exact_score",
    "result_probabilities",
    "handicap",
    "total",
    "team_total",
    "both_score",
    "exact_score",
    "exact_total",
    "total_range",
    "winning_margin",
    "double_chance",
    "draw_no_bet",
    "odd_even",
    "result_and_total",
    "result_and_both_score",
    "clean_sheet",
    "win_to_nil",
    "combine",
    "half_time_full_time",
    "win_both_periods",
    "win_either_period",
    "highest_scoring_period",
]

DEFAULT_EPSILON = 1e-6
DEFAULT_SENTINEL = 1000.0

Leg = Callable[[np.ndarray, np.ndarray], np.ndarray]


# ---------------------------------------------------------------------------
# Result containers
# ---------------------------------------------------------------------------


@dataclasses.dataclass(frozen=True, slots=True)
class Estimate:
    """A single market probability plus its truncation bias."""

    probability: float
    truncation_bias: float = 0.0

    def __float__(self) -> float:
        return self.probability


@dataclasses.dataclass(frozen=True, slots=True)
class ProbabilityTriple:
    """Container for win/push/loss probabilities."""

    win: float
    push: float = 0.0
    truncation_bias: float = 0.0

    @property
    def loss(self) -> float:
        return max(0.0, 1.0 - self.win - self.push)


@dataclasses.dataclass(frozen=True, slots=True)
class ResultProbabilities:
    """Win/draw/loss probabilities from side A's point of view."""

    a: float
    draw: float
    b: float
    truncation_bias: float = 0.0


@dataclasses.dataclass(frozen=True, slots=True)
class MarketQuote:
    label: str
    probability: float
    fair_price: float
    truncation_bias: float = 0.0


def quote(
    label: str,
    probability: float | Estimate,
    *,
    settings: "FairlineSettings | None" = None,
    truncation_bias: float | None = None,
) -> MarketQuote:
    """Build a :class:`MarketQuote`, clamping degenerate probabilities.

    The reported probability is clamped to ``[epsilon, 1 - epsilon]`` and the
    fair price falls back to the sentinel when the probability is negligible.
    """

    epsilon = settings.probability_epsilon if settings is not None else DEFAULT_EPSILON
    sentinel = settings.sentinel_price if settings is not None else DEFAULT_SENTINEL
    if isinstance(probability, Estimate):
        bias = probability.truncation_bias if truncation_bias is None else truncation_bias
        value = probability.probability
    else:
        bias = 0.0 if truncation_bias is None else truncation_bias
        value = float(probability)
    return MarketQuote(
        label=label,
        probability=clamp_probability(value, epsilon),
        fair_price=fair_price(value, epsilon=epsilon, sentinel=sentinel),
        truncation_bias=bias,
    )


# ---------------------------------------------------------------------------
# Legs
# ---------------------------------------------------------------------------


def _check_side(side: str) -> None:
    if side not in {"a", "b"}:
        raise ValueError("side must be 'a' or 'b'")


def leg_result(outcome: str) -> Leg:
    """Leg for ``'a'`` (side A wins), ``'draw'`` or ``'b'``."""

    if outcome == "a":
        return lambda a, b: a > b
    if outcome == "b":
        return lambda a, b: b > a
    if outcome == "draw":
        return lambda a, b: a == b
    raise ValueError(f"Unknown result outcome: {outcome}")


def leg_handicap(line: float, side: str = "a") -> Leg:
    _check_side(side)
    if side == "a":
        return lambda a, b: (a - b) + line > 0
    return lambda a, b: (b - a) + line > 0


def leg_total(line: float, side: str = "over") -> Leg:
    if side == "over":
        return lambda a, b: (a + b) > line
    if side == "under":
        return lambda a, b: (a + b) < line
    raise ValueError("side must be 'over' or 'under'")


def leg_team_total(team: str, line: float, side: str = "over") -> Leg:
    _check_side(team)
    if side not in {"over", "under"}:
        raise ValueError("side must be 'over' or 'under'")
    if team == "a":
        return (lambda a, b: a > line) if side == "over" else (lambda a, b: a < line)
    return (lambda a, b: b > line) if side == "over" else (lambda a, b: b < line)


def leg_both_score(yes: bool = True) -> Leg:
    if yes:
        return lambda a, b: (a > 0) & (b > 0)
    return lambda a, b: (a == 0) | (b == 0)


def leg_exact_score(score_a: int, score_b: int) -> Leg:
    return lambda a, b: (a == score_a) & (b == score_b)


# ---------------------------------------------------------------------------
# Core reads
# ---------------------------------------------------------------------------


def _bias(distribution: "OutcomeDistribution", leg: Leg, probability: float) -> float:
    if distribution.exact or distribution.truncated_mass <= 0.0:
        return 0.0
    if distribution.touches_edge(leg):
        return distribution.truncated_mass
    if distribution.renormalised:
        truncated = distribution.truncated_mass
        return probability * truncated / max(1.0 - truncated, 1e-12)
    return 0.0


def _estimate(distribution: "OutcomeDistribution", leg: Leg) -> Estimate:
    probability = distribution.probability(leg)
    return Estimate(probability, _bias(distribution, leg, probability))


def _triple(distribution: "OutcomeDistribution", win: Leg, push: Leg) -> ProbabilityTriple:
    win_probability = distribution.probability(win)
    push_probability = distribution.probability(push)
    bias = max(
        _bias(distribution, win, win_probability),
        _bias(distribution, push, push_probability),
    )
    return ProbabilityTriple(
        win=min(1.0, win_probability), push=push_probability, truncation_bias=bias
    )


def result_probabilities(distribution: "OutcomeDistribution") -> ResultProbabilities:
    a = distribution.probability(leg_result("a"))
    draw = distribution.probability(leg_result("draw"))
    b = distribution.probability(leg_result("b"))
    bias = max(
        _bias(distribution, leg_result("a"), a),
        _bias(distribution, leg_result("b"), b),
    )
    return ResultProbabilities(a=a, draw=draw, b=b, truncation_bias=bias)


def handicap(
    distribution: "OutcomeDistribution", line: float, side: str = "a"
) -> ProbabilityTriple:
    """``side`` covers when its margin plus ``line`` is positive; zero is a push."""

    _check_side(side)
    if side == "a":
        push: Leg = lambda a, b: (a - b) + line == 0
    else:
        push = lambda a, b: (b - a) + line == 0
    return _triple(distribution, leg_handicap(line, side), push)


def total(
    distribution: "OutcomeDistribution", line: float, side: str = "over"
) -> ProbabilityTriple:
    return _triple(distribution, leg_total(line, side), lambda a, b: (a + b) == line)


def team_total(
    distribution: "OutcomeDistribution", team: str, line: float, side: str = "over"
) -> ProbabilityTriple:
    _check_side(team)
    if team == "a":
        push: Leg = lambda a, b: a == line
    else:
        push = lambda a, b: b == line
    return _triple(distribution, leg_team_total(team, line, side), push)


def both_score(distribution: "OutcomeDistribution", yes: bool = True) -> Estimate:
    return _estimate(distribution, leg_both_score(yes))


def exact_score(distribution: "OutcomeDistribution", score_a: int, score_b: int) -> Estimate:
    """Probability of one exact result; scores beyond the grid report the lost mass."""

    if score_a > distribution.max_score_a or score_b > distribution.max_score_b:
        return Estimate(0.0, 0.0 if distribution.exact else distribution.truncated_mass)
    return _estimate(distribution, leg_exact_score(score_a, score_b))


def exact_total(distribution: "OutcomeDistribution", count: int) -> Estimate:
    return _estimate(distribution, lambda a, b: (a + b) == count)


def total_range(distribution: "OutcomeDistribution", low: int, high: int | None) -> Estimate:
    """Probability that the combined score lies in ``[low, high]`` (open when ``high`` is None)."""

    if high is None:
        return _estimate(distribution, lambda a, b: (a + b) >= low)
    return _estimate(distribution, lambda a, b: ((a + b) >= low) & ((a + b) <= high))


def winning_margin(
    distribution: "OutcomeDistribution", side: str, margin: int, *, or_more: bool = False
) -> Estimate:
    _check_side(side)
    sign = 1 if side == "a" else -1
    if or_more:
        return _estimate(distribution, lambda a, b: sign * (a - b) >= margin)
    return _estimate(distribution, lambda a, b: sign * (a - b) == margin)


def double_chance(distribution: "OutcomeDistribution") -> Dict[str, Estimate]:
    return {
        "a_or_draw": _estimate(distribution, lambda a, b: a >= b),
        "a_or_b": _estimate(distribution, lambda a, b: a != b),
        "draw_or_b": _estimate(distribution, lambda a, b: b >= a),
    }


def draw_no_bet(distribution: "OutcomeDistribution") -> Dict[str, Estimate]:
    """Win probabilities renormalised over results that are not draws."""

    result = result_probabilities(distribution)
    decisive = result.a + result.b
    if decisive <= 0.0:
        return {"a": Estimate(0.5, result.truncation_bias), "b": Estimate(0.5, result.truncation_bias)}
    return {
        "a": Estimate(result.a / decisive, result.truncation_bias),
        "b": Estimate(result.b / decisive, result.truncation_bias),
    }


def odd_even(distribution: "OutcomeDistribution") -> Dict[str, Estimate]:
    return {
        "odd": _estimate(distribution, lambda a, b: (a + b) % 2 == 1),
        "even": _estimate(distribution, lambda a, b: (a + b) % 2 == 0),
    }


def result_and_total(
    distribution: "OutcomeDistribution", line: float
) -> Dict[Tuple[str, str], Estimate]:
    combos: Dict[Tuple[str, str], Estimate] = {}
    for outcome in ("a", "draw", "b"):
        for side in ("over", "under"):
            combos[(outcome, side)] = combine(
                distribution, [leg_result(outcome), leg_total(line, side)]
            )
    return combos


def result_and_both_score(distribution: "OutcomeDistribution") -> Dict[Tuple[str, bool], Estimate]:
    combos: Dict[Tuple[str, bool], Estimate] = {}
    for outcome in ("a", "draw", "b"):
        for yes in (True, False):
            combos[(outcome, yes)] = combine(
                distribution, [leg_result(outcome), leg_both_score(yes)]
            )
    return combos


def clean_sheet(distribution: "OutcomeDistribution", team: str) -> Estimate:
    """Probability that ``team`` concedes nothing."""

    _check_side(team)
    if team == "a":
        return _estimate(distribution, lambda a, b: b == 0)
    return _estimate(distribution, lambda a, b: a == 0)


def win_to_nil(distribution: "OutcomeDistribution", team: str) -> Estimate:
    _check_side(team)
    if team == "a":
        return _estimate(distribution, lambda a, b: (a > b) & (b == 0))
    return _estimate(distribution, lambda a, b: (b > a) & (a == 0))


def combine(distribution: "OutcomeDistribution", legs: Sequence[Leg]) -> Estimate:
    """Joint probability that every leg holds, read from the joint grid."""

    if not legs:
        raise ValueError("at least one leg is required")

    def joint(a: np.ndarray, b: np.ndarray) -> np.ndarray:
        selected = np.ones(np.broadcast(a, b).shape, dtype=bool)
        for leg in legs:
            selected = selected & leg(a, b)
        return selected

    return _estimate(distribution, joint)


# ---------------------------------------------------------------------------
# Period markets
# ---------------------------------------------------------------------------


def _period_bias(*distributions: "OutcomeDistribution") -> float:
    return float(sum(0.0 if dist.exact else dist.truncated_mass for dist in distributions))


def _sign_label(margin: int) -> str:
    if margin > 0:
        return "a"
    if margin < 0:
        return "b"
    return "draw"


def half_time_full_time(
    first: "OutcomeDistribution", second: "OutcomeDistribution"
) -> Dict[Tuple[str, str], Estimate]:
    """Half-time/full-time results from independent first and second halves.

    The full-time margin is the sum of the two half margins, so the joint
    table is the exact convolution of the two margin distributions.
    """

    combos: Dict[Tuple[str, str], float] = {
        (first_label, full_label): 0.0
        for first_label in ("a", "draw", "b")
        for full_label in ("a", "draw", "b")
    }
    second_margins = second.margin_distribution()
    for first_margin, first_probability in first.margin_distribution().items():
        first_label = _sign_label(first_margin)
        for second_margin, second_probability in second_margins.items():
            full_label = _sign_label(first_margin + second_margin)
            combos[(first_label, full_label)] += first_probability * second_probability
    bias = _period_bias(first, second)
    return {key: Estimate(value, bias) for key, value in combos.items()}


def win_both_periods(
    first: "OutcomeDistribution", second: "OutcomeDistribution", side: str
) -> Estimate:
    win = leg_result(side)
    probability = first.probability(win) * second.probability(win)
    return Estimate(probability, _period_bias(first, second))


def win_either_period(
    first: "OutcomeDistribution", second: "OutcomeDistribution", side: str
) -> Estimate:
    win = leg_result(side)
    miss_first = 1.0 - first.probability(win)
    miss_second = 1.0 - second.probability(win)
    return Estimate(1.0 - miss_first * miss_second, _period_bias(first, second))


def highest_scoring_period(
    periods: Mapping[str, "OutcomeDistribution"],
) -> Dict[str, Estimate]:
    """Which period produces the most combined scoring; equal maxima count as ``tie``."""

    names = list(periods)
    totals = [list(periods[name].total_distribution().items()) for name in names]
    outcome: Dict[str, float] = {name: 0.0 for name in names}
    outcome["tie"] = 0.0
    for combination in itertools.product(*totals):
        probability = math.prod(item[1] for item in combination)
        counts = [item[0] for item in combination]
        best = max(counts)
        leaders = [name for name, count in zip(names, counts) if count == best]
        key = leaders[0] if len(leaders) == 1 else "tie"
        outcome[key] += probability
    bias = _period_bias(*periods.values())
    return {key: Estimate(value, bias) for key, value in outcome.items()}
