"""Closed-form goal-difference distribution for handicap-only queries.

The difference of two independent Poisson counts follows a Skellam
distribution.  Evaluating it directly from the two rates answers handicap
lines without materialising the full scoreline grid.
"""

from __future__ import annotations

import math
from typing import Dict

import numpy as np

from .combinatorics import log_factorial
from .markets import ProbabilityTriple

__all__ = ["log_bessel_i", "skellam_log_pmf", "skellam_pmf", "skellam_distribution", "handicap_probability"]

_DEFAULT_TERMS = 80
_MIN_RATE = 1e-9


def log_bessel_i(order: int, x: float, terms: int = _DEFAULT_TERMS) -> float:
    """Return ``ln I_order(x)`` from the power series, summed in log space."""

    order = abs(int(order))
    if x <= 0.0:
        return 0.0 if order == 0 else float("-inf")
    # The series peaks near m = x / 2; extend the budget for large arguments.
    terms = max(terms, int(x) + 40)
    log_half = math.log(x / 2.0)
    logs = np.array(
        [
            (2 * m + order) * log_half - log_factorial(m) - log_factorial(m + order)
            for m in range(terms)
        ]
    )
    peak = float(logs.max())
    return peak + math.log(float(np.exp(logs - peak).sum()))


def skellam_log_pmf(k: int, lam_a: float, lam_b: float) -> float:
    lam_a = max(float(lam_a), _MIN_RATE)
    lam_b = max(float(lam_b), _MIN_RATE)
    argument = 2.0 * math.sqrt(lam_a * lam_b)
    return (
        -(lam_a + lam_b)
        + 0.5 * k * (math.log(lam_a) - math.log(lam_b))
        + log_bessel_i(k, argument)
    )


def skellam_pmf(k: int, lam_a: float, lam_b: float) -> float:
    """Probability that ``score_a - score_b == k``."""

    return math.exp(skellam_log_pmf(k, lam_a, lam_b))


def _default_support(lam_a: float, lam_b: float) -> int:
    spread = lam_a + lam_b
    return int(math.ceil(spread + 12.0 * math.sqrt(max(spread, 1.0)))) + 10


def skellam_distribution(
    lam_a: float, lam_b: float, support: int | None = None
) -> Dict[int, float]:
    """Return the margin distribution over ``[-support, support]``."""

    limit = _default_support(lam_a, lam_b) if support is None else int(support)
    return {k: skellam_pmf(k, lam_a, lam_b) for k in range(-limit, limit + 1)}


def handicap_probability(
    lam_a: float,
    lam_b: float,
    line: float,
    *,
    side: str = "a",
    support: int | None = None,
) -> ProbabilityTriple:
    """Cover probability for ``side`` receiving ``line`` goals.

    Side A covers when ``margin + line > 0``; the bet is pushed when the
    adjusted margin is exactly zero, which can only happen on integer lines.
    """

    if side not in {"a", "b"}:
        raise ValueError("side must be 'a' or 'b'")
    distribution = skellam_distribution(lam_a, lam_b, support)
    wins = 0.0
    pushes = 0.0
    for margin, probability in distribution.items():
        adjusted = (margin if side == "a" else -margin) + line
        if adjusted > 0:
            wins += probability
        elif adjusted == 0:
            pushes += probability
    return ProbabilityTriple(win=min(1.0, wins), push=pushes)
