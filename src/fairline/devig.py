"""Margin removal for 2- and 3-way quoted markets.

Two policies are supported.  The proportional policy scales the implied
probabilities so they sum to one.  Shin's method models the bookmaker margin
as protection against a share ``z`` of insider money, which shifts more of the
margin onto long-priced selections (the favourite/longshot bias).
"""

from __future__ import annotations

import dataclasses
import logging
import math
import numbers
from typing import Sequence, Tuple

from .errors import InvalidInputError

logger = logging.getLogger(__name__)

__all__ = [
    "FairProbabilities",
    "validate_odds",
    "overround",
    "proportional",
    "shin",
    "devig",
]

_SHIN_INITIAL_Z = 0.01
_SHIN_MAX_Z = 0.99
_SHIN_MAX_ITERATIONS = 50
_SHIN_TOLERANCE = 1e-7
_PROBABILITY_FLOOR = 1e-12


@dataclasses.dataclass(frozen=True, slots=True)
class FairProbabilities:
    """De-vigged probabilities for one quoted market."""

    probabilities: Tuple[float, ...]
    method: str
    overround: float
    z: float = 0.0
    iterations: int = 0

    def __len__(self) -> int:
        return len(self.probabilities)

    def __getitem__(self, index: int) -> float:
        return self.probabilities[index]


def validate_odds(odds: Sequence[object]) -> Tuple[float, ...]:
    """Return the odds as floats or raise :class:`InvalidInputError`."""

    if isinstance(odds, (str, bytes)) or not isinstance(odds, Sequence):
        raise InvalidInputError("odds must be a sequence of decimal prices")
    if len(odds) not in (2, 3):
        raise InvalidInputError(f"expected 2 or 3 prices, received {len(odds)}")
    values = []
    for index, value in enumerate(odds):
        if isinstance(value, bool) or not isinstance(value, numbers.Real):
            raise InvalidInputError(f"price #{index + 1} is not numeric: {value!r}")
        price = float(value)
        if not math.isfinite(price):
            raise InvalidInputError(f"price #{index + 1} is not finite: {value!r}")
        if price <= 1.0:
            raise InvalidInputError(f"price #{index + 1} must exceed 1.0, received {price}")
        values.append(price)
    return tuple(values)


def overround(odds: Sequence[float]) -> float:
    """Return the bookmaker margin ``sum(1 / odds) - 1``."""

    return sum(1.0 / price for price in validate_odds(odds)) - 1.0


def _normalise(values: Sequence[float]) -> Tuple[float, ...]:
    floored = [max(value, _PROBABILITY_FLOOR) for value in values]
    total = sum(floored)
    return tuple(value / total for value in floored)


def proportional(odds: Sequence[float]) -> Tuple[float, ...]:
    prices = validate_odds(odds)
    return _normalise([1.0 / price for price in prices])


def _shin_terms(z: float, implied: Sequence[float], booksum: float) -> list[float]:
    return [
        (math.sqrt(z * z + 4.0 * (1.0 - z) * p * p / booksum) - z) / (2.0 * (1.0 - z))
        for p in implied
    ]


def _solve_shin(
    prices: Sequence[float], max_iterations: int, tolerance: float
) -> Tuple[Tuple[float, ...], float, int]:
    implied = [1.0 / price for price in prices]
    booksum = sum(implied)
    z = _SHIN_INITIAL_Z
    iterations = 0
    terms = _shin_terms(z, implied, booksum)
    for iterations in range(1, max_iterations + 1):
        terms = _shin_terms(z, implied, booksum)
        excess = sum(terms) - 1.0
        if abs(excess) < tolerance:
            break
        z = min(_SHIN_MAX_Z, max(0.0, z + 0.5 * excess))
    else:
        terms = _shin_terms(z, implied, booksum)
    # Final renormalisation absorbs any residual left by the iteration budget.
    return _normalise(terms), z, iterations


def shin(
    odds: Sequence[float],
    *,
    max_iterations: int = _SHIN_MAX_ITERATIONS,
    tolerance: float = _SHIN_TOLERANCE,
) -> Tuple[float, ...]:
    """Return Shin de-vigged probabilities for ``odds``.

    Falls back to proportional scaling when the market carries no margin.
    """

    return _devig_shin(validate_odds(odds), max_iterations, tolerance).probabilities


def _devig_shin(
    prices: Tuple[float, ...], max_iterations: int, tolerance: float
) -> FairProbabilities:
    margin = sum(1.0 / price for price in prices) - 1.0
    if margin <= 0.0:
        logger.debug("Market overround %.6f is not positive; using proportional policy", margin)
        return FairProbabilities(
            probabilities=_normalise([1.0 / price for price in prices]),
            method="proportional",
            overround=margin,
        )
    probabilities, z, iterations = _solve_shin(prices, max_iterations, tolerance)
    return FairProbabilities(
        probabilities=probabilities,
        method="shin",
        overround=margin,
        z=z,
        iterations=iterations,
    )


def devig(odds: Sequence[float], method: str = "shin") -> FairProbabilities:
    """Validate ``odds`` and strip the margin with the requested policy."""

    prices = validate_odds(odds)
    token = str(getattr(method, "value", method)).strip().lower()
    if token == "shin":
        return _devig_shin(prices, _SHIN_MAX_ITERATIONS, _SHIN_TOLERANCE)
    if token == "proportional":
        return FairProbabilities(
            probabilities=_normalise([1.0 / price for price in prices]),
            method="proportional",
            overround=sum(1.0 / price for price in prices) - 1.0,
        )
    raise InvalidInputError(f"Unknown de-vig method: {method}")
