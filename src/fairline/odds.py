"""Quoted market records and fair price helpers."""

from __future__ import annotations

import dataclasses
import math
from typing import Tuple

__all__ = [
    "MARKET_KINDS",
    "QuotedMarket",
    "clamp_probability",
    "fair_price",
]

MARKET_KINDS = ("result", "handicap", "total")


def clamp_probability(probability: float, epsilon: float) -> float:
    """Clamp a probability into the ``[epsilon, 1 - epsilon]`` band."""

    if math.isnan(probability):
        return epsilon
    return min(1.0 - epsilon, max(epsilon, probability))


def fair_price(probability: float, *, epsilon: float = 1e-6, sentinel: float = 1000.0) -> float:
    """Return the fair decimal price ``1 / p`` for a model probability.

    Probabilities at or below ``epsilon`` have no meaningful reciprocal and
    are reported with the ``sentinel`` price instead.
    """

    if math.isnan(probability) or probability <= epsilon:
        return sentinel
    return 1.0 / clamp_probability(probability, epsilon)


@dataclasses.dataclass(frozen=True, slots=True)
class QuotedMarket:
    """Decimal prices for one 2- or 3-way market supplied by the retrieval layer.

    ``price_a`` backs the first competitor (home, over, or the side receiving
    ``line`` on a handicap) and ``price_b`` the opposite selection.
    """

    kind: str
    price_a: float
    price_b: float
    price_draw: float | None = None
    line: float | None = None

    def prices(self) -> Tuple[float, ...]:
        """Return prices ordered ``a, (draw), b``."""

        if self.price_draw is None:
            return (self.price_a, self.price_b)
        return (self.price_a, self.price_draw, self.price_b)
