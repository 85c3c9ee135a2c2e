"""Joint scoreline distributions built from scoring-rate parameters."""

from __future__ import annotations

import dataclasses
import logging
import math
from typing import TYPE_CHECKING, Callable, Dict

import numpy as np

from .combinatorics import log_factorials

if TYPE_CHECKING:  # pragma: no cover - imported for type checking only
    from .sports import LateShiftConfig, ScorelineConfig, SharedIntensityConfig

logger = logging.getLogger(__name__)

__all__ = [
    "RENORMALISE_THRESHOLD",
    "OutcomeDistribution",
    "poisson_log_pmf",
    "finalise",
    "independent_poisson",
    "dixon_coles",
    "shared_intensity",
    "late_shift",
    "late_shift_fraction",
    "shared_intensity_from_total",
    "poisson_support_limit",
    "build_scoreline",
]

RENORMALISE_THRESHOLD = 1e-3
_MIN_RATE = 1e-9
_MIN_COMPONENT_RATE = 0.01
SUPPORT_TAIL = 1e-10

CellPredicate = Callable[[np.ndarray, np.ndarray], np.ndarray]


# ---------------------------------------------------------------------------
# Frozen distribution container
# ---------------------------------------------------------------------------


@dataclasses.dataclass(frozen=True, slots=True)
class OutcomeDistribution:
    """Probability mass over ``(score_a, score_b)`` results.

    ``grid[a, b]`` holds the probability that side A finishes with ``a`` and
    side B with ``b``.  Parametric grids are truncated at ``max_score``; the
    mass that fell outside the grid before renormalisation is kept in
    ``truncated_mass`` so market queries can report it.  Distributions from
    exact convolution set ``exact`` and carry no truncation.
    """

    grid: np.ndarray
    truncated_mass: float = 0.0
    renormalised: bool = False
    exact: bool = False

    def __post_init__(self) -> None:
        grid = np.array(self.grid, dtype=float, copy=True)
        if grid.ndim != 2:
            raise ValueError("outcome grid must be two dimensional")
        grid.setflags(write=False)
        object.__setattr__(self, "grid", grid)

    @property
    def max_score_a(self) -> int:
        return self.grid.shape[0] - 1

    @property
    def max_score_b(self) -> int:
        return self.grid.shape[1] - 1

    @property
    def max_score(self) -> int:
        return max(self.max_score_a, self.max_score_b)

    @property
    def total_mass(self) -> float:
        return float(self.grid.sum())

    def indices(self) -> tuple[np.ndarray, np.ndarray]:
        """Return broadcastable score index arrays for side A and side B."""

        scores_a = np.arange(self.grid.shape[0])[:, None]
        scores_b = np.arange(self.grid.shape[1])[None, :]
        return scores_a, scores_b

    def mask(self, predicate: CellPredicate) -> np.ndarray:
        scores_a, scores_b = self.indices()
        return np.broadcast_to(predicate(scores_a, scores_b), self.grid.shape)

    def probability(self, predicate: CellPredicate) -> float:
        return float(self.grid[self.mask(predicate)].sum())

    def touches_edge(self, predicate: CellPredicate) -> bool:
        """Whether any selected cell lies on the truncation boundary."""

        if self.exact:
            return False
        selected = self.mask(predicate)
        return bool(selected[-1, :].any() or selected[:, -1].any())

    def marginal_a(self) -> np.ndarray:
        return self.grid.sum(axis=1)

    def marginal_b(self) -> np.ndarray:
        return self.grid.sum(axis=0)

    def margin_distribution(self) -> Dict[int, float]:
        """Return ``P(score_a - score_b = m)`` keyed by the signed margin."""

        distribution: Dict[int, float] = {}
        rows, cols = self.grid.shape
        for margin in range(-(cols - 1), rows):
            value = float(np.trace(self.grid, offset=-margin))
            if value > 0.0:
                distribution[margin] = value
        return distribution

    def total_distribution(self) -> Dict[int, float]:
        flipped = self.grid[:, ::-1]
        rows, cols = self.grid.shape
        distribution: Dict[int, float] = {}
        for total in range(rows + cols - 1):
            value = float(np.trace(flipped, offset=cols - 1 - total))
            if value > 0.0:
                distribution[total] = value
        return distribution

    def expected_scores(self) -> tuple[float, float]:
        marginal_a = self.marginal_a()
        marginal_b = self.marginal_b()
        expected_a = float(np.dot(np.arange(marginal_a.size), marginal_a))
        expected_b = float(np.dot(np.arange(marginal_b.size), marginal_b))
        return expected_a, expected_b


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


def poisson_log_pmf(lam: float, max_score: int) -> np.ndarray:
    """Log-space Poisson mass ``k ln(lam) - lam - ln(k!)`` for ``k = 0..max_score``."""

    rate = max(float(lam), _MIN_RATE)
    counts = np.arange(max_score + 1, dtype=float)
    return counts * math.log(rate) - rate - log_factorials(max_score)


def finalise(grid: np.ndarray, *, exact: bool = False) -> OutcomeDistribution:
    """Freeze a raw grid, renormalising when the mass drifted from one."""

    grid = np.clip(np.nan_to_num(grid, nan=0.0, posinf=0.0, neginf=0.0), 0.0, None)
    mass = float(grid.sum())
    truncated = 0.0 if exact else max(0.0, 1.0 - mass)
    renormalised = False
    if mass > 0.0 and abs(mass - 1.0) > RENORMALISE_THRESHOLD:
        grid = grid / mass
        renormalised = True
        logger.debug(
            "Renormalised %dx%d grid with mass %.6f", grid.shape[0], grid.shape[1], mass
        )
    return OutcomeDistribution(
        grid=grid, truncated_mass=truncated, renormalised=renormalised, exact=exact
    )


def _independent_grid(lam_a: float, lam_b: float, max_score: int) -> np.ndarray:
    log_a = poisson_log_pmf(lam_a, max_score)
    log_b = poisson_log_pmf(lam_b, max_score)
    return np.exp(log_a[:, None] + log_b[None, :])


def _dixon_coles_grid(lam_a: float, lam_b: float, rho: float, max_score: int) -> np.ndarray:
    grid = _independent_grid(lam_a, lam_b, max_score)
    if max_score < 1:
        return grid
    grid[0, 0] *= max(0.0, 1.0 - lam_a * lam_b * rho)
    grid[0, 1] *= max(0.0, 1.0 + lam_a * rho)
    grid[1, 0] *= max(0.0, 1.0 + lam_b * rho)
    grid[1, 1] *= max(0.0, 1.0 - rho)
    return grid


def _shared_intensity_grid(
    lam_a: float, lam_b: float, shared: float, max_score: int
) -> np.ndarray:
    shared = max(float(shared), _MIN_RATE)
    log_a = poisson_log_pmf(max(_MIN_COMPONENT_RATE, lam_a - shared), max_score)
    log_b = poisson_log_pmf(max(_MIN_COMPONENT_RATE, lam_b - shared), max_score)
    log_shared = poisson_log_pmf(shared, max_score)
    size = max_score + 1
    grid = np.zeros((size, size), dtype=float)
    for count in range(size):
        span = size - count
        grid[count:, count:] += np.exp(
            log_a[:span, None] + log_b[None, :span] + log_shared[count]
        )
    return grid


def _late_shift_grid(grid: np.ndarray, fraction: float) -> np.ndarray:
    if fraction <= 0.0:
        return grid
    shifted = np.array(grid, dtype=float, copy=True)
    size_a, size_b = grid.shape
    for a in range(1, size_a - 1):
        b = a - 1
        if b < size_b:
            moved = grid[a, b] * fraction
            shifted[a, b] -= moved
            shifted[a + 1, b] += moved
    for b in range(1, size_b - 1):
        a = b - 1
        if a < size_a:
            moved = grid[a, b] * fraction
            shifted[a, b] -= moved
            shifted[a, b + 1] += moved
    return shifted


def independent_poisson(lam_a: float, lam_b: float, max_score: int) -> OutcomeDistribution:
    return finalise(_independent_grid(lam_a, lam_b, max_score))


def dixon_coles(
    lam_a: float, lam_b: float, rho: float, max_score: int
) -> OutcomeDistribution:
    """Independent Poisson with the low-score correction applied to 0-0, 0-1, 1-0 and 1-1."""

    return finalise(_dixon_coles_grid(lam_a, lam_b, rho, max_score))


def shared_intensity(
    lam_a: float, lam_b: float, shared: float, max_score: int
) -> OutcomeDistribution:
    """Bivariate Poisson where both sides share a latent count with rate ``shared``.

    The marginal means remain ``lam_a`` and ``lam_b`` while the covariance
    between the two scores equals ``shared``.
    """

    return finalise(_shared_intensity_grid(lam_a, lam_b, shared, max_score))


def late_shift(distribution: OutcomeDistribution, fraction: float) -> OutcomeDistribution:
    """Move ``fraction`` of every one-goal result into the matching two-goal result."""

    if not 0.0 <= fraction < 1.0:
        raise ValueError("late shift fraction must be within [0, 1)")
    grid = _late_shift_grid(np.array(distribution.grid, dtype=float), fraction)
    result = finalise(grid)
    return dataclasses.replace(
        result, truncated_mass=max(result.truncated_mass, distribution.truncated_mass)
    )


def late_shift_fraction(expected_total: float, config: "LateShiftConfig") -> float:
    if not config.enabled or config.reference_total <= 0.0:
        return 0.0
    return min(config.cap, config.base * max(expected_total, 0.0) / config.reference_total)


def shared_intensity_from_total(expected_total: float, config: "SharedIntensityConfig") -> float:
    """Interpolate the shared scoring rate from the expected match total."""

    if expected_total <= config.total_low:
        return config.low
    if expected_total >= config.total_high:
        return config.high
    span = config.total_high - config.total_low
    weight = (expected_total - config.total_low) / span
    return config.low + weight * (config.high - config.low)


def poisson_support_limit(lam: float, tail: float = SUPPORT_TAIL) -> int:
    """Smallest ``n`` with ``P(X > n) < tail`` for ``X ~ Poisson(lam)``."""

    rate = max(float(lam), _MIN_RATE)
    upper = int(math.ceil(rate + 15.0 * math.sqrt(rate))) + 30
    mass = np.exp(poisson_log_pmf(rate, upper))
    # exceeding[n] = P(n < X <= upper)
    exceeding = np.append(np.cumsum(mass[::-1])[::-1][1:], 0.0)
    return int(np.nonzero(exceeding < tail)[0][0])


def build_scoreline(
    lam_a: float,
    lam_b: float,
    config: "ScorelineConfig",
    *,
    scale: float = 1.0,
    apply_late_shift: bool = True,
) -> OutcomeDistribution:
    """Build the configured scoreline variant for rates scaled by ``scale``.

    ``scale`` rebuilds a time slice of the match (for example ``0.45`` for a
    soccer first half); the late shift only applies to full matches.

    ``config.max_score`` is the smallest grid built.  The grid grows until
    each side's Poisson tail beyond it is below :data:`SUPPORT_TAIL`, so
    grid-derived markets agree with closed-form ones.
    """

    rate_a = lam_a * scale
    rate_b = lam_b * scale
    size = max(config.max_score, poisson_support_limit(max(rate_a, rate_b)))
    variant = config.variant
    if variant == "independent":
        grid = _independent_grid(rate_a, rate_b, size)
    elif variant == "dixon_coles":
        grid = _dixon_coles_grid(rate_a, rate_b, config.rho, size)
    elif variant == "shared_intensity":
        shared = shared_intensity_from_total(lam_a + lam_b, config.shared) * scale
        grid = _shared_intensity_grid(rate_a, rate_b, shared, size)
    else:
        raise ValueError(f"Unknown scoreline variant: {variant}")
    if apply_late_shift and config.late_shift.enabled:
        fraction = late_shift_fraction(lam_a + lam_b, config.late_shift)
        grid = _late_shift_grid(grid, fraction)
    distribution = finalise(grid)
    if distribution.truncated_mass > RENORMALISE_THRESHOLD:
        logger.debug(
            "Scoreline grid truncated at %d loses %.5f of the mass",
            size,
            distribution.truncated_mass,
        )
    return distribution
