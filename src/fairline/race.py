"""Race-to-N frame distributions for cue sports."""

from __future__ import annotations

import math
from typing import Dict, Tuple

import numpy as np

from .combinatorics import log_binomial
from .distributions import OutcomeDistribution

__all__ = ["race_distribution", "race_win_probability", "result_after_frames"]


def _log_power(count: int, probability: float) -> float:
    if count == 0:
        return 0.0
    if probability <= 0.0:
        return float("-inf")
    return count * math.log(probability)


def race_distribution(frame_probability: float, frames_to_win: int) -> OutcomeDistribution:
    """Exact final-score distribution of a first-to-``frames_to_win`` match.

    A wins ``n``-``k`` when it takes the last frame after winning ``n - 1``
    of the first ``n - 1 + k``; the negative binomial mass is evaluated in
    log space so long matches do not underflow.
    """

    if frames_to_win < 1:
        raise ValueError("frames_to_win must be positive")
    p = min(1.0, max(0.0, float(frame_probability)))
    q = 1.0 - p
    grid = np.zeros((frames_to_win + 1, frames_to_win + 1), dtype=float)
    for lost in range(frames_to_win):
        combinations = log_binomial(frames_to_win - 1 + lost, lost)
        grid[frames_to_win, lost] = math.exp(
            combinations + _log_power(frames_to_win, p) + _log_power(lost, q)
        )
        grid[lost, frames_to_win] = math.exp(
            combinations + _log_power(frames_to_win, q) + _log_power(lost, p)
        )
    return OutcomeDistribution(grid=grid, exact=True)


def race_win_probability(frame_probability: float, frames_to_win: int) -> float:
    return float(race_distribution(frame_probability, frames_to_win).marginal_a()[frames_to_win])


def result_after_frames(frame_probability: float, frames: int) -> Dict[Tuple[int, int], float]:
    """Frame split after ``frames`` frames, assuming the match is still running."""

    if frames < 0:
        raise ValueError("frames must be non-negative")
    p = min(1.0, max(0.0, float(frame_probability)))
    q = 1.0 - p
    return {
        (won, frames - won): math.exp(
            log_binomial(frames, won) + _log_power(won, p) + _log_power(frames - won, q)
        )
        for won in range(frames + 1)
    }
