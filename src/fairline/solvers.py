"""Calibration solvers that fit model parameters to fair market targets.

Market odds rarely admit an exact fit, so neither solver raises when it
runs out of budget.  The iterative solver reports the best parameter set it
observed together with its residual, and callers decide whether an
approximate fit is acceptable.
"""

from __future__ import annotations

import dataclasses
import logging
import math
import types
from typing import Callable, Dict, Mapping, Tuple

logger = logging.getLogger(__name__)

__all__ = ["SolverSettings", "SolverResult", "solve_iterative", "bisect"]

Evaluator = Callable[[Mapping[str, float]], Mapping[str, float]]


@dataclasses.dataclass(frozen=True, slots=True)
class SolverSettings:
    """Step schedule and stopping rule for :func:`solve_iterative`."""

    step: float = 0.1
    decay: float = 1.0
    tolerance: float = 1e-4
    max_iterations: int = 500


@dataclasses.dataclass(frozen=True, slots=True)
class SolverResult:
    parameters: Mapping[str, float]
    residual: float
    iterations: int
    converged: bool
    quantities: Mapping[str, float] = dataclasses.field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "parameters", types.MappingProxyType(dict(self.parameters)))
        object.__setattr__(self, "quantities", types.MappingProxyType(dict(self.quantities)))


def _clip(value: float, bounds: Tuple[float, float]) -> float:
    lower, upper = bounds
    return min(upper, max(lower, value))


def solve_iterative(
    prior: Mapping[str, float],
    bounds: Mapping[str, Tuple[float, float]],
    evaluate: Evaluator,
    targets: Mapping[str, float],
    weights: Mapping[str, Mapping[str, float]],
    settings: SolverSettings | None = None,
) -> SolverResult:
    """Fit parameters by repeated weighted error correction.

    Each iteration evaluates the model at the current parameters, computes
    ``target - model`` for every named target and moves each parameter by
    ``step * sum(weights[target][param] * error)``.  Parameters are clipped to
    ``bounds`` after every move and the step decays geometrically.

    The loop stops once the summed absolute error drops below the tolerance.
    With more targets than parameters an exact fit rarely exists, so the loop
    also stops once every weighted correction is below the tolerance and
    returns that balanced fit with its remaining residual.  Otherwise the
    lowest-error parameters seen during the run are returned with
    ``converged=False``.
    """

    settings = settings or SolverSettings()
    params: Dict[str, float] = {
        name: _clip(float(value), bounds[name]) if name in bounds else float(value)
        for name, value in prior.items()
    }
    overdetermined = len(targets) > len(params)
    step = settings.step
    best_params = dict(params)
    best_quantities: Mapping[str, float] = {}
    best_residual = math.inf
    iterations = 0

    for iterations in range(1, settings.max_iterations + 1):
        quantities = evaluate(params)
        errors = {name: target - quantities[name] for name, target in targets.items()}
        residual = sum(abs(error) for error in errors.values())
        if math.isfinite(residual) and residual < best_residual:
            best_residual = residual
            best_params = dict(params)
            best_quantities = dict(quantities)
        if residual < settings.tolerance:
            return SolverResult(
                parameters=best_params,
                residual=best_residual,
                iterations=iterations,
                converged=True,
                quantities=best_quantities,
            )
        corrections = {
            name: sum(
                weights.get(target, {}).get(name, 0.0) * error
                for target, error in errors.items()
            )
            for name in params
        }
        if overdetermined and max(abs(value) for value in corrections.values()) < settings.tolerance:
            logger.debug(
                "Solver balanced %d targets after %d iterations with residual %.6f",
                len(targets),
                iterations,
                residual,
            )
            return SolverResult(
                parameters=params,
                residual=residual,
                iterations=iterations,
                converged=True,
                quantities=quantities,
            )
        for name, correction in corrections.items():
            updated = params[name] + step * correction
            params[name] = _clip(updated, bounds[name]) if name in bounds else updated
        step *= settings.decay

    logger.warning(
        "Solver stopped after %d iterations with residual %.6f; returning best observed fit",
        iterations,
        best_residual,
    )
    return SolverResult(
        parameters=best_params,
        residual=best_residual,
        iterations=iterations,
        converged=False,
        quantities=best_quantities,
    )


def bisect(
    function: Callable[[float], float],
    target: float,
    lower: float,
    upper: float,
    *,
    max_iterations: int = 50,
    tolerance: float = 1e-4,
    increasing: bool = True,
) -> Tuple[float, float, int]:
    """Invert a monotone ``function`` on ``[lower, upper]``.

    Returns the midpoint of the final bracket, ``|function(x) - target|`` and
    the number of evaluations used.  Targets outside the attainable range
    converge to the nearest bound.
    """

    if lower > upper:
        raise ValueError("lower bound must not exceed upper bound")
    if max_iterations < 1:
        raise ValueError("max_iterations must be positive")
    low, high = lower, upper
    midpoint = 0.5 * (low + high)
    value = math.nan
    iterations = 0
    for iterations in range(1, max_iterations + 1):
        midpoint = 0.5 * (low + high)
        value = function(midpoint)
        if abs(value - target) < tolerance:
            break
        if (value < target) == increasing:
            low = midpoint
        else:
            high = midpoint
    return midpoint, abs(value - target), iterations
