"""Sport strategy objects that fit outcome models to fair market targets."""

from __future__ import annotations

import dataclasses
import logging
import types
from typing import Dict, Mapping, Tuple

import numpy as np

from . import markets
from .devig import FairProbabilities
from .distributions import OutcomeDistribution, build_scoreline
from .errors import InvalidInputError
from .race import race_distribution, race_win_probability
from .racquet import MatchDistribution, match_distribution
from .rally import RallyMatch, match_win_probability, rally_match
from .solvers import SolverResult, bisect, solve_iterative
from .sports import SportProfile

logger = logging.getLogger(__name__)

__all__ = [
    "MarketTarget",
    "FittedModel",
    "OutcomeModel",
    "ScorelineModel",
    "TennisModel",
    "RaceModel",
    "RallyModel",
    "model_for_profile",
]


@dataclasses.dataclass(frozen=True, slots=True)
class MarketTarget:
    """Fair probabilities for one quoted market and the line it was quoted at."""

    kind: str
    fair: FairProbabilities
    line: float | None = None

    @property
    def three_way(self) -> bool:
        return len(self.fair.probabilities) == 3


@dataclasses.dataclass(frozen=True, slots=True)
class FittedModel:
    """Frozen outcome of one calibration run."""

    sport: str
    family: str
    parameters: Mapping[str, float]
    distribution: OutcomeDistribution
    periods: Mapping[str, OutcomeDistribution]
    solver: SolverResult
    lines: Mapping[str, float]
    match: MatchDistribution | RallyMatch | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "parameters", types.MappingProxyType(dict(self.parameters)))
        object.__setattr__(self, "periods", types.MappingProxyType(dict(self.periods)))
        object.__setattr__(self, "lines", types.MappingProxyType(dict(self.lines)))

    @property
    def converged(self) -> bool:
        return self.solver.converged


def _line_probability(triple: markets.ProbabilityTriple) -> float:
    """Win probability conditional on the line not being pushed."""

    decided = triple.win + triple.loss
    if decided <= 0.0:
        return 0.5
    return triple.win / decided


def _two_way_share(result: markets.ResultProbabilities) -> float:
    decided = result.a + result.b
    if decided <= 0.0:
        return 0.5
    return result.a / decided


def _lines(targets: Mapping[str, MarketTarget]) -> Dict[str, float]:
    return {
        kind: float(target.line)
        for kind, target in targets.items()
        if target.line is not None
    }


class OutcomeModel:
    """Base class for sport strategies."""

    def __init__(self, profile: SportProfile) -> None:
        self.profile = profile

    def fit(self, targets: Mapping[str, MarketTarget]) -> FittedModel:
        raise NotImplementedError

    @staticmethod
    def _require(targets: Mapping[str, MarketTarget], kind: str) -> MarketTarget:
        target = targets.get(kind)
        if target is None:
            raise InvalidInputError(f"a '{kind}' market is required")
        if kind in {"handicap", "total"} and target.line is None:
            raise InvalidInputError(f"the '{kind}' market needs a line")
        return target


# ---------------------------------------------------------------------------
# Scoreline sports
# ---------------------------------------------------------------------------


class ScorelineModel(OutcomeModel):
    """Poisson-family scoreline model shared by goal-scoring sports.

    The fit moves two scoring rates.  Win and handicap errors shift the rates
    apart, a totals error moves them together and a draw error moves them
    together in the opposite direction.  Every quoted market is a target;
    when they over-determine the two rates the fit settles where the weighted
    errors cancel.
    """

    WEIGHTS: Mapping[str, Mapping[str, float]] = {
        "a": {"rate_a": 1.0, "rate_b": -1.0},
        "handicap": {"rate_a": 1.0, "rate_b": -1.0},
        "over": {"rate_a": 1.0, "rate_b": 1.0},
        "draw": {"rate_a": -0.5, "rate_b": -0.5},
    }

    def __init__(self, profile: SportProfile) -> None:
        if profile.scoreline is None:
            raise InvalidInputError(f"sport '{profile.name}' has no scoreline configuration")
        super().__init__(profile)
        self.config = profile.scoreline

    def distribution(self, rate_a: float, rate_b: float) -> OutcomeDistribution:
        return build_scoreline(rate_a, rate_b, self.config)

    def period_distributions(self, rate_a: float, rate_b: float) -> Dict[str, OutcomeDistribution]:
        return {
            name: build_scoreline(rate_a, rate_b, self.config, scale=share, apply_late_shift=False)
            for name, share in self.config.periods.items()
        }

    def _targets(self, targets: Mapping[str, MarketTarget]) -> Dict[str, float]:
        result = targets.get("result")
        handicap = targets.get("handicap")
        totals = targets.get("total")
        if result is None and handicap is None:
            raise InvalidInputError("a 'result' or 'handicap' market is required")
        chosen: Dict[str, float] = {}
        if result is not None:
            chosen["a"] = result.fair[0]
            if result.three_way:
                chosen["draw"] = result.fair[1]
        if handicap is not None:
            self._require(targets, "handicap")
            chosen["handicap"] = handicap.fair[0]
        if totals is not None:
            self._require(targets, "total")
            chosen["over"] = totals.fair[0]
        return chosen

    def _prior(self, targets: Mapping[str, MarketTarget]) -> Dict[str, float]:
        rate_a = self.config.prior_rate_a
        rate_b = self.config.prior_rate_b
        totals = targets.get("total")
        if totals is not None and totals.line is not None and totals.line > 0:
            scale = totals.line / (rate_a + rate_b)
            rate_a *= scale
            rate_b *= scale
        return {"rate_a": rate_a, "rate_b": rate_b}

    def evaluate(
        self, params: Mapping[str, float], targets: Mapping[str, MarketTarget]
    ) -> Dict[str, float]:
        """Model quantities comparable with the fair targets."""

        distribution = self.distribution(params["rate_a"], params["rate_b"])
        quantities: Dict[str, float] = {}
        result_target = targets.get("result")
        result = markets.result_probabilities(distribution)
        if result_target is not None and not result_target.three_way:
            quantities["a"] = _two_way_share(result)
        else:
            quantities["a"] = result.a
        quantities["draw"] = result.draw
        handicap = targets.get("handicap")
        if handicap is not None and handicap.line is not None:
            quantities["handicap"] = _line_probability(
                markets.handicap(distribution, handicap.line, "a")
            )
        totals = targets.get("total")
        if totals is not None and totals.line is not None:
            quantities["over"] = _line_probability(
                markets.total(distribution, totals.line, "over")
            )
        return quantities

    def fit(self, targets: Mapping[str, MarketTarget]) -> FittedModel:
        wanted = self._targets(targets)
        bounds = {
            "rate_a": (self.config.lower_bound, self.config.upper_bound),
            "rate_b": (self.config.lower_bound, self.config.upper_bound),
        }
        result = solve_iterative(
            prior=self._prior(targets),
            bounds=bounds,
            evaluate=lambda params: self.evaluate(params, targets),
            targets=wanted,
            weights=self.WEIGHTS,
            settings=self.profile.solver.settings(),
        )
        rate_a = result.parameters["rate_a"]
        rate_b = result.parameters["rate_b"]
        logger.debug(
            "%s fit rates %.4f/%.4f residual %.6f after %d iterations",
            self.profile.name,
            rate_a,
            rate_b,
            result.residual,
            result.iterations,
        )
        return FittedModel(
            sport=self.profile.name,
            family=self.profile.family,
            parameters=result.parameters,
            distribution=self.distribution(rate_a, rate_b),
            periods=self.period_distributions(rate_a, rate_b),
            solver=result,
            lines=_lines(targets),
        )


# ---------------------------------------------------------------------------
# Racquet sports
# ---------------------------------------------------------------------------


class TennisModel(OutcomeModel):
    """Fits two hold probabilities through the exact match model.

    The parameters are the average hold ``level`` and the ``gap`` between
    the players.  For any level the gap reproducing the match-winner price is
    found by bisection.  With a totals market the level is bisected on top of
    that, over ``[level_lower, hold_upper]``; total games rise with the level
    there, so the outer search is monotone.  Without one the level stays at
    the surface prior.
    """

    def __init__(self, profile: SportProfile, surface: str | None = None) -> None:
        if profile.tennis is None:
            raise InvalidInputError(f"sport '{profile.name}' has no tennis configuration")
        super().__init__(profile)
        self.config = profile.tennis
        surface_key = (surface or self.config.default_surface).strip().lower()
        if surface_key not in self.config.surface_priors:
            known = ", ".join(sorted(self.config.surface_priors))
            raise InvalidInputError(f"Unknown surface '{surface}'; expected one of: {known}")
        self.surface = surface_key

    def holds(self, level: float, gap: float) -> tuple[float, float]:
        lower, upper = self.config.hold_lower, self.config.hold_upper
        hold_a = min(upper, max(lower, level + 0.5 * gap))
        hold_b = min(upper, max(lower, level - 0.5 * gap))
        return hold_a, hold_b

    def match(self, level: float, gap: float) -> MatchDistribution:
        hold_a, hold_b = self.holds(level, gap)
        return match_distribution(
            hold_a,
            hold_b,
            sets_to_win=self.config.sets_to_win,
            games=self.config.games,
            tiebreak_target=self.config.tiebreak_target,
            first_server=self.config.first_server,
        )

    def evaluate(
        self, params: Mapping[str, float], targets: Mapping[str, MarketTarget]
    ) -> Dict[str, float]:
        match = self.match(params["level"], params["gap"])
        quantities = {"a": match.match_win_probability}
        totals = targets.get("total")
        if totals is not None and totals.line is not None:
            quantities["over"] = _line_probability(
                markets.total(match.games, totals.line, "over")
            )
        return quantities

    def _fit_gap(self, level: float, target: float) -> Tuple[float, int]:
        gap, _, iterations = bisect(
            lambda value: self.match(level, value).match_win_probability,
            target,
            -self.config.max_gap,
            self.config.max_gap,
            max_iterations=50,
            tolerance=0.25 * self.profile.solver.tolerance,
        )
        return gap, iterations

    def _fit_level(self, match_target: float, over_target: float, line: float) -> Tuple[float, float, int]:
        gaps: Dict[float, float] = {}
        evaluations = 0

        def over_probability(level: float) -> float:
            nonlocal evaluations
            gap, used = self._fit_gap(level, match_target)
            gaps[level] = gap
            evaluations += used
            return _line_probability(markets.total(self.match(level, gap).games, line, "over"))

        level, _, _ = bisect(
            over_probability,
            over_target,
            self.config.level_lower,
            self.config.hold_upper,
            max_iterations=50,
            tolerance=0.5 * self.profile.solver.tolerance,
        )
        return level, gaps[level], evaluations

    def fit(self, targets: Mapping[str, MarketTarget]) -> FittedModel:
        result_target = self._require(targets, "result")
        if result_target.three_way:
            raise InvalidInputError("tennis match markets must be two-way")
        match_target = result_target.fair[0]
        totals = targets.get("total")
        wanted = {"a": match_target}
        if totals is None:
            level = self.config.surface_priors[self.surface]
            gap, iterations = self._fit_gap(level, match_target)
        else:
            self._require(targets, "total")
            wanted["over"] = totals.fair[0]
            level, gap, iterations = self._fit_level(match_target, totals.fair[0], float(totals.line))
        parameters = {"level": level, "gap": gap}
        quantities = self.evaluate(parameters, targets)
        residual = sum(abs(target - quantities[name]) for name, target in wanted.items())
        converged = residual < self.profile.solver.tolerance
        if not converged:
            logger.warning(
                "Hold bisection stopped with residual %.6f; returning best estimate", residual
            )
        result = SolverResult(
            parameters=parameters,
            residual=residual,
            iterations=iterations,
            converged=converged,
            quantities=quantities,
        )
        hold_a, hold_b = self.holds(level, gap)
        match = self.match(level, gap)
        first_set = np.zeros((self.config.games + 2, self.config.games + 2), dtype=float)
        for (games_a, games_b), probability in match.first_set.items():
            first_set[games_a, games_b] = probability
        parameters.update({"hold_a": hold_a, "hold_b": hold_b})
        return FittedModel(
            sport=self.profile.name,
            family=self.profile.family,
            parameters=parameters,
            distribution=match.games,
            periods={"first_set": OutcomeDistribution(grid=first_set, exact=True)},
            solver=result,
            lines=_lines(targets),
            match=match,
        )


# ---------------------------------------------------------------------------
# Race sports
# ---------------------------------------------------------------------------


class RaceModel(OutcomeModel):
    """Recovers the per-frame win probability implied by the match price."""

    def __init__(self, profile: SportProfile, frames_to_win: int | None = None) -> None:
        if profile.race is None:
            raise InvalidInputError(f"sport '{profile.name}' has no race configuration")
        super().__init__(profile)
        self.config = profile.race
        self.frames_to_win = int(frames_to_win or self.config.frames_to_win)
        if self.frames_to_win < 1:
            raise InvalidInputError("frames_to_win must be positive")

    def fit(self, targets: Mapping[str, MarketTarget]) -> FittedModel:
        result_target = self._require(targets, "result")
        if result_target.three_way:
            raise InvalidInputError("race match markets must be two-way")
        target = result_target.fair[0]
        frame, residual, iterations = bisect(
            lambda value: race_win_probability(value, self.frames_to_win),
            target,
            self.config.lower_bound,
            self.config.upper_bound,
            max_iterations=self.config.max_iterations,
            tolerance=self.config.tolerance,
        )
        converged = residual < self.config.tolerance
        if not converged:
            logger.warning(
                "Frame probability bisection stopped with residual %.6f; returning best estimate",
                residual,
            )
        result = SolverResult(
            parameters={"frame_probability": frame},
            residual=residual,
            iterations=iterations,
            converged=converged,
            quantities={"a": race_win_probability(frame, self.frames_to_win)},
        )
        first_frame = np.array([[0.0, 1.0 - frame], [frame, 0.0]])
        return FittedModel(
            sport=self.profile.name,
            family=self.profile.family,
            parameters={"frame_probability": frame, "frames_to_win": float(self.frames_to_win)},
            distribution=race_distribution(frame, self.frames_to_win),
            periods={"first_frame": OutcomeDistribution(grid=first_frame, exact=True)},
            solver=result,
            lines=_lines(targets),
        )


class RallyModel(OutcomeModel):
    """Recovers the rally-win probability implied by the match price.

    One point probability drives every set, so only the match-winner price
    is fitted.  Quoted handicap and total lines are points lines and only
    centre the derived ladders.
    """

    def __init__(self, profile: SportProfile) -> None:
        if profile.rally is None:
            raise InvalidInputError(f"sport '{profile.name}' has no rally configuration")
        super().__init__(profile)
        self.config = profile.rally

    def match(self, point: float) -> RallyMatch:
        return rally_match(point, sets_to_win=self.config.sets_to_win, set_targets=self.config.set_targets)

    def fit(self, targets: Mapping[str, MarketTarget]) -> FittedModel:
        result_target = self._require(targets, "result")
        if result_target.three_way:
            raise InvalidInputError("rally match markets must be two-way")
        target = result_target.fair[0]
        point, residual, iterations = bisect(
            lambda value: match_win_probability(value, self.config.sets_to_win, self.config.set_targets),
            target,
            self.config.lower_bound,
            self.config.upper_bound,
            max_iterations=self.config.max_iterations,
            tolerance=self.config.tolerance,
        )
        converged = residual < self.config.tolerance
        if not converged:
            logger.warning(
                "Point probability bisection stopped with residual %.6f; returning best estimate",
                residual,
            )
        match = self.match(point)
        result = SolverResult(
            parameters={"point_probability": point},
            residual=residual,
            iterations=iterations,
            converged=converged,
            quantities={"a": match.match_win_probability},
        )
        return FittedModel(
            sport=self.profile.name,
            family=self.profile.family,
            parameters={
                "point_probability": point,
                "set_probability": match.set_win_probabilities[0],
                "sets_to_win": float(self.config.sets_to_win),
            },
            distribution=match.points,
            periods={"first_set": match.first_set_points},
            solver=result,
            lines=_lines(targets),
            match=match,
        )


def model_for_profile(
    profile: SportProfile,
    *,
    surface: str | None = None,
    frames_to_win: int | None = None,
) -> OutcomeModel:
    """Select the strategy object for ``profile.family``."""

    if profile.family == "scoreline":
        return ScorelineModel(profile)
    if profile.family == "racquet":
        return TennisModel(profile, surface=surface)
    if profile.family == "race":
        return RaceModel(profile, frames_to_win=frames_to_win)
    if profile.family == "rally":
        return RallyModel(profile)
    raise InvalidInputError(f"Unknown model family: {profile.family}")
