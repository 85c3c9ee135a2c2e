"""Secondary market catalogue built from a fitted model.

Line markets are quoted with the probability of winning given that the bet
is not pushed, so ``1 / probability`` is the fair price for integer lines
with stake refunds as well as for half lines.
"""

from __future__ import annotations

import logging
import math
from typing import TYPE_CHECKING, Dict, Iterable, List, Mapping

import polars as pl

from . import markets, skellam
from .errors import InvalidInputError
from .markets import Estimate, MarketQuote, ProbabilityTriple
from .race import race_win_probability, result_after_frames
from .racquet import MatchDistribution
from .rally import RallyMatch

if TYPE_CHECKING:  # pragma: no cover - imported for type checking only
    from .config import FairlineSettings
    from .distributions import OutcomeDistribution
    from .models import FittedModel
    from .sports import SportProfile

logger = logging.getLogger(__name__)

__all__ = ["Catalogue", "ladder", "build_catalogue", "catalogue_frame"]

Catalogue = Dict[str, List[MarketQuote]]


def ladder(base: float, step: float, rungs: int) -> List[float]:
    """Lines ``base - rungs * step`` .. ``base + rungs * step``."""

    return [round(base + offset * step, 4) for offset in range(-rungs, rungs + 1)]


def _half_line(value: float) -> float:
    return math.floor(value) + 0.5


def _signed(line: float) -> str:
    return f"{line + 0.0:+g}"


class _Builder:
    def __init__(self, settings: "FairlineSettings | None") -> None:
        self.settings = settings
        self.catalogue: Catalogue = {}

    def add(self, market: str, label: str, probability: float | Estimate, bias: float | None = None) -> None:
        self.catalogue.setdefault(market, []).append(
            markets.quote(label, probability, settings=self.settings, truncation_bias=bias)
        )

    def add_line(self, market: str, label: str, triple: ProbabilityTriple) -> None:
        decided = triple.win + triple.loss
        probability = triple.win / decided if decided > 0.0 else 0.0
        self.add(market, label, probability, triple.truncation_bias)

    def add_many(self, market: str, estimates: Mapping[str, Estimate]) -> None:
        for key, estimate in estimates.items():
            self.add(market, key, estimate)


# ---------------------------------------------------------------------------
# Shared scoreline markets
# ---------------------------------------------------------------------------


def _score_markets(
    builder: _Builder,
    distribution: "OutcomeDistribution",
    *,
    prefix: str,
    total_lines: Iterable[float],
    handicap_lines: Iterable[float],
    team_lines: Mapping[str, Iterable[float]],
    low_scoring: bool,
    exact_limit: int,
    range_width: int | None,
) -> None:
    result = markets.result_probabilities(distribution)
    builder.add(f"{prefix}result", "a", result.a, result.truncation_bias)
    builder.add(f"{prefix}result", "draw", result.draw, result.truncation_bias)
    builder.add(f"{prefix}result", "b", result.b, result.truncation_bias)
    builder.add_many(f"{prefix}double_chance", markets.double_chance(distribution))
    builder.add_many(f"{prefix}draw_no_bet", markets.draw_no_bet(distribution))
    for line in handicap_lines:
        builder.add_line(f"{prefix}handicap", f"a {_signed(line)}", markets.handicap(distribution, line, "a"))
        builder.add_line(f"{prefix}handicap", f"b {_signed(-line)}", markets.handicap(distribution, -line, "b"))
    for line in total_lines:
        builder.add_line(f"{prefix}total", f"over {line:g}", markets.total(distribution, line, "over"))
        builder.add_line(f"{prefix}total", f"under {line:g}", markets.total(distribution, line, "under"))
    for team, lines in team_lines.items():
        for line in lines:
            builder.add_line(
                f"{prefix}team_total_{team}",
                f"over {line:g}",
                markets.team_total(distribution, team, line, "over"),
            )
            builder.add_line(
                f"{prefix}team_total_{team}",
                f"under {line:g}",
                markets.team_total(distribution, team, line, "under"),
            )
    builder.add_many(f"{prefix}odd_even", markets.odd_even(distribution))
    if low_scoring:
        builder.add(f"{prefix}both_score", "yes", markets.both_score(distribution, True))
        builder.add(f"{prefix}both_score", "no", markets.both_score(distribution, False))
        listed = 0.0
        for score_a in range(exact_limit + 1):
            for score_b in range(exact_limit + 1):
                estimate = markets.exact_score(distribution, score_a, score_b)
                listed += estimate.probability
                builder.add(f"{prefix}exact_score", f"{score_a}-{score_b}", estimate)
        builder.add(
            f"{prefix}exact_score",
            "other",
            max(0.0, 1.0 - listed),
            0.0 if distribution.exact else distribution.truncated_mass,
        )
        for count in range(exact_limit):
            builder.add(f"{prefix}exact_total", str(count), markets.exact_total(distribution, count))
        builder.add(
            f"{prefix}exact_total",
            f"{exact_limit}+",
            markets.total_range(distribution, exact_limit, None),
        )
    elif range_width:
        expected_a, expected_b = distribution.expected_scores()
        centre = int(round(expected_a + expected_b))
        start = max(0, centre - 2 * range_width - range_width // 2)
        if start > 0:
            builder.add(f"{prefix}total_range", f"<{start}", markets.total_range(distribution, 0, start - 1))
        for low in range(start, start + 4 * range_width + 1, range_width):
            builder.add(
                f"{prefix}total_range",
                f"{low}-{low + range_width - 1}",
                markets.total_range(distribution, low, low + range_width - 1),
            )
        upper = start + 5 * range_width
        builder.add(f"{prefix}total_range", f"{upper}+", markets.total_range(distribution, upper, None))


def _scoreline_catalogue(builder: _Builder, fit: "FittedModel", profile: "SportProfile") -> None:
    config = profile.scoreline
    if config is None:
        raise InvalidInputError(f"sport '{profile.name}' has no scoreline configuration")
    distribution = fit.distribution
    expected_a, expected_b = distribution.expected_scores()
    step = config.line_step
    low_scoring = config.range_width is None
    total_base = fit.lines.get("total", _half_line(expected_a + expected_b))
    handicap_base = fit.lines.get("handicap", -_half_line(expected_a - expected_b))
    handicap_lines = ladder(handicap_base, step, config.ladder)
    _score_markets(
        builder,
        distribution,
        prefix="",
        total_lines=ladder(total_base, step, config.ladder),
        handicap_lines=handicap_lines,
        team_lines={
            "a": ladder(_half_line(expected_a), step, 1),
            "b": ladder(_half_line(expected_b), step, 1),
        },
        low_scoring=low_scoring,
        exact_limit=config.exact_score_limit,
        range_width=config.range_width,
    )

    if config.variant == "independent" and not config.late_shift.enabled:
        rate_a = fit.parameters["rate_a"]
        rate_b = fit.parameters["rate_b"]
        for line in handicap_lines:
            builder.add_line(
                "handicap_closed_form",
                f"a {_signed(line)}",
                skellam.handicap_probability(rate_a, rate_b, line),
            )

    for (outcome, side), estimate in markets.result_and_total(distribution, total_base).items():
        builder.add("result_total", f"{outcome} & {side} {total_base:g}", estimate)
    if low_scoring:
        for (outcome, yes), estimate in markets.result_and_both_score(distribution).items():
            builder.add("result_both_score", f"{outcome} & {'yes' if yes else 'no'}", estimate)
        for team in ("a", "b"):
            builder.add("clean_sheet", team, markets.clean_sheet(distribution, team))
            builder.add("win_to_nil", team, markets.win_to_nil(distribution, team))
    for side in ("a", "b"):
        for margin in range(1, config.ladder + 1):
            builder.add("winning_margin", f"{side} by {margin}", markets.winning_margin(distribution, side, margin))
        builder.add(
            "winning_margin",
            f"{side} by {config.ladder + 1}+",
            markets.winning_margin(distribution, side, config.ladder + 1, or_more=True),
        )

    periods = dict(fit.periods)
    for name, period in periods.items():
        period_a, period_b = period.expected_scores()
        _score_markets(
            builder,
            period,
            prefix=f"{name}_",
            total_lines=ladder(_half_line(period_a + period_b), step, 1),
            handicap_lines=ladder(-_half_line(period_a - period_b), step, 1),
            team_lines={},
            low_scoring=low_scoring,
            exact_limit=min(3, config.exact_score_limit),
            range_width=None,
        )
    names = list(periods)
    if len(names) == 2:
        first, second = periods[names[0]], periods[names[1]]
        for (half, full), estimate in markets.half_time_full_time(first, second).items():
            builder.add("half_time_full_time", f"{half}/{full}", estimate)
        for side in ("a", "b"):
            builder.add("win_both_periods", side, markets.win_both_periods(first, second, side))
            builder.add("win_either_period", side, markets.win_either_period(first, second, side))
    if len(names) >= 2:
        builder.add_many("highest_scoring_period", markets.highest_scoring_period(periods))


# ---------------------------------------------------------------------------
# Racquet, race and rally sports
# ---------------------------------------------------------------------------


def _tennis_catalogue(builder: _Builder, fit: "FittedModel", profile: "SportProfile") -> None:
    match = fit.match
    config = profile.tennis
    if config is None:
        raise InvalidInputError(f"sport '{profile.name}' has no tennis configuration")
    if not isinstance(match, MatchDistribution):
        raise InvalidInputError("tennis markets need a fitted match distribution")
    games = match.games
    builder.add("match_winner", "a", match.match_win_probability)
    builder.add("match_winner", "b", 1.0 - match.match_win_probability)

    for (sets_a, sets_b), probability in sorted(match.set_scores.items()):
        builder.add("set_betting", f"{sets_a}-{sets_b}", probability)
    straight_a = match.set_scores.get((config.sets_to_win, 0), 0.0)
    straight_b = match.set_scores.get((0, config.sets_to_win), 0.0)
    builder.add("set_handicap", "a -1.5", sum(p for (x, y), p in match.set_scores.items() if x - y >= 2))
    builder.add("set_handicap", "b +1.5", sum(p for (x, y), p in match.set_scores.items() if x - y < 2))
    builder.add("set_handicap", "b -1.5", sum(p for (x, y), p in match.set_scores.items() if y - x >= 2))
    builder.add("set_handicap", "a +1.5", sum(p for (x, y), p in match.set_scores.items() if y - x < 2))
    minimum_sets = config.sets_to_win + 0.5
    builder.add("total_sets", f"over {minimum_sets:g}", 1.0 - straight_a - straight_b)
    builder.add("total_sets", f"under {minimum_sets:g}", straight_a + straight_b)

    expected_a, expected_b = games.expected_scores()
    total_base = fit.lines.get("total", _half_line(match.expected_total_games))
    handicap_base = fit.lines.get("handicap", -_half_line(expected_a - expected_b))
    for line in ladder(handicap_base, 1.0, 3):
        builder.add_line("games_handicap", f"a {_signed(line)}", markets.handicap(games, line, "a"))
        builder.add_line("games_handicap", f"b {_signed(-line)}", markets.handicap(games, -line, "b"))
    for line in ladder(total_base, 1.0, 3):
        builder.add_line("total_games", f"over {line:g}", markets.total(games, line, "over"))
        builder.add_line("total_games", f"under {line:g}", markets.total(games, line, "under"))
    for team, expected in (("a", expected_a), ("b", expected_b)):
        for line in ladder(_half_line(expected), 1.0, 1):
            builder.add_line(f"player_games_{team}", f"over {line:g}", markets.team_total(games, team, line, "over"))
            builder.add_line(f"player_games_{team}", f"under {line:g}", markets.team_total(games, team, line, "under"))
    builder.add_many("odd_even_games", markets.odd_even(games))
    builder.add("tiebreak_in_match", "yes", match.tiebreak_probability)
    builder.add("tiebreak_in_match", "no", 1.0 - match.tiebreak_probability)

    first_set = fit.periods["first_set"]
    first_result = markets.result_probabilities(first_set)
    builder.add("first_set_winner", "a", first_result.a)
    builder.add("first_set_winner", "b", first_result.b)
    for (games_a, games_b), probability in sorted(match.first_set.items()):
        builder.add("first_set_score", f"{games_a}-{games_b}", probability)
    for line in (8.5, 9.5, 10.5):
        builder.add_line("first_set_total", f"over {line:g}", markets.total(first_set, line, "over"))
        builder.add_line("first_set_total", f"under {line:g}", markets.total(first_set, line, "under"))


def _race_catalogue(builder: _Builder, fit: "FittedModel", profile: "SportProfile") -> None:
    config = profile.race
    if config is None:
        raise InvalidInputError(f"sport '{profile.name}' has no race configuration")
    distribution = fit.distribution
    frames_to_win = distribution.max_score
    frame = fit.parameters["frame_probability"]
    result = markets.result_probabilities(distribution)
    builder.add("match_winner", "a", result.a)
    builder.add("match_winner", "b", result.b)
    for lost in range(frames_to_win):
        builder.add("correct_score", f"{frames_to_win}-{lost}", markets.exact_score(distribution, frames_to_win, lost))
    for lost in range(frames_to_win):
        builder.add("correct_score", f"{lost}-{frames_to_win}", markets.exact_score(distribution, lost, frames_to_win))
    for line in [offset + 0.5 for offset in range(-(frames_to_win - 1), frames_to_win - 1)]:
        builder.add_line("frame_handicap", f"a {_signed(line)}", markets.handicap(distribution, line, "a"))
    for line in [frames_to_win + offset + 0.5 for offset in range(frames_to_win - 1)]:
        builder.add_line("total_frames", f"over {line:g}", markets.total(distribution, line, "over"))
        builder.add_line("total_frames", f"under {line:g}", markets.total(distribution, line, "under"))
    builder.add_many("odd_even_frames", markets.odd_even(distribution))
    builder.add("both_win_a_frame", "yes", markets.both_score(distribution, True))
    builder.add("both_win_a_frame", "no", markets.both_score(distribution, False))
    expected_total = sum(total * p for total, p in distribution.total_distribution().items())
    total_line = fit.lines.get("total", _half_line(expected_total))
    for outcome in ("a", "b"):
        for side in ("over", "under"):
            estimate = markets.combine(distribution, [markets.leg_result(outcome), markets.leg_total(total_line, side)])
            builder.add("winner_total", f"{outcome} & {side} {total_line:g}", estimate)
    builder.add("first_frame", "a", frame)
    builder.add("first_frame", "b", 1.0 - frame)
    for target in config.first_to:
        if target < frames_to_win:
            first_to = race_win_probability(frame, target)
            builder.add(f"first_to_{target}", "a", first_to)
            builder.add(f"first_to_{target}", "b", 1.0 - first_to)
    for frames in config.after_frames:
        if frames < frames_to_win:
            for (won, lost), probability in result_after_frames(frame, frames).items():
                builder.add(f"after_{frames}_frames", f"{won}-{lost}", probability)


def _rally_catalogue(builder: _Builder, fit: "FittedModel", profile: "SportProfile") -> None:
    config = profile.rally
    if config is None:
        raise InvalidInputError(f"sport '{profile.name}' has no rally configuration")
    match = fit.match
    if not isinstance(match, RallyMatch):
        raise InvalidInputError("rally markets need a fitted rally match")
    sets_to_win = config.sets_to_win
    builder.add("match_winner", "a", match.match_win_probability)
    builder.add("match_winner", "b", 1.0 - match.match_win_probability)

    for (sets_a, sets_b), probability in sorted(match.set_scores.items()):
        builder.add("set_betting", f"{sets_a}-{sets_b}", probability)
    sets = match.sets
    for line in [offset + 0.5 for offset in range(-sets_to_win + 1, sets_to_win - 1)]:
        builder.add_line("set_handicap", f"a {_signed(line)}", markets.handicap(sets, line, "a"))
        builder.add_line("set_handicap", f"b {_signed(-line)}", markets.handicap(sets, -line, "b"))
    for line in [sets_to_win + offset + 0.5 for offset in range(sets_to_win - 1)]:
        builder.add_line("total_sets", f"over {line:g}", markets.total(sets, line, "over"))
        builder.add_line("total_sets", f"under {line:g}", markets.total(sets, line, "under"))
    builder.add_many("odd_even_sets", markets.odd_even(sets))
    whitewash_a = match.set_scores.get((sets_to_win, 0), 0.0)
    whitewash_b = match.set_scores.get((0, sets_to_win), 0.0)
    builder.add("win_a_set", "a", 1.0 - whitewash_b)
    builder.add("win_a_set", "b", 1.0 - whitewash_a)
    deciding = sum(
        probability
        for (sets_a, sets_b), probability in match.set_scores.items()
        if sets_a + sets_b == 2 * sets_to_win - 1
    )
    builder.add("deciding_set", "yes", deciding)
    builder.add("deciding_set", "no", 1.0 - deciding)

    points = match.points
    expected_a, expected_b = points.expected_scores()
    total_base = fit.lines.get("total", _half_line(match.expected_total_points))
    handicap_base = fit.lines.get("handicap", -_half_line(expected_a - expected_b))
    for line in ladder(handicap_base, 1.0, config.point_ladder):
        builder.add_line("point_handicap", f"a {_signed(line)}", markets.handicap(points, line, "a"))
        builder.add_line("point_handicap", f"b {_signed(-line)}", markets.handicap(points, -line, "b"))
    for line in ladder(total_base, 1.0, config.point_ladder):
        builder.add_line("total_points", f"over {line:g}", markets.total(points, line, "over"))
        builder.add_line("total_points", f"under {line:g}", markets.total(points, line, "under"))
    for team, expected in (("a", expected_a), ("b", expected_b)):
        for line in ladder(_half_line(expected), 1.0, 1):
            builder.add_line(f"team_points_{team}", f"over {line:g}", markets.team_total(points, team, line, "over"))
            builder.add_line(f"team_points_{team}", f"under {line:g}", markets.team_total(points, team, line, "under"))

    first_set = fit.periods["first_set"]
    builder.add("first_set_winner", "a", match.set_win_probabilities[0])
    builder.add("first_set_winner", "b", 1.0 - match.set_win_probabilities[0])
    first_a, first_b = first_set.expected_scores()
    for line in ladder(-_half_line(first_a - first_b), 1.0, 1):
        builder.add_line("first_set_point_handicap", f"a {_signed(line)}", markets.handicap(first_set, line, "a"))
    for line in ladder(_half_line(first_a + first_b), 1.0, 1):
        builder.add_line("first_set_total_points", f"over {line:g}", markets.total(first_set, line, "over"))
        builder.add_line("first_set_total_points", f"under {line:g}", markets.total(first_set, line, "under"))


def build_catalogue(
    fit: "FittedModel",
    profile: "SportProfile",
    settings: "FairlineSettings | None" = None,
) -> Catalogue:
    """Answer every catalogue market for ``fit``; the result is a new mapping."""

    builder = _Builder(settings)
    if profile.family == "scoreline":
        _scoreline_catalogue(builder, fit, profile)
    elif profile.family == "racquet":
        _tennis_catalogue(builder, fit, profile)
    elif profile.family == "race":
        _race_catalogue(builder, fit, profile)
    elif profile.family == "rally":
        _rally_catalogue(builder, fit, profile)
    else:
        raise InvalidInputError(f"Unknown model family: {profile.family}")
    logger.debug(
        "Built %d markets for %s",
        len(builder.catalogue),
        profile.name,
    )
    return builder.catalogue


def catalogue_frame(catalogue: Mapping[str, Iterable[MarketQuote]]) -> pl.DataFrame:
    """Flatten a catalogue into a polars frame, one row per selection."""

    rows = [
        {
            "market": market,
            "label": quote.label,
            "probability": quote.probability,
            "fair_price": quote.fair_price,
            "truncation_bias": quote.truncation_bias,
        }
        for market, quotes in catalogue.items()
        for quote in quotes
    ]
    schema = {
        "market": pl.Utf8,
        "label": pl.Utf8,
        "probability": pl.Float64,
        "fair_price": pl.Float64,
        "truncation_bias": pl.Float64,
    }
    return pl.DataFrame(rows, schema=schema)
