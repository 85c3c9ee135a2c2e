"""Catalogue construction and export tests."""

from __future__ import annotations

import math

import polars as pl
import pytest

from fairline.catalogue import build_catalogue, catalogue_frame, ladder
from fairline.devig import devig
from fairline.errors import InvalidInputError
from fairline.markets import MarketQuote
from fairline.models import MarketTarget, RaceModel, ScorelineModel, TennisModel


def _probabilities(catalogue, market):
    return {quote.label: quote.probability for quote in catalogue[market]}


@pytest.fixture
def soccer_fit(profiles):
    targets = {
        "result": MarketTarget("result", devig([2.10, 3.40, 3.60], "proportional")),
        "total": MarketTarget("total", devig([1.95, 1.90], "proportional"), line=2.5),
    }
    return ScorelineModel(profiles["soccer"]).fit(targets)


def test_ladder():
    assert ladder(2.5, 0.5, 2) == [1.5, 2.0, 2.5, 3.0, 3.5]
    assert ladder(-0.5, 1.0, 0) == [-0.5]


def test_soccer_catalogue_markets(profiles, soccer_fit):
    catalogue = build_catalogue(soccer_fit, profiles["soccer"])

    for market in (
        "result",
        "double_chance",
        "draw_no_bet",
        "handicap",
        "total",
        "team_total_a",
        "team_total_b",
        "both_score",
        "exact_score",
        "exact_total",
        "odd_even",
        "result_total",
        "result_both_score",
        "clean_sheet",
        "win_to_nil",
        "winning_margin",
        "first_half_result",
        "second_half_total",
        "half_time_full_time",
        "win_both_periods",
        "win_either_period",
        "highest_scoring_period",
    ):
        assert catalogue[market], market

    result = _probabilities(catalogue, "result")
    assert math.fsum(result.values()) == pytest.approx(1.0, abs=1e-6)
    totals = _probabilities(catalogue, "total")
    assert totals["over 2.5"] + totals["under 2.5"] == pytest.approx(1.0, abs=1e-6)
    assert {"over 1", "over 4"} <= set(totals)


def test_exact_scores_include_the_remainder(profiles, soccer_fit):
    catalogue = build_catalogue(soccer_fit, profiles["soccer"])
    exact = _probabilities(catalogue, "exact_score")

    assert "0-0" in exact and "5-5" in exact and "other" in exact
    assert math.fsum(exact.values()) == pytest.approx(1.0, abs=1e-5)


def test_halftime_fulltime_sums_to_one(profiles, soccer_fit):
    catalogue = build_catalogue(soccer_fit, profiles["soccer"])
    combos = _probabilities(catalogue, "half_time_full_time")

    assert len(combos) == 9
    assert math.fsum(combos.values()) == pytest.approx(1.0, abs=1e-5)


def test_fair_prices_follow_settings(profiles, soccer_fit, settings):
    catalogue = build_catalogue(soccer_fit, profiles["soccer"], settings)

    for quotes in catalogue.values():
        for quote in quotes:
            assert isinstance(quote, MarketQuote)
            assert settings.probability_epsilon <= quote.probability <= 1 - settings.probability_epsilon
            if quote.fair_price != settings.sentinel_price:
                assert quote.fair_price == pytest.approx(1.0 / quote.probability)


@pytest.mark.parametrize(
    ("sport", "result_prices", "total_prices", "line"),
    [
        ("futsal", [1.95, 4.20, 3.10], [1.85, 1.95], 5.5),
        ("futsal", [1.30, 6.50, 7.00], [1.70, 2.10], 7.5),
        ("bandy", [1.55, 6.00, 4.20], [1.90, 1.90], 8.5),
        ("bandy", [1.20, 9.00, 11.0], [1.80, 2.00], 11.5),
    ],
)
def test_closed_form_handicap_matches_the_grid_for_default_profiles(
    profiles, sport, result_prices, total_prices, line
):
    targets = {
        "result": MarketTarget("result", devig(result_prices, "proportional")),
        "total": MarketTarget("total", devig(total_prices, "proportional"), line=line),
    }
    profile = profiles[sport]
    catalogue = build_catalogue(ScorelineModel(profile).fit(targets), profile)

    grid = _probabilities(catalogue, "handicap")
    closed_form = _probabilities(catalogue, "handicap_closed_form")
    assert closed_form
    for label, probability in closed_form.items():
        assert probability == pytest.approx(grid[label], abs=1e-6), label


def test_handball_uses_total_ranges(profiles):
    targets = {
        "result": MarketTarget("result", devig([1.70, 2.15], "proportional")),
        "total": MarketTarget("total", devig([1.87, 1.87], "proportional"), line=54.5),
    }
    profile = profiles["handball"]
    catalogue = build_catalogue(ScorelineModel(profile).fit(targets), profile)

    assert "total_range" in catalogue
    assert "exact_score" not in catalogue
    assert math.fsum(_probabilities(catalogue, "total_range").values()) == pytest.approx(
        1.0, abs=1e-4
    )


def test_tennis_catalogue(profiles):
    targets = {"result": MarketTarget("result", devig([1.45, 2.80], "proportional"))}
    profile = profiles["tennis"]
    fit = TennisModel(profile).fit(targets)
    catalogue = build_catalogue(fit, profile)

    sets = _probabilities(catalogue, "set_betting")
    assert set(sets) == {"2-0", "2-1", "0-2", "1-2"}
    assert math.fsum(sets.values()) == pytest.approx(1.0, abs=1e-6)
    for market in ("games_handicap", "total_games", "tiebreak_in_match", "first_set_score"):
        assert catalogue[market]
    winner = _probabilities(catalogue, "match_winner")
    assert winner["a"] == pytest.approx(fit.match.match_win_probability, abs=1e-6)


def test_snooker_catalogue(profiles):
    targets = {"result": MarketTarget("result", devig([1.60, 2.40], "proportional"))}
    profile = profiles["snooker"]
    catalogue = build_catalogue(RaceModel(profile).fit(targets), profile)

    scores = _probabilities(catalogue, "correct_score")
    assert len(scores) == 12
    assert math.fsum(scores.values()) == pytest.approx(1.0, abs=1e-5)
    assert set(_probabilities(catalogue, "after_2_frames")) == {"2-0", "1-1", "0-2"}
    assert "first_to_3" in catalogue
    assert "after_4_frames" in catalogue


def test_catalogue_frame(profiles, soccer_fit):
    catalogue = build_catalogue(soccer_fit, profiles["soccer"])
    frame = catalogue_frame(catalogue)

    assert isinstance(frame, pl.DataFrame)
    assert frame.columns == ["market", "label", "probability", "fair_price", "truncation_bias"]
    assert frame.height == sum(len(quotes) for quotes in catalogue.values())
    result = frame.filter(pl.col("market") == "result")
    assert result["label"].to_list() == ["a", "draw", "b"]


def test_empty_catalogue_frame_keeps_schema():
    frame = catalogue_frame({})

    assert frame.height == 0
    assert frame.schema["fair_price"] == pl.Float64


def test_catalogue_rejects_profiles_without_their_section(profiles, soccer_fit):
    bare = profiles["soccer"].model_copy(update={"scoreline": None})

    with pytest.raises(InvalidInputError, match="no scoreline configuration"):
        build_catalogue(soccer_fit, bare)
    with pytest.raises(InvalidInputError, match="fitted match distribution"):
        build_catalogue(soccer_fit, profiles["tennis"])
    with pytest.raises(InvalidInputError, match="no race configuration"):
        build_catalogue(soccer_fit, profiles["snooker"].model_copy(update={"race": None}))


def test_volleyball_catalogue(profiles):
    from fairline.models import RallyModel

    targets = {"result": MarketTarget("result", devig([1.55, 2.45], "proportional"))}
    profile = profiles["volleyball"]
    fit = RallyModel(profile).fit(targets)
    catalogue = build_catalogue(fit, profile)

    sets = _probabilities(catalogue, "set_betting")
    assert set(sets) == {"3-0", "3-1", "3-2", "0-3", "1-3", "2-3"}
    assert math.fsum(sets.values()) == pytest.approx(1.0, abs=1e-6)
    winner = _probabilities(catalogue, "match_winner")
    assert winner["a"] == pytest.approx(fit.match.match_win_probability, abs=1e-6)
    handicap = _probabilities(catalogue, "set_handicap")
    assert handicap["a -1.5"] == pytest.approx(sets["3-0"] + sets["3-1"], abs=1e-6)
    totals = _probabilities(catalogue, "total_sets")
    assert totals["over 4.5"] == pytest.approx(sets["3-2"] + sets["2-3"], abs=1e-6)
    assert _probabilities(catalogue, "deciding_set")["yes"] == pytest.approx(totals["over 4.5"], abs=1e-6)
    for market in ("point_handicap", "total_points", "team_points_a", "first_set_total_points"):
        assert catalogue[market], market


def test_table_tennis_catalogue_sets(profiles):
    from fairline.models import RallyModel

    targets = {"result": MarketTarget("result", devig([1.30, 3.60], "proportional"))}
    profile = profiles["table_tennis"]
    catalogue = build_catalogue(RallyModel(profile).fit(targets), profile)

    first_set = _probabilities(catalogue, "first_set_winner")
    winner = _probabilities(catalogue, "match_winner")
    # Best of five magnifies the single-game edge.
    assert 0.5 < first_set["a"] < winner["a"]
    assert math.fsum(_probabilities(catalogue, "win_a_set").values()) > 1.0
