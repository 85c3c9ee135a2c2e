"""Calibration tests for the sport strategy objects."""

from __future__ import annotations

import pytest

from fairline import markets
from fairline.devig import devig
from fairline.errors import InvalidInputError
from fairline.models import (
    MarketTarget,
    RaceModel,
    RallyModel,
    ScorelineModel,
    TennisModel,
    model_for_profile,
)
from fairline.race import race_win_probability


def _target(kind, prices, line=None, method="proportional"):
    return MarketTarget(kind=kind, fair=devig(prices, method), line=line)


@pytest.fixture
def soccer_targets():
    return {
        "result": _target("result", [2.10, 3.40, 3.60]),
        "total": _target("total", [1.95, 1.90], line=2.5),
    }


def test_scoreline_fit_reproduces_targets(profiles, soccer_targets):
    fit = ScorelineModel(profiles["soccer"]).fit(soccer_targets)
    result = markets.result_probabilities(fit.distribution)
    over = markets.total(fit.distribution, 2.5, "over")

    assert fit.converged
    assert fit.family == "scoreline"
    assert set(fit.solver.quantities) >= {"a", "draw", "over"}
    assert result.a == pytest.approx(soccer_targets["result"].fair[0], abs=2e-4)
    # Draw and over pull on the same direction; the fit splits the difference.
    draw_error = soccer_targets["result"].fair[1] - result.draw
    over_error = soccer_targets["total"].fair[0] - over.win
    assert over_error == pytest.approx(0.5 * draw_error, abs=3e-4)
    assert abs(over_error) < 5e-3
    assert fit.parameters["rate_a"] > fit.parameters["rate_b"]
    assert set(fit.periods) == {"first_half", "second_half"}
    assert dict(fit.lines) == {"total": 2.5}


def test_scoreline_fit_is_idempotent(profiles, soccer_targets):
    model = ScorelineModel(profiles["soccer"])
    first = model.fit(soccer_targets)
    second = model.fit(soccer_targets)

    assert dict(first.parameters) == dict(second.parameters)
    assert first.distribution.grid == pytest.approx(second.distribution.grid)


def test_scoreline_fit_from_handicap_only(profiles):
    targets = {
        "handicap": _target("handicap", [1.90, 1.90], line=-0.5),
        "total": _target("total", [2.00, 1.80], line=2.5),
    }

    fit = ScorelineModel(profiles["soccer"]).fit(targets)
    cover = markets.handicap(fit.distribution, -0.5, "a")

    assert cover.win == pytest.approx(0.5, abs=1e-3)


def test_scoreline_fit_uses_every_quoted_market(profiles, soccer_targets):
    targets = dict(soccer_targets)
    targets["handicap"] = _target("handicap", [1.50, 2.60], line=0.5)
    model = ScorelineModel(profiles["soccer"])

    with_handicap = model.fit(targets)
    without_handicap = model.fit(soccer_targets)
    quantities = with_handicap.solver.quantities
    errors = {name: target - quantities[name] for name, target in model._targets(targets).items()}

    assert with_handicap.converged
    assert set(errors) == {"a", "draw", "handicap", "over"}
    # Win and handicap errors cancel, and so do over and half the draw.
    assert errors["a"] + errors["handicap"] == pytest.approx(0.0, abs=3e-4)
    assert errors["over"] == pytest.approx(0.5 * errors["draw"], abs=3e-4)
    fair_cover = targets["handicap"].fair[0]
    before = markets.handicap(without_handicap.distribution, 0.5, "a").win
    after = markets.handicap(with_handicap.distribution, 0.5, "a").win
    assert abs(after - fair_cover) < abs(before - fair_cover)


def test_scoreline_fit_from_result_only_uses_the_draw(profiles):
    targets = {"result": _target("result", [2.40, 3.20, 3.10])}

    fit = ScorelineModel(profiles["soccer"]).fit(targets)
    result = markets.result_probabilities(fit.distribution)

    assert result.draw == pytest.approx(targets["result"].fair[1], abs=1e-3)


def test_scoreline_requires_a_side_market(profiles):
    targets = {"total": _target("total", [1.9, 1.9], line=2.5)}

    with pytest.raises(InvalidInputError, match="'result' or 'handicap'"):
        ScorelineModel(profiles["soccer"]).fit(targets)


def test_handball_fit(profiles):
    targets = {
        "result": _target("result", [1.60, 2.45]),
        "total": _target("total", [1.90, 1.90], line=55.5),
    }

    fit = ScorelineModel(profiles["handball"]).fit(targets)
    expected_a, expected_b = fit.distribution.expected_scores()

    assert expected_a > expected_b
    assert expected_a + expected_b == pytest.approx(55.5, abs=1.0)


def test_tennis_fit_without_totals(profiles):
    targets = {"result": _target("result", [1.50, 2.70])}

    fit = TennisModel(profiles["tennis"], surface="clay").fit(targets)

    assert fit.match is not None
    assert fit.match.match_win_probability == pytest.approx(targets["result"].fair[0], abs=1e-3)
    assert fit.parameters["hold_a"] > fit.parameters["hold_b"]
    assert fit.parameters["level"] == pytest.approx(0.60)
    assert "first_set" in fit.periods


def test_tennis_rejects_unknown_surface(profiles):
    with pytest.raises(InvalidInputError, match="Unknown surface"):
        TennisModel(profiles["tennis"], surface="ice")


def test_tennis_rejects_three_way_markets(profiles):
    targets = {"result": _target("result", [1.5, 9.0, 2.7])}

    with pytest.raises(InvalidInputError, match="two-way"):
        TennisModel(profiles["tennis"]).fit(targets)


def test_race_fit(profiles):
    targets = {"result": _target("result", [1.40, 3.50])}

    fit = RaceModel(profiles["snooker"], frames_to_win=5).fit(targets)
    frame = fit.parameters["frame_probability"]

    assert fit.converged
    assert race_win_probability(frame, 5) == pytest.approx(targets["result"].fair[0], abs=1e-4)
    assert fit.distribution.max_score == 5
    assert fit.periods["first_frame"].grid[1, 0] == pytest.approx(frame)


def test_model_for_profile_dispatch(profiles):
    assert isinstance(model_for_profile(profiles["futsal"]), ScorelineModel)
    assert isinstance(model_for_profile(profiles["tennis"], surface="grass"), TennisModel)
    assert isinstance(model_for_profile(profiles["snooker"], frames_to_win=9), RaceModel)
    assert isinstance(model_for_profile(profiles["volleyball"]), RallyModel)


def test_models_reject_mismatched_profiles(profiles):
    with pytest.raises(InvalidInputError):
        ScorelineModel(profiles["tennis"])
    with pytest.raises(InvalidInputError):
        RaceModel(profiles["soccer"])


def test_refit_recovers_generating_rates(profiles):
    from fairline.devig import FairProbabilities

    model = ScorelineModel(profiles["soccer"])
    source = model.distribution(1.6, 1.1)
    result = markets.result_probabilities(source)
    over = markets.total(source, 2.5, "over").win
    targets = {
        "result": MarketTarget(
            "result",
            FairProbabilities((result.a, result.draw, result.b), "proportional", 0.0),
        ),
        "total": MarketTarget(
            "total", FairProbabilities((over, 1.0 - over), "proportional", 0.0), line=2.5
        ),
    }

    fit = model.fit(targets)

    assert fit.converged
    assert fit.parameters["rate_a"] == pytest.approx(1.6, abs=5e-3)
    assert fit.parameters["rate_b"] == pytest.approx(1.1, abs=5e-3)


def test_tennis_refit_recovers_generating_holds(profiles):
    from fairline.devig import FairProbabilities

    model = TennisModel(profiles["tennis"], surface="hard")
    source = model.match(0.70, 0.10)
    win = source.match_win_probability
    over = markets.total(source.games, 22.5, "over").win
    targets = {
        "result": MarketTarget("result", FairProbabilities((win, 1.0 - win), "proportional", 0.0)),
        "total": MarketTarget(
            "total", FairProbabilities((over, 1.0 - over), "proportional", 0.0), line=22.5
        ),
    }

    fit = model.fit(targets)

    assert fit.converged
    assert fit.solver.residual < profiles["tennis"].solver.tolerance
    assert fit.parameters["level"] == pytest.approx(0.70, abs=2e-3)
    assert fit.parameters["gap"] == pytest.approx(0.10, abs=5e-3)
    assert fit.solver.quantities["a"] == pytest.approx(win, abs=1e-4)
    assert fit.solver.quantities["over"] == pytest.approx(over, abs=1e-4)


def test_tennis_fit_reports_the_achieved_match_price(profiles):
    targets = {"result": _target("result", [1.20, 4.80])}

    fit = TennisModel(profiles["tennis"], surface="clay").fit(targets)

    assert fit.solver.quantities["a"] == pytest.approx(fit.match.match_win_probability)
    assert fit.solver.residual == pytest.approx(
        abs(targets["result"].fair[0] - fit.match.match_win_probability)
    )


def test_tennis_fit_stays_on_the_rising_side_for_unreachable_totals(profiles):
    targets = {
        "result": _target("result", [1.60, 2.40]),
        "total": _target("total", [15.0, 1.05], line=22.5),
    }

    fit = TennisModel(profiles["tennis"]).fit(targets)

    assert not fit.converged
    assert fit.parameters["level"] == pytest.approx(profiles["tennis"].tennis.level_lower, abs=1e-3)
    assert fit.parameters["level"] >= profiles["tennis"].tennis.level_lower


@pytest.mark.parametrize("sport", ["volleyball", "table_tennis"])
def test_rally_fit_reproduces_the_match_price(profiles, sport):
    from fairline.rally import match_win_probability

    targets = {
        "result": _target("result", [1.45, 2.75]),
        "total": _target("total", [1.90, 1.90], line=180.5),
    }
    config = profiles[sport].rally

    fit = RallyModel(profiles[sport]).fit(targets)
    point = fit.parameters["point_probability"]

    assert fit.converged
    assert fit.family == "rally"
    assert point > 0.5
    assert match_win_probability(point, config.sets_to_win, config.set_targets) == pytest.approx(
        targets["result"].fair[0], abs=1e-4
    )
    assert fit.solver.quantities["a"] == pytest.approx(fit.match.match_win_probability)
    assert fit.distribution is fit.match.points
    assert "first_set" in fit.periods
    assert dict(fit.lines) == {"total": 180.5}


def test_rally_rejects_three_way_markets(profiles):
    targets = {"result": _target("result", [1.5, 9.0, 2.7])}

    with pytest.raises(InvalidInputError, match="two-way"):
        RallyModel(profiles["volleyball"]).fit(targets)
    with pytest.raises(InvalidInputError, match="no rally configuration"):
        RallyModel(profiles["snooker"])
