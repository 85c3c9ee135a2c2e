"""End-to-end pricing tests."""

from __future__ import annotations

import logging

import pytest

from fairline.config import get_settings
from fairline.engine import EventPricing, PricingEngine
from fairline.errors import ConfigurationError, InvalidInputError
from fairline.odds import QuotedMarket
from fairline.sports import SportProfile


def test_soccer_pricing(soccer_quotes):
    pricing = PricingEngine("soccer").price(soccer_quotes)

    assert isinstance(pricing, EventPricing)
    assert pricing.sport == "soccer"
    assert not pricing.approximate
    assert set(pricing.targets) == {"result", "total"}
    assert pricing.targets["result"].method == "shin"
    result = {quote.label: quote.probability for quote in pricing.market("result")}
    assert result["a"] == pytest.approx(pricing.targets["result"][0], abs=2e-4)


def test_pricing_is_read_only(soccer_quotes):
    pricing = PricingEngine("soccer").price(soccer_quotes)

    with pytest.raises(TypeError):
        pricing.catalogue["result"] = ()  # type: ignore[index]
    with pytest.raises(AttributeError):
        pricing.approximate = True  # type: ignore[misc]
    assert isinstance(pricing.catalogue["result"], tuple)
    assert not pricing.model.distribution.grid.flags.writeable


def test_pricing_is_repeatable(soccer_quotes):
    engine = PricingEngine("soccer")

    first = engine.price(soccer_quotes)
    second = engine.price(soccer_quotes)

    assert dict(first.catalogue) == dict(second.catalogue)
    assert dict(first.model.parameters) == dict(second.model.parameters)


def test_settings_select_the_devig_method(soccer_quotes):
    settings = get_settings(devig_method="proportional")

    pricing = PricingEngine("soccer", settings=settings).price(soccer_quotes)

    assert pricing.targets["total"].method == "proportional"


def test_to_polars(soccer_quotes):
    pricing = PricingEngine("soccer").price(soccer_quotes)
    frame = pricing.to_polars()

    assert frame.height == sum(len(quotes) for quotes in pricing.catalogue.values())


def test_unknown_market_name(soccer_quotes):
    pricing = PricingEngine("soccer").price(soccer_quotes)

    with pytest.raises(KeyError, match="corners"):
        pricing.market("corners")


def test_tennis_pricing():
    pricing = PricingEngine("tennis").price(
        [QuotedMarket("result", 1.55, 2.50)], surface="grass"
    )

    assert pricing.model.match is not None
    assert "set_betting" in pricing.catalogue
    assert not pricing.approximate


def test_snooker_pricing_with_custom_length():
    pricing = PricingEngine("snooker").price(
        [QuotedMarket("result", 1.70, 2.20)], frames_to_win=10
    )

    assert pricing.model.distribution.max_score == 10
    assert len(pricing.market("correct_score")) == 20


def test_explicit_profile_is_copied(profiles, soccer_quotes):
    profile = profiles["soccer"]
    engine = PricingEngine("soccer", profile=profile)

    profile.scoreline.max_score = 4

    assert engine.profile.scoreline.max_score == 10


def test_explicit_profile_is_validated():
    with pytest.raises(ConfigurationError):
        PricingEngine("broken", profile=SportProfile(name="broken", family="race"))


def test_profiles_path_from_settings(tmp_path, soccer_quotes):
    path = tmp_path / "profiles.yaml"
    path.write_text("soccer:\n  scoreline:\n    max_score: 8\n", encoding="utf-8")

    engine = PricingEngine("soccer", settings=get_settings(profiles_path=path))

    assert engine.profile.scoreline.max_score == 8


@pytest.mark.parametrize(
    ("quotes", "message"),
    [
        ([QuotedMarket("corners", 1.9, 1.9)], "Unknown market kind"),
        (
            [QuotedMarket("result", 2.1, 3.6, 3.4), QuotedMarket("result", 2.0, 3.7, 3.4)],
            "more than once",
        ),
        ([QuotedMarket("total", 1.9, 1.9)], "needs a line"),
        ([QuotedMarket("total", 1.9, 1.9, line="abc")], "must be numeric"),
        ([QuotedMarket("handicap", 1.9, 1.9, line=True)], "must be numeric"),
        ([QuotedMarket("total", 1.9, 1.9, line=float("nan"))], "must be finite"),
        ([QuotedMarket("total", 1.9, 1.9, line=-2.5)], "must be positive"),
        ([QuotedMarket("handicap", 1.9, 1.9, 3.0, line=0.5)], "must be two-way"),
        ([QuotedMarket("result", 0.9, 3.6, 3.4)], "must exceed 1.0"),
        ([QuotedMarket("total", 1.9, 1.9, line=2.5)], "'result' or 'handicap'"),
        (["result"], "expected QuotedMarket"),
    ],
)
def test_invalid_quotes_raise_before_pricing(quotes, message):
    with pytest.raises(InvalidInputError, match=message):
        PricingEngine("soccer").price(quotes)


def test_two_way_sports_require_a_two_way_result():
    with pytest.raises(InvalidInputError, match="two-way"):
        PricingEngine("tennis").price([QuotedMarket("result", 1.5, 9.0, 2.7)])
    with pytest.raises(InvalidInputError, match="'result' market is required"):
        PricingEngine("snooker").price([QuotedMarket("total", 1.9, 1.9, line=10.5)])


def test_unknown_sport():
    with pytest.raises(InvalidInputError, match="Unknown sport"):
        PricingEngine("quidditch")


def test_non_convergence_is_reported(profiles, soccer_quotes, caplog):
    data = profiles["soccer"].model_dump()
    data["solver"]["max_iterations"] = 2
    profile = SportProfile.model_validate(data)

    with caplog.at_level(logging.WARNING):
        pricing = PricingEngine("soccer", profile=profile).price(soccer_quotes)

    assert pricing.approximate
    assert pricing.model.solver.residual > 0.0
    assert pricing.catalogue["result"]
    assert "approximate" in caplog.text


def test_volleyball_pricing():
    pricing = PricingEngine("volleyball").price(
        [QuotedMarket("result", 1.40, 2.95), QuotedMarket("total", 1.85, 1.95, line=182.5)]
    )

    assert not pricing.approximate
    assert pricing.model.family == "rally"
    assert "set_betting" in pricing.catalogue
    assert any(quote.label == "over 182.5" for quote in pricing.market("total_points"))
