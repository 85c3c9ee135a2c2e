"""Closed-form margin distribution checks against the full grid."""

from __future__ import annotations

import math

import pytest

from fairline import markets
from fairline.distributions import independent_poisson
from fairline.skellam import (
    handicap_probability,
    log_bessel_i,
    skellam_distribution,
    skellam_pmf,
)


def test_log_bessel_matches_reference_values():
    assert log_bessel_i(0, 1.0) == pytest.approx(math.log(1.2660658777520082), rel=1e-12)
    assert log_bessel_i(1, 2.0) == pytest.approx(math.log(1.5906368546373291), rel=1e-12)
    assert log_bessel_i(0, 0.0) == 0.0
    assert log_bessel_i(2, 0.0) == float("-inf")


def test_negative_order_is_symmetric():
    assert log_bessel_i(-3, 4.2) == log_bessel_i(3, 4.2)


@pytest.mark.parametrize(("rate_a", "rate_b"), [(1.3, 0.9), (2.7, 3.1), (0.4, 1.8)])
def test_matches_independent_grid(rate_a, rate_b):
    grid = independent_poisson(rate_a, rate_b, 40).margin_distribution()
    closed_form = skellam_distribution(rate_a, rate_b)

    for margin in range(-6, 7):
        assert closed_form[margin] == pytest.approx(grid.get(margin, 0.0), abs=1e-6)


def test_distribution_sums_to_one():
    assert math.fsum(skellam_distribution(2.0, 1.5).values()) == pytest.approx(1.0, abs=1e-9)


def test_large_rates_stay_finite():
    probability = skellam_pmf(0, 29.0, 27.0)

    assert 0.0 < probability < 0.1


def test_half_line_matches_grid():
    closed_form = handicap_probability(1.5, 1.0, -0.5)
    grid = markets.handicap(independent_poisson(1.5, 1.0, 40), -0.5, "a")

    assert closed_form.push == 0.0
    assert closed_form.win == pytest.approx(grid.win, abs=1e-6)


def test_integer_line_pushes_on_level_margin():
    triple = handicap_probability(1.2, 1.2, 0.0)

    assert triple.push == pytest.approx(skellam_pmf(0, 1.2, 1.2))
    assert triple.win == pytest.approx(triple.loss)


def test_side_b():
    side_a = handicap_probability(1.8, 1.1, -1.5, side="a")
    side_b = handicap_probability(1.8, 1.1, 1.5, side="b")

    assert side_a.win + side_b.win == pytest.approx(1.0)


def test_invalid_side():
    with pytest.raises(ValueError):
        handicap_probability(1.0, 1.0, 0.5, side="home")
