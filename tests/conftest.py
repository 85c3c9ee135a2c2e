from __future__ import annotations

import os

import numpy as np
import pytest

from fairline.config import FairlineSettings, get_settings
from fairline.distributions import OutcomeDistribution
from fairline.odds import QuotedMarket
from fairline.sports import SportProfile, default_profiles


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    for key in list(os.environ):
        if key.upper().startswith("FAIRLINE_"):
            monkeypatch.delenv(key, raising=False)
    # Keep a stray .env in the working directory out of the settings.
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def settings() -> FairlineSettings:
    return get_settings()


@pytest.fixture
def profiles() -> dict[str, SportProfile]:
    return default_profiles()


@pytest.fixture
def small_grid() -> OutcomeDistribution:
    """Hand-made exact 3x3 scoreline table with simple probabilities."""

    grid = np.array(
        [
            [0.10, 0.10, 0.00],
            [0.20, 0.10, 0.05],
            [0.15, 0.10, 0.20],
        ]
    )
    return OutcomeDistribution(grid=grid, exact=True)


@pytest.fixture
def soccer_quotes() -> list[QuotedMarket]:
    return [
        QuotedMarket("result", 2.10, 3.60, price_draw=3.40),
        QuotedMarket("total", 1.95, 1.90, line=2.5),
    ]
