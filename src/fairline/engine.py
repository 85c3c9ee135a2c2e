"""Pricing pipeline: validate quotes, remove the margin, fit and publish.

An :class:`EventPricing` is only ever returned complete.  Every input is
checked before any model work starts, so a bad quote raises
:class:`~fairline.errors.InvalidInputError` without leaving partial results
behind.
"""

from __future__ import annotations

import dataclasses
import logging
import math
import numbers
import types
from typing import Dict, Iterable, Mapping, Tuple

import polars as pl

from .catalogue import build_catalogue, catalogue_frame
from .config import FairlineSettings, get_settings
from .devig import FairProbabilities, devig, validate_odds
from .errors import InvalidInputError
from .markets import MarketQuote
from .models import FittedModel, MarketTarget, model_for_profile
from .odds import MARKET_KINDS, QuotedMarket
from .sports import SportProfile, get_sport_profile, validate_sport_profile

logger = logging.getLogger(__name__)

__all__ = ["EventPricing", "PricingEngine"]

_LINE_KINDS = frozenset({"handicap", "total"})


@dataclasses.dataclass(frozen=True, slots=True)
class EventPricing:
    """Immutable pricing snapshot for one event."""

    sport: str
    targets: Mapping[str, FairProbabilities]
    model: FittedModel
    catalogue: Mapping[str, Tuple[MarketQuote, ...]]
    approximate: bool

    def __post_init__(self) -> None:
        object.__setattr__(self, "targets", types.MappingProxyType(dict(self.targets)))
        object.__setattr__(
            self,
            "catalogue",
            types.MappingProxyType({name: tuple(quotes) for name, quotes in self.catalogue.items()}),
        )

    def market(self, name: str) -> Tuple[MarketQuote, ...]:
        try:
            return self.catalogue[name]
        except KeyError:
            raise KeyError(f"No market named '{name}' for {self.sport}") from None

    def to_polars(self) -> pl.DataFrame:
        return catalogue_frame(self.catalogue)


class PricingEngine:
    """Prices events for one sport.

    The engine holds its own copy of the sport profile and settings, so
    separate engines never share mutable state.
    """

    def __init__(
        self,
        sport: str,
        profile: SportProfile | None = None,
        settings: FairlineSettings | None = None,
    ) -> None:
        self.settings = settings if settings is not None else get_settings()
        if profile is None:
            profile = get_sport_profile(sport, path=self.settings.profiles_path)
        else:
            profile = profile.model_copy(deep=True)
            for message in validate_sport_profile(profile):
                logger.warning("Sport profile '%s': %s", profile.name, message)
        self.sport = sport
        self.profile = profile

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(self, quoted: Iterable[QuotedMarket]) -> Dict[str, QuotedMarket]:
        """Check every quote and index them by kind.

        Raises:
            InvalidInputError: On unknown or duplicate kinds, missing or
                non-finite lines, invalid prices, three-way markets where
                only two-way ones make sense, or a missing required market.
        """

        by_kind: Dict[str, QuotedMarket] = {}
        for market in quoted:
            if not isinstance(market, QuotedMarket):
                raise InvalidInputError(f"expected QuotedMarket, received {type(market).__name__}")
            if market.kind not in MARKET_KINDS:
                raise InvalidInputError(
                    f"Unknown market kind '{market.kind}'; expected one of: {', '.join(MARKET_KINDS)}"
                )
            if market.kind in by_kind:
                raise InvalidInputError(f"market '{market.kind}' was quoted more than once")
            if market.kind in _LINE_KINDS:
                if market.line is None:
                    raise InvalidInputError(f"the '{market.kind}' market needs a line")
                if isinstance(market.line, bool) or not isinstance(market.line, numbers.Real):
                    raise InvalidInputError(f"the '{market.kind}' line must be numeric")
                if not math.isfinite(float(market.line)):
                    raise InvalidInputError(f"the '{market.kind}' line must be finite")
                if market.price_draw is not None:
                    raise InvalidInputError(f"the '{market.kind}' market must be two-way")
            if market.kind == "total" and market.line <= 0:
                raise InvalidInputError("the 'total' line must be positive")
            validate_odds(market.prices())
            by_kind[market.kind] = market

        if self.profile.family == "scoreline":
            if "result" not in by_kind and "handicap" not in by_kind:
                raise InvalidInputError("a 'result' or 'handicap' market is required")
        else:
            result = by_kind.get("result")
            if result is None:
                raise InvalidInputError("a 'result' market is required")
            if result.price_draw is not None:
                raise InvalidInputError(f"{self.profile.name} match markets must be two-way")
        return by_kind

    # ------------------------------------------------------------------
    # Pricing
    # ------------------------------------------------------------------

    def price(
        self,
        quoted: Iterable[QuotedMarket],
        *,
        surface: str | None = None,
        frames_to_win: int | None = None,
    ) -> EventPricing:
        """Price one event from its quoted markets."""

        by_kind = self.validate(quoted)
        model = model_for_profile(self.profile, surface=surface, frames_to_win=frames_to_win)

        method = self.settings.devig_method
        targets: Dict[str, MarketTarget] = {}
        for kind, market in by_kind.items():
            targets[kind] = MarketTarget(
                kind=kind,
                fair=devig(market.prices(), method),
                line=None if market.line is None else float(market.line),
            )

        fit = model.fit(targets)
        catalogue = build_catalogue(fit, self.profile, self.settings)
        if not fit.converged:
            logger.warning(
                "%s pricing is approximate: residual %.6f after %d iterations",
                self.profile.name,
                fit.solver.residual,
                fit.solver.iterations,
            )
        return EventPricing(
            sport=self.profile.name,
            targets={kind: target.fair for kind, target in targets.items()},
            model=fit,
            catalogue=catalogue,
            approximate=not fit.converged,
        )
