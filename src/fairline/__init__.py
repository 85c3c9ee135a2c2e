"""
fairline: fair-price calibration for sports betting markets.

This package removes the bookmaker margin from quoted odds, fits a
sport-specific outcome model to the fair probabilities, and answers a
catalogue of derived markets from the fitted distribution.
"""

from importlib.metadata import PackageNotFoundError, version

try:  # pragma: no cover - exercised in packaging workflows
    __version__ = version("fairline")
except PackageNotFoundError:  # pragma: no cover - local editable installs
    __version__ = "0.0.0"

_EXPORTS = {
    # Pipeline
    "PricingEngine": ".engine",
    "EventPricing": ".engine",
    "QuotedMarket": ".odds",
    "build_catalogue": ".catalogue",
    "catalogue_frame": ".catalogue",
    # Margin removal
    "devig": ".devig",
    "FairProbabilities": ".devig",
    # Distributions and queries
    "OutcomeDistribution": ".distributions",
    "build_scoreline": ".distributions",
    "match_distribution": ".racquet",
    "race_distribution": ".race",
    "rally_match": ".rally",
    "MarketQuote": ".markets",
    # Configuration
    "FairlineSettings": ".config",
    "get_settings": ".config",
    "SportProfile": ".sports",
    "get_sport_profile": ".sports",
    "load_sport_profiles": ".sports",
    "configure_logging": ".logging",
    # Errors
    "FairlineError": ".errors",
    "InvalidInputError": ".errors",
    "ConfigurationError": ".errors",
}

__all__ = sorted(_EXPORTS)


def __getattr__(name: str) -> object:  # pragma: no cover - thin lazy importer
    from importlib import import_module

    target_module = _EXPORTS.get(name)
    if not target_module:
        raise AttributeError(f"module {__name__} has no attribute {name}")
    module = import_module(target_module, __name__)
    attr = getattr(module, name)
    globals()[name] = attr
    return attr


def __dir__() -> list[str]:  # pragma: no cover - trivial
    return sorted(list(globals().keys()) + __all__)
