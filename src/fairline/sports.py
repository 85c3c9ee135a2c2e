"""Per-sport configuration profiles.

Every engine instance receives its own :class:`SportProfile`.  The built-in
defaults below can be layered with a YAML file and with environment variables
of the form ``FAIRLINE_SPORT__<sport>__<section>__<field>=<json value>``.

The tuned coefficients (correlation strengths, late-shift fractions, rate
priors) are empirical defaults, not derived constants; override them per
deployment where better estimates are available.
"""

from __future__ import annotations

import json
import logging
import os
import re
from pathlib import Path
from typing import Any, Dict, Iterable, Literal, Mapping, MutableMapping, Sequence

import yaml
from pydantic import BaseModel, Field, ValidationError

from .errors import ConfigurationError, InvalidInputError
from .solvers import SolverSettings

logger = logging.getLogger(__name__)

ENV_OVERRIDE_PREFIX = "FAIRLINE_SPORT__"

__all__ = [
    "ENV_OVERRIDE_PREFIX",
    "SolverConfig",
    "SharedIntensityConfig",
    "LateShiftConfig",
    "ScorelineConfig",
    "TennisConfig",
    "RaceConfig",
    "RallyConfig",
    "SportProfile",
    "DEFAULT_PROFILES",
    "default_profiles",
    "load_sport_profiles",
    "get_sport_profile",
    "validate_sport_profile",
]


class SolverConfig(BaseModel):
    """Step schedule and budget for the iterative calibration solver."""

    step: float = 1.0
    decay: float = 0.995
    tolerance: float = 1e-4
    max_iterations: int = 500

    def settings(self) -> SolverSettings:
        return SolverSettings(
            step=self.step,
            decay=self.decay,
            tolerance=self.tolerance,
            max_iterations=self.max_iterations,
        )


class SharedIntensityConfig(BaseModel):
    """Linear map from expected match total to the shared scoring rate."""

    low: float = 0.5
    high: float = 2.0
    total_low: float = 48.0
    total_high: float = 62.0


class LateShiftConfig(BaseModel):
    """Share of one-goal results converted into two-goal results."""

    enabled: bool = False
    base: float = 0.0
    reference_total: float = 1.0
    cap: float = 0.0


class ScorelineConfig(BaseModel):
    variant: Literal["independent", "dixon_coles", "shared_intensity"] = "independent"
    max_score: int = 10
    rho: float = 0.0
    shared: SharedIntensityConfig = Field(default_factory=SharedIntensityConfig)
    late_shift: LateShiftConfig = Field(default_factory=LateShiftConfig)
    prior_rate_a: float = 1.4
    prior_rate_b: float = 1.0
    lower_bound: float = 0.05
    upper_bound: float = 10.0
    periods: Dict[str, float] = Field(
        default_factory=lambda: {"first_half": 0.5, "second_half": 0.5}
    )
    line_step: float = 0.5
    ladder: int = 3
    exact_score_limit: int = 5
    range_width: int | None = None


class TennisConfig(BaseModel):
    sets_to_win: int = 2
    games: int = 6
    tiebreak_target: int = 7
    first_server: Literal["a", "b", "random"] = "random"
    surface_priors: Dict[str, float] = Field(
        default_factory=lambda: {"grass": 0.75, "hard": 0.68, "clay": 0.60, "indoor": 0.73}
    )
    default_surface: str = "hard"
    level_lower: float = 0.5
    hold_lower: float = 0.40
    hold_upper: float = 0.99
    max_gap: float = 0.5


class RaceConfig(BaseModel):
    frames_to_win: int = 6
    lower_bound: float = 0.01
    upper_bound: float = 0.99
    max_iterations: int = 50
    tolerance: float = 1e-4
    after_frames: list[int] = Field(default_factory=lambda: [2, 4])
    first_to: list[int] = Field(default_factory=lambda: [3])


class RallyConfig(BaseModel):
    sets_to_win: int = 3
    set_targets: list[int] = Field(default_factory=lambda: [25, 25, 25, 25, 15])
    lower_bound: float = 0.05
    upper_bound: float = 0.95
    max_iterations: int = 60
    tolerance: float = 1e-4
    point_ladder: int = 3


class SportProfile(BaseModel):
    """Strategy selection and tuned coefficients for one sport."""

    name: str
    family: Literal["scoreline", "racquet", "race", "rally"]
    solver: SolverConfig = Field(default_factory=SolverConfig)
    scoreline: ScorelineConfig | None = None
    tennis: TennisConfig | None = None
    race: RaceConfig | None = None
    rally: RallyConfig | None = None


# ---------------------------------------------------------------------------
# Built-in defaults
# ---------------------------------------------------------------------------


DEFAULT_PROFILES: Mapping[str, Mapping[str, Any]] = {
    "soccer": {
        "family": "scoreline",
        "solver": {"step": 1.0, "decay": 0.995, "max_iterations": 500},
        "scoreline": {
            "variant": "dixon_coles",
            "rho": -0.13,
            "max_score": 10,
            "prior_rate_a": 1.4,
            "prior_rate_b": 1.0,
            "lower_bound": 0.05,
            "upper_bound": 6.0,
            "periods": {"first_half": 0.45, "second_half": 0.55},
        },
    },
    "futsal": {
        "family": "scoreline",
        "solver": {"step": 1.5, "decay": 0.995, "max_iterations": 1000},
        "scoreline": {
            "max_score": 15,
            "prior_rate_a": 3.0,
            "prior_rate_b": 2.5,
            "lower_bound": 0.5,
            "upper_bound": 8.0,
        },
    },
    "bandy": {
        "family": "scoreline",
        "solver": {"step": 2.0, "decay": 0.995, "max_iterations": 1000},
        "scoreline": {
            "max_score": 20,
            "prior_rate_a": 4.5,
            "prior_rate_b": 3.5,
            "lower_bound": 0.3,
            "upper_bound": 12.0,
        },
    },
    "ice_hockey": {
        "family": "scoreline",
        "solver": {"step": 2.0, "decay": 0.995, "max_iterations": 1000},
        "scoreline": {
            "max_score": 12,
            "prior_rate_a": 3.1,
            "prior_rate_b": 2.7,
            "lower_bound": 0.3,
            "upper_bound": 8.0,
            "late_shift": {"enabled": True, "base": 0.08, "reference_total": 5.5, "cap": 0.2},
            "periods": {"first_period": 1 / 3, "second_period": 1 / 3, "third_period": 1 / 3},
        },
    },
    "handball": {
        "family": "scoreline",
        "solver": {"step": 4.0, "decay": 0.997, "max_iterations": 1500},
        "scoreline": {
            "variant": "shared_intensity",
            "max_score": 60,
            "prior_rate_a": 28.0,
            "prior_rate_b": 26.0,
            "lower_bound": 15.0,
            "upper_bound": 40.0,
            "shared": {"low": 0.5, "high": 2.0, "total_low": 48.0, "total_high": 62.0},
            "line_step": 1.0,
            "range_width": 5,
        },
    },
    "tennis": {
        "family": "racquet",
        "tennis": {},
    },
    "snooker": {
        "family": "race",
        "race": {"frames_to_win": 6},
    },
    "volleyball": {
        "family": "rally",
        "rally": {"sets_to_win": 3, "set_targets": [25, 25, 25, 25, 15]},
    },
    "table_tennis": {
        "family": "rally",
        "rally": {"sets_to_win": 3, "set_targets": [11]},
    },
}


def default_profiles() -> Dict[str, SportProfile]:
    """Return fresh copies of the built-in profiles."""

    return {
        name: SportProfile.model_validate({"name": name, **data})
        for name, data in DEFAULT_PROFILES.items()
    }


# ---------------------------------------------------------------------------
# Layered loading
# ---------------------------------------------------------------------------


_ENV_PATTERN = re.compile(r"\$\{([^}]+)\}")


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(path)
    with path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Sport profiles at {path} must be a mapping")
    return dict(data)


def _merge_layers(base: Dict[str, Any], layer: Mapping[str, Any]) -> Dict[str, Any]:
    merged: Dict[str, Any] = dict(base)
    for key, value in layer.items():
        if (
            key in merged
            and isinstance(merged[key], Mapping)
            and isinstance(value, Mapping)
        ):
            merged[key] = _merge_layers(dict(merged[key]), value)
        else:
            merged[key] = value
    return merged


def _resolve_env_tokens(value: Any) -> Any:
    if isinstance(value, str):
        return _ENV_PATTERN.sub(lambda match: os.getenv(match.group(1), ""), value)
    if isinstance(value, Mapping):
        return {k: _resolve_env_tokens(v) for k, v in value.items()}
    if isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray)):
        return [_resolve_env_tokens(item) for item in value]
    return value


def _coerce_env_value(raw: str) -> Any:
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        lowered = raw.lower()
        if lowered in {"true", "false"}:
            return lowered == "true"
        return raw


def _set_nested(mapping: MutableMapping[str, Any], path: Iterable[str], value: Any) -> None:
    segments = list(path)
    if not segments:
        return
    head, *tail = segments
    key = head.lower().replace("-", "_")
    if not tail:
        mapping[key] = value
        return
    child = mapping.get(key)
    if not isinstance(child, MutableMapping):
        child = {}
    else:
        child = dict(child)
    mapping[key] = child
    _set_nested(child, tail, value)


def _apply_env_overrides(data: Dict[str, Any]) -> Dict[str, Any]:
    updated = dict(data)
    for key, raw_value in os.environ.items():
        if not key.upper().startswith(ENV_OVERRIDE_PREFIX):
            continue
        suffix = key[len(ENV_OVERRIDE_PREFIX) :]
        path = [segment for segment in suffix.split("__") if segment]
        if len(path) < 2:
            continue
        _set_nested(updated, path, _coerce_env_value(raw_value))
    return updated


def load_sport_profiles(
    path: str | os.PathLike[str] | None = None,
) -> Dict[str, SportProfile]:
    """Load sport profiles from the defaults, an optional YAML file and the environment.

    The YAML file maps sport names to partial profiles; new sport names may
    be declared as long as they provide a ``family``.
    """

    data: Dict[str, Any] = {name: dict(profile) for name, profile in DEFAULT_PROFILES.items()}
    if path is not None:
        data = _merge_layers(data, _load_yaml(Path(path)))
    data = _apply_env_overrides(data)
    data = _resolve_env_tokens(data)

    profiles: Dict[str, SportProfile] = {}
    for name, raw in data.items():
        if not isinstance(raw, Mapping):
            raise ConfigurationError(f"Profile for sport '{name}' must be a mapping")
        try:
            profiles[name] = SportProfile.model_validate({**raw, "name": name})
        except ValidationError as exc:
            raise ConfigurationError(f"Invalid profile for sport '{name}':\n{exc}") from exc
    return profiles


def get_sport_profile(
    sport: str, path: str | os.PathLike[str] | None = None
) -> SportProfile:
    profiles = load_sport_profiles(path)
    key = sport.strip().lower().replace(" ", "_").replace("-", "_")
    if key not in profiles:
        known = ", ".join(sorted(profiles))
        raise InvalidInputError(f"Unknown sport '{sport}'; expected one of: {known}")
    profile = profiles[key]
    for message in validate_sport_profile(profile):
        logger.warning("Sport profile '%s': %s", key, message)
    return profile


def validate_sport_profile(profile: SportProfile) -> list[str]:
    """Validate a :class:`SportProfile`.

    Returns:
        A list of warning messages.  Raises :class:`ConfigurationError` when
        fatal issues are detected.
    """

    errors: list[str] = []
    warnings: list[str] = []

    solver = profile.solver
    if solver.step <= 0:
        errors.append("solver.step must be greater than zero")
    if not 0 < solver.decay <= 1:
        errors.append("solver.decay must be within (0, 1]")
    if solver.tolerance <= 0:
        errors.append("solver.tolerance must be greater than zero")
    if solver.max_iterations <= 0:
        errors.append("solver.max_iterations must be greater than zero")
    elif solver.max_iterations < 100:
        warnings.append("solver.max_iterations is below 100; fits may stop early")

    if profile.family == "scoreline":
        scoreline = profile.scoreline
        if scoreline is None:
            errors.append("scoreline section is required for the scoreline family")
        else:
            if scoreline.max_score < 1:
                errors.append("scoreline.max_score must be at least 1")
            if scoreline.lower_bound <= 0:
                errors.append("scoreline.lower_bound must be greater than zero")
            if scoreline.lower_bound > scoreline.upper_bound:
                errors.append("scoreline.lower_bound must not exceed scoreline.upper_bound")
            for field_name in ("prior_rate_a", "prior_rate_b"):
                value = getattr(scoreline, field_name)
                if not scoreline.lower_bound <= value <= scoreline.upper_bound:
                    errors.append(f"scoreline.{field_name} must lie within the rate bounds")
            if scoreline.periods:
                if any(share <= 0 for share in scoreline.periods.values()):
                    errors.append("scoreline.periods shares must be greater than zero")
                if abs(sum(scoreline.periods.values()) - 1.0) > 1e-6:
                    errors.append("scoreline.periods shares must sum to 1")
            if scoreline.line_step <= 0:
                errors.append("scoreline.line_step must be greater than zero")
            if scoreline.ladder < 0:
                errors.append("scoreline.ladder must be non-negative")
            if scoreline.late_shift.enabled and not 0 <= scoreline.late_shift.cap < 1:
                errors.append("scoreline.late_shift.cap must be within [0, 1)")
            if scoreline.variant == "dixon_coles" and scoreline.rho == 0:
                warnings.append("scoreline.rho is zero; the low-score adjustment has no effect")
    elif profile.family == "racquet":
        tennis = profile.tennis
        if tennis is None:
            errors.append("tennis section is required for the racquet family")
        else:
            if tennis.sets_to_win < 1:
                errors.append("tennis.sets_to_win must be at least 1")
            if tennis.games < 1:
                errors.append("tennis.games must be at least 1")
            if tennis.tiebreak_target < 1:
                errors.append("tennis.tiebreak_target must be at least 1")
            if not 0 < tennis.hold_lower < tennis.hold_upper < 1:
                errors.append("tennis hold bounds must satisfy 0 < hold_lower < hold_upper < 1")
            if not 0.5 <= tennis.level_lower < tennis.hold_upper:
                errors.append("tennis.level_lower must be within [0.5, hold_upper)")
            if tennis.default_surface not in tennis.surface_priors:
                errors.append("tennis.default_surface must name a surface prior")
            for surface, prior in tennis.surface_priors.items():
                if not max(tennis.hold_lower, tennis.level_lower) <= prior <= tennis.hold_upper:
                    errors.append(f"tennis.surface_priors.{surface} must lie within the hold bounds")
    elif profile.family == "race":
        race = profile.race
        if race is None:
            errors.append("race section is required for the race family")
        else:
            if race.frames_to_win < 1:
                errors.append("race.frames_to_win must be at least 1")
            if not 0 < race.lower_bound < race.upper_bound < 1:
                errors.append("race bounds must satisfy 0 < lower_bound < upper_bound < 1")
            if race.max_iterations <= 0:
                errors.append("race.max_iterations must be greater than zero")
    elif profile.family == "rally":
        rally = profile.rally
        if rally is None:
            errors.append("rally section is required for the rally family")
        else:
            if rally.sets_to_win < 1:
                errors.append("rally.sets_to_win must be at least 1")
            if not rally.set_targets:
                errors.append("rally.set_targets must list at least one target")
            elif any(target < 1 for target in rally.set_targets):
                errors.append("rally.set_targets must be positive")
            elif len(rally.set_targets) > 2 * rally.sets_to_win - 1:
                warnings.append("rally.set_targets lists more sets than a match can last")
            if not 0 < rally.lower_bound < rally.upper_bound < 1:
                errors.append("rally bounds must satisfy 0 < lower_bound < upper_bound < 1")
            if rally.max_iterations <= 0:
                errors.append("rally.max_iterations must be greater than zero")
            if rally.point_ladder < 0:
                errors.append("rally.point_ladder must be non-negative")

    if errors:
        bullet_list = "\n".join(f"- {message}" for message in errors)
        raise ConfigurationError(
            f"Sport profile '{profile.name}' validation failed:\n{bullet_list}"
        )

    return warnings
