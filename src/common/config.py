# ABOUTME: Loads and validates the engine YAML config into frozen dataclasses.
# ABOUTME: Holds documented defaults for BKT, sequence tracer, fusion, calibration, and selection.

from __future__ import annotations

from dataclasses import MISSING, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

import yaml

from .errors import ConfigurationError


@dataclass(frozen=True)
class BKTParams:
    """Per-skill Bayesian Knowledge Tracing parameters."""

    prior: float = 0.3
    p_learn: float = 0.1
    p_slip: float = 0.1
    p_guess: float = 0.2
    p_forget: float = 0.0

    def validate(self, skill_id: str = "default") -> "BKTParams":
        for name in ("p_learn", "p_slip", "p_guess"):
            value = getattr(self, name)
            if not 0.0 < value < 1.0:
                raise ConfigurationError(f"BKT {name} for '{skill_id}' must be in (0, 1), got {value}")
        if not 0.0 <= self.p_forget < 1.0:
            raise ConfigurationError(f"BKT p_forget for '{skill_id}' must be in [0, 1), got {self.p_forget}")
        if not 0.0 <= self.prior <= 1.0:
            raise ConfigurationError(f"BKT prior for '{skill_id}' must be in [0, 1], got {self.prior}")
        if self.p_guess + self.p_slip >= 1.0:
            raise ConfigurationError(
                f"Degenerate BKT model for '{skill_id}': p_guess + p_slip = "
                f"{self.p_guess + self.p_slip:.3f} >= 1"
            )
        return self


@dataclass(frozen=True)
class BKTConfig:
    defaults: BKTParams = field(default_factory=BKTParams)
    skills: Mapping[str, BKTParams] = field(default_factory=dict)

    def params_for(self, skill_id: str) -> BKTParams:
        return self.skills.get(skill_id, self.defaults)


@dataclass(frozen=True)
class SequenceConfig:
    """Sequence tracer window, confidence, timeout, and architecture settings."""

    max_window: int = 50
    confidence_saturation: int = 20
    inference_timeout_s: float = 0.25
    checkpoint_path: Optional[str] = None
    embedding_dim: int = 32
    num_heads: int = 2
    elapsed_time_edges: Tuple[float, ...] = (5.0, 15.0, 30.0, 60.0, 120.0, 300.0)
    seed: int = 7


@dataclass(frozen=True)
class FusionConfig:
    # attempt count at which BKT confidence reaches 0.5
    bkt_confidence_half_point: float = 5.0


@dataclass(frozen=True)
class CalibrationConfig:
    epsilon: float = 1e-4
    max_iterations: int = 50
    min_responses: int = 10
    ability_bucket_width: float = 0.5
    mastery_clip: float = 0.01
    ridge: float = 0.01
    discrimination_bounds: Tuple[float, float] = (0.05, 5.0)
    difficulty_bounds: Tuple[float, float] = (-6.0, 6.0)


@dataclass(frozen=True)
class SelectorConfig:
    prerequisite_floor: float = 0.5
    mastery_ceiling: float = 0.95
    target_success: float = 0.7


@dataclass(frozen=True)
class EngineConfig:
    bkt: BKTConfig = field(default_factory=BKTConfig)
    sequence: SequenceConfig = field(default_factory=SequenceConfig)
    fusion: FusionConfig = field(default_factory=FusionConfig)
    calibration: CalibrationConfig = field(default_factory=CalibrationConfig)
    selector: SelectorConfig = field(default_factory=SelectorConfig)


def load_engine_config(config_path: Path) -> EngineConfig:
    """Programmatic entrypoint: read YAML and validate every section."""

    with open(config_path) as f:
        cfg = yaml.safe_load(f) or {}
    return engine_config_from_dict(cfg)


def engine_config_from_dict(cfg: Mapping[str, Any]) -> EngineConfig:
    bkt_cfg = cfg.get("bkt", {}) or {}
    defaults = _build(BKTParams, bkt_cfg.get("defaults", {}), "bkt.defaults").validate()
    skills: Dict[str, BKTParams] = {}
    for skill_id, overrides in (bkt_cfg.get("skills", {}) or {}).items():
        merged = {**_as_dict(defaults), **(overrides or {})}
        skills[str(skill_id)] = _build(BKTParams, merged, f"bkt.skills.{skill_id}").validate(str(skill_id))

    config = EngineConfig(
        bkt=BKTConfig(defaults=defaults, skills=skills),
        sequence=_build(SequenceConfig, cfg.get("sequence", {}), "sequence"),
        fusion=_build(FusionConfig, cfg.get("fusion", {}), "fusion"),
        calibration=_build(CalibrationConfig, cfg.get("calibration", {}), "calibration"),
        selector=_build(SelectorConfig, cfg.get("selector", {}), "selector"),
    )
    validate_engine_config(config)
    return config


def validate_engine_config(config: EngineConfig) -> None:
    """Raise ConfigurationError on any value the engine cannot run with."""

    config.bkt.defaults.validate()
    for skill_id, params in config.bkt.skills.items():
        params.validate(skill_id)

    seq = config.sequence
    if seq.max_window < 1:
        raise ConfigurationError(f"sequence.max_window must be >= 1, got {seq.max_window}")
    if seq.confidence_saturation < 1:
        raise ConfigurationError(f"sequence.confidence_saturation must be >= 1, got {seq.confidence_saturation}")
    if seq.inference_timeout_s <= 0:
        raise ConfigurationError(f"sequence.inference_timeout_s must be > 0, got {seq.inference_timeout_s}")
    if seq.embedding_dim % seq.num_heads != 0:
        raise ConfigurationError("sequence.embedding_dim must be divisible by sequence.num_heads")
    if list(seq.elapsed_time_edges) != sorted(seq.elapsed_time_edges):
        raise ConfigurationError("sequence.elapsed_time_edges must be ascending")

    if config.fusion.bkt_confidence_half_point <= 0:
        raise ConfigurationError("fusion.bkt_confidence_half_point must be > 0")

    cal = config.calibration
    if cal.epsilon <= 0 or cal.max_iterations < 1:
        raise ConfigurationError("calibration.epsilon must be > 0 and max_iterations >= 1")
    if not 0.0 < cal.mastery_clip < 0.5:
        raise ConfigurationError(f"calibration.mastery_clip must be in (0, 0.5), got {cal.mastery_clip}")
    if cal.ability_bucket_width <= 0 or cal.ridge < 0 or cal.min_responses < 1:
        raise ConfigurationError("calibration bucket width/ridge/min_responses out of range")
    _check_bounds("calibration.discrimination_bounds", cal.discrimination_bounds, positive=True)
    _check_bounds("calibration.difficulty_bounds", cal.difficulty_bounds)

    sel = config.selector
    for name in ("prerequisite_floor", "mastery_ceiling", "target_success"):
        value = getattr(sel, name)
        if not 0.0 < value < 1.0:
            raise ConfigurationError(f"selector.{name} must be in (0, 1), got {value}")
    if sel.prerequisite_floor >= sel.mastery_ceiling:
        raise ConfigurationError("selector.prerequisite_floor must be below selector.mastery_ceiling")


def _build(cls, values: Optional[Mapping[str, Any]], section: str):
    values = dict(values or {})
    defaults = {f.name: (None if f.default is MISSING else f.default) for f in fields(cls)}
    unknown = set(values) - set(defaults)
    if unknown:
        raise ConfigurationError(f"Unknown keys in '{section}': {sorted(unknown)}")
    for key, value in list(values.items()):
        values[key] = _coerce(f"{section}.{key}", value, defaults[key])
    try:
        return cls(**values)
    except TypeError as exc:
        raise ConfigurationError(f"Invalid '{section}' section: {exc}") from exc


def _as_dict(params: BKTParams) -> Dict[str, float]:
    return {f.name: getattr(params, f.name) for f in fields(params)}


def _coerce(name: str, value: Any, default: Any) -> Any:
    """Convert a YAML scalar to the type of the field's default; quoted numbers are accepted."""

    if value is None or default is None:
        return value
    try:
        if isinstance(default, float):
            return float(value)
        if isinstance(default, int):
            number = float(value)
            if not number.is_integer():
                raise ValueError(value)
            return int(number)
        if isinstance(default, tuple):
            if isinstance(value, (str, bytes)) or not isinstance(value, (list, tuple)):
                raise ValueError(value)
            return tuple(float(v) for v in value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"'{name}' has invalid value {value!r}") from exc
    return value


def _check_bounds(name: str, bounds: Tuple[float, ...], positive: bool = False) -> None:
    if len(bounds) != 2:
        raise ConfigurationError(f"{name} must be a [low, high] pair, got {bounds}")
    lo, hi = bounds
    if not lo < hi or (positive and lo <= 0.0):
        raise ConfigurationError(f"{name} invalid: {bounds}")
