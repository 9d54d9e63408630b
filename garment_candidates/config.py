from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

DEFAULT_CONFIG_PATH = Path("configs/default.yaml")
ENV_PREFIX = "GARMENT_CANDIDATES_"

CONFIG_VERSION = "garment-candidates/detect/v1"
MAX_FRAMES_CEILING = 60
MAX_CANDIDATES_CEILING = 12
ROI_SUM_TOLERANCE = 1e-3
_MISSING = object()


class ConfigError(ValueError):
    """Raised when a configuration value violates its documented range."""

    def __init__(self, field: str, message: str) -> None:
        super().__init__(f"config invalid: {field} {message}")
        self.field = field


class _FrozenModel(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class ScoringSettings(_FrozenModel):
    sharpness_min_var: float = Field(80.0, gt=0)
    luma_mean_min: float = Field(35.0, ge=0, le=255)
    luma_mean_max: float = Field(220.0, ge=0, le=255)
    clipped_low_ratio_max: float = Field(0.2, ge=0, le=1)
    clipped_high_ratio_max: float = Field(0.12, ge=0, le=1)
    low_sharpness_penalty: float = Field(0.35, ge=0, le=1)
    weight_sharpness: float = Field(0.4, ge=0)
    weight_exposure: float = Field(0.3, ge=0)
    weight_background_simplicity: float = Field(0.3, ge=0)


class TorsoRoiSettings(_FrozenModel):
    x: float = Field(0.18, ge=0, le=1)
    y: float = Field(0.18, ge=0, le=1)
    w: float = Field(0.64, gt=0, le=1)
    h: float = Field(0.70, gt=0, le=1)


class RoiSettings(_FrozenModel):
    torso_default: TorsoRoiSettings = Field(default_factory=TorsoRoiSettings)
    enable_saliency_refine: bool = False
    saliency_grid_steps: int = Field(2, ge=0, le=6)
    saliency_max_rois_per_frame: int = Field(9, gt=0, le=49)
    saliency_step_ratio: float = Field(0.05, gt=0, le=0.25)


class DedupeSettings(_FrozenModel):
    phash_hamming_threshold: int = Field(10, ge=0, le=64)
    embedding_cosine_threshold: float = Field(0.94, ge=0, le=1)
    embed_after_phash_only: bool = True


class EmbeddingSettings(_FrozenModel):
    tinyblock_grid: int = Field(16, ge=8, le=32)


class EncodingSettings(_FrozenModel):
    format: Literal["jpeg", "webp"] = "jpeg"
    quality: int = Field(78, ge=1, le=100)


class DebugSettings(_FrozenModel):
    log_per_candidate: bool = False


class DetectionConfig(_FrozenModel):
    """Every threshold and cap used by one detection run."""

    version: Literal["garment-candidates/detect/v1"] = CONFIG_VERSION
    time_budget_ms: int = Field(8000, gt=0)
    min_remaining_ms: int = Field(250, ge=0)
    max_frames_to_score: int = Field(60, gt=0, le=MAX_FRAMES_CEILING)
    top_k_frames: int = Field(12, gt=0)
    max_candidates: int = Field(8, gt=0)
    max_candidates_hard: int = Field(12, gt=0, le=MAX_CANDIDATES_CEILING)
    max_width_used: int = Field(768, ge=128)
    min_crop_dim_px: int = Field(160, ge=32)
    scoring: ScoringSettings = Field(default_factory=ScoringSettings)
    roi: RoiSettings = Field(default_factory=RoiSettings)
    dedupe: DedupeSettings = Field(default_factory=DedupeSettings)
    embeddings: EmbeddingSettings = Field(default_factory=EmbeddingSettings)
    encoding: EncodingSettings = Field(default_factory=EncodingSettings)
    debug: DebugSettings = Field(default_factory=DebugSettings)


class LoggingSettings(BaseModel):
    level: str = "INFO"


class CodecSettings(BaseModel):
    num_threads: int | None = None


class Settings(BaseModel):
    detection: DetectionConfig = Field(default_factory=DetectionConfig)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    codec: CodecSettings = Field(default_factory=CodecSettings)


def build_config(
    overrides: Mapping[str, Any] | None = None,
    *,
    base: DetectionConfig | None = None,
) -> DetectionConfig:
    """Deep-merge overrides onto defaults (or ``base``) and validate the result."""

    data = (base or DetectionConfig()).model_dump(mode="python")
    if overrides is not None:
        if not isinstance(overrides, Mapping):
            raise ConfigError("overrides", "must be a mapping")
        data = _deep_merge(data, overrides)

    config = _validate_model(DetectionConfig, data)
    check_config_invariants(config)
    return config


def check_config_invariants(config: DetectionConfig) -> None:
    """Cross-field rules that single-field constraints cannot express."""

    if config.top_k_frames > config.max_frames_to_score:
        raise ConfigError("top_k_frames", "must be <= max_frames_to_score")
    if config.max_candidates > config.max_candidates_hard:
        raise ConfigError("max_candidates", "must be <= max_candidates_hard")
    if config.min_remaining_ms >= config.time_budget_ms:
        raise ConfigError("min_remaining_ms", "must be < time_budget_ms")

    scoring = config.scoring
    if scoring.luma_mean_min >= scoring.luma_mean_max:
        raise ConfigError("scoring.luma_mean_min", "must be < scoring.luma_mean_max")
    if scoring.weight_sharpness + scoring.weight_exposure + scoring.weight_background_simplicity <= 0:
        raise ConfigError("scoring.weight_sharpness", "scoring weights must not all be zero")

    torso = config.roi.torso_default
    if torso.x + torso.w > 1.0 + ROI_SUM_TOLERANCE:
        raise ConfigError("roi.torso_default.w", "must satisfy x + w <= 1")
    if torso.y + torso.h > 1.0 + ROI_SUM_TOLERANCE:
        raise ConfigError("roi.torso_default.h", "must satisfy y + h <= 1")


def load_settings(config_path: str | Path | None = None) -> Settings:
    """Load typed settings from YAML, then layer ``GARMENT_CANDIDATES_*`` env overrides on top.

    ``GARMENT_CANDIDATES_DETECTION__DEDUPE__PHASH_HAMMING_THRESHOLD=6`` sets
    ``detection.dedupe.phash_hamming_threshold``. Variables naming no known
    field are ignored; values that do not parse raise ``ConfigError``.
    """

    resolved_path = Path(
        config_path
        or os.getenv(f"{ENV_PREFIX}CONFIG")
        or DEFAULT_CONFIG_PATH
    )
    raw_config = yaml.safe_load(resolved_path.read_text(encoding="utf-8")) or {}
    file_settings = _validate_model(Settings, raw_config).model_dump(mode="python")

    data = _deep_merge(file_settings, _env_overrides(file_settings, os.environ))
    settings = _validate_model(Settings, data)
    check_config_invariants(settings.detection)
    return settings


def _env_overrides(current: Mapping[str, Any], environ: Mapping[str, str]) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    for key in sorted(environ):
        if not key.startswith(ENV_PREFIX) or key == f"{ENV_PREFIX}CONFIG":
            continue

        path = key[len(ENV_PREFIX) :].lower().split("__")
        existing = _lookup(current, path)
        if existing is _MISSING or isinstance(existing, dict):
            continue

        leaf = overrides
        for segment in path[:-1]:
            leaf = leaf.setdefault(segment, {})
        leaf[path[-1]] = _parse_env_value(".".join(path), environ[key], existing)
    return overrides


def _lookup(data: Mapping[str, Any], path: list[str]) -> Any:
    node: Any = data
    for segment in path:
        if not isinstance(node, dict) or segment not in node:
            return _MISSING
        node = node[segment]
    return node


def _parse_env_value(field: str, raw_value: str, existing_value: Any) -> Any:
    try:
        if isinstance(existing_value, bool):
            return raw_value.strip().lower() in {"1", "true", "yes", "on"}
        if isinstance(existing_value, int):
            return int(raw_value)
        if isinstance(existing_value, float):
            return float(raw_value)
    except ValueError as exc:
        raise ConfigError(field, f"cannot parse environment value {raw_value!r}") from exc
    return raw_value


def _validate_model(model_cls: type[BaseModel], data: Any) -> Any:
    try:
        return model_cls.model_validate(data)
    except ValidationError as exc:
        first = exc.errors()[0]
        field = ".".join(str(part) for part in first["loc"]) or "config"
        raise ConfigError(field, first["msg"].lower()) from exc


def _deep_merge(base: dict[str, Any], overrides: Mapping[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in overrides.items():
        existing = merged.get(key)
        if isinstance(existing, dict) and isinstance(value, Mapping):
            merged[key] = _deep_merge(existing, value)
        else:
            merged[key] = value
    return merged
