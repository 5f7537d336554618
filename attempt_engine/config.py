from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from pathlib import Path

from .models import MarkingScheme

ENV_PREFIX = "ATTEMPT_ENGINE_"


@dataclass(frozen=True, slots=True)
class AnalyticsThresholds:
    """Tunable cutoffs for time buckets and the behavioural/error heuristics.

    None of these values are grounded in a formal model; they are starting
    points and callers are expected to tune them per exam.
    """

    quick_bucket_s: float = 30.0  # quick: t < quick_bucket_s
    lengthy_bucket_s: float = 120.0  # lengthy: t > lengthy_bucket_s
    quick_answer_s: float = 15.0
    long_deliberation_multiple: float = 2.0
    multiple_revisions_min: int = 2
    careless_ratio: float = 1.0 / 3.0
    time_management_ratio: float = 2.0
    # Weights for the time management score (quick, moderate, lengthy).
    efficiency_weights: tuple[float, float, float] = (1.0, 0.7, 0.3)

    def __post_init__(self) -> None:
        if self.quick_bucket_s <= 0 or self.lengthy_bucket_s < self.quick_bucket_s:
            raise ValueError("bucket edges must satisfy 0 < quick <= lengthy")
        if self.quick_answer_s < 0:
            raise ValueError("quick_answer_s must be >= 0")
        if self.long_deliberation_multiple <= 0:
            raise ValueError("long_deliberation_multiple must be > 0")
        if self.multiple_revisions_min < 1:
            raise ValueError("multiple_revisions_min must be >= 1")
        if not (0.0 < self.careless_ratio < self.time_management_ratio):
            raise ValueError("careless_ratio must be in (0, time_management_ratio)")


@dataclass(frozen=True, slots=True)
class EngineConfig:
    default_marking_scheme: MarkingScheme = MarkingScheme(correct=5.0, incorrect=0.0, unattempted=0.0)
    # Total-time values above this are assumed to be milliseconds.
    seconds_ceiling: float = 100.0
    default_duration_s: float = 7200.0
    db_path: Path | None = None
    log_level: str = "INFO"
    thresholds: AnalyticsThresholds = field(default_factory=AnalyticsThresholds)

    def __post_init__(self) -> None:
        if self.seconds_ceiling <= 0:
            raise ValueError("seconds_ceiling must be > 0")
        if self.default_duration_s <= 0:
            raise ValueError("default_duration_s must be > 0")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "EngineConfig":
        """Build a config from ``ATTEMPT_ENGINE_*`` variables, falling back to defaults."""

        env = os.environ if environ is None else environ
        cfg = cls()

        raw_db = env.get(f"{ENV_PREFIX}DB_PATH", "").strip()
        if raw_db:
            cfg = replace(cfg, db_path=Path(raw_db).expanduser())

        raw_level = env.get(f"{ENV_PREFIX}LOG_LEVEL", "").strip()
        if raw_level:
            cfg = replace(cfg, log_level=raw_level.upper())

        cfg = replace(
            cfg,
            seconds_ceiling=_env_float(env, "SECONDS_CEILING", cfg.seconds_ceiling),
            default_duration_s=_env_float(env, "DEFAULT_DURATION_S", cfg.default_duration_s),
            default_marking_scheme=MarkingScheme(
                correct=_env_float(env, "MARK_CORRECT", cfg.default_marking_scheme.correct),
                incorrect=_env_float(env, "MARK_INCORRECT", cfg.default_marking_scheme.incorrect),
                unattempted=_env_float(env, "MARK_UNATTEMPTED", cfg.default_marking_scheme.unattempted),
            ),
        )
        return cfg


def _env_float(env: Mapping[str, str], key: str, fallback: float) -> float:
    raw = env.get(f"{ENV_PREFIX}{key}", "").strip()
    if raw == "":
        return float(fallback)
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{ENV_PREFIX}{key} must be a number, got {raw!r}") from exc
