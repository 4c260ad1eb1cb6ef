"""
Runtime defaults for unwrapping and measurement.

Values can be overridden via environment variables so batch jobs can tune the
solver without touching call sites. Invalid or out-of-range values fall back
to the built-in default.
"""

from __future__ import annotations

from dataclasses import dataclass
import math
import os


ENV_LSCM_MAX_ITERATIONS = "LIMBFLAT_LSCM_MAX_ITERATIONS"
ENV_CG_TOLERANCE = "LIMBFLAT_CG_TOLERANCE"
ENV_PIN_PENALTY = "LIMBFLAT_PIN_PENALTY"
ENV_SEAM_ANGLE_TOLERANCE = "LIMBFLAT_SEAM_ANGLE_TOLERANCE"
ENV_SEAM_SPLIT_RATIO = "LIMBFLAT_SEAM_SPLIT_RATIO"
ENV_CIRCUMFERENCE_SAMPLES = "LIMBFLAT_CIRCUMFERENCE_SAMPLES"


@dataclass(frozen=True)
class RuntimeDefaults:
    lscm_max_iterations: int
    cg_tolerance: float
    pin_penalty: float
    seam_angle_tolerance: float
    seam_split_ratio: float
    circumference_samples: int


def _read_int_env(
    env_name: str,
    default: int,
    *,
    min_value: int | None = None,
    max_value: int | None = None,
) -> int:
    raw = os.environ.get(env_name)
    if raw is None:
        return default
    try:
        value = int(str(raw).strip())
    except (TypeError, ValueError):
        return default

    if min_value is not None and value < min_value:
        return default
    if max_value is not None and value > max_value:
        return default
    return value


def _read_float_env(
    env_name: str,
    default: float,
    *,
    min_value: float | None = None,
    max_value: float | None = None,
) -> float:
    raw = os.environ.get(env_name)
    if raw is None:
        return default
    try:
        value = float(str(raw).strip())
    except (TypeError, ValueError):
        return default

    if not math.isfinite(value):
        return default
    if min_value is not None and value < min_value:
        return default
    if max_value is not None and value > max_value:
        return default
    return value


def load_runtime_defaults() -> RuntimeDefaults:
    return RuntimeDefaults(
        lscm_max_iterations=_read_int_env(ENV_LSCM_MAX_ITERATIONS, 200, min_value=1, max_value=100000),
        cg_tolerance=_read_float_env(ENV_CG_TOLERANCE, 1e-6, min_value=1e-14, max_value=1e-1),
        pin_penalty=_read_float_env(ENV_PIN_PENALTY, 1e8, min_value=1e8, max_value=1e14),
        seam_angle_tolerance=_read_float_env(ENV_SEAM_ANGLE_TOLERANCE, 0.5, min_value=1e-3, max_value=math.pi),
        seam_split_ratio=_read_float_env(ENV_SEAM_SPLIT_RATIO, 0.7, min_value=0.1, max_value=1.0),
        circumference_samples=_read_int_env(ENV_CIRCUMFERENCE_SAMPLES, 10, min_value=2, max_value=1000),
    )


DEFAULTS = load_runtime_defaults()
