"""Argument checks for the public clustering and matching entry points."""

import math

from faceroster.errors import ConfigurationError


def require_threshold(value: float, name: str = "threshold") -> float:
    """Reject negative or non-finite distance thresholds."""
    if value is None or not math.isfinite(value) or value < 0:
        raise ConfigurationError(f"{name} must be a finite value >= 0, got {value!r}")
    return float(value)


def require_unit_interval(value: float, name: str) -> float:
    if value is None or not math.isfinite(value) or not 0.0 <= value <= 1.0:
        raise ConfigurationError(f"{name} must be within [0, 1], got {value!r}")
    return float(value)


def require_positive_int(value: int, name: str) -> int:
    if not isinstance(value, int) or isinstance(value, bool) or value < 1:
        raise ConfigurationError(f"{name} must be an integer >= 1, got {value!r}")
    return value


def require_weights(face_weight: float, supplementary_weight: float) -> tuple[float, float]:
    """Validate the primary/supplementary mixing weights of dual-embedding mode."""
    for name, value in (("face_weight", face_weight), ("supplementary_weight", supplementary_weight)):
        if value is None or not math.isfinite(value) or value < 0:
            raise ConfigurationError(f"{name} must be a finite value >= 0, got {value!r}")
    if face_weight == 0 and supplementary_weight == 0:
        raise ConfigurationError("face_weight and supplementary_weight cannot both be 0")
    return float(face_weight), float(supplementary_weight)
