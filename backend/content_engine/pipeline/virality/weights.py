"""Virality dimensions, weight validation and the composite score."""
import math
from typing import Dict, Mapping, Optional

from content_engine.errors import ValidationError

# Fixed scoring dimensions, in summation order
DIMENSIONS = ("hook", "emotion", "insight", "cta", "quality")

DEFAULT_WEIGHTS = {dim: 0.2 for dim in DIMENSIONS}

WEIGHT_PRESETS = {
    "equal": DEFAULT_WEIGHTS,
    "engagement": {
        "hook": 0.25,
        "emotion": 0.25,
        "insight": 0.20,
        "cta": 0.15,
        "quality": 0.15,
    },
}

WEIGHT_SUM_TOLERANCE = 1e-6


def validate_weights(weights: Mapping[str, float]) -> Dict[str, float]:
    """
    Validate a complete weight vector.

    Raises:
        ValidationError: On unknown or missing dimensions, negative values,
            or a sum other than 1.
    """
    unknown = set(weights) - set(DIMENSIONS)
    if unknown:
        raise ValidationError(f"Unknown virality dimensions: {', '.join(sorted(unknown))}")

    missing = [dim for dim in DIMENSIONS if dim not in weights]
    if missing:
        raise ValidationError(f"Missing virality weights: {', '.join(missing)}")

    cleaned = {}
    for dim in DIMENSIONS:
        try:
            value = float(weights[dim])
        except (TypeError, ValueError):
            raise ValidationError(f"Weight for {dim} must be a number")
        if math.isnan(value) or value < 0:
            raise ValidationError(f"Weight for {dim} must be non-negative")
        cleaned[dim] = value

    total = sum(cleaned.values())
    if abs(total - 1.0) > WEIGHT_SUM_TOLERANCE:
        raise ValidationError(f"Virality weights must sum to 1 (got {total:.4f})")

    return cleaned


def resolve_weights(
    overrides: Optional[Mapping[str, float]] = None,
    preset: Optional[str] = None,
    base: Optional[Mapping[str, float]] = None,
) -> Dict[str, float]:
    """
    Pick the weight vector for an analysis run.

    A named preset wins over the base vector; explicit overrides must be a
    complete vector on their own.
    """
    if overrides:
        return validate_weights(overrides)
    if preset:
        if preset not in WEIGHT_PRESETS:
            raise ValidationError(f"Unknown weight preset: {preset}")
        return dict(WEIGHT_PRESETS[preset])
    return validate_weights(base or DEFAULT_WEIGHTS)


def composite_score(subscores: Mapping[str, float], weights: Mapping[str, float]) -> int:
    """round(sum(weight * subscore)), rounding halves up, clamped to 0-100."""
    total = 0.0
    for dim in DIMENSIONS:
        total += weights[dim] * subscores[dim]
    # 1e-9 tolerates accumulated float error
    rounded = math.floor(total + 0.5 + 1e-9)
    return int(min(100, max(0, rounded)))
