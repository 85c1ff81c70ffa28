import math
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np

VALID_KINDS = ('prices', 'returns')
MIN_VALID_RATIO = 0.90
MIN_POSITIVE_RATIO = 0.95


@dataclass
class ValidationResult:
    valid: bool
    valid_ratio: float = 0.0
    total_points: int = 0
    valid_points: int = 0
    error: Optional[str] = None


def _is_valid_number(value) -> bool:
    if value is None or isinstance(value, bool):
        return False
    try:
        return not math.isnan(float(value))
    except (TypeError, ValueError):
        return False


def validate_data_quality(samples: Sequence, kind: str = 'prices') -> ValidationResult:
    """
    Checks whether a batch of samples is fit for storage or analysis.

    A sample is valid when it is numeric and not NaN. The batch passes when at
    least 90% of samples are valid; price batches additionally need 95% of the
    valid values to be strictly positive.
    """
    if kind not in VALID_KINDS:
        raise ValueError(f"Unknown sample kind: {kind}")

    if isinstance(samples, np.ndarray):
        samples = samples.tolist()
    if isinstance(samples, (str, bytes)) or not isinstance(samples, Sequence):
        return ValidationResult(valid=False, error='Data is not an array')
    if len(samples) == 0:
        return ValidationResult(valid=False, error='Empty data array')

    total = len(samples)
    valid_values = [float(v) for v in samples if _is_valid_number(v)]
    valid_ratio = len(valid_values) / total

    if kind == 'prices':
        positives = sum(1 for v in valid_values if v > 0)
        if positives < len(valid_values) * MIN_POSITIVE_RATIO:
            return ValidationResult(
                valid=False,
                valid_ratio=positives / total,
                total_points=total,
                valid_points=len(valid_values),
                error='Too many non-positive price values',
            )

    valid = valid_ratio >= MIN_VALID_RATIO
    return ValidationResult(
        valid=valid,
        valid_ratio=valid_ratio,
        total_points=total,
        valid_points=len(valid_values),
        error=None if valid else 'Insufficient valid data points',
    )
