"""Vector similarity and adaptive score thresholds.

Pure functions used by the graph builder. Contract violations (mismatched
vector lengths, out-of-range percentiles) raise ``ValueError``.
"""

import logging
from dataclasses import dataclass
from typing import Sequence

import numpy as np

# Configure module logger
logger = logging.getLogger(__name__)

# Adaptive threshold defaults
DEFAULT_PERCENTILE = 75.0
DEFAULT_MULTIPLIER = 0.7
DEFAULT_FLOOR = 0.2
DEFAULT_CEILING = 0.85


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity between two equal-length vectors.

    Args:
        a: First vector.
        b: Second vector.

    Returns:
        Similarity in [-1, 1]. Returns 0.0 when either vector has zero norm.

    Raises:
        ValueError: If the vectors differ in length.

    Example:
        >>> cosine_similarity([1.0, 0.0], [1.0, 0.0])
        1.0
    """
    vec_a = np.asarray(a, dtype=np.float64)
    vec_b = np.asarray(b, dtype=np.float64)

    if vec_a.shape != vec_b.shape:
        raise ValueError(
            f"Vectors must have same length, got {vec_a.size} and {vec_b.size}"
        )

    norm_a = np.linalg.norm(vec_a)
    norm_b = np.linalg.norm(vec_b)
    if norm_a == 0 or norm_b == 0:
        return 0.0

    return float(np.dot(vec_a, vec_b) / (norm_a * norm_b))


def percentile(scores: Sequence[float], p: float) -> float:
    """Percentile with linear interpolation between order statistics.

    For ``n`` ascending-sorted values the position is ``p / 100 * (n - 1)``;
    the result interpolates between the floor and ceil positions by the
    fractional part. Input order does not matter.

    Returns:
        The interpolated value, or 0.0 for an empty input.

    Raises:
        ValueError: If ``p`` is outside [0, 100].
    """
    if not 0 <= p <= 100:
        raise ValueError(f"Percentile must be within [0, 100], got {p}")
    if len(scores) == 0:
        return 0.0
    return float(np.percentile(np.asarray(scores, dtype=np.float64), p, method="linear"))


@dataclass(frozen=True)
class ThresholdPolicy:
    """Per-source adaptive similarity threshold.

    ``threshold = clamp(percentile(scores, p) * multiplier, floor, ceiling)``.
    The threshold is computed from one source's own candidate scores, so each
    source calibrates its own bar.
    """

    percentile: float = DEFAULT_PERCENTILE
    multiplier: float = DEFAULT_MULTIPLIER
    floor: float = DEFAULT_FLOOR
    ceiling: float = DEFAULT_CEILING

    def __post_init__(self) -> None:
        if not 0 <= self.percentile <= 100:
            raise ValueError("percentile must be within [0, 100]")
        if self.floor > self.ceiling:
            raise ValueError("floor must not exceed ceiling")

    def threshold(self, scores: Sequence[float]) -> float:
        """Return the clamped threshold for a candidate score distribution."""
        base = percentile(scores, self.percentile) * self.multiplier
        return max(self.floor, min(self.ceiling, base))
