"""Feature vectors and the cosine similarity used to compare them."""

from __future__ import annotations

import json
import math
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

import numpy as np


def cosine_similarity(a: Sequence[float] | np.ndarray, b: Sequence[float] | np.ndarray) -> float:
    """Compute cosine similarity between two vectors.

    Returns a value in [-1, 1]. Vectors of different length, empty vectors,
    zero-magnitude vectors and vectors with non-finite components compare
    as 0.0 rather than raising.
    """
    a_np = np.asarray(a, dtype=np.float64)
    b_np = np.asarray(b, dtype=np.float64)

    if a_np.shape != b_np.shape or a_np.size == 0:
        return 0.0
    if not (np.isfinite(a_np).all() and np.isfinite(b_np).all()):
        return 0.0

    with np.errstate(over="ignore", invalid="ignore"):
        norm_a = np.linalg.norm(a_np)
        norm_b = np.linalg.norm(b_np)
        if norm_a == 0 or norm_b == 0:
            return 0.0
        sim = float(np.dot(a_np, b_np) / (norm_a * norm_b))
    # Huge components can overflow the norms
    if not math.isfinite(sim):
        return 0.0
    # Rounding can push parallel vectors a hair past 1
    return max(-1.0, min(1.0, sim))


@dataclass(frozen=True)
class FeatureVector:
    """Immutable fixed-length appearance embedding of a subject."""

    values: tuple[float, ...]

    @classmethod
    def of(cls, values: Sequence[float] | np.ndarray) -> FeatureVector:
        return cls(tuple(float(v) for v in np.asarray(values, dtype=np.float64).ravel()))

    @classmethod
    def from_stored(cls, raw: Any) -> FeatureVector | None:
        """Parse a stored vector.

        Accepts what the database hands back (a list from JSON columns, a
        numpy array from pgvector) and the JSON-array strings older stores
        kept. Returns None for missing or unparseable values so the subject
        is treated as not yet eligible.
        """
        if raw is None:
            return None
        if isinstance(raw, str):
            try:
                raw = json.loads(raw)
            except json.JSONDecodeError:
                return None
        try:
            vector = cls.of(raw)
        except (TypeError, ValueError):
            return None
        return vector if vector.values else None

    def __len__(self) -> int:
        return len(self.values)

    @property
    def is_finite(self) -> bool:
        return bool(np.all(np.isfinite(self.as_array())))

    @property
    def norm(self) -> float:
        return float(np.linalg.norm(self.as_array()))

    def as_array(self) -> np.ndarray:
        return np.asarray(self.values, dtype=np.float64)

    def to_list(self) -> list[float]:
        return list(self.values)

    def similarity(self, other: FeatureVector) -> float:
        return cosine_similarity(self.values, other.values)
