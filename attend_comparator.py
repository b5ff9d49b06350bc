"""
Blink-Attend — Embedding Comparator
====================================
Cosine similarity between two comma-separated face embeddings.

  similarity = a·b / (|a| |b|),  clipped to [-1, 1]
  zero-magnitude vector on either side → 0.0

Embeddings are stored as text for storage-layer compatibility, so every
comparison parses both sides. Parse problems are reported through
InvalidEmbedding / MismatchedEmbeddingLength, never as raw ValueErrors.
"""

from __future__ import annotations

import numpy as np

from attend_errors import InvalidEmbedding, MismatchedEmbeddingLength
from attend_utils import SIMILARITY_THRESHOLD


def parse_embedding(embedding: str) -> np.ndarray:
    """Parse "0.12,-0.5,..." into a float64 vector."""
    if embedding is None or not str(embedding).strip():
        raise InvalidEmbedding(log_message="Empty embedding")
    try:
        values = [float(token) for token in str(embedding).split(",")]
    except ValueError as exc:
        raise InvalidEmbedding(log_message=f"Non-numeric embedding value: {exc}") from exc

    vector = np.asarray(values, dtype=np.float64)
    if not np.all(np.isfinite(vector)):
        raise InvalidEmbedding(log_message="Embedding contains NaN or infinity")
    return vector


def format_embedding(vector) -> str:
    """Encode a numeric vector as the comma-separated storage form."""
    return ",".join(repr(float(v)) for v in np.asarray(vector, dtype=np.float64).ravel())


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    """Cosine similarity of two equal-length vectors; 0.0 if either is zero."""
    if a.shape != b.shape:
        raise MismatchedEmbeddingLength(
            log_message=f"Embedding length mismatch: {a.size} vs {b.size}"
        )
    norm_a = float(np.linalg.norm(a))
    norm_b = float(np.linalg.norm(b))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    score = float(np.dot(a, b) / (norm_a * norm_b))
    return float(np.clip(score, -1.0, 1.0))


def compare(a: str, b: str) -> float:
    """Similarity of two stored embeddings in [-1, 1]."""
    return cosine_similarity(parse_embedding(a), parse_embedding(b))


def is_same_person(a: str, b: str, threshold: float = SIMILARITY_THRESHOLD) -> bool:
    """True when the similarity reaches the same-person threshold."""
    return compare(a, b) >= threshold


class EmbeddingComparator:
    """Threshold-bound comparator handed to the session controller."""

    def __init__(self, threshold: float = SIMILARITY_THRESHOLD):
        if not -1.0 <= threshold <= 1.0:
            raise ValueError(f"Similarity threshold must be in [-1, 1], got {threshold}")
        self.threshold = threshold

    def compare(self, a: str, b: str) -> float:
        return compare(a, b)

    def is_same_person(self, a: str, b: str) -> bool:
        return is_same_person(a, b, self.threshold)
