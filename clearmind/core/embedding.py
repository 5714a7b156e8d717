# clearmind/core/embedding.py
"""
Trigram-hashing text embeddings.

Character trigrams of the normalized text are hashed into a fixed number of
buckets and the bucket histogram is L2-normalized. Distinct trigrams may share
a bucket; that is accepted. Not a language model, but good enough to rank a
few thousand journal entries per user without calling an external API.
"""

import re
from typing import Iterator, List, Optional, Sequence

import numpy as np

from clearmind.core.syslog2 import *

EMBEDDING_DIM = 384

_STRIP_RE = re.compile(r"[^a-z0-9 ]")


def normalize_text(text: Optional[str]) -> str:
    """lowercase and keep only ascii letters, digits and spaces"""
    if not text:
        return ""
    return _STRIP_RE.sub("", text.lower())


def iter_trigrams(normalized: str) -> Iterator[str]:
    for i in range(len(normalized) - 2):
        yield normalized[i:i + 3]


def trigram_hash(trigram: str) -> int:
    """
    Polynomial hash h = h * 31 + ord(ch), wrapped to signed 32 bit after each
    step. Same values as the javascript `((h << 5) - h + c) | 0` loop, so
    vectors produced by both implementations are interchangeable.
    """
    h = 0
    for ch in trigram:
        h = (h * 31 + ord(ch)) & 0xFFFFFFFF
        if h >= 0x80000000:
            h -= 0x100000000
    return h


def bucket_index(trigram: str, dim: int = EMBEDDING_DIM) -> int:
    return abs(trigram_hash(trigram)) % dim


def embed(text: Optional[str], dim: int = EMBEDDING_DIM) -> List[float]:
    """
    Map text to a dim-length vector: unit length, or all zeros when the
    normalized text has no trigram (empty, whitespace, punctuation only).
    Deterministic and never raises.
    """
    counts = np.zeros(dim, dtype=np.float64)
    for trigram in iter_trigrams(normalize_text(text)):
        counts[bucket_index(trigram, dim)] += 1.0

    norm = float(np.sqrt(np.sum(counts * counts)))
    if norm > 0:
        counts /= norm
    return counts.tolist()


def cosine_similarity(a: Optional[Sequence[float]], b: Optional[Sequence[float]]) -> float:
    """
    Cosine of the angle between a and b.

    Returns 0.0 for vectors of different length, for empty input and when
    either vector has zero norm (a zero vector is similar to nothing,
    itself included).
    """
    if a is None or b is None:
        return 0.0
    if len(a) != len(b) or len(a) == 0:
        return 0.0

    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    norm_a = float(np.sqrt(np.dot(va, va)))
    norm_b = float(np.sqrt(np.dot(vb, vb)))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return float(np.dot(va, vb)) / (norm_a * norm_b)


class TrigramEmbeddingClient:
    """Embedding client backed by trigram hashing (no network, no model files)."""

    def __init__(self, dim: int = EMBEDDING_DIM):
        if dim <= 0:
            raise ValueError("dim must be a positive integer")
        self.dim = dim

    @property
    def dimension(self) -> int:
        return self.dim

    def get_embedding(self, text: str) -> List[float]:
        return embed(text, self.dim)

    def get_embeddings(self, texts: List[str]) -> List[List[float]]:
        return [embed(text, self.dim) for text in texts]

    def get_embeddings_batched(
        self,
        texts: List[str],
        batch_size: int = 128,
        show_progress: bool = False,
    ) -> List[List[float]]:
        """batched embeddings with progress logging, used by reindex"""
        total = len(texts)
        if total == 0:
            return []

        all_embs: List[List[float]] = []
        for start in range(0, total, batch_size):
            end = min(start + batch_size, total)
            all_embs.extend(self.get_embeddings(texts[start:end]))
            if show_progress:
                syslog2(LOG_INFO, "embeddings progress", done=end, total=total, percent=end * 100 // total)

        return all_embs
