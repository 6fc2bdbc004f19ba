#!/usr/bin/env python3
"""
embedding.py

Embedding providers.

The vector layer only depends on the :class:`EmbeddingProvider` interface;
providers are constructed explicitly and passed in, never cached at module
level.

Author: Eric G. Suchanek, PhD
"""

from __future__ import annotations

from typing import List

import numpy as np

# ---------------------------------------------------------------------------
# Provider interface (pluggable)
# ---------------------------------------------------------------------------


class EmbeddingProvider:
    """
    Abstract embedding backend.

    Subclass and implement :meth:`embed_texts` to plug in any model or
    remote API.

    :param dim: Embedding dimension (must be set by subclass ``__init__``).
    """

    dim: int
    model_name: str = ""

    def embed_texts(self, texts: List[str]) -> List[List[float]]:
        """
        Embed a list of strings.

        :param texts: Input strings.
        :return: List of float vectors, one per input.
        """
        raise NotImplementedError

    def embed_query(self, query: str) -> List[float]:
        """
        Embed a single query string.

        Default implementation calls :meth:`embed_texts` with a one-element list.

        :param query: Query string.
        :return: Float vector.
        """
        return self.embed_texts([query])[0]

    def close(self) -> None:
        """Release provider resources (no-op by default)."""


class SentenceTransformerEmbedder(EmbeddingProvider):
    """
    Local embedding via ``sentence-transformers``.

    :param model_name: HuggingFace model name or local path.
                       Defaults to ``"all-MiniLM-L6-v2"``.
    """

    def __init__(self, model_name: str = "all-MiniLM-L6-v2") -> None:
        from sentence_transformers import SentenceTransformer

        self.model = SentenceTransformer(model_name)
        self.model_name = model_name
        self.dim: int = self.model.get_sentence_embedding_dimension()

    def embed_texts(self, texts: List[str]) -> List[List[float]]:
        vecs = self.model.encode(texts, normalize_embeddings=True, show_progress_bar=False)
        return [np.asarray(v, dtype="float32").tolist() for v in vecs]

    def embed_query(self, query: str) -> List[float]:
        """Embed a single query string."""
        vec = self.model.encode([query], normalize_embeddings=True, show_progress_bar=False)[0]
        return np.asarray(vec, dtype="float32").tolist()

    def __repr__(self) -> str:
        return f"SentenceTransformerEmbedder(model={self.model_name!r}, dim={self.dim})"


def validate_vector(vec: object, dim: int | None = None) -> list[float]:
    """
    Coerce a provider response into a finite float list.

    :param vec: Raw provider output.
    :param dim: Expected dimension (skipped when ``None``).
    :raises ValueError: if the vector is empty, non-numeric, non-finite or of
        the wrong dimension.
    """
    try:
        arr = np.asarray(vec, dtype="float64")
    except (TypeError, ValueError) as exc:
        raise ValueError(f"embedding is not numeric: {exc}") from exc

    if arr.ndim != 1 or arr.size == 0:
        raise ValueError(f"embedding must be a non-empty 1-d vector, got shape {arr.shape}")
    if dim is not None and arr.size != dim:
        raise ValueError(f"embedding dimension {arr.size} != expected {dim}")
    if not np.all(np.isfinite(arr)):
        raise ValueError("embedding contains non-finite values")
    return arr.tolist()
