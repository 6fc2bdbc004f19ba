"""
test_vector.py

Tests for VectorSearchService, embedding validation and the token bucket.
"""

from __future__ import annotations

import math
from unittest.mock import MagicMock

import pytest
from neo4j.exceptions import AuthError, ClientError

from graph_kg.config import VectorIndexDescriptor
from graph_kg.embedding import EmbeddingProvider, validate_vector
from graph_kg.errors import EmbeddingProviderError, QueryValidationError, VectorSearchError
from graph_kg.ratelimit import TokenBucket
from graph_kg.vector import VectorSearchService

DESC = VectorIndexDescriptor(
    name="scopeEmbeddings", label="Scope", field="embedding_signature", source_field="signature", dimension=8
)


class _FailingOn(EmbeddingProvider):
    """Fails on inputs containing a marker word."""

    dim = 8

    def __init__(self, marker="boom"):
        self.marker = marker

    def embed_texts(self, texts):
        out = []
        for t in texts:
            if self.marker in t:
                raise RuntimeError("provider down")
            out.append([1.0] + [0.0] * 7)
        return out


def _svc(client=None, provider=None, **kw):
    return VectorSearchService(client or MagicMock(), provider or _FailingOn(), descriptors=[DESC], **kw)


# ---------------------------------------------------------------------------
# validate_vector
# ---------------------------------------------------------------------------


def test_validate_vector_ok():
    assert validate_vector([1, 2, 3], 3) == [1.0, 2.0, 3.0]


@pytest.mark.parametrize(
    "vec, dim",
    [
        ([], None),
        ([[1.0, 2.0]], None),
        (["a", "b"], None),
        ([1.0, math.nan], None),
        ([1.0, math.inf], None),
        ([1.0, 2.0], 3),
    ],
)
def test_validate_vector_rejects(vec, dim):
    with pytest.raises(ValueError):
        validate_vector(vec, dim)


def test_provider_base_is_abstract():
    with pytest.raises(NotImplementedError):
        EmbeddingProvider().embed_texts(["x"])


# ---------------------------------------------------------------------------
# embed / embed_batch
# ---------------------------------------------------------------------------


def test_embed_wraps_provider_errors():
    with pytest.raises(EmbeddingProviderError) as ei:
        _svc().embed("boom", index_name="scopeEmbeddings")
    assert ei.value.text == "boom"
    assert isinstance(ei.value.__cause__, RuntimeError)


def test_embed_rejects_wrong_dimension():
    provider = MagicMock(spec=EmbeddingProvider)
    provider.embed_query.return_value = [0.1, 0.2]
    with pytest.raises(EmbeddingProviderError, match="malformed"):
        _svc(provider=provider).embed("x", index_name="scopeEmbeddings")


def test_embed_uses_per_index_provider(embedder):
    override = MagicMock(spec=EmbeddingProvider)
    override.embed_query.return_value = [0.0] * 8
    svc = _svc(provider=embedder, providers={"scopeEmbeddings": override})
    svc.embed("hello", index_name="scopeEmbeddings")
    override.embed_query.assert_called_once_with("hello")
    assert embedder.calls == []


def test_embed_batch_partial_failure():
    out = _svc().embed_batch(["a", "boom", "c", "boom again"])
    assert not out.ok
    assert [f.index for f in out.failures] == [1, 3]
    assert out.failures[0].text == "boom"
    assert out.vectors[0] is not None and out.vectors[2] is not None
    assert out.vectors[1] is None
    assert [i for i, _ in out.succeeded()] == [0, 2]


def test_embed_paced_by_rate_limiter():
    limiter = MagicMock()
    _svc(rate_limiter=limiter).embed_batch(["a", "b", "c"])
    assert limiter.acquire.call_count == 3


# ---------------------------------------------------------------------------
# search
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "index, top_k, min_score",
    [(None, 5, 0.0), ("", 5, 0.0), ("idx", 0, 0.0), ("idx", 2.5, 0.0), ("idx", 5, 1.5), ("idx", 5, -0.1)],
)
def test_search_validates_before_any_call(index, top_k, min_score):
    client = MagicMock()
    provider = MagicMock(spec=EmbeddingProvider)
    with pytest.raises(QueryValidationError):
        _svc(client, provider).search("x", index, top_k=top_k, min_score=min_score)
    provider.embed_query.assert_not_called()
    client.vector_query.assert_not_called()


def test_search_sorts_clamps_and_strips():
    client = MagicMock()
    client.vector_query.return_value = [
        ({"uuid": "B", "name": "b", "embedding_signature": [0.1]}, ["Scope"], 0.4),
        ({"uuid": "A", "name": "a", "embedding_source": [0.2]}, ["Scope"], 1.2),
        ({"uuid": "C", "name": "c"}, ["Scope"], 0.2),
    ]
    hits = _svc(client).search("x", "scopeEmbeddings", top_k=2, min_score=0.3)
    assert [h.id for h in hits] == ["A", "B"]
    assert hits[0].score == 1.0
    assert "embedding_signature" not in hits[1].properties
    assert "embedding_source" not in hits[0].properties
    assert hits[0].labels == ["Scope"]
    args = client.vector_query.call_args
    assert args.args[0] == "scopeEmbeddings"
    assert args.kwargs["min_score"] == 0.3


def test_search_store_rejection():
    client = MagicMock()
    client.vector_query.side_effect = ClientError("no such vector index")
    with pytest.raises(VectorSearchError):
        _svc(client).search("x", "missing")


def test_search_auth_error_propagates():
    client = MagicMock()
    client.vector_query.side_effect = AuthError("denied")
    with pytest.raises(AuthError):
        _svc(client).search("x", "scopeEmbeddings")


def test_search_embedding_failure():
    with pytest.raises(EmbeddingProviderError):
        _svc().search("boom", "scopeEmbeddings")


# ---------------------------------------------------------------------------
# index_entities
# ---------------------------------------------------------------------------


def test_index_entities_embeds_and_skips():
    client = MagicMock()
    client.node_texts.return_value = {"A": "def a()", "B": "", "C": "def boom()"}
    client.set_properties.side_effect = lambda label, rows: len(rows)
    report = _svc(client).index_entities(DESC, ["A", "B", "C", "D"])
    assert report.embedded == 1
    assert report.skipped == 2
    assert [f.text for f in report.failures] == ["def boom()"]
    label, rows = client.set_properties.call_args.args
    assert label == "Scope"
    assert rows[0]["uuid"] == "A"
    assert list(rows[0]["props"]) == ["embedding_signature"]


def test_index_entities_empty():
    client = MagicMock()
    report = _svc(client).index_entities(DESC, [])
    assert report.embedded == 0
    client.node_texts.assert_not_called()


# ---------------------------------------------------------------------------
# TokenBucket
# ---------------------------------------------------------------------------


class _Clock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.now += seconds


def test_token_bucket_burst_then_refill():
    clock = _Clock()
    bucket = TokenBucket(rate=2.0, capacity=2, clock=clock, sleep=clock.sleep)
    assert bucket.consume()
    assert bucket.consume()
    assert not bucket.consume()
    clock.now += 0.5
    assert bucket.consume()


def test_token_bucket_acquire_waits():
    clock = _Clock()
    bucket = TokenBucket(rate=4.0, capacity=1, clock=clock, sleep=clock.sleep)
    assert bucket.acquire() == 0.0
    waited = bucket.acquire()
    assert waited == pytest.approx(0.25)
    assert clock.now == pytest.approx(0.25)


def test_token_bucket_rejects_bad_args():
    with pytest.raises(ValueError):
        TokenBucket(rate=0, capacity=1)
    with pytest.raises(ValueError):
        TokenBucket(rate=1, capacity=1).acquire(2)
