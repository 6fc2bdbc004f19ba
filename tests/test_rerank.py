"""
test_rerank.py

Tests for LLMReranker: score blending, partial rankings and malformed responses.
"""

from __future__ import annotations

import json
from unittest.mock import MagicMock

import pytest

from graph_kg.query import QuerySpec, SearchResult
from graph_kg.rerank import RANKING_SCHEMA, LLMReranker, RerankContext, RerankStrategy

CTX = RerankContext(label="Scope", query_text="parse a file", spec=QuerySpec(label="Scope"))


def _results():
    return [
        SearchResult(entity={"uuid": "A", "name": "parse_file", "type": "function"}, score=0.8),
        SearchResult(entity={"uuid": "B", "name": "load"}, score=0.6),
        SearchResult(entity={"uuid": "C", "name": "render"}, score=0.4),
    ]


def _provider(response):
    p = MagicMock()
    p.generate.return_value = response
    return p


def test_reranker_is_strategy():
    assert isinstance(LLMReranker(_provider({})), RerankStrategy)


def test_blends_scores():
    provider = _provider({"ranking": [{"id": "A", "score": 0.0}, {"id": "C", "score": 1.0}]})
    out = LLMReranker(provider, weight=0.5).rerank(_results(), CTX)
    by_id = {r.uuid: r for r in out}
    assert by_id["A"].score == pytest.approx(0.4)
    assert by_id["C"].score == pytest.approx(0.7)
    assert by_id["C"].context["rerank_score"] == 1.0
    # unscored results keep their score
    assert by_id["B"].score == pytest.approx(0.6)
    assert "rerank_score" not in by_id["B"].context


def test_does_not_mutate_input():
    results = _results()
    LLMReranker(_provider({"ranking": [{"id": "A", "score": 0.0}]})).rerank(results, CTX)
    assert results[0].score == 0.8


def test_prompt_and_schema():
    provider = _provider({"ranking": []})
    LLMReranker(provider, max_items=2, fields=("name",), instructions="Prefer parsers.").rerank(_results(), CTX)
    prompt, schema = provider.generate.call_args.args
    assert schema is RANKING_SCHEMA
    assert "Prefer parsers." in prompt
    payload = json.loads(prompt.split("\n\n", 1)[1])
    assert payload["query"] == "parse a file"
    assert payload["entities"] == [{"id": "A", "name": "parse_file"}, {"id": "B", "name": "load"}]


def test_scores_clamped():
    provider = _provider({"ranking": [{"id": "A", "score": 7}]})
    (a, *_) = LLMReranker(provider, weight=1.0).rerank(_results(), CTX)
    assert a.score == 1.0


@pytest.mark.parametrize(
    "response",
    [
        {"ranking": [{"id": "A"}]},
        {"ranking": [{"id": "A", "score": "high"}]},
        {"ranking": "nope"},
        None,
    ],
)
def test_malformed_response_leaves_results(response):
    results = _results()
    out = LLMReranker(_provider(response)).rerank(results, CTX)
    assert [r.score for r in out] == [0.8, 0.6, 0.4]


def test_provider_errors_propagate():
    provider = MagicMock()
    provider.generate.side_effect = TimeoutError("llm timeout")
    with pytest.raises(TimeoutError):
        LLMReranker(provider).rerank(_results(), CTX)


def test_empty_results_skip_provider():
    provider = _provider({"ranking": []})
    assert LLMReranker(provider).rerank([], CTX) == []
    provider.generate.assert_not_called()


def test_weight_bounds():
    with pytest.raises(ValueError):
        LLMReranker(_provider({}), weight=1.5)
