#!/usr/bin/env python3
"""
rerank.py

Post-retrieval rerank strategies.

The query engine runs strategies in declaration order; each receives the
previous strategy's output and returns a (possibly rescored) result list.
The engine performs the final sort.

Author: Eric G. Suchanek, PhD
"""

from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from loguru import logger

if TYPE_CHECKING:
    from graph_kg.query import QuerySpec, SearchResult


@dataclass(frozen=True)
class RerankContext:
    """
    What a strategy knows about the query being answered.

    :param label: Target label of the query.
    :param query_text: Semantic text (``None`` for filter-only queries).
    :param spec: The full immutable query spec.
    """

    label: str
    query_text: str | None
    spec: "QuerySpec"


@runtime_checkable
class RerankStrategy(Protocol):
    def rerank(self, results: list["SearchResult"], context: RerankContext) -> list["SearchResult"]: ...


@runtime_checkable
class StructuredGenerationProvider(Protocol):
    """LLM client returning JSON conforming to *schema*."""

    def generate(self, prompt: str, schema: Mapping[str, Any]) -> Mapping[str, Any]: ...


RANKING_SCHEMA: dict = {
    "type": "object",
    "properties": {
        "ranking": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "id": {"type": "string"},
                    "score": {"type": "number", "minimum": 0, "maximum": 1},
                },
                "required": ["id", "score"],
            },
        }
    },
    "required": ["ranking"],
}

_PROMPT = (
    "You are ranking code entities by relevance to a query. "
    "Return JSON with an array 'ranking' of objects {id: string, score: number in [0, 1]}; "
    "higher means more relevant. Omit entities you cannot judge."
)


class LLMReranker:
    """
    Blend an LLM relevance judgement into each result's score.

    ``new_score = (1 - weight) * score + weight * llm_score``; results the
    provider does not score keep their score.

    :param provider: :class:`StructuredGenerationProvider`.
    :param weight: Share of the LLM score in ``[0, 1]``.
    :param max_items: Only the first *max_items* results are sent.
    :param fields: Entity properties included in each summary.
    """

    def __init__(
        self,
        provider: StructuredGenerationProvider,
        *,
        weight: float = 0.5,
        max_items: int = 20,
        fields: Sequence[str] = ("name", "type", "file", "signature", "docstring"),
        instructions: str | None = None,
    ) -> None:
        if not 0.0 <= weight <= 1.0:
            raise ValueError("weight must be within [0, 1]")
        self.provider = provider
        self.weight = weight
        self.max_items = max_items
        self.fields = tuple(fields)
        self.instructions = instructions

    def _prompt(self, results: Sequence["SearchResult"], context: RerankContext) -> str:
        payload = {
            "query": context.query_text,
            "label": context.label,
            "entities": [
                {"id": r.uuid, **{f: r.entity.get(f) for f in self.fields if r.entity.get(f) is not None}}
                for r in results
            ],
        }
        head = _PROMPT if not self.instructions else f"{_PROMPT}\n{self.instructions}"
        return f"{head}\n\n{json.dumps(payload, default=str)}"

    def rerank(self, results: list["SearchResult"], context: RerankContext) -> list["SearchResult"]:
        if not results:
            return results

        window = results[: self.max_items]
        response = self.provider.generate(self._prompt(window, context), RANKING_SCHEMA)

        scores: dict[str, float] = {}
        try:
            for entry in response.get("ranking", []):
                scores[str(entry["id"])] = min(1.0, max(0.0, float(entry["score"])))
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            logger.warning("ignoring malformed rerank response: {}", exc)
            return results

        out = []
        for r in results:
            s = scores.get(r.uuid)
            if s is None:
                out.append(r)
                continue
            out.append(
                replace(
                    r,
                    score=(1.0 - self.weight) * r.score + self.weight * s,
                    context={**r.context, "rerank_score": s},
                )
            )
        return out
