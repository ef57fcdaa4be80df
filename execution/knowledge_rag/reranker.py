"""
LLM Reranker

Asks a chat model to order retrieved chunks by relevance. The model answers
with a JSON array of candidate indices; anything unusable falls back to the
similarity order so search never fails because of reranking.
"""

import re
import json
import logging
from dataclasses import replace
from typing import Optional

from .config import KnowledgeConfig
from .errors import RerankError
from .prompts import get_prompt
from .vector_store import SearchResult

logger = logging.getLogger(__name__)

_FENCED_BLOCK = re.compile(r"```(?:json)?\s*(.*?)```", re.IGNORECASE | re.DOTALL)
_JSON_ARRAY = re.compile(r"\[[^\[\]]*\]", re.DOTALL)


def parse_model_ranking(text: str, candidate_count: int) -> list[int]:
    """
    Extract candidate indices from a model answer.

    When the answer has a fenced block, only its contents are searched.
    The last JSON array is parsed (earlier brackets are usually prose
    citing a single chunk), and out-of-range, non-integer and duplicate
    entries are dropped.

    Raises:
        RerankError: No JSON array could be parsed
    """
    text = text or ""
    fenced = _FENCED_BLOCK.search(text)
    if fenced:
        text = fenced.group(1)
    arrays = _JSON_ARRAY.findall(text)
    if not arrays:
        raise RerankError("Rerank answer contains no JSON array")
    try:
        values = json.loads(arrays[-1])
    except json.JSONDecodeError as e:
        raise RerankError(f"Rerank answer is not valid JSON: {e}")

    indices = []
    seen = set()
    for value in values:
        # bool is an int subclass; reject it along with floats and strings
        if isinstance(value, bool) or not isinstance(value, int):
            continue
        if 0 <= value < candidate_count and value not in seen:
            seen.add(value)
            indices.append(value)
    return indices


class LLMReranker:
    """Reorders candidates with a single chat completion."""

    def __init__(self, config: Optional[KnowledgeConfig] = None, client=None):
        self.config = config or KnowledgeConfig()
        self._client = client
        if self._client is None and self.config.openai_api_key:
            self._client = self.config.create_llm_client()

    def rerank(self, query: str, candidates: list[SearchResult], top_k: int) -> list[SearchResult]:
        """
        Return the top_k most relevant candidates.

        Candidates must arrive in similarity order; on any failure the first
        top_k of them are returned unchanged. Never raises.
        """
        if len(candidates) <= top_k:
            return list(candidates)

        fallback = list(candidates[:top_k])
        if not self._client:
            logger.warning("Rerank client not initialized. Using similarity order.")
            return fallback

        try:
            answer = self._ask_model(query, candidates)
            ranking = parse_model_ranking(answer, len(candidates))
        except Exception as e:
            logger.warning(f"Reranking failed: {e}. Using similarity order.")
            return fallback

        if not ranking:
            logger.warning("Reranker returned no valid indices. Using similarity order.")
            return fallback

        ranked = [candidates[i] for i in ranking[:top_k]]
        if len(ranked) < top_k:
            chosen = set(ranking)
            remaining = [c for i, c in enumerate(candidates) if i not in chosen]
            ranked.extend(remaining[:top_k - len(ranked)])

        return [
            replace(result, metadata={**result.metadata, "rerank_position": position})
            for position, result in enumerate(ranked)
        ]

    def _ask_model(self, query: str, candidates: list[SearchResult]) -> str:
        preview_chars = self.config.rerank_preview_chars
        listing = "\n\n".join(
            f"[{i}] {c.content[:preview_chars]}" for i, c in enumerate(candidates)
        )
        language = self.config.language

        response = self._client.chat.completions.create(
            model=self.config.rerank_model,
            messages=[
                {"role": "system", "content": get_prompt(language, "rerank_system")},
                {"role": "user", "content": get_prompt(language, "rerank_user").format(
                    query=query, candidates=listing,
                )},
            ],
            temperature=0,
            max_tokens=200,
        )

        choices = getattr(response, "choices", None)
        content = getattr(getattr(choices[0], "message", None), "content", None) if choices else None
        if not isinstance(content, str):
            raise RerankError("Rerank response contains no text")
        return content
