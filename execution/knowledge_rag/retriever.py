"""
Knowledge Retriever

Embeds a query once and returns the owner's most similar chunks, optionally
reranked by a language model.

Pipeline:
1. Validate the query
2. Embed it
3. Vector search (threshold inclusive, similarity descending)
4. Optional rerank over a widened candidate pool
"""

import logging
from typing import Optional

from .config import KnowledgeConfig
from .errors import OwnershipError
from .reranker import LLMReranker
from .vector_store import SearchResult

logger = logging.getLogger(__name__)


def candidate_pool_size(limit: int, max_candidates: int = 20) -> int:
    """Number of candidates fetched for reranking; never fewer than limit."""
    return max(limit, min(limit * 3, max_candidates))


def validate_query(query: str, threshold: float, limit: int) -> None:
    if not query or not query.strip():
        raise ValueError("query is required")
    if limit < 1:
        raise ValueError("limit must be at least 1")
    if not -1.0 <= threshold <= 1.0:
        raise ValueError("threshold must be between -1 and 1")


class KnowledgeRetriever:
    """
    Semantic search over an owner's knowledge chunks.

    Usage:
        retriever = KnowledgeRetriever(config, embeddings, store)
        results = retriever.search("prazo de recurso", owner_id="user-1", rerank=True)
    """

    def __init__(
        self,
        config: KnowledgeConfig,
        embeddings,
        store,
        reranker: Optional[LLMReranker] = None,
    ):
        self.config = config
        self.embeddings = embeddings
        self.store = store
        self.reranker = reranker or LLMReranker(config)

    def search(
        self,
        query: str,
        owner_id: str,
        scope: Optional[str] = None,
        threshold: float = 0.5,
        limit: int = 5,
        rerank: bool = False,
        document_id: Optional[str] = None,
    ) -> list[SearchResult]:
        """
        Search the owner's knowledge base.

        Args:
            query: Natural-language query
            owner_id: Owner whose chunks are searched
            scope: Optional agent scope (scoped + global documents)
            threshold: Minimum cosine similarity, inclusive
            limit: Maximum number of results
            rerank: Reorder a widened candidate pool with the LLM reranker
            document_id: Restrict to one of the owner's documents

        Returns:
            Up to `limit` results

        Raises:
            ValueError: Invalid query parameters
            OwnershipError: document_id is not one of the owner's documents
            EmbeddingError: The query could not be embedded
        """
        validate_query(query, threshold, limit)
        if not owner_id:
            raise ValueError("owner_id is required")

        if document_id and self.store.get_document(document_id, owner_id) is None:
            raise OwnershipError("document", document_id)

        query_embedding = self.embeddings.embed(query)

        if not rerank:
            results = self.store.similarity_search(
                query_embedding, owner_id, scope=scope, threshold=threshold,
                limit=limit, document_id=document_id,
            )
            logger.info(f"Search returned {len(results)} results for owner {owner_id}")
            return results

        pool = candidate_pool_size(limit, self.config.rerank_max_candidates)
        candidates = self.store.similarity_search(
            query_embedding, owner_id, scope=scope, threshold=threshold,
            limit=pool, document_id=document_id,
        )
        results = self.reranker.rerank(query, candidates, limit)
        logger.info(
            f"Search returned {len(results)} results for owner {owner_id} "
            f"(reranked from {len(candidates)} candidates)"
        )
        return results


# Factory function
def get_retriever(config: KnowledgeConfig, embeddings, store) -> KnowledgeRetriever:
    """Get a configured retriever instance."""
    return KnowledgeRetriever(config, embeddings, store)
