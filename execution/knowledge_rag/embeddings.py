"""
Embedding Service for the Knowledge Base

Turns text into fixed-dimension vectors through an OpenAI-compatible
embeddings endpoint (text-embedding-3-small reduced to 768 dimensions).
Every returned vector is validated before it reaches the store.
"""

import logging
from typing import Optional

import numpy as np

from .config import KnowledgeConfig
from .errors import EmbeddingError

logger = logging.getLogger(__name__)


def validate_embedding(values, dimensions: int) -> list[float]:
    """
    Check that a provider vector is numeric, finite and of the expected length.

    Raises:
        EmbeddingError: If any check fails
    """
    if values is None:
        raise EmbeddingError("Embedding response is missing the vector")
    if not isinstance(values, (list, tuple)):
        raise EmbeddingError(f"Embedding must be a list, got {type(values).__name__}")
    # numpy would silently coerce "0.5" and True
    for value in values:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise EmbeddingError("Embedding contains non-numeric values")

    vector = np.asarray(values, dtype=np.float64)
    if vector.shape[0] != dimensions:
        raise EmbeddingError(
            f"Invalid embedding dimensions: expected {dimensions}, got {vector.shape[0]}"
        )
    if not np.all(np.isfinite(vector)):
        raise EmbeddingError("Embedding contains non-finite values")
    return vector.tolist()


class EmbeddingService:
    """
    OpenAI-compatible embedding provider.

    Stateless apart from the HTTP client; safe to share between threads.
    """

    def __init__(self, config: Optional[KnowledgeConfig] = None, client=None):
        """
        Args:
            config: Knowledge configuration (model, dimensions, limits)
            client: Optional pre-built OpenAI client (tests inject a fake)
        """
        self.config = config or KnowledgeConfig()
        self._client = client
        if self._client is None and self.config.openai_api_key:
            self._client = self.config.create_llm_client()

    @property
    def dimensions(self) -> int:
        return self.config.embedding_dimensions

    def embed(self, text: str) -> list[float]:
        """
        Embed a single text.

        Args:
            text: Text to embed; truncated to embedding_max_chars

        Returns:
            Vector of exactly `dimensions` floats

        Raises:
            EmbeddingError: On empty input, provider failure or malformed response
        """
        if not text or not text.strip():
            raise EmbeddingError("Cannot embed empty text")

        if not self._client:
            raise EmbeddingError("Embedding client not initialized. Check OPENAI_API_KEY.")

        from openai import OpenAIError

        truncated = text[:self.config.embedding_max_chars]
        try:
            response = self._client.embeddings.create(
                model=self.config.embedding_model,
                input=truncated,
                dimensions=self.config.embedding_dimensions,
            )
        except OpenAIError as e:
            logger.error(f"Embedding request failed: {e}")
            raise EmbeddingError(f"Embedding request failed: {e}")

        data = getattr(response, "data", None)
        if not data:
            raise EmbeddingError("Embedding response contains no data")
        return validate_embedding(getattr(data[0], "embedding", None), self.dimensions)

    def embed_query(self, query: str) -> list[float]:
        """Alias used by retrieval code paths."""
        return self.embed(query)


def get_embedding_service(config: Optional[KnowledgeConfig] = None) -> EmbeddingService:
    """Factory function to get the embedding service for a configuration."""
    return EmbeddingService(config or KnowledgeConfig.from_env())


# CLI for testing
if __name__ == "__main__":
    import sys
    from dotenv import load_dotenv

    load_dotenv()
    logging.basicConfig(level=logging.INFO)

    text = " ".join(sys.argv[1:]) or "Prazo de contestação no procedimento comum"
    service = get_embedding_service()
    vector = service.embed(text)
    print(f"Embedded {len(text)} chars into {len(vector)} dimensions")
    print(f"First values: {vector[:5]}")
