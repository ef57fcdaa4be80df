"""
Configuration for the Knowledge Base engine

Every component receives an explicitly constructed KnowledgeConfig instead of
reading API keys or model names from the environment on its own. Entry points
build one with KnowledgeConfig.from_env() after loading .env.
"""

import os
from dataclasses import dataclass
from typing import Optional


# Languages with prompt sets in prompts.py
SUPPORTED_LANGUAGES = {
    "pt": {"name": "Portuguese"},
    "en": {"name": "English"},
}

DEFAULT_BASE_URL = "https://api.openai.com/v1"


def _env_int(name: str, default: int) -> int:
    val = os.getenv(name)
    if val is None or not val.strip():
        return default
    try:
        return int(val)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {val!r}")


def _env_float(name: str, default: float) -> float:
    val = os.getenv(name)
    if val is None or not val.strip():
        return default
    try:
        return float(val)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {val!r}")


@dataclass
class KnowledgeConfig:
    """Provider credentials, model identifiers and pipeline limits."""
    # Provider access (OpenAI-compatible endpoints)
    openai_api_key: Optional[str] = None
    openai_base_url: str = DEFAULT_BASE_URL
    request_timeout: float = 30.0

    # Embeddings
    embedding_model: str = "text-embedding-3-small"
    embedding_dimensions: int = 768
    embedding_max_chars: int = 8000  # Provider input ceiling

    # Language models
    extraction_model: str = "gpt-4o"
    rerank_model: str = "gpt-4o-mini"
    summary_model: str = "gpt-4o-mini"
    language: str = "pt"

    # Chunking
    max_chunk_words: int = 500
    overlap_words: int = 50

    # Ingestion
    ingestion_workers: int = 1
    min_extracted_chars: int = 10
    min_native_text_chars: int = 50

    # Reranking
    rerank_preview_chars: int = 300
    rerank_max_candidates: int = 20

    def __post_init__(self):
        if self.embedding_dimensions < 1:
            raise ValueError("embedding_dimensions must be positive")
        if self.max_chunk_words < 1:
            raise ValueError("max_chunk_words must be positive")
        if self.overlap_words < 0:
            raise ValueError("overlap_words cannot be negative")
        if self.ingestion_workers < 1:
            raise ValueError("ingestion_workers must be at least 1")
        if self.language not in SUPPORTED_LANGUAGES:
            self.language = "pt"

    @classmethod
    def from_env(cls) -> "KnowledgeConfig":
        """
        Build a configuration from environment variables.

        Unset variables fall back to the dataclass defaults.
        """
        defaults = cls()
        return cls(
            openai_api_key=os.getenv("OPENAI_API_KEY") or None,
            openai_base_url=os.getenv("OPENAI_BASE_URL") or DEFAULT_BASE_URL,
            request_timeout=_env_float("LLM_TIMEOUT_SECONDS", defaults.request_timeout),
            embedding_model=os.getenv("EMBEDDING_MODEL") or defaults.embedding_model,
            embedding_dimensions=_env_int("EMBEDDING_DIMENSIONS", defaults.embedding_dimensions),
            extraction_model=os.getenv("EXTRACTION_MODEL") or defaults.extraction_model,
            rerank_model=os.getenv("RERANK_MODEL") or defaults.rerank_model,
            summary_model=os.getenv("SUMMARY_MODEL") or defaults.summary_model,
            language=os.getenv("KNOWLEDGE_LANGUAGE") or defaults.language,
            max_chunk_words=_env_int("CHUNK_MAX_WORDS", defaults.max_chunk_words),
            overlap_words=_env_int("CHUNK_OVERLAP_WORDS", defaults.overlap_words),
            ingestion_workers=_env_int("INGESTION_WORKERS", defaults.ingestion_workers),
        )

    def create_llm_client(self, max_retries: int = 2):
        """Create an OpenAI client for this configuration's endpoint."""
        from openai import OpenAI
        return OpenAI(
            base_url=self.openai_base_url,
            api_key=self.openai_api_key,
            timeout=self.request_timeout,
            max_retries=max_retries,
        )
