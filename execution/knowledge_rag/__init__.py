"""
Knowledge RAG - document knowledge base and contact memory for legal agents

This module provides:
- Ingestion of typed text and uploaded files (PDF, DOCX, DOC, TXT, MD, CSV)
- Paragraph-aware chunking with overlap
- Per-owner semantic search with optional LLM reranking
- Per-contact memories recalled alongside knowledge for agent replies

The agent runtime and the dashboard call into this package (or its HTTP API);
it owns nothing but the knowledge and memory tables.
"""

from .config import KnowledgeConfig
from .chunker import TextChunker, chunk_text
from .extractor import TextExtractor
from .embeddings import EmbeddingService
from .vector_store import VectorStore
from .ingestion import IngestionPipeline, IngestionResult
from .retriever import KnowledgeRetriever
from .reranker import LLMReranker
from .memory import ContactMemoryService
from .context import AgentContextBuilder

__all__ = [
    "KnowledgeConfig",
    "TextChunker",
    "chunk_text",
    "TextExtractor",
    "EmbeddingService",
    "VectorStore",
    "IngestionPipeline",
    "IngestionResult",
    "KnowledgeRetriever",
    "LLMReranker",
    "ContactMemoryService",
    "AgentContextBuilder",
]

__version__ = "0.1.0"
