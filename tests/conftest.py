"""
Shared fixtures and test utilities for the Knowledge RAG tests.

Provides deterministic fakes for the embedding provider, the vector store and
the chat model so that all tests run without API keys, databases or network.
"""

import sys
import hashlib
from pathlib import Path
from datetime import datetime, timezone
from unittest.mock import MagicMock

import numpy as np
import pytest
from dotenv import load_dotenv

# ---------------------------------------------------------------------------
# Path setup - ensure the execution package is importable
# ---------------------------------------------------------------------------
PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

load_dotenv(PROJECT_ROOT / ".env")

DIMENSIONS = 768
OWNER_A = "11111111-1111-1111-1111-111111111111"
OWNER_B = "22222222-2222-2222-2222-222222222222"

# ---------------------------------------------------------------------------
# Sample document text
# ---------------------------------------------------------------------------
SAMPLE_DOCUMENT = """CONTRATO DE PRESTAÇÃO DE SERVIÇOS ADVOCATÍCIOS

Pelo presente instrumento particular, o CONTRATANTE contrata o escritório para a prestação de serviços jurídicos na área trabalhista.

Cláusula 1. O escritório acompanhará a reclamação trabalhista em todas as instâncias. Os prazos processuais serão controlados pela equipe.

Cláusula 2. Os honorários correspondem a trinta por cento do proveito econômico obtido. O pagamento será feito ao final do processo.

Cláusula 3. O contrato pode ser rescindido por qualquer das partes mediante aviso prévio de trinta dias.
"""


def make_document(paragraphs: int, words_per_paragraph: int) -> str:
    """Build text of numbered paragraphs with unique words (p{i}w{j})."""
    return "\n\n".join(
        " ".join(f"p{i}w{j}" for j in range(words_per_paragraph))
        for i in range(paragraphs)
    )


def basis(index: int, dims: int = DIMENSIONS) -> list[float]:
    """Unit vector along one axis."""
    vec = [0.0] * dims
    vec[index] = 1.0
    return vec


def blend(weights: dict, dims: int = DIMENSIONS) -> list[float]:
    """Normalized sum of weighted basis vectors, e.g. {0: 1.0, 1: 0.5}."""
    vec = np.zeros(dims)
    for index, weight in weights.items():
        vec[index] = weight
    return (vec / np.linalg.norm(vec)).tolist()


@pytest.fixture
def sample_document_text():
    return SAMPLE_DOCUMENT


# ---------------------------------------------------------------------------
# Mock embedding service
# ---------------------------------------------------------------------------

class MockEmbeddingService:
    """
    Deterministic embedding service -- never calls external APIs.

    Texts listed in `vectors` get that exact vector; any text containing one
    of the `fail_on` markers raises EmbeddingError; everything else gets a
    sha256-seeded unit vector.
    """

    def __init__(self, dimensions=DIMENSIONS, vectors=None, fail_on=None):
        self._dimensions = dimensions
        self.vectors = dict(vectors or {})
        self.fail_on = set(fail_on or [])
        self.calls = []

    def embed(self, text):
        from execution.knowledge_rag.errors import EmbeddingError

        self.calls.append(text)
        if not text or not text.strip():
            raise EmbeddingError("Cannot embed empty text")
        if any(marker in text for marker in self.fail_on):
            raise EmbeddingError("provider returned 500")
        if text in self.vectors:
            return list(self.vectors[text])
        return self._deterministic_embedding(text)

    def embed_query(self, query):
        return self.embed(query)

    def _deterministic_embedding(self, text):
        seed = int(hashlib.sha256(text.encode()).hexdigest()[:8], 16)
        vec = np.random.default_rng(seed).standard_normal(self._dimensions)
        return (vec / np.linalg.norm(vec)).tolist()

    @property
    def dimensions(self):
        return self._dimensions


@pytest.fixture
def mock_embedding_service():
    return MockEmbeddingService()


# ---------------------------------------------------------------------------
# In-memory vector store (no database needed)
# ---------------------------------------------------------------------------

def _cosine(a, b) -> float:
    a = np.asarray(a, dtype=np.float64)
    b = np.asarray(b, dtype=np.float64)
    return float(np.dot(a, b) / (np.linalg.norm(a) * np.linalg.norm(b)))


def _visible(row_scope, scope) -> bool:
    return scope is None or row_scope is None or row_scope == scope


class InMemoryVectorStore:
    """In-memory stand-in for VectorStore with real cosine similarity."""

    def __init__(self, fail_chunk_indices=None):
        self.documents = {}
        self.chunks = {}
        self.memories = {}
        self.fail_chunk_indices = set(fail_chunk_indices or [])
        self._clock = 0

    def connect(self):
        pass

    def initialize_schema(self):
        pass

    def health_check(self):
        return True

    def close(self):
        pass

    def insert_document(self, document):
        self._clock += 1
        document.created_at = datetime(2024, 1, 1, tzinfo=timezone.utc).replace(microsecond=self._clock)
        self.documents[document.document_id] = document
        return document.document_id

    def get_document(self, document_id, owner_id):
        doc = self.documents.get(document_id)
        if doc is None or doc.owner_id != owner_id:
            return None
        return doc

    def list_documents(self, owner_id, scope=None, global_only=False):
        docs = [
            d for d in self.documents.values()
            if d.owner_id == owner_id
            and (d.scope is None if global_only else _visible(d.scope, scope))
        ]
        return sorted(docs, key=lambda d: d.created_at, reverse=True)

    def delete_document(self, document_id, owner_id):
        if self.get_document(document_id, owner_id) is None:
            return False
        del self.documents[document_id]
        # ON DELETE CASCADE
        for chunk_id in [k for k, c in self.chunks.items() if c.document_id == document_id]:
            del self.chunks[chunk_id]
        return True

    def insert_chunk(self, chunk):
        from execution.knowledge_rag.errors import ChunkPersistError

        if chunk.chunk_index in self.fail_chunk_indices:
            raise ChunkPersistError("insert rejected", chunk_index=chunk.chunk_index)
        if chunk.document_id not in self.documents:
            raise ChunkPersistError("document does not exist", chunk_index=chunk.chunk_index)
        self.chunks[chunk.chunk_id] = chunk
        return chunk.chunk_id

    def delete_chunks_by_document(self, document_id, owner_id):
        doomed = [
            k for k, c in self.chunks.items()
            if c.document_id == document_id and c.owner_id == owner_id
        ]
        for k in doomed:
            del self.chunks[k]
        return len(doomed)

    def similarity_search(self, query_embedding, owner_id, scope=None,
                          threshold=0.5, limit=5, document_id=None):
        from execution.knowledge_rag.vector_store import SearchResult

        scored = []
        for chunk in self.chunks.values():
            if chunk.owner_id != owner_id or not _visible(chunk.scope, scope):
                continue
            if document_id and chunk.document_id != document_id:
                continue
            similarity = _cosine(query_embedding, chunk.embedding)
            if similarity >= threshold:
                scored.append(SearchResult(
                    chunk_id=chunk.chunk_id,
                    document_id=chunk.document_id,
                    content=chunk.content,
                    similarity=similarity,
                    chunk_index=chunk.chunk_index,
                    metadata={"title": self.documents[chunk.document_id].title},
                ))
        scored.sort(key=lambda r: r.similarity, reverse=True)
        return scored[:limit]

    def insert_memory(self, memory):
        self._clock += 1
        memory.created_at = datetime(2024, 1, 1, tzinfo=timezone.utc).replace(microsecond=self._clock)
        self.memories[memory.memory_id] = memory
        return memory.memory_id

    def similarity_search_by_contact(self, query_embedding, owner_id, contact_id,
                                     scope=None, threshold=0.5, limit=3):
        from execution.knowledge_rag.vector_store import MemoryResult

        scored = []
        for memory in self.memories.values():
            if memory.owner_id != owner_id or memory.contact_id != contact_id:
                continue
            if not _visible(memory.scope, scope):
                continue
            similarity = _cosine(query_embedding, memory.embedding)
            if similarity >= threshold:
                scored.append(MemoryResult(
                    memory_id=memory.memory_id,
                    contact_id=memory.contact_id,
                    content=memory.content,
                    memory_type=memory.memory_type,
                    similarity=similarity,
                    metadata=memory.metadata,
                    created_at=memory.created_at,
                ))
        scored.sort(key=lambda r: r.similarity, reverse=True)
        return scored[:limit]

    # Test helper
    def add_chunk(self, owner_id, content, embedding, scope=None, title="Doc", document_id=None):
        """Insert a document (if needed) and one chunk with a fixed embedding."""
        from execution.knowledge_rag.chunker import Chunk
        from execution.knowledge_rag.vector_store import KnowledgeDocument
        import uuid

        if document_id is None or document_id not in self.documents:
            doc = KnowledgeDocument(
                document_id=document_id or str(uuid.uuid4()),
                owner_id=owner_id, scope=scope, title=title, content=content,
            )
            self.insert_document(doc)
            document_id = doc.document_id
        index = sum(1 for c in self.chunks.values() if c.document_id == document_id)
        chunk = Chunk.create(document_id, owner_id, content, index, scope=scope)
        chunk.embedding = list(embedding)
        self.chunks[chunk.chunk_id] = chunk
        return chunk


@pytest.fixture
def memory_store():
    return InMemoryVectorStore()


# ---------------------------------------------------------------------------
# Fake chat model
# ---------------------------------------------------------------------------

def make_chat_response(content):
    """Build an object shaped like an OpenAI chat completion."""
    response = MagicMock()
    message = MagicMock()
    message.content = content
    choice = MagicMock()
    choice.message = message
    response.choices = [choice]
    return response


def make_chat_client(*contents, error=None):
    """MagicMock client whose chat.completions.create returns the given answers in order."""
    client = MagicMock()
    if error is not None:
        client.chat.completions.create.side_effect = error
    else:
        client.chat.completions.create.side_effect = [make_chat_response(c) for c in contents]
    return client


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

@pytest.fixture
def knowledge_config():
    """Configuration with no API key so nothing builds a real client."""
    from execution.knowledge_rag.config import KnowledgeConfig
    return KnowledgeConfig(openai_api_key=None)
