"""
FastAPI Backend for the Knowledge Base

Provides REST endpoints for knowledge ingestion, search and contact memories.
Every request is authenticated with a bearer JWT whose subject is the owner.

Run with: uvicorn execution.knowledge_rag.api:app --host 0.0.0.0 --port 8000
"""

import os
import time
import logging
from typing import Optional

from fastapi import FastAPI, HTTPException, UploadFile, File, Form, Depends, Header, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from dotenv import load_dotenv

from . import __version__
from .api_models import (
    IngestTextRequest, IngestResponse, DocumentInfo,
    SearchRequest, SearchResponse, SearchResultInfo,
    SaveMemoryRequest, SaveMemoryResponse,
    MemorySearchRequest, MemorySearchResponse, MemoryInfo,
    ContextRequest, ContextResponse, SummarizeRequest,
    HealthResponse,
)
from .auth import extract_bearer_token, verify_access_token
from .config import KnowledgeConfig
from .errors import (
    KnowledgeBaseError, ExtractionError, EmbeddingError, OwnershipError, StoreError,
)
from .extractor import guess_mime_type

# Load environment variables
load_dotenv()
logger = logging.getLogger(__name__)

MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_MB", "20")) * 1024 * 1024

app = FastAPI(
    title="Knowledge Base API",
    description="Document ingestion, semantic search and contact memory for legal agents",
    version=__version__,
)

# Configure CORS: use CORS_ORIGINS env var (comma-separated) or default to localhost
_cors_origins = os.getenv("CORS_ORIGINS", "http://localhost:5173,http://localhost:3000").split(",")
app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in _cors_origins],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# Service Container - lazily builds shared services
# =============================================================================

class ServiceContainer:
    """Singleton holding the store and the services built on top of it."""

    def __init__(self):
        self._config = None
        self._store = None
        self._storage = None
        self._embeddings = None
        self._pipeline = None
        self._retriever = None
        self._memory = None
        self._context = None

    def get_config(self) -> KnowledgeConfig:
        if self._config is None:
            self._config = KnowledgeConfig.from_env()
        return self._config

    def get_store(self):
        if self._store is None:
            from .vector_store import VectorStore, VectorStoreConfig
            store = VectorStore(VectorStoreConfig(
                embedding_dimensions=self.get_config().embedding_dimensions,
            ))
            store.connect()
            store.initialize_schema()
            self._store = store
        return self._store

    def get_storage(self):
        if self._storage is None:
            from .storage import LocalFileStorage
            self._storage = LocalFileStorage()
        return self._storage

    def get_embeddings(self):
        if self._embeddings is None:
            from .embeddings import get_embedding_service
            self._embeddings = get_embedding_service(self.get_config())
        return self._embeddings

    def get_pipeline(self):
        if self._pipeline is None:
            from .ingestion import IngestionPipeline
            self._pipeline = IngestionPipeline(
                self.get_config(), self.get_embeddings(), self.get_store(),
                storage=self.get_storage(),
            )
        return self._pipeline

    def get_retriever(self):
        if self._retriever is None:
            from .retriever import get_retriever
            self._retriever = get_retriever(self.get_config(), self.get_embeddings(), self.get_store())
        return self._retriever

    def get_memory(self):
        if self._memory is None:
            from .memory import ContactMemoryService
            self._memory = ContactMemoryService(self.get_config(), self.get_embeddings(), self.get_store())
        return self._memory

    def get_context_builder(self):
        if self._context is None:
            from .context import AgentContextBuilder
            self._context = AgentContextBuilder(self.get_config(), self.get_embeddings(), self.get_store())
        return self._context


_container = ServiceContainer()


# =============================================================================
# Error mapping
# =============================================================================

def _error_response(status_code: int, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    return _error_response(400, exc)


@app.exception_handler(OwnershipError)
async def ownership_error_handler(request: Request, exc: OwnershipError):
    return _error_response(404, exc)


@app.exception_handler(ExtractionError)
async def extraction_error_handler(request: Request, exc: ExtractionError):
    return _error_response(422, exc)


@app.exception_handler(EmbeddingError)
async def embedding_error_handler(request: Request, exc: EmbeddingError):
    return _error_response(502, exc)


@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError):
    return _error_response(503, exc)


@app.exception_handler(KnowledgeBaseError)
async def knowledge_error_handler(request: Request, exc: KnowledgeBaseError):
    return _error_response(502, exc)


# =============================================================================
# Authentication dependency
# =============================================================================

async def get_current_user(authorization: Optional[str] = Header(None)) -> dict:
    """Validate the bearer token and return the caller."""
    token = extract_bearer_token(authorization)
    if not token:
        raise HTTPException(status_code=401, detail="Missing bearer token")
    user = verify_access_token(token)
    if not user:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    return user


# =============================================================================
# Endpoints
# =============================================================================

@app.get("/api/v1/health", response_model=HealthResponse)
def health_check():
    """Health check endpoint."""
    try:
        db_status = "connected" if _container.get_store().health_check() else "disconnected"
    except (StoreError, ImportError) as e:
        logger.warning(f"Health check: database disconnected: {e}")
        db_status = "disconnected"

    return HealthResponse(status="ok", version=__version__, database=db_status)


@app.post("/api/v1/knowledge/documents", response_model=IngestResponse)
def ingest_text(
    request: IngestTextRequest,
    user: dict = Depends(get_current_user),
):
    """Ingest manually entered text."""
    result = _container.get_pipeline().ingest_text(
        title=request.title,
        content=request.content,
        owner_id=user["user_id"],
        scope=request.agent_id,
    )
    return IngestResponse(**result.to_dict())


@app.post("/api/v1/knowledge/documents/upload", response_model=IngestResponse)
def upload_document(
    file: UploadFile = File(...),
    title: Optional[str] = Form(None),
    agent_id: Optional[str] = Form(None),
    user: dict = Depends(get_current_user),
):
    """Store an uploaded file, then extract, chunk and embed it."""
    file_name = file.filename or "upload"
    data = file.file.read()
    if not data:
        raise HTTPException(status_code=400, detail="File is empty")
    if len(data) > MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=413, detail="File too large")

    mime_type = guess_mime_type(file_name, file.content_type)
    owner_id = user["user_id"]

    storage_path = _container.get_storage().upload(owner_id, file_name, data)
    result = _container.get_pipeline().ingest_stored_file(
        title=title or file_name.rsplit(".", 1)[0],
        storage_path=storage_path,
        mime_type=mime_type,
        owner_id=owner_id,
        scope=agent_id,
        file_name=file_name,
    )
    return IngestResponse(**result.to_dict(), storage_path=storage_path)


@app.get("/api/v1/knowledge/documents", response_model=list[DocumentInfo])
def list_documents(
    agent_id: Optional[str] = None,
    global_only: bool = False,
    user: dict = Depends(get_current_user),
):
    """
    List the caller's documents.

    agent_id adds that agent's documents to the global ones; global_only
    lists only documents not bound to any agent.
    """
    docs = _container.get_pipeline().list_documents(
        user["user_id"], scope=agent_id, global_only=global_only,
    )
    return [
        DocumentInfo(
            id=d.document_id,
            title=d.title,
            agent_id=d.scope,
            source_type=d.source_type,
            file_name=d.file_name,
            metadata=d.metadata,
            created_at=d.created_at.isoformat() if d.created_at else None,
        )
        for d in docs
    ]


@app.delete("/api/v1/knowledge/documents/{document_id}")
def delete_document(
    document_id: str,
    user: dict = Depends(get_current_user),
):
    """Delete a document and all its chunks."""
    _container.get_pipeline().delete_document(document_id, user["user_id"])
    return {"status": "deleted", "document_id": document_id}


@app.post("/api/v1/knowledge/search", response_model=SearchResponse)
def search_knowledge(
    request: SearchRequest,
    user: dict = Depends(get_current_user),
):
    """Semantic search over the caller's knowledge base."""
    start = time.time()
    results = _container.get_retriever().search(
        query=request.query,
        owner_id=user["user_id"],
        scope=request.agent_id,
        threshold=request.threshold,
        limit=request.limit,
        rerank=request.rerank,
        document_id=request.document_id,
    )
    return SearchResponse(
        results=[SearchResultInfo(**r.to_dict()) for r in results],
        latency_ms=round((time.time() - start) * 1000, 1),
    )


@app.post("/api/v1/knowledge/context", response_model=ContextResponse)
def build_context(
    request: ContextRequest,
    user: dict = Depends(get_current_user),
):
    """Render knowledge and contact memories as agent prompt context."""
    context = _container.get_context_builder().build(
        query=request.query,
        owner_id=user["user_id"],
        scope=request.agent_id,
        contact_id=request.contact_id,
    )
    return ContextResponse(context=context)


@app.post("/api/v1/contacts/{contact_id}/memories", response_model=SaveMemoryResponse)
def save_memory(
    contact_id: str,
    request: SaveMemoryRequest,
    user: dict = Depends(get_current_user),
):
    """Store a memory about a contact."""
    memory_id = _container.get_memory().save_memory(
        contact_id=contact_id,
        content=request.content,
        owner_id=user["user_id"],
        scope=request.agent_id,
        memory_type=request.memory_type,
        metadata=request.metadata,
    )
    return SaveMemoryResponse(memory_id=memory_id)


@app.post("/api/v1/contacts/{contact_id}/memories/summarize")
def summarize_conversation(
    contact_id: str,
    request: SummarizeRequest,
    user: dict = Depends(get_current_user),
):
    """Summarize a conversation and store it as a contact memory."""
    memory_id = _container.get_memory().remember_conversation(
        contact_id=contact_id,
        conversation_context=request.conversation,
        owner_id=user["user_id"],
        scope=request.agent_id,
    )
    return {"memory_id": memory_id, "saved": memory_id is not None}


@app.post("/api/v1/contacts/{contact_id}/memories/search", response_model=MemorySearchResponse)
def search_memories(
    contact_id: str,
    request: MemorySearchRequest,
    user: dict = Depends(get_current_user),
):
    """Semantic search over one contact's memories."""
    results = _container.get_memory().search_memories(
        contact_id=contact_id,
        query=request.query,
        owner_id=user["user_id"],
        scope=request.agent_id,
        threshold=request.threshold,
        limit=request.limit,
    )
    return MemorySearchResponse(results=[MemoryInfo(**m.to_dict()) for m in results])
