"""
Pydantic models for the Knowledge Base FastAPI backend.
"""

from typing import Optional
from pydantic import BaseModel, Field


class IngestTextRequest(BaseModel):
    """Request body for manual text ingestion."""
    title: str = Field(..., min_length=1, max_length=500)
    content: str = Field(..., min_length=1)
    agent_id: Optional[str] = None


class ChunkFailureInfo(BaseModel):
    index: int
    reason: str


class IngestResponse(BaseModel):
    """Outcome of an ingestion run."""
    success: bool
    document_id: str
    chunks_created: int
    total_chunks: int
    extracted_chars: int
    failed_chunks: list[ChunkFailureInfo] = []
    storage_path: Optional[str] = None


class DocumentInfo(BaseModel):
    """A stored knowledge document (content omitted)."""
    id: str
    title: str
    agent_id: Optional[str] = None
    source_type: str
    file_name: Optional[str] = None
    metadata: dict = {}
    created_at: Optional[str] = None


class SearchRequest(BaseModel):
    """Request body for knowledge search."""
    query: str = Field(..., min_length=1, max_length=2000)
    agent_id: Optional[str] = None
    document_id: Optional[str] = None
    threshold: float = Field(default=0.5, ge=-1.0, le=1.0)
    limit: int = Field(default=5, ge=1, le=50)
    rerank: bool = False


class SearchResultInfo(BaseModel):
    chunk_id: str
    document_id: str
    content: str
    similarity: float
    chunk_index: int
    metadata: dict = {}


class SearchResponse(BaseModel):
    results: list[SearchResultInfo]
    latency_ms: float


class SaveMemoryRequest(BaseModel):
    """Request body for storing a contact memory."""
    content: str = Field(..., min_length=1)
    agent_id: Optional[str] = None
    memory_type: str = "conversation_summary"
    metadata: dict = {}


class SaveMemoryResponse(BaseModel):
    memory_id: str


class MemorySearchRequest(BaseModel):
    query: str = Field(..., min_length=1, max_length=2000)
    agent_id: Optional[str] = None
    threshold: float = Field(default=0.5, ge=-1.0, le=1.0)
    limit: int = Field(default=3, ge=1, le=20)


class MemoryInfo(BaseModel):
    memory_id: str
    contact_id: str
    content: str
    memory_type: str
    similarity: float
    metadata: dict = {}
    created_at: Optional[str] = None


class MemorySearchResponse(BaseModel):
    results: list[MemoryInfo]


class SummarizeRequest(BaseModel):
    """Conversation transcript to condense into a memory."""
    conversation: str = Field(..., min_length=1)
    agent_id: Optional[str] = None


class ContextRequest(BaseModel):
    """Request body for agent context rendering."""
    query: str = Field(..., min_length=1, max_length=2000)
    agent_id: Optional[str] = None
    contact_id: Optional[str] = None


class ContextResponse(BaseModel):
    context: str


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str
    database: str
