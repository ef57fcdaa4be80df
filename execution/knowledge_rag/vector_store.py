"""
Knowledge Store with PostgreSQL + pgvector

Persists knowledge documents, their embedded chunks and per-contact memories,
and answers cosine-similarity queries. Every read and write is filtered by
owner (user_id); agent scope visibility is "scoped rows plus global rows".
"""

import os
import json
import logging
import threading
from typing import Optional
from dataclasses import dataclass, field
from datetime import datetime

from .errors import StoreError, ChunkPersistError

try:
    import psycopg2
    import psycopg2.extras
    import psycopg2.pool
except ImportError:
    psycopg2 = None  # Will be caught at connect() time

logger = logging.getLogger(__name__)


@dataclass
class VectorStoreConfig:
    """Configuration for the knowledge store."""
    connection_string: Optional[str] = None
    embedding_dimensions: int = 768
    pool_min_connections: int = 1
    pool_max_connections: int = 10
    hnsw_m: int = 16
    hnsw_ef_construction: int = 64


@dataclass
class KnowledgeDocument:
    """A stored document row (full extracted text included)."""
    document_id: str
    owner_id: str
    title: str
    content: str
    source_type: str = "manual"
    scope: Optional[str] = None
    file_name: Optional[str] = None
    metadata: dict = field(default_factory=dict)
    created_at: Optional[datetime] = None

    def to_dict(self, include_content: bool = False) -> dict:
        data = {
            "document_id": self.document_id,
            "owner_id": self.owner_id,
            "scope": self.scope,
            "title": self.title,
            "source_type": self.source_type,
            "file_name": self.file_name,
            "metadata": self.metadata,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
        if include_content:
            data["content"] = self.content
        return data


@dataclass
class SearchResult:
    """A chunk returned by similarity search."""
    chunk_id: str
    document_id: str
    content: str
    similarity: float
    chunk_index: int
    metadata: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "chunk_id": self.chunk_id,
            "document_id": self.document_id,
            "content": self.content,
            "similarity": self.similarity,
            "chunk_index": self.chunk_index,
            "metadata": self.metadata,
        }


@dataclass
class ContactMemory:
    """A remembered fact or summary about one contact."""
    memory_id: str
    contact_id: str
    owner_id: str
    content: str
    memory_type: str = "conversation_summary"
    scope: Optional[str] = None
    metadata: dict = field(default_factory=dict)
    embedding: list[float] = field(default_factory=list, repr=False)
    created_at: Optional[datetime] = None


@dataclass
class MemoryResult:
    """A contact memory returned by similarity search."""
    memory_id: str
    contact_id: str
    content: str
    memory_type: str
    similarity: float
    metadata: dict = field(default_factory=dict)
    created_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "memory_id": self.memory_id,
            "contact_id": self.contact_id,
            "content": self.content,
            "memory_type": self.memory_type,
            "similarity": self.similarity,
            "metadata": self.metadata,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


def _scope_clause(scope: Optional[str], alias: str = "") -> tuple[str, list]:
    """SQL fragment for scope visibility: scoped rows plus global rows."""
    if scope is None:
        return "", []
    column = f"{alias}agent_id" if alias else "agent_id"
    return f" AND ({column} = %s OR {column} IS NULL)", [scope]


def _row_to_document(row: dict) -> KnowledgeDocument:
    metadata = row.get("metadata") or {}
    if isinstance(metadata, str):
        metadata = json.loads(metadata)
    return KnowledgeDocument(
        document_id=str(row["id"]),
        owner_id=str(row["user_id"]),
        scope=row.get("agent_id"),
        title=row["title"],
        content=row.get("content") or "",
        source_type=row.get("source_type") or "manual",
        file_name=row.get("file_name"),
        metadata=metadata,
        created_at=row.get("created_at"),
    )


class VectorStore:
    """
    PostgreSQL knowledge store with pgvector.

    Features:
    - Cosine similarity search over chunks and contact memories
    - Owner isolation on every statement
    - One transaction per insert/delete
    - Reconnect-and-retry once on stale connections
    """

    def __init__(self, config: Optional[VectorStoreConfig] = None):
        self.config = config or VectorStoreConfig()
        self._pool = None
        self._pool_lock = threading.Lock()
        self._connection_string = (
            self.config.connection_string or
            os.getenv("DATABASE_URL") or
            os.getenv("POSTGRES_URL") or
            "postgresql://localhost:5432/knowledge_base"
        )

    def connect(self) -> None:
        """Create the connection pool and make sure pgvector is available."""
        if psycopg2 is None:
            raise ImportError(
                "psycopg2 not installed. Run: pip install psycopg2-binary"
            )
        from psycopg2.extras import RealDictCursor

        try:
            if self._pool:
                self._pool.closeall()
            self._pool = psycopg2.pool.ThreadedConnectionPool(
                minconn=self.config.pool_min_connections,
                maxconn=self.config.pool_max_connections,
                dsn=self._connection_string,
                cursor_factory=RealDictCursor,
            )
            conn = self._pool.getconn()
            try:
                with conn.cursor() as cur:
                    cur.execute("CREATE EXTENSION IF NOT EXISTS vector")
                conn.commit()
            finally:
                self._pool.putconn(conn)

            logger.info(
                f"Connection pool initialized (min={self.config.pool_min_connections}, "
                f"max={self.config.pool_max_connections})"
            )
        except psycopg2.Error as e:
            logger.error(f"Database connection failed: {e}")
            raise StoreError(f"Database connection failed: {e}")

    def is_connected(self) -> bool:
        return self._pool is not None

    def _get_connection(self):
        if not self._pool:
            with self._pool_lock:
                if not self._pool:
                    self.connect()
        return self._pool.getconn()

    def _release_connection(self, conn, close: bool = False) -> None:
        if self._pool and conn is not None:
            self._pool.putconn(conn, close=close)

    def _safe_rollback(self, conn) -> None:
        """Rollback a connection, ignoring errors if the connection is dead."""
        try:
            conn.rollback()
        except (psycopg2.InterfaceError, psycopg2.OperationalError):
            logger.debug("Rollback on dead connection skipped")

    def _execute_with_retry(self, operation, label="db_operation"):
        """Execute a DB operation with one retry on stale connection.

        Args:
            operation: Callable(conn) that performs the DB work and returns a result.
            label: Human-readable name for logging.

        Returns:
            Whatever ``operation`` returns.

        Raises:
            StoreError: If no connection can be acquired, the operation fails,
                or it fails twice on a stale connection.
        """
        for attempt in range(2):
            try:
                conn = self._get_connection()
            except psycopg2.Error as e:
                # PoolError (pool exhausted) included
                logger.error(f"{label}: could not acquire connection: {e}")
                raise StoreError(f"{label} failed: {e}")

            try:
                result = operation(conn)
            except (psycopg2.OperationalError, psycopg2.InterfaceError) as e:
                self._safe_rollback(conn)
                # Only the broken connection is dropped; other threads keep theirs
                self._release_connection(conn, close=True)
                if attempt == 0:
                    logger.warning(f"{label}: stale conn, retrying on a fresh one: {e}")
                    continue
                logger.error(f"{label} failed after reconnect: {e}")
                raise StoreError(f"{label} failed: {e}")
            except psycopg2.Error as e:
                self._safe_rollback(conn)
                self._release_connection(conn)
                logger.error(f"{label} failed: {e}")
                raise StoreError(f"{label} failed: {e}")
            except Exception:
                self._safe_rollback(conn)
                self._release_connection(conn)
                raise

            self._release_connection(conn)
            return result

    def close(self) -> None:
        """Close all pooled connections."""
        if self._pool:
            self._pool.closeall()
            self._pool = None
            logger.info("Connection pool closed")

    # =========================================================================
    # Schema
    # =========================================================================

    def initialize_schema(self) -> None:
        """Create tables and indexes if they don't exist."""
        dims = self.config.embedding_dimensions
        schema_sql = f"""
        CREATE TABLE IF NOT EXISTS knowledge_documents (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id TEXT NOT NULL,
            agent_id TEXT,
            title TEXT NOT NULL,
            content TEXT NOT NULL,
            source_type TEXT NOT NULL DEFAULT 'manual',
            file_name TEXT,
            metadata JSONB DEFAULT '{{}}',
            created_at TIMESTAMPTZ DEFAULT NOW()
        );

        CREATE TABLE IF NOT EXISTS knowledge_chunks (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            document_id UUID NOT NULL REFERENCES knowledge_documents(id) ON DELETE CASCADE,
            user_id TEXT NOT NULL,
            agent_id TEXT,
            content TEXT NOT NULL,
            chunk_index INT NOT NULL,
            token_count INT,
            embedding VECTOR({dims}) NOT NULL,
            created_at TIMESTAMPTZ DEFAULT NOW()
        );

        CREATE TABLE IF NOT EXISTS contact_memories (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id TEXT NOT NULL,
            contact_id TEXT NOT NULL,
            agent_id TEXT,
            memory_type TEXT NOT NULL DEFAULT 'conversation_summary',
            content TEXT NOT NULL,
            embedding VECTOR({dims}) NOT NULL,
            metadata JSONB DEFAULT '{{}}',
            created_at TIMESTAMPTZ DEFAULT NOW()
        );

        CREATE INDEX IF NOT EXISTS idx_knowledge_documents_user
            ON knowledge_documents(user_id, agent_id);
        CREATE INDEX IF NOT EXISTS idx_knowledge_chunks_document
            ON knowledge_chunks(document_id);
        CREATE INDEX IF NOT EXISTS idx_knowledge_chunks_user
            ON knowledge_chunks(user_id, agent_id);
        CREATE INDEX IF NOT EXISTS idx_contact_memories_contact
            ON contact_memories(user_id, contact_id);

        CREATE INDEX IF NOT EXISTS idx_knowledge_chunks_embedding_hnsw
            ON knowledge_chunks
            USING hnsw (embedding vector_cosine_ops)
            WITH (m = {self.config.hnsw_m}, ef_construction = {self.config.hnsw_ef_construction});
        CREATE INDEX IF NOT EXISTS idx_contact_memories_embedding_hnsw
            ON contact_memories
            USING hnsw (embedding vector_cosine_ops)
            WITH (m = {self.config.hnsw_m}, ef_construction = {self.config.hnsw_ef_construction});
        """

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(schema_sql)
            conn.commit()

        self._execute_with_retry(_op, "initialize_schema")
        logger.info("Schema initialized successfully")

    def health_check(self) -> bool:
        """Return True when a trivial query succeeds."""
        def _op(conn):
            with conn.cursor() as cur:
                cur.execute("SELECT 1")
                cur.fetchone()
            return True

        try:
            return self._execute_with_retry(_op, "health_check")
        except StoreError:
            return False

    # =========================================================================
    # Documents
    # =========================================================================

    def insert_document(self, document: KnowledgeDocument) -> str:
        """Insert a document row and return its id."""
        sql = """
        INSERT INTO knowledge_documents
            (id, user_id, agent_id, title, content, source_type, file_name, metadata)
        VALUES
            (%s::uuid, %s, %s, %s, %s, %s, %s, %s)
        RETURNING id, created_at
        """

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(sql, (
                    document.document_id,
                    document.owner_id,
                    document.scope,
                    document.title,
                    document.content,
                    document.source_type,
                    document.file_name,
                    json.dumps(document.metadata or {}),
                ))
                row = cur.fetchone()
            conn.commit()
            return row

        row = self._execute_with_retry(_op, "insert_document")
        if row and row.get("created_at"):
            document.created_at = row["created_at"]
        return document.document_id

    def get_document(self, document_id: str, owner_id: str) -> Optional[KnowledgeDocument]:
        """Fetch a document owned by owner_id, or None (missing and foreign look the same)."""
        sql = """
        SELECT id, user_id, agent_id, title, content, source_type, file_name, metadata, created_at
        FROM knowledge_documents
        WHERE id::text = %s AND user_id = %s
        """

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(sql, (document_id, owner_id))
                return cur.fetchone()

        row = self._execute_with_retry(_op, "get_document")
        return _row_to_document(dict(row)) if row else None

    def list_documents(
        self,
        owner_id: str,
        scope: Optional[str] = None,
        global_only: bool = False,
    ) -> list[KnowledgeDocument]:
        """
        List the owner's visible documents, newest first (content omitted).

        global_only restricts the listing to documents with no agent scope
        and takes precedence over scope.
        """
        if global_only:
            scope_sql, scope_params = " AND agent_id IS NULL", []
        else:
            scope_sql, scope_params = _scope_clause(scope)
        sql = f"""
        SELECT id, user_id, agent_id, title, source_type, file_name, metadata, created_at
        FROM knowledge_documents
        WHERE user_id = %s{scope_sql}
        ORDER BY created_at DESC
        """

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(sql, [owner_id] + scope_params)
                return cur.fetchall()

        rows = self._execute_with_retry(_op, "list_documents")
        return [_row_to_document(dict(row)) for row in rows]

    def delete_document(self, document_id: str, owner_id: str) -> bool:
        """
        Delete a document row owned by owner_id.

        Returns:
            True if a row was deleted, False if not found (or wrong owner)
        """
        sql = "DELETE FROM knowledge_documents WHERE id::text = %s AND user_id = %s"

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(sql, (document_id, owner_id))
                deleted = cur.rowcount > 0
            conn.commit()
            return deleted

        deleted = self._execute_with_retry(_op, "delete_document")
        if deleted:
            logger.info(f"Deleted document {document_id}")
        else:
            logger.warning(f"Document {document_id} not found (or wrong owner)")
        return deleted

    # =========================================================================
    # Chunks
    # =========================================================================

    def insert_chunk(self, chunk) -> str:
        """
        Insert one embedded chunk in its own transaction.

        Raises:
            ChunkPersistError: If the store rejects the row
        """
        sql = """
        INSERT INTO knowledge_chunks
            (id, document_id, user_id, agent_id, content, chunk_index, token_count, embedding)
        VALUES
            (%s::uuid, %s::uuid, %s, %s, %s, %s, %s, %s::vector)
        """

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(sql, (
                    chunk.chunk_id,
                    chunk.document_id,
                    chunk.owner_id,
                    chunk.scope,
                    chunk.content,
                    chunk.chunk_index,
                    chunk.token_count,
                    chunk.embedding,
                ))
            conn.commit()

        try:
            self._execute_with_retry(_op, "insert_chunk")
        except StoreError as e:
            raise ChunkPersistError(e.message, chunk_index=chunk.chunk_index)
        return chunk.chunk_id

    def delete_chunks_by_document(self, document_id: str, owner_id: str) -> int:
        """Delete every chunk of a document. Returns the number removed."""
        sql = "DELETE FROM knowledge_chunks WHERE document_id::text = %s AND user_id = %s"

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(sql, (document_id, owner_id))
                count = cur.rowcount
            conn.commit()
            return count

        return self._execute_with_retry(_op, "delete_chunks_by_document")

    def similarity_search(
        self,
        query_embedding: list[float],
        owner_id: str,
        scope: Optional[str] = None,
        threshold: float = 0.5,
        limit: int = 5,
        document_id: Optional[str] = None,
    ) -> list[SearchResult]:
        """
        Semantic search over the owner's chunks.

        Args:
            query_embedding: Query embedding vector
            owner_id: Owner whose chunks are searched
            scope: Optional agent scope (scoped + global rows)
            threshold: Minimum cosine similarity, inclusive
            limit: Maximum number of results
            document_id: Optional filter by document

        Returns:
            Results with similarity >= threshold, best first
        """
        scope_sql, scope_params = _scope_clause(scope, alias="c.")
        doc_sql = ""
        doc_params = []
        if document_id:
            doc_sql = " AND c.document_id::text = %s"
            doc_params = [document_id]

        sql = f"""
        SELECT * FROM (
            SELECT
                c.id AS chunk_id,
                c.document_id,
                c.content,
                c.chunk_index,
                d.title,
                1 - (c.embedding <=> %s::vector) AS similarity
            FROM knowledge_chunks c
            JOIN knowledge_documents d ON d.id = c.document_id
            WHERE c.user_id = %s{scope_sql}{doc_sql}
        ) ranked
        WHERE similarity >= %s
        ORDER BY similarity DESC
        LIMIT %s
        """
        params = [query_embedding, owner_id] + scope_params + doc_params + [threshold, limit]

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(sql, params)
                return cur.fetchall()

        rows = self._execute_with_retry(_op, "similarity_search")
        return [
            SearchResult(
                chunk_id=str(row["chunk_id"]),
                document_id=str(row["document_id"]),
                content=row["content"],
                similarity=float(row["similarity"]),
                chunk_index=row["chunk_index"],
                metadata={"title": row["title"]},
            )
            for row in rows
        ]

    # =========================================================================
    # Contact memories
    # =========================================================================

    def insert_memory(self, memory: ContactMemory) -> str:
        """Insert one contact memory and return its id."""
        sql = """
        INSERT INTO contact_memories
            (id, user_id, contact_id, agent_id, memory_type, content, embedding, metadata)
        VALUES
            (%s::uuid, %s, %s, %s, %s, %s, %s::vector, %s)
        """

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(sql, (
                    memory.memory_id,
                    memory.owner_id,
                    memory.contact_id,
                    memory.scope,
                    memory.memory_type,
                    memory.content,
                    memory.embedding,
                    json.dumps(memory.metadata or {}),
                ))
            conn.commit()

        self._execute_with_retry(_op, "insert_memory")
        return memory.memory_id

    def similarity_search_by_contact(
        self,
        query_embedding: list[float],
        owner_id: str,
        contact_id: str,
        scope: Optional[str] = None,
        threshold: float = 0.5,
        limit: int = 3,
    ) -> list[MemoryResult]:
        """Semantic search over one contact's memories."""
        scope_sql, scope_params = _scope_clause(scope)
        sql = f"""
        SELECT * FROM (
            SELECT
                id AS memory_id,
                contact_id,
                content,
                memory_type,
                metadata,
                created_at,
                1 - (embedding <=> %s::vector) AS similarity
            FROM contact_memories
            WHERE user_id = %s AND contact_id = %s{scope_sql}
        ) ranked
        WHERE similarity >= %s
        ORDER BY similarity DESC
        LIMIT %s
        """
        params = [query_embedding, owner_id, contact_id] + scope_params + [threshold, limit]

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(sql, params)
                return cur.fetchall()

        rows = self._execute_with_retry(_op, "similarity_search_by_contact")
        results = []
        for row in rows:
            metadata = row.get("metadata") or {}
            if isinstance(metadata, str):
                metadata = json.loads(metadata)
            results.append(MemoryResult(
                memory_id=str(row["memory_id"]),
                contact_id=row["contact_id"],
                content=row["content"],
                memory_type=row["memory_type"],
                similarity=float(row["similarity"]),
                metadata=metadata,
                created_at=row.get("created_at"),
            ))
        return results


# CLI for schema setup
if __name__ == "__main__":
    from dotenv import load_dotenv

    load_dotenv()
    logging.basicConfig(level=logging.INFO)

    store = VectorStore()
    store.connect()
    store.initialize_schema()
    print(f"Database healthy: {store.health_check()}")
    store.close()
