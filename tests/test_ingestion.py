"""
Tests for execution/knowledge_rag/ingestion.py

Covers: input validation, the 1200-word document, per-chunk failure
        isolation, thread-pooled processing, file ingestion, stored-file
        ingestion, ownership-checked deletion with cascade, and listing.

Uses the in-memory store and deterministic embeddings from conftest.
"""

from unittest.mock import MagicMock

import pytest

from tests.conftest import (
    InMemoryVectorStore, MockEmbeddingService, make_document, OWNER_A, OWNER_B,
)


def _pipeline(config, embeddings=None, store=None, extractor=None, storage=None):
    from execution.knowledge_rag.ingestion import IngestionPipeline
    return IngestionPipeline(
        config,
        embeddings or MockEmbeddingService(),
        store if store is not None else InMemoryVectorStore(),
        extractor=extractor,
        storage=storage,
    )


# ---------------------------------------------------------------------------
# IngestionResult
# ---------------------------------------------------------------------------

class TestIngestionResult:
    """Tests for the result dataclass."""

    def test_counts_and_dict(self):
        from execution.knowledge_rag.chunker import Chunk
        from execution.knowledge_rag.ingestion import IngestionResult, ChunkFailure

        result = IngestionResult(
            document_id="d1", total_chunks=3,
            succeeded=[Chunk.create("d1", "o", "a", 0), Chunk.create("d1", "o", "b", 2)],
            failed=[ChunkFailure(1, "embedding: boom")],
            extracted_chars=42,
        )
        assert result.chunks_created == 2
        assert result.success is False
        d = result.to_dict()
        assert d["chunks_created"] == 2
        assert d["total_chunks"] == 3
        assert d["failed_chunks"] == [{"index": 1, "reason": "embedding: boom"}]


# ---------------------------------------------------------------------------
# ingest_text
# ---------------------------------------------------------------------------

class TestIngestText:
    """Tests for ingesting typed text."""

    def test_twelve_hundred_word_document(self, knowledge_config):
        store = InMemoryVectorStore()
        result = _pipeline(knowledge_config, store=store).ingest_text(
            "Manual do escritório", make_document(12, 100), OWNER_A,
        )
        assert result.total_chunks == 3
        assert result.chunks_created == 3
        assert result.failed == []
        assert len(store.chunks) == 3
        assert sorted(c.chunk_index for c in store.chunks.values()) == [0, 1, 2]

    def test_document_row_persisted(self, knowledge_config, sample_document_text):
        store = InMemoryVectorStore()
        result = _pipeline(knowledge_config, store=store).ingest_text(
            "Contrato", sample_document_text, OWNER_A, scope="agent-1",
        )
        doc = store.documents[result.document_id]
        assert doc.owner_id == OWNER_A
        assert doc.scope == "agent-1"
        assert doc.source_type == "manual"
        assert doc.content == sample_document_text
        assert result.extracted_chars == len(sample_document_text)

    def test_chunks_carry_owner_scope_and_embedding(self, knowledge_config, sample_document_text):
        store = InMemoryVectorStore()
        _pipeline(knowledge_config, store=store).ingest_text(
            "Contrato", sample_document_text, OWNER_A, scope="agent-1",
        )
        chunk = next(iter(store.chunks.values()))
        assert chunk.owner_id == OWNER_A
        assert chunk.scope == "agent-1"
        assert len(chunk.embedding) == 768
        assert chunk.token_count == len(chunk.content.split())

    @pytest.mark.parametrize("title,content,owner", [
        ("", "texto", OWNER_A),
        ("   ", "texto", OWNER_A),
        ("Título", "", OWNER_A),
        ("Título", "  \n ", OWNER_A),
        ("Título", "texto", ""),
        ("Título", "texto", None),
    ])
    def test_blank_inputs_rejected_before_any_write(self, knowledge_config, title, content, owner):
        store = InMemoryVectorStore()
        with pytest.raises(ValueError):
            _pipeline(knowledge_config, store=store).ingest_text(title, content, owner)
        assert store.documents == {}

    @pytest.mark.parametrize("failing", [set(), {0}, {1}, {0, 2}, {0, 1, 2}])
    def test_partial_failure_reported_for_any_subset(self, knowledge_config, failing):
        """For M=3 chunks and any failing subset, chunks_created == M - len(failing)."""
        store = InMemoryVectorStore(fail_chunk_indices=failing)
        result = _pipeline(knowledge_config, store=store).ingest_text(
            "Doc", make_document(12, 100), OWNER_A,
        )
        assert result.total_chunks == 3
        assert result.chunks_created == 3 - len(failing)
        assert sorted(f.index for f in result.failed) == sorted(failing)
        assert all(f.reason.startswith("chunk_persist") for f in result.failed)
        assert len(store.chunks) == 3 - len(failing)
        # Document row survives even when every chunk fails
        assert result.document_id in store.documents

    def test_embedding_failure_recorded_and_run_continues(self, knowledge_config):
        text = make_document(12, 100)
        embeddings = MockEmbeddingService(fail_on={"p6w0"})  # only in the second chunk
        result = _pipeline(knowledge_config, embeddings=embeddings).ingest_text("Doc", text, OWNER_A)

        assert result.chunks_created == 2
        assert [f.index for f in result.failed] == [1]
        assert result.failed[0].reason.startswith("embedding")
        assert [c.chunk_index for c in result.succeeded] == [0, 2]

    def test_thread_pool_preserves_order_and_isolation(self):
        from execution.knowledge_rag.config import KnowledgeConfig

        config = KnowledgeConfig(ingestion_workers=4, max_chunk_words=50, overlap_words=5)
        store = InMemoryVectorStore(fail_chunk_indices={3, 7})
        result = _pipeline(config, store=store).ingest_text("Doc", make_document(20, 50), OWNER_A)

        assert result.total_chunks == 20
        assert result.chunks_created == 18
        assert [c.chunk_index for c in result.succeeded] == [i for i in range(20) if i not in (3, 7)]
        assert [f.index for f in result.failed] == [3, 7]

    def test_document_insert_failure_propagates(self, knowledge_config):
        from execution.knowledge_rag.errors import StoreError

        store = MagicMock()
        store.insert_document.side_effect = StoreError("insert_document failed")
        with pytest.raises(StoreError):
            _pipeline(knowledge_config, store=store).ingest_text("Doc", "algum texto", OWNER_A)

    def test_exhausted_connection_pool_is_a_chunk_failure(self, knowledge_config):
        from psycopg2.pool import PoolError
        from execution.knowledge_rag.vector_store import VectorStore, VectorStoreConfig

        conn = MagicMock()
        conn.cursor.return_value.__enter__.return_value.fetchone.return_value = {"created_at": None}
        calls = {"n": 0}

        def getconn():
            calls["n"] += 1
            # 1: document insert, 2: chunk 0, 3: chunk 1, 4: chunk 2
            if calls["n"] == 3:
                raise PoolError("connection pool exhausted")
            return conn

        store = VectorStore(VectorStoreConfig(connection_string="postgresql://test/db"))
        store._pool = MagicMock()
        store._pool.getconn.side_effect = getconn

        result = _pipeline(knowledge_config, store=store).ingest_text(
            "Manual do escritório", make_document(12, 100), OWNER_A,
        )
        assert result.total_chunks == 3
        assert result.chunks_created == 2
        assert [f.index for f in result.failed] == [1]
        assert result.failed[0].reason.startswith("chunk_persist")
        assert "pool exhausted" in result.failed[0].reason


# ---------------------------------------------------------------------------
# ingest_file / ingest_stored_file
# ---------------------------------------------------------------------------

class TestIngestFile:
    """Tests for file ingestion."""

    def test_extracted_text_ingested_as_upload(self, knowledge_config):
        extractor = MagicMock()
        extractor.extract.return_value = make_document(12, 100)
        store = InMemoryVectorStore()

        result = _pipeline(knowledge_config, store=store, extractor=extractor).ingest_file(
            "Parecer", b"%PDF...", "application/pdf", OWNER_A,
            file_name="parecer.pdf", storage_path=f"{OWNER_A}/1-parecer.pdf",
        )

        doc = store.documents[result.document_id]
        assert doc.source_type == "upload"
        assert doc.file_name == "parecer.pdf"
        assert doc.metadata == {
            "mime_type": "application/pdf",
            "size_bytes": 7,
            "storage_path": f"{OWNER_A}/1-parecer.pdf",
        }
        assert result.chunks_created == 3
        assert result.extracted_chars == len(make_document(12, 100))
        extractor.extract.assert_called_once_with(b"%PDF...", "application/pdf", "parecer.pdf")

    def test_extraction_failure_persists_nothing(self, knowledge_config):
        from execution.knowledge_rag.errors import ExtractionError

        extractor = MagicMock()
        extractor.extract.side_effect = ExtractionError("Could not extract enough text")
        store = InMemoryVectorStore()
        with pytest.raises(ExtractionError):
            _pipeline(knowledge_config, store=store, extractor=extractor).ingest_file(
                "Scan", b"bytes", "application/pdf", OWNER_A,
            )
        assert store.documents == {}

    def test_stored_file_downloaded_once(self, knowledge_config):
        extractor = MagicMock()
        extractor.extract.return_value = "Texto suficiente para ingestão."
        storage = MagicMock()
        storage.download.return_value = b"file-bytes"

        result = _pipeline(knowledge_config, extractor=extractor, storage=storage).ingest_stored_file(
            "Procuração", f"{OWNER_A}/17-procuracao.txt", "text/plain", OWNER_A,
        )

        storage.download.assert_called_once_with(f"{OWNER_A}/17-procuracao.txt")
        extractor.extract.assert_called_once_with(b"file-bytes", "text/plain", "17-procuracao.txt")
        assert result.chunks_created == 1

    def test_missing_stored_file(self, knowledge_config):
        from execution.knowledge_rag.errors import ExtractionError

        storage = MagicMock()
        storage.download.side_effect = FileNotFoundError("gone")
        with pytest.raises(ExtractionError, match="not found"):
            _pipeline(knowledge_config, storage=storage).ingest_stored_file(
                "Doc", "x/1-a.pdf", "application/pdf", OWNER_A,
            )


# ---------------------------------------------------------------------------
# delete_document / list_documents
# ---------------------------------------------------------------------------

class TestDeleteAndList:
    """Tests for ownership-checked deletion and listing."""

    def test_delete_removes_document_and_chunks(self, knowledge_config):
        store = InMemoryVectorStore()
        pipeline = _pipeline(knowledge_config, store=store)
        keep = pipeline.ingest_text("Manter", make_document(3, 20), OWNER_A)
        doomed = pipeline.ingest_text("Apagar", make_document(12, 100), OWNER_A)

        pipeline.delete_document(doomed.document_id, OWNER_A)

        assert doomed.document_id not in store.documents
        assert all(c.document_id != doomed.document_id for c in store.chunks.values())
        assert keep.document_id in store.documents
        assert len(store.chunks) == keep.chunks_created

        # Deleted chunks no longer surface in search, even with no threshold
        from execution.knowledge_rag.retriever import KnowledgeRetriever
        retriever = KnowledgeRetriever(knowledge_config, MockEmbeddingService(), store)
        results = retriever.search("p3w10 p3w11 p3w12", OWNER_A, threshold=-1.0, limit=50)
        assert results
        assert all(r.document_id != doomed.document_id for r in results)
        assert {r.document_id for r in results} == {keep.document_id}

    def test_global_only_listing(self, knowledge_config):
        pipeline = _pipeline(knowledge_config)
        pipeline.ingest_text("Global", "texto global do escritório", OWNER_A)
        pipeline.ingest_text("Agente 1", "texto do agente um", OWNER_A, scope="agent-1")

        titles = [d.title for d in pipeline.list_documents(OWNER_A, scope="agent-1", global_only=True)]
        assert titles == ["Global"]

    def test_delete_foreign_document_is_not_found(self, knowledge_config):
        from execution.knowledge_rag.errors import OwnershipError

        store = InMemoryVectorStore()
        pipeline = _pipeline(knowledge_config, store=store)
        result = pipeline.ingest_text("Sigiloso", make_document(2, 10), OWNER_A)

        with pytest.raises(OwnershipError) as foreign:
            pipeline.delete_document(result.document_id, OWNER_B)
        with pytest.raises(OwnershipError) as missing:
            pipeline.delete_document("00000000-0000-0000-0000-000000000000", OWNER_B)

        assert str(foreign.value).startswith("document not found")
        assert str(missing.value).startswith("document not found")
        assert result.document_id in store.documents
        assert len(store.chunks) == result.chunks_created

    def test_list_scoped_includes_global(self, knowledge_config):
        pipeline = _pipeline(knowledge_config)
        pipeline.ingest_text("Global", "texto global do escritório", OWNER_A)
        pipeline.ingest_text("Agente 1", "texto do agente um", OWNER_A, scope="agent-1")
        pipeline.ingest_text("Agente 2", "texto do agente dois", OWNER_A, scope="agent-2")
        pipeline.ingest_text("Outro dono", "texto de outro dono", OWNER_B)

        titles = [d.title for d in pipeline.list_documents(OWNER_A, scope="agent-1")]
        assert titles == ["Agente 1", "Global"]
        assert len(pipeline.list_documents(OWNER_A)) == 3
        assert [d.title for d in pipeline.list_documents(OWNER_B)] == ["Outro dono"]
