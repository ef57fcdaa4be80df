"""
Ingestion Pipeline - text or file in, embedded chunks out

Steps:
1. Validate input
2. (files) Extract text
3. Persist the document row
4. Chunk the text
5. Embed and persist each chunk independently

A failing chunk never aborts the run: it is recorded in the result and the
remaining chunks are still processed. Rows already written are kept.
"""

import uuid
import logging
from dataclasses import dataclass, field
from typing import Optional
from concurrent.futures import ThreadPoolExecutor

from .config import KnowledgeConfig
from .chunker import Chunk, ChunkConfig, TextChunker
from .errors import ChunkPersistError, EmbeddingError, ExtractionError, OwnershipError
from .extractor import TextExtractor
from .vector_store import KnowledgeDocument

logger = logging.getLogger(__name__)


@dataclass
class ChunkFailure:
    """A chunk that could not be embedded or stored."""
    index: int
    reason: str

    def to_dict(self) -> dict:
        return {"index": self.index, "reason": self.reason}


@dataclass
class IngestionResult:
    """Outcome of one ingestion run."""
    document_id: str
    total_chunks: int
    succeeded: list[Chunk] = field(default_factory=list)
    failed: list[ChunkFailure] = field(default_factory=list)
    extracted_chars: int = 0

    @property
    def chunks_created(self) -> int:
        return len(self.succeeded)

    @property
    def success(self) -> bool:
        return not self.failed

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "document_id": self.document_id,
            "chunks_created": self.chunks_created,
            "total_chunks": self.total_chunks,
            "extracted_chars": self.extracted_chars,
            "failed_chunks": [f.to_dict() for f in self.failed],
        }


def _require(value: Optional[str], name: str) -> str:
    if value is None or not str(value).strip():
        raise ValueError(f"{name} is required")
    return value


class IngestionPipeline:
    """
    Coordinates extraction, chunking, embedding and storage for one owner's documents.

    Usage:
        pipeline = IngestionPipeline(config, embeddings, store)
        result = pipeline.ingest_text("Contrato", text, owner_id="user-1")
    """

    def __init__(
        self,
        config: KnowledgeConfig,
        embeddings,
        store,
        extractor: Optional[TextExtractor] = None,
        storage=None,
    ):
        self.config = config
        self.embeddings = embeddings
        self.store = store
        self.extractor = extractor or TextExtractor(config)
        self.storage = storage
        self.chunker = TextChunker(ChunkConfig(
            max_chunk_words=config.max_chunk_words,
            overlap_words=config.overlap_words,
        ))

    def ingest_text(
        self,
        title: str,
        content: str,
        owner_id: str,
        scope: Optional[str] = None,
        source_type: str = "manual",
        file_name: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> IngestionResult:
        """
        Ingest raw text as a new document.

        Args:
            title: Document title
            content: Full document text
            owner_id: Owning user
            scope: Optional agent id (None = global to the owner)
            source_type: "manual" or "upload"
            file_name: Original file name for uploads
            metadata: Extra document metadata

        Returns:
            IngestionResult with per-chunk successes and failures

        Raises:
            ValueError: Blank title, content or owner
            StoreError: The document row could not be written
        """
        _require(title, "title")
        _require(content, "content")
        _require(owner_id, "owner_id")

        document = KnowledgeDocument(
            document_id=str(uuid.uuid4()),
            owner_id=owner_id,
            scope=scope,
            title=title.strip(),
            content=content,
            source_type=source_type,
            file_name=file_name,
            metadata=metadata or {},
        )
        self.store.insert_document(document)
        logger.info(f"Created document {document.document_id} ({title!r}) for owner {owner_id}")

        texts = self.chunker.split(content)
        logger.info(f"Split document {document.document_id} into {len(texts)} chunks")

        result = IngestionResult(
            document_id=document.document_id,
            total_chunks=len(texts),
            extracted_chars=len(content),
        )

        outcomes = self._process_chunks(document, texts)
        for outcome in outcomes:
            if isinstance(outcome, ChunkFailure):
                result.failed.append(outcome)
            else:
                result.succeeded.append(outcome)

        logger.info(
            f"Ingested {result.chunks_created}/{result.total_chunks} chunks "
            f"for document {document.document_id}"
        )
        return result

    def _process_chunks(self, document: KnowledgeDocument, texts: list[str]) -> list:
        """Run every chunk through embed+persist, keeping chunk-index order."""
        jobs = [(document, index, text) for index, text in enumerate(texts)]
        workers = min(self.config.ingestion_workers, len(jobs))
        if workers <= 1:
            return [self._process_chunk(*job) for job in jobs]

        with ThreadPoolExecutor(max_workers=workers) as executor:
            return list(executor.map(lambda job: self._process_chunk(*job), jobs))

    def _process_chunk(self, document: KnowledgeDocument, index: int, text: str):
        """Embed and store one chunk. Returns the Chunk or a ChunkFailure."""
        chunk = Chunk.create(
            document_id=document.document_id,
            owner_id=document.owner_id,
            content=text,
            chunk_index=index,
            scope=document.scope,
        )
        try:
            chunk.embedding = self.embeddings.embed(text)
            self.store.insert_chunk(chunk)
        except (EmbeddingError, ChunkPersistError) as e:
            logger.warning(f"Skipping chunk {index} of document {document.document_id}: {e.message}")
            return ChunkFailure(index=index, reason=f"{e.stage}: {e.message}")
        return chunk

    def ingest_file(
        self,
        title: str,
        file_bytes: bytes,
        mime_type: str,
        owner_id: str,
        scope: Optional[str] = None,
        file_name: Optional[str] = None,
        storage_path: Optional[str] = None,
    ) -> IngestionResult:
        """
        Extract text from a file, then ingest it.

        Raises:
            ValueError: Blank title or owner
            ExtractionError: No usable text (nothing is persisted)
        """
        _require(title, "title")
        _require(owner_id, "owner_id")

        text = self.extractor.extract(file_bytes, mime_type, file_name)
        logger.info(f"Extracted {len(text)} chars from {file_name or 'upload'}")

        metadata = {"mime_type": mime_type, "size_bytes": len(file_bytes)}
        if storage_path:
            metadata["storage_path"] = storage_path

        return self.ingest_text(
            title=title,
            content=text,
            owner_id=owner_id,
            scope=scope,
            source_type="upload",
            file_name=file_name,
            metadata=metadata,
        )

    def ingest_stored_file(
        self,
        title: str,
        storage_path: str,
        mime_type: str,
        owner_id: str,
        scope: Optional[str] = None,
        file_name: Optional[str] = None,
    ) -> IngestionResult:
        """Download a previously uploaded file once and ingest it."""
        _require(storage_path, "storage_path")
        if self.storage is None:
            raise RuntimeError("File storage not configured")

        try:
            file_bytes = self.storage.download(storage_path)
        except FileNotFoundError:
            raise ExtractionError(f"Stored file not found: {storage_path}")

        return self.ingest_file(
            title=title,
            file_bytes=file_bytes,
            mime_type=mime_type,
            owner_id=owner_id,
            scope=scope,
            file_name=file_name or storage_path.rsplit("/", 1)[-1],
            storage_path=storage_path,
        )

    def delete_document(self, document_id: str, owner_id: str) -> None:
        """
        Delete a document and all of its chunks.

        Raises:
            OwnershipError: Document does not exist for this owner
        """
        _require(document_id, "document_id")
        _require(owner_id, "owner_id")

        if self.store.get_document(document_id, owner_id) is None:
            raise OwnershipError("document", document_id)

        removed = self.store.delete_chunks_by_document(document_id, owner_id)
        if not self.store.delete_document(document_id, owner_id):
            raise OwnershipError("document", document_id)
        logger.info(f"Deleted document {document_id} with {removed} chunks")

    def list_documents(
        self,
        owner_id: str,
        scope: Optional[str] = None,
        global_only: bool = False,
    ) -> list[KnowledgeDocument]:
        """List the owner's visible documents, newest first."""
        _require(owner_id, "owner_id")
        return self.store.list_documents(owner_id, scope, global_only=global_only)
