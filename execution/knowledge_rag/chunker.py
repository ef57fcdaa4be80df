"""
Paragraph-Aware Text Chunker

Splits document text into bounded, overlapping chunks for embedding.

Strategy:
- Paragraphs (blank-line separated) are the primary unit
- Paragraphs are packed greedily up to max_chunk_words
- Oversized paragraphs fall back to sentence-level packing
- Each chunk after the first is prefixed with the tail of the previous one
"""

import re
import uuid
import logging
from dataclasses import dataclass, field
from typing import Optional

logger = logging.getLogger(__name__)

_PARAGRAPH_SPLIT = re.compile(r"\n\s*\n")
_SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+")


def count_words(text: str) -> int:
    """Whitespace-delimited word count."""
    return len(text.split())


@dataclass
class Chunk:
    """A persisted slice of a document with its embedding."""
    chunk_id: str
    document_id: str
    owner_id: str
    content: str
    chunk_index: int
    token_count: int
    scope: Optional[str] = None
    embedding: list[float] = field(default_factory=list, repr=False)

    @classmethod
    def create(
        cls,
        document_id: str,
        owner_id: str,
        content: str,
        chunk_index: int,
        scope: Optional[str] = None,
    ) -> "Chunk":
        return cls(
            chunk_id=str(uuid.uuid4()),
            document_id=document_id,
            owner_id=owner_id,
            content=content,
            chunk_index=chunk_index,
            token_count=count_words(content),
            scope=scope,
        )

    def to_dict(self) -> dict:
        return {
            "chunk_id": self.chunk_id,
            "document_id": self.document_id,
            "owner_id": self.owner_id,
            "scope": self.scope,
            "content": self.content,
            "chunk_index": self.chunk_index,
            "token_count": self.token_count,
        }


@dataclass
class ChunkConfig:
    """Configuration for chunking parameters."""
    max_chunk_words: int = 500
    overlap_words: int = 50


class TextChunker:
    """
    Chunks plain text on paragraph and sentence boundaries.

    Pure and deterministic: no I/O, safe to share between threads.
    """

    def __init__(self, config: Optional[ChunkConfig] = None):
        self.config = config or ChunkConfig()
        if self.config.max_chunk_words < 1:
            raise ValueError("max_chunk_words must be positive")

    def split(self, text: str) -> list[str]:
        """
        Split text into ordered chunks with overlap applied.

        Args:
            text: Document text

        Returns:
            List of non-empty chunk strings
        """
        base_chunks = self.split_base(text)
        chunks = self.apply_overlap(base_chunks)
        logger.debug(f"Split {count_words(text)} words into {len(chunks)} chunks")
        return chunks

    def split_base(self, text: str) -> list[str]:
        """Split text into chunks without overlap."""
        max_words = self.config.max_chunk_words
        paragraphs = [p.strip() for p in _PARAGRAPH_SPLIT.split(text or "")]
        paragraphs = [p for p in paragraphs if p]

        chunks = []
        current = []
        current_words = 0

        for paragraph in paragraphs:
            paragraph_words = count_words(paragraph)

            # Paragraph alone exceeds the bound - pack its sentences instead
            if paragraph_words > max_words:
                if current:
                    chunks.append("\n\n".join(current))
                    current = []
                    current_words = 0
                chunks.extend(self._split_sentences(paragraph))
                continue

            if current and current_words + paragraph_words > max_words:
                chunks.append("\n\n".join(current))
                current = []
                current_words = 0

            current.append(paragraph)
            current_words += paragraph_words

        if current:
            chunks.append("\n\n".join(current))

        return chunks

    def _split_sentences(self, paragraph: str) -> list[str]:
        """Pack the sentences of one oversized paragraph."""
        max_words = self.config.max_chunk_words
        sentences = [s.strip() for s in _SENTENCE_SPLIT.split(paragraph)]

        chunks = []
        current = []
        current_words = 0

        for sentence in sentences:
            if not sentence:
                continue
            sentence_words = count_words(sentence)

            if current and current_words + sentence_words > max_words:
                chunks.append(" ".join(current))
                current = []
                current_words = 0

            # A single sentence over the bound is kept whole
            current.append(sentence)
            current_words += sentence_words

        if current:
            chunks.append(" ".join(current))

        return chunks

    def apply_overlap(self, chunks: list[str]) -> list[str]:
        """Prefix each chunk with the last overlap_words words of its predecessor."""
        overlap = self.config.overlap_words
        if overlap < 1 or len(chunks) < 2:
            return list(chunks)

        result = [chunks[0]]
        for previous, chunk in zip(chunks, chunks[1:]):
            tail = previous.split()[-overlap:]
            result.append(" ".join(tail) + "\n\n" + chunk)
        return result


def chunk_text(text: str, max_chunk_words: int = 500, overlap_words: int = 50) -> list[str]:
    """Split text into overlapping chunks of at most max_chunk_words (before overlap)."""
    chunker = TextChunker(ChunkConfig(max_chunk_words=max_chunk_words, overlap_words=overlap_words))
    return chunker.split(text)


# CLI for testing
if __name__ == "__main__":
    import sys

    logging.basicConfig(level=logging.INFO)

    if len(sys.argv) < 2:
        print("Usage: python -m execution.knowledge_rag.chunker <text_file>")
        sys.exit(1)

    with open(sys.argv[1], encoding="utf-8") as f:
        chunks = chunk_text(f.read())

    print(f"\nCreated {len(chunks)} chunks:")
    for i, chunk in enumerate(chunks[:5]):
        print(f"\n--- Chunk {i} ({count_words(chunk)} words) ---")
        print(f"Content preview: {chunk[:200]}...")
