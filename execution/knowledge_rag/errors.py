"""Exceptions raised by the knowledge base components."""


class KnowledgeBaseError(Exception):
    """Base exception for knowledge base errors."""

    def __init__(self, message: str, stage: str):
        self.message = message
        self.stage = stage
        super().__init__(message)


class ExtractionError(KnowledgeBaseError):
    """No usable text could be extracted from a file."""

    def __init__(self, message: str):
        super().__init__(message, "extraction")


class EmbeddingError(KnowledgeBaseError):
    """An embedding call failed or returned a malformed vector."""

    def __init__(self, message: str):
        super().__init__(message, "embedding")


class StoreError(KnowledgeBaseError):
    """A vector store operation failed after its reconnect attempt."""

    def __init__(self, message: str, stage: str = "store"):
        super().__init__(message, stage)


class ChunkPersistError(StoreError):
    """The store rejected a chunk insert."""

    def __init__(self, message: str, chunk_index: int = -1):
        self.chunk_index = chunk_index
        super().__init__(message, "chunk_persist")


class RerankError(KnowledgeBaseError):
    """The rerank model call failed or its answer could not be parsed."""

    def __init__(self, message: str):
        super().__init__(message, "rerank")


class OwnershipError(KnowledgeBaseError):
    """
    Requested resource does not exist for the caller.

    Raised both for missing and for foreign-owned resources so that callers
    cannot probe for the existence of other tenants' data.
    """

    def __init__(self, resource_type: str, resource_id: str):
        self.resource_type = resource_type
        self.resource_id = resource_id
        super().__init__(f"{resource_type} not found: {resource_id}", "ownership")
