"""
Contact Memory - per-contact facts and conversation summaries

Stores short texts about a contact with their embedding and recalls the most
similar ones for a query. Works like knowledge retrieval with an extra
contact filter and no rerank path.
"""

import uuid
import logging
from datetime import datetime, timezone
from typing import Optional

from .config import KnowledgeConfig
from .errors import KnowledgeBaseError
from .prompts import get_prompt
from .retriever import validate_query
from .vector_store import ContactMemory, MemoryResult

logger = logging.getLogger(__name__)


class ContactMemoryService:
    """Save and search memories about contacts."""

    def __init__(self, config: KnowledgeConfig, embeddings, store, client=None):
        self.config = config
        self.embeddings = embeddings
        self.store = store
        self._client = client
        if self._client is None and self.config.openai_api_key:
            self._client = self.config.create_llm_client()

    def save_memory(
        self,
        contact_id: str,
        content: str,
        owner_id: str,
        scope: Optional[str] = None,
        memory_type: str = "conversation_summary",
        metadata: Optional[dict] = None,
    ) -> str:
        """
        Embed and store one memory.

        Returns:
            The new memory id

        Raises:
            ValueError: Blank contact, content or owner
            EmbeddingError: The content could not be embedded (nothing stored)
        """
        for value, name in ((contact_id, "contact_id"), (content, "content"), (owner_id, "owner_id")):
            if not value or not str(value).strip():
                raise ValueError(f"{name} is required")

        memory = ContactMemory(
            memory_id=str(uuid.uuid4()),
            contact_id=contact_id,
            owner_id=owner_id,
            scope=scope,
            content=content.strip(),
            memory_type=memory_type or "conversation_summary",
            metadata=metadata or {},
        )
        memory.embedding = self.embeddings.embed(memory.content)
        self.store.insert_memory(memory)
        logger.info(f"Saved {memory.memory_type} memory for contact {contact_id}")
        return memory.memory_id

    def search_memories(
        self,
        contact_id: str,
        query: str,
        owner_id: str,
        scope: Optional[str] = None,
        threshold: float = 0.5,
        limit: int = 3,
    ) -> list[MemoryResult]:
        """Return the contact's memories most similar to the query."""
        validate_query(query, threshold, limit)
        if not contact_id or not owner_id:
            raise ValueError("contact_id and owner_id are required")

        query_embedding = self.embeddings.embed(query)
        results = self.store.similarity_search_by_contact(
            query_embedding, owner_id, contact_id,
            scope=scope, threshold=threshold, limit=limit,
        )
        logger.info(f"Memory search returned {len(results)} results for contact {contact_id}")
        return results

    def remember_conversation(
        self,
        contact_id: str,
        conversation_context: str,
        owner_id: str,
        scope: Optional[str] = None,
    ) -> Optional[str]:
        """
        Summarize a conversation into 1-2 sentences and save it as a memory.

        Returns:
            The new memory id, or None when the model produced no summary
        """
        if not conversation_context or not conversation_context.strip():
            raise ValueError("conversation_context is required")
        if not self._client:
            raise KnowledgeBaseError("Summary client not initialized. Check OPENAI_API_KEY.", "summary")

        from openai import OpenAIError

        try:
            response = self._client.chat.completions.create(
                model=self.config.summary_model,
                messages=[
                    {"role": "system", "content": get_prompt(self.config.language, "summarize_conversation_system")},
                    {"role": "user", "content": conversation_context},
                ],
                temperature=0.2,
                max_tokens=200,
            )
        except OpenAIError as e:
            logger.error(f"Conversation summary failed: {e}")
            raise KnowledgeBaseError(f"Conversation summary failed: {e}", "summary")

        choices = getattr(response, "choices", None)
        summary = getattr(getattr(choices[0], "message", None), "content", None) if choices else None
        if not isinstance(summary, str) or not summary.strip():
            logger.info(f"Empty summary for contact {contact_id}, nothing saved")
            return None

        return self.save_memory(
            contact_id=contact_id,
            content=summary,
            owner_id=owner_id,
            scope=scope,
            metadata={
                "created_from": "conversation_summary",
                "timestamp": datetime.now(timezone.utc).isoformat(),
            },
        )
