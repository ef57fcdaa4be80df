"""
Agent context builder

Builds the retrieval context block injected into an agent's reply prompt:
knowledge chunks for the question plus, when the contact is known, that
contact's memories. One query embedding is shared by both searches.
"""

import logging
from typing import Optional

from .config import KnowledgeConfig
from .errors import EmbeddingError
from .prompts import get_prompt

logger = logging.getLogger(__name__)

SECTION_SEPARATOR = "\n\n---\n\n"


class AgentContextBuilder:
    """Render knowledge and memory search results as prompt context."""

    def __init__(
        self,
        config: KnowledgeConfig,
        embeddings,
        store,
        knowledge_limit: int = 3,
        memory_limit: int = 3,
        threshold: float = 0.5,
    ):
        self.config = config
        self.embeddings = embeddings
        self.store = store
        self.knowledge_limit = knowledge_limit
        self.memory_limit = memory_limit
        self.threshold = threshold

    def build(
        self,
        query: str,
        owner_id: str,
        scope: Optional[str] = None,
        contact_id: Optional[str] = None,
    ) -> str:
        """
        Returns:
            Context text, or "" when nothing relevant was found or the
            query could not be embedded
        """
        if not query or not query.strip():
            return ""

        try:
            query_embedding = self.embeddings.embed(query)
        except EmbeddingError as e:
            logger.warning(f"Agent context skipped, query embedding failed: {e.message}")
            return ""

        sections = []
        language = self.config.language

        documents = self.store.similarity_search(
            query_embedding, owner_id, scope=scope,
            threshold=self.threshold, limit=self.knowledge_limit,
        )
        if documents:
            lines = [f"[Doc {i + 1}] {d.content}" for i, d in enumerate(documents)]
            sections.append(get_prompt(language, "knowledge_header") + "\n" + "\n\n".join(lines))

        if contact_id:
            memories = self.store.similarity_search_by_contact(
                query_embedding, owner_id, contact_id, scope=scope,
                threshold=self.threshold, limit=self.memory_limit,
            )
            if memories:
                lines = [f"[Mem {i + 1}] {m.content}" for i, m in enumerate(memories)]
                sections.append(get_prompt(language, "memory_header") + "\n" + "\n".join(lines))

        logger.info(f"Agent context: {len(sections)} sections for owner {owner_id}")
        return SECTION_SEPARATOR.join(sections)
