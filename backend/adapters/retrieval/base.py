"""
Knowledge retrieval contract.

Consumed only by the live path to enrich recommendations with a few
workspace-specific snippets.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass

from constants import KNOWLEDGE_MIN_SIMILARITY, KNOWLEDGE_RESULT_LIMIT


@dataclass(frozen=True)
class KnowledgeSnippet:
    chunk_id: str
    document_id: str
    content: str
    similarity: float


class KnowledgeRetriever(ABC):
    """Ranked free-text lookup scoped to one workspace."""

    @abstractmethod
    async def retrieve(
        self,
        workspace_id: str,
        query: str,
        *,
        limit: int = KNOWLEDGE_RESULT_LIMIT,
        min_similarity: float = KNOWLEDGE_MIN_SIMILARITY,
    ) -> list[KnowledgeSnippet]:
        """
        Return at most `limit` snippets with similarity >= min_similarity,
        best first.
        """
        raise NotImplementedError
