"""
In-process keyword knowledge base.

Documents are split into paragraph chunks; a chunk's similarity to a query is
the fraction of distinct query keywords (stop words removed) it contains.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from adapters.retrieval.base import KnowledgeRetriever, KnowledgeSnippet
from constants import (
    KNOWLEDGE_CHUNK_MAX_CHARS,
    KNOWLEDGE_MIN_SIMILARITY,
    KNOWLEDGE_RESULT_LIMIT,
)

_TOKEN_RE = re.compile(r"[a-z0-9]+")

STOP_WORDS: frozenset[str] = frozenset({
    "a", "an", "and", "are", "as", "at", "be", "but", "by", "can", "do", "does",
    "for", "from", "have", "how", "i", "if", "in", "is", "it", "its", "me", "my",
    "of", "on", "or", "our", "so", "that", "the", "their", "there", "this", "to",
    "us", "was", "we", "what", "when", "where", "which", "who", "why", "will",
    "with", "you", "your",
})


def tokenize(text: str) -> set[str]:
    return {t for t in _TOKEN_RE.findall(text.lower()) if t not in STOP_WORDS}


def chunk_text(text: str, max_chars: int = KNOWLEDGE_CHUNK_MAX_CHARS) -> list[str]:
    """Split on blank lines; paragraphs longer than max_chars are cut at word boundaries."""
    chunks: list[str] = []
    for paragraph in re.split(r"\n\s*\n", text):
        paragraph = " ".join(paragraph.split())
        while len(paragraph) > max_chars:
            cut = paragraph.rfind(" ", 0, max_chars)
            if cut <= 0:
                cut = max_chars
            chunks.append(paragraph[:cut])
            paragraph = paragraph[cut:].strip()
        if paragraph:
            chunks.append(paragraph)
    return chunks


@dataclass(frozen=True)
class _Chunk:
    chunk_id: str
    document_id: str
    content: str
    tokens: frozenset[str]


class InMemoryKnowledgeBase(KnowledgeRetriever):
    """Workspace-scoped keyword retrieval over ingested documents."""

    def __init__(self) -> None:
        self._chunks: dict[str, list[_Chunk]] = {}

    def add_document(self, workspace_id: str, document_id: str, text: str) -> int:
        """Chunk and index a document. Re-adding a document replaces it."""
        kept = [c for c in self._chunks.get(workspace_id, []) if c.document_id != document_id]
        for i, content in enumerate(chunk_text(text)):
            kept.append(_Chunk(
                chunk_id=f"{document_id}:{i}",
                document_id=document_id,
                content=content,
                tokens=frozenset(tokenize(content)),
            ))
        self._chunks[workspace_id] = kept
        return sum(1 for c in kept if c.document_id == document_id)

    async def retrieve(
        self,
        workspace_id: str,
        query: str,
        *,
        limit: int = KNOWLEDGE_RESULT_LIMIT,
        min_similarity: float = KNOWLEDGE_MIN_SIMILARITY,
    ) -> list[KnowledgeSnippet]:
        query_tokens = tokenize(query)
        if not query_tokens or limit <= 0:
            return []

        results: list[KnowledgeSnippet] = []
        for chunk in self._chunks.get(workspace_id, []):
            similarity = len(query_tokens & chunk.tokens) / len(query_tokens)
            if similarity >= min_similarity:
                results.append(KnowledgeSnippet(
                    chunk_id=chunk.chunk_id,
                    document_id=chunk.document_id,
                    content=chunk.content,
                    similarity=similarity,
                ))

        results.sort(key=lambda r: (-r.similarity, r.chunk_id))
        return results[:limit]
