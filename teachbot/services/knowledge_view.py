"""
Read-only view over a bot's knowledge entries.
"""

from typing import Iterable, Iterator, List

from ..models.core import KnowledgeEntry


class KnowledgeStoreView:
    """Immutable snapshot of one bot's entries, in insertion order."""

    def __init__(self, entries: Iterable[KnowledgeEntry]):
        self._entries = tuple(entries)

    def __iter__(self) -> Iterator[KnowledgeEntry]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __bool__(self) -> bool:
        return bool(self._entries)

    def with_embeddings(self) -> List[KnowledgeEntry]:
        """Entries eligible for embedding retrieval."""
        return [entry for entry in self._entries if entry.has_embedding]

    @property
    def has_embeddings(self) -> bool:
        return any(entry.has_embedding for entry in self._entries)
