"""
Core data models for the knowledge chat pipeline.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional, Union

from ..utils.timestamp_utils import (day_of_week, get_meal_time, get_meal_time_description, is_daytime,
                                     utc_now)


@dataclass
class QAContent:
    """A taught question and its answer."""
    question: str
    answer: str


@dataclass
class ContextContent:
    """A free-text block of taught context."""
    block: str


@dataclass
class ImageContent:
    """A taught image, described in text for retrieval."""
    description: str
    alt_text: str
    url: str


EntryKind = Union[QAContent, ContextContent, ImageContent]


@dataclass
class KnowledgeEntry:
    """One unit of taught knowledge owned by a single bot."""
    id: str
    bot_id: str
    kind: EntryKind
    embedding: List[float] = field(default_factory=list)
    keywords: List[str] = field(default_factory=list)
    category: Optional[str] = None
    summary: Optional[str] = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    @property
    def has_embedding(self) -> bool:
        return bool(self.embedding)

    @property
    def is_image(self) -> bool:
        return isinstance(self.kind, ImageContent)

    @property
    def text(self) -> str:
        """Searchable text of the entry."""
        kind = self.kind
        if isinstance(kind, QAContent):
            return f'{kind.question} {kind.answer}'
        if isinstance(kind, ContextContent):
            return kind.block
        if isinstance(kind, ImageContent):
            return f'{kind.description} {kind.alt_text}'
        raise TypeError(f'Unknown knowledge entry kind: {type(kind).__name__}')


@dataclass
class ScoredEntry:
    """A knowledge entry annotated with the score of one ranking pass."""
    entry: KnowledgeEntry
    score: float


@dataclass
class RetrievalBudget:
    """Limits applied by a ranking pass."""
    max_results: int
    primary_threshold: float
    fallback_threshold: float


@dataclass
class RetrievalResult:
    """Ranked entries (highest first) and the confidence of the ranking."""
    entries: List[ScoredEntry]
    confidence: float
    strategy: str = ''

    @property
    def entry_ids(self) -> List[str]:
        return [scored.entry.id for scored in self.entries]


class Role(str, Enum):
    USER = 'user'
    BOT = 'bot'


@dataclass
class ConversationTurn:
    """One message of a chat session."""
    role: Role
    content: str
    timestamp: datetime = field(default_factory=utc_now)


class MemoryType(str, Enum):
    PERSONAL = 'personal'
    ACADEMIC = 'academic'
    PREFERENCE = 'preference'
    CONTEXT = 'context'
    FACT = 'fact'


@dataclass
class UserMemory:
    """A remembered fact about a user with respect to one bot.

    At most one memory exists per (user_id, bot_id, key). ``is_verified`` is
    reserved for an explicit user confirmation flow and is never set by extraction.
    """
    id: str
    user_id: str
    bot_id: str
    key: str
    value: str
    memory_type: MemoryType
    confidence: float
    importance: int
    is_verified: bool = False
    extracted_from: str = ''
    first_mentioned: datetime = field(default_factory=utc_now)
    last_updated: datetime = field(default_factory=utc_now)


@dataclass
class MemoryCandidate:
    """A memory proposed by extraction, not yet reconciled with storage."""
    key: str
    value: str
    memory_type: MemoryType
    importance: int
    confidence: float
    extracted_from: str


@dataclass
class ExtractionResult:
    """Output of one memory extraction pass."""
    new_memories: List[MemoryCandidate] = field(default_factory=list)
    update_candidates: List[MemoryCandidate] = field(default_factory=list)
    memory_context: str = ''

    @property
    def candidates(self) -> List[MemoryCandidate]:
        return self.new_memories + self.update_candidates


@dataclass
class MergeResult:
    """Disjoint sets of memories to insert and to update."""
    new_memories: List[UserMemory] = field(default_factory=list)
    updated_memories: List[UserMemory] = field(default_factory=list)


@dataclass
class AmbientContext:
    """Caller-supplied location and local time of the end user."""
    city: str
    country: str
    local_time: datetime
    timezone: str = ''

    @property
    def day_of_week(self) -> str:
        return day_of_week(self.local_time)

    @property
    def is_daytime(self) -> bool:
        return is_daytime(self.local_time.hour)

    @property
    def meal_time(self) -> str:
        return get_meal_time(self.local_time.hour)

    @property
    def meal_time_description(self) -> str:
        return get_meal_time_description(self.meal_time)


@dataclass
class BotProfile:
    id: str
    name: str
    description: str = ''


@dataclass
class UnansweredQuestion:
    """A question the bot could not answer, kept for operator follow-up."""
    id: str
    bot_id: str
    session_id: str
    question: str
    confidence: float
    asked_at: datetime = field(default_factory=utc_now)
    is_answered: bool = False


@dataclass
class ImageRef:
    """An image the caller should display alongside the reply."""
    entry_id: str
    url: str
    alt_text: str
    description: str


@dataclass
class ChatAnswer:
    """Result of one chat turn."""
    reply: str
    confidence: float
    was_answered: bool
    session_id: str
    used_entry_ids: List[str] = field(default_factory=list)
    images: List[ImageRef] = field(default_factory=list)
    memory_context: str = ''
    response_time_ms: int = 0
