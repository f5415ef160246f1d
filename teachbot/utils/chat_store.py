"""
Storage interface for bots, knowledge entries, chat sessions and user memories.

The pipeline only talks to ``ChatStore``; the in-memory implementation backs tests,
local runs and the MCP server when no external database is wired in.
"""

import copy
import json
import threading
import uuid
from abc import ABC, abstractmethod
from collections import defaultdict
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Tuple

from ..models.core import (BotProfile, ContextContent, ConversationTurn, ImageContent, KnowledgeEntry, QAContent,
                           UnansweredQuestion, UserMemory)
from .bedrock_embed import BedrockEmbed, BedrockEmbedError
from .logging_config import get_logger
from .timestamp_utils import parse_datetime, utc_now

logger = get_logger(__name__)


class ChatStoreError(Exception):
    """Custom exception for chat store errors."""
    pass


class ChatStore(ABC):
    """Storage accessors used by the chat pipeline."""

    def __init__(self):
        self._locks_guard = threading.Lock()
        # key -> [lock, holders and waiters]; dropped when the count reaches zero
        self._memory_locks: Dict[Tuple[str, str, str], List] = {}

    @contextmanager
    def memory_lock(self, user_id: str, bot_id: str, key: str) -> Iterator[None]:
        """Critical section for read-merge-write of one memory key.

        Process-local; stores shared between processes must override this.
        """
        lock_key = (user_id, bot_id, key)
        with self._locks_guard:
            slot = self._memory_locks.setdefault(lock_key, [threading.Lock(), 0])
            slot[1] += 1
        try:
            with slot[0]:
                yield
        finally:
            with self._locks_guard:
                slot[1] -= 1
                if slot[1] == 0:
                    del self._memory_locks[lock_key]

    @abstractmethod
    def get_bot(self, bot_id: str) -> Optional[BotProfile]:
        ...

    @abstractmethod
    def list_entries(self, bot_id: str) -> List[KnowledgeEntry]:
        ...

    @abstractmethod
    def list_memories(self, user_id: str, bot_id: str) -> List[UserMemory]:
        ...

    @abstractmethod
    def get_memory(self, user_id: str, bot_id: str, key: str) -> Optional[UserMemory]:
        ...

    @abstractmethod
    def insert_memory(self, memory: UserMemory) -> None:
        ...

    @abstractmethod
    def update_memory(self, memory: UserMemory) -> None:
        ...

    @abstractmethod
    def get_turns(self, session_id: str) -> List[ConversationTurn]:
        ...

    @abstractmethod
    def append_turns(self, session_id: str, turns: List[ConversationTurn]) -> None:
        ...

    @abstractmethod
    def record_unanswered(self, question: UnansweredQuestion) -> None:
        ...

    @abstractmethod
    def list_unanswered(self, bot_id: str) -> List[UnansweredQuestion]:
        ...


class InMemoryChatStore(ChatStore):
    """Thread-safe in-process store. Reads return copies."""

    def __init__(self):
        super().__init__()
        self._lock = threading.RLock()
        self._bots: Dict[str, BotProfile] = {}
        self._entries: Dict[str, Dict[str, KnowledgeEntry]] = defaultdict(dict)
        self._memories: Dict[Tuple[str, str], Dict[str, UserMemory]] = defaultdict(dict)
        self._sessions: Dict[str, List[ConversationTurn]] = defaultdict(list)
        self._unanswered: Dict[str, List[UnansweredQuestion]] = defaultdict(list)

    def add_bot(self, bot: BotProfile) -> None:
        with self._lock:
            self._bots[bot.id] = copy.deepcopy(bot)

    def add_entry(self, entry: KnowledgeEntry) -> None:
        with self._lock:
            self._entries[entry.bot_id][entry.id] = copy.deepcopy(entry)

    def get_bot(self, bot_id: str) -> Optional[BotProfile]:
        with self._lock:
            bot = self._bots.get(bot_id)
            return copy.deepcopy(bot) if bot else None

    def list_entries(self, bot_id: str) -> List[KnowledgeEntry]:
        with self._lock:
            return [copy.deepcopy(entry) for entry in self._entries.get(bot_id, {}).values()]

    def list_memories(self, user_id: str, bot_id: str) -> List[UserMemory]:
        with self._lock:
            return [copy.deepcopy(memory) for memory in self._memories.get((user_id, bot_id), {}).values()]

    def get_memory(self, user_id: str, bot_id: str, key: str) -> Optional[UserMemory]:
        with self._lock:
            memory = self._memories.get((user_id, bot_id), {}).get(key)
            return copy.deepcopy(memory) if memory else None

    def insert_memory(self, memory: UserMemory) -> None:
        with self._lock:
            memories = self._memories[(memory.user_id, memory.bot_id)]
            if memory.key in memories:
                raise ChatStoreError(f'Memory {memory.key!r} already exists for user {memory.user_id}')
            memories[memory.key] = copy.deepcopy(memory)

    def update_memory(self, memory: UserMemory) -> None:
        with self._lock:
            memories = self._memories[(memory.user_id, memory.bot_id)]
            if memory.key not in memories:
                raise ChatStoreError(f'Memory {memory.key!r} does not exist for user {memory.user_id}')
            memories[memory.key] = copy.deepcopy(memory)

    def get_turns(self, session_id: str) -> List[ConversationTurn]:
        with self._lock:
            return [copy.deepcopy(turn) for turn in self._sessions.get(session_id, [])]

    def append_turns(self, session_id: str, turns: List[ConversationTurn]) -> None:
        with self._lock:
            self._sessions[session_id].extend(copy.deepcopy(turns))

    def record_unanswered(self, question: UnansweredQuestion) -> None:
        with self._lock:
            self._unanswered[question.bot_id].append(copy.deepcopy(question))

    def list_unanswered(self, bot_id: str) -> List[UnansweredQuestion]:
        with self._lock:
            return [copy.deepcopy(question) for question in self._unanswered.get(bot_id, [])]


def _entry_from_dict(bot_id: str, data: dict) -> KnowledgeEntry:
    entry_type = data.get('type', 'qa')
    if entry_type == 'qa':
        kind = QAContent(question=data['question'], answer=data['answer'])
    elif entry_type == 'context':
        kind = ContextContent(block=data['block'])
    elif entry_type == 'image':
        kind = ImageContent(description=data.get('description', ''), alt_text=data.get('alt_text', ''), url=data['url'])
    else:
        raise ChatStoreError(f'Unknown entry type: {entry_type}')

    created_at = parse_datetime(data.get('created_at')) or utc_now()
    return KnowledgeEntry(id=data.get('id') or str(uuid.uuid4()),
                          bot_id=bot_id,
                          kind=kind,
                          embedding=[float(x) for x in data.get('embedding') or []],
                          keywords=list(data.get('keywords') or []),
                          category=data.get('category'),
                          summary=data.get('summary'),
                          created_at=created_at,
                          updated_at=parse_datetime(data.get('updated_at')) or created_at)


def load_seed(path: str, store: InMemoryChatStore, embedder: Optional[BedrockEmbed] = None) -> int:
    """Load bots and their entries from a JSON seed file.

    Format: ``{"bots": [{"id", "name", "description", "entries": [...]}]}``.
    Entries without an embedding are embedded when an embedder is given; if that
    fails they are kept without one and only the keyword strategy can match them.

    Returns:
        Number of entries loaded

    Raises:
        ChatStoreError: If the file cannot be read or parsed
    """
    try:
        data = json.loads(Path(path).read_text(encoding='utf-8'))
    except (OSError, json.JSONDecodeError) as e:
        raise ChatStoreError(f'Failed to load seed file {path}: {e}')

    count = 0
    for bot_data in data.get('bots', []):
        try:
            bot = BotProfile(id=bot_data['id'], name=bot_data['name'], description=bot_data.get('description', ''))
            entries = [_entry_from_dict(bot.id, entry_data) for entry_data in bot_data.get('entries', [])]
        except KeyError as e:
            raise ChatStoreError(f'Seed file {path} is missing field {e}')
        store.add_bot(bot)

        for entry in entries:
            if not entry.has_embedding and embedder is not None:
                try:
                    entry.embedding = embedder.embed_document(entry.text)
                except BedrockEmbedError as e:
                    logger.warning(f'Failed to embed seed entry {entry.id}: {e}')
            store.add_entry(entry)
            count += 1

    logger.info(f'Loaded {count} knowledge entries from {path}')
    return count
