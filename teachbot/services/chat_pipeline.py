"""
Chat pipeline: answer one user message from a bot's taught knowledge.

embed -> rank -> gate -> assemble -> generate -> extract -> merge, strictly in order.
All store writes happen at the end of the turn so a cancelled turn leaves no
partial state behind.
"""

import re
import threading
import time
import uuid
from collections import OrderedDict
from typing import List, Optional, Sequence

from ..models.core import (AmbientContext, BotProfile, ChatAnswer, ConversationTurn, ImageContent, ImageRef,
                           MemoryCandidate, Role, ScoredEntry, UnansweredQuestion, UserMemory)
from ..utils.bedrock_embed import BedrockEmbed, sanitize_text
from ..utils.bedrock_llm import BedrockLLM
from ..utils.chat_store import ChatStore, ChatStoreError
from ..utils.config import AppConfig, config
from ..utils.logging_config import get_logger
from .confidence_gate import ConfidenceGate, GateDecision
from .knowledge_view import KnowledgeStoreView
from .memory_extraction import MemoryExtractor
from .memory_merger import MemoryMerger
from .prompt_assembler import PromptAssembler
from .response_generator import FallbackReason, ResponseGenerator
from .retrieval import Ranker, build_ranker

logger = get_logger(__name__)

SMALL_TALK_CONFIDENCE = 0.9

BASIC_CONVERSATION_PATTERNS = [
    re.compile(r'^(hi|hello|hey|greetings|good morning|good afternoon|good evening)[!.]?$', re.IGNORECASE),
    re.compile(r"^(how are you|how's it going|how do you do)\??$", re.IGNORECASE),
    re.compile(r'^(thank you|thanks|thx|ty)[!.]?$', re.IGNORECASE),
    re.compile(r'^(bye|goodbye|see you|farewell)[!.]?$', re.IGNORECASE),
    re.compile(r'^(what can you do|help|what do you do|your capabilities)\??$', re.IGNORECASE),
]


class ChatPipelineError(Exception):
    """Custom exception for chat pipeline errors."""
    pass


class PipelineCancelledError(ChatPipelineError):
    """The caller cancelled the turn before any writes were made."""
    pass


def is_basic_conversation(message: str) -> bool:
    return any(pattern.match(message.strip()) for pattern in BASIC_CONVERSATION_PATTERNS)


def basic_conversation_reply(message: str, bot: BotProfile) -> str:
    lowered = message.strip().lower()

    if re.match(r'^(hi|hello|hey|greetings|good )', lowered):
        return f"Hello! I'm {bot.name}. How can I help you today?"
    if re.match(r"^(how are you|how's it going|how do you do)", lowered):
        return f"I'm doing well, thank you for asking! I'm {bot.name} and I'm here to help."
    if re.match(r'^(thank you|thanks|thx|ty)', lowered):
        return "You're welcome! I'm happy to help."
    if re.match(r'^(bye|goodbye|see you|farewell)', lowered):
        return 'Goodbye! Feel free to come back if you have more questions.'
    if re.match(r'^(what can you do|help|what do you do|your capabilities)', lowered):
        persona = f'{bot.name}, {bot.description}' if bot.description else bot.name
        return f"I'm {persona}. I can answer questions and help you with information I've been trained on."
    return f"I'm {bot.name} and I'm here to help! What would you like to know?"


def _check_cancelled(cancel_event: Optional[threading.Event], stage: str) -> None:
    if cancel_event is not None and cancel_event.is_set():
        logger.info(f'Chat turn cancelled before {stage}')
        raise PipelineCancelledError(f'Chat turn cancelled before {stage}')


def _image_refs(entries: Sequence[ScoredEntry]) -> List[ImageRef]:
    refs = []
    for scored in entries:
        kind = scored.entry.kind
        if isinstance(kind, ImageContent):
            refs.append(ImageRef(entry_id=scored.entry.id, url=kind.url, alt_text=kind.alt_text, description=kind.description))
    return refs


class ChatPipeline:
    """Request-scoped chat turn orchestration over an injected store."""

    def __init__(self,
                 store: ChatStore,
                 ranker: Ranker,
                 generator: ResponseGenerator,
                 extractor: Optional[MemoryExtractor] = None,
                 merger: Optional[MemoryMerger] = None,
                 assembler: Optional[PromptAssembler] = None,
                 app_config: Optional[AppConfig] = None):
        """
        Initialize the chat pipeline.

        Args:
            store: Storage for bots, entries, sessions and memories
            ranker: Configured retrieval ranker
            generator: Answer generator
            extractor: Memory extractor; memory is not updated when None
            merger: Memory merger
            assembler: Prompt assembler
            app_config: AppConfig instance, uses default if None
        """
        app_config = app_config or config
        self.store = store
        self.ranker = ranker
        self.generator = generator
        self.extractor = extractor
        self.merger = merger or MemoryMerger()
        self.assembler = assembler or PromptAssembler(app_config.prompt)
        self.gates = {
            'embedding': ConfidenceGate(app_config.retrieval.embedding_min_confidence, 'embedding'),
            'keyword': ConfidenceGate(app_config.retrieval.keyword_min_confidence, 'keyword'),
        }

        logger.info(f'Initialized ChatPipeline with {type(ranker.strategy).__name__}')

    @classmethod
    def from_config(cls, store: ChatStore, app_config: Optional[AppConfig] = None) -> 'ChatPipeline':
        """Build a pipeline backed by Amazon Bedrock clients."""
        app_config = app_config or config
        embedder = BedrockEmbed(app_config.bedrock_embed) if app_config.retrieval.strategy != 'keyword' else None
        llm = BedrockLLM(app_config.bedrock_llm)
        extractor = MemoryExtractor(llm, app_config.bedrock_llm, app_config.memory) if app_config.memory.enabled else None
        return cls(store=store,
                   ranker=build_ranker(app_config.retrieval, embedder),
                   generator=ResponseGenerator(llm, app_config.bedrock_llm),
                   extractor=extractor,
                   app_config=app_config)

    def answer(self,
               bot_id: str,
               user_id: str,
               session_id: str,
               message: str,
               history: Optional[Sequence[ConversationTurn]] = None,
               ambient_context: Optional[AmbientContext] = None,
               cancel_event: Optional[threading.Event] = None) -> ChatAnswer:
        """Answer one user message.

        Args:
            bot_id: Bot being chatted with
            user_id: End user, owner of the memories
            session_id: Chat session the turn belongs to
            message: Raw user message
            history: Earlier turns, oldest first; read from the store when None
            ambient_context: Caller supplied location/time
            cancel_event: Set by the caller to abort the turn

        Returns:
            ChatAnswer

        Raises:
            ValueError: If the message is empty after sanitizing
            ChatPipelineError: If the bot does not exist
            PipelineCancelledError: If cancel_event was set before the write phase
        """
        start = time.monotonic()
        query = sanitize_text(message)
        if not query:
            raise ValueError('Message is required')

        bot = self.store.get_bot(bot_id)
        if bot is None:
            raise ChatPipelineError(f'Bot not found: {bot_id}')

        if history is None:
            history = self.store.get_turns(session_id)

        if is_basic_conversation(query):
            reply = basic_conversation_reply(query, bot)
            _check_cancelled(cancel_event, 'writes')
            self._save_turns(session_id, query, reply)
            return ChatAnswer(reply=reply,
                              confidence=SMALL_TALK_CONFIDENCE,
                              was_answered=True,
                              session_id=session_id,
                              response_time_ms=self._elapsed_ms(start))

        entries = KnowledgeStoreView(self.store.list_entries(bot_id))
        logger.debug(f'Found {len(entries)} knowledge entries for bot {bot_id}')

        if not entries:
            reply = self.generator.fallback_reply(FallbackReason.NO_TRAINING_DATA, bot)
            _check_cancelled(cancel_event, 'writes')
            self._record_unanswered(bot_id, session_id, query, 0.0)
            self._save_turns(session_id, query, reply)
            return ChatAnswer(reply=reply,
                              confidence=0.0,
                              was_answered=False,
                              session_id=session_id,
                              response_time_ms=self._elapsed_ms(start))

        _check_cancelled(cancel_event, 'retrieval')
        result = self.ranker.rank(query, entries)
        decision = self._gate(result.strategy).evaluate(result)

        memories = self._load_memories(user_id, bot_id)
        prompt = self.assembler.build(query, bot, decision.entries, history, ambient_context, memories)

        _check_cancelled(cancel_event, 'generation')
        reply = self.generator.generate(prompt, query, bot)

        candidates: List[MemoryCandidate] = []
        memory_context = ''
        if self.extractor is not None:
            _check_cancelled(cancel_event, 'memory extraction')
            extraction = self.extractor.extract(query, reply, history, memories)
            candidates = extraction.candidates
            memory_context = extraction.memory_context

        _check_cancelled(cancel_event, 'writes')
        if not decision.was_answered:
            self._record_unanswered(bot_id, session_id, query, decision.confidence)
        self._save_turns(session_id, query, reply)
        self._merge_memories(user_id, bot_id, candidates)

        answer = self._to_answer(decision, reply, session_id, memory_context, start)
        logger.info(f'Bot {bot_id} chat - Confidence: {answer.confidence:.2f}, Answered: {answer.was_answered}, '
                    f'Response time: {answer.response_time_ms}ms')
        return answer

    def _gate(self, strategy: str) -> ConfidenceGate:
        try:
            return self.gates[strategy]
        except KeyError:
            raise ChatPipelineError(f'No confidence gate configured for strategy {strategy!r}')

    def _load_memories(self, user_id: str, bot_id: str) -> List[UserMemory]:
        try:
            return self.store.list_memories(user_id, bot_id)
        except ChatStoreError as e:
            logger.warning(f'Failed to load memories for user {user_id}: {e}')
            return []

    def _record_unanswered(self, bot_id: str, session_id: str, question: str, confidence: float) -> None:
        try:
            self.store.record_unanswered(
                UnansweredQuestion(id=f'question_{uuid.uuid4().hex[:12]}',
                                   bot_id=bot_id,
                                   session_id=session_id,
                                   question=question,
                                   confidence=confidence))
        except ChatStoreError as e:
            logger.error(f'Error creating unanswered question: {e}')

    def _save_turns(self, session_id: str, message: str, reply: str) -> None:
        try:
            self.store.append_turns(session_id, [
                ConversationTurn(role=Role.USER, content=message),
                ConversationTurn(role=Role.BOT, content=reply),
            ])
        except ChatStoreError as e:
            logger.error(f'Error updating chat session {session_id}: {e}')

    def _merge_memories(self, user_id: str, bot_id: str, candidates: Sequence[MemoryCandidate]) -> None:
        """Read-merge-write each key inside its own critical section."""
        by_key: 'OrderedDict[str, List[MemoryCandidate]]' = OrderedDict()
        for candidate in candidates:
            by_key.setdefault(candidate.key, []).append(candidate)

        for key, group in by_key.items():
            try:
                with self.store.memory_lock(user_id, bot_id, key):
                    stored = self.store.get_memory(user_id, bot_id, key)
                    merged = self.merger.merge(group, [stored] if stored else [], user_id, bot_id)
                    for memory in merged.new_memories:
                        self.store.insert_memory(memory)
                    for memory in merged.updated_memories:
                        self.store.update_memory(memory)
            except ChatStoreError as e:
                logger.error(f'Failed to save memory {key!r} for user {user_id}: {e}')

    @staticmethod
    def _elapsed_ms(start: float) -> int:
        return int((time.monotonic() - start) * 1000)

    def _to_answer(self, decision: GateDecision, reply: str, session_id: str, memory_context: str,
                   start: float) -> ChatAnswer:
        return ChatAnswer(reply=reply,
                          confidence=decision.confidence,
                          was_answered=decision.was_answered,
                          session_id=session_id,
                          used_entry_ids=[scored.entry.id for scored in decision.entries],
                          images=_image_refs(decision.entries),
                          memory_context=memory_context,
                          response_time_ms=self._elapsed_ms(start))
