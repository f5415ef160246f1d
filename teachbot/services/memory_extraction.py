"""
Memory Extraction Service: derive user memories from a conversation turn.
"""

import json
import re
from typing import List, Optional, Sequence

from ..models.core import ConversationTurn, ExtractionResult, MemoryCandidate, MemoryType, Role, UserMemory
from ..utils.bedrock_llm import BedrockLLM, BedrockLLMError, text_message
from ..utils.config import BedrockLLMConfig, MemoryConfig
from ..utils.json_utils import parse_json_object
from ..utils.logging_config import get_logger

logger = get_logger(__name__)

_KEY_RE = re.compile(r'[^a-z0-9]+')

DEFAULT_IMPORTANCE = 5

SYSTEM_PROMPT = """
You are a memory extraction system for a chatbot. From the conversation, extract facts about the USER that will help answer their future questions.

Memory types:
- personal: name, age, hometown, family, occupation
- academic: school, department, year of study, courses, grades
- preference: likes, dislikes, dietary needs, preferred language or format
- context: the user's current situation or goal (e.g. "visiting next week")
- fact: any other stable fact about the user

Rules:
- Only extract facts the user clearly stated or strongly implied. Never speculate or infer beyond the text.
- Ignore facts about the assistant or the business.
- Use short snake_case keys such as "name", "department", "dietary_preference".
- When a fact corrects one of the known memories, reuse the same key.
- confidence is between 0.0 and 1.0; importance is an integer from 1 (trivia) to 10 (essential).

Return JSON with this exact format:
```json
{
  "memories": [
    {
      "key": "name",
      "value": "John",
      "memory_type": "personal|academic|preference|context|fact",
      "importance": 8,
      "confidence": 0.9
    }
  ],
  "memory_context": "One or two sentences summarizing what is known about the user."
}
```

Return {"memories": [], "memory_context": ""} if there is nothing to extract."""  # noqa: E501


def normalize_key(key: str) -> str:
    return _KEY_RE.sub('_', (key or '').strip().lower()).strip('_')


class MemoryExtractor:
    """Extract memory candidates from one (message, reply) exchange using Bedrock LLMs."""

    def __init__(self, llm: BedrockLLM, llm_config: BedrockLLMConfig, memory_config: MemoryConfig):
        """Initialize the memory extraction service."""
        self.llm = llm
        self.llm_config = llm_config
        self.memory_config = memory_config

        logger.info('Initialized MemoryExtractor')

    def extract(self,
                message: str,
                reply: str,
                history: Optional[Sequence[ConversationTurn]] = None,
                existing: Optional[Sequence[UserMemory]] = None) -> ExtractionResult:
        """Extract memories from the current exchange.

        Args:
            message: Current user message
            reply: Bot reply to that message
            history: Earlier turns of the session, oldest first
            existing: Memories already stored for the user

        Returns:
            ExtractionResult; empty when the LLM fails or returns malformed output
        """
        if not message or not message.strip():
            logger.debug('Empty message provided for memory extraction')
            return ExtractionResult()

        existing = list(existing or [])
        user_message = self._build_user_message(message, reply, history or [], existing)
        # The assistant prefill makes the model continue inside a JSON code block
        llm_messages = [text_message('user', user_message), text_message('assistant', '```json')]

        try:
            response, _ = self.llm.generate_response(messages=llm_messages,
                                                     system_prompt=SYSTEM_PROMPT,
                                                     max_tokens=self.llm_config.extraction_max_tokens,
                                                     temperature=self.llm_config.extraction_temperature,
                                                     stop_sequences=['```'])
        except BedrockLLMError as e:
            logger.error(f'LLM error during memory extraction: {e}')
            return ExtractionResult()

        try:
            data = parse_json_object(response)
        except json.JSONDecodeError as e:
            logger.error(f'Failed to parse memory extraction JSON: {e}')
            return ExtractionResult()

        items = data.get('memories', [])
        if not isinstance(items, list):
            logger.warning(f'Expected list of memories, got {type(items)}')
            items = []

        existing_keys = {memory.key for memory in existing}
        result = ExtractionResult(memory_context=str(data.get('memory_context') or '').strip())
        for item in items:
            candidate = self._parse_candidate(item, message)
            if candidate is None:
                continue
            if candidate.key in existing_keys:
                result.update_candidates.append(candidate)
            else:
                result.new_memories.append(candidate)

        logger.debug(f'Extracted {len(result.new_memories)} new and {len(result.update_candidates)} updated memories')
        return result

    def _build_user_message(self, message: str, reply: str, history: Sequence[ConversationTurn],
                            existing: List[UserMemory]) -> str:
        turns = list(history)[-self.memory_config.history_turns:] if self.memory_config.history_turns > 0 else []
        conversation = [f'{"User" if turn.role == Role.USER else "Assistant"}: {turn.content}' for turn in turns]
        conversation.append(f'User: {message}')
        if reply:
            conversation.append(f'Assistant: {reply}')

        if existing:
            known = '\n'.join(f'- {m.key} = {m.value} ({m.memory_type.value}, confidence {m.confidence:.2f})'
                              for m in existing)
        else:
            known = '(none)'
        transcript = '\n'.join(conversation)

        return f"""## Known memories
{known}

## Conversation
{transcript}

Extract memories about the user from the latest exchange."""

    @staticmethod
    def _parse_candidate(item, message: str) -> Optional[MemoryCandidate]:
        if not isinstance(item, dict):
            return None

        key = normalize_key(str(item.get('key', '')))
        value = str(item.get('value', '') or '').strip()
        if not key or not value:
            return None

        try:
            memory_type = MemoryType(str(item.get('memory_type', '')).strip().lower())
        except ValueError:
            memory_type = MemoryType.FACT

        # Validate confidence
        try:
            confidence = float(item.get('confidence', 0.0))
            if not 0.0 <= confidence <= 1.0:
                confidence = 0.0
        except (ValueError, TypeError):
            confidence = 0.0

        try:
            importance = min(10, max(1, int(item.get('importance', DEFAULT_IMPORTANCE))))
        except (ValueError, TypeError):
            importance = DEFAULT_IMPORTANCE

        return MemoryCandidate(key=key,
                               value=value,
                               memory_type=memory_type,
                               importance=importance,
                               confidence=confidence,
                               extracted_from=message)
