"""
Prompt assembly for answer generation.
"""

from typing import List, Optional, Sequence

from ..models.core import (AmbientContext, BotProfile, ContextContent, ConversationTurn, ImageContent, QAContent, Role,
                           ScoredEntry, UserMemory)
from ..utils.config import PromptConfig
from ..utils.timestamp_utils import format_local_time

OUTPUT_INSTRUCTIONS = """Instructions:
- Never include raw image URLs or links to images in your reply. Images are displayed to the user separately; refer to them naturally (for example "here is our menu").
- Use what you know about the user to personalize the reply, such as addressing them by name, but do not repeat their details back unprompted.
- Keep the reply conversational and under 100 words."""  # noqa: E501


def _persona(bot: BotProfile) -> str:
    return f'You are {bot.name}, {bot.description}.' if bot.description else f'You are {bot.name}.'


def render_entry(scored: ScoredEntry) -> str:
    """Render one knowledge entry for the prompt."""
    kind = scored.entry.kind
    if isinstance(kind, QAContent):
        return f'Q: {kind.question}\nA: {kind.answer}'
    if isinstance(kind, ContextContent):
        return f'Information: {kind.block}'
    if isinstance(kind, ImageContent):
        description = kind.description or kind.alt_text
        return (f'Image: {description}\n'
                'Note: This is an image. It will be displayed to the user with your reply, so mention it naturally.')
    raise TypeError(f'Unknown knowledge entry kind: {type(kind).__name__}')


def format_history(history: Sequence[ConversationTurn], max_turns: int) -> str:
    """Last ``max_turns`` turns as User:/Assistant: lines; empty when there is no history."""
    if not history or max_turns <= 0:
        return ''
    lines = []
    for turn in list(history)[-max_turns:]:
        speaker = 'User' if turn.role == Role.USER else 'Assistant'
        lines.append(f'{speaker}: {turn.content}')
    return '\n'.join(lines)


def format_ambient(ambient: Optional[AmbientContext]) -> str:
    if ambient is None:
        return ''
    return '\n'.join([
        f'- Location: {ambient.city}, {ambient.country}',
        f'- Local time: {format_local_time(ambient.local_time)}' + (f' ({ambient.timezone})' if ambient.timezone else ''),
        f'- Day: {ambient.day_of_week}',
        f'- Meal time: {ambient.meal_time_description}',
    ])


def format_memory_context(memories: Sequence[UserMemory], max_memories: int = 10) -> str:
    """Most important memories first, as '- key: value' lines."""
    if not memories:
        return ''
    ranked = sorted(memories, key=lambda m: (m.importance, m.confidence, m.last_updated), reverse=True)
    return '\n'.join(f'- {m.key}: {m.value} ({m.memory_type.value})' for m in ranked[:max_memories])


class PromptAssembler:
    """Builds the system prompt for one chat turn."""

    def __init__(self, config: PromptConfig):
        self.config = config

    def build(self,
              query: str,
              bot: BotProfile,
              entries: List[ScoredEntry],
              history: Optional[Sequence[ConversationTurn]] = None,
              ambient: Optional[AmbientContext] = None,
              memories: Optional[Sequence[UserMemory]] = None) -> str:
        """
        Assemble the generation prompt.

        Args:
            query: The user's message
            bot: Persona of the answering bot
            entries: Ranked knowledge entries to answer from
            history: Conversation so far, oldest first
            ambient: Caller supplied location/time
            memories: What is known about the user

        Returns:
            Prompt text
        """
        if not entries:
            return self.build_decline(query, bot)

        sections = [
            f'{_persona(bot)} Answer the user\'s question using only the information below. '
            'If the information does not cover the question, say so politely.',
            'Relevant information:\n' + '\n\n'.join(render_entry(scored) for scored in entries),
        ]

        conversation = format_history(history or [], self.config.history_turns)
        if conversation:
            sections.append(f'Recent conversation:\n{conversation}')

        ambient_block = format_ambient(ambient)
        if ambient_block:
            sections.append(f'User context:\n{ambient_block}')

        memory_block = format_memory_context(memories or [], self.config.max_memories)
        if memory_block:
            sections.append(f'What you know about this user:\n{memory_block}')

        sections.append(OUTPUT_INSTRUCTIONS)
        return '\n\n'.join(sections)

    def build_decline(self, query: str, bot: BotProfile) -> str:
        """Prompt used when nothing relevant was retrieved."""
        return '\n\n'.join([
            f'{_persona(bot)} You have not been taught anything that answers the user\'s question: "{query}".',
            'Politely tell the user you do not have information about that, and suggest they ask about '
            'something else you have been trained on. Do not guess or invent an answer.',
            OUTPUT_INSTRUCTIONS,
        ])
