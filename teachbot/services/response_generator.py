"""
Answer generation with fixed fallback replies.
"""

from enum import Enum
from typing import Optional

from ..models.core import BotProfile
from ..utils.bedrock_llm import BedrockLLM, BedrockLLMError
from ..utils.config import BedrockLLMConfig
from ..utils.logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_BOT_NAME = 'your assistant'
REPHRASE_REPLY = "I'm here to help! Could you please rephrase your question?"


class FallbackReason(str, Enum):
    NO_TRAINING_DATA = 'no_training_data'
    PROCESSING_FAILURE = 'processing_failure'


class ResponseGenerator:
    """Sends assembled prompts to the LLM; never raises service errors to the chat."""

    def __init__(self, llm: BedrockLLM, config: BedrockLLMConfig):
        self.llm = llm
        self.config = config

    def generate(self, prompt: str, user_message: str, bot: Optional[BotProfile] = None) -> str:
        """
        Generate the bot reply.

        Args:
            prompt: Assembled system prompt
            user_message: The user's message
            bot: Persona used in fallback replies

        Returns:
            Reply text, or a fixed apology when generation fails
        """
        try:
            reply = self.llm.complete(system_prompt=prompt,
                                      user_message=user_message,
                                      temperature=self.config.temperature,
                                      max_tokens=self.config.max_tokens)
        except BedrockLLMError as e:
            logger.error(f'Answer generation failed: {e}')
            return self.fallback_reply(FallbackReason.PROCESSING_FAILURE, bot)

        reply = reply.strip()
        if not reply:
            logger.warning('LLM returned an empty reply')
            return REPHRASE_REPLY
        return reply

    @staticmethod
    def fallback_reply(reason: FallbackReason, bot: Optional[BotProfile] = None) -> str:
        name = bot.name if bot else DEFAULT_BOT_NAME
        if reason == FallbackReason.NO_TRAINING_DATA:
            return (f"I'm {name} and I'm still learning! I don't have any training data yet. "
                    'Please ask my creator to train me with some information first.')
        return (f"I'm {name} and I'm having trouble processing your request right now. "
                'Please try again in a moment, or contact my creator if the problem persists.')
