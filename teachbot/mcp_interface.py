"""
MCP Interface Layer using fastmcp to expose the chat pipeline.
"""
import dataclasses
from typing import Any, Dict, Optional

from fastmcp import FastMCP

from teachbot.services.chat_pipeline import ChatPipeline, ChatPipelineError
from teachbot.utils.bedrock_embed import BedrockEmbed
from teachbot.utils.chat_store import InMemoryChatStore, load_seed
from teachbot.utils.config import config
from teachbot.utils.health_check import get_health_status, validate_config
from teachbot.utils.logging_config import get_logger

logger = get_logger(__name__)

# Initialize FastMCP application
mcp = FastMCP('Knowledge Chat')

_pipeline: Optional[ChatPipeline] = None


def _get_pipeline() -> ChatPipeline:
    """Build the pipeline on first use so importing this module needs no AWS access."""
    global _pipeline
    if _pipeline is None:
        store = InMemoryChatStore()
        if config.seed_path:
            embedder = BedrockEmbed(config.bedrock_embed) if config.retrieval.strategy != 'keyword' else None
            load_seed(config.seed_path, store, embedder)
        _pipeline = ChatPipeline.from_config(store)
    return _pipeline


def answer_question(bot_id: str, user_id: str, session_id: str, message: str) -> Dict[str, Any]:
    """Answer a user's question from the bot's taught knowledge.

    Args:
        bot_id: Bot ID
        user_id: User ID, owner of the personalization memories
        session_id: Chat session ID
        message: The user's message

    Returns:
        Dictionary with reply, confidence, was_answered, used_entry_ids and images

    Raises:
        Exception: If the request is invalid or the bot does not exist
    """
    if not bot_id or not bot_id.strip():
        raise ValueError('Bot ID is required')
    if not user_id or not user_id.strip():
        raise ValueError('User ID is required')

    try:
        answer = _get_pipeline().answer(bot_id=bot_id, user_id=user_id, session_id=session_id, message=message)
    except ChatPipelineError as e:
        logger.error(f'Chat pipeline error in MCP answer: {e}')
        raise Exception(f'Answer failed: {e}')

    logger.debug(f'MCP answer for bot {bot_id}: answered={answer.was_answered}, confidence={answer.confidence:.2f}')
    return dataclasses.asdict(answer)


def health() -> Dict[str, Any]:
    """Report the health of the Bedrock services used by the pipeline."""
    return get_health_status()


mcp.tool()(answer_question)
mcp.tool()(health)


if __name__ == '__main__':
    validate_config()
    transport = config.mcp.transport
    host = config.mcp.host
    port = config.mcp.port
    mcp.run(transport=transport, host=host, port=port)
