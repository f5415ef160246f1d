"""
Configuration management for AWS services and application settings.
"""

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


@dataclass
class BedrockLLMConfig:
    """Configuration for Amazon Bedrock LLM service."""
    region: str
    model_id: str
    max_tokens: int
    temperature: float
    extraction_max_tokens: int
    extraction_temperature: float
    retry_attempts: int
    retry_delay: float
    connect_timeout: int
    read_timeout: int


@dataclass
class BedrockEmbedConfig:
    """Configuration for Amazon Bedrock Embed service."""
    region: str
    model_id: str
    dimension: int
    max_input_chars: int
    retry_attempts: int
    retry_delay: float
    connect_timeout: int
    read_timeout: int


@dataclass
class RetrievalConfig:
    """Configuration for knowledge retrieval and confidence gating.

    The two minimum confidence values gate different scoring functions
    (cosine similarity vs. normalized keyword matches) and are not comparable.
    """
    strategy: str  # embedding | keyword | auto
    max_results: int
    primary_threshold: float
    fallback_threshold: float
    image_boost: float
    keyword_max_results: int
    embedding_min_confidence: float
    keyword_min_confidence: float


@dataclass
class PromptConfig:
    """Configuration for prompt assembly."""
    history_turns: int
    max_memories: int


@dataclass
class MemoryConfig:
    """Configuration for user memory extraction."""
    enabled: bool
    history_turns: int


@dataclass
class MCPConfig:
    """Configuration for MCP interface."""
    transport: str
    host: str
    port: int


@dataclass
class AppConfig:
    """Main application configuration."""
    environment: str
    log_level: str
    seed_path: Optional[str]
    bedrock_llm: BedrockLLMConfig
    bedrock_embed: BedrockEmbedConfig
    retrieval: RetrievalConfig
    prompt: PromptConfig
    memory: MemoryConfig
    mcp: MCPConfig


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ('1', 'true', 'yes', 'on')


def load_config() -> AppConfig:
    """Load configuration from environment variables with defaults."""
    environment = os.getenv('ENVIRONMENT', 'development')

    # Bedrock LLM configuration
    bedrock_llm_config = BedrockLLMConfig(
        region=os.getenv('BEDROCK_LLM_AWS_REGION', 'us-east-1'),
        model_id=os.getenv('BEDROCK_LLM_MODEL_ID', 'anthropic.claude-3-haiku-20240307-v1:0'),
        max_tokens=int(os.getenv('BEDROCK_LLM_MAX_TOKENS', '300')),
        temperature=float(os.getenv('BEDROCK_LLM_TEMPERATURE', '0.5')),
        extraction_max_tokens=int(os.getenv('BEDROCK_LLM_EXTRACTION_MAX_TOKENS', '800')),
        extraction_temperature=float(os.getenv('BEDROCK_LLM_EXTRACTION_TEMPERATURE', '0.1')),
        retry_attempts=int(os.getenv('BEDROCK_LLM_RETRY_ATTEMPTS', '3')),
        retry_delay=float(os.getenv('BEDROCK_LLM_RETRY_DELAY', '1.0')),
        connect_timeout=int(os.getenv('BEDROCK_LLM_CONNECT_TIMEOUT', '10')),
        read_timeout=int(os.getenv('BEDROCK_LLM_READ_TIMEOUT', '60')))

    # Bedrock Embed configuration
    bedrock_embed_config = BedrockEmbedConfig(
        region=os.getenv('BEDROCK_EMBED_AWS_REGION', 'us-east-1'),
        model_id=os.getenv('BEDROCK_EMBED_MODEL_ID', 'amazon.titan-embed-text-v2:0'),
        dimension=int(os.getenv('BEDROCK_EMBED_DIMENSION', '1024')),
        max_input_chars=int(os.getenv('BEDROCK_EMBED_MAX_INPUT_CHARS', '2000')),
        retry_attempts=int(os.getenv('BEDROCK_EMBED_RETRY_ATTEMPTS', '3')),
        retry_delay=float(os.getenv('BEDROCK_EMBED_RETRY_DELAY', '1.0')),
        connect_timeout=int(os.getenv('BEDROCK_EMBED_CONNECT_TIMEOUT', '5')),
        read_timeout=int(os.getenv('BEDROCK_EMBED_READ_TIMEOUT', '20')))

    # Retrieval configuration
    retrieval_config = RetrievalConfig(
        strategy=os.getenv('RETRIEVAL_STRATEGY', 'embedding').strip().lower(),
        max_results=int(os.getenv('RETRIEVAL_MAX_RESULTS', '5')),
        primary_threshold=float(os.getenv('RETRIEVAL_PRIMARY_THRESHOLD', '0.5')),
        fallback_threshold=float(os.getenv('RETRIEVAL_FALLBACK_THRESHOLD', '0.4')),
        image_boost=float(os.getenv('RETRIEVAL_IMAGE_BOOST', '0.1')),
        keyword_max_results=int(os.getenv('RETRIEVAL_KEYWORD_MAX_RESULTS', '3')),
        embedding_min_confidence=float(os.getenv('EMBEDDING_MIN_CONFIDENCE', '0.6')),
        keyword_min_confidence=float(os.getenv('KEYWORD_MIN_CONFIDENCE', '0.5')))

    # Prompt configuration
    prompt_config = PromptConfig(history_turns=int(os.getenv('PROMPT_HISTORY_TURNS', '6')),
                                 max_memories=int(os.getenv('PROMPT_MAX_MEMORIES', '10')))

    # Memory configuration
    memory_config = MemoryConfig(enabled=_env_bool('MEMORY_EXTRACTION_ENABLED', 'true'),
                                 history_turns=int(os.getenv('MEMORY_HISTORY_TURNS', '4')))

    # MCP configuration
    mcp_config = MCPConfig(transport=os.getenv('MCP_TRANSPORT', 'sse'),
                           host=os.getenv('MCP_HOST', '127.0.0.1'),
                           port=int(os.getenv('MCP_PORT', '8000')))

    return AppConfig(environment=environment,
                     log_level=os.getenv('LOG_LEVEL', 'INFO'),
                     seed_path=os.getenv('KNOWLEDGE_SEED_PATH') or None,
                     bedrock_llm=bedrock_llm_config,
                     bedrock_embed=bedrock_embed_config,
                     retrieval=retrieval_config,
                     prompt=prompt_config,
                     memory=memory_config,
                     mcp=mcp_config)


# Global configuration instance
config = load_config()
