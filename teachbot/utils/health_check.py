"""
Health check and startup validation utilities for the application.
"""

from typing import Any, Dict, List, Optional

import boto3

from .bedrock_embed import BedrockEmbed, BedrockEmbedError
from .bedrock_llm import BedrockLLM, BedrockLLMError
from .config import AppConfig, config
from .logging_config import get_logger

logger = get_logger(__name__)

VALID_STRATEGIES = ('embedding', 'keyword', 'auto')


class ConfigurationError(Exception):
    """Raised at startup when the application cannot be configured."""
    pass


def validate_config(app_config: Optional[AppConfig] = None, check_credentials: bool = True) -> None:
    """Fail loudly on configuration problems instead of degrading per request.

    Args:
        app_config: AppConfig instance, uses default if None
        check_credentials: Also require AWS credentials to be resolvable

    Raises:
        ConfigurationError: Listing every problem found
    """
    app_config = app_config or config
    problems: List[str] = []
    retrieval = app_config.retrieval

    if retrieval.strategy not in VALID_STRATEGIES:
        problems.append(f'RETRIEVAL_STRATEGY must be one of {", ".join(VALID_STRATEGIES)}, got {retrieval.strategy!r}')
    if not retrieval.fallback_threshold < retrieval.primary_threshold:
        problems.append('RETRIEVAL_FALLBACK_THRESHOLD must be lower than RETRIEVAL_PRIMARY_THRESHOLD')
    if retrieval.max_results < 1 or retrieval.keyword_max_results < 1:
        problems.append('Retrieval result limits must be at least 1')

    if not app_config.bedrock_llm.model_id:
        problems.append('BEDROCK_LLM_MODEL_ID is not set')
    if not app_config.bedrock_llm.region:
        problems.append('BEDROCK_LLM_AWS_REGION is not set')
    if retrieval.strategy != 'keyword':
        if not app_config.bedrock_embed.model_id:
            problems.append('BEDROCK_EMBED_MODEL_ID is not set')
        if not app_config.bedrock_embed.region:
            problems.append('BEDROCK_EMBED_AWS_REGION is not set')

    if check_credentials and boto3.Session().get_credentials() is None:
        problems.append('No AWS credentials found')

    if problems:
        for problem in problems:
            logger.error(f'Configuration error: {problem}')
        raise ConfigurationError('; '.join(problems))

    logger.info('Configuration validated')


def check_health() -> bool:
    """Check the health of all system components.

    Returns:
        True if all components are healthy, False otherwise
    """
    health_status = get_health_status()

    # Check if all components are healthy
    all_healthy = all(status.get('healthy', False) for status in health_status.values())

    if all_healthy:
        logger.info('All system components are healthy')
    else:
        logger.warning('Some system components are unhealthy')

    return all_healthy


def get_health_status(app_config: Optional[AppConfig] = None) -> Dict[str, Any]:
    """Get detailed health status of all components.

    Returns:
        Dictionary with health status of each component
    """
    app_config = app_config or config
    health_status = {}

    # Check Bedrock LLM
    try:
        llm = BedrockLLM(app_config.bedrock_llm)
        health_status['bedrock_llm'] = {
            'healthy': llm.health_check(),
            'service': 'Amazon Bedrock LLM',
            'model': app_config.bedrock_llm.model_id
        }
    except BedrockLLMError as e:
        health_status['bedrock_llm'] = {'healthy': False, 'service': 'Amazon Bedrock LLM', 'error': str(e)}

    # Check Bedrock Embed, unused by the keyword strategy
    if app_config.retrieval.strategy != 'keyword':
        try:
            embed = BedrockEmbed(app_config.bedrock_embed)
            health_status['bedrock_embed'] = {
                'healthy': embed.health_check(),
                'service': 'Amazon Bedrock Embed',
                'model': app_config.bedrock_embed.model_id
            }
        except BedrockEmbedError as e:
            health_status['bedrock_embed'] = {'healthy': False, 'service': 'Amazon Bedrock Embed', 'error': str(e)}

    return health_status


def get_system_info(app_config: Optional[AppConfig] = None) -> Dict[str, Any]:
    """Get system information and configuration.

    Returns:
        Dictionary with system information
    """
    app_config = app_config or config
    return {
        'service_name': 'teachbot',
        'version': '1.0.0',
        'configuration': {
            'bedrock_llm_model': app_config.bedrock_llm.model_id,
            'bedrock_embed_model': app_config.bedrock_embed.model_id,
            'retrieval_strategy': app_config.retrieval.strategy,
            'embedding_min_confidence': app_config.retrieval.embedding_min_confidence,
            'keyword_min_confidence': app_config.retrieval.keyword_min_confidence,
            'aws_region': app_config.bedrock_llm.region
        },
        'health_status': get_health_status(app_config)
    }
