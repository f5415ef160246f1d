"""
Amazon Bedrock embeddings for user queries and taught knowledge.
"""

import json
import re
from typing import Callable, List, Tuple

import boto3
from botocore.config import Config as BotoConfig

from .bedrock_retry import call_with_retry
from .config import BedrockEmbedConfig
from .logging_config import get_logger

logger = get_logger(__name__)

_ANGLE_BRACKETS = re.compile(r'[<>]')

COHERE_DIMENSION = 1024


class BedrockEmbedError(Exception):
    """Custom exception for Bedrock embedding errors."""
    pass


class EmbedServiceUnavailableError(BedrockEmbedError):
    """The embedding service could not be reached or rejected the request."""
    pass


class EmbedUnconfiguredError(BedrockEmbedError):
    """The embedding service is missing a model, region or credentials."""
    pass


def sanitize_text(text: str, max_chars: int = 2000) -> str:
    """Trim, strip angle brackets and truncate user supplied text."""
    if not text or not isinstance(text, str):
        return ''
    return _ANGLE_BRACKETS.sub('', text.strip())[:max_chars]


class BedrockEmbed:
    """Bedrock text embeddings for queries and taught knowledge."""

    def __init__(self, config: BedrockEmbedConfig):
        """
        Args:
            config: Model, region, output dimension, timeouts and retry policy

        Raises:
            EmbedUnconfiguredError: If model id or region is missing
        """
        if not config.model_id or not config.region:
            raise EmbedUnconfiguredError('Bedrock Embed requires a model id and region')

        self.config = config
        self.model_id = config.model_id
        self.dimension = config.dimension
        # botocore retries are disabled, call_with_retry owns the policy
        self.bedrock = boto3.client(service_name='bedrock-runtime',
                                    region_name=config.region,
                                    config=BotoConfig(connect_timeout=config.connect_timeout,
                                                      read_timeout=config.read_timeout,
                                                      retries={'max_attempts': 0}))

        logger.info(f'Initialized Bedrock Embed client with model: {self.model_id} ({self.dimension} dimensions)')

    def _invoke(self, payload: dict) -> dict:
        body = json.dumps(payload)

        def invoke():
            response = self.bedrock.invoke_model(body=body,
                                                 modelId=self.model_id,
                                                 accept='application/json',
                                                 contentType='application/json')
            return json.loads(response.get('body').read())

        return call_with_retry(invoke,
                               service='Bedrock Embed',
                               attempts=self.config.retry_attempts,
                               base_delay=self.config.retry_delay,
                               unavailable_error=EmbedServiceUnavailableError,
                               unconfigured_error=EmbedUnconfiguredError)

    def _request(self, text: str, input_type: str) -> Tuple[dict, Callable[[dict], List[float]]]:
        """Request body and response reader for the configured model family."""
        family = self.model_id.lower()
        zero = [0.0] * self.dimension

        if 'titan' in family:
            return {'inputText': text, 'dimensions': self.dimension}, lambda r: r.get('embedding') or zero

        if 'cohere' in family:
            if self.dimension != COHERE_DIMENSION:
                raise EmbedUnconfiguredError(f'Cohere models only support {COHERE_DIMENSION} dimensions, '
                                             f'got {self.dimension}')
            return {'input_type': input_type, 'texts': [text]}, lambda r: (r.get('embeddings') or [zero])[0]

        raise EmbedUnconfiguredError(f'Unsupported embedding model: {self.model_id}')

    def _embed(self, text: str, input_type: str) -> List[float]:
        text = sanitize_text(text, self.config.max_input_chars)
        if not text:
            logger.warning(f'Empty text provided for {input_type} embedding')
            return [0.0] * self.dimension

        payload, read_vector = self._request(text, input_type)
        return read_vector(self._invoke(payload))

    def embed(self, text: str) -> List[float]:
        """
        Embed a user query.

        Args:
            text: Query text, sanitized and truncated before submission

        Returns:
            Embedding vector

        Raises:
            EmbedServiceUnavailableError: If the service keeps failing
            EmbedUnconfiguredError: If model, region or credentials are missing
        """
        return self._embed(text, 'search_query')

    def embed_document(self, text: str) -> List[float]:
        """Embed taught knowledge; Cohere models distinguish documents from queries."""
        return self._embed(text, 'search_document')

    def health_check(self) -> bool:
        try:
            return len(self.embed_document('test')) == self.dimension
        except BedrockEmbedError as e:
            logger.error(f'Bedrock Embed health check failed: {e}')
            return False
