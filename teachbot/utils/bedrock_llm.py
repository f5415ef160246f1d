"""
Amazon Bedrock text generation over the Converse streaming API.
"""

from typing import Any, Dict, List, Optional, Tuple

import boto3
from botocore.config import Config as BotoConfig

from .bedrock_retry import call_with_retry
from .config import BedrockLLMConfig
from .logging_config import get_logger

logger = get_logger(__name__)

Message = Dict[str, Any]


class BedrockLLMError(Exception):
    """Custom exception for Bedrock LLM errors."""
    pass


def text_message(role: str, text: str) -> Message:
    return {'role': role, 'content': [{'text': text}]}


def read_stream(stream) -> Tuple[str, Optional[Dict[str, Any]]]:
    """Concatenate streamed text deltas; usage and latency come from the metadata event."""
    chunks = []
    usage = None
    for event in stream or []:
        if 'contentBlockDelta' in event:
            chunks.append(event['contentBlockDelta']['delta'].get('text', ''))
        elif 'metadata' in event:
            metadata = event['metadata']
            usage = {**metadata.get('usage', {}), **metadata.get('metrics', {})}
    return ''.join(chunks), usage


class BedrockLLM:
    """Bedrock chat model used for answers and for memory extraction."""

    def __init__(self, config: BedrockLLMConfig):
        """
        Args:
            config: Model, region, sampling defaults, timeouts and retry policy

        Raises:
            BedrockLLMError: If model id or region is missing
        """
        if not config.model_id or not config.region:
            raise BedrockLLMError('Bedrock LLM requires a model id and region')

        self.config = config
        self.model_id = config.model_id
        # botocore retries are disabled, call_with_retry owns the policy
        self.bedrock_runtime = boto3.client('bedrock-runtime',
                                            region_name=config.region,
                                            config=BotoConfig(connect_timeout=config.connect_timeout,
                                                              read_timeout=config.read_timeout,
                                                              retries={'max_attempts': 0}))

        logger.info(f'Initialized Bedrock LLM client with model: {self.model_id}')

    def generate_response(self,
                          messages: List[Message],
                          system_prompt: str,
                          max_tokens: Optional[int] = None,
                          temperature: Optional[float] = None,
                          stop_sequences: Optional[List[str]] = None) -> Tuple[str, Optional[Dict[str, Any]]]:
        """
        Run a Converse request and collect the streamed reply.

        A trailing assistant message acts as a prefill that the model continues.

        Args:
            messages: Conversation in Bedrock Converse format
            system_prompt: System prompt for the conversation
            max_tokens: Maximum tokens to generate, config default when None
            temperature: Sampling temperature, config default when None
            stop_sequences: Sequences that end generation

        Returns:
            Tuple of (reply text, usage metrics or None)

        Raises:
            BedrockLLMError: If the model is unreachable or not configured
        """
        inference_config = {
            'maxTokens': self.config.max_tokens if max_tokens is None else max_tokens,
            'temperature': self.config.temperature if temperature is None else temperature,
            'stopSequences': list(stop_sequences or []),
        }

        def converse():
            response = self.bedrock_runtime.converse_stream(modelId=self.model_id,
                                                            messages=messages,
                                                            system=[{'text': system_prompt}],
                                                            inferenceConfig=inference_config)
            return read_stream(response.get('stream'))

        text, usage = call_with_retry(converse,
                                      service='Bedrock LLM',
                                      attempts=self.config.retry_attempts,
                                      base_delay=self.config.retry_delay,
                                      unavailable_error=BedrockLLMError,
                                      unconfigured_error=BedrockLLMError)
        logger.debug(f'Bedrock LLM generated {len(text)} characters')
        return text, usage

    def complete(self,
                 system_prompt: str,
                 user_message: str,
                 temperature: Optional[float] = None,
                 max_tokens: Optional[int] = None) -> str:
        """Single-turn completion: one system prompt, one user message."""
        reply, usage = self.generate_response(messages=[text_message('user', user_message)],
                                              system_prompt=system_prompt,
                                              max_tokens=max_tokens,
                                              temperature=temperature)
        if usage:
            logger.debug(f'Bedrock LLM usage: {usage}')
        return reply

    def health_check(self) -> bool:
        """True when the model answers a trivial prompt."""
        try:
            reply = self.complete(system_prompt="You are a helpful assistant. Respond with just 'OK'.",
                                  user_message='Hi',
                                  max_tokens=10,
                                  temperature=0.0)
            return bool(reply.strip())
        except BedrockLLMError as e:
            logger.error(f'Bedrock LLM health check failed: {e}')
            return False
