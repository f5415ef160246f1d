"""
Retry policy shared by the Bedrock runtime clients.
"""

import json
import random
import time
from typing import Callable, Type, TypeVar

from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError, NoRegionError

from .logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar('T')

# Errors worth another attempt; anything about credentials or region is not.
RETRYABLE_ERRORS = (ClientError, BotoCoreError, json.JSONDecodeError)
UNCONFIGURED_ERRORS = (NoCredentialsError, NoRegionError)


def backoff_delay(base_delay: float, attempt: int) -> float:
    """Exponential backoff with up to one second of jitter."""
    return base_delay * (2**attempt) + random.uniform(0, 1)


def call_with_retry(call: Callable[[], T],
                    service: str,
                    attempts: int,
                    base_delay: float,
                    unavailable_error: Type[Exception],
                    unconfigured_error: Type[Exception]) -> T:
    """
    Run a Bedrock call, retrying transient failures.

    Args:
        call: Zero-argument function performing one attempt
        service: Name used in log and error messages
        attempts: Total attempts, at least one is always made
        base_delay: First backoff delay in seconds
        unavailable_error: Raised when every attempt failed
        unconfigured_error: Raised immediately for credential or region problems

    Returns:
        Whatever ``call`` returns
    """
    attempts = max(1, attempts)
    last_error = None

    for attempt in range(attempts):
        try:
            logger.debug(f'{service} request attempt {attempt + 1}/{attempts}')
            return call()

        except UNCONFIGURED_ERRORS as e:
            logger.error(f'{service} is not configured: {e}')
            raise unconfigured_error(f'{service} is not configured: {e}')

        except RETRYABLE_ERRORS as e:
            last_error = e
            logger.warning(f'{service} attempt {attempt + 1}/{attempts} failed: {e}')
            if attempt < attempts - 1:
                time.sleep(backoff_delay(base_delay, attempt))

    raise unavailable_error(f'{service} failed after {attempts} attempts: {last_error}')
