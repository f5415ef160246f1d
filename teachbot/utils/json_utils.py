"""
Helpers for reading JSON out of LLM replies.
"""

import json
import re
from typing import Any, Dict

_OPENING_FENCE = re.compile(r'^```(?:json)?\s*', re.IGNORECASE)
_CLOSING_FENCE = re.compile(r'\s*```$')


def clean_json_response(response: str) -> str:
    """Remove a surrounding markdown code fence, with or without a json tag."""
    text = (response or '').strip()
    text = _OPENING_FENCE.sub('', text, count=1)
    return _CLOSING_FENCE.sub('', text, count=1).strip()


def parse_json_object(response: str) -> Dict[str, Any]:
    """Parse the first JSON object found in an LLM response.

    Text outside the outermost braces is ignored.

    Args:
        response: Raw LLM response

    Returns:
        Parsed dictionary

    Raises:
        json.JSONDecodeError: If no valid object can be decoded
    """
    cleaned = clean_json_response(response)
    start = cleaned.find('{')
    end = cleaned.rfind('}')
    if start == -1 or end < start:
        raise json.JSONDecodeError('No JSON object found', cleaned, 0)

    data = json.loads(cleaned[start:end + 1])
    if not isinstance(data, dict):
        raise json.JSONDecodeError(f'Expected object, got {type(data).__name__}', cleaned, start)
    return data
