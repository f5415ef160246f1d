"""Tests for the Bedrock LLM client and the shared retry policy."""

import dataclasses
from unittest.mock import MagicMock, patch

import pytest
from botocore.exceptions import ClientError, NoRegionError

from teachbot.utils.bedrock_llm import BedrockLLM, BedrockLLMError, read_stream
from teachbot.utils.bedrock_retry import call_with_retry


class Unavailable(Exception):
    pass


class Unconfigured(Exception):
    pass


@pytest.fixture
def llm_config(app_config):
    return dataclasses.replace(app_config.bedrock_llm, retry_attempts=3, retry_delay=0.0)


def _stream(*chunks):
    events = [{'contentBlockDelta': {'delta': {'text': chunk}}} for chunk in chunks]
    events.append({'metadata': {'usage': {'inputTokens': 12, 'outputTokens': 4}, 'metrics': {'latencyMs': 80}}})
    return {'stream': events}


def test_read_stream_joins_deltas_and_collects_usage():
    text, usage = read_stream(_stream('We are ', 'open.')['stream'])

    assert text == 'We are open.'
    assert usage == {'inputTokens': 12, 'outputTokens': 4, 'latencyMs': 80}
    assert read_stream(None) == ('', None)


def test_complete_sends_system_prompt_and_sampling(llm_config):
    with patch('teachbot.utils.bedrock_llm.boto3.client') as mock_client:
        mock_client.return_value.converse_stream.return_value = _stream('Nine to five.')

        reply = BedrockLLM(llm_config).complete('You are Campus Cafe.', 'hours?', temperature=0.5, max_tokens=300)

    assert reply == 'Nine to five.'
    kwargs = mock_client.return_value.converse_stream.call_args.kwargs
    assert kwargs['system'] == [{'text': 'You are Campus Cafe.'}]
    assert kwargs['messages'] == [{'role': 'user', 'content': [{'text': 'hours?'}]}]
    assert kwargs['inferenceConfig'] == {'maxTokens': 300, 'temperature': 0.5, 'stopSequences': []}


def test_zero_temperature_is_not_replaced_by_default(llm_config):
    with patch('teachbot.utils.bedrock_llm.boto3.client') as mock_client:
        mock_client.return_value.converse_stream.return_value = _stream('OK')

        BedrockLLM(llm_config).complete('system', 'hi', temperature=0.0)

    assert mock_client.return_value.converse_stream.call_args.kwargs['inferenceConfig']['temperature'] == 0.0


def test_failures_are_retried_then_raised(llm_config):
    error = ClientError({'Error': {'Code': 'ThrottlingException', 'Message': 'slow down'}}, 'ConverseStream')
    with patch('teachbot.utils.bedrock_llm.boto3.client') as mock_client, \
            patch('teachbot.utils.bedrock_retry.time.sleep') as mock_sleep:
        mock_client.return_value.converse_stream.side_effect = error

        with pytest.raises(BedrockLLMError):
            BedrockLLM(llm_config).complete('system', 'hours?')

    assert mock_client.return_value.converse_stream.call_count == 3
    assert mock_sleep.call_count == 2


def test_missing_model_is_rejected(llm_config):
    with pytest.raises(BedrockLLMError):
        BedrockLLM(dataclasses.replace(llm_config, model_id=''))


def test_retry_recovers_after_transient_error():
    call = MagicMock(side_effect=[ClientError({'Error': {'Code': 'ServiceUnavailable'}}, 'InvokeModel'), 'ok'])

    with patch('teachbot.utils.bedrock_retry.time.sleep'):
        result = call_with_retry(call, 'test', attempts=3, base_delay=0.0, unavailable_error=Unavailable,
                                 unconfigured_error=Unconfigured)

    assert result == 'ok'
    assert call.call_count == 2


def test_retry_stops_on_unconfigured_region():
    call = MagicMock(side_effect=NoRegionError())

    with pytest.raises(Unconfigured):
        call_with_retry(call, 'test', attempts=3, base_delay=0.0, unavailable_error=Unavailable,
                        unconfigured_error=Unconfigured)

    assert call.call_count == 1


def test_retry_makes_at_least_one_attempt():
    call = MagicMock(side_effect=ClientError({'Error': {'Code': 'AccessDenied'}}, 'InvokeModel'))

    with pytest.raises(Unavailable):
        call_with_retry(call, 'test', attempts=0, base_delay=0.0, unavailable_error=Unavailable,
                        unconfigured_error=Unconfigured)

    assert call.call_count == 1
