"""Pytest configuration and fixtures."""

import os

# Configuration is read when teachbot is imported, so set the environment first.
os.environ.setdefault('ENVIRONMENT', 'test')
os.environ.setdefault('LOG_LEVEL', 'DEBUG')
os.environ.setdefault('AWS_DEFAULT_REGION', 'us-east-1')
os.environ.setdefault('RETRIEVAL_STRATEGY', 'embedding')

import pytest  # noqa: E402

from teachbot.models.core import BotProfile  # noqa: E402
from teachbot.utils.chat_store import InMemoryChatStore  # noqa: E402
from teachbot.utils.config import load_config  # noqa: E402


@pytest.fixture
def app_config():
    """Fresh configuration for each test."""
    return load_config()


@pytest.fixture
def bot():
    return BotProfile(id='bot_1', name='Campus Cafe', description='the assistant for the campus cafe')


@pytest.fixture
def store(bot):
    store = InMemoryChatStore()
    store.add_bot(bot)
    return store
