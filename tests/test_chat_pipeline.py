"""End-to-end tests for the chat pipeline with fake Bedrock clients."""

import json
import threading

import pytest

from teachbot.models.core import ConversationTurn, MemoryCandidate, MemoryType, Role
from teachbot.services.chat_pipeline import (ChatPipeline, ChatPipelineError, PipelineCancelledError,
                                             is_basic_conversation)
from teachbot.services.memory_extraction import MemoryExtractor
from teachbot.services.response_generator import ResponseGenerator
from teachbot.services.retrieval import build_ranker
from teachbot.utils.bedrock_embed import EmbedServiceUnavailableError
from teachbot.utils.bedrock_llm import BedrockLLMError
from tests.fakes import FakeEmbedder, FakeLLM, context_entry, image_entry, qa_entry


def make_pipeline(store, app_config, llm=None, embedder=None, strategy='embedding', with_memory=True):
    llm = llm or FakeLLM()
    app_config.retrieval.strategy = strategy
    extractor = MemoryExtractor(llm, app_config.bedrock_llm, app_config.memory) if with_memory else None
    return ChatPipeline(store=store,
                        ranker=build_ranker(app_config.retrieval, embedder or FakeEmbedder()),
                        generator=ResponseGenerator(llm, app_config.bedrock_llm),
                        extractor=extractor,
                        app_config=app_config)


def _extraction(*memories, context=''):
    return json.dumps({
        'memories': [{'key': key, 'value': value, 'memory_type': 'personal', 'importance': 8, 'confidence': confidence}
                     for key, value, confidence in memories],
        'memory_context': context,
    })


@pytest.fixture
def taught_store(store):
    store.add_entry(qa_entry('hours', 'What are your hours?', 'We are open 9 to 5.', similarity=0.55,
                             keywords=['hours', 'opening'], category='hours'))
    store.add_entry(context_entry('parking', 'Free parking is available behind the building.', similarity=0.2,
                                  keywords=['parking']))
    return store


def test_answer_above_threshold(taught_store, app_config):
    app_config.retrieval.embedding_min_confidence = 0.5
    llm = FakeLLM(reply='We are open 9 to 5 on weekdays.')

    answer = make_pipeline(taught_store, app_config, llm).answer('bot_1', 'user_1', 'sess_1', 'What are your hours?')

    assert answer.was_answered is True
    assert answer.confidence == pytest.approx(0.55)
    assert answer.reply == 'We are open 9 to 5 on weekdays.'
    assert answer.used_entry_ids == ['hours']
    assert answer.session_id == 'sess_1'
    assert 'Q: What are your hours?' in llm.prompts[0]
    assert taught_store.list_unanswered('bot_1') == []


def test_same_score_below_default_threshold_is_not_answered(taught_store, app_config):
    answer = make_pipeline(taught_store, app_config).answer('bot_1', 'user_1', 'sess_1', 'What are your hours?')

    assert answer.was_answered is False
    assert answer.confidence == pytest.approx(0.55)
    [question] = taught_store.list_unanswered('bot_1')
    assert question.question == 'What are your hours?'
    assert question.session_id == 'sess_1'
    assert question.confidence == pytest.approx(0.55)


def test_unrelated_question_declines_and_records_unanswered(taught_store, app_config):
    llm = FakeLLM(reply="Sorry, I don't have information about furniture.")
    unrelated = FakeEmbedder(vector=[0.0, 0.0, 1.0])

    answer = make_pipeline(taught_store, app_config, llm, unrelated).answer('bot_1', 'user_1', 'sess_1',
                                                                          'Do you sell furniture?')

    assert answer.was_answered is False
    assert answer.confidence == 0.0
    assert answer.used_entry_ids == []
    assert 'do not have information' in llm.prompts[0]
    assert len(taught_store.list_unanswered('bot_1')) == 1


def test_low_similarity_returns_no_entries(store, app_config):
    store.add_entry(qa_entry('hours', 'What are your hours?', '9 to 5', similarity=0.2))

    answer = make_pipeline(store, app_config).answer('bot_1', 'user_1', 'sess_1', 'Do you sell furniture?')

    assert answer.was_answered is False
    assert answer.used_entry_ids == []
    assert len(store.list_unanswered('bot_1')) == 1


def test_bot_without_entries_gets_training_reply(store, app_config):
    llm = FakeLLM()

    answer = make_pipeline(store, app_config, llm).answer('bot_1', 'user_1', 'sess_1', 'What are your hours?')

    assert answer.was_answered is False
    assert answer.confidence == 0.0
    assert "I'm Campus Cafe and I'm still learning!" in answer.reply
    assert llm.prompts == []
    assert llm.extraction_calls == []
    assert len(store.list_unanswered('bot_1')) == 1
    assert len(store.get_turns('sess_1')) == 2


def test_small_talk_skips_retrieval_and_generation(taught_store, app_config):
    llm = FakeLLM()
    embedder = FakeEmbedder()

    answer = make_pipeline(taught_store, app_config, llm, embedder).answer('bot_1', 'user_1', 'sess_1', 'Hello!')

    assert answer.was_answered is True
    assert answer.confidence == pytest.approx(0.9)
    assert 'Campus Cafe' in answer.reply
    assert embedder.calls == []
    assert llm.prompts == []
    assert [turn.role for turn in taught_store.get_turns('sess_1')] == [Role.USER, Role.BOT]


@pytest.mark.parametrize('message, expected', [
    ('hi', True),
    ('Thanks!', True),
    ('what can you do?', True),
    ('hi, what are your hours?', False),
    ('helpful staff?', False),
])
def test_basic_conversation_detection(message, expected):
    assert is_basic_conversation(message) is expected


def test_embedding_failure_still_replies(taught_store, app_config):
    embedder = FakeEmbedder(error=EmbedServiceUnavailableError('unavailable'))

    answer = make_pipeline(taught_store, app_config, embedder=embedder).answer('bot_1', 'user_1', 'sess_1',
                                                                             'What are your hours?')

    assert answer.was_answered is False
    assert answer.confidence == 0.0
    assert answer.reply
    assert len(taught_store.list_unanswered('bot_1')) == 1


def test_generation_failure_returns_apology(taught_store, app_config):
    app_config.retrieval.embedding_min_confidence = 0.5
    llm = FakeLLM(error=BedrockLLMError('throttled'))

    answer = make_pipeline(taught_store, app_config, llm).answer('bot_1', 'user_1', 'sess_1', 'What are your hours?')

    assert 'having trouble processing' in answer.reply
    assert answer.confidence == pytest.approx(0.55)


def test_memories_are_merged_across_turns(taught_store, app_config):
    llm = FakeLLM(raw_extraction=_extraction(('name', 'Jon', 0.6), context='The user is Jon.'))
    pipeline = make_pipeline(taught_store, app_config, llm)

    first = pipeline.answer('bot_1', 'user_1', 'sess_1', "I'm Jon, what are your hours?")

    assert first.memory_context == 'The user is Jon.'
    [memory] = taught_store.list_memories('user_1', 'bot_1')
    assert (memory.value, memory.confidence) == ('Jon', 0.6)

    llm.raw_extraction = _extraction(('name', 'John', 0.9))
    pipeline.answer('bot_1', 'user_1', 'sess_2', 'Sorry, it is John. When do you open?')

    assert '- name: Jon (personal)' in llm.prompts[1]
    [memory] = taught_store.list_memories('user_1', 'bot_1')
    assert (memory.value, memory.confidence) == ('John', 0.9)

    llm.raw_extraction = _extraction(('name', 'Johnny', 0.5))
    pipeline.answer('bot_1', 'user_1', 'sess_3', 'When do you close?')

    [memory] = taught_store.list_memories('user_1', 'bot_1')
    assert memory.value == 'John'


def test_memories_are_scoped_to_bot(taught_store, app_config):
    llm = FakeLLM(raw_extraction=_extraction(('name', 'Jon', 0.6)))

    make_pipeline(taught_store, app_config, llm).answer('bot_1', 'user_1', 'sess_1', "I'm Jon")

    assert taught_store.list_memories('user_1', 'bot_2') == []


def test_memory_disabled_skips_extraction(taught_store, app_config):
    llm = FakeLLM(raw_extraction=_extraction(('name', 'Jon', 0.6)))

    make_pipeline(taught_store, app_config, llm, with_memory=False).answer('bot_1', 'user_1', 'sess_1', "I'm Jon")

    assert llm.extraction_calls == []
    assert taught_store.list_memories('user_1', 'bot_1') == []


def test_history_is_read_from_store_when_not_given(taught_store, app_config):
    llm = FakeLLM()
    pipeline = make_pipeline(taught_store, app_config, llm)

    pipeline.answer('bot_1', 'user_1', 'sess_1', 'What are your hours?')
    pipeline.answer('bot_1', 'user_1', 'sess_1', 'And on weekends?')

    assert 'User: What are your hours?' in llm.prompts[1]
    assert len(taught_store.get_turns('sess_1')) == 4


def test_explicit_history_is_used(taught_store, app_config):
    llm = FakeLLM()
    history = [ConversationTurn(role=Role.USER, content='I am visiting Friday')]

    make_pipeline(taught_store, app_config, llm).answer('bot_1', 'user_1', 'sess_1', 'What are your hours?',
                                                         history=history)

    assert 'User: I am visiting Friday' in llm.prompts[0]


def test_image_entries_are_returned_as_refs(store, app_config):
    store.add_entry(qa_entry('food', 'What do you serve?', 'Sandwiches and soup.', similarity=0.7))
    store.add_entry(image_entry('menu', 'Weekly lunch menu', similarity=0.45))
    llm = FakeLLM(reply='Here is our menu.')

    answer = make_pipeline(store, app_config, llm).answer('bot_1', 'user_1', 'sess_1', 'Can I see the menu?')

    assert answer.used_entry_ids == ['food', 'menu']
    [image] = answer.images
    assert image.url == 'https://cdn.example.com/menu.png'
    assert image.entry_id == 'menu'
    assert image.url not in llm.prompts[0]


def test_keyword_strategy_uses_keyword_gate(taught_store, app_config):
    answer = make_pipeline(taught_store, app_config, strategy='keyword').answer('bot_1', 'user_1', 'sess_1',
                                                                              'What are your opening hours?')

    assert answer.was_answered is True
    assert answer.confidence == pytest.approx(0.7)
    assert answer.used_entry_ids[0] == 'hours'


def test_unknown_bot_raises(store, app_config):
    with pytest.raises(ChatPipelineError):
        make_pipeline(store, app_config).answer('missing', 'user_1', 'sess_1', 'hours?')


def test_empty_message_raises(store, app_config):
    with pytest.raises(ValueError):
        make_pipeline(store, app_config).answer('bot_1', 'user_1', 'sess_1', '  <> ')


def test_cancelled_turn_makes_no_writes(taught_store, app_config):
    cancel = threading.Event()
    cancel.set()
    llm = FakeLLM()

    with pytest.raises(PipelineCancelledError):
        make_pipeline(taught_store, app_config, llm).answer('bot_1', 'user_1', 'sess_1', 'What are your hours?',
                                                            cancel_event=cancel)

    assert llm.prompts == []
    assert taught_store.get_turns('sess_1') == []
    assert taught_store.list_unanswered('bot_1') == []


def test_cancel_during_generation_discards_the_turn(taught_store, app_config):
    cancel = threading.Event()

    class CancellingLLM(FakeLLM):

        def complete(self, *args, **kwargs):
            cancel.set()
            return super().complete(*args, **kwargs)

    llm = CancellingLLM(raw_extraction=_extraction(('name', 'Jon', 0.6)))

    with pytest.raises(PipelineCancelledError):
        make_pipeline(taught_store, app_config, llm).answer('bot_1', 'user_1', 'sess_1', "I'm Jon, hours?",
                                                            cancel_event=cancel)

    assert taught_store.get_turns('sess_1') == []
    assert taught_store.list_memories('user_1', 'bot_1') == []
    assert taught_store.list_unanswered('bot_1') == []


def test_concurrent_merges_keep_highest_confidence(taught_store, app_config):
    pipeline = make_pipeline(taught_store, app_config)
    confidences = [0.3, 0.9, 0.5, 0.7, 0.6, 0.8, 0.4, 0.2]

    def merge(confidence):
        candidate = MemoryCandidate(key='name', value=f'name-{confidence}', memory_type=MemoryType.PERSONAL,
                                    importance=8, confidence=confidence, extracted_from='')
        pipeline._merge_memories('user_1', 'bot_1', [candidate])

    threads = [threading.Thread(target=merge, args=(c,)) for c in confidences]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    [memory] = taught_store.list_memories('user_1', 'bot_1')
    assert memory.confidence == pytest.approx(0.9)
    assert memory.value == 'name-0.9'
