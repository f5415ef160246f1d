"""
Knowledge retrieval: rank a bot's entries against a user query.

Two interchangeable strategies share the ``ScoringStrategy`` interface:

* ``EmbeddingStrategy`` scores entries by cosine similarity to the query embedding,
  boosts image entries for image-intent queries and applies a primary threshold with
  a lower fallback tier.
* ``KeywordStrategy`` scores entries additively from keyword, text, category and
  summary matches plus a small synonym table. Its confidence is computed separately
  by ``keyword_confidence``.

Confidence values of the two strategies are on different scales and are gated
independently.
"""

from abc import ABC, abstractmethod
from typing import Dict, FrozenSet, List, Optional, Sequence, Tuple

from ..models.core import KnowledgeEntry, RetrievalBudget, RetrievalResult, ScoredEntry
from ..utils.bedrock_embed import BedrockEmbed, BedrockEmbedError
from ..utils.config import RetrievalConfig
from ..utils.logging_config import get_logger
from ..utils.text_utils import contains_text, matches_keyword, tokenize
from ..utils.vector_math import cosine_similarity
from .confidence_gate import KEYWORD_CONFIDENCE_FLOOR, keyword_confidence
from .knowledge_view import KnowledgeStoreView

logger = get_logger(__name__)

IMAGE_INTENT_TERMS: FrozenSet[str] = frozenset({'menu', 'image', 'photo', 'picture', 'show', 'see', 'look', 'display'})
IMAGE_TERM_SUFFIXES: Tuple[str, ...] = ('s', 'es', 'ing', 'ed')

_SYNONYM_GROUPS: Tuple[Tuple[Tuple[str, ...], Tuple[str, ...]], ...] = (
    (('cost', 'price', 'pricing', 'fee', 'how much'), ('pricing', 'price', 'cost', 'rate', 'fee', 'charge')),
    (('hours', 'open', 'close', 'time', 'schedule', 'when'), ('hours', 'open', 'close', 'time', 'schedule', 'timing')),
    (('location', 'address', 'where', 'located', 'directions'), ('location', 'address', 'where', 'directions', 'place')),
    (('contact', 'phone', 'email', 'call', 'reach'), ('contact', 'phone', 'email', 'call', 'number')),
    (('services', 'service', 'offer', 'provide'), ('services', 'service', 'offer', 'provide', 'products')),
    (('help', 'support', 'assist'), ('help', 'support', 'assist')),
)

SEMANTIC_MAP: Dict[str, Tuple[str, ...]] = {
    trigger: terms
    for triggers, terms in _SYNONYM_GROUPS
    for trigger in triggers
}

# Additive keyword scores
KEYWORD_MATCH_SCORE = 5.0
TEXT_MATCH_SCORE = 2.0
CATEGORY_MATCH_SCORE = 3.0
SUMMARY_MATCH_SCORE = 1.5
SEMANTIC_KEYWORD_SCORE = 4.0
SEMANTIC_TEXT_SCORE = 2.0
SEMANTIC_CATEGORY_SCORE = 2.0
SEMANTIC_SUMMARY_SCORE = 1.0


def is_image_term(word: str) -> bool:
    """True for an image term or a plain inflection of one (menus, photos, showing)."""
    if word in IMAGE_INTENT_TERMS:
        return True
    return any(word.endswith(suffix) and word[:-len(suffix)] in IMAGE_INTENT_TERMS for suffix in IMAGE_TERM_SUFFIXES)


def has_image_intent(query: str) -> bool:
    return any(is_image_term(word) for word in tokenize(query, min_length=1))


def semantic_triggers(query: str, words: Sequence[str]) -> List[str]:
    """Synonym-table triggers present in the query, single words and phrases."""
    lowered = ' '.join(tokenize(query, min_length=1))
    triggers = []
    for trigger in SEMANTIC_MAP:
        if ' ' in trigger:
            if f' {trigger} ' in f' {lowered} ':
                triggers.append(trigger)
        elif trigger in words:
            triggers.append(trigger)
    return triggers


class ScoringStrategy(ABC):
    """Ranks knowledge entries for a query within a budget."""

    name = ''

    def __init__(self, default_budget: RetrievalBudget):
        self.default_budget = default_budget

    @abstractmethod
    def rank(self, query: str, entries: KnowledgeStoreView, budget: Optional[RetrievalBudget] = None) -> RetrievalResult:
        ...

    def _empty(self, confidence: float) -> RetrievalResult:
        return RetrievalResult(entries=[], confidence=confidence, strategy=self.name)


class EmbeddingStrategy(ScoringStrategy):
    """Cosine similarity ranking with image boosting and threshold fallback."""

    name = 'embedding'

    def __init__(self, embedder: BedrockEmbed, default_budget: RetrievalBudget, image_boost: float = 0.1):
        super().__init__(default_budget)
        self.embedder = embedder
        self.image_boost = image_boost

    def rank(self, query: str, entries: KnowledgeStoreView, budget: Optional[RetrievalBudget] = None) -> RetrievalResult:
        budget = budget or self.default_budget

        eligible = entries.with_embeddings()
        if not eligible:
            logger.debug('No entries with embeddings, nothing to rank')
            return self._empty(0.0)

        try:
            query_vector = self.embedder.embed(query)
        except BedrockEmbedError as e:
            logger.warning(f'Query embedding failed, no retrieval for this query: {e}')
            return self._empty(0.0)

        scored = []
        for entry in eligible:
            if len(entry.embedding) != len(query_vector):
                logger.debug(f'Skipping entry {entry.id}: embedding length {len(entry.embedding)} '
                             f'!= query length {len(query_vector)}')
                continue
            scored.append(ScoredEntry(entry=entry, score=cosine_similarity(query_vector, entry.embedding)))

        image_intent = has_image_intent(query)
        if image_intent:
            scored = [
                ScoredEntry(entry=s.entry, score=s.score + self.image_boost) if s.entry.is_image else s for s in scored
            ]
        scored.sort(key=lambda s: s.score, reverse=True)

        primary = [s for s in scored if s.score >= budget.primary_threshold][:budget.max_results]
        if primary:
            confidence = primary[0].score
            if image_intent:
                primary = self._force_top_image(primary, scored, budget.max_results)
            logger.debug(f'Primary tier returned {len(primary)} entries (top {confidence:.3f})')
            return RetrievalResult(entries=primary, confidence=confidence, strategy=self.name)

        fallback = [s for s in scored if s.score >= budget.fallback_threshold][:budget.max_results]
        confidence = fallback[0].score if fallback else 0.0
        logger.debug(f'Fallback tier returned {len(fallback)} entries (top {confidence:.3f})')
        return RetrievalResult(entries=fallback, confidence=confidence, strategy=self.name)

    @staticmethod
    def _force_top_image(selected: List[ScoredEntry], scored: List[ScoredEntry], max_results: int) -> List[ScoredEntry]:
        """Put the best image entry first when it did not make the cut."""
        top_image = next((s for s in scored if s.entry.is_image), None)
        if top_image is None or any(s.entry.id == top_image.entry.id for s in selected):
            return selected
        logger.debug(f'Forcing image entry {top_image.entry.id} into results')
        return ([top_image] + selected)[:max_results]


class KeywordStrategy(ScoringStrategy):
    """Additive keyword heuristic for bots without usable embeddings."""

    name = 'keyword'

    def rank(self, query: str, entries: KnowledgeStoreView, budget: Optional[RetrievalBudget] = None) -> RetrievalResult:
        budget = budget or self.default_budget

        words = tokenize(query)
        if not words:
            return self._empty(KEYWORD_CONFIDENCE_FLOOR)

        triggers = semantic_triggers(query, words)
        scored = []
        for entry in entries:
            score = self.score_entry(words, triggers, entry)
            if score > 0:
                scored.append(ScoredEntry(entry=entry, score=score))

        if not scored:
            return self._empty(KEYWORD_CONFIDENCE_FLOOR)

        scored.sort(key=lambda s: s.score, reverse=True)
        top = scored[:budget.max_results]
        confidence = keyword_confidence(words, top[0].entry)
        logger.debug(f'Keyword ranking kept {len(top)} of {len(scored)} matches (confidence {confidence:.3f})')
        return RetrievalResult(entries=top, confidence=confidence, strategy=self.name)

    @staticmethod
    def score_entry(words: Sequence[str], triggers: Sequence[str], entry: KnowledgeEntry) -> float:
        text = entry.text.lower()
        category = (entry.category or '').lower()
        summary = (entry.summary or '').lower()

        score = 0.0
        for word in words:
            if matches_keyword(word, entry.keywords):
                score += KEYWORD_MATCH_SCORE
            if contains_text(word, text):
                score += TEXT_MATCH_SCORE
            if contains_text(word, category):
                score += CATEGORY_MATCH_SCORE
            if contains_text(word, summary):
                score += SUMMARY_MATCH_SCORE

        for trigger in triggers:
            terms = SEMANTIC_MAP[trigger]
            if any(matches_keyword(term, entry.keywords) for term in terms):
                score += SEMANTIC_KEYWORD_SCORE
            if any(contains_text(term, text) for term in terms):
                score += SEMANTIC_TEXT_SCORE
            if any(contains_text(term, category) for term in terms):
                score += SEMANTIC_CATEGORY_SCORE
            if any(contains_text(term, summary) for term in terms):
                score += SEMANTIC_SUMMARY_SCORE

        return score


class AutoStrategy(ScoringStrategy):
    """Embedding ranking when any entry has an embedding, keyword ranking otherwise."""

    name = 'auto'

    def __init__(self, embedding: EmbeddingStrategy, keyword: KeywordStrategy):
        super().__init__(embedding.default_budget)
        self.embedding = embedding
        self.keyword = keyword

    def rank(self, query: str, entries: KnowledgeStoreView, budget: Optional[RetrievalBudget] = None) -> RetrievalResult:
        strategy = self.embedding if entries.has_embeddings else self.keyword
        return strategy.rank(query, entries, budget)


class Ranker:
    """Strategy-agnostic entry point for retrieval."""

    def __init__(self, strategy: ScoringStrategy):
        self.strategy = strategy

    def rank(self, query: str, entries: KnowledgeStoreView, budget: Optional[RetrievalBudget] = None) -> RetrievalResult:
        result = self.strategy.rank(query, entries, budget)
        logger.debug(f'Ranked {len(entries)} entries with {result.strategy}: '
                     f'{len(result.entries)} kept, confidence {result.confidence:.3f}')
        return result


def build_ranker(retrieval: RetrievalConfig, embedder: Optional[BedrockEmbed]) -> Ranker:
    """Build the ranker selected by configuration.

    Raises:
        ValueError: If the strategy is unknown or needs an embedder that is missing
    """
    embedding_budget = RetrievalBudget(max_results=retrieval.max_results,
                                       primary_threshold=retrieval.primary_threshold,
                                       fallback_threshold=retrieval.fallback_threshold)
    keyword_budget = RetrievalBudget(max_results=retrieval.keyword_max_results,
                                     primary_threshold=0.0,
                                     fallback_threshold=0.0)
    keyword = KeywordStrategy(keyword_budget)

    if retrieval.strategy == 'keyword':
        return Ranker(keyword)

    if retrieval.strategy not in ('embedding', 'auto'):
        raise ValueError(f'Unknown retrieval strategy: {retrieval.strategy}')
    if embedder is None:
        raise ValueError(f'Retrieval strategy {retrieval.strategy!r} requires an embedding client')

    embedding = EmbeddingStrategy(embedder, embedding_budget, image_boost=retrieval.image_boost)
    if retrieval.strategy == 'auto':
        return Ranker(AutoStrategy(embedding, keyword))
    return Ranker(embedding)
