"""
Confidence gating: decide whether a ranking is good enough to claim an answer.
"""

from dataclasses import dataclass
from typing import List, Sequence

from ..models.core import KnowledgeEntry, RetrievalResult, ScoredEntry
from ..utils.logging_config import get_logger
from ..utils.text_utils import contains_text, matches_keyword

logger = get_logger(__name__)

KEYWORD_CONFIDENCE_FLOOR = 0.1


@dataclass
class GateDecision:
    was_answered: bool
    confidence: float
    entries: List[ScoredEntry]


class ConfidenceGate:
    """Threshold gate for one scoring strategy.

    Each strategy gets its own gate because cosine similarity and normalized
    keyword confidence live on different scales.
    """

    def __init__(self, min_confidence: float, name: str = ''):
        self.min_confidence = min_confidence
        self.name = name

    def evaluate(self, result: RetrievalResult) -> GateDecision:
        was_answered = result.confidence >= self.min_confidence
        logger.debug(f'Gate {self.name or result.strategy}: confidence {result.confidence:.3f} '
                     f'vs {self.min_confidence:.2f} -> {"answered" if was_answered else "not answered"}')
        return GateDecision(was_answered=was_answered, confidence=result.confidence, entries=list(result.entries))


def keyword_confidence(query_words: Sequence[str], entry: KnowledgeEntry) -> float:
    """Confidence that ``entry`` answers a keyword query.

    Each query word counts 2 when it matches a keyword, otherwise 1 when it
    appears in the entry text. The total is normalized by twice the word count
    and clamped to [0.1, 1.0].
    """
    if not query_words:
        return KEYWORD_CONFIDENCE_FLOOR

    text = entry.text.lower()
    matched = 0
    for word in query_words:
        if matches_keyword(word, entry.keywords):
            matched += 2
        elif contains_text(word, text):
            matched += 1

    confidence = matched / (len(query_words) * 2)
    return max(KEYWORD_CONFIDENCE_FLOOR, min(1.0, confidence))
