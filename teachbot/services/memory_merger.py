"""
Reconcile extracted memory candidates with a user's stored memories.
"""

import dataclasses
import uuid
from datetime import datetime
from typing import Dict, Optional, Sequence

from ..models.core import MemoryCandidate, MergeResult, UserMemory
from ..utils.logging_config import get_logger
from ..utils.timestamp_utils import utc_now

logger = get_logger(__name__)


class MemoryMerger:
    """Confidence-based merge: a candidate replaces a stored value only with strictly higher confidence."""

    def merge(self,
              candidates: Sequence[MemoryCandidate],
              existing: Sequence[UserMemory],
              user_id: str,
              bot_id: str,
              now: Optional[datetime] = None) -> MergeResult:
        """
        Merge candidates into the existing memories without mutating them.

        Args:
            candidates: Extracted candidates, in extraction order
            existing: Currently stored memories for (user_id, bot_id)
            user_id: Owner of new memories
            bot_id: Bot the memories belong to
            now: Timestamp for inserted/updated records

        Returns:
            MergeResult with disjoint new and updated memories
        """
        now = now or utc_now()
        current: Dict[str, UserMemory] = {memory.key: memory for memory in existing}
        inserted: Dict[str, UserMemory] = {}
        updated: Dict[str, UserMemory] = {}

        for candidate in candidates:
            stored = current.get(candidate.key)

            if stored is None:
                memory = UserMemory(id=str(uuid.uuid4()),
                                    user_id=user_id,
                                    bot_id=bot_id,
                                    key=candidate.key,
                                    value=candidate.value,
                                    memory_type=candidate.memory_type,
                                    confidence=candidate.confidence,
                                    importance=candidate.importance,
                                    extracted_from=candidate.extracted_from,
                                    first_mentioned=now,
                                    last_updated=now)
                current[candidate.key] = memory
                inserted[candidate.key] = memory
                continue

            if candidate.confidence <= stored.confidence:
                logger.debug(f'Discarding memory candidate {candidate.key!r}: confidence '
                             f'{candidate.confidence:.2f} <= {stored.confidence:.2f}')
                continue

            memory = dataclasses.replace(stored,
                                         value=candidate.value,
                                         confidence=candidate.confidence,
                                         extracted_from=candidate.extracted_from,
                                         last_updated=now)
            current[candidate.key] = memory
            # A key inserted earlier in this batch stays an insert
            if candidate.key in inserted:
                inserted[candidate.key] = memory
            else:
                updated[candidate.key] = memory

        return MergeResult(new_memories=list(inserted.values()), updated_memories=list(updated.values()))
