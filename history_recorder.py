"""
history_recorder.py — Best-effort persistence of completed comparisons.

Runs after the ranking has been computed and handed back to the caller.
Nothing raised here may reach the caller: every failure is logged and the
call returns None.
"""
from __future__ import annotations

import logging
from typing import Optional, Sequence

from identity import IdentityProvider
from models import HistoryRecord, HistoryScore, ScoredCandidate
from repository import ComparisonRepository

logger = logging.getLogger(__name__)


class HistoryRecorder:

    def __init__(self, repo: ComparisonRepository, identity: IdentityProvider):
        self.repo = repo
        self.identity = identity

    async def record(
        self,
        token: Optional[str],
        category_id: str,
        weights: dict[str, float],
        ranked: Sequence[ScoredCandidate],
    ) -> Optional[HistoryRecord]:
        """Save weights and per-candidate scores for an identified caller."""
        if not token:
            logger.info("[history] anonymous comparison, not recorded")
            return None

        try:
            user_id = await self.identity.resolve_identity(token)
        except Exception:
            logger.exception("[history] identity resolution failed")
            return None

        if not user_id:
            logger.warning("[history] invalid token, not recorded")
            return None

        scores = [HistoryScore(variant_id=c.id, score=c.score) for c in ranked]
        try:
            record = await self.repo.create_history(user_id, category_id, weights, scores)
        except Exception:
            logger.exception("[history] write failed for user=%s", user_id)
            return None

        logger.info("[history] saved id=%s user=%s scores=%d",
                    record.id, user_id, len(scores))
        return record
