"""
Product Comparison — Comparison Service

Orchestrates one comparison:
  request validation → candidate / spec reads → scoring engine → result

and replays stored history records against current catalogue data. The
service owns no storage or identity client of its own; collaborators are
injected.
"""
from __future__ import annotations
import logging
from typing import Awaitable, TypeVar

from models import (
    CalculateRequest, ComparisonResult, HistoryDetail, HistoryListResponse,
    HistorySummary, ScoredCandidate,
)
from repository import ComparisonRepository
from scoring_engine import build_candidate, compare, rank_candidates, resolve_spec_definitions

logger = logging.getLogger(__name__)

T = TypeVar("T")

MIN_CANDIDATES = 2


# ============================================================
# Errors
# ============================================================

class ComparisonError(Exception):
    """Base class for failures reported to the caller."""


class InvalidRequestError(ComparisonError):
    """Malformed request, e.g. fewer than two candidates."""


class NotFoundError(ComparisonError):
    """A referenced category, variant or history record does not exist."""


class UpstreamError(ComparisonError):
    """A required read from a collaborator failed."""


# ============================================================
# Service
# ============================================================

class ComparisonService:

    def __init__(self, repo: ComparisonRepository, max_candidates: int = 20):
        self.repo = repo
        self.max_candidates = max_candidates

    async def calculate(self, request: CalculateRequest) -> ComparisonResult:
        """Rank the requested variants. Raises before scoring on any bad input."""
        candidate_ids = list(dict.fromkeys(request.candidate_ids))
        if len(candidate_ids) < MIN_CANDIDATES:
            raise InvalidRequestError(
                f"At least {MIN_CANDIDATES} distinct candidates are required")
        if len(candidate_ids) > self.max_candidates:
            raise InvalidRequestError(
                f"At most {self.max_candidates} candidates can be compared")

        variants = await self._read(
            self.repo.fetch_variants(candidate_ids), "fetch candidates")
        stored_specs = await self._read(
            self.repo.fetch_category_specs(request.category_id), "fetch category specs")

        found = {v.id for v in variants}
        missing = [cid for cid in candidate_ids if cid not in found]
        if missing:
            raise NotFoundError(f"Unknown candidates: {', '.join(missing)}")
        if stored_specs is None:
            raise NotFoundError(f"Unknown category: {request.category_id}")

        candidates = [build_candidate(v) for v in variants]
        return compare(candidates, stored_specs, request.weights)

    # ----------------------------------------------------------
    # History
    # ----------------------------------------------------------

    async def list_histories(self, user_id: str, page: int, limit: int) -> HistoryListResponse:
        offset = (page - 1) * limit
        records, total = await self._read(
            self.repo.list_histories(user_id, offset, limit), "list histories")
        return HistoryListResponse(
            items=[
                HistorySummary(
                    id=r.id, category_id=r.category_id,
                    created_at=r.created_at, weights=r.weights,
                )
                for r in records
            ],
            total_count=total,
            page=page,
            limit=limit,
        )

    async def replay_history(self, history_id: str, user_id: str) -> HistoryDetail:
        """
        Rebuild a past ranking from its stored scores.

        Attribute values come from the current catalogue, so a replay reflects
        product data as it is now, not as it was when the record was created.
        """
        record = await self._read(
            self.repo.get_history(history_id, user_id), "fetch history")
        if record is None:
            raise NotFoundError(f"History not found: {history_id}")

        variants = await self._read(
            self.repo.fetch_variants([s.variant_id for s in record.scores]),
            "fetch history variants")
        stored_specs = await self._read(
            self.repo.fetch_category_specs(record.category_id), "fetch category specs")

        by_id = {v.id: v for v in variants}
        scored: list[ScoredCandidate] = []
        for s in record.scores:
            variant = by_id.get(s.variant_id)
            if variant is None:
                logger.warning("History %s references missing variant %s",
                               history_id, s.variant_id)
                continue
            scored.append(ScoredCandidate(
                **build_candidate(variant).model_dump(), score=s.score))

        spec_definitions = resolve_spec_definitions(stored_specs or [])
        result = rank_candidates(scored, spec_definitions)
        return HistoryDetail(
            ranked_data=result.ranked_data,
            spec_definitions=result.spec_definitions,
            id=record.id,
            category_id=record.category_id,
            weights=record.weights,
            created_at=record.created_at,
        )

    # ----------------------------------------------------------
    # Internal Helpers
    # ----------------------------------------------------------

    async def _read(self, call: Awaitable[T], what: str) -> T:
        """Await a collaborator read, wrapping store failures as UpstreamError."""
        try:
            return await call
        except Exception as e:
            raise UpstreamError(f"Data store failed to {what}") from e
