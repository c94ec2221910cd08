"""Tests for ComparisonService: request validation, collaborator errors, history replay."""

import pytest

from comparison_service import (
    ComparisonService,
    InvalidRequestError,
    NotFoundError,
    UpstreamError,
)
from models import CalculateRequest, HistoryScore
from repository import InMemoryRepository


class SpyRepository(InMemoryRepository):
    """Counts reads and optionally fails them."""

    def __init__(self, fail_with: Exception | None = None):
        super().__init__()
        self.reads = 0
        self.fail_with = fail_with

    async def fetch_variants(self, variant_ids):
        self.reads += 1
        if self.fail_with:
            raise self.fail_with
        return await super().fetch_variants(variant_ids)

    async def fetch_category_specs(self, category_id):
        self.reads += 1
        return await super().fetch_category_specs(category_id)


def _request(ids, weights=None, category="1") -> CalculateRequest:
    return CalculateRequest(candidateIds=ids, weights=weights or {}, categoryId=category)


@pytest.fixture()
def service(repo) -> ComparisonService:
    return ComparisonService(repo, max_candidates=5)


# =============================================================================
# calculate
# =============================================================================

async def test_calculate_ranks_by_price(service):
    result = await service.calculate(_request(["v1", "v2", "v3"], {"price": 1}))

    assert [(c.id, c.score) for c in result.ranked_data] == [
        ("v1", 100), ("v2", 50), ("v3", 25)]
    assert [s.key for s in result.spec_definitions] == ["price", "battery", "weight"]


async def test_calculate_uses_merged_attributes(service):
    result = await service.calculate(_request(["v3", "v1"], {"weight": 1}))

    by_id = {c.id: c for c in result.ranked_data}
    assert by_id["v3"].attributes == {"battery": 4000, "weight": 160, "price": 400}
    assert by_id["v1"].brand == "Acme"
    assert by_id["v1"].variant_label == "128GB"
    # weight is lower-is-better: 160 beats 180
    assert by_id["v3"].score == 100
    assert by_id["v1"].score == round(160 / 180 * 100)


async def test_calculate_positive_spec(service):
    result = await service.calculate(_request(["v1", "v2", "v3"], {"battery": 1}))
    assert {c.id: c.score for c in result.ranked_data} == {"v1": 60, "v2": 100, "v3": 80}


async def test_unknown_brand_defaults(service):
    result = await service.calculate(_request(["v1", "v2"], {"price": 1}))
    assert {c.id: c.brand for c in result.ranked_data} == {"v1": "Acme", "v2": "Unknown"}


@pytest.mark.parametrize("ids", [[], ["v1"], ["v1", "v1"]])
async def test_fewer_than_two_candidates_rejected_before_reads(ids):
    repo = SpyRepository()
    with pytest.raises(InvalidRequestError):
        await ComparisonService(repo).calculate(_request(ids, {"price": 1}))
    assert repo.reads == 0


async def test_too_many_candidates_rejected(service):
    with pytest.raises(InvalidRequestError):
        await service.calculate(_request([f"v{i}" for i in range(6)]))


async def test_unknown_candidate_is_not_found(service):
    with pytest.raises(NotFoundError, match="nope"):
        await service.calculate(_request(["v1", "nope"]))


async def test_unknown_category_is_not_found(service):
    with pytest.raises(NotFoundError, match="Unknown category"):
        await service.calculate(_request(["v1", "v2"], category="999"))


async def test_empty_category_scores_on_price_only(service):
    result = await service.calculate(_request(["v1", "v2"], {"price": 1}, category="2"))
    assert [s.key for s in result.spec_definitions] == ["price"]


async def test_store_failure_is_upstream_error():
    cause = ConnectionError("db down")
    repo = SpyRepository(fail_with=cause)
    with pytest.raises(UpstreamError) as exc_info:
        await ComparisonService(repo).calculate(_request(["a", "b"]))
    assert exc_info.value.__cause__ is cause


# =============================================================================
# history
# =============================================================================

async def _save(repo, user="user-1", scores=(("v1", 40), ("v2", 90), ("v3", 40))):
    return await repo.create_history(
        user, "1", {"price": 1, "battery": 2},
        [HistoryScore(variant_id=v, score=s) for v, s in scores],
    )


async def test_replay_history_sorts_stored_scores(service, repo):
    record = await _save(repo)

    detail = await service.replay_history(record.id, "user-1")

    assert [(c.id, c.score) for c in detail.ranked_data] == [
        ("v2", 90), ("v1", 40), ("v3", 40)]
    assert detail.weights == {"price": 1, "battery": 2}
    assert detail.category_id == "1"
    assert detail.created_at == record.created_at
    assert detail.spec_definitions[0].key == "price"


async def test_replay_reflects_current_product_data(service, repo):
    record = await _save(repo)
    repo.variants["v1"]["price"] = 999

    detail = await service.replay_history(record.id, "user-1")

    v1 = next(c for c in detail.ranked_data if c.id == "v1")
    assert v1.price == 999
    assert v1.attributes["price"] == 999
    assert v1.score == 40


async def test_replay_skips_deleted_variants(service, repo):
    record = await _save(repo)
    del repo.variants["v2"]

    detail = await service.replay_history(record.id, "user-1")
    assert [c.id for c in detail.ranked_data] == ["v1", "v3"]


async def test_replay_of_foreign_history_is_not_found(service, repo):
    record = await _save(repo, user="user-2")
    with pytest.raises(NotFoundError):
        await service.replay_history(record.id, "user-1")


async def test_list_histories_paginates(service, repo):
    for _ in range(3):
        await _save(repo)
    await _save(repo, user="user-2")

    first = await service.list_histories("user-1", page=1, limit=2)
    second = await service.list_histories("user-1", page=2, limit=2)

    assert first.total_count == 3
    assert len(first.items) == 2
    assert len(second.items) == 1
    ids = [h.id for h in first.items + second.items]
    assert len(set(ids)) == 3
    assert first.items[0].created_at >= first.items[1].created_at
