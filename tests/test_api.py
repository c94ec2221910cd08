"""HTTP contract tests for the FastAPI layer, backed by in-memory collaborators."""

import pytest
from fastapi.testclient import TestClient


def _calculate(client: TestClient, ids, weights=None, headers=None, category="1"):
    return client.post(
        "/products/calculate",
        json={"candidateIds": ids, "weights": weights or {}, "categoryId": category},
        headers=headers or {},
    )


# =============================================================================
# POST /products/calculate
# =============================================================================

def test_calculate_returns_ranking(client):
    response = _calculate(client, ["v1", "v2", "v3"], {"price": 1, "battery": 0})

    assert response.status_code == 200
    data = response.json()
    assert set(data) == {"rankedData", "specDefinitions"}
    assert [(r["id"], r["score"]) for r in data["rankedData"]] == [
        ("v1", 100), ("v2", 50), ("v3", 25)]
    first = data["rankedData"][0]
    assert first["display_name"] == "Phone A"
    assert first["variant_label"] == "128GB"
    assert first["brand"] == "Acme"
    assert first["image_url"] == "a.png"
    assert first["attributes"]["battery"] == 3000
    assert [s["key"] for s in data["specDefinitions"]] == ["price", "battery", "weight"]
    assert data["specDefinitions"][0]["orientation"] == "negative"
    assert "X-Response-Time-Ms" in response.headers


def test_legacy_field_name_and_numeric_ids(client, repo):
    repo.add_variant("7", "p1", 50)
    repo.add_variant("8", "p2", 100)
    response = client.post("/products/calculate", json={
        "selectedVariantIds": [7, 8], "weights": {"price": "1"}, "categoryId": 1,
    })
    assert response.status_code == 200
    assert [r["score"] for r in response.json()["rankedData"]] == [100, 50]


def test_anonymous_comparison_is_not_recorded(client, repo):
    assert _calculate(client, ["v1", "v2"], {"price": 1}).status_code == 200
    assert repo.histories == {}


def test_authenticated_comparison_is_recorded(client, repo, auth_headers):
    response = _calculate(client, ["v1", "v2"], {"price": 1}, headers=auth_headers)

    assert response.status_code == 200
    (record,) = repo.histories.values()
    assert record.owner_user_id == "user-1"
    assert record.weights == {"price": 1}
    assert [(s.variant_id, s.score) for s in record.scores] == [("v1", 100), ("v2", 50)]


def test_invalid_token_still_returns_ranking(client, repo):
    response = _calculate(client, ["v1", "v2"], {"price": 1},
                          headers={"Authorization": "Bearer nope"})
    assert response.status_code == 200
    assert repo.histories == {}


def test_history_write_failure_does_not_affect_response(client, repo, auth_headers, monkeypatch):
    async def failing(*args, **kwargs):
        raise RuntimeError("disk full")

    monkeypatch.setattr(repo, "create_history", failing)
    response = _calculate(client, ["v1", "v2"], {"price": 1}, headers=auth_headers)

    assert response.status_code == 200
    assert len(response.json()["rankedData"]) == 2


def test_single_candidate_is_rejected_and_not_recorded(client, repo, auth_headers):
    response = _calculate(client, ["v1"], {"price": 1}, headers=auth_headers)
    assert response.status_code == 400
    assert repo.histories == {}


@pytest.mark.parametrize("body", [
    {"candidateIds": ["v1", "v2"], "weights": {}},
    {"candidateIds": ["v1", "v2"], "weights": {"price": -1}, "categoryId": "1"},
    {"candidateIds": "v1", "categoryId": "1"},
])
def test_malformed_request_is_400(client, body):
    response = client.post("/products/calculate", json=body)
    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid request"


def test_unknown_candidate_is_404(client):
    assert _calculate(client, ["v1", "missing"]).status_code == 404


def test_unknown_category_is_404(client):
    assert _calculate(client, ["v1", "v2"], category="42").status_code == 404


def test_store_failure_is_generic_500(client, repo, monkeypatch):
    async def failing(*args, **kwargs):
        raise ConnectionError("password=hunter2")

    monkeypatch.setattr(repo, "fetch_variants", failing)
    response = _calculate(client, ["v1", "v2"])

    assert response.status_code == 500
    assert "hunter2" not in response.text


# =============================================================================
# /histories
# =============================================================================

def test_histories_require_token(client):
    assert client.get("/histories").status_code == 401
    assert client.get("/histories", headers={"Authorization": "Bearer bad"}).status_code == 401
    assert client.get("/histories/x", headers={"Authorization": "Token good-token"}).status_code == 401


def test_history_list_and_detail(client, auth_headers):
    _calculate(client, ["v1", "v2", "v3"], {"battery": 1}, headers=auth_headers)
    _calculate(client, ["v1", "v2"], {"price": 1}, headers={"Authorization": "Bearer other-token"})

    listing = client.get("/histories", params={"page": 1, "limit": 10}, headers=auth_headers)
    assert listing.status_code == 200
    body = listing.json()
    assert body["totalCount"] == 1
    (item,) = body["list"]
    assert item["category_id"] == "1"
    assert item["weights"] == {"battery": 1}

    detail = client.get(f"/histories/{item['id']}", headers=auth_headers)
    assert detail.status_code == 200
    data = detail.json()
    assert [(r["id"], r["score"]) for r in data["rankedData"]] == [
        ("v2", 100), ("v3", 80), ("v1", 60)]
    assert data["specDefinitions"][0]["key"] == "price"
    assert data["weights"] == {"battery": 1}
    assert "created_at" in data

    foreign = client.get(f"/histories/{item['id']}",
                         headers={"Authorization": "Bearer other-token"})
    assert foreign.status_code == 404


def test_history_limit_is_capped(client, auth_headers):
    response = client.get("/histories", params={"limit": 1000}, headers=auth_headers)
    assert response.status_code == 200
    assert response.json()["limit"] == 50


# =============================================================================
# Catalogue & system
# =============================================================================

def test_categories(client):
    data = client.get("/categories").json()
    assert [c["id"] for c in data] == ["1", "2"]
    assert data[0]["slug"] == "smartphone"


def test_makers(client):
    assert client.get("/makers").json() == [{"id": "m1", "name": "Acme"}]
    assert client.get("/makers/m1").json()["name"] == "Acme"
    assert client.get("/makers/zzz").status_code == 404


def test_product_search(client):
    by_name = client.get("/products/search", params={"q": "phone b"}).json()
    assert [p["id"] for p in by_name] == ["p2"]
    assert by_name[0]["brand"] == "Unknown"

    by_category = client.get("/products/search", params={"category": "smartphone"}).json()
    assert {p["id"] for p in by_category} == {"p1", "p2", "p3"}
    assert client.get("/products/search", params={"category": "empty"}).json() == []


def test_variants_sorted_by_price(client, repo):
    repo.add_variant("v0", "p1", 50, variant_name="64GB")
    data = client.get("/products/p1/variants").json()
    assert [v["id"] for v in data] == ["v0", "v1"]


def test_catalogue_store_failure_is_500(client, repo, monkeypatch):
    async def failing(*args, **kwargs):
        raise ConnectionError("db down")

    monkeypatch.setattr(repo, "list_categories", failing)
    assert client.get("/categories").status_code == 500


def test_health(client):
    data = client.get("/health").json()
    assert data["status"] == "healthy"
    assert data["components"]["repository"]["backend"] == "memory"


def test_health_reports_request_count(client):
    client.get("/categories")
    data = client.get("/health").json()
    assert data["requests_served"] >= 2
