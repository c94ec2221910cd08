"""Shared pytest fixtures: an in-memory catalogue, identity map and API client."""

import pytest
from fastapi.testclient import TestClient

from api import app, configure_state
from config import Settings
from identity import InMemoryIdentityProvider
from repository import InMemoryRepository

PHONE_SPECS = [
    {"eng_name": "battery", "kor_name": "배터리", "unit": "mAh",
     "is_positive": True, "icon_key": "battery"},
    {"eng_name": "weight", "kor_name": "무게", "unit": "g",
     "is_positive": False, "icon_key": "weight"},
    {"eng_name": "Price", "kor_name": "가격(중복)", "unit": "KRW",
     "is_positive": True, "icon_key": "dup"},
]


@pytest.fixture()
def repo() -> InMemoryRepository:
    """Three phones in category '1': prices 100/200/400, batteries 3000/5000/4000."""
    r = InMemoryRepository()
    r.add_category("1", "Smartphone", PHONE_SPECS, slug="smartphone")
    r.add_category("2", "Empty", [], slug="empty")
    r.add_maker("m1", "Acme")
    r.add_product("p1", "Phone A", "1", maker_id="m1", image_url="a.png",
                  common_specs={"battery": 3000, "weight": 180})
    r.add_product("p2", "Phone B", "1", common_specs={"battery": 5000, "weight": 200})
    r.add_product("p3", "Phone C", "1", maker_id="m1",
                  common_specs={"battery": 4000, "weight": 150})
    r.add_variant("v1", "p1", 100, variant_name="128GB")
    r.add_variant("v2", "p2", 200, variant_name="256GB")
    r.add_variant("v3", "p3", 400, variant_name="512GB", option_specs={"weight": 160})
    return r


@pytest.fixture()
def identity() -> InMemoryIdentityProvider:
    return InMemoryIdentityProvider({"good-token": "user-1", "other-token": "user-2"})


@pytest.fixture()
def settings() -> Settings:
    return Settings(max_candidates=5, history_page_size_max=50)


@pytest.fixture()
def client(settings, repo, identity) -> TestClient:
    """TestClient wired to in-memory collaborators; lifespan is not run."""
    configure_state(settings, repo, identity)
    return TestClient(app)


@pytest.fixture()
def auth_headers() -> dict[str, str]:
    return {"Authorization": "Bearer good-token"}
