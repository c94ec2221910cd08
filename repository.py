"""
Product Comparison — Data Store Abstraction (Repository Pattern)

The comparison service only talks to this interface. Production uses
asyncpg_repository.AsyncPGRepository; InMemoryRepository backs tests and
local development.
"""
from __future__ import annotations
import logging
from datetime import datetime, timezone
from typing import Any, Optional
from uuid import uuid4

from models import (
    Category, HistoryRecord, HistoryScore, Maker,
    ProductSummary, VariantRecord, VariantSummary,
)

logger = logging.getLogger(__name__)


# ============================================================
# Interface
# ============================================================

class ComparisonRepository:
    """
    Abstract data store access. Lookups return None / empty results for
    unknown ids; errors from the backing store propagate unchanged.
    """

    async def fetch_variants(self, variant_ids: list[str]) -> list[VariantRecord]:
        raise NotImplementedError

    async def fetch_category_specs(self, category_id: str) -> Optional[list[dict[str, Any]]]:
        raise NotImplementedError

    async def create_history(
        self,
        user_id: str,
        category_id: str,
        weights: dict[str, float],
        scores: list[HistoryScore],
    ) -> HistoryRecord:
        """Create one history record and all of its score rows atomically."""
        raise NotImplementedError

    async def list_histories(
        self, user_id: str, offset: int, limit: int,
    ) -> tuple[list[HistoryRecord], int]:
        raise NotImplementedError

    async def get_history(self, history_id: str, user_id: str) -> Optional[HistoryRecord]:
        raise NotImplementedError

    async def list_categories(self) -> list[Category]:
        raise NotImplementedError

    async def list_makers(self) -> list[Maker]:
        raise NotImplementedError

    async def get_maker(self, maker_id: str) -> Optional[Maker]:
        raise NotImplementedError

    async def search_products(
        self, query: Optional[str] = None, category_slug: Optional[str] = None,
    ) -> list[ProductSummary]:
        raise NotImplementedError

    async def list_variants(self, product_id: str) -> list[VariantSummary]:
        raise NotImplementedError

    async def health_check(self) -> dict:
        return {"status": "healthy"}


# ============================================================
# In-Memory Repository (for testing / local dev)
# ============================================================

class InMemoryRepository(ComparisonRepository):
    """In-memory implementation for testing without a database."""

    def __init__(self):
        self.categories: dict[str, dict[str, Any]] = {}
        self.makers: dict[str, dict[str, Any]] = {}
        self.products: dict[str, dict[str, Any]] = {}
        self.variants: dict[str, dict[str, Any]] = {}
        self.histories: dict[str, HistoryRecord] = {}

    # ── Seeding ──────────────────────────────────────────────────────────

    def add_category(self, category_id: str, name: str, specs: list[dict],
                     slug: Optional[str] = None) -> None:
        self.categories[category_id] = {
            'id': category_id, 'slug': slug or name.lower(), 'name': name, 'specs': specs,
        }

    def add_maker(self, maker_id: str, name: str) -> None:
        self.makers[maker_id] = {'id': maker_id, 'name': name}

    def add_product(self, product_id: str, name: str, category_id: str,
                    maker_id: Optional[str] = None, image_url: Optional[str] = None,
                    common_specs: Optional[dict] = None) -> None:
        self.products[product_id] = {
            'id': product_id, 'name': name, 'category_id': category_id,
            'maker_id': maker_id, 'image_url': image_url,
            'common_specs': common_specs or {},
        }

    def add_variant(self, variant_id: str, product_id: str, price: Optional[float],
                    variant_name: Optional[str] = None,
                    option_specs: Optional[dict] = None) -> None:
        self.variants[variant_id] = {
            'id': variant_id, 'product_id': product_id, 'price': price,
            'variant_name': variant_name, 'option_specs': option_specs or {},
        }

    # ── Comparison ───────────────────────────────────────────────────────

    async def fetch_variants(self, variant_ids: list[str]) -> list[VariantRecord]:
        records = []
        for vid in variant_ids:
            v = self.variants.get(vid)
            if v is None:
                continue
            p = self.products.get(v['product_id'], {})
            maker = self.makers.get(p.get('maker_id') or '')
            records.append(VariantRecord(
                id=v['id'],
                variant_name=v['variant_name'],
                price=v['price'],
                option_specs=dict(v['option_specs']),
                product_id=v['product_id'],
                product_name=p.get('name', ''),
                image_url=p.get('image_url'),
                common_specs=dict(p.get('common_specs') or {}),
                maker_name=maker['name'] if maker else None,
            ))
        return records

    async def fetch_category_specs(self, category_id: str) -> Optional[list[dict[str, Any]]]:
        cat = self.categories.get(category_id)
        if cat is None:
            return None
        return [dict(s) for s in cat['specs']]

    # ── History ──────────────────────────────────────────────────────────

    async def create_history(
        self,
        user_id: str,
        category_id: str,
        weights: dict[str, float],
        scores: list[HistoryScore],
    ) -> HistoryRecord:
        record = HistoryRecord(
            id=str(uuid4()),
            owner_user_id=user_id,
            category_id=category_id,
            weights=dict(weights),
            created_at=datetime.now(timezone.utc),
            scores=list(scores),
        )
        self.histories[record.id] = record
        return record

    async def list_histories(
        self, user_id: str, offset: int, limit: int,
    ) -> tuple[list[HistoryRecord], int]:
        owned = [h for h in self.histories.values() if h.owner_user_id == user_id]
        owned.sort(key=lambda h: h.created_at, reverse=True)
        return owned[offset:offset + limit], len(owned)

    async def get_history(self, history_id: str, user_id: str) -> Optional[HistoryRecord]:
        h = self.histories.get(history_id)
        if h is None or h.owner_user_id != user_id:
            return None
        return h

    # ── Catalogue ────────────────────────────────────────────────────────

    async def list_categories(self) -> list[Category]:
        return [Category(**c) for c in sorted(self.categories.values(), key=lambda c: c['id'])]

    async def list_makers(self) -> list[Maker]:
        return [Maker(**m) for m in self.makers.values()]

    async def get_maker(self, maker_id: str) -> Optional[Maker]:
        m = self.makers.get(maker_id)
        return Maker(**m) if m else None

    async def search_products(
        self, query: Optional[str] = None, category_slug: Optional[str] = None,
    ) -> list[ProductSummary]:
        results = []
        for p in self.products.values():
            if category_slug:
                cat = self.categories.get(p['category_id'])
                if not cat or cat['slug'] != category_slug:
                    continue
            if query and query.lower() not in p['name'].lower():
                continue
            maker = self.makers.get(p.get('maker_id') or '')
            results.append(ProductSummary(
                id=p['id'],
                name=p['name'],
                brand=maker['name'] if maker else 'Unknown',
                image_url=p.get('image_url'),
                specs=dict(p['common_specs']),
            ))
        return results

    async def list_variants(self, product_id: str) -> list[VariantSummary]:
        rows = [v for v in self.variants.values() if v['product_id'] == product_id]
        rows.sort(key=lambda v: (v['price'] is None, v['price'] or 0))
        return [
            VariantSummary(
                id=v['id'], variant_name=v['variant_name'],
                price=v['price'], option_specs=dict(v['option_specs']),
            )
            for v in rows
        ]

    async def health_check(self) -> dict:
        return {
            "status": "healthy",
            "backend": "memory",
            "variants": len(self.variants),
            "histories": len(self.histories),
        }
