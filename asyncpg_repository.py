"""
asyncpg_repository.py — Production PostgreSQL repository implementation.

Implements the ComparisonRepository interface on an asyncpg connection pool.

Tables read / written (keys are text or uuid and compared as text):
  category(id, slug, name, specs jsonb)
  maker(id, name, ...)
  product(id, name, image_url, common_specs jsonb, maker_id, category_id)
  product_variants(id, product_id, variant_name, price, option_specs jsonb)
  history(id, user_id, category_id, preference jsonb, created_at)
  score(history_id, variant_id, score)
"""

from __future__ import annotations

import json
import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Optional

import asyncpg

from models import (
    Category, HistoryRecord, HistoryScore, Maker,
    ProductSummary, VariantRecord, VariantSummary,
)
from repository import ComparisonRepository

logger = logging.getLogger(__name__)

# ── Connection Pool Manager ──────────────────────────────────────────────────

class DatabasePool:
    """Manages asyncpg connection pool lifecycle."""

    def __init__(self, dsn: str, min_size: int = 2, max_size: int = 10):
        self.dsn = dsn
        self.min_size = min_size
        self.max_size = max_size
        self._pool: Optional[asyncpg.Pool] = None

    async def initialize(self) -> None:
        """Create connection pool and install JSON codecs."""
        self._pool = await asyncpg.create_pool(
            self.dsn,
            min_size=self.min_size,
            max_size=self.max_size,
            command_timeout=30,
            init=self._init_connection,
        )
        logger.info(
            "Database pool initialized (min=%d, max=%d)", self.min_size, self.max_size
        )

    async def _init_connection(self, conn: asyncpg.Connection) -> None:
        """Per-connection setup: decode json/jsonb columns to Python objects."""
        for typename in ("json", "jsonb"):
            await conn.set_type_codec(
                typename,
                encoder=self._encode_json,
                decoder=json.loads,
                schema="pg_catalog",
            )

    @staticmethod
    def _encode_json(v: Any) -> str:
        return json.dumps(v, ensure_ascii=False)

    @property
    def pool(self) -> asyncpg.Pool:
        if self._pool is None:
            raise RuntimeError("Database pool not initialized. Call initialize() first.")
        return self._pool

    @asynccontextmanager
    async def acquire(self):
        async with self.pool.acquire() as conn:
            yield conn

    @asynccontextmanager
    async def transaction(self):
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                yield conn

    async def close(self) -> None:
        if self._pool:
            await self._pool.close()
            logger.info("Database pool closed")


# ── Comparison Repository ────────────────────────────────────────────────────

_VARIANT_SELECT = """
    SELECT v.id, v.variant_name, v.price, v.option_specs,
           p.id AS product_id, COALESCE(p.name, '') AS product_name, p.image_url,
           p.common_specs, m.name AS maker_name
    FROM product_variants v
    LEFT JOIN product p ON v.product_id = p.id
    LEFT JOIN maker m ON p.maker_id = m.id
"""


def _with_text_ids(row: asyncpg.Record, *keys: str) -> dict[str, Any]:
    """Row as a dict with the given key columns as text; ids may be uuid or integer."""
    data = dict(row)
    for key in keys:
        if data.get(key) is not None:
            data[key] = str(data[key])
    return data


class AsyncPGRepository(ComparisonRepository):
    """PostgreSQL-backed data store for the comparison service."""

    def __init__(self, db: DatabasePool):
        self.db = db

    # ── Comparison ───────────────────────────────────────────────────────

    async def fetch_variants(self, variant_ids: list[str]) -> list[VariantRecord]:
        if not variant_ids:
            return []
        async with self.db.acquire() as conn:
            rows = await conn.fetch(
                _VARIANT_SELECT + " WHERE v.id::text = ANY($1::text[])",
                [str(v) for v in variant_ids],
            )
        by_id = {
            str(r["id"]): VariantRecord(**_with_text_ids(r, "id", "product_id"))
            for r in rows
        }
        # Keep the caller's ordering
        return [by_id[str(v)] for v in variant_ids if str(v) in by_id]

    async def fetch_category_specs(self, category_id: str) -> Optional[list[dict[str, Any]]]:
        async with self.db.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT specs FROM category WHERE id::text = $1", str(category_id)
            )
        if row is None:
            return None
        return list(row["specs"] or [])

    # ── History ──────────────────────────────────────────────────────────

    async def create_history(
        self,
        user_id: str,
        category_id: str,
        weights: dict[str, float],
        scores: list[HistoryScore],
    ) -> HistoryRecord:
        history_id = str(uuid.uuid4())
        created_at = datetime.now(timezone.utc)

        async with self.db.transaction() as conn:
            await conn.execute(
                """
                INSERT INTO history (id, user_id, category_id, preference, created_at)
                VALUES ($1, $2, $3, $4, $5)
                """,
                history_id,
                user_id,
                category_id,
                weights,
                created_at,
            )
            await conn.executemany(
                "INSERT INTO score (history_id, variant_id, score) VALUES ($1, $2, $3)",
                [(history_id, s.variant_id, s.score) for s in scores],
            )
        logger.info("Created history %s (%d scores)", history_id, len(scores))

        return HistoryRecord(
            id=history_id,
            owner_user_id=user_id,
            category_id=category_id,
            weights=weights,
            created_at=created_at,
            scores=scores,
        )

    async def list_histories(
        self, user_id: str, offset: int, limit: int,
    ) -> tuple[list[HistoryRecord], int]:
        async with self.db.acquire() as conn:
            total = await conn.fetchval(
                "SELECT COUNT(*) FROM history WHERE user_id::text = $1", str(user_id)
            )
            rows = await conn.fetch(
                """
                SELECT id, user_id, category_id, preference, created_at
                FROM history
                WHERE user_id::text = $1
                ORDER BY created_at DESC
                LIMIT $2 OFFSET $3
                """,
                str(user_id),
                limit,
                offset,
            )
        return [self._history_from_row(r) for r in rows], int(total or 0)

    async def get_history(self, history_id: str, user_id: str) -> Optional[HistoryRecord]:
        async with self.db.acquire() as conn:
            row = await conn.fetchrow(
                """
                SELECT id, user_id, category_id, preference, created_at
                FROM history
                WHERE id::text = $1 AND user_id::text = $2
                """,
                str(history_id),
                str(user_id),
            )
            if row is None:
                return None
            score_rows = await conn.fetch(
                """
                SELECT variant_id, score FROM score
                WHERE history_id::text = $1
                ORDER BY score DESC, variant_id::text
                """,
                str(history_id),
            )
        record = self._history_from_row(row)
        record.scores = [
            HistoryScore(variant_id=str(s["variant_id"]), score=s["score"])
            for s in score_rows
        ]
        return record

    @staticmethod
    def _history_from_row(row: asyncpg.Record) -> HistoryRecord:
        return HistoryRecord(
            id=str(row["id"]),
            owner_user_id=str(row["user_id"]),
            category_id=str(row["category_id"]),
            weights=row["preference"] or {},
            created_at=row["created_at"],
        )

    # ── Catalogue ────────────────────────────────────────────────────────

    async def list_categories(self) -> list[Category]:
        async with self.db.acquire() as conn:
            rows = await conn.fetch(
                "SELECT id, slug, name, specs FROM category ORDER BY id"
            )
        return [
            Category(id=str(r["id"]), slug=r["slug"], name=r["name"], specs=r["specs"] or [])
            for r in rows
        ]

    async def list_makers(self) -> list[Maker]:
        async with self.db.acquire() as conn:
            rows = await conn.fetch("SELECT * FROM maker")
        return [Maker(**_with_text_ids(r, "id")) for r in rows]

    async def get_maker(self, maker_id: str) -> Optional[Maker]:
        async with self.db.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT * FROM maker WHERE id::text = $1", str(maker_id)
            )
        return Maker(**_with_text_ids(row, "id")) if row else None

    async def search_products(
        self, query: Optional[str] = None, category_slug: Optional[str] = None,
    ) -> list[ProductSummary]:
        conditions, vals, idx = [], [], 1

        if category_slug:
            conditions.append(f"c.slug = ${idx}")
            vals.append(category_slug)
            idx += 1

        if query:
            conditions.append(f"p.name ILIKE ${idx}")
            vals.append(f"%{query}%")
            idx += 1

        where = "WHERE " + " AND ".join(conditions) if conditions else ""
        sql = f"""
            SELECT p.id, p.name, p.image_url, p.common_specs, m.name AS maker_name
            FROM product p
            JOIN category c ON p.category_id = c.id
            LEFT JOIN maker m ON p.maker_id = m.id
            {where}
            ORDER BY p.name
        """
        async with self.db.acquire() as conn:
            rows = await conn.fetch(sql, *vals)
        return [
            ProductSummary(
                id=str(r["id"]),
                name=r["name"],
                brand=r["maker_name"] or "Unknown",
                image_url=r["image_url"],
                specs=r["common_specs"] or {},
            )
            for r in rows
        ]

    async def list_variants(self, product_id: str) -> list[VariantSummary]:
        async with self.db.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT id, variant_name, price, option_specs
                FROM product_variants
                WHERE product_id::text = $1
                ORDER BY price ASC
                """,
                str(product_id),
            )
        return [
            VariantSummary(
                id=str(r["id"]),
                variant_name=r["variant_name"],
                price=r["price"],
                option_specs=r["option_specs"] or {},
            )
            for r in rows
        ]

    # ── Health Check ─────────────────────────────────────────────────────

    async def health_check(self) -> dict:
        try:
            async with self.db.acquire() as conn:
                version = await conn.fetchval("SELECT version()")
                pool = self.db.pool
                return {
                    "status": "healthy",
                    "backend": "postgres",
                    "postgres_version": version,
                    "pool_size": pool.get_size(),
                    "pool_free": pool.get_idle_size(),
                }
        except Exception as e:
            return {"status": "unhealthy", "error": str(e)}
