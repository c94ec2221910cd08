"""
Product Comparison — FastAPI Application Layer

Endpoints:
  1. POST /products/calculate          — Rank selected variants by weighted specs
  2. GET  /products/search             — Product search (name / category slug)
  3. GET  /products/{id}/variants      — Variants of a product, cheapest first
  4. GET  /categories                  — Categories with their spec lists
  5. GET  /makers, /makers/{id}        — Makers
  6. GET  /histories                   — Caller's saved comparisons (paginated)
  7. GET  /histories/{id}              — Replay one saved comparison
  8. GET  /health                      — Health check

Auth: optional ``Authorization: Bearer <token>``; required for /histories.
"""
from __future__ import annotations
import logging
import time
from contextlib import asynccontextmanager
from typing import Any, Awaitable, Optional, TypeVar

from fastapi import BackgroundTasks, Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from asyncpg_repository import AsyncPGRepository, DatabasePool
from comparison_service import (
    ComparisonService, InvalidRequestError, NotFoundError, UpstreamError,
)
from config import Settings, configure_logging, get_settings
from history_recorder import HistoryRecorder
from identity import (
    AsyncPGIdentityProvider, IdentityProvider, InMemoryIdentityProvider, parse_bearer,
)
from models import (
    CalculateRequest, Category, ComparisonResult, HealthResponse,
    HistoryDetail, HistoryListResponse, Maker, ProductSummary, VariantSummary,
)
from repository import ComparisonRepository, InMemoryRepository

logger = logging.getLogger(__name__)

T = TypeVar("T")


# ============================================================
# Application State (shared singletons)
# ============================================================

class AppState:
    """Holds all shared service instances."""
    settings: Settings
    repo: ComparisonRepository
    identity: IdentityProvider
    service: ComparisonService
    recorder: HistoryRecorder
    db: Optional[DatabasePool]
    start_time: float
    request_count: int = 0

    def __init__(self):
        self.db = None
        self.start_time = time.monotonic()
        self.request_count = 0


_state = AppState()


def configure_state(
    settings: Settings,
    repo: ComparisonRepository,
    identity: IdentityProvider,
    db: Optional[DatabasePool] = None,
) -> AppState:
    """Wire collaborators into the shared state."""
    _state.settings = settings
    _state.repo = repo
    _state.identity = identity
    _state.db = db
    _state.service = ComparisonService(repo, max_candidates=settings.max_candidates)
    _state.recorder = HistoryRecorder(repo, identity)
    return _state


# ============================================================
# Lifespan: Startup / Shutdown
# ============================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize services on startup, cleanup on shutdown."""
    settings = get_settings()
    configure_logging(settings)
    logger.info("Starting %s (backend=%s)...", settings.app_name, settings.repository_backend)

    if settings.repository_backend == "postgres":
        db = DatabasePool(settings.asyncpg_dsn, settings.db_pool_min, settings.db_pool_max)
        await db.initialize()
        configure_state(settings, AsyncPGRepository(db), AsyncPGIdentityProvider(db), db)
    else:
        repo = InMemoryRepository()
        _seed_demo_catalogue(repo)
        tokens = {"dev-token": "dev-user"} if settings.app_env == "development" else {}
        configure_state(settings, repo, InMemoryIdentityProvider(tokens))

    logger.info("System ready. Environment: %s", settings.app_env)
    yield

    logger.info("Shutting down %s...", settings.app_name)
    if _state.db is not None:
        await _state.db.close()


def _seed_demo_catalogue(repo: InMemoryRepository):
    """Seed a small smartphone catalogue into the in-memory repo."""
    repo.add_category("1", "Smartphone", slug="smartphone", specs=[
        {"eng_name": "battery", "kor_name": "배터리", "unit": "mAh",
         "is_positive": True, "icon_key": "battery"},
        {"eng_name": "weight", "kor_name": "무게", "unit": "g",
         "is_positive": False, "icon_key": "weight"},
        {"eng_name": "screen_resolution", "kor_name": "해상도", "unit": "px",
         "is_positive": True, "icon_key": "screen"},
    ])
    repo.add_maker("1", "Samsung")
    repo.add_maker("2", "Apple")
    repo.add_product("1", "Galaxy S24", "1", maker_id="1",
                     common_specs={"battery": 4000, "weight": 167,
                                   "screen_resolution": {"width": 1080, "height": 2340}})
    repo.add_product("2", "iPhone 15", "1", maker_id="2",
                     common_specs={"battery": 3349, "weight": 171,
                                   "screen_resolution": {"width": 1179, "height": 2556}})
    repo.add_variant("101", "1", 1155000, variant_name="256GB")
    repo.add_variant("102", "1", 1309000, variant_name="512GB")
    repo.add_variant("201", "2", 1250000, variant_name="128GB")
    repo.add_variant("202", "2", 1400000, variant_name="256GB")


# ============================================================
# Auth & Dependencies
# ============================================================

async def get_token(authorization: Optional[str] = Header(None)) -> Optional[str]:
    """Bearer token if present; absence means an anonymous caller."""
    return parse_bearer(authorization)


async def require_user(token: Optional[str] = Depends(get_token)) -> str:
    """Resolve the caller or reject with 401."""
    if not token:
        raise HTTPException(401, "Unauthorized")
    try:
        user_id = await _state.identity.resolve_identity(token)
    except Exception:
        logger.exception("Identity resolution failed")
        raise HTTPException(500, "Identity provider unavailable")
    if not user_id:
        raise HTTPException(401, "Invalid token")
    return user_id


# ============================================================
# FastAPI App
# ============================================================

app = FastAPI(
    title="Product Comparison API",
    description="Ranks product variants by user-weighted, normalized specs.",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def timing_middleware(request: Request, call_next):
    start = time.monotonic()
    _state.request_count += 1
    response = await call_next(request)
    elapsed = int((time.monotonic() - start) * 1000)
    response.headers["X-Response-Time-Ms"] = str(elapsed)
    return response


# ============================================================
# Error Mapping
# ============================================================

@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={
        "detail": "Invalid request",
        "errors": [
            {"loc": list(e.get("loc", [])), "msg": e.get("msg", "")}
            for e in exc.errors()
        ],
    })


@app.exception_handler(InvalidRequestError)
async def invalid_request_handler(request: Request, exc: InvalidRequestError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(UpstreamError)
async def upstream_error_handler(request: Request, exc: UpstreamError):
    logger.error("Upstream failure on %s %s: %s", request.method, request.url.path,
                 exc, exc_info=exc)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


async def _passthrough(call: Awaitable[T], what: str) -> T:
    """Await a plain catalogue read; store errors become a generic 500."""
    try:
        return await call
    except Exception:
        logger.exception("Failed to %s", what)
        raise HTTPException(500, f"Failed to {what}")


# ============================================================
# 1. POST /products/calculate — Ranking
# ============================================================

@app.post("/products/calculate", response_model=ComparisonResult, tags=["Comparison"])
async def calculate(
    request: CalculateRequest,
    background_tasks: BackgroundTasks,
    token: Optional[str] = Depends(get_token),
):
    """
    Rank 2+ variants of one category by user-weighted specs.

    The ranking is returned as soon as it is computed. When a bearer token
    is supplied the comparison is saved to the caller's history afterwards;
    a failed save never affects this response.
    """
    result = await _state.service.calculate(request)

    logger.info(
        "[calculate] category=%s candidates=%d weighted=%d authenticated=%s",
        request.category_id, len(result.ranked_data),
        sum(1 for w in request.weights.values() if w > 0), bool(token))

    background_tasks.add_task(
        _state.recorder.record,
        token, request.category_id, dict(request.weights), list(result.ranked_data),
    )
    return result


# ============================================================
# 2-3. Products & Variants
# ============================================================

@app.get("/products/search", response_model=list[ProductSummary], tags=["Catalogue"])
async def search_products(
    q: Optional[str] = Query(None, description="Name contains (case-insensitive)"),
    category: Optional[str] = Query(None, description="Category slug"),
):
    return await _passthrough(_state.repo.search_products(q, category), "search products")


@app.get("/products/{product_id}/variants", response_model=list[VariantSummary],
         tags=["Catalogue"])
async def list_variants(product_id: str):
    return await _passthrough(_state.repo.list_variants(product_id), "fetch variants")


# ============================================================
# 4-5. Categories & Makers
# ============================================================

@app.get("/categories", response_model=list[Category], tags=["Catalogue"])
async def list_categories():
    return await _passthrough(_state.repo.list_categories(), "fetch categories")


@app.get("/makers", response_model=list[Maker], tags=["Catalogue"])
async def list_makers():
    return await _passthrough(_state.repo.list_makers(), "fetch makers")


@app.get("/makers/{maker_id}", response_model=Maker, tags=["Catalogue"])
async def get_maker(maker_id: str):
    maker = await _passthrough(_state.repo.get_maker(maker_id), "fetch maker")
    if maker is None:
        raise HTTPException(404, "Maker not found")
    return maker


# ============================================================
# 6-7. History
# ============================================================

@app.get("/histories", response_model=HistoryListResponse, tags=["History"])
async def list_histories(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1),
    user_id: str = Depends(require_user),
):
    """Caller's saved comparisons, newest first."""
    limit = min(limit, _state.settings.history_page_size_max)
    return await _state.service.list_histories(user_id, page, limit)


@app.get("/histories/{history_id}", response_model=HistoryDetail, tags=["History"])
async def get_history(history_id: str, user_id: str = Depends(require_user)):
    """Replay a saved comparison against current product data."""
    return await _state.service.replay_history(history_id, user_id)


# ============================================================
# 8. GET /health — Health Check
# ============================================================

@app.get("/health", response_model=HealthResponse, tags=["System"])
async def health_check():
    repo_health: dict[str, Any] = await _state.repo.health_check()
    status = "healthy" if repo_health.get("status") == "healthy" else "degraded"
    return HealthResponse(
        status=status,
        components={
            "repository": repo_health,
            "scoring_engine": {"status": "healthy"},
        },
        version=_state.settings.version,
        uptime_seconds=int(time.monotonic() - _state.start_time),
        requests_served=_state.request_count,
    )


# ============================================================
# Entry Point
# ============================================================

if __name__ == "__main__":
    import uvicorn
    settings = get_settings()
    uvicorn.run("api:app", host=settings.host, port=settings.port, reload=settings.reload)
