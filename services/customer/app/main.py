"""
Customer Service - FastAPI エントリーポイント

Read 側 (検索・詳細・分析) は Redis キャッシュ経由、
Write 側 (作成・更新・削除・インポート) は DB に直接書き込む。

┌──────────┐   GET    ┌──────────────────┐  miss  ┌──────────────┐
│  Client  │ ───────▶ │ CustomerQuery    │ ─────▶ │  PostgreSQL  │
│          │          │ Service          │        │ (JOIN 1 回)  │
│          │          └───────┬──────────┘        └──────────────┘
│          │                  │ hit / set(TTL)
│          │                  ▼
│          │           ┌──────────────┐
│          │           │    Redis     │
│          │           └──────────────┘
│          │  POST/PUT/DELETE  ──▶ commands ──▶ PostgreSQL (トランザクション)
└──────────┘
"""

import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime
from decimal import Decimal

import redis.asyncio as aioredis
from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from . import audit, commands, csv_io
from .analytics import CustomerAnalyticsService
from .audit import AuditActor
from .cache import ResultCache
from .errors import DataIntegrityError, DuplicateCustomerError, ValidationError
from .models import CustomerInput
from .search import SearchParams
from .service import CustomerQueryService
from .store import StoreScope, store_scope
from .summaries import PREMIUM_ORDER_COUNT, PREMIUM_SPEND_THRESHOLD
from .validation import validate_page_parameters

DATABASE_URL = os.environ["DATABASE_URL"]
REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379")
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
CORS_ORIGINS = os.environ.get("CORS_ORIGINS", "*").split(",")

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

engine = create_async_engine(DATABASE_URL, echo=False)
async_session = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
redis_pool: aioredis.Redis | None = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    global redis_pool
    redis_pool = aioredis.from_url(REDIS_URL, decode_responses=True)
    yield
    await redis_pool.aclose()
    await engine.dispose()


app = FastAPI(title="Customer Service", lifespan=lifespan)

# CORS 設定 (管理画面からのアクセスを許可)
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── 依存関係 ─────────────────────────────────────


def get_store_scope() -> StoreScope:
    return store_scope(async_session)


def get_cache() -> ResultCache:
    return ResultCache(redis_pool)


def get_query_service(
    scope: StoreScope = Depends(get_store_scope),
    cache: ResultCache = Depends(get_cache),
) -> CustomerQueryService:
    return CustomerQueryService(scope, cache)


def get_analytics_service(
    scope: StoreScope = Depends(get_store_scope),
    cache: ResultCache = Depends(get_cache),
) -> CustomerAnalyticsService:
    return CustomerAnalyticsService(scope, cache)


def get_actor(
    x_user_id: str | None = Header(default=None),
    x_user_name: str | None = Header(default=None),
) -> AuditActor:
    return AuditActor(user_id=x_user_id, user_name=x_user_name)


# ── 例外ハンドラ ─────────────────────────────────


@app.exception_handler(ValidationError)
async def handle_validation_error(request: Request, exc: ValidationError):
    return JSONResponse(
        status_code=422,
        content={
            "detail": str(exc),
            "errors": [f.model_dump() for f in exc.failures],
        },
    )


@app.exception_handler(DuplicateCustomerError)
async def handle_duplicate(request: Request, exc: DuplicateCustomerError):
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(DataIntegrityError)
async def handle_integrity_error(request: Request, exc: DataIntegrityError):
    logger.error("Data integrity error on %s: %s", request.url.path, exc)
    return JSONResponse(
        status_code=500,
        content={"detail": "An error occurred while processing your request"},
    )


# ── Query Endpoints (Read 側) ────────────────────


@app.get("/customers/search")
async def search_customers(
    search_term: str | None = None,
    status: str = "All",
    sort_by: str = "Name",
    sort_direction: str = "Ascending",
    page_number: str = "1",
    page_size: str = "10",
    service: CustomerQueryService = Depends(get_query_service),
):
    """
    検索語・ステータスで絞り込み、ソートして 1 ページ分を返す。
    ページ指定は文字列で受け、整数でない値も範囲外と同じく 400 にする。
    """
    try:
        page_number, page_size = int(page_number), int(page_size)
    except ValueError:
        raise HTTPException(400, "Page number and page size must be integers")
    check = validate_page_parameters(page_number, page_size)
    if not check.is_valid:
        raise HTTPException(400, "; ".join(check.messages))

    params = SearchParams(
        search_term=search_term,
        status=status,
        sort_by=sort_by,
        sort_direction=sort_direction,
        page_number=page_number,
        page_size=page_size,
    )
    try:
        return await service.search_customers(params)
    except Exception:
        logger.exception("Error occurred while searching for customers")
        raise HTTPException(500, "An error occurred while processing your request")


@app.get("/customers/recent")
async def recent_customers(
    count: int = 10,
    service: CustomerQueryService = Depends(get_query_service),
):
    return await service.get_recent_customers(count)


@app.get("/customers/top")
async def top_customers(
    count: int = 10,
    service: CustomerQueryService = Depends(get_query_service),
):
    return await service.get_top_customers_by_spend(count)


@app.get("/customers/summaries")
async def customer_summaries(
    premium_threshold: Decimal = PREMIUM_SPEND_THRESHOLD,
    premium_order_count: int = PREMIUM_ORDER_COUNT,
    include_premium_details: bool = False,
    service: CustomerQueryService = Depends(get_query_service),
):
    return await service.get_customer_summaries(
        premium_threshold, premium_order_count, include_premium_details
    )


@app.get("/customers/export")
async def export_customers(service: CustomerQueryService = Depends(get_query_service)):
    """全顧客を CSV でエクスポート (キャッシュしない)"""
    customers = await service.load_customers()
    return Response(
        content=csv_io.export_customers_csv(customers),
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="customers.csv"'},
    )


@app.get("/customers/{customer_id}")
async def get_customer(
    customer_id: int,
    service: CustomerQueryService = Depends(get_query_service),
):
    customer = await service.get_customer_details(customer_id)
    if customer is None:
        raise HTTPException(404, "Customer not found")
    return customer


@app.get("/customers/{customer_id}/audit")
async def customer_audit_history(
    customer_id: int,
    start: datetime | None = None,
    end: datetime | None = None,
    action_type: str | None = None,
    scope: StoreScope = Depends(get_store_scope),
):
    async with scope() as store:
        return await audit.get_customer_audit_history(store, customer_id, start, end, action_type)


@app.get("/audit/recent")
async def recent_audit_activity(count: int = 50, scope: StoreScope = Depends(get_store_scope)):
    async with scope() as store:
        return await audit.get_recent_audit_activity(store, count)


# ── Command Endpoints (Write 側) ─────────────────


@app.post("/customers", status_code=201)
async def create_customer(
    req: CustomerInput,
    actor: AuditActor = Depends(get_actor),
    scope: StoreScope = Depends(get_store_scope),
):
    async with scope() as store:
        customer_id = await commands.create_customer(store, req, actor)
    return {"id": customer_id}


@app.put("/customers/{customer_id}")
async def update_customer(
    customer_id: int,
    req: CustomerInput,
    actor: AuditActor = Depends(get_actor),
    scope: StoreScope = Depends(get_store_scope),
):
    async with scope() as store:
        updated = await commands.update_customer(store, customer_id, req, actor)
    if not updated:
        raise HTTPException(404, "Customer not found")
    return {"id": customer_id, "updated": True}


@app.delete("/customers/{customer_id}")
async def delete_customer(
    customer_id: int,
    actor: AuditActor = Depends(get_actor),
    scope: StoreScope = Depends(get_store_scope),
):
    async with scope() as store:
        deleted = await commands.delete_customer(store, customer_id, actor)
    if not deleted:
        raise HTTPException(404, "Customer not found")
    return {"id": customer_id, "deleted": True}


@app.post("/customers/import")
async def import_customers(
    request: Request,
    actor: AuditActor = Depends(get_actor),
    scope: StoreScope = Depends(get_store_scope),
):
    """text/csv の本文をインポートする。行ごとの結果を返す。"""
    try:
        content = (await request.body()).decode("utf-8-sig")
    except UnicodeDecodeError:
        raise HTTPException(400, "CSV body must be UTF-8 encoded")
    async with scope() as store:
        return await csv_io.import_customers_csv(store, content, actor)


# ── Analytics Endpoints ──────────────────────────


@app.get("/analytics/acquisition")
async def analytics_acquisition(
    months: int = 12,
    service: CustomerAnalyticsService = Depends(get_analytics_service),
):
    return await service.get_acquisition(months)


@app.get("/analytics/regions")
async def analytics_regions(service: CustomerAnalyticsService = Depends(get_analytics_service)):
    return await service.get_regional_distribution()


@app.get("/analytics/top-customers")
async def analytics_top_customers(
    count: int = 10,
    service: CustomerAnalyticsService = Depends(get_analytics_service),
):
    return await service.get_top_customers_by_order_value(count)


@app.get("/analytics/retention")
async def analytics_retention(
    months: int = 12,
    service: CustomerAnalyticsService = Depends(get_analytics_service),
):
    return await service.get_retention(months)


@app.get("/analytics/activity")
async def analytics_activity(
    days: int = 30,
    service: CustomerAnalyticsService = Depends(get_analytics_service),
):
    return await service.get_activity_trends(days)


@app.get("/health")
async def health():
    return {"status": "ok", "service": "customer-service"}
