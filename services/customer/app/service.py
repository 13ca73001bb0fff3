"""
Customer Service - クエリサービス (Read 側)

制御フロー:
  1. 検索条件から fingerprint を作り、キャッシュを引く
  2. ミスなら DB から JOIN 結果の行を取得 (唯一の I/O 待ち)
  3. Reader でオブジェクトグラフを再構築
  4. フィルタ → ソート → ページング → DTO 化
  5. キャッシュに保存して返す

2〜4 で例外やキャンセルが起きた場合、5 には到達しないので
中途半端な結果がキャッシュされることはない。
"""

import logging
from decimal import Decimal

from .cache import (
    DETAILS_TTL,
    SEARCH_TTL,
    SUMMARIES_TTL,
    TOP_CUSTOMERS_TTL,
    ResultCache,
    fingerprint,
)
from .models import Customer
from .reader import read_customer, read_customers
from .search import SearchParams, SortDirection, SortField, search
from .store import StoreScope
from .summaries import (
    PREMIUM_ORDER_COUNT,
    PREMIUM_SPEND_THRESHOLD,
    CustomerDto,
    CustomerSearchResult,
    CustomerSummary,
    summarize_customers,
    to_customer_dto,
    top_customers_by_spend,
)

logger = logging.getLogger(__name__)


class CustomerQueryService:
    def __init__(self, store_scope: StoreScope, cache: ResultCache) -> None:
        self.store_scope = store_scope
        self.cache = cache

    async def load_customers(self) -> list[Customer]:
        """全顧客のグラフを 1 回のクエリで取得して再構築する。"""
        logger.info("Fetching customers from database")
        async with self.store_scope() as store:
            rows = await store.fetch_customer_rows()
        customers = read_customers(rows)
        logger.info("Rebuilt %d customers from %d rows", len(customers), len(rows))
        return customers

    # ── 検索 ─────────────────────────────────────

    async def search_customers(self, params: SearchParams) -> CustomerSearchResult:
        key = fingerprint("search", **params.model_dump())

        async def compute() -> CustomerSearchResult:
            customers = await self.load_customers()
            page = search(customers, params)
            return CustomerSearchResult(
                customers=[to_customer_dto(c) for c in page.items],
                total_count=page.total_count,
                page_count=page.page_count,
                search_parameters=params,
            )

        return await self.cache.get_or_compute(key, CustomerSearchResult, SEARCH_TTL, compute)

    async def get_recent_customers(self, count: int = 10) -> CustomerSearchResult:
        params = SearchParams(
            sort_by=SortField.CREATED_DATE,
            sort_direction=SortDirection.DESCENDING,
            page_size=count,
        )
        return await self.search_customers(params)

    async def get_top_customers_by_spend(self, count: int = 10) -> list[CustomerDto]:
        key = fingerprint("top_spend", count=count)

        async def compute() -> list[CustomerDto]:
            return top_customers_by_spend(await self.load_customers(), count)

        return await self.cache.get_or_compute(key, list[CustomerDto], TOP_CUSTOMERS_TTL, compute)

    # ── 詳細 ─────────────────────────────────────

    async def get_customer_details(self, customer_id: int) -> Customer | None:
        """見つからなければ None。None はキャッシュしない。"""
        key = fingerprint("details", customer_id=customer_id)

        async def compute() -> Customer | None:
            logger.info("Fetching customer details for id=%s", customer_id)
            async with self.store_scope() as store:
                rows = await store.fetch_customer_rows(customer_id)
            customer = read_customer(rows, customer_id)
            if customer is None:
                logger.warning("Customer %s not found", customer_id)
            return customer

        return await self.cache.get_or_compute(key, Customer, DETAILS_TTL, compute)

    # ── サマリー ─────────────────────────────────

    async def get_customer_summaries(
        self,
        premium_threshold: Decimal = PREMIUM_SPEND_THRESHOLD,
        premium_order_count: int = PREMIUM_ORDER_COUNT,
        include_premium_details: bool = False,
    ) -> list[CustomerSummary]:
        key = fingerprint(
            "summaries",
            premium_threshold=premium_threshold,
            premium_order_count=premium_order_count,
            include_premium_details=include_premium_details,
        )

        async def compute() -> list[CustomerSummary]:
            return summarize_customers(
                await self.load_customers(),
                premium_threshold,
                premium_order_count,
                include_premium_details,
            )

        return await self.cache.get_or_compute(key, list[CustomerSummary], SUMMARIES_TTL, compute)
