"""
Customer Service - 分析用の集計

顧客獲得数・地域分布・上位顧客・リテンション・日別アクティビティを計算する。
集計そのものは純粋関数 (テストしやすい)、CustomerAnalyticsService が
DB 取得とキャッシュ (1 時間) を担当する。

月・日の区切りは now と同じタイムゾーンで切る。
"""

import logging
from collections import Counter
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Callable, Iterable, Mapping, Sequence

from pydantic import BaseModel

from .cache import ANALYTICS_TTL, ResultCache, fingerprint
from .models import Customer
from .reader import read_customers
from .store import StoreScope

logger = logging.getLogger(__name__)


# ── DTO ─────────────────────────────────────────


class MonthlyAcquisition(BaseModel):
    month: date
    new_customers: int


class AcquisitionData(BaseModel):
    monthly_data: list[MonthlyAcquisition]
    total_new_customers: int


class RegionalDistribution(BaseModel):
    region: str
    customer_count: int
    percentage: float


class TopCustomerData(BaseModel):
    customer_id: int
    customer_name: str
    total_spent: Decimal
    order_count: int
    average_order_value: Decimal
    last_order_date: datetime | None


class MonthlyRetention(BaseModel):
    month: date
    existing_customers: int
    active_customers: int
    retention_rate: float


class RetentionData(BaseModel):
    monthly_data: list[MonthlyRetention]
    average_retention_rate: float


class DailyActivity(BaseModel):
    day: date
    order_count: int
    revenue: Decimal
    unique_customers: int


class ActivityData(BaseModel):
    daily_data: list[DailyActivity]
    total_orders: int
    total_revenue: Decimal
    unique_customers: int


# ── 日付ヘルパー ─────────────────────────────────


def add_months(moment: datetime, months: int) -> datetime:
    """月を加減する。移動先の月に存在しない日は月末に丸める。"""
    index = moment.year * 12 + (moment.month - 1) + months
    year, month = divmod(index, 12)
    month += 1
    next_first = datetime(year + (month == 12), month % 12 + 1, 1)
    last_day = (next_first - timedelta(days=1)).day
    return moment.replace(year=year, month=month, day=min(moment.day, last_day))


def month_starts(start: datetime, end: datetime) -> list[datetime]:
    """start を含む月の 1 日から end までの各月初"""
    current = start.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    result = []
    while current <= end:
        result.append(current)
        current = add_months(current, 1)
    return result


# ── 集計 ─────────────────────────────────────────


def acquisition(customers: Iterable[Customer], months: int, now: datetime) -> AcquisitionData:
    start = add_months(now, -months)
    created = [c.created_at for c in customers if c.created_at >= start]

    monthly = []
    for month in month_starts(start, now):
        next_month = add_months(month, 1)
        count = sum(1 for ts in created if month <= ts < next_month)
        monthly.append(MonthlyAcquisition(month=month.date(), new_customers=count))

    return AcquisitionData(
        monthly_data=monthly,
        total_new_customers=sum(m.new_customers for m in monthly),
    )


def regional_distribution(customers: Iterable[Customer]) -> list[RegionalDistribution]:
    """住所を region (なければ state) ごとに数え、件数の降順で返す。"""
    counts = Counter(
        address.region or address.state
        for customer in customers
        for address in customer.addresses
    )
    total = sum(counts.values())
    return [
        RegionalDistribution(
            region=region,
            customer_count=count,
            percentage=count / total * 100 if total else 0.0,
        )
        for region, count in counts.most_common()
    ]


def top_customers_by_order_value(customers: Iterable[Customer], count: int) -> list[TopCustomerData]:
    rows = []
    for customer in customers:
        totals = [order.total for order in customer.orders]
        spent = sum(totals, Decimal("0"))
        rows.append(
            TopCustomerData(
                customer_id=customer.id,
                customer_name=customer.full_name,
                total_spent=spent,
                order_count=len(totals),
                average_order_value=spent / len(totals) if totals else Decimal("0"),
                last_order_date=customer.last_order_date,
            )
        )
    rows.sort(key=lambda r: r.total_spent, reverse=True)
    return rows[: max(0, count)]


def retention(customers: Sequence[Customer], months: int, now: datetime) -> RetentionData:
    """
    各月について:
      existing = その月より前に登録された顧客数
      active   = existing のうち、その月に注文した顧客数
    """
    candidates = [c for c in customers if c.created_at <= now]
    monthly = []
    for month in month_starts(add_months(now, -months), now):
        next_month = add_months(month, 1)
        existing = [c for c in candidates if c.created_at < month]
        active = [
            c for c in existing
            if any(month <= o.order_date < next_month for o in c.orders)
        ]
        rate = len(active) / len(existing) * 100 if existing else 0.0
        monthly.append(
            MonthlyRetention(
                month=month.date(),
                existing_customers=len(existing),
                active_customers=len(active),
                retention_rate=rate,
            )
        )

    average = sum(m.retention_rate for m in monthly) / len(monthly) if monthly else 0.0
    return RetentionData(monthly_data=monthly, average_retention_rate=average)


def activity_trends(orders: Iterable[Mapping[str, Any]], days: int, now: datetime) -> ActivityData:
    """orders は order_date / customer_id / order_total を持つ行"""
    start = now - timedelta(days=days)
    in_range = [o for o in orders if start <= o["order_date"] <= now]

    by_day: dict[date, list[Mapping[str, Any]]] = {}
    for order in in_range:
        by_day.setdefault(order["order_date"].astimezone(now.tzinfo).date(), []).append(order)

    daily = []
    day = start.date()
    while day <= now.date():
        orders_in_day = by_day.get(day, [])
        daily.append(
            DailyActivity(
                day=day,
                order_count=len(orders_in_day),
                revenue=sum((Decimal(str(o["order_total"])) for o in orders_in_day), Decimal("0")),
                unique_customers=len({o["customer_id"] for o in orders_in_day}),
            )
        )
        day += timedelta(days=1)

    return ActivityData(
        daily_data=daily,
        total_orders=sum(d.order_count for d in daily),
        total_revenue=sum((d.revenue for d in daily), Decimal("0")),
        unique_customers=len({o["customer_id"] for o in in_range}),
    )


# ── サービス ─────────────────────────────────────


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class CustomerAnalyticsService:
    """各集計を 1 時間キャッシュする。キーは集計自身のパラメータ。"""

    def __init__(
        self,
        store_scope: StoreScope,
        cache: ResultCache,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store_scope = store_scope
        self.cache = cache
        self.clock = clock

    async def _load_customers(self) -> list[Customer]:
        async with self.store_scope() as store:
            rows = await store.fetch_customer_rows()
        return read_customers(rows)

    async def get_acquisition(self, months: int = 12) -> AcquisitionData:
        async def compute() -> AcquisitionData:
            logger.info("Calculating customer acquisition for the past %d months", months)
            return acquisition(await self._load_customers(), months, self.clock())

        return await self.cache.get_or_compute(
            fingerprint("acquisition", months=months), AcquisitionData, ANALYTICS_TTL, compute
        )

    async def get_regional_distribution(self) -> list[RegionalDistribution]:
        async def compute() -> list[RegionalDistribution]:
            logger.info("Calculating customer regional distribution")
            return regional_distribution(await self._load_customers())

        return await self.cache.get_or_compute(
            fingerprint("regional"), list[RegionalDistribution], ANALYTICS_TTL, compute
        )

    async def get_top_customers_by_order_value(self, count: int = 10) -> list[TopCustomerData]:
        async def compute() -> list[TopCustomerData]:
            logger.info("Calculating top %d customers by order value", count)
            return top_customers_by_order_value(await self._load_customers(), count)

        return await self.cache.get_or_compute(
            fingerprint("top_order_value", count=count), list[TopCustomerData], ANALYTICS_TTL, compute
        )

    async def get_retention(self, months: int = 12) -> RetentionData:
        async def compute() -> RetentionData:
            logger.info("Calculating customer retention for the past %d months", months)
            return retention(await self._load_customers(), months, self.clock())

        return await self.cache.get_or_compute(
            fingerprint("retention", months=months), RetentionData, ANALYTICS_TTL, compute
        )

    async def get_activity_trends(self, days: int = 30) -> ActivityData:
        async def compute() -> ActivityData:
            logger.info("Calculating customer activity for the past %d days", days)
            now = self.clock()
            async with self.store_scope() as store:
                orders = await store.fetch_orders_between(now - timedelta(days=days), now)
            return activity_trends(orders, days, now)

        return await self.cache.get_or_compute(
            fingerprint("activity", days=days), ActivityData, ANALYTICS_TTL, compute
        )
