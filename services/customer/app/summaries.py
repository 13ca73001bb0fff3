"""
Customer Service - 読み取り専用の投影 (DTO / サマリー)

Customer グラフから API レスポンス用の DTO と集計サマリーを計算する。
これらは永続化せず、クエリごとに再計算するかキャッシュに一時保存する。
"""

from datetime import datetime
from decimal import Decimal
from typing import Iterable

from pydantic import BaseModel

from .models import Address, Customer
from .search import SearchParams

PREMIUM_SPEND_THRESHOLD = Decimal("5000")
PREMIUM_ORDER_COUNT = 10


class AddressDto(BaseModel):
    street: str
    city: str
    state: str
    zip_code: str
    country: str
    formatted_address: str


class CustomerDto(BaseModel):
    id: int
    full_name: str
    email: str
    phone: str | None
    status: str
    created_at: datetime
    last_order_date: datetime | None
    total_spent: Decimal
    primary_address: AddressDto | None


class CustomerSearchResult(BaseModel):
    customers: list[CustomerDto]
    total_count: int
    page_count: int
    search_parameters: SearchParams


class OrderValue(BaseModel):
    order_id: int
    value: Decimal


class CustomerSummary(BaseModel):
    customer_id: int
    name: str
    email: str
    total_spent: Decimal
    order_count: int
    is_premium: bool
    segment: str
    last_order_date: datetime | None
    most_valuable_orders: list[OrderValue] | None = None


# ── マッピング ───────────────────────────────────


def to_address_dto(address: Address | None) -> AddressDto | None:
    if address is None:
        return None
    return AddressDto(
        street=address.street,
        city=address.city,
        state=address.state,
        zip_code=address.zip_code,
        country=address.country,
        formatted_address=address.formatted,
    )


def to_customer_dto(customer: Customer) -> CustomerDto:
    return CustomerDto(
        id=customer.id,
        full_name=customer.full_name,
        email=customer.email,
        phone=customer.phone,
        status=customer.status.value,
        created_at=customer.created_at,
        last_order_date=customer.last_order_date,
        total_spent=customer.total_spent,
        primary_address=to_address_dto(customer.primary_address),
    )


# ── サマリー ─────────────────────────────────────


def customer_segment(total_spent: Decimal) -> str:
    if total_spent > 10000:
        return "VIP"
    if total_spent > 5000:
        return "Premium"
    if total_spent > 1000:
        return "Regular"
    return "New"


def summarize_customer(
    customer: Customer,
    premium_threshold: Decimal = PREMIUM_SPEND_THRESHOLD,
    premium_order_count: int = PREMIUM_ORDER_COUNT,
    include_premium_details: bool = False,
) -> CustomerSummary:
    order_values = [(order.id, order.items_total) for order in customer.orders]
    total = sum((value for _, value in order_values), Decimal("0"))
    is_premium = total > premium_threshold or len(customer.orders) > premium_order_count

    most_valuable = None
    if include_premium_details and is_premium:
        ranked = sorted(order_values, key=lambda pair: pair[1], reverse=True)[:3]
        most_valuable = [OrderValue(order_id=oid, value=value) for oid, value in ranked]

    return CustomerSummary(
        customer_id=customer.id,
        name=customer.full_name,
        email=customer.email,
        total_spent=total,
        order_count=len(customer.orders),
        is_premium=is_premium,
        segment=customer_segment(total),
        last_order_date=customer.last_order_date,
        most_valuable_orders=most_valuable,
    )


def summarize_customers(
    customers: Iterable[Customer],
    premium_threshold: Decimal = PREMIUM_SPEND_THRESHOLD,
    premium_order_count: int = PREMIUM_ORDER_COUNT,
    include_premium_details: bool = False,
) -> list[CustomerSummary]:
    """顧客ごとのサマリーを総支出の降順で返す。"""
    summaries = [
        summarize_customer(c, premium_threshold, premium_order_count, include_premium_details)
        for c in customers
    ]
    return sorted(summaries, key=lambda s: s.total_spent, reverse=True)


def top_customers_by_spend(customers: Iterable[Customer], count: int) -> list[CustomerDto]:
    ranked = sorted(customers, key=lambda c: c.total_spent, reverse=True)
    return [to_customer_dto(c) for c in ranked[: max(0, count)]]
