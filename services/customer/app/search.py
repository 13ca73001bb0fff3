"""
Customer Service - 検索・フィルタ・ソート・ページング

Reader が再構築した Customer のリストに対して、呼び出し元が指定した
検索条件を適用し、1 ページ分を返す。すべて同期・インメモリの純粋関数で、
同じ入力に対しては常に同じ結果を返す (冪等)。

空白だけの検索語は「検索語なし」と同じ扱い (テキストフィルタを適用しない)。
"""

import math
from datetime import datetime
from enum import Enum
from typing import Generic, Sequence, TypeVar

from pydantic import BaseModel, field_validator

from .models import Customer

T = TypeVar("T")

ALL_STATUSES = "All"
MAX_PAGE_SIZE = 100
DEFAULT_PAGE_SIZE = 10


class SortField(str, Enum):
    NAME = "Name"
    CREATED_DATE = "CreatedDate"
    LAST_ORDER = "LastOrder"


class SortDirection(str, Enum):
    ASCENDING = "Ascending"
    DESCENDING = "Descending"


class SearchParams(BaseModel):
    """
    検索条件。構築時に正規化される:
      - page_number < 1 → 1
      - page_size は 1..100 に丸める
      - 未知の sort_by / sort_direction → 既定値 (Name / Ascending)
      - search_term は前後の空白を除去し、空なら None
    """
    search_term: str | None = None
    status: str = ALL_STATUSES
    sort_by: SortField = SortField.NAME
    sort_direction: SortDirection = SortDirection.ASCENDING
    page_number: int = 1
    page_size: int = DEFAULT_PAGE_SIZE

    @field_validator("search_term", mode="before")
    @classmethod
    def _normalize_term(cls, value):
        if value is None:
            return None
        value = str(value).strip()
        return value or None

    @field_validator("status", mode="before")
    @classmethod
    def _normalize_status(cls, value):
        if value is None or not str(value).strip():
            return ALL_STATUSES
        return str(value).strip()

    @field_validator("sort_by", mode="before")
    @classmethod
    def _normalize_sort_by(cls, value):
        try:
            return SortField(value)
        except ValueError:
            return SortField.NAME

    @field_validator("sort_direction", mode="before")
    @classmethod
    def _normalize_sort_direction(cls, value):
        try:
            return SortDirection(value)
        except ValueError:
            return SortDirection.ASCENDING

    @field_validator("page_number", mode="before")
    @classmethod
    def _clamp_page_number(cls, value):
        return max(1, int(value))

    @field_validator("page_size", mode="before")
    @classmethod
    def _clamp_page_size(cls, value):
        return min(MAX_PAGE_SIZE, max(1, int(value)))


class Page(BaseModel, Generic[T]):
    items: list[T]
    total_count: int
    page_count: int
    page_number: int
    page_size: int


# ── フィルタ ─────────────────────────────────────


def matches_term(customer: Customer, term: str) -> bool:
    """名・姓・email・電話番号のいずれかに大文字小文字を無視して部分一致するか"""
    needle = term.lower()
    fields = (customer.first_name, customer.last_name, customer.email, customer.phone)
    return any(value and needle in value.lower() for value in fields)


def filter_customers(customers: Sequence[Customer], params: SearchParams) -> list[Customer]:
    result = list(customers)
    if params.search_term is not None:
        result = [c for c in result if matches_term(c, params.search_term)]
    if params.status != ALL_STATUSES:
        result = [c for c in result if c.status.value == params.status]
    return result


# ── ソート ───────────────────────────────────────


def sort_customers(
    customers: Sequence[Customer],
    sort_by: SortField,
    direction: SortDirection,
) -> list[Customer]:
    """
    安定ソート。Name は (姓, 名) の複合キーで、両方とも指定方向に並べる。
    LastOrder では注文のない顧客を最小値として扱う
    (昇順なら先頭、降順なら末尾)。
    """
    reverse = direction == SortDirection.DESCENDING

    if sort_by == SortField.CREATED_DATE:
        return sorted(customers, key=lambda c: c.created_at, reverse=reverse)

    if sort_by == SortField.LAST_ORDER:
        return sorted(customers, key=_last_order_key, reverse=reverse)

    return sorted(
        customers,
        key=lambda c: (c.last_name.lower(), c.first_name.lower()),
        reverse=reverse,
    )


def _last_order_key(customer: Customer) -> tuple[bool, datetime | None]:
    last = customer.last_order_date
    # 注文なし (False, None) は常に (True, <日時>) より小さい
    return (last is not None, last)


# ── ページング ───────────────────────────────────


def paginate(items: Sequence[T], page_number: int, page_size: int) -> Page[T]:
    total = len(items)
    start = (page_number - 1) * page_size
    return Page(
        items=list(items[start:start + page_size]),
        total_count=total,
        page_count=math.ceil(total / page_size),
        page_number=page_number,
        page_size=page_size,
    )


def search(customers: Sequence[Customer], params: SearchParams) -> Page[Customer]:
    """filter → sort → paginate"""
    matched = filter_customers(customers, params)
    ordered = sort_customers(matched, params.sort_by, params.sort_direction)
    return paginate(ordered, params.page_number, params.page_size)
