"""
Customer Service - ドメインモデル

Customer → Addresses[]
Customer → Orders[] → OrderItems[]

これらは永続化された正本ではなく、クエリごとに JOIN 結果から
再構築されるリクエストスコープのコピー。
集計値 (total_spent, last_order_date など) は保存せず、毎回計算する。
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, Field


class CustomerStatus(str, Enum):
    ACTIVE = "Active"
    INACTIVE = "Inactive"


class OrderItem(BaseModel):
    id: int
    order_id: int
    product_id: int
    product_name: str
    quantity: int
    price: Decimal

    @property
    def line_total(self) -> Decimal:
        return self.quantity * self.price


class Order(BaseModel):
    id: int
    customer_id: int
    order_date: datetime
    status: str
    total: Decimal
    items: list[OrderItem] = Field(default_factory=list)

    @property
    def items_total(self) -> Decimal:
        return sum((item.line_total for item in self.items), Decimal("0"))


class Address(BaseModel):
    id: int
    customer_id: int
    street: str
    city: str
    state: str
    zip_code: str
    country: str
    region: str | None = None
    is_primary: bool = False
    address_type: str = "Home"

    @property
    def formatted(self) -> str:
        return f"{self.street}, {self.city}, {self.state} {self.zip_code}, {self.country}"


class Customer(BaseModel):
    id: int
    first_name: str
    last_name: str
    email: str
    phone: str | None = None
    created_at: datetime
    status: CustomerStatus
    date_of_birth: date | None = None
    addresses: list[Address] = Field(default_factory=list)
    orders: list[Order] = Field(default_factory=list)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    @property
    def primary_address(self) -> Address | None:
        """is_primary の住所。なければ最初の住所。"""
        for address in self.addresses:
            if address.is_primary:
                return address
        return self.addresses[0] if self.addresses else None

    @property
    def last_order_date(self) -> datetime | None:
        if not self.orders:
            return None
        return max(order.order_date for order in self.orders)

    @property
    def total_spent(self) -> Decimal:
        """全注文の明細合計 (quantity × price) の総和"""
        return sum((order.items_total for order in self.orders), Decimal("0"))


class CustomerInput(BaseModel):
    """作成・更新コマンドの入力 (API と CSV インポートで共通)"""
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    phone: str | None = None
    status: CustomerStatus = CustomerStatus.ACTIVE
    date_of_birth: date | None = None
    street: str | None = None
    city: str | None = None
    state: str | None = None
    zip_code: str | None = None
    country: str | None = None

    @property
    def has_address(self) -> bool:
        return all(
            value is not None and value.strip()
            for value in (self.street, self.city, self.state)
        )
