"""
Customer Service - JOIN 結果リーダー (Flattened Join Reader)

Customers ⟕ Addresses ⟕ Orders ⟕ OrderItems を 1 回のクエリで取得すると、
親の列が子の件数分だけ繰り返された「横に広い」行が返ってくる (fan-out)。
このモジュールはその行列から重複のないオブジェクトグラフを再構築する。

  customer_id | address_id | order_id | order_item_id
  ------------+------------+----------+--------------
       1      |     100    |    10    |     1000
       1      |     100    |    10    |     1001
       1      |     100    |    11    |     1002
       1      |     101    |    10    |     1000      ← 重複 (無視)
       2      |    NULL    |   NULL   |     NULL      ← 子なし
                       │
                       ▼
  Customer(1)  addresses=[100, 101]
               orders=[Order(10, items=[1000, 1001]), Order(11, items=[1002])]
  Customer(2)  addresses=[] orders=[]

各列グループ (住所・注文・明細) は ID 列が NULL かどうかで「存在/不在」を判定する。
ID があるのに必須列が NULL の行はデータ不整合として DataIntegrityError を送出する。
"""

from typing import Any, Iterable, Mapping

from pydantic import ValidationError as PydanticValidationError

from .errors import DataIntegrityError
from .models import Address, Customer, Order, OrderItem


class ColumnGroup:
    """1 テーブル分の列グループ。ID 列の NULL は LEFT JOIN の不一致を意味する。"""

    def __init__(
        self,
        name: str,
        id_column: str,
        required: tuple[str, ...],
        optional: tuple[str, ...] = (),
    ) -> None:
        self.name = name
        self.id_column = id_column
        self.required = required
        self.optional = optional

    def id_of(self, row: Mapping[str, Any]) -> Any:
        if self.id_column not in row:
            raise DataIntegrityError(
                f"Row is missing the {self.name} id column '{self.id_column}'", row
            )
        return row[self.id_column]

    def extract(self, row: Mapping[str, Any]) -> dict | None:
        """グループが存在すれば列の dict を、不在なら None を返す。"""
        group_id = self.id_of(row)
        if group_id is None:
            return None

        values = {self.id_column: group_id}
        for column in self.required:
            value = row.get(column)
            if value is None:
                raise DataIntegrityError(
                    f"{self.name} {group_id}: required column '{column}' is null",
                    row,
                )
            values[column] = value
        for column in self.optional:
            values[column] = row.get(column)
        return values


CUSTOMER_COLUMNS = ColumnGroup(
    "customer",
    "customer_id",
    required=("first_name", "last_name", "email", "created_at", "status"),
    optional=("phone", "date_of_birth"),
)
ADDRESS_COLUMNS = ColumnGroup(
    "address",
    "address_id",
    required=("street", "city", "state", "zip_code", "country", "is_primary", "address_type"),
    optional=("region",),
)
ORDER_COLUMNS = ColumnGroup(
    "order",
    "order_id",
    required=("order_date", "order_status", "order_total"),
)
ORDER_ITEM_COLUMNS = ColumnGroup(
    "order item",
    "order_item_id",
    required=("product_id", "product_name", "quantity", "price"),
)


class CustomerGraphReader:
    """
    行を 1 件ずつ受け取り、Customer グラフを組み立てる。

    ルックアップはこのインスタンス (= 1 回の呼び出し) に閉じている。
    顧客・住所・注文・明細はすべて最初に現れた順序を保つ。
    """

    def __init__(self) -> None:
        self._customers: dict[int, Customer] = {}
        self._orders: dict[int, Order] = {}
        self._address_ids: dict[int, set[int]] = {}
        self._item_ids: dict[int, set[int]] = {}

    # ── 行の適用 ─────────────────────────────────

    def add_row(self, row: Mapping[str, Any]) -> Customer:
        customer_id = CUSTOMER_COLUMNS.id_of(row)
        if customer_id is None:
            raise DataIntegrityError("Row has a null customer_id", row)

        # 顧客の列は最初の行でだけ読む (2 行目以降は NULL でもよい)
        customer = self._customers.get(customer_id)
        if customer is None:
            customer = self._create_customer(CUSTOMER_COLUMNS.extract(row), row)

        address_values = ADDRESS_COLUMNS.extract(row)
        if address_values is not None:
            self._attach_address(customer, address_values, row)

        order_values = ORDER_COLUMNS.extract(row)
        item_values = ORDER_ITEM_COLUMNS.extract(row)
        if order_values is not None:
            order = self._resolve_order(customer, order_values, row)
            if item_values is not None:
                self._attach_item(order, item_values, row)
        elif item_values is not None:
            raise DataIntegrityError(
                f"order item {item_values['order_item_id']} has no order", row
            )

        return customer

    def add_rows(self, rows: Iterable[Mapping[str, Any]]) -> None:
        for row in rows:
            self.add_row(row)

    def customers(self) -> list[Customer]:
        return list(self._customers.values())

    # ── 各グループの解決 ─────────────────────────

    def _create_customer(self, values: dict, row: Mapping[str, Any]) -> Customer:
        customer_id = values["customer_id"]
        customer = _build(
            Customer,
            row,
            id=customer_id,
            first_name=values["first_name"],
            last_name=values["last_name"],
            email=values["email"],
            phone=values["phone"],
            created_at=values["created_at"],
            status=values["status"],
            date_of_birth=values["date_of_birth"],
        )
        self._customers[customer_id] = customer
        self._address_ids[customer_id] = set()
        return customer

    def _attach_address(self, customer: Customer, values: dict, row: Mapping[str, Any]) -> None:
        address_id = values["address_id"]
        seen = self._address_ids[customer.id]
        if address_id in seen:
            return
        customer.addresses.append(
            _build(
                Address,
                row,
                id=address_id,
                customer_id=customer.id,
                street=values["street"],
                city=values["city"],
                state=values["state"],
                zip_code=values["zip_code"],
                country=values["country"],
                region=values["region"],
                is_primary=values["is_primary"],
                address_type=values["address_type"],
            )
        )
        seen.add(address_id)

    def _resolve_order(self, customer: Customer, values: dict, row: Mapping[str, Any]) -> Order:
        order_id = values["order_id"]
        order = self._orders.get(order_id)
        if order is not None:
            if order.customer_id != customer.id:
                raise DataIntegrityError(
                    f"order {order_id} appears under customers "
                    f"{order.customer_id} and {customer.id}",
                    row,
                )
            return order

        order = _build(
            Order,
            row,
            id=order_id,
            customer_id=customer.id,
            order_date=values["order_date"],
            status=values["order_status"],
            total=values["order_total"],
        )
        self._orders[order_id] = order
        self._item_ids[order_id] = set()
        customer.orders.append(order)
        return order

    def _attach_item(self, order: Order, values: dict, row: Mapping[str, Any]) -> None:
        item_id = values["order_item_id"]
        seen = self._item_ids[order.id]
        if item_id in seen:
            return
        order.items.append(
            _build(
                OrderItem,
                row,
                id=item_id,
                order_id=order.id,
                product_id=values["product_id"],
                product_name=values["product_name"],
                quantity=values["quantity"],
                price=values["price"],
            )
        )
        seen.add(item_id)


def _build(model: type, row: Mapping[str, Any], **fields):
    """モデルを構築する。型変換に失敗した行は不整合として扱う。"""
    try:
        return model(**fields)
    except PydanticValidationError as e:
        raise DataIntegrityError(
            f"Cannot build {model.__name__} from row: {e.errors()[0]['msg']}", row
        ) from e


# ── 公開関数 ─────────────────────────────────────


def read_customers(rows: Iterable[Mapping[str, Any]]) -> list[Customer]:
    """JOIN 結果から重複のない Customer のリストを再構築する。"""
    reader = CustomerGraphReader()
    reader.add_rows(rows)
    return reader.customers()


def read_customer(rows: Iterable[Mapping[str, Any]], customer_id: int) -> Customer | None:
    """
    単一顧客用。行が 1 件もなければ None (= 見つからない)。
    別の顧客 ID を含む行が混ざっていれば呼び出し全体を失敗させる。
    """
    reader = CustomerGraphReader()
    for row in rows:
        customer = reader.add_row(row)
        if customer.id != customer_id:
            raise DataIntegrityError(
                f"Expected rows for customer {customer_id}, got customer {customer.id}",
                row,
            )
    customers = reader.customers()
    return customers[0] if customers else None
