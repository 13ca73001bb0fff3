"""
JOIN 結果リーダーのテスト

- fan-out した行から子が重複なく 1 回ずつ復元されること
- 出現順が保たれること
- 壊れた行は DataIntegrityError になること
"""

import random
from decimal import Decimal

import pytest

from app.errors import DataIntegrityError
from app.reader import CustomerGraphReader, read_customer, read_customers
from fakes import flat_row, ts


def _cartesian_rows(customer_id=1):
    """住所 2 件 × 注文 2 件 (明細 2 件 + 1 件) の直積"""
    rows = []
    for address_id in (100, 101):
        for order_id, items in ((10, (1000, 1001)), (11, (1002,))):
            for item_id in items:
                rows.append(flat_row(
                    customer_id,
                    address={"address_id": address_id, "is_primary": address_id == 101},
                    order={"order_id": order_id, "order_total": Decimal("99.00")},
                    item={"order_item_id": item_id, "quantity": 2, "price": Decimal("5.00")},
                ))
    return rows


class TestReconstruction:
    def test_children_appear_exactly_once(self):
        customers = read_customers(_cartesian_rows())

        assert len(customers) == 1
        customer = customers[0]
        assert [a.id for a in customer.addresses] == [100, 101]
        assert [o.id for o in customer.orders] == [10, 11]
        assert [i.id for i in customer.orders[0].items] == [1000, 1001]
        assert [i.id for i in customer.orders[1].items] == [1002]

    def test_shuffled_rows_rebuild_same_sets(self):
        rows = _cartesian_rows()
        random.Random(7).shuffle(rows)

        customer = read_customers(rows)[0]

        assert {a.id for a in customer.addresses} == {100, 101}
        assert {o.id for o in customer.orders} == {10, 11}
        items = {o.id: {i.id for i in o.items} for o in customer.orders}
        assert items == {10: {1000, 1001}, 11: {1002}}

    def test_first_occurrence_order_is_kept(self):
        rows = [
            flat_row(2, order={"order_id": 21}),
            flat_row(1, order={"order_id": 11}),
            flat_row(2, order={"order_id": 20}),
        ]
        customers = read_customers(rows)

        assert [c.id for c in customers] == [2, 1]
        assert [o.id for o in customers[0].orders] == [21, 20]

    def test_total_spent_uses_item_lines_once(self):
        customer = read_customers(_cartesian_rows())[0]

        # 3 明細 × (2 × 5.00)。住所 2 件による重複は数えない
        assert customer.total_spent == Decimal("30.00")
        assert customer.orders[0].total == Decimal("99.00")

    def test_customer_without_children_has_empty_collections(self):
        customer = read_customers([flat_row(5)])[0]

        assert customer.addresses == []
        assert customer.orders == []
        assert customer.primary_address is None
        assert customer.last_order_date is None
        assert customer.total_spent == Decimal("0")

    def test_order_without_items_is_kept(self):
        customer = read_customers([flat_row(1, order={"order_id": 7})])[0]

        assert [o.id for o in customer.orders] == [7]
        assert customer.orders[0].items == []

    def test_later_rows_do_not_overwrite_customer_fields(self):
        rows = [
            flat_row(1, first_name="Ada", order={"order_id": 1}),
            flat_row(1, first_name="Changed", order={"order_id": 2}),
        ]
        assert read_customers(rows)[0].first_name == "Ada"

    def test_empty_input(self):
        assert read_customers([]) == []

    def test_add_row_returns_the_shared_instance(self):
        reader = CustomerGraphReader()
        first = reader.add_row(flat_row(1, order={"order_id": 1}))
        second = reader.add_row(flat_row(1, order={"order_id": 2}))

        assert first is second
        assert len(reader.customers()) == 1


class TestDetailsExample:
    """注文 2 件・明細 3 件・住所 1 件の顧客"""

    def test_aggregates(self):
        address = {"address_id": 50, "is_primary": True}
        rows = [
            flat_row(1, address=address,
                     order={"order_id": 1, "order_date": ts(2024, 3, 1)},
                     item={"order_item_id": 1, "quantity": 2, "price": Decimal("10.00")}),
            flat_row(1, address=address,
                     order={"order_id": 1, "order_date": ts(2024, 3, 1)},
                     item={"order_item_id": 2, "quantity": 1, "price": Decimal("5.50")}),
            flat_row(1, address=address,
                     order={"order_id": 2, "order_date": ts(2024, 5, 1)},
                     item={"order_item_id": 3, "quantity": 3, "price": Decimal("1.00")}),
        ]

        customer = read_customer(rows, 1)

        assert len(customer.orders) == 2
        assert sum(len(o.items) for o in customer.orders) == 3
        assert len(customer.addresses) == 1
        assert customer.total_spent == Decimal("28.50")
        assert customer.last_order_date == ts(2024, 5, 1)
        assert customer.primary_address.id == 50
        assert customer.primary_address.formatted == "1 Main St, Springfield, IL 62701, USA"


class TestReadCustomer:
    def test_no_rows_means_not_found(self):
        assert read_customer([], 1) is None

    def test_customer_columns_only_needed_on_first_row(self):
        order = {"order_id": 10}
        second = flat_row(1, order=order, item={"order_item_id": 101})
        second.update(first_name=None, last_name=None, email=None, created_at=None, status=None)
        rows = [flat_row(1, order=order, item={"order_item_id": 100}), second]

        customer = read_customer(rows, 1)

        assert customer.first_name == "Ada"
        assert [i.id for i in customer.orders[0].items] == [100, 101]

    def test_rows_for_another_customer_fail(self):
        with pytest.raises(DataIntegrityError):
            read_customer([flat_row(1), flat_row(2)], 1)


class TestMalformedRows:
    def test_null_required_customer_column(self):
        with pytest.raises(DataIntegrityError) as exc_info:
            read_customers([flat_row(1, first_name=None)])
        assert exc_info.value.row["customer_id"] == 1

    def test_null_customer_id(self):
        with pytest.raises(DataIntegrityError):
            read_customers([flat_row(None)])

    def test_missing_id_column(self):
        row = flat_row(1)
        del row["order_id"]
        with pytest.raises(DataIntegrityError):
            read_customers([row])

    def test_address_with_null_required_column(self):
        row = flat_row(1, address={"address_id": 9, "street": None})
        with pytest.raises(DataIntegrityError):
            read_customers([row])

    def test_item_without_order(self):
        row = flat_row(1, item={"order_item_id": 3})
        with pytest.raises(DataIntegrityError):
            read_customers([row])

    def test_order_under_two_customers(self):
        rows = [flat_row(1, order={"order_id": 10}), flat_row(2, order={"order_id": 10})]
        with pytest.raises(DataIntegrityError):
            read_customers(rows)

    def test_unknown_status(self):
        with pytest.raises(DataIntegrityError):
            read_customers([flat_row(1, status="Deleted")])
