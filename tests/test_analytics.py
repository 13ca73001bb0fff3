from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from app import analytics
from app.analytics import CustomerAnalyticsService, add_months, month_starts
from app.models import Address, Customer, CustomerStatus, Order
from fakes import ts

NOW = datetime(2024, 6, 15, 12, tzinfo=timezone.utc)


def _customer(id, created, orders=(), addresses=()):
    return Customer(
        id=id, first_name=f"C{id}", last_name="Test", email=f"c{id}@example.com",
        created_at=created, status=CustomerStatus.ACTIVE,
        orders=[
            Order(id=id * 10 + n, customer_id=id, order_date=when, status="Completed",
                  total=Decimal(total))
            for n, (when, total) in enumerate(orders)
        ],
        addresses=[
            Address(id=id * 10 + n, customer_id=id, street="s", city="c", state=state,
                    zip_code="z", country="USA", region=region)
            for n, (state, region) in enumerate(addresses)
        ],
    )


class TestDateHelpers:
    def test_add_months_clamps_to_month_end(self):
        assert add_months(datetime(2024, 3, 31), -1) == datetime(2024, 2, 29)
        assert add_months(datetime(2024, 1, 31), 13) == datetime(2025, 2, 28)
        assert add_months(datetime(2024, 12, 15), 1) == datetime(2025, 1, 15)

    def test_month_starts(self):
        starts = month_starts(datetime(2024, 1, 20), datetime(2024, 3, 2))
        assert [m.date() for m in starts] == [date(2024, 1, 1), date(2024, 2, 1), date(2024, 3, 1)]


class TestAggregates:
    def test_acquisition(self):
        customers = [
            _customer(1, ts(2024, 6, 1)),
            _customer(2, ts(2024, 6, 10)),
            _customer(3, ts(2024, 4, 2)),
            _customer(4, ts(2023, 1, 1)),
        ]
        data = analytics.acquisition(customers, 3, NOW)

        by_month = {m.month: m.new_customers for m in data.monthly_data}
        assert by_month[date(2024, 6, 1)] == 2
        assert by_month[date(2024, 4, 1)] == 1
        assert by_month[date(2024, 5, 1)] == 0
        assert data.total_new_customers == 3

    def test_regional_distribution_falls_back_to_state(self):
        customers = [
            _customer(1, NOW, addresses=[("NY", "Northeast"), ("CA", None)]),
            _customer(2, NOW, addresses=[("MA", "Northeast")]),
        ]
        regions = analytics.regional_distribution(customers)

        assert [(r.region, r.customer_count) for r in regions] == [("Northeast", 2), ("CA", 1)]
        assert regions[0].percentage == pytest.approx(66.6667, rel=1e-3)

    def test_regional_distribution_without_addresses(self):
        assert analytics.regional_distribution([_customer(1, NOW)]) == []

    def test_top_customers_by_order_value(self):
        customers = [
            _customer(1, NOW, orders=[(ts(2024, 5, 1), "100"), (ts(2024, 6, 1), "50")]),
            _customer(2, NOW, orders=[(ts(2024, 5, 2), "500")]),
            _customer(3, NOW),
        ]
        top = analytics.top_customers_by_order_value(customers, 2)

        assert [t.customer_id for t in top] == [2, 1]
        assert top[1].average_order_value == Decimal("75")
        assert top[1].last_order_date == ts(2024, 6, 1)

    def test_retention(self):
        customers = [
            _customer(1, ts(2024, 1, 5), orders=[(ts(2024, 6, 3), "10")]),
            _customer(2, ts(2024, 1, 6)),
            _customer(3, ts(2024, 6, 2), orders=[(ts(2024, 6, 4), "10")]),
        ]
        data = analytics.retention(customers, 1, NOW)

        june = data.monthly_data[-1]
        assert june.month == date(2024, 6, 1)
        assert june.existing_customers == 2
        assert june.active_customers == 1
        assert june.retention_rate == 50.0

    def test_activity_trends(self):
        orders = [
            {"order_id": 1, "customer_id": 1, "order_date": ts(2024, 6, 14), "order_total": Decimal("10")},
            {"order_id": 2, "customer_id": 2, "order_date": ts(2024, 6, 14, 8), "order_total": Decimal("5")},
            {"order_id": 3, "customer_id": 1, "order_date": ts(2024, 6, 15, 9), "order_total": Decimal("1")},
        ]
        data = analytics.activity_trends(orders, 2, NOW)

        assert [d.day for d in data.daily_data] == [date(2024, 6, 13), date(2024, 6, 14), date(2024, 6, 15)]
        assert data.daily_data[1].order_count == 2
        assert data.daily_data[1].revenue == Decimal("15")
        assert data.daily_data[1].unique_customers == 2
        assert data.total_orders == 3
        assert data.total_revenue == Decimal("16")
        assert data.unique_customers == 2


class TestAnalyticsService:
    @pytest.mark.asyncio
    async def test_results_are_cached(self, store, store_scope, cache):
        customer_id = store.add_customer("Ada", "Lovelace", created_at=ts(2024, 6, 1))
        store.add_address(customer_id, state="NY")
        service = CustomerAnalyticsService(store_scope, cache, clock=lambda: NOW)

        first = await service.get_regional_distribution()
        second = await service.get_regional_distribution()

        assert first == second
        assert store.fetch_count == 1

    @pytest.mark.asyncio
    async def test_activity_uses_orders_in_window(self, store, store_scope, cache):
        customer_id = store.add_customer("Ada", "Lovelace")
        store.add_order(customer_id, order_date=ts(2024, 6, 10), total="20")
        store.add_order(customer_id, order_date=ts(2024, 1, 1), total="99")
        service = CustomerAnalyticsService(store_scope, cache, clock=lambda: NOW)

        data = await service.get_activity_trends(30)

        assert data.total_orders == 1
        assert data.total_revenue == Decimal("20")
