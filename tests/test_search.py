from datetime import datetime, timezone

import pytest

from app.models import Customer, CustomerStatus, Order
from app.search import (
    SearchParams,
    SortDirection,
    SortField,
    filter_customers,
    paginate,
    search,
    sort_customers,
)


def make_customer(id, first, last, created_day=1, status=CustomerStatus.ACTIVE,
                  phone=None, order_days=()):
    return Customer(
        id=id,
        first_name=first,
        last_name=last,
        email=f"{first}.{last}@example.com".lower(),
        phone=phone,
        created_at=datetime(2024, 1, created_day, tzinfo=timezone.utc),
        status=status,
        orders=[
            Order(id=id * 100 + n, customer_id=id,
                  order_date=datetime(2024, 6, day, tzinfo=timezone.utc),
                  status="Completed", total=0)
            for n, day in enumerate(order_days)
        ],
    )


@pytest.fixture
def customers():
    return [
        make_customer(1, "John", "Smith", created_day=3, phone="555-0100", order_days=(2,)),
        make_customer(2, "Alice", "Smith", created_day=1, order_days=(9, 4)),
        make_customer(3, "Bob", "Adams", created_day=2, status=CustomerStatus.INACTIVE),
        make_customer(4, "Carol", "Jones", created_day=5, order_days=(1,)),
    ]


class TestSearchParams:
    def test_defaults(self):
        params = SearchParams()
        assert params.sort_by == SortField.NAME
        assert params.sort_direction == SortDirection.ASCENDING
        assert params.page_number == 1
        assert params.page_size == 10
        assert params.status == "All"

    @pytest.mark.parametrize("raw, expected", [(0, 1), (-5, 1), (3, 3)])
    def test_page_number_is_clamped(self, raw, expected):
        assert SearchParams(page_number=raw).page_number == expected

    @pytest.mark.parametrize("raw, expected", [(0, 1), (500, 100), (100, 100), (25, 25)])
    def test_page_size_is_clamped(self, raw, expected):
        assert SearchParams(page_size=raw).page_size == expected

    def test_unknown_sort_values_fall_back(self):
        params = SearchParams(sort_by="Shoe size", sort_direction="Sideways")
        assert params.sort_by == SortField.NAME
        assert params.sort_direction == SortDirection.ASCENDING

    @pytest.mark.parametrize("term", ["", "   ", None])
    def test_blank_term_becomes_none(self, term):
        assert SearchParams(search_term=term).search_term is None

    def test_term_is_trimmed(self):
        assert SearchParams(search_term="  smith ").search_term == "smith"


class TestFilter:
    def test_term_is_case_insensitive_substring(self, customers):
        result = filter_customers(customers, SearchParams(search_term="SMI"))
        assert [c.id for c in result] == [1, 2]

    def test_term_matches_email_and_phone(self, customers):
        assert [c.id for c in filter_customers(customers, SearchParams(search_term="carol.jones@"))] == [4]
        assert [c.id for c in filter_customers(customers, SearchParams(search_term="0100"))] == [1]

    def test_blank_term_does_not_filter(self, customers):
        assert len(filter_customers(customers, SearchParams(search_term="  "))) == 4

    def test_status_filter(self, customers):
        result = filter_customers(customers, SearchParams(status="Inactive"))
        assert [c.id for c in result] == [3]

    def test_all_status_keeps_everyone(self, customers):
        assert len(filter_customers(customers, SearchParams(status="All"))) == 4


class TestSort:
    def test_name_ascending_breaks_ties_on_first_name(self, customers):
        result = sort_customers(customers, SortField.NAME, SortDirection.ASCENDING)
        assert [c.full_name for c in result] == [
            "Bob Adams", "Carol Jones", "Alice Smith", "John Smith",
        ]

    def test_name_descending_reverses_both_keys(self, customers):
        result = sort_customers(customers, SortField.NAME, SortDirection.DESCENDING)
        assert [c.full_name for c in result] == [
            "John Smith", "Alice Smith", "Carol Jones", "Bob Adams",
        ]

    def test_created_date(self, customers):
        result = sort_customers(customers, SortField.CREATED_DATE, SortDirection.DESCENDING)
        assert [c.id for c in result] == [4, 1, 3, 2]

    def test_last_order_with_customers_without_orders(self, customers):
        ascending = sort_customers(customers, SortField.LAST_ORDER, SortDirection.ASCENDING)
        descending = sort_customers(customers, SortField.LAST_ORDER, SortDirection.DESCENDING)

        assert [c.id for c in ascending] == [3, 4, 1, 2]
        assert [c.id for c in descending] == [2, 1, 4, 3]

    def test_sort_is_stable_for_equal_keys(self):
        twins = [make_customer(i, "Sam", "Lee") for i in (5, 3, 9)]
        result = sort_customers(twins, SortField.NAME, SortDirection.ASCENDING)
        assert [c.id for c in result] == [5, 3, 9]


class TestPaginate:
    def test_concatenated_pages_reproduce_the_sequence(self):
        items = list(range(23))
        pages = [paginate(items, n, 5) for n in range(1, 6)]

        assert [x for page in pages for x in page.items] == items
        assert all(page.page_count == 5 for page in pages)
        assert all(page.total_count == 23 for page in pages)

    def test_page_beyond_last_is_empty(self):
        page = paginate(list(range(3)), 4, 2)
        assert page.items == []
        assert page.total_count == 3
        assert page.page_count == 2

    def test_empty_input(self):
        page = paginate([], 1, 10)
        assert page.items == []
        assert page.page_count == 0


class TestSearch:
    def test_filter_sort_and_page(self, customers):
        params = SearchParams(search_term="smith", sort_direction="Descending", page_size=1, page_number=2)
        page = search(customers, params)

        assert [c.full_name for c in page.items] == ["Alice Smith"]
        assert page.total_count == 2
        assert page.page_count == 2

    def test_is_idempotent(self, customers):
        params = SearchParams(sort_by="LastOrder")
        assert search(customers, params) == search(customers, params)
