"""
Unit tests for demand / supply pre-loading
"""
from datetime import date, timedelta
from decimal import Decimal

import pytest

from app.services.demand_supply import DemandSupplyAggregator
from tests.factories import (
    create_test_product,
    create_test_purchase_order,
    create_test_sales_order,
    create_test_stock,
    create_test_warehouse,
    create_test_work_order,
)

TODAY = date.today()
END = TODAY + timedelta(days=30)


@pytest.fixture
def aggregator(db_session):
    return DemandSupplyAggregator(db_session, 1)


class TestStock:
    def test_sums_available_stock_across_warehouses(self, db_session, aggregator):
        item = create_test_product(db_session)
        create_test_stock(db_session, item, 4)
        create_test_stock(db_session, item, "2.5")
        create_test_stock(db_session, item, 100, quality_status="quarantine")

        data = aggregator.preload([item.id], TODAY, END)

        assert data.current_stock(item.id) == Decimal("6.5")

    def test_warehouse_include_and_exclude(self, db_session, aggregator):
        item = create_test_product(db_session)
        main = create_test_warehouse(db_session)
        overflow = create_test_warehouse(db_session, is_default=False)
        create_test_stock(db_session, item, 4, warehouse=main)
        create_test_stock(db_session, item, 7, warehouse=overflow)

        included = aggregator.preload([item.id], TODAY, END, warehouse_filters={"include": [main.id]})
        excluded = aggregator.preload([item.id], TODAY, END, warehouse_filters={"exclude": [main.id]})

        assert included.current_stock(item.id) == Decimal("4")
        assert excluded.current_stock(item.id) == Decimal("7")

    def test_missing_stock_is_zero(self, db_session, aggregator):
        item = create_test_product(db_session)

        assert aggregator.preload([item.id], TODAY, END).current_stock(item.id) == Decimal("0")


class TestDemands:
    def test_open_sales_lines_within_horizon(self, db_session, aggregator):
        item = create_test_product(db_session)
        due = TODAY + timedelta(days=6)
        order = create_test_sales_order(db_session, [(item, 12)], required_date=due)
        create_test_sales_order(db_session, [(item, 5)], required_date=due, status="draft")
        create_test_sales_order(db_session, [(item, 9)], required_date=END + timedelta(days=1))

        [entry] = aggregator.preload([item.id], TODAY, END).independent_demands(item.id)

        assert entry.source_type == "sales_order"
        assert entry.source_id == order.id
        assert entry.required_date == due
        assert entry.quantity == Decimal("12")

    def test_order_date_used_without_requested_date(self, db_session, aggregator):
        item = create_test_product(db_session)
        order = create_test_sales_order(db_session, [(item, 3)], order_date=TODAY + timedelta(days=2))
        order.requested_delivery_date = None
        db_session.flush()

        [entry] = aggregator.preload([item.id], TODAY, END).independent_demands(item.id)

        assert entry.required_date == TODAY + timedelta(days=2)

    def test_shipped_quantity_is_netted(self, db_session, aggregator):
        item = create_test_product(db_session)
        order = create_test_sales_order(db_session, [(item, 10)])
        order.items[0].quantity_shipped = Decimal("10")
        db_session.flush()

        assert aggregator.preload([item.id], TODAY, END).independent_demands(item.id) == []

    def test_wip_materials_are_demand_only_with_consider_wip(self, db_session, aggregator):
        fg = create_test_product(db_session, make_or_buy="make")
        raw = create_test_product(db_session)
        create_test_work_order(db_session, fg, 5, materials=[(raw, 15)])

        with_wip = aggregator.preload([raw.id], TODAY, END)
        without_wip = aggregator.preload([raw.id], TODAY, END, consider_wip=False)

        [entry] = with_wip.independent_demands(raw.id)
        assert entry.source_type == "work_order"
        assert entry.quantity == Decimal("15")
        assert without_wip.independent_demands(raw.id) == []


class TestReceipts:
    def test_open_purchase_lines(self, db_session, aggregator):
        item = create_test_product(db_session)
        arrival = TODAY + timedelta(days=4)
        create_test_purchase_order(db_session, [(item, 40)], expected_date=arrival)
        create_test_purchase_order(db_session, [(item, 99)], expected_date=arrival, status="draft")

        [receipt] = aggregator.preload([item.id], TODAY, END).scheduled_receipts(item.id)

        assert receipt.source_type == "purchase_order"
        assert receipt.receipt_date == arrival
        assert receipt.quantity == Decimal("40")

    def test_work_order_output_net_of_completed_and_scrap(self, db_session, aggregator):
        fg = create_test_product(db_session, make_or_buy="make")
        create_test_work_order(
            db_session, fg, 10,
            quantity_completed=Decimal("3"), quantity_scrapped=Decimal("1"),
        )

        [receipt] = aggregator.preload([fg.id], TODAY, END).scheduled_receipts(fg.id)

        assert receipt.source_type == "work_order"
        assert receipt.quantity == Decimal("6")

    def test_purchase_receipts_follow_warehouse_filter(self, db_session, aggregator):
        item = create_test_product(db_session)
        main = create_test_warehouse(db_session)
        other = create_test_warehouse(db_session, is_default=False)
        create_test_purchase_order(db_session, [(item, 10)], warehouse_id=main.id)
        create_test_purchase_order(db_session, [(item, 20)], warehouse_id=other.id)

        data = aggregator.preload([item.id], TODAY, END, warehouse_filters={"exclude": [other.id]})

        assert [r.quantity for r in data.scheduled_receipts(item.id)] == [Decimal("10")]

    def test_other_company_documents_ignored(self, db_session, aggregator):
        item = create_test_product(db_session)
        create_test_purchase_order(db_session, [(item, 10)], company_id=2)
        create_test_sales_order(db_session, [(item, 10)], company_id=2)

        data = aggregator.preload([item.id], TODAY, END)

        assert data.scheduled_receipts(item.id) == []
        assert data.independent_demands(item.id) == []

    def test_empty_product_list(self, aggregator):
        assert aggregator.preload([], TODAY, END).summary == {
            "products_with_stock": 0,
            "sales_demands": 0,
            "wo_demands": 0,
            "po_receipts": 0,
            "wo_receipts": 0,
        }
