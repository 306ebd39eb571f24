"""
Unit tests for the time-phased net requirements walk
"""
from datetime import date, timedelta
from decimal import Decimal

from app.services.demand_supply import DemandEntry, ReceiptEntry
from app.services.net_requirements import calculate_net_requirements

START = date(2025, 3, 3)
END = START + timedelta(days=30)


def demand(day_offset, qty, source_id=1):
    return DemandEntry(
        source_type="sales_order",
        source_id=source_id,
        required_date=START + timedelta(days=day_offset),
        quantity=Decimal(str(qty)),
    )


def receipt(day_offset, qty):
    return ReceiptEntry(
        source_type="purchase_order",
        source_id=1,
        receipt_date=START + timedelta(days=day_offset),
        quantity=Decimal(str(qty)),
    )


class TestNetRequirements:
    def test_shortage_on_demand_day(self):
        reqs = calculate_net_requirements(Decimal("10"), [demand(5, 15)], [], START, END)

        assert len(reqs) == 1
        assert reqs[0].date == START + timedelta(days=5)
        assert reqs[0].gross_requirement == Decimal("15")
        assert reqs[0].net_requirement == Decimal("5")
        assert reqs[0].projected_stock == Decimal("-5")
        assert reqs[0].demands[0].source_id == 1

    def test_no_requirement_when_stock_covers_demand(self):
        assert calculate_net_requirements(Decimal("20"), [demand(2, 15)], [], START, END) == []

    def test_receipt_on_or_before_demand_day_covers_it(self):
        same_day = calculate_net_requirements(Decimal("0"), [demand(4, 10)], [receipt(4, 10)], START, END)
        late = calculate_net_requirements(Decimal("0"), [demand(4, 10)], [receipt(5, 10)], START, END)

        assert same_day == []
        assert len(late) == 1
        assert late[0].net_requirement == Decimal("10")

    def test_safety_stock_raises_floor(self):
        reqs = calculate_net_requirements(
            Decimal("10"), [demand(1, 8)], [], START, END, safety_stock=Decimal("5")
        )

        assert reqs[0].net_requirement == Decimal("3")
        assert reqs[0].projected_stock == Decimal("2")
        assert reqs[0].priority == "normal"

    def test_only_demand_days_fire(self):
        # Stock already below safety but no demand until day 10
        reqs = calculate_net_requirements(
            Decimal("1"), [demand(10, 1)], [], START, END, safety_stock=Decimal("5")
        )

        assert [r.date for r in reqs] == [START + timedelta(days=10)]

    def test_later_shortages_report_only_their_own_demand(self):
        reqs = calculate_net_requirements(Decimal("0"), [demand(1, 4), demand(3, 6)], [], START, END)

        assert [r.net_requirement for r in reqs] == [Decimal("4"), Decimal("6")]

    def test_same_day_demands_are_summed(self):
        reqs = calculate_net_requirements(
            Decimal("0"), [demand(2, 3, source_id=1), demand(2, 4, source_id=2)], [], START, END
        )

        assert len(reqs) == 1
        assert reqs[0].gross_requirement == Decimal("7")
        assert len(reqs[0].demands) == 2

    def test_negative_opening_stock_counted_once(self):
        reqs = calculate_net_requirements(Decimal("-8"), [demand(1, 3), demand(2, 3)], [], START, END)

        first, second = reqs
        assert first.net_requirement == Decimal("11")
        assert first.negative_stock_impact == Decimal("8")
        assert first.has_negative_stock
        assert first.priority == "high"
        assert second.net_requirement == Decimal("3")
        assert second.negative_stock_impact == Decimal("0")

    def test_demand_outside_horizon_ignored(self):
        reqs = calculate_net_requirements(Decimal("0"), [demand(45, 10)], [], START, END)

        assert reqs == []

    def test_input_order_does_not_matter(self):
        demands = [demand(9, 5), demand(2, 5), demand(6, 5)]
        forward = calculate_net_requirements(Decimal("3"), demands, [receipt(5, 4)], START, END)
        backward = calculate_net_requirements(Decimal("3"), demands[::-1], [receipt(5, 4)], START, END)

        assert [(r.date, r.net_requirement) for r in forward] == [(r.date, r.net_requirement) for r in backward]
