"""
Net Requirements Calculator

Time-phased projection of one product's on-hand stock across the planning
horizon. Requirements fire only on days where demand posts and pushes the
projection below the safety floor.
"""
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from typing import Dict, Iterable, List

from app.services.demand_supply import DemandEntry, ReceiptEntry

ZERO = Decimal("0")


@dataclass
class Requirement:
    date: date
    gross_requirement: Decimal
    net_requirement: Decimal
    projected_stock: Decimal
    negative_stock_impact: Decimal = ZERO
    priority: str = "normal"  # normal | high
    demands: List[DemandEntry] = field(default_factory=list)

    @property
    def has_negative_stock(self) -> bool:
        return self.negative_stock_impact > 0

    @property
    def primary_demand(self):
        return self.demands[0] if self.demands else None


def calculate_net_requirements(
    current_stock: Decimal,
    demands: Iterable[DemandEntry],
    receipts: Iterable[ReceiptEntry],
    horizon_start: date,
    horizon_end: date,
    safety_stock: Decimal = ZERO,
) -> List[Requirement]:
    """
    Walk the horizon day by day.

    Each day adds that day's receipts, then subtracts that day's demand. When a
    day with demand leaves the projection below safety stock a Requirement is
    emitted for the shortfall, and the shortfall is treated as covered from
    then on (a planned receipt on that day), so later days only report their
    own shortage.

    Negative opening stock is carried into the first shortage only: that
    requirement records the deficit as negative_stock_impact and is high
    priority.
    """
    projected = Decimal(current_stock)
    safety = Decimal(safety_stock or 0)
    opening_deficit = -projected if projected < 0 else ZERO
    deficit_pending = opening_deficit > 0

    demands_by_date: Dict[date, List[DemandEntry]] = defaultdict(list)
    for demand in sorted(demands, key=lambda d: d.required_date):
        demands_by_date[demand.required_date].append(demand)

    receipts_by_date: Dict[date, Decimal] = defaultdict(lambda: ZERO)
    for receipt in receipts:
        receipts_by_date[receipt.receipt_date] += receipt.quantity

    requirements: List[Requirement] = []
    day = horizon_start
    while day <= horizon_end:
        projected += receipts_by_date.get(day, ZERO)

        day_demands = demands_by_date.get(day, [])
        total_demand = sum((d.quantity for d in day_demands), ZERO)

        if total_demand > 0:
            projected -= total_demand

            if projected < safety:
                shortage = safety - projected
                impact = ZERO
                if deficit_pending:
                    impact = opening_deficit
                    deficit_pending = False

                requirements.append(Requirement(
                    date=day,
                    gross_requirement=total_demand,
                    net_requirement=shortage,
                    projected_stock=projected,
                    negative_stock_impact=impact,
                    priority="high" if impact > 0 else "normal",
                    demands=list(day_demands),
                ))
                projected += shortage

        day += timedelta(days=1)

    return requirements
