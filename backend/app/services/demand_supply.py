"""
Demand / Supply aggregation for MRP runs

Loads, once per run, everything the per-product loop needs so no product
triggers its own queries:
- quality-available stock
- independent demand (open sales order lines)
- WIP dependent demand (open work order materials)
- scheduled receipts (open purchase order lines, open work orders)

All groupings are keyed by product id; entries carry their date so the
net requirements walk can bucket them per day.
"""
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.logging_config import get_logger
from app.models import (
    PurchaseOrder, PurchaseOrderItem, SalesOrder, SalesOrderItem, Stock,
    WorkOrder, WorkOrderMaterial,
)

logger = get_logger(__name__)

# Sales orders that represent committed demand
SALES_DEMAND_STATUSES = ("approved", "pending_approval", "confirmed", "processing", "partially_shipped")
# Purchase orders that will still deliver
PO_RECEIPT_STATUSES = ("approved", "sent", "partially_received")
# Work orders that are on the shop floor
WIP_STATUSES = ("released", "in_progress")


@dataclass
class DemandEntry:
    """A quantity needed on a date, with the document that caused it"""
    source_type: str  # sales_order, work_order, dependent_demand
    source_id: Optional[int]
    required_date: date
    quantity: Decimal
    source_sku: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "source_type": self.source_type,
            "source_id": self.source_id,
            "source_sku": self.source_sku,
            "required_date": self.required_date.isoformat(),
            "quantity": str(self.quantity),
        }


@dataclass
class ReceiptEntry:
    """A quantity arriving on a date"""
    source_type: str  # purchase_order, work_order
    source_id: int
    receipt_date: date
    quantity: Decimal


@dataclass
class WarehouseFilter:
    include: List[int] = field(default_factory=list)
    exclude: List[int] = field(default_factory=list)

    @classmethod
    def from_params(cls, filters: Optional[dict]) -> "WarehouseFilter":
        filters = filters or {}
        return cls(
            include=[int(w) for w in filters.get("include") or []],
            exclude=[int(w) for w in filters.get("exclude") or []],
        )

    def apply(self, query, column):
        if self.include:
            query = query.filter(column.in_(self.include))
        if self.exclude:
            query = query.filter(column.notin_(self.exclude))
        return query


@dataclass
class PreloadedData:
    stock: Dict[int, Decimal] = field(default_factory=dict)
    sales_demands: Dict[int, List[DemandEntry]] = field(default_factory=dict)
    wo_demands: Dict[int, List[DemandEntry]] = field(default_factory=dict)
    po_receipts: Dict[int, List[ReceiptEntry]] = field(default_factory=dict)
    wo_receipts: Dict[int, List[ReceiptEntry]] = field(default_factory=dict)

    def current_stock(self, product_id: int) -> Decimal:
        return self.stock.get(product_id, Decimal("0"))

    def independent_demands(self, product_id: int) -> List[DemandEntry]:
        return self.sales_demands.get(product_id, []) + self.wo_demands.get(product_id, [])

    def scheduled_receipts(self, product_id: int) -> List[ReceiptEntry]:
        return self.po_receipts.get(product_id, []) + self.wo_receipts.get(product_id, [])

    @property
    def summary(self) -> dict:
        return {
            "products_with_stock": len(self.stock),
            "sales_demands": sum(len(v) for v in self.sales_demands.values()),
            "wo_demands": sum(len(v) for v in self.wo_demands.values()),
            "po_receipts": sum(len(v) for v in self.po_receipts.values()),
            "wo_receipts": sum(len(v) for v in self.wo_receipts.values()),
        }


class DemandSupplyAggregator:
    """Bulk loader for one company's demand and supply within a horizon"""

    def __init__(self, db: Session, company_id: int):
        self.db = db
        self.company_id = company_id

    def preload(
        self,
        product_ids: Iterable[int],
        horizon_start: date,
        horizon_end: date,
        consider_wip: bool = True,
        warehouse_filters: Optional[dict] = None,
    ) -> PreloadedData:
        ids = list(product_ids)
        data = PreloadedData()
        if not ids:
            return data

        warehouses = WarehouseFilter.from_params(warehouse_filters)

        data.stock = self.load_stock(ids, warehouses)
        data.sales_demands = self.load_sales_demands(ids, horizon_start, horizon_end)
        data.po_receipts = self.load_po_receipts(ids, horizon_start, horizon_end, warehouses)
        if consider_wip:
            data.wo_demands = self.load_wo_demands(ids, horizon_start, horizon_end)
            data.wo_receipts = self.load_wo_receipts(ids, horizon_start, horizon_end, warehouses)

        logger.info(
            f"Pre-loaded MRP demand/supply for {len(ids)} products",
            extra={
                "company_id": self.company_id,
                "horizon_start": horizon_start.isoformat(),
                "horizon_end": horizon_end.isoformat(),
                **data.summary,
            }
        )
        return data

    # ========================================================================
    # Loaders
    # ========================================================================

    def load_stock(self, product_ids: List[int], warehouses: WarehouseFilter) -> Dict[int, Decimal]:
        """Sum of quality-available quantity per product"""
        query = self.db.query(
            Stock.product_id,
            func.sum(Stock.quantity_available).label("available"),
        ).filter(
            Stock.company_id == self.company_id,
            Stock.product_id.in_(product_ids),
            Stock.quality_status == "available",
        )
        query = warehouses.apply(query, Stock.warehouse_id)

        return {
            row.product_id: Decimal(str(row.available or 0))
            for row in query.group_by(Stock.product_id).all()
        }

    def load_sales_demands(
        self, product_ids: List[int], start: date, end: date
    ) -> Dict[int, List[DemandEntry]]:
        required_date = func.coalesce(SalesOrder.requested_delivery_date, SalesOrder.order_date)
        rows = self.db.query(
            SalesOrderItem.product_id,
            SalesOrder.id.label("source_id"),
            required_date.label("required_date"),
            (SalesOrderItem.quantity_ordered - func.coalesce(SalesOrderItem.quantity_shipped, 0)).label("quantity"),
        ).join(
            SalesOrder, SalesOrder.id == SalesOrderItem.sales_order_id
        ).filter(
            SalesOrder.company_id == self.company_id,
            SalesOrderItem.product_id.in_(product_ids),
            SalesOrder.status.in_(SALES_DEMAND_STATUSES),
            required_date.between(start, end),
        ).all()

        grouped: Dict[int, List[DemandEntry]] = defaultdict(list)
        for row in rows:
            qty = Decimal(str(row.quantity or 0))
            if qty <= 0:
                continue
            grouped[row.product_id].append(DemandEntry(
                source_type="sales_order",
                source_id=row.source_id,
                required_date=_as_date(row.required_date),
                quantity=qty,
            ))
        return dict(grouped)

    def load_wo_demands(
        self, product_ids: List[int], start: date, end: date
    ) -> Dict[int, List[DemandEntry]]:
        rows = self.db.query(
            WorkOrderMaterial.product_id,
            WorkOrder.id.label("source_id"),
            WorkOrder.planned_start_date.label("required_date"),
            (WorkOrderMaterial.quantity_required - func.coalesce(WorkOrderMaterial.quantity_issued, 0)).label("quantity"),
        ).join(
            WorkOrder, WorkOrder.id == WorkOrderMaterial.work_order_id
        ).filter(
            WorkOrder.company_id == self.company_id,
            WorkOrderMaterial.product_id.in_(product_ids),
            WorkOrder.status.in_(WIP_STATUSES),
            WorkOrder.planned_start_date.between(start, end),
        ).all()

        grouped: Dict[int, List[DemandEntry]] = defaultdict(list)
        for row in rows:
            qty = Decimal(str(row.quantity or 0))
            if qty <= 0:
                continue
            grouped[row.product_id].append(DemandEntry(
                source_type="work_order",
                source_id=row.source_id,
                required_date=_as_date(row.required_date),
                quantity=qty,
            ))
        return dict(grouped)

    def load_po_receipts(
        self, product_ids: List[int], start: date, end: date, warehouses: WarehouseFilter
    ) -> Dict[int, List[ReceiptEntry]]:
        query = self.db.query(
            PurchaseOrderItem.product_id,
            PurchaseOrder.id.label("source_id"),
            PurchaseOrder.expected_delivery_date.label("receipt_date"),
            (PurchaseOrderItem.quantity_ordered - func.coalesce(PurchaseOrderItem.quantity_received, 0)).label("quantity"),
        ).join(
            PurchaseOrder, PurchaseOrder.id == PurchaseOrderItem.purchase_order_id
        ).filter(
            PurchaseOrder.company_id == self.company_id,
            PurchaseOrderItem.product_id.in_(product_ids),
            PurchaseOrder.status.in_(PO_RECEIPT_STATUSES),
            PurchaseOrder.expected_delivery_date.between(start, end),
        )
        query = warehouses.apply(query, PurchaseOrder.warehouse_id)
        return _group_receipts(query.all(), "purchase_order")

    def load_wo_receipts(
        self, product_ids: List[int], start: date, end: date, warehouses: WarehouseFilter
    ) -> Dict[int, List[ReceiptEntry]]:
        query = self.db.query(
            WorkOrder.product_id,
            WorkOrder.id.label("source_id"),
            WorkOrder.planned_end_date.label("receipt_date"),
            (
                WorkOrder.quantity_ordered
                - func.coalesce(WorkOrder.quantity_completed, 0)
                - func.coalesce(WorkOrder.quantity_scrapped, 0)
            ).label("quantity"),
        ).filter(
            WorkOrder.company_id == self.company_id,
            WorkOrder.product_id.in_(product_ids),
            WorkOrder.status.in_(WIP_STATUSES),
            WorkOrder.planned_end_date.between(start, end),
        )
        query = warehouses.apply(query, WorkOrder.warehouse_id)
        return _group_receipts(query.all(), "work_order")


def _group_receipts(rows, source_type: str) -> Dict[int, List[ReceiptEntry]]:
    grouped: Dict[int, List[ReceiptEntry]] = defaultdict(list)
    for row in rows:
        qty = Decimal(str(row.quantity or 0))
        if qty <= 0:
            continue
        grouped[row.product_id].append(ReceiptEntry(
            source_type=source_type,
            source_id=row.source_id,
            receipt_date=_as_date(row.receipt_date),
            quantity=qty,
        ))
    return dict(grouped)


def _as_date(value) -> date:
    # COALESCE over Date columns comes back as a string on SQLite
    if isinstance(value, str):
        return date.fromisoformat(value[:10])
    if isinstance(value, datetime):
        return value.date()
    return value
