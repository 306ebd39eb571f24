"""
Test data factories for the MRP engine.

Provides functions to create test entities with sensible defaults.
Used by scenarios.py to create interconnected test data.

Usage:
    from tests.factories import create_test_product, create_test_bom

    def test_something(db_session):
        raw = create_test_product(db_session, sku="RAW-1")
        fg = create_test_product(db_session, make_or_buy="make")
        create_test_bom(db_session, fg, [(raw, 2)])
"""
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, Iterable, Optional, Sequence, Tuple

from sqlalchemy.orm import Session

DEFAULT_COMPANY_ID = 1


# =============================================================================
# SEQUENCE MANAGEMENT
# =============================================================================

_sequences: Dict[str, int] = {}


def reset_sequences():
    """Reset all sequences. Call between tests for predictable codes."""
    global _sequences
    _sequences = {}


def _next(name: str) -> int:
    """Get next sequence number for a given entity type."""
    _sequences[name] = _sequences.get(name, 0) + 1
    return _sequences[name]


def _code(prefix: str, name: str) -> str:
    """Generate a code like SO-2025-0001."""
    seq = _next(name)
    return f"{prefix}-{datetime.now().year}-{seq:04d}"


# =============================================================================
# PRODUCT & BOM FACTORIES
# =============================================================================

def create_test_product(
    db: Session,
    sku: Optional[str] = None,
    make_or_buy: str = "buy",
    company_id: int = DEFAULT_COMPANY_ID,
    **overrides
) -> "Product":
    """
    Create a test product.

    Args:
        db: Database session
        sku: Product SKU (auto-generated if not provided)
        make_or_buy: 'make' (planned as work orders) or 'buy' (purchase orders)
        company_id: Owning tenant
        **overrides: Additional field overrides (safety_stock, lead_time_days,
            minimum_order_qty, order_multiple, maximum_stock, ...)

    Returns:
        Created Product instance
    """
    from app.models import Product

    seq = _next("product")
    product = Product(
        company_id=company_id,
        sku=sku or f"{'FG' if make_or_buy == 'make' else 'RAW'}-{seq:04d}",
        name=overrides.pop("name", f"Test Product {seq}"),
        unit=overrides.pop("unit", "EA"),
        make_or_buy=make_or_buy,
        safety_stock=overrides.pop("safety_stock", Decimal("0")),
        lead_time_days=overrides.pop("lead_time_days", 0),
        is_active=overrides.pop("is_active", True),
        **overrides
    )
    db.add(product)
    db.flush()
    return product


def create_test_bom(
    db: Session,
    product: "Product",
    items: Iterable[Tuple] = (),
    status: str = "active",
    is_default: bool = True,
    **overrides
) -> "BOM":
    """
    Create a BOM with items.

    Args:
        db: Database session
        product: Parent product
        items: (component, quantity) or (component, quantity, {item overrides})
            tuples, e.g. (wheel, 2, {"is_phantom": True})
        status: 'draft', 'active' or 'obsolete'
        is_default: Whether this is the product's default BOM

    Returns:
        Created BOM instance
    """
    from app.models import BOM, BOMItem

    bom = BOM(
        company_id=product.company_id,
        product_id=product.id,
        bom_number=overrides.pop("bom_number", _code("BOM", "bom")),
        name=overrides.pop("name", f"BOM for {product.sku}"),
        status=status,
        is_default=is_default,
        quantity=overrides.pop("quantity", Decimal("1")),
        **overrides
    )
    db.add(bom)
    db.flush()

    for line_number, line in enumerate(items, start=1):
        component, quantity = line[0], line[1]
        item_overrides = dict(line[2]) if len(line) > 2 else {}
        db.add(BOMItem(
            bom_id=bom.id,
            component_id=component.id,
            line_number=line_number,
            quantity=Decimal(str(quantity)),
            unit=item_overrides.pop("unit", "EA"),
            **item_overrides
        ))
    db.flush()
    db.refresh(bom)
    return bom


# =============================================================================
# INVENTORY FACTORIES
# =============================================================================

def create_test_warehouse(
    db: Session,
    company_id: int = DEFAULT_COMPANY_ID,
    is_default: bool = True,
    **overrides
) -> "Warehouse":
    from app.models import Warehouse

    seq = _next("warehouse")
    warehouse = Warehouse(
        company_id=company_id,
        code=overrides.pop("code", f"WH-{seq:02d}"),
        name=overrides.pop("name", f"Warehouse {seq}"),
        is_default=is_default,
        is_active=overrides.pop("is_active", True),
        **overrides
    )
    db.add(warehouse)
    db.flush()
    return warehouse


def create_test_stock(
    db: Session,
    product: "Product",
    quantity_available,
    warehouse: Optional["Warehouse"] = None,
    **overrides
) -> "Stock":
    """
    Create a stock level. A default warehouse is created when none is given.

    quantity_on_hand defaults to quantity_available (no reservations).
    """
    from app.models import Stock

    if warehouse is None:
        warehouse = create_test_warehouse(db, company_id=product.company_id)

    qty = Decimal(str(quantity_available))
    stock = Stock(
        company_id=product.company_id,
        product_id=product.id,
        warehouse_id=warehouse.id,
        quantity_on_hand=overrides.pop("quantity_on_hand", qty),
        quantity_reserved=overrides.pop("quantity_reserved", Decimal("0")),
        quantity_available=qty,
        quality_status=overrides.pop("quality_status", "available"),
        **overrides
    )
    db.add(stock)
    db.flush()
    return stock


# =============================================================================
# ORDER FACTORIES
# =============================================================================

def create_test_sales_order(
    db: Session,
    lines: Sequence[Tuple["Product", Any]],
    required_date: Optional[date] = None,
    status: str = "confirmed",
    company_id: int = DEFAULT_COMPANY_ID,
    **overrides
) -> "SalesOrder":
    """
    Create a sales order.

    Args:
        lines: (product, quantity) tuples
        required_date: Requested delivery date (defaults to 7 days out)
        status: Order status; confirmed orders are planned demand
    """
    from app.models import SalesOrder, SalesOrderItem

    order = SalesOrder(
        company_id=company_id,
        order_number=overrides.pop("order_number", _code("SO", "sales_order")),
        status=status,
        order_date=overrides.pop("order_date", date.today()),
        requested_delivery_date=required_date or date.today() + timedelta(days=7),
        **overrides
    )
    db.add(order)
    db.flush()

    for product, quantity in lines:
        db.add(SalesOrderItem(
            sales_order_id=order.id,
            product_id=product.id,
            quantity_ordered=Decimal(str(quantity)),
            quantity_shipped=Decimal("0"),
        ))
    db.flush()
    return order


def create_test_purchase_order(
    db: Session,
    lines: Sequence[Tuple["Product", Any]],
    expected_date: Optional[date] = None,
    status: str = "approved",
    company_id: int = DEFAULT_COMPANY_ID,
    **overrides
) -> "PurchaseOrder":
    """Create an open purchase order (a scheduled receipt)."""
    from app.models import PurchaseOrder, PurchaseOrderItem

    order = PurchaseOrder(
        company_id=company_id,
        order_number=overrides.pop("order_number", _code("PO", "purchase_order")),
        status=status,
        order_date=overrides.pop("order_date", date.today()),
        expected_delivery_date=expected_date or date.today() + timedelta(days=5),
        **overrides
    )
    db.add(order)
    db.flush()

    for line_number, (product, quantity) in enumerate(lines, start=1):
        db.add(PurchaseOrderItem(
            purchase_order_id=order.id,
            product_id=product.id,
            line_number=line_number,
            quantity_ordered=Decimal(str(quantity)),
            quantity_received=Decimal("0"),
        ))
    db.flush()
    return order


def create_test_work_order(
    db: Session,
    product: "Product",
    quantity,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    materials: Sequence[Tuple["Product", Any]] = (),
    status: str = "released",
    **overrides
) -> "WorkOrder":
    """Create a work order with its material requirements."""
    from app.models import WorkOrder, WorkOrderMaterial

    start = start_date or date.today() + timedelta(days=2)
    order = WorkOrder(
        company_id=product.company_id,
        order_number=overrides.pop("order_number", _code("WO", "work_order")),
        product_id=product.id,
        quantity_ordered=Decimal(str(quantity)),
        quantity_completed=overrides.pop("quantity_completed", Decimal("0")),
        quantity_scrapped=overrides.pop("quantity_scrapped", Decimal("0")),
        status=status,
        planned_start_date=start,
        planned_end_date=end_date or start + timedelta(days=3),
        **overrides
    )
    db.add(order)
    db.flush()

    for material, required in materials:
        db.add(WorkOrderMaterial(
            work_order_id=order.id,
            product_id=material.id,
            quantity_required=Decimal(str(required)),
            quantity_issued=Decimal("0"),
        ))
    db.flush()
    return order


# =============================================================================
# SUPPLIER & CALENDAR FACTORIES
# =============================================================================

def create_test_supplier(
    db: Session,
    products: Sequence[Tuple["Product", Any]] = (),
    company_id: int = DEFAULT_COMPANY_ID,
    is_preferred: bool = True,
    **overrides
) -> "Supplier":
    """
    Create a supplier linked to products.

    Args:
        products: (product, unit_price) tuples
        is_preferred: Preferred flag on every created link
    """
    from app.models import Supplier, SupplierProduct

    seq = _next("supplier")
    supplier = Supplier(
        company_id=company_id,
        code=overrides.pop("code", f"SUP-{seq:03d}"),
        name=overrides.pop("name", f"Test Supplier {seq}"),
        is_active=overrides.pop("is_active", True),
        **overrides
    )
    db.add(supplier)
    db.flush()

    for product, unit_price in products:
        db.add(SupplierProduct(
            supplier_id=supplier.id,
            product_id=product.id,
            unit_price=Decimal(str(unit_price)) if unit_price is not None else None,
            is_preferred=is_preferred,
        ))
    db.flush()
    return supplier


def create_test_calendar_day(
    db: Session,
    calendar_date: date,
    day_type: str = "holiday",
    company_id: int = DEFAULT_COMPANY_ID,
    **overrides
) -> "CompanyCalendar":
    from app.models import CompanyCalendar

    day = CompanyCalendar(
        company_id=company_id,
        calendar_date=calendar_date,
        day_type=day_type,
        name=overrides.pop("name", day_type.title()),
        **overrides
    )
    db.add(day)
    db.flush()
    return day


# =============================================================================
# MRP FACTORIES
# =============================================================================

def create_test_mrp_run(
    db: Session,
    company_id: int = DEFAULT_COMPANY_ID,
    status: str = "completed",
    **overrides
) -> "MRPRun":
    from app.models import MRPRun

    seq = _next("mrp_run")
    start = overrides.pop("planning_horizon_start", date.today())
    run = MRPRun(
        company_id=company_id,
        run_number=overrides.pop("run_number", f"MRP-{date.today():%Y%m%d}-{company_id:03d}-{seq:03d}"),
        planning_horizon_start=start,
        planning_horizon_end=overrides.pop("planning_horizon_end", start + timedelta(days=30)),
        status=status,
        **overrides
    )
    db.add(run)
    db.flush()
    return run


def create_test_recommendation(
    db: Session,
    run: "MRPRun",
    product: "Product",
    quantity=Decimal("10"),
    recommendation_type: Optional[str] = None,
    **overrides
) -> "MRPRecommendation":
    """Create a pending recommendation; type follows the product's make/buy flag."""
    from app.models import MRPRecommendation

    required = overrides.pop("required_date", date.today() + timedelta(days=10))
    qty = Decimal(str(quantity))
    recommendation = MRPRecommendation(
        company_id=run.company_id,
        mrp_run_id=run.id,
        product_id=product.id,
        recommendation_type=recommendation_type or (
            "work_order" if product.make_or_buy == "make" else "purchase_order"
        ),
        required_date=required,
        suggested_date=overrides.pop("suggested_date", required - timedelta(days=3)),
        gross_requirement=qty,
        net_requirement=qty,
        suggested_quantity=qty,
        priority=overrides.pop("priority", "medium"),
        status=overrides.pop("status", "pending"),
        **overrides
    )
    db.add(recommendation)
    db.flush()
    return recommendation
