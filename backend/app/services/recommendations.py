"""
MRP Recommendations

Generation: turns net requirements into pending purchase / work order
suggestions (lot sizing, lead-time offset, priority).

Management: approve (creates the draft PO / WO in the same transaction),
reject, bulk actions, expiry of superseded suggestions, overdue list and
dashboard statistics.
"""
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal, ROUND_CEILING
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import case, func
from sqlalchemy.orm import Session, joinedload

from app.exceptions import InvalidStateError, MissingBOMError, MissingWarehouseError, NotFoundError
from app.logging_config import get_logger
from app.models import (
    MRPRecommendation, MRPRun, Product, PurchaseOrder, PurchaseOrderItem,
    Supplier, SupplierProduct, Warehouse, WorkOrder,
)
from app.models.mrp import (
    PRIORITY_ORDER, REC_ACTIONABLE_STATUSES, REC_PENDING, RUN_COMPLETED,
)
from app.services.bom_service import BOMService, round_qty
from app.services.net_requirements import Requirement
from app.services.working_calendar import WorkingCalendar

logger = get_logger(__name__)

ZERO = Decimal("0")

TYPE_WORK_ORDER = "work_order"
TYPE_PURCHASE_ORDER = "purchase_order"


# ============================================================================
# Pure policy helpers
# ============================================================================

def lot_size(
    net_requirement: Decimal,
    minimum_order_qty: Optional[Decimal] = None,
    order_multiple: Optional[Decimal] = None,
    maximum_stock: Optional[Decimal] = None,
    current_stock: Decimal = ZERO,
) -> Decimal:
    """
    Order quantity for a net requirement under the product's ordering policy.

    max(net, MOQ) rounded up to the order multiple, then capped to the
    headroom below maximum_stock when there is any.

    >>> lot_size(Decimal("5"), Decimal("50"), Decimal("10"))
    Decimal('50')
    >>> lot_size(Decimal("65"), Decimal("50"), Decimal("10"))
    Decimal('70')
    """
    moq = Decimal(minimum_order_qty) if minimum_order_qty is not None else Decimal("1")
    quantity = max(Decimal(net_requirement), moq)

    multiple = Decimal(order_multiple) if order_multiple is not None else Decimal("1")
    if multiple > 1:
        quantity = (quantity / multiple).to_integral_value(rounding=ROUND_CEILING) * multiple

    if maximum_stock is not None:
        headroom = Decimal(maximum_stock) - Decimal(current_stock)
        if headroom > 0:
            quantity = min(quantity, headroom)

    return round_qty(quantity)


def determine_priority(suggested_date: date, today: Optional[date] = None) -> str:
    """critical if overdue, high within 3 days, medium within 7, else low"""
    days_until = (suggested_date - (today or date.today())).days
    if days_until < 0:
        return "critical"
    if days_until <= 3:
        return "high"
    if days_until <= 7:
        return "medium"
    return "low"


def _fmt_qty(value: Decimal) -> str:
    return format(Decimal(value).normalize(), "f")


# ============================================================================
# Generation
# ============================================================================

class RecommendationGenerator:
    """Builds MRPRecommendation rows for one run; the caller owns the session commit."""

    def __init__(self, db: Session, run: MRPRun, calendar: WorkingCalendar, today: Optional[date] = None):
        self.db = db
        self.run = run
        self.calendar = calendar
        self.today = today or date.today()

    def suggested_date_for(self, product: Product, required_date: date) -> date:
        if not self.run.respect_lead_times:
            return required_date
        return self.calendar.subtract_working_days(required_date, product.lead_time_days or 0)

    def generate(
        self,
        product: Product,
        requirements: List[Requirement],
        current_stock: Decimal,
    ) -> List[MRPRecommendation]:
        created: List[MRPRecommendation] = []
        rec_type = TYPE_WORK_ORDER if product.is_make else TYPE_PURCHASE_ORDER

        for requirement in requirements:
            suggested_qty = lot_size(
                requirement.net_requirement,
                product.minimum_order_qty,
                product.order_multiple,
                product.maximum_stock,
                current_stock,
            )
            if suggested_qty <= 0:
                logger.debug(
                    f"Skipping recommendation for {product.sku}: suggested quantity {suggested_qty}",
                    extra={
                        "product_id": product.id,
                        "net_requirement": str(requirement.net_requirement),
                        "minimum_order_qty": str(product.minimum_order_qty),
                        "order_multiple": str(product.order_multiple),
                    }
                )
                continue

            required_date = requirement.date
            suggested_date = self.suggested_date_for(product, required_date)
            priority = determine_priority(suggested_date, self.today)
            is_urgent = suggested_date <= self.today

            urgency_reason = None
            if requirement.priority == "high":
                priority = "high"
                urgency_reason = (
                    f"Negative stock status: {_fmt_qty(requirement.negative_stock_impact)} units. "
                    "Priority requirement."
                )
            elif is_urgent:
                urgency_reason = "Order date is today or in the past - immediate action required"
            elif suggested_date <= self.today + timedelta(days=3):
                urgency_reason = "Order date is within 3 days"

            source = requirement.primary_demand
            recommendation = MRPRecommendation(
                company_id=self.run.company_id,
                mrp_run_id=self.run.id,
                product_id=product.id,
                warehouse_id=None,
                recommendation_type=rec_type,
                required_date=required_date,
                suggested_date=suggested_date,
                due_date=required_date,
                gross_requirement=round_qty(requirement.gross_requirement),
                net_requirement=round_qty(requirement.net_requirement),
                suggested_quantity=suggested_qty,
                current_stock=round_qty(requirement.projected_stock + requirement.net_requirement),
                projected_stock=round_qty(requirement.projected_stock + suggested_qty),
                demand_source_type=source.source_type if source else None,
                demand_source_id=source.source_id if source else None,
                priority=priority,
                is_urgent=is_urgent,
                urgency_reason=urgency_reason,
                status=REC_PENDING,
                calculation_details={
                    "safety_stock": str(product.safety_stock or 0),
                    "lead_time_days": product.lead_time_days or 0,
                    "minimum_order_qty": str(product.minimum_order_qty) if product.minimum_order_qty is not None else None,
                    "order_multiple": str(product.order_multiple) if product.order_multiple is not None else None,
                    "negative_stock_impact": str(requirement.negative_stock_impact),
                    "demands": [d.to_dict() for d in requirement.demands],
                },
            )
            self.db.add(recommendation)
            created.append(recommendation)

        return created


# ============================================================================
# Management
# ============================================================================

class RecommendationService:
    """Approval workflow and queries over a company's recommendations"""

    def __init__(self, db: Session, company_id: int, bom_service: Optional[BOMService] = None):
        self.db = db
        self.company_id = company_id
        self.bom_service = bom_service or BOMService(db)

    def get(self, recommendation_id: int) -> MRPRecommendation:
        recommendation = self.db.query(MRPRecommendation).filter(
            MRPRecommendation.id == recommendation_id,
            MRPRecommendation.company_id == self.company_id,
        ).first()
        if not recommendation:
            raise NotFoundError("MRP recommendation", recommendation_id)
        return recommendation

    def list_for_run(
        self,
        run_id: int,
        status: Optional[str] = None,
        recommendation_type: Optional[str] = None,
        priority: Optional[str] = None,
        product_id: Optional[int] = None,
        urgent_only: bool = False,
        offset: int = 0,
        limit: int = 25,
    ) -> Tuple[List[MRPRecommendation], int]:
        """Filtered page of a run's recommendations, most urgent priority first, then by required date"""
        query = self.db.query(MRPRecommendation).filter(
            MRPRecommendation.company_id == self.company_id,
            MRPRecommendation.mrp_run_id == run_id,
        )
        if status:
            query = query.filter(MRPRecommendation.status == status)
        if recommendation_type:
            query = query.filter(MRPRecommendation.recommendation_type == recommendation_type)
        if priority:
            query = query.filter(MRPRecommendation.priority == priority)
        if product_id:
            query = query.filter(MRPRecommendation.product_id == product_id)
        if urgent_only:
            query = query.filter(MRPRecommendation.is_urgent.is_(True))

        total = query.count()
        items = (
            query.options(joinedload(MRPRecommendation.product))
            .order_by(_priority_rank(), MRPRecommendation.required_date, MRPRecommendation.id)
            .offset(offset)
            .limit(limit)
            .all()
        )
        return items, total

    def get_overdue(self, today: Optional[date] = None) -> List[MRPRecommendation]:
        """Pending or approved recommendations whose required date has passed"""
        return self.db.query(MRPRecommendation).filter(
            MRPRecommendation.company_id == self.company_id,
            MRPRecommendation.required_date < (today or date.today()),
            MRPRecommendation.status.in_(REC_ACTIONABLE_STATUSES),
        ).order_by(_priority_rank(), MRPRecommendation.required_date).all()

    # ========================================================================
    # Approval
    # ========================================================================

    def approve(self, recommendation_id: int, user_id: Optional[int] = None) -> MRPRecommendation:
        """
        Approve and action a recommendation in one transaction.

        Creates a draft purchase order or work order and links it. Any failure
        rolls the whole thing back, leaving the recommendation pending.
        """
        recommendation = self.get(recommendation_id)
        if not recommendation.approve():
            raise InvalidStateError(
                "Recommendation cannot be approved.",
                current_state=recommendation.status,
                allowed_states=[REC_PENDING],
            )

        try:
            if recommendation.recommendation_type == TYPE_PURCHASE_ORDER:
                self._create_purchase_order(recommendation, user_id)
            else:
                self._create_work_order(recommendation, user_id)
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(
                f"Failed to approve MRP recommendation {recommendation_id}: {e}",
                extra={"recommendation_id": recommendation_id, "company_id": self.company_id}
            )
            raise

        self.db.refresh(recommendation)
        return recommendation

    def reject(
        self,
        recommendation_id: int,
        reason: Optional[str] = None,
        user_id: Optional[int] = None,
    ) -> MRPRecommendation:
        recommendation = self.get(recommendation_id)
        if not recommendation.reject(reason, user_id):
            raise InvalidStateError(
                "Recommendation cannot be rejected.",
                current_state=recommendation.status,
                allowed_states=[REC_PENDING],
            )
        self.db.commit()
        self.db.refresh(recommendation)
        logger.info(
            f"MRP recommendation {recommendation_id} rejected",
            extra={"recommendation_id": recommendation_id, "user_id": user_id}
        )
        return recommendation

    def bulk_approve(self, recommendation_ids: Iterable[int], user_id: Optional[int] = None) -> int:
        """Approve each pending recommendation independently; failures are logged and skipped."""
        approved = 0
        for recommendation_id in self._pending_ids(recommendation_ids):
            try:
                self.approve(recommendation_id, user_id)
                approved += 1
            except (InvalidStateError, MissingBOMError, MissingWarehouseError) as e:
                logger.warning(
                    f"Bulk approve skipped recommendation {recommendation_id}: {e.message}",
                    extra={"recommendation_id": recommendation_id, "error_code": e.error_code}
                )
        return approved

    def bulk_reject(
        self,
        recommendation_ids: Iterable[int],
        reason: Optional[str] = None,
        user_id: Optional[int] = None,
    ) -> int:
        rejected = 0
        ids = self._pending_ids(recommendation_ids)
        for recommendation in self.db.query(MRPRecommendation).filter(MRPRecommendation.id.in_(ids)).all():
            if recommendation.reject(reason, user_id):
                rejected += 1
        self.db.commit()
        return rejected

    def expire_superseded(self, run: MRPRun, product_ids: Optional[Iterable[int]] = None) -> int:
        """
        Expire pending / approved recommendations from earlier runs for the
        products a newer run has just re-planned.

        Only runs created before this one are touched: a late parallel chunk
        of an older run must not expire a newer run's plan.
        """
        query = self.db.query(MRPRecommendation).filter(
            MRPRecommendation.company_id == self.company_id,
            MRPRecommendation.mrp_run_id < run.id,
            MRPRecommendation.status.in_(REC_ACTIONABLE_STATUSES),
        )
        if product_ids is not None:
            ids = list(product_ids)
            if not ids:
                return 0
            query = query.filter(MRPRecommendation.product_id.in_(ids))

        expired = 0
        for recommendation in query.all():
            if recommendation.expire():
                expired += 1
        if expired:
            logger.info(
                f"Expired {expired} superseded MRP recommendations",
                extra={"mrp_run_id": run.id, "company_id": self.company_id, "expired": expired}
            )
        return expired

    # ========================================================================
    # Statistics
    # ========================================================================

    def get_statistics(self, today: Optional[date] = None) -> dict:
        latest_run = self.db.query(MRPRun).filter(
            MRPRun.company_id == self.company_id,
            MRPRun.status == RUN_COMPLETED,
        ).order_by(MRPRun.completed_at.desc(), MRPRun.id.desc()).first()

        pending = self.db.query(MRPRecommendation).filter(
            MRPRecommendation.company_id == self.company_id,
            MRPRecommendation.status == REC_PENDING,
        )

        by_type: Dict[str, int] = {
            rec_type: count
            for rec_type, count in pending.with_entities(
                MRPRecommendation.recommendation_type, func.count(MRPRecommendation.id)
            ).group_by(MRPRecommendation.recommendation_type).all()
        }

        return {
            "latest_run": {
                "id": latest_run.id,
                "run_number": latest_run.run_number,
                "completed_at": latest_run.completed_at,
                "recommendations_generated": latest_run.recommendations_generated,
            } if latest_run else None,
            "pending_recommendations": pending.count(),
            "urgent_recommendations": pending.filter(MRPRecommendation.is_urgent.is_(True)).count(),
            "overdue_recommendations": len(self.get_overdue(today)),
            "by_type": by_type,
        }

    # ========================================================================
    # Document creation
    # ========================================================================

    def _create_purchase_order(self, recommendation: MRPRecommendation, user_id: Optional[int]) -> PurchaseOrder:
        product = recommendation.product
        warehouse_id = self._resolve_warehouse_id(recommendation)
        supplier_link = self._find_supplier_link(product.id)

        unit_price = Decimal(product.cost_price or 0)
        if supplier_link is not None and supplier_link.unit_price is not None:
            unit_price = Decimal(supplier_link.unit_price)

        quantity = Decimal(recommendation.suggested_quantity)
        line_total = round_qty(unit_price * quantity)

        po = PurchaseOrder(
            company_id=self.company_id,
            order_number=self._next_number(PurchaseOrder, "PO"),
            supplier_id=supplier_link.supplier_id if supplier_link is not None else None,
            warehouse_id=warehouse_id,
            status="draft",
            order_date=recommendation.suggested_date,
            expected_delivery_date=recommendation.required_date,
            subtotal=line_total,
            total_amount=line_total,
            notes=(
                f"Auto-generated from MRP Recommendation #{recommendation.id} "
                f"(MRP Run: {recommendation.mrp_run.run_number})"
            ),
            created_by=user_id,
        )
        self.db.add(po)
        self.db.flush()

        self.db.add(PurchaseOrderItem(
            purchase_order_id=po.id,
            product_id=product.id,
            line_number=1,
            quantity_ordered=quantity,
            quantity_received=ZERO,
            unit_price=unit_price,
            line_total=line_total,
        ))
        self.db.flush()

        recommendation.mark_as_actioned(
            TYPE_PURCHASE_ORDER,
            po.id,
            f"Purchase Order {po.order_number} created automatically",
            user_id,
        )
        logger.info(
            f"Purchase order {po.order_number} created from MRP recommendation {recommendation.id}",
            extra={
                "recommendation_id": recommendation.id,
                "purchase_order_id": po.id,
                "supplier_id": po.supplier_id,
            }
        )
        return po

    def _create_work_order(self, recommendation: MRPRecommendation, user_id: Optional[int]) -> WorkOrder:
        product = recommendation.product
        bom = self.bom_service.get_default_bom_for_product(product.id)
        if not bom:
            raise MissingBOMError(product.sku)

        warehouse_id = self._resolve_warehouse_id(recommendation)

        wo = WorkOrder(
            company_id=self.company_id,
            order_number=self._next_number(WorkOrder, "WO"),
            product_id=product.id,
            bom_id=bom.id,
            warehouse_id=warehouse_id,
            quantity_ordered=recommendation.suggested_quantity,
            quantity_completed=ZERO,
            quantity_scrapped=ZERO,
            status="draft",
            priority=recommendation.priority,
            planned_start_date=recommendation.suggested_date,
            planned_end_date=recommendation.required_date,
            notes=f"Auto-generated from MRP Recommendation #{recommendation.id}",
            created_by=user_id,
        )
        self.db.add(wo)
        self.db.flush()

        recommendation.mark_as_actioned(
            TYPE_WORK_ORDER,
            wo.id,
            f"Work Order {wo.order_number} created automatically",
            user_id,
        )
        logger.info(
            f"Work order {wo.order_number} created from MRP recommendation {recommendation.id}",
            extra={"recommendation_id": recommendation.id, "work_order_id": wo.id, "bom_id": bom.id}
        )
        return wo

    # ========================================================================
    # Helper Methods
    # ========================================================================

    def _resolve_warehouse_id(self, recommendation: MRPRecommendation) -> int:
        if recommendation.warehouse_id:
            return recommendation.warehouse_id

        active = self.db.query(Warehouse).filter(
            Warehouse.company_id == self.company_id,
            Warehouse.is_active.is_(True),
        )
        warehouse = active.filter(Warehouse.is_default.is_(True)).first() or active.order_by(Warehouse.id).first()
        if not warehouse:
            raise MissingWarehouseError()
        return warehouse.id

    def _find_supplier_link(self, product_id: int) -> Optional[SupplierProduct]:
        """Preferred supplier-product link first, then any link to an active supplier"""
        return self.db.query(SupplierProduct).join(
            Supplier, Supplier.id == SupplierProduct.supplier_id
        ).filter(
            SupplierProduct.product_id == product_id,
            Supplier.company_id == self.company_id,
            Supplier.is_active.is_(True),
        ).order_by(SupplierProduct.is_preferred.desc(), SupplierProduct.id).first()

    def _next_number(self, model, prefix: str) -> str:
        """PO-2025-0001 / WO-2025-0001, sequential per company and year"""
        year = datetime.now(timezone.utc).year
        pattern = f"{prefix}-{year}-"
        numbers = self.db.query(model.order_number).filter(
            model.company_id == self.company_id,
            model.order_number.like(f"{pattern}%"),
        ).all()

        last_num = 0
        for (number,) in numbers:
            suffix = number[len(pattern):]
            if suffix.isdigit():
                last_num = max(last_num, int(suffix))
        return f"{pattern}{last_num + 1:04d}"

    def _pending_ids(self, recommendation_ids: Iterable[int]) -> List[int]:
        ids = [int(i) for i in recommendation_ids]
        if not ids:
            return []
        return [
            rid for (rid,) in self.db.query(MRPRecommendation.id).filter(
                MRPRecommendation.company_id == self.company_id,
                MRPRecommendation.id.in_(ids),
                MRPRecommendation.status == REC_PENDING,
            ).order_by(MRPRecommendation.id).all()
        ]


def _priority_rank():
    return case(PRIORITY_ORDER, value=MRPRecommendation.priority, else_=len(PRIORITY_ORDER) + 1)
