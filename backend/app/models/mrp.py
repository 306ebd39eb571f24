"""
MRP models - planning runs and the recommendations they produce
"""
from datetime import date, datetime, timezone
from typing import Optional

from sqlalchemy import (
    Column, Integer, String, Numeric, DateTime, Date, Boolean, Text, JSON, ForeignKey, func,
)
from sqlalchemy.orm import relationship

from app.db.base import Base


def _now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


# Status constants shared by the service layer
RUN_PENDING = "pending"
RUN_RUNNING = "running"
RUN_COMPLETED = "completed"
RUN_FAILED = "failed"
RUN_CANCELLED = "cancelled"

REC_PENDING = "pending"
REC_APPROVED = "approved"
REC_REJECTED = "rejected"
REC_ACTIONED = "actioned"
REC_EXPIRED = "expired"

REC_FINAL_STATUSES = (REC_ACTIONED, REC_REJECTED, REC_EXPIRED)
REC_ACTIONABLE_STATUSES = (REC_PENDING, REC_APPROVED)

PRIORITY_ORDER = {"critical": 1, "high": 2, "medium": 3, "low": 4}


class MRPRun(Base):
    """
    A single MRP planning execution.

    Lifecycle: pending -> running -> completed | failed
               pending -> cancelled
    Only one run per company may be running at a time (enforced by the
    distributed lock, not by this table).
    """
    __tablename__ = "mrp_runs"

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(Integer, nullable=False, index=True)

    run_number = Column(String(50), nullable=False, index=True)  # MRP-20250115-001-001
    name = Column(String(255), nullable=True)

    # Planning horizon (inclusive)
    planning_horizon_start = Column(Date, nullable=False)
    planning_horizon_end = Column(Date, nullable=False)

    # Options
    include_safety_stock = Column(Boolean, default=True, nullable=False)
    respect_lead_times = Column(Boolean, default=True, nullable=False)
    consider_wip = Column(Boolean, default=True, nullable=False)
    net_change = Column(Boolean, default=False, nullable=False)  # Incremental mode requested
    product_filters = Column(JSON, nullable=True)  # {product_ids, category_ids, make_or_buy}
    warehouse_filters = Column(JSON, nullable=True)  # {include: [...], exclude: [...]}

    status = Column(String(20), default=RUN_PENDING, nullable=False, index=True)

    # Results
    products_processed = Column(Integer, default=0, nullable=False)
    recommendations_generated = Column(Integer, default=0, nullable=False)
    warnings_count = Column(Integer, default=0, nullable=False)
    warnings_summary = Column(JSON, nullable=True)  # Grouped by category, not one row per issue
    error_message = Column(Text, nullable=True)

    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    created_by = Column(Integer, nullable=True)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)

    recommendations = relationship(
        "MRPRecommendation",
        back_populates="mrp_run",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    # ------------------------------------------------------------------
    # Status management
    # ------------------------------------------------------------------

    def mark_as_running(self) -> bool:
        if self.status != RUN_PENDING:
            return False
        self.status = RUN_RUNNING
        self.started_at = _now()
        return True

    def mark_as_completed(
        self,
        products_processed: int,
        recommendations_generated: int,
        warnings_count: int = 0,
        warnings_summary: Optional[list] = None,
    ) -> bool:
        if self.status != RUN_RUNNING:
            return False
        self.status = RUN_COMPLETED
        self.completed_at = _now()
        self.products_processed = products_processed
        self.recommendations_generated = recommendations_generated
        self.warnings_count = warnings_count
        self.warnings_summary = warnings_summary
        return True

    def mark_as_failed(self, error_message: str) -> bool:
        self.status = RUN_FAILED
        self.completed_at = _now()
        self.error_message = error_message
        return True

    def mark_as_cancelled(self) -> bool:
        if self.status != RUN_PENDING:
            return False
        self.status = RUN_CANCELLED
        self.completed_at = _now()
        return True

    # ------------------------------------------------------------------
    # Computed properties
    # ------------------------------------------------------------------

    @property
    def duration_seconds(self) -> Optional[int]:
        if not self.started_at or not self.completed_at:
            return None
        return int((self.completed_at - self.started_at).total_seconds())

    @property
    def planning_horizon_days(self) -> int:
        return (self.planning_horizon_end - self.planning_horizon_start).days

    @property
    def is_finished(self) -> bool:
        return self.status in (RUN_COMPLETED, RUN_FAILED, RUN_CANCELLED)

    def __repr__(self):
        return f"<MRPRun {self.run_number} ({self.status})>"


class MRPRecommendation(Base):
    """
    Suggested purchase or work order produced by an MRP run.

    Lifecycle: pending -> approved -> actioned
               pending -> rejected
               pending | approved -> expired (superseded)
    """
    __tablename__ = "mrp_recommendations"

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(Integer, nullable=False, index=True)
    mrp_run_id = Column(Integer, ForeignKey('mrp_runs.id', ondelete='CASCADE'), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey('products.id'), nullable=False, index=True)
    warehouse_id = Column(Integer, ForeignKey('warehouses.id'), nullable=True)

    recommendation_type = Column(String(20), nullable=False)  # work_order | purchase_order

    # Dates
    required_date = Column(Date, nullable=False, index=True)  # When the material is needed
    suggested_date = Column(Date, nullable=False)  # Order-by date (lead time offset)
    due_date = Column(Date, nullable=True)

    # Quantities
    gross_requirement = Column(Numeric(18, 4), default=0, nullable=False)
    net_requirement = Column(Numeric(18, 4), default=0, nullable=False)
    suggested_quantity = Column(Numeric(18, 4), default=0, nullable=False)
    current_stock = Column(Numeric(18, 4), default=0, nullable=False)
    projected_stock = Column(Numeric(18, 4), default=0, nullable=False)

    # Traceability
    demand_source_type = Column(String(50), nullable=True)  # sales_order, work_order, dependent_demand
    demand_source_id = Column(Integer, nullable=True)

    # critical, high, medium, low
    priority = Column(String(20), default='medium', nullable=False, index=True)
    is_urgent = Column(Boolean, default=False, nullable=False)
    urgency_reason = Column(Text, nullable=True)

    status = Column(String(20), default=REC_PENDING, nullable=False, index=True)

    # Action tracking
    action_reference_type = Column(String(50), nullable=True)  # purchase_order | work_order
    action_reference_id = Column(Integer, nullable=True)
    action_notes = Column(Text, nullable=True)
    actioned_at = Column(DateTime, nullable=True)
    actioned_by = Column(Integer, nullable=True)

    # Inputs used for the calculation (safety stock, lead time, MOQ, demands...)
    calculation_details = Column(JSON, nullable=True)

    created_at = Column(DateTime, server_default=func.now(), nullable=False)

    # Relationships
    mrp_run = relationship("MRPRun", back_populates="recommendations")
    product = relationship("Product")
    warehouse = relationship("Warehouse")

    # ------------------------------------------------------------------
    # Status management
    # ------------------------------------------------------------------

    @property
    def can_approve(self) -> bool:
        return self.status == REC_PENDING

    @property
    def can_reject(self) -> bool:
        return self.status == REC_PENDING

    @property
    def can_action(self) -> bool:
        return self.status in REC_ACTIONABLE_STATUSES

    @property
    def is_final(self) -> bool:
        return self.status in REC_FINAL_STATUSES

    def approve(self) -> bool:
        if not self.can_approve:
            return False
        self.status = REC_APPROVED
        return True

    def reject(self, notes: Optional[str] = None, user_id: Optional[int] = None) -> bool:
        if not self.can_reject:
            return False
        self.status = REC_REJECTED
        self.action_notes = notes
        self.actioned_at = _now()
        self.actioned_by = user_id
        return True

    def mark_as_actioned(
        self,
        reference_type: str,
        reference_id: int,
        notes: Optional[str] = None,
        user_id: Optional[int] = None,
    ) -> bool:
        if not self.can_action:
            return False
        self.status = REC_ACTIONED
        self.action_reference_type = reference_type
        self.action_reference_id = reference_id
        self.action_notes = notes
        self.actioned_at = _now()
        self.actioned_by = user_id
        return True

    def expire(self) -> bool:
        if self.is_final:
            return False
        self.status = REC_EXPIRED
        return True

    @property
    def product_sku(self) -> Optional[str]:
        return self.product.sku if self.product else None

    @property
    def days_until_required(self) -> int:
        return (self.required_date - date.today()).days

    @property
    def is_overdue(self) -> bool:
        return self.required_date < date.today() and not self.is_final

    def __repr__(self):
        return f"<MRPRecommendation {self.recommendation_type} product={self.product_id} qty={self.suggested_quantity}>"
