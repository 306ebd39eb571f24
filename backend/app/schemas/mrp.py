"""
MRP (Material Requirements Planning) Pydantic Schemas

Schemas for:
- MRP run requests, responses and live progress
- Recommendations and the approval workflow
- Cache / dirty-product hooks
- Statistics
"""
from pydantic import BaseModel, Field
from typing import Any, Dict, Optional, List
from datetime import datetime, date
from decimal import Decimal
from enum import Enum


# ============================================================================
# Enums
# ============================================================================

class MRPRunStatus(str, Enum):
    """MRP run status"""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class RecommendationType(str, Enum):
    """Document a recommendation turns into when approved"""
    WORK_ORDER = "work_order"
    PURCHASE_ORDER = "purchase_order"


class RecommendationStatus(str, Enum):
    """Recommendation lifecycle status"""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    ACTIONED = "actioned"  # PO / WO created
    EXPIRED = "expired"    # Superseded by a newer run


class RecommendationPriority(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class MakeOrBuy(str, Enum):
    MAKE = "make"
    BUY = "buy"


# ============================================================================
# MRP Run Schemas
# ============================================================================

class ProductFilters(BaseModel):
    """Restrict a run to part of the catalogue"""
    product_ids: Optional[List[int]] = Field(None, description="Only these products")
    category_ids: Optional[List[int]] = Field(None, description="Only products in these categories")
    make_or_buy: Optional[MakeOrBuy] = Field(None, description="Only make or only buy items")


class WarehouseFilters(BaseModel):
    """Which warehouses count towards stock and scheduled receipts"""
    include: Optional[List[int]] = Field(None, description="Only these warehouses")
    exclude: Optional[List[int]] = Field(None, description="Ignore these warehouses")


class MRPRunCreate(BaseModel):
    """Request to create and execute an MRP run"""
    name: Optional[str] = Field(None, max_length=255)
    planning_horizon_start: Optional[date] = Field(None, description="Defaults to today")
    planning_horizon_end: Optional[date] = Field(None, description="Defaults to start + 30 days")
    include_safety_stock: bool = Field(True, description="Plan to keep stock above safety stock")
    respect_lead_times: bool = Field(True, description="Offset order dates by lead time")
    consider_wip: bool = Field(True, description="Count open work orders as receipts")
    net_change: bool = Field(False, description="Only re-plan products changed since the last run")
    product_filters: Optional[ProductFilters] = None
    warehouse_filters: Optional[WarehouseFilters] = None
    run_async: Optional[bool] = Field(
        None, description="Force background (true) or inline (false); default decides by catalogue size"
    )

    def to_params(self) -> Dict[str, Any]:
        """Run parameters for MRPService.run_mrp"""
        return self.model_dump(exclude={"run_async"}, exclude_none=True, mode="json") | {
            key: getattr(self, key)
            for key in ("planning_horizon_start", "planning_horizon_end")
            if getattr(self, key) is not None
        }


class MRPRunProgress(BaseModel):
    """Live progress of a running MRP run"""
    processed: int
    total: int
    percentage: float
    current_product: Optional[str] = None
    updated_at: Optional[datetime] = None


class WarningSummary(BaseModel):
    """Run warnings grouped by category"""
    type: str
    count: int
    message: Optional[str] = None
    examples: Optional[List[Any]] = None


class MRPRunResponse(BaseModel):
    """MRP run details"""
    id: int
    run_number: str
    name: Optional[str] = None
    status: MRPRunStatus
    planning_horizon_start: date
    planning_horizon_end: date
    planning_horizon_days: int
    include_safety_stock: bool
    respect_lead_times: bool
    consider_wip: bool
    net_change: bool
    product_filters: Optional[Dict[str, Any]] = None
    warehouse_filters: Optional[Dict[str, Any]] = None
    products_processed: int
    recommendations_generated: int
    warnings_count: int
    warnings_summary: Optional[List[WarningSummary]] = None
    error_message: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    duration_seconds: Optional[int] = None
    created_by: Optional[int] = None
    created_at: Optional[datetime] = None
    progress: Optional[MRPRunProgress] = Field(None, description="Present while the run is executing")

    class Config:
        from_attributes = True


# ============================================================================
# Recommendation Schemas
# ============================================================================

class MRPRecommendationResponse(BaseModel):
    """Suggested purchase or work order"""
    id: int
    mrp_run_id: int
    product_id: int
    product_sku: Optional[str] = None
    warehouse_id: Optional[int] = None
    recommendation_type: RecommendationType
    required_date: date
    suggested_date: date
    due_date: Optional[date] = None
    gross_requirement: Decimal
    net_requirement: Decimal
    suggested_quantity: Decimal
    current_stock: Decimal
    projected_stock: Decimal
    demand_source_type: Optional[str] = None
    demand_source_id: Optional[int] = None
    priority: RecommendationPriority
    is_urgent: bool
    urgency_reason: Optional[str] = None
    status: RecommendationStatus
    action_reference_type: Optional[str] = None
    action_reference_id: Optional[int] = None
    action_notes: Optional[str] = None
    actioned_at: Optional[datetime] = None
    actioned_by: Optional[int] = None
    calculation_details: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class RejectRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=1000, description="Why the recommendation was rejected")


class BulkActionRequest(BaseModel):
    """Approve or reject several recommendations at once"""
    recommendation_ids: List[int] = Field(..., min_length=1)
    reason: Optional[str] = Field(None, max_length=1000, description="Rejection reason (bulk reject only)")


class BulkActionResponse(BaseModel):
    requested: int
    processed: int
    message: str


# ============================================================================
# Cache & Statistics Schemas
# ============================================================================

class DirtyProductsRequest(BaseModel):
    """Products whose demand, supply or structure changed"""
    product_ids: List[int] = Field(..., min_length=1)


class DirtyProductsResponse(BaseModel):
    marked: int


class CacheInvalidateResponse(BaseModel):
    keys_deleted: int
    message: str


class LatestRunSummary(BaseModel):
    id: int
    run_number: str
    completed_at: Optional[datetime] = None
    recommendations_generated: int


class MRPStatistics(BaseModel):
    """Recommendation backlog for a company"""
    latest_run: Optional[LatestRunSummary] = None
    pending_recommendations: int
    urgent_recommendations: int
    overdue_recommendations: int
    by_type: Dict[str, int] = Field(default_factory=dict)
