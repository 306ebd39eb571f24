"""
MRP (Material Requirements Planning) API Endpoints

Endpoints for:
- Running MRP calculations and following their progress
- Reviewing, approving and rejecting recommendations
- Cache invalidation and dirty-product hooks
- Recommendation statistics
"""
from datetime import date
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Query, status

from app.api.v1.deps import (
    get_company_id,
    get_current_user_id,
    get_mrp_service,
    get_pagination_params,
    get_recommendation_service,
)
from app.models import MRPRun
from app.schemas.common import ListResponse, PaginationParams
from app.schemas.mrp import (
    BulkActionRequest, BulkActionResponse,
    CacheInvalidateResponse,
    DirtyProductsRequest, DirtyProductsResponse,
    MRPRecommendationResponse,
    MRPRunCreate, MRPRunProgress, MRPRunResponse, MRPRunStatus,
    MRPStatistics,
    RecommendationPriority, RecommendationStatus, RecommendationType,
    RejectRequest,
)
from app.services.mrp import MRPService
from app.services.recommendations import RecommendationService

router = APIRouter(prefix="/mrp", tags=["MRP"])


def _run_response(service: MRPService, run: MRPRun) -> MRPRunResponse:
    response = MRPRunResponse.model_validate(run)
    progress = service.get_run_progress(run)
    if progress:
        response.progress = MRPRunProgress(**progress)
    return response


# ============================================================================
# MRP Run Endpoints
# ============================================================================

@router.post("/runs", response_model=MRPRunResponse, status_code=status.HTTP_201_CREATED)
def create_mrp_run(
    request: MRPRunCreate,
    company_id: int = Depends(get_company_id),
    user_id: Optional[int] = Depends(get_current_user_id),
    service: MRPService = Depends(get_mrp_service),
):
    """
    Create and execute an MRP run.

    Small catalogues run inside the request and return the completed run.
    Large ones (or run_async=true) are queued and return the pending run;
    poll GET /runs/{id}/progress for status.

    A second run while one is executing for the same company returns 409.
    """
    run = service.run_mrp(
        company_id,
        params=request.to_params(),
        user_id=user_id,
        run_async=request.run_async,
    )
    return _run_response(service, run)


@router.get("/runs", response_model=ListResponse[MRPRunResponse])
async def list_mrp_runs(
    pagination: Annotated[PaginationParams, Depends(get_pagination_params)],
    status_filter: Optional[MRPRunStatus] = Query(None, alias="status", description="Filter by status"),
    from_date: Optional[date] = Query(None, description="Created on or after"),
    to_date: Optional[date] = Query(None, description="Created on or before"),
    company_id: int = Depends(get_company_id),
    service: MRPService = Depends(get_mrp_service),
):
    """List MRP runs, newest first"""
    runs, total = service.list_runs(
        company_id,
        status=status_filter.value if status_filter else None,
        from_date=from_date,
        to_date=to_date,
        offset=pagination.offset,
        limit=pagination.limit,
    )
    return ListResponse.build(
        [MRPRunResponse.model_validate(run) for run in runs],
        total, pagination.offset, pagination.limit,
    )


@router.get("/runs/{run_id}", response_model=MRPRunResponse)
async def get_mrp_run(
    run_id: int,
    company_id: int = Depends(get_company_id),
    service: MRPService = Depends(get_mrp_service),
):
    """Get details of a specific MRP run, with live progress while it executes"""
    return _run_response(service, service.get_run(company_id, run_id))


@router.get("/runs/{run_id}/progress", response_model=Optional[MRPRunProgress])
async def get_mrp_run_progress(
    run_id: int,
    company_id: int = Depends(get_company_id),
    service: MRPService = Depends(get_mrp_service),
):
    """Progress of a running run; null once finished or before it starts"""
    progress = service.get_run_progress(service.get_run(company_id, run_id))
    return MRPRunProgress(**progress) if progress else None


@router.post("/runs/{run_id}/cancel", response_model=MRPRunResponse)
async def cancel_mrp_run(
    run_id: int,
    company_id: int = Depends(get_company_id),
    service: MRPService = Depends(get_mrp_service),
):
    """Cancel a pending run. Running runs cannot be cancelled."""
    return MRPRunResponse.model_validate(service.cancel_run(company_id, run_id))


@router.get("/runs/{run_id}/recommendations", response_model=ListResponse[MRPRecommendationResponse])
async def list_run_recommendations(
    run_id: int,
    pagination: Annotated[PaginationParams, Depends(get_pagination_params)],
    status_filter: Optional[RecommendationStatus] = Query(None, alias="status"),
    recommendation_type: Optional[RecommendationType] = Query(None, alias="type"),
    priority: Optional[RecommendationPriority] = Query(None),
    product_id: Optional[int] = Query(None),
    urgent_only: bool = Query(False, description="Only urgent recommendations"),
    company_id: int = Depends(get_company_id),
    service: MRPService = Depends(get_mrp_service),
    recommendations: RecommendationService = Depends(get_recommendation_service),
):
    """Recommendations of a run, most urgent priority first, then by required date"""
    service.get_run(company_id, run_id)
    items, total = recommendations.list_for_run(
        run_id,
        status=status_filter.value if status_filter else None,
        recommendation_type=recommendation_type.value if recommendation_type else None,
        priority=priority.value if priority else None,
        product_id=product_id,
        urgent_only=urgent_only,
        offset=pagination.offset,
        limit=pagination.limit,
    )
    return ListResponse.build(
        [MRPRecommendationResponse.model_validate(item) for item in items],
        total, pagination.offset, pagination.limit,
    )


# ============================================================================
# Recommendation Endpoints
# ============================================================================

@router.post("/recommendations/bulk-approve", response_model=BulkActionResponse)
async def bulk_approve_recommendations(
    request: BulkActionRequest,
    user_id: Optional[int] = Depends(get_current_user_id),
    recommendations: RecommendationService = Depends(get_recommendation_service),
):
    """Approve pending recommendations; ones that cannot be actioned are skipped"""
    approved = recommendations.bulk_approve(request.recommendation_ids, user_id)
    return BulkActionResponse(
        requested=len(request.recommendation_ids),
        processed=approved,
        message=f"{approved} recommendation(s) approved",
    )


@router.post("/recommendations/bulk-reject", response_model=BulkActionResponse)
async def bulk_reject_recommendations(
    request: BulkActionRequest,
    user_id: Optional[int] = Depends(get_current_user_id),
    recommendations: RecommendationService = Depends(get_recommendation_service),
):
    rejected = recommendations.bulk_reject(request.recommendation_ids, request.reason, user_id)
    return BulkActionResponse(
        requested=len(request.recommendation_ids),
        processed=rejected,
        message=f"{rejected} recommendation(s) rejected",
    )


@router.post("/recommendations/{recommendation_id}/approve", response_model=MRPRecommendationResponse)
async def approve_recommendation(
    recommendation_id: int,
    user_id: Optional[int] = Depends(get_current_user_id),
    recommendations: RecommendationService = Depends(get_recommendation_service),
):
    """
    Approve a recommendation and create its draft purchase or work order.

    Returns 422 when the product has no default BOM (work orders) or the
    company has no active warehouse; the recommendation stays pending.
    """
    return recommendations.approve(recommendation_id, user_id)


@router.post("/recommendations/{recommendation_id}/reject", response_model=MRPRecommendationResponse)
async def reject_recommendation(
    recommendation_id: int,
    request: RejectRequest,
    user_id: Optional[int] = Depends(get_current_user_id),
    recommendations: RecommendationService = Depends(get_recommendation_service),
):
    return recommendations.reject(recommendation_id, request.reason, user_id)


# ============================================================================
# Cache Hooks
# ============================================================================

@router.post("/cache/invalidate", response_model=CacheInvalidateResponse)
async def invalidate_mrp_cache(
    company_id: int = Depends(get_company_id),
    service: MRPService = Depends(get_mrp_service),
):
    """Drop cached BOM explosions and low-level codes after structural changes"""
    deleted = service.invalidate_cache(company_id)
    return CacheInvalidateResponse(keys_deleted=deleted, message="MRP cache invalidated")


@router.post("/dirty-products", response_model=DirtyProductsResponse)
async def mark_products_dirty(
    request: DirtyProductsRequest,
    company_id: int = Depends(get_company_id),
    service: MRPService = Depends(get_mrp_service),
):
    """Flag products for the next net-change run; unknown ids are ignored"""
    return DirtyProductsResponse(marked=service.mark_products_dirty(company_id, request.product_ids))


# ============================================================================
# Statistics
# ============================================================================

@router.get("/statistics", response_model=MRPStatistics)
async def get_mrp_statistics(
    recommendations: RecommendationService = Depends(get_recommendation_service),
):
    return recommendations.get_statistics()
