"""
API Dependencies

Tenant resolution, service construction and common query parameter
dependencies for the MRP endpoints.

Authentication lives in the host application; it forwards the tenant and
acting user as headers.
"""
from typing import Annotated, Optional

from fastapi import Depends, Header, Query
from sqlalchemy.orm import Session

from app.core.settings import get_settings
from app.db.session import get_db
from app.schemas.common import PaginationParams
from app.services.mrp import MRPService
from app.services.mrp_cache import MRPCacheService
from app.services.mrp_jobs import get_chunk_queue, get_queue
from app.services.recommendations import RecommendationService


def get_company_id(
    x_company_id: Annotated[int, Header(ge=1, description="Tenant the request acts on")],
) -> int:
    """Dependency to get the tenant id from the X-Company-ID header"""
    return x_company_id


def get_current_user_id(
    x_user_id: Annotated[Optional[int], Header(description="Acting user, recorded on runs and approvals")] = None,
) -> Optional[int]:
    return x_user_id


def get_cache() -> MRPCacheService:
    """Dependency for the MRP cache / lock service (shared Redis client)"""
    return MRPCacheService()


def get_mrp_service(
    db: Session = Depends(get_db),
    cache: MRPCacheService = Depends(get_cache),
) -> MRPService:
    """
    Dependency for the run orchestrator.

    With MRP_QUEUE_ENABLED the service dispatches async runs and parallel
    chunks to rq; otherwise every run executes inside the request.
    """
    queue = chunk_queue = None
    if get_settings().MRP_QUEUE_ENABLED:
        queue, chunk_queue = get_queue(), get_chunk_queue()
    return MRPService(db, cache, queue=queue, chunk_queue=chunk_queue)


def get_recommendation_service(
    company_id: int = Depends(get_company_id),
    db: Session = Depends(get_db),
) -> RecommendationService:
    return RecommendationService(db, company_id)


def get_pagination_params(
    offset: int = Query(
        default=0,
        ge=0,
        description="Number of records to skip (for pagination)"
    ),
    limit: int = Query(
        default=25,
        ge=1,
        le=500,
        description="Maximum number of records to return (1-500)"
    )
) -> PaginationParams:
    """
    Dependency for standardized pagination parameters.

    Example:
        @router.get("/runs")
        async def list_runs(
            pagination: Annotated[PaginationParams, Depends(get_pagination_params)],
            ...
        ):
            runs, total = service.list_runs(company_id, offset=pagination.offset, limit=pagination.limit)
    """
    return PaginationParams(offset=offset, limit=limit)
