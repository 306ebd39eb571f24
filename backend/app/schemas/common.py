"""
Common API Response Schemas

Error envelope, pagination and simple message responses shared by the MRP API.
"""
from datetime import datetime, timezone
from typing import Any, Dict, Generic, List, Optional, TypeVar

from pydantic import BaseModel, Field


# ============================================================================
# Error Response Models
# ============================================================================

class ErrorResponse(BaseModel):
    """
    Error body returned for every MRPException.

    Error Codes:
        - VALIDATION_ERROR: Request or run validation failed (400)
        - INVALID_STATE: Operation not allowed in the current status (400)
        - NOT_FOUND: Resource not found (404)
        - MRP_RUN_IN_PROGRESS: Another run holds the company lock (409)
        - BOM_CIRCULAR_REFERENCE / BOM_MAX_DEPTH_EXCEEDED: BOM structure problems (422)
        - MISSING_BOM / MISSING_WAREHOUSE: Approval prerequisites missing (422)
        - SERVICE_UNAVAILABLE: Redis unreachable (503)
    """
    error: str = Field(..., description="Machine-readable error code")
    message: str = Field(..., description="Human-readable error message")
    details: Optional[Dict[str, Any]] = Field(None, description="Additional error context")
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the error occurred (UTC)"
    )

    class Config:
        json_schema_extra = {
            "example": {
                "error": "MRP_RUN_IN_PROGRESS",
                "message": "Another MRP run is already in progress for this company.",
                "details": {"company_id": 1},
                "timestamp": "2025-12-23T10:30:00Z"
            }
        }


# ============================================================================
# Pagination Models
# ============================================================================

class PaginationParams(BaseModel):
    """Offset-based pagination parameters."""
    offset: int = Field(default=0, ge=0, description="Number of records to skip")
    limit: int = Field(default=25, ge=1, le=500, description="Maximum records to return")


class PaginationMeta(BaseModel):
    """Pagination metadata included in list responses."""
    total: int = Field(..., description="Total number of records matching the query")
    offset: int = Field(..., description="Number of records skipped")
    limit: int = Field(..., description="Maximum records per page")
    returned: int = Field(..., description="Number of records in this response")


T = TypeVar('T')


class ListResponse(BaseModel, Generic[T]):
    """List response wrapper with pagination."""
    items: List[T] = Field(..., description="List of items")
    pagination: PaginationMeta = Field(..., description="Pagination metadata")

    @classmethod
    def build(cls, items: List[Any], total: int, offset: int, limit: int):
        return cls(
            items=items,
            pagination=PaginationMeta(total=total, offset=offset, limit=limit, returned=len(items)),
        )


class MessageResponse(BaseModel):
    """Confirmation for operations that return no resource."""
    message: str = Field(..., description="Operation result message")
