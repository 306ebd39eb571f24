"""
API v1 Router - MRP Engine
"""
from fastapi import APIRouter
from app.api.v1.endpoints import mrp

router = APIRouter()

# Material Requirements Planning
router.include_router(mrp.router)
