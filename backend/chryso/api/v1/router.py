"""Main API router aggregating all v1 endpoints."""

from fastapi import APIRouter

from chryso.api.v1 import retention

api_router = APIRouter()

# Retention policy administration endpoints
api_router.include_router(retention.router, prefix="/retention", tags=["Data Retention"])
