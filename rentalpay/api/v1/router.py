"""Main API router that includes all endpoint routers."""

from fastapi import APIRouter

from rentalpay.api.v1 import charges, refunds, reports, trips

api_router = APIRouter()

# Trips
api_router.include_router(trips.router, prefix="/trips", tags=["Trips"])

# Staff charge resolution
api_router.include_router(charges.router, prefix="/charges", tags=["Charges"])

# Refunds
api_router.include_router(refunds.router, prefix="/refunds", tags=["Refunds"])

# Reports
api_router.include_router(reports.router, prefix="/reports", tags=["Reports"])
