"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from backend.app.api.v1.endpoints import addresses, admin, parcels, billing, notifications

router = APIRouter()

# Custom addresses and hub reference data
router.include_router(addresses.router)
router.include_router(admin.router)

# Parcel ledger
router.include_router(parcels.router)

# Billing engine
router.include_router(billing.router)

# In-app notifications
router.include_router(notifications.router)
