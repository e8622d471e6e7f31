"""
Custom Address API Endpoints.

Clients request their proxy address; staff look addresses up by code at intake.
"""

from fastapi import APIRouter, Depends, HTTPException, status, Path
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List

from backend.app.core.config import settings
from backend.app.core.dependencies import get_current_user
from backend.app.core.guards import require_role, is_staff, OwnershipGuard
from backend.app.db.session import get_db
from backend.app.models.enums import STAFF_ROLES, ADMIN_ROLES
from backend.app.schemas.address import AddressGenerateRequest, AddressResponse, HubStatisticsResponse
from backend.app.schemas.hub import HubResponse
from backend.app.services import address_allocator

router = APIRouter(prefix="/addresses", tags=["Addresses"])
ownership_guard = OwnershipGuard()


@router.post("/generate", response_model=AddressResponse, status_code=status.HTTP_201_CREATED)
async def generate_address(
    request: AddressGenerateRequest,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Allocate a custom address at a hub.

    Clients allocate for themselves; staff may pass user_id.
    Returns 409 with the existing code if the user already has one at the hub.
    """
    user_id = current_user["user_id"]
    if request.user_id is not None and request.user_id != user_id:
        if not is_staff(current_user):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Only staff can allocate addresses for other users"
            )
        user_id = request.user_id

    address = await address_allocator.allocate_address(
        db, user_id, request.hub or settings.default_hub, actor_id=current_user["user_id"]
    )
    return AddressResponse.model_validate(address)


@router.get("/mine", response_model=List[AddressResponse])
async def list_my_addresses(
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    return await address_allocator.get_user_addresses(db, current_user["user_id"])


@router.get("/mine/primary", response_model=AddressResponse)
async def get_my_primary_address(
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    address = await address_allocator.get_primary_address(db, current_user["user_id"])
    if not address:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No active primary address")
    return AddressResponse.model_validate(address)


@router.get("/hubs", response_model=List[HubResponse])
async def list_hubs(
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Hubs currently accepting new addresses."""
    return await address_allocator.list_active_hubs(db)


@router.get("/statistics/{hub}", response_model=HubStatisticsResponse)
async def get_hub_statistics(
    hub: str = Path(..., min_length=3, max_length=3),
    current_user: dict = Depends(require_role(ADMIN_ROLES)),
    db: AsyncSession = Depends(get_db)
):
    return await address_allocator.get_hub_statistics(db, hub)


@router.get("/code/{address_code:path}", response_model=AddressResponse)
async def get_address_by_code(
    address_code: str,
    current_user: dict = Depends(require_role(STAFF_ROLES)),
    db: AsyncSession = Depends(get_db)
):
    """Look up an address by its code, e.g. HT-MIA-00001/A (staff only)."""
    address = await address_allocator.get_address_by_code(db, address_code)
    if not address:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Address not found")
    return AddressResponse.model_validate(address)


@router.patch("/{address_id}/deactivate", response_model=AddressResponse)
async def deactivate_address(
    address_id: int = Path(..., description="Address ID"),
    current_user: dict = Depends(require_role(ADMIN_ROLES)),
    db: AsyncSession = Depends(get_db)
):
    """Soft-deactivate an address (admin only). Repeating the call is a no-op."""
    address = await address_allocator.deactivate_address(db, address_id, actor_id=current_user["user_id"])
    return AddressResponse.model_validate(address)
