"""
Admin API endpoints.

Hub reference data maintenance. Changing a hub never touches its sequence.
"""

from fastapi import APIRouter, Depends, Path
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.guards import require_role
from backend.app.db.session import get_db
from backend.app.models.enums import ADMIN_ROLES
from backend.app.schemas.hub import HubUpsert, HubResponse
from backend.app.services import address_allocator

router = APIRouter(prefix="/admin/hubs", tags=["Admin - Hubs"])


@router.put("/{hub}", response_model=HubResponse)
async def upsert_hub(
    hub_data: HubUpsert,
    hub: str = Path(..., min_length=3, max_length=3, description="3-letter hub code"),
    current_user: dict = Depends(require_role(ADMIN_ROLES)),
    db: AsyncSession = Depends(get_db)
):
    """Create or replace a hub's physical address."""
    hub_address = await address_allocator.upsert_hub(
        db, hub, hub_data.model_dump(), actor_id=current_user["user_id"]
    )
    return HubResponse.model_validate(hub_address)


@router.patch("/{hub}/deactivate", response_model=HubResponse)
async def deactivate_hub(
    hub: str = Path(..., min_length=3, max_length=3),
    current_user: dict = Depends(require_role(ADMIN_ROLES)),
    db: AsyncSession = Depends(get_db)
):
    """Stop allocating addresses at a hub. Existing addresses stay valid."""
    hub_address = await address_allocator.deactivate_hub(db, hub, actor_id=current_user["user_id"])
    return HubResponse.model_validate(hub_address)
