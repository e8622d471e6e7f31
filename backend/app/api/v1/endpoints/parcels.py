"""
Parcel API Endpoints.

Warehouse staff register parcels and move them through the pipeline;
clients follow their own parcels.
"""

from datetime import datetime
from fastapi import APIRouter, Depends, status, Query, Path
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional

from backend.app.core.dependencies import get_current_user
from backend.app.core.guards import require_role, OwnershipGuard
from backend.app.db.session import get_db
from backend.app.domain.parcel.ledger_service import ParcelService
from backend.app.models.enums import STAFF_ROLES
from backend.app.models.parcel_enums import ParcelStatus
from backend.app.schemas.parcel import (
    ParcelCreate,
    ParcelUpdate,
    ParcelStatusUpdate,
    ParcelResponse,
    StaffParcelResponse,
    ParcelListResponse,
    StatusHistoryResponse,
    ParcelStatisticsResponse,
)

router = APIRouter(prefix="/parcels", tags=["Parcels"])
ownership_guard = OwnershipGuard()


@router.post("", response_model=StaffParcelResponse, status_code=status.HTTP_201_CREATED)
async def create_parcel(
    parcel_data: ParcelCreate,
    current_user: dict = Depends(require_role(STAFF_ROLES)),
    db: AsyncSession = Depends(get_db)
):
    """
    Register a parcel at the warehouse (staff only).

    The owner is resolved from the ACTIVE address code. A RECEIVED parcel
    is invoiced right away.
    """
    attrs = parcel_data.model_dump(exclude={"address_code", "initial_status"}, exclude_none=True)
    parcel = await ParcelService.create_parcel(
        db,
        parcel_data.address_code,
        attrs,
        created_by=current_user["user_id"],
        initial_status=parcel_data.initial_status,
    )
    return StaffParcelResponse.model_validate(parcel)


@router.get("/mine", response_model=List[ParcelResponse])
async def list_my_parcels(
    status_filter: Optional[ParcelStatus] = Query(None, alias="status"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    parcels = await ParcelService.find_by_user(db, current_user["user_id"], status=status_filter)
    return [ParcelResponse.model_validate(p) for p in parcels]


@router.get("/search", response_model=ParcelListResponse)
async def search_parcels(
    status_filter: Optional[ParcelStatus] = Query(None, alias="status"),
    warehouse: Optional[str] = Query(None),
    user_id: Optional[int] = Query(None),
    address_code: Optional[str] = Query(None),
    tracking_number: Optional[str] = Query(None),
    date_from: Optional[datetime] = Query(None),
    date_to: Optional[datetime] = Query(None),
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(50, ge=1, le=100, description="Items per page"),
    current_user: dict = Depends(require_role(STAFF_ROLES)),
    db: AsyncSession = Depends(get_db)
):
    parcels, total = await ParcelService.search(
        db,
        status=status_filter,
        warehouse=warehouse,
        user_id=user_id,
        address_code=address_code,
        tracking_number=tracking_number,
        date_from=date_from,
        date_to=date_to,
        page=page,
        page_size=page_size,
    )
    return ParcelListResponse(
        parcels=[ParcelResponse.model_validate(p) for p in parcels],
        total=total,
        page=page,
        page_size=page_size
    )


@router.get("/statistics", response_model=ParcelStatisticsResponse)
async def get_parcel_statistics(
    current_user: dict = Depends(require_role(STAFF_ROLES)),
    db: AsyncSession = Depends(get_db)
):
    return await ParcelService.get_statistics(db)


@router.get("/tracking/{tracking_number}", response_model=ParcelResponse)
async def get_parcel_by_tracking_number(
    tracking_number: str,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    parcel = await ParcelService.find_by_tracking_number(db, tracking_number)
    ownership_guard.enforce(parcel.user_id, current_user, "parcel")
    return ParcelResponse.model_validate(parcel)


@router.get("/{parcel_id}", response_model=ParcelResponse)
async def get_parcel(
    parcel_id: int = Path(..., description="Parcel ID"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    parcel = await ParcelService.find_by_id(db, parcel_id)
    ownership_guard.enforce(parcel.user_id, current_user, "parcel")
    return ParcelResponse.model_validate(parcel)


@router.get("/{parcel_id}/history", response_model=List[StatusHistoryResponse])
async def get_parcel_history(
    parcel_id: int = Path(..., description="Parcel ID"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Status history in the order transitions were committed."""
    parcel = await ParcelService.find_by_id(db, parcel_id)
    ownership_guard.enforce(parcel.user_id, current_user, "parcel")
    history = await ParcelService.get_status_history(db, parcel_id)
    return [StatusHistoryResponse.model_validate(h) for h in history]


@router.patch("/{parcel_id}/status", response_model=StaffParcelResponse)
async def update_parcel_status(
    status_data: ParcelStatusUpdate,
    parcel_id: int = Path(..., description="Parcel ID"),
    current_user: dict = Depends(require_role(STAFF_ROLES)),
    db: AsyncSession = Depends(get_db)
):
    """
    Move a parcel to its next status (staff only).

    Returns 409 with the allowed transitions when the move is invalid.
    """
    parcel = await ParcelService.update_status(
        db,
        parcel_id,
        status_data.status,
        location=status_data.location,
        description=status_data.description,
        changed_by=current_user["user_id"],
        metadata=status_data.metadata,
    )
    return StaffParcelResponse.model_validate(parcel)


@router.patch("/{parcel_id}", response_model=StaffParcelResponse)
async def update_parcel(
    parcel_data: ParcelUpdate,
    parcel_id: int = Path(..., description="Parcel ID"),
    current_user: dict = Depends(require_role(STAFF_ROLES)),
    db: AsyncSession = Depends(get_db)
):
    """Update descriptive fields (staff only)."""
    parcel = await ParcelService.update(
        db, parcel_id, parcel_data.model_dump(exclude_unset=True), changed_by=current_user["user_id"]
    )
    return StaffParcelResponse.model_validate(parcel)
