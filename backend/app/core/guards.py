"""
Security guards for role-based and ownership-based access control.
"""

from typing import List
from fastapi import Depends, HTTPException, status
from backend.app.models.enums import UserRole, STAFF_ROLES
from backend.app.core.dependencies import get_current_user


def require_role(allowed_roles: List[UserRole]):
    """
    Dependency factory for role-based access control.

    Usage:
        @router.patch("/parcels/{parcel_id}/status")
        async def update_status(current_user: dict = Depends(require_role(STAFF_ROLES))):
            ...

    Raises:
        HTTPException 403 if user role is not in allowed_roles
    """
    async def role_checker(current_user: dict = Depends(get_current_user)) -> dict:
        try:
            user_role = UserRole(current_user.get("role"))
        except ValueError:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Invalid role in token"
            )

        if user_role not in allowed_roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Access denied. Required role: {', '.join([r.value for r in allowed_roles])}"
            )

        return current_user

    return role_checker


def is_staff(current_user: dict) -> bool:
    return current_user.get("role") in {r.value for r in STAFF_ROLES}


class OwnershipGuard:
    """
    Clients only reach their own addresses, parcels and invoices.
    Agents and administrators reach everything.

    Usage:
        parcel = await ParcelService.find_by_id(db, parcel_id)
        ownership_guard.enforce(parcel.user_id, current_user, "parcel")
    """

    def enforce(self, resource_owner_id: int, current_user: dict, resource_name: str = "resource"):
        """
        Raises:
            HTTPException 403 if ownership check fails
        """
        if is_staff(current_user):
            return
        if current_user.get("user_id") != resource_owner_id:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Access denied. You do not have permission to access this {resource_name}."
            )
