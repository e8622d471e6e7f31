"""
User roles enumeration.

Defines the role types for the parcel forwarding system.
"""

import enum


class UserRole(str, enum.Enum):
    """
    User role enumeration.

    Roles:
        CLIENT: Receives a proxy address and ships parcels (default role)
        AGENT: Warehouse / counter staff handling intake and cash settlement
        ADMIN: Manages hubs, addresses and billing
        SUPER_ADMIN: Full system access
    """
    CLIENT = "CLIENT"
    AGENT = "AGENT"
    ADMIN = "ADMIN"
    SUPER_ADMIN = "SUPER_ADMIN"


STAFF_ROLES = [UserRole.AGENT, UserRole.ADMIN, UserRole.SUPER_ADMIN]
ADMIN_ROLES = [UserRole.ADMIN, UserRole.SUPER_ADMIN]
