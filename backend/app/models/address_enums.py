"""
Custom address enumerations.
"""

import enum


class AddressStatus(str, enum.Enum):
    """Lifecycle of a client's proxy address. Codes are never reused."""
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    SUSPENDED = "SUSPENDED"
