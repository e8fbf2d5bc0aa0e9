"""
ROLE DEFINITIONS

Define marketplace roles that interact with the dispatch subsystem.

Rules:
- No imports outside typing
- No logic, only declarations
- Roles must be explicit strings
- Used by access_guard.py
"""

from typing import Literal

# Role definitions
CUSTOMER: Literal["CUSTOMER"] = "CUSTOMER"
RESTAURANT_OWNER: Literal["RESTAURANT_OWNER"] = "RESTAURANT_OWNER"
SHIPPER: Literal["SHIPPER"] = "SHIPPER"
ADMIN: Literal["ADMIN"] = "ADMIN"
SYSTEM: Literal["SYSTEM"] = "SYSTEM"

# Roles that see every order
GLOBAL_ROLES: set[str] = {ADMIN, SYSTEM}

# All roles
ALL_ROLES: list[str] = [
    CUSTOMER,
    RESTAURANT_OWNER,
    SHIPPER,
    ADMIN,
    SYSTEM,
]
