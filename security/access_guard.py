"""
ACCESS GUARD (FINAL AUTH DECISION)

This is the SINGLE ENTRYPOINT for order visibility decisions.

Inputs:
- role: str
- user_id: str
- order: Order record

Rules:
- SYSTEM and ADMIN always allowed
- Customers see their own orders
- Shippers see orders assigned to them
- Restaurant owners see orders of restaurants they own
- No mutation, no logging, no side effects
"""

from typing import Iterable, Optional

from security.roles import ADMIN, CUSTOMER, GLOBAL_ROLES, RESTAURANT_OWNER, SHIPPER


class AccessDeniedError(Exception):
    """Raised when a user is not allowed to observe or change an order."""
    pass


def can_view_order(
    role: str,
    user_id: Optional[str],
    order,
    owned_restaurant_ids: Optional[Iterable[str]] = None,
) -> bool:
    """
    Decide whether a user may see an order and its live tracking.

    Args:
        role: The user's role
        user_id: The user's id
        order: Order record (needs user_id, restaurant_id, shipper_id)
        owned_restaurant_ids: Restaurants owned by the user (owners only)

    Returns:
        True if access is allowed, False otherwise
    """
    if role is None or not isinstance(role, str) or role.strip() == "":
        return False

    if order is None:
        return False

    if role in GLOBAL_ROLES:
        return True

    if not user_id:
        return False

    if role == CUSTOMER:
        return order.user_id == user_id

    if role == SHIPPER:
        return order.shipper_id is not None and order.shipper_id == user_id

    if role == RESTAURANT_OWNER:
        return order.restaurant_id in set(owned_restaurant_ids or [])

    return False


def can_update_constraints(role: str) -> bool:
    return role == ADMIN


def require_order_access(role: str, user_id: Optional[str], order, **kwargs) -> None:
    if not can_view_order(role, user_id, order, **kwargs):
        order_id = getattr(order, "id", None)
        raise AccessDeniedError(f"{role} {user_id} may not access order {order_id}")
