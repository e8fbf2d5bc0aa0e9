# dispatch/core/order_lifecycle.py

from dispatch.core.models import (
    ORDER_CANCELED,
    ORDER_COMPLETED,
    ORDER_CONFIRMED,
    ORDER_DELIVERING,
    ORDER_PENDING,
    ORDER_PROCESSING_PAYMENT,
)


class OrderLifecycleError(Exception):
    """Raised when an invalid order status transition is attempted."""
    pass


ORDER_STATUSES = {
    ORDER_PENDING,
    ORDER_CONFIRMED,
    ORDER_DELIVERING,
    ORDER_COMPLETED,
    ORDER_CANCELED,
    ORDER_PROCESSING_PAYMENT,
}

# Statuses missing from this map are terminal
ORDER_TRANSITIONS = {
    ORDER_PENDING: {ORDER_CONFIRMED, ORDER_CANCELED},
    ORDER_CONFIRMED: {ORDER_DELIVERING, ORDER_CANCELED},
    ORDER_DELIVERING: {ORDER_COMPLETED, ORDER_CANCELED},
    ORDER_PROCESSING_PAYMENT: {ORDER_PENDING, ORDER_CANCELED},
}


def is_terminal(status: str) -> bool:
    return status in ORDER_STATUSES and status not in ORDER_TRANSITIONS


def validate_transition(current_status: str, next_status: str) -> None:
    """
    Validate whether an order status transition is allowed.

    Raises OrderLifecycleError if invalid.
    """
    if next_status not in ORDER_STATUSES:
        raise OrderLifecycleError(
            f"Invalid status '{next_status}'. Valid values are: {', '.join(sorted(ORDER_STATUSES))}"
        )

    if current_status not in ORDER_STATUSES:
        raise OrderLifecycleError(f"Unknown current status: {current_status}")

    allowed = ORDER_TRANSITIONS.get(current_status, set())
    if next_status not in allowed:
        raise OrderLifecycleError(
            f"Cannot change status from {current_status} to {next_status}"
        )
