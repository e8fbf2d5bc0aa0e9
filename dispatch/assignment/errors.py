# dispatch/assignment/errors.py


class AssignmentError(Exception):
    """Raised when an order cannot be put up for, or given to, a shipper."""
    pass


class AssignmentConflictError(AssignmentError):
    """Raised when the order is already assigned or held by another shipper."""
    pass


class OrderNotFoundError(AssignmentError):
    """Raised when the referenced order does not exist."""
    pass
