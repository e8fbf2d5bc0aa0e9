"""
DISPATCH DOMAIN RECORDS

Purpose:
- Plain records for orders, shippers, reviews and the assignment queue
- JSON-safe (timestamps are Unix seconds)
- Round-trip through to_dict / from_dict for JSONL storage

Rules:
- No IO
- No business logic beyond derived read-only properties
"""

import uuid
from dataclasses import dataclass, field, asdict, fields
from typing import Any, Dict, Optional


def new_id() -> str:
    return str(uuid.uuid4())


class _Record:
    """Shared serialization helpers for the dataclasses below."""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]):
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


# ==================================================
# ORDER
# ==================================================

ORDER_PENDING = "pending"
ORDER_CONFIRMED = "confirmed"
ORDER_DELIVERING = "delivering"
ORDER_COMPLETED = "completed"
ORDER_CANCELED = "canceled"
ORDER_PROCESSING_PAYMENT = "processing_payment"

DELIVERY_ASAP = "asap"
DELIVERY_SCHEDULED = "scheduled"

DEFAULT_COMMISSION_RATE = 0.8


@dataclass
class Order(_Record):
    id: str
    user_id: str
    restaurant_id: str
    status: str = ORDER_PENDING
    total: float = 0
    restaurant_lat: Optional[float] = None
    restaurant_lng: Optional[float] = None
    delivery_lat: Optional[float] = None
    delivery_lng: Optional[float] = None
    shipping_fee: Optional[int] = None
    delivery_distance: Optional[float] = None
    estimated_delivery_time: Optional[int] = None
    delivery_type: str = DELIVERY_ASAP
    requested_delivery_time: Optional[str] = None
    shipper_earnings: Optional[int] = None
    shipper_commission_rate: float = DEFAULT_COMMISSION_RATE
    shipper_id: Optional[str] = None
    created_at: float = 0.0
    updated_at: float = 0.0

    @property
    def is_assigned(self) -> bool:
        return self.shipper_id is not None


# ==================================================
# SHIPPER
# ==================================================

SHIPPER_ROLE = "shipper"
CERTIFICATE_APPROVED = "APPROVED"


@dataclass
class Shipper(_Record):
    id: str
    name: str = ""
    role: str = SHIPPER_ROLE
    is_active: bool = True
    certificate_status: str = CERTIFICATE_APPROVED
    completed_deliveries: int = 0
    failed_deliveries: int = 0
    active_deliveries: int = 0
    average_rating: float = 5.0
    on_time_deliveries: int = 0
    late_deliveries: int = 0
    response_time_minutes: float = 0.0
    last_active_at: Optional[float] = None
    rejected_orders: int = 0
    total_earnings: float = 0.0

    @property
    def total_orders(self) -> int:
        return self.completed_deliveries + self.failed_deliveries

    @property
    def completion_rate(self) -> float:
        total = self.total_orders
        return self.completed_deliveries / total if total > 0 else 0.0

    @property
    def is_approved_shipper(self) -> bool:
        return self.role == SHIPPER_ROLE and self.certificate_status == CERTIFICATE_APPROVED


@dataclass
class Review(_Record):
    id: str
    shipper_id: str
    rating: float
    created_at: float = 0.0


# ==================================================
# ASSIGNMENT QUEUE
# ==================================================

@dataclass
class PendingShipperAssignment(_Record):
    id: str
    order_id: str
    priority: int = 1  # higher number = served first
    attempt_count: int = 0
    last_attempt_at: Optional[float] = None
    next_attempt_at: Optional[float] = None
    created_at: float = 0.0
    notes: Optional[str] = None
    is_sent_to_shipper: bool = False
    abandoned: bool = False


@dataclass
class SystemConstraints(_Record):
    id: str = field(default_factory=new_id)
    min_completion_rate: float = 0.7
    min_total_orders: int = 10
    max_active_deliveries: int = 3
    max_delivery_distance: float = 30
    min_shipper_rating: float = 3.5
    max_delivery_time_min: int = 45

    # Shipping fee tiers
    base_distance_km: float = 5
    base_shipping_fee: int = 15000
    tier2_distance_km: float = 10
    tier2_shipping_fee: int = 25000
    tier3_shipping_fee: int = 35000

    created_at: float = 0.0


SHIPPING_PENDING = "PENDING"
SHIPPING_PICKED_UP = "PICKED_UP"
SHIPPING_DELIVERED = "DELIVERED"
SHIPPING_FAILED = "FAILED"


@dataclass
class ShippingDetail(_Record):
    id: str
    order_id: str
    shipper_id: str
    status: str = SHIPPING_PENDING
    estimated_delivery_time: Optional[float] = None
    created_at: float = 0.0


@dataclass
class ShipperLocation(_Record):
    shipper_id: str
    latitude: float
    longitude: float
    updated_at: float
