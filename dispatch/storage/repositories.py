# dispatch/storage/repositories.py

import os
from typing import Callable, Generic, List, Optional, Type, TypeVar

from dispatch.core.models import (
    Order,
    PendingShipperAssignment,
    Review,
    Shipper,
    ShippingDetail,
    SystemConstraints,
)
from dispatch.storage.jsonl_table import JsonlTable

T = TypeVar("T")


class Repository(Generic[T]):
    """Typed view over a JsonlTable."""

    model: Type[T]

    def __init__(self, table: JsonlTable):
        self.table = table

    def save(self, record: T) -> T:
        self.table.upsert(record.to_dict())
        return record

    def get(self, record_id: str) -> Optional[T]:
        row = self.table.get(record_id)
        return self.model.from_dict(row) if row else None

    def delete(self, record_id: str) -> bool:
        return self.table.delete(record_id)

    def all(self) -> List[T]:
        return [self.model.from_dict(r) for r in self.table.all()]

    def find(self, predicate: Callable[[T], bool]) -> List[T]:
        return [r for r in self.all() if predicate(r)]

    def count(self) -> int:
        return self.table.count()


class OrderRepository(Repository[Order]):
    model = Order


class ShipperRepository(Repository[Shipper]):
    model = Shipper


class ReviewRepository(Repository[Review]):
    model = Review

    def recent_for_shipper(self, shipper_id: str, limit: int = 20) -> List[Review]:
        reviews = self.find(lambda r: r.shipper_id == shipper_id)
        reviews.sort(key=lambda r: r.created_at, reverse=True)
        return reviews[:limit]


class ShippingDetailRepository(Repository[ShippingDetail]):
    model = ShippingDetail

    def find_by_order(self, order_id: str) -> Optional[ShippingDetail]:
        matches = self.find(lambda d: d.order_id == order_id)
        return matches[0] if matches else None


class PendingAssignmentRepository(Repository[PendingShipperAssignment]):
    model = PendingShipperAssignment

    def find_by_order(self, order_id: str) -> Optional[PendingShipperAssignment]:
        matches = self.find(lambda p: p.order_id == order_id)
        return matches[0] if matches else None

    def delete_by_order(self, order_id: str) -> int:
        removed = 0
        for row in self.find(lambda p: p.order_id == order_id):
            if self.delete(row.id):
                removed += 1
        return removed

    def ready(self, now: float, limit: int = 10) -> List[PendingShipperAssignment]:
        """Rows due for an attempt, priority DESC then created_at ASC."""
        due = self.find(
            lambda p: not p.abandoned
            and p.next_attempt_at is not None
            and p.next_attempt_at <= now
        )
        due.sort(key=lambda p: (-p.priority, p.created_at))
        return due[:limit]

    def delete_created_before(self, cutoff: float) -> int:
        removed = 0
        for row in self.find(lambda p: p.created_at < cutoff):
            if self.delete(row.id):
                removed += 1
        return removed


class ConstraintsRepository(Repository[SystemConstraints]):
    """Every update is a new version; the newest one is authoritative."""

    model = SystemConstraints

    def latest(self) -> Optional[SystemConstraints]:
        versions = self.all()
        if not versions:
            return None
        return max(versions, key=lambda c: c.created_at)


class Repositories:
    """Bundle of every repository the dispatch services need."""

    TABLES = ("orders", "shippers", "reviews", "shipping_details",
              "pending_shipper_assignments", "system_constraints")

    def __init__(self, tables: dict):
        self.orders = OrderRepository(tables["orders"])
        self.shippers = ShipperRepository(tables["shippers"])
        self.reviews = ReviewRepository(tables["reviews"])
        self.shipping_details = ShippingDetailRepository(tables["shipping_details"])
        self.pending_assignments = PendingAssignmentRepository(tables["pending_shipper_assignments"])
        self.constraints = ConstraintsRepository(tables["system_constraints"])

    @classmethod
    def in_memory(cls) -> "Repositories":
        return cls({name: JsonlTable(name) for name in cls.TABLES})

    @classmethod
    def on_disk(cls, data_dir: str) -> "Repositories":
        return cls({
            name: JsonlTable(name, path=os.path.join(data_dir, f"{name}.jsonl"))
            for name in cls.TABLES
        })
