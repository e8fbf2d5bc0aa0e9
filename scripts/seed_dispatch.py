import random
import time

from dispatch import config
from dispatch.core.models import Review, Shipper, new_id
from dispatch.runtime import build_runtime
from dispatch.storage.repositories import Repositories

# Ho Chi Minh City centre
CENTER_LAT = 10.7769
CENTER_LNG = 106.7009
SPREAD = 0.04  # ~4 km

TOTAL_SHIPPERS = 40
TOTAL_ORDERS = 25

NAMES = [
    "Nguyen Van An", "Tran Thi Binh", "Le Van Cuong", "Pham Thi Dung",
    "Hoang Van Em", "Vo Thi Giang", "Dang Van Hai", "Bui Thi Lan",
]


def _near_center():
    return (
        round(CENTER_LAT + random.uniform(-SPREAD, SPREAD), 6),
        round(CENTER_LNG + random.uniform(-SPREAD, SPREAD), 6),
    )


config.configure_logging()
repos = Repositories.on_disk(config.DISPATCH_DATA_DIR)
runtime = build_runtime(repos, notifications=False)
now = time.time()

print("🚀 Seeding shippers...")

for i in range(TOTAL_SHIPPERS):
    completed = random.randint(0, 400)
    shipper = Shipper(
        id=new_id(),
        name=f"{random.choice(NAMES)} #{i + 1}",
        completed_deliveries=completed,
        failed_deliveries=random.randint(0, max(1, completed // 10)),
        active_deliveries=random.choice([0, 0, 0, 1, 1, 2, 3]),
        average_rating=round(random.uniform(3.2, 5.0), 1),
        on_time_deliveries=int(completed * random.uniform(0.6, 1.0)),
        response_time_minutes=round(random.uniform(1, 12), 1),
        last_active_at=now - random.randint(0, 3600),
    )
    shipper.late_deliveries = completed - shipper.on_time_deliveries
    repos.shippers.save(shipper)

    for _ in range(random.randint(0, 12)):
        repos.reviews.save(Review(
            id=new_id(),
            shipper_id=shipper.id,
            rating=random.choice([3, 4, 4, 5, 5, 5]),
            created_at=now - random.randint(0, 30 * 86400),
        ))

print(f"Seeded {TOTAL_SHIPPERS} shippers")
print("🚀 Seeding confirmed orders...")

for i in range(TOTAL_ORDERS):
    r_lat, r_lng = _near_center()
    d_lat, d_lng = _near_center()

    order = runtime.orders.create_order(
        user_id=new_id(),
        restaurant_id=new_id(),
        restaurant_lat=r_lat,
        restaurant_lng=r_lng,
        delivery_lat=d_lat,
        delivery_lng=d_lng,
        items=[{"price": random.choice([35000, 45000, 60000]), "quantity": random.randint(1, 3)}],
    )
    runtime.orders.confirm_order(order.id)

print(f"Seeded {TOTAL_ORDERS} orders")
print("✅ Seeding complete")
