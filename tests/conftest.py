import pytest

from dispatch.core.models import ORDER_CONFIRMED, Order, Shipper, new_id
from dispatch.notifications.in_app_notifier import clear_notifications
from dispatch.runtime import build_runtime
from dispatch.storage.repositories import Repositories

# Wednesday 2026-01-07, mid-morning in most timezones
START = 1767772800.0

HCMC = (10.7769, 106.7009)


class FakeClock:

    def __init__(self, now=START):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def repos():
    return Repositories.in_memory()


@pytest.fixture
def runtime(repos, clock):
    clear_notifications()
    rt = build_runtime(repos, clock=clock, sleep=clock.advance)
    yield rt
    clear_notifications()


def make_shipper(repos, clock, **overrides):
    data = dict(
        id=new_id(),
        name="Tran Van Minh",
        completed_deliveries=50,
        failed_deliveries=2,
        on_time_deliveries=45,
        late_deliveries=5,
        average_rating=4.8,
        response_time_minutes=2,
        last_active_at=clock(),
    )
    data.update(overrides)
    return repos.shippers.save(Shipper(**data))


def make_order(repos, clock, **overrides):
    data = dict(
        id=new_id(),
        user_id="customer-1",
        restaurant_id="restaurant-1",
        status=ORDER_CONFIRMED,
        total=120000,
        restaurant_lat=HCMC[0],
        restaurant_lng=HCMC[1],
        delivery_lat=10.7626,
        delivery_lng=106.6602,
        shipping_fee=15000,
        delivery_distance=4.0,
        created_at=clock(),
        updated_at=clock(),
    )
    data.update(overrides)
    return repos.orders.save(Order(**data))
