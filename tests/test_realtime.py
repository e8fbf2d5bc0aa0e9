import pytest

from conftest import make_order
from dispatch.realtime.location_tracking import LocationTracker
from dispatch.realtime.pubsub import ORDER_STATUS_UPDATED, SHIPPER_LOCATION_UPDATED, PubSub
from security.access_guard import AccessDeniedError


def test_publish_without_subscribers_is_noop():
    assert PubSub().publish(ORDER_STATUS_UPDATED, {"x": 1}) == 0


def test_subscription_receives_and_filters():
    bus = PubSub()
    everything = bus.subscribe(ORDER_STATUS_UPDATED)
    only_even = bus.subscribe(ORDER_STATUS_UPDATED, lambda p: p["n"] % 2 == 0)

    for n in range(4):
        bus.publish(ORDER_STATUS_UPDATED, {"n": n})

    assert [p["n"] for p in everything] == [0, 1, 2, 3]
    assert [p["n"] for p in only_even.drain()] == [0, 2]
    assert everything.get() is None


def test_failing_filter_and_handler_do_not_break_publisher():
    bus = PubSub()
    seen = []
    broken = bus.subscribe(ORDER_STATUS_UPDATED, lambda p: p["missing"])
    healthy = bus.subscribe(ORDER_STATUS_UPDATED)
    bus.on(ORDER_STATUS_UPDATED, lambda p: 1 / 0)
    bus.on(ORDER_STATUS_UPDATED, seen.append)

    bus.publish(ORDER_STATUS_UPDATED, {"n": 1})

    assert broken.pending() == 0
    assert healthy.pending() == 1
    assert seen == [{"n": 1}]


def test_closed_subscription_stops_receiving():
    bus = PubSub()
    sub = bus.subscribe(ORDER_STATUS_UPDATED)
    sub.close()

    bus.publish(ORDER_STATUS_UPDATED, {"n": 1})

    assert sub.get() is None
    assert bus.subscriber_count(ORDER_STATUS_UPDATED) == 0


@pytest.fixture
def tracker(repos, clock):
    return LocationTracker(PubSub(), repos.orders, clock=clock)


def test_update_location_validates(tracker):
    with pytest.raises(ValueError):
        tracker.update_location("", 10, 106)
    with pytest.raises(ValueError):
        tracker.update_location("s1", 95, 106)


def test_update_location_stores_latest(tracker, clock):
    tracker.update_location("s1", 10.1, 106.1)
    clock.advance(5)
    tracker.update_location("s1", 10.2, 106.2)

    latest = tracker.latest_location("s1")
    assert (latest.latitude, latest.longitude) == (10.2, 106.2)
    assert latest.updated_at == clock()
    assert tracker.latest_location("nobody") is None


def test_only_owner_can_subscribe(tracker, repos, clock):
    order = make_order(repos, clock, user_id="alice")

    with pytest.raises(AccessDeniedError):
        tracker.subscribe_for_order(order.id, "bob")
    with pytest.raises(AccessDeniedError):
        tracker.subscribe_for_order("missing-order", "alice")


def test_feed_only_carries_assigned_shipper(tracker, repos, clock):
    order = make_order(repos, clock, user_id="alice", shipper_id="s1")
    feed = tracker.subscribe_for_order(order.id, "alice")

    tracker.update_location("s1", 10.1, 106.1)
    tracker.update_location("s2", 10.2, 106.2)

    # Reassignment switches the feed to the new shipper
    order.shipper_id = "s2"
    repos.orders.save(order)
    tracker.update_location("s1", 10.3, 106.3)
    tracker.update_location("s2", 10.4, 106.4)

    received = [p[SHIPPER_LOCATION_UPDATED] for p in feed]
    assert [(r["shipper_id"], r["latitude"]) for r in received] == [("s1", 10.1), ("s2", 10.4)]
