from conftest import make_order, make_shipper
from dispatch.notifications.in_app_notifier import (
    emit_notification,
    get_notifications_for,
    get_unread_count,
    mark_as_read,
    user_recipient,
)
from security.roles import ADMIN, CUSTOMER


def test_inbox_per_recipient(runtime):
    emit_notification("o1", "test", "hello admin", [ADMIN])
    emit_notification("o2", "test", "hello everyone", [ADMIN, CUSTOMER])

    assert len(get_notifications_for(ADMIN)) == 2
    assert [n["message"] for n in get_notifications_for(CUSTOMER)] == ["hello everyone"]
    assert get_unread_count(ADMIN) == 2


def test_mark_as_read_checks_recipient(runtime):
    note = emit_notification("o1", "test", "admins only", [ADMIN])

    assert mark_as_read(note["id"], CUSTOMER) is False
    assert mark_as_read(note["id"], ADMIN) is True
    assert get_unread_count(ADMIN) == 0
    assert get_notifications_for(ADMIN, unread_only=True) == []


def test_customer_notified_on_assignment(runtime, repos, clock):
    shipper = make_shipper(repos, clock)
    order = make_order(repos, clock, user_id="alice")

    runtime.offers.assign_order_to_shipper(order.id, shipper.id)

    inbox = get_notifications_for(user_recipient("alice"))
    assert len(inbox) == 1
    assert inbox[0]["metadata"]["shipper_id"] == shipper.id


def test_admin_notified_on_abandon(runtime, repos, clock):
    order = make_order(repos, clock)
    row = runtime.pending.add_pending_assignment(order.id)
    for _ in range(5):
        runtime.pending.update_attempt(row.id)

    inbox = get_notifications_for(ADMIN)
    assert len(inbox) == 1
    assert "Manual assignment needed" in inbox[0]["message"]


def test_shipper_notified_when_hold_expires(runtime, repos, clock):
    shipper = make_shipper(repos, clock)
    order = make_order(repos, clock)
    runtime.offers.request_order_assignment(order.id, shipper.id)

    clock.advance(121)
    runtime.offers.expire_offers()

    assert get_unread_count(user_recipient(shipper.id)) == 1
