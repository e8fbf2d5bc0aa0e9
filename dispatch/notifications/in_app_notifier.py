"""
IN-APP DISPATCH NOTIFICATIONS

Purpose:
- Event-driven inbox fed by dispatch pub/sub topics
- Recipients are roles (e.g. "admin") or individual users ("user:<id>")
- No push/email/SMS - in-app only

Triggers:
• orderAssignedToShipper      -> customer of the order
• pendingAssignmentAbandoned  -> admin (manual intervention)
• offerExpired                -> shipper who let the offer lapse
"""

import uuid
from datetime import datetime
from typing import Dict, List, Optional

from dispatch.realtime.pubsub import (
    OFFER_EXPIRED,
    ORDER_ASSIGNED_TO_SHIPPER,
    PENDING_ASSIGNMENT_ABANDONED,
    PubSub,
)
from security.roles import ADMIN


# In-memory notification store (process-level)
_notification_store: List[Dict] = []


def user_recipient(user_id: str) -> str:
    return f"user:{user_id}"


def emit_notification(
    order_id: str,
    event_type: str,
    message: str,
    recipients: List[str],
    metadata: Optional[Dict] = None
) -> Dict:
    """
    Emit an in-app notification.

    Args:
        order_id: Order the notification is about
        event_type: Pub/sub topic that triggered it
        message: Human readable text
        recipients: Roles and/or user recipients
        metadata: Additional metadata
    """
    notification = {
        "id": f"NOTIF-{uuid.uuid4().hex[:12]}",
        "order_id": order_id,
        "event_type": event_type,
        "message": message,
        "recipients": recipients,
        "timestamp": datetime.now().isoformat(),
        "read": False,
        "metadata": metadata or {}
    }

    _notification_store.append(notification)
    return notification


def get_notifications_for(recipient: str, unread_only: bool = False) -> List[Dict]:
    """Notifications addressed to a role or user recipient, newest first."""
    notifications = [
        n for n in _notification_store
        if recipient in n["recipients"]
    ]

    if unread_only:
        notifications = [n for n in notifications if not n["read"]]

    notifications.sort(key=lambda x: x["timestamp"], reverse=True)
    return notifications


def mark_as_read(notification_id: str, recipient: str = None) -> bool:
    """
    Mark a notification as read.

    When recipient is given it must be one of the notification's recipients.
    """
    for notification in _notification_store:
        if notification["id"] == notification_id:
            if recipient is not None and recipient not in notification.get("recipients", []):
                continue
            notification["read"] = True
            return True
    return False


def clear_notifications() -> None:
    """Clear all notifications (admin only)."""
    global _notification_store
    _notification_store = []


def get_unread_count(recipient: str) -> int:
    return len([
        n for n in _notification_store
        if recipient in n["recipients"] and not n["read"]
    ])


# Event-driven notification triggers
def handle_order_assigned(payload: Dict) -> None:
    order = payload[ORDER_ASSIGNED_TO_SHIPPER]
    emit_notification(
        order_id=order["id"],
        event_type=ORDER_ASSIGNED_TO_SHIPPER,
        message=f"🛵 A shipper has picked up your order {order['id'][:8]}.",
        recipients=[user_recipient(order["user_id"])],
        metadata={"shipper_id": payload.get("shipper_id")},
    )


def handle_assignment_abandoned(payload: Dict) -> None:
    emit_notification(
        order_id=payload["order_id"],
        event_type=PENDING_ASSIGNMENT_ABANDONED,
        message=(
            f"⚠️ No shipper found for order {payload['order_id'][:8]} after "
            f"{payload.get('attempt_count', 0)} attempts. Manual assignment needed."
        ),
        recipients=[ADMIN],
        metadata={"pending_assignment_id": payload.get("pending_assignment_id")},
    )


def handle_offer_expired(payload: Dict) -> None:
    emit_notification(
        order_id=payload["order_id"],
        event_type=OFFER_EXPIRED,
        message=f"⏱️ Your hold on order {payload['order_id'][:8]} expired.",
        recipients=[user_recipient(payload["shipper_id"])],
        metadata={"assignment_id": payload.get("assignment_id")},
    )


def wire_dispatch_notifications(pubsub: PubSub) -> None:
    pubsub.on(ORDER_ASSIGNED_TO_SHIPPER, handle_order_assigned)
    pubsub.on(PENDING_ASSIGNMENT_ABANDONED, handle_assignment_abandoned)
    pubsub.on(OFFER_EXPIRED, handle_offer_expired)
