"""
In-app notifications and the outbox dispatcher.

Notifications are per-user messages that only ever move from unread to read.
Lifecycle operations write outbox entries next to their changes; the
dispatcher drains them after the request, broadcasting new orders to every
admin and relaying all events to the outbound webhooks. An entry is marked
dispatched once the admin broadcast is committed, so the broadcast is
at-least-once while the webhook relay is a single best-effort attempt per
entry.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import crud, models, webhooks
from .database import SessionLocal
from .errors import NotAuthorized, NotFound

logger = logging.getLogger(__name__)


def list_notifications(db: Session, actor: models.User) -> List[models.Notification]:
    return crud.get_notifications(db, actor.id)


def mark_read(db: Session, notification_id: int, actor: models.User) -> models.Notification:
    """
    Mark one of the actor's notifications as read. Marking twice is harmless.

    Raises:
        NotFound: if the notification does not exist
        NotAuthorized: if it belongs to someone else
    """
    notification = crud.get_notification(db, notification_id)
    if notification is None:
        raise NotFound(f"Notification {notification_id} not found")
    if notification.user_id != actor.id:
        raise NotAuthorized("Not authorized to update this notification")

    if notification.status != "read":
        notification.status = "read"
        db.commit()
        db.refresh(notification)
    return notification


def _broadcast_new_order(db: Session, payload: Dict[str, Any]) -> int:
    """
    Notify every admin about a new order, one commit per admin.

    Returns:
        Number of admins notified
    """
    order_id = payload.get("order_id")
    admin_ids = [admin.id for admin in crud.get_admin_users(db)]
    delivered = 0
    for admin_id in admin_ids:
        try:
            crud.add_notification(
                db,
                user_id=admin_id,
                title="New Order Received",
                message=f"New order #{order_id} has been created",
                type="order",
                related_id=order_id
            )
            db.commit()
            delivered += 1
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Failed to notify admin {admin_id} about order {order_id}: {e}")
    return delivered


async def dispatch_outbox(session_factory=SessionLocal) -> int:
    """
    Drain undispatched outbox entries, oldest first.

    Args:
        session_factory: Callable returning a new database session

    Returns:
        Number of entries dispatched
    """
    db = session_factory()
    relayed: List[Tuple[str, Dict[str, Any]]] = []
    try:
        for entry in crud.get_pending_outbox(db):
            event_type = entry.event_type
            payload = dict(entry.payload or {})

            if event_type == "order.created":
                delivered = _broadcast_new_order(db, payload)
                logger.info(f"Order {payload.get('order_id')} announced to {delivered} admin(s)")

            entry.attempts = (entry.attempts or 0) + 1
            entry.dispatched_at = datetime.utcnow()
            db.commit()
            relayed.append((event_type, payload))
    finally:
        db.close()

    for event_type, payload in relayed:
        await webhooks.send_webhook(event_type, payload)

    return len(relayed)
