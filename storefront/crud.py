"""
CRUD (Create, Read, Update, Delete) operations for the Storefront service.

This module contains plain database operations. Business rules live in
lifecycle.py. Functions that only add rows to the session leave the commit
to the caller so several writes can share one transaction.
"""
from typing import Any, Dict, List, Optional
import logging
from sqlalchemy.orm import Session
from . import models, schemas

# Set up logging
logger = logging.getLogger(__name__)


# --- Users ---

def get_user(db: Session, user_id: int) -> Optional[models.User]:
    return db.query(models.User).filter(models.User.id == user_id).first()


def get_user_by_email(db: Session, email: str) -> Optional[models.User]:
    """
    Retrieve a user by email address.

    Args:
        db: Database session
        email: Email address to search for

    Returns:
        User object or None if not found
    """
    return db.query(models.User).filter(models.User.email == email).first()


def get_user_count(db: Session) -> int:
    return db.query(models.User).count()


def get_admin_users(db: Session) -> List[models.User]:
    """Active users holding the admin role."""
    return db.query(models.User).filter(
        models.User.role == "admin",
        models.User.is_active.is_(True)
    ).order_by(models.User.id).all()


def create_user(db: Session, email: str, password_hash: str, role: str = "user") -> models.User:
    db_user = models.User(email=email, password_hash=password_hash, role=role, is_active=True)
    db.add(db_user)
    db.commit()
    db.refresh(db_user)
    return db_user


def get_users(db: Session, skip: int = 0, limit: int = 100) -> List[models.User]:
    return db.query(models.User).order_by(models.User.id).offset(skip).limit(limit).all()


def update_user(db: Session, db_user: models.User, **fields: Any) -> models.User:
    """
    Update a user with the given fields.

    Args:
        db: Database session
        db_user: User to update
        **fields: Column values to set; None values are ignored

    Returns:
        Updated User object
    """
    for key, value in fields.items():
        if value is not None:
            setattr(db_user, key, value)
    db.commit()
    db.refresh(db_user)
    return db_user


def count_user_orders(db: Session, user_id: int) -> int:
    return db.query(models.Order).filter(models.Order.user_id == user_id).count()


def delete_user(db: Session, db_user: models.User) -> None:
    """Delete a user together with their notifications. The caller checks for orders first."""
    user_id = db_user.id
    db.query(models.Notification).filter(
        models.Notification.user_id == user_id
    ).delete(synchronize_session=False)
    db.delete(db_user)
    db.commit()
    logger.info(f"Deleted user {user_id}")


# --- Service catalog ---

def get_service(db: Session, service_id: int) -> Optional[models.Service]:
    return db.query(models.Service).filter(models.Service.id == service_id).first()


def get_services(db: Session) -> List[models.Service]:
    return db.query(models.Service).order_by(models.Service.id).all()


def create_service(db: Session, service: schemas.ServiceCreate) -> models.Service:
    db_service = models.Service(**service.model_dump())
    db.add(db_service)
    db.commit()
    db.refresh(db_service)
    return db_service


# --- Orders ---

def get_order(db: Session, order_id: int) -> Optional[models.Order]:
    """
    Retrieve a single order by ID.

    Args:
        db: Database session
        order_id: ID of the order to retrieve

    Returns:
        Order object or None if not found
    """
    return db.query(models.Order).filter(models.Order.id == order_id).first()


def get_orders(db: Session, skip: int = 0, limit: int = 100,
               user_id: Optional[int] = None) -> List[models.Order]:
    """
    Retrieve a list of orders with pagination, newest first.

    Args:
        db: Database session
        skip: Number of records to skip (offset)
        limit: Maximum number of records to return
        user_id: Restrict to orders owned by this user

    Returns:
        List of Order objects
    """
    query = db.query(models.Order)
    if user_id is not None:
        query = query.filter(models.Order.user_id == user_id)
    return query.order_by(models.Order.id.desc()).offset(skip).limit(limit).all()


def log_order_event(
    db: Session,
    order_id: int,
    event_type: str,
    description: str,
    old_value: str = None,
    new_value: str = None,
    user_id: int = None
) -> models.OrderEvent:
    """
    Add an order event to the timeline. The caller commits.

    Args:
        db: Database session
        order_id: Order identifier
        event_type: Type of event (e.g., "created", "status_changed")
        description: Human-readable description
        old_value: Previous value (optional)
        new_value: New value (optional)
        user_id: User who triggered the event (optional)
    """
    event = models.OrderEvent(
        order_id=order_id,
        event_type=event_type,
        description=description,
        old_value=old_value,
        new_value=new_value,
        user_id=user_id
    )
    db.add(event)
    return event


def get_order_events(db: Session, order_id: int) -> List[models.OrderEvent]:
    return db.query(models.OrderEvent).filter(
        models.OrderEvent.order_id == order_id
    ).order_by(models.OrderEvent.created_at.asc(), models.OrderEvent.id.asc()).all()


# --- Payments ---

def get_payment_by_correlation(db: Session, correlation_id: str) -> Optional[models.Payment]:
    """Most recent payment record for a polling key."""
    return db.query(models.Payment).filter(
        models.Payment.correlation_id == correlation_id
    ).order_by(models.Payment.id.desc()).first()


def get_payment_by_provider_ref(db: Session, provider: str, provider_order_id: str) -> Optional[models.Payment]:
    return db.query(models.Payment).filter(
        models.Payment.payment_provider == provider,
        models.Payment.provider_order_id == provider_order_id
    ).first()


def add_payment(db: Session, **fields: Any) -> models.Payment:
    """Add a payment record to the session. The caller commits."""
    payment = models.Payment(**fields)
    db.add(payment)
    return payment


# --- Notifications ---

def add_notification(
    db: Session,
    user_id: int,
    title: str,
    message: str,
    type: Optional[str] = None,
    related_id: Optional[int] = None
) -> models.Notification:
    """Add an unread notification to the session. The caller commits."""
    notification = models.Notification(
        user_id=user_id,
        title=title,
        message=message,
        type=type,
        related_id=related_id,
        status="unread"
    )
    db.add(notification)
    return notification


def get_notification(db: Session, notification_id: int) -> Optional[models.Notification]:
    return db.query(models.Notification).filter(models.Notification.id == notification_id).first()


def get_notifications(db: Session, user_id: int) -> List[models.Notification]:
    return db.query(models.Notification).filter(
        models.Notification.user_id == user_id
    ).order_by(models.Notification.created_at.desc(), models.Notification.id.desc()).all()


# --- Outbox ---

def enqueue_outbox(db: Session, event_type: str, payload: Dict[str, Any]) -> models.NotificationOutbox:
    """Add an outbox entry to the session. The caller commits."""
    entry = models.NotificationOutbox(event_type=event_type, payload=payload, attempts=0)
    db.add(entry)
    return entry


def get_pending_outbox(db: Session, limit: int = 100) -> List[models.NotificationOutbox]:
    return db.query(models.NotificationOutbox).filter(
        models.NotificationOutbox.dispatched_at.is_(None)
    ).order_by(models.NotificationOutbox.id.asc()).limit(limit).all()
