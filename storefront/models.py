"""
SQLAlchemy ORM models for the Storefront service.

Defines the database schema for users, the service catalog, orders and their
timeline, payment records and notifications.
"""
from datetime import datetime
from sqlalchemy import (
    JSON, Boolean, Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from .database import Base

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB, "postgresql")


class User(Base):
    """
    User model representing a customer or staff member.

    Attributes:
        id (int): Primary key, auto-incremented user ID
        email (str): User's email address (unique)
        password_hash (str): Hashed password
        role (str): User role (admin, user)
        is_active (bool): Whether the user account is active
        created_at (datetime): Timestamp when the user was created
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=False)
    password_hash = Column(String, nullable=False)
    role = Column(String, default="user", nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)


class Service(Base):
    """A purchasable service in the catalog. Prices are integer cents."""
    __tablename__ = "services"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=False)
    base_price = Column(Integer, nullable=False)
    type = Column(String, nullable=False)
    features = Column(Text, nullable=True)


class Order(Base):
    """
    Order model representing a customer's purchase.

    Attributes:
        id (int): Primary key, system assigned
        user_id (int): Owning user, never changes
        service_id (int): Primary purchased service
        status (str): Administrative status (pending, in-progress, completed, on-hold, cancelled)
        payment_state (str): Payment outcome (unverified, confirmed, failed), independent of status
        total_price (int): Total in cents, never changes
        requirements (dict): Project requirements document, filled in by the customer
        version (int): Incremented on every status write
        created_at (datetime): Timestamp when the order was created
    """
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    service_id = Column(Integer, ForeignKey("services.id"), nullable=False)
    status = Column(String, nullable=False, default="pending")
    payment_state = Column(String, nullable=False, default="unverified")
    total_price = Column(Integer, nullable=False)
    requirements = Column(JSONType, nullable=True)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class OrderEvent(Base):
    """
    OrderEvent model representing historical events in an order's lifecycle.

    Attributes:
        id (int): Primary key, auto-incrementing event ID
        order_id (int): Foreign key to the order
        event_type (str): Type of event (e.g., "created", "status_changed", "payment_confirmed")
        description (str): Human-readable description of the event
        old_value (str): Previous value (for changes, optional)
        new_value (str): New value (for changes, optional)
        user_id (int): ID of the user who triggered the event (optional)
        created_at (datetime): Timestamp when the event occurred
    """
    __tablename__ = "order_events"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    event_type = Column(String, nullable=False)
    description = Column(Text, nullable=False)
    old_value = Column(String, nullable=True)
    new_value = Column(String, nullable=True)
    user_id = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class Payment(Base):
    """
    Payment record for a card payment attempt or a crypto claim.

    Attributes:
        correlation_id (str): Key used by status polling; the order id for card
            payments, a generated CRYPTO-... id for crypto claims
        order_id (int): Linked order, null for crypto claims
        amount (int): Amount in cents
        status (str): pending, confirmed or failed
        payment_provider (str): "stripe" or a crypto symbol (BTC, ETH, USDT)
        provider_order_id (str): Payment-intent id or self-reported transaction hash
        extra (dict): Free-form metadata (stored in the "metadata" column)
    """
    __tablename__ = "payments"
    __table_args__ = (
        UniqueConstraint("payment_provider", "provider_order_id", name="uq_payments_provider_ref"),
    )

    id = Column(Integer, primary_key=True, index=True)
    correlation_id = Column(String, nullable=False, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=True, index=True)
    amount = Column(Integer, nullable=False)
    status = Column(String, nullable=False, default="pending")
    payment_provider = Column(String, nullable=False)
    provider_order_id = Column(String, nullable=False)
    customer_email = Column(String, nullable=True)
    # "metadata" is reserved on declarative classes
    extra = Column("metadata", JSONType, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class Notification(Base):
    """In-app message for a single user. Status only moves unread -> read."""
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    title = Column(String, nullable=False)
    message = Column(Text, nullable=False)
    type = Column(String, nullable=True)
    related_id = Column(Integer, nullable=True)
    status = Column(String, nullable=False, default="unread")
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class NotificationOutbox(Base):
    """
    Pending notification/event intents.

    Rows are written in the same transaction as the change that caused them
    and drained afterwards by notifications.dispatch_outbox().
    """
    __tablename__ = "notification_outbox"

    id = Column(Integer, primary_key=True, index=True)
    event_type = Column(String, nullable=False)
    payload = Column(JSONType, nullable=False)
    attempts = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    dispatched_at = Column(DateTime, nullable=True, index=True)
