"""
Order lifecycle management.

The single place where orders are created and where their status and payment
state change. Every operation receives the acting user explicitly and commits
its side effects (timeline events, notifications, outbox entries) in the same
transaction as the change itself.

Status transitions follow validators.VALID_TRANSITIONS and are written with a
conditional UPDATE on the observed status and version, so two concurrent
changes from the same status cannot both succeed. Payment outcomes reported by providers set
the separate payment_state field and never touch the administrative status.
"""
import json
import logging
import secrets
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, List, Optional

import httpx
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import crud, models, payments, schemas
from .auth import is_admin
from .clients import card_client
from .errors import NotAuthorized, NotFound, ProviderError, TransitionNotAllowed, ValidationError
from .schemas import OrderStatus, PaymentOutcome, PaymentState, PaymentStatus
from .validators import validate_crypto_claim, validate_status_transition, validate_total_price

logger = logging.getLogger(__name__)

# A conditional write only misses when another request changed the status in
# between; the table has no path long enough to need more attempts than this.
MAX_STATUS_WRITE_ATTEMPTS = 3


def _get_order_or_404(db: Session, order_id: int) -> models.Order:
    order = crud.get_order(db, order_id)
    if order is None:
        raise NotFound(f"Order {order_id} not found")
    return order


def _require_owner_or_admin(order: models.Order, actor: models.User) -> None:
    if not is_admin(actor) and order.user_id != actor.id:
        raise NotAuthorized("Not authorized to access this order")


def get_order_for_actor(db: Session, order_id: int, actor: models.User) -> models.Order:
    """Load an order the actor may see (owner or admin)."""
    order = _get_order_or_404(db, order_id)
    _require_owner_or_admin(order, actor)
    return order


def create_order(
    db: Session,
    actor: models.User,
    service_id: int,
    total_price: int,
    requirements: Optional[Dict[str, Any]] = None
) -> models.Order:
    """
    Create an order in 'pending' for the acting user.

    Admins are told about the new order through an 'order.created' outbox
    entry; the broadcast happens when the outbox is drained, so a failing
    notification can never undo the order.

    Raises:
        ValidationError: if the total is out of range or the service does not exist
    """
    is_valid, error_message = validate_total_price(total_price)
    if not is_valid:
        raise ValidationError(error_message)

    if crud.get_service(db, service_id) is None:
        raise ValidationError(f"Service with ID {service_id} does not exist")

    order = models.Order(
        user_id=actor.id,
        service_id=service_id,
        status=OrderStatus.PENDING.value,
        payment_state=PaymentState.UNVERIFIED.value,
        total_price=total_price,
        requirements=requirements,
        version=1,
    )
    db.add(order)
    db.flush()

    crud.log_order_event(
        db,
        order_id=order.id,
        event_type="created",
        description=f"Order created with status '{order.status}'",
        new_value=order.status,
        user_id=actor.id
    )
    crud.enqueue_outbox(db, "order.created", {
        "order_id": order.id,
        "user_id": order.user_id,
        "service_id": order.service_id,
        "total_price": order.total_price,
    })
    db.commit()
    db.refresh(order)

    logger.info(f"Order {order.id} created by user {actor.id} ({total_price} cents)")
    return order


def request_status_change(
    db: Session,
    order_id: int,
    target_status: str,
    actor: models.User
) -> models.Order:
    """
    Move an order to a new administrative status.

    Args:
        db: Database session
        order_id: Order to change
        target_status: Requested status
        actor: Acting user, must be an admin

    Returns:
        The updated order

    Raises:
        NotAuthorized: if the actor is not an admin
        ValidationError: if the target is not a known status
        NotFound: if the order does not exist
        TransitionNotAllowed: if the target is not reachable from the current status
    """
    if not is_admin(actor):
        raise NotAuthorized("Admin privileges required")

    try:
        target = OrderStatus(target_status).value
    except ValueError:
        raise ValidationError(f"Unknown status: {target_status}")

    order = _get_order_or_404(db, order_id)

    for _ in range(MAX_STATUS_WRITE_ATTEMPTS):
        current = order.status
        observed_version = order.version
        is_valid, _message = validate_status_transition(current, target)
        if not is_valid:
            raise TransitionNotAllowed(current, target)

        result = db.execute(
            update(models.Order)
            .where(
                models.Order.id == order.id,
                models.Order.status == current,
                models.Order.version == observed_version
            )
            .values(status=target, version=models.Order.version + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            break

        # Someone else changed the order since we read it; re-check against their status
        db.rollback()
        db.refresh(order)
        logger.info(f"Order {order.id} changed concurrently ({current} -> {order.status}), re-validating")
    else:
        raise TransitionNotAllowed(order.status, target)

    crud.add_notification(
        db,
        user_id=order.user_id,
        title="Order Status Updated",
        message=f"Your order #{order.id} status has been updated to {target}",
        type="order",
        related_id=order.id
    )
    crud.log_order_event(
        db,
        order_id=order.id,
        event_type="status_changed",
        description=f"Status changed from '{current}' to '{target}'",
        old_value=current,
        new_value=target,
        user_id=actor.id
    )
    crud.enqueue_outbox(db, "order.status_changed", {
        "order_id": order.id,
        "old_status": current,
        "new_status": target,
    })
    db.commit()
    db.refresh(order)

    logger.info(f"Order {order.id} status {current} -> {target} by admin {actor.id}")
    return order


def attach_requirements(
    db: Session,
    order_id: int,
    document: Dict[str, Any],
    actor: models.User
) -> models.Order:
    """
    Store the project requirements of an order, replacing any earlier document.

    Submitting requirements does not advance the order out of 'pending';
    staff move it on explicitly.
    """
    order = get_order_for_actor(db, order_id, actor)

    replaced = order.requirements is not None
    order.requirements = document
    crud.log_order_event(
        db,
        order_id=order.id,
        event_type="requirements_updated",
        description="Project requirements replaced" if replaced else "Project requirements submitted",
        user_id=actor.id
    )
    db.commit()
    db.refresh(order)
    return order


def record_payment_outcome(
    db: Session,
    provider_order_id: str,
    outcome: str,
    order_ref: Optional[str] = None,
    provider: str = payments.CARD_PROVIDER,
    amount: Optional[int] = None
) -> Optional[models.Order]:
    """
    Apply a payment result reported by a provider.

    The order is found through the order id carried in the provider's metadata
    (order_ref), falling back to the order linked to the payment record. The
    order's payment_state is overwritten directly; the administrative status is
    left alone. Side effects only happen when the conditional write actually
    changes payment_state, so a replayed or overlapping delivery of the same
    event is a no-op.

    Returns:
        The order, or None if no order matches (logged, not raised)
    """
    outcome = PaymentOutcome(outcome)
    if outcome is PaymentOutcome.SUCCEEDED:
        new_state, new_payment_status = PaymentState.CONFIRMED.value, PaymentStatus.CONFIRMED.value
    else:
        new_state, new_payment_status = PaymentState.FAILED.value, PaymentStatus.FAILED.value

    order = None
    if order_ref is not None:
        try:
            order = crud.get_order(db, int(order_ref))
        except (TypeError, ValueError):
            logger.warning(f"Ignoring malformed order reference {order_ref!r} on payment {provider_order_id}")

    payment = crud.get_payment_by_provider_ref(db, provider, provider_order_id)
    if order is None and payment is not None and payment.order_id is not None:
        order = crud.get_order(db, payment.order_id)

    if order is None:
        logger.warning(
            f"Payment {outcome.value} for {provider} {provider_order_id} "
            f"does not match any order (order ref {order_ref!r})"
        )
        return None

    if payment is None:
        crud.add_payment(
            db,
            correlation_id=str(order.id),
            order_id=order.id,
            amount=amount if amount is not None else order.total_price,
            status=new_payment_status,
            payment_provider=provider,
            provider_order_id=provider_order_id,
            extra={}
        )
    elif payment.status != new_payment_status:
        payment.status = new_payment_status

    old_state = order.payment_state
    # Of two overlapping deliveries of the same outcome only one gets a row back
    result = db.execute(
        update(models.Order)
        .where(models.Order.id == order.id, models.Order.payment_state != new_state)
        .values(payment_state=new_state)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 1:
        confirmed = new_state == PaymentState.CONFIRMED.value
        crud.add_notification(
            db,
            user_id=order.user_id,
            title="Payment Confirmed" if confirmed else "Payment Failed",
            message=f"Payment for order #{order.id} has been {'confirmed' if confirmed else 'declined'}",
            type="payment",
            related_id=order.id
        )
        crud.log_order_event(
            db,
            order_id=order.id,
            event_type="payment_confirmed" if confirmed else "payment_failed",
            description=f"{provider} reported payment {provider_order_id} as {outcome.value}",
            old_value=old_state,
            new_value=new_state
        )
        crud.enqueue_outbox(db, "payment.succeeded" if confirmed else "payment.failed", {
            "order_id": order.id,
            "provider": provider,
            "provider_order_id": provider_order_id,
        })
        logger.info(f"Order {order.id} payment_state {old_state} -> {new_state} ({provider_order_id})")
    else:
        logger.info(f"Duplicate {outcome.value} for order {order.id} ({provider_order_id}), nothing to do")

    try:
        db.commit()
    except IntegrityError:
        # A concurrent delivery recorded this provider payment first and applied it
        db.rollback()
        logger.info(f"Payment {provider_order_id} for order {order.id} already recorded by a concurrent delivery")

    db.refresh(order)
    return order


def handle_provider_event(db: Session, event: Dict[str, Any]) -> bool:
    """
    Route a verified card-provider event.

    Returns:
        True if the event matched an order and was applied
    """
    parsed = payments.parse_payment_intent_event(event)
    if parsed is None:
        logger.info(f"Unhandled event type: {event.get('type')}")
        return False

    order = record_payment_outcome(
        db,
        provider_order_id=parsed.provider_order_id,
        outcome=parsed.outcome.value,
        order_ref=parsed.order_ref,
        amount=parsed.amount
    )
    return order is not None


async def start_card_payment(
    db: Session,
    actor: models.User,
    amount: int,
    items: List[schemas.CartItem]
) -> Dict[str, Any]:
    """
    Create an order for the first cart item and a card payment intent for it.

    Returns:
        {"clientSecret": ..., "orderId": ...} for the checkout page

    Raises:
        ValidationError: if the cart is empty or the order is invalid
        ProviderError: if the card provider call fails (the order stays pending)
    """
    if not items:
        raise ValidationError("Cart is empty")

    order = create_order(db, actor, service_id=items[0].id, total_price=amount)

    item_summary = json.dumps([{"id": item.id, "name": item.name} for item in items])
    try:
        intent = await card_client.create_payment_intent(
            amount,
            currency="usd",
            metadata={"orderId": str(order.id), "items": item_summary}
        )
    except httpx.HTTPError as e:
        logger.error(f"Payment intent creation failed for order {order.id}: {e}")
        raise ProviderError(f"Failed to create payment intent: {e}", status_code=502)

    crud.add_payment(
        db,
        correlation_id=str(order.id),
        order_id=order.id,
        amount=amount,
        status=PaymentStatus.PENDING.value,
        payment_provider=payments.CARD_PROVIDER,
        provider_order_id=intent["id"],
        customer_email=actor.email,
        extra={"items": json.loads(item_summary)}
    )
    db.commit()

    return {"clientSecret": intent.get("client_secret"), "orderId": order.id}


def submit_crypto_claim(
    db: Session,
    actor: models.User,
    transaction_hash: str,
    method_symbol: str,
    amount: Decimal
) -> models.Payment:
    """
    Record a customer's claim that they paid with crypto.

    The claim is stored as a 'pending' payment under a fresh CRYPTO-... id and
    is not linked to any order; staff reconcile it by hand.

    Raises:
        ValidationError: for unsupported methods, bad input or a reused hash
    """
    transaction_hash = (transaction_hash or "").strip()
    method_symbol = (method_symbol or "").upper()
    amount = Decimal(amount)

    is_valid, error_message = validate_crypto_claim(
        transaction_hash, method_symbol, amount, payments.CRYPTO_METHODS
    )
    if not is_valid:
        raise ValidationError(error_message)

    if crud.get_payment_by_provider_ref(db, method_symbol, transaction_hash) is not None:
        raise ValidationError("Transaction hash already submitted")

    claim = crud.add_payment(
        db,
        correlation_id=f"CRYPTO-{secrets.token_hex(8).upper()}",
        order_id=None,
        amount=int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP)),
        status=PaymentStatus.PENDING.value,
        payment_provider=method_symbol,
        provider_order_id=transaction_hash,
        customer_email=actor.email,
        extra={
            "cryptoMethod": method_symbol,
            "transactionHash": transaction_hash,
            "verificationAttempt": datetime.utcnow().isoformat(),
        }
    )
    crud.enqueue_outbox(db, "payment.claim_submitted", {
        "correlation_id": claim.correlation_id,
        "method": method_symbol,
        "transaction_hash": transaction_hash,
        "user_id": actor.id,
    })
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ValidationError("Transaction hash already submitted")

    db.refresh(claim)
    logger.info(f"Crypto claim {claim.correlation_id} recorded ({method_symbol} {transaction_hash})")
    return claim
