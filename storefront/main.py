"""
Storefront Service API

This module implements the FastAPI application behind the storefront: user
registration, the service catalog, orders and their lifecycle, card and crypto
payments, provider webhooks and in-app notifications.

Endpoints:
    POST /register, POST /login, GET /me: account and token handling
    GET /admin/users, POST /admin/users, PATCH/DELETE /admin/users/{id}: staff user management
    GET /services, POST /services: service catalog
    GET /orders, POST /orders, GET /orders/{id}, PATCH /orders/{id}: orders
    GET /orders/{id}/timeline: order history
    POST /payments/create-intent, POST /payments/verify: start card payment, submit crypto claim
    GET /payments/{orderId}/status: payment status polling
    POST /webhooks/{provider}: signed payment provider callbacks
    GET /notifications, PATCH /notifications/{id}/read: the caller's notifications
    GET /admin/notifications, PATCH /admin/notifications/{id}/read: admin notifications
    GET /healthz: Health check endpoint for orchestration systems

Attributes:
    app (FastAPI): The FastAPI application instance configured with the title "storefront-service"
"""
import logging
from typing import List

from fastapi import BackgroundTasks, Depends, FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from . import auth, config, crud, lifecycle, models, notifications, payments, schemas
from .database import engine, get_db
from .errors import NotAuthenticated, NotAuthorized, NotFound, ProviderError, StorefrontError, ValidationError

# Configure logging
logging.basicConfig(level=config.LOG_LEVEL)
logger = logging.getLogger(__name__)

# Create database tables
models.Base.metadata.create_all(bind=engine)

app = FastAPI(title="storefront-service")


@app.exception_handler(StorefrontError)
async def storefront_error_handler(request: Request, exc: StorefrontError):
    if exc.status_code >= 500 or isinstance(exc, ProviderError):
        logger.error(f"{request.method} {request.url.path} failed: {exc.detail}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": jsonable_encoder(exc.errors())}
    )


@app.get("/healthz", response_model=dict)
def health():
    """
    Health check endpoint for the storefront service.

    Returns:
        dict: {"status": "healthy"} when the service is operational.
    """
    return {"status": "healthy"}


# --- Accounts ---

@app.post("/register", response_model=schemas.Token, status_code=status.HTTP_201_CREATED)
def register(user: schemas.UserRegister, db: Session = Depends(get_db)):
    """
    Register a new user account. The very first account becomes an admin.

    Raises:
        ValidationError: 400 if email already exists
    """
    if crud.get_user_by_email(db, email=user.email):
        raise ValidationError("Email already registered")

    role = "admin" if crud.get_user_count(db) == 0 else "user"
    db_user = crud.create_user(
        db,
        email=user.email,
        password_hash=auth.get_password_hash(user.password),
        role=role
    )
    logger.info(f"Registered user {db_user.id} with role {role}")
    return schemas.Token(access_token=auth.token_for_user(db_user))


@app.post("/login", response_model=schemas.Token)
def login(credentials: schemas.UserLogin, db: Session = Depends(get_db)):
    user = auth.authenticate_user(db, credentials.email, credentials.password)
    if not user:
        raise NotAuthenticated("Incorrect email or password")
    return schemas.Token(access_token=auth.token_for_user(user))


@app.get("/me", response_model=schemas.User)
def read_me(current_user: models.User = Depends(auth.get_current_user)):
    return current_user


# --- Admin: user management ---

@app.get("/admin/users", response_model=List[schemas.User])
def list_users(
    skip: int = 0,
    limit: int = 100,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin)
):
    return crud.get_users(db, skip=skip, limit=limit)


@app.post("/admin/users", response_model=schemas.User, status_code=status.HTTP_201_CREATED)
def create_user(
    user: schemas.AdminUserCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin)
):
    """
    Create an account with a chosen role (admin only).

    Raises:
        ValidationError: 400 if email already exists
    """
    if crud.get_user_by_email(db, email=user.email):
        raise ValidationError("Email already registered")

    db_user = crud.create_user(
        db,
        email=user.email,
        password_hash=auth.get_password_hash(user.password),
        role=user.role.value
    )
    logger.info(f"Admin {current_user.id} created user {db_user.id} with role {db_user.role}")
    return db_user


@app.patch("/admin/users/{user_id}", response_model=schemas.User)
def update_user(
    user_id: int,
    changes: schemas.AdminUserUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin)
):
    """
    Change a user's role and/or activation (admin only).

    Admins cannot demote or deactivate themselves, so there is always at
    least one active admin left to undo a mistake.

    Raises:
        ValidationError: 400 if the body is empty or the change targets the caller's own access
        NotFound: 404 if user not found
    """
    if changes.role is None and changes.is_active is None:
        raise ValidationError("Nothing to update: provide role and/or isActive")

    db_user = crud.get_user(db, user_id)
    if db_user is None:
        raise NotFound("User not found")

    if db_user.id == current_user.id and (changes.role == schemas.UserRole.USER or changes.is_active is False):
        raise ValidationError("Cannot remove your own admin access")

    db_user = crud.update_user(
        db,
        db_user,
        role=changes.role.value if changes.role is not None else None,
        is_active=changes.is_active
    )
    logger.info(f"Admin {current_user.id} updated user {db_user.id}: role={db_user.role} active={db_user.is_active}")
    return db_user


@app.delete("/admin/users/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_user(
    user_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin)
):
    """
    Delete a user account (admin only).

    Accounts that own orders are kept for the order history; deactivate
    them instead.

    Raises:
        ValidationError: 400 for the caller's own account or an account with orders
        NotFound: 404 if user not found
    """
    if user_id == current_user.id:
        raise ValidationError("Cannot delete your own account")

    db_user = crud.get_user(db, user_id)
    if db_user is None:
        raise NotFound("User not found")

    if crud.count_user_orders(db, user_id) > 0:
        raise ValidationError("User has orders; deactivate the account instead")

    crud.delete_user(db, db_user)


# --- Service catalog ---

@app.get("/services", response_model=List[schemas.Service])
def list_services(db: Session = Depends(get_db)):
    return crud.get_services(db)


@app.post("/services", response_model=schemas.Service, status_code=status.HTTP_201_CREATED)
def create_service(
    service: schemas.ServiceCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin)
):
    return crud.create_service(db, service)


# --- Orders ---

@app.get("/orders", response_model=List[schemas.Order])
def list_orders(
    skip: int = 0,
    limit: int = 100,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user)
):
    """
    List orders with pagination (authenticated users see their own, admins see all).

    Args:
        skip: Number of records to skip (default: 0)
        limit: Maximum number of records to return (default: 100)
    """
    user_id = None if auth.is_admin(current_user) else current_user.id
    return crud.get_orders(db, skip=skip, limit=limit, user_id=user_id)


@app.post("/orders", response_model=schemas.Order, status_code=status.HTTP_201_CREATED)
def create_order(
    order: schemas.OrderCreate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user)
):
    """
    Create a new order for the current user, in 'pending'.

    Raises:
        ValidationError: 400 if the service does not exist or the total is invalid
    """
    requirements = order.requirements.to_document() if order.requirements else None
    db_order = lifecycle.create_order(
        db,
        current_user,
        service_id=order.service_id,
        total_price=order.total_price,
        requirements=requirements
    )
    background_tasks.add_task(notifications.dispatch_outbox)
    return db_order


@app.get("/orders/{order_id}", response_model=schemas.Order)
def get_order(
    order_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user)
):
    """
    Get a single order by ID (owner or admin).

    Raises:
        NotAuthorized: 403 if not authorized
        NotFound: 404 if order not found
    """
    return lifecycle.get_order_for_actor(db, order_id, current_user)


@app.patch("/orders/{order_id}", response_model=schemas.Order)
def update_order(
    order_id: int,
    update: schemas.OrderUpdate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user)
):
    """
    Change an order's status (admin only) and/or replace its requirements
    (owner or admin).

    The status change is applied first, so a rejected transition leaves the
    requirements untouched as well.

    Raises:
        ValidationError: 400 if the body is empty
        TransitionNotAllowed: 400 if the status is not reachable
        NotAuthorized: 403 if not authorized
        NotFound: 404 if order not found
    """
    if update.status is None and update.requirements is None:
        raise ValidationError("Nothing to update: provide status and/or requirements")

    db_order = lifecycle.get_order_for_actor(db, order_id, current_user)
    if update.status is not None and not auth.is_admin(current_user):
        raise NotAuthorized("Admin privileges required to change order status")

    if update.status is not None:
        db_order = lifecycle.request_status_change(db, order_id, update.status.value, current_user)
        background_tasks.add_task(notifications.dispatch_outbox)

    if update.requirements is not None:
        db_order = lifecycle.attach_requirements(db, order_id, update.requirements.to_document(), current_user)

    return db_order


@app.get("/orders/{order_id}/timeline", response_model=List[schemas.OrderEvent])
def get_order_timeline(
    order_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user)
):
    """
    Get the timeline of events for an order (owner or admin).

    Returns:
        List of order events in chronological order
    """
    lifecycle.get_order_for_actor(db, order_id, current_user)
    return crud.get_order_events(db, order_id)


# --- Payments ---

@app.get("/config/stripe")
def stripe_config():
    """Expose the card provider's publishable key to the checkout page."""
    if not config.STRIPE_PUBLISHABLE_KEY:
        raise ProviderError("Stripe configuration error", status_code=500)
    return {"publishableKey": config.STRIPE_PUBLISHABLE_KEY}


@app.get("/payments/crypto/methods", response_model=List[schemas.CryptoMethod])
def list_crypto_methods():
    return [
        schemas.CryptoMethod(
            symbol=method.symbol,
            name=method.name,
            address=method.address,
            network=method.network,
            min_confirmations=method.min_confirmations,
            payment_link=payments.payment_link(method),
        )
        for method in payments.CRYPTO_METHODS.values()
    ]


@app.post("/payments/create-intent")
async def create_payment_intent(
    intent: schemas.PaymentIntentCreate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user)
):
    """
    Start a card payment: creates the order and a provider payment intent.

    Returns:
        {"clientSecret": ..., "orderId": ...}
    """
    logger.info(f"Creating payment intent for user {current_user.id}: {intent.amount} cents")
    result = await lifecycle.start_card_payment(db, current_user, intent.amount, intent.items)
    background_tasks.add_task(notifications.dispatch_outbox)
    return result


@app.post("/payments/verify")
def submit_crypto_payment(
    claim: schemas.CryptoClaimCreate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user)
):
    """
    Record a crypto transfer reported by the customer. The claim always
    starts out 'pending' until staff reconcile it.
    """
    payment = lifecycle.submit_crypto_claim(
        db,
        current_user,
        transaction_hash=claim.transaction_hash,
        method_symbol=claim.method,
        amount=claim.amount
    )
    background_tasks.add_task(notifications.dispatch_outbox)
    return {
        "message": "Payment verification submitted",
        "status": payment.status,
        "orderId": payment.correlation_id,
    }


@app.get("/payments/{order_id}/status")
def get_payment_status(order_id: str, db: Session = Depends(get_db)):
    """
    Current status of the payment registered under a correlation id.
    Polled by the checkout page every few seconds.

    Raises:
        NotFound: 404 if no payment exists for the id
    """
    payment = crud.get_payment_by_correlation(db, order_id)
    if payment is None:
        raise NotFound("Payment not found")
    return {
        "status": payment.status,
        "orderId": payment.correlation_id,
        "updatedAt": payment.updated_at.isoformat() if payment.updated_at else None,
    }


@app.post("/webhooks/{provider}")
async def provider_webhook(
    provider: str,
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db)
):
    """
    Signed callback from the card payment provider.

    Unknown orders are logged and acknowledged so the provider stops retrying.

    Raises:
        NotFound: 404 for unknown providers
        ProviderError: 400 if the signature does not verify
    """
    if provider != payments.CARD_PROVIDER:
        raise NotFound(f"Unknown payment provider: {provider}")

    payload = await request.body()
    payments.verify_signature(payload, request.headers.get("stripe-signature"), config.STRIPE_WEBHOOK_SECRET)
    event = payments.load_event(payload)
    logger.info(f"Processing {provider} webhook event: {event.get('type')}")

    processed = lifecycle.handle_provider_event(db, event)
    if processed:
        background_tasks.add_task(notifications.dispatch_outbox)
    return {"received": True, "processed": processed}


# --- Notifications ---

@app.get("/notifications", response_model=List[schemas.Notification])
def list_my_notifications(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user)
):
    return notifications.list_notifications(db, current_user)


@app.patch("/notifications/{notification_id}/read", response_model=schemas.Notification)
def mark_my_notification_read(
    notification_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user)
):
    return notifications.mark_read(db, notification_id, current_user)


@app.get("/admin/notifications", response_model=List[schemas.Notification])
def list_admin_notifications(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin)
):
    return notifications.list_notifications(db, current_user)


@app.patch("/admin/notifications/{notification_id}/read", response_model=schemas.Notification)
def mark_admin_notification_read(
    notification_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin)
):
    return notifications.mark_read(db, notification_id, current_user)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
