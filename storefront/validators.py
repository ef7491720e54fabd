"""
Business-rule validation for the Storefront service.

Provides validation beyond schema validation. Each check returns a tuple of
(is_valid, error_message).
"""
from decimal import Decimal
from typing import Dict, FrozenSet, Tuple

from .schemas import OrderStatus

# Fixed at import time, not configurable at runtime
VALID_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    OrderStatus.PENDING.value: frozenset({OrderStatus.IN_PROGRESS.value, OrderStatus.CANCELLED.value}),
    OrderStatus.IN_PROGRESS.value: frozenset({OrderStatus.COMPLETED.value, OrderStatus.ON_HOLD.value}),
    OrderStatus.ON_HOLD.value: frozenset({OrderStatus.IN_PROGRESS.value, OrderStatus.CANCELLED.value}),
    OrderStatus.COMPLETED.value: frozenset(),  # Terminal state
    OrderStatus.CANCELLED.value: frozenset(),  # Terminal state
}

# Orders above this are almost certainly a client bug (cents)
MAX_TOTAL_PRICE = 100_000_000


def validate_status_transition(old_status: str, new_status: str) -> Tuple[bool, str]:
    """
    Validate that a status transition is allowed.

    Args:
        old_status: Current order status
        new_status: Requested order status

    Returns:
        Tuple of (is_valid, error_message)
    """
    if old_status not in VALID_TRANSITIONS:
        return False, f"Unknown status: {old_status}"

    if new_status not in VALID_TRANSITIONS:
        return False, f"Unknown status: {new_status}"

    if new_status not in VALID_TRANSITIONS[old_status]:
        return False, f"Invalid status transition: {old_status} -> {new_status}"

    return True, ""


def validate_total_price(total_price: int) -> Tuple[bool, str]:
    """
    Validate an order total in cents.

    Args:
        total_price: The total claimed by the client

    Returns:
        Tuple of (is_valid, error_message)
    """
    if total_price <= 0:
        return False, "Order total must be positive"

    if total_price > MAX_TOTAL_PRICE:
        return False, f"Order total exceeds maximum ({MAX_TOTAL_PRICE} cents)"

    return True, ""


def validate_crypto_claim(transaction_hash: str, method: str, amount: Decimal,
                          supported_methods) -> Tuple[bool, str]:
    """
    Validate a self-reported crypto transfer before it is recorded.

    Args:
        transaction_hash: Hash reported by the customer
        method: Crypto symbol (e.g. "BTC")
        amount: Amount in major units
        supported_methods: Symbols accepted by the storefront

    Returns:
        Tuple of (is_valid, error_message)
    """
    if not transaction_hash or not transaction_hash.strip():
        return False, "Transaction hash is required"

    if any(ch.isspace() for ch in transaction_hash.strip()):
        return False, "Transaction hash must not contain whitespace"

    if method not in supported_methods:
        return False, f"Unsupported payment method: {method}"

    if amount <= 0:
        return False, "Amount must be positive"

    return True, ""
