"""
Payment provider integration for the Storefront service.

Card payments: verification of signed provider webhooks and decoding of
payment-intent events. Crypto payments: the catalog of accepted coins and
their payment URIs. Crypto transfers are never verified on-chain here; a
submitted hash is only a claim for staff to reconcile.
"""
import hashlib
import hmac
import json
import logging
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Optional

from .config import BTC_ADDRESS, ETH_ADDRESS, USDT_ADDRESS
from .errors import ProviderError
from .schemas import PaymentOutcome

logger = logging.getLogger(__name__)

CARD_PROVIDER = "stripe"

# Maximum age of a signed webhook (seconds)
SIGNATURE_TOLERANCE = 300

# Provider event type -> outcome
PAYMENT_INTENT_EVENTS = {
    "payment_intent.succeeded": PaymentOutcome.SUCCEEDED,
    "payment_intent.payment_failed": PaymentOutcome.FAILED,
}


@dataclass(frozen=True)
class CryptoPaymentMethod:
    """A coin the storefront accepts, with its receiving address."""
    symbol: str
    name: str
    address: str
    min_confirmations: int
    network: Optional[str] = None


CRYPTO_METHODS: Dict[str, CryptoPaymentMethod] = {
    "BTC": CryptoPaymentMethod("BTC", "Bitcoin", BTC_ADDRESS, min_confirmations=3),
    "ETH": CryptoPaymentMethod("ETH", "Ethereum", ETH_ADDRESS, min_confirmations=12, network="ERC20"),
    "USDT": CryptoPaymentMethod("USDT", "Tether USD", USDT_ADDRESS, min_confirmations=12, network="ERC20"),
}


def payment_link(method: CryptoPaymentMethod, amount: Optional[Decimal] = None) -> str:
    """
    Build a wallet URI for a crypto payment.

    Bitcoin URIs carry the amount; ERC20 tokens only carry the address.
    """
    if method.symbol == "BTC":
        link = f"bitcoin:{method.address}"
        return f"{link}?amount={amount}" if amount is not None else link
    if method.symbol in ("ETH", "USDT"):
        return f"ethereum:{method.address}"
    return method.address


@dataclass(frozen=True)
class ProviderEvent:
    """Payment outcome decoded from a provider webhook."""
    provider_order_id: str
    outcome: PaymentOutcome
    order_ref: Optional[str]
    amount: Optional[int] = None


def compute_signature(payload: bytes, secret: str, timestamp: int) -> str:
    """HMAC-SHA256 over "<timestamp>.<payload>", hex encoded."""
    signed_payload = f"{timestamp}.".encode() + payload
    return hmac.new(secret.encode(), signed_payload, hashlib.sha256).hexdigest()


def verify_signature(
    payload: bytes,
    header: Optional[str],
    secret: str,
    tolerance: int = SIGNATURE_TOLERANCE,
    now: Optional[int] = None
) -> None:
    """
    Verify a provider signature header of the form "t=<unix>,v1=<hex>[,v1=<hex>...]".

    Args:
        payload: Raw request body, exactly as received
        header: Value of the signature header
        secret: Shared webhook secret
        tolerance: Maximum accepted age of the signature in seconds
        now: Current unix time (defaults to time.time())

    Raises:
        ProviderError: if the header is missing, malformed, stale or does not match
    """
    if not secret:
        raise ProviderError("Webhook secret is not configured", status_code=500)
    if not header:
        raise ProviderError("Missing signature header")

    timestamp = None
    signatures = []
    for part in header.split(","):
        key, _, value = part.strip().partition("=")
        if key == "t":
            timestamp = value
        elif key == "v1":
            signatures.append(value)

    try:
        timestamp = int(timestamp)
    except (TypeError, ValueError):
        raise ProviderError("Malformed signature header")
    if not signatures:
        raise ProviderError("No v1 signature in header")

    now = int(time.time()) if now is None else now
    if tolerance and abs(now - timestamp) > tolerance:
        raise ProviderError("Signature timestamp outside the tolerance zone")

    expected = compute_signature(payload, secret, timestamp)
    if not any(hmac.compare_digest(expected, sig) for sig in signatures):
        raise ProviderError("Signature does not match payload")


def load_event(payload: bytes) -> Dict[str, Any]:
    try:
        event = json.loads(payload)
    except (UnicodeDecodeError, json.JSONDecodeError):
        raise ProviderError("Webhook payload is not valid JSON")
    if not isinstance(event, dict) or "type" not in event:
        raise ProviderError("Webhook payload is not an event")
    return event


def parse_payment_intent_event(event: Dict[str, Any]) -> Optional[ProviderEvent]:
    """
    Decode a payment-intent outcome from a provider event.

    Returns:
        ProviderEvent, or None for event types this service does not handle
    """
    outcome = PAYMENT_INTENT_EVENTS.get(event.get("type"))
    if outcome is None:
        return None

    intent = (event.get("data") or {}).get("object") or {}
    intent_id = intent.get("id")
    if not intent_id:
        raise ProviderError(f"{event['type']} event without a payment intent id")

    metadata = intent.get("metadata") or {}
    return ProviderEvent(
        provider_order_id=intent_id,
        outcome=outcome,
        order_ref=metadata.get("orderId"),
        amount=intent.get("amount"),
    )
