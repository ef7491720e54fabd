"""
HTTP client for the card payment provider.

Creates payment intents through the provider's REST API. The client secret
returned to the browser is used there to confirm the card payment; the final
result arrives later through the signed webhook.
"""
import logging
from typing import Dict, Optional

import httpx

from .. import config
from ..errors import ProviderError

logger = logging.getLogger(__name__)


async def create_payment_intent(
    amount: int,
    currency: str = "usd",
    metadata: Optional[Dict[str, str]] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None
) -> dict:
    """
    Create a payment intent with the card provider.

    Args:
        amount: Amount in cents
        currency: ISO currency code
        metadata: String key/values attached to the intent (carries the order id)
        transport: Optional httpx transport (used by tests)

    Returns:
        The provider's payment intent object (contains "id" and "client_secret")

    Raises:
        ProviderError: if card payments are not configured
        httpx.HTTPError: If there's a network error or the provider rejects the request
    """
    if not config.STRIPE_SECRET_KEY:
        raise ProviderError("Card payments are not configured", status_code=500)

    form = {"amount": str(amount), "currency": currency}
    for key, value in (metadata or {}).items():
        form[f"metadata[{key}]"] = value

    async with httpx.AsyncClient(timeout=config.STRIPE_TIMEOUT, transport=transport) as client:
        response = await client.post(
            f"{config.STRIPE_API_URL}/payment_intents",
            data=form,
            auth=(config.STRIPE_SECRET_KEY, ""),
        )
        response.raise_for_status()
        intent = response.json()

    logger.info(f"Created payment intent {intent.get('id')} for {amount} {currency}")
    return intent
