"""
Outbound event relay.

Allows external systems (mailers, chat bots, CRMs) to subscribe to order and
payment events. Events are relayed by the outbox dispatcher after the change
that produced them has been committed.
"""
import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx

from . import config

logger = logging.getLogger(__name__)


async def send_webhook(
    event_type: str,
    data: Dict[str, Any],
    urls: Optional[List[str]] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None
) -> None:
    """
    Send webhook notifications to all registered URLs.

    Args:
        event_type: Type of event (e.g., "order.created", "order.status_changed")
        data: Event data payload
        urls: Subscriber URLs (defaults to WEBHOOK_URLS)
        transport: Optional httpx transport (used by tests)
    """
    urls = config.WEBHOOK_URLS if urls is None else urls
    if not urls:
        return

    payload = {
        "event": event_type,
        "data": data,
        "timestamp": datetime.utcnow().isoformat()
    }

    async with httpx.AsyncClient(timeout=5.0, transport=transport) as client:
        # Send all webhooks concurrently
        await asyncio.gather(*(send_single_webhook(client, url, payload) for url in urls))


async def send_single_webhook(client: httpx.AsyncClient, url: str, payload: Dict[str, Any]) -> bool:
    """
    Send a webhook to a single URL. Failures are logged, never raised.

    Returns:
        True if the subscriber accepted the event
    """
    try:
        response = await client.post(url, json=payload)
    except httpx.HTTPError as e:
        logger.warning(f"Webhook error for {url}: {e}")
        return False

    if response.status_code >= 400:
        logger.warning(f"Webhook failed for {url}: HTTP {response.status_code}")
        return False
    return True
