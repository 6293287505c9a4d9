import json
import logging
from typing import Any, Dict

import stripe
from fastapi import HTTPException, Request, status

from ..client import get_stripe
from ..config import get_settings

logger = logging.getLogger(__name__)


async def verify_stripe_signature(request: Request) -> Dict[str, Any]:
    """Check the stripe-signature header and return the event as a plain dict"""
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature")
    if not sig_header:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing stripe signature")

    try:
        get_stripe().Webhook.construct_event(
            payload=payload,
            sig_header=sig_header,
            secret=get_settings().STRIPE_WEBHOOK_SECRET,
        )
    except (ValueError, stripe.SignatureVerificationError) as e:
        logger.warning("⚠️ Stripe webhook verification failed: %s", e)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Webhook Error: {e}")

    return json.loads(payload)
