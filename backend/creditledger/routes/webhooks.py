"""Payment Webhook Route

POST /api/webhooks/payments - Stripe checkout events

Once a delivery is verified the gateway always gets 200, whatever the
internal outcome, so Stripe stops retrying. Only rejected deliveries (rate
limit, bad signature, no payment id) get an error status.
"""
from fastapi import APIRouter, HTTPException, Request
import logging

from creditledger.services.payment_gateway import InvalidSignature, extract_payment_id, payment_gateway
from creditledger.services.webhook_processor import WebhookOutcome, webhook_processor
from utils.rate_limiter import rate_limiter, WEBHOOK_MAX_ATTEMPTS, WEBHOOK_WINDOW_MINUTES

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/webhooks", tags=["Webhooks"])


@router.post("/payments")
async def payment_webhook(request: Request):
    client_ip = request.client.host if request.client else "unknown"
    allowed, retry_after = await rate_limiter.check_rate_limit(
        f"webhook:{client_ip}",
        max_attempts=WEBHOOK_MAX_ATTEMPTS,
        window_minutes=WEBHOOK_WINDOW_MINUTES,
    )
    if not allowed:
        raise HTTPException(
            status_code=429,
            detail="Too many requests",
            headers={"Retry-After": str(retry_after)},
        )

    payload = await request.body()
    signature = request.headers.get("stripe-signature")
    try:
        event = payment_gateway.parse_event(payload, signature)
    except InvalidSignature as e:
        raise HTTPException(status_code=401, detail=str(e))

    if not extract_payment_id(event):
        raise HTTPException(status_code=400, detail="Missing payment id")

    result = await webhook_processor.process_event(event)
    if result.outcome == WebhookOutcome.FAILED:
        logger.error(f"Payment webhook {result.payment_id} acknowledged with failure: {result.error}")

    return {"received": result.acknowledged}
