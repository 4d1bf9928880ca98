"""Payment Gateway - Stripe Checkout for credit packages.

The gateway is the source of truth for what was paid: webhook payloads only
tell us *which* checkout session changed, the session itself is retrieved
again before anything is credited.

Blocking SDK calls run in the default executor.
"""
import stripe
import asyncio
import json
import os
import logging
from dataclasses import dataclass, field
from typing import Optional, Dict, Any

from creditledger.models.credits import CreditPackage

logger = logging.getLogger(__name__)

PAID = "paid"

# Event types that can move a checkout to paid
PAYMENT_EVENT_TYPES = (
    "checkout.session.completed",
    "checkout.session.async_payment_succeeded",
)


class PaymentGatewayError(Exception):
    """Stripe is not configured or refused the request."""


class InvalidSignature(Exception):
    """Webhook payload could not be verified or parsed."""


def _get_api_key() -> str:
    return (os.getenv("STRIPE_SECRET_KEY") or os.getenv("STRIPE_API_KEY") or "").strip()


def _get_webhook_secret() -> str:
    return (os.getenv("STRIPE_WEBHOOK_SECRET") or "").strip()


@dataclass
class PaymentEvent:
    """Authoritative view of one checkout session."""
    payment_id: str
    status: str
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_paid(self) -> bool:
        return self.status == PAID

    @property
    def account_id(self) -> Optional[str]:
        return self.metadata.get("account_id")

    @property
    def package_id(self) -> Optional[str]:
        return self.metadata.get("package_id")

    @property
    def credits(self) -> Optional[int]:
        raw = self.metadata.get("credits")
        try:
            return int(raw)
        except (TypeError, ValueError):
            return None


def extract_payment_id(event: Dict[str, Any]) -> Optional[str]:
    obj = (event.get("data") or {}).get("object") or {}
    payment_id = obj.get("id")
    return payment_id if isinstance(payment_id, str) and payment_id else None


class PaymentGateway:
    async def _run(self, fn):
        api_key = _get_api_key()
        if not api_key:
            raise PaymentGatewayError("STRIPE_SECRET_KEY or STRIPE_API_KEY is not set")
        stripe.api_key = api_key
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, fn)

    async def create_checkout(
        self,
        package: CreditPackage,
        account_id: str,
        email: Optional[str] = None,
    ) -> Dict[str, str]:
        """
        Create a one-time Checkout Session for a credit package.

        Returns:
            Dict with checkout_url and payment_id (the session id)
        """
        frontend_url = os.getenv("FRONTEND_URL", "http://localhost:3000").rstrip("/")
        params: Dict[str, Any] = {
            "mode": "payment",
            "line_items": [{
                "price_data": {
                    "currency": package.currency,
                    "product_data": {
                        "name": package.name,
                        "description": package.description,
                    },
                    "unit_amount": package.price_cents,
                },
                "quantity": 1,
            }],
            "success_url": f"{frontend_url}/dashboard/credits?payment=success&session_id={{CHECKOUT_SESSION_ID}}",
            "cancel_url": f"{frontend_url}/dashboard/credits?payment=cancelled",
            "metadata": {
                "account_id": account_id,
                "package_id": package.package_id,
                "credits": str(package.credits),
            },
        }
        if email:
            params["customer_email"] = email

        try:
            session = await self._run(lambda: stripe.checkout.Session.create(**params))
        except stripe.error.StripeError as e:
            logger.error(f"Stripe checkout creation failed for account {account_id}: {e}")
            raise PaymentGatewayError("Could not create checkout session") from e

        logger.info(f"Created checkout {session.id} for account {account_id} ({package.package_id})")
        return {"checkout_url": session.url, "payment_id": session.id}

    async def get_payment(self, payment_id: str) -> PaymentEvent:
        """Retrieve a checkout session. Raises PaymentGatewayError on Stripe failure."""
        try:
            session = await self._run(lambda: stripe.checkout.Session.retrieve(payment_id))
        except stripe.error.StripeError as e:
            raise PaymentGatewayError(f"Could not retrieve payment {payment_id}") from e

        metadata = session.get("metadata") or {}
        return PaymentEvent(
            payment_id=session.get("id") or payment_id,
            status=session.get("payment_status") or "unpaid",
            metadata=dict(metadata),
        )

    def parse_event(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """Verify and parse a webhook payload.

        Without STRIPE_WEBHOOK_SECRET the payload is parsed unverified.

        Raises:
            InvalidSignature
        """
        webhook_secret = _get_webhook_secret()
        try:
            if webhook_secret:
                event = stripe.Webhook.construct_event(payload, signature or "", webhook_secret)
            else:
                event = stripe.Event.construct_from(json.loads(payload), _get_api_key())
                logger.warning("STRIPE_WEBHOOK_SECRET not set - skipping signature verification")
        except stripe.error.SignatureVerificationError as e:
            logger.error(f"Webhook signature verification failed: {e}")
            raise InvalidSignature("Invalid signature") from e
        except ValueError as e:
            logger.error(f"Webhook parse error: {e}")
            raise InvalidSignature("Invalid payload") from e
        return event


payment_gateway = PaymentGateway()
