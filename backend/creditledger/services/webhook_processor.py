"""Payment Webhook Processor

Credits purchased packages exactly once per Stripe checkout session.

Processing order for one delivery:
1. Retrieve the session from Stripe; anything not ``paid`` is acknowledged
   without crediting (a later delivery will see it paid)
2. Take account and package from the retrieved session metadata, the credit
   amount from the package catalog
3. Skip if a purchase transaction for this payment id already exists
4. Insert the purchase transaction; the unique index on
   (account_id, external_payment_id) turns a racing duplicate into
   "already processed"
5. Increment the purchased bucket, complete the checkout record, queue the
   confirmation email

Whatever happens the gateway gets an acknowledgement; the internal outcome
is logged for operators. Only the Stripe lookup in step 1 is time-bounded;
once step 4 has inserted the purchase, step 5 runs to completion.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Dict, Any
import asyncio
import logging
import os

from pymongo.errors import DuplicateKeyError

from database import database
from creditledger.models.credits import CheckoutStatus, TransactionType, get_credit_package
from creditledger.services.email_service import email_service
from creditledger.services.ledger_store import ledger_store
from creditledger.services.payment_gateway import (
    PAYMENT_EVENT_TYPES,
    extract_payment_id,
    payment_gateway,
)
from creditledger.services.transaction_log import transaction_log

logger = logging.getLogger(__name__)

WEBHOOK_TIMEOUT_SECONDS = float(os.getenv("WEBHOOK_TIMEOUT_SECONDS", "8"))


class WebhookOutcome(str, Enum):
    CREDITED = "credited"
    ALREADY_PROCESSED = "already_processed"
    NOT_PAID = "not_paid"
    IGNORED = "ignored"
    FAILED = "failed"


@dataclass
class WebhookResult:
    """Internal outcome of one delivery. ``acknowledged`` is what the gateway sees."""
    outcome: WebhookOutcome
    payment_id: Optional[str] = None
    account_id: Optional[str] = None
    credits: int = 0
    error: Optional[str] = None
    acknowledged: bool = True


class WebhookProcessor:
    def _get_db(self):
        return database.get_db()

    async def process_event(self, event: Dict[str, Any], timeout: Optional[float] = None) -> WebhookResult:
        """Process a parsed webhook event. Never raises."""
        event_type = event.get("type")
        payment_id = extract_payment_id(event)

        if event_type not in PAYMENT_EVENT_TYPES:
            logger.info(f"Ignoring webhook event type {event_type}")
            return WebhookResult(outcome=WebhookOutcome.IGNORED, payment_id=payment_id)
        if not payment_id:
            logger.error(f"Webhook event {event.get('id')} ({event_type}) carries no payment id")
            return WebhookResult(outcome=WebhookOutcome.FAILED, error="missing payment id")

        timeout = WEBHOOK_TIMEOUT_SECONDS if timeout is None else timeout
        try:
            result = await self.process_payment(payment_id, timeout=timeout)
        except asyncio.TimeoutError:
            logger.error(f"Payment lookup for {payment_id} timed out after {timeout}s")
            return WebhookResult(outcome=WebhookOutcome.FAILED, payment_id=payment_id, error="timeout")
        except Exception as e:
            logger.error(f"Webhook processing for payment {payment_id} failed: {e}", exc_info=True)
            return WebhookResult(outcome=WebhookOutcome.FAILED, payment_id=payment_id, error=str(e))

        logger.info(f"Webhook payment {payment_id}: {result.outcome.value}")
        return result

    async def process_payment(self, payment_id: str, timeout: Optional[float] = None) -> WebhookResult:
        """Credit one payment if paid and not yet credited. Raises on internal failure.

        ``timeout`` bounds the gateway lookup only; the ledger writes are never cut short.
        """
        payment = await asyncio.wait_for(payment_gateway.get_payment(payment_id), timeout=timeout)
        if not payment.is_paid:
            return WebhookResult(outcome=WebhookOutcome.NOT_PAID, payment_id=payment_id)

        account_id = payment.account_id
        package = get_credit_package(payment.package_id)
        if not account_id:
            raise ValueError(f"Payment {payment_id} has no account_id metadata")
        if package is None:
            raise ValueError(f"Payment {payment_id} references unknown package {payment.package_id!r}")
        if payment.credits is not None and payment.credits != package.credits:
            logger.warning(
                f"Payment {payment_id} metadata says {payment.credits} credits, "
                f"catalog package {package.package_id} has {package.credits}; using catalog"
            )

        if await transaction_log.exists_with_external_payment_id(account_id, payment_id):
            return WebhookResult(
                outcome=WebhookOutcome.ALREADY_PROCESSED, payment_id=payment_id, account_id=account_id
            )

        account = await ledger_store.require_account(account_id)

        try:
            await transaction_log.append(
                account_id=account_id,
                transaction_type=TransactionType.PURCHASE,
                amount=package.credits,
                description=f"Purchased {package.name}",
                external_payment_id=payment_id,
            )
        except DuplicateKeyError:
            logger.info(f"Payment {payment_id} credited by a concurrent delivery")
            return WebhookResult(
                outcome=WebhookOutcome.ALREADY_PROCESSED, payment_id=payment_id, account_id=account_id
            )

        await ledger_store.increment_purchased(account_id, package.credits)
        await self._complete_checkout(payment_id)

        await email_service.send_payment_confirmation_email(
            account_id=account_id,
            email=account.get("email"),
            display_name=account.get("display_name"),
            credits=package.credits,
            package_name=package.name,
        )

        return WebhookResult(
            outcome=WebhookOutcome.CREDITED,
            payment_id=payment_id,
            account_id=account_id,
            credits=package.credits,
        )

    async def _complete_checkout(self, payment_id: str) -> None:
        db = self._get_db()
        await db.checkout_sessions.update_one(
            {"payment_id": payment_id},
            {"$set": {
                "status": CheckoutStatus.COMPLETED.value,
                "completed_at": datetime.now(timezone.utc),
            }}
        )


webhook_processor = WebhookProcessor()
