"""Monthly free-credit reset.

Runs on session start (not on a timer). An account is due when the current
calendar month differs from the month of ``credits.last_free_reset`` and
today is on or after RESET_DAY_OF_MONTH; a missing or malformed reset marker
is always due. A due account gets its free bucket overwritten with
MONTHLY_FREE_CREDITS. Purchased credits are never touched.
"""

from dataclasses import dataclass
from datetime import datetime, timezone, date
from typing import Optional, Any
import logging

from creditledger.models.credits import (
    MONTHLY_FREE_CREDITS,
    RESET_DAY_OF_MONTH,
    TransactionType,
)
from creditledger.services.email_service import email_service
from creditledger.services.ledger_store import ledger_store, _as_int
from creditledger.services.transaction_log import transaction_log

logger = logging.getLogger(__name__)


@dataclass
class ResetResult:
    reset: bool
    reason: str
    previous_free: int = 0
    new_free: int = 0


def _coerce_datetime(value: Any) -> Optional[datetime]:
    """Stored reset marker as an aware datetime, or None if unusable."""
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    return None


def is_reset_due(last_reset: Any, now: datetime) -> bool:
    last = _coerce_datetime(last_reset)
    if last is None:
        return True
    last = last.astimezone(now.tzinfo or timezone.utc)
    is_new_period = (now.month, now.year) != (last.month, last.year)
    return is_new_period and now.day >= RESET_DAY_OF_MONTH


def get_next_reset_date(now: Optional[datetime] = None) -> date:
    now = now or datetime.now(timezone.utc)
    if now.month == 12:
        return date(now.year + 1, 1, RESET_DAY_OF_MONTH)
    return date(now.year, now.month + 1, RESET_DAY_OF_MONTH)


def get_days_until_reset(now: Optional[datetime] = None) -> int:
    now = now or datetime.now(timezone.utc)
    next_reset = datetime.combine(get_next_reset_date(now), datetime.min.time(), tzinfo=now.tzinfo or timezone.utc)
    seconds = (next_reset - now).total_seconds()
    return max(int(-(-seconds // 86400)), 0)


class ResetScheduler:
    async def check_and_reset(self, account_id: str, now: Optional[datetime] = None) -> ResetResult:
        """Top up the free bucket if the account is due.

        Calling twice within one period resets once: after the first reset
        the marker is in the current month. Concurrent calls are settled by
        the conditional write in LedgerStore.reset_free.

        Raises:
            AccountNotFound
        """
        now = now or datetime.now(timezone.utc)
        account = await ledger_store.require_account(account_id)

        credits = account.get("credits") or {}
        raw_free = credits.get("free")
        raw_last_reset = credits.get("last_free_reset")

        if _coerce_datetime(raw_last_reset) is None:
            reason = "initialized" if raw_last_reset is None else "invalid_reset_marker"
        elif is_reset_due(raw_last_reset, now):
            reason = "new_period"
        else:
            return ResetResult(reset=False, reason="current", previous_free=_as_int(raw_free), new_free=_as_int(raw_free))

        previous_free = _as_int(raw_free)
        applied = await ledger_store.reset_free(
            account_id,
            MONTHLY_FREE_CREDITS,
            now,
            observed_free=raw_free,
            observed_last_reset=raw_last_reset,
        )
        if not applied:
            logger.info(f"Free credit reset for account {account_id} skipped, account changed concurrently")
            return ResetResult(reset=False, reason="concurrent_update", previous_free=previous_free, new_free=previous_free)

        delta = MONTHLY_FREE_CREDITS - previous_free
        if delta != 0:
            await transaction_log.append(
                account_id=account_id,
                transaction_type=TransactionType.MONTHLY_FREE,
                amount=delta,
                description=f"Monthly free credits reset ({previous_free} -> {MONTHLY_FREE_CREDITS})",
            )
        logger.info(f"Reset free credits for account {account_id}: {previous_free} -> {MONTHLY_FREE_CREDITS} ({reason})")

        if delta > 0 and reason == "new_period":
            await email_service.send_credits_reset_email(
                account_id=account_id,
                email=account.get("email"),
                display_name=account.get("display_name"),
                credit_amount=MONTHLY_FREE_CREDITS,
            )

        return ResetResult(reset=True, reason=reason, previous_free=previous_free, new_free=MONTHLY_FREE_CREDITS)


reset_scheduler = ResetScheduler()
