"""Ledger Store

Per-account credit buckets held on the account document:
- credits.free / credits.purchased are only changed with field-level
  ``$inc``, or with a ``$set`` conditional on the value last read, never
  with an unconditional read-modify-write
- the store does not check sufficiency for plain increments; callers verify
  first, and ``debit`` offers a conditional decrement that refuses to take a
  bucket below zero
"""

from datetime import datetime, timezone
from typing import Optional, Dict, Any
import logging

from pymongo.errors import DuplicateKeyError

from database import database
from creditledger.errors import AccountNotFound, LedgerConflict
from creditledger.models.account import Account
from creditledger.models.credits import CreditBalance

logger = logging.getLogger(__name__)

MAX_ADJUST_ATTEMPTS = 5


def _as_int(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    return int(value)


def balance_from_document(doc: Dict[str, Any]) -> CreditBalance:
    """Read both buckets, treating missing or malformed values as 0."""
    credits = doc.get("credits") or {}
    return CreditBalance(
        free=_as_int(credits.get("free")),
        purchased=_as_int(credits.get("purchased")),
    )


class LedgerStore:
    """Account documents and their credit buckets."""

    def _get_db(self):
        return database.get_db()

    async def get_account(self, account_id: str) -> Optional[Dict[str, Any]]:
        db = self._get_db()
        return await db.accounts.find_one({"account_id": account_id}, {"_id": 0})

    async def require_account(self, account_id: str) -> Dict[str, Any]:
        account = await self.get_account(account_id)
        if not account:
            raise AccountNotFound(account_id)
        return account

    async def create_account(self, account: Account) -> bool:
        """Insert a new account. Returns False if it already exists."""
        db = self._get_db()
        try:
            await db.accounts.insert_one(account.model_dump())
        except DuplicateKeyError:
            return False
        logger.info(f"Created account {account.account_id} with {account.credits.free} free credits")
        return True

    async def get_balance(self, account_id: str) -> CreditBalance:
        account = await self.require_account(account_id)
        return balance_from_document(account)

    async def increment_free(self, account_id: str, delta: int) -> None:
        await self._increment(account_id, "credits.free", delta)

    async def increment_purchased(self, account_id: str, delta: int) -> None:
        await self._increment(account_id, "credits.purchased", delta)

    async def _increment(self, account_id: str, field: str, delta: int) -> None:
        db = self._get_db()
        result = await db.accounts.update_one(
            {"account_id": account_id},
            {
                "$inc": {field: int(delta)},
                "$set": {"updated_at": datetime.now(timezone.utc)},
            }
        )
        if result.matched_count == 0:
            raise AccountNotFound(account_id)
        logger.info(f"Ledger {field} {delta:+d} for account {account_id}")

    async def debit(self, account_id: str, from_free: int, from_purchased: int) -> bool:
        """Decrement both buckets in one conditional update.

        Matches only while each bucket still holds at least the amount taken
        from it, so a concurrent debit that drained the balance makes this
        return False instead of driving a bucket negative.
        """
        query: Dict[str, Any] = {"account_id": account_id}
        inc: Dict[str, int] = {}
        if from_free > 0:
            query["credits.free"] = {"$gte": from_free}
            inc["credits.free"] = -from_free
        if from_purchased > 0:
            query["credits.purchased"] = {"$gte": from_purchased}
            inc["credits.purchased"] = -from_purchased
        if not inc:
            return True

        db = self._get_db()
        result = await db.accounts.update_one(
            query,
            {
                "$inc": inc,
                "$set": {"updated_at": datetime.now(timezone.utc)},
            }
        )
        if result.modified_count == 0:
            return False
        logger.info(
            f"Ledger debit for account {account_id}: free -{from_free}, purchased -{from_purchased}"
        )
        return True

    async def reset_free(
        self,
        account_id: str,
        amount: int,
        now: datetime,
        observed_free: Any,
        observed_last_reset: Any,
    ) -> bool:
        """Overwrite the free bucket for a new period.

        Conditional on the bucket and reset marker still holding the values
        the caller read, so two concurrent session starts reset once.
        """
        db = self._get_db()
        result = await db.accounts.update_one(
            {
                "account_id": account_id,
                "credits.free": observed_free,
                "credits.last_free_reset": observed_last_reset,
            },
            {
                "$set": {
                    "credits.free": amount,
                    "credits.last_free_reset": now,
                    "updated_at": now,
                }
            }
        )
        return result.modified_count > 0

    async def set_bucket(self, account_id: str, bucket: str, value: int) -> int:
        """Overwrite one bucket (operator adjustments only).

        The write is conditional on the value just read, so a debit landing in
        between is never overwritten silently. Returns the change applied.
        """
        field = f"credits.{bucket}"
        for _ in range(MAX_ADJUST_ATTEMPTS):
            observed = await self._read_bucket(account_id, bucket)
            if await self._set_if_unchanged(account_id, field, observed, int(value)):
                applied = int(value) - _as_int(observed)
                logger.info(f"Ledger {field} set to {value} ({applied:+d}) for account {account_id}")
                return applied
        raise LedgerConflict()

    async def adjust_bucket(self, account_id: str, bucket: str, delta: int) -> int:
        """Add ``delta`` to one bucket, stopping at zero. Returns the change applied.

        A decrement the bucket can cover is a single conditional ``$inc``;
        otherwise the bucket is set to 0 against the value just read.
        """
        field = f"credits.{bucket}"
        if delta >= 0:
            await self._increment(account_id, field, delta)
            return delta

        db = self._get_db()
        for _ in range(MAX_ADJUST_ATTEMPTS):
            result = await db.accounts.update_one(
                {"account_id": account_id, field: {"$gte": -delta}},
                {
                    "$inc": {field: int(delta)},
                    "$set": {"updated_at": datetime.now(timezone.utc)},
                }
            )
            if result.modified_count > 0:
                logger.info(f"Ledger {field} {delta:+d} for account {account_id}")
                return delta

            observed = await self._read_bucket(account_id, bucket)
            if _as_int(observed) >= -delta:
                continue
            if await self._set_if_unchanged(account_id, field, observed, 0):
                applied = -_as_int(observed)
                logger.info(f"Ledger {field} {applied:+d} (clamped at 0) for account {account_id}")
                return applied
        raise LedgerConflict()

    async def _read_bucket(self, account_id: str, bucket: str) -> Any:
        account = await self.require_account(account_id)
        return (account.get("credits") or {}).get(bucket)

    async def _set_if_unchanged(self, account_id: str, field: str, observed: Any, value: int) -> bool:
        db = self._get_db()
        result = await db.accounts.update_one(
            {"account_id": account_id, field: observed},
            {"$set": {field: value, "updated_at": datetime.now(timezone.utc)}}
        )
        return result.modified_count > 0

    async def update_fields(self, account_id: str, fields: Dict[str, Any]) -> None:
        """Update non-credit account fields (mode, credential, profile)."""
        db = self._get_db()
        update = dict(fields)
        update["updated_at"] = datetime.now(timezone.utc)
        result = await db.accounts.update_one({"account_id": account_id}, {"$set": update})
        if result.matched_count == 0:
            raise AccountNotFound(account_id)


# Global store instance
ledger_store = LedgerStore()
