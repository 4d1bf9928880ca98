"""Account Service

Account lifecycle and settings:
- Account creation on first verified sign-in (with the initial free grant)
- Execution mode and own API key
- Operator credit adjustments
"""

from typing import Optional, Dict, Any, Tuple, List
import logging

from creditledger.errors import ValidationError
from creditledger.models.account import (
    Account,
    AccountCredits,
    AdminCreditAdjustment,
    ApiKeyUpdate,
    ExecutionMode,
    StoredCredential,
)
from creditledger.models.credits import MONTHLY_FREE_CREDITS, TransactionType
from creditledger.services.credential_vault import encrypt_credential
from creditledger.services.email_service import email_service
from creditledger.services.ledger_store import ledger_store, balance_from_document
from creditledger.services.transaction_log import transaction_log

logger = logging.getLogger(__name__)


class AccountService:
    async def init_account(
        self,
        account_id: str,
        email: Optional[str] = None,
        display_name: Optional[str] = None,
    ) -> Tuple[Dict[str, Any], bool]:
        """Get or create the account for a verified identity.

        Returns:
            (account document, created)
        """
        existing = await ledger_store.get_account(account_id)
        if existing:
            return existing, False

        account = Account(
            account_id=account_id,
            email=email or "",
            display_name=display_name,
            credits=AccountCredits(free=MONTHLY_FREE_CREDITS, purchased=0),
        )
        created = await ledger_store.create_account(account)
        if not created:
            # Lost a race with a concurrent sign-in
            return await ledger_store.require_account(account_id), False

        if MONTHLY_FREE_CREDITS:
            await transaction_log.append(
                account_id=account_id,
                transaction_type=TransactionType.MONTHLY_FREE,
                amount=MONTHLY_FREE_CREDITS,
                description="Welcome credits",
            )
        await email_service.send_welcome_email(
            account_id=account_id,
            email=email,
            display_name=display_name,
            free_credits=MONTHLY_FREE_CREDITS,
        )
        return await ledger_store.require_account(account_id), True

    async def set_mode(self, account_id: str, mode: str) -> ExecutionMode:
        try:
            execution_mode = ExecutionMode(mode)
        except ValueError:
            raise ValidationError(
                f"Invalid mode. Use '{ExecutionMode.OWN_KEY.value}' or '{ExecutionMode.PLATFORM.value}'."
            )
        await ledger_store.update_fields(account_id, {"llm_mode": execution_mode.value})
        logger.info(f"Account {account_id} switched to {execution_mode.value} mode")
        return execution_mode

    async def save_api_key(self, account_id: str, update: ApiKeyUpdate) -> StoredCredential:
        credential = StoredCredential(
            provider=update.provider,
            encrypted_key=encrypt_credential(update.api_key),
            model=update.model,
        )
        await ledger_store.update_fields(account_id, {"api_key": credential.model_dump()})
        logger.info(f"Saved {update.provider} API key for account {account_id}")
        return credential

    async def remove_api_key(self, account_id: str) -> None:
        await ledger_store.update_fields(account_id, {"api_key": None})
        logger.info(f"Removed API key for account {account_id}")

    async def admin_adjust_credits(
        self,
        account_id: str,
        adjustment: AdminCreditAdjustment,
        admin_id: Optional[str] = None,
    ) -> Dict[str, int]:
        """Apply an operator adjustment and log one transaction per changed bucket.

        Absolute values are written against the value just read and relative
        ones with ``$inc``, so debits that land meanwhile are kept and the
        logged amounts match the change each bucket actually saw.
        """
        for name in ("free", "purchased"):
            value = getattr(adjustment, name)
            if value is not None and value < 0:
                raise ValidationError(f"{name} must not be negative")

        account = await ledger_store.require_account(account_id)
        before = balance_from_document(account)

        changes: List[Tuple[str, int]] = []
        for bucket in ("free", "purchased"):
            applied = 0
            absolute = getattr(adjustment, bucket)
            if absolute is not None:
                applied += await ledger_store.set_bucket(account_id, bucket, absolute)
            relative = getattr(adjustment, f"add_{bucket}")
            if relative:
                applied += await ledger_store.adjust_bucket(account_id, bucket, relative)
            changes.append((bucket, applied))

        reason = (adjustment.reason or "").strip()
        for bucket, delta in changes:
            if delta == 0:
                continue
            description = f"Admin adjustment ({bucket})"
            if reason:
                description = f"{description}: {reason}"
            await transaction_log.append(
                account_id=account_id,
                transaction_type=TransactionType.ADMIN_ADJUSTMENT,
                amount=delta,
                description=description,
                metadata={"bucket": bucket, "admin_id": admin_id},
            )

        after = await ledger_store.get_balance(account_id)
        logger.info(
            f"Admin {admin_id} adjusted credits for account {account_id}: "
            f"free {before.free} -> {after.free}, purchased {before.purchased} -> {after.purchased}"
        )
        return {"free": after.free, "purchased": after.purchased}


account_service = AccountService()
