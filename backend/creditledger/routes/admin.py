"""Admin Credit Routes

Operator-only endpoints:
- GET /api/admin/accounts/{account_id} - Account with recent transactions
- PATCH /api/admin/accounts/{account_id}/credits - Adjust credit buckets
"""

from fastapi import APIRouter, Depends
import logging

from creditledger.models.account import AccountResponse, AdminCreditAdjustment
from creditledger.routes.deps import CurrentAccount, require_admin
from creditledger.services.account_service import account_service
from creditledger.services.ledger_store import ledger_store
from creditledger.services.transaction_log import transaction_log

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin/accounts", tags=["Admin"])

RECENT_TRANSACTIONS = 20


@router.get("/{account_id}")
async def get_account(account_id: str, admin: CurrentAccount = Depends(require_admin)):
    account = await ledger_store.require_account(account_id)
    transactions = await transaction_log.get_history(account_id, limit=RECENT_TRANSACTIONS)
    return {
        "account": AccountResponse.from_document(account).model_dump(),
        "role": account.get("role"),
        "last_free_reset": (account.get("credits") or {}).get("last_free_reset"),
        "transactions": transactions,
    }


@router.patch("/{account_id}/credits")
async def adjust_credits(
    account_id: str,
    data: AdminCreditAdjustment,
    admin: CurrentAccount = Depends(require_admin),
):
    """Set or shift an account's credit buckets.

    Bypasses the debit and purchase paths; each changed bucket is logged as
    an admin_adjustment with the raw delta.
    """
    balances = await account_service.admin_adjust_credits(account_id, data, admin_id=admin.account_id)
    return {
        "success": True,
        "free": balances["free"],
        "purchased": balances["purchased"],
        "total": balances["free"] + balances["purchased"],
    }
