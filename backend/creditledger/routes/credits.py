"""Credit Routes

Endpoints:
- GET /api/credits/balance - Free, purchased and total credits
- GET /api/credits/history - Transaction history
- GET /api/credits/packages - Credit packages for sale
- GET /api/credits/costs - Platform AI cost per operation
- POST /api/credits/check-reset - Monthly free credit reset on session start
- GET /api/credits/reset-info - Next reset date
- POST /api/credits/checkout - Create checkout for a credit package
- GET /api/credits/checkout/{payment_id}/status - Checkout status
"""

from fastapi import APIRouter, HTTPException, Depends, Query
from typing import Optional, List
from pydantic import BaseModel
import logging

from database import database
from creditledger.errors import ValidationError
from creditledger.models.credits import (
    BalanceResponse,
    CheckoutSession,
    CreditPackage,
    CREDIT_PACKAGES,
    DEFAULT_OPERATION_COST,
    PLATFORM_CREDIT_COSTS,
    TransactionType,
    get_credit_package,
)
from creditledger.routes.deps import CurrentAccount, get_current_account
from creditledger.services.account_service import account_service
from creditledger.services.ledger_store import ledger_store
from creditledger.services.payment_gateway import PaymentGatewayError, payment_gateway
from creditledger.services.reset_scheduler import (
    get_days_until_reset,
    get_next_reset_date,
    reset_scheduler,
)
from creditledger.services.transaction_log import transaction_log

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/credits", tags=["Credits"])


class CheckoutRequest(BaseModel):
    package_id: str


class CheckoutResponse(BaseModel):
    checkout_url: str
    payment_id: str


@router.get("/balance", response_model=BalanceResponse)
async def get_balance(current: CurrentAccount = Depends(get_current_account)):
    balance = await ledger_store.get_balance(current.account_id)
    return BalanceResponse(free=balance.free, purchased=balance.purchased, total=balance.total)


@router.get("/history")
async def get_history(
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    type: Optional[str] = Query(None, description="Filter by transaction type"),
    current: CurrentAccount = Depends(get_current_account),
):
    """Get credit transaction history, newest first."""
    transaction_type = None
    if type:
        try:
            transaction_type = TransactionType(type)
        except ValueError:
            raise ValidationError(f"Invalid transaction type: {type}")

    transactions = await transaction_log.get_history(
        current.account_id,
        limit=limit,
        offset=offset,
        transaction_type=transaction_type,
    )
    return {"transactions": transactions, "limit": limit, "offset": offset}


@router.get("/packages", response_model=List[CreditPackage])
async def get_packages():
    """Get available credit packages.

    No auth required - for display on pricing page.
    """
    return CREDIT_PACKAGES


@router.get("/costs")
async def get_costs():
    return {"costs": PLATFORM_CREDIT_COSTS, "default_cost": DEFAULT_OPERATION_COST}


@router.post("/check-reset")
async def check_reset(current: CurrentAccount = Depends(get_current_account)):
    """Run the monthly reset for the caller.

    A failed reset never fails the request; it is retried on the next
    session start.
    """
    try:
        account = await ledger_store.get_account(current.account_id)
        if not account:
            _, created = await account_service.init_account(
                current.account_id,
                email=current.email,
                display_name=current.display_name,
            )
            return {"reset": False, "created": created}

        result = await reset_scheduler.check_and_reset(current.account_id)
        return {"reset": result.reset, "free": result.new_free}
    except Exception as e:
        logger.error(f"Credit reset check failed for account {current.account_id}: {e}")
        return {"reset": False}


@router.get("/reset-info")
async def get_reset_info(current: CurrentAccount = Depends(get_current_account)):
    return {
        "days_until_reset": get_days_until_reset(),
        "next_reset_date": get_next_reset_date().isoformat(),
    }


@router.post("/checkout", response_model=CheckoutResponse)
async def create_checkout(
    request: CheckoutRequest,
    current: CurrentAccount = Depends(get_current_account),
):
    """Create Stripe checkout session for credit purchase.

    Returns checkout URL to redirect user.
    """
    package = get_credit_package(request.package_id)
    if not package:
        raise ValidationError(f"Invalid package: {request.package_id}")

    account = await ledger_store.require_account(current.account_id)

    try:
        checkout = await payment_gateway.create_checkout(
            package,
            current.account_id,
            email=account.get("email") or current.email,
        )
    except PaymentGatewayError as e:
        logger.error(f"Failed to create checkout for account {current.account_id}: {e}")
        raise HTTPException(status_code=502, detail="Failed to create checkout")

    session = CheckoutSession(
        payment_id=checkout["payment_id"],
        account_id=current.account_id,
        package_id=package.package_id,
        credits=package.credits,
        price_cents=package.price_cents,
    )
    db = database.get_db()
    await db.checkout_sessions.insert_one(session.model_dump())

    return CheckoutResponse(**checkout)


@router.get("/checkout/{payment_id}/status")
async def get_checkout_status(
    payment_id: str,
    current: CurrentAccount = Depends(get_current_account),
):
    """Check status of a credit purchase."""
    db = database.get_db()
    session = await db.checkout_sessions.find_one({
        "payment_id": payment_id,
        "account_id": current.account_id,
    }, {"_id": 0})

    if not session:
        raise HTTPException(status_code=404, detail="Checkout not found")

    return {
        "payment_id": session["payment_id"],
        "status": session["status"],
        "credits": session["credits"],
        "package_id": session["package_id"],
        "completed_at": session.get("completed_at"),
    }
