"""Account and Settings Routes

Endpoints:
- POST /api/account/init - Create the caller's account on first sign-in
- GET /api/account - Account summary
- PATCH /api/settings/llm-mode - Switch between own-key and platform AI
- POST /api/settings/api-key - Save own API key (encrypted)
- DELETE /api/settings/api-key - Remove own API key
"""

from fastapi import APIRouter, Depends
import logging

from creditledger.models.account import AccountResponse, ApiKeyUpdate, LLMModeUpdate
from creditledger.routes.deps import CurrentAccount, get_current_account
from creditledger.services.account_service import account_service
from creditledger.services.ledger_store import ledger_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Account"])


@router.post("/account/init")
async def init_account(current: CurrentAccount = Depends(get_current_account)):
    """Create the account if this is the first verified sign-in.

    Safe to call on every sign-in; existing accounts are returned unchanged.
    """
    account, created = await account_service.init_account(
        current.account_id,
        email=current.email,
        display_name=current.display_name,
    )
    return {
        "created": created,
        "account": AccountResponse.from_document(account).model_dump(),
    }


@router.get("/account", response_model=AccountResponse)
async def get_account(current: CurrentAccount = Depends(get_current_account)):
    account = await ledger_store.require_account(current.account_id)
    return AccountResponse.from_document(account)


@router.patch("/settings/llm-mode")
async def update_llm_mode(
    data: LLMModeUpdate,
    current: CurrentAccount = Depends(get_current_account),
):
    mode = await account_service.set_mode(current.account_id, data.mode)
    return {"success": True, "mode": mode.value}


@router.post("/settings/api-key")
async def save_api_key(
    data: ApiKeyUpdate,
    current: CurrentAccount = Depends(get_current_account),
):
    """Save the caller's own provider key. The key is never returned."""
    credential = await account_service.save_api_key(current.account_id, data)
    return {"success": True, "provider": credential.provider, "model": credential.model}


@router.delete("/settings/api-key")
async def delete_api_key(current: CurrentAccount = Depends(get_current_account)):
    await account_service.remove_api_key(current.account_id)
    return {"success": True}
