"""Request identity dependencies."""

from dataclasses import dataclass
from typing import Optional
from fastapi import Header, HTTPException, Depends

from auth import decode_access_token, get_account_id, is_admin


@dataclass
class CurrentAccount:
    account_id: str
    email: Optional[str] = None
    display_name: Optional[str] = None
    is_admin: bool = False


async def get_current_account(authorization: Optional[str] = Header(None)) -> CurrentAccount:
    """Dependency to get the verified caller from the bearer token."""
    if not authorization:
        raise HTTPException(status_code=401, detail="Authorization header required")

    if not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Invalid authorization format")

    payload = decode_access_token(authorization[7:])
    if not payload:
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    return CurrentAccount(
        account_id=get_account_id(payload),
        email=payload.get("email"),
        display_name=payload.get("name"),
        is_admin=is_admin(payload),
    )


async def require_admin(current: CurrentAccount = Depends(get_current_account)) -> CurrentAccount:
    if not current.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return current
