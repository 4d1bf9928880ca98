"""Account Model

One ledger record per end user, keyed by the identity provider's subject.
The credit wallet and the AI execution settings are embedded.
"""

from pydantic import BaseModel, Field, field_validator
from typing import Optional
from datetime import datetime, timezone
from enum import Enum

from creditledger.models.credits import MONTHLY_FREE_CREDITS


class ExecutionMode(str, Enum):
    """How AI operations are paid for"""
    OWN_KEY = "own-key"    # Account's own API key, no ledger debit
    PLATFORM = "platform"  # Shared platform key, paid with credits


class AccountRole(str, Enum):
    USER = "user"
    ADMIN = "admin"


class StoredCredential(BaseModel):
    """Account's own AI provider credential, key encrypted at rest."""
    provider: str
    encrypted_key: str
    model: str


class AccountCredits(BaseModel):
    free: int = MONTHLY_FREE_CREDITS
    purchased: int = 0
    last_free_reset: Optional[datetime] = Field(default_factory=lambda: datetime.now(timezone.utc))


class Account(BaseModel):
    """Ledger account.

    Created on first verified sign-in with a full free bucket.
    """
    account_id: str
    email: str = ""
    display_name: Optional[str] = None
    role: AccountRole = AccountRole.USER

    credits: AccountCredits = Field(default_factory=AccountCredits)

    llm_mode: ExecutionMode = ExecutionMode.PLATFORM
    api_key: Optional[StoredCredential] = None

    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = {"extra": "ignore", "use_enum_values": True}


class AccountResponse(BaseModel):
    """Safe account view (credential never included)"""
    account_id: str
    email: str
    display_name: Optional[str] = None
    free_credits: int
    purchased_credits: int
    total_credits: int
    llm_mode: ExecutionMode
    has_api_key: bool
    api_key_provider: Optional[str] = None
    api_key_model: Optional[str] = None

    @classmethod
    def from_document(cls, doc: dict) -> "AccountResponse":
        credits = doc.get("credits") or {}
        free = credits.get("free", 0) or 0
        purchased = credits.get("purchased", 0) or 0
        api_key = doc.get("api_key") or {}
        return cls(
            account_id=doc["account_id"],
            email=doc.get("email", ""),
            display_name=doc.get("display_name"),
            free_credits=free,
            purchased_credits=purchased,
            total_credits=free + purchased,
            llm_mode=doc.get("llm_mode") or ExecutionMode.OWN_KEY.value,
            has_api_key=bool(api_key),
            api_key_provider=api_key.get("provider"),
            api_key_model=api_key.get("model"),
        )


class LLMModeUpdate(BaseModel):
    mode: str


class ApiKeyUpdate(BaseModel):
    provider: str = Field(min_length=2)
    api_key: str = Field(min_length=1)
    model: str = Field(min_length=1)

    @field_validator("provider", "api_key", "model")
    @classmethod
    def strip_value(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value


class AdminCreditAdjustment(BaseModel):
    """Absolute values are applied first, relative ones on top (clamped at 0)."""
    free: Optional[int] = None
    purchased: Optional[int] = None
    add_free: Optional[int] = None
    add_purchased: Optional[int] = None
    reason: Optional[str] = None
