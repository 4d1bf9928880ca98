"""Credit Ledger Models

Two credit buckets per account:
- free: monthly allowance, topped up on the reset day, spent first
- purchased: bought through Stripe checkout, never expires

Every bucket change is recorded as an immutable CreditTransaction.
"""

from pydantic import BaseModel, Field
from typing import Optional, Dict, List
from datetime import datetime, timezone
from enum import Enum
import os
import uuid


class TransactionType(str, Enum):
    """Types of credit transactions"""
    # Additions
    PURCHASE = "purchase"                      # Stripe credit package, credited once per payment
    MONTHLY_FREE = "monthly_free"              # Monthly free bucket top-up (and initial grant)
    PLATFORM_AI_REFUND = "platform_ai_refund"  # Platform AI call failed after debit

    # Deductions
    PLATFORM_AI = "platform_ai"                # Platform AI call paid with credits

    # Either direction
    ADMIN_ADJUSTMENT = "admin_adjustment"      # Operator set balances out of band


class CreditTransaction(BaseModel):
    """Individual credit transaction record.

    Append-only. ``amount`` is the signed delta applied to the buckets.
    """
    transaction_id: str = Field(default_factory=lambda: f"CTX-{uuid.uuid4().hex[:12].upper()}")
    account_id: str

    type: TransactionType
    amount: int  # Positive for credits, negative for debits
    description: str

    # Idempotency key for purchases (Stripe checkout session id)
    external_payment_id: Optional[str] = None
    # e.g. the generated document the debit paid for
    related_resource_id: Optional[str] = None

    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = {"extra": "ignore", "use_enum_values": True}


class CreditBalance(BaseModel):
    free: int = 0
    purchased: int = 0

    @property
    def total(self) -> int:
        return self.free + self.purchased


class BalanceResponse(BaseModel):
    free: int
    purchased: int
    total: int


# ============================================================================
# Credit Pricing Configuration
# ============================================================================

class CreditPackage(BaseModel):
    """Credit package available for purchase"""
    package_id: str
    name: str
    credits: int
    price_cents: int  # Price in cents
    currency: str = "eur"
    price_display: str  # e.g., "€4.99"
    description: str


CREDIT_PACKAGES: List[CreditPackage] = [
    CreditPackage(
        package_id="pack_5",
        name="5 Credits",
        credits=5,
        price_cents=499,  # €4.99
        price_display="€4.99",
        description="5 AI generations",
    ),
    CreditPackage(
        package_id="pack_15",
        name="15 Credits",
        credits=15,
        price_cents=1299,  # €12.99
        price_display="€12.99",
        description="15 AI generations - Save 13%",
    ),
    CreditPackage(
        package_id="pack_30",
        name="30 Credits",
        credits=30,
        price_cents=2299,  # €22.99
        price_display="€22.99",
        description="30 AI generations - Save 23%",
    ),
]


def get_credit_package(package_id: Optional[str]) -> Optional[CreditPackage]:
    return next((p for p in CREDIT_PACKAGES if p.package_id == package_id), None)


class PlatformOperation(str, Enum):
    """AI operations that can run on the platform key."""
    CV_GENERATE = "cv-generate"
    PROFILE_PARSE = "profile-parse"
    JOB_PARSE = "job-parse"
    FIT_ANALYSIS = "fit-analysis"
    STYLE_GENERATE = "style-generate"
    CV_CHAT = "cv-chat"
    MOTIVATION_LETTER = "motivation-letter"
    TEMPLATE_ANALYZE = "template-analyze"


# Credits per platform AI operation. Own-key accounts pay nothing.
PLATFORM_CREDIT_COSTS: Dict[str, int] = {
    PlatformOperation.CV_GENERATE.value: 1,
    PlatformOperation.PROFILE_PARSE.value: 1,
    PlatformOperation.JOB_PARSE.value: 1,
    PlatformOperation.FIT_ANALYSIS.value: 1,
    PlatformOperation.STYLE_GENERATE.value: 1,
    PlatformOperation.CV_CHAT.value: 1,
    PlatformOperation.MOTIVATION_LETTER.value: 1,
    PlatformOperation.TEMPLATE_ANALYZE.value: 1,
}

DEFAULT_OPERATION_COST = 1


def get_operation_cost(operation) -> int:
    """Fixed credit cost for an operation; unlisted operations cost 1."""
    key = operation.value if isinstance(operation, Enum) else str(operation)
    return PLATFORM_CREDIT_COSTS.get(key, DEFAULT_OPERATION_COST)


# Free bucket size after each monthly reset (also the sign-up grant)
MONTHLY_FREE_CREDITS = int(os.getenv("MONTHLY_FREE_CREDITS", "5"))
# Day of month from which a new period's reset may happen
RESET_DAY_OF_MONTH = int(os.getenv("RESET_DAY_OF_MONTH", "1"))
# Notify when a debit leaves this many credits or fewer
LOW_BALANCE_THRESHOLD = int(os.getenv("LOW_BALANCE_THRESHOLD", "2"))


class CheckoutStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"


class CheckoutSession(BaseModel):
    """Pending credit purchase, linked to a Stripe checkout session."""
    payment_id: str  # Stripe checkout session id
    account_id: str
    package_id: str
    credits: int
    price_cents: int
    status: CheckoutStatus = CheckoutStatus.PENDING

    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None

    model_config = {"extra": "ignore", "use_enum_values": True}
