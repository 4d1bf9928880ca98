"""Credit Ledger Data Models"""

from .account import (
    Account,
    AccountCredits,
    AccountResponse,
    AccountRole,
    ExecutionMode,
    StoredCredential,
)
from .credits import (
    CreditTransaction,
    TransactionType,
    CreditBalance,
    CreditPackage,
    CheckoutSession,
    CheckoutStatus,
    PlatformOperation,
    CREDIT_PACKAGES,
    PLATFORM_CREDIT_COSTS,
)
from .notifications import (
    OutboxMail,
    MailStatus,
    MailTemplate,
)

__all__ = [
    # Account
    "Account",
    "AccountCredits",
    "AccountResponse",
    "AccountRole",
    "ExecutionMode",
    "StoredCredential",
    # Credits
    "CreditTransaction",
    "TransactionType",
    "CreditBalance",
    "CreditPackage",
    "CheckoutSession",
    "CheckoutStatus",
    "PlatformOperation",
    "CREDIT_PACKAGES",
    "PLATFORM_CREDIT_COSTS",
    # Notifications
    "OutboxMail",
    "MailStatus",
    "MailTemplate",
]
