"""Credit Ledger API Routes"""

from .account import router as account_router
from .admin import router as admin_router
from .credits import router as credits_router
from .webhooks import router as webhooks_router

__all__ = [
    "account_router",
    "admin_router",
    "credits_router",
    "webhooks_router",
]
