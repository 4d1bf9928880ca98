"""Credit Ledger Services"""

from .ledger_store import LedgerStore, ledger_store
from .transaction_log import TransactionLog, transaction_log
from .provider_resolver import ProviderResolver, provider_resolver
from .reset_scheduler import ResetScheduler, reset_scheduler
from .webhook_processor import WebhookProcessor, webhook_processor
from .account_service import AccountService, account_service
from .email_service import EmailService, email_service

__all__ = [
    "LedgerStore",
    "ledger_store",
    "TransactionLog",
    "transaction_log",
    "ProviderResolver",
    "provider_resolver",
    "ResetScheduler",
    "reset_scheduler",
    "WebhookProcessor",
    "webhook_processor",
    "AccountService",
    "account_service",
    "EmailService",
    "email_service",
]
