"""Typed ledger errors.

Each error carries the HTTP status the API boundary should answer with and a
message that is safe to show to the user. Persistence-layer exceptions are
never wrapped in these; they reach the global handler and become a generic
internal error.
"""
from typing import Optional, Dict, Any

SETTINGS_PATH = "/dashboard/settings"


class LedgerError(Exception):
    status_code = 500
    error_code = "LEDGER_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_detail(self) -> Dict[str, Any]:
        return {"error_code": self.error_code, "message": self.message}


class AccountNotFound(LedgerError):
    status_code = 404
    error_code = "ACCOUNT_NOT_FOUND"

    def __init__(self, account_id: str):
        super().__init__("Account not found")
        self.account_id = account_id


class CredentialMissing(LedgerError):
    status_code = 400
    error_code = "CREDENTIAL_MISSING"

    def __init__(self, message: Optional[str] = None):
        super().__init__(
            message or "No API key configured. Add your API key in Settings or switch to platform AI."
        )
        self.settings_path = SETTINGS_PATH

    def to_detail(self) -> Dict[str, Any]:
        detail = super().to_detail()
        detail["settings_path"] = self.settings_path
        return detail


class PlatformUnavailable(LedgerError):
    status_code = 503
    error_code = "PLATFORM_UNAVAILABLE"

    def __init__(self, message: Optional[str] = None):
        super().__init__(
            message or "Platform AI is currently unavailable. Try again later or use your own API key."
        )


class InsufficientCredits(LedgerError):
    status_code = 402
    error_code = "INSUFFICIENT_CREDITS"

    def __init__(self, available: int, cost: int):
        super().__init__(
            f"Insufficient credits. You have {available} credit(s), but this action costs "
            f"{cost} credit(s). Buy more credits or use your own API key."
        )
        self.available = available
        self.cost = cost

    def to_detail(self) -> Dict[str, Any]:
        detail = super().to_detail()
        detail["available"] = self.available
        detail["cost"] = self.cost
        return detail


class ValidationError(LedgerError):
    status_code = 400
    error_code = "VALIDATION_ERROR"


class LedgerConflict(LedgerError):
    """Balance kept changing while a debit was being applied."""
    status_code = 409
    error_code = "LEDGER_CONFLICT"

    def __init__(self):
        super().__init__("Your credit balance changed while we were charging it. Please try again.")
