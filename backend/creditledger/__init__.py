"""
Credit Ledger - Platform Credits and AI Provider Resolution
===========================================================

Billing core for the document generation product.

Scope:
- Two-bucket credit wallet per account (free monthly allowance, purchased)
- Append-only transaction log for audit and payment idempotency
- Monthly free-credit reset on session start
- Stripe credit purchases credited exactly once per payment
- Own-key vs platform AI execution, with debit/refund around platform calls
- Low-balance and purchase notifications via the mail outbox

Page rendering, document layout and the AI vendor SDKs live elsewhere.
"""

__version__ = "1.0.0"
__product__ = "CreditLedger"
