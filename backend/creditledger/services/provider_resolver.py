"""Provider Resolver

Decides which credential authorizes an AI operation for an account:

- own-key: the account's own API key (decrypted), no ledger interaction
- platform: the shared platform key, paid for with credits that are debited
  before the handle is returned

Debit policy:
1. Free credits are spent before purchased credits
2. The debit is refused with InsufficientCredits when free + purchased < cost
3. Both buckets are decremented in one conditional update; if another
   request changed the balance in between, the debit is re-planned
4. One platform_ai transaction per debit
5. A low-balance email is queued when the debit leaves
   LOW_BALANCE_THRESHOLD credits or fewer

Refunds always go to the free bucket, whichever bucket was charged.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional, Dict, Any, Tuple, Union, Set
import asyncio
import logging
import os

from creditledger.errors import (
    CredentialMissing,
    InsufficientCredits,
    LedgerConflict,
    PlatformUnavailable,
    ValidationError,
)
from creditledger.models.account import ExecutionMode
from creditledger.models.credits import (
    LOW_BALANCE_THRESHOLD,
    PlatformOperation,
    TransactionType,
    get_operation_cost,
)
from creditledger.services.credential_vault import CredentialDecryptionError, decrypt_credential
from creditledger.services.email_service import email_service
from creditledger.services.ledger_store import ledger_store, balance_from_document
from creditledger.services.transaction_log import transaction_log

logger = logging.getLogger(__name__)

MAX_DEBIT_ATTEMPTS = 5

# Low-balance mails in flight; held until done so they are not collected early
_background_tasks: Set[asyncio.Task] = set()

Operation = Union[PlatformOperation, str]


def get_platform_config() -> Dict[str, Optional[str]]:
    return {
        "api_key": (os.getenv("PLATFORM_AI_API_KEY") or "").strip() or None,
        "provider": os.getenv("PLATFORM_AI_PROVIDER", "anthropic"),
        "model": os.getenv("PLATFORM_AI_MODEL", "claude-3-5-sonnet-latest"),
    }


def _operation_name(operation: Optional[Operation]) -> Optional[str]:
    if operation is None:
        return None
    return operation.value if isinstance(operation, PlatformOperation) else str(operation)


@dataclass
class ExecutionHandle:
    """Credential and model an AI call should run with."""
    provider: str
    model: str
    mode: ExecutionMode
    account_id: str
    api_key: str = field(repr=False)
    operation: Optional[str] = None
    charged: int = 0


@dataclass
class DebitResult:
    cost: int
    from_free: int
    from_purchased: int
    remaining: int
    transaction_id: Optional[str] = None


class ExecutionStrategy(ABC):
    mode: ExecutionMode

    @abstractmethod
    async def resolve(
        self,
        account: Dict[str, Any],
        operation: Optional[Operation],
        skip_credit_deduction: bool,
        related_resource_id: Optional[str],
    ) -> ExecutionHandle:
        ...


class OwnKeyStrategy(ExecutionStrategy):
    mode = ExecutionMode.OWN_KEY

    async def resolve(self, account, operation, skip_credit_deduction, related_resource_id):
        stored = account.get("api_key") or {}
        if not stored.get("encrypted_key"):
            raise CredentialMissing()

        try:
            api_key = decrypt_credential(stored["encrypted_key"])
        except CredentialDecryptionError:
            logger.warning(f"Stored API key for account {account['account_id']} could not be decrypted")
            raise CredentialMissing(
                "Your saved API key could not be read. Please enter it again in Settings."
            )

        return ExecutionHandle(
            provider=stored.get("provider", ""),
            model=stored.get("model", ""),
            mode=self.mode,
            account_id=account["account_id"],
            api_key=api_key,
            operation=_operation_name(operation),
        )


class PlatformStrategy(ExecutionStrategy):
    mode = ExecutionMode.PLATFORM

    def __init__(self, resolver: "ProviderResolver"):
        self.resolver = resolver

    async def resolve(self, account, operation, skip_credit_deduction, related_resource_id):
        config = get_platform_config()
        if not config["api_key"]:
            logger.error("PLATFORM_AI_API_KEY not configured - platform mode unavailable")
            raise PlatformUnavailable()

        charged = 0
        if operation is not None and not skip_credit_deduction:
            cost = get_operation_cost(operation)
            result = await self.resolver.debit(
                account["account_id"],
                cost,
                _operation_name(operation),
                account=account,
                related_resource_id=related_resource_id,
            )
            charged = result.cost

        return ExecutionHandle(
            provider=config["provider"],
            model=config["model"],
            mode=self.mode,
            account_id=account["account_id"],
            api_key=config["api_key"],
            operation=_operation_name(operation),
            charged=charged,
        )


class ProviderResolver:
    def __init__(self):
        self.strategies: Dict[ExecutionMode, ExecutionStrategy] = {
            ExecutionMode.OWN_KEY: OwnKeyStrategy(),
            ExecutionMode.PLATFORM: PlatformStrategy(self),
        }

    @staticmethod
    def execution_mode(account: Dict[str, Any]) -> ExecutionMode:
        raw = account.get("llm_mode")
        if not raw:
            # Accounts created before platform mode existed
            return ExecutionMode.OWN_KEY
        try:
            return ExecutionMode(raw)
        except ValueError:
            logger.warning(f"Unknown llm_mode {raw!r} on account {account.get('account_id')}, using own-key")
            return ExecutionMode.OWN_KEY

    async def resolve(
        self,
        account_id: str,
        operation: Optional[Operation] = None,
        skip_credit_deduction: bool = False,
        related_resource_id: Optional[str] = None,
    ) -> ExecutionHandle:
        """Resolve the execution handle for an account.

        In platform mode with an operation, credits are debited before the
        handle is returned; callers refund if the AI call then fails.

        Raises:
            AccountNotFound, CredentialMissing, PlatformUnavailable, InsufficientCredits
        """
        account = await ledger_store.require_account(account_id)
        strategy = self.strategies[self.execution_mode(account)]
        return await strategy.resolve(account, operation, skip_credit_deduction, related_resource_id)

    async def charge(
        self,
        account_id: str,
        cost: int,
        operation_label: str,
        related_resource_id: Optional[str] = None,
    ) -> DebitResult:
        """Debit a caller-computed cost (e.g. proportional to output size)."""
        if isinstance(cost, bool) or not isinstance(cost, int) or cost < 0:
            raise ValidationError("Credit cost must be a non-negative integer")
        account = await ledger_store.require_account(account_id)
        return await self.debit(
            account_id,
            cost,
            operation_label,
            account=account,
            related_resource_id=related_resource_id,
        )

    async def refund(
        self,
        account_id: str,
        operation: Operation,
        cost: Optional[int] = None,
        related_resource_id: Optional[str] = None,
    ) -> int:
        """Give an operation's credits back after its AI call failed.

        The refund always lands in the free bucket.
        """
        amount = get_operation_cost(operation) if cost is None else int(cost)
        if amount <= 0:
            return 0
        name = _operation_name(operation)

        await ledger_store.increment_free(account_id, amount)
        await transaction_log.append(
            account_id=account_id,
            transaction_type=TransactionType.PLATFORM_AI_REFUND,
            amount=amount,
            description=f"Platform AI refund: {name}",
            related_resource_id=related_resource_id,
        )
        logger.info(f"Refunded {amount} credit(s) to account {account_id} for {name}")
        return amount

    async def debit(
        self,
        account_id: str,
        cost: int,
        operation_label: str,
        account: Optional[Dict[str, Any]] = None,
        related_resource_id: Optional[str] = None,
    ) -> DebitResult:
        if cost <= 0:
            balance = balance_from_document(account) if account else await ledger_store.get_balance(account_id)
            return DebitResult(cost=0, from_free=0, from_purchased=0, remaining=balance.total)

        snapshot = account
        for attempt in range(MAX_DEBIT_ATTEMPTS):
            if snapshot is None:
                snapshot = await ledger_store.require_account(account_id)
            balance = balance_from_document(snapshot)
            free = max(balance.free, 0)
            purchased = max(balance.purchased, 0)
            total = free + purchased

            if total < cost:
                logger.warning(f"Insufficient credits for account {account_id}. Has {total}, needs {cost}")
                raise InsufficientCredits(available=total, cost=cost)

            from_free, from_purchased = self._plan_debit(free, cost)
            if await ledger_store.debit(account_id, from_free, from_purchased):
                break

            logger.info(f"Balance changed during debit for account {account_id}, retrying (attempt {attempt + 1})")
            snapshot = None
        else:
            raise LedgerConflict()

        transaction = await transaction_log.append(
            account_id=account_id,
            transaction_type=TransactionType.PLATFORM_AI,
            amount=-cost,
            description=f"Platform AI: {operation_label} ({self._describe_sources(from_free, from_purchased)})",
            related_resource_id=related_resource_id,
            metadata={"charged_free": from_free, "charged_purchased": from_purchased},
        )

        remaining = total - cost
        if 0 <= remaining <= LOW_BALANCE_THRESHOLD:
            task = asyncio.create_task(
                email_service.send_credits_low_email(
                    account_id=account_id,
                    email=snapshot.get("email"),
                    display_name=snapshot.get("display_name"),
                    remaining=remaining,
                )
            )
            _background_tasks.add(task)
            task.add_done_callback(_background_tasks.discard)

        return DebitResult(
            cost=cost,
            from_free=from_free,
            from_purchased=from_purchased,
            remaining=remaining,
            transaction_id=transaction.transaction_id,
        )

    @staticmethod
    def _plan_debit(free: int, cost: int) -> Tuple[int, int]:
        from_free = min(free, cost)
        return from_free, cost - from_free

    @staticmethod
    def _describe_sources(from_free: int, from_purchased: int) -> str:
        if from_purchased == 0:
            return "free credit"
        if from_free == 0:
            return "purchased credit"
        return f"free credit, {from_free} free + {from_purchased} purchased"


provider_resolver = ProviderResolver()
