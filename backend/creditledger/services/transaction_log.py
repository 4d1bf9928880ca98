"""Transaction Log

Append-only history of every credit bucket change, one document per change
in ``credit_transactions``. Purchases carry the Stripe payment id, which is
unique per account (see the partial index in database.py).
"""

from typing import Optional, List, Dict, Any
import logging

from database import database
from creditledger.models.credits import CreditTransaction, TransactionType

logger = logging.getLogger(__name__)


class TransactionLog:
    def _get_db(self):
        return database.get_db()

    async def append(
        self,
        account_id: str,
        transaction_type: TransactionType,
        amount: int,
        description: str,
        external_payment_id: Optional[str] = None,
        related_resource_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> CreditTransaction:
        """Record one bucket change. Raises DuplicateKeyError for a repeated purchase id."""
        if external_payment_id and transaction_type != TransactionType.PURCHASE:
            raise ValueError("external_payment_id is only recorded on purchase transactions")

        transaction = CreditTransaction(
            account_id=account_id,
            type=transaction_type,
            amount=int(amount),
            description=description,
            external_payment_id=external_payment_id,
            related_resource_id=related_resource_id,
        )
        document = transaction.model_dump()
        if metadata:
            document["metadata"] = metadata

        db = self._get_db()
        await db.credit_transactions.insert_one(document)
        logger.info(
            f"Transaction {transaction.transaction_id} ({transaction.type}) {transaction.amount:+d} for account {account_id}"
        )
        return transaction

    async def exists_with_external_payment_id(self, account_id: str, payment_id: str) -> bool:
        db = self._get_db()
        existing = await db.credit_transactions.find_one(
            {
                "account_id": account_id,
                "type": TransactionType.PURCHASE.value,
                "external_payment_id": payment_id,
            },
            {"_id": 0, "transaction_id": 1}
        )
        return existing is not None

    async def get_history(
        self,
        account_id: str,
        limit: int = 50,
        offset: int = 0,
        transaction_type: Optional[TransactionType] = None,
    ) -> List[Dict[str, Any]]:
        """Get credit transaction history for an account, newest first."""
        db = self._get_db()

        query: Dict[str, Any] = {"account_id": account_id}
        if transaction_type:
            query["type"] = transaction_type.value

        cursor = db.credit_transactions.find(
            query,
            {"_id": 0}
        ).sort("created_at", -1).skip(offset).limit(limit)

        return await cursor.to_list(limit)


# Global log instance
transaction_log = TransactionLog()
