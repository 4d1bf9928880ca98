from motor.motor_asyncio import AsyncIOMotorClient
from dotenv import load_dotenv
import os
import logging
from pathlib import Path

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

logger = logging.getLogger(__name__)

class Database:
    client: AsyncIOMotorClient = None
    db = None

    async def connect(self):
        try:
            mongo_url = os.environ['MONGO_URL']
            self.client = AsyncIOMotorClient(mongo_url)
            self.db = self.client[os.environ['DB_NAME']]
            # Verify connection
            await self.db.command("ping")
            logger.info(f"Connected to MongoDB: {os.environ['DB_NAME']}")

            await self._create_indexes()
        except Exception as e:
            logger.error(f"Failed to connect to MongoDB: {e}")
            raise

    async def close(self):
        if self.client:
            self.client.close()
            logger.info("MongoDB connection closed")

    def get_db(self):
        return self.db

    async def _create_indexes(self):
        """Create MongoDB indexes for the ledger collections."""
        try:
            # Accounts - one document per identity-provider subject
            await self.db.accounts.create_index("account_id", unique=True)
            await self.db.accounts.create_index("email")

            # Transaction log - newest-first history per account
            await self.db.credit_transactions.create_index("transaction_id", unique=True)
            await self.db.credit_transactions.create_index([("account_id", 1), ("created_at", -1)])
            await self.db.credit_transactions.create_index("type")
            # A payment can be credited at most once per account
            try:
                await self.db.credit_transactions.create_index(
                    [("account_id", 1), ("external_payment_id", 1)],
                    unique=True,
                    partialFilterExpression={"type": "purchase"},
                    name="uniq_purchase_payment",
                )
            except Exception as e:
                logger.warning(f"Could not create uniq_purchase_payment index, duplicate payments are not blocked: {e}")

            # Checkout sessions - status lookup for the redirect page
            await self.db.checkout_sessions.create_index("payment_id", unique=True)
            await self.db.checkout_sessions.create_index([("account_id", 1), ("created_at", -1)])

            # Mail outbox - dispatcher picks queued mail oldest first
            await self.db.mail_outbox.create_index([("status", 1), ("created_at", 1)])
            await self.db.mail_outbox.create_index("mail_id", unique=True)
            logger.info("MongoDB indexes created/verified")
        except Exception as e:
            # Indexes may already exist, log but don't fail
            logger.warning(f"Index creation note: {e}")

# Global database instance
database = Database()
