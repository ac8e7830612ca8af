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
            self.client = AsyncIOMotorClient(mongo_url, tz_aware=True)
            self.db = self.client[os.environ['DB_NAME']]
            # Verify connection
            await self.db.command("ping")
            logger.info(f"Connected to MongoDB: {os.environ['DB_NAME']}")

            await self._create_indexes()
            await self._seed_subscription_plans()
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
        """Create MongoDB indexes for account, catalog and collaborator lookups."""
        try:
            await self.db.admin_accounts.create_index("account_id", unique=True)
            try:
                await self.db.admin_accounts.create_index("email", unique=True, sparse=True)
            except Exception as e:
                # Index may already exist with different options
                logger.warning(f"Could not create email index: {e}")

            # A gateway payment id may appear in at most one account's payment history.
            # Duplicates inside one account are excluded by the conditional $ne write.
            try:
                await self.db.admin_accounts.create_index(
                    "subscription.payment_history.gateway_payment_id",
                    unique=True,
                    partialFilterExpression={
                        "subscription.payment_history.gateway_payment_id": {"$exists": True}
                    },
                    name="uniq_gateway_payment_id",
                )
            except Exception as e:
                logger.warning(f"Could not create gateway payment id index: {e}")

            # Expiry sweep scans live subscriptions by end date
            await self.db.admin_accounts.create_index([("subscription.status", 1), ("subscription.end_date", 1)])

            await self.db.subscription_plans.create_index("plan_id", unique=True)
            await self.db.subscription_plans.create_index("plan_name")

            await self.db.pgs.create_index("pg_id", unique=True)
            await self.db.pgs.create_index("account_id")
            await self.db.branches.create_index("branch_id", unique=True)
            await self.db.branches.create_index([("pg_id", 1), ("is_default", 1)])

            await self.db.notification_events.create_index([("account_id", 1), ("created_at", -1)])

            await self.db.audit_logs.create_index([("account_id", 1), ("timestamp", -1)])
            await self.db.audit_logs.create_index([("action", 1), ("timestamp", -1)])

            logger.info("Database indexes created successfully")
        except Exception as e:
            logger.warning(f"Index creation warning (may already exist): {e}")

    async def _seed_subscription_plans(self):
        """Insert the default catalog entries that are missing. Existing plans are left untouched."""
        from datetime import datetime, timezone
        from services.plan_catalog import DEFAULT_PLANS
        now = datetime.now(timezone.utc)
        for plan in DEFAULT_PLANS:
            doc = dict(plan, created_at=now)
            await self.db.subscription_plans.update_one(
                {"plan_id": plan["plan_id"]},
                {"$setOnInsert": doc},
                upsert=True,
            )
        logger.info("Subscription plans seeded")

# Global database instance
database = Database()

