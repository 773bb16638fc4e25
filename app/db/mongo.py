"""
app/db/mongo.py

Purpose: MongoDB connection setup

- Initializes Motor client with connection pooling
- Collections: users (embedded referral program), orders, products,
  addresses, shipping, referral_payout_settings
- Transaction sessions for the payment and referral flows
- Health checks and retry logic
- Proper connection lifecycle management
"""

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo.errors import ConnectionFailure, ServerSelectionTimeoutError
from contextlib import asynccontextmanager
from typing import Optional
import asyncio
from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger(__name__)

# Global MongoDB client
_client: Optional[AsyncIOMotorClient] = None
_database: Optional[AsyncIOMotorDatabase] = None

USERS = "users"
ORDERS = "orders"
PRODUCTS = "products"
ADDRESSES = "addresses"
SHIPPING = "shipping"
REFERRAL_PAYOUT_SETTINGS = "referral_payout_settings"


async def connect_to_mongo():
    """
    Establishes connection to MongoDB with retry logic.
    Called during application startup.
    """
    global _client, _database

    if _client is not None:
        logger.warning("MongoDB client already initialized")
        return

    max_retries = 3
    retry_delay = 2

    for attempt in range(1, max_retries + 1):
        try:
            logger.info(
                f"Attempting to connect to MongoDB (attempt {attempt}/{max_retries})"
            )

            # Fix URL encoding for special characters
            mongodb_url = settings.MONGODB_URL.replace("%%", "%25")

            _client = AsyncIOMotorClient(
                mongodb_url,
                maxPoolSize=50,
                minPoolSize=10,
                serverSelectionTimeoutMS=5000,
                connectTimeoutMS=10000,
                retryWrites=True,
                retryReads=True,
                tz_aware=False,
            )

            _database = _client[settings.MONGODB_DB_NAME]

            # Verify connection
            await _client.admin.command("ping")

            logger.info(
                f"✅ Successfully connected to MongoDB: {settings.MONGODB_DB_NAME}"
            )
            return

        except (ConnectionFailure, ServerSelectionTimeoutError) as e:
            logger.error(
                f"Failed to connect to MongoDB (attempt {attempt}/{max_retries}): {e}"
            )
            _client = None
            _database = None

            if attempt < max_retries:
                logger.info(f"Retrying in {retry_delay} seconds...")
                await asyncio.sleep(retry_delay)
                retry_delay *= 2  # Exponential backoff
            else:
                logger.critical("Failed to connect to MongoDB after all retries")
                raise ConnectionError("Could not establish MongoDB connection") from e


async def close_mongo_connection():
    """
    Closes the MongoDB connection.
    Called during application shutdown.
    """
    global _client, _database

    if _client:
        logger.info("Closing MongoDB connection")
        _client.close()
        _client = None
        _database = None
        logger.info("MongoDB connection closed")


async def check_database_health() -> bool:
    """
    Checks if the database connection is healthy.

    Returns:
        True if connection is healthy, False otherwise
    """
    try:
        if _client is None:
            logger.error("MongoDB client not initialized")
            return False

        await _client.admin.command("ping")
        return True

    except Exception as e:
        logger.error(f"Database health check failed: {str(e)}")
        return False


async def get_database() -> AsyncIOMotorDatabase:
    """
    Returns the MongoDB database instance.

    Raises:
        RuntimeError: If database is not initialized
    """
    return _require_database()


def _require_database() -> AsyncIOMotorDatabase:
    if _database is None:
        raise RuntimeError(
            "Database not initialized. Call connect_to_mongo() during startup."
        )
    return _database


@asynccontextmanager
async def start_transaction_session():
    """
    Yields a client session with an open transaction.

    Leaving the block normally commits; an exception aborts. Callers that
    bail out with a failure result call `abort_transaction(session)` first.
    Yields None when transactions are disabled (standalone servers).
    """
    if _client is None:
        raise RuntimeError(
            "Database not initialized. Call connect_to_mongo() during startup."
        )

    if not settings.MONGODB_USE_TRANSACTIONS:
        yield None
        return

    async with await _client.start_session() as session:
        async with session.start_transaction():
            yield session


async def abort_transaction(session) -> None:
    """Aborts the session's transaction if one is still open."""
    if session is not None and session.in_transaction:
        await session.abort_transaction()


def get_users_collection():
    """
    Returns the users collection.

    Each user embeds `referral_program` with the referral code, the
    referrer back-reference, pending/completed referral ledgers, bank
    details, cached Paystack recipient code and payout history.
    """
    return _require_database()[USERS]


def get_orders_collection():
    """Returns the orders collection."""
    return _require_database()[ORDERS]


def get_products_collection():
    """Returns the products collection."""
    return _require_database()[PRODUCTS]


def get_addresses_collection():
    """Returns the addresses collection."""
    return _require_database()[ADDRESSES]


def get_shipping_collection():
    """Returns the shipping configuration collection."""
    return _require_database()[SHIPPING]


def get_settings_collection():
    """Returns the singleton referral payout settings collection."""
    return _require_database()[REFERRAL_PAYOUT_SETTINGS]
