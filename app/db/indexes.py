"""
app/db/indexes.py

Purpose: Database index management

- Creates unique and performance indexes
- Ensures fast lookups and data integrity
- Applies the products collection validator
"""

from pymongo.errors import CollectionInvalid

from app.db.mongo import (
    PRODUCTS,
    get_database,
    get_users_collection,
    get_orders_collection,
    get_products_collection,
    get_addresses_collection,
)
from app.models.product import product_validator
from app.core.logging import get_logger

logger = get_logger(__name__)


async def apply_collection_validators():
    """
    Installs the products validator, creating the collection when it does
    not exist yet. With validationLevel moderate, inserts and updates to
    valid documents are checked; documents that were already invalid are
    not re-checked when updated.
    """
    db = await get_database()
    try:
        await db.create_collection(PRODUCTS, validator=product_validator())
        logger.debug("Created products collection with validator")
    except CollectionInvalid:
        await db.command(
            "collMod",
            PRODUCTS,
            validator=product_validator(),
            validationLevel="moderate",
        )
        logger.debug("Updated products collection validator")


async def create_indexes():
    """
    Creates all necessary database indexes for optimal performance.
    This function is idempotent - safe to run multiple times.
    """
    try:
        users = get_users_collection()
        orders = get_orders_collection()
        products = get_products_collection()
        addresses = get_addresses_collection()

        logger.info("Creating database indexes...")

        # ==============================================
        # USERS COLLECTION INDEXES
        # ==============================================

        await users.create_index("email", unique=True, name="email_unique")
        logger.debug("Created unique index on users.email")

        await users.create_index(
            "referral_program.referral_code",
            unique=True,
            sparse=True,
            name="referral_code_unique"
        )
        logger.debug("Created unique index on users.referral_program.referral_code")

        await users.create_index("referral_program.referred_by", name="referred_by_idx")
        logger.debug("Created index on users.referral_program.referred_by")

        # Payout lookups by id (admin actions) and by reference (webhooks)
        await users.create_index(
            "referral_program.payout_history.payout_id",
            name="payout_id_idx"
        )
        await users.create_index(
            "referral_program.payout_history.paystack_reference",
            sparse=True,
            name="payout_reference_idx"
        )
        logger.debug("Created payout history indexes on users")

        # ==============================================
        # ORDERS COLLECTION INDEXES
        # ==============================================

        await orders.create_index("order_id", unique=True, name="order_id_unique")
        await orders.create_index("tracking_id", unique=True, name="tracking_id_unique")
        await orders.create_index(
            "transaction_id",
            unique=True,
            sparse=True,
            name="transaction_id_unique"
        )
        logger.debug("Created unique id indexes on orders")

        await orders.create_index([("user", 1), ("status", 1)], name="user_status_idx")
        await orders.create_index([("user", 1), ("created_at", -1)], name="user_created_idx")
        await orders.create_index([("status", 1), ("created_at", 1)], name="status_created_idx")
        await orders.create_index([("is_paid", 1), ("is_delivered", 1)], name="paid_delivered_idx")
        await orders.create_index([("total_price", 1), ("created_at", 1)], name="total_created_idx")
        logger.debug("Created compound indexes on orders")

        # ==============================================
        # PRODUCTS / ADDRESSES
        # ==============================================

        await products.create_index("name", name="product_name_idx")
        await products.create_index("stock", name="product_stock_idx")
        await addresses.create_index("user", name="address_user_idx")
        logger.debug("Created indexes on products and addresses")

        await apply_collection_validators()

        logger.info("✅ All database indexes created successfully")

        user_indexes = await users.index_information()
        order_indexes = await orders.index_information()

        logger.info(
            f"Index summary: Users={len(user_indexes)}, "
            f"Orders={len(order_indexes)}"
        )

    except Exception as e:
        logger.error(f"Failed to create indexes: {str(e)}", exc_info=True)
        raise


if __name__ == "__main__":
    """
    Run this script directly to create indexes manually.
    """
    import asyncio
    from app.db.mongo import connect_to_mongo, close_mongo_connection

    async def main():
        await connect_to_mongo()
        await create_indexes()
        await close_mongo_connection()

    asyncio.run(main())
