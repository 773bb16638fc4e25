import asyncio
from app.db.mongo import connect_to_mongo, close_mongo_connection, get_database

# Configure logging
import logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

EXPECTED = {
    "users": ["email_unique", "referral_code_unique", "payout_id_idx", "payout_reference_idx"],
    "orders": ["order_id_unique", "tracking_id_unique", "transaction_id_unique"],
}


async def check_indexes():
    await connect_to_mongo()
    db = await get_database()

    try:
        for collection, names in EXPECTED.items():
            indexes = await db[collection].index_information()
            logger.info(f"{collection}: {sorted(indexes.keys())}")

            missing = [name for name in names if name not in indexes]
            if missing:
                logger.error(f"❌ {collection} is missing {missing}. Run scripts/init_db.py")
            else:
                logger.info(f"✅ {collection} indexes present")

    except Exception as e:
        logger.error(f"Error checking indexes: {e}")
    finally:
        await close_mongo_connection()

if __name__ == "__main__":
    asyncio.run(check_indexes())
