"""
Database initialization script

Creates indexes and seeds the referral payout settings and default
shipping configuration. Safe to run more than once:
    python scripts/init_db.py
"""

import asyncio
import sys
from pathlib import Path
from dotenv import load_dotenv

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

# Load environment variables
load_dotenv()

from app.core.logging import setup_logging, get_logger
from app.db.mongo import connect_to_mongo, close_mongo_connection, get_database
from app.db.indexes import create_indexes
from app.services.settings_service import get_or_create_settings
from app.services.shipping_service import get_active_shipping_config

setup_logging()
logger = get_logger(__name__)

COLLECTIONS = ["users", "orders", "products", "addresses", "shipping", "referral_payout_settings"]


async def main():
    logger.info("=" * 60)
    logger.info("  Storefront Database Setup")
    logger.info("=" * 60)

    await connect_to_mongo()

    try:
        await create_indexes()

        settings_doc = await get_or_create_settings()
        logger.info(
            f"✅ Referral settings: min payout {settings_doc['min_payout_amount']}, "
            f"{settings_doc['referral_percentage']}%"
        )

        shipping = await get_active_shipping_config()
        logger.info(f"✅ Shipping config: default price {shipping.get('default_price')}")

        db = await get_database()
        logger.info("\n📊 Current documents:")
        for name in COLLECTIONS:
            logger.info(f"  {name}: {await db[name].count_documents({})}")

        logger.info("\n✅ Database initialization complete!")

    except Exception as e:
        logger.error(f"❌ Error: {e}")
        raise

    finally:
        await close_mongo_connection()


if __name__ == "__main__":
    asyncio.run(main())
