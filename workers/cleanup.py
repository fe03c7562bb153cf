"""Worker to remove expired ads from the database and the vector index."""

import asyncio
import logging
import traceback
from typing import List

from ads.exceptions import PersistenceError
from vectors import IndexingError

# Configure logging
logger = logging.getLogger(__name__)

async def cleanup_expired_ads(store, indexer) -> List[str]:
    """Delete expired ads, then their vectors.
    
    Vector deletion is best-effort: expired vectors are filtered out of
    semantic results anyway.
    
    Returns:
        Ids of the deleted ads
    """
    try:
        deleted = await store.cleanup_expired()
    except PersistenceError as e:
        logger.error(f"Error in cleanup_expired_ads: {str(e)}")
        return []

    if deleted:
        try:
            await indexer.delete_ads(deleted)
        except IndexingError as e:
            logger.warning(f"Expired ads deleted but vectors remain: {str(e)}")
    return deleted

async def run_cleanup_worker(store, indexer, interval: float = 3600):
    """Main worker loop."""
    logger.info(f"Expired ad cleanup worker starting up (every {interval:.0f}s)")
    while True:
        try:
            await cleanup_expired_ads(store, indexer)
            
        except Exception as e:
            logger.error(f"Error in worker loop: {str(e)}")
            logger.error(traceback.format_exc())
            
        await asyncio.sleep(interval)

if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    from api.dependencies import build_services
    from config import get_settings
    from database import init_db, close as db_close

    async def main():
        await init_db()
        try:
            services = build_services(get_settings())
            await cleanup_expired_ads(services.store, services.indexer)
        finally:
            await db_close()

    asyncio.run(main())
