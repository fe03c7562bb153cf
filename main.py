"""Run the API server and the expired ad cleanup worker."""
import asyncio
import logging
import signal

import uvicorn

from api import create_app
from api.dependencies import build_services
from config import get_settings
from database import init_db, get_pool, close as db_close
from workers import run_cleanup_worker

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

should_exit = False

def handle_shutdown(signum, frame):
    """Handle shutdown signals gracefully."""
    global should_exit
    logger.info("Shutdown signal received. Cleaning up...")
    should_exit = True

class UvicornServer:
    """Wrapper for running uvicorn with proper lifecycle management."""
    
    def __init__(self, app, host: str = "0.0.0.0", port: int = 8000):
        self.config = uvicorn.Config(
            app,
            host=host,
            port=port,
            log_level="info"
        )
        self.server = uvicorn.Server(self.config)
        # Shutdown signals are handled here, not by uvicorn
        self.server.install_signal_handlers = lambda: None
    
    async def run(self):
        await self.server.serve()
    
    async def stop(self):
        self.server.should_exit = True

async def main():
    """Initialize services and run until a shutdown signal or task failure."""
    global should_exit

    signal.signal(signal.SIGINT, handle_shutdown)
    signal.signal(signal.SIGTERM, handle_shutdown)

    settings = get_settings()
    server = None
    tasks = []

    try:
        logger.info("Initializing database...")
        await init_db(settings['db_url'])
        services = build_services(settings, await get_pool())

        server = UvicornServer(create_app(services), settings['api_host'], settings['api_port'])
        tasks = [
            asyncio.create_task(server.run(), name="api"),
            asyncio.create_task(
                run_cleanup_worker(services.store, services.indexer, settings['cleanup_interval']),
                name="cleanup"
            ),
        ]
        logger.info("All services started")

        while not should_exit:
            await asyncio.sleep(1)

            for task in tasks:
                if task.done() and not task.cancelled():
                    exc = task.exception()
                    if exc:
                        logger.error(f"Task {task.get_name()} failed with error: {exc}")
                    else:
                        logger.info(f"Task {task.get_name()} exited")
                    should_exit = True

        logger.info("Starting cleanup...")

    except Exception as e:
        logger.error(f"Fatal error: {e}")
        raise
    finally:
        if server:
            logger.info("Stopping API server...")
            await server.stop()

        for task in tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        logger.info("Closing database connections...")
        await db_close()
        logger.info("Cleanup complete.")

if __name__ == "__main__":
    asyncio.run(main())
