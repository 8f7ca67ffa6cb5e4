"""Command line interface for running the API server and deposit monitor."""
import asyncio
import logging
import signal

import uvicorn
import uvloop

from config import get_settings
from database import close as db_close
from .main import build_services, create_app

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Global instances
services = None
server = None
should_exit = False

def handle_shutdown(signum, frame):
    """Handle shutdown signals gracefully."""
    global should_exit
    logger.info("Shutdown signal received. Cleaning up...")
    should_exit = True

async def startup():
    """Load settings and build services."""
    global services

    logger.info("Loading settings...")
    settings = get_settings()

    logger.info(f"Building services for {settings['network']}...")
    services = build_services(settings)

    if hasattr(services.documents, 'ensure_pool'):
        logger.info("Initializing database...")
        await services.documents.ensure_pool()

    return services

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
        # Signals are handled in main()
        self.server.install_signal_handlers = lambda: None

    async def run(self):
        """Run the server in a way that can be stopped."""
        await self.server.serve()

    async def stop(self):
        """Stop the server."""
        self.server.should_exit = True
        if hasattr(self.server, 'force_exit'):
            self.server.force_exit = True

async def run_api(services):
    """Run the API server."""
    global server
    settings = services.settings
    server = UvicornServer(create_app(services), host=settings['api_host'], port=settings['api_port'])
    await server.run()

async def run_monitor(monitor):
    """Run the deposit monitor."""
    try:
        await monitor.start()
    except Exception as e:
        logger.error(f"Monitor error: {e}")
        raise

async def main():
    """Run the API server and deposit monitor."""
    global services, server, should_exit

    try:
        # Register signal handlers in main thread
        signal.signal(signal.SIGINT, handle_shutdown)
        signal.signal(signal.SIGTERM, handle_shutdown)

        # Initialize services
        services = await startup()

        # Create tasks for all services
        tasks = [
            asyncio.create_task(run_api(services), name="api"),
            asyncio.create_task(run_monitor(services.monitor), name="monitor")
        ]

        logger.info("All services started")

        # Wait for shutdown signal
        while not should_exit:
            await asyncio.sleep(1)

            # Check if any tasks failed
            for task in tasks:
                if task.done() and not task.cancelled():
                    exc = task.exception()
                    if exc:
                        logger.error(f"Task {task.get_name()} failed with error: {exc}")
                    else:
                        logger.info(f"Task {task.get_name()} exited")
                    should_exit = True
                    break

        # Cleanup started
        logger.info("Starting cleanup...")

    except Exception as e:
        logger.error(f"Fatal error: {e}")
    finally:
        # Cleanup
        if services:
            services.monitor.stop()

        if server:
            logger.info("Stopping API server...")
            await server.stop()

        # Cancel all tasks
        current = asyncio.current_task()
        for task in asyncio.all_tasks():
            if task is not current and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

        logger.info("Closing database connections...")
        await db_close()

        logger.info("Cleanup complete.")

if __name__ == "__main__":
    uvloop.install()

    # Run everything in the same event loop
    asyncio.run(main())
