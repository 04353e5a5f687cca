"""
Main entry point for the static pod config renderer.

Builds the resource registry and store, then runs the render controller
under its runtime alongside the optional HTTP API.
"""

import asyncio
import logging
import signal
from typing import Optional

from api import StatusAPI
from config import get_config
from controller import RenderConfigsController
from db import PostgresResourceStore
from resources import build_registry
from runtime import ControllerRuntime
from store import InMemoryResourceStore, ResourceStore

logger = logging.getLogger(__name__)


class Application:
    """Main application that wires the store, controller and API."""

    def __init__(self):
        self.config = get_config()
        self.registry = build_registry()
        self.store: Optional[ResourceStore] = None
        self.controller: Optional[RenderConfigsController] = None
        self.runtime: Optional[ControllerRuntime] = None
        self.api: Optional[StatusAPI] = None
        self.running = False
        self._runtime_task: Optional[asyncio.Task] = None

    async def _create_store(self) -> ResourceStore:
        if self.config.store.backend == "postgres":
            db_config = self.config.database
            store = PostgresResourceStore(
                self.registry,
                host=db_config.host,
                port=db_config.port,
                database=db_config.database,
                user=db_config.user,
                password=db_config.password,
                min_pool_size=db_config.min_pool_size,
                max_pool_size=db_config.max_pool_size,
                poll_interval=self.config.store.poll_interval,
            )
            await store.connect()
            await store.initialize_schema()
            logger.info("Database initialized")
            return store

        logger.info("Using in-memory resource store")
        return InMemoryResourceStore(self.registry)

    async def initialize(self):
        """Initialize all components."""
        logger.info("Initializing static pod config renderer")

        self.store = await self._create_store()
        self.controller = RenderConfigsController(
            self.store, render_config=self.config.render
        )
        self.runtime = ControllerRuntime(self.controller, self.config.controller)

        api_config = self.config.api
        if api_config.enabled:
            self.api = StatusAPI(
                self.store,
                self.registry,
                runtime=self.runtime,
                host=api_config.host,
                port=api_config.port,
                log_level=api_config.log_level,
            )

        logger.info("All components initialized")

    async def start(self):
        """Start the application."""
        if not self.runtime:
            await self.initialize()

        self.running = True
        logger.info("Starting static pod config renderer")

        self._runtime_task = asyncio.create_task(self.runtime.run())
        tasks = [self._runtime_task]
        if self.api:
            tasks.append(asyncio.create_task(self.api.start()))

        try:
            await asyncio.gather(*tasks)
        except asyncio.CancelledError:
            logger.info("Application tasks cancelled")

    async def stop(self):
        """Stop the application gracefully."""
        if not self.running:
            return

        logger.info("Stopping static pod config renderer")
        self.running = False

        if self.runtime:
            self.runtime.stop()

        if self.api:
            await self.api.stop()

        # A render in flight must publish its status before the store goes away
        if self._runtime_task is not None:
            await asyncio.wait([self._runtime_task])

        if isinstance(self.store, PostgresResourceStore):
            await self.store.close()

        logger.info("Static pod config renderer stopped")


async def main():
    """Main entry point."""
    config = get_config()
    logging.basicConfig(
        level=getattr(logging, config.api.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    app = Application()

    loop = asyncio.get_running_loop()

    def signal_handler():
        logger.info("Received shutdown signal")
        asyncio.create_task(app.stop())

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler)

    try:
        await app.start()
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    finally:
        await app.stop()


if __name__ == "__main__":
    asyncio.run(main())
