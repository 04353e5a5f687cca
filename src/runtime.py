"""
Controller Runtime - Host for the render controller.

Runs the controller, restarts it with exponential backoff when it fails and
resets the backoff whenever the controller reports a healthy cycle.
"""

import asyncio
import logging
import random
from datetime import datetime, timezone
from typing import Optional, Protocol

from config import ControllerConfig

logger = logging.getLogger(__name__)

# Caps the exponent so the delay computation never overflows
MAX_BACKOFF_EXPONENT = 10


class RunnableController(Protocol):
    name: str
    shutdown_event: asyncio.Event

    async def run(self, runtime: "ControllerRuntime") -> None: ...


class ControllerRuntime:
    """Supervises a single controller."""

    def __init__(
        self,
        controller: RunnableController,
        config: Optional[ControllerConfig] = None,
    ):
        self.controller = controller
        self.config = config or ControllerConfig()
        self.shutdown_event = controller.shutdown_event
        self.healthy = False
        self.failures = 0
        self.restarts = 0
        self.last_error: Optional[str] = None
        self.last_healthy_at: Optional[str] = None

    def signal_healthy(self) -> None:
        """Called by the controller after every successful cycle."""
        if self.failures:
            logger.info(
                f"{self.controller.name} recovered after {self.failures} failure(s)"
            )
        self.failures = 0
        self.healthy = True
        self.last_error = None
        self.last_healthy_at = datetime.now(timezone.utc).isoformat()

    def compute_backoff(self, failures: int) -> float:
        """
        Delay before the next restart after ``failures`` consecutive failures.

        Exponential in the failure count, capped at ``backoff_max_delay``, with
        ±``backoff_jitter_factor`` jitter applied.
        """
        exponent = min(max(failures - 1, 0), MAX_BACKOFF_EXPONENT)
        delay = min(
            self.config.backoff_base_delay * (2**exponent),
            self.config.backoff_max_delay,
        )
        jitter = (random.random() * 2 - 1) * self.config.backoff_jitter_factor
        return max(delay * (1 + jitter), 0.0)

    async def run(self) -> None:
        """Run the controller until shutdown, restarting it on failure."""
        name = self.controller.name

        while not self.shutdown_event.is_set():
            try:
                await self.controller.run(self)
            except Exception as e:
                self.failures += 1
                self.healthy = False
                self.last_error = str(e)
                delay = self.compute_backoff(self.failures)
                logger.error(
                    f"{name} failed (attempt {self.failures}), "
                    f"restarting in {delay:.1f}s: {e}",
                    exc_info=True,
                )

                if await self._sleep(delay):
                    break
                self.restarts += 1
                continue

            if not self.shutdown_event.is_set():
                logger.warning(f"{name} exited unexpectedly, restarting")
                self.restarts += 1

        logger.info(f"Runtime for {name} stopped")

    async def _sleep(self, delay: float) -> bool:
        """Sleep for ``delay``; returns True if shutdown was requested meanwhile."""
        try:
            await asyncio.wait_for(self.shutdown_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return False
        return True

    def stop(self) -> None:
        """Request shutdown; the controller exits at its next wait."""
        self.shutdown_event.set()
