"""
Periodic loops for the pipeline coordinator and the publish dispatcher.

Both jobs run on an APScheduler AsyncIOScheduler with an IntervalTrigger,
one instance at a time; a tick that is still running when the next one is
due is coalesced into it.
"""
import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from content_engine.workers.coordinator import PipelineCoordinator
from content_engine.workers.dispatcher import PublishDispatcher

logger = logging.getLogger(__name__)


class PipelineScheduler:
    """Owns the AsyncIOScheduler that drives coordinator ticks and dispatch sweeps."""

    def __init__(self, coordinator: PipelineCoordinator, dispatcher: PublishDispatcher, settings):
        self.coordinator = coordinator
        self.dispatcher = dispatcher
        self.settings = settings
        self.scheduler = AsyncIOScheduler()
        self._running = False

    def start(self):
        """Start the scheduler (respects scheduler_enabled)."""
        if not self.settings.scheduler_enabled:
            logger.info("Scheduler disabled by settings; skipping start")
            return

        if self._running:
            return

        self.scheduler.add_job(
            self._run_pipeline_tick,
            IntervalTrigger(seconds=self.settings.pipeline_poll_interval_seconds),
            id="pipeline_tick",
            name="Pipeline coordinator tick",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )

        self.scheduler.add_job(
            self._run_dispatch_sweep,
            IntervalTrigger(seconds=self.settings.dispatch_interval_seconds),
            id="dispatch_sweep",
            name="Publish dispatch sweep",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )

        self.scheduler.start()
        self._running = True
        logger.info(
            f"Scheduler started (tick every {self.settings.pipeline_poll_interval_seconds}s, "
            f"dispatch every {self.settings.dispatch_interval_seconds}s)"
        )

    def stop(self):
        """Stop the scheduler."""
        if not self._running:
            return
        self.scheduler.shutdown(wait=False)
        self._running = False
        logger.info("Scheduler stopped")

    def is_running(self) -> bool:
        return self._running

    async def _run_pipeline_tick(self):
        try:
            await self.coordinator.tick()
        except Exception as e:
            logger.exception(f"[pipeline_tick] Failed: {e}")

    async def _run_dispatch_sweep(self):
        try:
            await self.dispatcher.sweep()
        except Exception as e:
            logger.exception(f"[dispatch_sweep] Failed: {e}")
