"""
Plugin sync scheduler.

Periodically syncs every enabled (user, plugin) pair.  A sweep is
single-flight: a trigger that fires while a sweep is still running is
dropped, not queued.  One unit failing never stops the rest.

The guard is an in-process flag.  Run the scheduler on one instance only
(``PLUGIN_SYNC_ENABLED=false`` elsewhere) or syncs will be duplicated.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Optional, Set, Tuple

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from config.settings import config
from plugins.config_store import list_enabled_plugin_configs
from plugins.registry import PluginRegistry
from plugins.schemas import SweepReport, SweepUnitResult, SyncResult
from plugins.sync import PluginSyncService, default_session_factory, utcnow

logger = logging.getLogger(__name__)

SWEEP_LOOKBACK_DAYS = 7
ON_DEMAND_LOOKBACK_DAYS = 30


class PluginSyncScheduler:
    def __init__(
        self,
        sync_service: Optional[PluginSyncService] = None,
        registry: Optional[PluginRegistry] = None,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        initial_delay_seconds: Optional[float] = None,
    ):
        self._registry = registry or PluginRegistry()
        self._sync_service = sync_service or PluginSyncService(
            registry=self._registry, session_factory=session_factory, clock=clock
        )
        self._session_factory = session_factory or default_session_factory()
        self._clock = clock
        self._sleep = sleep
        self._initial_delay = (
            config.plugin_sync_initial_delay_seconds
            if initial_delay_seconds is None
            else initial_delay_seconds
        )

        self._timer_task: Optional[asyncio.Task] = None
        self._initial_task: Optional[asyncio.Task] = None
        self._sweep_tasks: Set[asyncio.Task] = set()
        self._run_in_progress = False

    # ── lifecycle ───────────────────────────────────────────────────────

    def start(self, interval_seconds: Optional[float] = None) -> None:
        """Arm the recurring trigger.  Must be called from a running event loop."""
        if self._timer_task is not None:
            logger.info("Plugin sync scheduler already running")
            return

        interval = interval_seconds or config.plugin_sync_interval_seconds
        logger.info("Starting plugin sync scheduler (interval: %ss)", interval)

        # Initial sweep is delayed so it does not compete with startup work.
        self._initial_task = asyncio.create_task(self._delayed_trigger(self._initial_delay))
        self._timer_task = asyncio.create_task(self._recurring_trigger(interval))

    def stop(self) -> None:
        """Disarm the trigger.  A sweep already running finishes normally."""
        if self._timer_task is None:
            return
        self._timer_task.cancel()
        self._timer_task = None
        if self._initial_task is not None:
            self._initial_task.cancel()
            self._initial_task = None
        logger.info("Plugin sync scheduler stopped")

    async def shutdown(self) -> None:
        """Disarm the trigger and let sweeps already running finish."""
        self.stop()
        await self.wait_idle()

    def is_running(self) -> bool:
        """Whether the recurring trigger is armed (not whether a sweep is executing)."""
        return self._timer_task is not None

    @property
    def run_in_progress(self) -> bool:
        return self._run_in_progress

    async def wait_idle(self) -> None:
        """Wait for spawned sweeps to finish (shutdown, tests)."""
        if self._sweep_tasks:
            await asyncio.gather(*list(self._sweep_tasks), return_exceptions=True)

    # ── triggers ────────────────────────────────────────────────────────

    async def _delayed_trigger(self, delay: float) -> None:
        await self._sleep(delay)
        self._fire()

    async def _recurring_trigger(self, interval: float) -> None:
        while True:
            await self._sleep(interval)
            self._fire()

    def _fire(self) -> None:
        task = asyncio.create_task(self.run_scheduled_sync())
        self._sweep_tasks.add(task)
        task.add_done_callback(self._on_sweep_done)

    def _on_sweep_done(self, task: asyncio.Task) -> None:
        self._sweep_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Scheduled plugin sync crashed", exc_info=exc)

    # ── sweep ───────────────────────────────────────────────────────────

    def _window(self, days: int) -> Tuple[str, str]:
        today = self._clock().date()
        return (today - timedelta(days=days)).isoformat(), today.isoformat()

    async def run_scheduled_sync(self) -> Optional[SweepReport]:
        """
        Sync every enabled plugin config over the last 7 days.

        Returns None when another sweep is already in progress.
        """
        if self._run_in_progress:
            logger.info("Plugin sync already in progress, skipping")
            return None

        self._run_in_progress = True
        try:
            async with self._session_factory() as session:
                configs = await list_enabled_plugin_configs(session)
                units = [(c.user_id, c.plugin_id) for c in configs]

            start_date, end_date = self._window(SWEEP_LOOKBACK_DAYS)
            report = SweepReport(start_date=start_date, end_date=end_date)
            if not units:
                logger.info("No enabled plugins to sync")
                return report

            logger.info("Starting scheduled sync of %d plugin config(s)", len(units))
            for user_id, plugin_id in units:
                plugin = self._registry.get(plugin_id)
                if plugin is None:
                    logger.warning("Plugin %s not found, skipping user %s", plugin_id, user_id)
                    report.skipped.append(plugin_id)
                    continue

                logger.info("Syncing %s for user %s", plugin.name, user_id)
                try:
                    result = await self._sync_service.sync_plugin_data(
                        user_id, plugin_id, start_date, end_date
                    )
                except Exception as exc:
                    logger.exception("Sync failed for %s/%s", plugin_id, user_id)
                    result = SyncResult(success=False, errors=[str(exc)])
                else:
                    if result.success:
                        logger.info("  Synced %d records", result.records_imported)
                    else:
                        logger.warning("  Sync had errors: %s", ", ".join(result.errors or []))

                report.units.append(
                    SweepUnitResult(user_id=user_id, plugin_id=plugin_id, result=result)
                )

            logger.info("Scheduled sync complete")
            return report
        finally:
            self._run_in_progress = False

    # ── on demand ───────────────────────────────────────────────────────

    async def trigger_sync(
        self,
        user_id: str,
        plugin_id: str,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
    ) -> SyncResult:
        """
        Sync one user/plugin now, outside the sweep and its guard.

        Defaults to the last 30 days since this is usually a first sync.
        """
        default_start, default_end = self._window(ON_DEMAND_LOOKBACK_DAYS)
        return await self._sync_service.sync_plugin_data(
            user_id,
            plugin_id,
            start_date or default_start,
            end_date or default_end,
        )
