"""Refresh orchestration: current snapshot, timeouts, auto-refresh and auto-retry."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime

from jsm_stats.core.data_models import ServiceDesk
from jsm_stats.core.errors import JiraAPIError, NetworkError, friendly_message
from jsm_stats.core.metrics_engine import MetricsEngine
from jsm_stats.core.snapshot import MenuBarStats, MetricSnapshot
from jsm_stats.core.time_period import TimePeriod

logger = logging.getLogger(__name__)

FETCH_TIMEOUT = 120.0  # seconds
RETRY_COUNTDOWN = 30  # seconds
REFRESH_INTERVAL = 300.0  # seconds


class DashboardRefresher:
    """Owns the displayed :class:`MetricSnapshot` for one selected desk.

    A refresh either replaces the snapshot wholesale or leaves the previous
    one untouched and sets :attr:`error_message`.  After a failure one
    automatic retry is scheduled behind a visible per-second countdown.
    """

    def __init__(
        self,
        engine: MetricsEngine,
        *,
        timeout: float = FETCH_TIMEOUT,
        retry_countdown: int = RETRY_COUNTDOWN,
        refresh_interval: float = REFRESH_INTERVAL,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        on_update: Callable[[DashboardRefresher], None] | None = None,
    ) -> None:
        self.engine = engine
        self.timeout = timeout
        self.retry_delay = retry_countdown
        self.refresh_interval = refresh_interval
        self.on_update = on_update
        self._sleep = sleep

        self.service_desk: ServiceDesk | None = None
        self.period: TimePeriod = TimePeriod.last_7_days()
        self.snapshot = MetricSnapshot.empty()
        self.menu_bar_stats = MenuBarStats()
        self.is_loading = False
        self.error_message: str | None = None
        self.last_refreshed: datetime | None = None
        self.retry_countdown = 0

        self._refresh_task: asyncio.Task[bool] | None = None
        self._auto_task: asyncio.Task[None] | None = None
        self._countdown_task: asyncio.Task[None] | None = None

    def select(
        self, service_desk: ServiceDesk | None = None, period: TimePeriod | None = None
    ) -> None:
        if service_desk is not None:
            self.service_desk = service_desk
        if period is not None:
            self.period = period

    @property
    def retry_task(self) -> asyncio.Task[None] | None:
        """The pending auto-retry, if one is counting down."""
        return self._countdown_task

    # -- refresh --------------------------------------------------------------

    async def refresh(self) -> bool:
        """Fetch a new snapshot; return ``True`` if it replaced the old one.

        Ignored while another refresh is in flight or no desk is selected.
        """
        desk = self.service_desk
        if desk is None:
            logger.debug("No service desk selected, skipping refresh")
            return False
        if self.is_loading:
            logger.debug("Refresh already in progress")
            return False

        self.is_loading = True
        self.error_message = None
        self.cancel_retry()
        self._notify()
        try:
            snapshot = await self._fetch(desk, self.period)
        except asyncio.CancelledError:
            logger.info("Refresh was cancelled")
            raise
        except JiraAPIError as exc:
            self.error_message = friendly_message(exc)
            logger.error("Refresh failed: %s", exc)
            self._schedule_retry()
            return False
        finally:
            self.is_loading = False

        self.snapshot = snapshot
        self.last_refreshed = datetime.now().astimezone()
        self.menu_bar_stats = MenuBarStats.from_snapshot(snapshot, self.last_refreshed)
        logger.info("Refresh succeeded with %d open issues", snapshot.overview.total_open)
        self._notify()
        return True

    def refresh_in_background(self) -> asyncio.Task[bool]:
        """Restart the refresh as a task, dropping any pending retry."""
        if self._refresh_task is not None:
            self._refresh_task.cancel()
        self.cancel_retry()
        self._refresh_task = asyncio.ensure_future(self.refresh())
        return self._refresh_task

    async def _fetch(self, desk: ServiceDesk, period: TimePeriod) -> MetricSnapshot:
        try:
            return await asyncio.wait_for(
                self.engine.fetch_metrics(desk, period), timeout=self.timeout
            )
        except TimeoutError as exc:
            raise NetworkError(exc) from exc

    # -- auto retry -----------------------------------------------------------

    def cancel_retry(self) -> None:
        if self._countdown_task is not None:
            self._countdown_task.cancel()
            self._countdown_task = None
        self.retry_countdown = 0

    def _schedule_retry(self) -> None:
        self.cancel_retry()
        self.retry_countdown = self.retry_delay
        self._countdown_task = asyncio.ensure_future(self._retry_after_countdown())
        self._notify()

    async def _retry_after_countdown(self) -> None:
        for remaining in range(self.retry_delay, 0, -1):
            self.retry_countdown = remaining
            self._notify()
            await self._sleep(1)
        self.retry_countdown = 0
        self._countdown_task = None
        logger.info("Retrying failed refresh")
        await self.refresh()

    # -- auto refresh ---------------------------------------------------------

    def start_auto_refresh(self) -> None:
        self.stop_auto_refresh()
        self._auto_task = asyncio.ensure_future(self._auto_refresh_loop())

    def stop_auto_refresh(self) -> None:
        if self._auto_task is not None:
            self._auto_task.cancel()
            self._auto_task = None

    async def _auto_refresh_loop(self) -> None:
        while True:
            await self._sleep(self.refresh_interval)
            await self.refresh()

    def close(self) -> None:
        """Cancel every background task owned by the refresher."""
        self.stop_auto_refresh()
        self.cancel_retry()
        if self._refresh_task is not None:
            self._refresh_task.cancel()
            self._refresh_task = None

    def _notify(self) -> None:
        if self.on_update is not None:
            self.on_update(self)
