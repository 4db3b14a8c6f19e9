"""Main poll loop: one tick per interval, supervised with error backoff."""

from __future__ import annotations

import asyncio
from datetime import tzinfo
from enum import Enum
from typing import Any, Callable

import structlog

from ..browser.scraper import is_session_lost_error
from ..clock import hour_bucket, hour_window_label, now_ms
from ..config import BehaviorConfig, LoopConfig
from ..state import TrackerState
from ..tracking.alerts import AlertEvaluation, AlertStateMachine
from ..tracking.engine import TrackingEngine
from ..tracking.log_buffer import LogBuffer


logger = structlog.get_logger(__name__)


class LoopState(str, Enum):
    READY = "READY"
    ERROR_BACKOFF = "ERROR_BACKOFF"


class TrackerLoop:
    """Sequences session check, queue scan, agent tracking and publishing.

    ``lock`` is shared with the command processor. Both hold it only while
    state is read or mutated, never across browser or network I/O, so a
    command can land between two agent scrapes. Scrapes that straddle a
    start/stop are recognised by ``TrackerState.generation`` and dropped.
    """

    def __init__(
        self,
        state: TrackerState,
        lock: asyncio.Lock,
        session,
        scraper,
        sink,
        engine: TrackingEngine,
        alerts: AlertStateMachine,
        log_buffer: LogBuffer,
        tz: tzinfo,
        loop_config: LoopConfig | None = None,
        behavior: BehaviorConfig | None = None,
        notifier=None,
        processor=None,
        clock: Callable[[], int] = now_ms,
    ):
        self.state = state
        self.lock = lock
        self.session = session
        self.scraper = scraper
        self.sink = sink
        self.engine = engine
        self.alerts = alerts
        self.log_buffer = log_buffer
        self.tz = tz
        self.loop_config = loop_config or LoopConfig()
        self.behavior = behavior or BehaviorConfig()
        self.notifier = notifier
        self.processor = processor
        self._clock = clock

        self.loop_state = LoopState.READY
        self.tick_count = 0
        self.last_tick_at: int | None = None
        self.last_error: str | None = None
        self._stopping = asyncio.Event()
        self._wake = asyncio.Event()
        self._refresh_tasks: set[asyncio.Task] = set()

    # -- tick -----------------------------------------------------------------

    async def tick(self) -> dict[str, Any]:
        now = self._clock()
        context = await self.session.ensure_ready()
        page = await self.session.ensure_page(context)
        if self.behavior.anti_idle_jitter:
            await self.scraper.jitter(page)

        if self.behavior.queue_monitoring_always or self.state.session.is_running:
            await self._scan_queues(page)

        if self.state.session.is_running:
            await self._track_agents(page, now)

        async with self.lock:
            snapshot = self.build_snapshot(now)
        await self.sink.publish(snapshot)

        self.tick_count += 1
        self.last_tick_at = now
        return snapshot

    async def _scan_queues(self, page) -> AlertEvaluation | None:
        counts = await self.scraper.fetch_queue_counts(page)
        if not counts:
            logger.warning("No queue counts this tick, keeping previous values")
            return None

        async with self.lock:
            self.state.review_counts = dict(counts)
            evaluation = self.alerts.evaluate(counts)

        if evaluation.changed and self.notifier is not None:
            try:
                await self.notifier.notify_alert(evaluation)
            except Exception as e:
                logger.warning("Alert notification failed", error=f"{type(e).__name__}: {e}")
        return evaluation

    async def _track_agents(self, page, now: int) -> None:
        async with self.lock:
            if not self.state.session.is_running:
                return
            self.engine.roll_hour(hour_bucket(now, self.tz), now)
            generation = self.state.generation
            agents = list(self.state.session.selected_agents)
            refresh_permissions = self.engine.permissions_due()

        if refresh_permissions:
            for agent_id in agents:
                permissions = await self.scraper.fetch_permissions(page, agent_id)
                async with self.lock:
                    if self.state.generation == generation:
                        self.engine.set_permissions(agent_id, permissions)
            # a failed or superseded refresh stays due for the next tick
            async with self.lock:
                if self.state.generation == generation:
                    self.engine.mark_permissions_refreshed()

        for agent_id in agents:
            raw_count = await self.scraper.fetch_agent_total(page, agent_id)
            if raw_count is None:
                continue
            async with self.lock:
                if not self.state.session.is_running or self.state.generation != generation:
                    logger.info("Discarding scrape from a previous session", agent=agent_id)
                    continue
                self.engine.observe(agent_id, raw_count, now)

    def build_snapshot(self, now: int) -> dict[str, Any]:
        return {
            "lastUpdated": now,
            "isRunning": self.state.session.is_running,
            "timeLabel": hour_window_label(now, self.tz),
            "agentData": {agent_id: m.to_dict() for agent_id, m in self.engine.all_metrics().items()},
            "reviewCounts": dict(self.state.review_counts),
            "sessionLogs": self.log_buffer.to_payload(),
        }

    # -- one-off scans ----------------------------------------------------------

    async def run_one_off_scan(self) -> dict[str, int]:
        """Scan queues on an ephemeral page and push only the counts."""
        logger.info("Running one-off queue scan")
        try:
            async with self.session.ephemeral_page() as page:
                counts = await self.scraper.fetch_queue_counts(page)
            if not counts:
                logger.warning("One-off scan returned no queue counts")
                return {}
            await self.sink.publish({"lastUpdated": self._clock(), "reviewCounts": counts})
            logger.info("Manual refresh complete", queues=len(counts))
            return counts
        except Exception as e:
            if is_session_lost_error(e):
                self.session.discard()
            logger.error("Manual refresh failed", error=f"{type(e).__name__}: {e}")
            return {}

    def request_refresh(self) -> None:
        task = asyncio.create_task(self.run_one_off_scan(), name="one-off-scan")
        self._refresh_tasks.add(task)
        task.add_done_callback(self._refresh_tasks.discard)

    def wake(self) -> None:
        """Cut the current poll sleep short so a start/stop shows up on the next tick."""
        self._wake.set()

    # -- supervision ------------------------------------------------------------

    async def _pause(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    async def _sleep_until_next_tick(self, seconds: float) -> None:
        waiters = [
            asyncio.create_task(self._stopping.wait()),
            asyncio.create_task(self._wake.wait()),
        ]
        try:
            await asyncio.wait(waiters, timeout=seconds, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for waiter in waiters:
                waiter.cancel()
            await asyncio.gather(*waiters, return_exceptions=True)
        self._wake.clear()

    async def run_forever(self) -> None:
        logger.info("Tracker loop started", interval_seconds=self.loop_config.poll_interval_seconds)
        if self.behavior.refresh_on_start:
            await self.run_one_off_scan()

        while not self._stopping.is_set():
            try:
                await self.tick()
                self.loop_state = LoopState.READY
                self.last_error = None
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.loop_state = LoopState.ERROR_BACKOFF
                self.last_error = f"{type(e).__name__}: {e}"
                if is_session_lost_error(e):
                    self.session.discard()
                    logger.error("Browser session lost, recreating after backoff", error=self.last_error)
                else:
                    logger.exception("Fatal loop error", error=self.last_error)
                await self._pause(self.loop_config.error_backoff_seconds)
                continue
            await self._sleep_until_next_tick(self.loop_config.poll_interval_seconds)

        logger.info("Tracker loop stopped")

    async def _clear_command(self) -> None:
        """Clear the handled command upstream, retrying until it sticks.

        The next command is not pulled before this succeeds, otherwise the one
        just applied would be delivered again.
        """
        while True:
            try:
                await self.sink.clear_commands()
                return
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning("Command clear failed, retrying", error=f"{type(e).__name__}: {e}")
                if self._stopping.is_set():
                    return
                await self._pause(self.loop_config.error_backoff_seconds)

    async def consume_commands(self) -> None:
        """Apply commands one at a time, clearing each upstream after handling it."""
        while not self._stopping.is_set():
            try:
                async for raw in self.sink.commands():
                    try:
                        await self.processor.apply(raw)
                    except Exception as e:
                        logger.error("Command failed", error=f"{type(e).__name__}: {e}")
                    await self._clear_command()
                    if self._stopping.is_set():
                        break
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("Command stream failed", error=f"{type(e).__name__}: {e}")
                await self._pause(self.loop_config.error_backoff_seconds)

    def stop(self) -> None:
        self._stopping.set()

    async def drain_refreshes(self) -> None:
        for task in list(self._refresh_tasks):
            task.cancel()
        if self._refresh_tasks:
            await asyncio.gather(*self._refresh_tasks, return_exceptions=True)
