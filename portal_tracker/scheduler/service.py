"""Wires the tracker components together and owns their asyncio tasks."""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Optional

import structlog

from ..browser.scraper import PortalScraper
from ..browser.session_manager import SessionManager
from ..clock import load_timezone, now_ms
from ..commands.processor import CommandProcessor
from ..config import TrackerConfig, get_config
from ..notifications.telegram import TelegramNotifier
from ..sink import create_sink
from ..state import TrackerState
from ..tracking.alerts import AlertStateMachine
from ..tracking.engine import TrackingEngine
from ..tracking.log_buffer import LogBuffer
from .main_loop import TrackerLoop


logger = structlog.get_logger(__name__)


class TrackerService:
    """Starts and stops the poll loop and the command consumer."""

    def __init__(
        self,
        config: Optional[TrackerConfig] = None,
        sink=None,
        session=None,
        scraper=None,
        notifier=None,
        clock: Callable[[], int] = now_ms,
    ):
        self.config = config or get_config()
        self.tz = load_timezone(self.config.tracking.timezone)
        self.state = TrackerState()
        self.lock = asyncio.Lock()

        tracking = self.config.tracking
        self.log_buffer = LogBuffer(self.tz, capacity=tracking.log_capacity, clock=clock)
        self.engine = TrackingEngine(
            self.state,
            self.log_buffer,
            self.tz,
            idle_threshold_minutes=tracking.idle_threshold_minutes,
            low_performance_threshold=tracking.low_performance_threshold,
            permission_refresh_ticks=tracking.permission_refresh_ticks,
        )
        self.alerts = AlertStateMachine(
            self.state,
            self.log_buffer,
            red_thresholds=self.config.alerts.red_thresholds,
            yellow_thresholds=self.config.alerts.yellow_thresholds,
            queue_codes=self.config.alerts.queue_codes,
        )

        self.scraper = scraper or PortalScraper(self.config.portal, self.config.agents)
        self.session = session or SessionManager(self.config.browser, on_page_opened=self.scraper.check_login)
        self.sink = sink or create_sink(self.config)
        if notifier is None and self.config.telegram.enabled:
            notifier = TelegramNotifier(self.config.telegram)
        self.notifier = notifier

        self.loop = TrackerLoop(
            self.state,
            self.lock,
            self.session,
            self.scraper,
            self.sink,
            self.engine,
            self.alerts,
            self.log_buffer,
            self.tz,
            loop_config=self.config.loop,
            behavior=self.config.behavior,
            notifier=self.notifier,
            clock=clock,
        )
        self.processor = CommandProcessor(
            self.state,
            self.engine,
            self.alerts,
            self.log_buffer,
            self.sink,
            roster=list(self.config.agents),
            lock=self.lock,
            request_refresh=self.loop.request_refresh,
            request_tick=self.loop.wake,
        )
        self.loop.processor = self.processor

        self._tasks: list[asyncio.Task] = []
        self.running = False

    async def start(self):
        """Start the poll loop and command consumer tasks."""
        if self.running:
            logger.warning("Tracker service already running")
            return

        self._tasks = [
            asyncio.create_task(self.loop.run_forever(), name="tracker-loop"),
            asyncio.create_task(self.loop.consume_commands(), name="tracker-commands"),
        ]
        self.running = True
        logger.info("Tracker service started", agents=len(self.config.agents))

    async def stop(self, grace_seconds: float = 5.0):
        """Signal shutdown, cancel what does not finish in time and release resources."""
        if not self.running:
            return

        self.loop.stop()
        _, pending = await asyncio.wait(self._tasks, timeout=grace_seconds)
        for task in pending:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        await self.loop.drain_refreshes()

        await self.session.close()
        await self.sink.aclose()
        if self.notifier is not None:
            await self.notifier.aclose()

        self._tasks = []
        self.running = False
        logger.info("Tracker service stopped")

    async def wait(self):
        """Block until the service tasks end."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    def get_status(self) -> dict[str, Any]:
        session = self.state.session
        return {
            "service_running": self.running,
            "loop_state": self.loop.loop_state.value,
            "is_running": session.is_running,
            "selected_agents": list(session.selected_agents),
            "alert_level": self.state.last_alert_level.value,
            "tick_count": self.loop.tick_count,
            "last_tick_at": self.loop.last_tick_at,
            "last_error": self.loop.last_error,
            "log_entries": len(self.log_buffer),
        }
