"""Applies control commands to the shared tracker state."""

from __future__ import annotations

import asyncio
import inspect
from typing import Any, Callable, Literal, Optional, Sequence

import structlog
from pydantic import BaseModel, ValidationError

from ..state import SYSTEM_SUBJECT, Severity, TrackerState
from ..sink.base import StateSink
from ..tracking.alerts import AlertStateMachine
from ..tracking.engine import TrackingEngine
from ..tracking.log_buffer import LogBuffer


logger = structlog.get_logger(__name__)


class Command(BaseModel):
    action: Literal["start", "stop", "refresh", "clearLogs"]
    payload: Optional[list[str]] = None


def parse_command(raw: Any) -> Command | None:
    """Validate an inbound command; anything malformed yields None."""
    if not isinstance(raw, dict):
        return None
    try:
        return Command(**raw)
    except (ValidationError, TypeError):
        return None


class CommandProcessor:
    """Handles one command at a time.

    State changes happen under ``lock``, the same lock the poll loop takes
    around its aggregation steps. Follow-up I/O (publishing the cleared log,
    starting a refresh scan, waking the loop) runs after the lock is released.
    """

    def __init__(
        self,
        state: TrackerState,
        engine: TrackingEngine,
        alerts: AlertStateMachine,
        log_buffer: LogBuffer,
        sink: StateSink,
        roster: Sequence[str],
        lock: asyncio.Lock | None = None,
        request_refresh: Callable[[], Any] | None = None,
        request_tick: Callable[[], None] | None = None,
    ):
        self.state = state
        self.engine = engine
        self.alerts = alerts
        self.log_buffer = log_buffer
        self.sink = sink
        self.roster = list(roster)
        self.lock = lock or asyncio.Lock()
        self.request_refresh = request_refresh
        self.request_tick = request_tick

    async def apply(self, raw: Any) -> Command | None:
        command = parse_command(raw)
        if command is None:
            logger.warning("Ignoring malformed command", command=repr(raw)[:200])
            return None

        async with self.lock:
            if command.action == "start":
                self._start(command.payload)
            elif command.action == "stop":
                self._stop()
            elif command.action == "clearLogs":
                self.log_buffer.clear()
                logger.info("Logs cleared")

        if command.action in ("start", "stop"):
            if self.request_tick is not None:
                self.request_tick()
        elif command.action == "refresh":
            logger.info("Refresh requested")
            if self.request_refresh is not None:
                result = self.request_refresh()
                if inspect.isawaitable(result):
                    await result
        elif command.action == "clearLogs":
            await self.sink.publish({"sessionLogs": []})
        return command

    def _select_agents(self, payload: list[str] | None) -> list[str]:
        if not payload:
            return list(self.roster)
        known = [agent for agent in dict.fromkeys(payload) if agent in self.roster]
        unknown = [agent for agent in payload if agent not in self.roster]
        if unknown:
            logger.warning("Ignoring agents missing from roster", agents=unknown)
        return known or list(self.roster)

    def _start(self, payload: list[str] | None) -> None:
        session = self.state.session
        session.is_running = True
        session.selected_agents = self._select_agents(payload)
        session.current_hour_bucket = -1
        self.engine.reset()
        self.alerts.reset()
        self.state.generation += 1
        self.log_buffer.clear()
        self.log_buffer.add(SYSTEM_SUBJECT, "Tracking Started", Severity.INFO)
        logger.info("Tracking started", agents=session.selected_agents)

    def _stop(self) -> None:
        session = self.state.session
        session.is_running = False
        session.selected_agents = []
        self.state.generation += 1
        self.log_buffer.add(SYSTEM_SUBJECT, "Tracking Stopped", Severity.INFO)
        logger.info("Tracking stopped")
