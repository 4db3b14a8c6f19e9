"""Per-agent counter tracking: idle detection, hourly rollover and session deltas."""

from __future__ import annotations

from datetime import tzinfo

import structlog

from ..clock import clock_time
from ..state import AgentCounterState, AgentMetrics, IdleState, Severity, TrackerState
from .log_buffer import LogBuffer


logger = structlog.get_logger(__name__)

MS_PER_MINUTE = 60_000


class TrackingEngine:
    """Derives agent metrics from monotonically increasing raw counts.

    All per-agent state lives in ``TrackerState.agents`` and is created from the
    first reading after a (re)start; nothing is assumed to be zero.
    """

    def __init__(
        self,
        state: TrackerState,
        log_buffer: LogBuffer,
        tz: tzinfo,
        idle_threshold_minutes: int = 15,
        low_performance_threshold: int = 100,
        permission_refresh_ticks: int = 60,
    ):
        self.state = state
        self.log_buffer = log_buffer
        self.tz = tz
        self.idle_threshold_minutes = idle_threshold_minutes
        self.low_performance_threshold = low_performance_threshold
        self.permission_refresh_ticks = permission_refresh_ticks

    def reset(self) -> None:
        """Discard all agent counters; they re-initialize on the next reading."""
        self.state.agents.clear()
        self.state.permission_ticks = 0

    def observe(self, agent_id: str, raw_count: int, now: int) -> AgentMetrics:
        raw_count = max(0, int(raw_count))
        agent = self.state.agents.get(agent_id)
        if agent is None:
            agent = AgentCounterState(
                total_ads=raw_count,
                session_start_count=raw_count,
                hour_start_count=raw_count,
                last_active_at=now,
                idle=IdleState(is_idle=False, idle_since=now),
            )
            self.state.agents[agent_id] = agent
            logger.debug("Initialized agent counters", agent=agent_id, total=raw_count)

        if raw_count > agent.total_ads:
            if agent.idle.is_idle:
                idle_mins = (now - agent.idle.idle_since) // MS_PER_MINUTE
                window = f"{clock_time(agent.idle.idle_since, self.tz)} - {clock_time(now, self.tz)}"
                self.log_buffer.add(
                    agent_id, f"✅ Back after {idle_mins}m idle ({window})", Severity.SUCCESS, at_ms=now
                )
                agent.idle.is_idle = False
                logger.info("Agent back from idle", agent=agent_id, idle_minutes=idle_mins)
            agent.last_active_at = now
            agent.idle.idle_since = now
        else:
            inactive_mins = (now - agent.last_active_at) // MS_PER_MINUTE
            if inactive_mins >= self.idle_threshold_minutes and not agent.idle.is_idle:
                agent.idle.is_idle = True
                agent.idle.idle_since = agent.last_active_at
                self.log_buffer.add(agent_id, f"⚠️ Is inactive for {inactive_mins} mins.", Severity.ALERT, at_ms=now)
                logger.info("Agent marked idle", agent=agent_id, inactive_minutes=inactive_mins)

        agent.total_ads = raw_count
        return self.metrics(agent_id)

    def roll_hour(self, bucket: int, now: int) -> bool:
        """Roll hourly baselines when the wall-clock hour changed.

        Returns True when a rollover happened. The first transition after a
        restart only seeds the baselines.
        """
        session = self.state.session
        if bucket == session.current_hour_bucket:
            return False

        if session.current_hour_bucket == -1:
            for agent in self.state.agents.values():
                agent.hour_start_count = agent.total_ads
        else:
            for agent_id, agent in self.state.agents.items():
                delta = max(0, agent.total_ads - agent.hour_start_count)
                agent.last_hour_delta = delta
                agent.hour_start_count = agent.total_ads
                if delta < self.low_performance_threshold:
                    self.log_buffer.add(
                        agent_id, f"📉 Low Performance: Only {delta} ads last hour.", Severity.WARNING, at_ms=now
                    )
            logger.info("Hourly rollover", previous_bucket=session.current_hour_bucket, bucket=bucket)

        session.current_hour_bucket = bucket
        return True

    def permissions_due(self) -> bool:
        """True when permissions should be re-read this tick.

        The counter only restarts through ``mark_permissions_refreshed``, so a
        refresh that did not complete is retried on the next tick.
        """
        if self.state.permission_ticks == 0 or self.state.permission_ticks >= self.permission_refresh_ticks:
            return True
        self.state.permission_ticks += 1
        return False

    def mark_permissions_refreshed(self) -> None:
        self.state.permission_ticks = 1

    def set_permissions(self, agent_id: str, permissions: str) -> None:
        self.state.permissions[agent_id] = permissions

    def metrics(self, agent_id: str) -> AgentMetrics | None:
        agent = self.state.agents.get(agent_id)
        if agent is None:
            return None
        return AgentMetrics(
            total_ads=agent.total_ads,
            this_hour_ads=max(0, agent.total_ads - agent.hour_start_count),
            last_hour_ads=agent.last_hour_delta,
            cumulative_new_ads=max(0, agent.total_ads - agent.session_start_count),
            last_active_time=agent.last_active_at,
            permissions=self.state.permissions.get(agent_id, "-"),
        )

    def all_metrics(self) -> dict[str, AgentMetrics]:
        out: dict[str, AgentMetrics] = {}
        for agent_id in self.state.agents:
            metrics = self.metrics(agent_id)
            if metrics is not None:
                out[agent_id] = metrics
        return out
