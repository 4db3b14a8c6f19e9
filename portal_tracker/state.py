"""Shared tracker state owned by the tracker service."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class AlertLevel(str, Enum):
    NORMAL = "NORMAL"
    YELLOW = "YELLOW"
    RED = "RED"


class Severity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ALERT = "alert"
    SUCCESS = "success"


SYSTEM_SUBJECT = "SYSTEM"


@dataclass(frozen=True)
class LogEntry:
    time: str
    subject: str
    message: str
    severity: Severity

    def to_dict(self) -> dict[str, Any]:
        return {"time": self.time, "agent": self.subject, "msg": self.message, "type": self.severity.value}


@dataclass
class IdleState:
    is_idle: bool
    idle_since: int


@dataclass
class AgentCounterState:
    """Counters of one agent, lazily created from its first successful reading."""

    total_ads: int
    session_start_count: int
    hour_start_count: int
    last_active_at: int
    idle: IdleState
    last_hour_delta: int = 0


@dataclass(frozen=True)
class AgentMetrics:
    total_ads: int
    this_hour_ads: int
    last_hour_ads: int
    cumulative_new_ads: int
    last_active_time: int
    permissions: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalAds": self.total_ads,
            "thisHourAds": self.this_hour_ads,
            "lastHourAds": self.last_hour_ads,
            "cumulativeNewAds": self.cumulative_new_ads,
            "lastActiveTime": self.last_active_time,
            "permissions": self.permissions,
        }


@dataclass
class SessionState:
    is_running: bool = False
    selected_agents: list[str] = field(default_factory=list)
    current_hour_bucket: int = -1


@dataclass
class TrackerState:
    """Everything the commands, the engine and the loop share.

    ``generation`` changes on every start/stop so that a scrape started under a
    previous session can be recognised and dropped.
    """

    session: SessionState = field(default_factory=SessionState)
    agents: dict[str, AgentCounterState] = field(default_factory=dict)
    permissions: dict[str, str] = field(default_factory=dict)
    last_alert_level: AlertLevel = AlertLevel.NORMAL
    review_counts: dict[str, int] = field(default_factory=dict)
    permission_ticks: int = 0
    generation: int = 0
