"""Queue backlog severity with edge-triggered logging."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping

import structlog

from ..config import DEFAULT_QUEUE_CODES, DEFAULT_RED_THRESHOLDS, DEFAULT_YELLOW_THRESHOLDS
from ..state import SYSTEM_SUBJECT, AlertLevel, LogEntry, Severity, TrackerState
from .log_buffer import LogBuffer


logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class AlertEvaluation:
    level: AlertLevel
    previous_level: AlertLevel
    triggering_queues: tuple[str, ...]
    log_entry: LogEntry | None = None

    @property
    def changed(self) -> bool:
        return self.level != self.previous_level


def classify_queues(
    counts: Mapping[str, int],
    red_thresholds: Mapping[str, int] = DEFAULT_RED_THRESHOLDS,
    yellow_thresholds: Mapping[str, int] = DEFAULT_YELLOW_THRESHOLDS,
    queue_codes: Mapping[str, str] = DEFAULT_QUEUE_CODES,
) -> tuple[AlertLevel, tuple[str, ...]]:
    """Pure level computation: RED beats YELLOW beats NORMAL.

    A queue is RED when its count is strictly greater than its red threshold.
    YELLOW applies only to queues that are not already RED, at or above the
    yellow threshold.
    """
    red_queues: list[str] = []
    for queue, limit in red_thresholds.items():
        if (counts.get(queue) or 0) > limit:
            red_queues.append(queue_codes.get(queue, queue))

    if red_queues:
        return AlertLevel.RED, tuple(red_queues)

    for queue, limit in yellow_thresholds.items():
        if (counts.get(queue) or 0) >= limit:
            return AlertLevel.YELLOW, ()

    return AlertLevel.NORMAL, ()


class AlertStateMachine:
    """Compares each evaluated level with the persisted ``last_alert_level``."""

    def __init__(
        self,
        state: TrackerState,
        log_buffer: LogBuffer,
        red_thresholds: Mapping[str, int] | None = None,
        yellow_thresholds: Mapping[str, int] | None = None,
        queue_codes: Mapping[str, str] | None = None,
    ):
        self.state = state
        self.log_buffer = log_buffer
        self.red_thresholds = dict(red_thresholds or DEFAULT_RED_THRESHOLDS)
        self.yellow_thresholds = dict(yellow_thresholds or DEFAULT_YELLOW_THRESHOLDS)
        self.queue_codes = dict(queue_codes or DEFAULT_QUEUE_CODES)

    def reset(self) -> None:
        self.state.last_alert_level = AlertLevel.NORMAL

    def evaluate(self, snapshot: Mapping[str, int]) -> AlertEvaluation:
        level, triggering = classify_queues(snapshot, self.red_thresholds, self.yellow_thresholds, self.queue_codes)
        previous = self.state.last_alert_level

        entry = None
        if level != previous:
            if level is AlertLevel.RED:
                entry = self.log_buffer.add(SYSTEM_SUBJECT, f"Need to clear {', '.join(triggering)}", Severity.ALERT)
            elif level is AlertLevel.YELLOW:
                entry = self.log_buffer.add(SYSTEM_SUBJECT, "Need to control the portal", Severity.WARNING)
            else:
                entry = self.log_buffer.add(SYSTEM_SUBJECT, "Queues returned to normal", Severity.SUCCESS)
            logger.info("Queue alert level changed", previous=previous.value, level=level.value,
                        queues=list(triggering))
            self.state.last_alert_level = level

        return AlertEvaluation(level=level, previous_level=previous, triggering_queues=triggering, log_entry=entry)
