"""Tracking module: agent counters, queue alerts and the session log."""

from .alerts import AlertEvaluation, AlertStateMachine, classify_queues
from .engine import TrackingEngine
from .log_buffer import LogBuffer

__all__ = ["AlertEvaluation", "AlertStateMachine", "classify_queues", "TrackingEngine", "LogBuffer"]
