"""Scheduler module for the supervised tracking loop."""

from .main_loop import LoopState, TrackerLoop
from .service import TrackerService

__all__ = ["LoopState", "TrackerLoop", "TrackerService"]
