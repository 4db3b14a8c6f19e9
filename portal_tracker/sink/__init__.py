"""Status sink module: snapshot publishing and the inbound command stream."""

from .base import InMemoryStateSink, StateSink
from .firebase import FirebaseStateSink

__all__ = ["InMemoryStateSink", "StateSink", "FirebaseStateSink", "create_sink"]


def create_sink(config) -> StateSink:
    """Build the sink selected by ``config.sink.kind``."""
    if config.sink.kind == "memory":
        return InMemoryStateSink()
    if config.sink.kind == "firebase":
        return FirebaseStateSink(config.sink, poll_interval_seconds=config.loop.command_poll_interval_seconds)
    raise ValueError(f"Unknown sink kind: {config.sink.kind}")
