from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

import pytest

from portal_tracker.config import AgentConfig, TrackerConfig
from portal_tracker.scheduler.service import TrackerService
from portal_tracker.sink.base import InMemoryStateSink


T0 = int(datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc).timestamp() * 1000)
MINUTE = 60_000


class FakeClock:
    def __init__(self, now: int = T0) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, minutes: float) -> int:
        self.now += int(minutes * MINUTE)
        return self.now


class FakeScraper:
    def __init__(self) -> None:
        self.queue_counts: dict[str, int] = {}
        self.totals: dict[str, int | None] = {}
        self.permissions: dict[str, str] = {}
        self.agent_calls: list[str] = []
        self.permission_calls: list[str] = []
        self.queue_calls = 0
        self.jitters = 0
        self.queue_error: Exception | None = None
        self.permission_error: Exception | None = None
        self.before_agent_result: Callable[[str], Awaitable[None]] | None = None

    async def fetch_queue_counts(self, page: Any) -> dict[str, int]:
        self.queue_calls += 1
        if self.queue_error is not None:
            raise self.queue_error
        return dict(self.queue_counts)

    async def fetch_agent_total(self, page: Any, agent_id: str) -> int | None:
        self.agent_calls.append(agent_id)
        if self.before_agent_result is not None:
            await self.before_agent_result(agent_id)
        return self.totals.get(agent_id)

    async def fetch_permissions(self, page: Any, agent_id: str) -> str:
        self.permission_calls.append(agent_id)
        if self.permission_error is not None:
            raise self.permission_error
        return self.permissions.get(agent_id, "G")

    async def jitter(self, page: Any) -> None:
        self.jitters += 1

    async def check_login(self, page: Any) -> bool:
        return True


class FakeSession:
    def __init__(self) -> None:
        self.ready_calls = 0
        self.discarded = 0
        self.ephemeral_pages = 0
        self.closed = False
        self.ready_error: Exception | None = None

    async def ensure_ready(self) -> str:
        self.ready_calls += 1
        if self.ready_error is not None:
            raise self.ready_error
        return "context"

    async def ensure_page(self, context: Any = None) -> str:
        return "working-page"

    @asynccontextmanager
    async def ephemeral_page(self):
        self.ephemeral_pages += 1
        yield "ephemeral-page"

    def discard(self) -> None:
        self.discarded += 1

    async def close(self) -> None:
        self.closed = True


def make_config(**overrides: Any) -> TrackerConfig:
    data: dict[str, Any] = {
        "agents": {
            "alice": AgentConfig(id="11"),
            "bob": AgentConfig(id="22"),
        },
        "tracking": {"timezone": "UTC"},
        "sink": {"kind": "memory"},
        "loop": {"poll_interval_seconds": 0.01, "error_backoff_seconds": 0.01, "command_poll_interval_seconds": 0.01},
    }
    data.update(overrides)
    return TrackerConfig(**data)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def scraper() -> FakeScraper:
    return FakeScraper()


@pytest.fixture
def session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def sink() -> InMemoryStateSink:
    return InMemoryStateSink()


@pytest.fixture
def make_service(clock: FakeClock, scraper: FakeScraper, session: FakeSession, sink: InMemoryStateSink):
    def _make(**config_overrides: Any) -> TrackerService:
        return TrackerService(
            make_config(**config_overrides),
            sink=sink,
            session=session,
            scraper=scraper,
            clock=clock,
        )

    return _make
