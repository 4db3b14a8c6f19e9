from __future__ import annotations

import asyncio
import copy
from typing import Any, AsyncIterator, Protocol


class StateSink(Protocol):
    """Where status snapshots go and where control commands come from."""

    async def publish(self, update: dict[str, Any]) -> None:
        """Merge ``update`` into the published status (top-level keys replace)."""

    def commands(self) -> AsyncIterator[Any]:
        """Yield pending commands; the consumer clears each one after handling it."""

    async def clear_commands(self) -> None:
        ...

    async def send_command(self, command: dict[str, Any]) -> None:
        ...

    async def aclose(self) -> None:
        ...


class InMemoryStateSink:
    """Process-local sink for dry runs and tests."""

    def __init__(self) -> None:
        self.status: dict[str, Any] = {}
        self.updates: list[dict[str, Any]] = []
        self.pending_command: Any = None
        self.cleared = 0
        self._queue: asyncio.Queue[Any] = asyncio.Queue()

    async def publish(self, update: dict[str, Any]) -> None:
        update = copy.deepcopy(update)
        self.updates.append(update)
        self.status.update(update)

    async def send_command(self, command: dict[str, Any]) -> None:
        await self._queue.put(command)

    async def commands(self) -> AsyncIterator[Any]:
        while True:
            command = await self._queue.get()
            self.pending_command = command
            yield command

    async def clear_commands(self) -> None:
        self.pending_command = None
        self.cleared += 1

    async def aclose(self) -> None:
        return None
