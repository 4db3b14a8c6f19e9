"""Firebase Realtime Database sink over the REST API."""

from __future__ import annotations

import asyncio
from typing import Any, AsyncIterator

import httpx
import structlog

from ..config import SinkConfig


logger = structlog.get_logger(__name__)


class FirebaseStateSink:
    """Publishes with PATCH (merge update) and polls the commands node.

    A command stays in the database until ``clear_commands`` writes ``null``
    over it, so each one is handed out at most once per consumer.
    """

    def __init__(
        self,
        config: SinkConfig,
        client: httpx.AsyncClient | None = None,
        poll_interval_seconds: float = 2.0,
    ):
        if not config.database_url:
            raise ValueError("sink.database_url is required for the firebase sink")
        self.config = config
        self.poll_interval_seconds = poll_interval_seconds
        self._client = client or httpx.AsyncClient(timeout=config.request_timeout_seconds)
        self._owns_client = client is None

    def _url(self, path: str) -> str:
        return f"{self.config.database_url.rstrip('/')}/{path.strip('/')}.json"

    @property
    def _params(self) -> dict[str, str]:
        return {"auth": self.config.auth_token} if self.config.auth_token else {}

    async def publish(self, update: dict[str, Any]) -> None:
        resp = await self._client.patch(self._url(self.config.status_path), json=update, params=self._params)
        resp.raise_for_status()

    async def fetch_command(self) -> Any:
        resp = await self._client.get(self._url(self.config.commands_path), params=self._params)
        resp.raise_for_status()
        return resp.json()

    async def commands(self) -> AsyncIterator[Any]:
        while True:
            try:
                command = await self.fetch_command()
            except (httpx.HTTPError, ValueError) as e:
                logger.warning("Command poll failed", error=f"{type(e).__name__}: {e}")
                command = None
            if command is not None:
                yield command
                continue
            await asyncio.sleep(self.poll_interval_seconds)

    async def clear_commands(self) -> None:
        # json=None would send an empty body; Firebase deletes a node on a literal null
        resp = await self._client.put(
            self._url(self.config.commands_path),
            content=b"null",
            headers={"Content-Type": "application/json"},
            params=self._params,
        )
        resp.raise_for_status()

    async def send_command(self, command: dict[str, Any]) -> None:
        resp = await self._client.put(self._url(self.config.commands_path), json=command, params=self._params)
        resp.raise_for_status()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
