"""Periodic liveness heartbeat to an external monitoring URL."""

from __future__ import annotations

import asyncio

import httpx
import structlog

from .config import HeartbeatConfig, RetryConfig
from .retry import with_retry

logger = structlog.get_logger()


class HeartbeatSender:
    """GETs the configured URL once at start and then every interval.

    Transient failures are retried with backoff; a heartbeat that still
    fails is logged and the schedule continues.
    """

    def __init__(self, config: HeartbeatConfig, retry_config: RetryConfig) -> None:
        self._config = config
        self._retry_config = retry_config
        self.beats_sent: int = 0

    @property
    def enabled(self) -> bool:
        return (
            self._config.url.startswith(("http://", "https://"))
            and self._config.interval_seconds is not None
        )

    async def run(self, shutdown_event: asyncio.Event) -> None:
        if not self.enabled:
            logger.warning("heartbeat_not_configured")
            return

        assert self._config.interval_seconds is not None
        async with httpx.AsyncClient(timeout=httpx.Timeout(self._config.timeout_seconds)) as client:
            while True:
                await self._beat(client)
                try:
                    await asyncio.wait_for(
                        shutdown_event.wait(),
                        timeout=self._config.interval_seconds,
                    )
                except TimeoutError:
                    continue
                break
        logger.debug("heartbeat_stopped")

    async def _beat(self, client: httpx.AsyncClient) -> None:
        @with_retry(self._retry_config)
        async def _send() -> None:
            response = await client.get(self._config.url)
            response.raise_for_status()

        logger.debug("heartbeat_sending", url=self._config.url)
        try:
            await _send()
        except httpx.HTTPError as exc:
            logger.error("heartbeat_failed", url=self._config.url, error=str(exc))
            return
        self.beats_sent += 1
