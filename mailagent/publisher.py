"""Async HTTP client publishing operations to the downstream API."""

from __future__ import annotations

import httpx
import structlog

from .config import PublishConfig
from .interface import OperationPublisher
from .models import Operation, Site

logger = structlog.get_logger()

OPERATION_PATH = "/interfaces/public/operation"


class OperationApiClient(OperationPublisher):
    """Posts :class:`Operation` payloads with the site's API key.

    Failures are logged and reported as ``False``; nothing is retried,
    so a failing API never stalls the mail stream.
    """

    def __init__(self, config: PublishConfig) -> None:
        self._config = config
        self._client: httpx.AsyncClient | None = None

    async def start(self) -> None:
        self._client = httpx.AsyncClient(
            base_url=self._config.base_url,
            timeout=httpx.Timeout(self._config.timeout_seconds),
        )
        logger.info("publisher_started", base_url=self._config.base_url)

    async def stop(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            logger.info("publisher_stopped")

    async def publish(self, operation: Operation, site: Site) -> bool:
        if self._client is None:
            raise AssertionError("Client not started")

        api_key = site.api_key.get_secret_value()
        if not api_key.strip():
            logger.warning("operation_not_published", site=site.name, reason="missing_api_key")
            return False

        try:
            response = await self._client.post(
                OPERATION_PATH,
                params={"updateStrategy": "byNumber"},
                content=operation.model_dump_json(by_alias=True),
                headers={
                    "Authorization": f"Bearer {api_key}",
                    "Content-Type": "application/json",
                },
            )
        except httpx.HTTPError as exc:
            logger.error("operation_publish_failed", site=site.name, error=str(exc))
            return False

        if response.is_error:
            logger.error(
                "operation_publish_failed",
                site=site.name,
                status_code=response.status_code,
                content=response.text,
            )
            return False

        logger.debug(
            "operation_published",
            site=site.name,
            number=operation.number,
            status_code=response.status_code,
        )
        return True
