"""FastAPI health endpoints for liveness and readiness probes."""

from __future__ import annotations

import time
from typing import TYPE_CHECKING

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from .models import AgentStatus, HealthStatus

if TYPE_CHECKING:
    from .agent import MailAgent


def create_health_app(agent: MailAgent) -> FastAPI:
    """Build a minimal FastAPI app with ``/health`` and ``/ready`` routes.

    ``/health`` reports the agent status plus a per-mailbox snapshot and
    answers 503 once the agent is degraded or shutting down. ``/ready``
    is 200 only while the agent is running.
    """
    app = FastAPI(title="mailagent health", docs_url=None, redoc_url=None)

    @app.get("/health")
    async def health() -> JSONResponse:
        status = agent.status
        payload = HealthStatus(
            status=status,
            uptime_seconds=time.monotonic() - agent.start_time,
            details=agent.health_check(),
        )
        code = 200 if status in (AgentStatus.RUNNING, AgentStatus.STARTING) else 503
        return JSONResponse(content=payload.model_dump(mode="json"), status_code=code)

    @app.get("/ready")
    async def ready() -> JSONResponse:
        is_ready = agent.status == AgentStatus.RUNNING
        return JSONResponse(
            content={"ready": is_ready},
            status_code=200 if is_ready else 503,
        )

    return app
