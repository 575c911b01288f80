"""FastAPI server that receives alert manager notifications."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from fastapi import FastAPI, HTTPException
from fastapi.responses import Response
from pydantic import BaseModel

from autoheal.models import AlertmanagerMessage, action_type

if TYPE_CHECKING:
    from autoheal.core.healer import Healer
    from autoheal.metrics import PrometheusMetrics


# Response Models
class AlertsResponse(BaseModel):
    status: str
    alerts: int


class HealthResponse(BaseModel):
    status: str
    version: str
    rules: int = 0
    active_jobs: int = 0
    remembered_actions: int = 0
    queued_alerts: int = 0


class RuleSummary(BaseModel):
    name: str
    namespace: str
    version: str
    action: str | None = None
    labels: dict[str, str] = {}
    annotations: dict[str, str] = {}


class RuleListResponse(BaseModel):
    rules: list[RuleSummary]
    total: int


def create_app(healer: "Healer", metrics: "PrometheusMetrics | None" = None) -> FastAPI:
    """Create the FastAPI application.

    Args:
        healer: Healer that receives the alerts.
        metrics: Metrics exported by the ``/metrics`` endpoint, if any.
    """
    from autoheal import __version__

    app = FastAPI(
        title="Autoheal",
        description="Runs healing actions in response to alerts",
        version=__version__,
    )

    @app.post("/alerts", response_model=AlertsResponse)
    async def receive_alerts(message: AlertmanagerMessage):
        """Receive a notification from the alert manager."""
        count = healer.handle_message(message)
        return AlertsResponse(status="ok", alerts=count)

    @app.get("/metrics")
    async def prometheus_metrics():
        """Get Prometheus-format metrics."""
        if metrics is None:
            raise HTTPException(status_code=404, detail="Metrics are disabled")
        return Response(content=metrics.exposition(), media_type=metrics.content_type)

    @app.get("/health", response_model=HealthResponse)
    async def health():
        """Get healer health status."""
        status = healer.status()
        return HealthResponse(
            status="healthy" if status["running"] else "starting",
            version=__version__,
            rules=status["rules"],
            active_jobs=status["active_jobs"],
            remembered_actions=status["remembered_actions"],
            queued_alerts=status["queued_alerts"],
        )

    @app.get("/api/v1/rules", response_model=RuleListResponse)
    async def list_rules():
        """List the healing rules in effect."""
        rules = sorted(healer.rules.snapshot(), key=lambda r: r.name)
        summaries = [
            RuleSummary(
                name=rule.name,
                namespace=rule.namespace,
                version=rule.version,
                action=action_type(rule.action) if rule.action is not None else None,
                labels=rule.labels,
                annotations=rule.annotations,
            )
            for rule in rules
        ]
        return RuleListResponse(rules=summaries, total=len(summaries))

    return app


async def run_server(
    app: FastAPI,
    host: str = "0.0.0.0",
    port: int = 9099,
    stop_event: asyncio.Event | None = None,
) -> None:
    """Run the API server until it exits or the stop event is set."""
    import uvicorn

    config = uvicorn.Config(
        app,
        host=host,
        port=port,
        log_level="warning",  # Reduce uvicorn noise
    )
    server = uvicorn.Server(config)

    async def watch_stop() -> None:
        await stop_event.wait()
        server.should_exit = True

    watcher = asyncio.create_task(watch_stop()) if stop_event is not None else None
    try:
        await server.serve()
    finally:
        if watcher is not None:
            watcher.cancel()
