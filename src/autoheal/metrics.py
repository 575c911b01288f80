"""Metrics exported by the healer.

The core talks to a ``MetricsSink``, which keeps it usable without a metrics
backend. ``PrometheusMetrics`` is the implementation used by the server: it
owns its registry instead of using the global one, so several healers (and
tests) can live in the same process.
"""

from __future__ import annotations

from typing import Protocol

from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, Counter, Gauge, generate_latest


class MetricsSink(Protocol):
    """Receiver of the healing action metrics."""

    def action_requested(self, action_type: str, rule: str, alert: str) -> None: ...

    def action_started(self, action_type: str, template: str, rule: str) -> None: ...

    def action_completed(self, action_type: str, template: str, rule: str) -> None: ...

    def action_dispatched(self, action_type: str, rule: str, success: bool) -> None: ...


class NullMetrics:
    """Metrics sink that discards everything."""

    def action_requested(self, action_type: str, rule: str, alert: str) -> None:
        pass

    def action_started(self, action_type: str, template: str, rule: str) -> None:
        pass

    def action_completed(self, action_type: str, template: str, rule: str) -> None:
        pass

    def action_dispatched(self, action_type: str, rule: str, success: bool) -> None:
        pass


class PrometheusMetrics:
    """Prometheus implementation of the metrics sink."""

    content_type = CONTENT_TYPE_LATEST

    def __init__(self, registry: CollectorRegistry | None = None):
        self.registry = registry or CollectorRegistry()

        self.actions_requested = Counter(
            "autoheal_actions_requested",
            "Number of requested healing actions (including rate limited)",
            ["type", "rule", "alert"],
            registry=self.registry,
        )
        self.actions_launched = Gauge(
            "autoheal_actions_launched",
            "Number of launched healing actions (including completed)",
            ["type", "template", "rule", "status"],
            registry=self.registry,
        )
        self.actions_dispatched = Counter(
            "autoheal_actions_dispatched",
            "Number of healing actions handed to an action runner, by result",
            ["type", "rule", "result"],
            registry=self.registry,
        )

    def action_requested(self, action_type: str, rule: str, alert: str) -> None:
        self.actions_requested.labels(type=action_type, rule=rule, alert=alert).inc()

    def action_started(self, action_type: str, template: str, rule: str) -> None:
        self.actions_launched.labels(
            type=action_type, template=template, rule=rule, status="running"
        ).inc()

    def action_completed(self, action_type: str, template: str, rule: str) -> None:
        self.actions_launched.labels(
            type=action_type, template=template, rule=rule, status="running"
        ).dec()
        self.actions_launched.labels(
            type=action_type, template=template, rule=rule, status="completed"
        ).inc()

    def action_dispatched(self, action_type: str, rule: str, success: bool) -> None:
        result = "success" if success else "failure"
        self.actions_dispatched.labels(type=action_type, rule=rule, result=result).inc()

    def exposition(self) -> bytes:
        """Metrics in the Prometheus text format."""
        return generate_latest(self.registry)
