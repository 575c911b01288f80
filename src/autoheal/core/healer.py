"""The healer: wires the rule store, the dispatcher and the workers together.

Alerts received by the HTTP server and rule changes loaded from the
configuration are put in work queues. Two workers consume them, and a third
task polls the status of the AWX jobs launched so far.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Iterable

from loguru import logger

from autoheal.core.dispatcher import Dispatcher
from autoheal.core.memory import ShortTermMemory
from autoheal.core.poller import ActiveJobPoller, ActiveJobs
from autoheal.core.rules import RuleStore
from autoheal.core.workqueue import WorkQueue
from autoheal.metrics import MetricsSink, NullMetrics
from autoheal.models import Alert, AlertmanagerMessage, AutohealConfig, ChangeType, HealingRule, RuleChange

if TYPE_CHECKING:
    from autoheal.runners.base import ActionRunner, JobStatusQuerier

# Failed items are retried this many times before they are dropped.
MAX_REQUEUES = 15


@dataclass(frozen=True)
class KeepRules:
    """Rules queue item that deletes the stored rules not named in the set."""

    names: frozenset[str]


class Healer:
    """Orchestrates the processing of alerts and rule changes."""

    def __init__(
        self,
        runners: dict[type, "ActionRunner"],
        querier: "JobStatusQuerier | None" = None,
        rules: Iterable[HealingRule] = (),
        throttling_interval: float = 3600.0,
        job_status_interval: float = 300.0,
        metrics: MetricsSink | None = None,
        active_jobs: ActiveJobs | None = None,
        max_requeues: int = MAX_REQUEUES,
    ):
        """Initialize the healer.

        Args:
            runners: Map of action class to the runner that executes it.
            querier: Source of the status of AWX jobs, no poller runs without it.
            rules: Rules loaded when the healer starts.
            throttling_interval: Seconds during which an executed action is not repeated.
            job_status_interval: Seconds between checks of the active AWX jobs.
            metrics: Metrics sink.
            active_jobs: Registry of active AWX jobs, shared with the AWX runner.
            max_requeues: Times a failed item is retried before it's dropped.
        """
        self.metrics = metrics or NullMetrics()
        self.rules = RuleStore()
        self.memory = ShortTermMemory(throttling_interval)
        self.active_jobs = active_jobs if active_jobs is not None else ActiveJobs()
        self.rules_queue = WorkQueue("rules")
        self.alerts_queue = WorkQueue("alerts")
        self.dispatcher = Dispatcher(self.rules, self.memory, runners, self.metrics)
        self.poller = (
            ActiveJobPoller(self.active_jobs, querier, self.metrics, job_status_interval)
            if querier is not None
            else None
        )
        self._initial_rules = list(rules)
        self._max_requeues = max_requeues
        self._running = False

    @classmethod
    def from_config(
        cls,
        config: AutohealConfig,
        runners: dict[type, "ActionRunner"],
        querier: "JobStatusQuerier | None" = None,
        **kwargs: Any,
    ) -> "Healer":
        """Create a healer with the rules and intervals of the configuration."""
        return cls(
            runners,
            querier=querier,
            rules=config.rules,
            throttling_interval=config.throttling.interval,
            job_status_interval=config.awx.job_status_check_interval,
            **kwargs,
        )

    # ========================================================================
    # Producers
    # ========================================================================

    def handle_message(self, message: AlertmanagerMessage) -> int:
        """Queue the alerts of a notification sent by the alert manager.

        Returns:
            Number of queued alerts.
        """
        for alert in message.alerts:
            self.alerts_queue.add(alert)
        logger.debug(f"Queued {len(message.alerts)} alerts from receiver '{message.receiver}'")
        return len(message.alerts)

    def reload_rules(self, rules: Iterable[HealingRule]) -> None:
        """Queue the changes that turn the current rule set into the given one.

        All the rules are added, which has no effect for the ones whose version
        didn't change. The rules that disappeared are deleted by the rules worker
        once the additions queued before have been applied.
        """
        rules = list(rules)
        for rule in rules:
            self.rules_queue.add(RuleChange(type=ChangeType.ADDED, rule=rule))
        self.rules_queue.add(KeepRules(frozenset(rule.name for rule in rules)))

    def on_config_change(self, config: AutohealConfig) -> None:
        """Apply a reloaded configuration."""
        if config.throttling.interval != self.memory.duration:
            logger.warning(
                "Throttling interval changes take effect only after a restart, "
                f"still using {self.memory.duration}s"
            )
        self.reload_rules(config.rules)

    # ========================================================================
    # Consumers
    # ========================================================================

    async def process_rule_change(self, change: RuleChange | KeepRules) -> None:
        if isinstance(change, KeepRules):
            for name in self.rules.names() - change.names:
                self.rules.delete(name)
            return
        self.rules.apply(change)

    async def process_alert(self, alert: Alert) -> None:
        await self.dispatcher.process_alert(alert)

    async def _run_worker(self, queue: WorkQueue, process: Callable[[Any], Awaitable[None]]) -> None:
        logger.info(f"Worker for queue '{queue.name}' started")
        while True:
            item, shutdown = await queue.get()
            if shutdown:
                break
            try:
                await process(item)
            except Exception as e:
                requeues = queue.num_requeues(item)
                if requeues < self._max_requeues:
                    logger.error(f"Error processing item from queue '{queue.name}', will retry: {e}")
                    queue.add_rate_limited(item)
                else:
                    logger.error(
                        f"Dropping item from queue '{queue.name}' after {requeues} retries: {e}"
                    )
                    queue.forget(item)
            else:
                queue.forget(item)
            finally:
                queue.done(item)
        logger.info(f"Worker for queue '{queue.name}' stopped")

    # ========================================================================
    # Lifecycle
    # ========================================================================

    async def run(self, stop_event: asyncio.Event) -> None:
        """Run the workers until the stop event is set."""
        self._running = True
        tasks = [
            asyncio.create_task(self._run_worker(self.rules_queue, self.process_rule_change)),
            asyncio.create_task(self._run_worker(self.alerts_queue, self.process_alert)),
        ]
        if self.poller is not None:
            tasks.append(asyncio.create_task(self.poller.run(stop_event)))

        self.reload_rules(self._initial_rules)
        logger.info("Healer started")

        try:
            await stop_event.wait()
        finally:
            self.rules_queue.shut_down()
            self.alerts_queue.shut_down()
            results = await asyncio.gather(*tasks, return_exceptions=True)
            for result in results:
                if isinstance(result, Exception):
                    logger.error(f"Healer task failed: {result}")
            self._running = False
            logger.info("Healer stopped")

    @property
    def is_running(self) -> bool:
        return self._running

    def status(self) -> dict[str, Any]:
        """Summary of the state of the healer."""
        return {
            "running": self.is_running,
            "rules": len(self.rules),
            "active_jobs": len(self.active_jobs),
            "remembered_actions": len(self.memory),
            "queued_alerts": len(self.alerts_queue),
            "processing_alerts": self.alerts_queue.processing,
            "queued_rule_changes": len(self.rules_queue),
        }
