"""Tracking of the AWX jobs launched by the healer."""

from __future__ import annotations

import asyncio
from threading import Lock
from typing import TYPE_CHECKING

from loguru import logger

from autoheal.metrics import MetricsSink, NullMetrics
from autoheal.models import HealingRule

if TYPE_CHECKING:
    from autoheal.runners.base import JobStatusQuerier


class ActiveJobs:
    """Thread-safe map of AWX job id to the rule that launched it."""

    def __init__(self) -> None:
        self._jobs: dict[int, tuple[HealingRule, str]] = {}
        self._lock = Lock()

    def track(self, job_id: int, rule: HealingRule, template: str = "") -> None:
        """Start tracking a job.

        Args:
            job_id: Identifier of the job in AWX.
            rule: Rule that launched the job.
            template: Name of the job template, defaults to the template of the rule.
        """
        if not template and rule.awx_job is not None:
            template = rule.awx_job.template
        with self._lock:
            self._jobs[job_id] = (rule, template)

    def untrack(self, job_id: int) -> bool:
        with self._lock:
            return self._jobs.pop(job_id, None) is not None

    def snapshot(self) -> dict[int, tuple[HealingRule, str]]:
        """Point in time copy of the tracked jobs."""
        with self._lock:
            return dict(self._jobs)

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)

    def __contains__(self, job_id: object) -> bool:
        with self._lock:
            return job_id in self._jobs


class ActiveJobPoller:
    """Periodically checks the active jobs and retires the finished ones."""

    def __init__(
        self,
        active_jobs: ActiveJobs,
        querier: "JobStatusQuerier",
        metrics: MetricsSink | None = None,
        interval: float = 300.0,
    ):
        """Initialize the poller.

        Args:
            active_jobs: Jobs to check.
            querier: Source of the job status.
            metrics: Metrics sink.
            interval: Seconds between passes.
        """
        self._active_jobs = active_jobs
        self._querier = querier
        self._metrics = metrics or NullMetrics()
        self._interval = interval

    @property
    def interval(self) -> float:
        return self._interval

    async def poll_once(self) -> list[int]:
        """Check every active job once.

        Jobs whose status can't be retrieved stay tracked and are checked again
        in the next pass.

        Returns:
            Identifiers of the jobs that finished.
        """
        jobs = self._active_jobs.snapshot()
        if not jobs:
            return []

        logger.info(f"Going over {len(jobs)} active jobs")
        finished = []
        for job_id, (rule, template) in jobs.items():
            try:
                status = await self._querier.job_status(job_id)
            except Exception as e:
                logger.error(f"Can't check status of job {job_id} launched by rule '{rule.name}': {e}")
                continue

            logger.info(f"Job {job_id} status: {status.value}")
            if status.is_finished:
                finished.append(job_id)
                self._metrics.action_completed("AWXJob", template, rule.name)

        for job_id in finished:
            logger.info(f"Removing finished job {job_id} from active jobs")
            self._active_jobs.untrack(job_id)

        return finished

    async def run(self, stop_event: asyncio.Event) -> None:
        """Poll the active jobs until the stop event is set."""
        logger.info(f"Active jobs poller started, interval is {self._interval}s")
        while not stop_event.is_set():
            try:
                await self.poll_once()
            except Exception as e:
                logger.error(f"Active jobs poller error: {e}")

            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self._interval)
            except asyncio.TimeoutError:
                pass
        logger.info("Active jobs poller stopped")
